from datetime import date, datetime, timedelta, timezone

import pytest

from flashmark.application.study_queue import (
    adjusted_today,
    build_study_queue,
    list_decks,
    study_day_end,
)
from flashmark.domain.models import (
    Card,
    CardState,
    CardStatus,
    EffectiveSettings,
    GlobalSettings,
)

DEVICE = "device_test"


def settings(**overrides):
    return EffectiveSettings.merge(GlobalSettings(**overrides))


def due_state(due_date):
    return CardState(
        status=CardStatus.REVIEW, interval_days=3.0, reviews_count=2, due_date=due_date
    )


@pytest.fixture
def store(card_store, now):
    card_store.upsert_cards(
        [Card(i, "lang/rust", f"q{i}", f"a{i}", "lang/rust/x.md") for i in range(1, 6)]
        + [Card(i, "lang", f"q{i}", f"a{i}", "lang/y.md") for i in range(6, 9)]
        + [Card(9, "math", "q9", "a9", "math.md")]
    )
    card_store.put_card_state(3, DEVICE, due_state(now - timedelta(days=2)))
    card_store.put_card_state(4, DEVICE, due_state(now - timedelta(days=5)))
    card_store.put_card_state(5, DEVICE, due_state(now + timedelta(days=3)))
    card_store.put_card_state(6, DEVICE, due_state(now + timedelta(hours=3)))
    return card_store


def test_adjusted_today():
    late = datetime(2024, 3, 1, 2, 30, tzinfo=timezone.utc)
    assert adjusted_today(4, late) == date(2024, 2, 29)
    assert adjusted_today(0, late) == date(2024, 3, 1)


def test_study_day_end():
    now = datetime(2024, 3, 1, 2, 30, tzinfo=timezone.utc)
    assert study_day_end(4, now) == datetime(2024, 3, 1, 4, 0, tzinfo=timezone.utc)
    assert study_day_end(0, now) == datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc)


def test_queue_for_deck_includes_subdecks(store, now):
    queue = build_study_queue(store, DEVICE, settings(), deck_path="lang", now=now)
    assert [c.id for c in queue.new_cards] == [1, 2, 7, 8]
    # oldest due first; card 6 is due later today, card 5 in three days
    assert [c.id for c in queue.review_cards] == [4, 3, 6]
    assert queue.new_remaining == 16
    assert queue.review_remaining == 197


def test_queue_limits(store, now):
    queue = build_study_queue(
        store, DEVICE, settings(new_cards_per_day=1, reviews_per_day=2), now=now
    )
    assert [c.id for c in queue.new_cards] == [1]
    assert [c.id for c in queue.review_cards] == [4, 3]
    assert queue.new_remaining == 0
    assert queue.review_remaining == 0


def test_deleted_cards_never_queued(store, now):
    store.soft_delete([1, 4], now)
    queue = build_study_queue(store, DEVICE, settings(), now=now)
    ids = {c.id for c in queue.new_cards + queue.review_cards}
    assert 1 not in ids
    assert 4 not in ids


def test_other_devices_states_are_ignored(store, now):
    store.put_card_state(9, "device_other", due_state(now - timedelta(days=1)))
    queue = build_study_queue(store, DEVICE, settings(), deck_path="math", now=now)
    assert [c.id for c in queue.new_cards] == [9]
    assert queue.review_cards == []


def test_list_decks(store, now):
    decks = list_decks(store, DEVICE, now=now)
    assert [d.path for d in decks] == ["lang", "lang/rust", "math"]
    rust = decks[1]
    assert rust.name == "rust"
    assert (rust.card_count, rust.new_count, rust.due_count) == (5, 2, 2)
    lang = decks[0]
    assert (lang.card_count, lang.new_count, lang.due_count) == (3, 2, 1)
