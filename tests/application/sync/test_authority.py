from datetime import timedelta

import pytest

from flashmark.application.parser import hash_content, parse
from flashmark.domain.errors import NotAuthenticated
from flashmark.domain.models import (
    Algorithm,
    AnswerMode,
    CardState,
    CardStatus,
    DeckSettings,
    GlobalSettings,
    RatingScale,
    Review,
)
from flashmark.domain.sync.models import SyncFile

DEVICE = "device_a"


def sync_file(path, content):
    return SyncFile(path=path, content=content, hash=hash_content(content))


def review(card_id, now, interval_after, reviews_count):
    return Review(
        card_id=card_id,
        reviewed_at=now,
        rating=3,
        rating_scale=RatingScale.FOUR_POINT,
        answer_mode=AnswerMode.FLIP,
        algorithm=Algorithm.SM2,
        interval_before=0.0,
        interval_after=interval_after,
        ease_before=2.5,
        ease_after=2.5,
        state_after=CardState(
            status=CardStatus.REVIEW, interval_days=interval_after, reviews_count=reviews_count
        ),
    )


def test_register_and_authenticate(authority):
    creds = authority.register_device("laptop")
    assert creds.device_id.startswith("device_")
    assert authority.authenticate(creds.token) == creds.device_id

    with pytest.raises(NotAuthenticated):
        authority.authenticate("bogus")
    with pytest.raises(NotAuthenticated):
        authority.authenticate(None)


def test_upload_assigns_ids_to_pending_records(authority):
    content = "ID: 1\nQ: known\nA: yes\n\nQ: first new\nA: one\n\nQ: second new\nA: two\n"
    result = authority.upload(DEVICE, [sync_file("rust/basics.md", content)])

    new_ids = [a.id for a in result.new_ids]
    assert len(new_ids) == 2
    assert len(set(new_ids)) == 2
    assert all(i > 1 for i in new_ids)
    assert [a.line for a in result.new_ids] == [5, 8]

    rewritten = result.updated_files["rust/basics.md"]
    records = parse(rewritten).records
    assert [r.question for r in records] == ["known", "first new", "second new"]
    assert [r.id for r in records][1:] == new_ids
    assert result.orphans == []

    pulled = authority.pull(DEVICE, None)
    by_id = {c.id: c for c in pulled.cards}
    assert by_id[new_ids[0]].question == "first new"
    assert by_id[new_ids[1]].deck_path == "rust"


def test_same_payload_is_idempotent(authority, authority_store):
    file = sync_file("deck.md", "Q: a\nA: b\n\nQ: c\nA: d\n")
    first = authority.upload(DEVICE, [file])
    second = authority.upload(DEVICE, [file])

    assert second.updated_files == first.updated_files
    assert second.new_ids == first.new_ids
    # no ids were consumed by the replay
    assert authority_store.next_card_id() == 3


def test_uploading_rewritten_content_assigns_nothing(authority):
    first = authority.upload(DEVICE, [sync_file("deck.md", "Q: a\nA: b\n")])
    rewritten = first.updated_files["deck.md"]
    second = authority.upload(DEVICE, [sync_file("deck.md", rewritten)])
    assert second.new_ids == []
    assert second.updated_files == {}


def test_ids_are_never_reused_after_deletion(authority, now):
    first = authority.upload(DEVICE, [sync_file("deck.md", "Q: a\nA: b\n")])
    old_id = first.new_ids[0].id
    authority.confirm_delete(DEVICE, [old_id])

    second = authority.upload(DEVICE, [sync_file("deck.md", "Q: again\nA: b\n")])
    assert second.new_ids[0].id > old_id


def test_orphans_reported_not_deleted(authority):
    both = "ID: 1\nQ: keep\nA: a\n\nID: 2\nQ: gone\nA: b\n"
    authority.upload(DEVICE, [sync_file("deck.md", both)])
    result = authority.upload(DEVICE, [sync_file("deck.md", "ID: 1\nQ: keep\nA: a\n")])

    assert [(o.card_id, o.question_preview) for o in result.orphans] == [(2, "gone")]
    # still live until confirmed
    assert [o.card_id for o in authority.list_orphans(DEVICE, {1})] == [2]

    assert authority.confirm_delete(DEVICE, [2]) == 1
    again = authority.upload(DEVICE, [sync_file("deck.md", "ID: 1\nQ: keep\nA: a\n")])
    assert again.orphans == []


def test_replayed_file_restores_deleted_cards(authority, authority_store):
    keep = sync_file("keep.md", "ID: 1\nQ: keep\nA: a\n")
    gone = sync_file("gone.md", "ID: 2\nQ: gone\nA: b\n")
    authority.upload(DEVICE, [keep, gone])

    result = authority.upload(DEVICE, [keep])
    assert [o.card_id for o in result.orphans] == [2]
    authority.confirm_delete(DEVICE, [2])

    restored = authority.upload(DEVICE, [keep, gone])
    assert restored.new_ids == []
    assert restored.orphans == []
    assert [o.card_id for o in authority_store.live_cards(DEVICE)] == [1, 2]

    # deleting the file again flags the card again
    assert [o.card_id for o in authority.upload(DEVICE, [keep]).orphans] == [2]


def test_hand_written_id_reserves_sequence(authority, authority_store):
    authority.upload(DEVICE, [sync_file("deck.md", "ID: 50\nQ: manual\nA: a\n\nQ: new\nA: b\n")])
    assert authority_store.next_card_id() == 52


def test_card_of_another_device_is_skipped(authority):
    authority.upload("device_b", [sync_file("b.md", "ID: 7\nQ: mine\nA: b\n")])
    authority.upload(DEVICE, [sync_file("a.md", "ID: 7\nQ: stolen\nA: a\n")])

    assert [c.question for c in authority.pull("device_b", None).cards] == ["mine"]
    assert authority.pull(DEVICE, None).cards == []


def test_push_reviews_last_write_wins(authority, authority_store, now):
    reviews = [review(1, now, 1.0, 1), review(1, now + timedelta(hours=1), 3.0, 2)]
    assert authority.push_reviews(DEVICE, reviews) == 2

    states = dict(authority.pull(DEVICE, None).card_states)
    assert states[1].interval_days == 3.0
    assert states[1].reviews_count == 2
    assert len(authority_store.list_reviews(DEVICE, 1)) == 2


def test_settings_are_optional_until_saved(authority):
    assert authority.pull(DEVICE, None).global_settings is None

    authority.save_settings(
        DEVICE, GlobalSettings(algorithm=Algorithm.FSRS), [DeckSettings("rust", reviews_per_day=5)]
    )
    pulled = authority.pull(DEVICE, None)
    assert pulled.global_settings.algorithm is Algorithm.FSRS
    assert pulled.deck_settings == [DeckSettings("rust", reviews_per_day=5)]
