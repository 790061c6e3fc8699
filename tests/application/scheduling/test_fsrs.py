from datetime import timedelta

import pytest

from flashmark.application.scheduling import Fsrs
from flashmark.domain.errors import ValidationError
from flashmark.domain.models import CardState, CardStatus, Rating


@pytest.fixture
def fsrs():
    return Fsrs()


def test_first_good_review(fsrs, now):
    result = fsrs.schedule(fsrs.initial_state(), Rating.GOOD, now)
    state = result.new_state
    assert state.status is CardStatus.REVIEW
    assert state.stability == pytest.approx(2.4)
    assert state.difficulty == pytest.approx(4.93)
    # At 90% retention the interval equals the stability.
    assert state.interval_days == pytest.approx(2.4)
    assert result.next_due == now + timedelta(seconds=round(2.4 * 86400))
    assert state.reviews_count == 1
    assert state.ease_factor == 2.5


def test_first_again_review_is_short_term_without_lapse(fsrs, now):
    result = fsrs.schedule(fsrs.initial_state(), Rating.AGAIN, now)
    state = result.new_state
    assert state.status is CardStatus.LEARNING
    assert state.stability == pytest.approx(0.4)
    assert state.difficulty == pytest.approx(6.81)
    assert state.lapses == 0
    assert result.next_due == now + timedelta(minutes=24)


def test_initial_difficulty_orders_by_rating(fsrs):
    values = [fsrs.initial_difficulty(r) for r in Rating]
    assert values == sorted(values, reverse=True)
    assert all(1.0 <= d <= 10.0 for d in values)


def test_hard_first_review_interval_floor(fsrs, now):
    state = fsrs.schedule(fsrs.initial_state(), Rating.HARD, now).new_state
    assert state.interval_days == 1.0


def test_due_date_matches_target_retention(fsrs, now):
    first = fsrs.schedule(fsrs.initial_state(), Rating.GOOD, now)
    second = fsrs.schedule(first.new_state, Rating.GOOD, first.next_due)
    state = second.new_state
    assert state.stability > first.new_state.stability
    assert fsrs.retrievability(state, second.next_due) == pytest.approx(0.9, abs=1e-4)


def test_recall_on_time_has_target_retrievability(fsrs, now):
    first = fsrs.schedule(fsrs.initial_state(), Rating.GOOD, now)
    assert fsrs.retrievability(first.new_state, first.next_due) == pytest.approx(0.9, abs=1e-4)
    assert fsrs.retrievability(first.new_state, now) == pytest.approx(1.0)


def test_easy_grows_more_than_good_and_hard(fsrs, now):
    first = fsrs.schedule(fsrs.initial_state(), Rating.GOOD, now)
    later = first.next_due
    hard = fsrs.schedule(first.new_state, Rating.HARD, later).new_state
    good = fsrs.schedule(first.new_state, Rating.GOOD, later).new_state
    easy = fsrs.schedule(first.new_state, Rating.EASY, later).new_state
    assert hard.stability < good.stability < easy.stability


@pytest.mark.parametrize("status", [CardStatus.REVIEW, CardStatus.RELEARNING])
def test_again_after_first_review_is_lapse(fsrs, now, status):
    state = CardState(
        status=status,
        interval_days=10.0,
        stability=10.0,
        difficulty=5.0,
        lapses=1,
        reviews_count=4,
        due_date=now,
    )
    result = fsrs.schedule(state, Rating.AGAIN, now)
    assert result.new_state.status is CardStatus.RELEARNING
    assert result.new_state.lapses == 2
    assert result.new_state.stability <= state.stability
    assert result.new_state.difficulty > state.difficulty
    assert result.next_due - now <= timedelta(days=1)


def test_interval_capped_at_maximum(fsrs, now):
    state = CardState(
        status=CardStatus.REVIEW,
        interval_days=30000.0,
        stability=90000.0,
        difficulty=1.0,
        reviews_count=20,
        due_date=now,
    )
    result = fsrs.schedule(state, Rating.EASY, now)
    assert result.new_state.interval_days == 36500.0


def test_forgetting_curve():
    assert Fsrs.forgetting_curve(0, 5.0) == 1.0
    assert Fsrs.forgetting_curve(9 * 5.0, 5.0) == pytest.approx(0.5)
    assert Fsrs.forgetting_curve(3, 0) == 0.0


def test_weights_must_have_17_entries():
    with pytest.raises(ValidationError):
        Fsrs(w=(1.0, 2.0))


def test_schedule_does_not_mutate_input(fsrs, now):
    state = fsrs.initial_state()
    fsrs.schedule(state, Rating.GOOD, now)
    assert state == fsrs.initial_state()
