"""
FSRS (Free Spaced Repetition Scheduler).

Tracks stability (days until retrievability drops to 90%) and difficulty
(1-10) per card instead of a single ease factor. The ease factor is carried
through untouched so a deck can switch back to SM-2 without losing it.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from flashmark.domain.constants import (
    FSRS_DEFAULT_WEIGHTS,
    FSRS_MAX_DIFFICULTY,
    FSRS_MAXIMUM_INTERVAL,
    FSRS_MIN_DIFFICULTY,
    FSRS_MIN_STABILITY,
    FSRS_REQUEST_RETENTION,
    FSRS_SHORT_TERM_MAX_MINUTES,
    FSRS_SHORT_TERM_MIN_MINUTES,
    SECONDS_PER_DAY,
    SM2_INITIAL_EASE,
)
from flashmark.domain.errors import ValidationError
from flashmark.domain.models import Algorithm, CardState, CardStatus, Rating

from .base import SchedulingAlgorithm, SchedulingResult

# (status, failed?) -> next status
_TRANSITIONS: dict[tuple[CardStatus, bool], CardStatus] = {
    (CardStatus.NEW, True): CardStatus.LEARNING,
    (CardStatus.NEW, False): CardStatus.REVIEW,
    (CardStatus.LEARNING, True): CardStatus.LEARNING,
    (CardStatus.LEARNING, False): CardStatus.REVIEW,
    (CardStatus.REVIEW, True): CardStatus.RELEARNING,
    (CardStatus.REVIEW, False): CardStatus.REVIEW,
    (CardStatus.RELEARNING, True): CardStatus.RELEARNING,
    (CardStatus.RELEARNING, False): CardStatus.REVIEW,
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class Fsrs(SchedulingAlgorithm):
    request_retention: float = FSRS_REQUEST_RETENTION
    maximum_interval: float = FSRS_MAXIMUM_INTERVAL
    w: tuple[float, ...] = FSRS_DEFAULT_WEIGHTS

    algorithm = Algorithm.FSRS

    def __post_init__(self):
        if len(self.w) != 17:
            raise ValidationError(f"FSRS needs 17 weights, got {len(self.w)}")

    def initial_state(self) -> CardState:
        return CardState(status=CardStatus.NEW, ease_factor=SM2_INITIAL_EASE)

    def schedule(self, state: CardState, rating: Rating, now: datetime) -> SchedulingResult:
        first_review = (
            state.reviews_count == 0 or state.stability is None or state.difficulty is None
        )
        failed = rating is Rating.AGAIN

        if first_review:
            stability = self.initial_stability(rating)
            difficulty = self.initial_difficulty(rating)
            lapses = state.lapses
        else:
            r = self.retrievability(state, now)
            difficulty = self.next_difficulty(state.difficulty, rating)
            if failed:
                stability = self.next_stability_forget(state.stability, state.difficulty, r)
                lapses = state.lapses + 1
            else:
                stability = self.next_stability_recall(
                    state.stability, state.difficulty, r, rating
                )
                lapses = state.lapses

        if failed:
            interval = self.short_term_interval(stability)
        else:
            interval = self.interval_from_stability(stability)

        next_due = now + timedelta(seconds=round(interval * SECONDS_PER_DAY))
        new_state = replace(
            state,
            status=_TRANSITIONS[(state.status, failed)],
            interval_days=interval,
            stability=stability,
            difficulty=difficulty,
            lapses=lapses,
            reviews_count=state.reviews_count + 1,
            due_date=next_due,
        )
        return SchedulingResult(new_state=new_state, next_due=next_due)

    # ---------- Memory model ----------

    def initial_stability(self, rating: Rating) -> float:
        return max(FSRS_MIN_STABILITY, self.w[int(rating) - 1])

    def initial_difficulty(self, rating: Rating) -> float:
        d0 = self.w[4] - self.w[5] * (int(rating) - 3)
        return _clamp(d0, FSRS_MIN_DIFFICULTY, FSRS_MAX_DIFFICULTY)

    def next_difficulty(self, difficulty: float, rating: Rating) -> float:
        # Mean reversion towards the initial difficulty, then the rating step.
        reverted = self.w[7] * self.initial_difficulty(rating) + (1 - self.w[7]) * difficulty
        stepped = reverted - self.w[6] * (int(rating) - 3)
        return _clamp(stepped, FSRS_MIN_DIFFICULTY, FSRS_MAX_DIFFICULTY)

    @staticmethod
    def forgetting_curve(elapsed_days: float, stability: float) -> float:
        """R = (1 + t / (9 * S)) ** -1"""
        if stability <= 0:
            return 0.0
        return (1 + elapsed_days / (9 * stability)) ** -1

    def retrievability(self, state: CardState, now: datetime) -> float:
        """Predicted recall probability of a card at `now`."""
        if state.stability is None:
            return 0.0
        return self.forgetting_curve(self.elapsed_days(state, now), state.stability)

    def next_stability_recall(
        self, stability: float, difficulty: float, retrievability: float, rating: Rating
    ) -> float:
        growth = (
            math.exp(self.w[8])
            * max(0.1, 11 - difficulty)
            * stability ** -self.w[9]
            * (math.exp(self.w[10] * (1 - retrievability)) - 1)
            + 1
        )
        if rating is Rating.HARD:
            growth *= self.w[15]
        elif rating is Rating.EASY:
            growth *= self.w[16]
        return _clamp(stability * growth, FSRS_MIN_STABILITY, self.maximum_interval)

    def next_stability_forget(
        self, stability: float, difficulty: float, retrievability: float
    ) -> float:
        new_s = (
            self.w[11]
            * max(1.0, difficulty) ** -self.w[12]
            * ((stability + 1) ** self.w[13] - 1)
            * math.exp(self.w[14] * (1 - retrievability))
        )
        # Forgetting never makes a memory more stable.
        return max(FSRS_MIN_STABILITY, min(new_s, stability))

    def interval_from_stability(self, stability: float) -> float:
        """Days until retrievability decays to `request_retention`."""
        if not 0 < self.request_retention < 1:
            return stability
        interval = 9 * stability * (1 / self.request_retention - 1)
        return _clamp(interval, 1.0, self.maximum_interval)

    def short_term_interval(self, stability: float) -> float:
        minutes = _clamp(
            stability * 60, FSRS_SHORT_TERM_MIN_MINUTES, FSRS_SHORT_TERM_MAX_MINUTES
        )
        return minutes * 60 / SECONDS_PER_DAY

    @staticmethod
    def elapsed_days(state: CardState, now: datetime) -> float:
        if state.due_date is None:
            return max(0.0, state.interval_days)
        last_review = state.due_date - timedelta(
            seconds=round(state.interval_days * SECONDS_PER_DAY)
        )
        return max(0.0, (now - last_review).total_seconds() / SECONDS_PER_DAY)
