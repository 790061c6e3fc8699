"""SM-2 (SuperMemo 2) with configurable parameters."""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from flashmark.domain.constants import (
    SM2_EASE_STEP,
    SM2_EASY_BONUS,
    SM2_EASY_INTERVAL,
    SM2_GRADUATING_INTERVAL,
    SM2_HARD_MULTIPLIER,
    SM2_INITIAL_EASE,
    SM2_LAPSE_EASE_PENALTY,
    SM2_MINIMUM_EASE,
)
from flashmark.domain.models import Algorithm, CardState, CardStatus, Rating

from .base import SchedulingAlgorithm, SchedulingResult


@dataclass(frozen=True)
class Sm2(SchedulingAlgorithm):
    initial_ease: float = SM2_INITIAL_EASE
    minimum_ease: float = SM2_MINIMUM_EASE
    easy_bonus: float = SM2_EASY_BONUS
    hard_multiplier: float = SM2_HARD_MULTIPLIER
    graduating_interval: float = SM2_GRADUATING_INTERVAL
    easy_interval: float = SM2_EASY_INTERVAL

    algorithm = Algorithm.SM2

    def initial_state(self) -> CardState:
        return CardState(status=CardStatus.NEW, ease_factor=self.initial_ease)

    def schedule(self, state: CardState, rating: Rating, now: datetime) -> SchedulingResult:
        if state.status in (CardStatus.NEW, CardStatus.LEARNING):
            status, interval, ease, lapses = self._schedule_learning(state, rating)
        else:
            status, interval, ease, lapses = self._schedule_review(state, rating)

        next_due = now + timedelta(days=math.ceil(interval))
        new_state = replace(
            state,
            status=status,
            interval_days=interval,
            ease_factor=ease,
            stability=None,
            difficulty=None,
            lapses=lapses,
            reviews_count=state.reviews_count + 1,
            due_date=next_due,
        )
        return SchedulingResult(new_state=new_state, next_due=next_due)

    def _schedule_learning(
        self, state: CardState, rating: Rating
    ) -> tuple[CardStatus, float, float, int]:
        # New/Learning never counts a lapse or changes the ease, whatever the rating.
        ease = state.ease_factor
        if rating >= Rating.GOOD:
            interval = self.easy_interval if rating is Rating.EASY else self.graduating_interval
            return CardStatus.REVIEW, interval, ease, state.lapses
        return CardStatus.LEARNING, 0.0, ease, state.lapses

    def _schedule_review(
        self, state: CardState, rating: Rating
    ) -> tuple[CardStatus, float, float, int]:
        if rating is Rating.AGAIN:
            ease = max(self.minimum_ease, state.ease_factor - SM2_LAPSE_EASE_PENALTY)
            return CardStatus.RELEARNING, 1.0, ease, state.lapses + 1

        if rating is Rating.HARD:
            multiplier, ease_adj = self.hard_multiplier, -SM2_EASE_STEP
        elif rating is Rating.EASY:
            multiplier, ease_adj = state.ease_factor * self.easy_bonus, SM2_EASE_STEP
        else:
            multiplier, ease_adj = state.ease_factor, 0.0

        interval = max(1.0, state.interval_days * multiplier)
        ease = max(self.minimum_ease, state.ease_factor + ease_adj)
        return CardStatus.REVIEW, interval, ease, state.lapses
