"""
Scheduler abstraction.

The set of algorithms is closed: each one is a wire value on
`Review.algorithm`, so adding one is a deliberate format change.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from flashmark.domain.models import Algorithm, CardState, Rating


@dataclass(frozen=True)
class SchedulingResult:
    new_state: CardState
    next_due: datetime


class SchedulingAlgorithm(ABC):
    """
    Port implemented by every spaced-repetition algorithm.

    `schedule` is pure: it reads an immutable state and returns a new one,
    so concurrent callers never interfere.
    """

    algorithm: Algorithm

    @property
    def name(self) -> str:
        return self.algorithm.value

    @abstractmethod
    def initial_state(self) -> CardState:
        pass

    @abstractmethod
    def schedule(self, state: CardState, rating: Rating, now: datetime) -> SchedulingResult:
        """
        Compute the state after one review.

        Args:
            state: State before the review.
            rating: Already validated 4-point rating.
            now: Timezone-aware review time.
        """
        pass
