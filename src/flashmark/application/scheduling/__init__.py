# Application Scheduling Package
from datetime import datetime

from flashmark.domain.models import Algorithm, CardState, Rating, ensure_utc

from .base import SchedulingAlgorithm, SchedulingResult
from .fsrs import Fsrs
from .sm2 import Sm2

ALGORITHMS: dict[Algorithm, SchedulingAlgorithm] = {
    Algorithm.SM2: Sm2(),
    Algorithm.FSRS: Fsrs(),
}


def get_algorithm(algorithm: Algorithm | str) -> SchedulingAlgorithm:
    """Resolve an algorithm identifier. Raises ValidationError when unknown."""
    return ALGORITHMS[Algorithm.parse(algorithm)]


def initial_state(algorithm: Algorithm | str) -> CardState:
    return get_algorithm(algorithm).initial_state()


def schedule(
    algorithm: Algorithm | str,
    state: CardState,
    rating: Rating | int | str,
    now: datetime,
) -> SchedulingResult:
    """
    Single entry point for every scheduler.

    The rating and algorithm are validated before anything is computed, so a
    bad input never yields a partial state.
    """
    scheduler = get_algorithm(algorithm)
    return scheduler.schedule(state, Rating.parse(rating), ensure_utc(now))


__all__ = [
    "ALGORITHMS",
    "Fsrs",
    "SchedulingAlgorithm",
    "SchedulingResult",
    "Sm2",
    "get_algorithm",
    "initial_state",
    "schedule",
]
