"""
Review pipeline: typed-answer matching -> scheduling -> persistence -> sync queue.

CardState writes are serialized per (card, device) so two reviews racing
on the same card never lose an update. Different cards do not block each
other beyond the store's own transaction.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime

from flashmark.application.matching import compare
from flashmark.application.scheduling import get_algorithm
from flashmark.domain.errors import UnknownCard, ValidationError
from flashmark.domain.models import (
    Algorithm,
    AnswerMode,
    Card,
    CardState,
    EffectiveSettings,
    MatchResult,
    Rating,
    RatingScale,
    Review,
    SyncState,
    ensure_utc,
    utc_now,
)
from flashmark.domain.ports import CardStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewRequest:
    card_id: int
    rating: int | str
    rating_scale: RatingScale | str = RatingScale.FOUR_POINT
    answer_mode: AnswerMode | str = AnswerMode.FLIP
    typed_answer: str | None = None
    time_taken_ms: int | None = None


@dataclass(frozen=True)
class ReviewOutcome:
    new_state: CardState
    next_due: datetime
    review: Review
    match: MatchResult | None = None


class _KeyedLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[int, str], threading.Lock] = defaultdict(threading.Lock)

    def get(self, key: tuple[int, str]) -> threading.Lock:
        with self._guard:
            return self._locks[key]


class ReviewService:
    def __init__(self, store: CardStore, device_id: str):
        self.store = store
        self.device_id = device_id
        self._locks = _KeyedLocks()

    def effective_settings(self, deck_path: str | None = None) -> EffectiveSettings:
        deck = self.store.get_deck_settings(deck_path) if deck_path else None
        return EffectiveSettings.merge(self.store.get_settings(), deck)

    def _require_card(self, card_id: int) -> Card:
        card = self.store.get_card(card_id)
        if card is None or card.is_deleted:
            raise UnknownCard(card_id)
        return card

    def compare_typed_answer(self, card_id: int, typed: str) -> MatchResult:
        card = self._require_card(card_id)
        settings = self.effective_settings(card.deck_path)
        return compare(typed, card.answer, settings.matching_mode, settings.fuzzy_threshold)

    def submit_review(
        self,
        request: ReviewRequest,
        algorithm: Algorithm | str | None = None,
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """
        Score and persist one review.

        Validation happens before anything is written. The new CardState,
        the queued Review and the pending-changes counter commit together.

        Args:
            request: What the user answered.
            algorithm: Pinned by the study session; falls back to settings.
            now: Review time, defaults to the current UTC time.
        """
        scale = RatingScale.parse(request.rating_scale)
        mode = AnswerMode.parse(request.answer_mode)
        raw_rating = request.rating
        if isinstance(raw_rating, str) and raw_rating.strip().isdigit():
            raw_rating = int(raw_rating)
        if isinstance(raw_rating, int):
            rating = Rating.from_scale(raw_rating, scale)
        elif scale is RatingScale.FOUR_POINT:
            rating = Rating.parse(raw_rating)
        else:
            raise ValidationError(f"2point rating must be 1 or 2, got {raw_rating!r}")
        if mode is AnswerMode.TYPED and request.typed_answer is None:
            raise ValidationError("typed answer mode requires typed_answer")

        now = ensure_utc(now or utc_now())
        card = self._require_card(request.card_id)
        settings = self.effective_settings(card.deck_path)
        scheduler = get_algorithm(algorithm if algorithm is not None else settings.algorithm)

        match = None
        if mode is AnswerMode.TYPED:
            match = compare(
                request.typed_answer,
                card.answer,
                settings.matching_mode,
                settings.fuzzy_threshold,
            )

        with self._locks.get((card.id, self.device_id)):
            with self.store.transaction():
                before = self.store.get_card_state(card.id, self.device_id)
                if before is None:
                    before = scheduler.initial_state()
                result = scheduler.schedule(before, rating, now)

                review = Review(
                    card_id=card.id,
                    reviewed_at=now,
                    rating=int(raw_rating) if isinstance(raw_rating, int) else int(rating),
                    rating_scale=scale,
                    answer_mode=mode,
                    algorithm=scheduler.algorithm,
                    interval_before=before.interval_days,
                    interval_after=result.new_state.interval_days,
                    ease_before=before.ease_factor,
                    ease_after=result.new_state.ease_factor,
                    typed_answer=request.typed_answer,
                    was_correct=match.is_correct if match else None,
                    time_taken_ms=request.time_taken_ms,
                    state_after=result.new_state,
                )
                self.store.put_card_state(card.id, self.device_id, result.new_state)
                review_id = self.store.enqueue_pending_review(review)

                sync_state = self.store.get_sync_state()
                self.store.put_sync_state(
                    SyncState(
                        last_sync_at=sync_state.last_sync_at,
                        pending_changes=sync_state.pending_changes + 1,
                    )
                )

        logger.debug(
            f"[review] card {card.id} rated {rating.name} with {scheduler.name}: "
            f"{before.status.value} -> {result.new_state.status.value}, "
            f"due {result.next_due.isoformat()}"
        )
        return ReviewOutcome(
            new_state=result.new_state,
            next_due=result.next_due,
            review=replace(review, id=review_id),
            match=match,
        )


class StudySession:
    """
    A study session over one deck.

    The algorithm is resolved once, when the session starts, so a settings
    change mid-session does not switch schedulers between two reviews.
    """

    def __init__(self, service: ReviewService, deck_path: str | None = None):
        self.service = service
        self.deck_path = deck_path
        self.settings = service.effective_settings(deck_path)
        self.algorithm = self.settings.algorithm

    def compare(self, card_id: int, typed: str) -> MatchResult:
        return self.service.compare_typed_answer(card_id, typed)

    def submit(self, request: ReviewRequest, now: datetime | None = None) -> ReviewOutcome:
        return self.service.submit_review(request, algorithm=self.algorithm, now=now)
