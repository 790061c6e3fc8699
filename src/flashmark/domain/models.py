"""
Domain models for cards, learning state, reviews and settings.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from .constants import (
    DEFAULT_DAILY_RESET_HOUR,
    DEFAULT_FUZZY_THRESHOLD,
    DEFAULT_NEW_CARDS_PER_DAY,
    DEFAULT_REVIEWS_PER_DAY,
    SM2_INITIAL_EASE,
)
from .errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _coerce_enum(enum_cls, value, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"unknown {what}: {value!r}") from None


class CardStatus(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


class RatingScale(str, Enum):
    FOUR_POINT = "4point"
    TWO_POINT = "2point"

    @classmethod
    def parse(cls, value: "RatingScale | str") -> "RatingScale":
        return _coerce_enum(cls, value, "rating scale")


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @classmethod
    def parse(cls, value: "Rating | int | str") -> "Rating":
        """Accept a Rating, its 1-4 value or its lowercase name. Never clamps."""
        if isinstance(value, Rating):
            return value
        if isinstance(value, bool):
            raise ValidationError(f"invalid rating: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError(f"rating must be 1-4, got {value}") from None
        if isinstance(value, str):
            key = value.strip()
            if key.isdigit():
                return cls.parse(int(key))
            try:
                return cls[key.upper()]
            except KeyError:
                raise ValidationError(f"invalid rating: {value!r}") from None
        raise ValidationError(f"invalid rating: {value!r}")

    @classmethod
    def from_two_point(cls, correct: bool) -> "Rating":
        return cls.GOOD if correct else cls.AGAIN

    @classmethod
    def from_scale(cls, value: int, scale: RatingScale | str) -> "Rating":
        """Map a raw button value on the given scale to a 4-point rating."""
        scale = RatingScale.parse(scale)
        if scale is RatingScale.TWO_POINT:
            if isinstance(value, bool) or value not in (1, 2):
                raise ValidationError(f"2point rating must be 1 or 2, got {value!r}")
            return cls.from_two_point(value == 2)
        return cls.parse(value)


class AnswerMode(str, Enum):
    FLIP = "flip"
    TYPED = "typed"

    @classmethod
    def parse(cls, value: "AnswerMode | str") -> "AnswerMode":
        return _coerce_enum(cls, value, "answer mode")


class MatchingMode(str, Enum):
    EXACT = "exact"
    CASE_INSENSITIVE = "case_insensitive"
    FUZZY = "fuzzy"

    @classmethod
    def parse(cls, value: "MatchingMode | str") -> "MatchingMode":
        return _coerce_enum(cls, value, "matching mode")


class Algorithm(str, Enum):
    SM2 = "sm2"
    FSRS = "fsrs"

    @classmethod
    def parse(cls, value: "Algorithm | str") -> "Algorithm":
        return _coerce_enum(cls, value, "algorithm")


# ---------- Cards ----------


@dataclass(frozen=True)
class Card:
    """
    A flashcard with an authority-assigned id.

    Attributes:
        id: Globally unique, never reused, even after deletion.
        deck_path: `/`-delimited deck hierarchy.
        source_file: Path of the markdown file relative to its watched root.
        deleted_at: Soft-delete timestamp; None while the card is live.
    """

    id: int
    deck_path: str
    question: str
    answer: str
    source_file: str
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class CardState:
    """
    Learning state of one card on one device.

    Produced only by a scheduler; a review never mutates a state in place.
    `stability`/`difficulty` are only populated under FSRS.
    """

    status: CardStatus = CardStatus.NEW
    interval_days: float = 0.0
    ease_factor: float = SM2_INITIAL_EASE
    stability: float | None = None
    difficulty: float | None = None
    lapses: int = 0
    reviews_count: int = 0
    due_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "interval_days": self.interval_days,
            "ease_factor": self.ease_factor,
            "stability": self.stability,
            "difficulty": self.difficulty,
            "lapses": self.lapses,
            "reviews_count": self.reviews_count,
            "due_date": self.due_date.isoformat() if self.due_date else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CardState":
        due = data.get("due_date")
        if isinstance(due, str):
            due = parse_timestamp(due)
        elif isinstance(due, datetime):
            due = ensure_utc(due)
        return cls(
            status=_coerce_enum(CardStatus, data.get("status", "new"), "card status"),
            interval_days=float(data.get("interval_days", 0.0)),
            ease_factor=float(data.get("ease_factor", SM2_INITIAL_EASE)),
            stability=data.get("stability"),
            difficulty=data.get("difficulty"),
            lapses=int(data.get("lapses", 0)),
            reviews_count=int(data.get("reviews_count", 0)),
            due_date=due,
        )


@dataclass(frozen=True)
class Review:
    """
    Append-only record of one scheduling event.

    `algorithm` pins the scheduler that produced the transition so the
    history can be replayed regardless of later settings changes.
    `state_after` is the full resulting state, used by the authority for
    last-write-wins.
    """

    card_id: int
    reviewed_at: datetime
    rating: int
    rating_scale: RatingScale
    answer_mode: AnswerMode
    algorithm: Algorithm
    interval_before: float
    interval_after: float
    ease_before: float
    ease_after: float
    typed_answer: str | None = None
    was_correct: bool | None = None
    time_taken_ms: int | None = None
    state_after: CardState | None = None
    id: int | None = None
    synced: bool = False


# ---------- Settings ----------


@dataclass(frozen=True)
class GlobalSettings:
    algorithm: Algorithm = Algorithm.SM2
    rating_scale: RatingScale = RatingScale.FOUR_POINT
    matching_mode: MatchingMode = MatchingMode.FUZZY
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD
    new_cards_per_day: int = DEFAULT_NEW_CARDS_PER_DAY
    reviews_per_day: int = DEFAULT_REVIEWS_PER_DAY
    daily_reset_hour: int = DEFAULT_DAILY_RESET_HOUR


@dataclass(frozen=True)
class DeckSettings:
    """Per-deck overrides. `None` means "fall through to global"."""

    deck_path: str
    algorithm: Algorithm | None = None
    rating_scale: RatingScale | None = None
    matching_mode: MatchingMode | None = None
    fuzzy_threshold: float | None = None
    new_cards_per_day: int | None = None
    reviews_per_day: int | None = None


_OVERRIDABLE = (
    "algorithm",
    "rating_scale",
    "matching_mode",
    "fuzzy_threshold",
    "new_cards_per_day",
    "reviews_per_day",
)


@dataclass(frozen=True)
class EffectiveSettings:
    algorithm: Algorithm
    rating_scale: RatingScale
    matching_mode: MatchingMode
    fuzzy_threshold: float
    new_cards_per_day: int
    reviews_per_day: int
    daily_reset_hour: int

    @classmethod
    def merge(cls, global_: GlobalSettings, deck: DeckSettings | None = None) -> "EffectiveSettings":
        """Deck override wins per field; daily_reset_hour is always global."""
        values = {name: getattr(global_, name) for name in _OVERRIDABLE}
        if deck is not None:
            for name in _OVERRIDABLE:
                override = getattr(deck, name)
                if override is not None:
                    values[name] = override
        return cls(daily_reset_hour=global_.daily_reset_hour, **values)


# ---------- Sync bookkeeping ----------


@dataclass(frozen=True)
class SyncState:
    last_sync_at: datetime | None = None
    pending_changes: int = 0


# ---------- Parser output ----------


@dataclass(frozen=True)
class CardRecord:
    """A card as found in markdown. `id is None` marks a pending card."""

    id: int | None
    question: str
    answer: str
    line_number: int

    @property
    def is_pending(self) -> bool:
        return self.id is None


@dataclass(frozen=True)
class ParseWarning:
    line: int
    message: str

    def __str__(self) -> str:
        return f"line {self.line}: {self.message}"


@dataclass
class ParseResult:
    records: list[CardRecord] = field(default_factory=list)
    warnings: list[ParseWarning] = field(default_factory=list)

    @property
    def identified(self) -> list[CardRecord]:
        return [r for r in self.records if not r.is_pending]

    @property
    def pending(self) -> list[CardRecord]:
        return [r for r in self.records if r.is_pending]


# ---------- Matching ----------


class DiffType(str, Enum):
    SAME = "same"
    ADDED = "added"  # only in the typed answer
    REMOVED = "removed"  # only in the correct answer


@dataclass(frozen=True)
class DiffSegment:
    text: str
    diff_type: DiffType


@dataclass(frozen=True)
class MatchResult:
    is_correct: bool
    similarity: float
    matching_mode: MatchingMode
    normalized_typed: str
    normalized_correct: str
    diff: list[DiffSegment] = field(default_factory=list)


# ---------- Study ----------


@dataclass(frozen=True)
class Deck:
    path: str
    name: str
    card_count: int
    new_count: int
    due_count: int


@dataclass
class StudyQueue:
    new_cards: list[Card]
    review_cards: list[Card]
    new_remaining: int
    review_remaining: int
