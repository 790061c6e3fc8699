"""
JSON payloads of the authority's HTTP API.

Shared by `flashmark.server` and `HttpSyncRemote` so both ends validate the
same shapes. Conversion helpers translate to and from domain models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from flashmark.domain.models import (
    Algorithm,
    AnswerMode,
    Card,
    CardState,
    CardStatus,
    DeckSettings,
    GlobalSettings,
    MatchingMode,
    RatingScale,
    Review,
    ensure_utc,
)

from .models import (
    IdAssignment,
    OrphanInfo,
    PullResult,
    SyncFile,
    UploadResult,
)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class DeviceRegisterRequest(BaseModel):
    name: str | None = None


class DeviceRegisterResponse(BaseModel):
    device_id: str
    token: str


# ---------- Upload ----------


class SyncFileModel(BaseModel):
    path: str
    content: str
    hash: str


class SyncUploadRequest(BaseModel):
    files: list[SyncFileModel]


class UpdatedFileModel(BaseModel):
    path: str
    content: str


class NewIdAssignmentModel(BaseModel):
    path: str
    line: int
    id: int


class OrphanedCardModel(BaseModel):
    id: int
    question_preview: str


class SyncUploadResponse(BaseModel):
    updated_files: list[UpdatedFileModel] = Field(default_factory=list)
    new_ids: list[NewIdAssignmentModel] = Field(default_factory=list)
    orphaned_cards: list[OrphanedCardModel] = Field(default_factory=list)


# ---------- Reviews ----------


class CardStateModel(BaseModel):
    card_id: int | None = None
    status: CardStatus = CardStatus.NEW
    interval_days: float = 0.0
    ease_factor: float = 2.5
    stability: float | None = None
    difficulty: float | None = None
    lapses: int = 0
    reviews_count: int = 0
    due_date: datetime | None = None


class ReviewSubmission(BaseModel):
    card_id: int
    reviewed_at: datetime
    rating: int
    rating_scale: RatingScale
    answer_mode: AnswerMode
    typed_answer: str | None = None
    was_correct: bool | None = None
    time_taken_ms: int | None = None
    interval_before: float
    interval_after: float
    ease_before: float
    ease_after: float
    algorithm: Algorithm
    state_after: CardStateModel | None = None


class PushReviewsRequest(BaseModel):
    reviews: list[ReviewSubmission]


class PushReviewsResponse(BaseModel):
    synced_count: int


# ---------- Pull ----------


class SyncPullRequest(BaseModel):
    last_sync_at: datetime | None = None


class CardModel(BaseModel):
    id: int
    deck_path: str
    question: str
    answer: str
    source_file: str
    deleted_at: datetime | None = None


class GlobalSettingsModel(BaseModel):
    algorithm: Algorithm = Algorithm.SM2
    rating_scale: RatingScale = RatingScale.FOUR_POINT
    matching_mode: MatchingMode = MatchingMode.FUZZY
    fuzzy_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    new_cards_per_day: int = 20
    reviews_per_day: int = 200
    daily_reset_hour: int = Field(default=0, ge=0, le=23)


class DeckSettingsModel(BaseModel):
    deck_path: str
    algorithm: Algorithm | None = None
    rating_scale: RatingScale | None = None
    matching_mode: MatchingMode | None = None
    fuzzy_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    new_cards_per_day: int | None = None
    reviews_per_day: int | None = None


class SyncedSettings(BaseModel):
    global_: GlobalSettingsModel | None = Field(default=None, alias="global")
    decks: list[DeckSettingsModel] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class SyncPullResponse(BaseModel):
    cards: list[CardModel]
    card_states: list[CardStateModel]
    settings: SyncedSettings
    server_time: datetime


class ConfirmDeleteRequest(BaseModel):
    card_ids: list[int]


class ConfirmDeleteResponse(BaseModel):
    deleted_count: int


# ---------- Conversions ----------


def state_to_model(state: CardState, card_id: int | None = None) -> CardStateModel:
    return CardStateModel(card_id=card_id, **state.to_dict())


def state_from_model(model: CardStateModel) -> CardState:
    return CardState(
        status=model.status,
        interval_days=model.interval_days,
        ease_factor=model.ease_factor,
        stability=model.stability,
        difficulty=model.difficulty,
        lapses=model.lapses,
        reviews_count=model.reviews_count,
        due_date=ensure_utc(model.due_date) if model.due_date else None,
    )


def review_to_submission(review: Review) -> ReviewSubmission:
    return ReviewSubmission(
        card_id=review.card_id,
        reviewed_at=review.reviewed_at,
        rating=review.rating,
        rating_scale=review.rating_scale,
        answer_mode=review.answer_mode,
        typed_answer=review.typed_answer,
        was_correct=review.was_correct,
        time_taken_ms=review.time_taken_ms,
        interval_before=review.interval_before,
        interval_after=review.interval_after,
        ease_before=review.ease_before,
        ease_after=review.ease_after,
        algorithm=review.algorithm,
        state_after=state_to_model(review.state_after) if review.state_after else None,
    )


def review_from_submission(sub: ReviewSubmission) -> Review:
    return Review(
        card_id=sub.card_id,
        reviewed_at=ensure_utc(sub.reviewed_at),
        rating=sub.rating,
        rating_scale=sub.rating_scale,
        answer_mode=sub.answer_mode,
        algorithm=sub.algorithm,
        interval_before=sub.interval_before,
        interval_after=sub.interval_after,
        ease_before=sub.ease_before,
        ease_after=sub.ease_after,
        typed_answer=sub.typed_answer,
        was_correct=sub.was_correct,
        time_taken_ms=sub.time_taken_ms,
        state_after=state_from_model(sub.state_after) if sub.state_after else None,
    )


def files_to_request(files: list[SyncFile]) -> SyncUploadRequest:
    return SyncUploadRequest(
        files=[SyncFileModel(path=f.path, content=f.content, hash=f.hash) for f in files]
    )


def files_from_request(req: SyncUploadRequest) -> list[SyncFile]:
    return [SyncFile(path=f.path, content=f.content, hash=f.hash) for f in req.files]


def upload_to_response(result: UploadResult) -> SyncUploadResponse:
    return SyncUploadResponse(
        updated_files=[
            UpdatedFileModel(path=p, content=c) for p, c in result.updated_files.items()
        ],
        new_ids=[NewIdAssignmentModel(path=a.path, line=a.line, id=a.id) for a in result.new_ids],
        orphaned_cards=[
            OrphanedCardModel(id=o.card_id, question_preview=o.question_preview)
            for o in result.orphans
        ],
    )


def upload_from_response(resp: SyncUploadResponse) -> UploadResult:
    return UploadResult(
        updated_files={f.path: f.content for f in resp.updated_files},
        new_ids=[IdAssignment(path=a.path, line=a.line, id=a.id) for a in resp.new_ids],
        orphans=[
            OrphanInfo(card_id=o.id, question_preview=o.question_preview)
            for o in resp.orphaned_cards
        ],
    )


def card_to_model(card: Card) -> CardModel:
    return CardModel(
        id=card.id,
        deck_path=card.deck_path,
        question=card.question,
        answer=card.answer,
        source_file=card.source_file,
        deleted_at=card.deleted_at,
    )


def card_from_model(model: CardModel) -> Card:
    return Card(
        id=model.id,
        deck_path=model.deck_path,
        question=model.question,
        answer=model.answer,
        source_file=model.source_file,
        deleted_at=ensure_utc(model.deleted_at) if model.deleted_at else None,
    )


def pull_to_response(result: PullResult) -> SyncPullResponse:
    return SyncPullResponse(
        cards=[card_to_model(c) for c in result.cards],
        card_states=[state_to_model(s, card_id=cid) for cid, s in result.card_states],
        settings=SyncedSettings(
            global_=(
                GlobalSettingsModel(**vars(result.global_settings))
                if result.global_settings is not None
                else None
            ),
            decks=[DeckSettingsModel(**vars(d)) for d in result.deck_settings],
        ),
        server_time=result.server_time,
    )


def pull_from_response(resp: SyncPullResponse) -> PullResult:
    return PullResult(
        cards=[card_from_model(c) for c in resp.cards],
        card_states=[
            (s.card_id, state_from_model(s)) for s in resp.card_states if s.card_id is not None
        ],
        global_settings=(
            GlobalSettings(**resp.settings.global_.model_dump())
            if resp.settings.global_ is not None
            else None
        ),
        deck_settings=[DeckSettings(**d.model_dump()) for d in resp.settings.decks],
        server_time=ensure_utc(resp.server_time),
    )
