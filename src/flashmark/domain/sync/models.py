"""
Domain models for the sync protocol.

Pure data: the reconciler, the authority and both remote adapters
exchange these, never wire payloads.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from flashmark.domain.models import Card, CardState, DeckSettings, GlobalSettings


class SyncStage(str, Enum):
    CONNECTING = "connecting"
    UPLOADING_FILES = "uploading_files"
    PARSING_CARDS = "parsing_cards"
    RECEIVING_UPDATES = "receiving_updates"
    PUSHING_REVIEWS = "pushing_reviews"
    PULLING_STATE = "pulling_state"
    APPLYING_CHANGES = "applying_changes"
    WRITING_FILES = "writing_files"

    @property
    def progress(self) -> float:
        return STAGE_ORDER.index(self) / len(STAGE_ORDER)

    def next(self) -> "SyncStage | None":
        idx = STAGE_ORDER.index(self) + 1
        return STAGE_ORDER[idx] if idx < len(STAGE_ORDER) else None


STAGE_ORDER: list[SyncStage] = list(SyncStage)


class SyncStatusKind(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    AWAITING_ORPHAN_CONFIRMATION = "awaiting_orphan_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class OrphanInfo:
    card_id: int
    question_preview: str


@dataclass
class SyncStats:
    files_uploaded: int = 0
    cards_created: int = 0
    cards_updated: int = 0
    orphans_deleted: int = 0
    reviews_synced: int = 0
    states_pulled: int = 0


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the reconciler's state machine, safe to hand to any caller."""

    kind: SyncStatusKind
    stage: SyncStage | None = None
    progress: float = 0.0
    orphans: tuple[OrphanInfo, ...] = ()
    synced_at: datetime | None = None
    stats: SyncStats | None = None
    error: str | None = None

    @classmethod
    def idle(cls) -> "SyncStatus":
        return cls(SyncStatusKind.IDLE)

    @classmethod
    def syncing(cls, stage: SyncStage) -> "SyncStatus":
        return cls(SyncStatusKind.SYNCING, stage=stage, progress=stage.progress)

    @classmethod
    def awaiting(cls, orphans: list[OrphanInfo]) -> "SyncStatus":
        return cls(SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION, orphans=tuple(orphans))

    @classmethod
    def completed(cls, synced_at: datetime, stats: SyncStats) -> "SyncStatus":
        return cls(SyncStatusKind.COMPLETED, progress=1.0, synced_at=synced_at, stats=stats)

    @classmethod
    def failed(cls, error: str) -> "SyncStatus":
        return cls(SyncStatusKind.FAILED, error=error)

    @property
    def is_syncing(self) -> bool:
        return self.kind is SyncStatusKind.SYNCING

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind.value}
        if self.stage is not None:
            data["stage"] = self.stage.value
            data["progress"] = self.progress
        if self.kind is SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION:
            data["orphans"] = [asdict(o) for o in self.orphans]
        if self.synced_at is not None:
            data["synced_at"] = self.synced_at.isoformat()
        if self.stats is not None:
            data["stats"] = asdict(self.stats)
        if self.error is not None:
            data["error"] = self.error
        return data


# ---------- Remote exchange ----------


@dataclass(frozen=True)
class SyncFile:
    path: str
    content: str
    hash: str


@dataclass(frozen=True)
class IdAssignment:
    path: str
    line: int
    id: int


@dataclass
class UploadResult:
    updated_files: dict[str, str] = field(default_factory=dict)  # path -> rewritten content
    new_ids: list[IdAssignment] = field(default_factory=list)
    orphans: list[OrphanInfo] = field(default_factory=list)


@dataclass
class PullResult:
    cards: list[Card]
    card_states: list[tuple[int, CardState]]
    global_settings: GlobalSettings | None  # None until the device saved settings remotely
    deck_settings: list[DeckSettings]
    server_time: datetime


@dataclass(frozen=True)
class DeviceCredentials:
    device_id: str
    token: str


@dataclass(frozen=True)
class StoredUpload:
    """What the authority remembers about the last payload for one file."""

    received_hash: str
    result_content: str
    new_ids: list[IdAssignment]
