# Domain Sync Package
from .models import (
    DeviceCredentials,
    IdAssignment,
    OrphanInfo,
    PullResult,
    SyncFile,
    SyncStage,
    SyncStats,
    SyncStatus,
    SyncStatusKind,
    UploadResult,
)
from .ports import AuthorityStore, SyncRemote

__all__ = [
    "AuthorityStore",
    "DeviceCredentials",
    "IdAssignment",
    "OrphanInfo",
    "PullResult",
    "SyncFile",
    "SyncRemote",
    "SyncStage",
    "SyncStats",
    "SyncStatus",
    "SyncStatusKind",
    "UploadResult",
]
