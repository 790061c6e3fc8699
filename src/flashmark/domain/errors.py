"""Error taxonomy shared by every layer."""


class FlashmarkError(Exception):
    """Base class for all flashmark errors."""


class ValidationError(FlashmarkError, ValueError):
    """Input rejected at the call boundary (bad rating, unknown algorithm, ...)."""


class UnknownCard(FlashmarkError, LookupError):
    def __init__(self, card_id: int):
        super().__init__(f"card {card_id} does not exist")
        self.card_id = card_id


class ConflictError(FlashmarkError):
    """
    Reserved. Concurrent CardState writes are resolved by last-write-wins
    and never surface as errors.
    """


class IdentityExhaustion(FlashmarkError):
    """The card id sequence ran past the 64-bit range."""


class SyncError(FlashmarkError):
    """A sync stage failed. The message is meant for display."""


class RemoteUnavailable(SyncError):
    pass


class RemoteRejected(SyncError):
    def __init__(self, status: int, message: str):
        super().__init__(f"Backend error: {status} - {message}")
        self.status = status
        self.message = message


class NotAuthenticated(SyncError):
    def __init__(self, message: str = "Not authenticated - please register device first"):
        super().__init__(message)


class SyncAlreadyInProgress(SyncError):
    def __init__(self):
        super().__init__("Sync already in progress")


class SyncCancelled(SyncError):
    def __init__(self):
        super().__init__("Sync cancelled by user")
