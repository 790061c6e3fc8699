from datetime import datetime

from flashmark.application.sync.authority import IdentityAuthority
from flashmark.domain.models import Review
from flashmark.domain.sync.models import PullResult, SyncFile, UploadResult
from flashmark.domain.sync.ports import SyncRemote


class LocalSyncRemote(SyncRemote):
    """
    In-process remote bound to one device of an `IdentityAuthority`.

    Used for single-machine setups (`local://` endpoints) and in tests.
    """

    def __init__(self, authority: IdentityAuthority, device_id: str):
        self.authority = authority
        self.device_id = device_id

    async def check_connectivity(self) -> bool:
        return True

    async def upload(self, files: list[SyncFile]) -> UploadResult:
        return self.authority.upload(self.device_id, files)

    async def push_reviews(self, reviews: list[Review]) -> int:
        return self.authority.push_reviews(self.device_id, reviews)

    async def pull(self, since: datetime | None) -> PullResult:
        return self.authority.pull(self.device_id, since)

    async def confirm_delete(self, card_ids: list[int]) -> int:
        return self.authority.confirm_delete(self.device_id, card_ids)
