"""
Ports for the sync protocol.

`SyncRemote` is what the reconciler talks to; `AuthorityStore` is what the
identity authority persists into.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime

from flashmark.domain.models import Card, CardState, DeckSettings, GlobalSettings, Review

from .models import OrphanInfo, PullResult, StoredUpload, SyncFile, UploadResult


class SyncRemote(ABC):
    """
    Port for the remote identity authority, as seen from one device.

    Implementations:
        - HttpSyncRemote: talks to `flashmark serve` over HTTP.
        - LocalSyncRemote: calls an in-process IdentityAuthority.
    """

    @abstractmethod
    async def check_connectivity(self) -> bool:
        pass

    @abstractmethod
    async def upload(self, files: list[SyncFile]) -> UploadResult:
        """
        Upload watched files. Pending cards get ids; the rewritten file
        contents come back in `UploadResult.updated_files`.
        """
        pass

    @abstractmethod
    async def push_reviews(self, reviews: list[Review]) -> int:
        pass

    @abstractmethod
    async def pull(self, since: datetime | None) -> PullResult:
        pass

    @abstractmethod
    async def confirm_delete(self, card_ids: list[int]) -> int:
        pass

    async def aclose(self) -> None:
        return None


class AuthorityStore(ABC):
    """Port for the authority's own persistence (all devices)."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        pass

    @abstractmethod
    def create_device(self, device_id: str, token: str, name: str | None) -> None:
        pass

    @abstractmethod
    def device_for_token(self, token: str) -> str | None:
        pass

    @abstractmethod
    def next_card_id(self) -> int:
        pass

    @abstractmethod
    def reserve_ids_through(self, value: int) -> None:
        """Advance the sequence past an id that was written by hand."""
        pass

    @abstractmethod
    def card_owner(self, card_id: int) -> str | None:
        pass

    @abstractmethod
    def upsert_card(self, device_id: str, card: Card, at: datetime) -> None:
        pass

    @abstractmethod
    def live_cards(self, device_id: str) -> list[OrphanInfo]:
        """Non-deleted cards known for the device, with question previews."""
        pass

    @abstractmethod
    def soft_delete_cards(self, device_id: str, card_ids: list[int], at: datetime) -> int:
        pass

    @abstractmethod
    def get_upload(self, device_id: str, path: str) -> StoredUpload | None:
        pass

    @abstractmethod
    def put_upload(self, device_id: str, path: str, upload: StoredUpload, at: datetime) -> None:
        pass

    @abstractmethod
    def insert_review(self, device_id: str, review: Review) -> None:
        pass

    @abstractmethod
    def put_card_state(self, device_id: str, card_id: int, state: CardState, at: datetime) -> None:
        pass

    @abstractmethod
    def cards_since(self, device_id: str, since: datetime | None) -> list[Card]:
        pass

    @abstractmethod
    def card_states_since(
        self, device_id: str, since: datetime | None
    ) -> list[tuple[int, CardState]]:
        pass

    @abstractmethod
    def list_reviews(self, device_id: str, card_id: int) -> list[Review]:
        pass

    @abstractmethod
    def get_global_settings(self, device_id: str) -> GlobalSettings | None:
        pass

    @abstractmethod
    def put_global_settings(self, device_id: str, settings: GlobalSettings) -> None:
        pass

    @abstractmethod
    def list_deck_settings(self, device_id: str) -> list[DeckSettings]:
        pass

    @abstractmethod
    def put_deck_settings(self, device_id: str, settings: DeckSettings) -> None:
        pass
