"""
Ports (interfaces) for local persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime

from .models import (
    Card,
    CardState,
    DeckSettings,
    GlobalSettings,
    Review,
    SyncState,
)


class CardStore(ABC):
    """
    Port for the local card/state store.

    Implementations:
        - SqliteCardStore: SQLite file (or `:memory:`) per device.

    Every method commits on its own unless called inside `transaction()`,
    in which case the whole block commits or rolls back as one unit.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        pass

    # ---------- Cards ----------

    @abstractmethod
    def get_card(self, card_id: int) -> Card | None:
        pass

    @abstractmethod
    def list_cards(self, deck_path: str | None = None, include_deleted: bool = False) -> list[Card]:
        """
        List cards, optionally restricted to a deck and its sub-decks.

        Soft-deleted cards are excluded unless `include_deleted` is set.
        """
        pass

    @abstractmethod
    def upsert_cards(self, cards: list[Card]) -> int:
        pass

    @abstractmethod
    def soft_delete(self, card_ids: list[int], at: datetime) -> int:
        """Set `deleted_at` on live cards. Returns how many changed."""
        pass

    # ---------- Learning state ----------

    @abstractmethod
    def get_card_state(self, card_id: int, device: str) -> CardState | None:
        pass

    @abstractmethod
    def put_card_state(
        self, card_id: int, device: str, state: CardState, synced: bool = False
    ) -> None:
        pass

    @abstractmethod
    def list_card_states(self, device: str) -> dict[int, CardState]:
        pass

    # ---------- Review queue ----------

    @abstractmethod
    def enqueue_pending_review(self, review: Review) -> int:
        """Append a review to the sync queue. Returns its queue id."""
        pass

    @abstractmethod
    def drain_pending_reviews(self, up_to: int | None = None) -> list[Review]:
        """
        Return unsynced reviews in queue order without removing them.

        Args:
            up_to: Only include queue ids <= this high-water mark.
        """
        pass

    @abstractmethod
    def mark_reviews_synced(self, review_ids: list[int]) -> None:
        pass

    @abstractmethod
    def count_pending_reviews(self) -> int:
        pass

    @abstractmethod
    def last_review_id(self) -> int:
        """Highest queue id written so far (0 when empty)."""
        pass

    @abstractmethod
    def list_reviews(self, card_id: int) -> list[Review]:
        """Full review history of a card, synced or not."""
        pass

    # ---------- Settings ----------

    @abstractmethod
    def get_settings(self) -> GlobalSettings:
        pass

    @abstractmethod
    def put_settings(self, settings: GlobalSettings) -> None:
        pass

    @abstractmethod
    def get_deck_settings(self, deck_path: str) -> DeckSettings | None:
        pass

    @abstractmethod
    def put_deck_settings(self, settings: DeckSettings) -> None:
        pass

    @abstractmethod
    def list_deck_settings(self) -> list[DeckSettings]:
        pass

    # ---------- Sync bookkeeping ----------

    @abstractmethod
    def get_sync_state(self) -> SyncState:
        pass

    @abstractmethod
    def put_sync_state(self, state: SyncState) -> None:
        pass
