"""
Identity authority: the remote side of the sync protocol.

Hands out card ids from a single monotonic sequence, keeps the canonical
copy of every device's cards, reviews and learning state, and reports
orphans. `flashmark serve` exposes it over HTTP; `LocalSyncRemote` calls
it in-process.
"""

import logging
import secrets
from collections.abc import Callable
from datetime import datetime

from ulid import ULID

from flashmark.application.parser import extract_deck_path, hash_content, inject_ids, parse
from flashmark.domain.errors import NotAuthenticated
from flashmark.domain.models import (
    Card,
    CardRecord,
    DeckSettings,
    GlobalSettings,
    Review,
    utc_now,
)
from flashmark.domain.sync.models import (
    DeviceCredentials,
    IdAssignment,
    OrphanInfo,
    PullResult,
    StoredUpload,
    SyncFile,
    UploadResult,
)
from flashmark.domain.sync.ports import AuthorityStore

logger = logging.getLogger(__name__)


def generate_device_id() -> str:
    return f"device_{ULID()}"


class IdentityAuthority:
    def __init__(self, store: AuthorityStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def register_device(self, name: str | None = None) -> DeviceCredentials:
        creds = DeviceCredentials(device_id=generate_device_id(), token=secrets.token_urlsafe(32))
        self.store.create_device(creds.device_id, creds.token, name)
        logger.info(f"[authority] registered {creds.device_id} ({name or 'unnamed'})")
        return creds

    def authenticate(self, token: str | None) -> str:
        """Resolve a bearer token to its device id."""
        device_id = self.store.device_for_token(token) if token else None
        if device_id is None:
            raise NotAuthenticated("Invalid or missing device token")
        return device_id

    # ---------- Upload ----------

    def upload(self, device_id: str, files: list[SyncFile]) -> UploadResult:
        """
        Assign ids to pending cards and detect orphans.

        A file whose content hash matches the last payload received for the
        same path replays the stored result, so resending a payload never
        assigns new ids. Everything runs in one transaction.
        """
        result = UploadResult()
        present: set[int] = set()
        now = self.clock()

        with self.store.transaction():
            for file in files:
                received_hash = hash_content(file.content)
                if file.hash and file.hash != received_hash:
                    logger.warning(f"[authority] hash mismatch for {file.path}, using content")

                stored = self.store.get_upload(device_id, file.path)
                if stored is not None and stored.received_hash == received_hash:
                    logger.debug(f"[authority] replaying upload of {file.path}")
                    upload = stored
                    self._revive(device_id, file.path, stored, now)
                else:
                    upload = self._ingest(device_id, file, received_hash, now)
                    self.store.put_upload(device_id, file.path, upload, now)

                if upload.result_content != file.content:
                    result.updated_files[file.path] = upload.result_content
                result.new_ids.extend(upload.new_ids)
                present.update(r.id for r in parse(upload.result_content).identified)

            result.orphans = self.list_orphans(device_id, present)

        logger.info(
            f"[authority] {device_id}: {len(files)} files, {len(result.new_ids)} new ids, "
            f"{len(result.orphans)} orphans"
        )
        return result

    def list_orphans(self, device_id: str, present: set[int]) -> list[OrphanInfo]:
        """Previously known, non-deleted cards of the device missing from `present`."""
        return [o for o in self.store.live_cards(device_id) if o.card_id not in present]

    def _ingest(
        self, device_id: str, file: SyncFile, received_hash: str, now: datetime
    ) -> StoredUpload:
        parsed = parse(file.content)
        assignments: dict[int, int] = {}
        new_ids: list[IdAssignment] = []

        for record in parsed.records:
            card_id = record.id
            if card_id is None:
                card_id = self.store.next_card_id()
                assignments[record.line_number] = card_id
                new_ids.append(IdAssignment(path=file.path, line=record.line_number, id=card_id))
            elif not self._claim(device_id, file.path, record):
                continue
            self._store_card(device_id, file.path, record, card_id, now)

        return StoredUpload(
            received_hash=received_hash,
            result_content=inject_ids(file.content, assignments),
            new_ids=new_ids,
        )

    def _revive(self, device_id: str, path: str, stored: StoredUpload, now: datetime) -> None:
        """Re-store cards of a replayed file that were deleted since it was first ingested."""
        live = {o.card_id for o in self.store.live_cards(device_id)}
        for record in parse(stored.result_content).identified:
            if record.id in live or not self._claim(device_id, path, record):
                continue
            logger.info(f"[authority] card {record.id} is back in {path}, restoring")
            self._store_card(device_id, path, record, record.id, now)

    def _claim(self, device_id: str, path: str, record: CardRecord) -> bool:
        owner = self.store.card_owner(record.id)
        if owner is not None and owner != device_id:
            logger.warning(
                f"[authority] {path}:{record.line_number} card {record.id} "
                f"belongs to another device, skipped"
            )
            return False
        if owner is None:
            self.store.reserve_ids_through(record.id)
        return True

    def _store_card(
        self, device_id: str, path: str, record: CardRecord, card_id: int, now: datetime
    ) -> None:
        self.store.upsert_card(
            device_id,
            Card(
                id=card_id,
                deck_path=extract_deck_path(path),
                question=record.question,
                answer=record.answer,
                source_file=path,
            ),
            now,
        )

    # ---------- Reviews & state ----------

    def push_reviews(self, device_id: str, reviews: list[Review]) -> int:
        """
        Append reviews and apply their resulting states last-write-wins.

        Reviews are applied in submission order; the last one for a card
        decides its stored CardState.
        """
        now = self.clock()
        with self.store.transaction():
            for review in reviews:
                self.store.insert_review(device_id, review)
                if review.state_after is not None:
                    self.store.put_card_state(device_id, review.card_id, review.state_after, now)
        return len(reviews)

    def pull(self, device_id: str, since: datetime | None) -> PullResult:
        server_time = self.clock()
        return PullResult(
            cards=self.store.cards_since(device_id, since),
            card_states=self.store.card_states_since(device_id, since),
            global_settings=self.store.get_global_settings(device_id),
            deck_settings=self.store.list_deck_settings(device_id),
            server_time=server_time,
        )

    def confirm_delete(self, device_id: str, card_ids: list[int]) -> int:
        count = self.store.soft_delete_cards(device_id, card_ids, self.clock())
        logger.info(f"[authority] {device_id}: soft-deleted {count} cards")
        return count

    def save_settings(
        self,
        device_id: str,
        global_settings: GlobalSettings | None,
        deck_settings: list[DeckSettings],
    ) -> None:
        """Store the settings that later pulls hand to the device."""
        with self.store.transaction():
            if global_settings is not None:
                self.store.put_global_settings(device_id, global_settings)
            for deck in deck_settings:
                self.store.put_deck_settings(device_id, deck)
