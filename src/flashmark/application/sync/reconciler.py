"""
Sync reconciler: the device side of the sync protocol.

One instance per device drives a small state machine::

    Idle -> Syncing{stage} -> AwaitingOrphanConfirmation | Completed | Failed

Each call to `run_sync_phase` runs exactly one stage. `start_sync` loops
over the stages until the machine leaves Syncing. Network calls are the
only suspension points; local writes of a stage commit as one store
transaction, so a failed stage leaves the store as it was when the stage
started.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from flashmark.application.parser import extract_deck_path, hash_content, parse
from flashmark.application.utils.fs import atomic_write_many, collect_watched_files, read_text
from flashmark.domain.errors import FlashmarkError, SyncCancelled, SyncError
from flashmark.domain.models import Card, SyncState, utc_now
from flashmark.domain.ports import CardStore
from flashmark.domain.sync.models import (
    OrphanInfo,
    PullResult,
    SyncFile,
    SyncStage,
    SyncStats,
    SyncStatus,
    SyncStatusKind,
    UploadResult,
)
from flashmark.domain.sync.ports import SyncRemote

logger = logging.getLogger(__name__)

RemoteFactory = Callable[[str], SyncRemote]


@dataclass
class _SyncRun:
    """Everything one sync carries from stage to stage."""

    endpoint: str
    watched_paths: list[Path]
    remote: SyncRemote
    review_mark: int
    stage: SyncStage = SyncStage.CONNECTING
    stats: SyncStats = field(default_factory=SyncStats)
    files: dict[str, Path] = field(default_factory=dict)
    uploaded: dict[str, str] = field(default_factory=dict)
    upload: UploadResult | None = None
    authoritative: dict[str, str] = field(default_factory=dict)
    cards: list[Card] = field(default_factory=list)
    orphans: list[OrphanInfo] = field(default_factory=list)
    orphans_resolved: bool = False
    pulled: PullResult | None = None


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, FlashmarkError):
        return str(exc)
    if isinstance(exc, OSError):
        return f"File error: {exc}"
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__


class SyncReconciler:
    """
    Reconciles the local store and watched markdown files with a remote authority.

    Args:
        store: Local card store.
        device_id: Device whose CardStates this reconciler owns.
        remote_factory: Builds a `SyncRemote` for an endpoint string.
        clock: Source of local timestamps (soft-delete time).
    """

    def __init__(
        self,
        store: CardStore,
        device_id: str,
        remote_factory: RemoteFactory,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.device_id = device_id
        self.remote_factory = remote_factory
        self.clock = clock
        self._status = SyncStatus.idle()
        self._run: _SyncRun | None = None
        self._cancel_requested = False
        self._lock = asyncio.Lock()

    def get_sync_status(self) -> SyncStatus:
        return self._status

    # ---------- Entry points ----------

    async def start_sync(self, remote_endpoint: str, watched_paths: Iterable[Path]) -> SyncStatus:
        """
        Run a whole sync and return where it stopped.

        A call made while another sync is in flight does not start a second
        one; it returns the current status instead.
        """
        if self._lock.locked() or self._status.is_syncing:
            logger.info("[sync] already in progress, returning current status")
            return self._status

        async with self._lock:
            await self.begin_sync(remote_endpoint, watched_paths)
            return await self._drive()

    async def begin_sync(self, remote_endpoint: str, watched_paths: Iterable[Path]) -> SyncStatus:
        """Enter Syncing{Connecting} without running any stage."""
        if self._status.is_syncing:
            return self._status
        if self._run is not None:
            # A new sync abandons one that was waiting on orphan confirmation.
            await self._close_run()

        self._cancel_requested = False
        self._run = _SyncRun(
            endpoint=remote_endpoint,
            watched_paths=[Path(p) for p in watched_paths],
            remote=self.remote_factory(remote_endpoint),
            review_mark=self.store.last_review_id(),
        )
        self._status = SyncStatus.syncing(SyncStage.CONNECTING)
        logger.info(f"[sync] starting against {remote_endpoint}")
        return self._status

    async def run_sync_phase(self) -> SyncStatus:
        """
        Run the current stage and advance.

        Returns the new status. Outside of Syncing this is a status query.
        Cancellation is honoured here, before the stage starts.
        """
        run = self._run
        if run is None or not self._status.is_syncing:
            return self._status

        if self._cancel_requested:
            await self._fail(SyncCancelled())
            return self._status

        stage = run.stage
        logger.debug(f"[sync] stage {stage.value}")
        try:
            halted = await self._STAGES[stage](self, run)
        except Exception as e:
            logger.error(f"[sync] stage {stage.value} failed: {e!r}")
            await self._fail(e)
            return self._status

        if halted:
            return self._status

        next_stage = stage.next()
        if next_stage is None:
            synced_at = run.pulled.server_time if run.pulled else self.clock()
            self._status = SyncStatus.completed(synced_at, run.stats)
            logger.info(f"[sync] completed: {run.stats}")
            await self._close_run()
        else:
            run.stage = next_stage
            self._status = SyncStatus.syncing(next_stage)
        return self._status

    async def cancel_sync(self) -> SyncStatus:
        """
        Request cancellation.

        A running stage finishes its atomic unit first; the run then stops
        with Failed("Sync cancelled by user"). A sync waiting on orphan
        confirmation is cancelled immediately.
        """
        if self._status.is_syncing:
            self._cancel_requested = True
        elif self._status.kind is SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION:
            await self._fail(SyncCancelled())
        return self._status

    async def confirm_orphan_deletion(self, card_ids: list[int]) -> int:
        """
        Soft-delete confirmed orphans remotely and locally, then resume.

        Ids that were not reported as orphans are ignored. Returns how many
        cards the authority deleted.
        """
        run = self._awaiting_run()
        known = {o.card_id for o in run.orphans}
        ids = [cid for cid in card_ids if cid in known]
        ignored = sorted(set(card_ids) - known)
        if ignored:
            logger.warning(f"[sync] ignoring ids that are not orphans: {ignored}")

        async with self._lock:
            deleted = 0
            try:
                if ids:
                    deleted = await run.remote.confirm_delete(ids)
                    self.store.soft_delete(ids, self.clock())
            except Exception as e:
                logger.error(f"[sync] orphan deletion failed: {e!r}")
                await self._fail(e)
                return 0

            run.stats.orphans_deleted = deleted
            self._resume(run)
            await self._drive()
        return deleted

    async def skip_orphan_deletion(self) -> SyncStats:
        """Keep the orphans (they are flagged again next sync) and resume."""
        run = self._awaiting_run()
        async with self._lock:
            logger.info(f"[sync] keeping {len(run.orphans)} orphans")
            self._resume(run)
            await self._drive()
        return run.stats

    # ---------- State machine plumbing ----------

    async def _drive(self) -> SyncStatus:
        while self._status.is_syncing:
            await self.run_sync_phase()
        return self._status

    def _awaiting_run(self) -> _SyncRun:
        if self._status.kind is not SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION or not self._run:
            raise SyncError("No orphan confirmation is pending")
        return self._run

    def _resume(self, run: _SyncRun) -> None:
        run.orphans_resolved = True
        run.stage = SyncStage.PUSHING_REVIEWS
        self._status = SyncStatus.syncing(run.stage)

    async def _fail(self, exc: BaseException) -> None:
        self._status = SyncStatus.failed(describe_error(exc))
        self._cancel_requested = False
        await self._close_run()

    async def _close_run(self) -> None:
        run, self._run = self._run, None
        if run is None:
            return
        try:
            await run.remote.aclose()
        except Exception as e:
            logger.warning(f"[sync] closing remote failed: {e!r}")

    # ---------- Stages ----------
    # Each returns True when the run halts without advancing.

    async def _connect(self, run: _SyncRun) -> bool:
        if not await run.remote.check_connectivity():
            raise SyncError(f"Cannot reach sync server at {run.endpoint}")
        return False

    async def _upload_files(self, run: _SyncRun) -> bool:
        run.files = collect_watched_files(run.watched_paths)
        sync_files: list[SyncFile] = []
        pending = 0
        for rel_path, path in run.files.items():
            content = read_text(path)
            result = parse(content)
            for warning in result.warnings:
                logger.warning(f"[parse] {rel_path}: {warning}")
            pending += len(result.pending)
            run.uploaded[rel_path] = content
            sync_files.append(SyncFile(path=rel_path, content=content, hash=hash_content(content)))

        logger.info(f"[sync] uploading {len(sync_files)} files ({pending} cards without ids)")
        run.upload = await run.remote.upload(sync_files)
        run.stats.files_uploaded = len(sync_files)
        return False

    async def _parse_cards(self, run: _SyncRun) -> bool:
        updated = run.upload.updated_files if run.upload else {}
        run.authoritative = {
            path: updated.get(path, content) for path, content in run.uploaded.items()
        }

        cards: list[Card] = []
        for path, content in run.authoritative.items():
            result = parse(content)
            if result.pending:
                first = result.pending[0]
                raise SyncError(
                    f"{path}:{first.line_number} still has no card id after upload"
                )
            deck_path = extract_deck_path(path)
            cards.extend(
                Card(
                    id=r.id,
                    deck_path=deck_path,
                    question=r.question,
                    answer=r.answer,
                    source_file=path,
                )
                for r in result.records
            )
        run.cards = cards
        return False

    async def _receive_updates(self, run: _SyncRun) -> bool:
        orphans = run.upload.orphans if run.upload else []
        if orphans and not run.orphans_resolved:
            run.orphans = list(orphans)
            self._status = SyncStatus.awaiting(run.orphans)
            logger.info(f"[sync] {len(orphans)} orphaned cards need confirmation")
            return True
        return False

    async def _push_reviews(self, run: _SyncRun) -> bool:
        reviews = self.store.drain_pending_reviews(up_to=run.review_mark)
        if not reviews:
            return False
        await run.remote.push_reviews(reviews)
        with self.store.transaction():
            self.store.mark_reviews_synced([r.id for r in reviews])
        run.stats.reviews_synced = len(reviews)
        logger.info(f"[sync] pushed {len(reviews)} reviews")
        return False

    async def _pull_state(self, run: _SyncRun) -> bool:
        since = self.store.get_sync_state().last_sync_at
        run.pulled = await run.remote.pull(since)
        return False

    async def _apply_changes(self, run: _SyncRun) -> bool:
        pulled = run.pulled
        with self.store.transaction():
            created = sum(1 for c in run.cards if self.store.get_card(c.id) is None)
            self.store.upsert_cards(run.cards)
            run.stats.cards_created = created
            run.stats.cards_updated = len(run.cards) - created

            if pulled is not None:
                self.store.upsert_cards(pulled.cards)

                # Reviews recorded after the snapshot are newer than anything pulled.
                unsynced = {r.card_id for r in self.store.drain_pending_reviews()}
                applied = 0
                for card_id, state in pulled.card_states:
                    if card_id in unsynced:
                        continue
                    self.store.put_card_state(card_id, self.device_id, state, synced=True)
                    applied += 1
                run.stats.states_pulled = applied

                if pulled.global_settings is not None:
                    self.store.put_settings(pulled.global_settings)
                for deck in pulled.deck_settings:
                    self.store.put_deck_settings(deck)
        return False

    async def _write_files(self, run: _SyncRun) -> bool:
        writes: dict[Path, str] = {}
        for rel_path, content in run.authoritative.items():
            if content == run.uploaded[rel_path]:
                continue
            path = run.files[rel_path]
            if read_text(path) != run.uploaded[rel_path]:
                logger.warning(f"[sync] {rel_path} changed during sync, not rewriting")
                continue
            writes[path] = content

        atomic_write_many(writes)
        for path in writes:
            logger.info(f"[write] {path}")

        synced_at = run.pulled.server_time if run.pulled else self.clock()
        self.store.put_sync_state(
            SyncState(last_sync_at=synced_at, pending_changes=self.store.count_pending_reviews())
        )
        return False

    _STAGES = {
        SyncStage.CONNECTING: _connect,
        SyncStage.UPLOADING_FILES: _upload_files,
        SyncStage.PARSING_CARDS: _parse_cards,
        SyncStage.RECEIVING_UPDATES: _receive_updates,
        SyncStage.PUSHING_REVIEWS: _push_reviews,
        SyncStage.PULLING_STATE: _pull_state,
        SyncStage.APPLYING_CHANGES: _apply_changes,
        SyncStage.WRITING_FILES: _write_files,
    }
