"""Tests for the sync reconciler, driven against an in-process authority."""

import pytest

from flashmark.application.parser import parse
from flashmark.application.review_service import ReviewRequest, ReviewService
from flashmark.application.sync.reconciler import SyncReconciler
from flashmark.domain.errors import RemoteUnavailable, SyncError
from flashmark.domain.sync.models import SyncStage, SyncStatusKind
from flashmark.infrastructure.adapters.local_remote import LocalSyncRemote

DEVICE = "device_a"
ENDPOINT = "local://"

RUST = (
    "Q: What is ownership?\nA: One owner per value.\n"
    "\n"
    "Q: What is borrowing?\nA: A reference.\n"
)
PYTHON = "Q: What is a list?\nA: A mutable sequence.\n"


class UnreachableRemote(LocalSyncRemote):
    async def check_connectivity(self) -> bool:
        return False


class FailingUploadRemote(LocalSyncRemote):
    async def upload(self, files):
        raise RemoteUnavailable("Request to http://authority timed out")


@pytest.fixture
def vault(mock_vault):
    (mock_vault / "rust").mkdir()
    (mock_vault / "rust" / "basics.md").write_text(RUST)
    (mock_vault / "python.md").write_text(PYTHON)
    return mock_vault


@pytest.fixture
def reconciler(card_store, authority):
    return SyncReconciler(card_store, DEVICE, lambda endpoint: LocalSyncRemote(authority, DEVICE))


async def sync_once(reconciler, vault):
    return await reconciler.start_sync(ENDPOINT, [vault])


def card_ids(path):
    return [r.id for r in parse(path.read_text()).records]


@pytest.mark.asyncio
async def test_first_sync_assigns_ids_and_rewrites_files(reconciler, card_store, vault):
    status = await sync_once(reconciler, vault)

    assert status.kind is SyncStatusKind.COMPLETED
    assert status.stats.files_uploaded == 2
    assert status.stats.cards_created == 3
    assert status.progress == 1.0

    rust_ids = card_ids(vault / "rust" / "basics.md")
    python_ids = card_ids(vault / "python.md")
    assert None not in rust_ids + python_ids
    assert len(set(rust_ids + python_ids)) == 3

    card = card_store.get_card(rust_ids[0])
    assert card.question == "What is ownership?"
    assert card.deck_path == "rust"
    assert card.source_file == "rust/basics.md"
    assert card_store.get_card(python_ids[0]).deck_path == "python"

    sync_state = card_store.get_sync_state()
    assert sync_state.last_sync_at == status.synced_at
    assert sync_state.pending_changes == 0
    assert reconciler.get_sync_status() == status


@pytest.mark.asyncio
async def test_second_sync_changes_nothing(reconciler, card_store, vault):
    await sync_once(reconciler, vault)
    before = (vault / "rust" / "basics.md").read_text()

    status = await sync_once(reconciler, vault)
    assert status.kind is SyncStatusKind.COMPLETED
    assert status.stats.cards_created == 0
    assert status.stats.cards_updated == 3
    assert (vault / "rust" / "basics.md").read_text() == before


@pytest.mark.asyncio
async def test_orphan_confirmation_soft_deletes(reconciler, card_store, vault, now):
    await sync_once(reconciler, vault)
    rust_file = vault / "rust" / "basics.md"
    keep_id, gone_id = card_ids(rust_file)

    service = ReviewService(card_store, DEVICE)
    service.submit_review(ReviewRequest(card_id=gone_id, rating=3), now=now)

    content = rust_file.read_text()
    rust_file.write_text(content[: content.index("\nID:")] + "\n")

    status = await sync_once(reconciler, vault)
    assert status.kind is SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION
    assert [(o.card_id, o.question_preview) for o in status.orphans] == [
        (gone_id, "What is borrowing?")
    ]
    # nothing deleted yet
    assert card_store.get_card(gone_id).deleted_at is None

    deleted = await reconciler.confirm_orphan_deletion([gone_id, 12345])
    assert deleted == 1

    final = reconciler.get_sync_status()
    assert final.kind is SyncStatusKind.COMPLETED
    assert final.stats.orphans_deleted == 1
    assert card_store.get_card(gone_id).deleted_at is not None
    assert gone_id not in [c.id for c in card_store.list_cards()]
    assert keep_id in [c.id for c in card_store.list_cards()]
    assert len(card_store.list_reviews(gone_id)) == 1


@pytest.mark.asyncio
async def test_skipped_orphans_are_flagged_again(reconciler, card_store, vault):
    await sync_once(reconciler, vault)
    (vault / "python.md").write_text("")
    python_id = card_store.list_cards("python")[0].id

    status = await sync_once(reconciler, vault)
    assert status.kind is SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION

    stats = await reconciler.skip_orphan_deletion()
    assert stats.orphans_deleted == 0
    assert reconciler.get_sync_status().kind is SyncStatusKind.COMPLETED
    assert card_store.get_card(python_id).deleted_at is None

    again = await sync_once(reconciler, vault)
    assert again.kind is SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION
    assert [o.card_id for o in again.orphans] == [python_id]


@pytest.mark.asyncio
async def test_confirm_without_pending_orphans_raises(reconciler):
    with pytest.raises(SyncError):
        await reconciler.confirm_orphan_deletion([1])


@pytest.mark.asyncio
async def test_reviews_pushed_and_marked_synced(
    reconciler, card_store, authority_store, vault, now
):
    await sync_once(reconciler, vault)
    card_id = card_ids(vault / "python.md")[0]
    ReviewService(card_store, DEVICE).submit_review(ReviewRequest(card_id, "good"), now=now)
    assert card_store.get_sync_state().pending_changes == 1

    status = await sync_once(reconciler, vault)
    assert status.kind is SyncStatusKind.COMPLETED
    assert status.stats.reviews_synced == 1
    assert card_store.count_pending_reviews() == 0
    assert card_store.get_sync_state().pending_changes == 0
    assert len(authority_store.list_reviews(DEVICE, card_id)) == 1


@pytest.mark.asyncio
async def test_review_recorded_mid_sync_survives(reconciler, card_store, vault, now):
    await sync_once(reconciler, vault)
    card_id = card_ids(vault / "python.md")[0]
    service = ReviewService(card_store, DEVICE)
    service.submit_review(ReviewRequest(card_id, "good"), now=now)

    await reconciler.begin_sync(ENDPOINT, [vault])
    late = service.submit_review(ReviewRequest(card_id, "easy"), now=now)
    while reconciler.get_sync_status().is_syncing:
        await reconciler.run_sync_phase()

    status = reconciler.get_sync_status()
    assert status.kind is SyncStatusKind.COMPLETED
    assert status.stats.reviews_synced == 1
    assert [r.id for r in card_store.drain_pending_reviews()] == [late.review.id]
    assert card_store.get_sync_state().pending_changes == 1
    # the pulled state from the first review must not replace the newer local one
    assert card_store.get_card_state(card_id, DEVICE) == late.new_state


@pytest.mark.asyncio
async def test_run_sync_phase_advances_one_stage(reconciler, vault):
    status = await reconciler.begin_sync(ENDPOINT, [vault])
    assert status.stage is SyncStage.CONNECTING

    status = await reconciler.run_sync_phase()
    assert status.kind is SyncStatusKind.SYNCING
    assert status.stage is SyncStage.UPLOADING_FILES
    assert 0 < status.progress < 1


@pytest.mark.asyncio
async def test_second_start_is_coalesced(reconciler, card_store, vault):
    await reconciler.begin_sync(ENDPOINT, [vault])
    status = await reconciler.start_sync(ENDPOINT, [vault])
    assert status.stage is SyncStage.CONNECTING
    assert card_store.list_cards() == []


@pytest.mark.asyncio
async def test_cancel_stops_at_stage_boundary(reconciler, card_store, vault):
    await reconciler.begin_sync(ENDPOINT, [vault])
    await reconciler.run_sync_phase()
    await reconciler.cancel_sync()
    assert reconciler.get_sync_status().is_syncing

    status = await reconciler.run_sync_phase()
    assert status.kind is SyncStatusKind.FAILED
    assert status.error == "Sync cancelled by user"
    assert card_store.list_cards() == []
    assert "ID:" not in (vault / "python.md").read_text()


@pytest.mark.asyncio
async def test_cancel_while_awaiting_orphans(reconciler, vault):
    await sync_once(reconciler, vault)
    (vault / "python.md").write_text("")
    await sync_once(reconciler, vault)

    status = await reconciler.cancel_sync()
    assert status.kind is SyncStatusKind.FAILED
    assert status.error == "Sync cancelled by user"


@pytest.mark.asyncio
async def test_unreachable_remote_fails_cleanly(card_store, authority, vault):
    reconciler = SyncReconciler(
        card_store, DEVICE, lambda endpoint: UnreachableRemote(authority, DEVICE)
    )
    status = await reconciler.start_sync("http://nowhere", [vault])
    assert status.kind is SyncStatusKind.FAILED
    assert "Cannot reach sync server" in status.error
    assert card_store.list_cards() == []


@pytest.mark.asyncio
async def test_upload_failure_leaves_files_and_store_untouched(card_store, authority, vault):
    reconciler = SyncReconciler(
        card_store, DEVICE, lambda endpoint: FailingUploadRemote(authority, DEVICE)
    )
    status = await reconciler.start_sync(ENDPOINT, [vault])
    assert status.kind is SyncStatusKind.FAILED
    assert status.error == "Request to http://authority timed out"
    assert (vault / "python.md").read_text() == PYTHON
    assert card_store.list_cards() == []
    assert card_store.get_sync_state().last_sync_at is None


@pytest.mark.asyncio
async def test_file_edited_during_sync_is_not_overwritten(reconciler, card_store, vault):
    await reconciler.begin_sync(ENDPOINT, [vault])
    status = reconciler.get_sync_status()
    while status.is_syncing and status.stage is not SyncStage.WRITING_FILES:
        status = await reconciler.run_sync_phase()
    assert status.stage is SyncStage.WRITING_FILES

    edited = PYTHON + "\nQ: Added meanwhile\nA: yes\n"
    (vault / "python.md").write_text(edited)
    status = await reconciler.run_sync_phase()

    assert status.kind is SyncStatusKind.COMPLETED
    assert (vault / "python.md").read_text() == edited
    assert None not in card_ids(vault / "rust" / "basics.md")


@pytest.mark.asyncio
async def test_restored_file_revives_confirmed_orphans(
    reconciler, card_store, authority_store, vault
):
    await sync_once(reconciler, vault)
    python_file = vault / "python.md"
    content = python_file.read_text()
    python_id = card_ids(python_file)[0]

    python_file.unlink()
    status = await sync_once(reconciler, vault)
    assert [o.card_id for o in status.orphans] == [python_id]
    await reconciler.confirm_orphan_deletion([python_id])
    assert card_store.get_card(python_id).deleted_at is not None

    python_file.write_text(content)
    status = await sync_once(reconciler, vault)
    assert status.kind is SyncStatusKind.COMPLETED
    assert card_store.get_card(python_id).deleted_at is None
    assert python_id in [o.card_id for o in authority_store.live_cards(DEVICE)]

    python_file.unlink()
    status = await sync_once(reconciler, vault)
    assert status.kind is SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION
    assert [o.card_id for o in status.orphans] == [python_id]
