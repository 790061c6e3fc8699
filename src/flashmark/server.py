import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException

from flashmark.application.config import resolve_config
from flashmark.application.factory import get_authority as build_authority
from flashmark.application.sync.authority import IdentityAuthority
from flashmark.consts import VERSION
from flashmark.domain.errors import FlashmarkError, NotAuthenticated, ValidationError
from flashmark.domain.models import DeckSettings, GlobalSettings, ensure_utc
from flashmark.domain.sync.wire import (
    ConfirmDeleteRequest,
    ConfirmDeleteResponse,
    DeviceRegisterRequest,
    DeviceRegisterResponse,
    HealthResponse,
    PushReviewsRequest,
    PushReviewsResponse,
    SyncedSettings,
    SyncPullRequest,
    SyncPullResponse,
    SyncUploadRequest,
    SyncUploadResponse,
    files_from_request,
    pull_to_response,
    review_from_submission,
    upload_to_response,
)

logger = logging.getLogger("flashmark.server")

_authority: IdentityAuthority | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"flashmark authority v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("flashmark authority shutting down...")


app = FastAPI(
    title="flashmark authority",
    description="Identity authority and sync endpoint for flashmark devices.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()


def get_authority() -> IdentityAuthority:
    global _authority
    if _authority is None:
        _authority = build_authority(resolve_config())
    return _authority


def current_device(
    authorization: str | None = Header(default=None),
    authority: IdentityAuthority = Depends(get_authority),
) -> str:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    try:
        return authority.authenticate(token)
    except NotAuthenticated as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


def _http_error(action: str, e: Exception) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, NotAuthenticated):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, FlashmarkError):
        logger.error(f"{action} failed: {e}")
    else:
        logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.post("/api/device/register", response_model=DeviceRegisterResponse)
async def register_device(
    req: DeviceRegisterRequest, authority: IdentityAuthority = Depends(get_authority)
):
    try:
        creds = authority.register_device(req.name)
    except Exception as e:
        raise _http_error("Device registration", e) from e
    return DeviceRegisterResponse(device_id=creds.device_id, token=creds.token)


@app.post("/api/sync/upload", response_model=SyncUploadResponse)
async def upload(
    req: SyncUploadRequest,
    device_id: str = Depends(current_device),
    authority: IdentityAuthority = Depends(get_authority),
):
    """
    Upload markdown files. Pending cards get ids; orphans are reported.
    """
    try:
        result = authority.upload(device_id, files_from_request(req))
    except Exception as e:
        raise _http_error("Upload", e) from e
    return upload_to_response(result)


@app.post("/api/sync/push-reviews", response_model=PushReviewsResponse)
async def push_reviews(
    req: PushReviewsRequest,
    device_id: str = Depends(current_device),
    authority: IdentityAuthority = Depends(get_authority),
):
    try:
        reviews = [review_from_submission(r) for r in req.reviews]
        count = authority.push_reviews(device_id, reviews)
    except Exception as e:
        raise _http_error("Push reviews", e) from e
    return PushReviewsResponse(synced_count=count)


@app.post("/api/sync/pull", response_model=SyncPullResponse)
async def pull(
    req: SyncPullRequest,
    device_id: str = Depends(current_device),
    authority: IdentityAuthority = Depends(get_authority),
):
    since = ensure_utc(req.last_sync_at) if req.last_sync_at else None
    try:
        result = authority.pull(device_id, since)
    except Exception as e:
        raise _http_error("Pull", e) from e
    return pull_to_response(result)


@app.post("/api/sync/confirm-delete", response_model=ConfirmDeleteResponse)
async def confirm_delete(
    req: ConfirmDeleteRequest,
    device_id: str = Depends(current_device),
    authority: IdentityAuthority = Depends(get_authority),
):
    """Soft-delete orphaned cards the user confirmed."""
    try:
        count = authority.confirm_delete(device_id, req.card_ids)
    except Exception as e:
        raise _http_error("Confirm delete", e) from e
    return ConfirmDeleteResponse(deleted_count=count)


@app.put("/api/settings")
async def save_settings(
    req: SyncedSettings,
    device_id: str = Depends(current_device),
    authority: IdentityAuthority = Depends(get_authority),
):
    try:
        global_settings = (
            GlobalSettings(**req.global_.model_dump()) if req.global_ is not None else None
        )
        decks = [DeckSettings(**d.model_dump()) for d in req.decks]
        authority.save_settings(device_id, global_settings, decks)
    except Exception as e:
        raise _http_error("Save settings", e) from e
    return {"ok": True}
