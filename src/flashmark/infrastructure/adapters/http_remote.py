import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from flashmark.domain.constants import REQUEST_TIMEOUT, RESPONSIVENESS_TIMEOUT
from flashmark.domain.errors import NotAuthenticated, RemoteRejected, RemoteUnavailable
from flashmark.domain.models import Review
from flashmark.domain.sync.models import DeviceCredentials, PullResult, SyncFile, UploadResult
from flashmark.domain.sync.ports import SyncRemote
from flashmark.domain.sync.wire import (
    ConfirmDeleteRequest,
    ConfirmDeleteResponse,
    DeviceRegisterRequest,
    DeviceRegisterResponse,
    HealthResponse,
    PushReviewsRequest,
    PushReviewsResponse,
    SyncPullRequest,
    SyncPullResponse,
    SyncUploadResponse,
    files_to_request,
    pull_from_response,
    review_to_submission,
    upload_from_response,
)


class HttpSyncRemote(SyncRemote):
    """Adapter for a `flashmark serve` authority over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _call(
        self,
        method: str,
        path: str,
        response_model: type[BaseModel],
        body: BaseModel | None = None,
        auth: bool = True,
    ) -> Any:
        if auth and not self.token:
            raise NotAuthenticated()

        payload = body.model_dump(mode="json", by_alias=True) if body is not None else None
        try:
            resp = await self._get_client().request(method, path, json=payload)
        except httpx.TimeoutException as e:
            self.logger.error(f"[remote] {method} {path} timed out: {e}")
            raise RemoteUnavailable(f"Request to {self.base_url} timed out") from e
        except httpx.HTTPError as e:
            self.logger.error(f"[remote] {method} {path} failed: {e}")
            raise RemoteUnavailable(f"Failed to connect to backend: {e}") from e

        if resp.status_code == 401:
            raise NotAuthenticated()
        if resp.status_code >= 400:
            raise RemoteRejected(resp.status_code, _error_detail(resp))

        try:
            return response_model.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as e:
            raise RemoteRejected(resp.status_code, f"Failed to parse response: {e}") from e

    async def check_connectivity(self) -> bool:
        try:
            resp = await self._get_client().get("/health", timeout=RESPONSIVENESS_TIMEOUT)
            if resp.status_code != 200:
                return False
            health = HealthResponse.model_validate(resp.json())
            self.logger.debug(f"[remote] {self.base_url} is {health.status} v{health.version}")
            return True
        except Exception:
            return False

    async def register_device(self, name: str | None = None) -> DeviceCredentials:
        resp = await self._call(
            "POST",
            "/api/device/register",
            DeviceRegisterResponse,
            DeviceRegisterRequest(name=name),
            auth=False,
        )
        return DeviceCredentials(device_id=resp.device_id, token=resp.token)

    async def upload(self, files: list[SyncFile]) -> UploadResult:
        resp: SyncUploadResponse = await self._call(
            "POST", "/api/sync/upload", SyncUploadResponse, files_to_request(files)
        )
        return upload_from_response(resp)

    async def push_reviews(self, reviews: list[Review]) -> int:
        body = PushReviewsRequest(reviews=[review_to_submission(r) for r in reviews])
        resp = await self._call("POST", "/api/sync/push-reviews", PushReviewsResponse, body)
        return resp.synced_count

    async def pull(self, since: datetime | None) -> PullResult:
        resp: SyncPullResponse = await self._call(
            "POST", "/api/sync/pull", SyncPullResponse, SyncPullRequest(last_sync_at=since)
        )
        return pull_from_response(resp)

    async def confirm_delete(self, card_ids: list[int]) -> int:
        resp = await self._call(
            "POST",
            "/api/sync/confirm-delete",
            ConfirmDeleteResponse,
            ConfirmDeleteRequest(card_ids=card_ids),
        )
        return resp.deleted_count

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    return resp.text
