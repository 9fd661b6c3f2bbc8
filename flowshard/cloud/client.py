"""
Cloud API client.

Read-only access to the upload status endpoint over aiohttp.
"""

from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from flowshard.cloud.errors import CloudApiError
from flowshard.cloud.models import UploadStatus

DEFAULT_API_URL = "https://api.copilot.mobile.dev"
REQUEST_TIMEOUT_S = 60


class CloudClient:
    """
    Client for the cloud status endpoint.

    Non-success responses raise CloudApiError carrying the HTTP status code,
    which the poller uses to decide between backoff, retry and failure.

    Example:
        async with CloudClient() as client:
            status = await client.fetch_status(token, upload_id, project_id)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_s: float = REQUEST_TIMEOUT_S,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "CloudClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def status_url(self, upload_id: str, project_id: str) -> str:
        return f"{self.base_url}/v2/project/{project_id}/upload/{upload_id}"

    async def fetch_status(
        self,
        auth_token: str,
        upload_id: str,
        project_id: str,
    ) -> UploadStatus:
        """
        Fetch the current status of an upload.

        Raises:
            CloudApiError: On any non-2xx response.
        """
        url = self.status_url(upload_id, project_id)
        headers = {"Authorization": f"Bearer {auth_token}"}
        session = await self._get_session()

        async with session.get(url, headers=headers) as resp:
            if not 200 <= resp.status < 300:
                body = await resp.text()
                logger.debug(f"GET {url} returned {resp.status}: {body}")
                raise CloudApiError(resp.status, body)
            payload: Dict[str, Any] = await resp.json(content_type=None)

        return UploadStatus.model_validate(payload)
