"""Dropbox HTTP API client for uploading invoice files."""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

import httpx
import orjson
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from logistics_core.errors import CollaboratorError
from logistics_core.protocol import UploadResult

logger = logging.getLogger(__name__)

# Refresh this long before the access token actually expires
TOKEN_REFRESH_MARGIN = 300.0
DEFAULT_TOKEN_LIFETIME = 14400


def _is_retryable(exc: BaseException) -> bool:
    """Transport errors, 429 and 5xx are worth another attempt."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def _api_arg(payload: dict[str, Any]) -> str:
    # Header values must be ASCII; json.dumps escapes non-ASCII paths as \uXXXX
    return json.dumps(payload)


def to_direct_link(shared_url: str) -> str:
    """Turn a shared link into a direct download link."""
    return shared_url.replace("www.dropbox.com", "dl.dropboxusercontent.com")


class DropboxClient:
    """Dropbox client using the OAuth refresh-token flow."""

    TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"
    API_URL = "https://api.dropboxapi.com/2"
    CONTENT_URL = "https://content.dropboxapi.com/2"

    def __init__(
        self,
        app_key: str = "",
        app_secret: str = "",
        refresh_token: str = "",
        default_folder: str = "/",
        retry_attempts: int = 3,
        retry_multiplier: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.app_key = app_key
        self.app_secret = app_secret
        self.refresh_token = refresh_token
        self.default_folder = default_folder
        self.retry_attempts = retry_attempts
        self.retry_multiplier = retry_multiplier
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.app_key and self.app_secret and self.refresh_token)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=60.0)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # -- auth ------------------------------------------------------------

    def _token_valid(self) -> bool:
        return (
            self._access_token is not None
            and self._clock() < self._token_expires_at - TOKEN_REFRESH_MARGIN
        )

    async def _ensure_token(self) -> str:
        if not self.is_configured:
            raise CollaboratorError(
                "dropbox",
                "Dropbox 인증 정보가 설정되지 않았습니다 (app key, app secret, refresh token)",
            )
        async with self._token_lock:
            if not self._token_valid():
                await self._refresh_access_token()
            return self._access_token

    async def _refresh_access_token(self) -> None:
        client = await self._get_client()
        response = await client.post(
            self.TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "client_id": self.app_key,
                "client_secret": self.app_secret,
            },
        )
        response.raise_for_status()
        data = response.json()

        token = data.get("access_token")
        if not token:
            raise CollaboratorError("dropbox", "토큰 응답에 access_token이 없습니다")
        self._access_token = token
        self._token_expires_at = self._clock() + float(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        logger.info(f"Dropbox access token refreshed (expires in {data.get('expires_in')}s)")

    async def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self._ensure_token()}"}

    # -- requests --------------------------------------------------------

    async def _rpc(self, endpoint: str, payload: dict[str, Any] | None = None) -> httpx.Response:
        client = await self._get_client()
        headers = await self._auth_headers()
        headers["Content-Type"] = "application/json"
        return await client.post(
            f"{self.API_URL}{endpoint}",
            content=orjson.dumps(payload) if payload is not None else b"null",
            headers=headers,
        )

    async def _upload_content(self, content: bytes, remote_path: str) -> dict[str, Any]:
        client = await self._get_client()
        headers = await self._auth_headers()
        headers["Content-Type"] = "application/octet-stream"
        headers["Dropbox-API-Arg"] = _api_arg({
            "path": remote_path,
            "mode": "overwrite",
            "autorename": False,
            "mute": False,
        })
        response = await client.post(f"{self.CONTENT_URL}/files/upload", content=content, headers=headers)
        response.raise_for_status()
        return response.json()

    async def _shared_link(self, remote_path: str) -> str:
        response = await self._rpc(
            "/sharing/create_shared_link_with_settings", {"path": remote_path}
        )
        if response.status_code == 409:
            # Link already exists for this path
            existing = await self._rpc(
                "/sharing/list_shared_links", {"path": remote_path, "direct_only": True}
            )
            existing.raise_for_status()
            links = existing.json().get("links", [])
            if not links:
                raise CollaboratorError("dropbox", f"공유 링크를 찾을 수 없습니다: {remote_path}")
            return links[0]["url"]
        response.raise_for_status()
        return response.json()["url"]

    # -- public API ------------------------------------------------------

    async def upload(self, local_path: Path, remote_folder: str | None = None) -> UploadResult:
        """Upload a file (overwriting) and return a direct download link.

        Raises:
            FileNotFoundError: The local file does not exist.
            CollaboratorError: Credentials are missing or Dropbox rejected the call.
        """
        local_path = Path(local_path)
        if not local_path.is_file():
            raise FileNotFoundError(f"업로드할 파일을 찾을 수 없습니다: {local_path}")

        folder = (remote_folder or self.default_folder).rstrip("/")
        remote_path = f"{folder}/{local_path.name}"
        content = local_path.read_bytes()

        retry_decorator = retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_multiplier, min=0, max=30),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        try:
            metadata = await retry_decorator(self._upload_content)(content, remote_path)
            uploaded_path = metadata.get("path_display", remote_path)
            url = to_direct_link(await self._shared_link(uploaded_path))
        except httpx.HTTPError as e:
            raise CollaboratorError("dropbox", f"업로드 실패 ({remote_path}): {e}") from e

        logger.info(f"Uploaded {local_path.name} -> {uploaded_path}")
        return UploadResult(remote_url=url, remote_path=uploaded_path)

    async def download(self, remote_path: str, local_path: Path) -> bool:
        """Download a file. Returns False if the remote path does not exist."""
        client = await self._get_client()
        headers = await self._auth_headers()
        headers["Dropbox-API-Arg"] = _api_arg({"path": remote_path})
        try:
            response = await client.post(f"{self.CONTENT_URL}/files/download", headers=headers)
            if response.status_code == 409:
                logger.warning(f"Dropbox path not found: {remote_path}")
                return False
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError("dropbox", f"다운로드 실패 ({remote_path}): {e}") from e

        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(response.content)
        return True

    async def test_connection(self) -> bool:
        """Check credentials against the current-account endpoint."""
        try:
            response = await self._rpc("/users/get_current_account")
            response.raise_for_status()
            account = response.json()
            logger.info(f"Dropbox connected as {account.get('email', 'unknown')}")
            return True
        except (httpx.HTTPError, CollaboratorError) as e:
            logger.warning(f"Dropbox connection test failed: {e}")
            return False
