"""
Secondary (CDN) storage backed by a Supabase Storage bucket.
Talks to the Storage REST API directly over httpx. Best-effort: callers
decide whether a SecondaryStorageError is fatal.
"""

from typing import Optional
from urllib.parse import quote

import httpx
import structlog

from app.config import settings
from app.storage.errors import SecondaryStorageError
from app.storage.paths import guess_content_type

logger = structlog.get_logger(__name__)

PLACEHOLDER_URL = "https://placeholder.supabase.co"
PLACEHOLDER_KEY = "placeholder_key"

# Malformed URLs fail in httpx's parser as InvalidURL or a bare ValueError
REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL, ValueError)


class SecondaryStore:
    """Supabase Storage bucket client: put, get, list."""

    def __init__(
        self,
        url: Optional[str] = None,
        service_key: Optional[str] = None,
        bucket: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        probe_timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (url if url is not None else settings.SUPABASE_URL or "").rstrip("/")
        self.service_key = service_key if service_key is not None else settings.SUPABASE_SERVICE_ROLE or ""
        self.bucket = bucket or settings.SUPABASE_BUCKET
        self.timeout = timeout_seconds or settings.SUPABASE_TIMEOUT_SECONDS
        self.probe_timeout = probe_timeout_seconds or settings.HTTP_PROBE_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def has_url(self) -> bool:
        return bool(self.url) and self.url != PLACEHOLDER_URL

    @property
    def has_service_key(self) -> bool:
        return bool(self.service_key) and self.service_key != PLACEHOLDER_KEY

    @property
    def is_configured(self) -> bool:
        return self.has_url and self.has_service_key

    def status(self) -> dict:
        """Configuration summary without secrets."""
        return {
            "initialized": self.is_configured,
            "hasUrl": self.has_url,
            "hasServiceRole": self.has_service_key,
            "hasPlaceholders": self.url == PLACEHOLDER_URL or self.service_key == PLACEHOLDER_KEY,
            "bucket": self.bucket,
        }

    def public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    def _client(self, timeout: float, authenticated: bool = True) -> httpx.AsyncClient:
        headers = {"x-client-info": settings.APP_NAME}
        if authenticated:
            headers["Authorization"] = f"Bearer {self.service_key}"
            headers["apikey"] = self.service_key
        return httpx.AsyncClient(timeout=timeout, headers=headers, transport=self._transport)

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise SecondaryStorageError("Supabase storage is not configured")

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Upload bytes to the bucket. Returns the public URL."""
        self._require_configured()
        endpoint = f"{self.url}/storage/v1/object/{self.bucket}/{quote(path)}"
        try:
            async with self._client(self.timeout) as client:
                resp = await client.post(
                    endpoint,
                    content=data,
                    headers={
                        "Content-Type": content_type or guess_content_type(path),
                        "x-upsert": "false",
                    },
                )
        except REQUEST_ERRORS as e:
            raise SecondaryStorageError(f"Upload request failed: {e}") from e

        if resp.status_code >= 400:
            raise SecondaryStorageError(
                f"Upload rejected ({resp.status_code}): {_error_text(resp)}",
                status_code=resp.status_code,
            )
        logger.info("secondary_upload_complete", path=path, size_bytes=len(data))
        return self.public_url(path)

    async def fetch_public(self, url: str) -> tuple[bytes, str]:
        """Plain unauthenticated GET of a public URL, with the probe timeout."""
        try:
            async with self._client(self.probe_timeout, authenticated=False) as client:
                resp = await client.get(url)
        except REQUEST_ERRORS as e:
            raise SecondaryStorageError(f"Public URL fetch failed: {e}") from e
        if resp.status_code != 200:
            raise SecondaryStorageError(
                f"Public URL returned HTTP {resp.status_code}", status_code=resp.status_code
            )
        return resp.content, resp.headers.get("content-type", guess_content_type(url))

    async def download(self, path: str) -> tuple[bytes, str]:
        """Authenticated download through the storage API."""
        self._require_configured()
        endpoint = f"{self.url}/storage/v1/object/authenticated/{self.bucket}/{quote(path)}"
        try:
            async with self._client(self.timeout) as client:
                resp = await client.get(endpoint)
        except REQUEST_ERRORS as e:
            raise SecondaryStorageError(f"Storage API download failed: {e}") from e
        if resp.status_code != 200:
            raise SecondaryStorageError(
                f"Storage API returned HTTP {resp.status_code}: {_error_text(resp)}",
                status_code=resp.status_code,
            )
        return resp.content, resp.headers.get("content-type", guess_content_type(path))

    async def list(self, prefix: str = "", limit: int = 100) -> list[dict]:
        """List objects under a prefix."""
        self._require_configured()
        endpoint = f"{self.url}/storage/v1/object/list/{self.bucket}"
        try:
            async with self._client(self.probe_timeout) as client:
                resp = await client.post(endpoint, json={"prefix": prefix, "limit": limit})
        except REQUEST_ERRORS as e:
            raise SecondaryStorageError(f"List request failed: {e}") from e
        if resp.status_code != 200:
            raise SecondaryStorageError(
                f"List returned HTTP {resp.status_code}: {_error_text(resp)}",
                status_code=resp.status_code,
            )
        return resp.json()


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]
