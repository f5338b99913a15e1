"""Recording storage on a Supabase Storage bucket."""
import logging
from typing import Dict, Optional

import httpx

from call_intelligence.core.errors import ConfigurationError, DownstreamError

logger = logging.getLogger(__name__)

OBJECT_PATH = "/storage/v1/object"


class RecordingStorage:
    """Mirrors provider recordings into our bucket and hands out signed URLs."""

    def __init__(
        self,
        base_url: Optional[str],
        service_key: Optional[str],
        bucket: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=60.0, follow_redirects=True)
        return self._client

    def _auth_headers(self) -> Dict[str, str]:
        if not self.base_url or not self.service_key:
            raise ConfigurationError("Recording storage is not configured")
        return {"Authorization": f"Bearer {self.service_key}", "apikey": self.service_key}

    def is_owned_url(self, url: str) -> bool:
        """Whether a URL already points into our storage."""
        return OBJECT_PATH in url

    async def exists(self, path: str) -> bool:
        auth_headers = self._auth_headers()
        client = await self._get_client()
        try:
            response = await client.head(
                f"{self.base_url}{OBJECT_PATH}/{self.bucket}/{path}", headers=auth_headers
            )
        except httpx.HTTPError as e:
            raise DownstreamError(f"Storage lookup failed: {e}") from e
        return response.status_code == 200

    async def upload_from_url(self, source_url: str, path: str, headers: Optional[Dict[str, str]] = None) -> str:
        """Download source_url and upload it to path, overwriting any earlier copy."""
        auth_headers = self._auth_headers()
        client = await self._get_client()

        try:
            source = await client.get(source_url, headers=headers or {})
        except httpx.HTTPError as e:
            raise DownstreamError(f"Recording download failed: {e}") from e
        if source.status_code >= 400:
            raise DownstreamError(f"Recording download returned {source.status_code}")

        content_type = source.headers.get("content-type", "audio/mpeg").split(";")[0]
        try:
            upload = await client.post(
                f"{self.base_url}{OBJECT_PATH}/{self.bucket}/{path}",
                content=source.content,
                headers={**auth_headers, "Content-Type": content_type, "x-upsert": "true"},
            )
        except httpx.HTTPError as e:
            raise DownstreamError(f"Recording upload failed: {e}") from e
        if upload.status_code >= 400:
            raise DownstreamError(f"Recording upload returned {upload.status_code}: {upload.text[:200]}")

        logger.info(f"[STORAGE] Mirrored recording to {self.bucket}/{path} ({len(source.content)} bytes)")
        return path

    async def signed_url(self, path: str, expires_in: int = 3600) -> str:
        auth_headers = self._auth_headers()
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}{OBJECT_PATH}/sign/{self.bucket}/{path}",
                json={"expiresIn": expires_in},
                headers=auth_headers,
            )
        except httpx.HTTPError as e:
            raise DownstreamError(f"Signing recording URL failed: {e}") from e
        if response.status_code >= 400:
            raise DownstreamError(f"Signing recording URL returned {response.status_code}")

        signed = (response.json() or {}).get("signedURL")
        if not signed:
            raise DownstreamError("Storage returned no signed URL")
        return f"{self.base_url}/storage/v1{signed}"

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
