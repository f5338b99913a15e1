"""ElevenLabs speech-to-text client."""
import logging
from typing import Any, Dict, Optional

import httpx

from call_intelligence.core.errors import ConfigurationError, DownstreamError

logger = logging.getLogger(__name__)


class ElevenLabsClient:
    """Submits asynchronous transcription jobs that report back via webhook."""

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str = "https://api.eu.residency.elevenlabs.io",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def create_transcription(self, audio_url: str, webhook_url: str, metadata: Dict[str, Any]) -> str:
        """
        Start a transcription job.

        Args:
            audio_url: Publicly fetchable URL of the recording
            webhook_url: Where ElevenLabs posts the finished transcript
            metadata: Echoed back in the webhook, used to find the call again

        Returns:
            ElevenLabs job id
        """
        if not self.api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.api_base}/v1/transcriptions",
                headers={"xi-api-key": self.api_key, "Content-Type": "application/json"},
                json={"audio_url": audio_url, "metadata": metadata, "webhook_url": webhook_url},
            )
        except httpx.HTTPError as e:
            raise DownstreamError(f"ElevenLabs request failed: {e}") from e

        if response.status_code >= 400:
            raise DownstreamError(f"ElevenLabs API error ({response.status_code}): {response.text[:300]}")

        job_id = (response.json() or {}).get("id")
        if not job_id:
            raise DownstreamError("ElevenLabs job ID missing from response")
        return str(job_id)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
