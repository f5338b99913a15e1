"""Slack Web API client."""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from call_intelligence.core.config import Settings
from call_intelligence.core.errors import ConfigurationError, DownstreamError
from call_intelligence.services.persistence.flags import FeatureFlags

logger = logging.getLogger(__name__)


def slack_credentials(app_settings: Settings, flags: FeatureFlags) -> Tuple[Optional[str], Optional[str]]:
    """Bot token and signing secret; environment wins over the settings table."""
    token = (app_settings.slack_bot_token or "").strip() or flags.slack_bot_token
    signing_secret = (app_settings.slack_signing_secret or "").strip() or flags.slack_signing_secret
    return token, signing_secret


class SlackClient:
    """Posts and edits the consent direct messages."""

    def __init__(self, api_base: str = "https://slack.com/api", http_client: Optional[httpx.AsyncClient] = None):
        self.api_base = api_base.rstrip("/")
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def _call(self, method: str, token: Optional[str], payload: Dict[str, Any]) -> Dict[str, Any]:
        if not token:
            raise ConfigurationError("Slack bot token not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.api_base}/{method}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DownstreamError(f"Slack {method} failed: {e}") from e

        data = response.json()
        if not data.get("ok"):
            raise DownstreamError(f"Slack {method} failed: {data.get('error', 'unknown error')}")
        return data

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
        token: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Post a message; returns (channel id, message ts)."""
        payload: Dict[str, Any] = {"channel": channel, "text": text}
        if blocks:
            payload["blocks"] = blocks

        data = await self._call("chat.postMessage", token, payload)
        if not data.get("channel") or not data.get("ts"):
            raise DownstreamError("Slack chat.postMessage returned no channel or ts")
        return data["channel"], data["ts"]

    async def update_message(
        self,
        channel: str,
        ts: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
        token: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"channel": channel, "ts": ts, "text": text}
        if blocks:
            payload["blocks"] = blocks
        await self._call("chat.update", token, payload)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
