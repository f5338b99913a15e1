"""Telavox REST API client."""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from call_intelligence.core.errors import DownstreamError
from call_intelligence.services.phone import normalize_to_e164

logger = logging.getLogger(__name__)

MATCH_WINDOW = timedelta(minutes=10)


class TelavoxCall(BaseModel):
    """One entry of the Telavox call history."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    datetime_iso: Optional[str] = Field(None, alias="datetimeISO")
    datetime_local: Optional[str] = Field(None, alias="datetime")
    number: Optional[str] = None
    number_e164: Optional[str] = Field(None, alias="numberE164")
    recording_id: Optional[str] = Field(None, alias="recordingId")
    duration: Optional[int] = 0

    @property
    def occurred_at(self) -> Optional[datetime]:
        """Call time as naive UTC."""
        raw = self.datetime_iso or self.datetime_local
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    @property
    def e164(self) -> Optional[str]:
        return self.number_e164 or normalize_to_e164(self.number)


def select_recording_candidate(
    calls: List[TelavoxCall],
    from_number: Optional[str],
    to_number: Optional[str],
    reference_time: Optional[datetime],
    window: timedelta = MATCH_WINDOW,
) -> Optional[TelavoxCall]:
    """
    Pick the history entry that most likely is our call.

    A candidate must have a recording, match either endpoint and lie within
    the window of the reference time. Connected calls (duration > 0) beat
    unanswered attempts; ties go to the closest timestamp.
    """
    if reference_time is None:
        return None

    numbers = {n for n in (normalize_to_e164(from_number), normalize_to_e164(to_number)) if n}
    if not numbers:
        return None

    matches = []
    for call in calls:
        occurred_at = call.occurred_at
        if not call.recording_id or occurred_at is None or call.e164 not in numbers:
            continue
        diff = abs(occurred_at - reference_time)
        if diff < window:
            matches.append(((call.duration or 0) <= 0, diff, call))

    if not matches:
        return None
    matches.sort(key=lambda match: (match[0], match[1]))
    return matches[0][2]


class TelavoxClient:
    """Client for the user-scoped Telavox call history API."""

    def __init__(self, api_base: str, http_client: Optional[httpx.AsyncClient] = None):
        self.api_base = api_base.rstrip("/")
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    def recording_url(self, recording_id: str) -> str:
        return f"{self.api_base}/recordings/{recording_id}"

    def is_api_url(self, url: str) -> bool:
        """Whether fetching this URL needs a Telavox bearer token."""
        return url.startswith(self.api_base)

    async def list_recent_calls(self, token: str) -> List[TelavoxCall]:
        """Fetch recent incoming and outgoing calls that have recordings."""
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.api_base}/calls",
                params={"withRecordings": "true"},
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise DownstreamError(f"Telavox call history request failed: {e}") from e

        if response.status_code >= 400:
            logger.warning(
                f"[TELAVOX] Call history request failed - Status: {response.status_code}, "
                f"Body: {response.text[:200]}"
            )
            raise DownstreamError(f"Telavox call history returned {response.status_code}")

        data = response.json()
        entries = (data.get("incoming") or []) + (data.get("outgoing") or [])
        return [TelavoxCall.model_validate(entry) for entry in entries]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
