"""HubSpot CRM client."""
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from call_intelligence.core.errors import ConfigurationError, DownstreamError

logger = logging.getLogger(__name__)

# HUBSPOT_DEFINED association type ids
NOTE_TO_CONTACT = 190
NOTE_TO_DEAL = 214
CALL_TO_CONTACT = 194
CALL_TO_DEAL = 206

MIN_SEARCH_DIGITS = 7


class HubSpotRateLimitError(DownstreamError):
    """HubSpot answered 429."""


class HubSpotClient:
    """Thin client for the HubSpot CRM objects, search and associations APIs."""

    def __init__(
        self,
        access_token: Optional[str],
        api_base: str = "https://api.hubapi.com",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    @retry(
        retry=retry_if_exception_type(HubSpotRateLimitError),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.access_token:
            raise ConfigurationError("HUBSPOT_ACCESS_TOKEN is not configured")

        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.api_base}{path}",
                headers={"Authorization": f"Bearer {self.access_token}"},
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise DownstreamError(f"HubSpot request failed: {e}") from e

        if response.status_code == 429:
            logger.warning(f"[HUBSPOT] Rate limited on {method} {path}, backing off")
            raise HubSpotRateLimitError("HubSpot rate limit exceeded")
        if response.status_code >= 400:
            logger.error(
                f"[HUBSPOT] API error - {method} {path}, Status: {response.status_code}, "
                f"Body: {response.text[:500]}"
            )
            raise DownstreamError(f"HubSpot {method} {path} returned {response.status_code}")
        if not response.content:
            return {}
        return response.json()

    async def search_contact_by_phone(self, variants: List[str]) -> Optional[str]:
        """Return the id of the first contact whose phone or mobilephone equals any variant."""
        for variant in variants:
            if len(re.sub(r"\D", "", variant)) < MIN_SEARCH_DIGITS:
                continue

            data = await self._request(
                "POST",
                "/crm/v3/objects/contacts/search",
                json={
                    "filterGroups": [
                        {"filters": [{"propertyName": "phone", "operator": "EQ", "value": variant}]},
                        {"filters": [{"propertyName": "mobilephone", "operator": "EQ", "value": variant}]},
                    ],
                    "properties": ["phone", "mobilephone"],
                    "limit": 1,
                },
            )
            results = data.get("results") or []
            if results:
                contact_id = str(results[0]["id"])
                logger.info(f"[HUBSPOT] Matched contact {contact_id} on variant {variant}")
                return contact_id

        return None

    async def create_note(self, body: str, timestamp: str, title: str) -> str:
        data = await self._request(
            "POST",
            "/crm/v3/objects/notes",
            json={"properties": {"hs_note_body": body, "hs_timestamp": timestamp, "hs_note_title": title}},
        )
        return str(data["id"])

    async def create_call(
        self,
        properties: Dict[str, str],
        contact_id: Optional[str] = None,
        deal_id: Optional[str] = None,
    ) -> str:
        """Create a CALL engagement, associated with the contact and deal on creation."""
        associations = []
        if contact_id:
            associations.append(_association(contact_id, CALL_TO_CONTACT))
        if deal_id:
            associations.append(_association(deal_id, CALL_TO_DEAL))

        data = await self._request(
            "POST",
            "/crm/v3/objects/calls",
            json={"properties": properties, "associations": associations},
        )
        return str(data["id"])

    async def associate(
        self, from_type: str, from_id: str, to_type: str, to_id: str, association_type_id: int
    ) -> None:
        await self._request(
            "POST",
            f"/crm/v4/associations/{from_type}/{to_type}/batch/create",
            json={
                "inputs": [
                    {
                        "from": {"id": str(from_id)},
                        "to": {"id": str(to_id)},
                        "types": [
                            {"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": association_type_id}
                        ],
                    }
                ]
            },
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def _association(object_id: str, type_id: int) -> Dict[str, Any]:
    return {
        "to": {"id": str(object_id)},
        "types": [{"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": type_id}],
    }
