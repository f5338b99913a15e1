"""Telavox event normalization."""
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from call_intelligence.core.errors import PayloadValidationError


class CallEvent(str, Enum):
    """Internal call lifecycle events."""

    STARTED = "call.started"
    ANSWERED = "call.answered"
    ENDED = "call.ended"
    RECORDING_READY = "call.recording.ready"


# Telavox event names (lowercased) to internal events
EVENT_ALIASES: Dict[str, CallEvent] = {
    "ringing": CallEvent.STARTED,
    "answer": CallEvent.ANSWERED,
    "hangup": CallEvent.ENDED,
    "recording-ready": CallEvent.RECORDING_READY,
    "recording_ready": CallEvent.RECORDING_READY,
    CallEvent.STARTED.value: CallEvent.STARTED,
    CallEvent.ANSWERED.value: CallEvent.ANSWERED,
    CallEvent.ENDED.value: CallEvent.ENDED,
    CallEvent.RECORDING_READY.value: CallEvent.RECORDING_READY,
}

ORG_ID_FIELDS = ("orgId", "org_id", "organizationId", "organisation_id", "organization_id")
ORG_ID_HEADERS = ("x-telavox-org-id", "x-telavox-organization-id")


class NormalizedEvent(BaseModel):
    """A Telavox delivery mapped onto the internal taxonomy."""

    event: CallEvent
    raw_event: str
    call_id: str
    org_id: str
    direction: str = "INBOUND"
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    agent_user_id: Optional[str] = None
    recording_url: Optional[str] = None
    timestamp: Optional[str] = None


def map_event(name: Any) -> Optional[CallEvent]:
    """Map a Telavox event name to a CallEvent, or None when it is not one we handle."""
    if not isinstance(name, str):
        return None
    return EVENT_ALIASES.get(name.strip().lower())


def extract_org_id(payload: Mapping[str, Any], headers: Mapping[str, str]) -> Optional[str]:
    """Find the organization id in the body or, failing that, the headers."""
    for field in ORG_ID_FIELDS:
        value = payload.get(field)
        if value:
            return str(value)
    for header in ORG_ID_HEADERS:
        value = headers.get(header)
        if value:
            return value
    return None


def normalize_direction(value: Any) -> str:
    """INBOUND or OUTBOUND; anything unrecognised counts as inbound."""
    if not isinstance(value, str):
        return "INBOUND"
    if value.strip().upper() in ("OUTBOUND", "OUTGOING"):
        return "OUTBOUND"
    return "INBOUND"


def derive_call_id(payload: Mapping[str, Any]) -> str:
    """
    Stable correlation key for a call.

    Uses the provider's unique id (LID, then callId). Without one, the id is
    synthesized from both endpoints and the event timestamp so that
    re-deliveries of the same event map to the same session.
    """
    for field in ("LID", "callId"):
        value = payload.get(field)
        if value:
            return str(value)

    timestamp = payload.get("timestamp")
    if not timestamp:
        raise PayloadValidationError("Missing call identifier and timestamp")

    from_number = payload.get("from") or "unknown"
    to_number = payload.get("to") or "unknown"
    return f"{from_number}-{to_number}-{timestamp}"


def _text(payload: Mapping[str, Any], *fields: str) -> Optional[str]:
    for field in fields:
        value = payload.get(field)
        if value not in (None, ""):
            return str(value)
    return None


def normalize_event(event: CallEvent, payload: Mapping[str, Any], org_id: str) -> NormalizedEvent:
    """Build the normalized event for an already-mapped delivery."""
    return NormalizedEvent(
        event=event,
        raw_event=_text(payload, "eventType", "event") or event.value,
        call_id=derive_call_id(payload),
        org_id=org_id,
        direction=normalize_direction(payload.get("direction")),
        from_number=_text(payload, "from"),
        to_number=_text(payload, "to"),
        agent_user_id=_text(payload, "agentUserId", "agentEmail"),
        recording_url=_text(payload, "recordingUrl"),
        timestamp=_text(payload, "timestamp"),
    )
