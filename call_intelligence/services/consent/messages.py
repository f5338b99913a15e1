"""Slack Block Kit messages for the consent prompt."""
import json
from typing import Any, Dict, List, Optional

from call_intelligence.db.models import CallSession

APPROVE_ACTION = "consent_approve"
DECLINE_ACTION = "consent_decline"

DECISION_LABELS = {
    "approved": "Approved",
    "declined": "Declined",
    "expired": "Expired",
}

DECISION_TEXT = {
    "approved": "Transcription approved.",
    "declined": "Transcription declined.",
    "expired": "Consent expired. Transcription will not proceed.",
}


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def call_details(session: Optional[CallSession], call_id: str) -> str:
    lines = []
    if session is not None:
        if session.direction:
            lines.append(f"*Direction:* {session.direction}")
        if session.from_number:
            lines.append(f"*From:* {session.from_number}")
        if session.to_number:
            lines.append(f"*To:* {session.to_number}")
    lines.append(f"*Call ID:* {call_id}")
    return "\n".join(lines)


def button_value(request_id: int, call_id: str) -> str:
    return json.dumps({"requestId": request_id, "call_id": call_id})


def consent_prompt_blocks(
    session: CallSession, request_id: int, reminder: bool = False
) -> List[Dict[str, Any]]:
    """Approve/decline prompt sent to the agent."""
    heading = (
        "*Reminder:* approve transcription for this call?"
        if reminder
        else "*Approve transcription for this call?*"
    )
    value = button_value(request_id, session.call_id)
    return [
        _section(heading),
        _section(call_details(session, session.call_id)),
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "action_id": APPROVE_ACTION,
                    "style": "primary",
                    "text": {"type": "plain_text", "text": "Approve"},
                    "value": value,
                },
                {
                    "type": "button",
                    "action_id": DECLINE_ACTION,
                    "style": "danger",
                    "text": {"type": "plain_text", "text": "Decline"},
                    "value": value,
                },
            ],
        },
    ]


def consent_prompt_text(call_id: str, reminder: bool = False) -> str:
    if reminder:
        return f"Reminder: approve transcription for call {call_id}"
    return f"Approve transcription for call {call_id}?"


def decision_blocks(label: str, session: Optional[CallSession], call_id: str) -> List[Dict[str, Any]]:
    """Replacement content for a prompt once it is decided."""
    return [
        _section(f"*Transcription decision:* {label}"),
        _section(call_details(session, call_id)),
    ]
