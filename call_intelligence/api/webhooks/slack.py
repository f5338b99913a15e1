"""Slack interactivity callback for the consent prompt."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_integrations, get_settings
from call_intelligence.core.security import hmac_sha256_hex, safe_compare, timestamp_is_fresh
from call_intelligence.db.database import get_db
from call_intelligence.services.consent.decisions import ConsentDecisionService
from call_intelligence.services.consent.messages import APPROVE_ACTION, DECLINE_ACTION
from call_intelligence.services.integrations.registry import Integrations
from call_intelligence.services.integrations.slack import slack_credentials
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.persistence.consent import ConsentPersistenceService
from call_intelligence.services.persistence.flags import SettingsRepository
from call_intelligence.services.persistence.jobs import JobQueue

router = APIRouter()
logger = logging.getLogger(__name__)

ACTION_STATUS = {
    APPROVE_ACTION: "approved",
    DECLINE_ACTION: "declined",
}


def verify_slack_signature(
    raw_body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    signing_secret: str,
    now: Optional[float] = None,
) -> bool:
    """Slack v0 request signature: HMAC-SHA256 over "v0:{timestamp}:{body}"."""
    if not timestamp or not signature or not timestamp_is_fresh(timestamp, now=now):
        return False
    basestring = f"v0:{timestamp}:".encode("utf-8") + raw_body
    return safe_compare(signature, f"v0={hmac_sha256_hex(signing_secret, basestring)}")


@router.post("/slack/interactions")
async def handle_slack_interaction(
    request: Request,
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
    integrations: Integrations = Depends(get_integrations),
):
    """Apply an approve/decline button press to its consent request."""
    flags = await SettingsRepository(db).load_flags()
    token, signing_secret = slack_credentials(app_settings, flags)
    if not signing_secret:
        logger.error("[SLACK INTERACTION] Slack signing secret is not configured")
        raise HTTPException(status_code=500, detail="Slack signing secret not configured")

    raw_body = await request.body()
    if not verify_slack_signature(
        raw_body,
        request.headers.get("x-slack-request-timestamp"),
        request.headers.get("x-slack-signature"),
        signing_secret,
    ):
        logger.warning("[SLACK INTERACTION] Invalid or stale signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    form = await request.form()
    raw_payload = form.get("payload")
    if not raw_payload:
        raise HTTPException(status_code=400, detail="Missing payload")
    try:
        payload = json.loads(raw_payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload JSON")

    actions = payload.get("actions") or []
    action = actions[0] if actions else {}
    action_id = action.get("action_id")
    if payload.get("type") != "block_actions" or action_id not in ACTION_STATUS:
        logger.info(f"[SLACK INTERACTION] Ignoring {payload.get('type')} / {action_id}")
        return {"ok": True, "ignored": True}

    try:
        value = json.loads(action.get("value") or "{}")
    except ValueError:
        value = {}
    request_id = value.get("requestId")
    call_id = value.get("call_id")
    if not request_id or not call_id:
        raise HTTPException(status_code=400, detail="Missing requestId or call_id")

    try:
        consent_request = await ConsentPersistenceService(db).get(int(request_id))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid requestId")
    if consent_request is None or consent_request.call_id != call_id:
        raise HTTPException(status_code=404, detail="Consent request not found")

    decisions = ConsentDecisionService(db, JobQueue(db, app_settings.job_backoff_base_seconds))
    session = await CallPersistenceService(db).get_session(call_id)

    if consent_request.status != "pending":
        logger.info(
            f"[SLACK INTERACTION] Request {consent_request.id} already {consent_request.status} - CallId: {call_id}"
        )
        await decisions.update_prompt(
            integrations.slack, token, consent_request, session, label="Already handled"
        )
        return {"status": "already_processed"}

    acting_user = (payload.get("user") or {}).get("id")
    if acting_user != consent_request.slack_user_id:
        logger.warning(
            f"[SLACK INTERACTION] User {acting_user} cannot answer request {consent_request.id} "
            f"meant for {consent_request.slack_user_id}"
        )
        raise HTTPException(status_code=403, detail="Only the call's agent can answer this request")

    if session is None:
        raise HTTPException(status_code=404, detail="Call session not found")

    status = ACTION_STATUS[action_id]
    resolved = await decisions.decide(
        consent_request,
        status,
        "slack",
        {"user_id": acting_user, "action_id": action_id},
    )
    if not resolved:
        await decisions.update_prompt(
            integrations.slack, token, consent_request, session, label="Already handled"
        )
        return {"status": "already_processed"}

    await db.refresh(session)
    await decisions.update_prompt(integrations.slack, token, consent_request, session, status=status)
    logger.info(f"[SLACK INTERACTION] Consent {status} by {acting_user} - CallId: {call_id}")
    return {"status": status}
