"""Telavox call event webhook."""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_settings
from call_intelligence.core.errors import AuthenticationError, PayloadValidationError
from call_intelligence.db.database import get_db
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.telephony.auth import InboundWebhook, authenticate
from call_intelligence.services.telephony.events import extract_org_id, map_event, normalize_event
from call_intelligence.services.telephony.ingest import TelephonyEventService

router = APIRouter()
logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _reply(body: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=body, status_code=status_code, headers=NO_CACHE_HEADERS)


@router.post("/telephony")
async def handle_telephony_event(
    request: Request,
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    """
    Receive a Telavox call lifecycle event.

    Authenticates against the organization's webhook secret, normalizes the
    event and records it. Follow-up work is queued and never runs on this
    request.
    """
    client_host = request.client.host if request.client else None
    raw_body = await request.body()

    if app_settings.disable_webhook_auth and app_settings.is_production:
        logger.critical("[TELEPHONY WEBHOOK] Webhook authentication cannot be disabled in production")
        raise HTTPException(status_code=500, detail="Security configuration error", headers=NO_CACHE_HEADERS)

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        logger.warning(f"[TELEPHONY WEBHOOK] Invalid JSON payload - Client: {client_host or 'unknown'}")
        raise HTTPException(status_code=400, detail="Invalid JSON", headers=NO_CACHE_HEADERS)
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object", headers=NO_CACHE_HEADERS)

    org_id = extract_org_id(payload, request.headers)
    if not org_id:
        logger.warning(f"[TELEPHONY WEBHOOK] Missing orgId - Keys: {sorted(payload.keys())}")
        raise HTTPException(status_code=400, detail="Missing orgId", headers=NO_CACHE_HEADERS)

    if app_settings.disable_webhook_auth:
        logger.warning("[TELEPHONY WEBHOOK] Authentication DISABLED, accepting unauthenticated request")
    else:
        config = await CallPersistenceService(db).get_org_config(org_id)
        try:
            method = authenticate(
                InboundWebhook(raw_body, request.headers, payload),
                config.webhook_secret if config else None,
            )
        except AuthenticationError as e:
            logger.warning(f"[TELEPHONY WEBHOOK] Authentication failed - OrgId: {org_id}, Reason: {str(e)}")
            raise HTTPException(status_code=401, detail="Unauthorized", headers=NO_CACHE_HEADERS)
        logger.debug(f"[TELEPHONY WEBHOOK] Authenticated via {method} - OrgId: {org_id}")

    raw_event = payload.get("eventType") or payload.get("event")
    event_type = map_event(raw_event)
    if event_type is None:
        logger.info(f"[TELEPHONY WEBHOOK] Ignoring unknown event '{raw_event}' - OrgId: {org_id}")
        return _reply({"ok": True, "ignored": True})

    try:
        event = normalize_event(event_type, payload, org_id)
    except PayloadValidationError as e:
        logger.warning(f"[TELEPHONY WEBHOOK] Invalid payload - OrgId: {org_id}, Reason: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e), headers=NO_CACHE_HEADERS)

    logger.info(
        f"[TELEPHONY WEBHOOK] Received {event.event.value} ('{event.raw_event}') - "
        f"CallId: {event.call_id}, OrgId: {org_id}, Client: {client_host or 'unknown'}"
    )

    try:
        body = await TelephonyEventService(db, app_settings).ingest(event, payload, client_host)
    except Exception as e:
        logger.error(
            f"[TELEPHONY WEBHOOK] Error processing event - CallId: {event.call_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Error processing webhook", headers=NO_CACHE_HEADERS)

    return _reply(body)
