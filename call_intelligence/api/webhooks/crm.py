"""HubSpot webhook receiver."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_settings
from call_intelligence.core.security import hmac_sha256_hex, safe_compare, timestamp_is_fresh
from call_intelligence.db.database import get_db
from call_intelligence.services.persistence.audit import WebhookAuditService

router = APIRouter()
logger = logging.getLogger(__name__)


def verify_hubspot_signature(
    method: str,
    path: str,
    raw_body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    secret: str,
    now: Optional[float] = None,
) -> bool:
    """HubSpot v3: hex HMAC-SHA256 over timestamp, method, path and body; timestamp in ms."""
    if not timestamp or not signature:
        return False
    if not timestamp_is_fresh(timestamp, now=now, milliseconds=True):
        return False
    message = f"{timestamp}{method}{path}".encode("utf-8") + raw_body
    return safe_compare(signature, hmac_sha256_hex(secret, message))


@router.post("/hubspot")
async def handle_hubspot_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    """Record contact and deal change events for auditing."""
    secret = app_settings.hubspot_webhook_secret
    if not secret:
        logger.error("[CRM WEBHOOK] HUBSPOT_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    raw_body = await request.body()
    if not verify_hubspot_signature(
        request.method,
        request.url.path,
        raw_body,
        request.headers.get("x-hubspot-request-timestamp"),
        request.headers.get("x-hubspot-signature-v3"),
        secret,
    ):
        logger.warning("[CRM WEBHOOK] Invalid HubSpot webhook signature")
        raise HTTPException(status_code=401, detail="Invalid HubSpot webhook signature")

    try:
        events = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(events, list):
        return {"status": "ignored"}

    audit = WebhookAuditService(db)
    stored = 0
    for event in events:
        if not isinstance(event, dict):
            continue
        if await audit.record_crm_event(event) is not None:
            stored += 1

    logger.info(f"[CRM WEBHOOK] Received {len(events)} events, stored {stored}")
    return {"status": "received"}
