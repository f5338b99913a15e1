"""ElevenLabs transcription completion webhook."""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_integrations, get_settings
from call_intelligence.core.security import hmac_sha256_hex, safe_compare, timestamp_is_fresh
from call_intelligence.db.database import get_db
from call_intelligence.services.integrations.registry import Integrations
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.persistence.flags import SettingsRepository
from call_intelligence.services.persistence.jobs import JobQueue, JobType

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "elevenlabs-signature"


def parse_signature(header: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split "t=<unix>,v0=<hex>" into (timestamp, digest)."""
    timestamp = digest = None
    for part in (header or "").split(","):
        part = part.strip()
        if part.startswith("t="):
            timestamp = part[2:]
        elif part.startswith("v0="):
            digest = part[3:]
    return timestamp, digest


def verify_signature(raw_body: bytes, header: Optional[str], secret: str, now: Optional[float] = None) -> bool:
    timestamp, digest = parse_signature(header)
    if not timestamp or not digest or not timestamp_is_fresh(timestamp, now=now):
        return False
    expected = hmac_sha256_hex(secret, f"{timestamp}.".encode("utf-8") + raw_body)
    return safe_compare(digest, expected)


def flatten_transcript(turns: Optional[List[Dict[str, Any]]]) -> str:
    """One "role: message" line per turn."""
    return "\n".join(f"{turn.get('role', '')}: {turn.get('message', '')}" for turn in (turns or []))


@router.post("/transcription")
async def handle_transcription_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
    integrations: Integrations = Depends(get_integrations),
):
    """Store a finished transcript with its analysis and queue the CRM sync."""
    secret = app_settings.transcription_webhook_secret
    if not secret:
        logger.error("[TRANSCRIPTION WEBHOOK] TRANSCRIPTION_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    raw_body = await request.body()
    if not verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("[TRANSCRIPTION WEBHOOK] Invalid or stale signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if not isinstance(payload, dict):
        return {"status": "received"}
    data = payload.get("data") or {}
    call_id = (data.get("metadata") or {}).get("call_id")
    if payload.get("type") != "post_call_transcription" or not call_id:
        logger.info(f"[TRANSCRIPTION WEBHOOK] Ignoring event type '{payload.get('type')}'")
        return {"status": "received"}

    calls = CallPersistenceService(db)
    session = await calls.get_session(str(call_id))
    if session is None:
        logger.warning(f"[TRANSCRIPTION WEBHOOK] Unknown call - CallId: {call_id}")
        raise HTTPException(status_code=404, detail="Call session not found")

    if session.transcription_status == "completed":
        logger.info(f"[TRANSCRIPTION WEBHOOK] Duplicate delivery ignored - CallId: {call_id}")
        return {"status": "already_processed"}

    transcript = flatten_transcript(data.get("transcript"))
    flags = await SettingsRepository(db).load_flags()
    try:
        analysis = await integrations.analyzer.analyze(transcript, session, flags)
        await calls.update(
            session,
            transcription_status="completed",
            transcript=transcript,
            summary=analysis.summary,
            sentiment=analysis.sentiment,
            insights=analysis.insights(),
            last_error=None,
        )
    except Exception as e:
        logger.error(
            f"[TRANSCRIPTION WEBHOOK] Failed to store transcript - CallId: {call_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        await db.rollback()
        await calls.record_error(str(call_id), str(e) or "Failed to persist transcription", transcription_status="failed")
        raise HTTPException(status_code=500, detail="Failed to store transcript")

    logger.info(
        f"[TRANSCRIPTION WEBHOOK] Transcript stored - CallId: {call_id}, Lines: {transcript.count(chr(10)) + 1 if transcript else 0}, "
        f"Sentiment: {analysis.sentiment}"
    )

    try:
        await JobQueue(db, app_settings.job_backoff_base_seconds).enqueue_unique(
            JobType.HUBSPOT_SYNC, session.call_id, session.org_id
        )
    except Exception as e:
        await db.rollback()
        logger.error(
            f"[TRANSCRIPTION WEBHOOK] Failed to enqueue HubSpot sync - CallId: {call_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )

    return {"status": "received"}
