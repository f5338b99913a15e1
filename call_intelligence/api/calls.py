"""Call session inspection and reprocessing endpoints."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.api.auth import require_cron_secret
from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_settings
from call_intelligence.db.database import get_db
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.persistence.flags import SettingsRepository
from call_intelligence.services.persistence.jobs import JobQueue, JobType
from call_intelligence.services.workers.base import enqueue_next_stage

router = APIRouter()
logger = logging.getLogger(__name__)


class JobResponse(BaseModel):
    """Job response model."""
    id: int
    job_type: str
    status: str
    attempts: int
    max_attempts: int
    scheduled_at: Optional[str] = None
    error_message: Optional[str] = None


class CallSessionResponse(BaseModel):
    """Call session response model."""
    call_id: str
    org_id: str
    direction: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    recording_status: str
    consent_status: str
    transcription_status: str
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    crm_engagement_id: Optional[str] = None
    last_error: Optional[str] = None
    jobs: List[JobResponse] = []


class ReprocessResponse(BaseModel):
    call_id: str
    enqueued: Optional[str] = None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


@router.get("/api/calls/{call_id}", response_model=CallSessionResponse)
async def get_call(
    call_id: str,
    _: bool = Depends(require_cron_secret),
    db: AsyncSession = Depends(get_db),
):
    """Current pipeline state of one call, with its jobs."""
    session = await CallPersistenceService(db).get_session(call_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Call session not found")

    jobs = await JobQueue(db).jobs_for_call(call_id)
    return CallSessionResponse(
        call_id=session.call_id,
        org_id=session.org_id,
        direction=session.direction,
        started_at=_iso(session.started_at),
        ended_at=_iso(session.ended_at),
        recording_status=session.recording_status,
        consent_status=session.consent_status,
        transcription_status=session.transcription_status,
        summary=session.summary,
        sentiment=session.sentiment,
        crm_engagement_id=session.crm_engagement_id,
        last_error=session.last_error,
        jobs=[
            JobResponse(
                id=job.id,
                job_type=job.job_type,
                status=job.status,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                scheduled_at=_iso(job.scheduled_at),
                error_message=job.error_message,
            )
            for job in jobs
        ],
    )


@router.post("/api/calls/{call_id}/reprocess", response_model=ReprocessResponse)
async def reprocess_call(
    call_id: str,
    request: Request,
    _: bool = Depends(require_cron_secret),
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    """
    Reset a call's pipeline state and queue it again.

    Calls without a recording start over at the recording lookup; the rest
    go straight to consent or transcription.
    """
    calls = CallPersistenceService(db)
    session = await calls.get_session(call_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Call session not found")

    logger.info(
        f"[REPROCESS] Reprocessing call - CallId: {call_id}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    fields = {
        "last_error": None,
        "transcription_status": "pending",
        "transcription_job_id": None,
        "crm_engagement_id": None,
        "crm_note_id": None,
        "crm_call_object_id": None,
    }
    if session.consent_status != "not_required":
        fields["consent_status"] = "pending"
    await calls.update(session, **fields)

    queue = JobQueue(db, app_settings.job_backoff_base_seconds)
    if not session.recording_url:
        job = await queue.enqueue_unique(JobType.RECORDING_LOOKUP, session.call_id, session.org_id)
    else:
        flags = await SettingsRepository(db).load_flags()
        job = await enqueue_next_stage(queue, flags, session.call_id, session.org_id)

    if job is None:
        logger.info(f"[REPROCESS] Stage already queued - CallId: {call_id}")
    return ReprocessResponse(call_id=call_id, enqueued=job.job_type if job else None)
