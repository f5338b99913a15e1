"""Durable job queue backed by the jobs table."""
import logging
import random
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import settings
from call_intelligence.db.models import Job, utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "in_progress")
MAX_ERROR_LENGTH = 500


class JobType(str, Enum):
    """Pipeline stages, in the order a scheduler tick drains them."""

    RECORDING_LOOKUP = "recording.lookup"
    CONSENT_REQUEST = "consent.request"
    CONSENT_REMINDER = "consent.reminder"
    CONSENT_EXPIRE = "consent.expire"
    STT_REQUEST = "stt.request"
    HUBSPOT_SYNC = "hubspot.sync"


PIPELINE_ORDER = (
    JobType.RECORDING_LOOKUP,
    JobType.CONSENT_REQUEST,
    JobType.CONSENT_REMINDER,
    JobType.CONSENT_EXPIRE,
    JobType.STT_REQUEST,
    JobType.HUBSPOT_SYNC,
)


def backoff_delay(attempts: int, base_seconds: Optional[int] = None) -> timedelta:
    """Delay before the next attempt: base * 2^attempts plus up to 10% jitter."""
    base = settings.job_backoff_base_seconds if base_seconds is None else base_seconds
    seconds = base * (2 ** attempts)
    return timedelta(seconds=seconds + random.uniform(0, seconds * 0.1))


class JobQueue:
    """Enqueue, claim and settle pipeline jobs."""

    def __init__(self, db: AsyncSession, backoff_base_seconds: Optional[int] = None):
        self.db = db
        self.backoff_base_seconds = backoff_base_seconds

    async def enqueue(
        self,
        job_type: JobType,
        call_id: str,
        org_id: str,
        payload: Optional[Dict[str, Any]] = None,
        scheduled_at: Optional[datetime] = None,
        max_attempts: int = 3,
    ) -> Job:
        """Insert a pending job. Callers check exists() first to avoid duplicates."""
        job = Job(
            job_type=JobType(job_type).value,
            call_id=call_id,
            org_id=org_id,
            payload=payload,
            status="pending",
            attempts=0,
            max_attempts=max_attempts,
            scheduled_at=scheduled_at or utcnow(),
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        logger.info(
            f"[JOB QUEUE] Enqueued {job.job_type} - CallId: {call_id}, JobId: {job.id}, "
            f"ScheduledAt: {job.scheduled_at.isoformat()}"
        )
        return job

    async def enqueue_unique(
        self,
        job_type: JobType,
        call_id: str,
        org_id: str,
        **kwargs: Any,
    ) -> Optional[Job]:
        """Enqueue unless an active job of this type already exists for the call."""
        if await self.exists(job_type, call_id):
            logger.debug(f"[JOB QUEUE] {JobType(job_type).value} already active - CallId: {call_id}")
            return None
        return await self.enqueue(job_type, call_id, org_id, **kwargs)

    async def exists(self, job_type: JobType, call_id: str, statuses=ACTIVE_STATUSES) -> bool:
        """Whether a job of this type with one of the given statuses exists for the call."""
        result = await self.db.execute(
            select(Job.id)
            .where(
                Job.job_type == JobType(job_type).value,
                Job.call_id == call_id,
                Job.status.in_(statuses),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def dequeue(self, job_type: JobType, limit: int = 10) -> List[Job]:
        """Due pending jobs of one type, oldest schedule first."""
        result = await self.db.execute(
            select(Job)
            .where(
                Job.job_type == JobType(job_type).value,
                Job.status == "pending",
                Job.scheduled_at <= utcnow(),
            )
            .order_by(Job.scheduled_at.asc(), Job.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def start(self, job: Job) -> bool:
        """
        Claim a job for execution.

        The claim is a conditional update on status, so when two ticks race
        for the same job only one of them gets True.
        """
        now = utcnow()
        result = await self.db.execute(
            update(Job)
            .where(and_(Job.id == job.id, Job.status == "pending"))
            .values(
                status="in_progress",
                attempts=Job.attempts + 1,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            logger.info(f"[JOB QUEUE] Job already claimed - JobId: {job.id}, Type: {job.job_type}")
            return False

        await self.db.refresh(job)
        return True

    async def complete(self, job: Job) -> None:
        now = utcnow()
        job.status = "completed"
        job.completed_at = now
        job.updated_at = now
        await self.db.commit()
        logger.info(f"[JOB QUEUE] Completed {job.job_type} - CallId: {job.call_id}, JobId: {job.id}")

    async def fail(self, job: Job, message: str, retryable: bool = True) -> bool:
        """
        Record a failed attempt.

        Returns:
            True if the job is now terminally failed, False if it was rescheduled
        """
        job.error_message = (message or "")[:MAX_ERROR_LENGTH]
        job.updated_at = utcnow()

        terminal = not retryable or job.attempts >= job.max_attempts
        if terminal:
            job.status = "failed"
            logger.error(
                f"[JOB QUEUE] Job failed permanently - JobId: {job.id}, Type: {job.job_type}, "
                f"CallId: {job.call_id}, Attempts: {job.attempts}/{job.max_attempts}, Error: {message}"
            )
        else:
            job.status = "pending"
            job.scheduled_at = utcnow() + backoff_delay(job.attempts, self.backoff_base_seconds)
            logger.warning(
                f"[JOB QUEUE] Job rescheduled - JobId: {job.id}, Type: {job.job_type}, "
                f"CallId: {job.call_id}, Attempts: {job.attempts}/{job.max_attempts}, "
                f"RetryAt: {job.scheduled_at.isoformat()}, Error: {message}"
            )

        await self.db.commit()
        return terminal

    async def jobs_for_call(self, call_id: str) -> List[Job]:
        result = await self.db.execute(
            select(Job).where(Job.call_id == call_id).order_by(Job.created_at.asc(), Job.id.asc())
        )
        return list(result.scalars().all())
