"""Scheduler tick: drains due jobs per type and dispatches them to workers."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import Settings
from call_intelligence.db.models import Job
from call_intelligence.services.integrations.registry import Integrations
from call_intelligence.services.persistence.jobs import PIPELINE_ORDER, JobQueue, JobType
from call_intelligence.services.workers.base import COMPLETED, SKIPPED, StageWorker
from call_intelligence.services.workers.consent import (
    ConsentExpireWorker,
    ConsentReminderWorker,
    ConsentRequestWorker,
)
from call_intelligence.services.workers.crm import HubSpotSyncWorker
from call_intelligence.services.workers.recording import RecordingLookupWorker
from call_intelligence.services.workers.transcription import TranscriptionRequestWorker

logger = logging.getLogger(__name__)

WORKERS: Dict[JobType, Type[StageWorker]] = {
    JobType.RECORDING_LOOKUP: RecordingLookupWorker,
    JobType.CONSENT_REQUEST: ConsentRequestWorker,
    JobType.CONSENT_REMINDER: ConsentReminderWorker,
    JobType.CONSENT_EXPIRE: ConsentExpireWorker,
    JobType.STT_REQUEST: TranscriptionRequestWorker,
    JobType.HUBSPOT_SYNC: HubSpotSyncWorker,
}


class TickResult(BaseModel):
    """Summary of one scheduler tick."""

    success: bool = True
    processed: int = 0
    jobs: Dict[str, int] = {}
    errors: List[str] = []
    timestamp: str = ""


async def run_tick(
    db: AsyncSession,
    app_settings: Settings,
    integrations: Integrations,
    limit: Optional[int] = None,
) -> TickResult:
    """
    Drain up to `limit` due jobs of every type, in pipeline order.

    Types run one after another. A failing job or type is recorded in the
    result's errors and the tick moves on.
    """
    limit = limit or app_settings.max_jobs_per_run
    result = TickResult(jobs={job_type.value: 0 for job_type in PIPELINE_ORDER})
    queue = JobQueue(db, app_settings.job_backoff_base_seconds)

    for job_type in PIPELINE_ORDER:
        try:
            jobs = await queue.dequeue(job_type, limit)
        except Exception as e:
            await db.rollback()
            message = f"Failed to process {job_type.value}: {type(e).__name__}: {str(e)}"
            logger.error(f"[SCHEDULER] {message}", exc_info=True)
            result.errors.append(message)
            continue

        result.jobs[job_type.value] = len(jobs)
        worker = WORKERS[job_type](db, app_settings, integrations)
        # A failing job rolls the session back, which expires the rest of the batch
        for job_id in [job.id for job in jobs]:
            try:
                job = await db.get(Job, job_id, populate_existing=True)
                outcome = await worker.run(job)
            except Exception as e:
                await db.rollback()
                message = f"Job {job_id} ({job_type.value}): {type(e).__name__}: {str(e)}"
                logger.error(f"[SCHEDULER] {message}", exc_info=True)
                result.errors.append(message)
                continue

            if outcome == COMPLETED:
                result.processed += 1
            elif outcome != SKIPPED:
                result.errors.append(f"Job {job_id} ({job_type.value}): {job.error_message}")

    result.timestamp = datetime.now(timezone.utc).isoformat()
    if result.processed or result.errors:
        logger.info(
            f"[SCHEDULER] Tick finished - Processed: {result.processed}, Errors: {len(result.errors)}, "
            f"Jobs: {result.jobs}"
        )
    return result


async def run_poll_loop(
    session_factory: Callable[[], AsyncSession],
    app_settings: Settings,
    integrations: Integrations,
    interval_seconds: int,
) -> None:
    """Run a tick every interval until cancelled."""
    logger.info(f"[SCHEDULER] Poll loop started - Interval: {interval_seconds}s")
    while True:
        try:
            async with session_factory() as db:
                await run_tick(db, app_settings, integrations)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[SCHEDULER] Tick crashed - Error: {type(e).__name__}: {str(e)}", exc_info=True)
        await asyncio.sleep(interval_seconds)
