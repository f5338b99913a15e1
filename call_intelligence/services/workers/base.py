"""Common job execution contract for pipeline stage workers."""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import Settings
from call_intelligence.core.errors import DownstreamError, is_retryable
from call_intelligence.db.models import CallSession, Job
from call_intelligence.services.integrations.registry import Integrations
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.persistence.flags import FeatureFlags, SettingsRepository
from call_intelligence.services.persistence.jobs import JobQueue, JobType

logger = logging.getLogger(__name__)

# Outcomes of StageWorker.run
COMPLETED = "completed"
SKIPPED = "skipped"
RETRYING = "retrying"
FAILED = "failed"


async def enqueue_next_stage(queue: JobQueue, flags: FeatureFlags, call_id: str, org_id: str) -> Optional[Job]:
    """Queue what follows an available recording: consent when enabled, else transcription."""
    job_type = JobType.CONSENT_REQUEST if flags.consent_enabled else JobType.STT_REQUEST
    return await queue.enqueue_unique(job_type, call_id, org_id)


class StageWorker(ABC):
    """
    Runs one job of a single type.

    Claims the job, loads the feature flags for this invocation, runs
    process() and settles the job. Any exception rolls back, is recorded on
    the job and the session, and reschedules the job with backoff unless it
    was a configuration error or the attempts are used up.
    """

    job_type: JobType

    def __init__(self, db: AsyncSession, app_settings: Settings, integrations: Integrations):
        self.db = db
        self.settings = app_settings
        self.integrations = integrations
        self.queue = JobQueue(db, app_settings.job_backoff_base_seconds)
        self.calls = CallPersistenceService(db)

    async def run(self, job: Job) -> str:
        if not await self.queue.start(job):
            return SKIPPED

        logger.info(
            f"[{self.log_tag}] Processing job - JobId: {job.id}, CallId: {job.call_id}, "
            f"Attempt: {job.attempts}/{job.max_attempts}"
        )
        try:
            flags = await SettingsRepository(self.db).load_flags()
            await self.process(job, flags)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                f"[{self.log_tag}] Job failed - JobId: {job.id}, CallId: {job.call_id}, "
                f"Error: {type(e).__name__}: {message}",
                exc_info=not is_retryable(e),
            )
            await self.db.rollback()
            await self.db.refresh(job)
            terminal = await self.queue.fail(job, message, retryable=is_retryable(e))
            await self.on_failure(job, message, terminal)
            return FAILED if terminal else RETRYING

        await self.queue.complete(job)
        return COMPLETED

    @property
    def log_tag(self) -> str:
        return self.job_type.value.upper()

    async def load_session(self, job: Job) -> CallSession:
        session = await self.calls.get_session(job.call_id)
        if session is None:
            raise DownstreamError(f"Session not found for call {job.call_id}")
        return session

    @abstractmethod
    async def process(self, job: Job, flags: FeatureFlags) -> None:
        """Do the stage's work. Returning normally completes the job."""
        pass

    async def on_failure(self, job: Job, message: str, terminal: bool) -> None:
        """Record the failure on the session. Stages add terminal status fields."""
        await self.calls.record_error(job.call_id, message, **self.terminal_fields(terminal))

    def terminal_fields(self, terminal: bool) -> dict:
        return {}
