"""recording.lookup worker."""
import logging

from call_intelligence.core.errors import ConfigurationError, DownstreamError
from call_intelligence.db.models import Job
from call_intelligence.services.persistence.flags import FeatureFlags
from call_intelligence.services.persistence.jobs import JobType
from call_intelligence.services.telephony.client import select_recording_candidate
from call_intelligence.services.workers.base import StageWorker, enqueue_next_stage

logger = logging.getLogger(__name__)


class RecordingLookupWorker(StageWorker):
    """Finds the recording of a finished call in the Telavox call history."""

    job_type = JobType.RECORDING_LOOKUP

    async def process(self, job: Job, flags: FeatureFlags) -> None:
        session = await self.load_session(job)

        if session.recording_url:
            logger.info(f"[RECORDING LOOKUP] Recording already known - CallId: {job.call_id}")
            await enqueue_next_stage(self.queue, flags, session.call_id, session.org_id)
            return

        token = await self.calls.get_telavox_token(session)
        if not token:
            raise ConfigurationError(
                f"No Telavox access token for agent {session.agent_user_id} or org {session.org_id}"
            )

        history = await self.integrations.telavox.list_recent_calls(token)
        reference_time = session.started_at or session.answered_at or session.ended_at
        candidate = select_recording_candidate(
            history, session.from_number, session.to_number, reference_time
        )
        if candidate is None:
            raise DownstreamError(
                f"No matching recording in Telavox call history ({len(history)} calls checked)"
            )

        recording_url = self.integrations.telavox.recording_url(candidate.recording_id)
        await self.calls.update(session, recording_url=recording_url, recording_status="available")
        logger.info(
            f"[RECORDING LOOKUP] Recording found - CallId: {job.call_id}, RecordingId: {candidate.recording_id}, "
            f"Duration: {candidate.duration}"
        )
        await enqueue_next_stage(self.queue, flags, session.call_id, session.org_id)

    def terminal_fields(self, terminal: bool) -> dict:
        return {"recording_status": "not_found"} if terminal else {}
