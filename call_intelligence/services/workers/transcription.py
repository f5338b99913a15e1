"""stt.request worker."""
import logging

from call_intelligence.core.errors import ConfigurationError, DownstreamError
from call_intelligence.db.models import CallSession, Job
from call_intelligence.services.persistence.flags import FeatureFlags
from call_intelligence.services.persistence.jobs import JobType
from call_intelligence.services.workers.base import StageWorker
from call_intelligence.services.workers.crm import find_known_contact

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_SECONDS = 3600
TRANSCRIPTION_WEBHOOK_PATH = "/webhooks/transcription"
CONSENT_CLEARED = ("approved", "not_required")


class TranscriptionRequestWorker(StageWorker):
    """Submits the call recording to ElevenLabs for asynchronous transcription."""

    job_type = JobType.STT_REQUEST

    async def process(self, job: Job, flags: FeatureFlags) -> None:
        session = await self.load_session(job)

        if session.transcription_status in ("in_progress", "completed"):
            logger.info(
                f"[STT REQUEST] Transcription already {session.transcription_status} - CallId: {job.call_id}"
            )
            return
        if flags.consent_enabled and session.consent_status not in CONSENT_CLEARED:
            logger.info(
                f"[STT REQUEST] Consent is {session.consent_status}, not transcribing - CallId: {job.call_id}"
            )
            return
        if not session.recording_url:
            raise DownstreamError(f"Recording URL not available for call {job.call_id}")

        if not flags.transcribe_unknown_numbers and not await find_known_contact(
            session, self.integrations.hubspot, self.calls
        ):
            logger.info(f"[STT REQUEST] Unknown number, transcription of unknown numbers is off - CallId: {job.call_id}")
            await self.calls.update(
                session,
                transcription_status="failed",
                last_error="Unknown number and transcribe_unknown_numbers is disabled",
            )
            return

        if not self.settings.elevenlabs_api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY not configured")
        if not self.settings.app_url:
            raise ConfigurationError("APP_URL not configured")
        if not self.settings.transcription_webhook_secret:
            raise ConfigurationError("TRANSCRIPTION_WEBHOOK_SECRET not configured")

        audio_url = await self._audio_url(session)
        webhook_url = f"{self.settings.app_url.rstrip('/')}{TRANSCRIPTION_WEBHOOK_PATH}"
        transcription_job_id = await self.integrations.transcription.create_transcription(
            audio_url, webhook_url, {"call_id": session.call_id}
        )

        await self.calls.update(
            session,
            transcription_job_id=transcription_job_id,
            transcription_status="in_progress",
            last_error=None,
        )
        logger.info(
            f"[STT REQUEST] Transcription submitted - CallId: {job.call_id}, "
            f"TranscriptionJobId: {transcription_job_id}"
        )

    async def _audio_url(self, session: CallSession) -> str:
        """
        URL ElevenLabs can fetch the recording from.

        Telavox recording URLs need our bearer token, so anything not already
        in our storage is mirrored there first and handed over as a signed
        URL. The storage path is remembered so retries skip the upload.
        """
        storage = self.integrations.storage
        if storage.is_owned_url(session.recording_url):
            return session.recording_url

        path = session.recording_storage_path
        if not path:
            path = f"telavox/{session.org_id}/{session.call_id}.mp3"
            if not await storage.exists(path):
                await self._upload(session, path)
            await self.calls.update(session, recording_storage_path=path)

        return await storage.signed_url(path, SIGNED_URL_TTL_SECONDS)

    async def _upload(self, session: CallSession, path: str) -> None:
        headers = None
        if self.integrations.telavox.is_api_url(session.recording_url):
            token = await self.calls.get_telavox_token(session)
            if not token:
                raise ConfigurationError(f"Missing Telavox access token for org {session.org_id}")
            headers = {"Authorization": f"Bearer {token}"}

        await self.integrations.storage.upload_from_url(session.recording_url, path, headers)

    def terminal_fields(self, terminal: bool) -> dict:
        return {"transcription_status": "failed"} if terminal else {}
