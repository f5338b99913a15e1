"""consent.request, consent.reminder and consent.expire workers."""
import logging
from datetime import timedelta
from typing import Optional

from call_intelligence.db.models import CallSession, ConsentRequest, Job, utcnow
from call_intelligence.services.consent.decisions import ConsentDecisionService
from call_intelligence.services.consent.messages import consent_prompt_blocks, consent_prompt_text
from call_intelligence.services.integrations.slack import slack_credentials
from call_intelligence.services.persistence.consent import ConsentPersistenceService
from call_intelligence.services.persistence.flags import FeatureFlags
from call_intelligence.services.persistence.jobs import JobType
from call_intelligence.services.workers.base import StageWorker
from call_intelligence.services.workers.crm import find_known_contact

logger = logging.getLogger(__name__)


class ConsentWorker(StageWorker):
    """Shared helpers for the consent stages."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.consent = ConsentPersistenceService(self.db)

    async def load_request(self, job: Job) -> Optional[ConsentRequest]:
        request_id = (job.payload or {}).get("consent_request_id")
        if request_id is not None:
            return await self.consent.get(int(request_id))
        return await self.consent.get_pending_for_call(job.call_id)

    def slack_token(self, flags: FeatureFlags) -> Optional[str]:
        token, _ = slack_credentials(self.settings, flags)
        return token


class ConsentRequestWorker(ConsentWorker):
    """Asks the call's agent, over Slack, whether the call may be transcribed."""

    job_type = JobType.CONSENT_REQUEST

    async def process(self, job: Job, flags: FeatureFlags) -> None:
        session = await self.load_session(job)

        if session.transcription_status == "completed":
            logger.info(f"[CONSENT REQUEST] Already transcribed - CallId: {job.call_id}")
            return
        if session.consent_status != "pending":
            logger.info(f"[CONSENT REQUEST] Consent already {session.consent_status} - CallId: {job.call_id}")
            return

        if not flags.consent_enabled:
            await self._not_required(session, "consent disabled")
            return
        if flags.consent_auto_approve_known_contacts and await find_known_contact(
            session, self.integrations.hubspot, self.calls
        ):
            logger.warning(
                f"[CONSENT REQUEST] Auto-approving known contact {session.crm_contact_id} without asking the agent - "
                f"CallId: {job.call_id}"
            )
            await self._not_required(session, "known contact")
            return

        if not session.agent_user_id:
            await self._decline(session, "Missing agent_user_id for consent")
            return

        request = await self.consent.get_pending_for_call(session.call_id)
        if request is not None and request.slack_message_ts:
            logger.info(f"[CONSENT REQUEST] Prompt already sent - CallId: {job.call_id}, RequestId: {request.id}")
            return

        if request is None:
            mapping = await self.consent.get_active_mapping(session.agent_user_id)
            if mapping is None:
                await self._decline(session, "No Slack mapping for agent")
                return
            request = await self.consent.create(
                session.call_id,
                session.agent_user_id,
                mapping.slack_user_id,
                expires_at=utcnow() + timedelta(hours=flags.consent_timeout_hours),
            )

        channel_id, message_ts = await self.integrations.slack.post_message(
            request.slack_user_id,
            consent_prompt_text(session.call_id),
            consent_prompt_blocks(session, request.id),
            token=self.slack_token(flags),
        )
        await self.consent.set_message(request, channel_id, message_ts)
        await self.calls.update(session, consent_status="pending")
        await self._schedule_follow_ups(session, request, flags)
        logger.info(
            f"[CONSENT REQUEST] Prompt sent - CallId: {job.call_id}, RequestId: {request.id}, "
            f"SlackUser: {request.slack_user_id}"
        )

    async def on_failure(self, job: Job, message: str, terminal: bool) -> None:
        """A prompt that can never be delivered closes consent as declined."""
        fields = {}
        if terminal:
            request = await self.consent.get_pending_for_call(job.call_id)
            if request is not None:
                await self.consent.resolve(request, "expired", "delivery_failed")
            session = await self.calls.get_session(job.call_id)
            if session is not None and session.consent_status == "pending":
                fields = {"consent_status": "declined", "transcription_status": "failed"}
        await self.calls.record_error(job.call_id, message, **fields)

    async def _schedule_follow_ups(self, session: CallSession, request: ConsentRequest, flags: FeatureFlags) -> None:
        payload = {"consent_request_id": request.id}
        if flags.consent_reminder_hours > 0:
            remind_at = request.sent_at + timedelta(hours=flags.consent_reminder_hours)
            if remind_at < request.expires_at:
                await self.queue.enqueue_unique(
                    JobType.CONSENT_REMINDER, session.call_id, session.org_id,
                    payload=payload, scheduled_at=remind_at,
                )
        await self.queue.enqueue_unique(
            JobType.CONSENT_EXPIRE, session.call_id, session.org_id,
            payload=payload, scheduled_at=request.expires_at,
        )

    async def _not_required(self, session: CallSession, reason: str) -> None:
        await self.calls.update(session, consent_status="not_required")
        await self.queue.enqueue_unique(JobType.STT_REQUEST, session.call_id, session.org_id)
        logger.info(f"[CONSENT REQUEST] Consent not required ({reason}) - CallId: {session.call_id}")

    async def _decline(self, session: CallSession, reason: str) -> None:
        await self.calls.update(
            session, consent_status="declined", transcription_status="failed", last_error=reason
        )
        logger.warning(f"[CONSENT REQUEST] {reason} - CallId: {session.call_id}")


class ConsentReminderWorker(ConsentWorker):
    """Nudges the agent once if the prompt is still unanswered."""

    job_type = JobType.CONSENT_REMINDER

    async def process(self, job: Job, flags: FeatureFlags) -> None:
        request = await self.load_request(job)
        if request is None or request.status != "pending":
            logger.info(f"[CONSENT REMINDER] Nothing pending - CallId: {job.call_id}")
            return
        if request.reminder_sent_at is not None:
            logger.info(f"[CONSENT REMINDER] Reminder already sent - RequestId: {request.id}")
            return
        if utcnow() >= request.expires_at:
            logger.info(f"[CONSENT REMINDER] Request past its deadline - RequestId: {request.id}")
            return

        session = await self.load_session(job)
        await self.integrations.slack.post_message(
            request.slack_user_id,
            consent_prompt_text(session.call_id, reminder=True),
            consent_prompt_blocks(session, request.id, reminder=True),
            token=self.slack_token(flags),
        )
        await self.consent.mark_reminded(request)
        logger.info(f"[CONSENT REMINDER] Reminder sent - CallId: {job.call_id}, RequestId: {request.id}")


class ConsentExpireWorker(ConsentWorker):
    """Closes an unanswered request at its deadline; no answer means no transcription."""

    job_type = JobType.CONSENT_EXPIRE

    async def process(self, job: Job, flags: FeatureFlags) -> None:
        request = await self.load_request(job)
        if request is None or request.status != "pending":
            logger.info(f"[CONSENT EXPIRE] Nothing pending - CallId: {job.call_id}")
            return
        if request.expires_at > utcnow():
            logger.info(f"[CONSENT EXPIRE] Deadline not reached - RequestId: {request.id}")
            return

        decisions = ConsentDecisionService(self.db, self.queue)
        if not await decisions.decide(request, "expired", "timeout"):
            return

        session = await self.calls.get_session(request.call_id)
        await decisions.update_prompt(
            self.integrations.slack, self.slack_token(flags), request, session, status="expired"
        )
        logger.info(f"[CONSENT EXPIRE] Consent expired - CallId: {job.call_id}, RequestId: {request.id}")
