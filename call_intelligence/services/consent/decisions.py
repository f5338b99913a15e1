"""Applying consent decisions to requests, sessions and the Slack prompt."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.errors import PipelineError
from call_intelligence.db.models import CallSession, ConsentRequest
from call_intelligence.services.consent.messages import DECISION_LABELS, DECISION_TEXT, decision_blocks
from call_intelligence.services.integrations.slack import SlackClient
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.persistence.consent import ConsentPersistenceService
from call_intelligence.services.persistence.jobs import JobQueue, JobType

logger = logging.getLogger(__name__)

# Session fields written for each terminal consent status
SESSION_OUTCOMES: Dict[str, Dict[str, Any]] = {
    "approved": {"consent_status": "approved"},
    "declined": {
        "consent_status": "declined",
        "transcription_status": "failed",
        "last_error": "Transcription declined by agent",
    },
    "expired": {
        "consent_status": "expired",
        "transcription_status": "failed",
        "last_error": "Consent timeout",
    },
}


class ConsentDecisionService:
    """Settles a consent request once, from a button press or from the timeout."""

    def __init__(self, db: AsyncSession, queue: JobQueue):
        self.db = db
        self.queue = queue
        self.calls = CallPersistenceService(db)
        self.consent = ConsentPersistenceService(db)

    async def decide(
        self,
        request: ConsentRequest,
        status: str,
        source: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Resolve the request and propagate to the session.

        Returns False, touching nothing else, when the request had already
        been resolved by someone else.
        """
        if not await self.consent.resolve(request, status, source, metadata):
            return False

        session = await self.calls.get_session(request.call_id)
        if session is None:
            logger.warning(f"[CONSENT] Session missing for resolved request - CallId: {request.call_id}")
            return True

        if session.consent_status != "pending":
            logger.info(
                f"[CONSENT] Session consent already {session.consent_status}, not overwriting - "
                f"CallId: {request.call_id}"
            )
            return True

        await self.calls.update(session, **SESSION_OUTCOMES[status])
        if status == "approved":
            await self.queue.enqueue_unique(JobType.STT_REQUEST, session.call_id, session.org_id)
        return True

    async def update_prompt(
        self,
        slack: SlackClient,
        token: Optional[str],
        request: ConsentRequest,
        session: Optional[CallSession],
        status: Optional[str] = None,
        label: Optional[str] = None,
    ) -> None:
        """Edit the original prompt in place. Failures are logged, never raised."""
        if not request.slack_channel_id or not request.slack_message_ts:
            return

        label = label or DECISION_LABELS.get(status, "Already handled")
        text = DECISION_TEXT.get(status, f"Transcription decision: {label}")
        try:
            await slack.update_message(
                request.slack_channel_id,
                request.slack_message_ts,
                text,
                decision_blocks(label, session, request.call_id),
                token=token,
            )
        except PipelineError as e:
            logger.warning(
                f"[CONSENT] Failed to update Slack message - RequestId: {request.id}, Error: {str(e)}"
            )
