"""hubspot.sync worker."""
import logging
from typing import List, Optional

from call_intelligence.core.errors import ConfigurationError, DownstreamError
from call_intelligence.db.models import CallSession, Job, utcnow
from call_intelligence.services.integrations.hubspot import (
    NOTE_TO_CONTACT,
    NOTE_TO_DEAL,
    HubSpotClient,
)
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.persistence.flags import FeatureFlags
from call_intelligence.services.persistence.jobs import JobType
from call_intelligence.services.phone import phone_variants
from call_intelligence.services.workers.base import StageWorker

logger = logging.getLogger(__name__)


def customer_number(session: CallSession) -> Optional[str]:
    """The non-agent endpoint: the caller on inbound calls, the callee on outbound."""
    return session.to_number if session.direction == "OUTBOUND" else session.from_number


async def match_contact(session: CallSession, hubspot: HubSpotClient) -> Optional[str]:
    """Look up the HubSpot contact for the customer's number."""
    variants = phone_variants(customer_number(session))
    if not variants:
        return None
    return await hubspot.search_contact_by_phone(variants)


async def find_known_contact(
    session: CallSession, hubspot: HubSpotClient, calls: CallPersistenceService
) -> Optional[str]:
    """
    HubSpot contact id for the call's customer, or None when there is none.

    A stored crm_contact_id wins; otherwise HubSpot is searched and a match is
    saved on the session. Lookup failures count as "unknown" so callers can
    fall back to their unknown-number behaviour.
    """
    if session.crm_contact_id:
        return session.crm_contact_id
    try:
        contact_id = await match_contact(session, hubspot)
    except (DownstreamError, ConfigurationError) as e:
        logger.warning(f"[CONTACT MATCH] Contact lookup failed - CallId: {session.call_id}, Error: {str(e)}")
        return None
    if contact_id:
        await calls.update(session, crm_contact_id=contact_id)
        logger.info(f"[CONTACT MATCH] Matched HubSpot contact - CallId: {session.call_id}, ContactId: {contact_id}")
    return contact_id


def _bullets(title: str, items: List[str]) -> List[str]:
    if not items:
        return []
    return ["", f"{title}:"] + [f"- {item}" for item in items]


def build_engagement_body(session: CallSession, app_url: Optional[str]) -> str:
    insights = session.insights or {}
    lines = []
    if session.summary:
        lines.append(f"Summary: {session.summary}")
    if session.sentiment:
        lines.append(f"Sentiment: {session.sentiment}")

    lines += _bullets("Key points", insights.get("keyPoints") or [])
    lines += _bullets("Action items", insights.get("nextSteps") or [])
    lines += _bullets("Competitor mentions", insights.get("competitorMentions") or [])

    if app_url:
        lines += ["", f"View full transcript: {app_url.rstrip('/')}/calls/{session.call_id}"]
    return "\n".join(lines)


class HubSpotSyncWorker(StageWorker):
    """Posts the analyzed call to HubSpot once, as a note and optionally a call object."""

    job_type = JobType.HUBSPOT_SYNC

    async def process(self, job: Job, flags: FeatureFlags) -> None:
        session = await self.load_session(job)

        if session.transcription_status != "completed":
            logger.info(f"[HUBSPOT SYNC] Transcription not completed, nothing to sync - CallId: {job.call_id}")
            return
        if session.crm_engagement_id:
            logger.info(
                f"[HUBSPOT SYNC] Already synced - CallId: {job.call_id}, "
                f"EngagementId: {session.crm_engagement_id}"
            )
            return

        hubspot = self.integrations.hubspot
        if not session.crm_contact_id and not session.crm_deal_id:
            contact_id = await match_contact(session, hubspot)
            if not contact_id:
                logger.info(f"[HUBSPOT SYNC] No HubSpot contact or deal for call - CallId: {job.call_id}")
                return
            await self.calls.update(session, crm_contact_id=contact_id)

        occurred_at = session.ended_at or session.started_at or utcnow()
        timestamp = occurred_at.isoformat(timespec="seconds") + "Z"
        body = build_engagement_body(session, self.settings.app_url)

        call_object_id = session.crm_call_object_id
        if self.settings.hubspot_create_call_objects and not call_object_id:
            call_object_id = await self._create_call_object(session, body, timestamp)
            if call_object_id:
                await self.calls.update(session, crm_call_object_id=call_object_id)

        note_id = session.crm_note_id
        if note_id:
            logger.info(f"[HUBSPOT SYNC] Reusing note from earlier attempt - CallId: {job.call_id}, NoteId: {note_id}")
        else:
            note_id = await hubspot.create_note(body, timestamp, f"AI Transcribed Telavox Call - {timestamp}")
            await self.calls.update(session, crm_note_id=note_id)

        if session.crm_contact_id:
            await hubspot.associate("notes", note_id, "contacts", session.crm_contact_id, NOTE_TO_CONTACT)
        if session.crm_deal_id:
            await hubspot.associate("notes", note_id, "deals", session.crm_deal_id, NOTE_TO_DEAL)

        engagement_id = call_object_id or note_id
        await self.calls.update(session, crm_engagement_id=engagement_id)
        logger.info(f"[HUBSPOT SYNC] Synced call - CallId: {job.call_id}, EngagementId: {engagement_id}")

    async def _create_call_object(self, session: CallSession, body: str, timestamp: str) -> Optional[str]:
        duration_ms = ""
        if session.started_at and session.ended_at:
            duration_ms = str(int((session.ended_at - session.started_at).total_seconds() * 1000))

        properties = {
            "hs_timestamp": timestamp,
            "hs_call_title": f"AI Transcribed Telavox Call - {occurred_date(session)}",
            "hs_call_body": body,
            "hs_call_duration": duration_ms,
            "hs_call_status": "COMPLETED",
            "hs_call_direction": session.direction,
        }
        try:
            return await self.integrations.hubspot.create_call(
                properties, contact_id=session.crm_contact_id, deal_id=session.crm_deal_id
            )
        except DownstreamError as e:
            logger.warning(
                f"[HUBSPOT SYNC] Call object creation failed, continuing with note - CallId: {session.call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            return None


def occurred_date(session: CallSession) -> str:
    occurred_at = session.ended_at or session.started_at or utcnow()
    return occurred_at.date().isoformat()
