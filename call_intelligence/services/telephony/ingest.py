"""Applies normalized Telavox events to call sessions and the job queue."""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.core.config import Settings
from call_intelligence.db.models import utcnow
from call_intelligence.services.persistence.audit import WebhookAuditService
from call_intelligence.services.persistence.calls import CallPersistenceService
from call_intelligence.services.persistence.flags import FeatureFlags, SettingsRepository
from call_intelligence.services.persistence.jobs import JobQueue, JobType
from call_intelligence.services.phone import normalize_to_e164
from call_intelligence.services.telephony.events import CallEvent, NormalizedEvent
from call_intelligence.services.workers.base import enqueue_next_stage

logger = logging.getLogger(__name__)

RECORDING_LOOKUP_DELAY = timedelta(seconds=30)


class TelephonyEventService:
    """Gates, audits and applies one authenticated Telavox event."""

    def __init__(self, db: AsyncSession, app_settings: Settings):
        self.db = db
        self.calls = CallPersistenceService(db)
        self.queue = JobQueue(db, app_settings.job_backoff_base_seconds)
        self.audit = WebhookAuditService(db)
        self.settings_repo = SettingsRepository(db)

    async def ingest(
        self, event: NormalizedEvent, payload: Dict[str, Any], source_ip: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Log the event, check the kill switch and blocklist, then apply it.

        Returns the response body for the webhook.
        """
        entry = await self.audit.log_delivery(
            event.event.value, event.call_id, event.org_id, _redacted(payload), source_ip
        )
        flags = await self.settings_repo.load_flags()

        if not flags.system_enabled:
            logger.info(f"[TELEPHONY WEBHOOK] System disabled, skipping - CallId: {event.call_id}")
            await self.audit.mark_skipped(entry, "system_disabled")
            return {"ok": True, "skipped": "system_disabled"}

        blocked = await self.settings_repo.find_blocked(
            normalize_to_e164(event.from_number), normalize_to_e164(event.to_number)
        )
        if blocked:
            logger.info(f"[TELEPHONY WEBHOOK] Blocked number {blocked}, skipping - CallId: {event.call_id}")
            await self.audit.mark_skipped(entry, "blocked_number")
            return {"ok": True, "skipped": "blocked_number"}

        if event.event == CallEvent.STARTED:
            await self._handle_started(event)
        elif event.event == CallEvent.ANSWERED:
            await self.calls.record_timestamp(event.call_id, event.org_id, "answered_at")
        elif event.event == CallEvent.ENDED:
            await self._handle_ended(event, flags)
        elif event.event == CallEvent.RECORDING_READY:
            await self._handle_recording_ready(event, flags)

        await self.audit.mark_processed(entry)
        return {"ok": True, "event": event.event.value, "call_id": event.call_id}

    async def _handle_started(self, event: NormalizedEvent) -> None:
        config = await self.calls.get_org_config(event.org_id)
        await self.calls.record_started(
            event.call_id,
            event.org_id,
            direction=event.direction,
            from_number=event.from_number,
            to_number=event.to_number,
            agent_user_id=event.agent_user_id,
            crm_portal_id=config.crm_portal_id if config else None,
        )

    async def _handle_ended(self, event: NormalizedEvent, flags: FeatureFlags) -> None:
        session = await self.calls.record_timestamp(event.call_id, event.org_id, "ended_at")
        if event.recording_url:
            await self._handle_recording_ready(event, flags)
            return
        if not session.recording_url:
            await self.queue.enqueue_unique(
                JobType.RECORDING_LOOKUP,
                event.call_id,
                event.org_id,
                scheduled_at=utcnow() + RECORDING_LOOKUP_DELAY,
            )

    async def _handle_recording_ready(self, event: NormalizedEvent, flags: FeatureFlags) -> None:
        session = await self.calls.record_recording(event.call_id, event.org_id, event.recording_url)
        if session.recording_url:
            await enqueue_next_stage(self.queue, flags, session.call_id, session.org_id)


def _redacted(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Payload copy without an embedded webhook secret."""
    return {
        key: ("[redacted]" if key in ("WEBHOOK_SECRET", "webhook_secret", "webhookSecret") else value)
        for key, value in payload.items()
    }
