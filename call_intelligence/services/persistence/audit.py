"""Webhook audit logging."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.db.models import CrmWebhookEvent, WebhookLog

logger = logging.getLogger(__name__)


class WebhookAuditService:
    """Writes the telephony webhook log and the CRM change events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_delivery(
        self,
        event_type: str,
        call_id: Optional[str],
        org_id: Optional[str],
        payload: Dict[str, Any],
        source_ip: Optional[str] = None,
    ) -> WebhookLog:
        entry = WebhookLog(
            event_type=event_type,
            call_id=call_id,
            org_id=org_id,
            payload=payload,
            source_ip=source_ip,
            processed=False,
        )
        self.db.add(entry)
        await self.db.commit()
        await self.db.refresh(entry)
        return entry

    async def mark_skipped(self, entry: WebhookLog, reason: str) -> None:
        entry.skip_reason = reason
        await self.db.commit()

    async def mark_processed(self, entry: WebhookLog) -> None:
        entry.processed = True
        await self.db.commit()

    async def logs_for_call(self, call_id: str) -> List[WebhookLog]:
        result = await self.db.execute(
            select(WebhookLog).where(WebhookLog.call_id == call_id).order_by(WebhookLog.id.asc())
        )
        return list(result.scalars().all())

    async def record_crm_event(self, event: Dict[str, Any]) -> Optional[CrmWebhookEvent]:
        """
        Store one HubSpot webhook event.

        Returns None when the event lacks a subscription type or object id, or
        when an event with the same eventId was stored before.
        """
        subscription_type = event.get("subscriptionType")
        object_id = event.get("objectId")
        if not subscription_type or object_id is None:
            return None

        event_id = str(event["eventId"]) if event.get("eventId") is not None else None
        if event_id is not None:
            result = await self.db.execute(
                select(CrmWebhookEvent.id).where(CrmWebhookEvent.event_id == event_id).limit(1)
            )
            if result.scalar_one_or_none() is not None:
                logger.debug(f"[CRM WEBHOOK] Duplicate event ignored - EventId: {event_id}")
                return None

        object_type, _, change = str(subscription_type).partition(".")
        record = CrmWebhookEvent(
            event_id=event_id,
            portal_id=str(event["portalId"]) if event.get("portalId") is not None else None,
            object_type=object_type if object_type in ("contact", "deal") else "other",
            object_id=str(object_id),
            change_type=_change_type(change),
            subscription_type=str(subscription_type),
            payload=event,
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record


def _change_type(change: str) -> str:
    if change == "creation":
        return "created"
    if change == "propertyChange":
        return "updated"
    return "other"
