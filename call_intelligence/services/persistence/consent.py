"""Consent request persistence service."""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.db.models import AgentSlackMapping, ConsentRequest, utcnow

logger = logging.getLogger(__name__)


class ConsentPersistenceService:
    """Service for consent requests and the agent to Slack user mapping."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, request_id: int) -> Optional[ConsentRequest]:
        result = await self.db.execute(select(ConsentRequest).where(ConsentRequest.id == request_id))
        return result.scalar_one_or_none()

    async def get_pending_for_call(self, call_id: str) -> Optional[ConsentRequest]:
        """Most recent pending request for a call, if any."""
        result = await self.db.execute(
            select(ConsentRequest)
            .where(ConsentRequest.call_id == call_id, ConsentRequest.status == "pending")
            .order_by(ConsentRequest.created_at.desc(), ConsentRequest.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_mapping(self, agent_user_id: str) -> Optional[AgentSlackMapping]:
        result = await self.db.execute(
            select(AgentSlackMapping).where(
                AgentSlackMapping.agent_user_id == agent_user_id,
                AgentSlackMapping.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self, call_id: str, agent_user_id: str, slack_user_id: str, expires_at: datetime
    ) -> ConsentRequest:
        request = ConsentRequest(
            call_id=call_id,
            agent_user_id=agent_user_id,
            slack_user_id=slack_user_id,
            status="pending",
            sent_at=utcnow(),
            expires_at=expires_at,
        )
        self.db.add(request)
        await self.db.commit()
        await self.db.refresh(request)
        logger.info(
            f"[CONSENT] Created consent request - RequestId: {request.id}, CallId: {call_id}, "
            f"ExpiresAt: {expires_at.isoformat()}"
        )
        return request

    async def set_message(self, request: ConsentRequest, channel_id: str, message_ts: str) -> None:
        request.slack_channel_id = channel_id
        request.slack_message_ts = message_ts
        request.sent_at = utcnow()
        await self.db.commit()

    async def mark_reminded(self, request: ConsentRequest) -> None:
        request.reminder_sent_at = utcnow()
        await self.db.commit()

    async def resolve(
        self,
        request: ConsentRequest,
        status: str,
        source: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move a pending request to its terminal status.

        Conditional on the row still being pending, so two concurrent
        resolutions (double click, or click racing the expiry job) settle
        exactly once. Returns False for the loser.
        """
        now = utcnow()
        result = await self.db.execute(
            update(ConsentRequest)
            .where(and_(ConsentRequest.id == request.id, ConsentRequest.status == "pending"))
            .values(
                status=status,
                responded_at=now,
                response_source=source,
                response_metadata=metadata,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(request)
        resolved = result.rowcount == 1
        if resolved:
            logger.info(f"[CONSENT] Request {request.id} resolved as {status} via {source}")
        else:
            logger.info(f"[CONSENT] Request {request.id} was already {request.status}")
        return resolved
