"""Call session persistence service."""
import logging
from typing import Any, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.db.models import AgentApiKey, CallSession, OrgConfig, utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500

# Fields call.started fills in only while they are still empty
CONTEXT_FIELDS = ("from_number", "to_number", "agent_user_id", "crm_portal_id")


class CallPersistenceService:
    """Service for persisting call session state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_session(self, call_id: str) -> Optional[CallSession]:
        """Get call session by external call id."""
        result = await self.db.execute(
            select(CallSession).where(CallSession.call_id == call_id)
        )
        return result.scalar_one_or_none()

    async def get_org_config(self, org_id: str) -> Optional[OrgConfig]:
        result = await self.db.execute(select(OrgConfig).where(OrgConfig.org_id == org_id))
        return result.scalar_one_or_none()

    async def get_or_create(self, call_id: str, org_id: str) -> Tuple[CallSession, bool]:
        """
        Return the session for call_id, creating a minimal row if none exists.

        Events may arrive in any order, so whichever one is seen first creates
        the row. A concurrent insert of the same call id loses on the unique
        constraint and re-reads the winner's row.
        """
        existing = await self.get_session(call_id)
        if existing:
            return existing, False

        session = CallSession(call_id=call_id, org_id=org_id)
        self.db.add(session)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.get_session(call_id)
            if existing is None:
                raise
            return existing, False

        await self.db.refresh(session)
        logger.info(f"[CALL SESSION] Created session - CallId: {call_id}, OrgId: {org_id}")
        return session, True

    async def record_started(
        self,
        call_id: str,
        org_id: str,
        direction: str,
        from_number: Optional[str] = None,
        to_number: Optional[str] = None,
        agent_user_id: Optional[str] = None,
        crm_portal_id: Optional[str] = None,
    ) -> CallSession:
        """Upsert for call.started. Already-set values are never overwritten."""
        session, created = await self.get_or_create(call_id, org_id)
        incoming = {
            "from_number": from_number,
            "to_number": to_number,
            "agent_user_id": agent_user_id,
            "crm_portal_id": crm_portal_id,
        }
        for field in CONTEXT_FIELDS:
            if incoming[field] and not getattr(session, field):
                setattr(session, field, incoming[field])
        if created or not session.started_at:
            session.direction = direction
        if not session.started_at:
            session.started_at = utcnow()

        await self.db.commit()
        await self.db.refresh(session)
        return session

    async def record_timestamp(self, call_id: str, org_id: str, field: str) -> CallSession:
        """Set answered_at or ended_at once; later deliveries leave it alone."""
        session, _ = await self.get_or_create(call_id, org_id)
        if getattr(session, field) is None:
            setattr(session, field, utcnow())
            await self.db.commit()
            await self.db.refresh(session)
        else:
            logger.debug(f"[CALL SESSION] {field} already set - CallId: {call_id}")
        return session

    async def record_recording(self, call_id: str, org_id: str, recording_url: Optional[str]) -> CallSession:
        session, _ = await self.get_or_create(call_id, org_id)
        if recording_url:
            session.recording_url = recording_url
            session.recording_status = "available"
        elif not session.recording_url:
            session.recording_status = "pending"
        await self.db.commit()
        await self.db.refresh(session)
        return session

    async def update(self, session: CallSession, **fields: Any) -> CallSession:
        """Apply field updates to a session and commit."""
        for field, value in fields.items():
            setattr(session, field, value)
        await self.db.commit()
        await self.db.refresh(session)
        return session

    async def record_error(self, call_id: str, message: str, **fields: Any) -> Optional[CallSession]:
        """Store last_error, plus any terminal status fields, on the session."""
        session = await self.get_session(call_id)
        if session is None:
            return None
        return await self.update(session, last_error=(message or "")[:MAX_ERROR_LENGTH], **fields)

    async def get_telavox_token(self, session: CallSession) -> Optional[str]:
        """
        Token for the Telavox API on behalf of this call.

        The Telavox API is user scoped, so the agent's own key sees the call
        where the org token might not. Falls back to the org token.
        """
        if session.agent_user_id:
            result = await self.db.execute(
                select(AgentApiKey.api_key).where(AgentApiKey.agent_user_id == session.agent_user_id)
            )
            api_key = result.scalar_one_or_none()
            if api_key:
                return api_key

        config = await self.get_org_config(session.org_id)
        if config and config.access_token:
            return config.access_token
        return None
