"""Database models."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.ext.declarative import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CallSession(Base):
    """Canonical per-call record, updated incrementally by webhooks and workers."""

    __tablename__ = "call_sessions"

    id = Column(Integer, primary_key=True, index=True)
    call_id = Column(String, unique=True, index=True, nullable=False)
    org_id = Column(String, index=True, nullable=False)

    direction = Column(String, default="INBOUND", nullable=False)  # INBOUND, OUTBOUND
    from_number = Column(String, nullable=True)
    to_number = Column(String, nullable=True)
    agent_user_id = Column(String, nullable=True)
    crm_portal_id = Column(String, nullable=True)

    started_at = Column(DateTime, nullable=True)
    answered_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)

    recording_url = Column(Text, nullable=True)
    recording_status = Column(String, default="pending", nullable=False)  # pending, available, not_found
    recording_storage_path = Column(String, nullable=True)

    transcription_status = Column(String, default="pending", nullable=False)  # pending, in_progress, completed, failed
    transcription_job_id = Column(String, nullable=True)
    transcript = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    sentiment = Column(String, nullable=True)  # positive, neutral, negative
    insights = Column(JSON, nullable=True)
    last_error = Column(Text, nullable=True)

    consent_status = Column(String, default="pending", nullable=False)  # pending, approved, declined, expired, not_required

    crm_contact_id = Column(String, nullable=True)
    crm_deal_id = Column(String, nullable=True)
    # HubSpot objects already created for this call; set before associating
    crm_note_id = Column(String, nullable=True)
    crm_call_object_id = Column(String, nullable=True)
    crm_engagement_id = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Job(Base):
    """Durable unit of deferred pipeline work for one call."""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_type = Column(String, index=True, nullable=False)
    call_id = Column(String, index=True, nullable=False)
    org_id = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(String, default="pending", index=True, nullable=False)  # pending, in_progress, completed, failed
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    scheduled_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ConsentRequest(Base):
    """One approval cycle asking an agent whether a call may be transcribed."""

    __tablename__ = "consent_requests"

    id = Column(Integer, primary_key=True, index=True)
    call_id = Column(String, index=True, nullable=False)
    agent_user_id = Column(String, nullable=False)
    slack_user_id = Column(String, nullable=False)
    slack_channel_id = Column(String, nullable=True)
    slack_message_ts = Column(String, nullable=True)
    status = Column(String, default="pending", index=True, nullable=False)  # pending, approved, declined, expired
    sent_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    reminder_sent_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    response_source = Column(String, nullable=True)  # slack, timeout
    response_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class OrgConfig(Base):
    """Per-organization Telavox configuration."""

    __tablename__ = "org_configs"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, unique=True, index=True, nullable=False)
    crm_portal_id = Column(String, nullable=True)
    webhook_secret = Column(String, nullable=True)
    access_token = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class AgentApiKey(Base):
    """User-scoped Telavox API token, preferred over the org token."""

    __tablename__ = "agent_api_keys"

    id = Column(Integer, primary_key=True, index=True)
    agent_user_id = Column(String, unique=True, index=True, nullable=False)
    api_key = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class AgentSlackMapping(Base):
    """Maps a Telavox agent to the Slack user who approves their transcriptions."""

    __tablename__ = "agent_slack_mappings"

    id = Column(Integer, primary_key=True, index=True)
    agent_user_id = Column(String, unique=True, index=True, nullable=False)
    slack_user_id = Column(String, nullable=False)
    slack_display_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class BlockedNumber(Base):
    """Phone number whose calls are never processed (E.164)."""

    __tablename__ = "blocked_numbers"

    id = Column(Integer, primary_key=True, index=True)
    phone_number = Column(String, unique=True, index=True, nullable=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Setting(Base):
    """Runtime feature flag or text setting, editable without a deploy."""

    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, index=True, nullable=False)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class WebhookLog(Base):
    """Append-only audit of authenticated Telavox deliveries."""

    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String, nullable=False)
    call_id = Column(String, index=True, nullable=True)
    org_id = Column(String, nullable=True)
    payload = Column(JSON, nullable=True)
    source_ip = Column(String, nullable=True)
    processed = Column(Boolean, default=False, nullable=False)
    skip_reason = Column(String, nullable=True)  # system_disabled, blocked_number
    created_at = Column(DateTime, default=utcnow, nullable=False)


class CrmWebhookEvent(Base):
    """HubSpot object change notification."""

    __tablename__ = "crm_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, index=True, nullable=True)
    portal_id = Column(String, nullable=True)
    object_type = Column(String, nullable=False)  # contact, deal, other
    object_id = Column(String, nullable=False)
    change_type = Column(String, nullable=False)  # created, updated, other
    subscription_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
