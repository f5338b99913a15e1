"""Shared test fixtures and configuration."""
import os
from datetime import timedelta
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from call_intelligence.main import app
from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_integrations, get_settings
from call_intelligence.core.errors import DownstreamError
from call_intelligence.db.database import get_db
from call_intelligence.db.models import (
    AgentApiKey,
    AgentSlackMapping,
    Base,
    BlockedNumber,
    CallSession,
    ConsentRequest,
    OrgConfig,
    utcnow,
)
from call_intelligence.services.analysis.summarizer import TranscriptAnalyzer
from call_intelligence.services.integrations.registry import Integrations
from call_intelligence.services.persistence.flags import SettingsRepository


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TELAVOX_API_BASE = "https://api.telavox.se"


@pytest.fixture
def test_settings():
    """Override settings for testing."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        environment="test",
        app_url="https://app.example.com",
        cron_secret="cron-secret",
        disable_webhook_auth=False,
        job_backoff_base_seconds=60,
        elevenlabs_api_key="el-key",
        transcription_webhook_secret="el-secret",
        hubspot_access_token="hs-token",
        hubspot_webhook_secret="hs-secret",
        hubspot_create_call_objects=False,
        slack_bot_token="xoxb-test",
        slack_signing_secret="slack-secret",
        storage_url="https://storage.example.com",
        storage_service_key="service-key",
        openai_api_key=None,
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


class FakeTelavox:
    """Call history API stand-in."""

    def __init__(self):
        self.api_base = TELAVOX_API_BASE
        self.calls: List[Any] = []
        self.tokens: List[str] = []
        self.error: Optional[Exception] = None

    def recording_url(self, recording_id: str) -> str:
        return f"{self.api_base}/recordings/{recording_id}"

    def is_api_url(self, url: str) -> bool:
        return url.startswith(self.api_base)

    async def list_recent_calls(self, token: str):
        self.tokens.append(token)
        if self.error:
            raise self.error
        return list(self.calls)

    async def close(self):
        pass


class FakeSlack:
    """Records posted and edited messages."""

    def __init__(self):
        self.posted: List[Dict[str, Any]] = []
        self.updated: List[Dict[str, Any]] = []
        self.fail_posts = False
        self.fail_updates = False

    async def post_message(self, channel, text, blocks=None, token=None):
        if self.fail_posts:
            raise DownstreamError("Slack chat.postMessage failed: channel_not_found")
        self.posted.append({"channel": channel, "text": text, "blocks": blocks, "token": token})
        return f"D{channel}", f"1700000000.{len(self.posted):06d}"

    async def update_message(self, channel, ts, text, blocks=None, token=None):
        if self.fail_updates:
            raise DownstreamError("Slack chat.update failed: message_not_found")
        self.updated.append({"channel": channel, "ts": ts, "text": text, "blocks": blocks, "token": token})

    async def close(self):
        pass


class FakeHubSpot:
    """Records notes, call objects and associations."""

    def __init__(self):
        self.contact_id: Optional[str] = None
        self.searches: List[List[str]] = []
        self.notes: List[Dict[str, Any]] = []
        self.calls: List[Dict[str, Any]] = []
        self.associations: List[tuple] = []
        self.fail_calls = False
        self.association_failures = 0

    async def search_contact_by_phone(self, variants):
        self.searches.append(list(variants))
        return self.contact_id

    async def create_note(self, body, timestamp, title):
        self.notes.append({"body": body, "timestamp": timestamp, "title": title})
        return f"note-{len(self.notes)}"

    async def create_call(self, properties, contact_id=None, deal_id=None):
        if self.fail_calls:
            raise DownstreamError("HubSpot POST /crm/v3/objects/calls returned 400")
        self.calls.append({"properties": properties, "contact_id": contact_id, "deal_id": deal_id})
        return f"call-obj-{len(self.calls)}"

    async def associate(self, from_type, from_id, to_type, to_id, association_type_id):
        if self.association_failures:
            self.association_failures -= 1
            raise DownstreamError(f"HubSpot POST /crm/v4/associations/{from_type}/{to_type}/batch/create returned 500")
        self.associations.append((from_type, from_id, to_type, to_id, association_type_id))

    async def close(self):
        pass


class FakeTranscription:
    """Records submitted transcription jobs."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def create_transcription(self, audio_url, webhook_url, metadata):
        if self.error:
            raise self.error
        self.requests.append({"audio_url": audio_url, "webhook_url": webhook_url, "metadata": metadata})
        return f"tx-{len(self.requests)}"

    async def close(self):
        pass


class FakeStorage:
    """In-memory recording bucket."""

    def __init__(self):
        self.objects = set()
        self.uploads: List[tuple] = []

    def is_owned_url(self, url: str) -> bool:
        return "/storage/v1/object" in url

    async def exists(self, path):
        return path in self.objects

    async def upload_from_url(self, source_url, path, headers=None):
        self.uploads.append((source_url, path, headers))
        self.objects.add(path)
        return path

    async def signed_url(self, path, expires_in=3600):
        return f"https://storage.example.com/storage/v1/object/sign/recordings/{path}?token=signed"

    async def close(self):
        pass


@pytest.fixture
def integrations():
    """Integrations bundle backed by fakes."""
    return Integrations(
        telavox=FakeTelavox(),
        slack=FakeSlack(),
        hubspot=FakeHubSpot(),
        transcription=FakeTranscription(),
        storage=FakeStorage(),
        analyzer=TranscriptAnalyzer(),
    )


class Seeder:
    """Inserts rows the pipeline reads but never writes itself."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _add(self, row):
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)
        return row

    async def org(self, org_id="org-1", webhook_secret="s3cret", access_token="org-token", crm_portal_id="portal-9"):
        return await self._add(
            OrgConfig(
                org_id=org_id,
                webhook_secret=webhook_secret,
                access_token=access_token,
                crm_portal_id=crm_portal_id,
            )
        )

    async def session(self, call_id="call-1", org_id="org-1", **fields) -> CallSession:
        return await self._add(CallSession(call_id=call_id, org_id=org_id, **fields))

    async def mapping(self, agent_user_id="agent-1", slack_user_id="U123", is_active=True):
        return await self._add(
            AgentSlackMapping(agent_user_id=agent_user_id, slack_user_id=slack_user_id, is_active=is_active)
        )

    async def agent_key(self, agent_user_id="agent-1", api_key="agent-token"):
        return await self._add(AgentApiKey(agent_user_id=agent_user_id, api_key=api_key))

    async def blocked(self, phone_number):
        return await self._add(BlockedNumber(phone_number=phone_number, reason="test"))

    async def consent_request(
        self,
        call_id="call-1",
        slack_user_id="U123",
        status="pending",
        expires_in=timedelta(hours=1),
    ) -> ConsentRequest:
        return await self._add(
            ConsentRequest(
                call_id=call_id,
                agent_user_id="agent-1",
                slack_user_id=slack_user_id,
                slack_channel_id=f"D{slack_user_id}",
                slack_message_ts="1700000000.000001",
                status=status,
                sent_at=utcnow(),
                expires_at=utcnow() + expires_in,
            )
        )

    async def setting(self, key, value):
        return await SettingsRepository(self.db).set_value(key, value)


@pytest.fixture
def seed(test_db):
    return Seeder(test_db)


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
async def client(override_get_db, test_settings, integrations):
    """Async client against the app with dependencies overridden."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_integrations] = lambda: integrations

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture
def use_settings():
    """Swap the settings the app sees for the rest of the test."""
    def _use(settings_obj):
        app.dependency_overrides[get_settings] = lambda: settings_obj
        return settings_obj
    return _use


@pytest.fixture
def mock_openai():
    """Mock OpenAI API client."""
    mock_client = Mock()
    mock_completion = AsyncMock()
    mock_completion.choices = [
        Mock(message=Mock(content="Customer asked for a quote; agent will follow up Friday."))
    ]
    mock_client.chat.completions.create = AsyncMock(return_value=mock_completion)
    return mock_client
