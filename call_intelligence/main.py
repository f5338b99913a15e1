"""Main FastAPI application."""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from call_intelligence.api import calls, cron, health
from call_intelligence.api.webhooks import crm, slack, telephony, transcription
from call_intelligence.core.config import settings
from call_intelligence.core.dependencies import close_integrations, get_integrations
from call_intelligence.core.logging import setup_logging
from call_intelligence.db.database import AsyncSessionLocal, init_db
from call_intelligence.services.workers.scheduler import run_poll_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()

    poller = None
    if settings.scheduler_poll_interval_seconds > 0:
        poller = asyncio.create_task(
            run_poll_loop(
                AsyncSessionLocal,
                settings,
                get_integrations(),
                settings.scheduler_poll_interval_seconds,
            )
        )
    yield

    # Shutdown
    if poller is not None:
        poller.cancel()
        with suppress(asyncio.CancelledError):
            await poller
    await close_integrations()
    logger.info("[APP] Shutdown complete")


app = FastAPI(
    title="Call Intelligence",
    description="Telavox call recording, consent, transcription and HubSpot sync pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(telephony.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(transcription.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(slack.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(crm.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(cron.router, tags=["scheduler"])
app.include_router(calls.router, tags=["calls"])
