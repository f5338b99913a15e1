"""Scheduler trigger endpoint."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.api.auth import require_cron_secret
from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_integrations, get_settings
from call_intelligence.db.database import get_db
from call_intelligence.services.integrations.registry import Integrations
from call_intelligence.services.workers.scheduler import TickResult, run_tick

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/cron/workers", response_model=TickResult)
async def run_workers(
    _: bool = Depends(require_cron_secret),
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
    integrations: Integrations = Depends(get_integrations),
):
    """Run one scheduler tick over every job type."""
    logger.debug("[CRON] Worker tick requested")
    return await run_tick(db, app_settings, integrations)
