"""Bearer authentication for the operational endpoints."""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request

from call_intelligence.core.config import Settings
from call_intelligence.core.dependencies import get_settings
from call_intelligence.core.security import safe_compare

logger = logging.getLogger(__name__)


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the token from an "Authorization: Bearer ..." header."""
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_cron_secret(
    request: Request, app_settings: Settings = Depends(get_settings)
) -> bool:
    """Dependency to require the CRON_SECRET bearer token."""
    if not app_settings.cron_secret:
        if app_settings.is_production:
            logger.critical("[AUTH] CRON_SECRET is not configured in production")
            raise HTTPException(status_code=500, detail="CRON_SECRET not configured")
        logger.warning("[AUTH] CRON_SECRET not set, allowing unauthenticated request outside production")
        return True

    if not safe_compare(get_bearer_token(request), app_settings.cron_secret):
        logger.warning(
            f"[AUTH] Rejected request to {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True
