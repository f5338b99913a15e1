"""FastAPI dependencies."""
from typing import Optional

from call_intelligence.core.config import Settings, settings
from call_intelligence.services.integrations.registry import Integrations

_integrations: Optional[Integrations] = None


def get_settings() -> Settings:
    """Get application settings."""
    return settings


def get_integrations() -> Integrations:
    """Get the shared external service clients, creating them on first use."""
    global _integrations
    if _integrations is None:
        _integrations = Integrations.from_settings(settings)
    return _integrations


async def close_integrations() -> None:
    global _integrations
    if _integrations is not None:
        await _integrations.close()
        _integrations = None
