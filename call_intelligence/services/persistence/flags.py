"""Runtime feature flags stored in the settings table."""
import json
import logging
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from call_intelligence.db.models import BlockedNumber, Setting

logger = logging.getLogger(__name__)

DEFAULT_CONSENT_TIMEOUT_HOURS = 24.0
DEFAULT_CONSENT_REMINDER_HOURS = 2.0


class FeatureFlags(BaseModel):
    """Settings snapshot, loaded once per webhook or worker invocation."""

    model_config = ConfigDict(frozen=True)

    system_enabled: bool = True
    consent_enabled: bool = True
    consent_timeout_hours: float = DEFAULT_CONSENT_TIMEOUT_HOURS
    consent_reminder_hours: float = DEFAULT_CONSENT_REMINDER_HOURS
    consent_auto_approve_known_contacts: bool = False
    transcribe_unknown_numbers: bool = True
    vocabulary_replacements: Dict[str, str] = {}
    summary_prompt: Optional[str] = None
    slack_bot_token: Optional[str] = None
    slack_signing_secret: Optional[str] = None


def _enabled_unless_false(value: Optional[str]) -> bool:
    return (value or "").strip().lower() != "false"


def _enabled_only_if_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _hours(value: Optional[str], default: float) -> float:
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return default
    return hours if hours >= 0 else default


def _replacements(value: Optional[str]) -> Dict[str, str]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except ValueError:
        logger.warning("[SETTINGS] vocabulary_replacements is not valid JSON, ignoring")
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


class SettingsRepository:
    """Reads and writes key/value rows of the settings table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_all(self) -> Dict[str, Optional[str]]:
        result = await self.db.execute(select(Setting.key, Setting.value))
        return {key: value for key, value in result.all()}

    async def set_value(self, key: str, value: Optional[str]) -> Setting:
        result = await self.db.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()
        if setting is None:
            setting = Setting(key=key, value=value)
            self.db.add(setting)
        else:
            setting.value = value
        await self.db.commit()
        return setting

    async def load_flags(self) -> FeatureFlags:
        """Build a FeatureFlags snapshot; missing keys take their defaults."""
        values = await self.get_all()
        return FeatureFlags(
            system_enabled=_enabled_unless_false(values.get("system_enabled")),
            consent_enabled=_enabled_unless_false(values.get("consent_enabled")),
            consent_timeout_hours=_hours(values.get("consent_timeout_hours"), DEFAULT_CONSENT_TIMEOUT_HOURS)
            or DEFAULT_CONSENT_TIMEOUT_HOURS,
            consent_reminder_hours=_hours(values.get("consent_reminder_hours"), DEFAULT_CONSENT_REMINDER_HOURS),
            consent_auto_approve_known_contacts=_enabled_only_if_true(
                values.get("consent_auto_approve_known_contacts")
            ),
            transcribe_unknown_numbers=_enabled_unless_false(values.get("transcribe_unknown_numbers")),
            vocabulary_replacements=_replacements(values.get("vocabulary_replacements")),
            summary_prompt=values.get("summary_prompt") or None,
            slack_bot_token=values.get("slack_bot_token") or None,
            slack_signing_secret=values.get("slack_signing_secret") or None,
        )

    async def find_blocked(self, *numbers: Optional[str]) -> Optional[str]:
        """Return the first of the given E.164 numbers that is on the blocklist."""
        candidates = [n for n in numbers if n]
        if not candidates:
            return None
        result = await self.db.execute(
            select(BlockedNumber.phone_number).where(BlockedNumber.phone_number.in_(candidates)).limit(1)
        )
        return result.scalar_one_or_none()
