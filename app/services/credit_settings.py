"""
Credit Settings - Read-only credit tunables consulted by the ledger and VIP engine.

Environment settings supply the defaults; the CRM can store overrides in
system_settings under a single key.
"""

import re
from collections.abc import Mapping
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.db.models import SystemSetting
from app.models.domain import CreditSettings
from app.observability.logging import get_logger

logger = get_logger(__name__)

CREDIT_SETTINGS_KEY = "credit.settings"

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def credit_settings_from(settings: Settings) -> CreditSettings:
    """Defaults taken from environment configuration."""
    return CreditSettings(
        chat_message=settings.chat_message_cost,
        voice_call_per_minute=settings.voice_call_per_minute,
        video_call_per_minute=settings.video_call_per_minute,
        photo_view_credits=settings.photo_view_credits,
        video_view_credits=settings.video_view_credits,
        voice_message_credits=settings.voice_message_credits,
        vip_credits_required=settings.vip_credits_required,
    )


def normalize_override_keys(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Accept camelCase keys written by the CRM (chatMessage -> chat_message)."""
    return {_CAMEL_BOUNDARY.sub("_", key).lower(): value for key, value in raw.items()}


class CreditSettingsProvider(Protocol):
    """Anything that can hand out the current credit settings."""

    async def current(self) -> CreditSettings: ...


class StaticCreditSettingsProvider:
    """Fixed settings, no storage lookups."""

    def __init__(self, credit_settings: CreditSettings) -> None:
        self._credit_settings = credit_settings

    async def current(self) -> CreditSettings:
        return self._credit_settings


class StoredCreditSettingsProvider:
    """
    Defaults merged with the CRM override row.

    Uses its own short-lived sessions so a lookup never joins (or poisons)
    the caller's transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        defaults: CreditSettings,
    ) -> None:
        self.session_factory = session_factory
        self.defaults = defaults

    async def current(self) -> CreditSettings:
        try:
            async with self.session_factory() as session:
                stored = await self._load(session)
        except SQLAlchemyError as e:
            logger.error("credit_settings_load_failed", error=str(e))
            return self.defaults

        if stored is None:
            return self.defaults
        return self.defaults.merged(normalize_override_keys(stored))

    async def update(self, changes: Mapping[str, int]) -> CreditSettings:
        """Merge changes over the current values and store the result."""
        async with self.session_factory() as session:
            stored = await self._load(session)
            current = self.defaults.merged(normalize_override_keys(stored or {}))
            updated = current.merged(changes)

            setting = await session.get(SystemSetting, CREDIT_SETTINGS_KEY)
            if setting is None:
                session.add(SystemSetting(key=CREDIT_SETTINGS_KEY, value=updated.as_overrides()))
            else:
                setting.value = updated.as_overrides()
            await session.commit()

        logger.info("credit_settings_updated", changed=sorted(changes))
        return updated

    async def _load(self, session: AsyncSession) -> dict[str, Any] | None:
        stmt = select(SystemSetting.value).where(SystemSetting.key == CREDIT_SETTINGS_KEY)
        value = (await session.execute(stmt)).scalar_one_or_none()
        if not isinstance(value, dict):
            return None
        return value
