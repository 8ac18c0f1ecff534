"""Kill switches read from the system settings table."""

import logging
import time
from typing import Any, Dict, Optional

import asyncpg

from hydration_jobs.errors import HydrationDisabledError
from hydration_jobs.models import JobType

GLOBAL_DISABLED_KEY = "HYDRATION_DISABLED"
PAUSED_KEY = "HYDRATION_PAUSED"


def disabled_key_for(job_type: JobType) -> str:
    """Settings key of the per-type kill switch."""
    return f"{GLOBAL_DISABLED_KEY}_{JobType(job_type).value.upper()}"


def is_setting_enabled(value: Any) -> bool:
    """Truthiness rule for kill-switch values."""
    if value is True:
        return True
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return False


class SettingsCache:
    """Key/value view over hydration_system_settings with a short TTL."""

    def __init__(
        self,
        db_pool: asyncpg.Pool,
        ttl_seconds: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.db_pool = db_pool
        self.ttl_seconds = ttl_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._values: Dict[str, Optional[str]] = {}
        self._loaded_at: Optional[float] = None

    async def refresh(self) -> None:
        """Reload all settings now."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("SELECT key, value FROM hydration_system_settings")
        self._values = {row["key"]: row["value"] for row in rows}
        self._loaded_at = time.monotonic()

    async def get(self, key: str) -> Optional[str]:
        if self._loaded_at is None or time.monotonic() - self._loaded_at >= self.ttl_seconds:
            await self.refresh()
        return self._values.get(key)

    async def is_enabled(self, key: str) -> bool:
        return is_setting_enabled(await self.get(key))

    async def set(self, key: str, value: Optional[str]) -> None:
        """Upsert a setting and refresh the cache."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO hydration_system_settings (key, value, updated_at)
                VALUES ($1, $2, now())
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
                """,
                key,
                value,
            )
        await self.refresh()

    async def disabled_reason(
        self, job_type: JobType, include_pause: bool = False
    ) -> Optional[str]:
        """Return the first kill-switch key that is set for job_type, if any."""
        keys = [GLOBAL_DISABLED_KEY, disabled_key_for(job_type)]
        if include_pause:
            keys.append(PAUSED_KEY)
        for key in keys:
            if await self.is_enabled(key):
                return key
        return None

    async def check_hydration_enabled(self, job_type: JobType) -> None:
        """
        Raise if hydration of job_type is switched off.

        Raises:
            HydrationDisabledError: With the key of the switch that is set
        """
        key = await self.disabled_reason(job_type)
        if key:
            self.logger.warning(f"Hydration of {JobType(job_type).value} blocked by {key}")
            raise HydrationDisabledError(key)
