"""
Single-flight lock for the escalation sweep.

Beat may fire the sweep while a previous run is still going, and the
HTTP trigger can run it on demand. A Redis lock with an auto-release
timeout keeps one sweep at a time across workers and API replicas.

If Redis is unreachable the sweep runs anyway (degraded, not broken):
every sweep step is idempotent, so an overlapping run can only repeat a
skip, never double-escalate.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from facility_dispatch.config import Settings, get_settings

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "dispatch:escalation-sweep"


class SweepLock:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        self.settings = settings or get_settings()
        self._client = client

    def _get_redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                str(self.settings.redis_url),
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @asynccontextmanager
    async def hold(self) -> AsyncGenerator[bool, None]:
        """
        Try to take the lock without waiting.

        Yields True when this caller should run the sweep (lock held, or
        Redis down), False when another sweep holds the lock.
        """
        lock = None
        try:
            lock = self._get_redis().lock(
                SWEEP_LOCK_NAME,
                timeout=self.settings.sweep_lock_timeout_seconds,
                blocking=False,
            )
            acquired = await lock.acquire()
        except (RedisError, OSError) as e:
            logger.warning(f"Sweep lock unavailable, running without it: {e}")
            lock = None
            acquired = True

        if not acquired:
            logger.info("Escalation sweep already running elsewhere, skipping")
            yield False
            return

        try:
            yield True
        finally:
            if lock is not None:
                try:
                    await lock.release()
                except (RedisError, OSError) as e:
                    # Lock expires on its own after sweep_lock_timeout_seconds
                    logger.warning(f"Failed to release sweep lock: {e}")


# Global instance
sweep_lock = SweepLock()
