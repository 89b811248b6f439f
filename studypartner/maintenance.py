"""
StudyPartner - Maintenance
Logging setup for host processes and the periodic cleanup task:
expired cache rows, the hot cache, idle rate-limiter keys and the intent cache.

Nothing starts on import. The host owns the task:

    maintenance = CacheMaintenance(cache, limiter)
    await maintenance.start()
    ...
    await maintenance.stop()
"""

import asyncio
import logging
from typing import Optional

from studypartner.config import LOG_LEVEL, LOG_FORMAT, CACHE_CLEANUP_INTERVAL_SECONDS
from studypartner.intelligence.guardrails import RateLimiter
from studypartner.intelligence.response_cache import ResponseCache
from studypartner.intelligence.ttl_cache import TTLCache

logger = logging.getLogger("studypartner.maintenance")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


class CacheMaintenance:

    def __init__(
        self,
        cache: ResponseCache,
        limiter: Optional[RateLimiter] = None,
        intent_cache: Optional[TTLCache] = None,
        interval: float = CACHE_CLEANUP_INTERVAL_SECONDS,
    ):
        self.cache = cache
        self.limiter = limiter
        self.intent_cache = intent_cache
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> dict:
        """One cleanup pass. Returns what was removed."""
        removed = {"cache_entries": self.cache.cleanup_expired()}
        if self.limiter is not None:
            removed["rate_limit_keys"] = self.limiter.sweep()
        if self.intent_cache is not None:
            removed["intent_entries"] = self.intent_cache.sweep()
        logger.info(f"Maintenance pass: {removed}")
        return removed

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Cache maintenance started (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cache maintenance stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.error(f"Maintenance pass failed: {e}")
