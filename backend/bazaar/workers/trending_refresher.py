"""Periodic trending score recomputation."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime

from bazaar.domain.trending.service import TrendingService
from bazaar.obs import logging as obs_logging
from bazaar.settings import settings

_LOG = logging.getLogger(__name__)


class TrendingRefresher:
    """Rescores trending items and writes the scores back at a fixed interval."""

    def __init__(
        self,
        *,
        service: TrendingService | None = None,
        interval_seconds: int | None = None,
        time_range: str | None = None,
    ) -> None:
        self.service = service or TrendingService()
        self.interval_seconds = (
            settings.trending_refresh_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.time_range = time_range or settings.trending_default_range
        self._running = False

    async def run_forever(self) -> None:
        self._running = True
        while self._running:
            try:
                await self.run_once()
            except Exception:
                _LOG.exception("trending_refresher.run_once_failed")
            await asyncio.sleep(self.interval_seconds)

    def stop(self) -> None:
        self._running = False

    async def run_once(self, *, now: datetime | None = None) -> int:
        tokens = obs_logging.bind_context(job="trending_refresher")
        start = time.perf_counter()
        try:
            written = await self.service.recompute(self.time_range, now=now)
        finally:
            obs_logging.reset_context(tokens)
        _LOG.debug(
            "trending_refresher.recompute",
            extra={"count": written, "duration": time.perf_counter() - start},
        )
        return written


__all__ = ["TrendingRefresher"]
