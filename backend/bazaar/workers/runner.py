"""Wiring for the ranking background workers."""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from bazaar import obs
from bazaar.infra import postgres
from bazaar.settings import settings
from bazaar.workers.trending_refresher import TrendingRefresher


def spawn_workers(
    *,
    refresher: Optional[TrendingRefresher] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Iterable[asyncio.Task]:
    """Create asyncio tasks for the periodic ranking workers."""

    event_loop = loop or asyncio.get_event_loop()
    refresher = refresher or TrendingRefresher()
    return [event_loop.create_task(refresher.run_forever(), name="trending-refresher")]


async def main() -> None:
    obs.init()
    if settings.search_backend == "postgres":
        await postgres.init_pool()
    tasks = list(spawn_workers(loop=asyncio.get_running_loop()))
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await postgres.close_pool()


if __name__ == "__main__":
    asyncio.run(main())
