import asyncio

import pytest

from bazaar.workers.runner import spawn_workers
from bazaar.workers.trending_refresher import TrendingRefresher


class _StubService:
	def __init__(self) -> None:
		self.calls = 0

	async def recompute(self, time_range, *, now=None):
		self.calls += 1
		return 0


@pytest.mark.asyncio
async def test_spawn_workers_starts_refresher():
	service = _StubService()
	refresher = TrendingRefresher(service=service, interval_seconds=60, time_range="24h")
	tasks = list(spawn_workers(refresher=refresher, loop=asyncio.get_running_loop()))
	assert [task.get_name() for task in tasks] == ["trending-refresher"]
	await asyncio.sleep(0)
	await asyncio.sleep(0)
	assert service.calls == 1
	refresher.stop()
	for task in tasks:
		task.cancel()
	await asyncio.gather(*tasks, return_exceptions=True)
