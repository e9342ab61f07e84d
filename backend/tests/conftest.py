import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from bazaar.domain.search import store as search_store
from bazaar.domain.search.embeddings import default_engine
from bazaar.domain.trending import facts as trending_facts
from bazaar.infra import postgres
from bazaar.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from bazaar.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest_asyncio.fixture(autouse=True)
async def memory_state():
	await search_store.reset_memory_state()
	await trending_facts.memory_facts().reset()
	default_engine().clear_cache()
	yield
	await search_store.reset_memory_state()
	await trending_facts.memory_facts().reset()
	default_engine().clear_cache()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Keep every test on the in-process document store."""
	original_backend = settings.search_backend
	original_environment = settings.environment
	settings.search_backend = "memory"
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.search_backend = original_backend
		settings.environment = original_environment
