import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from bazaar.domain.search.cache import (
	CacheOrchestrator,
	adaptive_ttl,
	filters_hash,
	related_patterns,
	search_key,
)
from bazaar.settings import settings


def test_search_key_is_deterministic():
	left = search_key("products", "Foo", {"a": 1, "b": 2}, 0, 10)
	right = search_key("products", "foo ", {"b": 2, "a": 1}, 0, 10)
	assert left == right
	assert left.startswith("search:products:foo:")
	assert left.endswith(":0:10")
	assert search_key("products", "foo", {"a": 1}, 0, 10) != search_key("products", "foo", {"a": 2}, 0, 10)
	assert filters_hash(None) == filters_hash({})


def test_adaptive_ttl_bounds():
	assert adaptive_ttl(300, 50) == 300
	assert adaptive_ttl(300, 101) == 600
	assert adaptive_ttl(1200, 500) == settings.search_cache_max_ttl_seconds
	assert adaptive_ttl(300, 4) == 150
	assert adaptive_ttl(100, 1) == settings.search_cache_min_ttl_seconds


def test_related_patterns_rules():
	assert set(related_patterns("products:detail:my-slug")) >= {
		"products:list:*",
		"products:trending:*",
		"recommendations:*",
	}
	assert set(related_patterns("users:detail:u1")) == {
		"recommendations:user:u1:*",
		"bookmarks:user:u1:*",
		"search:users:*",
	}
	assert related_patterns("jobs:detail:j1") == ["search:jobs:*"]
	assert related_patterns("bookmarks:user:u1:list") == ["bookmarks:user:u1:*"]
	assert related_patterns("unrelated:*") == []


@pytest.mark.asyncio
async def test_get_or_compute_hits_skip_recompute(fake_redis):
	cache = CacheOrchestrator()
	calls = []

	async def _compute():
		calls.append(1)
		return [{"id": "p1"}, {"id": "p2"}]

	first = await cache.get_or_compute("search:products:x:h:0:10", _compute, ttl_seconds=300)
	second = await cache.get_or_compute("search:products:x:h:0:10", _compute, ttl_seconds=300)
	assert first == second == [{"id": "p1"}, {"id": "p2"}]
	assert len(calls) == 1
	# two results is a small set, so the ttl is halved
	assert 0 < await fake_redis.ttl("search:products:x:h:0:10") <= 150


@pytest.mark.asyncio
async def test_empty_results_are_not_cached(fake_redis):
	cache = CacheOrchestrator()

	async def _compute():
		return []

	assert await cache.get_or_compute("search:products:none:h:0:10", _compute, ttl_seconds=300) == []
	assert await fake_redis.exists("search:products:none:h:0:10") == 0


@pytest.mark.asyncio
async def test_cacheable_predicate_blocks_store(fake_redis):
	cache = CacheOrchestrator()

	async def _compute():
		return {"items": [1], "degraded": True}

	await cache.get_or_compute(
		"search:products:d:h:0:10",
		_compute,
		ttl_seconds=300,
		size_of=lambda value: 1,
		cacheable=lambda value: not value["degraded"],
	)
	assert await fake_redis.exists("search:products:d:h:0:10") == 0


class _BrokenClient:
	async def get(self, key):
		raise RedisConnectionError("down")

	async def set(self, key, value, ex=None):
		raise RedisConnectionError("down")

	async def delete_pattern(self, pattern):
		raise RedisConnectionError("down")


@pytest.mark.asyncio
async def test_cache_failures_degrade_to_miss():
	cache = CacheOrchestrator(client=_BrokenClient())
	calls = []

	async def _compute():
		calls.append(1)
		return ["value"]

	assert await cache.get_or_compute("k", _compute, ttl_seconds=60) == ["value"]
	assert await cache.get_or_compute("k", _compute, ttl_seconds=60) == ["value"]
	assert len(calls) == 2
	assert await cache.invalidate(["products:list:*"]) == 0


@pytest.mark.asyncio
async def test_invalidate_cascades_from_product_detail(fake_redis):
	for key in (
		"products:detail:my-slug",
		"products:list:page:1",
		"products:trending:7d:10:abc",
		"recommendations:user:u1:home",
		"bookmarks:user:u1:list",
		"categories:list:all",
	):
		await fake_redis.set(key, "1")
	cache = CacheOrchestrator(debounce_seconds=0)
	cleared = await cache.invalidate(["products:detail:my-slug"])
	assert cleared == 5
	assert await fake_redis.exists("products:list:page:1") == 0
	assert await fake_redis.exists("recommendations:user:u1:home") == 0
	assert await fake_redis.exists("categories:list:all") == 1


@pytest.mark.asyncio
async def test_invalidate_without_cascade(fake_redis):
	await fake_redis.set("products:detail:my-slug", "1")
	await fake_redis.set("products:list:page:1", "1")
	cache = CacheOrchestrator(debounce_seconds=0)
	assert await cache.invalidate(["products:detail:my-slug"], cascade=False) == 1
	assert await fake_redis.exists("products:list:page:1") == 1


@pytest.mark.asyncio
async def test_cascaded_patterns_are_debounced(fake_redis):
	cache = CacheOrchestrator(debounce_seconds=60)
	await fake_redis.set("search:jobs:a", "1")
	assert await cache.invalidate(["jobs:detail:j1"]) == 1
	await fake_redis.set("search:jobs:b", "1")
	await fake_redis.set("jobs:detail:j1", "1")
	assert await cache.invalidate(["jobs:detail:j1"]) == 1
	assert await fake_redis.exists("jobs:detail:j1") == 0
	assert await fake_redis.exists("search:jobs:b") == 1
	cache.reset_debounce()
	assert await cache.invalidate(["jobs:detail:j1"]) == 1


@pytest.mark.asyncio
async def test_requested_patterns_are_never_debounced(fake_redis):
	cache = CacheOrchestrator()
	assert settings.invalidation_debounce_seconds > 0
	await fake_redis.set("products:trending:7d:10:h", "1")
	assert await cache.invalidate(["products:trending:*"], cascade=False) == 1
	await fake_redis.set("products:trending:7d:10:h", "1")
	assert await cache.invalidate(["products:trending:*"], cascade=False) == 1
	assert await fake_redis.exists("products:trending:7d:10:h") == 0


@pytest.mark.asyncio
async def test_requested_pattern_runs_even_after_cascade(fake_redis):
	cache = CacheOrchestrator(debounce_seconds=60)
	await cache.invalidate(["products:detail:a"])
	await fake_redis.set("search:products:react:h:0:10", "1")
	assert await cache.invalidate(["search:products:*"], cascade=False) == 1


@pytest.mark.asyncio
async def test_invalidate_product_clears_listing_caches(fake_redis):
	for key in (
		"products:detail:my_slug:v1",
		"products:featured:home",
		"search:products:react:h:0:10",
		"views:product:p1:stats:daily",
		"products:user:m1:list",
		"search:jobs:react:h:0:10",
	):
		await fake_redis.set(key, "1")
	cache = CacheOrchestrator(debounce_seconds=0)
	cleared = await cache.invalidate_product("p1", "my-slug", maker_id="m1")
	assert cleared == 5
	assert await fake_redis.exists("search:jobs:react:h:0:10") == 1


@pytest.mark.asyncio
async def test_invalidate_views_clears_stats_and_viewer_history(fake_redis):
	for key in (
		"views:product:p1:stats:weekly",
		"products:trending:7d:10:h",
		"views:user:u1:history:page1",
		"recommendations:user:u1:feed",
		"recommendations:user:u2:feed",
	):
		await fake_redis.set(key, "1")
	cache = CacheOrchestrator(debounce_seconds=0)
	cleared = await cache.invalidate_views("p1", user_id="u1")
	assert cleared == 4
	assert await fake_redis.exists("recommendations:user:u2:feed") == 1
