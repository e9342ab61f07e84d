import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from bazaar.domain.search import policy
from bazaar.domain.search.schemas import SearchRequest, parse_search_request
from bazaar.domain.search.service import SearchService
from bazaar.domain.search.store import memory_store, seed_memory_store

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _iso(delta):
	return (NOW - delta).isoformat()


PRODUCTS = [
	{
		"id": "p1",
		"name": "React Dashboard",
		"tags": ["dashboard", "admin"],
		"categoryName": "Developer Tools",
		"tagline": "Admin panels in minutes",
		"description": "Charts, tables and auth screens for internal tools.",
		"status": "Published",
		"upvotes": 12,
		"createdAt": _iso(timedelta(days=5)),
	},
	{
		"id": "p2",
		"name": "Vue Admin Kit",
		"tags": ["vue", "admin"],
		"categoryName": "Developer Tools",
		"status": "Published",
		"upvotes": 3,
		"createdAt": _iso(timedelta(days=40)),
	},
	{
		"id": "p3",
		"name": "React Native Starter",
		"tags": ["mobile"],
		"status": "Draft",
		"createdAt": _iso(timedelta(days=1)),
	},
]

JOBS = [
	{
		"id": "j1",
		"title": "React Developer",
		"skills": ["react", "typescript"],
		"company": {"name": "Acme"},
		"status": "Published",
		"expiresAt": (NOW + timedelta(days=10)).isoformat(),
	},
	{
		"id": "j2",
		"title": "React Lead",
		"skills": ["react"],
		"status": "Published",
		"expiresAt": (NOW - timedelta(days=1)).isoformat(),
	},
]

USERS = [
	{"id": "u1", "username": "ria", "firstName": "Ria", "lastName": "Shah", "bio": "I build react apps", "status": "active"},
	{"id": "u2", "username": "reactfan", "firstName": "Sam", "lastName": "Lee", "status": "active"},
]


class _CountingStore:
	def __init__(self, inner, *, fail=False):
		self.inner = inner
		self.fail = fail
		self.find_calls = 0

	async def find(self, collection, criteria, *, limit, sort=None):
		self.find_calls += 1
		if self.fail:
			raise policy.UpstreamUnavailable("store_find_failed")
		return await self.inner.find(collection, criteria, limit=limit, sort=sort)

	async def count(self, collection, criteria):
		return await self.inner.count(collection, criteria)

	async def get(self, collection, entity_id):
		return await self.inner.get(collection, entity_id)

	async def save_trending_scores(self, collection, records):
		return await self.inner.save_trending_scores(collection, records)


@pytest_asyncio.fixture
async def seeded():
	await seed_memory_store(products=PRODUCTS, jobs=JOBS, users=USERS)
	return memory_store()


@pytest.mark.asyncio
async def test_typo_query_finds_document_through_fuzzy_expansion(seeded):
	response = await SearchService(store=seeded).search(
		SearchRequest(raw_query="reactt", entity_types="products"),
		now=NOW,
	)
	ids = [item.id for item in response.results["products"]]
	assert ids[0] == "p1"
	assert "p3" not in ids
	assert response.results["products"][0].match.fuzzy_match is True
	assert set(response.results) == {"products"}


@pytest.mark.asyncio
async def test_exact_name_ranks_first_across_types(seeded):
	response = await SearchService(store=seeded).search(SearchRequest(raw_query="React Dashboard"), now=NOW)
	top = response.results["products"][0]
	assert top.id == "p1"
	assert top.match.exact_match is True
	assert top.match.primary_match_reason == "name"
	assert response.counts["products"] >= 1
	assert response.total_results == sum(response.counts.values())
	assert response.degraded_types == []


@pytest.mark.asyncio
async def test_expired_jobs_and_viewer_are_excluded(seeded):
	response = await SearchService(store=seeded).search(
		SearchRequest(raw_query="react", entity_types=["jobs", "users"], viewer_id="u1"),
		now=NOW,
	)
	assert [item.id for item in response.results["jobs"]] == ["j1"]
	assert all(item.id != "u1" for item in response.results["users"])


@pytest.mark.asyncio
async def test_cached_page_skips_store(seeded):
	store = _CountingStore(seeded)
	service = SearchService(store=store)
	request = SearchRequest(raw_query="", entity_types="products")
	first = await service.search(request, now=NOW)
	second = await service.search(request, now=NOW)
	assert store.find_calls == 1
	assert [item.id for item in first.results["products"]] == [item.id for item in second.results["products"]]
	assert set(item.id for item in first.results["products"]) == {"p1", "p2"}


@pytest.mark.asyncio
async def test_store_failure_degrades_and_is_not_cached(seeded):
	store = _CountingStore(seeded, fail=True)
	service = SearchService(store=store)
	request = SearchRequest(raw_query="", entity_types="products")
	response = await service.search(request, now=NOW)
	assert response.results["products"] == []
	assert response.degraded_types == ["products"]
	await service.search(request, now=NOW)
	assert store.find_calls == 2


@pytest.mark.asyncio
async def test_pages_do_not_overlap(seeded):
	extra = [
		{
			"id": f"t{i}",
			"name": f"Toolbox {i}",
			"status": "Published",
			"upvotes": i,
			"createdAt": _iso(timedelta(days=60)),
		}
		for i in range(6)
	]
	await seed_memory_store(products=extra)
	service = SearchService(store=seeded)
	first = await service.search(SearchRequest(raw_query="toolbox", entity_types="products", limit=3), now=NOW)
	second = await service.search(
		SearchRequest(raw_query="toolbox", entity_types="products", limit=3, page=2),
		now=NOW,
	)
	first_ids = [item.id for item in first.results["products"]]
	second_ids = [item.id for item in second.results["products"]]
	assert first_ids and second_ids
	assert not set(first_ids) & set(second_ids)


@pytest.mark.asyncio
async def test_suggestions_combine_prefixes_and_corrections(seeded):
	suggestions = await SearchService(store=seeded).suggestions("reac", now=NOW)
	assert suggestions[:2] == ["React Dashboard", "React Developer"]
	assert "React Lead" not in suggestions
	assert len(suggestions) == len({value.lower() for value in suggestions})


@pytest.mark.asyncio
async def test_invalid_request_rejected_before_store(seeded):
	store = _CountingStore(seeded)
	with pytest.raises(policy.InvalidInput) as exc:
		parse_search_request({"raw_query": "react", "limit": 500})
	assert exc.value.detail == "invalid_limit"
	with pytest.raises(policy.InvalidInput):
		parse_search_request({"filters": {"maker": "bad id!"}})
	with pytest.raises(policy.InvalidInput):
		parse_search_request({"entity_types": "widgets"})
	assert store.find_calls == 0


def test_request_normalises_entity_types():
	assert SearchRequest(entity_types="all").ordered_types() == ["products", "jobs", "projects", "users"]
	assert SearchRequest(entity_types="users,products").ordered_types() == ["products", "users"]
	assert SearchRequest().filters.as_map() == {}


def test_policy_guards():
	assert policy.normalize_query("  react   kit ") == "react kit"
	assert policy.ensure_pagination(3, 10, max_limit=50) == (20, 10)
	with pytest.raises(policy.InvalidInput):
		policy.ensure_pagination(0, 10, max_limit=50)
	with pytest.raises(policy.InvalidInput):
		policy.ensure_query_allowed("x" * (policy.MAX_QUERY_LENGTH + 1))
	with pytest.raises(policy.InvalidInput) as exc:
		policy.validate_entity_id("../etc", field="exclude_id")
	assert exc.value.detail == "invalid_exclude_id"
	assert exc.value.status_code == 400
	assert policy.UpstreamUnavailable().status_code == 503


def test_mixed_naive_and_aware_created_range():
	request = parse_search_request(
		{"filters": {"created_after": "2024-01-01T00:00:00", "created_before": "2024-02-01T00:00:00Z"}}
	)
	assert request.filters.created_after == datetime(2024, 1, 1, tzinfo=timezone.utc)
	with pytest.raises(policy.InvalidInput) as exc:
		parse_search_request(
			{"filters": {"created_after": "2024-03-01T00:00:00", "created_before": "2024-02-01T00:00:00Z"}}
		)
	assert exc.value.detail == "invalid_filters"


class _GatedStore(_CountingStore):
	"""Products lookups wait until a jobs lookup has finished."""

	def __init__(self, inner):
		super().__init__(inner)
		self.jobs_done = asyncio.Event()

	async def find(self, collection, criteria, *, limit, sort=None):
		if collection == "products":
			await asyncio.wait_for(self.jobs_done.wait(), timeout=2)
		found = await super().find(collection, criteria, limit=limit, sort=sort)
		if collection == "jobs":
			self.jobs_done.set()
		return found


@pytest.mark.asyncio
async def test_entity_searches_run_concurrently(seeded):
	service = SearchService(store=_GatedStore(seeded))
	response = await service.search(SearchRequest(raw_query="react", entity_types="products,jobs"), now=NOW)
	assert [item.id for item in response.results["jobs"]] == ["j1"]
	assert response.results["products"][0].id == "p1"


class _StalledStore(_CountingStore):
	def __init__(self, inner, *, expected):
		super().__init__(inner)
		self.expected = expected
		self.all_started = asyncio.Event()

	async def find(self, collection, criteria, *, limit, sort=None):
		self.find_calls += 1
		if self.find_calls >= self.expected:
			self.all_started.set()
		await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_cancelled_search_caches_nothing(seeded, fake_redis):
	store = _StalledStore(seeded, expected=2)
	service = SearchService(store=store)
	task = asyncio.create_task(
		service.search(SearchRequest(raw_query="react", entity_types="products,jobs"), now=NOW)
	)
	await asyncio.wait_for(store.all_started.wait(), timeout=2)
	task.cancel()
	with pytest.raises(asyncio.CancelledError):
		await task
	assert await fake_redis.keys("search:*") == []
