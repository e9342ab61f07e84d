"""Central registry for Prometheus metrics used across the ranking backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

SEARCH_QUERIES = Counter(
	"bazaar_search_queries_total",
	"Search queries executed",
	["kind"],
)

SEARCH_LATENCY = Histogram(
	"bazaar_search_latency_seconds",
	"Search latency in seconds",
	["kind"],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

SEARCH_RESULTS = Histogram(
	"bazaar_search_results",
	"Results returned per entity search",
	["kind"],
	buckets=(0, 1, 5, 10, 20, 50),
)

SEARCH_DEGRADED = Counter(
	"bazaar_search_degraded_total",
	"Entity searches that fell back to an empty page",
	["kind"],
)

SEARCH_CACHE_EVENTS = Counter(
	"bazaar_search_cache_events_total",
	"Search cache lookups and writes",
	["result"],
)

CACHE_INVALIDATED_KEYS = Counter(
	"bazaar_cache_invalidated_keys_total",
	"Cache keys removed by pattern invalidation",
)

VECTOR_CACHE_SIZE = Gauge(
	"bazaar_vector_cache_entries",
	"Document vectors currently cached",
)

TRENDING_RECOMPUTE_DURATION = Histogram(
	"bazaar_trending_recompute_duration_seconds",
	"Duration of trending recompute passes",
	buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

TRENDING_ITEMS_SCORED = Counter(
	"bazaar_trending_items_scored_total",
	"Entities scored by the trending calculator",
)

TRENDING_ENTITIES_SKIPPED = Counter(
	"bazaar_trending_entities_skipped_total",
	"Entities left out of a trending pass",
	["reason"],
)


def inc_search_query(kind: str) -> None:
	SEARCH_QUERIES.labels(kind=kind).inc()


def observe_search_latency(kind: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(kind=kind).observe(latency_seconds)


def observe_search_results(kind: str, count: int) -> None:
	SEARCH_RESULTS.labels(kind=kind).observe(count)


def inc_search_degraded(kind: str) -> None:
	SEARCH_DEGRADED.labels(kind=kind).inc()


def inc_cache_event(result: str) -> None:
	SEARCH_CACHE_EVENTS.labels(result=result).inc()


def inc_trending_skipped(reason: str) -> None:
	TRENDING_ENTITIES_SKIPPED.labels(reason=reason).inc()
