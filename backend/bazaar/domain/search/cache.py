"""Result caching with adaptive TTLs and cascading pattern invalidation."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from cachetools import TTLCache
from redis.exceptions import RedisError

from bazaar.infra.redis import redis_client
from bazaar.obs import metrics as obs_metrics
from bazaar.settings import settings

logger = logging.getLogger(__name__)

LARGE_RESULT_COUNT = 100
SMALL_RESULT_COUNT = 5
FILTER_HASH_LENGTH = 12
DEBOUNCE_CAPACITY = 1024

_USER_DETAIL = re.compile(r"^users:detail:([^:*]+)")
_USER_BOOKMARKS = re.compile(r"^bookmarks:user:([^:*]+):")
_SLUG_UNSAFE = re.compile(r"[,\-\s]")


def normalize_cache_query(query: str | None) -> str:
	return " ".join((query or "").lower().split())


def filters_hash(filters: Optional[Mapping[str, Any]]) -> str:
	"""Order-independent digest of a filter map."""

	canonical = json.dumps(dict(filters or {}), sort_keys=True, separators=(",", ":"), default=str)
	return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:FILTER_HASH_LENGTH]


def search_key(entity_type: str, query: str | None, filters: Optional[Mapping[str, Any]], skip: int, limit: int) -> str:
	return f"search:{entity_type}:{normalize_cache_query(query)}:{filters_hash(filters)}:{skip}:{limit}"


def adaptive_ttl(base_ttl: int, result_count: int) -> int:
	"""Popular result sets live longer, sparse ones expire sooner."""

	if result_count > LARGE_RESULT_COUNT:
		return min(base_ttl * 2, settings.search_cache_max_ttl_seconds)
	if result_count < SMALL_RESULT_COUNT:
		return max(base_ttl // 2, settings.search_cache_min_ttl_seconds)
	return base_ttl


def related_patterns(pattern: str) -> list[str]:
	"""Patterns that must be cleared whenever `pattern` is cleared."""

	related: list[str] = []

	def _add(value: str) -> None:
		if value != pattern and value not in related:
			related.append(value)

	if pattern.startswith("products:detail:"):
		for value in ("products:list:*", "products:trending:*", "recommendations:*", "bookmarks:user:*"):
			_add(value)
	if pattern.startswith("products:"):
		for value in ("products:list:*", "products:trending:*", "bookmarks:user:*", "search:products:*"):
			_add(value)
	if pattern.startswith("categories:"):
		for value in ("categories:list:*", "products:category:*", "products:list:*", "bookmarks:user:*"):
			_add(value)
	match = _USER_DETAIL.match(pattern)
	if match:
		user_id = match.group(1)
		_add(f"recommendations:user:{user_id}:*")
		_add(f"bookmarks:user:{user_id}:*")
		_add("search:users:*")
	if pattern.startswith("bookmarks:"):
		match = _USER_BOOKMARKS.match(pattern)
		_add(f"bookmarks:user:{match.group(1)}:*" if match else "bookmarks:user:*")
	if pattern.startswith("jobs:"):
		_add("search:jobs:*")
	if pattern.startswith("projects:"):
		_add("search:projects:*")
	return related


def _default_size(value: Any) -> int:
	if value is None:
		return 0
	try:
		return len(value)
	except TypeError:
		return 1


class _Debouncer:
	"""Patterns cleared within the last window; a present key means skip."""

	def __init__(self, window_seconds: float, capacity: int = DEBOUNCE_CAPACITY) -> None:
		self.window_seconds = window_seconds
		self._recent: Optional[TTLCache] = (
			TTLCache(maxsize=capacity, ttl=window_seconds) if window_seconds > 0 else None
		)
		self._lock = threading.Lock()

	def seen(self, pattern: str) -> bool:
		if self._recent is None:
			return False
		with self._lock:
			return pattern in self._recent

	def mark(self, pattern: str) -> None:
		if self._recent is None:
			return
		with self._lock:
			self._recent[pattern] = True

	def clear(self) -> None:
		if self._recent is None:
			return
		with self._lock:
			self._recent.clear()


class CacheOrchestrator:
	def __init__(self, *, client: Any = None, debounce_seconds: Optional[float] = None) -> None:
		self._client = client
		window = settings.invalidation_debounce_seconds if debounce_seconds is None else debounce_seconds
		self._debouncer = _Debouncer(window)

	@property
	def client(self) -> Any:
		return self._client if self._client is not None else redis_client

	async def get(self, key: str) -> Any:
		"""Cached JSON value, or None on a miss or any cache failure."""

		try:
			raw = await self.client.get(key)
		except (RedisError, OSError):
			obs_metrics.inc_cache_event("error")
			logger.warning("cache.read_failed", extra={"key": key}, exc_info=True)
			return None
		if raw is None:
			return None
		try:
			return json.loads(raw)
		except ValueError:
			logger.warning("cache.decode_failed", extra={"key": key})
			return None

	async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
		try:
			await self.client.set(key, json.dumps(value, separators=(",", ":"), default=str), ex=ttl_seconds)
		except (RedisError, OSError, TypeError):
			obs_metrics.inc_cache_event("error")
			logger.warning("cache.write_failed", extra={"key": key}, exc_info=True)
			return False
		return True

	async def get_or_compute(
		self,
		key: str,
		compute: Callable[[], Awaitable[Any]],
		*,
		ttl_seconds: int,
		size_of: Callable[[Any], int] = _default_size,
		cacheable: Callable[[Any], bool] | None = None,
	) -> Any:
		"""Return the cached value or compute, then store non-empty results.

		`size_of` drives both the emptiness check and the adaptive TTL.
		"""

		cached = await self.get(key)
		if cached is not None:
			obs_metrics.inc_cache_event("hit")
			return cached
		obs_metrics.inc_cache_event("miss")
		value = await compute()
		size = size_of(value)
		if size <= 0 or (cacheable is not None and not cacheable(value)):
			obs_metrics.inc_cache_event("skip")
			return value
		ttl = adaptive_ttl(ttl_seconds, size)
		if await self.set(key, value, ttl):
			obs_metrics.inc_cache_event("store")
		return value

	async def invalidate(self, patterns: Iterable[str], *, cascade: bool = True) -> int:
		"""Delete keys matching each pattern, then every related pattern.

		Each pattern is processed at most once per call. The caller's own
		patterns always run; a cascaded pattern already cleared inside the
		debounce window is skipped along with its own cascade.
		"""

		queue: deque[str] = deque(pattern for pattern in patterns if pattern and isinstance(pattern, str))
		requested = set(queue)
		processed: set[str] = set()
		total = 0
		while queue:
			pattern = queue.popleft()
			if pattern in processed:
				continue
			processed.add(pattern)
			if pattern not in requested and self._debouncer.seen(pattern):
				logger.debug("cache.invalidate_debounced", extra={"pattern": pattern})
				continue
			try:
				cleared = await self.client.delete_pattern(pattern)
			except (RedisError, OSError):
				logger.warning("cache.invalidate_failed", extra={"pattern": pattern}, exc_info=True)
				cleared = 0
			else:
				self._debouncer.mark(pattern)
			total += cleared
			if cascade:
				queue.extend(related for related in related_patterns(pattern) if related not in processed)
		if total:
			obs_metrics.CACHE_INVALIDATED_KEYS.inc(total)
		logger.info("cache.invalidate", extra={"patterns": sorted(processed), "cleared": total})
		return total

	async def invalidate_product(self, product_id: str, slug: str, *, maker_id: Optional[str] = None) -> int:
		safe_slug = _SLUG_UNSAFE.sub("_", str(slug))
		patterns = [
			f"products:detail:{safe_slug}*",
			"products:list:*",
			"products:trending:*",
			"products:featured:*",
			"products:category:*",
			"search:products:*",
			f"views:product:{product_id}:stats*",
			"recommendations:*",
		]
		if maker_id:
			patterns.append(f"products:user:{maker_id}*")
		return await self.invalidate(patterns, cascade=False)

	async def invalidate_views(self, product_id: str, user_id: Optional[str] = None) -> int:
		patterns = [f"views:product:{product_id}:stats*", "products:trending:*"]
		if user_id:
			patterns.append(f"views:user:{user_id}:history*")
			patterns.append(f"recommendations:user:{user_id}*")
		return await self.invalidate(patterns, cascade=False)

	def reset_debounce(self) -> None:
		self._debouncer.clear()


__all__ = [
	"CacheOrchestrator",
	"adaptive_ttl",
	"filters_hash",
	"normalize_cache_query",
	"related_patterns",
	"search_key",
]
