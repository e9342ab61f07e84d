"""Windowed engagement counts read by the trending service."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Optional, Protocol

import asyncpg

from bazaar.domain.search import policy
from bazaar.domain.search.criteria import as_datetime
from bazaar.domain.trending.models import EngagementWindow
from bazaar.infra import postgres
from bazaar.settings import settings

EVENT_KINDS = ("upvote", "comment", "view")


class EngagementFacts(Protocol):
	async def window_counts(self, entity_type: str, entity_id: str, since: datetime) -> EngagementWindow: ...


@dataclass(slots=True, frozen=True)
class EngagementEvent:
	entity_type: str
	entity_id: str
	kind: str
	user_id: Optional[str]
	created_at: datetime


class MemoryEngagementFacts:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._events: list[EngagementEvent] = []

	async def record(self, events: Iterable[EngagementEvent | Mapping[str, object]]) -> None:
		parsed: list[EngagementEvent] = []
		for event in events:
			if isinstance(event, EngagementEvent):
				parsed.append(event)
				continue
			created = as_datetime(event.get("created_at"))
			if created is None:
				raise ValueError("engagement event requires created_at")
			user_id = event.get("user_id")
			parsed.append(
				EngagementEvent(
					entity_type=str(event.get("entity_type", "products")),
					entity_id=str(event["entity_id"]),
					kind=str(event["kind"]),
					user_id=str(user_id) if user_id is not None else None,
					created_at=created,
				)
			)
		async with self._lock:
			self._events.extend(parsed)

	async def reset(self) -> None:
		async with self._lock:
			self._events = []

	async def window_counts(self, entity_type: str, entity_id: str, since: datetime) -> EngagementWindow:
		counts = {kind: 0 for kind in EVENT_KINDS}
		users: set[str] = set()
		async with self._lock:
			for event in self._events:
				if event.entity_type != entity_type or event.entity_id != entity_id:
					continue
				if event.kind not in counts or event.created_at < since:
					continue
				counts[event.kind] += 1
				if event.user_id:
					users.add(event.user_id)
		return EngagementWindow(
			upvotes=counts["upvote"],
			comments=counts["comment"],
			views=counts["view"],
			unique_users=len(users),
		)


_WINDOW_SQL = """
SELECT
	COUNT(*) FILTER (WHERE kind = 'upvote') AS upvotes,
	COUNT(*) FILTER (WHERE kind = 'comment') AS comments,
	COUNT(*) FILTER (WHERE kind = 'view') AS views,
	COUNT(DISTINCT user_id) AS unique_users
FROM engagement_events
WHERE entity_type = $1
	AND entity_id = $2
	AND created_at >= $3
	AND kind = ANY($4::text[])
"""


class PostgresEngagementFacts:
	"""Aggregates over engagement_events(entity_type, entity_id, kind, user_id, created_at)."""

	def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
		self._pool = pool

	async def window_counts(self, entity_type: str, entity_id: str, since: datetime) -> EngagementWindow:
		try:
			if self._pool is None:
				self._pool = await postgres.get_pool()
			async with self._pool.acquire() as conn:
				row = await conn.fetchrow(_WINDOW_SQL, entity_type, entity_id, since, list(EVENT_KINDS))
		except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
			raise policy.UpstreamUnavailable("engagement_facts_failed") from exc
		if row is None:
			return EngagementWindow()
		return EngagementWindow(
			upvotes=int(row["upvotes"] or 0),
			comments=int(row["comments"] or 0),
			views=int(row["views"] or 0),
			unique_users=int(row["unique_users"] or 0),
		)


_MEMORY_FACTS = MemoryEngagementFacts()


def memory_facts() -> MemoryEngagementFacts:
	return _MEMORY_FACTS


def resolve_facts() -> EngagementFacts:
	if settings.search_backend == "postgres":
		return PostgresEngagementFacts(postgres.current_pool())
	return _MEMORY_FACTS


__all__ = [
	"EVENT_KINDS",
	"EngagementEvent",
	"EngagementFacts",
	"MemoryEngagementFacts",
	"PostgresEngagementFacts",
	"memory_facts",
	"resolve_facts",
]
