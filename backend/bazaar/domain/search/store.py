"""Document store adapters consumed by search and trending.

The memory store evaluates criteria trees directly and backs tests and local
development. The Postgres store keeps each collection as a jsonb table and
compiles criteria trees into parameterised WHERE clauses.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

import asyncpg

from bazaar.domain.search import policy
from bazaar.domain.search.criteria import (
	AllOf,
	AnyOf,
	EntityCriteria,
	Equals,
	FieldMatch,
	NotEquals,
	Predicate,
	Range,
	as_datetime,
	as_number,
	resolve_path,
)
from bazaar.infra import postgres
from bazaar.settings import settings

COLLECTIONS = ("products", "jobs", "projects", "users")


class ScoreWrite(Protocol):
	entity_id: str
	computed_score: float
	computed_at: datetime


class DocumentStore(Protocol):
	async def find(
		self,
		collection: str,
		criteria: EntityCriteria,
		*,
		limit: int,
		sort: Optional[tuple[str, bool]] = None,
	) -> list[dict[str, Any]]: ...

	async def count(self, collection: str, criteria: EntityCriteria) -> int: ...

	async def get(self, collection: str, entity_id: str) -> Optional[dict[str, Any]]: ...

	async def save_trending_scores(self, collection: str, records: Sequence[ScoreWrite]) -> int: ...


def _sort_value(document: Mapping[str, Any], field: str) -> tuple[int, Any]:
	values = resolve_path(document, field)
	if not values:
		return (0, 0)
	value = values[0]
	when = as_datetime(value)
	if when is not None:
		return (1, when.timestamp())
	number = as_number(value)
	if number is not None:
		return (1, number)
	return (1, str(value))


class MemoryDocumentStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.collections: dict[str, dict[str, dict[str, Any]]] = {name: {} for name in COLLECTIONS}

	async def seed(self, collection: str, documents: Iterable[Mapping[str, Any]]) -> None:
		async with self._lock:
			bucket = self.collections.setdefault(collection, {})
			for document in documents:
				bucket[str(document["id"])] = dict(document)

	async def reset(self) -> None:
		async with self._lock:
			self.collections = {name: {} for name in COLLECTIONS}

	async def find(
		self,
		collection: str,
		criteria: EntityCriteria,
		*,
		limit: int,
		sort: Optional[tuple[str, bool]] = None,
	) -> list[dict[str, Any]]:
		async with self._lock:
			matches = [dict(doc) for doc in self.collections.get(collection, {}).values() if criteria.matches(doc)]
		if sort is not None:
			field, descending = sort
			matches.sort(key=lambda doc: _sort_value(doc, field), reverse=descending)
		return matches[:limit]

	async def count(self, collection: str, criteria: EntityCriteria) -> int:
		async with self._lock:
			return sum(1 for doc in self.collections.get(collection, {}).values() if criteria.matches(doc))

	async def get(self, collection: str, entity_id: str) -> Optional[dict[str, Any]]:
		async with self._lock:
			document = self.collections.get(collection, {}).get(entity_id)
			return dict(document) if document is not None else None

	async def save_trending_scores(self, collection: str, records: Sequence[ScoreWrite]) -> int:
		updated = 0
		async with self._lock:
			bucket = self.collections.get(collection, {})
			for record in records:
				document = bucket.get(record.entity_id)
				if document is None:
					continue
				document["trendingScore"] = record.computed_score
				document["trendingComputedAt"] = record.computed_at.isoformat()
				updated += 1
		return updated


_LIKE_SPECIAL = re.compile(r"([\\%_])")
_REGEX_SPECIAL = re.compile(r"([^A-Za-z0-9\s])")


def _like_escape(term: str) -> str:
	return _LIKE_SPECIAL.sub(r"\\\1", term)


def _json_path(field: str) -> str:
	parts = field.split(".")
	if not all(re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", part) for part in parts):
		raise ValueError(f"unsafe field path: {field}")
	return "'{" + ",".join(parts) + "}'"


class CriteriaCompiler:
	"""Builds a WHERE clause with positional asyncpg parameters."""

	def __init__(self, *, start: int = 1) -> None:
		self.params: list[Any] = []
		self._start = start

	def param(self, value: Any) -> str:
		self.params.append(value)
		return f"${self._start + len(self.params) - 1}"

	def compile(self, criteria: EntityCriteria) -> str:
		parts = [self._predicate(constraint) for constraint in criteria.constraints]
		if criteria.match is not None:
			parts.append(self._predicate(criteria.match))
		return " AND ".join(f"({part})" for part in parts) if parts else "TRUE"

	def _text_source(self, field: str, many: bool) -> tuple[str, str]:
		"""Return (FROM clause prefix, value expression) for a text field."""

		path = _json_path(field)
		if many:
			source = (
				"jsonb_array_elements_text(CASE WHEN jsonb_typeof(doc #> {p}) = 'array' "
				"THEN doc #> {p} ELSE '[]'::jsonb END) AS v(value)"
			).format(p=path)
			return source, "v.value"
		return "", f"(doc #>> {path})"

	def _text_test(self, kind: str, expr: str, term: str) -> str:
		if kind == "exact":
			return f"lower({expr}) = lower({self.param(term)})"
		if kind == "contains":
			return f"{expr} ILIKE {self.param('%' + _like_escape(term) + '%')} ESCAPE '\\'"
		if kind == "prefix":
			return f"{expr} ILIKE {self.param(_like_escape(term) + '%')} ESCAPE '\\'"
		if kind == "word":
			pattern = r"\y" + _REGEX_SPECIAL.sub(r"\\\1", term) + r"\y"
			return f"{expr} ~* {self.param(pattern)}"
		raise ValueError(f"unknown match kind: {kind}")

	def _predicate(self, predicate: Predicate) -> str:
		if isinstance(predicate, FieldMatch):
			source, expr = self._text_source(predicate.field, predicate.many)
			test = self._text_test(predicate.kind, expr, predicate.term)
			if source:
				return f"EXISTS (SELECT 1 FROM {source} WHERE {test})"
			return test
		if isinstance(predicate, Equals):
			return self._equals(predicate.field, predicate.value)
		if isinstance(predicate, NotEquals):
			path = _json_path(predicate.field)
			return f"doc #> {path} IS NULL OR NOT ({self._equals(predicate.field, predicate.value)})"
		if isinstance(predicate, Range):
			return self._range(predicate)
		if isinstance(predicate, AnyOf):
			if not predicate.clauses:
				return "FALSE"
			return " OR ".join(f"({self._predicate(clause)})" for clause in predicate.clauses)
		if isinstance(predicate, AllOf):
			if not predicate.clauses:
				return "TRUE"
			return " AND ".join(f"({self._predicate(clause)})" for clause in predicate.clauses)
		raise TypeError(f"unsupported predicate: {predicate!r}")

	def _equals(self, field: str, value: Any) -> str:
		path = _json_path(field)
		if isinstance(value, str):
			return f"lower(doc #>> {path}) = lower({self.param(value)})"
		return f"doc #> {path} = {self.param(json.dumps(value))}::jsonb"

	def _range(self, predicate: Range) -> str:
		path = _json_path(predicate.field)
		if predicate.cast == "timestamp":
			expr = f"(CASE WHEN jsonb_typeof(doc #> {path}) = 'string' THEN (doc #>> {path})::timestamptz END)"
			coerce = as_datetime
		else:
			expr = f"(CASE WHEN jsonb_typeof(doc #> {path}) = 'number' THEN (doc #>> {path})::double precision END)"
			coerce = as_number
		tests = []
		for op, bound in ((">", predicate.gt), (">=", predicate.gte), ("<", predicate.lt), ("<=", predicate.lte)):
			if bound is None:
				continue
			tests.append(f"{expr} {op} {self.param(coerce(bound))}")
		return " AND ".join(tests) if tests else f"{expr} IS NOT NULL"


def _decode_row(row: Mapping[str, Any]) -> dict[str, Any]:
	raw = row["doc"]
	document = json.loads(raw) if isinstance(raw, str) else dict(raw)
	document.setdefault("id", row["id"])
	return document


class PostgresDocumentStore:
	"""Collections live in tables named after them: (id, doc jsonb, trending columns)."""

	def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
		self._pool = pool

	async def _acquire_pool(self) -> asyncpg.Pool:
		if self._pool is None:
			self._pool = await postgres.get_pool()
		return self._pool

	@staticmethod
	def _table(collection: str) -> str:
		if collection not in COLLECTIONS:
			raise policy.InvalidInput(f"unknown_collection:{collection}")
		return collection

	async def find(
		self,
		collection: str,
		criteria: EntityCriteria,
		*,
		limit: int,
		sort: Optional[tuple[str, bool]] = None,
	) -> list[dict[str, Any]]:
		compiler = CriteriaCompiler()
		where = compiler.compile(criteria)
		order = "id"
		if sort is not None:
			field, descending = sort
			order = f"doc #>> {_json_path(field)} {'DESC' if descending else 'ASC'} NULLS LAST, id"
		limit_param = compiler.param(limit)
		sql = f"SELECT id, doc FROM {self._table(collection)} WHERE {where} ORDER BY {order} LIMIT {limit_param}"
		try:
			pool = await self._acquire_pool()
			async with pool.acquire() as conn:
				rows = await conn.fetch(sql, *compiler.params)
		except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
			raise policy.UpstreamUnavailable(f"store_find_failed:{collection}") from exc
		return [_decode_row(row) for row in rows]

	async def count(self, collection: str, criteria: EntityCriteria) -> int:
		compiler = CriteriaCompiler()
		where = compiler.compile(criteria)
		sql = f"SELECT COUNT(*) FROM {self._table(collection)} WHERE {where}"
		try:
			pool = await self._acquire_pool()
			async with pool.acquire() as conn:
				value = await conn.fetchval(sql, *compiler.params)
		except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
			raise policy.UpstreamUnavailable(f"store_count_failed:{collection}") from exc
		return int(value or 0)

	async def get(self, collection: str, entity_id: str) -> Optional[dict[str, Any]]:
		sql = f"SELECT id, doc FROM {self._table(collection)} WHERE id = $1"
		try:
			pool = await self._acquire_pool()
			async with pool.acquire() as conn:
				row = await conn.fetchrow(sql, entity_id)
		except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
			raise policy.UpstreamUnavailable(f"store_get_failed:{collection}") from exc
		return _decode_row(row) if row is not None else None

	async def save_trending_scores(self, collection: str, records: Sequence[ScoreWrite]) -> int:
		if not records:
			return 0
		sql = (
			f"UPDATE {self._table(collection)} SET trending_score = $2, trending_computed_at = $3, "
			"doc = doc || jsonb_build_object('trendingScore', $2::double precision, "
			"'trendingComputedAt', to_jsonb($3::timestamptz)) WHERE id = $1"
		)
		args = [(record.entity_id, record.computed_score, record.computed_at) for record in records]
		try:
			pool = await self._acquire_pool()
			async with pool.acquire() as conn:
				async with conn.transaction():
					await conn.executemany(sql, args)
		except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
			raise policy.UpstreamUnavailable(f"store_write_failed:{collection}") from exc
		return len(args)


_MEMORY = MemoryDocumentStore()


def memory_store() -> MemoryDocumentStore:
	return _MEMORY


def resolve_store() -> DocumentStore:
	if settings.search_backend == "postgres":
		return PostgresDocumentStore(postgres.current_pool())
	return _MEMORY


async def seed_memory_store(
	*,
	products: Iterable[Mapping[str, Any]] | None = None,
	jobs: Iterable[Mapping[str, Any]] | None = None,
	projects: Iterable[Mapping[str, Any]] | None = None,
	users: Iterable[Mapping[str, Any]] | None = None,
) -> None:
	for collection, documents in (("products", products), ("jobs", jobs), ("projects", projects), ("users", users)):
		if documents:
			await _MEMORY.seed(collection, documents)


async def reset_memory_state() -> None:
	await _MEMORY.reset()


__all__ = [
	"CriteriaCompiler",
	"DocumentStore",
	"MemoryDocumentStore",
	"PostgresDocumentStore",
	"memory_store",
	"reset_memory_state",
	"resolve_store",
	"seed_memory_store",
]
