"""Predicate trees describing which documents an entity search may return.

Trees are evaluated in-process by the memory store and compiled to SQL by the
Postgres store, so every node stays a plain frozen record.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union


def resolve_path(document: Mapping[str, Any], path: str) -> list[Any]:
	"""Collect the values at a dotted path, flattening lists along the way."""

	current: list[Any] = [document]
	for part in path.split("."):
		nxt: list[Any] = []
		for node in current:
			if isinstance(node, Mapping):
				value = node.get(part)
			else:
				value = None
			if value is None:
				continue
			if isinstance(value, (list, tuple)):
				nxt.extend(item for item in value if item is not None)
			else:
				nxt.append(value)
		current = nxt
		if not current:
			break
	return current


def text_values(document: Mapping[str, Any], path: str) -> list[str]:
	return [str(value) for value in resolve_path(document, path) if not isinstance(value, Mapping)]


def as_datetime(value: Any) -> Optional[datetime]:
	if isinstance(value, datetime):
		return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
	if isinstance(value, str) and value:
		try:
			parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
		except ValueError:
			return None
		return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
	return None


def as_number(value: Any) -> Optional[float]:
	if isinstance(value, bool):
		return None
	if isinstance(value, (int, float)):
		return float(value)
	if isinstance(value, str):
		try:
			return float(value)
		except ValueError:
			return None
	return None


def text_matches(kind: str, value: str, term: str) -> bool:
	haystack = value.lower()
	needle = term.lower()
	if kind == "exact":
		return haystack == needle
	if kind == "contains":
		return needle in haystack
	if kind == "prefix":
		return haystack.startswith(needle)
	if kind == "word":
		return re.search(rf"\b{re.escape(needle)}\b", haystack) is not None
	raise ValueError(f"unknown match kind: {kind}")


@dataclass(slots=True, frozen=True)
class FieldMatch:
	"""Text clause; lower priority numbers are stronger evidence."""

	field: str
	kind: str
	term: str
	priority: int
	many: bool = False
	origin: str = "literal"
	role: str = "other"

	def matches(self, document: Mapping[str, Any]) -> bool:
		return any(text_matches(self.kind, value, self.term) for value in text_values(document, self.field))


@dataclass(slots=True, frozen=True)
class Equals:
	field: str
	value: Any

	def matches(self, document: Mapping[str, Any]) -> bool:
		values = resolve_path(document, self.field)
		if isinstance(self.value, str):
			return any(str(v).lower() == self.value.lower() for v in values)
		return any(v == self.value for v in values)


@dataclass(slots=True, frozen=True)
class NotEquals:
	field: str
	value: Any

	def matches(self, document: Mapping[str, Any]) -> bool:
		return not Equals(self.field, self.value).matches(document)


@dataclass(slots=True, frozen=True)
class Range:
	"""Bounded comparison; `cast` picks numeric or timestamp semantics."""

	field: str
	gt: Any = None
	gte: Any = None
	lt: Any = None
	lte: Any = None
	cast: str = "number"

	def _coerce(self, value: Any) -> Any:
		return as_datetime(value) if self.cast == "timestamp" else as_number(value)

	def matches(self, document: Mapping[str, Any]) -> bool:
		for raw in resolve_path(document, self.field):
			value = self._coerce(raw)
			if value is None:
				continue
			if self.gt is not None and not value > self._coerce(self.gt):
				continue
			if self.gte is not None and not value >= self._coerce(self.gte):
				continue
			if self.lt is not None and not value < self._coerce(self.lt):
				continue
			if self.lte is not None and not value <= self._coerce(self.lte):
				continue
			return True
		return False


@dataclass(slots=True, frozen=True)
class AnyOf:
	clauses: tuple["Predicate", ...]

	def matches(self, document: Mapping[str, Any]) -> bool:
		return any(clause.matches(document) for clause in self.clauses)

	def strongest(self, document: Mapping[str, Any]) -> Optional[FieldMatch]:
		"""Highest-priority text clause the document satisfies."""

		best: Optional[FieldMatch] = None
		for clause in self.clauses:
			if isinstance(clause, FieldMatch) and clause.matches(document):
				if best is None or clause.priority < best.priority:
					best = clause
		return best


@dataclass(slots=True, frozen=True)
class AllOf:
	clauses: tuple["Predicate", ...]

	def matches(self, document: Mapping[str, Any]) -> bool:
		return all(clause.matches(document) for clause in self.clauses)


Predicate = Union[FieldMatch, Equals, NotEquals, Range, AnyOf, AllOf]


@dataclass(slots=True, frozen=True)
class EntityCriteria:
	"""Constraints are conjunctive; `match` is the ranked text disjunction."""

	entity_type: str
	constraints: tuple[Predicate, ...]
	match: Optional[AnyOf] = None

	def matches(self, document: Mapping[str, Any]) -> bool:
		if not all(constraint.matches(document) for constraint in self.constraints):
			return False
		return self.match is None or self.match.matches(document)

	def without_match(self) -> "EntityCriteria":
		"""Only the base and filter constraints, used for the semantic pool."""

		return EntityCriteria(entity_type=self.entity_type, constraints=self.constraints, match=None)
