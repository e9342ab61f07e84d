"""Translate a query and typed filters into per-entity criteria trees."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from bazaar.domain.search.criteria import AnyOf, EntityCriteria, FieldMatch
from bazaar.domain.search.entities import EntityType
from bazaar.domain.search.lexical import LexicalExpander, default_expander
from bazaar.domain.search.models import TermExpansion
from bazaar.domain.search.schemas import SearchFilters

PRIORITY_EXACT_NAME = 1
PRIORITY_EXACT_TAG = 2
PRIORITY_NAME = 3
PRIORITY_TAG = 4
PRIORITY_SECONDARY = 5
PRIORITY_DESCRIPTION = 6
PRIORITY_VARIANT = 7
PRIORITY_WORD = 8
MIN_WORD_LENGTH = 3


def split_quoted(query: str) -> tuple[str, bool]:
	"""Strip one pair of surrounding double quotes and report whether it was there."""

	text = query.strip()
	if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
		return " ".join(text[1:-1].split()), True
	return text, False


def query_words(query: str) -> list[str]:
	words = query.lower().split()
	if len(words) < 2:
		return []
	return [word for word in words if len(word) >= MIN_WORD_LENGTH]


class CriteriaBuilder:
	def __init__(self, *, expander: Optional[LexicalExpander] = None) -> None:
		self.expander = expander or default_expander()

	def expand(self, query: str) -> TermExpansion:
		text, _ = split_quoted(query)
		return self.expander.expand(text)

	def build(
		self,
		entity: EntityType,
		query: str,
		filters: SearchFilters,
		*,
		viewer_id: Optional[str] = None,
		now: Optional[datetime] = None,
		expansion: Optional[TermExpansion] = None,
	) -> EntityCriteria:
		now = now or datetime.now(timezone.utc)
		constraints = entity.base_constraints(now) + entity.filter_constraints(filters, viewer_id=viewer_id)
		text, quoted = split_quoted(query)
		if not text:
			return EntityCriteria(entity_type=entity.name, constraints=constraints)
		expansion = expansion or self.expander.expand(text)
		clauses = self._literal_clauses(entity, text.lower(), quoted)
		for variant in expansion.variants():
			clauses.extend(self._variant_clauses(entity, variant, expansion.origin_of(variant)))
		for word in query_words(text):
			clauses.extend(self._word_clauses(entity, word))
		return EntityCriteria(entity_type=entity.name, constraints=constraints, match=AnyOf(tuple(clauses)))

	def _literal_clauses(self, entity: EntityType, term: str, quoted: bool) -> list[FieldMatch]:
		kind = "word" if quoted else "contains"
		clauses: list[FieldMatch] = []
		clauses.extend(self._role_clauses(entity, "name", "exact", term, PRIORITY_EXACT_NAME))
		clauses.extend(self._role_clauses(entity, "tag", "exact", term, PRIORITY_EXACT_TAG))
		clauses.extend(self._role_clauses(entity, "name", kind, term, PRIORITY_NAME))
		clauses.extend(self._role_clauses(entity, "tag", kind, term, PRIORITY_TAG))
		clauses.extend(self._role_clauses(entity, "category", kind, term, PRIORITY_SECONDARY))
		clauses.extend(self._role_clauses(entity, "tagline", kind, term, PRIORITY_SECONDARY))
		clauses.extend(self._role_clauses(entity, "description", kind, term, PRIORITY_DESCRIPTION))
		return clauses

	def _variant_clauses(self, entity: EntityType, term: str, origin: str) -> list[FieldMatch]:
		# short abbreviations ("ui", "js") only match whole words
		kind = "word" if len(term) <= MIN_WORD_LENGTH else "contains"
		clauses: list[FieldMatch] = []
		for role in ("name", "tag", "category", "tagline"):
			clauses.extend(self._role_clauses(entity, role, kind, term, PRIORITY_VARIANT, origin=origin))
		return clauses

	def _word_clauses(self, entity: EntityType, word: str) -> list[FieldMatch]:
		clauses: list[FieldMatch] = []
		for role in ("name", "tag", "description"):
			clauses.extend(self._role_clauses(entity, role, "word", word, PRIORITY_WORD, origin="word"))
		return clauses

	@staticmethod
	def _role_clauses(
		entity: EntityType,
		role: str,
		kind: str,
		term: str,
		priority: int,
		*,
		origin: str = "literal",
	) -> list[FieldMatch]:
		entry = entity.role(role)
		if entry is None:
			return []
		return [
			FieldMatch(
				field=field,
				kind=kind,
				term=term,
				priority=priority,
				many=entry.many,
				origin=origin,
				role=role,
			)
			for field in entry.fields
		]


__all__ = ["CriteriaBuilder", "query_words", "split_quoted"]
