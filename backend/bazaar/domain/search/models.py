"""Domain records flowing through the ranking pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

ENTITY_TYPE_NAMES: tuple[str, ...] = ("products", "jobs", "projects", "users")


@dataclass(slots=True, frozen=True)
class TermExpansion:
	"""A query term with its fuzzy variants and domain synonyms."""

	original: str
	fuzzy_variants: tuple[str, ...] = ()
	synonyms: tuple[str, ...] = ()

	def terms(self) -> list[str]:
		"""Original first, then variants and synonyms without repeats."""

		seen: set[str] = set()
		ordered: list[str] = []
		for term in (self.original, *self.fuzzy_variants, *self.synonyms):
			key = term.lower()
			if not term or key in seen:
				continue
			seen.add(key)
			ordered.append(term)
		return ordered

	def variants(self) -> list[str]:
		return self.terms()[1:]

	def origin_of(self, term: str) -> str:
		lowered = term.lower()
		if lowered == self.original.lower():
			return "literal"
		if any(lowered == v.lower() for v in self.fuzzy_variants):
			return "fuzzy"
		return "synonym"


@dataclass(slots=True)
class MatchExplanation:
	matched_fields: list[str] = field(default_factory=list)
	exact_match: bool = False
	fuzzy_match: bool = False
	synonym_match: bool = False
	synonym_term: Optional[str] = None
	primary_match_reason: str = "other"
	text: str = ""


@dataclass(slots=True)
class ScoredResult:
	"""A document with its score breakdown, discarded once the page is built."""

	document: Mapping[str, Any]
	entity_id: str
	relevance_score: float
	engagement_score: float
	quality_score: float
	recency_score: float
	final_score: float
	explanation: MatchExplanation
	semantic_similarity: Optional[float] = None
