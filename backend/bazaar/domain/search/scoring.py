"""Composite relevance scoring for search results.

A result is scored by running one immutable record through an ordered list of
stages. Each stage reads the fields earlier stages produced and returns a new
record, so the pipeline order is the only coupling between them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence

from bazaar.domain.search.builders import query_words, split_quoted
from bazaar.domain.search.criteria import as_datetime, resolve_path, text_values
from bazaar.domain.search.embeddings import rolling_hash
from bazaar.domain.search.entities import ROLE_ORDER, EntityType
from bazaar.domain.search.models import MatchExplanation, ScoredResult, TermExpansion

EXACT_NAME_BONUS = 50.0
BASE_SCORE = 1.0
VARIANT_FACTOR = 0.6
ROLE_MULTIPLIERS: dict[str, float] = {
	"name": 1.5,
	"tag": 1.2,
	"category": 1.0,
	"tagline": 0.8,
	"description": 0.5,
}
COMPONENT_WEIGHTS: dict[str, float] = {
	"relevance": 0.65,
	"engagement": 0.20,
	"quality": 0.10,
	"recency": 0.05,
}
UPVOTES_CAP = 10.0
VIEWS_PER_POINT = 10.0
VIEWS_CAP = 5.0
COMMENTS_CAP = 10.0
RECENCY_WINDOW_DAYS = 30.0
RECENCY_PER_DAY = 0.1
QUALITY_IMAGE = 2.0
QUALITY_VERIFIED = 3.0
QUALITY_DESCRIPTION = 2.0
QUALITY_DESCRIPTION_MIN_CHARS = 100

_REASON_PHRASES: dict[str, tuple[str, ...]] = {
	"name": ("Name matches \"{term}\"", "Title closely matches \"{term}\"", "Strong name match for \"{term}\""),
	"tag": ("Tagged with \"{term}\"", "Tags match \"{term}\"", "Listed under the \"{term}\" tag"),
	"category": ("In a category matching \"{term}\"", "Category relates to \"{term}\""),
	"tagline": ("Tagline mentions \"{term}\"", "Summary matches \"{term}\""),
	"description": ("Description mentions \"{term}\"", "Mentioned in the description"),
	"semantic": ("Similar to \"{term}\"", "Related to your search", "Semantically close to \"{term}\""),
	"other": ("Relevant to your search", "Popular on the platform"),
}


def metric_count(value: Any) -> float:
	"""Counts may be stored as numbers, lists of actors, or {"count": n}."""

	if value is None or isinstance(value, bool):
		return 0.0
	if isinstance(value, (int, float)):
		return float(max(value, 0))
	if isinstance(value, (list, tuple, set)):
		return float(len(value))
	if isinstance(value, Mapping):
		return metric_count(value.get("count"))
	return 0.0


def variant_index(seed_fields: Sequence[Any], count: int) -> int:
	"""Deterministic phrasing pick; the same seed always gives the same index."""

	if count <= 0:
		return 0
	seed = "-".join("" if part is None else str(part) for part in seed_fields)
	return abs(rolling_hash(seed)) % count


@dataclass(slots=True, frozen=True)
class ScoreRecord:
	document: Mapping[str, Any]
	entity_id: str
	field_points: Mapping[str, float] = field(default_factory=dict)
	matched_roles: tuple[str, ...] = ()
	exact_name: bool = False
	fuzzy_match: bool = False
	synonym_term: Optional[str] = None
	synonym_role: Optional[str] = None
	relevance: float = 0.0
	engagement: float = 0.0
	quality: float = 0.0
	recency: float = 0.0
	final: float = 0.0
	semantic_similarity: Optional[float] = None


@dataclass(slots=True, frozen=True)
class ScoringContext:
	entity: EntityType
	query: str
	expansion: TermExpansion
	now: datetime
	quoted: bool = False


class ScoreStage(Protocol):
	def __call__(self, record: ScoreRecord, context: ScoringContext) -> ScoreRecord: ...


def _term_hit(value: str, term: str, *, whole_word: bool) -> bool:
	haystack = value.lower()
	if whole_word:
		return re.search(rf"\b{re.escape(term)}\b", haystack) is not None
	return term in haystack


class FieldMatchStage:
	"""Per-role points from the entity's field-weight table."""

	def __call__(self, record: ScoreRecord, context: ScoringContext) -> ScoreRecord:
		entity = context.entity
		query = context.query.lower()
		variants = [(term.lower(), context.expansion.origin_of(term)) for term in context.expansion.variants()]
		variants.extend((word, "word") for word in query_words(query))
		exact_name = bool(query) and any(name.lower() == query for name in entity.name_candidates(record.document))

		points: dict[str, float] = {}
		matched: list[str] = []
		fuzzy = False
		synonym_term: Optional[str] = None
		synonym_role: Optional[str] = None
		for role in entity.roles:
			weights = entity.role_weights(role.role)
			values = [value for path in role.fields for value in text_values(record.document, path)]
			if not values or not query:
				continue
			score = 0.0
			if any(value.lower() == query for value in values):
				score = weights.exact
			elif any(_term_hit(value, query, whole_word=context.quoted) for value in values):
				score = weights.partial
			else:
				for term, origin in variants:
					if any(_term_hit(value, term, whole_word=len(term) <= 3 or origin == "word") for value in values):
						score = weights.partial * VARIANT_FACTOR
						if origin == "fuzzy":
							fuzzy = True
						elif origin == "synonym" and synonym_term is None:
							synonym_term = term
							synonym_role = role.role
						break
			if score > 0:
				points[role.role] = score
				matched.append(role.role)

		relevance = sum(points.get(role, 0.0) * ROLE_MULTIPLIERS[role] for role in ROLE_ORDER)
		return replace(
			record,
			field_points=points,
			matched_roles=tuple(matched),
			exact_name=exact_name,
			fuzzy_match=fuzzy,
			synonym_term=synonym_term,
			synonym_role=synonym_role,
			relevance=relevance,
		)


class EngagementStage:
	def __call__(self, record: ScoreRecord, context: ScoringContext) -> ScoreRecord:
		weights = context.entity.engagement
		doc = record.document
		upvotes = metric_count(doc.get("upvotes"))
		views = metric_count(doc.get("views"))
		comments = metric_count(doc.get("comments"))
		featured = doc.get("featured") is True
		engagement = (
			min(upvotes * weights.upvotes, UPVOTES_CAP)
			+ min(views / VIEWS_PER_POINT, VIEWS_CAP) * weights.views
			+ min(comments, COMMENTS_CAP) * weights.comments
			+ (weights.featured if featured else 0.0)
		)
		return replace(record, engagement=engagement)


class QualityStage:
	def __call__(self, record: ScoreRecord, context: ScoringContext) -> ScoreRecord:
		doc = record.document
		quality = 0.0
		if any(resolve_path(doc, context.entity.image_field)):
			quality += QUALITY_IMAGE
		if doc.get("verified") is True:
			quality += QUALITY_VERIFIED
		description = " ".join(text_values(doc, context.entity.description_field))
		if len(description) > QUALITY_DESCRIPTION_MIN_CHARS:
			quality += QUALITY_DESCRIPTION
		return replace(record, quality=quality)


class RecencyStage:
	def __call__(self, record: ScoreRecord, context: ScoringContext) -> ScoreRecord:
		created = as_datetime(record.document.get("createdAt"))
		if created is None:
			return replace(record, recency=0.0)
		age_days = max(0.0, (context.now - created).total_seconds() / 86400.0)
		if age_days >= RECENCY_WINDOW_DAYS:
			return replace(record, recency=0.0)
		return replace(record, recency=(RECENCY_WINDOW_DAYS - age_days) * RECENCY_PER_DAY)


class CompositeStage:
	def __call__(self, record: ScoreRecord, context: ScoringContext) -> ScoreRecord:
		final = (
			COMPONENT_WEIGHTS["relevance"] * record.relevance
			+ COMPONENT_WEIGHTS["engagement"] * record.engagement
			+ COMPONENT_WEIGHTS["quality"] * record.quality
			+ COMPONENT_WEIGHTS["recency"] * record.recency
			+ BASE_SCORE
		)
		if record.exact_name:
			final += EXACT_NAME_BONUS
		return replace(record, final=final)


DEFAULT_STAGES: tuple[ScoreStage, ...] = (
	FieldMatchStage(),
	EngagementStage(),
	QualityStage(),
	RecencyStage(),
	CompositeStage(),
)


def primary_reason(record: ScoreRecord) -> str:
	if record.exact_name:
		return "name"
	for role in ROLE_ORDER:
		if role in record.matched_roles:
			return role
	if record.semantic_similarity is not None:
		return "semantic"
	return "other"


def explain(record: ScoreRecord, context: ScoringContext) -> MatchExplanation:
	reason = primary_reason(record)
	phrases = _REASON_PHRASES[reason]
	pick = variant_index((record.entity_id, reason, context.query), len(phrases))
	term = record.synonym_term if record.synonym_term and reason == record.synonym_role else context.query
	return MatchExplanation(
		matched_fields=list(record.matched_roles),
		exact_match=record.exact_name,
		fuzzy_match=record.fuzzy_match,
		synonym_match=record.synonym_term is not None,
		synonym_term=record.synonym_term,
		primary_match_reason=reason,
		text=phrases[pick].format(term=term),
	)


class RelevanceScorer:
	def __init__(self, stages: Sequence[ScoreStage] = DEFAULT_STAGES) -> None:
		self.stages = tuple(stages)

	def context(
		self,
		entity: EntityType,
		query: str,
		expansion: TermExpansion,
		*,
		now: Optional[datetime] = None,
	) -> ScoringContext:
		text, quoted = split_quoted(query)
		return ScoringContext(
			entity=entity,
			query=text.lower(),
			expansion=expansion,
			now=now or datetime.now(timezone.utc),
			quoted=quoted,
		)

	def score(
		self,
		document: Mapping[str, Any],
		context: ScoringContext,
		*,
		semantic_similarity: Optional[float] = None,
	) -> ScoredResult:
		record = ScoreRecord(
			document=document,
			entity_id=context.entity.entity_id(document),
			semantic_similarity=semantic_similarity,
		)
		for stage in self.stages:
			record = stage(record, context)
		return ScoredResult(
			document=document,
			entity_id=record.entity_id,
			relevance_score=record.relevance,
			engagement_score=record.engagement,
			quality_score=record.quality,
			recency_score=record.recency,
			final_score=record.final,
			explanation=explain(record, context),
			semantic_similarity=semantic_similarity,
		)

	def rank(self, documents: Sequence[Mapping[str, Any]], context: ScoringContext) -> list[ScoredResult]:
		"""Score and order by final score; ties keep a stable id order."""

		scored = [self.score(document, context) for document in documents]
		scored.sort(key=lambda result: (-result.final_score, result.entity_id))
		return scored


__all__ = [
	"CompositeStage",
	"DEFAULT_STAGES",
	"EXACT_NAME_BONUS",
	"EngagementStage",
	"FieldMatchStage",
	"QualityStage",
	"RecencyStage",
	"RelevanceScorer",
	"ScoreRecord",
	"ScoringContext",
	"metric_count",
	"variant_index",
]
