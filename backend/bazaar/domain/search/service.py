"""Search orchestration: per-entity pipelines, caching and suggestions."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from bazaar.domain.search import policy
from bazaar.domain.search.blending import blend_page
from bazaar.domain.search.builders import CriteriaBuilder
from bazaar.domain.search.cache import CacheOrchestrator, search_key
from bazaar.domain.search.criteria import EntityCriteria, FieldMatch, text_values
from bazaar.domain.search.embeddings import EmbeddingEngine, default_engine
from bazaar.domain.search.entities import ENTITY_TYPES, EntityType
from bazaar.domain.search.lexical import GENERIC_THRESHOLD, TAG_THRESHOLD
from bazaar.domain.search.models import ScoredResult, TermExpansion
from bazaar.domain.search.schemas import MatchView, ResultView, SearchPage, SearchRequest, SearchResponse
from bazaar.domain.search.scoring import RelevanceScorer, ScoringContext
from bazaar.domain.search.store import DocumentStore, resolve_store
from bazaar.obs import logging as obs_logging
from bazaar.obs import metrics as obs_metrics
from bazaar.settings import settings

logger = logging.getLogger(__name__)

PREFIX_SUGGESTIONS_PER_TYPE = 3
SPELLING_SUGGESTIONS = 3
MAX_SUGGESTIONS = 8
MIN_SUGGESTION_QUERY = 2


def _to_view(entity: EntityType, result: ScoredResult) -> ResultView:
	explanation = result.explanation
	return ResultView(
		id=result.entity_id,
		entity_type=entity.name,
		final_score=round(result.final_score, 6),
		relevance_score=round(result.relevance_score, 6),
		engagement_score=round(result.engagement_score, 6),
		quality_score=round(result.quality_score, 6),
		recency_score=round(result.recency_score, 6),
		semantic_similarity=result.semantic_similarity,
		match=MatchView(
			matched_fields=list(explanation.matched_fields),
			exact_match=explanation.exact_match,
			fuzzy_match=explanation.fuzzy_match,
			synonym_match=explanation.synonym_match,
			synonym_term=explanation.synonym_term,
			primary_match_reason=explanation.primary_match_reason,
			text=explanation.text,
		),
		document=dict(result.document),
	)


def _page_size(payload: Any) -> int:
	return int(payload.get("total", 0)) if isinstance(payload, dict) else 0


def _page_cacheable(payload: Any) -> bool:
	return isinstance(payload, dict) and bool(payload.get("items")) and not payload.get("degraded")


class SearchService:
	def __init__(
		self,
		*,
		store: Optional[DocumentStore] = None,
		cache: Optional[CacheOrchestrator] = None,
		builder: Optional[CriteriaBuilder] = None,
		scorer: Optional[RelevanceScorer] = None,
		embeddings: Optional[EmbeddingEngine] = None,
	) -> None:
		self.store = store or resolve_store()
		self.cache = cache or CacheOrchestrator()
		self.builder = builder or CriteriaBuilder()
		self.scorer = scorer or RelevanceScorer()
		self.embeddings = embeddings or default_engine()

	async def search(self, request: SearchRequest, *, now: Optional[datetime] = None) -> SearchResponse:
		query = policy.ensure_query_allowed(policy.normalize_query(request.raw_query))
		skip, limit = policy.ensure_pagination(request.page, request.limit, max_limit=settings.search_max_limit)
		now = now or datetime.now(timezone.utc)
		expansion = self.builder.expand(query)
		types = request.ordered_types()

		tokens = obs_logging.bind_context(viewer_id=request.viewer_id)
		try:
			pages = await asyncio.gather(
				*(
					self._search_entity(ENTITY_TYPES[name], query, expansion, request, skip=skip, limit=limit, now=now)
					for name in types
				)
			)
			suggestions = await self.suggestions(query, now=now) if len(query) >= MIN_SUGGESTION_QUERY else []
		finally:
			obs_logging.reset_context(tokens)

		results = {page.entity_type: page.items for page in pages}
		counts = {page.entity_type: page.total for page in pages}
		return SearchResponse(
			query=query,
			page=request.page,
			limit=limit,
			results=results,
			counts=counts,
			total_results=sum(counts.values()),
			suggestions=suggestions,
			degraded_types=[page.entity_type for page in pages if page.degraded],
		)

	async def _search_entity(
		self,
		entity: EntityType,
		query: str,
		expansion: TermExpansion,
		request: SearchRequest,
		*,
		skip: int,
		limit: int,
		now: datetime,
	) -> SearchPage:
		start = time.perf_counter()
		obs_metrics.inc_search_query(entity.name)
		filter_map = request.filters.as_map()
		filter_map.update(entity.cache_filter_extras(request.viewer_id))
		key = search_key(entity.name, query, filter_map, skip, limit)

		async def _compute() -> dict[str, Any]:
			page = await self._compute_page(entity, query, expansion, request, page=request.page, limit=limit, now=now)
			return page.model_dump(mode="json")

		payload = await self.cache.get_or_compute(
			key,
			_compute,
			ttl_seconds=entity.cache_ttl,
			size_of=_page_size,
			cacheable=_page_cacheable,
		)
		page = SearchPage.model_validate(payload)
		obs_metrics.observe_search_latency(entity.name, time.perf_counter() - start)
		obs_metrics.observe_search_results(entity.name, len(page.items))
		return page

	async def _compute_page(
		self,
		entity: EntityType,
		query: str,
		expansion: TermExpansion,
		request: SearchRequest,
		*,
		page: int,
		limit: int,
		now: datetime,
	) -> SearchPage:
		criteria = self.builder.build(
			entity,
			query,
			request.filters,
			viewer_id=request.viewer_id,
			now=now,
			expansion=expansion,
		)
		try:
			candidates = await self.store.find(entity.collection, criteria, limit=settings.search_candidate_cap)
			if len(candidates) >= settings.search_candidate_cap:
				total = await self.store.count(entity.collection, criteria)
			else:
				total = len(candidates)
			pool: list[dict[str, Any]] = []
			if query:
				pool = await self.store.find(
					entity.collection,
					criteria.without_match(),
					limit=settings.search_semantic_pool_size,
				)
		except policy.UpstreamUnavailable as exc:
			obs_metrics.inc_search_degraded(entity.name)
			logger.warning(
				"search.entity_failed",
				extra={"entity_type": entity.name, "detail": exc.detail},
			)
			return SearchPage(entity_type=entity.name, degraded=True)

		context = self.scorer.context(entity, query, expansion, now=now)
		lexical = self.scorer.rank(candidates, context)
		semantic = self._semantic_matches(entity, query, pool, context, exclude={r.entity_id for r in lexical})
		if query:
			blended = blend_page(
				lexical,
				semantic,
				page=page,
				limit=limit,
				blend_factor=entity.blend_factor,
				min_semantic_score=entity.min_semantic_score,
			)
		else:
			blended = lexical[(page - 1) * limit : page * limit]
		return SearchPage(
			entity_type=entity.name,
			items=[_to_view(entity, result) for result in blended],
			total=total + len(semantic),
		)

	def _semantic_matches(
		self,
		entity: EntityType,
		query: str,
		pool: list[dict[str, Any]],
		context: ScoringContext,
		*,
		exclude: set[str],
	) -> list[ScoredResult]:
		if not query or not pool:
			return []
		similar = self.embeddings.find_similar(
			query,
			pool,
			entity_type=entity.name,
			id_field=entity.id_field,
			text_fields=entity.embedding_fields,
			name_of=entity.display_name,
			limit=len(pool),
		)
		results: list[ScoredResult] = []
		for document, similarity in similar:
			if entity.entity_id(document) in exclude or similarity < entity.min_semantic_score:
				continue
			results.append(self.scorer.score(document, context, semantic_similarity=similarity))
		return results

	async def suggestions(self, query: str, *, now: Optional[datetime] = None) -> list[str]:
		"""Prefix completions on product names and job titles plus spelling fixes."""

		now = now or datetime.now(timezone.utc)
		lowered = query.lower()
		products = ENTITY_TYPES["products"]
		jobs = ENTITY_TYPES["jobs"]
		found: list[str] = []
		try:
			for entity, field in ((products, "name"), (jobs, "title")):
				prefix = EntityCriteria(
					entity_type=entity.name,
					constraints=entity.base_constraints(now) + (FieldMatch(field, "prefix", lowered, priority=1),),
				)
				documents = await self.store.find(entity.collection, prefix, limit=PREFIX_SUGGESTIONS_PER_TYPE)
				found.extend(value for doc in documents for value in text_values(doc, field)[:1])

			pool = await self.store.find(
				products.collection,
				EntityCriteria(entity_type=products.name, constraints=products.base_constraints(now)),
				limit=settings.search_semantic_pool_size,
			)
		except policy.UpstreamUnavailable:
			logger.warning("search.suggestions_failed", extra={"query": query})
			return []

		expander = self.builder.expander
		names = {value for doc in pool for value in text_values(doc, "name")}
		tags = {value for doc in pool for value in text_values(doc, "tags")}
		corrections = expander.corrections(lowered, names, threshold=GENERIC_THRESHOLD)
		corrections += expander.corrections(lowered, tags, threshold=TAG_THRESHOLD, inclusive=True)
		found.extend(corrections[:SPELLING_SUGGESTIONS])

		seen: set[str] = set()
		unique: list[str] = []
		for value in found:
			key = value.lower()
			if key in seen:
				continue
			seen.add(key)
			unique.append(value)
		return unique[:MAX_SUGGESTIONS]


_service: Optional[SearchService] = None


def get_search_service() -> SearchService:
	global _service
	if _service is None:
		_service = SearchService()
	return _service


__all__ = ["SearchService", "get_search_service"]
