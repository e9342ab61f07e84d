"""Trending lists, per-item insights and score write-back."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

from bazaar.domain.search import policy
from bazaar.domain.search.cache import CacheOrchestrator, filters_hash
from bazaar.domain.search.criteria import EntityCriteria, NotEquals, Range
from bazaar.domain.search.entities import ENTITY_TYPES, EntityType
from bazaar.domain.search.store import DocumentStore, resolve_store
from bazaar.domain.trending.facts import EngagementFacts, resolve_facts
from bazaar.domain.trending.models import EngagementWindow, TrendingScoreRecord, window_days
from bazaar.domain.trending.schemas import (
	FactorView,
	InsightView,
	MetricsContextView,
	TrendingInsights,
	TrendingItem,
)
from bazaar.domain.trending.scoring import TrendingScoreCalculator
from bazaar.obs import metrics as obs_metrics
from bazaar.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 50
MAX_CANDIDATES = 5000


def trending_key(time_range: str, limit: int, exclude_ids: Sequence[str]) -> str:
	return f"products:trending:{time_range}:{limit}:{filters_hash({'exclude': sorted(exclude_ids)})}"


class TrendingService:
	def __init__(
		self,
		*,
		store: Optional[DocumentStore] = None,
		facts: Optional[EngagementFacts] = None,
		cache: Optional[CacheOrchestrator] = None,
		calculator: Optional[TrendingScoreCalculator] = None,
		entity: Optional[EntityType] = None,
	) -> None:
		self.store = store or resolve_store()
		self.facts = facts or resolve_facts()
		self.cache = cache or CacheOrchestrator()
		self.calculator = calculator or TrendingScoreCalculator()
		self.entity = entity or ENTITY_TYPES["products"]

	async def compute_trending(
		self,
		limit: int = DEFAULT_LIMIT,
		time_range: Optional[str] = None,
		exclude_ids: Iterable[str] = (),
		*,
		now: Optional[datetime] = None,
	) -> list[TrendingItem]:
		"""Top `limit` eligible items for the window, highest score first."""

		if limit < 1:
			raise policy.InvalidInput("invalid_limit")
		limit = min(limit, MAX_LIMIT)
		time_range = time_range or settings.trending_default_range
		days = window_days(time_range)
		excluded = sorted({policy.validate_entity_id(value, field="exclude_id") for value in exclude_ids})
		now = now or datetime.now(timezone.utc)

		async def _compute() -> list[dict[str, Any]]:
			try:
				ranked = await self._ranked(days, now=now, exclude_ids=excluded)
			except policy.UpstreamUnavailable as exc:
				logger.warning("trending.compute_failed", extra={"time_range": time_range, "detail": exc.detail})
				return []
			return [
				TrendingItem.from_record(record, index + 1).model_dump(mode="json")
				for index, record in enumerate(ranked[:limit])
			]

		payload = await self.cache.get_or_compute(
			trending_key(time_range, limit, excluded),
			_compute,
			ttl_seconds=settings.trending_cache_ttl_seconds,
		)
		return [TrendingItem.model_validate(item) for item in payload]

	async def trending_insights(
		self,
		entity_id: str,
		time_range: Optional[str] = None,
		*,
		now: Optional[datetime] = None,
	) -> Optional[TrendingInsights]:
		"""Rank, percentile and factor breakdown for one item, or None when it does not exist."""

		policy.validate_entity_id(entity_id)
		time_range = time_range or settings.trending_default_range
		days = window_days(time_range)
		now = now or datetime.now(timezone.utc)

		document = await self.store.get(self.entity.collection, entity_id)
		if document is None or not all(clause.matches(document) for clause in self.entity.base_constraints(now)):
			logger.info("trending.entity_missing", extra={"entity_id": entity_id})
			return None
		window = await self.facts.window_counts(self.entity.name, entity_id, now - timedelta(days=days))
		record = self.calculator.score(document, window, entity_id=entity_id, window_days=days, now=now)
		if record is None:
			self._skip(entity_id, "missing_created_at")
			return None

		ranked = await self._ranked(days, now=now, exclude_ids=())
		eligible = self.calculator.eligible(record.age_hours)
		rank, percentile = self.calculator.position(ranked, entity_id) if eligible else (0, 0)
		category = document.get("category")
		peers = [item for item in ranked if category is not None and item.document.get("category") == category]
		category_rank, _ = self.calculator.position(peers, entity_id)
		factors = self.calculator.contributing_factors(record.raw_metrics)
		insights = self.calculator.insights(
			record,
			factors,
			category_rank=category_rank,
			category_size=len(peers),
		)
		logger.info(
			"trending.insights",
			extra={"entity_id": entity_id, "rank": rank, "total": len(ranked), "time_range": time_range},
		)
		metrics = record.raw_metrics
		return TrendingInsights(
			entity_id=entity_id,
			name=document.get("name"),
			time_range=time_range,
			rank=rank,
			percentile=percentile,
			total_ranked=len(ranked),
			eligible=eligible,
			score=record.computed_score,
			upvotes=metrics.upvotes,
			comments=metrics.comments,
			views=metrics.views,
			bookmarks=metrics.bookmarks,
			unique_users=record.unique_users,
			upvote_velocity=record.upvote_velocity,
			age_hours=record.age_hours,
			contributing_factors=[FactorView.from_factor(factor) for factor in factors],
			insights=[InsightView.from_insight(insight) for insight in insights],
			context=MetricsContextView.from_context(self.calculator.metrics_context(ranked)),
			calculated_at=now,
		)

	async def recompute(self, time_range: Optional[str] = None, *, now: Optional[datetime] = None) -> int:
		"""Score every eligible item, persist the scores and drop cached lists."""

		time_range = time_range or settings.trending_default_range
		days = window_days(time_range)
		now = now or datetime.now(timezone.utc)
		start = time.perf_counter()
		ranked = await self._ranked(days, now=now, exclude_ids=())
		written = await self.store.save_trending_scores(self.entity.collection, ranked)
		await self.cache.invalidate(["products:trending:*"], cascade=False)
		obs_metrics.TRENDING_RECOMPUTE_DURATION.observe(time.perf_counter() - start)
		logger.info("trending.recompute", extra={"time_range": time_range, "scored": len(ranked), "written": written})
		return written

	def _criteria(self, now: datetime, exclude_ids: Sequence[str]) -> EntityCriteria:
		cutoff = now - timedelta(hours=self.calculator.min_age_hours)
		constraints = self.entity.base_constraints(now) + (Range("createdAt", lte=cutoff, cast="timestamp"),)
		constraints += tuple(NotEquals(self.entity.id_field, value) for value in exclude_ids)
		return EntityCriteria(entity_type=self.entity.name, constraints=constraints)

	async def _ranked(
		self,
		days: int,
		*,
		now: datetime,
		exclude_ids: Sequence[str],
	) -> list[TrendingScoreRecord]:
		documents = await self.store.find(self.entity.collection, self._criteria(now, exclude_ids), limit=MAX_CANDIDATES)
		since = now - timedelta(days=days)
		semaphore = asyncio.Semaphore(max(1, settings.trending_fact_concurrency))

		async def _window(document: dict[str, Any]) -> EngagementWindow:
			async with semaphore:
				return await self.facts.window_counts(self.entity.name, self.entity.entity_id(document), since)

		windows = await asyncio.gather(*(_window(document) for document in documents))
		records: list[TrendingScoreRecord] = []
		for document, window in zip(documents, windows):
			entity_id = self.entity.entity_id(document)
			record = self.calculator.score(document, window, entity_id=entity_id, window_days=days, now=now)
			if record is None:
				self._skip(entity_id, "missing_created_at")
				continue
			if not self.calculator.eligible(record.age_hours):
				self._skip(entity_id, "too_young")
				continue
			records.append(record)
		obs_metrics.TRENDING_ITEMS_SCORED.inc(len(records))
		return self.calculator.rank(records)

	@staticmethod
	def _skip(entity_id: str, reason: str) -> None:
		obs_metrics.inc_trending_skipped(reason)
		logger.info("trending.entity_skipped", extra={"entity_id": entity_id, "reason": reason})


_service: Optional[TrendingService] = None


def get_trending_service() -> TrendingService:
	global _service
	if _service is None:
		_service = TrendingService()
	return _service


__all__ = ["TrendingService", "get_trending_service", "trending_key"]
