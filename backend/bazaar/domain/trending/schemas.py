"""Response models for trending lists and per-item insights."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from bazaar.domain.trending.models import ContributingFactor, Insight, MetricsContext, TrendingScoreRecord


class TrendingItem(BaseModel):
	id: str
	rank: int = Field(ge=1)
	score: float
	upvotes: int = 0
	comments: int = 0
	views: int = 0
	bookmarks: int = 0
	unique_users: int = 0
	age_hours: float = 0.0
	upvote_velocity: float = 0.0
	computed_at: datetime
	document: dict[str, Any] = Field(default_factory=dict)

	@classmethod
	def from_record(cls, record: TrendingScoreRecord, rank: int) -> "TrendingItem":
		metrics = record.raw_metrics
		return cls(
			id=record.entity_id,
			rank=rank,
			score=record.computed_score,
			upvotes=metrics.upvotes,
			comments=metrics.comments,
			views=metrics.views,
			bookmarks=metrics.bookmarks,
			unique_users=record.unique_users,
			age_hours=record.age_hours,
			upvote_velocity=record.upvote_velocity,
			computed_at=record.computed_at,
			document=dict(record.document),
		)


class FactorView(BaseModel):
	factor: str
	value: int
	weight: float
	weighted_value: float
	percent_of_total: int

	@classmethod
	def from_factor(cls, factor: ContributingFactor) -> "FactorView":
		return cls(
			factor=factor.factor,
			value=factor.value,
			weight=factor.weight,
			weighted_value=factor.weighted_value,
			percent_of_total=factor.percent_of_total,
		)


class InsightView(BaseModel):
	type: str
	message: str

	@classmethod
	def from_insight(cls, insight: Insight) -> "InsightView":
		return cls(type=insight.type, message=insight.message)


class MetricsContextView(BaseModel):
	average_score: float = 0.0
	median_score: float = 0.0
	highest_score: float = 0.0
	top10_average_score: float = 0.0
	bottom10_average_score: float = 0.0

	@classmethod
	def from_context(cls, context: MetricsContext) -> "MetricsContextView":
		return cls(
			average_score=context.average_score,
			median_score=context.median_score,
			highest_score=context.highest_score,
			top10_average_score=context.top10_average_score,
			bottom10_average_score=context.bottom10_average_score,
		)


class TrendingInsights(BaseModel):
	"""Why one item sits where it does in the trending order.

	`rank` and `percentile` are 0 when the item is too young to be ranked.
	"""

	entity_id: str
	name: Optional[str] = None
	time_range: str
	rank: int = Field(default=0, ge=0)
	percentile: int = Field(default=0, ge=0, le=100)
	total_ranked: int = 0
	eligible: bool = True
	score: float = 0.0
	upvotes: int = 0
	comments: int = 0
	views: int = 0
	bookmarks: int = 0
	unique_users: int = 0
	upvote_velocity: float = 0.0
	age_hours: float = 0.0
	contributing_factors: list[FactorView] = Field(default_factory=list)
	insights: list[InsightView] = Field(default_factory=list)
	context: MetricsContextView = Field(default_factory=MetricsContextView)
	calculated_at: datetime


__all__ = [
	"FactorView",
	"InsightView",
	"MetricsContextView",
	"TrendingInsights",
	"TrendingItem",
]
