"""Time-decayed trending score and the rank/insight derivations built on it.

Everything here is pure: the service gathers documents and engagement
windows, the calculator turns them into records and explanations.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from bazaar.domain.search.criteria import as_datetime
from bazaar.domain.search.scoring import metric_count
from bazaar.domain.trending.models import (
	ContributingFactor,
	EngagementWindow,
	Insight,
	MetricsContext,
	RawMetrics,
	ScoreBreakdown,
	TrendingScoreRecord,
)
from bazaar.settings import settings

ACTIVITY_WEIGHTS: dict[str, float] = {
	"upvotes": 3.0,
	"comments": 2.0,
	"views": 0.5,
	"bookmarks": 2.5,
}
VELOCITY_FACTOR = 5.0
VELOCITY_CAP = 3.0
DIVERSITY_USERS = 5.0
DIVERSITY_CAP = 1.5
RECENCY_BOOST = 1.5
RECENCY_BOOST_HOURS = 48.0
DECAY_EXPONENT = 1.5
COLD_START_ENGAGEMENTS = 3
TAIL_FRACTION = 0.1

RECENT_INSIGHT_DAYS = 7.0
DIVERSE_INSIGHT_USERS = 5
VELOCITY_INSIGHT_PER_DAY = 1.0
DOMINANT_FACTOR_PERCENT = 40
CATEGORY_TOP_PERCENT = 20


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


class TrendingScoreCalculator:
	def __init__(
		self,
		*,
		half_life_hours: Optional[float] = None,
		min_age_hours: Optional[float] = None,
	) -> None:
		self.half_life_hours = settings.trending_half_life_hours if half_life_hours is None else half_life_hours
		self.min_age_hours = settings.trending_min_age_hours if min_age_hours is None else min_age_hours

	def eligible(self, age_hours: float) -> bool:
		"""Items younger than the minimum age never appear on trending surfaces."""
		return age_hours >= self.min_age_hours

	def time_decay(self, age_hours: float) -> float:
		return 1.0 / math.pow(max(age_hours, 0.0) + self.half_life_hours, DECAY_EXPONENT)

	def breakdown(
		self,
		metrics: RawMetrics,
		*,
		unique_users: int,
		age_hours: float,
		upvote_velocity: float,
	) -> ScoreBreakdown:
		activity = (
			metrics.upvotes * ACTIVITY_WEIGHTS["upvotes"]
			+ metrics.comments * ACTIVITY_WEIGHTS["comments"]
			+ metrics.views * ACTIVITY_WEIGHTS["views"]
			+ metrics.bookmarks * ACTIVITY_WEIGHTS["bookmarks"]
		)
		velocity_multiplier = 1.0 + min(upvote_velocity * VELOCITY_FACTOR, VELOCITY_CAP)
		diversity_factor = min(unique_users / DIVERSITY_USERS, DIVERSITY_CAP)
		recency_boost = RECENCY_BOOST if age_hours < RECENCY_BOOST_HOURS else 1.0
		time_decay = self.time_decay(age_hours)
		base_popularity = (metrics.bookmarks + 1) / 10.0
		score = (
			activity
			* velocity_multiplier
			* diversity_factor
			* recency_boost
			* time_decay
			* (1.0 + base_popularity)
		)
		cold_start = 0.0
		if metrics.upvotes + metrics.comments < COLD_START_ENGAGEMENTS:
			cold_start = 1.0 / (max(age_hours, 0.0) + 1.0)
		return ScoreBreakdown(
			activity=activity,
			velocity_multiplier=velocity_multiplier,
			diversity_factor=diversity_factor,
			recency_boost=recency_boost,
			time_decay=time_decay,
			base_popularity=base_popularity,
			cold_start_boost=cold_start,
			score=score + cold_start,
		)

	def score(
		self,
		document: Mapping[str, Any],
		window: EngagementWindow,
		*,
		entity_id: str,
		window_days: int,
		now: datetime,
	) -> Optional[TrendingScoreRecord]:
		"""Score one entity, or None when it has no creation time."""

		created = as_datetime(document.get("createdAt"))
		if created is None:
			return None
		age_hours = max(0.0, (now - created).total_seconds() / 3600.0)
		metrics = RawMetrics(
			upvotes=window.upvotes,
			comments=window.comments,
			views=window.views,
			bookmarks=int(metric_count(document.get("bookmarks"))),
		)
		velocity = window.upvotes / max(window_days, 1) if window.upvotes > 0 else 0.0
		return TrendingScoreRecord(
			entity_id=entity_id,
			raw_metrics=metrics,
			unique_users=window.unique_users,
			age_hours=age_hours,
			upvote_velocity=velocity,
			breakdown=self.breakdown(
				metrics,
				unique_users=window.unique_users,
				age_hours=age_hours,
				upvote_velocity=velocity,
			),
			computed_at=now,
			document=document,
		)

	@staticmethod
	def rank(records: Sequence[TrendingScoreRecord]) -> list[TrendingScoreRecord]:
		return sorted(records, key=lambda record: (-record.computed_score, record.entity_id))

	@staticmethod
	def position(ranked: Sequence[TrendingScoreRecord], entity_id: str) -> tuple[int, int]:
		"""1-based rank and percentile; (0, 0) when the entity is not in the set."""

		total = len(ranked)
		for index, record in enumerate(ranked):
			if record.entity_id == entity_id:
				rank = index + 1
				return rank, round_half_up((total - rank) / total * 100)
		return 0, 0

	@staticmethod
	def contributing_factors(metrics: RawMetrics) -> list[ContributingFactor]:
		values = metrics.as_dict()
		weighted = {name: values[name] * weight for name, weight in ACTIVITY_WEIGHTS.items()}
		total = sum(weighted.values())
		factors = [
			ContributingFactor(
				factor=name,
				value=values[name],
				weight=ACTIVITY_WEIGHTS[name],
				weighted_value=weighted[name],
				percent_of_total=round_half_up(weighted[name] / total * 100) if total > 0 else 0,
			)
			for name in ACTIVITY_WEIGHTS
		]
		# stable sort keeps weight order for ties
		factors.sort(key=lambda factor: -factor.percent_of_total)
		return factors

	@staticmethod
	def metrics_context(ranked: Sequence[TrendingScoreRecord]) -> MetricsContext:
		if not ranked:
			return MetricsContext()
		ordered = [record.computed_score for record in ranked]
		scores = sorted(ordered)
		mid = len(scores) // 2
		median = (scores[mid - 1] + scores[mid]) / 2 if len(scores) % 2 == 0 else scores[mid]
		tail = max(1, math.ceil(len(scores) * TAIL_FRACTION))
		return MetricsContext(
			average_score=sum(scores) / len(scores),
			median_score=median,
			highest_score=ordered[0],
			top10_average_score=sum(ordered[:tail]) / tail,
			bottom10_average_score=sum(ordered[-tail:]) / tail,
		)

	@staticmethod
	def insights(
		record: TrendingScoreRecord,
		factors: Sequence[ContributingFactor],
		*,
		category_rank: int = 0,
		category_size: int = 0,
	) -> list[Insight]:
		found: list[Insight] = []
		age_days = record.age_days
		if age_days <= RECENT_INSIGHT_DAYS:
			found.append(
				Insight(
					type="recency",
					message=(
						f"This product is relatively new ({round_half_up(age_days)} days old), "
						"giving it a recency boost in trending calculations."
					),
				)
			)
		if record.unique_users >= DIVERSE_INSIGHT_USERS:
			found.append(
				Insight(
					type="userDiversity",
					message=(
						f"Engagement from {record.unique_users} unique users demonstrates broad appeal, "
						"positively affecting trending rank."
					),
				)
			)
		if record.upvote_velocity > VELOCITY_INSIGHT_PER_DAY:
			found.append(
				Insight(
					type="velocity",
					message=(
						f"The product is gaining upvotes at a rate of {record.upvote_velocity:.1f} per day, "
						"showing strong momentum."
					),
				)
			)
		if factors and factors[0].percent_of_total > DOMINANT_FACTOR_PERCENT:
			top = factors[0]
			found.append(
				Insight(
					type="dominantFactor",
					message=(
						f"{top.factor.capitalize()} are the dominant factor ({top.percent_of_total}%) "
						"in this product's trending calculation."
					),
				)
			)
		if category_rank > 0 and category_size > 0:
			percent = round_half_up(category_rank / category_size * 100)
			if percent <= CATEGORY_TOP_PERCENT:
				found.append(
					Insight(
						type="categoryPerformance",
						message=f"This product is in the top {percent}% of trending products in its category.",
					)
				)
		return found


__all__ = [
	"ACTIVITY_WEIGHTS",
	"TrendingScoreCalculator",
	"round_half_up",
]
