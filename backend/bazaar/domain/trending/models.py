"""Records produced by the trending calculator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from bazaar.domain.search import policy

TIME_RANGE_DAYS: dict[str, int] = {
	"24h": 1,
	"3d": 3,
	"7d": 7,
	"30d": 30,
}


def window_days(time_range: str) -> int:
	try:
		return TIME_RANGE_DAYS[time_range]
	except KeyError:
		raise policy.InvalidInput(f"invalid_time_range:{time_range}") from None


@dataclass(slots=True, frozen=True)
class EngagementWindow:
	"""Event counts for one entity inside a trending window."""

	upvotes: int = 0
	comments: int = 0
	views: int = 0
	unique_users: int = 0


@dataclass(slots=True, frozen=True)
class RawMetrics:
	upvotes: int = 0
	comments: int = 0
	views: int = 0
	bookmarks: int = 0

	def as_dict(self) -> dict[str, int]:
		return {
			"upvotes": self.upvotes,
			"comments": self.comments,
			"views": self.views,
			"bookmarks": self.bookmarks,
		}


@dataclass(slots=True, frozen=True)
class ScoreBreakdown:
	activity: float
	velocity_multiplier: float
	diversity_factor: float
	recency_boost: float
	time_decay: float
	base_popularity: float
	cold_start_boost: float
	score: float


@dataclass(slots=True)
class TrendingScoreRecord:
	entity_id: str
	raw_metrics: RawMetrics
	unique_users: int
	age_hours: float
	upvote_velocity: float
	breakdown: ScoreBreakdown
	computed_at: datetime
	document: Mapping[str, Any] = field(default_factory=dict)

	@property
	def computed_score(self) -> float:
		return self.breakdown.score

	@property
	def age_days(self) -> float:
		return self.age_hours / 24.0


@dataclass(slots=True, frozen=True)
class ContributingFactor:
	factor: str
	value: int
	weight: float
	weighted_value: float
	percent_of_total: int


@dataclass(slots=True, frozen=True)
class MetricsContext:
	"""Distribution of scores across the whole ranked set."""

	average_score: float = 0.0
	median_score: float = 0.0
	highest_score: float = 0.0
	top10_average_score: float = 0.0
	bottom10_average_score: float = 0.0


@dataclass(slots=True, frozen=True)
class Insight:
	type: str
	message: str


__all__ = [
	"ContributingFactor",
	"EngagementWindow",
	"Insight",
	"MetricsContext",
	"RawMetrics",
	"ScoreBreakdown",
	"TIME_RANGE_DAYS",
	"TrendingScoreRecord",
	"window_days",
]
