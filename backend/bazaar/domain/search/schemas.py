"""Pydantic schemas for search requests, responses and cached pages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from bazaar.domain.search import policy
from bazaar.domain.search.models import ENTITY_TYPE_NAMES
from bazaar.settings import settings

_ID_FILTERS = ("maker", "owner", "posted_by", "exclude_id")


class SearchFilters(BaseModel):
	"""Typed filter map; keys outside this model are rejected."""

	model_config = ConfigDict(extra="forbid", frozen=True)

	category: Optional[str] = Field(default=None, min_length=1, max_length=80)
	price_min: Optional[float] = Field(default=None, ge=0)
	price_max: Optional[float] = Field(default=None, ge=0)
	created_after: Optional[datetime] = None
	created_before: Optional[datetime] = None
	pricing_type: Optional[str] = Field(default=None, max_length=40)
	maker: Optional[str] = None
	owner: Optional[str] = None
	posted_by: Optional[str] = None
	role: Optional[str] = Field(default=None, max_length=40)
	job_type: Optional[str] = Field(default=None, max_length=40)
	location_type: Optional[str] = Field(default=None, max_length=40)
	experience_level: Optional[str] = Field(default=None, max_length=40)
	featured: Optional[bool] = None
	exclude_id: Optional[str] = None

	@field_validator(*_ID_FILTERS)
	@classmethod
	def _check_id(cls, value: Optional[str]) -> Optional[str]:
		if value is not None and not policy.ENTITY_ID_PATTERN.match(value):
			raise ValueError("malformed id")
		return value

	@field_validator("created_after", "created_before")
	@classmethod
	def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
		if value is not None and value.tzinfo is None:
			return value.replace(tzinfo=timezone.utc)
		return value

	@model_validator(mode="after")
	def _check_ranges(self) -> "SearchFilters":
		if self.price_min is not None and self.price_max is not None and self.price_min > self.price_max:
			raise ValueError("price_min exceeds price_max")
		if self.created_after and self.created_before and self.created_after > self.created_before:
			raise ValueError("created_after exceeds created_before")
		return self

	def as_map(self) -> dict[str, Any]:
		"""JSON-safe map of the filters that are actually set."""

		return self.model_dump(mode="json", exclude_none=True)


class SearchRequest(BaseModel):
	model_config = ConfigDict(frozen=True)

	raw_query: str = Field(default="", max_length=policy.MAX_QUERY_LENGTH)
	entity_types: frozenset[str] = Field(default=frozenset(ENTITY_TYPE_NAMES))
	filters: SearchFilters = Field(default_factory=SearchFilters)
	page: int = Field(default=1, ge=1, le=policy.MAX_PAGE)
	limit: int = Field(default=10, ge=1)
	viewer_id: Optional[str] = None

	@field_validator("entity_types", mode="before")
	@classmethod
	def _expand_types(cls, value: Any) -> frozenset[str]:
		if value is None:
			return frozenset(ENTITY_TYPE_NAMES)
		if isinstance(value, str):
			value = [part for part in value.split(",")]
		names = {str(part).strip().lower() for part in value if str(part).strip()}
		if not names or "all" in names:
			return frozenset(ENTITY_TYPE_NAMES)
		unknown = names.difference(ENTITY_TYPE_NAMES)
		if unknown:
			raise ValueError(f"unknown entity type: {sorted(unknown)[0]}")
		return frozenset(names)

	@field_validator("limit")
	@classmethod
	def _cap_limit(cls, value: int) -> int:
		if value > settings.search_max_limit:
			raise ValueError(f"limit above {settings.search_max_limit}")
		return value

	@field_validator("viewer_id")
	@classmethod
	def _check_viewer(cls, value: Optional[str]) -> Optional[str]:
		if value is not None and not policy.ENTITY_ID_PATTERN.match(value):
			raise ValueError("malformed id")
		return value

	def ordered_types(self) -> list[str]:
		return [name for name in ENTITY_TYPE_NAMES if name in self.entity_types]


def parse_search_request(payload: dict[str, Any]) -> SearchRequest:
	"""Validate a raw payload, surfacing failures as InvalidInput."""

	try:
		return SearchRequest.model_validate(payload)
	except ValidationError as exc:
		first = exc.errors()[0]
		location = ".".join(str(part) for part in first.get("loc", ())) or "request"
		raise policy.InvalidInput(f"invalid_{location}") from exc


class MatchView(BaseModel):
	matched_fields: list[str] = Field(default_factory=list)
	exact_match: bool = False
	fuzzy_match: bool = False
	synonym_match: bool = False
	synonym_term: Optional[str] = None
	primary_match_reason: str = "other"
	text: str = ""


class ResultView(BaseModel):
	id: str
	entity_type: str
	final_score: float
	relevance_score: float = 0.0
	engagement_score: float = 0.0
	quality_score: float = 0.0
	recency_score: float = 0.0
	semantic_similarity: Optional[float] = None
	match: MatchView = Field(default_factory=MatchView)
	document: dict[str, Any] = Field(default_factory=dict)


class SearchPage(BaseModel):
	"""One entity type's page; this is what the cache stores."""

	entity_type: str
	items: list[ResultView] = Field(default_factory=list)
	total: int = Field(default=0, ge=0)
	degraded: bool = False


class SearchResponse(BaseModel):
	query: str
	page: int
	limit: int
	results: dict[str, list[ResultView]] = Field(default_factory=dict)
	counts: dict[str, int] = Field(default_factory=dict)
	total_results: int = 0
	suggestions: list[str] = Field(default_factory=list)
	degraded_types: list[str] = Field(default_factory=list)
