"""Error taxonomy and input guards for search and trending."""

from __future__ import annotations

import re
from dataclasses import dataclass

ENTITY_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
MAX_QUERY_LENGTH = 120
MAX_PAGE = 1000


@dataclass(slots=True)
class SearchPolicyError(Exception):
	detail: str
	status_code: int = 400

	def __str__(self) -> str:  # pragma: no cover - debugging aid
		return self.detail


class InvalidInput(SearchPolicyError):
	"""Malformed caller input, rejected before any store access."""

	def __init__(self, detail: str) -> None:
		SearchPolicyError.__init__(self, detail=detail, status_code=400)


class UpstreamUnavailable(SearchPolicyError):
	"""The document store, fact source or cache could not serve the call."""

	def __init__(self, detail: str = "upstream_unavailable") -> None:
		SearchPolicyError.__init__(self, detail=detail, status_code=503)


def normalize_query(value: str | None) -> str:
	"""Collapse whitespace and trim surrounding spaces."""

	if not value:
		return ""
	return " ".join(value.strip().split())


def ensure_query_allowed(query: str) -> str:
	if len(query) > MAX_QUERY_LENGTH:
		raise InvalidInput("query_too_long")
	return query


def validate_entity_id(value: str | None, *, field: str = "id") -> str:
	"""Entity ids are short slugs or hex ids; anything else is rejected."""

	if value is None or not ENTITY_ID_PATTERN.match(value):
		raise InvalidInput(f"invalid_{field}")
	return value


def ensure_pagination(page: int, limit: int, *, max_limit: int) -> tuple[int, int]:
	"""Return (skip, limit) for a 1-based page."""

	if page < 1 or page > MAX_PAGE:
		raise InvalidInput("invalid_page")
	if limit < 1 or limit > max_limit:
		raise InvalidInput("invalid_limit")
	return (page - 1) * limit, limit


__all__ = [
	"InvalidInput",
	"SearchPolicyError",
	"UpstreamUnavailable",
	"ensure_pagination",
	"ensure_query_allowed",
	"normalize_query",
	"validate_entity_id",
]
