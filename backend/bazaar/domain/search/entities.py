"""Searchable entity types and their per-type tables.

Each type carries its field roles, score weights, semantic threshold, blend
factor and filter mapping so the engine never branches on type names.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from bazaar.domain.search import policy
from bazaar.domain.search.criteria import AnyOf, Equals, NotEquals, Predicate, Range, text_values
from bazaar.domain.search.schemas import SearchFilters
from bazaar.settings import settings

ROLE_ORDER: tuple[str, ...] = ("name", "tag", "category", "tagline", "description")


@dataclass(slots=True, frozen=True)
class FieldRole:
	role: str
	fields: tuple[str, ...]
	many: bool = False


@dataclass(slots=True, frozen=True)
class RoleWeights:
	exact: float
	partial: float


@dataclass(slots=True, frozen=True)
class EngagementWeights:
	upvotes: float
	views: float
	comments: float
	featured: float


class EntityType(ABC):
	name: str = ""
	collection: str = ""
	id_field: str = "id"
	roles: tuple[FieldRole, ...] = ()
	weights: Mapping[str, RoleWeights] = {}
	engagement: EngagementWeights = EngagementWeights(upvotes=0.3, views=0.3, comments=0.4, featured=1.0)
	image_field: str = "thumbnail"
	description_field: str = "description"
	embedding_fields: tuple[str, ...] = ()
	blend_factor: float = 0.3
	min_semantic_score: float = 0.4

	@property
	def cache_ttl(self) -> int:
		return settings.search_cache_ttl_seconds

	def role(self, role: str) -> Optional[FieldRole]:
		for entry in self.roles:
			if entry.role == role:
				return entry
		return None

	def role_weights(self, role: str) -> RoleWeights:
		return self.weights.get(role, RoleWeights(exact=0.0, partial=0.0))

	def display_name(self, document: Mapping[str, Any]) -> str:
		entry = self.role("name")
		if entry is None:
			return ""
		values = text_values(document, entry.fields[0])
		return values[0] if values else ""

	def name_candidates(self, document: Mapping[str, Any]) -> list[str]:
		"""Every value that counts as the document's name for exact matching."""

		entry = self.role("name")
		if entry is None:
			return []
		names: list[str] = []
		for field in entry.fields:
			names.extend(text_values(document, field))
		display = self.display_name(document)
		if display and display not in names:
			names.append(display)
		return names

	def entity_id(self, document: Mapping[str, Any]) -> str:
		value = document.get(self.id_field)
		return "" if value is None else str(value)

	@abstractmethod
	def base_constraints(self, now: datetime) -> tuple[Predicate, ...]:
		"""Constraints every result of this type must satisfy regardless of filters."""

	def filter_constraints(self, filters: SearchFilters, *, viewer_id: Optional[str] = None) -> tuple[Predicate, ...]:
		constraints: list[Predicate] = []
		if filters.created_after is not None or filters.created_before is not None:
			constraints.append(
				Range("createdAt", gte=filters.created_after, lte=filters.created_before, cast="timestamp")
			)
		if filters.exclude_id:
			constraints.append(NotEquals(self.id_field, filters.exclude_id))
		constraints.extend(self._type_filters(filters, viewer_id=viewer_id))
		return tuple(constraints)

	def _type_filters(self, filters: SearchFilters, *, viewer_id: Optional[str]) -> list[Predicate]:
		return []

	def cache_filter_extras(self, viewer_id: Optional[str]) -> dict[str, Any]:
		"""Request fields outside the filter map that change this type's results."""
		return {}

	def __repr__(self) -> str:  # pragma: no cover - debugging aid
		return f"<EntityType {self.name}>"


class Products(EntityType):
	name = "products"
	collection = "products"
	roles = (
		FieldRole("name", ("name",)),
		FieldRole("tag", ("tags",), many=True),
		FieldRole("category", ("categoryName",)),
		FieldRole("tagline", ("tagline",)),
		FieldRole("description", ("description",)),
	)
	weights = {
		"name": RoleWeights(exact=15, partial=8),
		"tag": RoleWeights(exact=10, partial=6),
		"category": RoleWeights(exact=7, partial=7),
		"tagline": RoleWeights(exact=5, partial=5),
		"description": RoleWeights(exact=3, partial=3),
	}
	engagement = EngagementWeights(upvotes=0.36, views=0.3, comments=0.4, featured=1.0)
	embedding_fields = ("name", "tagline", "description")

	def base_constraints(self, now: datetime) -> tuple[Predicate, ...]:
		return (Equals("status", "Published"),)

	def _type_filters(self, filters: SearchFilters, *, viewer_id: Optional[str]) -> list[Predicate]:
		out: list[Predicate] = []
		if filters.category:
			out.append(AnyOf((Equals("category", filters.category), Equals("categoryName", filters.category))))
		if filters.price_min is not None or filters.price_max is not None:
			out.append(Range("pricing.amount", gte=filters.price_min, lte=filters.price_max))
		if filters.pricing_type:
			out.append(Equals("pricing.type", filters.pricing_type))
		if filters.maker:
			out.append(Equals("maker", filters.maker))
		if filters.featured:
			out.append(Equals("featured", True))
		return out


class Jobs(EntityType):
	name = "jobs"
	collection = "jobs"
	roles = (
		FieldRole("name", ("title",)),
		FieldRole("tag", ("skills",), many=True),
		FieldRole("category", ("company.name",)),
		FieldRole("tagline", ("location", "jobType")),
		FieldRole("description", ("description",)),
	)
	weights = {
		"name": RoleWeights(exact=15, partial=8),
		"tag": RoleWeights(exact=10, partial=6),
		"category": RoleWeights(exact=7, partial=7),
		"tagline": RoleWeights(exact=5, partial=5),
		"description": RoleWeights(exact=4, partial=4),
	}
	engagement = EngagementWeights(upvotes=0.0, views=0.3, comments=0.0, featured=5.0)
	image_field = "company.logo"
	embedding_fields = ("title", "company.name", "location", "description", "skills")

	def base_constraints(self, now: datetime) -> tuple[Predicate, ...]:
		return (Equals("status", "Published"), Range("expiresAt", gt=now, cast="timestamp"))

	def _type_filters(self, filters: SearchFilters, *, viewer_id: Optional[str]) -> list[Predicate]:
		out: list[Predicate] = []
		if filters.job_type:
			out.append(Equals("jobType", filters.job_type))
		if filters.location_type:
			out.append(Equals("locationType", filters.location_type))
		if filters.experience_level:
			out.append(Equals("experienceLevel", filters.experience_level))
		if filters.posted_by:
			out.append(Equals("postedBy", filters.posted_by))
		if filters.featured:
			out.append(Equals("featured", True))
		return out


class Projects(EntityType):
	name = "projects"
	collection = "projects"
	roles = (
		FieldRole("name", ("title",)),
		FieldRole("tag", ("technologies",), many=True),
		FieldRole("category", ("category.name",)),
		FieldRole("description", ("description",)),
	)
	weights = {
		"name": RoleWeights(exact=15, partial=8),
		"tag": RoleWeights(exact=10, partial=7),
		"category": RoleWeights(exact=7, partial=7),
		"description": RoleWeights(exact=5, partial=5),
	}
	engagement = EngagementWeights(upvotes=0.3, views=0.45, comments=0.4, featured=1.0)
	embedding_fields = ("title", "category.name", "description", "technologies")

	def base_constraints(self, now: datetime) -> tuple[Predicate, ...]:
		return (Equals("visibility", "public"),)

	def _type_filters(self, filters: SearchFilters, *, viewer_id: Optional[str]) -> list[Predicate]:
		out: list[Predicate] = []
		if filters.category:
			out.append(AnyOf((Equals("category.id", filters.category), Equals("category.name", filters.category))))
		if filters.owner:
			out.append(Equals("owner", filters.owner))
		return out


class Users(EntityType):
	name = "users"
	collection = "users"
	roles = (
		FieldRole("name", ("username", "firstName", "lastName")),
		FieldRole("tag", ("roleCapabilities",), many=True),
		FieldRole("category", ("companyName",)),
		FieldRole("tagline", ("companyRole",)),
		FieldRole("description", ("bio",)),
	)
	weights = {
		"name": RoleWeights(exact=15, partial=9),
		"tag": RoleWeights(exact=10, partial=7),
		"category": RoleWeights(exact=6, partial=6),
		"tagline": RoleWeights(exact=5, partial=5),
		"description": RoleWeights(exact=4, partial=4),
	}
	engagement = EngagementWeights(upvotes=0.0, views=0.3, comments=0.0, featured=0.0)
	image_field = "profilePicture"
	description_field = "bio"
	embedding_fields = ("firstName", "lastName", "username", "companyName", "companyRole", "bio")
	blend_factor = 0.25

	def display_name(self, document: Mapping[str, Any]) -> str:
		first = " ".join(text_values(document, "firstName"))
		last = " ".join(text_values(document, "lastName"))
		full = f"{first} {last}".strip()
		if full:
			return full
		usernames = text_values(document, "username")
		return usernames[0] if usernames else ""

	def base_constraints(self, now: datetime) -> tuple[Predicate, ...]:
		return (Equals("status", "active"),)

	def _type_filters(self, filters: SearchFilters, *, viewer_id: Optional[str]) -> list[Predicate]:
		out: list[Predicate] = []
		if filters.role:
			out.append(Equals("role", filters.role))
		if viewer_id:
			out.append(NotEquals(self.id_field, viewer_id))
		return out

	def cache_filter_extras(self, viewer_id: Optional[str]) -> dict[str, Any]:
		return {"viewer_id": viewer_id} if viewer_id else {}


ENTITY_TYPES: dict[str, EntityType] = {
	entity.name: entity for entity in (Products(), Jobs(), Projects(), Users())
}

def entity_type(name: str) -> EntityType:
	try:
		return ENTITY_TYPES[name]
	except KeyError:
		raise policy.InvalidInput(f"unknown_entity_type:{name}") from None


__all__ = [
	"ENTITY_TYPES",
	"ROLE_ORDER",
	"EngagementWeights",
	"EntityType",
	"FieldRole",
	"Jobs",
	"Products",
	"Projects",
	"RoleWeights",
	"Users",
	"entity_type",
]
