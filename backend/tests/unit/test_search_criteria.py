from datetime import datetime, timedelta, timezone

import pytest

from bazaar.domain.search.builders import (
	PRIORITY_EXACT_NAME,
	PRIORITY_VARIANT,
	PRIORITY_WORD,
	CriteriaBuilder,
	query_words,
	split_quoted,
)
from bazaar.domain.search.criteria import AnyOf, EntityCriteria, Equals, FieldMatch, NotEquals, Range
from bazaar.domain.search.entities import ENTITY_TYPES, EntityType
from bazaar.domain.search.lexical import LexicalExpander
from bazaar.domain.search.models import ENTITY_TYPE_NAMES
from bazaar.domain.search.schemas import SearchFilters
from bazaar.domain.search.store import CriteriaCompiler

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _product(**overrides):
	document = {
		"id": "p1",
		"name": "React Dashboard",
		"tags": ["admin", "charts"],
		"categoryName": "Developer Tools",
		"tagline": "Ship admin panels faster",
		"description": "A component kit for internal tools.",
		"status": "Published",
	}
	document.update(overrides)
	return document


def test_literal_clauses_come_first_in_priority_order():
	criteria = CriteriaBuilder(expander=LexicalExpander()).build(
		ENTITY_TYPES["products"], "react", SearchFilters(), now=NOW
	)
	assert criteria.match is not None
	clauses = list(criteria.match.clauses)
	priorities = [clause.priority for clause in clauses]
	assert priorities == sorted(priorities)
	first = clauses[0]
	assert (first.field, first.kind, first.term, first.priority) == ("name", "exact", "react", PRIORITY_EXACT_NAME)
	assert any(c.field == "name" and c.kind == "contains" and c.term == "react" for c in clauses)
	assert any(c.field == "description" and c.term == "react" for c in clauses)
	assert Equals("status", "Published") in criteria.constraints


def test_fuzzy_variant_recovers_typo():
	builder = CriteriaBuilder(expander=LexicalExpander())
	criteria = builder.build(ENTITY_TYPES["products"], "reactt", SearchFilters(), now=NOW)
	variants = [c for c in criteria.match.clauses if c.priority == PRIORITY_VARIANT]
	assert any(c.term == "react" and c.origin == "fuzzy" for c in variants)
	assert criteria.matches(_product())
	assert not criteria.matches(_product(status="Draft"))


def test_multi_word_query_adds_word_clauses():
	criteria = CriteriaBuilder(expander=LexicalExpander()).build(
		ENTITY_TYPES["products"], "react admin kit", SearchFilters(), now=NOW
	)
	words = {c.term for c in criteria.match.clauses if c.priority == PRIORITY_WORD}
	assert words == {"react", "admin", "kit"}
	literal = [c for c in criteria.match.clauses if c.origin == "literal"]
	assert all(c.term == "react admin kit" for c in literal)


def test_quoted_query_matches_whole_words():
	criteria = CriteriaBuilder(expander=LexicalExpander(synonyms={}, tag_vocabulary=())).build(
		ENTITY_TYPES["products"], '"dash"', SearchFilters(), now=NOW
	)
	name_clause = next(c for c in criteria.match.clauses if c.field == "name" and c.priority == 3)
	assert name_clause.kind == "word"
	assert not criteria.matches(_product())
	assert criteria.matches(_product(name="Dash for teams"))


def test_empty_query_only_applies_constraints():
	criteria = CriteriaBuilder().build(ENTITY_TYPES["projects"], "", SearchFilters(), now=NOW)
	assert criteria.match is None
	assert criteria.matches({"id": "x1", "visibility": "public"})
	assert not criteria.matches({"id": "x2", "visibility": "private"})


def test_filters_layer_on_top_of_text_match():
	filters = SearchFilters(category="developer tools", price_max=20, exclude_id="p9")
	criteria = CriteriaBuilder().build(ENTITY_TYPES["products"], "react", filters, now=NOW)
	assert criteria.matches(_product(pricing={"amount": 10}))
	assert not criteria.matches(_product(pricing={"amount": 99}))
	assert not criteria.matches(_product(id="p9", pricing={"amount": 10}))
	assert not criteria.matches(_product(categoryName="Games", pricing={"amount": 10}))


def test_jobs_require_future_expiry():
	criteria = CriteriaBuilder().build(ENTITY_TYPES["jobs"], "", SearchFilters(), now=NOW)
	job = {"id": "j1", "title": "Backend engineer", "status": "Published"}
	assert not criteria.matches(job)
	assert criteria.matches({**job, "expiresAt": (NOW + timedelta(days=3)).isoformat()})
	assert not criteria.matches({**job, "expiresAt": (NOW - timedelta(days=3)).isoformat()})


def test_users_search_excludes_viewer():
	criteria = CriteriaBuilder().build(ENTITY_TYPES["users"], "", SearchFilters(), viewer_id="u1", now=NOW)
	assert not criteria.matches({"id": "u1", "status": "active"})
	assert criteria.matches({"id": "u2", "status": "active"})


def test_strongest_clause_follows_priority():
	match = AnyOf(
		(
			FieldMatch("description", "contains", "react", priority=6),
			FieldMatch("name", "contains", "react", priority=3),
		)
	)
	assert match.strongest(_product()).field == "name"
	assert match.strongest({"name": "Other"}) is None


def test_split_quoted_and_query_words():
	assert split_quoted('  "react   kit" ') == ("react kit", True)
	assert split_quoted("react") == ("react", False)
	assert query_words("react") == []
	assert query_words("ui for react") == ["for", "react"]


def test_compiler_builds_parameterised_sql():
	criteria = EntityCriteria(
		entity_type="products",
		constraints=(Equals("status", "Published"),),
		match=AnyOf(
			(
				FieldMatch("name", "contains", "50%_off", priority=3),
				FieldMatch("tags", "exact", "ai", priority=2, many=True),
			)
		),
	)
	compiler = CriteriaCompiler()
	sql = compiler.compile(criteria)
	assert "lower(doc #>> '{status}') = lower($1)" in sql
	assert "(doc #>> '{name}') ILIKE $2" in sql
	assert "jsonb_array_elements_text" in sql
	assert "lower(v.value) = lower($3)" in sql
	assert compiler.params == ["Published", "%50\\%\\_off%", "ai"]


def test_compiler_ranges_and_word_patterns():
	compiler = CriteriaCompiler()
	sql = compiler.compile(
		EntityCriteria(
			entity_type="jobs",
			constraints=(
				Range("expiresAt", gt=NOW.isoformat(), cast="timestamp"),
				NotEquals("id", "j1"),
			),
			match=AnyOf((FieldMatch("title", "word", "c++", priority=3),)),
		)
	)
	assert "::timestamptz" in sql
	assert "~* $3" in sql
	assert compiler.params[0] == NOW
	assert compiler.params[1] == "j1"
	assert compiler.params[2] == "\\yc\\+\\+\\y"


def test_compiler_rejects_unsafe_paths():
	with pytest.raises(ValueError):
		CriteriaCompiler().compile(EntityCriteria(entity_type="products", constraints=(Equals("name'; drop", "x"),)))


def test_entity_registry_follows_type_order():
	assert tuple(ENTITY_TYPES) == ENTITY_TYPE_NAMES


def test_entity_type_base_cannot_be_instantiated():
	with pytest.raises(TypeError):
		EntityType()


def test_only_users_key_their_cache_on_viewer():
	assert ENTITY_TYPES["users"].cache_filter_extras("u1") == {"viewer_id": "u1"}
	assert ENTITY_TYPES["users"].cache_filter_extras(None) == {}
	for name in ("products", "jobs", "projects"):
		assert ENTITY_TYPES[name].cache_filter_extras("u1") == {}
