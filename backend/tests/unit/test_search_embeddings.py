from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from bazaar.domain.search import embeddings
from bazaar.domain.search.embeddings import VECTOR_DIMENSIONS, EmbeddingEngine, rolling_hash


def test_self_similarity_is_one():
	engine = EmbeddingEngine(cache_size=10)
	vector = engine.embed("React dashboard for startup analytics")
	assert vector.shape == (VECTOR_DIMENSIONS,)
	assert engine.similarity(vector, vector) == 1.0


def test_similarity_with_zero_vector_is_zero():
	engine = EmbeddingEngine(cache_size=10)
	vector = engine.embed("open source design tools")
	assert engine.similarity(vector, np.zeros(VECTOR_DIMENSIONS)) == 0.0
	assert engine.similarity(np.zeros(VECTOR_DIMENSIONS), np.zeros(VECTOR_DIMENSIONS)) == 0.0


def test_embed_is_unit_length_and_deterministic():
	engine = EmbeddingEngine(cache_size=10)
	first = engine.embed("Kanban board for remote teams")
	second = engine.embed("kanban   BOARD for remote teams")
	assert np.linalg.norm(first) == pytest.approx(1.0)
	assert np.array_equal(first, second)


def test_short_tokens_and_empty_text_give_zero_vector():
	engine = EmbeddingEngine(cache_size=10)
	assert not engine.embed("a b c").any()
	assert not engine.embed("").any()
	assert not engine.embed(None).any()


def test_embed_failure_falls_back_to_zero_vector(monkeypatch):
	engine = EmbeddingEngine(cache_size=10)

	def _boom(token):
		raise RuntimeError("hash failure")

	monkeypatch.setattr(embeddings, "token_slot", _boom)
	assert not engine.embed("anything at all").any()


def test_rolling_hash_wraps_to_signed_32_bit():
	assert rolling_hash("") == 0
	assert rolling_hash("a") == 97
	assert rolling_hash("ab") == 97 * 31 + 98
	value = rolling_hash("a fairly long string that overflows thirty two bits")
	assert -(2**31) <= value < 2**31


def test_document_text_repeats_tags_and_category():
	engine = EmbeddingEngine(cache_size=10)
	document = {"id": "p1", "name": "Flowboard", "tags": ["kanban"], "categoryName": "Productivity"}
	assert engine.document_text(document, ("name",)) == "Flowboard kanban kanban Productivity Productivity"


def test_document_vector_is_cached_by_id():
	engine = EmbeddingEngine(cache_size=10)
	original = engine.document_vector({"id": "p1", "name": "Flowboard kanban"}, text_fields=("name",))
	changed = engine.document_vector({"id": "p1", "name": "Completely different"}, text_fields=("name",))
	assert changed is original
	engine.forget("p1")
	refreshed = engine.document_vector({"id": "p1", "name": "Completely different"}, text_fields=("name",))
	assert not np.array_equal(refreshed, original)


def test_document_without_id_is_not_cached():
	engine = EmbeddingEngine(cache_size=10)
	vector = engine.document_vector({"name": "no id here"}, text_fields=("name",))
	assert not vector.any()
	assert len(engine.cache) == 0


def test_vector_cache_evicts_least_recently_used():
	engine = EmbeddingEngine(cache_size=2)
	engine.document_vector({"id": "p1", "name": "first document"}, text_fields=("name",))
	engine.document_vector({"id": "p2", "name": "second document"}, text_fields=("name",))
	# touch p1 so p2 becomes the eviction candidate
	engine.document_vector({"id": "p1", "name": "first document"}, text_fields=("name",))
	engine.document_vector({"id": "p3", "name": "third document"}, text_fields=("name",))
	assert "p1" in engine.cache
	assert "p3" in engine.cache
	assert "p2" not in engine.cache
	assert len(engine.cache) == 2


def test_find_similar_orders_by_similarity():
	engine = EmbeddingEngine(cache_size=10)
	documents = [
		{"id": "p2", "name": "Gardening shears"},
		{"id": "p1", "name": "React Dashboard"},
	]
	found = engine.find_similar(
		"react dashboard",
		documents,
		entity_type="products",
		text_fields=("name",),
		name_of=lambda doc: doc["name"],
	)
	assert found
	assert found[0][0]["id"] == "p1"
	assert found[0][1] == 1.0
	assert all(left[1] >= right[1] for left, right in zip(found, found[1:]))


def test_find_similar_with_empty_query_returns_nothing():
	engine = EmbeddingEngine(cache_size=10)
	assert engine.find_similar("", [{"id": "p1", "name": "React"}]) == []


def test_vector_cache_stays_bounded_across_threads():
	engine = EmbeddingEngine(cache_size=16)
	documents = [{"id": f"p{i}", "name": f"widget document number {i}"} for i in range(200)]
	with ThreadPoolExecutor(max_workers=8) as pool:
		vectors = list(pool.map(lambda doc: engine.document_vector(doc, text_fields=("name",)), documents * 3))
	assert len(vectors) == 600
	assert len(engine.cache) <= 16
	assert all(np.linalg.norm(vector) == pytest.approx(1.0) for vector in vectors)
