"""Deterministic hashed bag-of-words embeddings for semantic matching."""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import numpy as np
from cachetools import LRUCache

from bazaar.domain.search.criteria import text_values
from bazaar.obs import metrics as obs_metrics
from bazaar.settings import settings

logger = logging.getLogger(__name__)

VECTOR_DIMENSIONS = 100
MIN_TOKEN_LENGTH = 2
DEFAULT_THRESHOLD = 0.5
NAME_MATCH_RELAXATION = 0.8
TYPE_THRESHOLDS: dict[str, float] = {
	"products": 0.45,
	"users": 0.65,
	"jobs": 0.5,
	"projects": 0.5,
}


def _zero() -> np.ndarray:
	return np.zeros(VECTOR_DIMENSIONS, dtype=np.float64)


def rolling_hash(text: str) -> int:
	"""Polynomial rolling hash (h * 31 + c) wrapped to a signed 32-bit int."""

	value = 0
	for char in text:
		value = (value * 31 + ord(char)) & 0xFFFFFFFF
	if value >= 0x80000000:
		value -= 0x100000000
	return value


def token_slot(token: str) -> int:
	return abs(rolling_hash(token)) % VECTOR_DIMENSIONS


class EmbeddingEngine:
	"""Text and document embeddings with a per-id vector cache.

	The vector cache is a true LRU shared across threads; every access holds
	`_lock`.
	"""

	def __init__(self, *, cache_size: Optional[int] = None) -> None:
		self._cache: LRUCache = LRUCache(maxsize=max(1, cache_size or settings.vector_cache_size))
		self._lock = threading.Lock()

	@property
	def cache(self) -> LRUCache:
		return self._cache

	def clear_cache(self) -> None:
		with self._lock:
			self._cache.clear()
		obs_metrics.VECTOR_CACHE_SIZE.set(0)

	def embed(self, text: Optional[str]) -> np.ndarray:
		"""Map text to a unit vector; empty or failing input gives the zero vector."""

		if not text or not isinstance(text, str):
			return _zero()
		try:
			counts = Counter(token for token in text.lower().split() if len(token) >= MIN_TOKEN_LENGTH)
			vector = _zero()
			for token, count in counts.items():
				vector[token_slot(token)] += count * (1 + math.log(1 + len(token) / 3))
			norm = np.linalg.norm(vector)
			if norm == 0:
				return vector
			return vector / norm
		except Exception:
			logger.warning("embeddings.embed_failed", exc_info=True)
			return _zero()

	def similarity(self, left: np.ndarray, right: np.ndarray) -> float:
		"""Cosine similarity clamped to [0, 1]; zero vectors score 0."""

		if left is None or right is None or left.shape != right.shape:
			return 0.0
		norm_left = np.linalg.norm(left)
		norm_right = np.linalg.norm(right)
		if norm_left == 0 or norm_right == 0:
			return 0.0
		value = float(np.dot(left, right) / (norm_left * norm_right))
		return round(min(1.0, max(0.0, value)), 12)

	def document_text(self, document: Mapping[str, Any], text_fields: Sequence[str]) -> str:
		"""Concatenated fields with tags and category name weighted twice."""

		parts: list[str] = []
		for field in text_fields:
			parts.extend(text_values(document, field))
		tags = text_values(document, "tags")
		if tags:
			parts.extend(tags)
			parts.extend(tags)
		category = text_values(document, "categoryName")
		if category:
			parts.extend(category)
			parts.extend(category)
		return " ".join(parts)

	def document_vector(
		self,
		document: Mapping[str, Any],
		*,
		id_field: str = "id",
		text_fields: Sequence[str] = ("name", "description"),
		namespace: str = "",
	) -> np.ndarray:
		raw_id = document.get(id_field) if document else None
		if raw_id is None:
			return _zero()
		key = f"{namespace}:{raw_id}" if namespace else str(raw_id)
		with self._lock:
			cached = self._cache.get(key)
		if cached is not None:
			return cached
		vector = self.embed(self.document_text(document, text_fields))
		with self._lock:
			self._cache[key] = vector
			size = len(self._cache)
		obs_metrics.VECTOR_CACHE_SIZE.set(size)
		return vector

	def forget(self, document_id: str, *, namespace: str = "") -> None:
		key = f"{namespace}:{document_id}" if namespace else document_id
		with self._lock:
			self._cache.pop(key, None)

	def find_similar(
		self,
		query: str,
		documents: Iterable[Mapping[str, Any]],
		*,
		entity_type: Optional[str] = None,
		id_field: str = "id",
		text_fields: Sequence[str] = ("name", "description"),
		name_of: Optional[Callable[[Mapping[str, Any]], str]] = None,
		limit: int = 20,
	) -> list[tuple[Mapping[str, Any], float]]:
		"""Documents at or above the type threshold, most similar first.

		A document whose display name contains the query (or is contained by it)
		only needs 80% of the threshold.
		"""

		if not query:
			return []
		threshold = TYPE_THRESHOLDS.get(entity_type or "", DEFAULT_THRESHOLD)
		query_vector = self.embed(query)
		query_lower = query.lower()
		matches: list[tuple[Mapping[str, Any], float]] = []
		for document in documents:
			vector = self.document_vector(
				document,
				id_field=id_field,
				text_fields=text_fields,
				namespace=entity_type or "",
			)
			score = self.similarity(query_vector, vector)
			required = threshold
			name = (name_of(document) if name_of else "").strip().lower()
			if name and (query_lower in name or name in query_lower):
				required = threshold * NAME_MATCH_RELAXATION
			if score >= required:
				matches.append((document, score))
		matches.sort(key=lambda item: item[1], reverse=True)
		return matches[:limit]


_default_engine: Optional[EmbeddingEngine] = None


def default_engine() -> EmbeddingEngine:
	global _default_engine
	if _default_engine is None:
		_default_engine = EmbeddingEngine()
	return _default_engine


__all__ = ["EmbeddingEngine", "TYPE_THRESHOLDS", "VECTOR_DIMENSIONS", "default_engine", "rolling_hash", "token_slot"]
