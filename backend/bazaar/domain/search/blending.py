"""Merge lexical results with semantic-only matches."""

from __future__ import annotations

import math
from typing import Sequence

from bazaar.domain.search.models import ScoredResult

DEFAULT_MIN_SEMANTIC_SCORE = 0.4


def blend(
	lexical: Sequence[ScoredResult],
	semantic: Sequence[ScoredResult],
	*,
	limit: int,
	blend_factor: float,
	min_semantic_score: float = DEFAULT_MIN_SEMANTIC_SCORE,
) -> list[ScoredResult]:
	"""Top lexical results first, then unseen semantic results that clear the bar.

	Lexical keeps ceil(limit * (1 - blend_factor)) slots and semantic gets at
	most floor(limit * blend_factor), so the output never exceeds `limit`.
	"""

	if limit <= 0:
		return []
	factor = min(max(blend_factor, 0.0), 1.0)
	lexical_slots = math.ceil(limit * (1 - factor))
	semantic_slots = math.floor(limit * factor)

	blended = list(lexical[:lexical_slots])
	seen = {result.entity_id for result in lexical}
	added = 0
	for result in semantic:
		if added >= semantic_slots:
			break
		if result.entity_id in seen:
			continue
		if (result.semantic_similarity or 0.0) < min_semantic_score:
			continue
		seen.add(result.entity_id)
		blended.append(result)
		added += 1
	return blended[:limit]


def blend_page(
	lexical: Sequence[ScoredResult],
	semantic: Sequence[ScoredResult],
	*,
	page: int,
	limit: int,
	blend_factor: float,
	min_semantic_score: float = DEFAULT_MIN_SEMANTIC_SCORE,
) -> list[ScoredResult]:
	"""Blend one page so consecutive pages never repeat or skip a result.

	Every page spends the same lexical and semantic slot counts, so page N
	starts after the slots pages 1..N-1 consumed from each source.
	"""

	if limit <= 0 or page < 1:
		return []
	factor = min(max(blend_factor, 0.0), 1.0)
	lexical_slots = math.ceil(limit * (1 - factor))
	semantic_slots = math.floor(limit * factor)
	lexical_ids = {result.entity_id for result in lexical}
	extras = [
		result
		for result in semantic
		if result.entity_id not in lexical_ids and (result.semantic_similarity or 0.0) >= min_semantic_score
	]
	return blend(
		lexical[(page - 1) * lexical_slots :],
		extras[(page - 1) * semantic_slots :],
		limit=limit,
		blend_factor=factor,
		min_semantic_score=min_semantic_score,
	)


__all__ = ["DEFAULT_MIN_SEMANTIC_SCORE", "blend", "blend_page"]
