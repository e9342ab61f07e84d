"""Fuzzy and synonym expansion for search terms."""

from __future__ import annotations

import logging
from difflib import SequenceMatcher
from typing import Iterable, Mapping, Optional

from bazaar.domain.search.models import TermExpansion

logger = logging.getLogger(__name__)

GENERIC_THRESHOLD = 0.7
TAG_THRESHOLD = 0.8
CONTAINMENT_SCORE = 0.8
MAX_FUZZY_VARIANTS = 5
MAX_SYNONYMS = 10
WORD_REPLACEMENTS = 3
MIN_REPLACEABLE_WORD = 4

# Domain vocabulary: misspellings, abbreviations and related terms.
SYNONYMS: dict[str, tuple[str, ...]] = {
	"john": ("johnny", "jon", "jonathan", "johnathan"),
	"michael": ("mike", "mich", "michal", "michel"),
	"david": ("dave", "dav", "davey"),
	"robert": ("rob", "bob", "bobby", "robby"),
	"william": ("will", "bill", "billy", "willy"),
	"james": ("jim", "jimmy", "jamie"),
	"jennifer": ("jen", "jenny", "jenn"),
	"elizabeth": ("liz", "beth", "eliza", "lisa"),
	"javascript": ("javascrpt", "javascipt", "javascrip", "javscript", "js", "ecmascript", "node", "nodejs"),
	"python": ("pyton", "pythn", "phyton", "py", "backend", "ml", "data science"),
	"react": ("rect", "recat", "reactjs", "react.js", "frontend", "ui"),
	"angular": ("anglar", "angulr", "anguler", "angularjs", "ng", "frontend", "ui"),
	"database": ("databse", "datbase", "datebase", "db", "sql", "nosql", "mongodb", "postgres"),
	"algorithm": ("algoritm", "algorith", "algorthm", "algorithem"),
	"analytics": ("analtics", "analyics", "anlytics", "metrics", "data", "insights", "statistics"),
	"marketing": ("markting", "marketng", "marketting", "promotion", "advertising", "growth", "seo"),
	"ecommerce": ("ecomerce", "ecommerc", "online store", "shop", "retail", "marketplace"),
	"freelance": ("freelanc", "frelanc", "freelence", "contractor", "independent", "gig"),
	"product": ("prodct", "pruduct", "prodict", "item", "solution", "tool"),
	"design": ("desing", "desig", "dezign", "ui", "ux", "graphic", "creative", "figma", "sketch"),
	"development": ("developent", "developmnt", "devlopment", "coding", "programming", "engineering", "software"),
	"software": ("sofware", "softwar", "softwre", "softwere"),
	"technology": ("technolgy", "tecnology", "techology", "technoloy"),
	"business": ("busines", "bussiness", "busness", "buisness", "company", "startup", "enterprise"),
	"startup": ("startap", "startop", "startapp", "venture", "business", "company", "enterprise"),
	"finance": ("financ", "finace", "finanse", "fintech", "banking", "investment", "money", "payment"),
	"education": ("educaton", "eduction", "learning", "teaching", "courses", "training", "edtech"),
	"health": ("helth", "healt", "healthcare", "wellness", "medical", "fitness"),
	"mobile": ("mobil", "moble", "mobileapp", "ios", "android", "app", "smartphone"),
	"application": ("applicaton", "aplication", "app", "software", "program", "tool"),
	"website": ("websit", "webste", "webite", "web", "webapp", "internet", "online"),
	"cloud": ("clod", "cloude", "clould", "aws", "azure", "gcp", "hosting", "saas"),
	"security": ("securty", "secrity", "protection", "encryption", "privacy", "authentication"),
	"typescript": ("ts", "javascript", "js"),
	"vue": ("vuejs", "vue.js", "frontend", "ui"),
	"node": ("nodejs", "node.js", "javascript", "backend"),
	"ai": ("artificial intelligence", "machine learning", "ml", "deep learning", "neural network"),
	"ml": ("machine learning", "ai", "data science", "neural network"),
	"api": ("rest", "graphql", "endpoint", "service"),
	"saas": ("software as a service", "cloud", "subscription"),
	"web": ("website", "webapp", "internet", "online"),
	"remote": ("wfh", "work from home", "telecommute", "virtual"),
	"productivity": ("efficiency", "workflow", "automation", "tools"),
	"collaboration": ("teamwork", "communication", "cooperation", "coordination"),
	"data": ("analytics", "visualization", "insights", "reporting", "dashboard"),
	"communication": ("chat", "messaging", "email", "video", "conferencing"),
	"gaming": ("games", "entertainment", "esports", "virtual reality"),
	"social": ("community", "network", "platform", "sharing", "connection"),
	"jobs": ("job", "career", "employment", "position", "opportunity"),
	"tools": ("tool", "utility", "app", "software"),
	"developers": ("developer", "programmer", "coder", "engineer"),
	"designers": ("designer", "creative", "artist"),
	"companies": ("company", "business", "startup", "enterprise"),
}

DEFAULT_TAG_VOCABULARY: tuple[str, ...] = (
	"dashboard",
	"automation",
	"productivity",
	"opensource",
	"nocode",
	"devtools",
	"fintech",
	"edtech",
	"chatbot",
	"marketplace",
	"analytics",
	"design",
)


def word_similarity(a: str, b: str) -> float:
	"""1.0 for equal words, at least 0.8 when one contains the other."""

	if not a or not b:
		return 0.0
	left = a.lower()
	right = b.lower()
	if left == right:
		return 1.0
	ratio = SequenceMatcher(None, left, right).ratio()
	if left in right or right in left:
		return max(CONTAINMENT_SCORE, ratio)
	return ratio


class LexicalExpander:
	"""Expands a term into fuzzy variants from a dictionary plus domain synonyms."""

	def __init__(
		self,
		*,
		synonyms: Optional[Mapping[str, Iterable[str]]] = None,
		vocabulary: Iterable[str] = (),
		tag_vocabulary: Iterable[str] = DEFAULT_TAG_VOCABULARY,
	) -> None:
		table = synonyms if synonyms is not None else SYNONYMS
		self._synonyms: dict[str, tuple[str, ...]] = {
			key.lower(): tuple(value.lower() for value in values) for key, values in table.items()
		}
		words: set[str] = set()
		for key, values in self._synonyms.items():
			words.add(key)
			words.update(value for value in values if " " not in value)
		words.update(word.lower() for word in vocabulary)
		self._dictionary: frozenset[str] = frozenset(words)
		self._tags: frozenset[str] = frozenset(tag.lower() for tag in tag_vocabulary)

	def register_tags(self, tags: Iterable[str]) -> None:
		self._tags = self._tags.union(tag.strip().lower() for tag in tags if tag and tag.strip())

	def expand(self, term: str) -> TermExpansion:
		normalized = " ".join((term or "").lower().split())
		if not normalized:
			return TermExpansion(original="")
		try:
			fuzzy = self._fuzzy_variants(normalized)
			synonyms = self._synonyms_for(normalized)
		except Exception:
			logger.warning("lexical.expand_failed", extra={"term": normalized}, exc_info=True)
			return TermExpansion(original=normalized)
		return TermExpansion(original=normalized, fuzzy_variants=tuple(fuzzy), synonyms=tuple(synonyms))

	def corrections(
		self,
		word: str,
		candidates: Iterable[str],
		*,
		threshold: float,
		inclusive: bool = False,
		limit: int = 3,
	) -> list[str]:
		"""Close-but-not-equal candidates, best first."""

		scored = []
		for candidate in candidates:
			score = word_similarity(word, candidate)
			if score >= 1.0:
				continue
			if score > threshold or (inclusive and score == threshold):
				scored.append((score, candidate))
		scored.sort(key=lambda item: (-item[0], item[1]))
		return [candidate for _, candidate in scored[:limit]]

	def _fuzzy_variants(self, term: str) -> list[str]:
		if " " in term:
			return self._phrase_variants(term)
		return [word for word, _ in self._closest(term)][:MAX_FUZZY_VARIANTS]

	def _closest(self, word: str) -> list[tuple[str, float]]:
		scored: dict[str, float] = {}
		for candidate in self._dictionary:
			if candidate == word:
				continue
			score = word_similarity(word, candidate)
			if score >= GENERIC_THRESHOLD:
				scored[candidate] = score
		for candidate in self._tags:
			if candidate == word:
				continue
			score = word_similarity(word, candidate)
			if score >= TAG_THRESHOLD:
				scored[candidate] = max(score, scored.get(candidate, 0.0))
		return sorted(scored.items(), key=lambda item: (-item[1], item[0]))

	def _phrase_variants(self, phrase: str) -> list[str]:
		words = phrase.split()
		variants: list[str] = []
		for index, word in enumerate(words):
			if len(word) < MIN_REPLACEABLE_WORD or word in self._dictionary:
				continue
			closest = self._closest(word)
			if not closest:
				continue
			replaced = words[:index] + [closest[0][0]] + words[index + 1 :]
			variants.append(" ".join(replaced))
			if len(variants) >= MAX_FUZZY_VARIANTS:
				break
		return variants

	def _synonyms_for(self, term: str) -> list[str]:
		found: list[str] = []

		def _add(value: str) -> None:
			if value != term and value not in found:
				found.append(value)

		for value in self._synonyms.get(term, ()):
			_add(value)
		for key, values in self._synonyms.items():
			if term in values:
				_add(key)
				for sibling in values:
					_add(sibling)
		if " " in term:
			words = term.split()
			for index, word in enumerate(words):
				if len(word) < MIN_REPLACEABLE_WORD:
					continue
				for replacement in self._synonyms.get(word, ())[:WORD_REPLACEMENTS]:
					_add(" ".join(words[:index] + [replacement] + words[index + 1 :]))
		return found[:MAX_SYNONYMS]


_default_expander: Optional[LexicalExpander] = None


def default_expander() -> LexicalExpander:
	global _default_expander
	if _default_expander is None:
		_default_expander = LexicalExpander()
	return _default_expander


__all__ = ["LexicalExpander", "SYNONYMS", "default_expander", "word_similarity"]
