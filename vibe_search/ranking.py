"""
Ranking module.
Post-retrieval ranking steps: filters, score-ratio cutoff, type nudge, lexical boost,
rerank merge, and the final user-requested sort.
"""

import re  # keyword tokenization
from typing import List, Optional, Sequence  # type hints

from .genres import normalized_genres  # canonical genre membership
from .models import (
	ANY_TYPE,
	SORT_TITLE_ASC,
	SORT_YEAR_ASC,
	SORT_YEAR_DESC,
	ScoredCandidate,
	Title,
	TitleFilter,
)
from .reranker import RerankHit  # provider output

STOPWORDS = frozenset([
	"a", "an", "and", "are", "as", "at", "be", "best", "for", "from", "good", "how", "i", "in",
	"is", "it", "like", "me", "movie", "movies", "my", "netflix", "of", "on", "or", "recommend",
	"recommendations", "recs", "series", "show", "shows", "similar", "some", "the", "this", "to",
	"tv", "watch", "with",
])

RE_KEYWORD_CLEAN = re.compile(r"[^a-z0-9\s'-]")
RE_WHITESPACE = re.compile(r"\s+")


def extract_keywords(text: str, max_keywords: int = 12) -> List[str]:
	"""Deduplicated keywords of 3+ characters with stopwords removed, in order of appearance."""
	cleaned = RE_WHITESPACE.sub(" ", RE_KEYWORD_CLEAN.sub(" ", text.lower())).strip()
	out: List[str] = []
	for token in cleaned.split(" "):
		if len(token) < 3 or token in STOPWORDS or token in out:
			continue
		out.append(token)
		if len(out) >= max_keywords:
			break
	return out


def matches_filters(title: Title, filters: TitleFilter) -> bool:
	"""Exact post-retrieval filter; genre is checked against the title's canonical genres."""
	if filters.type and title.type != filters.type:
		return False
	if filters.rating and title.rating != filters.rating:
		return False
	if filters.year and title.release_year != filters.year:
		return False
	if filters.genre and filters.genre not in normalized_genres(title.genres):
		return False
	return True


def build_rerank_document(title: Title) -> str:
	"""Newline-joined text the cross-encoder scores against the rerank query."""
	parts = [
		f"Title: {title.title}",
		f"Genres: {title.genres}" if title.genres else "",
		f"Year: {title.release_year}" if title.release_year else "",
		f"Type: {title.type}" if title.type else "",
		f"Description: {title.description}" if title.description else "",
	]
	return "\n".join(p for p in parts if p)


def sort_by_score(candidates: List[ScoredCandidate]) -> List[ScoredCandidate]:
	return sorted(candidates, key=lambda c: c.sort_score, reverse=True)  # stable for ties


class Ranker:
	"""
	Applies the score-shaping steps of a semantic search.
	- type_bonus: added to titles matching the rewrite's preferred type
	- boost_weight: multiplier on the lexical overlap score
	- min_keyword_hits: distinct keywords a title must contain before it is boosted
	"""

	def __init__(
		self,
		type_bonus: float = 0.006,
		boost_weight: float = 0.02,
		min_keyword_hits: int = 2,
		boost_scope: int = 500,
		rerank_scope: int = 100,
		title_weight: int = 3,
		genre_weight: int = 2,
		description_weight: int = 1,
	):
		self.type_bonus = type_bonus
		self.boost_weight = boost_weight
		self.min_keyword_hits = min_keyword_hits
		self.boost_scope = boost_scope
		self.rerank_scope = rerank_scope
		self.title_weight = title_weight
		self.genre_weight = genre_weight
		self.description_weight = description_weight

	def cutoff(
		self,
		candidates: List[ScoredCandidate],
		ratio: Optional[float],
		min_score: Optional[float] = None,
	) -> List[ScoredCandidate]:
		"""
		Keep candidates scoring at least max_score * ratio (ratio clamped to [0, 1], 0.75 when unset).
		An absolute `min_score` replaces the ratio computation.
		"""
		if not candidates:
			return []
		if min_score is None:
			max_score = max(c.sort_score for c in candidates)
			if ratio is None or ratio != ratio:  # unset or NaN
				ratio = 0.75
			ratio = min(max(ratio, 0.0), 1.0)
			min_score = max_score * ratio
		return [c for c in candidates if c.sort_score >= min_score]

	def nudge_type(self, candidates: List[ScoredCandidate], preferred_type: str) -> None:
		"""Add the type bonus in place to candidates of the preferred type."""
		if preferred_type == ANY_TYPE:
			return
		for c in candidates:
			if c.title.type == preferred_type:
				c.score = c.sort_score + self.type_bonus

	def lexical_score(self, title: Title, keywords: Sequence[str]) -> int:
		"""
		Sum of per-keyword points (title > genre > description, first field hit only).
		Zero unless at least `min_keyword_hits` distinct keywords matched.
		"""
		if not keywords:
			return 0
		name = title.title.lower()
		genres = title.genres.lower()
		desc = title.description.lower()
		hits = 0
		score = 0
		for kw in keywords:
			if kw in name:
				score += self.title_weight
			elif kw in genres:
				score += self.genre_weight
			elif kw in desc:
				score += self.description_weight
			else:
				continue
			hits += 1
		return score if hits >= self.min_keyword_hits else 0

	def lexical_boost(self, ordered: List[ScoredCandidate], keywords: Sequence[str]) -> List[ScoredCandidate]:
		"""
		Reorder the head of an already score-sorted list by score + weighted lexical overlap.
		Scores are not modified; the tail keeps its order.
		"""
		scope = min(self.boost_scope, len(ordered))
		if not keywords or scope == 0:
			return ordered
		boosted = [
			(c.sort_score + self.lexical_score(c.title, keywords) * self.boost_weight, c)
			for c in ordered[:scope]
		]
		boosted.sort(key=lambda pair: pair[0], reverse=True)
		return [c for _, c in boosted] + ordered[scope:]

	def merge_rerank(self, ordered: List[ScoredCandidate], scope: int, hits: Sequence[RerankHit]) -> List[ScoredCandidate]:
		"""
		Put the provider's picks first (with their relevance scores), then unpicked scope members,
		then the untouched tail. Out-of-range indices are ignored.
		"""
		head = ordered[:scope]
		picked = set()
		front: List[ScoredCandidate] = []
		for hit in hits:
			if hit.index < 0 or hit.index >= len(head) or hit.index in picked:
				continue
			picked.add(hit.index)
			front.append(ScoredCandidate(title=head[hit.index].title, score=hit.relevance_score))
		rest = [c for i, c in enumerate(head) if i not in picked]
		return front + rest + ordered[scope:]

	def final_sort(self, ordered: List[ScoredCandidate], sort: str) -> List[ScoredCandidate]:
		"""User-requested order; score breaks ties, relevance keeps the ranked order."""
		if sort == SORT_TITLE_ASC:
			return sorted(ordered, key=lambda c: (c.title.title.casefold(), -c.sort_score))
		if sort == SORT_YEAR_ASC:
			return sorted(ordered, key=lambda c: (_year_or(c.title, 9999), -c.sort_score))
		if sort == SORT_YEAR_DESC:
			return sorted(ordered, key=lambda c: (-_year_or(c.title, -1), -c.sort_score))
		return ordered


def _year_or(title: Title, default: int) -> int:
	return title.release_year if title.release_year is not None else default
