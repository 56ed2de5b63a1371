"""
Vector retrieval.
Turns a query embedding into similarity-scored candidates, asking the store for only as many
neighbors as the requested page could need.
"""

from typing import List, Sequence  # type hints

from loguru import logger  # console logger

from .models import ScoredCandidate  # per-request ranking state
from .vector_store import CorpusStore  # nearest-neighbor primitive

MAX_CANDIDATE_BUDGET = 2000
MIN_CANDIDATE_BUDGET = 200
PAGE_HEADROOM = 200  # extra neighbors beyond the requested page


def candidate_budget(page_size: int) -> int:
	return min(MAX_CANDIDATE_BUDGET, max(page_size * 20, MIN_CANDIDATE_BUDGET))


def fetch_limit(page_size: int, offset: int) -> int:
	return min(candidate_budget(page_size), offset + page_size + PAGE_HEADROOM)


class VectorRetriever:
	def __init__(self, store: CorpusStore):
		self.store = store

	async def retrieve(self, embedding: Sequence[float], page_size: int, offset: int) -> List[ScoredCandidate]:
		"""Candidates ordered by descending similarity; empty embedding yields no candidates."""
		if not embedding:
			return []
		num_candidates = candidate_budget(page_size)
		limit = fetch_limit(page_size, offset)
		rows = await self.store.vector_search(embedding, num_candidates=num_candidates, limit=limit)
		logger.debug(f"[Retriever] Retrieved {len(rows)} candidates (num_candidates={num_candidates}, limit={limit})")
		return [ScoredCandidate(title=title, score=score) for title, score in rows]
