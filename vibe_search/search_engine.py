"""
Search engine module.
Runs the full vibe-search pipeline: normalize, rewrite, embed, retrieve, filter, cut off,
nudge, boost, rerank, sort, and paginate. Queries that normalize to nothing take a direct
filtered/sorted fetch instead.
"""

from typing import Dict, List, Optional  # type hints

from loguru import logger  # console logger

from .embeddings import CachedQueryEmbedder  # cached query vectors
from .genres import CANONICAL_GENRES, resolve_genre  # genre filter handling
from .models import (
	MAX_PAGE,
	MAX_PAGE_SIZE,
	SORT_RELEVANCE,
	SORT_YEAR_DESC,
	SearchOptions,
	SearchResponse,
	ScoredCandidate,
	TitleFilter,
)
from .normalizer import normalize_query  # query cleanup
from .ranking import Ranker, build_rerank_document, extract_keywords, matches_filters, sort_by_score
from .reranker import RerankProvider  # optional cross-encoder
from .retrieval import VectorRetriever  # nearest-neighbor candidates
from .rewriter import QueryRewriter  # query expansion
from .vector_store import CorpusStore  # catalog operations

DEFAULT_RERANK_TOP_K = 20


def clamp_int(value: Optional[int], low: int, high: int, default: int) -> int:
	if value is None:
		return default
	return max(low, min(high, int(value)))


def _active(value: Optional[str]) -> Optional[str]:
	"""Treat blank and "all" as no filter."""
	if value is None or not str(value).strip() or str(value).strip().lower() == "all":
		return None
	return str(value).strip()


class SearchEngine:
	"""
	High-level search API over a corpus store and the embedding/rewrite/rerank providers.
	Owns no global state; every cache lives on the injected collaborators.
	"""

	def __init__(
		self,
		store: CorpusStore,
		embedder: CachedQueryEmbedder,
		rewriter: QueryRewriter,
		reranker: Optional[RerankProvider] = None,
		ranker: Optional[Ranker] = None,
	):
		self.store = store
		self.embedder = embedder
		self.rewriter = rewriter
		self.reranker = reranker
		self.ranker = ranker or Ranker()
		self.retriever = VectorRetriever(store)
		logger.info(f"[Engine] Ready | rerank={'on' if reranker else 'off'}")

	async def search(self, raw_query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
		"""Rank, filter, and paginate titles for a free-text query."""
		opts = options or SearchOptions()
		query = (raw_query or "").strip()
		normalized = normalize_query(query)

		page_size = clamp_int(opts.page_size, 1, MAX_PAGE_SIZE, 20)
		page = clamp_int(opts.page, 1, MAX_PAGE, 1)
		offset = (page - 1) * page_size
		filters = TitleFilter(
			type=_active(opts.type),
			rating=_active(opts.rating),
			year=opts.year or None,
			genre=resolve_genre(opts.genre),
		)
		sort = opts.sort or (SORT_RELEVANCE if normalized else SORT_YEAR_DESC)

		if not normalized:
			return await self._browse(query, filters, sort, page, page_size, offset)

		empty = SearchResponse(query=query, total=0, page=page, page_size=page_size, results=[])

		# 1) Rewrite and embed
		rewrite = await self.rewriter.rewrite(normalized)
		embedding = await self.embedder.embed_query(rewrite.embed_query or normalized)
		if not embedding:
			logger.warning(f"[Engine] No embedding for '{query}', returning no results")
			return empty

		# 2) Retrieve and filter
		candidates = await self.retriever.retrieve(embedding, page_size=page_size, offset=offset)
		candidates = [c for c in candidates if matches_filters(c.title, filters)]
		if not candidates:
			logger.debug(f"[Engine] No candidates left after filters for '{query}'")
			return empty

		# 3) Cutoff relative to the best surviving score
		ratio = opts.min_score_ratio if opts.min_score_ratio is not None else rewrite.min_score_ratio
		ordered = self.ranker.cutoff(candidates, ratio, opts.min_score)
		if not ordered:
			return empty
		total = len(ordered)
		logger.debug(f"[Engine] Cutoff kept {total} of {len(candidates)} candidates (ratio={ratio})")

		# 4) Soft type preference, only when the caller did not pin a type
		if not filters.type:
			self.ranker.nudge_type(ordered, rewrite.preferred_type)
		ordered = sort_by_score(ordered)

		# 5) Lexical boost over the head
		keywords = extract_keywords(f"{rewrite.embed_query} {query}")
		ordered = self.ranker.lexical_boost(ordered, keywords)

		# 6) Best-effort rerank
		if opts.do_rerank is not False and self.reranker is not None:
			ordered = await self._rerank(ordered, rewrite.rerank_query or normalized, opts.rerank_top_k)

		# 7) Final order and page slice
		ordered = self.ranker.final_sort(ordered, sort)
		results = ordered[offset:offset + page_size]
		logger.info(f"[Engine] '{query}' -> total={total} page={page} returned={len(results)} sort={sort}")
		return SearchResponse(query=query, total=total, page=page, page_size=page_size, results=results)

	async def _browse(self, query: str, filters: TitleFilter, sort: str, page: int, page_size: int, offset: int) -> SearchResponse:
		"""Direct filtered fetch for empty queries; no rewrite, embedding, or ranking."""
		titles = await self.store.find(filters, sort=sort, skip=offset, limit=page_size)
		total = await self.store.count(filters)
		logger.debug(f"[Engine] Browse sort={sort} filters={filters} -> total={total}")
		return SearchResponse(
			query=query,
			total=total,
			page=page,
			page_size=page_size,
			results=[ScoredCandidate(title=t) for t in titles],
		)

	async def _rerank(self, ordered: List[ScoredCandidate], rerank_query: str, requested_top_k: Optional[int]) -> List[ScoredCandidate]:
		scope = min(self.ranker.rerank_scope, len(ordered))
		if scope == 0:
			return ordered
		top_k = clamp_int(requested_top_k, 1, scope, min(DEFAULT_RERANK_TOP_K, scope))
		documents = [build_rerank_document(c.title) for c in ordered[:scope]]
		try:
			hits = await self.reranker.rerank(rerank_query, documents, top_k)
		except Exception as e:  # rerank must never fail the search
			logger.warning(f"[Engine] Rerank failed, keeping pre-rerank order: {e}")
			return ordered
		logger.debug(f"[Engine] Rerank returned {len(hits)} hits over scope {scope} (top_k={top_k})")
		return self.ranker.merge_rerank(ordered, scope, hits)

	async def get_filters(self) -> Dict[str, List]:
		"""Facet values for the filter controls; genres are the fixed canonical list."""
		types, ratings, years = await self.store.facets()
		return {
			"types": types,
			"ratings": ratings,
			"years": years,
			"genres": list(CANONICAL_GENRES),
		}
