"""
Tests for the search pipeline over a small in-memory FAISS catalog.
Query vectors are fixed, so similarity scores are known up front.
"""

import math
from unittest.mock import AsyncMock

import httpx
import numpy as np
import pytest

from vibe_search.embeddings import CachedQueryEmbedder, VoyageEmbeddingProvider
from vibe_search.genres import normalized_genres
from vibe_search.models import MOVIE, TV_SHOW, SearchOptions, Title
from vibe_search.reranker import RerankHit
from vibe_search.retrieval import candidate_budget, fetch_limit
from vibe_search.rewriter import QueryRewriter
from vibe_search.search_engine import SearchEngine
from vibe_search.vector_store import FaissTitleStore

QUERY = "zzqx vibes"  # two words, no rule hits, no catalog keyword overlap -> ratio 0.65
SIMILARITIES = [1.0, 0.96, 0.92, 0.88, 0.84, 0.80, 0.76, 0.72, 0.60, 0.50]


class FixedEmbedder:
	model_name = "fixed"

	def __init__(self, vector=None):
		self.vector = vector if vector is not None else [1.0, 0.0]
		self.calls = 0
		self.texts = []

	async def embed_query(self, text):
		self.calls += 1
		self.texts.append(text)
		return list(self.vector)

	async def embed_documents(self, texts):
		return [list(self.vector) for _ in texts]


def make_title(i: int, type_: str = MOVIE, year=2000, genres="Dramas", rating="TV-MA") -> Title:
	return Title(
		show_id=f"s{i}",
		type=type_,
		title=f"Title {i}",
		release_year=year,
		rating=rating,
		genres=genres,
		genres_list=normalized_genres(genres),
		description=f"Plain synopsis number {i}.",
	)


def build_catalog():
	titles = []
	vectors = []
	for i, sim in enumerate(SIMILARITIES):
		type_ = TV_SHOW if i % 2 else MOVIE
		genres = "Comedies, International Movies" if i % 3 == 0 else "Dramas"
		titles.append(make_title(i, type_=type_, year=2000 + i, genres=genres, rating="PG" if i < 5 else "R"))
		vectors.append([sim, math.sqrt(1 - sim * sim)])
	store = FaissTitleStore(2)
	store.add_titles(titles, np.asarray(vectors, dtype="float32"))
	return store


def offline_rewriter() -> QueryRewriter:
	transport = httpx.MockTransport(lambda request: httpx.Response(500))
	return QueryRewriter(lambda: None, http_client=httpx.AsyncClient(transport=transport))


def build_engine(store=None, embedder=None, reranker=None) -> SearchEngine:
	return SearchEngine(
		store or build_catalog(),
		CachedQueryEmbedder(embedder or FixedEmbedder()),
		offline_rewriter(),
		reranker=reranker,
	)


def ids(response):
	return [r.title.show_id for r in response.results]


@pytest.mark.asyncio
async def test_cutoff_keeps_candidates_above_ratio():
	engine = build_engine()
	response = await engine.search(QUERY, SearchOptions(page_size=80, do_rerank=False))

	assert response.total == 8
	assert ids(response) == [f"s{i}" for i in range(8)]
	max_score = max(r.score for r in response.results)
	assert all(r.score >= max_score * 0.65 for r in response.results)


@pytest.mark.asyncio
async def test_page_is_slice_of_full_ranking():
	engine = build_engine()
	full = await engine.search(QUERY, SearchOptions(page_size=80, do_rerank=False))

	for page in (1, 2, 3, 4):
		response = await engine.search(QUERY, SearchOptions(page=page, page_size=3, do_rerank=False))
		offset = (page - 1) * 3
		assert len(response.results) <= 3
		assert ids(response) == ids(full)[offset:offset + 3]
		assert response.total == full.total


@pytest.mark.asyncio
async def test_page_size_and_page_are_clamped():
	engine = build_engine()
	response = await engine.search(QUERY, SearchOptions(page=0, page_size=500, do_rerank=False))
	assert response.page == 1
	assert response.page_size == 80


@pytest.mark.asyncio
async def test_filters_compose_with_and():
	engine = build_engine()
	response = await engine.search(QUERY, SearchOptions(page_size=80, type=TV_SHOW, rating="PG", do_rerank=False))

	assert ids(response)
	for r in response.results:
		assert r.title.type == TV_SHOW
		assert r.title.rating == "PG"


@pytest.mark.asyncio
async def test_genre_filter_uses_canonical_genres_and_fuzzy_names():
	engine = build_engine()
	response = await engine.search(QUERY, SearchOptions(page_size=80, genre="comdy", do_rerank=False))

	assert ids(response) == ["s0", "s3", "s6"]
	for r in response.results:
		assert "Comedy" in normalized_genres(r.title.genres)


@pytest.mark.asyncio
async def test_search_is_idempotent():
	engine = build_engine()
	options = SearchOptions(page_size=5, do_rerank=False)
	first = await engine.search(QUERY, options)
	second = await engine.search(QUERY, options)
	assert first.total == second.total
	assert ids(first) == ids(second)


@pytest.mark.asyncio
async def test_rerank_failure_keeps_pre_rerank_order():
	reranker = AsyncMock()
	reranker.rerank.side_effect = RuntimeError("rerank provider down")
	engine = build_engine(reranker=reranker)

	baseline = await engine.search(QUERY, SearchOptions(page_size=80, do_rerank=False))
	response = await engine.search(QUERY, SearchOptions(page_size=80))

	reranker.rerank.assert_awaited_once()
	assert ids(response) == ids(baseline)
	assert response.total == baseline.total


@pytest.mark.asyncio
async def test_rerank_moves_picked_candidates_first():
	reranker = AsyncMock()
	reranker.rerank.return_value = [RerankHit(index=5, relevance_score=0.99), RerankHit(index=2, relevance_score=0.42)]
	engine = build_engine(reranker=reranker)

	response = await engine.search(QUERY, SearchOptions(page_size=80, rerank_top_k=2))

	assert ids(response)[:2] == ["s5", "s2"]
	assert response.results[0].score == pytest.approx(0.99)
	assert ids(response)[2:] == ["s0", "s1", "s3", "s4", "s6", "s7"]
	# rerank runs after the cutoff, so the candidate set is unchanged
	assert response.total == 8
	_, documents, top_k = reranker.rerank.await_args.args
	assert len(documents) == 8
	assert top_k == 2
	assert documents[0].startswith("Title: Title 0")


@pytest.mark.asyncio
async def test_do_rerank_false_skips_provider():
	reranker = AsyncMock()
	engine = build_engine(reranker=reranker)
	await engine.search(QUERY, SearchOptions(do_rerank=False))
	reranker.rerank.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_query_browses_by_year_without_embedding():
	titles = [make_title(i, year=year) for i, year in enumerate([1999, 2020, 2021, 2021, 2005, 2020])]
	store = FaissTitleStore(2)
	store.add_titles(titles, np.ones((len(titles), 2), dtype="float32"))
	embedder = FixedEmbedder()
	engine = build_engine(store=store, embedder=embedder)

	response = await engine.search("   ", SearchOptions(page=1, page_size=20))

	assert embedder.calls == 0
	assert response.total == 6
	assert ids(response) == ["s3", "s2", "s5", "s1", "s4", "s0"]
	assert all(r.score is None for r in response.results)


@pytest.mark.asyncio
async def test_empty_query_respects_filters_and_title_sort():
	engine = build_engine()
	response = await engine.search("", SearchOptions(type=MOVIE, sort="title_asc", page_size=3))

	assert response.total == 5
	assert [r.title.title for r in response.results] == ["Title 0", "Title 2", "Title 4"]


@pytest.mark.asyncio
async def test_failed_embedding_returns_no_results():
	embedder = FixedEmbedder(vector=[])
	engine = build_engine(embedder=embedder)
	response = await engine.search(QUERY, SearchOptions())
	assert response.total == 0
	assert response.results == []


@pytest.mark.asyncio
async def test_absolute_min_score_overrides_ratio():
	engine = build_engine()
	response = await engine.search(QUERY, SearchOptions(page_size=80, min_score=0.9, do_rerank=False))
	assert ids(response) == ["s0", "s1", "s2"]


@pytest.mark.asyncio
async def test_year_sort_applies_after_ranking():
	engine = build_engine()
	response = await engine.search(QUERY, SearchOptions(page_size=80, sort="year_desc", do_rerank=False))
	years = [r.title.release_year for r in response.results]
	assert years == sorted(years, reverse=True)
	assert response.total == 8


@pytest.mark.asyncio
async def test_get_filters_lists_facets():
	engine = build_engine()
	filters = await engine.get_filters()
	assert filters["types"] == [MOVIE, TV_SHOW]
	assert filters["ratings"] == ["PG", "R"]
	assert filters["years"][0] == 2009
	assert filters["genres"][0] == "Action"
	assert len(filters["genres"]) == 23


@pytest.mark.asyncio
async def test_single_word_query_is_destemmed_once():
	embedder = FixedEmbedder()
	engine = build_engine(embedder=embedder)
	await engine.search("confessing", SearchOptions(do_rerank=False))
	assert embedder.texts == ["confess"]


@pytest.mark.asyncio
async def test_malformed_embedding_body_returns_no_results():
	transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": [1]}))
	provider = VoyageEmbeddingProvider("vk", http_client=httpx.AsyncClient(transport=transport))
	engine = build_engine(embedder=provider)

	response = await engine.search(QUERY, SearchOptions())

	assert response.total == 0
	assert response.results == []


@pytest.mark.asyncio
async def test_vector_search_budget_follows_page_window(monkeypatch):
	store = build_catalog()
	calls = []
	vector_search = store.vector_search

	async def recording_vector_search(vector, num_candidates, limit):
		calls.append((num_candidates, limit))
		return await vector_search(vector, num_candidates=num_candidates, limit=limit)

	monkeypatch.setattr(store, "vector_search", recording_vector_search)
	engine = build_engine(store=store)

	await engine.search(QUERY, SearchOptions(page=3, page_size=80, do_rerank=False))
	await engine.search(QUERY, SearchOptions(page=1, page_size=20, do_rerank=False))
	await engine.search(QUERY, SearchOptions(page=1, page_size=5, do_rerank=False))

	assert calls == [(1600, 440), (400, 220), (200, 200)]


def test_candidate_budget_is_capped():
	assert candidate_budget(150) == 2000
	assert candidate_budget(80) == 1600
	assert candidate_budget(1) == 200
	assert fetch_limit(150, 5000) == 2000
	assert fetch_limit(10, 0) == 210
