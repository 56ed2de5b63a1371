"""
FastAPI server exposing the vibe search API.
Endpoints:
- GET /health: basic health check
- GET /search?q=...&page=1&pageSize=20: ranked, filtered, paginated titles
- GET /filters: facet values for the filter controls
- GET /poster, POST /posters: poster image lookups (single and batched)
- GET /favorites, POST /favorites/toggle: per-user or per-session favorites

Startup loads a saved FAISS index if available (INDEX_PATH.*),
otherwise embeds the catalog locally and indexes it on the fly.
"""

import time  # measure startup and request latencies
from typing import List, Literal, Optional  # precise typing for clarity

from fastapi import FastAPI, Header, Query  # FastAPI primitives
from fastapi.exceptions import RequestValidationError  # boundary validation failures
from loguru import logger  # convenient console logger
from pydantic import BaseModel, Field  # request/response schema definitions

from vibe_search.config import configure_logging, env_credential, settings  # env-backed settings
from vibe_search.data_loader import DataLoader, build_document_text  # catalog ingestion
from vibe_search.embeddings import CachedQueryEmbedder, EmbeddingGenerator, VoyageEmbeddingProvider
from vibe_search.exceptions import (
	VibeSearchError,
	global_exception_handler,
	validation_exception_handler,
	vibe_search_exception_handler,
)
from vibe_search.favorites import FavoritesService, resolve_owner  # favorites bookkeeping
from vibe_search.models import MAX_PAGE_SIZE, PosterRequest, ScoredCandidate, SearchOptions, Title
from vibe_search.poster_batcher import PosterBatcher  # coalesces per-card poster lookups
from vibe_search.posters import InMemoryPosterStore, PosterGateway, TmdbClient  # poster lookups
from vibe_search.ranking import Ranker  # tunable ranking steps
from vibe_search.reranker import CrossEncoderReranker, VoyageReranker  # rerank backends
from vibe_search.rewriter import QueryRewriter  # query expansion
from vibe_search.search_engine import SearchEngine  # core search engine
from vibe_search.task_limiter import TaskLimiter  # TMDB pacing
from vibe_search.vector_store import FaissTitleStore  # FAISS catalog

# Instantiate the FastAPI application with metadata
app = FastAPI(title="Vibe Search API", version="1.0.0")
app.add_exception_handler(VibeSearchError, vibe_search_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Globals populated at startup
ENGINE: Optional[SearchEngine] = None
POSTERS: Optional[PosterGateway] = None
POSTER_BATCHER: Optional[PosterBatcher] = None
FAVORITES: Optional[FavoritesService] = None
STARTUP_TIME_S: float = 0.0
_CLOSERS: list = []  # async clients to close on shutdown


class TitleOut(BaseModel):
	show_id: str
	type: str
	title: str
	director: str = ""
	cast: str = ""
	country: str = ""
	date_added: str = ""
	release_year: Optional[int] = None
	rating: str = ""
	duration: str = ""
	genres: str = ""
	genres_list: List[str] = []
	description: str = ""
	score: Optional[float] = None
	is_favorite: Optional[bool] = None


class SearchOut(BaseModel):
	query: str
	total: int
	page: int
	pageSize: int
	results: List[TitleOut]


class FiltersOut(BaseModel):
	types: List[str]
	ratings: List[str]
	years: List[int]
	genres: List[str]


class PosterItem(BaseModel):
	title: str = Field(..., min_length=1)
	showId: Optional[str] = None
	type: Optional[str] = None
	year: Optional[int] = None
	refresh: bool = False

	def to_request(self) -> PosterRequest:
		return PosterRequest(title=self.title, show_id=self.showId, type=self.type, year=self.year, refresh=self.refresh)


class PosterOut(BaseModel):
	status: str
	source: str
	posterUrl: Optional[str] = None
	cooldownUntil: Optional[float] = None
	showId: Optional[str] = None


class PosterBatchIn(BaseModel):
	items: List[PosterItem] = Field(..., min_length=1, max_length=80)


class PosterBatchOut(BaseModel):
	results: List[PosterOut]


class ToggleIn(BaseModel):
	showId: str = Field(..., min_length=1)


class ToggleOut(BaseModel):
	showId: str
	isFavorite: bool


class FavoritesOut(BaseModel):
	total: int
	page: int
	pageSize: int
	results: List[TitleOut]


def to_title_out(item: ScoredCandidate, favorites: Optional[set] = None) -> TitleOut:
	data = item.to_dict()
	if favorites is not None:
		data["is_favorite"] = item.title.show_id in favorites
	return TitleOut(**data)


def _load_store():
	"""Saved index if present, else embed the catalog locally. Returns (store, local generator or None)."""
	if FaissTitleStore.index_files_exist(settings.INDEX_PATH):
		return FaissTitleStore.load_index(settings.INDEX_PATH), None

	logger.info(f"[API] No saved index at {settings.INDEX_PATH}, building from {settings.DATA_PATH}")
	titles: List[Title] = DataLoader().load(settings.DATA_PATH)
	generator = EmbeddingGenerator(settings.LOCAL_EMBEDDING_MODEL)
	store = FaissTitleStore(generator.get_embedding_dimension(), model_name=generator.model_name)
	store.add_titles(titles, generator.encode_documents([build_document_text(t) for t in titles]))
	return store, generator


def build_services() -> None:
	"""Wire the store, providers, engine, poster gateway, and favorites."""
	global ENGINE, POSTERS, POSTER_BATCHER, FAVORITES
	store, generator = _load_store()

	# Query vectors must come from the model that embedded the catalog
	if settings.VOYAGE_API_KEY and store.model_name == settings.EMBEDDING_MODEL:
		query_provider = VoyageEmbeddingProvider(settings.VOYAGE_API_KEY, settings.EMBEDDING_MODEL, timeout_s=settings.HTTP_TIMEOUT_S)
		_CLOSERS.append(query_provider)
	else:
		query_provider = generator or EmbeddingGenerator(store.model_name or settings.LOCAL_EMBEDDING_MODEL)

	if settings.VOYAGE_API_KEY:
		reranker = VoyageReranker(settings.VOYAGE_API_KEY, settings.RERANK_MODEL, timeout_s=settings.HTTP_TIMEOUT_S)
		_CLOSERS.append(reranker)
	else:
		reranker = CrossEncoderReranker(settings.LOCAL_RERANK_MODEL)

	rewriter = QueryRewriter(
		env_credential("OPENROUTER_API_KEY", settings.OPENROUTER_API_KEY),
		settings.OPENROUTER_MODEL,
		timeout_s=settings.HTTP_TIMEOUT_S,
	)
	_CLOSERS.append(rewriter)
	ranker = Ranker(boost_weight=settings.LEXICAL_BOOST_WEIGHT, min_keyword_hits=settings.LEXICAL_MIN_HITS)
	ENGINE = SearchEngine(store, CachedQueryEmbedder(query_provider), rewriter, reranker=reranker, ranker=ranker)

	tmdb = TmdbClient(timeout_s=settings.HTTP_TIMEOUT_S)
	_CLOSERS.append(tmdb)
	POSTERS = PosterGateway(
		InMemoryPosterStore(),
		tmdb,
		env_credential("TMDB_API_KEY", settings.TMDB_API_KEY),
		limiter=TaskLimiter(settings.TMDB_CONCURRENCY, settings.TMDB_MIN_DELAY_MS / 1000, name="tmdb"),
	)
	POSTER_BATCHER = PosterBatcher.for_gateway(POSTERS)
	FAVORITES = FavoritesService(store)


@app.on_event("startup")
async def startup_event():
	"""Initialize the services and log how the index was obtained."""
	global STARTUP_TIME_S
	configure_logging(settings.LOG_LEVEL)
	start = time.time()
	logger.info("[API] Startup: loading catalog index and initializing engine...")
	build_services()
	STARTUP_TIME_S = time.time() - start
	logger.info(f"[API] Startup complete in {STARTUP_TIME_S:.2f}s.")


@app.on_event("shutdown")
async def shutdown_event():
	for client in _CLOSERS:
		await client.aclose()
	_CLOSERS.clear()


@app.get("/health")
async def health():
	"""Return minimal health info for liveness/readiness probes."""
	return {
		"status": "ok",
		"engine_ready": ENGINE is not None,
		"startup_seconds": round(STARTUP_TIME_S, 2),
	}


@app.get("/search", response_model=SearchOut, response_model_exclude_none=True)
async def search(
	q: str = Query("", description="Natural language vibe query"),
	page: int = Query(1, ge=1),
	pageSize: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
	type: Optional[str] = None,
	rating: Optional[str] = None,
	year: Optional[int] = None,
	genre: Optional[str] = None,
	sort: Optional[Literal["relevance", "year_desc", "year_asc", "title_asc"]] = None,
	rerank: bool = True,
	rerankTopK: int = Query(10, ge=1, le=100),
	minScore: Optional[float] = None,
	minScoreRatio: Optional[float] = None,
	x_user_id: Optional[str] = Header(None),
	x_session_token: Optional[str] = Header(None),
):
	"""Execute a vibe search and return one page of ranked results."""
	if ENGINE is None:
		logger.warning("[API] Search requested but engine not initialized")
		return SearchOut(query=q, total=0, page=page, pageSize=pageSize, results=[])

	start = time.time()
	options = SearchOptions(
		page=page,
		page_size=pageSize,
		type=type,
		rating=rating,
		year=year,
		genre=genre,
		sort=sort,
		do_rerank=rerank,
		rerank_top_k=rerankTopK,
		min_score=minScore,
		min_score_ratio=minScoreRatio,
	)
	response = await ENGINE.search(q, options)

	favorites = None
	if FAVORITES is not None and (x_user_id or x_session_token):
		try:
			owner = resolve_owner(x_user_id, x_session_token)
			favorites = await FAVORITES.favorites_for(owner, [r.title.show_id for r in response.results])
		except Exception as e:
			logger.warning(f"[API] Favorite marking failed, returning unmarked results: {e}")

	elapsed_ms = (time.time() - start) * 1000
	logger.info(f"[API] /search served {len(response.results)} of {response.total} in {elapsed_ms:.2f} ms")
	return SearchOut(
		query=response.query,
		total=response.total,
		page=response.page,
		pageSize=response.page_size,
		results=[to_title_out(r, favorites) for r in response.results],
	)


@app.get("/filters", response_model=FiltersOut)
async def filters():
	if ENGINE is None:
		return FiltersOut(types=[], ratings=[], years=[], genres=[])
	return FiltersOut(**await ENGINE.get_filters())


@app.get("/poster", response_model=PosterOut, response_model_exclude_none=True)
async def poster(
	title: str = Query(..., min_length=1),
	showId: Optional[str] = None,
	type: Optional[str] = None,
	year: Optional[int] = None,
	refresh: bool = False,
):
	item = PosterItem(title=title, showId=showId, type=type, year=year, refresh=refresh)
	# Per-card lookups with a show id are coalesced into gateway batches
	if showId and POSTER_BATCHER is not None:
		result = await POSTER_BATCHER.request(item.to_request())
	else:
		result = await POSTERS.resolve(item.to_request())
	return PosterOut(showId=showId, **result.to_dict())


@app.post("/posters", response_model=PosterBatchOut, response_model_exclude_none=True)
async def posters(body: PosterBatchIn):
	results = await POSTERS.resolve_many([item.to_request() for item in body.items])
	logger.debug(f"[API] /posters resolved {len(results)} items")
	return PosterBatchOut(results=[
		PosterOut(showId=item.showId, **result.to_dict())
		for item, result in zip(body.items, results)
	])


@app.get("/favorites", response_model=FavoritesOut, response_model_exclude_none=True)
async def list_favorites(
	page: int = Query(1, ge=1),
	pageSize: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
	x_user_id: Optional[str] = Header(None),
	x_session_token: Optional[str] = Header(None),
):
	owner = resolve_owner(x_user_id, x_session_token)
	total, titles = await FAVORITES.list(owner, page=page, page_size=pageSize)
	return FavoritesOut(
		total=total,
		page=page,
		pageSize=pageSize,
		results=[to_title_out(ScoredCandidate(title=t), {t.show_id for t in titles}) for t in titles],
	)


@app.post("/favorites/toggle", response_model=ToggleOut)
async def toggle_favorite(
	body: ToggleIn,
	x_user_id: Optional[str] = Header(None),
	x_session_token: Optional[str] = Header(None),
):
	owner = resolve_owner(x_user_id, x_session_token)
	is_favorite = await FAVORITES.toggle(owner, body.showId)
	logger.info(f"[API] Favorite {body.showId} -> {is_favorite} for {owner.owner_type}")
	return ToggleOut(showId=body.showId, isFavorite=is_favorite)
