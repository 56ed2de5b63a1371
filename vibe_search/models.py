"""
Data models for the Vibe Search engine.
Defines the catalog record, per-request ranking state, rewrite output, and poster cache shapes.
"""

# Import dataclass helpers to define record-like classes without boilerplate
from dataclasses import dataclass, field, asdict  # auto-generated __init__/__repr__
# Enum gives the poster outcome an explicit tag instead of loose strings
from enum import Enum  # tagged status/source values
# Typing helpers for precise and self-documenting types
from typing import Any, Dict, List, Optional  # containers and optionals


MOVIE = "Movie"  # catalog type label for films
TV_SHOW = "TV Show"  # catalog type label for series
ANY_TYPE = "Any"  # no type preference
PREFERRED_TYPES = (MOVIE, TV_SHOW, ANY_TYPE)  # allowed rewrite type hints

SORT_RELEVANCE = "relevance"
SORT_YEAR_DESC = "year_desc"
SORT_YEAR_ASC = "year_asc"
SORT_TITLE_ASC = "title_asc"
SORT_OPTIONS = (SORT_RELEVANCE, SORT_YEAR_DESC, SORT_YEAR_ASC, SORT_TITLE_ASC)

MAX_PAGE_SIZE = 80  # hard ceiling on results per page
MAX_PAGE = 10_000  # hard ceiling on page number


@dataclass(frozen=True)
class Title:
	"""
	One catalog entry (movie or TV show) as loaded at ingest time.
	Never mutated while searching; ranking state lives on ScoredCandidate.
	"""
	show_id: str  # unique identifier from the catalog (e.g. "s42")
	type: str  # "Movie" or "TV Show"
	title: str  # display title
	director: str = ""  # comma-joined director names
	cast: str = ""  # comma-joined cast names
	country: str = ""  # comma-joined production countries
	date_added: str = ""  # free-form date the title was added to the catalog
	release_year: Optional[int] = None  # release year if known
	rating: str = ""  # content rating such as "TV-MA"
	duration: str = ""  # "90 min" or "2 Seasons"
	genres: str = ""  # raw comma-joined genre labels
	genres_list: List[str] = field(default_factory=list)  # canonical genres derived from `genres`
	description: str = ""  # synopsis
	embedding: Optional[List[float]] = field(default=None, repr=False, compare=False)  # ingest-time vector

	def to_dict(self) -> Dict[str, Any]:
		"""Serialize every catalog field except the embedding vector."""
		data = asdict(self)
		data.pop("embedding", None)  # vectors never leave the store
		return data


@dataclass
class ScoredCandidate:
	"""A title projected for ranking, carrying a per-request relevance score."""
	title: Title
	score: Optional[float] = None  # similarity, later boosted or replaced by rerank relevance

	@property
	def sort_score(self) -> float:
		return self.score if self.score is not None else 0.0

	def to_dict(self) -> Dict[str, Any]:
		data = self.title.to_dict()
		if self.score is not None:
			data["score"] = self.score
		return data


@dataclass(frozen=True)
class RewriteResult:
	"""Expanded form of a normalized query used for embedding, rerank, and cutoff."""
	embed_query: str  # text sent to the embedding provider
	rerank_query: str  # instruction text sent to the rerank provider
	min_score_ratio: float  # fraction of the top similarity kept, in [0.55, 0.9]
	preferred_type: str = ANY_TYPE  # soft type preference ("Movie", "TV Show", "Any")


@dataclass(frozen=True)
class TitleFilter:
	"""AND-combined catalog filters; None means the filter is inactive."""
	type: Optional[str] = None
	rating: Optional[str] = None
	year: Optional[int] = None
	genre: Optional[str] = None  # canonical genre name

	@property
	def is_empty(self) -> bool:
		return not (self.type or self.rating or self.year or self.genre)


@dataclass
class SearchOptions:
	"""Caller-supplied search parameters; clamped by the engine before use."""
	page: int = 1
	page_size: int = 20
	type: Optional[str] = None
	rating: Optional[str] = None
	year: Optional[int] = None
	genre: Optional[str] = None
	sort: Optional[str] = None  # defaults to relevance with a query, year_desc without
	do_rerank: bool = True
	rerank_top_k: Optional[int] = None
	min_score: Optional[float] = None  # absolute cutoff, overrides the ratio
	min_score_ratio: Optional[float] = None  # overrides the rewrite's ratio


@dataclass
class SearchResponse:
	query: str
	total: int
	page: int
	page_size: int
	results: List[ScoredCandidate] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"query": self.query,
			"total": self.total,
			"page": self.page,
			"pageSize": self.page_size,
			"results": [r.to_dict() for r in self.results],
		}


class PosterStatus(str, Enum):
	READY = "ready"
	MISSING = "missing"
	ERROR = "error"
	COOLDOWN = "cooldown"


class PosterSource(str, Enum):
	CACHE = "cache"
	PROVIDER = "provider"
	DISABLED = "disabled"


@dataclass(frozen=True)
class PosterRequest:
	title: str
	show_id: Optional[str] = None
	type: Optional[str] = None
	year: Optional[int] = None
	refresh: bool = False

	@property
	def cache_key(self) -> str:
		"""Show id when present, otherwise type::title::year."""
		if self.show_id:
			return self.show_id
		year = self.year if self.year is not None else ""
		return f"{self.type or ANY_TYPE}::{self.title.strip().lower()}::{year}"


@dataclass
class PosterRecord:
	"""
	Persisted outcome of the latest poster resolution attempt for one cache key.
	Timestamps are epoch seconds.
	"""
	key: str
	status: PosterStatus
	updated_at: float
	show_id: Optional[str] = None
	title: str = ""
	type: str = ""
	year: Optional[int] = None
	tmdb_id: Optional[int] = None
	poster_path: Optional[str] = None
	backdrop_path: Optional[str] = None
	poster_url: Optional[str] = None
	thumb_url: Optional[str] = None
	error_count: Optional[int] = None
	last_error_at: Optional[float] = None
	cooldown_until: Optional[float] = None
	disabled_at: Optional[float] = None  # set when written while the provider had no credential

	@property
	def image_url(self) -> Optional[str]:
		return self.thumb_url or self.poster_url


@dataclass(frozen=True)
class PosterResult:
	"""
	Tagged outcome of a poster lookup.
	Build through the named constructors so each status carries only the fields it owns.
	"""
	status: PosterStatus
	source: PosterSource
	poster_url: Optional[str] = None
	cooldown_until: Optional[float] = None

	@classmethod
	def ready(cls, url: str, source: PosterSource) -> "PosterResult":
		return cls(status=PosterStatus.READY, source=source, poster_url=url)

	@classmethod
	def missing(cls, source: PosterSource) -> "PosterResult":
		return cls(status=PosterStatus.MISSING, source=source)

	@classmethod
	def error(cls) -> "PosterResult":
		return cls(status=PosterStatus.ERROR, source=PosterSource.PROVIDER)

	@classmethod
	def cooldown(cls, until: float) -> "PosterResult":
		return cls(status=PosterStatus.COOLDOWN, source=PosterSource.CACHE, cooldown_until=until)

	def to_dict(self) -> Dict[str, Any]:
		data: Dict[str, Any] = {"status": self.status.value, "source": self.source.value}
		if self.poster_url:
			data["posterUrl"] = self.poster_url
		if self.cooldown_until is not None:
			data["cooldownUntil"] = self.cooldown_until
		return data


@dataclass(frozen=True)
class FavoriteOwner:
	"""Acting principal for favorites: an authenticated user or an anonymous session."""
	owner_type: str  # "user" or "session"
	owner_id: str
