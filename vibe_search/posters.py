"""
Poster resolution.
Resolves a title to a display image through a persistent cache, per-key request coalescing,
a rate-limited TMDB client, and cooldown/backoff bookkeeping for misses and failures.
"""

import asyncio  # coalescing futures and background cache writes
import dataclasses  # record merging
import time  # epoch timestamps for persisted cooldowns
from typing import Any, Callable, Dict, List, Optional, Protocol, Set  # type hints

import httpx  # async HTTP client
from loguru import logger  # console logger

from .exceptions import ProviderError, ProviderRateLimited  # upstream failures
from .models import PosterRecord, PosterRequest, PosterResult, PosterSource, PosterStatus  # poster shapes
from .task_limiter import TaskLimiter  # upstream pacing

TMDB_BASE = "https://api.themoviedb.org/3"
TMDB_BACKDROP_BASE = "https://image.tmdb.org/t/p/w780"
TMDB_POSTER_BASE = "https://image.tmdb.org/t/p/w500"

ERROR_BACKOFF_BASE_S = 30.0
MAX_ERROR_BACKOFF_S = 6 * 60 * 60
MISSING_RETRY_S = 24 * 60 * 60  # how long a "no image" answer is trusted
DISABLED_COOLDOWN_S = 60 * 60  # cooldown written while no credential is configured
SOFT_COOLDOWN_MAX_S = 2 * 60 * 60
PROVIDER_COOLDOWN_S = 2 * 60  # provider-wide pause after 429/5xx
MAX_BATCH = 80


def next_cooldown_s(error_count: int) -> float:
	"""Exponential backoff: 30s, 60s, 120s, ... capped at 6h."""
	return min(ERROR_BACKOFF_BASE_S * (2 ** max(error_count - 1, 0)), MAX_ERROR_BACKOFF_S)


def tmdb_media_type(type_label: Optional[str]) -> str:
	lower = (type_label or "").lower()
	if "tv" in lower or "show" in lower:
		return "tv"
	return "movie"


class PosterCacheStore(Protocol):
	async def get(self, key: str) -> Optional[PosterRecord]: ...

	async def upsert(self, key: str, fields: Dict[str, Any]) -> None: ...


class InMemoryPosterStore:
	"""Process-local poster cache; upserts merge fields into the existing record."""

	def __init__(self):
		self.records: Dict[str, PosterRecord] = {}

	async def get(self, key: str) -> Optional[PosterRecord]:
		return self.records.get(key)

	async def upsert(self, key: str, fields: Dict[str, Any]) -> None:
		existing = self.records.get(key)
		if existing is None:
			self.records[key] = PosterRecord(**{"key": key, **fields})
		else:
			self.records[key] = dataclasses.replace(existing, **fields)


class ImageProvider(Protocol):
	async def search(self, api_key: str, title: str, type_label: Optional[str], year: Optional[int]) -> List[Dict[str, Any]]: ...


class TmdbClient:
	"""Title search against TMDB's movie or TV endpoint."""

	def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout_s: float = 15.0):
		self._client = http_client or httpx.AsyncClient(timeout=timeout_s)

	async def search(self, api_key: str, title: str, type_label: Optional[str], year: Optional[int]) -> List[Dict[str, Any]]:
		media = tmdb_media_type(type_label)
		params = {
			"api_key": api_key,
			"query": title,
			"include_adult": "false",
			"language": "en-US",
		}
		if year:
			params["first_air_date_year" if media == "tv" else "year"] = str(year)
		res = await self._client.get(f"{TMDB_BASE}/search/{media}", params=params)
		if res.status_code == 429:
			raise ProviderRateLimited("tmdb", 429)
		if not res.is_success:
			raise ProviderError("tmdb", res.status_code)
		try:
			payload = res.json()
		except ValueError as e:
			raise ProviderError("tmdb", res.status_code, f"Malformed TMDB response: {e}") from e
		results = payload.get("results") if isinstance(payload, dict) else None
		return [r for r in results or [] if isinstance(r, dict)]

	async def aclose(self) -> None:
		await self._client.aclose()


class PosterGateway:
	"""
	Cache-first poster lookups with at most one upstream fetch in flight per cache key.
	"""

	def __init__(
		self,
		store: PosterCacheStore,
		provider: ImageProvider,
		api_key: Callable[[], Optional[str]],
		limiter: Optional[TaskLimiter] = None,
		clock: Callable[[], float] = time.time,
	):
		self.store = store
		self.provider = provider
		self._api_key = api_key
		self.limiter = limiter or TaskLimiter(6, 0.075, name="tmdb")
		self._clock = clock
		self._disabled = False  # set when a fetch found no credential
		self._provider_cooldown_until = 0.0
		self._in_flight: Dict[str, asyncio.Future] = {}
		self._pending_writes: Set[asyncio.Task] = set()

	@property
	def disabled(self) -> bool:
		return self._disabled

	async def resolve(self, req: PosterRequest) -> PosterResult:
		api_key = self._api_key()
		if self._disabled and api_key:
			logger.info("[Posters] Credential available again, re-enabling provider")
			self._disabled = False
		if self._disabled:
			return PosterResult.missing(PosterSource.DISABLED)

		key = req.cache_key
		cached = await self.store.get(key)
		if cached is not None:
			hit = self._from_cache(cached, req, bool(api_key))
			if hit is not None:
				return hit

		shared = self._in_flight.get(key)
		if shared is not None:
			logger.debug(f"[Posters] Joining in-flight lookup for {key}")
			return await asyncio.shield(shared)

		task = asyncio.ensure_future(self.limiter.run(lambda: self._fetch(req, key, cached)))
		self._in_flight[key] = task
		task.add_done_callback(lambda done: self._forget(key, done))  # entry lives as long as the fetch
		return await asyncio.shield(task)

	def _forget(self, key: str, task: asyncio.Future) -> None:
		if self._in_flight.get(key) is task:
			del self._in_flight[key]
		if not task.cancelled() and task.exception() is not None:
			logger.warning(f"[Posters] Lookup for {key} failed: {task.exception()}")

	async def resolve_many(self, requests: List[PosterRequest]) -> List[PosterResult]:
		"""Resolve a batch concurrently; results line up with `requests`."""
		if len(requests) > MAX_BATCH:
			raise ValueError(f"at most {MAX_BATCH} poster requests per batch")
		return list(await asyncio.gather(*(self.resolve(r) for r in requests)))

	def _from_cache(self, cached: PosterRecord, req: PosterRequest, has_key: bool) -> Optional[PosterResult]:
		"""Answer from the cache record, or None when an upstream fetch is warranted."""
		if cached.status == PosterStatus.READY and cached.image_url:
			return PosterResult.ready(cached.image_url, PosterSource.CACHE)

		now = self._clock()
		soft_override = False
		if cached.cooldown_until and cached.cooldown_until > now and not req.refresh:
			if has_key and self._is_soft_cooldown(cached):
				logger.debug(f"[Posters] Ignoring disabled-era cooldown for {cached.key}")
				soft_override = True
			else:
				return PosterResult.cooldown(cached.cooldown_until)

		if cached.status == PosterStatus.MISSING:
			stale = now - cached.updated_at > MISSING_RETRY_S
			if not req.refresh and not stale and not soft_override:
				return PosterResult.missing(PosterSource.CACHE)
		return None

	@staticmethod
	def _is_soft_cooldown(cached: PosterRecord) -> bool:
		"""A missing record written while the provider had no credential."""
		if cached.status != PosterStatus.MISSING:
			return False
		if cached.disabled_at is not None:
			return True
		# Records written before the explicit marker existed
		cooldown_s = (cached.cooldown_until or 0) - cached.updated_at
		return (
			0 < cooldown_s <= SOFT_COOLDOWN_MAX_S
			and cached.error_count is None
			and cached.last_error_at is None
		)

	async def _fetch(self, req: PosterRequest, key: str, cached: Optional[PosterRecord]) -> PosterResult:
		try:
			return await self._fetch_from_provider(req, key)
		except (ProviderError, httpx.HTTPError) as e:
			error_count = ((cached.error_count if cached else None) or 0) + 1
			now = self._clock()
			cooldown_until = now + next_cooldown_s(error_count)
			logger.warning(f"[Posters] Lookup failed for {key} (errors={error_count}): {e}")
			self._write(req, key, {
				"status": PosterStatus.ERROR,
				"error_count": error_count,
				"last_error_at": now,
				"cooldown_until": cooldown_until,
			})
			return PosterResult.error()

	async def _fetch_from_provider(self, req: PosterRequest, key: str) -> PosterResult:
		now = self._clock()
		api_key = self._api_key()
		if not api_key:
			self._disabled = True
			logger.warning("[Posters] TMDB_API_KEY not set, poster lookups disabled")
			self._write(req, key, {
				"status": PosterStatus.MISSING,
				"cooldown_until": now + DISABLED_COOLDOWN_S,
				"disabled_at": now,
			})
			return PosterResult.missing(PosterSource.DISABLED)

		if now < self._provider_cooldown_until:
			return PosterResult.cooldown(self._provider_cooldown_until)

		try:
			results = await self.provider.search(api_key, req.title, req.type, req.year)
		except ProviderError as e:
			if e.status == 429 or (e.status or 0) >= 500:
				self._provider_cooldown_until = self._clock() + PROVIDER_COOLDOWN_S
				logger.warning(f"[Posters] Provider cooling down for {PROVIDER_COOLDOWN_S}s after HTTP {e.status}")
			raise

		first = next(
			(r for r in results if isinstance(r.get("backdrop_path"), str) or isinstance(r.get("poster_path"), str)),
			None,
		)
		if first is None:
			self._write(req, key, {
				"status": PosterStatus.MISSING,
				"cooldown_until": now + MISSING_RETRY_S,
				"disabled_at": None,
			})
			return PosterResult.missing(PosterSource.PROVIDER)

		backdrop = first.get("backdrop_path") if isinstance(first.get("backdrop_path"), str) else None
		poster = first.get("poster_path") if isinstance(first.get("poster_path"), str) else None
		poster_url = f"{TMDB_POSTER_BASE}{poster}" if poster else None
		thumb_url = f"{TMDB_BACKDROP_BASE}{backdrop}" if backdrop else poster_url
		self._write(req, key, {
			"status": PosterStatus.READY,
			"tmdb_id": first.get("id") if isinstance(first.get("id"), int) else None,
			"poster_path": poster,
			"backdrop_path": backdrop,
			"poster_url": poster_url,
			"thumb_url": thumb_url,
			"cooldown_until": None,
			"disabled_at": None,
		})
		return PosterResult.ready(thumb_url, PosterSource.PROVIDER)

	def _write(self, req: PosterRequest, key: str, fields: Dict[str, Any]) -> None:
		"""Schedule a cache upsert without blocking the caller."""
		record = {
			"show_id": req.show_id,
			"title": req.title,
			"type": req.type or "",
			"year": req.year,
			**fields,
			"updated_at": self._clock(),
		}
		task = asyncio.ensure_future(self._persist(key, record))
		self._pending_writes.add(task)
		task.add_done_callback(self._pending_writes.discard)

	async def _persist(self, key: str, record: Dict[str, Any]) -> None:
		try:
			await self.store.upsert(key, record)
		except Exception as e:
			logger.warning(f"[Posters] Cache write failed for {key}: {e}")

	async def flush(self) -> None:
		"""Wait for scheduled cache writes to land."""
		while self._pending_writes:
			await asyncio.gather(*list(self._pending_writes))
