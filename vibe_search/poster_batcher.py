"""
Client-side poster batching.
Collects per-title poster requests for a short window, deduplicates them by show id, and
sends them upstream in bounded chunks. Every waiter for a show id shares one outcome.
"""

import asyncio  # timers and futures
from typing import Awaitable, Callable, Dict, List, Optional  # type hints

from loguru import logger  # console logger

from .exceptions import PosterBatchError  # unanswered show ids
from .models import PosterRequest, PosterResult  # batch item shapes
from .task_limiter import TaskLimiter  # chunk pacing

BatchSender = Callable[[List[PosterRequest]], Awaitable[Dict[str, PosterResult]]]

FLUSH_DELAY_S = 0.02
MAX_CHUNK = 80


class _Pending:
	"""Latest request for a show id plus everyone waiting on it."""

	def __init__(self, request: PosterRequest):
		self.request = request
		self.waiters: List[asyncio.Future] = []


class PosterBatcher:
	def __init__(
		self,
		send: BatchSender,
		flush_delay_s: float = FLUSH_DELAY_S,
		chunk_size: int = MAX_CHUNK,
		limiter: Optional[TaskLimiter] = None,
	):
		self._send = send
		self.flush_delay_s = flush_delay_s
		self.chunk_size = max(1, chunk_size)
		self.limiter = limiter or TaskLimiter(3, 0.2, name="poster-batch")
		self._pending: Dict[str, _Pending] = {}
		self._timer: Optional[asyncio.TimerHandle] = None
		self._dispatches = set()

	@classmethod
	def for_gateway(cls, gateway, **kwargs) -> "PosterBatcher":
		"""Batcher that resolves chunks in-process through a PosterGateway."""
		async def send(requests: List[PosterRequest]) -> Dict[str, PosterResult]:
			results = await gateway.resolve_many(requests)
			return {r.show_id: res for r, res in zip(requests, results)}
		return cls(send, **kwargs)

	async def request(self, req: PosterRequest) -> PosterResult:
		"""Queue a lookup and wait for the shared outcome of its show id."""
		if not req.show_id:
			raise ValueError("batched poster requests need a show_id")
		loop = asyncio.get_running_loop()
		future = loop.create_future()
		entry = self._pending.get(req.show_id)
		if entry is None:
			entry = self._pending[req.show_id] = _Pending(req)
		else:
			entry.request = req  # newest parameters win
		entry.waiters.append(future)
		if self._timer is None:
			self._timer = loop.call_later(self.flush_delay_s, self._flush)
		return await future

	def _flush(self) -> None:
		self._timer = None
		batch, self._pending = self._pending, {}
		if not batch:
			return
		entries = list(batch.values())
		logger.debug(f"[PosterBatcher] Flushing {len(entries)} show ids")
		for start in range(0, len(entries), self.chunk_size):
			chunk = entries[start:start + self.chunk_size]
			task = asyncio.ensure_future(self._dispatch(chunk))
			self._dispatches.add(task)
			task.add_done_callback(self._dispatches.discard)

	async def _dispatch(self, chunk: List[_Pending]) -> None:
		requests = [entry.request for entry in chunk]
		try:
			results = await self.limiter.run(lambda: self._send(requests))
		except Exception as e:
			logger.warning(f"[PosterBatcher] Chunk of {len(chunk)} failed: {e}")
			for entry in chunk:
				_reject(entry, e)
			return
		for entry in chunk:
			show_id = entry.request.show_id
			result = results.get(show_id) if isinstance(results, dict) else None
			if result is None:
				_reject(entry, PosterBatchError(show_id))
				continue
			for waiter in entry.waiters:
				if not waiter.done():
					waiter.set_result(result)


def _reject(entry: _Pending, error: Exception) -> None:
	for waiter in entry.waiters:
		if not waiter.done():
			waiter.set_exception(error)
