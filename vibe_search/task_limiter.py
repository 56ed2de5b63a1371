"""
Bounded-concurrency task queue.
Starts queued coroutines in FIFO order, never more than `concurrency` at once and never two
starts closer together than `min_delay_s`. Each caller awaits a future bound to its task.
"""

import asyncio  # event loop primitives
from collections import deque  # FIFO queue
from typing import Awaitable, Callable, Deque, Optional, Set, Tuple, TypeVar  # type hints

from loguru import logger  # console logger

T = TypeVar("T")
TaskFactory = Callable[[], Awaitable[T]]


class TaskLimiter:
	def __init__(self, concurrency: int, min_delay_s: float = 0.0, name: str = "limiter"):
		if concurrency < 1:
			raise ValueError("concurrency must be at least 1")
		self.concurrency = concurrency
		self.min_delay_s = max(0.0, min_delay_s)
		self.name = name
		self._queue: Deque[Tuple[TaskFactory, asyncio.Future]] = deque()
		self._active = 0
		self._last_start = float("-inf")
		self._pump_task: Optional[asyncio.Task] = None
		self._running: Set[asyncio.Task] = set()  # strong refs to in-flight tasks

	@property
	def active(self) -> int:
		return self._active

	@property
	def pending(self) -> int:
		return len(self._queue)

	async def run(self, factory: TaskFactory) -> T:
		"""Queue `factory` and wait for its result (or exception)."""
		future = asyncio.get_running_loop().create_future()
		self._queue.append((factory, future))
		self._drain()
		return await future

	def _drain(self) -> None:
		# A live pump re-checks capacity after every sleep, so one pump at a time suffices
		if self._pump_task is not None and not self._pump_task.done():
			return
		if self._queue and self._active < self.concurrency:
			self._pump_task = asyncio.ensure_future(self._pump())

	async def _pump(self) -> None:
		loop = asyncio.get_running_loop()
		try:
			while self._queue and self._active < self.concurrency:
				wait = self.min_delay_s - (loop.time() - self._last_start)
				if wait > 0:
					await asyncio.sleep(wait)
					continue
				factory, future = self._queue.popleft()
				if future.done():  # caller cancelled while queued
					continue
				self._active += 1
				self._last_start = loop.time()
				task = asyncio.ensure_future(self._execute(factory, future))
				self._running.add(task)
				task.add_done_callback(self._running.discard)
		finally:
			self._pump_task = None

	async def _execute(self, factory: TaskFactory, future: asyncio.Future) -> None:
		try:
			result = await factory()
		except asyncio.CancelledError:
			future.cancel()
			raise
		except Exception as e:
			if not future.done():
				future.set_exception(e)
		else:
			if not future.done():
				future.set_result(result)
		finally:
			self._active -= 1
			logger.trace(f"[Limiter:{self.name}] task finished | active={self._active} pending={len(self._queue)}")
			self._drain()
