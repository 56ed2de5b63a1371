"""
Favorites bookkeeping.
Per-owner favorite titles, where the owner is an authenticated user or an anonymous session.
"""

import time  # created-at timestamps
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple  # type hints

from loguru import logger  # console logger

from .exceptions import MissingOwnerError, TitleNotFoundError  # caller-facing errors
from .models import MAX_PAGE, MAX_PAGE_SIZE, FavoriteOwner, Title  # shapes and clamps
from .vector_store import CorpusStore  # title existence checks

USER_OWNER = "user"
SESSION_OWNER = "session"


def resolve_owner(user_id: Optional[str] = None, session_token: Optional[str] = None) -> FavoriteOwner:
	"""Authenticated user first, then the anonymous session; neither is an error."""
	if user_id and user_id.strip():
		return FavoriteOwner(owner_type=USER_OWNER, owner_id=user_id.strip())
	if session_token and session_token.strip():
		return FavoriteOwner(owner_type=SESSION_OWNER, owner_id=session_token.strip())
	raise MissingOwnerError()


class FavoritesService:
	def __init__(self, store: CorpusStore, clock: Callable[[], float] = time.time):
		self.store = store
		self._clock = clock
		self._rows: Dict[FavoriteOwner, Dict[str, float]] = {}  # owner -> show_id -> created_at

	async def toggle(self, owner: FavoriteOwner, show_id: str) -> bool:
		"""Flip the favorite state of a title; returns True when it is now a favorite."""
		rows = self._rows.setdefault(owner, {})
		if show_id in rows:
			del rows[show_id]
			logger.debug(f"[Favorites] {owner.owner_type} removed {show_id}")
			return False
		if await self.store.get(show_id) is None:
			raise TitleNotFoundError(show_id)
		rows[show_id] = self._clock()
		logger.debug(f"[Favorites] {owner.owner_type} added {show_id}")
		return True

	async def list(self, owner: FavoriteOwner, page: int = 1, page_size: int = 20) -> Tuple[int, List[Title]]:
		"""Favorited titles, newest first, as (total, page of titles)."""
		page_size = max(1, min(MAX_PAGE_SIZE, int(page_size)))
		page = max(1, min(MAX_PAGE, int(page)))
		rows = self._rows.get(owner, {})
		ordered = sorted(rows.items(), key=lambda item: item[1], reverse=True)
		window = ordered[(page - 1) * page_size:page * page_size]
		titles = []
		for show_id, _ in window:
			title = await self.store.get(show_id)
			if title is not None:
				titles.append(title)
		return len(ordered), titles

	async def favorites_for(self, owner: FavoriteOwner, show_ids: Iterable[str]) -> Set[str]:
		"""Subset of `show_ids` the owner has favorited."""
		rows = self._rows.get(owner, {})
		return {sid for sid in show_ids if sid in rows}
