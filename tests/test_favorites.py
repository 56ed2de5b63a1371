"""
Tests for favorites owner resolution and bookkeeping.
"""

import numpy as np
import pytest

from vibe_search.exceptions import MissingOwnerError, TitleNotFoundError
from vibe_search.favorites import FavoritesService, resolve_owner
from vibe_search.models import FavoriteOwner, Title
from vibe_search.vector_store import FaissTitleStore


class TickingClock:
	def __init__(self):
		self.now = 100.0

	def __call__(self):
		self.now += 1
		return self.now


def build_service():
	titles = [Title(show_id=f"s{i}", type="Movie", title=f"Title {i}") for i in range(5)]
	store = FaissTitleStore(2)
	store.add_titles(titles, np.ones((5, 2), dtype="float32"))
	return FavoritesService(store, clock=TickingClock())


def test_resolve_owner_prefers_user_then_session():
	assert resolve_owner("u1", "sess") == FavoriteOwner("user", "u1")
	assert resolve_owner(None, " sess ") == FavoriteOwner("session", "sess")
	assert resolve_owner("  ", "sess") == FavoriteOwner("session", "sess")
	with pytest.raises(MissingOwnerError):
		resolve_owner(None, "")


@pytest.mark.asyncio
async def test_toggle_adds_then_removes():
	service = build_service()
	owner = FavoriteOwner("user", "u1")

	assert await service.toggle(owner, "s1") is True
	assert await service.favorites_for(owner, ["s1", "s2"]) == {"s1"}
	assert await service.toggle(owner, "s1") is False
	assert await service.favorites_for(owner, ["s1", "s2"]) == set()


@pytest.mark.asyncio
async def test_toggle_unknown_title_raises():
	service = build_service()
	with pytest.raises(TitleNotFoundError) as excinfo:
		await service.toggle(FavoriteOwner("session", "abc"), "nope")
	assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_list_is_newest_first_and_paginated():
	service = build_service()
	owner = FavoriteOwner("user", "u1")
	for show_id in ("s0", "s3", "s1", "s4"):
		await service.toggle(owner, show_id)

	total, first_page = await service.list(owner, page=1, page_size=3)
	_, second_page = await service.list(owner, page=2, page_size=3)

	assert total == 4
	assert [t.show_id for t in first_page] == ["s4", "s1", "s3"]
	assert [t.show_id for t in second_page] == ["s0"]


@pytest.mark.asyncio
async def test_owners_are_isolated():
	service = build_service()
	await service.toggle(FavoriteOwner("user", "u1"), "s2")
	total, titles = await service.list(FavoriteOwner("session", "u1"))
	assert total == 0
	assert titles == []
