"""
Tests for the FAISS-backed title store.
"""

import numpy as np
import pytest

from vibe_search.models import Title, TitleFilter
from vibe_search.vector_store import FaissTitleStore, matches_store_filter


def build_store():
	titles = [
		Title(show_id="s1", type="Movie", title="Alpha", release_year=2001, rating="PG", genres="Comedies", genres_list=["Comedy"]),
		Title(show_id="s2", type="TV Show", title="Bravo", release_year=None, rating="TV-MA", genres="Korean TV Shows, TV Dramas"),
		Title(show_id="s3", type="Movie", title="Charlie", release_year=2010, rating="PG", genres="Horror Movies", genres_list=["Horror"]),
	]
	vectors = np.array([[1.0, 0.0], [0.0, 1.0], [0.6, 0.8]], dtype="float32")
	store = FaissTitleStore(2, model_name="unit")
	store.add_titles(titles, vectors)
	return store


@pytest.mark.asyncio
async def test_vector_search_returns_best_first():
	store = build_store()
	rows = await store.vector_search([2.0, 0.0], num_candidates=10, limit=2)
	assert [t.show_id for t, _ in rows] == ["s1", "s3"]
	assert rows[0][1] == pytest.approx(1.0)
	assert rows[1][1] == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_find_count_and_facets():
	store = build_store()
	assert [t.show_id for t in await store.find(TitleFilter(), "year_desc", 0, 10)] == ["s3", "s1", "s2"]
	assert [t.show_id for t in await store.find(TitleFilter(), "year_asc", 0, 10)] == ["s2", "s1", "s3"]
	assert [t.show_id for t in await store.find(TitleFilter(rating="PG"), "title_asc", 1, 10)] == ["s3"]
	assert await store.count(TitleFilter(type="Movie")) == 2
	assert await store.facets() == (["Movie", "TV Show"], ["PG", "TV-MA"], [2010, 2001])
	assert (await store.get("s2")).title == "Bravo"
	assert await store.get("missing") is None


def test_store_filter_falls_back_to_raw_genres():
	store = build_store()
	bravo = store.titles[1]
	assert matches_store_filter(bravo, TitleFilter(genre="Drama"))
	assert matches_store_filter(bravo, TitleFilter(genre="Korean TV Shows"))
	assert not matches_store_filter(bravo, TitleFilter(genre="Horror"))


def test_add_titles_validates_shapes():
	store = FaissTitleStore(2)
	with pytest.raises(ValueError):
		store.add_titles([Title(show_id="s1", type="Movie", title="A")], np.zeros((2, 2), dtype="float32"))
	with pytest.raises(ValueError):
		store.add_titles([Title(show_id="s1", type="Movie", title="A")], np.zeros((1, 3), dtype="float32"))


@pytest.mark.asyncio
async def test_save_and_load_round_trip(tmp_path):
	store = build_store()
	base = str(tmp_path / "faiss_index")
	store.save_index(base)

	assert FaissTitleStore.index_files_exist(base)
	loaded = FaissTitleStore.load_index(base)
	assert loaded.size() == 3
	assert loaded.model_name == "unit"
	rows = await loaded.vector_search([0.0, 1.0], num_candidates=10, limit=1)
	assert rows[0][0].show_id == "s2"
