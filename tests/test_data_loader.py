"""
Tests for catalog loading.
"""

import json

import pytest

from vibe_search.data_loader import DataLoader, build_document_text, parse_year

CSV_TEXT = (
	"show_id,type,title,director,cast,country,date_added,release_year,rating,duration,listed_in,description\n"
	's1,Movie,Dick Johnson Is Dead,Kirsten Johnson,,United States,"September 25, 2021",2020,PG-13,90 min,Documentaries,"As her father nears the end of his life, filmmaker Kirsten Johnson stages his death."\n'
	's2,TV Show,Blood & Water,,"Ama Qamata, Khosi Ngema",South Africa,"September 24, 2021",2021,TV-MA,2 Seasons,"International TV Shows, TV Dramas, TV Mysteries","After crossing paths at a party,\na Cape Town teen sets out to prove a swimmer is her sister."\n'
	',Movie,No Id,,,,,,,,,\n'
	's3,Movie,Undated,,,,,,,,,\n'
)


def write_csv(tmp_path):
	path = tmp_path / "netflix.csv"
	path.write_text(CSV_TEXT, encoding="utf-8")
	return path


def test_load_titles_from_csv(tmp_path):
	titles = DataLoader().load(str(write_csv(tmp_path)))

	assert [t.show_id for t in titles] == ["s1", "s2", "s3"]
	show = titles[1]
	assert show.type == "TV Show"
	assert show.release_year == 2021
	assert show.cast == "Ama Qamata, Khosi Ngema"
	assert show.genres == "International TV Shows, TV Dramas, TV Mysteries"
	assert show.genres_list == ["Drama", "Mystery"]
	assert "\n" in show.description
	assert titles[2].release_year is None


def test_load_respects_limit(tmp_path):
	titles = DataLoader().load(str(write_csv(tmp_path)), limit=1)
	assert len(titles) == 1


def test_load_titles_from_jsonl(tmp_path):
	path = tmp_path / "titles.jsonl"
	rows = [
		{"show_id": "s9", "type": "Movie", "title": "Vectors", "release_year": "0", "genres": "Horror Movies", "embedding": [1, 0]},
	]
	path.write_text("\n".join(json.dumps(r) for r in rows) + "\nnot json\n\n", encoding="utf-8")

	titles = DataLoader().load(str(path))

	assert len(titles) == 1
	assert titles[0].release_year is None
	assert titles[0].genres_list == ["Horror"]
	assert titles[0].embedding == [1.0, 0.0]


def test_missing_file_raises():
	with pytest.raises(FileNotFoundError):
		DataLoader().load("does/not/exist.csv")


def test_parse_year():
	assert parse_year("2019") == 2019
	assert parse_year("2019.0") == 2019
	assert parse_year("") is None
	assert parse_year("0") is None
	assert parse_year(None) is None
	assert parse_year("soon") is None


def test_document_text_lists_present_fields_in_order(tmp_path):
	title = DataLoader().load(str(write_csv(tmp_path)))[0]
	text = build_document_text(title)
	lines = text.split("\n")
	assert lines[0] == "Title: Dick Johnson Is Dead"
	assert lines[1] == "Type: Movie"
	assert lines[2] == "Year: 2020"
	assert [line.split(":")[0] for line in lines] == [
		"Title", "Type", "Year", "Rating", "Duration", "Genres", "Country", "Director", "Description",
	]
