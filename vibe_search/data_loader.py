"""
Data loading module.
Loads the title catalog from the Netflix CSV export (or JSON Lines) into Title records and
builds the per-title document text that gets embedded at ingest time.
"""

# Standard libs for CSV/JSON parsing and paths
import csv  # quoted, multi-line CSV cells
import json  # read JSON lines
from pathlib import Path  # filesystem-safe paths
from typing import Any, Dict, List, Optional  # type hints

# Console logging
from loguru import logger  # console logger

from .genres import normalized_genres  # canonical genre list per title
from .models import Title  # catalog record


def build_document_text(title: Title) -> str:
	"""
	Labelled multi-line text for the embedding model; empty fields are left out.
	"""
	parts = [
		f"Title: {title.title}",
		f"Type: {title.type}",
		f"Year: {title.release_year}" if title.release_year else "",
		f"Rating: {title.rating}" if title.rating else "",
		f"Duration: {title.duration}" if title.duration else "",
		f"Genres: {title.genres}" if title.genres else "",
		f"Country: {title.country}" if title.country else "",
		f"Director: {title.director}" if title.director else "",
		f"Cast: {title.cast}" if title.cast else "",
		f"Description: {title.description}" if title.description else "",
	]
	return "\n".join(p for p in parts if p)


def parse_year(value: Any) -> Optional[int]:
	"""Release year as int; blank, zero, and unparsable values become None."""
	if value is None:
		return None
	try:
		year = int(float(str(value).strip()))
	except ValueError:
		return None
	return year or None


class DataLoader:
	"""
	Reads catalog rows and converts them to Title records.
	"""

	def load(self, filepath: str, limit: Optional[int] = None) -> List[Title]:
		"""Dispatch on extension: .jsonl/.json lines, anything else is read as CSV."""
		path = Path(filepath)
		if path.suffix.lower() in (".jsonl", ".json"):
			return self.load_titles_from_jsonl(str(path), limit=limit)
		return self.load_titles_from_csv(str(path), limit=limit)

	def load_titles_from_csv(self, filepath: str, limit: Optional[int] = None) -> List[Title]:
		filepath = Path(filepath)
		if not filepath.exists():
			raise FileNotFoundError(f"Catalog file not found: {filepath}")

		logger.info(f"[DataLoader] Loading titles from {filepath}...")
		titles: List[Title] = []
		with open(filepath, "r", encoding="utf-8", newline="") as f:
			for row_num, row in enumerate(csv.DictReader(f), 2):  # header is line 1
				if limit and len(titles) >= limit:
					break
				title = self._parse_row(row, row_num)
				if title is not None:
					titles.append(title)

		logger.info(f"[DataLoader] Successfully loaded {len(titles)} titles.")
		return titles

	def load_titles_from_jsonl(self, filepath: str, limit: Optional[int] = None) -> List[Title]:
		filepath = Path(filepath)
		if not filepath.exists():
			raise FileNotFoundError(f"Catalog file not found: {filepath}")

		logger.info(f"[DataLoader] Loading titles from {filepath}...")
		titles: List[Title] = []
		with open(filepath, "r", encoding="utf-8") as f:
			for line_num, line in enumerate(f, 1):
				if limit and len(titles) >= limit:
					break
				if not line.strip():
					continue
				try:
					data = json.loads(line)
				except json.JSONDecodeError as e:
					logger.warning(f"[DataLoader] Skipping invalid JSON at line {line_num}: {e}")
					continue
				title = self._parse_row(data, line_num)
				if title is not None:
					titles.append(title)

		logger.info(f"[DataLoader] Successfully loaded {len(titles)} titles.")
		return titles

	def _parse_row(self, data: Dict[str, Any], line_num: int) -> Optional[Title]:
		"""Convert one raw row to a Title; rows without an id or title are skipped."""
		show_id = _text(data.get("show_id"))
		name = _text(data.get("title"))
		if not show_id or not name:
			logger.warning(f"[DataLoader] Skipping row {line_num}: missing show_id or title")
			return None

		# Kaggle exports call the genre column "listed_in"
		genres = _text(data.get("genres") or data.get("listed_in"))
		embedding = data.get("embedding")
		return Title(
			show_id=show_id,
			type=_text(data.get("type")),
			title=name,
			director=_text(data.get("director")),
			cast=_text(data.get("cast")),
			country=_text(data.get("country")),
			date_added=_text(data.get("date_added")),
			release_year=parse_year(data.get("release_year")),
			rating=_text(data.get("rating")),
			duration=_text(data.get("duration")),
			genres=genres,
			genres_list=normalized_genres(genres),
			description=_text(data.get("description")),
			embedding=[float(v) for v in embedding] if isinstance(embedding, list) else None,
		)


def _text(value: Any) -> str:
	if value is None:
		return ""
	return str(value).strip()
