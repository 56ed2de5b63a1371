"""
Canonical genre handling.
Maps raw catalog genre labels (e.g. "International TV Shows, Stand-Up Comedy") onto a fixed
canonical list, and builds matchers used when filtering catalogs that lack the precomputed list.
"""

import re  # raw-genre matchers
from typing import Dict, List, Optional, Pattern  # type hints

from rapidfuzz import fuzz, process  # typo-tolerant genre resolution

from loguru import logger  # console logger


CANONICAL_GENRES: List[str] = [
	"Action",
	"Adventure",
	"Anime",
	"Animation",
	"Biography",
	"Comedy",
	"Crime",
	"Documentary",
	"Drama",
	"Family",
	"Fantasy",
	"History",
	"Horror",
	"Kids",
	"Musical",
	"Mystery",
	"Reality",
	"Romance",
	"Sci-Fi",
	"Sports",
	"Thriller",
	"War",
	"Western",
]

# Ordered substring rules; first hit wins
_CANONICAL_RULES = [
	(("anime",), "Anime"),
	(("documentar", "docuseries"), "Documentary"),
	(("biograph",), "Biography"),
	(("histor",), "History"),
	(("war",), "War"),
	(("western",), "Western"),
	(("sports",), "Sports"),
	(("reality",), "Reality"),
	(("stand-up",), "Comedy"),
	(("comed",), "Comedy"),
	(("crime",), "Crime"),
	(("thriller",), "Thriller"),
	(("myster",), "Mystery"),
	(("horror",), "Horror"),
	(("sci-fi",), "Sci-Fi"),
	(("fantasy",), "Fantasy"),
	(("action",), "Action"),
	(("adventure",), "Adventure"),
	(("romantic",), "Romance"),
	(("drama",), "Drama"),
	(("music", "musical"), "Musical"),
	(("kids tv",), "Kids"),
	(("children", "family", "kids"), "Family"),
	(("animation",), "Animation"),
	(("faith", "spiritual"), "Documentary"),
	(("independent", "classic", "cult"), "Drama"),
	(("lgbtq",), "Drama"),
]

# Raw-string matchers per canonical genre, mirroring _CANONICAL_RULES
CANONICAL_GENRE_MATCHERS: Dict[str, Pattern] = {
	"Action": re.compile(r"action", re.I),
	"Adventure": re.compile(r"adventure", re.I),
	"Anime": re.compile(r"anime", re.I),
	"Animation": re.compile(r"animation", re.I),
	"Biography": re.compile(r"biograph", re.I),
	"Comedy": re.compile(r"stand-up|comed", re.I),
	"Crime": re.compile(r"crime", re.I),
	"Documentary": re.compile(r"documentar|docuseries|faith|spiritual", re.I),
	"Drama": re.compile(r"drama", re.I),
	"Family": re.compile(r"children|family|kids", re.I),
	"Fantasy": re.compile(r"fantasy", re.I),
	"History": re.compile(r"histor", re.I),
	"Horror": re.compile(r"horror", re.I),
	"Kids": re.compile(r"kids tv", re.I),
	"Musical": re.compile(r"music|musical", re.I),
	"Mystery": re.compile(r"myster", re.I),
	"Reality": re.compile(r"reality", re.I),
	"Romance": re.compile(r"romantic", re.I),
	"Sci-Fi": re.compile(r"sci-fi", re.I),
	"Sports": re.compile(r"sports", re.I),
	"Thriller": re.compile(r"thriller", re.I),
	"War": re.compile(r"war", re.I),
	"Western": re.compile(r"western", re.I),
}

_LOWER_CANONICAL = {g.lower(): g for g in CANONICAL_GENRES}  # lookup for case-insensitive matches


def split_genres(genres: str) -> List[str]:
	"""Split a comma-joined genre string into trimmed, non-empty labels."""
	if not genres:
		return []
	return [g.strip() for g in genres.split(",") if g.strip()]


def canonicalize_genre(raw: str) -> Optional[str]:
	"""Map one raw genre label to its canonical name, or None when it carries no genre signal."""
	g = (raw or "").lower().strip()
	if not g:
		return None
	if "international" in g:  # a region marker, not a genre
		return None
	for needles, canonical in _CANONICAL_RULES:
		if any(n in g for n in needles):
			return canonical
	return None


def normalized_genres(genres: str) -> List[str]:
	"""Canonical genres for a raw comma-joined string, deduplicated in first-seen order."""
	out: List[str] = []
	for label in split_genres(genres):
		canonical = canonicalize_genre(label)
		if canonical and canonical not in out:
			out.append(canonical)
	return out


def genre_regex(genre: str) -> Pattern:
	"""Matcher over the raw genre string for a requested genre."""
	matcher = CANONICAL_GENRE_MATCHERS.get(genre)
	if matcher:
		return matcher
	# Non-canonical request: match a whole comma-delimited label
	return re.compile(r"(^|,\s*)" + re.escape(genre.strip()) + r"(,|$)", re.I)


def resolve_genre(requested: Optional[str]) -> Optional[str]:
	"""
	Resolve a user-supplied genre filter to a canonical genre.
	Tries a case-insensitive exact match, then a fuzzy match (ratio >= 88); otherwise returns the input trimmed.
	"""
	if not requested or not requested.strip() or requested.strip().lower() == "all":
		return None
	value = requested.strip()
	exact = _LOWER_CANONICAL.get(value.lower())
	if exact:
		return exact
	match = process.extractOne(value.lower(), list(_LOWER_CANONICAL.keys()), scorer=fuzz.ratio)
	if match and match[1] >= 88:
		logger.debug(f"[Genres] Fuzzy genre match: '{value}' -> '{_LOWER_CANONICAL[match[0]]}' (score={match[1]:.0f})")
		return _LOWER_CANONICAL[match[0]]
	return value
