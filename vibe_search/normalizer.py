"""
Query normalization.
Cleans raw user text and lightly destems single-word queries so they line up with catalog vocabulary.
"""

import re  # character-class cleanup

from loguru import logger  # console logger

RE_DOUBLE_QUOTES = re.compile(r"[“”]")  # curly double quotes
RE_SINGLE_QUOTES = re.compile(r"[’]")  # curly apostrophe
RE_DISALLOWED = re.compile(r"[^a-zA-Z0-9\s'-]")  # keep letters, digits, space, hyphen, apostrophe
RE_WHITESPACE = re.compile(r"\s+")


def normalize_query(raw: str) -> str:
	"""
	Fold curly quotes, strip punctuation, collapse whitespace.
	A single plain word additionally loses a trailing "ing", "ed" or "s" when long enough.
	"""
	trimmed = (raw or "").strip()
	if not trimmed:  # empty input short-circuits search
		return ""

	cleaned = RE_DOUBLE_QUOTES.sub('"', trimmed)
	cleaned = RE_SINGLE_QUOTES.sub("'", cleaned)
	cleaned = RE_DISALLOWED.sub(" ", cleaned)
	cleaned = RE_WHITESPACE.sub(" ", cleaned).strip()

	parts = cleaned.split(" ") if cleaned else []
	if len(parts) != 1:  # phrases are matched as typed
		return cleaned

	word = parts[0]
	stemmed = _destem(word)
	if stemmed != word:
		logger.debug(f"[Normalizer] Destemmed '{word}' -> '{stemmed}'")
	return stemmed


def _destem(word: str) -> str:
	# Hyphenated and possessive words are left alone
	if "-" in word or "'" in word:
		return word
	lower = word.lower()
	if len(lower) >= 7 and lower.endswith("ing"):
		return word[:-3]
	if len(lower) >= 6 and lower.endswith("ed"):
		return word[:-2]
	if lower == "series":
		return word
	if len(lower) >= 6 and lower.endswith("s"):
		return word[:-1]
	return word
