"""
Configuration and logging setup.
Settings are read from environment variables (and an optional .env file).
"""

import os  # live credential lookups
import sys  # stderr sink for loguru
from typing import Callable, Optional  # type hints

from loguru import logger  # console logger
from pydantic import field_validator  # clamp tunables on load
from pydantic_settings import BaseSettings, SettingsConfigDict  # env-backed settings


class Settings(BaseSettings):
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	# Remote embedding / rerank provider
	VOYAGE_API_KEY: Optional[str] = None
	EMBEDDING_MODEL: str = "voyage-4-lite"
	RERANK_MODEL: str = "rerank-2.5-lite"

	# Local models used when no remote credential is configured
	LOCAL_EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"
	LOCAL_RERANK_MODEL: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"

	# Optional LLM query rewriting
	OPENROUTER_API_KEY: Optional[str] = None
	OPENROUTER_MODEL: str = "openai/gpt-oss-20b:free"

	# Poster image provider
	TMDB_API_KEY: Optional[str] = None
	TMDB_CONCURRENCY: int = 6
	TMDB_MIN_DELAY_MS: int = 75

	# Catalog and index locations
	DATA_PATH: str = "data/netflix.csv"
	INDEX_PATH: str = "models/faiss_index"

	HTTP_TIMEOUT_S: float = 15.0
	LOG_LEVEL: str = "INFO"

	# Lexical boost tuning
	LEXICAL_BOOST_WEIGHT: float = 0.02
	LEXICAL_MIN_HITS: int = 2

	@field_validator("TMDB_CONCURRENCY")
	@classmethod
	def _clamp_concurrency(cls, value: int) -> int:
		return max(1, min(12, value))

	@field_validator("TMDB_MIN_DELAY_MS")
	@classmethod
	def _clamp_delay(cls, value: int) -> int:
		return max(0, min(2000, value))


def env_credential(name: str, fallback: Optional[str] = None) -> Callable[[], Optional[str]]:
	"""
	Build a zero-argument callable that re-reads a credential from the environment on every call,
	falling back to the value loaded at startup (e.g. from .env). Blank values count as absent.
	"""
	def read() -> Optional[str]:
		value = (os.environ.get(name) or fallback or "").strip()
		return value or None
	return read


def configure_logging(level: str = "INFO") -> None:
	"""Replace loguru's default sink with a single stderr sink at the given level."""
	logger.remove()  # drop default handler to avoid duplicates on reload
	logger.add(
		sys.stderr,
		level=level.upper(),
		format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {name}:{function}:{line} - {message}",
	)
	logger.debug(f"[Config] Logging configured at level {level.upper()}")


settings = Settings()
