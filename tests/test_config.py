"""
Tests for settings and credential lookups.
"""

from vibe_search.config import Settings, env_credential


def test_tmdb_tunables_are_clamped(monkeypatch):
	monkeypatch.setenv("TMDB_CONCURRENCY", "50")
	monkeypatch.setenv("TMDB_MIN_DELAY_MS", "-5")
	settings = Settings(_env_file=None)
	assert settings.TMDB_CONCURRENCY == 12
	assert settings.TMDB_MIN_DELAY_MS == 0


def test_defaults(monkeypatch):
	monkeypatch.delenv("TMDB_CONCURRENCY", raising=False)
	monkeypatch.delenv("EMBEDDING_MODEL", raising=False)
	settings = Settings(_env_file=None)
	assert settings.TMDB_CONCURRENCY == 6
	assert settings.EMBEDDING_MODEL == "voyage-4-lite"


def test_env_credential_rereads_environment(monkeypatch):
	monkeypatch.delenv("TMDB_API_KEY", raising=False)
	read = env_credential("TMDB_API_KEY")
	assert read() is None

	monkeypatch.setenv("TMDB_API_KEY", "  ")
	assert read() is None

	monkeypatch.setenv("TMDB_API_KEY", "abc")
	assert read() == "abc"


def test_env_credential_falls_back_to_loaded_value(monkeypatch):
	monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
	assert env_credential("OPENROUTER_API_KEY", "from-dotenv")() == "from-dotenv"
