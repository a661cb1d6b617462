"""
Unit tests for the settings module.
"""

import pytest

from event_ingest.configs.settings import Settings, get_settings


class TestSettings:
    """Tests for Settings defaults and helpers."""

    def test_defaults(self, monkeypatch):
        for name in ("WORKER_CONCURRENCY", "TASK_TIMEOUT_S", "EXTRACTION_TEMPERATURE"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.EXTRACTION_TEMPERATURE == 0.2
        assert settings.EXTRACTION_MAX_TOKENS == 1000
        assert settings.RATE_LIMIT_MAX_RETRIES == 5
        assert settings.WORKER_CONCURRENCY == 4
        assert settings.TASK_TIMEOUT_S == 300.0
        assert settings.SITES_CONFIG_PATH.name == "sites.yaml"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("WORKER_CONCURRENCY", "8")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        settings = Settings(_env_file=None)

        assert settings.WORKER_CONCURRENCY == 8
        assert settings.OPENAI_API_KEY.get_secret_value() == "sk-secret"
        assert "sk-secret" not in repr(settings)

    def test_invalid_value(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, WORKER_CONCURRENCY=0)

    def test_psycopg2_params(self):
        settings = Settings(
            _env_file=None,
            DATABASE_URL="postgresql://user:pw@db.local:5433/events",
        )
        assert settings.get_psycopg2_params() == {
            "host": "db.local",
            "port": 5433,
            "dbname": "events",
            "user": "user",
            "password": "pw",
        }

    def test_psycopg2_params_without_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError, match="DATABASE_URL"):
            Settings(_env_file=None).get_psycopg2_params()

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
