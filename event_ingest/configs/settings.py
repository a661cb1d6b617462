"""Environment-driven settings for the venue event ingestion service."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import make_url

REPO_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    Service settings, read from the process environment and an optional
    ``.env`` file at the repository root.

    Components receive the values they need at construction time (see the
    ``from_settings`` classmethods); nothing reads the environment later.
    """

    # -------------------------------------------------------------------------
    # RUNTIME
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False

    # -------------------------------------------------------------------------
    # STORE
    # -------------------------------------------------------------------------
    # Unset: the in-memory store is used (no persistence across runs)
    DATABASE_URL: str | None = None

    # -------------------------------------------------------------------------
    # TEXT EXTRACTION (OpenAI-compatible chat completions)
    # -------------------------------------------------------------------------
    OPENAI_API_KEY: SecretStr | None = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    EXTRACTION_MODEL: str = "gpt-4o-mini"
    EXTRACTION_MAX_TOKENS: int = Field(default=1000, gt=0)
    EXTRACTION_TEMPERATURE: float = Field(default=0.2, ge=0.0, le=2.0)
    EXTRACTION_TIMEOUT_S: float = Field(default=60.0, gt=0)

    # HTTP 429 handling
    RATE_LIMIT_MAX_RETRIES: int = Field(default=5, ge=0)
    RATE_LIMIT_BASE_DELAY_S: float = Field(default=5.0, ge=0)
    RATE_LIMIT_MAX_DELAY_S: float = Field(default=60.0, ge=0)
    RATE_LIMIT_MAX_TOTAL_WAIT_S: float = Field(default=180.0, ge=0)
    RATE_LIMIT_JITTER: float = Field(default=0.25, ge=0.0, le=1.0)

    # -------------------------------------------------------------------------
    # WORKER POOL
    # -------------------------------------------------------------------------
    WORKER_CONCURRENCY: int = Field(default=4, gt=0)
    TASK_TIMEOUT_S: float = Field(default=300.0, gt=0)

    # -------------------------------------------------------------------------
    # PATHS
    # -------------------------------------------------------------------------
    BASE_DIR: Path = REPO_ROOT
    SITES_CONFIG_PATH: Path = Path(__file__).resolve().parent / "sites.yaml"

    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_psycopg2_params(self) -> dict:
        """
        Split DATABASE_URL into keyword arguments for psycopg2.connect.

        Raises
        ------
        ValueError
            If DATABASE_URL is not configured.
        """
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")

        url = make_url(self.DATABASE_URL)
        return {
            "host": url.host,
            "port": url.port,
            "dbname": url.database,
            "user": url.username,
            "password": url.password,
        }


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings instance (built on first call)."""
    return Settings()
