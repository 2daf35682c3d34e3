"""
Pydantic Settings — centralized configuration loaded from environment variables.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ──────────────────────────────
    POSTGRES_USER: str = "stamping_user"
    POSTGRES_PASSWORD: str = "stamping_pass"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "stamping_db"

    # Full SQLAlchemy URL, e.g. sqlite+aiosqlite:///./stamping.db for local dev
    DATABASE_URL_OVERRIDE: str = ""

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for app runtime (asyncpg)."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def DATABASE_URL_SYNC(self) -> str:
        """Sync URL for Alembic migrations (psycopg2)."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE.replace("+aiosqlite", "").replace("+asyncpg", "")
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ── Redis / Celery ────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # ── Certification provider ────────────────
    PROVIDER_BASE_URL: str = ""
    PROVIDER_USER: str = ""
    PROVIDER_PASSWORD: str = ""
    PROVIDER_MODE: str = "test"

    # ── Locking / timeouts ────────────────────
    LOCK_TIMEOUT_SECONDS: int = 300
    PROVIDER_CALL_TIMEOUT_SECONDS: float = 120.0
    LOCK_SAFETY_MARGIN_SECONDS: int = 60
    REAPER_INTERVAL_SECONDS: float = 60.0

    # ── Retry policy ──────────────────────────
    MAX_SUBMISSION_RETRIES: int = 5
    RETRY_BACKOFF_BASE_SECONDS: float = 2.0
    RETRY_BACKOFF_MAX_SECONDS: float = 3600.0
    CONTENTION_RETRY_DELAY_SECONDS: float = 15.0
    MAX_CONTENTION_RETRIES: int = 40
    UNKNOWN_ERROR_RETRY_BUDGET: int = 1

    # ── Application ───────────────────────────
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ["../.env", ".env"], "extra": "ignore"}

    @model_validator(mode="after")
    def _lock_outlives_provider_call(self) -> "Settings":
        # The lock must outlive the provider call.
        required = self.PROVIDER_CALL_TIMEOUT_SECONDS + self.LOCK_SAFETY_MARGIN_SECONDS
        if self.LOCK_TIMEOUT_SECONDS < required:
            raise ValueError(
                f"LOCK_TIMEOUT_SECONDS ({self.LOCK_TIMEOUT_SECONDS}) must be at least "
                f"PROVIDER_CALL_TIMEOUT_SECONDS + LOCK_SAFETY_MARGIN_SECONDS ({required:g})"
            )
        return self


settings = Settings()
