"""Application configuration management."""
from functools import lru_cache
import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine.url import make_url

SQLITE_LOCAL_URL = "sqlite:///./bonus_ledger.db"

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from BONUS_LEDGER_* environment variables or a .env file."""

    # Database
    database_url: str = SQLITE_LOCAL_URL
    db_pool_size: int = 5
    db_max_overflow: int = 10
    statement_timeout_ms: int = 3000  # Budget for every storage call
    lock_timeout_seconds: float = 10.0  # Max wait for the per-user lock

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Ledger rules
    default_lifetime_days: int = 30
    expiring_horizon_days: int = 7
    max_lifetime_days: int = 3650  # Keeps expires_at inside the datetime range
    max_horizon_days: int = 3650

    model_config = SettingsConfigDict(env_prefix="BONUS_LEDGER_", env_file=".env", extra="ignore")

    @field_validator(
        "statement_timeout_ms",
        "lock_timeout_seconds",
        "default_lifetime_days",
        "expiring_horizon_days",
        "max_lifetime_days",
        "max_horizon_days",
    )
    @classmethod
    def must_be_positive(cls, value, info):
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def defaults_within_limits(self):
        if self.default_lifetime_days > self.max_lifetime_days:
            raise ValueError("default_lifetime_days must not exceed max_lifetime_days")
        if self.expiring_horizon_days > self.max_horizon_days:
            raise ValueError("expiring_horizon_days must not exceed max_horizon_days")
        return self

    @model_validator(mode="after")
    def normalize_database_url(self):
        """Fall back to SQLite when empty and normalize legacy Postgres schemes."""
        url = self.database_url
        if not url:
            logger.warning("Empty DATABASE_URL, using SQLite fallback")
            self.database_url = SQLITE_LOCAL_URL
            return self

        parsed = make_url(url)
        if parsed.drivername == "postgres":
            self.database_url = parsed.set(drivername="postgresql").render_as_string(hide_password=False)
        return self

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.database_url).get_backend_name() == "sqlite"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
