"""
Tests for settings loading and validation.
"""
import pytest
from pydantic import ValidationError

from bonus_ledger.config import SQLITE_LOCAL_URL, Settings


class TestSettings:
    """Test Settings defaults, overrides and validation."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BONUS_LEDGER_ENVIRONMENT", raising=False)

        settings = Settings(_env_file=None)

        assert settings.database_url == SQLITE_LOCAL_URL
        assert settings.default_lifetime_days == 30
        assert settings.expiring_horizon_days == 7
        assert settings.statement_timeout_ms == 3000
        assert settings.is_sqlite

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BONUS_LEDGER_DEFAULT_LIFETIME_DAYS", "45")
        monkeypatch.setenv("BONUS_LEDGER_LOCK_TIMEOUT_SECONDS", "2.5")

        settings = Settings(_env_file=None)

        assert settings.default_lifetime_days == 45
        assert settings.lock_timeout_seconds == 2.5

    @pytest.mark.parametrize("field", [
        "statement_timeout_ms",
        "lock_timeout_seconds",
        "default_lifetime_days",
        "expiring_horizon_days",
        "max_lifetime_days",
        "max_horizon_days",
    ])
    def test_rejects_non_positive_values(self, field):
        with pytest.raises(ValidationError, match=field):
            Settings(_env_file=None, **{field: 0})

    def test_defaults_must_fit_their_limits(self):
        with pytest.raises(ValidationError, match="max_lifetime_days"):
            Settings(_env_file=None, default_lifetime_days=400, max_lifetime_days=365)
        with pytest.raises(ValidationError, match="max_horizon_days"):
            Settings(_env_file=None, expiring_horizon_days=40, max_horizon_days=30)

    def test_log_level_is_normalized(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_rejects_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="chatty")

    def test_legacy_postgres_scheme_is_normalized(self):
        settings = Settings(_env_file=None, database_url="postgres://ledger:secret@db:5432/ledger")

        assert settings.database_url == "postgresql://ledger:secret@db:5432/ledger"
        assert not settings.is_sqlite

    def test_empty_database_url_falls_back_to_sqlite(self):
        assert Settings(_env_file=None, database_url="").database_url == SQLITE_LOCAL_URL
