"""Pytest configuration and fixtures."""
import os
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

os.environ["BONUS_LEDGER_ENVIRONMENT"] = "test"

from bonus_ledger.config import Settings
from bonus_ledger.database import create_db_engine, create_session_factory, init_db
from bonus_ledger.datetime_helpers import ensure_utc
from bonus_ledger.entries import BonusEntry
from bonus_ledger.locks import LockClient
from bonus_ledger.models import EntryStatus
from bonus_ledger.service import LedgerService


START = datetime(2026, 1, 10, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Frozen clock the tests move forward explicitly."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        environment="test",
        lock_timeout_seconds=5,
    )


@pytest.fixture
def engine(test_settings):
    engine = create_db_engine(test_settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(session_factory, clock, test_settings):
    return LedgerService(
        session_factory=session_factory,
        clock=clock,
        locks=LockClient(),
        settings=test_settings,
    )


@pytest.fixture
def raw_entries(session_factory):
    """Read every stored row for a user straight from the table, bypassing the store."""
    def _load(user_id):
        with session_factory() as session:
            rows = session.scalars(
                select(BonusEntry).where(BonusEntry.user_id == user_id).order_by(BonusEntry.entry_no)
            ).all()
            return list(rows)
    return _load


@pytest.fixture
def raw_balance(raw_entries, clock):
    """Usable balance computed independently from raw rows."""
    def _balance(user_id):
        return sum(
            entry.amount for entry in raw_entries(user_id)
            if entry.status == EntryStatus.ACTIVE and ensure_utc(entry.expires_at) > clock()
        )
    return _balance
