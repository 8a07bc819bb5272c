"""
Tests for the entry store.
"""
from datetime import timedelta
from uuid import UUID

import pytest
from sqlalchemy.exc import IntegrityError

from bonus_ledger.database import transaction
from bonus_ledger.entries import BonusEntry, EntryStore
from bonus_ledger.models import EntryStatus

from .conftest import START

USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")


class TestEntryStore:
    """Test storage operations directly."""

    def test_insert_derives_expiry(self, session_factory, clock):
        with transaction(session_factory) as db:
            entry = EntryStore(db, clock=clock).insert(USER_ID, 10, 14)

        assert entry.id is not None
        assert entry.created_at == START
        assert entry.expires_at == START + timedelta(days=14)
        assert entry.status == EntryStatus.ACTIVE

    def test_active_entries_ordered_by_age_then_insertion(self, session_factory, clock):
        with transaction(session_factory) as db:
            store = EntryStore(db, clock=clock)
            newer = store.insert(USER_ID, 1, 30)
            older = store.insert(USER_ID, 2, 30, created_at=START - timedelta(days=1))
            same_age = store.insert(USER_ID, 3, 30)

        with session_factory() as db:
            ids = [e.id for e in EntryStore(db, clock=clock).get_active_entries(USER_ID)]

        assert ids == [older.id, newer.id, same_age.id]

    def test_locked_read_requires_transaction(self, session_factory, clock):
        with session_factory() as db:
            with pytest.raises(RuntimeError):
                EntryStore(db, clock=clock).get_active_entries_for_update(USER_ID)

    def test_locked_read_inside_transaction(self, session_factory, clock):
        with transaction(session_factory) as db:
            store = EntryStore(db, clock=clock)
            store.insert(USER_ID, 5, 30)
            store.insert(USER_ID, 7, 30)

        with transaction(session_factory) as db:
            entries = EntryStore(db, clock=clock).get_active_entries_for_update(USER_ID)

        assert [e.amount for e in entries] == [5, 7]

    def test_expire_overdue_counts_rows(self, session_factory, clock):
        with transaction(session_factory) as db:
            store = EntryStore(db, clock=clock)
            store.insert(USER_ID, 5, 1)
            store.insert(USER_ID, 7, 2)
            store.insert(USER_ID, 9, 3)

        clock.advance(days=2)
        with transaction(session_factory) as db:
            assert EntryStore(db, clock=clock).expire_overdue() == 2

    def test_amount_must_stay_positive(self, session_factory):
        with pytest.raises(IntegrityError):
            with session_factory() as db, db.begin():
                db.add(BonusEntry(
                    user_id=USER_ID,
                    amount=0,
                    created_at=START,
                    expires_at=START + timedelta(days=1),
                    lifetime_days=1,
                    status=EntryStatus.ACTIVE,
                ))
