"""Bonus entry table and the store that reads and writes it."""
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Uuid,
    func,
    select,
    text,
    update,
)
from sqlalchemy.orm import Session

from .database import Base
from .datetime_helpers import ensure_utc, utc_now
from .models import EntryStatus

_ACTIVE = text(f"status = '{EntryStatus.ACTIVE.value}'")


class BonusEntry(Base):
    """One issued credit with its own age, lifetime and status.

    Rows are never deleted. Once a row leaves ``active`` it is only written
    again if it is spent, and then exactly once (status, spent_at, amount).
    """
    __tablename__ = "bonus_entries"

    # Insertion order
    entry_no = Column(Integer, primary_key=True, autoincrement=True)
    # FIFO position among equal created_at values; a split remainder inherits its parent's.
    fifo_seq = Column(Integer, nullable=True)
    id = Column(Uuid, nullable=False, unique=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    lifetime_days = Column(Integer, nullable=False)
    status = Column(
        SAEnum(
            EntryStatus,
            name="bonus_entry_status",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=EntryStatus.ACTIVE,
    )
    spent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_bonus_entries_amount_positive"),
        CheckConstraint("lifetime_days > 0", name="chk_bonus_entries_lifetime_positive"),
        CheckConstraint("expires_at > created_at", name="chk_bonus_entries_expires_after_created"),
        Index(
            "ix_bonus_entries_user_active",
            "user_id", "status",
            postgresql_where=_ACTIVE, sqlite_where=_ACTIVE,
        ),
        Index(
            "ix_bonus_entries_user_active_created",
            "user_id", "created_at", "fifo_seq",
            postgresql_where=_ACTIVE, sqlite_where=_ACTIVE,
        ),
        Index(
            "ix_bonus_entries_expires_active",
            "expires_at", "status",
            postgresql_where=_ACTIVE, sqlite_where=_ACTIVE,
        ),
    )

    def __repr__(self):
        return (f"<BonusEntry(id={self.id}, user_id={self.user_id}, amount={self.amount}, "
                f"status={self.status.value if self.status else None})>")


class EntryStore:
    """Persistence operations for bonus entries, bound to one session.

    Every "active" query also requires ``expires_at > now`` so that usability
    never depends on when the sweep last ran.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def _active_filter(self, user_id: UUID, now: datetime):
        return (
            BonusEntry.user_id == user_id,
            BonusEntry.status == EntryStatus.ACTIVE,
            BonusEntry.expires_at > now,
        )

    def _ordered_active(self, user_id: UUID):
        return (
            select(BonusEntry)
            .where(*self._active_filter(user_id, self.now()))
            .order_by(
                BonusEntry.created_at.asc(),
                BonusEntry.fifo_seq.asc(),
                BonusEntry.entry_no.asc(),
            )
        )

    def insert(
        self,
        user_id: UUID,
        amount: int,
        lifetime_days: int,
        created_at: Optional[datetime] = None,
        fifo_seq: Optional[int] = None,
    ) -> BonusEntry:
        """Append a new active entry and flush it so id and created_at are assigned.

        ``created_at`` and ``fifo_seq`` are only passed when a split remainder
        must keep the age and queue position of the entry it was carved from.
        Otherwise the entry queues at its own insertion number.
        """
        created_at = ensure_utc(created_at) if created_at is not None else self.now()
        entry = BonusEntry(
            id=uuid.uuid4(),
            user_id=user_id,
            amount=amount,
            created_at=created_at,
            expires_at=created_at + timedelta(days=lifetime_days),
            lifetime_days=lifetime_days,
            status=EntryStatus.ACTIVE,
            fifo_seq=fifo_seq,
        )
        self.db.add(entry)
        self.db.flush()
        if entry.fifo_seq is None:
            entry.fifo_seq = entry.entry_no
            self.db.flush()
        return entry

    def get_active_entries(self, user_id: UUID) -> list[BonusEntry]:
        """Usable entries, oldest first, without locking."""
        return list(self.db.scalars(self._ordered_active(user_id)).all())

    def get_active_entries_for_update(self, user_id: UUID) -> list[BonusEntry]:
        """Usable entries, oldest first, each row locked until the transaction ends."""
        if not self.db.in_transaction():
            raise RuntimeError("get_active_entries_for_update requires an open transaction")
        return list(self.db.scalars(self._ordered_active(user_id).with_for_update()).all())

    def mark_spent(self, entry: BonusEntry, consumed: int, spent_at: datetime) -> None:
        """Flip an active entry to spent, recording only the consumed slice."""
        entry.status = EntryStatus.SPENT
        entry.spent_at = spent_at
        entry.amount = consumed
        self.db.flush()

    def total_active_amount(self, user_id: UUID) -> int:
        query = (
            select(func.coalesce(func.sum(BonusEntry.amount), 0))
            .where(*self._active_filter(user_id, self.now()))
        )
        return int(self.db.scalar(query))

    def expiring_amounts(self, user_id: UUID, horizon: timedelta) -> list[tuple[datetime, int]]:
        """(expires_at, amount) for usable entries expiring within the horizon, soonest first."""
        now = self.now()
        query = (
            select(BonusEntry.expires_at, BonusEntry.amount)
            .where(*self._active_filter(user_id, now))
            .where(BonusEntry.expires_at <= now + horizon)
            .order_by(BonusEntry.expires_at.asc())
        )
        return [(ensure_utc(expires_at), amount) for expires_at, amount in self.db.execute(query)]

    def expire_overdue(self) -> int:
        """Move every overdue active entry to expired in one statement."""
        result = self.db.execute(
            update(BonusEntry)
            .where(BonusEntry.status == EntryStatus.ACTIVE)
            .where(BonusEntry.expires_at <= self.now())
            .values(status=EntryStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
