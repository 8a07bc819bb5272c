from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Callable, Iterator, Optional
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import SessionLocal, apply_statement_timeout, transaction, translate_storage_error
from .datetime_helpers import utc_now
from .entries import EntryStore
from .exceptions import (
    InsufficientFundsError,
    LedgerValidationError,
    MultiplyPercentTooLargeError,
    NoBalanceToMultiplyError,
    ZeroBonusAfterMultiplyError,
)
from .locks import LockClient, lock_client as default_lock_client
from .models import (
    BonusEntrySchema,
    SpendReceipt,
    TransactionRequest,
    TransactionResult,
    TransactionType,
)

logger = logging.getLogger(__name__)

MIN_MULTIPLY_PERCENT = 1
MAX_MULTIPLY_PERCENT = 200


def _require_positive_int(field: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise LedgerValidationError(field, "must be a positive integer")


def _require_days_within(field: str, value: int, limit: int) -> None:
    _require_positive_int(field, value)
    if value > limit:
        raise LedgerValidationError(field, f"must be at most {limit}")


class LedgerService:
    """Deposits, FIFO withdrawals, balance multiplication and expiry over bonus entries.

    Each public mutation either opens its own transaction or joins the
    ``session`` it is given (the caller then commits). Withdraw and multiply
    take the per-user lock and the user's row locks before reading anything.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        clock: Callable[[], datetime] = utc_now,
        locks: Optional[LockClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or SessionLocal
        self.clock = clock
        self.locks = locks or default_lock_client

    @contextmanager
    def _unit_of_work(self, session: Optional[Session] = None) -> Iterator[Session]:
        if session is None:
            with transaction(self.session_factory, self.settings.statement_timeout_ms) as db:
                yield db
            return
        try:
            if not session.in_transaction():
                # Joined work still runs in one transaction; the caller commits it.
                session.begin()
                apply_statement_timeout(session, self.settings.statement_timeout_ms)
            yield session
        except SQLAlchemyError as exc:
            logger.error(f"Storage failure inside caller transaction: {exc!r}")
            raise translate_storage_error(exc) from exc

    @contextmanager
    def _user_lock(self, user_id: UUID) -> Iterator[None]:
        with self.locks.lock(f"bonus_entries:{user_id}", timeout=self.settings.lock_timeout_seconds):
            yield

    def _store(self, db: Session) -> EntryStore:
        return EntryStore(db, clock=self.clock)

    def _resolve_lifetime(self, lifetime_days: Optional[int]) -> int:
        if lifetime_days is None:
            return self.settings.default_lifetime_days
        _require_days_within("lifetime_days", lifetime_days, self.settings.max_lifetime_days)
        return lifetime_days

    def deposit(
        self,
        user_id: UUID,
        amount: int,
        lifetime_days: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> UUID:
        """Append a new active entry. Never merges into an existing one."""
        _require_positive_int("amount", amount)
        lifetime_days = self._resolve_lifetime(lifetime_days)

        with self._unit_of_work(session) as db:
            entry = self._store(db).insert(user_id, amount, lifetime_days)

        logger.info(
            f"Deposit: user={user_id}, amount={amount}, lifetime_days={lifetime_days}, entry={entry.id}"
        )
        return entry.id

    def withdraw(self, user_id: UUID, amount: int, session: Optional[Session] = None) -> list[SpendReceipt]:
        """Consume ``amount`` points oldest-first; all or nothing."""
        _require_positive_int("amount", amount)

        try:
            with self._user_lock(user_id), self._unit_of_work(session) as db:
                receipts = self._spend(self._store(db), user_id, amount)
        except InsufficientFundsError as exc:
            logger.info(f"Withdrawal rejected: user={user_id}, requested={amount}, available={exc.available}")
            raise

        logger.info(f"Withdrawal: user={user_id}, amount={amount}, entries_touched={len(receipts)}")
        return receipts

    def _spend(self, store: EntryStore, user_id: UUID, amount: int) -> list[SpendReceipt]:
        entries = store.get_active_entries_for_update(user_id)
        available = sum(entry.amount for entry in entries)
        if available < amount:
            raise InsufficientFundsError(requested=amount, available=available)

        spent_at = store.now()
        remaining = amount
        receipts = []
        for entry in entries:
            if remaining == 0:
                break
            if entry.amount <= remaining:
                consumed = entry.amount
            else:
                # Leftover keeps its parent's age and queue position.
                consumed = remaining
                store.insert(
                    user_id,
                    entry.amount - consumed,
                    entry.lifetime_days,
                    created_at=entry.created_at,
                    fifo_seq=entry.fifo_seq,
                )
            store.mark_spent(entry, consumed, spent_at)
            receipts.append(SpendReceipt(entry_id=entry.id, amount=consumed, spent_at=spent_at))
            remaining -= consumed

        return receipts

    def multiply(
        self,
        user_id: UUID,
        percent: int,
        lifetime_days: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> int:
        """Credit ``percent`` of the current balance as a new entry; returns the credited amount."""
        if isinstance(percent, bool) or not isinstance(percent, int):
            raise LedgerValidationError("percent", "must be an integer")
        if not MIN_MULTIPLY_PERCENT <= percent <= MAX_MULTIPLY_PERCENT:
            raise MultiplyPercentTooLargeError(percent, MAX_MULTIPLY_PERCENT)
        if percent <= 0:
            raise ZeroBonusAfterMultiplyError()
        lifetime_days = self._resolve_lifetime(lifetime_days)

        try:
            with self._user_lock(user_id), self._unit_of_work(session) as db:
                entries = self._store(db).get_active_entries_for_update(user_id)
                total = sum(entry.amount for entry in entries)
                if total <= 0:
                    raise NoBalanceToMultiplyError()

                bonus = total * percent // 100
                if bonus <= 0:
                    raise ZeroBonusAfterMultiplyError()

                self.deposit(user_id, bonus, lifetime_days, session=db)
        except (NoBalanceToMultiplyError, ZeroBonusAfterMultiplyError) as exc:
            logger.info(f"Multiply rejected: user={user_id}, percent={percent}: {exc}")
            raise

        logger.info(f"Multiply: user={user_id}, percent={percent}, balance_before={total}, credited={bonus}")
        return bonus

    def get_balance(self, user_id: UUID) -> int:
        with self._unit_of_work() as db:
            return self._store(db).total_active_amount(user_id)

    def get_expiring_breakdown(self, user_id: UUID, horizon_days: Optional[int] = None) -> dict[date, int]:
        """Usable points expiring within the horizon, summed per UTC expiry date, soonest first."""
        if horizon_days is None:
            horizon_days = self.settings.expiring_horizon_days
        _require_days_within("horizon_days", horizon_days, self.settings.max_horizon_days)

        with self._unit_of_work() as db:
            rows = self._store(db).expiring_amounts(user_id, timedelta(days=horizon_days))

        breakdown: dict[date, int] = {}
        for expires_at, amount in rows:
            day = expires_at.date()
            breakdown[day] = breakdown.get(day, 0) + amount
        return breakdown

    def list_active_entries(self, user_id: UUID) -> list[BonusEntrySchema]:
        with self._unit_of_work() as db:
            entries = self._store(db).get_active_entries(user_id)
            return [BonusEntrySchema.model_validate(entry) for entry in entries]

    def sweep_expired(self) -> int:
        """Label overdue active entries as expired. Balances never depend on this running."""
        with self._unit_of_work() as db:
            expired = self._store(db).expire_overdue()
        logger.info(f"Expiration sweep: {expired} entries expired")
        return expired

    def apply_transaction(self, request: TransactionRequest) -> TransactionResult:
        """Dispatch a typed transaction request and report the resulting balance."""
        result = TransactionResult(
            user_id=request.user_id,
            amount=request.amount,
            type=request.type,
            balance=0,
        )

        if request.type == TransactionType.DEPOSIT:
            result.entry_id = self.deposit(request.user_id, request.amount, request.lifetime_days)
        elif request.type == TransactionType.WITHDRAWAL:
            result.receipts = self.withdraw(request.user_id, request.amount)
        elif request.type == TransactionType.MULTIPLY:
            result.credited = self.multiply(request.user_id, request.amount, request.lifetime_days)
        else:
            raise LedgerValidationError("type", f"unsupported transaction type {request.type!r}")

        result.balance = self.get_balance(request.user_id)
        return result
