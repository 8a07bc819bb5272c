"""
Bonus Ledger for Time-Limited Reward Points

This module provides:
- Append-only bonus entries with their own lifetime and status
- FIFO withdrawals that split a partially consumed entry
- Balance multiplication credited as a new entry
- Read-time expiry plus an advisory expiration sweep
- Per-user serialization of every mutating operation
"""

from .exceptions import (
    LedgerError,
    LedgerValidationError,
    InsufficientFundsError,
    NoBalanceToMultiplyError,
    ZeroBonusAfterMultiplyError,
    MultiplyPercentTooLargeError,
    StorageError,
    StorageTimeoutError,
)
from .models import (
    EntryStatus,
    TransactionType,
    SpendReceipt,
    BonusEntrySchema,
)
from .service import LedgerService

__all__ = [
    "LedgerError",
    "LedgerValidationError",
    "InsufficientFundsError",
    "NoBalanceToMultiplyError",
    "ZeroBonusAfterMultiplyError",
    "MultiplyPercentTooLargeError",
    "StorageError",
    "StorageTimeoutError",
    "EntryStatus",
    "TransactionType",
    "SpendReceipt",
    "BonusEntrySchema",
    "LedgerService",
]
