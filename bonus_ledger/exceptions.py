"""Exceptions raised by the bonus ledger."""


class LedgerError(Exception):
    """Base class for every ledger failure."""


class LedgerValidationError(LedgerError):
    """Malformed caller input, rejected before touching storage."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class BusinessRuleError(LedgerError):
    """Deterministic rejection based on the current ledger state. Never retry blindly."""


class InsufficientFundsError(BusinessRuleError):
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__("insufficient funds")


class NoBalanceToMultiplyError(BusinessRuleError):
    def __init__(self):
        super().__init__("no balance to multiply")


class ZeroBonusAfterMultiplyError(BusinessRuleError):
    def __init__(self):
        super().__init__("bonus after multiplication is zero")


class MultiplyPercentTooLargeError(BusinessRuleError):
    def __init__(self, percent: int, max_percent: int):
        self.percent = percent
        self.max_percent = max_percent
        super().__init__(f"multiply percent must be between 1 and {max_percent}")


class StorageError(LedgerError):
    """Infrastructure fault. The transaction has been rolled back."""


class StorageTimeoutError(StorageError):
    """A storage call or lock wait exceeded its time budget."""
