"""Domain errors raised by the ledger, the FIFO tracker, and the workflows."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced entry, lot, sale, invoice, or shift is unknown."""


class EntryNotFound(MissingReferenceError):
    """Raised when a journal entry id cannot be resolved."""


class AlreadyVoided(BusinessRuleViolation):
    """Raised when voiding a journal entry that was already reversed."""


class UnbalancedEntry(BusinessRuleViolation):
    """Raised when a journal entry's debits and credits do not agree."""

    def __init__(self, message: str, *, total_debit: Decimal, total_credit: Decimal) -> None:
        super().__init__(message)
        self.total_debit = total_debit
        self.total_credit = total_credit


class InvalidQuantity(BusinessRuleViolation, ValueError):
    """Raised when a lot operation receives a non-positive quantity."""


class InsufficientLotQuantity(BusinessRuleViolation):
    """Raised when a FIFO draw asks for more units than the lots hold.

    The error is recoverable: callers estimate the unmet portion and retry
    with an explicit estimated unit cost.
    """

    def __init__(
        self,
        message: str,
        *,
        product_id: str,
        requested: Decimal,
        available: Decimal,
    ) -> None:
        super().__init__(message)
        self.product_id = product_id
        self.requested = requested
        self.available = available

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.available


class NoLotsAvailable(InsufficientLotQuantity):
    """Raised when a product has never had a lot."""

    def __init__(self, message: str, *, product_id: str, requested: Decimal, available: Optional[Decimal] = None) -> None:
        super().__init__(
            message,
            product_id=product_id,
            requested=requested,
            available=available if available is not None else Decimal("0"),
        )


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "EntryNotFound",
    "AlreadyVoided",
    "UnbalancedEntry",
    "InvalidQuantity",
    "InsufficientLotQuantity",
    "NoLotsAvailable",
]
