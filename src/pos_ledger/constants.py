"""Enumerations shared across the POS ledger modules.

Centralises domain constants so that the store, the ledger, the FIFO tracker,
and the reporting layer rely on a single source of truth for account codes,
event tags, and sheet names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class AccountCode(str, Enum):
    """Enumerate the fixed chart of account codes."""

    CASH = "1101"
    BANK = "1102"
    ACCOUNTS_RECEIVABLE = "1103"
    TAX_PAID = "1104"
    SUPPLIER_ADVANCES = "1105"
    CARD_RECEIVABLE = "1106"
    INVENTORY = "1201"
    ACCOUNTS_PAYABLE = "2101"
    TAX_PAYABLE = "2102"
    TAX_RETAINED = "2103"
    INCOME_TAX_WITHHELD = "2104"
    SALES_REVENUE = "4101"
    SALES_DISCOUNTS = "4102"
    SALES_RETURNS = "4103"
    COST_OF_GOODS_SOLD = "5101"
    SHRINKAGE_EXPENSE = "6101"
    EXPIRATION_EXPENSE = "6102"
    THEFT_LOSS_EXPENSE = "6103"
    CARD_COMMISSION_EXPENSE = "6104"
    UTILITIES_EXPENSE = "6105"
    MAINTENANCE_EXPENSE = "6106"
    PAYROLL_EXPENSE = "6107"
    OTHER_OPERATING_EXPENSE = "6199"


class SourceType(str, Enum):
    """Enumerate the business events that may produce a journal entry."""

    SALE = "sale"
    PURCHASE = "purchase"
    SHIFT_CLOSE = "shift_close"
    ADJUSTMENT = "adjustment"
    CARD_SETTLEMENT = "card_settlement"
    SUPPLIER_PAYMENT = "supplier_payment"
    RETURN = "return"


class EntryStatus(str, Enum):
    """Lifecycle states of a journal entry."""

    POSTED = "posted"
    VOIDED = "voided"


class PaymentMethod(str, Enum):
    """Enumerate how a sale or a supplier payment is settled."""

    CASH = "cash"
    CARD = "card"
    CREDIT = "credit"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    OTHER = "other"


class RefundMethod(str, Enum):
    """Enumerate how a sales return is refunded to the customer."""

    CASH = "cash"
    CARD = "card"
    CREDIT = "credit"


class ShrinkageReason(str, Enum):
    """Enumerate the reasons an inventory adjustment may be recorded."""

    DAMAGE = "damage"
    PHYSICAL_COUNT = "physical_count"
    EXPIRATION = "expiration"
    THEFT = "theft"
    CORRECTION = "correction"
    OTHER = "other"
    FOUND = "found"
    RETURN_SUPPLIER = "return_supplier"


class InvoiceCategory(str, Enum):
    """Enumerate purchase invoice categories."""

    INVENTORY = "Inventory"
    UTILITIES = "Utilities"
    MAINTENANCE = "Maintenance"
    PAYROLL = "Payroll"
    OTHER = "Other"


class PaymentStatus(str, Enum):
    """Settlement state of a sale or invoice."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class LotStatus(str, Enum):
    """Lifecycle states of an inventory lot."""

    ACTIVE = "active"
    DEPLETED = "depleted"
    EXPIRED = "expired"


class ShiftStatus(str, Enum):
    """Lifecycle states of a cash register shift."""

    OPEN = "open"
    CLOSED = "closed"


class AgingKind(str, Enum):
    """Select receivables or payables for aging reports."""

    AR = "AR"
    AP = "AP"


class AuditAction(str, Enum):
    """Enumerate the actions captured by the accounting audit log."""

    JOURNAL_ENTRY_CREATED = "journal_entry_created"
    JOURNAL_ENTRY_VOIDED = "journal_entry_voided"
    FIFO_LOT_CREATED = "fifo_lot_created"
    FIFO_CONSUMPTION = "fifo_consumption"
    FIFO_RESTORED = "fifo_restored"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    JOURNAL_ENTRIES = "JournalEntries"
    JOURNAL_LINES = "JournalLines"
    INVENTORY_LOTS = "InventoryLots"
    COST_CONSUMPTIONS = "CostConsumptions"
    SALES = "Sales"
    INVOICES = "Invoices"
    SHIFTS = "Shifts"
    CARD_SETTLEMENTS = "CardSettlements"
    SEQUENCES = "Sequences"
    AUDIT_LOG = "AuditLog"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "AccountCode",
    "SourceType",
    "EntryStatus",
    "PaymentMethod",
    "RefundMethod",
    "ShrinkageReason",
    "InvoiceCategory",
    "PaymentStatus",
    "LotStatus",
    "ShiftStatus",
    "AgingKind",
    "AuditAction",
    "SheetName",
]
