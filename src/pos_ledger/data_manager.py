"""Workbook storage for the POS ledger.

Every ledger table (journal entries and their lines, inventory lots, cost
consumptions, sales, invoices, shifts, card settlements, sequences and the
audit log) is one worksheet with a header row. This module maps those rows to
frozen dataclasses and back; it knows nothing about debits, credits or FIFO.

It also owns `config.ini`: discovery, parsing, and the typed
:class:`ConfigSettings` the rest of the package runs on.
"""


from __future__ import annotations

import configparser
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

from openpyxl.workbook import Workbook
import openpyxl

from .constants import (
    EntryStatus,
    InvoiceCategory,
    LotStatus,
    PaymentMethod,
    PaymentStatus,
    SheetName,
    ShiftStatus,
    SourceType,
)


CONFIG_FILE_NAME = "config.ini"
JOURNAL_ENTRIES_SHEET = SheetName.JOURNAL_ENTRIES.value
JOURNAL_LINES_SHEET = SheetName.JOURNAL_LINES.value
INVENTORY_LOTS_SHEET = SheetName.INVENTORY_LOTS.value
COST_CONSUMPTIONS_SHEET = SheetName.COST_CONSUMPTIONS.value
SALES_SHEET = SheetName.SALES.value
INVOICES_SHEET = SheetName.INVOICES.value
SHIFTS_SHEET = SheetName.SHIFTS.value
CARD_SETTLEMENTS_SHEET = SheetName.CARD_SETTLEMENTS.value
SEQUENCES_SHEET = SheetName.SEQUENCES.value
AUDIT_LOG_SHEET = SheetName.AUDIT_LOG.value

DEFAULT_TAX_RATE = Decimal("0.18")
DEFAULT_CARD_RETENTION_RATE = Decimal("0.02")

ESTIMATED_LOT_ID = "ESTIMATED_NO_LOT"

T = TypeVar("T")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    default_tax_rate: Decimal = DEFAULT_TAX_RATE
    card_retention_rate: Decimal = DEFAULT_CARD_RETENTION_RATE


@dataclass(frozen=True)
class JournalEntryLine:
    """One posting of a journal entry."""

    account_code: str
    account_name: str
    debit: Decimal
    credit: Decimal
    description: Optional[str] = None
    tax_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class JournalEntry:
    """A balanced set of postings describing one financial event."""

    entry_id: str
    entry_number: str
    entry_date: date
    description: str
    source_type: SourceType
    source_id: Optional[str]
    lines: tuple[JournalEntryLine, ...]
    total_debit: Decimal
    total_credit: Decimal
    status: EntryStatus
    created_at: datetime
    posted_at: Optional[datetime] = None
    created_by: Optional[str] = None
    shift_id: Optional[str] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[str] = None
    void_reason: Optional[str] = None
    reversal_of: Optional[str] = None


@dataclass(frozen=True)
class InventoryLot:
    """One batch of stock for a product, costed tax-exclusive."""

    lot_id: str
    product_id: str
    sequence: int
    original_quantity: Decimal
    remaining_quantity: Decimal
    unit_cost: Decimal
    tax_rate: Decimal
    purchase_date: date
    status: LotStatus = LotStatus.ACTIVE
    lot_number: Optional[str] = None
    invoice_id: Optional[str] = None
    expiration_date: Optional[date] = None
    created_at: Optional[datetime] = None
    depleted_at: Optional[datetime] = None

    @property
    def unit_cost_inc_tax(self) -> Decimal:
        return self.unit_cost * (Decimal("1") + self.tax_rate)


@dataclass(frozen=True)
class CostConsumption:
    """A single draw against one lot (or an estimated, lot-less portion)."""

    consumption_id: str
    product_id: str
    lot_id: str
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    consumed_on: date
    sale_id: Optional[str] = None
    return_id: Optional[str] = None
    adjustment_id: Optional[str] = None
    estimated: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    sale_date: date
    receipt_number: str
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    paid_amount: Decimal = Decimal("0")
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    due_date: Optional[date] = None
    shift_id: Optional[str] = None
    journal_entry_id: Optional[str] = None
    settlement_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class InvoiceRow:
    """In-memory view of a row from the ``Invoices`` sheet."""

    invoice_id: str
    provider_name: str
    ncf: str
    issue_date: date
    category: InvoiceCategory
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    payment_status: PaymentStatus = PaymentStatus.PENDING
    paid_amount: Decimal = Decimal("0")
    supplier_id: Optional[str] = None
    due_date: Optional[date] = None
    journal_entry_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ShiftRow:
    """In-memory view of a row from the ``Shifts`` sheet."""

    shift_id: str
    shift_number: str
    opened_at: datetime
    status: ShiftStatus
    cashier_name: Optional[str] = None
    closed_at: Optional[datetime] = None
    cogs_total: Optional[Decimal] = None
    cogs_entry_id: Optional[str] = None


@dataclass(frozen=True)
class CardSettlementRow:
    """In-memory view of a row from the ``CardSettlements`` sheet."""

    settlement_id: str
    settlement_date: date
    gross_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    retention_rate: Decimal
    retention_amount: Decimal
    net_deposit: Decimal
    sale_ids: tuple[str, ...] = field(default_factory=tuple)
    reference: Optional[str] = None
    journal_entry_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuditRow:
    """In-memory view of a row from the ``AuditLog`` sheet."""

    audit_id: str
    timestamp: datetime
    action: str
    entity_type: str
    entity_id: str
    user_name: Optional[str] = None
    details: Optional[str] = None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Return ``explicit_path`` as given, or the nearest `config.ini` above the cwd.

    An explicit path is not checked here; :func:`read_config` reports it when
    missing.

    Raises:
        FileNotFoundError: When no ancestor of the working directory holds one.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for folder in (current, *current.parents):
        candidate = folder / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"No {CONFIG_FILE_NAME} found in {current} or its parents")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Parse ``config_path`` as UTF-8 INI text.

    Raises:
        FileNotFoundError: If the resolved path does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Build :class:`ConfigSettings` from the `[System]` and `[Tax]` sections.

    The ``[System]`` section is mandatory. The ``[Tax]`` section is optional;
    missing rates fall back to the module defaults. Relative ``DataFile``
    entries are expanded against ``base_path`` (or the working directory).

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a configured rate is not a number between 0 and 1.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    default_rate = _read_rate(parser, "DefaultRate", DEFAULT_TAX_RATE)
    retention_rate = _read_rate(parser, "CardRetentionRate", DEFAULT_CARD_RETENTION_RATE)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_tax_rate=default_rate,
        card_retention_rate=retention_rate,
    )


def _read_rate(parser: configparser.ConfigParser, option: str, fallback: Decimal) -> Decimal:
    raw = parser.get("Tax", option, fallback=None)
    if raw is None:
        return fallback
    try:
        rate = Decimal(raw.strip())
    except ArithmeticError as exc:
        raise ValueError(f"Tax.{option} must be a decimal number, got {raw!r}") from exc
    if rate < Decimal("0") or rate >= Decimal("1"):
        raise ValueError(f"Tax.{option} must be between 0 and 1, got {rate}")
    return rate


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Generic sheet helpers
# ---------------------------------------------------------------------------


def _iter_sheet(workbook: Workbook, sheet_name: str, deserializer: Callable[[Sequence[object]], T]) -> Iterator[T]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserializer(raw)


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Return the 1-based row whose ``key_column`` holds ``key_value``, or ``None``.

    Raises:
        KeyError: If the sheet has no ``key_column`` header.
    """

    columns = _header_map(workbook, sheet_name)
    if key_column not in columns:
        raise KeyError(f"{sheet_name} has no column {key_column!r}")

    position = columns[key_column] - 1
    rows = workbook[sheet_name].iter_rows(min_row=2, values_only=True)
    return next((index for index, row in enumerate(rows, start=2) if row[position] == key_value), None)


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: Dict[str, Any],
) -> None:
    """Update selected columns of the row whose ``key_column`` equals ``key_value``.

    Values are serialized with the same rules used for appends, so callers may
    pass enums, dates, and decimals directly.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    header_map = _header_map(workbook, sheet_name)
    sheet = workbook[sheet_name]
    for column, value in field_values.items():
        if column not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {column}")
        sheet.cell(row=row_index, column=header_map[column], value=_cell(value))


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


def iter_journal_entries(workbook: Workbook) -> Iterable[JournalEntry]:
    """Stream journal entries with their lines, in the order they were posted.

    Lines are read once from ``JournalLines`` and attached to their entry by
    ``EntryID`` in ``LineNo`` order.
    """

    lines_by_entry: Dict[str, List[tuple[int, JournalEntryLine]]] = defaultdict(list)
    for entry_id, line_no, line in _iter_sheet(workbook, JOURNAL_LINES_SHEET, deserialize_journal_line):
        lines_by_entry[entry_id].append((line_no, line))

    for raw in workbook[JOURNAL_ENTRIES_SHEET].iter_rows(min_row=2, values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        entry_id = str(raw[0])
        ordered = tuple(line for _, line in sorted(lines_by_entry.get(entry_id, []), key=lambda item: item[0]))
        yield deserialize_journal_entry(raw, ordered)


def append_journal_entry(workbook: Workbook, entry: JournalEntry) -> None:
    """Append an entry header and all of its lines."""

    workbook[JOURNAL_ENTRIES_SHEET].append(serialize_journal_entry(entry))
    lines_sheet = workbook[JOURNAL_LINES_SHEET]
    for line_no, line in enumerate(entry.lines, start=1):
        lines_sheet.append(serialize_journal_line(entry.entry_id, line_no, line))


def update_journal_entry(workbook: Workbook, entry_id: str, *, field_values: Dict[str, Any]) -> None:
    """Update header columns of a journal entry; lines are never rewritten."""

    update_row(workbook, JOURNAL_ENTRIES_SHEET, "EntryID", entry_id, field_values=field_values)


def serialize_journal_entry(entry: JournalEntry) -> list[object]:
    return [
        entry.entry_id,
        entry.entry_number,
        _cell(entry.entry_date),
        entry.description,
        _cell(entry.source_type),
        entry.source_id,
        entry.shift_id,
        entry.total_debit,
        entry.total_credit,
        _cell(entry.status),
        _cell(entry.created_at),
        _cell(entry.posted_at),
        entry.created_by,
        _cell(entry.voided_at),
        entry.voided_by,
        entry.void_reason,
        entry.reversal_of,
    ]


def serialize_journal_line(entry_id: str, line_no: int, line: JournalEntryLine) -> list[object]:
    return [
        entry_id,
        line_no,
        line.account_code,
        line.account_name,
        line.description,
        line.debit,
        line.credit,
        line.tax_rate,
    ]


def deserialize_journal_entry(raw_row: Sequence[object], lines: tuple[JournalEntryLine, ...]) -> JournalEntry:
    (
        entry_id,
        entry_number,
        entry_date,
        description,
        source_type,
        source_id,
        shift_id,
        total_debit,
        total_credit,
        status,
        created_at,
        posted_at,
        created_by,
        voided_at,
        voided_by,
        void_reason,
        reversal_of,
    ) = raw_row[:17]
    return JournalEntry(
        entry_id=str(entry_id),
        entry_number=str(entry_number),
        entry_date=_required_date(entry_date),
        description=str(description) if description is not None else "",
        source_type=SourceType(str(source_type)),
        source_id=_optional_str(source_id),
        lines=lines,
        total_debit=_decimal(total_debit),
        total_credit=_decimal(total_credit),
        status=EntryStatus(str(status)),
        created_at=_required_datetime(created_at),
        posted_at=_optional_datetime(posted_at),
        created_by=_optional_str(created_by),
        shift_id=_optional_str(shift_id),
        voided_at=_optional_datetime(voided_at),
        voided_by=_optional_str(voided_by),
        void_reason=_optional_str(void_reason),
        reversal_of=_optional_str(reversal_of),
    )


def deserialize_journal_line(raw_row: Sequence[object]) -> tuple[str, int, JournalEntryLine]:
    entry_id, line_no, account_code, account_name, description, debit, credit, tax_rate = raw_row[:8]
    line = JournalEntryLine(
        account_code=str(account_code),
        account_name=str(account_name) if account_name is not None else "",
        debit=_decimal(debit),
        credit=_decimal(credit),
        description=_optional_str(description),
        tax_rate=_optional_decimal(tax_rate),
    )
    return str(entry_id), int(line_no or 0), line


# ---------------------------------------------------------------------------
# Inventory lots and consumptions
# ---------------------------------------------------------------------------


def iter_inventory_lots(workbook: Workbook) -> Iterable[InventoryLot]:
    """Stream every lot row, active or not, in sheet order."""

    return _iter_sheet(workbook, INVENTORY_LOTS_SHEET, deserialize_inventory_lot)


def append_inventory_lot(workbook: Workbook, lot: InventoryLot) -> None:
    workbook[INVENTORY_LOTS_SHEET].append(serialize_inventory_lot(lot))


def update_inventory_lot(workbook: Workbook, lot_id: str, *, field_values: Dict[str, Any]) -> None:
    update_row(workbook, INVENTORY_LOTS_SHEET, "LotID", lot_id, field_values=field_values)


def delete_inventory_lot(workbook: Workbook, lot_id: str) -> None:
    row_index = locate_row(workbook, INVENTORY_LOTS_SHEET, "LotID", lot_id)
    if row_index is None:
        raise KeyError(f"{INVENTORY_LOTS_SHEET} row not found: {lot_id}")
    workbook[INVENTORY_LOTS_SHEET].delete_rows(row_index)


def serialize_inventory_lot(lot: InventoryLot) -> list[object]:
    return [
        lot.lot_id,
        lot.product_id,
        lot.sequence,
        lot.lot_number,
        lot.invoice_id,
        _cell(lot.purchase_date),
        _cell(lot.expiration_date),
        lot.original_quantity,
        lot.remaining_quantity,
        lot.unit_cost,
        lot.tax_rate,
        _cell(lot.status),
        _cell(lot.created_at),
        _cell(lot.depleted_at),
    ]


def deserialize_inventory_lot(raw_row: Sequence[object]) -> InventoryLot:
    (
        lot_id,
        product_id,
        sequence,
        lot_number,
        invoice_id,
        purchase_date,
        expiration_date,
        original_quantity,
        remaining_quantity,
        unit_cost,
        tax_rate,
        status,
        created_at,
        depleted_at,
    ) = raw_row[:14]
    return InventoryLot(
        lot_id=str(lot_id),
        product_id=str(product_id),
        sequence=int(sequence or 0),
        original_quantity=_decimal(original_quantity),
        remaining_quantity=_decimal(remaining_quantity),
        unit_cost=_decimal(unit_cost),
        tax_rate=_decimal(tax_rate),
        purchase_date=_required_date(purchase_date),
        status=LotStatus(str(status)) if status is not None else LotStatus.ACTIVE,
        lot_number=_optional_str(lot_number),
        invoice_id=_optional_str(invoice_id),
        expiration_date=_optional_date(expiration_date),
        created_at=_optional_datetime(created_at),
        depleted_at=_optional_datetime(depleted_at),
    )


def iter_cost_consumptions(workbook: Workbook) -> Iterable[CostConsumption]:
    return _iter_sheet(workbook, COST_CONSUMPTIONS_SHEET, deserialize_cost_consumption)


def append_cost_consumption(workbook: Workbook, consumption: CostConsumption) -> None:
    workbook[COST_CONSUMPTIONS_SHEET].append(serialize_cost_consumption(consumption))


def update_cost_consumption(workbook: Workbook, consumption_id: str, *, field_values: Dict[str, Any]) -> None:
    update_row(workbook, COST_CONSUMPTIONS_SHEET, "ConsumptionID", consumption_id, field_values=field_values)


def delete_cost_consumption(workbook: Workbook, consumption_id: str) -> None:
    """Remove a consumption row entirely (used when a draw is fully restored)."""

    row_index = locate_row(workbook, COST_CONSUMPTIONS_SHEET, "ConsumptionID", consumption_id)
    if row_index is None:
        raise KeyError(f"{COST_CONSUMPTIONS_SHEET} row not found: {consumption_id}")
    workbook[COST_CONSUMPTIONS_SHEET].delete_rows(row_index)


def serialize_cost_consumption(record: CostConsumption) -> list[object]:
    return [
        record.consumption_id,
        record.product_id,
        record.lot_id,
        record.quantity,
        record.unit_cost,
        record.total_cost,
        _cell(record.consumed_on),
        record.sale_id,
        record.return_id,
        record.adjustment_id,
        record.estimated,
        _cell(record.created_at),
    ]


def deserialize_cost_consumption(raw_row: Sequence[object]) -> CostConsumption:
    (
        consumption_id,
        product_id,
        lot_id,
        quantity,
        unit_cost,
        total_cost,
        consumed_on,
        sale_id,
        return_id,
        adjustment_id,
        estimated,
        created_at,
    ) = raw_row[:12]
    return CostConsumption(
        consumption_id=str(consumption_id),
        product_id=str(product_id),
        lot_id=str(lot_id),
        quantity=_decimal(quantity),
        unit_cost=_decimal(unit_cost),
        total_cost=_decimal(total_cost),
        consumed_on=_required_date(consumed_on),
        sale_id=_optional_str(sale_id),
        return_id=_optional_str(return_id),
        adjustment_id=_optional_str(adjustment_id),
        estimated=bool(estimated),
        created_at=_optional_datetime(created_at),
    )


# ---------------------------------------------------------------------------
# Sales, invoices, shifts, settlements
# ---------------------------------------------------------------------------


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    return _iter_sheet(workbook, SALES_SHEET, deserialize_sale)


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    workbook[SALES_SHEET].append(serialize_sale(record))


def update_sale(workbook: Workbook, sale_id: str, *, field_values: Dict[str, Any]) -> None:
    update_row(workbook, SALES_SHEET, "SaleID", sale_id, field_values=field_values)


def serialize_sale(record: SaleRow) -> list[object]:
    return [
        record.sale_id,
        _cell(record.sale_date),
        record.receipt_number,
        record.customer_id,
        record.customer_name,
        record.subtotal,
        record.tax_total,
        record.total,
        _cell(record.payment_method),
        _cell(record.payment_status),
        record.paid_amount,
        _cell(record.due_date),
        record.shift_id,
        record.journal_entry_id,
        record.settlement_id,
        _cell(record.created_at),
    ]


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    (
        sale_id,
        sale_date,
        receipt_number,
        customer_id,
        customer_name,
        subtotal,
        tax_total,
        total,
        payment_method,
        payment_status,
        paid_amount,
        due_date,
        shift_id,
        journal_entry_id,
        settlement_id,
        created_at,
    ) = raw_row[:16]
    return SaleRow(
        sale_id=str(sale_id),
        sale_date=_required_date(sale_date),
        receipt_number=str(receipt_number) if receipt_number is not None else "",
        subtotal=_decimal(subtotal),
        tax_total=_decimal(tax_total),
        total=_decimal(total),
        payment_method=PaymentMethod(str(payment_method)),
        payment_status=PaymentStatus(str(payment_status)),
        paid_amount=_decimal(paid_amount),
        customer_id=_optional_str(customer_id),
        customer_name=_optional_str(customer_name),
        due_date=_optional_date(due_date),
        shift_id=_optional_str(shift_id),
        journal_entry_id=_optional_str(journal_entry_id),
        settlement_id=_optional_str(settlement_id),
        created_at=_optional_datetime(created_at),
    )


def iter_invoices(workbook: Workbook) -> Iterable[InvoiceRow]:
    return _iter_sheet(workbook, INVOICES_SHEET, deserialize_invoice)


def append_invoice(workbook: Workbook, record: InvoiceRow) -> None:
    workbook[INVOICES_SHEET].append(serialize_invoice(record))


def update_invoice(workbook: Workbook, invoice_id: str, *, field_values: Dict[str, Any]) -> None:
    update_row(workbook, INVOICES_SHEET, "InvoiceID", invoice_id, field_values=field_values)


def serialize_invoice(record: InvoiceRow) -> list[object]:
    return [
        record.invoice_id,
        record.supplier_id,
        record.provider_name,
        record.ncf,
        _cell(record.issue_date),
        _cell(record.due_date),
        _cell(record.category),
        record.subtotal,
        record.tax_total,
        record.total,
        _cell(record.payment_status),
        record.paid_amount,
        record.journal_entry_id,
        _cell(record.created_at),
    ]


def deserialize_invoice(raw_row: Sequence[object]) -> InvoiceRow:
    (
        invoice_id,
        supplier_id,
        provider_name,
        ncf,
        issue_date,
        due_date,
        category,
        subtotal,
        tax_total,
        total,
        payment_status,
        paid_amount,
        journal_entry_id,
        created_at,
    ) = raw_row[:14]
    return InvoiceRow(
        invoice_id=str(invoice_id),
        provider_name=str(provider_name) if provider_name is not None else "",
        ncf=str(ncf) if ncf is not None else "",
        issue_date=_required_date(issue_date),
        category=InvoiceCategory(str(category)) if category is not None else InvoiceCategory.OTHER,
        subtotal=_decimal(subtotal),
        tax_total=_decimal(tax_total),
        total=_decimal(total),
        payment_status=PaymentStatus(str(payment_status)) if payment_status is not None else PaymentStatus.PENDING,
        paid_amount=_decimal(paid_amount),
        supplier_id=_optional_str(supplier_id),
        due_date=_optional_date(due_date),
        journal_entry_id=_optional_str(journal_entry_id),
        created_at=_optional_datetime(created_at),
    )


def iter_shifts(workbook: Workbook) -> Iterable[ShiftRow]:
    return _iter_sheet(workbook, SHIFTS_SHEET, deserialize_shift)


def append_shift(workbook: Workbook, record: ShiftRow) -> None:
    workbook[SHIFTS_SHEET].append(serialize_shift(record))


def update_shift(workbook: Workbook, shift_id: str, *, field_values: Dict[str, Any]) -> None:
    update_row(workbook, SHIFTS_SHEET, "ShiftID", shift_id, field_values=field_values)


def serialize_shift(record: ShiftRow) -> list[object]:
    return [
        record.shift_id,
        record.shift_number,
        record.cashier_name,
        _cell(record.opened_at),
        _cell(record.closed_at),
        _cell(record.status),
        record.cogs_total,
        record.cogs_entry_id,
    ]


def deserialize_shift(raw_row: Sequence[object]) -> ShiftRow:
    shift_id, shift_number, cashier_name, opened_at, closed_at, status, cogs_total, cogs_entry_id = raw_row[:8]
    return ShiftRow(
        shift_id=str(shift_id),
        shift_number=str(shift_number) if shift_number is not None else "",
        opened_at=_required_datetime(opened_at),
        status=ShiftStatus(str(status)),
        cashier_name=_optional_str(cashier_name),
        closed_at=_optional_datetime(closed_at),
        cogs_total=_optional_decimal(cogs_total),
        cogs_entry_id=_optional_str(cogs_entry_id),
    )


def iter_card_settlements(workbook: Workbook) -> Iterable[CardSettlementRow]:
    return _iter_sheet(workbook, CARD_SETTLEMENTS_SHEET, deserialize_card_settlement)


def append_card_settlement(workbook: Workbook, record: CardSettlementRow) -> None:
    workbook[CARD_SETTLEMENTS_SHEET].append(serialize_card_settlement(record))


def update_card_settlement(workbook: Workbook, settlement_id: str, *, field_values: Dict[str, Any]) -> None:
    update_row(workbook, CARD_SETTLEMENTS_SHEET, "SettlementID", settlement_id, field_values=field_values)


def serialize_card_settlement(record: CardSettlementRow) -> list[object]:
    return [
        record.settlement_id,
        _cell(record.settlement_date),
        record.reference,
        record.gross_amount,
        record.commission_rate,
        record.commission_amount,
        record.retention_rate,
        record.retention_amount,
        record.net_deposit,
        _cell(record.sale_ids),
        record.journal_entry_id,
        _cell(record.created_at),
    ]


def deserialize_card_settlement(raw_row: Sequence[object]) -> CardSettlementRow:
    (
        settlement_id,
        settlement_date,
        reference,
        gross_amount,
        commission_rate,
        commission_amount,
        retention_rate,
        retention_amount,
        net_deposit,
        sale_ids,
        journal_entry_id,
        created_at,
    ) = raw_row[:12]
    return CardSettlementRow(
        settlement_id=str(settlement_id),
        settlement_date=_required_date(settlement_date),
        gross_amount=_decimal(gross_amount),
        commission_rate=_decimal(commission_rate),
        commission_amount=_decimal(commission_amount),
        retention_rate=_decimal(retention_rate),
        retention_amount=_decimal(retention_amount),
        net_deposit=_decimal(net_deposit),
        sale_ids=tuple(part for part in str(sale_ids or "").split(",") if part),
        reference=_optional_str(reference),
        journal_entry_id=_optional_str(journal_entry_id),
        created_at=_optional_datetime(created_at),
    )


# ---------------------------------------------------------------------------
# Sequences and audit log
# ---------------------------------------------------------------------------


def get_sequence_value(workbook: Workbook, key: str) -> Optional[int]:
    """Return the last value issued for ``key``, or ``None`` if never issued."""

    for raw in workbook[SEQUENCES_SHEET].iter_rows(min_row=2, values_only=True):
        if raw and raw[0] == key:
            return int(raw[1] or 0)
    return None


def set_sequence_value(workbook: Workbook, key: str, value: int) -> None:
    """Store ``value`` as the last issued number for ``key``."""

    if locate_row(workbook, SEQUENCES_SHEET, "SequenceKey", key) is None:
        workbook[SEQUENCES_SHEET].append([key, value])
    else:
        update_row(workbook, SEQUENCES_SHEET, "SequenceKey", key, field_values={"LastValue": value})


def iter_audit_log(workbook: Workbook) -> Iterable[AuditRow]:
    return _iter_sheet(workbook, AUDIT_LOG_SHEET, deserialize_audit_row)


def append_audit_row(workbook: Workbook, record: AuditRow) -> None:
    workbook[AUDIT_LOG_SHEET].append(
        [
            record.audit_id,
            _cell(record.timestamp),
            record.action,
            record.entity_type,
            record.entity_id,
            record.user_name,
            record.details,
        ]
    )


def deserialize_audit_row(raw_row: Sequence[object]) -> AuditRow:
    audit_id, timestamp, action, entity_type, entity_id, user_name, details = raw_row[:7]
    return AuditRow(
        audit_id=str(audit_id),
        timestamp=_required_datetime(timestamp),
        action=str(action),
        entity_type=str(entity_type),
        entity_id=str(entity_id),
        user_name=_optional_str(user_name),
        details=_optional_str(details),
    )


# ---------------------------------------------------------------------------
# Cell conversion
# ---------------------------------------------------------------------------


def _cell(value: Any) -> Any:
    """Convert a Python value into something ``openpyxl`` stores losslessly."""

    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, tuple):
        return ",".join(str(part) for part in value)
    return value


def _decimal(raw: object) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    if isinstance(raw, Decimal):
        return raw
    return Decimal(str(raw))


def _optional_decimal(raw: object) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    return _decimal(raw)


def _optional_str(raw: object) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return str(raw)


def _optional_date(raw: object) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def _required_date(raw: object) -> date:
    parsed = _optional_date(raw)
    if parsed is None:
        raise ValueError("Missing required date value")
    return parsed


def _optional_datetime(raw: object) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _required_datetime(raw: object) -> datetime:
    parsed = _optional_datetime(raw)
    if parsed is None:
        raise ValueError("Missing required timestamp value")
    return parsed
