"""Business workflows for the POS ledger.

Each ``record_*`` workflow validates a command, drives the FIFO tracker for
any stock movement, posts the accounting entry through the journal, and only
then writes its domain record (sale, invoice, shift, settlement). A workflow
that fails part-way undoes its own lot movements and voids any entry it
already posted, so the ledger and the lots never disagree.

The ``post_*_entry`` helpers are the thin seam between domain records and the
entry factories; they are usable on their own when the caller already holds
a record.
"""

from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from . import data_manager, fifo, journal, log
from .concurrency import CARD_SETTLEMENT_KEY, STORE_KEY, invoice_key, shift_key, shift_number_key
from .constants import (
    InvoiceCategory,
    PaymentMethod,
    PaymentStatus,
    RefundMethod,
    ShiftStatus,
    ShrinkageReason,
)
from .context import (
    INVOICES_CACHE,
    SALES_CACHE,
    SETTLEMENTS_CACHE,
    SHIFTS_CACHE,
    RuntimeContext,
    generate_id,
    get_cache_bucket,
    invalidate_cache,
    resolve_timestamp,
)
from .errors import (
    BusinessRuleViolation,
    InsufficientLotQuantity,
    InvalidQuantity,
    MissingReferenceError,
    UnbalancedEntry,
)
from .factories import EntryFactory, SalesReturn, settlement_amounts
from .journal import EntryDraft
from .tax import ZERO, price_without_tax, quantize_money, to_decimal


SETTLEABLE_METHODS = (PaymentMethod.CARD,)


# ---------------------------------------------------------------------------
# Commands and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SaleItem:
    """One sold product line; only quantity and costing hints matter here."""

    product_id: str
    quantity: Decimal
    last_purchase_price: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale."""

    receipt_number: str
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    payment_method: PaymentMethod
    items: tuple[SaleItem, ...] = ()
    shift_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    due_date: Optional[date] = None
    sale_date: Optional[date] = None
    created_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SaleResult:
    sale: data_manager.SaleRow
    entry: data_manager.JournalEntry
    costs: tuple[fifo.ConsumptionResult, ...] = ()

    @property
    def total_cost(self) -> Decimal:
        return sum((cost.total_cost for cost in self.costs), ZERO)


@dataclass(frozen=True)
class PurchaseItem:
    """One received product line of an inventory invoice."""

    product_id: Optional[str]
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Optional[Decimal] = None
    price_includes_tax: bool = False
    lot_number: Optional[str] = None
    expiration_date: Optional[date] = None


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording a supplier invoice."""

    provider_name: str
    ncf: str
    category: InvoiceCategory
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    items: tuple[PurchaseItem, ...] = ()
    supplier_id: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    created_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseResult:
    invoice: data_manager.InvoiceRow
    entry: data_manager.JournalEntry
    lots: tuple[data_manager.InventoryLot, ...] = ()


@dataclass(frozen=True)
class ShrinkageCommand:
    """User intent for an inventory adjustment."""

    product_id: str
    quantity: Decimal
    reason: ShrinkageReason
    product_name: Optional[str] = None
    notes: Optional[str] = None
    last_purchase_price: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    adjustment_date: Optional[date] = None
    created_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ShrinkageResult:
    adjustment_id: str
    cost: Decimal
    entry: Optional[data_manager.JournalEntry] = None
    consumption: Optional[fifo.ConsumptionResult] = None
    lot: Optional[data_manager.InventoryLot] = None


@dataclass(frozen=True)
class ReturnItem:
    product_id: str
    quantity: Decimal


@dataclass(frozen=True)
class ReturnCommand:
    """User intent for refunding part or all of a sale."""

    sale_id: str
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    refund_method: RefundMethod
    items: tuple[ReturnItem, ...] = ()
    return_date: Optional[date] = None
    created_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ReturnResult:
    return_id: str
    entry: data_manager.JournalEntry
    restored: tuple[fifo.RestoreResult, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ShiftCloseResult:
    shift: data_manager.ShiftRow
    cogs_total: Decimal
    entry: Optional[data_manager.JournalEntry] = None


@dataclass(frozen=True)
class SupplierPaymentResult:
    invoice: data_manager.InvoiceRow
    entry: data_manager.JournalEntry


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: Decimal) -> None:
    """Raise :class:`InvalidQuantity` unless ``quantity`` is strictly positive."""

    if quantity <= ZERO:
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidQuantity("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    if amount < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise BusinessRuleViolation("Amount must be zero or positive")


def require_balanced(draft: EntryDraft) -> None:
    """Check a draft before any side effect so a failing post aborts cleanly."""

    if not journal.validate(draft):
        debit, credit = journal.line_totals(draft.lines)
        log.error("Rejected unbalanced %s draft: debit %s, credit %s", draft.source_type.value, debit, credit)
        raise UnbalancedEntry(
            f"Entry does not balance: debit {debit} != credit {credit}",
            total_debit=debit,
            total_credit=credit,
        )


def entry_factory(context: RuntimeContext) -> EntryFactory:
    return EntryFactory(context.chart, context.tax_policy)


# ---------------------------------------------------------------------------
# Cached domain reads
# ---------------------------------------------------------------------------


def _ensure_records_cache(context: RuntimeContext, name: str, loader, key: str) -> Dict[str, Any]:
    bucket = get_cache_bucket(context, name)
    if "all" not in bucket:
        records = list(loader(context.workbook))
        bucket["all"] = records
        bucket["by_id"] = {getattr(record, key): record for record in records}
        log.debug("Populated %s cache with %d entries", name, len(records))
    return bucket


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    return list(_ensure_records_cache(context, SALES_CACHE, data_manager.iter_sales, "sale_id")["all"])


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    sale = _ensure_records_cache(context, SALES_CACHE, data_manager.iter_sales, "sale_id")["by_id"].get(sale_id)
    if sale is None:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Sale '{sale_id}' does not exist")
    return sale


def list_invoices(context: RuntimeContext) -> List[data_manager.InvoiceRow]:
    return list(_ensure_records_cache(context, INVOICES_CACHE, data_manager.iter_invoices, "invoice_id")["all"])


def get_invoice(context: RuntimeContext, invoice_id: str) -> data_manager.InvoiceRow:
    bucket = _ensure_records_cache(context, INVOICES_CACHE, data_manager.iter_invoices, "invoice_id")
    invoice = bucket["by_id"].get(invoice_id)
    if invoice is None:
        log.warning("Invoice lookup failed for id '%s'", invoice_id)
        raise MissingReferenceError(f"Invoice '{invoice_id}' does not exist")
    return invoice


def list_shifts(context: RuntimeContext) -> List[data_manager.ShiftRow]:
    return list(_ensure_records_cache(context, SHIFTS_CACHE, data_manager.iter_shifts, "shift_id")["all"])


def get_shift(context: RuntimeContext, shift_id: str) -> data_manager.ShiftRow:
    shift = _ensure_records_cache(context, SHIFTS_CACHE, data_manager.iter_shifts, "shift_id")["by_id"].get(shift_id)
    if shift is None:
        log.warning("Shift lookup failed for id '%s'", shift_id)
        raise MissingReferenceError(f"Shift '{shift_id}' does not exist")
    return shift


def list_card_settlements(context: RuntimeContext) -> List[data_manager.CardSettlementRow]:
    bucket = _ensure_records_cache(context, SETTLEMENTS_CACHE, data_manager.iter_card_settlements, "settlement_id")
    return list(bucket["all"])


# ---------------------------------------------------------------------------
# post_*_entry
# ---------------------------------------------------------------------------


def post_sale_entry(
    context: RuntimeContext,
    sale: data_manager.SaleRow,
    *,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    return journal.post(context, entry_factory(context).sale_entry(sale, created_by=created_by), timestamp=timestamp)


def post_shift_cogs_entry(
    context: RuntimeContext,
    shift: data_manager.ShiftRow,
    total_cogs: Decimal,
    *,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Optional[data_manager.JournalEntry]:
    """Post the COGS entry for ``shift``; returns ``None`` and posts nothing when COGS <= 0."""

    draft = entry_factory(context).shift_cogs_entry(shift, total_cogs, created_by=created_by)
    if draft is None:
        log.info("Shift %s closed with no cost of goods sold; no entry posted", shift.shift_number)
        return None
    return journal.post(context, draft, timestamp=timestamp)


def post_purchase_entry(
    context: RuntimeContext,
    invoice: data_manager.InvoiceRow,
    *,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    return journal.post(context, entry_factory(context).purchase_entry(invoice, created_by=created_by), timestamp=timestamp)


def post_shrinkage_entry(
    context: RuntimeContext,
    reason: ShrinkageReason,
    product_name: str,
    quantity: Decimal,
    cost: Decimal,
    *,
    entry_date: date,
    adjustment_id: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Optional[data_manager.JournalEntry]:
    draft = entry_factory(context).shrinkage_entry(
        reason,
        product_name,
        quantity,
        cost,
        entry_date=entry_date,
        adjustment_id=adjustment_id,
        notes=notes,
        created_by=created_by,
    )
    if draft is None:
        log.info("Adjustment %s has zero cost; no entry posted", adjustment_id)
        return None
    return journal.post(context, draft, timestamp=timestamp)


def post_card_settlement_entry(
    context: RuntimeContext,
    gross_amount: Decimal,
    commission_rate: Decimal,
    *,
    settlement_date: date,
    retention_rate: Optional[Decimal] = None,
    reference: Optional[str] = None,
    settlement_id: Optional[str] = None,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    draft = entry_factory(context).card_settlement_entry(
        gross_amount,
        commission_rate,
        settlement_date=settlement_date,
        retention_rate=retention_rate,
        reference=reference,
        settlement_id=settlement_id,
        created_by=created_by,
    )
    return journal.post(context, draft, timestamp=timestamp)


def post_supplier_payment_entry(
    context: RuntimeContext,
    invoice: data_manager.InvoiceRow,
    amount: Decimal,
    payment_method: PaymentMethod,
    *,
    payment_date: date,
    reference: Optional[str] = None,
    payment_id: Optional[str] = None,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    draft = entry_factory(context).supplier_payment_entry(
        amount,
        payment_method,
        payment_date=payment_date,
        provider_name=invoice.provider_name,
        ncf=invoice.ncf,
        reference=reference,
        payment_id=payment_id,
        created_by=created_by,
    )
    return journal.post(context, draft, timestamp=timestamp)


def post_sales_return_entry(
    context: RuntimeContext,
    document: SalesReturn,
    *,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    draft = entry_factory(context).sales_return_entry(document, created_by=created_by)
    return journal.post(context, draft, timestamp=timestamp)


# ---------------------------------------------------------------------------
# Costing
# ---------------------------------------------------------------------------


def estimate_unit_cost(
    context: RuntimeContext,
    product_id: str,
    last_purchase_price: Optional[Decimal] = None,
    tax_rate: Optional[Decimal] = None,
) -> Optional[Decimal]:
    """Tax-exclusive unit cost estimate for stock the lots cannot cover.

    Uses ``last_purchase_price / (1 + rate)`` when a tax-inclusive price is
    supplied, otherwise the newest lot ever received for the product. Returns
    ``None`` when neither exists.
    """

    if last_purchase_price is not None:
        return context.tax_policy.estimate_unit_cost(last_purchase_price, tax_rate)

    history = fifo.list_lots(context, product_id)
    if not history:
        return None
    newest = history[-1]
    return context.tax_policy.estimate_unit_cost(newest.unit_cost_inc_tax, newest.tax_rate)


def _consume_with_estimate(
    context: RuntimeContext,
    product_id: str,
    quantity: Decimal,
    *,
    last_purchase_price: Optional[Decimal],
    tax_rate: Optional[Decimal],
    consumed_on: date,
    timestamp: datetime,
    **reference: Optional[str],
) -> fifo.ConsumptionResult:
    try:
        return fifo.consume(
            context,
            product_id,
            quantity,
            consumed_on=consumed_on,
            timestamp=timestamp,
            **reference,
        )
    except InsufficientLotQuantity as exc:
        estimate = estimate_unit_cost(context, product_id, last_purchase_price, tax_rate)
        if estimate is None:
            log.error("No cost estimate available for product '%s'; cannot cover %s units", product_id, exc.shortfall)
            raise
        log.warning(
            "Estimating %s of %s units of product '%s' at %s",
            exc.shortfall,
            quantity,
            product_id,
            estimate,
        )
        return fifo.consume(
            context,
            product_id,
            quantity,
            estimated_unit_cost=estimate,
            consumed_on=consumed_on,
            timestamp=timestamp,
            **reference,
        )


def cost_sale_line(
    context: RuntimeContext,
    item: SaleItem,
    *,
    sale_id: str,
    consumed_on: date,
    timestamp: Optional[datetime] = None,
) -> fifo.ConsumptionResult:
    """FIFO-cost one sold line, estimating any portion the lots cannot cover.

    Raises:
        InvalidQuantity: If the item quantity is not positive.
        InsufficientLotQuantity: If stock is short and no estimate exists.
    """

    return _consume_with_estimate(
        context,
        item.product_id,
        to_decimal(item.quantity),
        last_purchase_price=item.last_purchase_price,
        tax_rate=item.tax_rate,
        consumed_on=consumed_on,
        timestamp=resolve_timestamp(timestamp),
        sale_id=sale_id,
    )


# ---------------------------------------------------------------------------
# Shifts
# ---------------------------------------------------------------------------


def open_shift(
    context: RuntimeContext,
    shift_number: str,
    cashier_name: Optional[str] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ShiftRow:
    """Open a new register shift.

    Raises:
        BusinessRuleViolation: If a shift with the same number is still open.
    """

    when = resolve_timestamp(timestamp)
    with context.locks.hold(shift_number_key(shift_number)):
        if any(s.shift_number == shift_number and s.status is ShiftStatus.OPEN for s in list_shifts(context)):
            log.warning("Shift %s is already open", shift_number)
            raise BusinessRuleViolation(f"Shift {shift_number} is already open")

        shift = data_manager.ShiftRow(
            shift_id=generate_id("SH", when=when),
            shift_number=shift_number,
            opened_at=when,
            status=ShiftStatus.OPEN,
            cashier_name=cashier_name,
        )
        with context.locks.hold(STORE_KEY):
            data_manager.append_shift(context.workbook, shift)
            invalidate_cache(context, SHIFTS_CACHE)
    log.info("Opened shift %s (%s) for %s", shift_number, shift.shift_id, cashier_name or "unknown cashier")
    return shift


def close_shift(
    context: RuntimeContext,
    shift_id: str,
    *,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ShiftCloseResult:
    """Close a shift once and post its cost of goods sold.

    Raises:
        MissingReferenceError: If the shift does not exist.
        BusinessRuleViolation: If the shift was already closed.
    """

    when = resolve_timestamp(timestamp)
    with context.locks.hold(shift_key(shift_id)):
        shift = get_shift(context, shift_id)
        if shift.status is ShiftStatus.CLOSED:
            log.warning("Attempted to close shift %s twice", shift.shift_number)
            raise BusinessRuleViolation(f"Shift {shift.shift_number} is already closed")

        cogs_total = fifo.cogs_for_shift(context, shift_id)
        closing = replace(shift, closed_at=when, status=ShiftStatus.CLOSED, cogs_total=cogs_total)
        entry = post_shift_cogs_entry(context, closing, cogs_total, created_by=created_by, timestamp=when)
        closed = replace(closing, cogs_entry_id=entry.entry_id if entry else None)

        with context.locks.hold(STORE_KEY):
            data_manager.update_shift(
                context.workbook,
                shift_id,
                field_values={
                    "ClosedAt": closed.closed_at,
                    "Status": closed.status,
                    "CogsTotal": closed.cogs_total,
                    "CogsEntryID": closed.cogs_entry_id,
                },
            )
            invalidate_cache(context, SHIFTS_CACHE)
    log.info("Closed shift %s with COGS %s", shift.shift_number, cogs_total)
    return ShiftCloseResult(shift=closed, cogs_total=cogs_total, entry=entry)


# ---------------------------------------------------------------------------
# Sales and returns
# ---------------------------------------------------------------------------


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleResult:
    """Cost, post, and store a sale.

    The items are FIFO-costed first (estimating shortfalls), then the revenue
    entry is posted, then the ``Sales`` row is written. If any step fails, the
    lot draws already made for this sale are reverted, a posted entry is
    voided, and the error propagates; no sale row is written. Sales on a shift
    hold the shift's lock, so the shift cannot close mid-sale.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        SaleResult: Stored sale, its journal entry, and per-item costs.

    Raises:
        MissingReferenceError: If ``shift_id`` is unknown.
        BusinessRuleViolation: If the shift is closed, amounts are negative, or
            the payment method is not cash, card, or credit.
        InvalidQuantity: If an item quantity is not positive.
        UnbalancedEntry: If subtotal plus tax does not match the total.
    """

    for amount in (command.subtotal, command.tax_total, command.total):
        require_nonnegative_money(to_decimal(amount))
    for item in command.items:
        require_positive_quantity(to_decimal(item.quantity))

    # a shift cannot close while one of its sales is half-recorded
    guard = context.locks.hold(shift_key(command.shift_id)) if command.shift_id is not None else nullcontext()
    with guard:
        if command.shift_id is not None:
            shift = get_shift(context, command.shift_id)
            if shift.status is not ShiftStatus.OPEN:
                log.warning("Attempted sale on closed shift %s", shift.shift_number)
                raise BusinessRuleViolation(f"Shift {shift.shift_number} is closed")
        result = _store_sale(context, command)

    log.info(
        "Recorded sale %s (%s) total %s, cost %s",
        result.sale.receipt_number,
        result.sale.payment_method.value,
        result.sale.total,
        result.total_cost,
    )
    return result


def _store_sale(context: RuntimeContext, command: SaleCommand) -> SaleResult:
    when = resolve_timestamp(command.timestamp)
    sale_date = command.sale_date or when.date()
    is_credit = command.payment_method is PaymentMethod.CREDIT
    total = quantize_money(command.total)
    sale = data_manager.SaleRow(
        sale_id=generate_id("S", when=when),
        sale_date=sale_date,
        receipt_number=command.receipt_number,
        subtotal=quantize_money(command.subtotal),
        tax_total=quantize_money(command.tax_total),
        total=total,
        payment_method=command.payment_method,
        payment_status=PaymentStatus.PENDING if is_credit else PaymentStatus.PAID,
        paid_amount=ZERO if is_credit else total,
        customer_id=command.customer_id,
        customer_name=command.customer_name,
        due_date=command.due_date,
        shift_id=command.shift_id,
        created_at=when,
    )

    draft = entry_factory(context).sale_entry(sale, created_by=command.created_by)
    require_balanced(draft)

    costs: List[fifo.ConsumptionResult] = []
    entry: Optional[data_manager.JournalEntry] = None
    try:
        for item in command.items:
            costs.append(cost_sale_line(context, item, sale_id=sale.sale_id, consumed_on=sale_date, timestamp=when))
        entry = journal.post(context, draft, timestamp=when)
        sale = replace(sale, journal_entry_id=entry.entry_id)
        with context.locks.hold(STORE_KEY):
            data_manager.append_sale(context.workbook, sale)
            invalidate_cache(context, SALES_CACHE)
    except Exception:
        log.error("Sale %s aborted; reverting its lot draws", command.receipt_number)
        if entry is not None:
            journal.void(
                context,
                entry.entry_id,
                f"Sale {command.receipt_number} aborted",
                command.created_by,
                void_date=entry.entry_date,
                timestamp=when,
            )
        fifo.revert_consumption(context, sale_id=sale.sale_id, timestamp=when)
        raise

    return SaleResult(sale=sale, entry=entry, costs=tuple(costs))


def record_return(context: RuntimeContext, command: ReturnCommand) -> ReturnResult:
    """Post the refund entry and restore returned units to their lots.

    If a restore fails, the refund entry is voided, units already restored
    are drawn again for the sale, and the error propagates.

    Raises:
        MissingReferenceError: If the sale does not exist.
        InvalidQuantity: If an item quantity is not positive.
        UnbalancedEntry: If subtotal plus tax does not match the total.
    """

    sale = get_sale(context, command.sale_id)
    for amount in (command.subtotal, command.tax_total, command.total):
        require_nonnegative_money(to_decimal(amount))
    for item in command.items:
        require_positive_quantity(to_decimal(item.quantity))

    when = resolve_timestamp(command.timestamp)
    document = SalesReturn(
        return_id=generate_id("R", when=when),
        return_date=command.return_date or when.date(),
        original_receipt_number=sale.receipt_number,
        subtotal=quantize_money(command.subtotal),
        tax_total=quantize_money(command.tax_total),
        total=quantize_money(command.total),
        refund_method=command.refund_method,
        customer_name=sale.customer_name,
    )
    draft = entry_factory(context).sales_return_entry(document, created_by=command.created_by)
    require_balanced(draft)

    entry = journal.post(context, draft, timestamp=when)
    restored: List[fifo.RestoreResult] = []
    try:
        for item in command.items:
            restored.append(
                fifo.restore_for_return(
                    context,
                    sale.sale_id,
                    item.product_id,
                    to_decimal(item.quantity),
                    return_id=document.return_id,
                    timestamp=when,
                )
            )
    except Exception:
        log.error("Return %s aborted; voiding %s and redrawing its units", document.return_id, entry.entry_number)
        journal.void(
            context,
            entry.entry_id,
            f"Return {document.return_id} aborted",
            command.created_by,
            void_date=entry.entry_date,
            timestamp=when,
        )
        for item, result in zip(command.items, restored):
            if result.restored > ZERO:
                fifo.consume(
                    context,
                    item.product_id,
                    result.restored,
                    sale_id=sale.sale_id,
                    estimated_unit_cost=result.average_unit_cost,
                    consumed_on=sale.sale_date,
                    timestamp=when,
                )
        raise

    log.info("Recorded return %s against sale %s for %s", document.return_id, sale.receipt_number, document.total)
    return ReturnResult(return_id=document.return_id, entry=entry, restored=tuple(restored))


# ---------------------------------------------------------------------------
# Purchasing
# ---------------------------------------------------------------------------


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> PurchaseResult:
    """Post a supplier invoice and receive its stock into new lots.

    Lots are created only for ``Inventory`` invoices and only for items that
    name a product. A lot's unit cost is the tax-exclusive unit price.

    The invoice row is written last. If receiving fails, the purchase entry is
    voided, lots created so far are discarded, and the error propagates.

    Raises:
        InvalidQuantity: If an item quantity is not positive.
        BusinessRuleViolation: If amounts are negative.
        UnbalancedEntry: If subtotal plus tax does not match the total.
    """

    for amount in (command.subtotal, command.tax_total, command.total):
        require_nonnegative_money(to_decimal(amount))
    for item in command.items:
        require_positive_quantity(to_decimal(item.quantity))
        require_nonnegative_money(to_decimal(item.unit_price))

    when = resolve_timestamp(command.timestamp)
    invoice = data_manager.InvoiceRow(
        invoice_id=generate_id("INV", when=when),
        provider_name=command.provider_name,
        ncf=command.ncf,
        issue_date=command.issue_date or when.date(),
        category=command.category,
        subtotal=quantize_money(command.subtotal),
        tax_total=quantize_money(command.tax_total),
        total=quantize_money(command.total),
        payment_status=PaymentStatus.PENDING,
        paid_amount=ZERO,
        supplier_id=command.supplier_id,
        due_date=command.due_date,
        created_at=when,
    )

    entry = post_purchase_entry(context, invoice, created_by=command.created_by, timestamp=when)
    invoice = replace(invoice, journal_entry_id=entry.entry_id)

    lots: List[data_manager.InventoryLot] = []
    try:
        if command.category is InvoiceCategory.INVENTORY:
            for item in command.items:
                if not item.product_id:
                    continue
                rate = context.tax_policy.rate_or_default(item.tax_rate)
                lots.append(
                    fifo.add_lot(
                        context,
                        item.product_id,
                        to_decimal(item.quantity),
                        price_without_tax(item.unit_price, rate, includes_tax=item.price_includes_tax),
                        rate,
                        invoice_id=invoice.invoice_id,
                        lot_number=item.lot_number,
                        purchase_date=invoice.issue_date,
                        expiration_date=item.expiration_date,
                        timestamp=when,
                    )
                )
        with context.locks.hold(STORE_KEY):
            data_manager.append_invoice(context.workbook, invoice)
            invalidate_cache(context, INVOICES_CACHE)
    except Exception:
        log.error(
            "Purchase %s aborted; voiding %s and discarding %d lot(s)", invoice.ncf, entry.entry_number, len(lots)
        )
        journal.void(
            context,
            entry.entry_id,
            f"Purchase {invoice.ncf} aborted",
            command.created_by,
            void_date=entry.entry_date,
            timestamp=when,
        )
        for lot in lots:
            fifo.discard_lot(context, lot.lot_id)
        raise

    log.info(
        "Recorded purchase %s from %s (%s) total %s with %d lot(s)",
        invoice.ncf,
        invoice.provider_name,
        invoice.category.value,
        invoice.total,
        len(lots),
    )
    return PurchaseResult(invoice=invoice, entry=entry, lots=tuple(lots))


def pay_supplier(
    context: RuntimeContext,
    invoice_id: str,
    amount: Decimal,
    payment_method: PaymentMethod,
    *,
    payment_date: Optional[date] = None,
    reference: Optional[str] = None,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> SupplierPaymentResult:
    """Pay all or part of an invoice and update its payment status.

    Raises:
        MissingReferenceError: If the invoice does not exist.
        BusinessRuleViolation: If the amount is not positive or exceeds the
            outstanding balance.
    """

    amount = quantize_money(amount)
    if amount <= ZERO:
        log.error("Supplier payment validation failed: %s", amount)
        raise BusinessRuleViolation("Payment amount must be greater than zero")

    when = resolve_timestamp(timestamp)
    with context.locks.hold(invoice_key(invoice_id)):
        invoice = get_invoice(context, invoice_id)
        outstanding = invoice.total - invoice.paid_amount
        if amount > outstanding:
            log.error("Overpayment of invoice %s: %s > outstanding %s", invoice.ncf, amount, outstanding)
            raise BusinessRuleViolation(
                f"Payment {amount} exceeds outstanding balance {outstanding} of invoice {invoice.ncf}"
            )

        entry = post_supplier_payment_entry(
            context,
            invoice,
            amount,
            payment_method,
            payment_date=payment_date or when.date(),
            reference=reference,
            payment_id=generate_id("PAY", when=when),
            created_by=created_by,
            timestamp=when,
        )

        paid = invoice.paid_amount + amount
        status = PaymentStatus.PAID if paid >= invoice.total else PaymentStatus.PARTIAL
        updated = replace(invoice, paid_amount=paid, payment_status=status)
        with context.locks.hold(STORE_KEY):
            data_manager.update_invoice(
                context.workbook,
                invoice_id,
                field_values={"PaidAmount": paid, "PaymentStatus": status},
            )
            invalidate_cache(context, INVOICES_CACHE)
    log.info("Paid %s to %s on invoice %s (%s)", amount, invoice.provider_name, invoice.ncf, status.value)
    return SupplierPaymentResult(invoice=updated, entry=entry)


# ---------------------------------------------------------------------------
# Inventory adjustments
# ---------------------------------------------------------------------------


def record_shrinkage(context: RuntimeContext, command: ShrinkageCommand) -> ShrinkageResult:
    """Record a stock adjustment and its accounting entry.

    Loss reasons and ``return_supplier`` draw the quantity out of the lots
    (estimating any shortfall); ``found`` adds a lot at the current FIFO cost
    or the estimated cost. An adjustment whose cost rounds to zero posts no
    entry.

    Raises:
        InvalidQuantity: If ``quantity`` is not positive.
        BusinessRuleViolation: If a ``found`` adjustment has no cost basis.
        InsufficientLotQuantity: If stock is short and no estimate exists.
    """

    quantity = to_decimal(command.quantity)
    require_positive_quantity(quantity)

    when = resolve_timestamp(command.timestamp)
    adjustment_id = generate_id("ADJ", when=when)
    entry_date = command.adjustment_date or when.date()
    product_name = command.product_name or command.product_id

    if command.reason is ShrinkageReason.FOUND:
        unit_cost = fifo.fifo_cost(context, command.product_id)
        if unit_cost is None:
            unit_cost = estimate_unit_cost(context, command.product_id, command.last_purchase_price, command.tax_rate)
        if unit_cost is None:
            log.error("No cost basis for found stock of product '%s'", command.product_id)
            raise BusinessRuleViolation(f"No cost basis for product {command.product_id}")

        cost = quantize_money(quantity * unit_cost)
        draft = entry_factory(context).shrinkage_entry(
            command.reason,
            product_name,
            quantity,
            cost,
            entry_date=entry_date,
            adjustment_id=adjustment_id,
            notes=command.notes,
            created_by=command.created_by,
        )
        if draft is not None:
            require_balanced(draft)
        lot = fifo.add_lot(
            context,
            command.product_id,
            quantity,
            unit_cost,
            command.tax_rate,
            lot_number=adjustment_id,
            purchase_date=entry_date,
            timestamp=when,
        )
        try:
            entry = journal.post(context, draft, timestamp=when) if draft is not None else None
        except Exception:
            log.error("Adjustment %s aborted; discarding lot %s", adjustment_id, lot.lot_id)
            fifo.discard_lot(context, lot.lot_id)
            raise
        log.info("Recorded found stock of %s units of product '%s' at %s", quantity, command.product_id, cost)
        return ShrinkageResult(adjustment_id=adjustment_id, cost=cost, entry=entry, lot=lot)

    consumption = _consume_with_estimate(
        context,
        command.product_id,
        quantity,
        last_purchase_price=command.last_purchase_price,
        tax_rate=command.tax_rate,
        consumed_on=entry_date,
        timestamp=when,
        adjustment_id=adjustment_id,
    )
    cost = quantize_money(consumption.total_cost)
    try:
        entry = post_shrinkage_entry(
            context,
            command.reason,
            product_name,
            quantity,
            cost,
            entry_date=entry_date,
            adjustment_id=adjustment_id,
            notes=command.notes,
            created_by=command.created_by,
            timestamp=when,
        )
    except Exception:
        log.error("Adjustment %s aborted; reverting its lot draws", adjustment_id)
        fifo.revert_consumption(context, adjustment_id=adjustment_id, timestamp=when)
        raise

    log.info(
        "Recorded %s adjustment of %s units of product '%s' at %s",
        command.reason.value,
        quantity,
        command.product_id,
        cost,
    )
    return ShrinkageResult(adjustment_id=adjustment_id, cost=cost, entry=entry, consumption=consumption)


# ---------------------------------------------------------------------------
# Card settlements
# ---------------------------------------------------------------------------


def settle_card_sales(
    context: RuntimeContext,
    sale_ids: Sequence[str],
    commission_rate: Decimal,
    *,
    settlement_date: Optional[date] = None,
    reference: Optional[str] = None,
    retention_rate: Optional[Decimal] = None,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.CardSettlementRow:
    """Settle a batch of card sales against the processor's deposit.

    Raises:
        BusinessRuleViolation: If no sale is given, a sale is not a card sale,
            or a sale was already settled.
        MissingReferenceError: If a sale id is unknown.
    """

    if not sale_ids:
        raise BusinessRuleViolation("At least one card sale is required for a settlement")

    with context.locks.hold(CARD_SETTLEMENT_KEY):
        sales = [get_sale(context, sale_id) for sale_id in dict.fromkeys(sale_ids)]
        for sale in sales:
            if sale.payment_method not in SETTLEABLE_METHODS:
                log.warning("Sale %s is not a card sale", sale.receipt_number)
                raise BusinessRuleViolation(f"Sale {sale.receipt_number} was not paid by card")
            if sale.settlement_id:
                log.warning("Sale %s already settled in %s", sale.receipt_number, sale.settlement_id)
                raise BusinessRuleViolation(f"Sale {sale.receipt_number} is already settled")

        when = resolve_timestamp(timestamp)
        settlement_id = generate_id("CS", when=when)
        gross = sum((sale.total for sale in sales), ZERO)
        if retention_rate is None:
            retention_rate = context.tax_policy.card_retention_rate
        retention_rate = to_decimal(retention_rate)
        settlement_date = settlement_date or when.date()

        entry = post_card_settlement_entry(
            context,
            gross,
            to_decimal(commission_rate),
            settlement_date=settlement_date,
            retention_rate=retention_rate,
            reference=reference,
            settlement_id=settlement_id,
            created_by=created_by,
            timestamp=when,
        )

        amounts = settlement_amounts(gross, commission_rate, retention_rate)
        record = data_manager.CardSettlementRow(
            settlement_id=settlement_id,
            settlement_date=settlement_date,
            gross_amount=amounts.gross,
            commission_rate=to_decimal(commission_rate),
            commission_amount=amounts.commission,
            retention_rate=retention_rate,
            retention_amount=amounts.retention,
            net_deposit=amounts.net_deposit,
            sale_ids=tuple(sale.sale_id for sale in sales),
            reference=reference,
            journal_entry_id=entry.entry_id,
            created_at=when,
        )
        with context.locks.hold(STORE_KEY):
            data_manager.append_card_settlement(context.workbook, record)
            for sale in sales:
                data_manager.update_sale(context.workbook, sale.sale_id, field_values={"SettlementID": settlement_id})
            invalidate_cache(context, SETTLEMENTS_CACHE, SALES_CACHE)

    log.info(
        "Settled %d card sale(s): gross %s, commission %s, retention %s, net %s",
        len(sales),
        record.gross_amount,
        record.commission_amount,
        record.retention_amount,
        record.net_deposit,
    )
    return record


# ---------------------------------------------------------------------------
# Voids
# ---------------------------------------------------------------------------


def void_entry(
    context: RuntimeContext,
    entry_id: str,
    reason: str,
    actor: Optional[str] = None,
    *,
    void_date: Optional[date] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    """Void a posted entry through the journal; returns the reversal."""

    if not reason or not reason.strip():
        raise BusinessRuleViolation("A reason is required to void an entry")
    return journal.void(context, entry_id, reason.strip(), actor, void_date=void_date, timestamp=timestamp)


__all__ = [
    "SaleItem",
    "SaleCommand",
    "SaleResult",
    "PurchaseItem",
    "PurchaseCommand",
    "PurchaseResult",
    "ShrinkageCommand",
    "ShrinkageResult",
    "ReturnItem",
    "ReturnCommand",
    "ReturnResult",
    "ShiftCloseResult",
    "SupplierPaymentResult",
    "require_positive_quantity",
    "require_nonnegative_money",
    "require_balanced",
    "entry_factory",
    "estimate_unit_cost",
    "cost_sale_line",
    "open_shift",
    "close_shift",
    "record_sale",
    "record_return",
    "record_purchase",
    "record_shrinkage",
    "pay_supplier",
    "settle_card_sales",
    "void_entry",
    "list_sales",
    "get_sale",
    "list_invoices",
    "get_invoice",
    "list_shifts",
    "get_shift",
    "list_card_settlements",
    "post_sale_entry",
    "post_shift_cogs_entry",
    "post_purchase_entry",
    "post_shrinkage_entry",
    "post_card_settlement_entry",
    "post_supplier_payment_entry",
    "post_sales_return_entry",
]
