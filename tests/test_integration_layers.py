"""Integration tests walking a business day through every layer.

Each scenario persists to disk and reloads between steps so the workflows run
against the same serialized workbook the CLI would see.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from pos_ledger import context as context_module, core_logic, fifo, journal, reports
from pos_ledger.constants import (
    EntryStatus,
    InvoiceCategory,
    PaymentMethod,
    PaymentStatus,
    RefundMethod,
    ShrinkageReason,
    SourceType,
)


@pytest.fixture
def runtime_context(config_factory):
    bundle = config_factory()
    return context_module.load_runtime_context(bundle.config_path)


def _roundtrip(context):
    context_module.persist_context(context)
    return context_module.refresh_context(context)


def _trial_balance_closes(context) -> bool:
    balances = reports.trial_balance(context).values()
    return sum(b.debit for b in balances) == sum(b.credit for b in balances)


def test_trading_day_lifecycle(runtime_context, now):
    context = runtime_context

    purchase = core_logic.record_purchase(
        context,
        core_logic.PurchaseCommand(
            provider_name="Distribuidora Caribe",
            ncf="B0100000001",
            category=InvoiceCategory.INVENTORY,
            subtotal=Decimal("200.00"),
            tax_total=Decimal("36.00"),
            total=Decimal("236.00"),
            items=(
                core_logic.PurchaseItem("P-ARROZ", Decimal("10"), Decimal("12.00")),
                core_logic.PurchaseItem("P-ACEITE", Decimal("4"), Decimal("20.00")),
            ),
            supplier_id="SUP-1",
            timestamp=now,
        ),
    )
    context = _roundtrip(context)

    shift = core_logic.open_shift(context, "1", "Ana", timestamp=now)
    card_sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            receipt_number="0001",
            subtotal=Decimal("100.00"),
            tax_total=Decimal("18.00"),
            total=Decimal("118.00"),
            payment_method=PaymentMethod.CARD,
            items=(core_logic.SaleItem("P-ARROZ", Decimal("4")), core_logic.SaleItem("P-ACEITE", Decimal("1"))),
            shift_id=shift.shift_id,
            timestamp=now,
        ),
    )
    core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            receipt_number="0002",
            subtotal=Decimal("50.00"),
            tax_total=Decimal("0"),
            total=Decimal("50.00"),
            payment_method=PaymentMethod.CREDIT,
            items=(core_logic.SaleItem("P-ARROZ", Decimal("2")),),
            shift_id=shift.shift_id,
            customer_id="C-1",
            customer_name="Doña Rosa",
            timestamp=now,
        ),
    )
    context = _roundtrip(context)

    closed = core_logic.close_shift(context, shift.shift_id, timestamp=now)
    assert closed.cogs_total == Decimal("92.00")

    core_logic.settle_card_sales(context, [card_sale.sale.sale_id], Decimal("0.03"), timestamp=now)
    core_logic.pay_supplier(
        context, purchase.invoice.invoice_id, Decimal("100.00"), PaymentMethod.BANK_TRANSFER, timestamp=now
    )
    core_logic.record_shrinkage(
        context,
        core_logic.ShrinkageCommand("P-ACEITE", Decimal("1"), ShrinkageReason.DAMAGE, timestamp=now),
    )
    context = _roundtrip(context)

    assert fifo.available_quantity(context, "P-ARROZ") == Decimal("4")
    assert fifo.available_quantity(context, "P-ACEITE") == Decimal("2")
    assert fifo.total_valuation(context).value == Decimal("88.00")

    assert _trial_balance_closes(context)
    assert reports.account_balance(context, "1201").balance == Decimal("88.00")

    sheet = reports.balance_sheet(context, now.date())
    assert sheet.assets_total - sheet.liabilities_total == sheet.equity.total

    ar = reports.ar_aging_report(context, now.date())
    assert ar.totals.total == Decimal("50.00")
    ap = reports.ap_aging_report(context, now.date())
    assert ap.totals.total == Decimal("136.00")
    assert core_logic.get_invoice(context, purchase.invoice.invoice_id).payment_status is PaymentStatus.PARTIAL


def test_return_and_void_keep_books_balanced(runtime_context, now):
    context = runtime_context
    fifo.add_lot(context, "P1", Decimal("5"), Decimal("10.00"), timestamp=now)
    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            receipt_number="0009",
            subtotal=Decimal("60.00"),
            tax_total=Decimal("0"),
            total=Decimal("60.00"),
            payment_method=PaymentMethod.CASH,
            items=(core_logic.SaleItem("P1", Decimal("3")),),
            timestamp=now,
        ),
    )
    context = _roundtrip(context)

    core_logic.record_return(
        context,
        core_logic.ReturnCommand(
            sale_id=sale.sale.sale_id,
            subtotal=Decimal("20.00"),
            tax_total=Decimal("0"),
            total=Decimal("20.00"),
            refund_method=RefundMethod.CASH,
            items=(core_logic.ReturnItem("P1", Decimal("1")),),
            timestamp=now,
        ),
    )
    core_logic.void_entry(context, sale.entry.entry_id, "Recibo duplicado", "ana", timestamp=now)
    context = _roundtrip(context)

    assert fifo.available_quantity(context, "P1") == Decimal("3")
    assert journal.get_entry(context, sale.entry.entry_id).status is EntryStatus.VOIDED
    assert len(journal.entries_by_source_type(context, SourceType.RETURN)) == 1
    assert reports.account_balance(context, "1101").balance == Decimal("-20.00")
    assert _trial_balance_closes(context)
