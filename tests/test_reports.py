"""Tests for balances, financial statements, and aging reports."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from pos_ledger import data_manager, journal, reports
from pos_ledger.constants import AgingKind, InvoiceCategory, PaymentMethod, PaymentStatus, SourceType


@pytest.fixture
def post(context, draft_factory, line_factory, now):
    """Post a draft built from ``(code, debit, credit)`` triples."""

    def _post(*triples, entry_date=date(2024, 3, 10), source_type=SourceType.SALE):
        lines = tuple(line_factory(code, debit=debit, credit=credit) for code, debit, credit in triples)
        return journal.post(
            context,
            draft_factory(lines=lines, entry_date=entry_date, source_type=source_type),
            timestamp=now,
        )

    return _post


@pytest.fixture
def trading_month(post):
    """Purchase, cash sale, card sale, COGS, and a card commission in March 2024."""

    post(("1201", "500.00", "0"), ("1104", "90.00", "0"), ("2101", "0", "590.00"), source_type=SourceType.PURCHASE)
    post(("1101", "236.00", "0"), ("4101", "0", "200.00"), ("2102", "0", "36.00"))
    post(("1106", "118.00", "0"), ("4101", "0", "100.00"), ("2102", "0", "18.00"))
    post(("5101", "180.00", "0"), ("1201", "0", "180.00"), source_type=SourceType.SHIFT_CLOSE)
    post(("1102", "112.10", "0"), ("6104", "3.54", "0"), ("2103", "2.36", "0"), ("1106", "0", "118.00"))


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------


def test_account_balance_uses_normal_side(context, trading_month):
    cash = reports.account_balance(context, "1101")
    revenue = reports.account_balance(context, "4101")
    payable = reports.account_balance(context, "2101")

    assert cash.balance == Decimal("236.00")
    assert revenue.balance == Decimal("300.00")
    assert payable.balance == Decimal("590.00")
    assert revenue.name == "Ventas de Mercancías"


def test_account_balance_is_zero_without_activity(context):
    balance = reports.account_balance(context, "1102")
    assert balance.debit == balance.credit == balance.balance == Decimal("0")


def test_account_balance_of_unknown_code_is_zero(context, trading_month):
    balance = reports.account_balance(context, "9999")

    assert balance.code == balance.name == "9999"
    assert balance.debit == balance.credit == balance.balance == Decimal("0")


def test_trial_balance_debits_equal_credits(context, trading_month):
    balances = reports.trial_balance(context)
    total_debit = sum(b.debit for b in balances.values())
    total_credit = sum(b.credit for b in balances.values())

    assert total_debit == total_credit
    assert list(balances) == sorted(balances)
    assert "1105" not in balances


def test_voided_entry_stays_in_its_period_and_reversal_offsets_it(context, post, now):
    entry = post(("1101", "50.00", "0"), ("4101", "0", "50.00"))
    journal.void(context, entry.entry_id, "Anulada", void_date=date(2024, 3, 11), timestamp=now)

    assert reports.account_balance(context, "1101").balance == Decimal("0")
    assert reports.account_balance(context, "1101", end=date(2024, 3, 10)).balance == Decimal("50.00")
    assert reports.account_balance(context, "1101", start=date(2024, 3, 11)).balance == Decimal("-50.00")


def test_void_within_range_leaves_no_trace_in_balances(context, post, now):
    """Counting only the reversal would leave revenue at -50.00."""

    entry = post(("1101", "50.00", "0"), ("4101", "0", "50.00"))
    journal.void(context, entry.entry_id, "Anulada", void_date=date(2024, 3, 10), timestamp=now)

    revenue = reports.account_balance(context, "4101")
    assert revenue.debit == revenue.credit == Decimal("50.00")
    assert revenue.balance == Decimal("0")
    assert reports.income_statement(context, date(2024, 3, 1), date(2024, 3, 31)).total_revenue == Decimal("0")


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


def test_income_statement(context, trading_month):
    statement = reports.income_statement(context, date(2024, 3, 1), date(2024, 3, 31))

    assert statement.total_revenue == Decimal("300.00")
    assert statement.cost_of_goods_sold == Decimal("180.00")
    assert statement.gross_profit == Decimal("120.00")
    assert statement.total_expenses == Decimal("3.54")
    assert statement.net_income == Decimal("116.46")


def test_income_statement_for_empty_period_is_zero(context, trading_month):
    statement = reports.income_statement(context, date(2023, 1, 1), date(2023, 12, 31))
    assert statement.revenue == ()
    assert statement.net_income == Decimal("0")


def test_balance_sheet_equity_closes_the_equation(context, trading_month):
    sheet = reports.balance_sheet(context, date(2024, 3, 31))

    assert sheet.assets_total - sheet.liabilities_total == sheet.equity.total
    assert sheet.equity.current_earnings == Decimal("116.46")
    assert sheet.equity.unexplained == sheet.equity.retained - sheet.equity.current_earnings


def test_balance_sheet_earnings_explain_plug_when_no_capital(context, trading_month):
    """With no owner contributions the whole plug is current earnings."""

    sheet = reports.balance_sheet(context, date(2024, 3, 31))
    assert sheet.equity.unexplained == Decimal("0")


def test_cash_flow_statement(context, post):
    post(("1101", "100.00", "0"), ("4101", "0", "100.00"), entry_date=date(2024, 2, 20))
    post(("1101", "40.00", "0"), ("4101", "0", "40.00"), entry_date=date(2024, 3, 5))
    post(("2101", "15.00", "0"), ("1102", "0", "15.00"), entry_date=date(2024, 3, 6))

    statement = reports.cash_flow_statement(context, date(2024, 3, 1), date(2024, 3, 31))

    assert statement.beginning_cash == Decimal("100.00")
    assert statement.net_change == Decimal("25.00")
    assert statement.ending_cash == Decimal("125.00")


# ---------------------------------------------------------------------------
# Aging
# ---------------------------------------------------------------------------


def _credit_sale(context, sale_id, customer_id, total, *, sale_date, due_date=None, paid="0", status=PaymentStatus.PENDING):
    data_manager.append_sale(
        context.workbook,
        data_manager.SaleRow(
            sale_id=sale_id,
            sale_date=sale_date,
            receipt_number=sale_id,
            subtotal=Decimal(total),
            tax_total=Decimal("0"),
            total=Decimal(total),
            payment_method=PaymentMethod.CREDIT,
            payment_status=status,
            paid_amount=Decimal(paid),
            customer_id=customer_id,
            customer_name=f"Cliente {customer_id}",
            due_date=due_date,
        ),
    )


def test_ar_aging_buckets_by_days_overdue(context, today):
    _credit_sale(context, "S1", "C1", "100", sale_date=today - timedelta(days=10))
    _credit_sale(context, "S2", "C1", "50", sale_date=today - timedelta(days=45))
    _credit_sale(context, "S3", "C2", "70", sale_date=today - timedelta(days=120), due_date=today - timedelta(days=75))
    _credit_sale(context, "S4", "C2", "30", sale_date=today - timedelta(days=200), paid="10", status=PaymentStatus.PARTIAL)

    report = reports.ar_aging_report(context, today)

    by_customer = {row.entity_id: row.aging for row in report.rows}
    assert by_customer["C1"].current == Decimal("100")
    assert by_customer["C1"].days_31_60 == Decimal("50")
    assert by_customer["C2"].days_61_90 == Decimal("70")
    assert by_customer["C2"].over_90 == Decimal("20")
    assert report.totals.total == Decimal("240")
    assert report.kind is AgingKind.AR


def test_aging_buckets_sum_to_total(context, today):
    """For every row, the four buckets add up to its total."""

    for offset in (0, 30, 31, 60, 61, 90, 91):
        _credit_sale(context, f"S{offset}", f"C{offset % 2}", "10", sale_date=today - timedelta(days=offset))

    report = reports.ar_aging_report(context, today)
    for bucket in [row.aging for row in report.rows] + [report.totals]:
        assert bucket.current + bucket.days_31_60 + bucket.days_61_90 + bucket.over_90 == bucket.total
    assert report.totals.current == Decimal("20")
    assert report.totals.over_90 == Decimal("10")


def test_ar_aging_skips_paid_and_anonymous_sales(context, today):
    _credit_sale(context, "S1", "C1", "100", sale_date=today, status=PaymentStatus.PAID, paid="100")
    _credit_sale(context, "S2", None, "100", sale_date=today)

    report = reports.ar_aging_report(context, today)
    assert report.rows == ()
    assert report.totals.total == Decimal("0")


def test_future_due_dates_count_as_current(context, today):
    _credit_sale(context, "S1", "C1", "80", sale_date=today - timedelta(days=100), due_date=today + timedelta(days=5))
    report = reports.ar_aging_report(context, today)
    assert report.totals.current == Decimal("80")


def test_ap_aging_groups_by_supplier(context, today):
    for invoice_id, supplier, issued in (("I1", "SUP-1", 5), ("I2", "SUP-1", 95), ("I3", None, 5)):
        data_manager.append_invoice(
            context.workbook,
            data_manager.InvoiceRow(
                invoice_id=invoice_id,
                provider_name="Distribuidora",
                ncf=invoice_id,
                issue_date=today - timedelta(days=issued),
                category=InvoiceCategory.INVENTORY,
                subtotal=Decimal("100"),
                tax_total=Decimal("0"),
                total=Decimal("100"),
                supplier_id=supplier,
            ),
        )

    report = reports.aging_report(context, AgingKind.AP, today)

    assert [row.entity_id for row in report.rows] == ["SUP-1"]
    assert report.rows[0].aging.current == Decimal("100")
    assert report.rows[0].aging.over_90 == Decimal("100")
    assert report.totals.total == Decimal("200")
