"""Reporting engine.

Read-only aggregations over journal lines (balances, statements)
and over open sales and invoices (aging). Empty ranges produce zero-valued
reports rather than errors.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from . import data_manager
from .chart import (
    ASSET_PREFIX,
    EXPENSE_PREFIX,
    LIABILITY_PREFIX,
    REVENUE_PREFIX,
    CodeLike,
    code_value,
    is_debit_normal,
)
from .constants import AccountCode, AgingKind, PaymentStatus
from .context import RuntimeContext, resolve_timestamp
from .journal import entries_by_source_type, entries_for_period, list_entries
from .tax import ZERO


CASH_ACCOUNTS: Tuple[str, ...] = (AccountCode.CASH.value, AccountCode.BANK.value)
COGS_ACCOUNT = AccountCode.COST_OF_GOODS_SOLD.value
COST_PREFIX = "5"


@dataclass(frozen=True)
class AccountBalance:
    code: str
    name: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass(frozen=True)
class StatementLine:
    code: str
    name: str
    amount: Decimal


@dataclass(frozen=True)
class IncomeStatement:
    start: date
    end: date
    revenue: Tuple[StatementLine, ...]
    total_revenue: Decimal
    cost_of_goods_sold: Decimal
    gross_profit: Decimal
    operating_expenses: Tuple[StatementLine, ...]
    total_expenses: Decimal
    net_income: Decimal


@dataclass(frozen=True)
class EquitySection:
    """Equity side of the balance sheet.

    ``retained`` is the plug ``assets - liabilities``; no equity account is
    tracked. ``current_earnings`` is the cumulative net income booked through
    revenue, cost, and expense accounts up to the report date, and
    ``unexplained`` is whatever part of the plug those earnings do not
    account for.
    """

    retained: Decimal
    current_earnings: Decimal
    unexplained: Decimal

    @property
    def total(self) -> Decimal:
        return self.retained


@dataclass(frozen=True)
class BalanceSheet:
    as_of: date
    assets: Tuple[AccountBalance, ...]
    assets_total: Decimal
    liabilities: Tuple[AccountBalance, ...]
    liabilities_total: Decimal
    equity: EquitySection


@dataclass(frozen=True)
class CashFlowStatement:
    start: date
    end: date
    operating: Tuple[Tuple[str, Decimal], ...]
    investing: Tuple[Tuple[str, Decimal], ...]
    financing: Tuple[Tuple[str, Decimal], ...]
    net_change: Decimal
    beginning_cash: Decimal
    ending_cash: Decimal


@dataclass
class AgingBucket:
    current: Decimal = ZERO
    days_31_60: Decimal = ZERO
    days_61_90: Decimal = ZERO
    over_90: Decimal = ZERO
    total: Decimal = ZERO

    def add(self, days_overdue: int, amount: Decimal) -> None:
        if days_overdue <= 30:
            self.current += amount
        elif days_overdue <= 60:
            self.days_31_60 += amount
        elif days_overdue <= 90:
            self.days_61_90 += amount
        else:
            self.over_90 += amount
        self.total += amount

    def merge(self, other: "AgingBucket") -> None:
        self.current += other.current
        self.days_31_60 += other.days_31_60
        self.days_61_90 += other.days_61_90
        self.over_90 += other.over_90
        self.total += other.total


@dataclass(frozen=True)
class AgingRow:
    entity_id: str
    name: str
    aging: AgingBucket


@dataclass(frozen=True)
class AgingReport:
    kind: AgingKind
    as_of: date
    rows: Tuple[AgingRow, ...]
    totals: AgingBucket = field(default_factory=AgingBucket)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ledger_lines(
    context: RuntimeContext,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Iterator[data_manager.JournalEntryLine]:
    """Lines of every entry dated in range, voided ones included.

    A void never edits the original; it posts a reversal. Dropping the voided
    original while keeping its reversal would count the reversal alone and
    push the account the other way, so both are summed and net to zero.
    """

    for entry in list_entries(context, start=start, end=end):
        yield from entry.lines


def _signed(code: str, debit: Decimal, credit: Decimal) -> Decimal:
    return debit - credit if is_debit_normal(code) else credit - debit


def _balances(
    context: RuntimeContext,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, AccountBalance]:
    debits: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    credits: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for line in _ledger_lines(context, start, end):
        debits[line.account_code] += line.debit
        credits[line.account_code] += line.credit

    balances = {}
    for code in context.chart.codes():
        if code not in debits:
            continue
        balances[code] = AccountBalance(
            code=code,
            name=context.chart.name(code),
            debit=debits[code],
            credit=credits[code],
            balance=_signed(code, debits[code], credits[code]),
        )
    return balances


# ---------------------------------------------------------------------------
# Balances and statements
# ---------------------------------------------------------------------------


def account_balance(
    context: RuntimeContext,
    code: CodeLike,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> AccountBalance:
    """Sum one account's journal lines within the optional date range.

    ``balance`` is ``debit - credit`` for accounts starting with 1, 5 or 6 and
    ``credit - debit`` for every other account. A voided entry and its
    reversal both count, so a void nets to zero once both fall in range.
    A code outside the chart has no lines and yields a zero balance.
    """

    code = code_value(code)
    debit = ZERO
    credit = ZERO
    for line in _ledger_lines(context, start, end):
        if line.account_code == code:
            debit += line.debit
            credit += line.credit
    return AccountBalance(
        code=code,
        name=context.chart.name(code) if code in context.chart else code,
        debit=debit,
        credit=credit,
        balance=_signed(code, debit, credit),
    )


def trial_balance(
    context: RuntimeContext,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, AccountBalance]:
    """Balance of every chart account with activity in range, in chart order."""

    return {
        code: balance
        for code, balance in _balances(context, start, end).items()
        if balance.debit != ZERO or balance.credit != ZERO
    }


def income_statement(context: RuntimeContext, start: date, end: date) -> IncomeStatement:
    """Revenue (4xxx), COGS (5101), and operating expenses (6xxx) for the period."""

    revenue: List[StatementLine] = []
    expenses: List[StatementLine] = []
    cogs = ZERO

    for code, balance in _balances(context, start, end).items():
        if code.startswith(REVENUE_PREFIX):
            revenue.append(StatementLine(code, balance.name, balance.credit - balance.debit))
        elif code == COGS_ACCOUNT:
            cogs += balance.debit - balance.credit
        elif code.startswith(EXPENSE_PREFIX):
            expenses.append(StatementLine(code, balance.name, balance.debit - balance.credit))

    total_revenue = sum((line.amount for line in revenue), ZERO)
    total_expenses = sum((line.amount for line in expenses), ZERO)
    gross_profit = total_revenue - cogs
    return IncomeStatement(
        start=start,
        end=end,
        revenue=tuple(revenue),
        total_revenue=total_revenue,
        cost_of_goods_sold=cogs,
        gross_profit=gross_profit,
        operating_expenses=tuple(expenses),
        total_expenses=total_expenses,
        net_income=gross_profit - total_expenses,
    )


def balance_sheet(context: RuntimeContext, as_of: date) -> BalanceSheet:
    """Assets and liabilities at ``as_of`` with equity as the balancing plug."""

    balances = _balances(context, end=as_of)
    assets = tuple(b for code, b in balances.items() if code.startswith(ASSET_PREFIX))
    liabilities = tuple(b for code, b in balances.items() if code.startswith(LIABILITY_PREFIX))
    assets_total = sum((b.balance for b in assets), ZERO)
    liabilities_total = sum((b.balance for b in liabilities), ZERO)

    earnings = ZERO
    for code, b in balances.items():
        if code.startswith(REVENUE_PREFIX):
            earnings += b.credit - b.debit
        elif code.startswith((COST_PREFIX, EXPENSE_PREFIX)):
            earnings -= b.debit - b.credit

    retained = assets_total - liabilities_total
    return BalanceSheet(
        as_of=as_of,
        assets=assets,
        assets_total=assets_total,
        liabilities=liabilities,
        liabilities_total=liabilities_total,
        equity=EquitySection(
            retained=retained,
            current_earnings=earnings,
            unexplained=retained - earnings,
        ),
    )


def cash_flow_statement(context: RuntimeContext, start: date, end: date) -> CashFlowStatement:
    """Simplified cash flow: movement of cash and bank over the period."""

    beginning = ZERO
    net_change = ZERO
    for entry in list_entries(context, end=end):
        for line in entry.lines:
            if line.account_code not in CASH_ACCOUNTS:
                continue
            amount = line.debit - line.credit
            if entry.entry_date < start:
                beginning += amount
            else:
                net_change += amount

    return CashFlowStatement(
        start=start,
        end=end,
        operating=(("Net change in cash (simplified)", net_change),),
        investing=(),
        financing=(),
        net_change=net_change,
        beginning_cash=beginning,
        ending_cash=beginning + net_change,
    )


# ---------------------------------------------------------------------------
# Aging
# ---------------------------------------------------------------------------


def _days_overdue(today: date, reference: date) -> int:
    return max(0, (today - reference).days)


def _build_aging(kind: AgingKind, today: date, items: List[Tuple[str, str, date, Decimal]]) -> AgingReport:
    buckets: Dict[str, AgingBucket] = {}
    names: Dict[str, str] = {}
    for entity_id, name, reference, outstanding in items:
        bucket = buckets.setdefault(entity_id, AgingBucket())
        names.setdefault(entity_id, name)
        bucket.add(_days_overdue(today, reference), outstanding)

    rows = tuple(AgingRow(entity_id, names[entity_id], bucket) for entity_id, bucket in buckets.items())
    totals = AgingBucket()
    for row in rows:
        totals.merge(row.aging)
    return AgingReport(kind=kind, as_of=today, rows=rows, totals=totals)


def ar_aging_report(context: RuntimeContext, today: Optional[date] = None) -> AgingReport:
    """Outstanding customer balances, grouped per customer."""

    today = today or resolve_timestamp(None).date()
    items = []
    for sale in data_manager.iter_sales(context.workbook):
        if sale.payment_status is PaymentStatus.PAID or not sale.customer_id:
            continue
        outstanding = sale.total - sale.paid_amount
        if outstanding <= ZERO:
            continue
        items.append((sale.customer_id, sale.customer_name or "Cliente", sale.due_date or sale.sale_date, outstanding))
    return _build_aging(AgingKind.AR, today, items)


def ap_aging_report(context: RuntimeContext, today: Optional[date] = None) -> AgingReport:
    """Outstanding supplier balances, grouped per supplier."""

    today = today or resolve_timestamp(None).date()
    items = []
    for invoice in data_manager.iter_invoices(context.workbook):
        if invoice.payment_status is PaymentStatus.PAID or not invoice.supplier_id:
            continue
        outstanding = invoice.total - invoice.paid_amount
        if outstanding <= ZERO:
            continue
        items.append(
            (
                invoice.supplier_id,
                invoice.provider_name or "Proveedor",
                invoice.due_date or invoice.issue_date,
                outstanding,
            )
        )
    return _build_aging(AgingKind.AP, today, items)


def aging_report(context: RuntimeContext, kind: AgingKind, today: Optional[date] = None) -> AgingReport:
    if kind is AgingKind.AR:
        return ar_aging_report(context, today)
    return ap_aging_report(context, today)


__all__ = [
    "AccountBalance",
    "StatementLine",
    "IncomeStatement",
    "EquitySection",
    "BalanceSheet",
    "CashFlowStatement",
    "AgingBucket",
    "AgingRow",
    "AgingReport",
    "account_balance",
    "trial_balance",
    "income_statement",
    "balance_sheet",
    "cash_flow_statement",
    "ar_aging_report",
    "ap_aging_report",
    "aging_report",
    "entries_for_period",
    "entries_by_source_type",
]
