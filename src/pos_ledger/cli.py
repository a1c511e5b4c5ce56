"""Command-line entry points for the POS ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the workflow
layer, and printing report results. Keeping the CLI thin ensures the same
parser configuration can be reused by tests or scripts.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, fifo, journal, log, reports
from .constants import AgingKind, EntryStatus, InvoiceCategory, PaymentMethod, RefundMethod, ShrinkageReason
from .context import RuntimeContext, ensure_schema_version, load_runtime_context as _load_context, persist_context
from .errors import BusinessRuleViolation


@dataclass(frozen=True)
class CommandSpec:
    """One sub-command: how to register its parser and how to run it.

    ``mutates`` is false for reports, which never write the workbook back.
    """

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def decimal_arg(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid decimal value: {raw!r}") from exc


def date_arg(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO date: {raw!r}") from exc


def _split_item(raw: str, minimum: int, maximum: int) -> list[str]:
    parts = raw.split(":")
    if not minimum <= len(parts) <= maximum or not parts[0]:
        raise argparse.ArgumentTypeError(f"invalid item: {raw!r}")
    return parts


def sale_item_arg(raw: str) -> core_logic.SaleItem:
    """Parse ``PRODUCT:QTY[:LAST_PRICE]``."""

    parts = _split_item(raw, 2, 3)
    return core_logic.SaleItem(
        product_id=parts[0],
        quantity=decimal_arg(parts[1]),
        last_purchase_price=decimal_arg(parts[2]) if len(parts) == 3 else None,
    )


def purchase_item_arg(raw: str) -> core_logic.PurchaseItem:
    """Parse ``PRODUCT:QTY:UNIT_PRICE[:EXPIRATION]``; the price excludes tax."""

    parts = _split_item(raw, 3, 4)
    return core_logic.PurchaseItem(
        product_id=parts[0],
        quantity=decimal_arg(parts[1]),
        unit_price=decimal_arg(parts[2]),
        expiration_date=date_arg(parts[3]) if len(parts) == 4 else None,
    )


def return_item_arg(raw: str) -> core_logic.ReturnItem:
    """Parse ``PRODUCT:QTY``."""

    parts = _split_item(raw, 2, 2)
    return core_logic.ReturnItem(product_id=parts[0], quantity=decimal_arg(parts[1]))


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Top-level parser with the options shared by every sub-command."""
    parser = argparse.ArgumentParser(
        prog="pos-ledger",
        description="Command-line tools for the POS Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument("--user", default=None, help="Name recorded as the author of posted entries.")
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Attach the write and read sub-commands and return them keyed by name."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and purchases."""
    specs = {
        "open-shift": register_open_shift_command(subparsers),
        "close-shift": register_close_shift_command(subparsers),
        "sale": register_sale_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "shrinkage": register_shrinkage_command(subparsers),
        "settle-cards": register_settle_cards_command(subparsers),
        "pay-supplier": register_pay_supplier_command(subparsers),
        "return": register_return_command(subparsers),
        "void": register_void_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as statements."""
    specs = {
        "trial-balance": register_trial_balance_command(subparsers),
        "income": register_income_command(subparsers),
        "balance-sheet": register_balance_sheet_command(subparsers),
        "cash-flow": register_cash_flow_command(subparsers),
        "aging": register_aging_command(subparsers),
        "journal": register_journal_command(subparsers),
        "stock": register_stock_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _period_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", type=date_arg, required=True, help="First day of the period (YYYY-MM-DD).")
    parser.add_argument("--end", type=date_arg, required=True, help="Last day of the period (YYYY-MM-DD).")


def register_open_shift_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "open-shift"
    help_text = "Open a cash register shift."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shift-number", required=True)
        parser.add_argument("--cashier", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_open_shift)


def register_close_shift_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "close-shift"
    help_text = "Close a shift and post its cost of goods sold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shift-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_close_shift)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """``sale``: repeat ``--item`` once per product line on the receipt."""
    name = "sale"
    help_text = "Record a sale and cost its items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--receipt", required=True)
        parser.add_argument("--subtotal", type=decimal_arg, required=True)
        parser.add_argument("--tax", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--total", type=decimal_arg, required=True)
        parser.add_argument(
            "--payment-method",
            choices=[PaymentMethod.CASH.value, PaymentMethod.CARD.value, PaymentMethod.CREDIT.value],
            required=True,
        )
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=sale_item_arg,
            default=[],
            help="PRODUCT:QTY[:LAST_PRICE]; repeat for each product.",
        )
        parser.add_argument("--shift-id", default=None)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--customer-name", default=None)
        parser.add_argument("--due-date", type=date_arg, default=None)
        parser.add_argument("--date", dest="sale_date", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "purchase"
    help_text = "Record a supplier invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--provider", required=True)
        parser.add_argument("--ncf", required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in InvoiceCategory],
            default=InvoiceCategory.INVENTORY.value,
        )
        parser.add_argument("--subtotal", type=decimal_arg, required=True)
        parser.add_argument("--tax", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--total", type=decimal_arg, required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=purchase_item_arg,
            default=[],
            help="PRODUCT:QTY:UNIT_PRICE[:EXPIRATION]; repeat for each product.",
        )
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--date", dest="issue_date", type=date_arg, default=None)
        parser.add_argument("--due-date", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_shrinkage_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "shrinkage"
    help_text = "Record an inventory adjustment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--product-name", default=None)
        parser.add_argument("--quantity", type=decimal_arg, required=True)
        parser.add_argument("--reason", choices=[member.value for member in ShrinkageReason], required=True)
        parser.add_argument("--last-price", type=decimal_arg, default=None)
        parser.add_argument("--notes", default=None)
        parser.add_argument("--date", dest="adjustment_date", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_shrinkage)


def register_settle_cards_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """``settle-cards``: ``--retention-rate`` defaults to the configured card retention."""
    name = "settle-cards"
    help_text = "Settle card sales against a processor deposit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", dest="sale_ids", action="append", required=True)
        parser.add_argument("--commission-rate", type=decimal_arg, required=True)
        parser.add_argument("--retention-rate", type=decimal_arg, default=None)
        parser.add_argument("--reference", default=None)
        parser.add_argument("--date", dest="settlement_date", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_settle_cards)


def register_pay_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "pay-supplier"
    help_text = "Pay an outstanding supplier invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.add_argument("--amount", type=decimal_arg, required=True)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--reference", default=None)
        parser.add_argument("--date", dest="payment_date", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_supplier)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "return"
    help_text = "Refund a sale and restore its stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--subtotal", type=decimal_arg, required=True)
        parser.add_argument("--tax", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--total", type=decimal_arg, required=True)
        parser.add_argument("--refund-method", choices=[member.value for member in RefundMethod], required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=return_item_arg,
            default=[],
            help="PRODUCT:QTY; repeat for each returned product.",
        )
        parser.add_argument("--date", dest="return_date", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return)


def register_void_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """``void`` posts a reversal; the original entry is never edited."""
    name = "void"
    help_text = "Void a posted journal entry with a reversal."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", required=True)
        parser.add_argument("--reason", required=True)
        parser.add_argument("--date", dest="void_date", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_void)


def register_trial_balance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "trial-balance"
    help_text = "Display debit and credit totals per account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=date_arg, default=None)
        parser.add_argument("--end", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_trial_balance, mutates=False)


def register_income_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "income"
    help_text = "Display the income statement for a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _period_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_income, mutates=False)


def register_balance_sheet_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "balance-sheet"
    help_text = "Display the balance sheet at a date."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_balance_sheet, mutates=False)


def register_cash_flow_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "cash-flow"
    help_text = "Display cash movement for a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _period_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cash_flow, mutates=False)


def register_aging_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """``aging`` prints receivables (``ar``) or payables (``ap``) by age bucket."""
    name = "aging"
    help_text = "Display receivable or payable aging buckets."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in AgingKind], default=AgingKind.AR.value)
        parser.add_argument("--as-of", type=date_arg, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_aging, mutates=False)


def register_journal_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "journal"
    help_text = "List journal entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=date_arg, default=None)
        parser.add_argument("--end", type=date_arg, default=None)
        parser.add_argument("--status", choices=[member.value for member in EntryStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_journal, mutates=False)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    name = "stock"
    help_text = "Display FIFO stock levels and valuation."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock, mutates=False)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load the context from ``config_path``, defaulting to ./config.ini."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return _load_context(target)


def dispatch_command(
    context: RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Run the executor registered for ``args.command``."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Index ``specs`` by name, refusing duplicates."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Build a :class:`core_logic.SaleCommand`; ``--user`` becomes ``created_by``."""
    return core_logic.SaleCommand(
        receipt_number=args.receipt,
        subtotal=args.subtotal,
        tax_total=args.tax,
        total=args.total,
        payment_method=PaymentMethod(args.payment_method),
        items=tuple(args.items),
        shift_id=args.shift_id,
        customer_id=args.customer_id,
        customer_name=args.customer_name,
        due_date=args.due_date,
        sale_date=args.sale_date,
        created_by=getattr(args, "user", None),
    )


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        provider_name=args.provider,
        ncf=args.ncf,
        category=InvoiceCategory(args.category),
        subtotal=args.subtotal,
        tax_total=args.tax,
        total=args.total,
        items=tuple(args.items),
        supplier_id=args.supplier_id,
        issue_date=args.issue_date,
        due_date=args.due_date,
        created_by=getattr(args, "user", None),
    )


def translate_shrinkage(args: argparse.Namespace) -> core_logic.ShrinkageCommand:
    """Translate CLI args into an inventory adjustment command."""
    return core_logic.ShrinkageCommand(
        product_id=args.product_id,
        quantity=args.quantity,
        reason=ShrinkageReason(args.reason),
        product_name=args.product_name,
        notes=args.notes,
        last_purchase_price=args.last_price,
        adjustment_date=args.adjustment_date,
        created_by=getattr(args, "user", None),
    )


def translate_return(args: argparse.Namespace) -> core_logic.ReturnCommand:
    """Translate CLI args into a sales return command."""
    return core_logic.ReturnCommand(
        sale_id=args.sale_id,
        subtotal=args.subtotal,
        tax_total=args.tax,
        total=args.total,
        refund_method=RefundMethod(args.refund_method),
        items=tuple(args.items),
        return_date=args.return_date,
        created_by=getattr(args, "user", None),
    )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_open_shift(context: RuntimeContext, args: argparse.Namespace) -> int:
    shift = core_logic.open_shift(context, args.shift_number, args.cashier)
    print(f"Opened shift {shift.shift_number}: {shift.shift_id}")
    return 0


def run_close_shift(context: RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.close_shift(context, args.shift_id, created_by=getattr(args, "user", None))
    entry = result.entry.entry_number if result.entry else "no entry"
    print(f"Closed shift {result.shift.shift_number}: COGS {result.cogs_total} ({entry})")
    return 0


def run_sale(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow."""
    result = core_logic.record_sale(context, translate_sale(args))
    print(f"Sale {result.sale.sale_id} posted as {result.entry.entry_number}")
    return 0


def run_purchase(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow."""
    result = core_logic.record_purchase(context, translate_purchase(args))
    print(
        f"Invoice {result.invoice.invoice_id} posted as {result.entry.entry_number} ({len(result.lots)} lot(s))"
    )
    return 0


def run_shrinkage(context: RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.record_shrinkage(context, translate_shrinkage(args))
    entry = result.entry.entry_number if result.entry else "no entry"
    print(f"Adjustment {result.adjustment_id}: cost {result.cost} ({entry})")
    return 0


def run_settle_cards(context: RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.settle_card_sales(
        context,
        args.sale_ids,
        args.commission_rate,
        settlement_date=args.settlement_date,
        reference=args.reference,
        retention_rate=args.retention_rate,
        created_by=getattr(args, "user", None),
    )
    print(f"Settlement {record.settlement_id}: net deposit {record.net_deposit}")
    return 0


def run_pay_supplier(context: RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.pay_supplier(
        context,
        args.invoice_id,
        args.amount,
        PaymentMethod(args.payment_method),
        payment_date=args.payment_date,
        reference=args.reference,
        created_by=getattr(args, "user", None),
    )
    print(f"Invoice {result.invoice.invoice_id} is {result.invoice.payment_status.value}")
    return 0


def run_return(context: RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.record_return(context, translate_return(args))
    print(f"Return {result.return_id} posted as {result.entry.entry_number}")
    return 0


def run_void(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the void workflow."""
    reversal = core_logic.void_entry(
        context,
        args.entry_id,
        args.reason,
        getattr(args, "user", None),
        void_date=args.void_date,
    )
    print(f"Voided {args.entry_id} with {reversal.entry_number}")
    return 0


def run_trial_balance(context: RuntimeContext, args: argparse.Namespace) -> int:
    total_debit = Decimal("0")
    total_credit = Decimal("0")
    for balance in reports.trial_balance(context, args.start, args.end).values():
        print(f"{balance.code}  {balance.name:<35} {balance.debit:>12} {balance.credit:>12}")
        total_debit += balance.debit
        total_credit += balance.credit
    print(f"{'TOTAL':<41} {total_debit:>12} {total_credit:>12}")
    return 0


def run_income(context: RuntimeContext, args: argparse.Namespace) -> int:
    statement = reports.income_statement(context, args.start, args.end)
    for line in statement.revenue:
        print(f"{line.code}  {line.name:<35} {line.amount:>12}")
    print(f"Revenue: {statement.total_revenue}")
    print(f"Cost of goods sold: {statement.cost_of_goods_sold}")
    print(f"Gross profit: {statement.gross_profit}")
    for line in statement.operating_expenses:
        print(f"{line.code}  {line.name:<35} {line.amount:>12}")
    print(f"Operating expenses: {statement.total_expenses}")
    print(f"Net income: {statement.net_income}")
    return 0


def run_balance_sheet(context: RuntimeContext, args: argparse.Namespace) -> int:
    sheet = reports.balance_sheet(context, args.as_of or date.today())
    for balance in sheet.assets:
        print(f"{balance.code}  {balance.name:<35} {balance.balance:>12}")
    print(f"Total assets: {sheet.assets_total}")
    for balance in sheet.liabilities:
        print(f"{balance.code}  {balance.name:<35} {balance.balance:>12}")
    print(f"Total liabilities: {sheet.liabilities_total}")
    print(f"Equity: {sheet.equity.total} (earnings {sheet.equity.current_earnings})")
    return 0


def run_cash_flow(context: RuntimeContext, args: argparse.Namespace) -> int:
    statement = reports.cash_flow_statement(context, args.start, args.end)
    print(f"Beginning cash: {statement.beginning_cash}")
    print(f"Net change: {statement.net_change}")
    print(f"Ending cash: {statement.ending_cash}")
    return 0


def run_aging(context: RuntimeContext, args: argparse.Namespace) -> int:
    report = reports.aging_report(context, AgingKind(args.kind), args.as_of)
    for row in report.rows:
        bucket = row.aging
        print(
            f"{row.name:<25} {bucket.current:>10} {bucket.days_31_60:>10} "
            f"{bucket.days_61_90:>10} {bucket.over_90:>10} {bucket.total:>10}"
        )
    print(f"Total outstanding: {report.totals.total}")
    return 0


def run_journal(context: RuntimeContext, args: argparse.Namespace) -> int:
    status = EntryStatus(args.status) if args.status else None
    for entry in journal.list_entries(context, status=status, start=args.start, end=args.end):
        print(
            f"{entry.entry_number}  {entry.entry_date.isoformat()}  {entry.status.value:<7} "
            f"{entry.total_debit:>12}  {entry.description}"
        )
    return 0


def run_stock(context: RuntimeContext, args: argparse.Namespace) -> int:
    product_ids = sorted({lot.product_id for lot in fifo.list_lots(context)})
    for product_id in product_ids:
        valuation = fifo.product_valuation(context, product_id)
        print(f"{product_id:<20} {valuation.quantity:>10} {valuation.value:>12}")
    total = fifo.total_valuation(context)
    print(f"Inventory value: {total.value}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def handle_cli_error(error: Exception) -> int:
    """Log ``error`` and map it to an exit code: 2 business rule, 3 missing file, 1 other."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: RuntimeContext) -> None:
    """Save the workbook, reporting a locked or read-only file as ``RuntimeError``."""
    try:
        persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """Parse ``argv``, run one command, and save when it changed the ledger."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        mutates = command_table[args.command].mutates
        if mutates:
            ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - mapping tested via handle_cli_error
        return handle_cli_error(error)
