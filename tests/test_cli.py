"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from pos_ledger import cli, context as context_module, core_logic, fifo, journal
from pos_ledger.constants import InvoiceCategory, PaymentMethod, RefundMethod, ShiftStatus, ShrinkageReason
from pos_ledger.errors import BusinessRuleViolation, MissingReferenceError


WRITE_COMMANDS = {
    "open-shift",
    "close-shift",
    "sale",
    "purchase",
    "shrinkage",
    "settle-cards",
    "pay-supplier",
    "return",
    "void",
}

READ_COMMANDS = {
    "trial-balance",
    "income",
    "balance-sheet",
    "cash-flow",
    "aging",
    "journal",
    "stock",
}


@pytest.fixture
def parser():
    """Fully configured top-level parser."""

    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "pos-ledger"
    assert "POS Ledger" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_mutating_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) and spec.mutates for spec in specs.values())
    assert WRITE_COMMANDS <= set(subparsers_action.choices)


def test_register_read_commands_are_read_only(subparsers_action):
    """Report commands never mark the workbook for saving."""

    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    assert not any(spec.mutates for spec in specs.values())


def test_sale_command_parses_items(parser):
    args = parser.parse_args(
        [
            "--user",
            "ana",
            "sale",
            "--receipt",
            "0001",
            "--subtotal",
            "100",
            "--tax",
            "18",
            "--total",
            "118",
            "--payment-method",
            "cash",
            "--item",
            "P1:2",
            "--item",
            "P2:1:59",
            "--date",
            "2024-03-15",
        ]
    )

    assert args.command == "sale"
    assert args.items == [
        core_logic.SaleItem("P1", Decimal("2")),
        core_logic.SaleItem("P2", Decimal("1"), last_purchase_price=Decimal("59")),
    ]
    assert args.sale_date == date(2024, 3, 15)

    command = cli.translate_sale(args)
    assert command.payment_method is PaymentMethod.CASH
    assert command.created_by == "ana"
    assert command.total == Decimal("118")


def test_sale_command_rejects_unknown_payment_method(parser):
    with pytest.raises(SystemExit):
        parser.parse_args(["sale", "--receipt", "1", "--subtotal", "1", "--total", "1", "--payment-method", "check"])


@pytest.mark.parametrize("raw", ["P1", ":2", "P1:x", "P1:1:2:3"])
def test_sale_item_arg_rejects_malformed_items(raw):
    with pytest.raises(argparse.ArgumentTypeError):
        cli.sale_item_arg(raw)


def test_purchase_item_arg_reads_optional_expiration():
    item = cli.purchase_item_arg("P1:10:7.50:2024-12-31")
    assert item == core_logic.PurchaseItem("P1", Decimal("10"), Decimal("7.50"), expiration_date=date(2024, 12, 31))
    assert cli.purchase_item_arg("P1:10:7.50").expiration_date is None


def test_date_arg_rejects_bad_dates():
    with pytest.raises(argparse.ArgumentTypeError):
        cli.date_arg("15/03/2024")


def test_translate_purchase_shrinkage_and_return(parser):
    purchase = cli.translate_purchase(
        parser.parse_args(
            ["purchase", "--provider", "Caribe", "--ncf", "B01", "--category", "Utilities", "--subtotal", "50", "--total", "50"]
        )
    )
    assert purchase.category is InvoiceCategory.UTILITIES
    assert purchase.tax_total == Decimal("0")

    shrinkage = cli.translate_shrinkage(
        parser.parse_args(["shrinkage", "--product-id", "P1", "--quantity", "2", "--reason", "theft"])
    )
    assert shrinkage.reason is ShrinkageReason.THEFT

    refund = cli.translate_return(
        parser.parse_args(
            ["return", "--sale-id", "S1", "--subtotal", "10", "--total", "10", "--refund-method", "card", "--item", "P1:1"]
        )
    )
    assert refund.refund_method is RefundMethod.CARD
    assert refund.items == (core_logic.ReturnItem("P1", Decimal("1")),)


def test_income_requires_period(parser):
    with pytest.raises(SystemExit):
        parser.parse_args(["income", "--start", "2024-03-01"])


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(context):
    calls = []
    spec = cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: calls.append(c) or 0)

    result = cli.dispatch_command(context, argparse.Namespace(command="alpha"), {"alpha": spec})

    assert result == 0
    assert calls == [context]


def test_dispatch_command_handles_unknown_commands(context):
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_detects_duplicate_commands():
    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


def test_load_runtime_context_defaults_to_working_directory(monkeypatch, tmp_path):
    seen = {}

    def fake_loader(path):
        seen["path"] = path
        return "context"

    monkeypatch.setattr(cli, "_load_context", fake_loader)
    monkeypatch.chdir(tmp_path)

    assert cli.load_runtime_context() == "context"
    assert seen["path"] == tmp_path / "config.ini"


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (BusinessRuleViolation("invalid"), 2),
        (MissingReferenceError("missing sale"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_persist_workbook_reports_read_only_workbooks(context, monkeypatch):
    def fake_persist(_):
        raise PermissionError("read-only")

    monkeypatch.setattr(cli, "persist_context", fake_persist)
    with pytest.raises(RuntimeError, match="read-only"):
        cli.persist_workbook(context)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def _reload(bundle) -> context_module.RuntimeContext:
    return context_module.load_runtime_context(bundle.config_path)


def test_main_persists_write_commands(config_factory, capsys):
    bundle = config_factory()

    exit_code = cli.main(["--config", str(bundle.config_path), "open-shift", "--shift-number", "1", "--cashier", "Ana"])

    assert exit_code == 0
    assert "Opened shift 1" in capsys.readouterr().out
    [shift] = core_logic.list_shifts(_reload(bundle))
    assert shift.status is ShiftStatus.OPEN
    assert shift.cashier_name == "Ana"


def test_main_does_not_save_for_reports(config_factory, monkeypatch):
    bundle = config_factory()
    monkeypatch.setattr(cli, "persist_workbook", lambda _: pytest.fail("reports must not save"))

    assert cli.main(["--config", str(bundle.config_path), "trial-balance"]) == 0


def test_main_runs_purchase_sale_and_stock(config_factory, capsys):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]

    assert cli.main(
        config
        + ["purchase", "--provider", "Caribe", "--ncf", "B01", "--subtotal", "100", "--tax", "18", "--total", "118", "--item", "P1:10:10"]
    ) == 0
    assert cli.main(
        config
        + ["sale", "--receipt", "1", "--subtotal", "50", "--tax", "9", "--total", "59", "--payment-method", "cash", "--item", "P1:2"]
    ) == 0
    assert cli.main(config + ["stock"]) == 0

    assert "P1" in capsys.readouterr().out
    context = _reload(bundle)
    assert fifo.available_quantity(context, "P1") == Decimal("8")
    assert len(journal.list_entries(context)) == 2


def test_main_returns_business_rule_exit_code(config_factory):
    bundle = config_factory()
    assert cli.main(["--config", str(bundle.config_path), "close-shift", "--shift-id", "SH-missing"]) == 2


def test_main_returns_missing_file_exit_code(tmp_path: Path):
    assert cli.main(["--config", str(tmp_path / "missing.ini"), "stock"]) == 3


def test_main_refuses_writes_to_other_schema_versions(config_factory):
    bundle = config_factory(schema_version="0.9")
    config = ["--config", str(bundle.config_path)]

    assert cli.main(config + ["open-shift", "--shift-number", "1"]) == 1
    assert core_logic.list_shifts(_reload(bundle)) == []
    assert cli.main(config + ["stock"]) == 0
