"""Utility for initializing the POS ledger workbook.

The module doubles as a script (``pos-ledger-setup``) and as a library used by
tests. :func:`build_workbook` produces the empty in-memory schema and
:func:`create_master_workbook` writes it to disk.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from .constants import SheetName
from .data_manager import CONFIG_FILE_NAME, ConfigSettings, parse_settings, read_config


# Column order must match the serializers in ``data_manager``.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.JOURNAL_ENTRIES.value: [
        "EntryID",
        "EntryNumber",
        "EntryDate",
        "Description",
        "SourceType",
        "SourceID",
        "ShiftID",
        "TotalDebit",
        "TotalCredit",
        "Status",
        "CreatedAt",
        "PostedAt",
        "CreatedBy",
        "VoidedAt",
        "VoidedBy",
        "VoidReason",
        "ReversalOf",
    ],
    SheetName.JOURNAL_LINES.value: [
        "EntryID",
        "LineNo",
        "AccountCode",
        "AccountName",
        "Description",
        "Debit",
        "Credit",
        "TaxRate",
    ],
    SheetName.INVENTORY_LOTS.value: [
        "LotID",
        "ProductID",
        "Sequence",
        "LotNumber",
        "InvoiceID",
        "PurchaseDate",
        "ExpirationDate",
        "OriginalQuantity",
        "RemainingQuantity",
        "UnitCost",
        "TaxRate",
        "Status",
        "CreatedAt",
        "DepletedAt",
    ],
    SheetName.COST_CONSUMPTIONS.value: [
        "ConsumptionID",
        "ProductID",
        "LotID",
        "Quantity",
        "UnitCost",
        "TotalCost",
        "ConsumedOn",
        "SaleID",
        "ReturnID",
        "AdjustmentID",
        "Estimated",
        "CreatedAt",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "SaleDate",
        "ReceiptNumber",
        "CustomerID",
        "CustomerName",
        "Subtotal",
        "TaxTotal",
        "Total",
        "PaymentMethod",
        "PaymentStatus",
        "PaidAmount",
        "DueDate",
        "ShiftID",
        "JournalEntryID",
        "SettlementID",
        "CreatedAt",
    ],
    SheetName.INVOICES.value: [
        "InvoiceID",
        "SupplierID",
        "ProviderName",
        "NCF",
        "IssueDate",
        "DueDate",
        "Category",
        "Subtotal",
        "TaxTotal",
        "Total",
        "PaymentStatus",
        "PaidAmount",
        "JournalEntryID",
        "CreatedAt",
    ],
    SheetName.SHIFTS.value: [
        "ShiftID",
        "ShiftNumber",
        "CashierName",
        "OpenedAt",
        "ClosedAt",
        "Status",
        "CogsTotal",
        "CogsEntryID",
    ],
    SheetName.CARD_SETTLEMENTS.value: [
        "SettlementID",
        "SettlementDate",
        "Reference",
        "GrossAmount",
        "CommissionRate",
        "CommissionAmount",
        "RetentionRate",
        "RetentionAmount",
        "NetDeposit",
        "SaleIDs",
        "JournalEntryID",
        "CreatedAt",
    ],
    SheetName.SEQUENCES.value: [
        "SequenceKey",
        "LastValue",
    ],
    SheetName.AUDIT_LOG.value: [
        "AuditID",
        "Timestamp",
        "Action",
        "EntityType",
        "EntityID",
        "UserName",
        "Details",
    ],
}


def load_settings(config_path: Path) -> ConfigSettings:
    """Read ``config.ini`` and produce :class:`ConfigSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    parser = read_config(config_path)
    return parse_settings(parser, base_path=config_path.expanduser().resolve().parent)


def build_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Return an empty in-memory workbook carrying the ledger schema."""

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    return workbook


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the ledger workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook = build_workbook(sheet_columns)
    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the POS ledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- POS Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
