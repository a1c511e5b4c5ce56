"""Tests for the workbook initialization script."""

from __future__ import annotations

import openpyxl
import pytest

from pos_ledger import setup_excel
from pos_ledger.constants import SheetName


def test_build_workbook_creates_every_sheet_with_bold_headers():
    workbook = setup_excel.build_workbook()

    assert workbook.sheetnames == [sheet.value for sheet in SheetName]
    header = workbook[SheetName.JOURNAL_LINES.value][1]
    assert [cell.value for cell in header][:3] == ["EntryID", "LineNo", "AccountCode"]
    assert all(cell.font.bold for cell in header)


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    target = setup_excel.create_master_workbook(tmp_path / "ledger.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(target)

    assert setup_excel.create_master_workbook(target, overwrite=True) == target


def test_main_creates_workbook_from_config(config_factory, capsys):
    bundle = config_factory(make_relative=True)
    bundle.workbook_path.unlink()

    exit_code = setup_excel.main(["--config", str(bundle.config_path)])

    assert exit_code == 0
    assert "[SUCCESS]" in capsys.readouterr().out
    assert SheetName.AUDIT_LOG.value in openpyxl.load_workbook(bundle.workbook_path).sheetnames


def test_main_requires_force_for_existing_workbook(config_factory, capsys):
    bundle = config_factory()

    assert setup_excel.main(["--config", str(bundle.config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(bundle.config_path), "--force"]) == 0


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "missing.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
