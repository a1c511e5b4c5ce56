"""Shared pytest fixtures and utilities for POS ledger tests."""

from __future__ import annotations

import argparse
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, List

import pytest

from pos_ledger import constants, context as context_module, data_manager
from pos_ledger.journal import EntryDraft
from pos_ledger.setup_excel import build_workbook, create_master_workbook

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_NOW = datetime(2024, 3, 15, 10, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n"
)
_TAX_TEMPLATE = "\n[Tax]\nDefaultRate = {default_rate}\nCardRetentionRate = {retention_rate}\n"


@dataclass(frozen=True)
class ConfigBundle:
    """Paths and values of one generated config.ini and its workbook."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    business_name: str


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        folder = tmp_path / subdir if subdir else tmp_path
        folder.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(folder / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Write a config.ini next to a fresh workbook; keyword arguments tweak its sections."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Colmado Test",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_rate: str | None = None,
        retention_rate: str = "0.02",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        workbook_path = workbook_factory(subdir=bundle_dir.name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        text = _CONFIG_TEMPLATE.format(
            data_file=data_file_entry,
            business_name=business_name,
            schema_version=schema_version,
        )
        if default_rate is not None:
            text += _TAX_TEMPLATE.format(default_rate=default_rate, retention_rate=retention_rate)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(text)
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    return config_factory().config_path


# ---------------------------------------------------------------------------
# In-memory ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Settings for an in-memory context with the stock 18% ITBIS rate."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        business_name="Colmado Test",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_tax_rate=Decimal("0.18"),
        card_retention_rate=Decimal("0.02"),
    )


@pytest.fixture
def workbook():
    """Return an empty in-memory ledger workbook."""

    return build_workbook()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook) -> context_module.RuntimeContext:
    """Assemble a runtime context around the in-memory workbook."""

    return context_module.build_context(settings, workbook)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def today() -> date:
    return FIXED_NOW.date()


@pytest.fixture
def line_factory(context: context_module.RuntimeContext) -> Callable[..., data_manager.JournalEntryLine]:
    """Build journal lines named from the context's chart."""

    def _make(code: str, debit: str = "0", credit: str = "0", description: str | None = None):
        return data_manager.JournalEntryLine(
            account_code=code,
            account_name=context.chart.name(code),
            debit=Decimal(debit),
            credit=Decimal(credit),
            description=description,
        )

    return _make


@pytest.fixture
def draft_factory(line_factory) -> Callable[..., EntryDraft]:
    """Build a two-line cash sale draft, or any lines passed explicitly."""

    def _make(
        amount: str = "100.00",
        *,
        entry_date: date = FIXED_NOW.date(),
        lines=None,
        source_type: constants.SourceType = constants.SourceType.SALE,
        source_id: str | None = "S-1",
        description: str = "Venta contado #1",
    ) -> EntryDraft:
        if lines is None:
            lines = (
                line_factory("1101", debit=amount, description="Caja"),
                line_factory("4101", credit=amount, description="Ventas"),
            )
        return EntryDraft(
            entry_date=entry_date,
            description=description,
            source_type=source_type,
            source_id=source_id,
            lines=tuple(lines),
        )

    return _make


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(prog="pos-ledger", description="POS Ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Threading helpers
# ---------------------------------------------------------------------------


@dataclass
class ThreadOutcome:
    """Return values and exceptions collected from racing threads."""

    results: List[Any] = field(default_factory=list)
    errors: List[BaseException] = field(default_factory=list)


@pytest.fixture
def run_concurrently() -> Callable[..., ThreadOutcome]:
    """Release ``count`` threads together through a barrier and gather outcomes.

    ``target`` receives the thread index.
    """

    def _run(target: Callable[[int], Any], count: int = 2) -> ThreadOutcome:
        barrier = threading.Barrier(count, timeout=30)
        guard = threading.Lock()
        outcome = ThreadOutcome()

        def worker(index: int) -> None:
            barrier.wait()
            try:
                value = target(index)
            except Exception as exc:
                with guard:
                    outcome.errors.append(exc)
            else:
                with guard:
                    outcome.results.append(value)

        threads = [threading.Thread(target=worker, args=(index,)) for index in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        assert not any(thread.is_alive() for thread in threads), "worker thread did not finish"
        return outcome

    return _run
