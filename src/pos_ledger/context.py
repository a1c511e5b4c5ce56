"""Runtime state shared by the ledger, the FIFO tracker, and the workflows.

A :class:`RuntimeContext` bundles the parsed settings, the live workbook, the
injected chart and tax policy, the keyed locks, and per-table read caches.
Writers invalidate the caches they touch so the next read rebuilds from the
workbook.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from openpyxl.workbook import Workbook

from . import data_manager, log
from .chart import DEFAULT_CHART, ChartOfAccounts
from .concurrency import KeyedLocks
from .constants import EXPECTED_SCHEMA_VERSION
from .tax import TaxPolicy


JOURNAL_CACHE = "journal"
LOTS_CACHE = "lots"
CONSUMPTIONS_CACHE = "consumptions"
SALES_CACHE = "sales"
INVOICES_CACHE = "invoices"
SHIFTS_CACHE = "shifts"
SETTLEMENTS_CACHE = "settlements"


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook, and shared services."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    chart: ChartOfAccounts = DEFAULT_CHART
    tax_policy: TaxPolicy = field(default_factory=TaxPolicy)
    locks: KeyedLocks = field(default_factory=KeyedLocks, repr=False, compare=False)
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` unchanged, or the current UTC time when ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``JE20240105101500000000a1b2c3``.

    The timestamp keeps identifiers in creation order. A short random suffix
    prevents collisions when several records are created within the same
    microsecond (for example the draws of one FIFO consumption).
    """

    when = resolve_timestamp(when)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid4().hex[:6]}"


def get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return the dict that caches parsed rows of one table, creating it if needed."""

    if name not in context._cache:
        log.debug("Creating %s cache", name)
    return context._cache.setdefault(name, {})


def invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Dropping caches: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def build_context(
    settings: data_manager.ConfigSettings,
    workbook: Workbook,
    *,
    chart: Optional[ChartOfAccounts] = None,
) -> RuntimeContext:
    """Assemble a context from already loaded settings and workbook."""

    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        chart=chart or DEFAULT_CHART,
        tax_policy=TaxPolicy.from_settings(settings),
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Find and parse `config.ini`, then open the workbook it names.

    A relative ``DataFile`` is resolved against the folder holding the config,
    not the working directory. Missing files raise ``FileNotFoundError``;
    missing options raise ``KeyError``.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Opened ledger %s (%s)", settings.data_file, settings.business_name)
    return build_context(settings, workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to write into a workbook laid out for another ``SchemaVersion``."""

    found = context.settings.schema_version
    if found != EXPECTED_SCHEMA_VERSION:
        message = f"Ledger workbook is schema {found}; this release writes {EXPECTED_SCHEMA_VERSION}"
        log.error("%s", message)
        raise RuntimeError(message)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to ``settings.data_file``."""

    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Saved ledger to %s", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reopen the workbook from disk, dropping unsaved edits and all caches.

    Chart, tax policy and locks carry over, so threads already holding a
    product or year lock keep serializing against the new context.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded ledger from %s", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        chart=context.chart,
        tax_policy=context.tax_policy,
        locks=context.locks,
    )


__all__ = [
    "RuntimeContext",
    "build_context",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "resolve_timestamp",
    "generate_id",
    "get_cache_bucket",
    "invalidate_cache",
]
