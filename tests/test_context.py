"""Tests for runtime context assembly, caching, and keyed locks."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from pos_ledger import context as context_module
from pos_ledger import data_manager
from pos_ledger.concurrency import KeyedLocks, entry_number_key, product_key


def test_load_runtime_context_reads_config_and_workbook(config_factory):
    bundle = config_factory(make_relative=True, default_rate="0.16", retention_rate="0.01")

    context = context_module.load_runtime_context(bundle.config_path)

    assert context.settings.data_file == bundle.workbook_path.resolve()
    assert context.tax_policy.default_rate == Decimal("0.16")
    assert context.tax_policy.card_retention_rate == Decimal("0.01")
    assert context.chart.name("1101") == "Caja"


def test_load_runtime_context_missing_workbook_raises(config_factory):
    bundle = config_factory()
    bundle.workbook_path.unlink()

    with pytest.raises(FileNotFoundError):
        context_module.load_runtime_context(bundle.config_path)


def test_ensure_schema_version_rejects_mismatch(context):
    stale = replace(context, settings=replace(context.settings, schema_version="0.9"))
    with pytest.raises(RuntimeError):
        context_module.ensure_schema_version(stale)


def test_ensure_schema_version_accepts_expected(context):
    context_module.ensure_schema_version(context)


def test_generate_id_embeds_timestamp():
    moment = datetime(2024, 1, 5, 10, 15, 0)
    first = context_module.generate_id("JE", when=moment)
    second = context_module.generate_id("JE", when=moment)

    assert first.startswith("JE20240105101500000000")
    assert first != second


def test_cache_buckets_are_isolated_and_invalidated(context):
    sales = context_module.get_cache_bucket(context, context_module.SALES_CACHE)
    sales["all"] = ["cached"]
    context_module.get_cache_bucket(context, context_module.LOTS_CACHE)["all"] = []

    context_module.invalidate_cache(context, context_module.SALES_CACHE)

    assert context_module.get_cache_bucket(context, context_module.SALES_CACHE) == {}
    assert context_module.get_cache_bucket(context, context_module.LOTS_CACHE) == {"all": []}


def test_persist_context_writes_to_settings_path(monkeypatch, context):
    save_workbook = Mock()
    monkeypatch.setattr(data_manager, "save_workbook", save_workbook)

    context_module.persist_context(context)

    save_workbook.assert_called_once_with(context.workbook, destination=context.settings.data_file)


def test_refresh_context_reloads_and_keeps_locks(monkeypatch, context):
    fresh = Mock(name="workbook")
    monkeypatch.setattr(data_manager, "refresh_workbook", Mock(return_value=fresh))
    context_module.get_cache_bucket(context, context_module.SALES_CACHE)["all"] = ["stale"]

    refreshed = context_module.refresh_context(context)

    assert refreshed.workbook is fresh
    assert refreshed.locks is context.locks
    assert context_module.get_cache_bucket(refreshed, context_module.SALES_CACHE) == {}


# ---------------------------------------------------------------------------
# Keyed locks
# ---------------------------------------------------------------------------


def test_keyed_locks_reuse_one_lock_per_key():
    locks = KeyedLocks()
    assert locks.get(product_key("P1")) is locks.get(product_key("P1"))
    assert locks.get(product_key("P1")) is not locks.get(entry_number_key(2024))
    assert len(locks) == 2


def test_keyed_locks_are_reentrant():
    locks = KeyedLocks()
    with locks.hold("store"):
        with locks.hold("store"):
            pass


def test_keyed_lock_serializes_threads():
    """A held key blocks other threads until released."""

    locks = KeyedLocks()
    entered = threading.Event()
    order = []

    def worker():
        with locks.hold("k"):
            order.append("worker")
        entered.set()

    with locks.hold("k"):
        thread = threading.Thread(target=worker)
        thread.start()
        assert not entered.wait(0.05)
        order.append("main")

    thread.join(timeout=1)
    assert order == ["main", "worker"]
