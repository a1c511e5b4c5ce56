"""Tests for posting, numbering, and voiding journal entries."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from pos_ledger import audit, data_manager, journal, reports
from pos_ledger.constants import AuditAction, EntryStatus, SourceType
from pos_ledger.errors import AlreadyVoided, BusinessRuleViolation, EntryNotFound, UnbalancedEntry


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_validate_accepts_differences_below_tolerance(draft_factory, line_factory):
    """A one-cent rounding gap is still considered balanced."""

    draft = draft_factory(
        lines=(
            line_factory("1101", debit="100.01"),
            line_factory("4101", credit="100.00"),
        )
    )
    assert journal.validate(draft)


def test_validate_rejects_difference_at_tolerance(draft_factory, line_factory):
    """The tolerance is exclusive: a two-cent gap does not balance."""

    draft = draft_factory(
        lines=(
            line_factory("1101", debit="100.02"),
            line_factory("4101", credit="100.00"),
        )
    )
    assert not journal.validate(draft)


def test_post_rejects_unbalanced_draft_without_side_effects(context, draft_factory, line_factory, now):
    draft = draft_factory(
        lines=(
            line_factory("1101", debit="100.00"),
            line_factory("4101", credit="90.00"),
        )
    )

    with pytest.raises(UnbalancedEntry) as excinfo:
        journal.post(context, draft, timestamp=now)

    assert excinfo.value.total_debit == Decimal("100.00")
    assert excinfo.value.total_credit == Decimal("90.00")
    assert journal.list_entries(context) == []
    assert data_manager.get_sequence_value(context.workbook, "JE-2024-") is None


def test_post_rejects_single_line_entries(context, draft_factory, line_factory, now):
    draft = draft_factory(lines=(line_factory("1101", debit="0"),))
    with pytest.raises(UnbalancedEntry):
        journal.post(context, draft, timestamp=now)


def test_post_rejects_negative_amounts(context, draft_factory, line_factory, now):
    draft = draft_factory(
        lines=(
            line_factory("1101", debit="-10"),
            line_factory("4101", credit="-10"),
        )
    )
    with pytest.raises(BusinessRuleViolation):
        journal.post(context, draft, timestamp=now)


# ---------------------------------------------------------------------------
# Posting and numbering
# ---------------------------------------------------------------------------


def test_post_persists_entry_with_lines(context, draft_factory, now):
    entry = journal.post(context, draft_factory("250.00"), timestamp=now)

    assert entry.status is EntryStatus.POSTED
    assert entry.entry_number == "JE-2024-00001"
    assert entry.total_debit == entry.total_credit == Decimal("250.00")
    assert entry.posted_at == now

    stored = journal.get_entry(context, entry.entry_id)
    assert stored.entry_number == entry.entry_number
    assert [line.account_code for line in stored.lines] == ["1101", "4101"]
    assert stored.lines[0].account_name == "Caja"


def test_entry_numbers_are_consecutive_within_a_year(context, draft_factory, now):
    numbers = [journal.post(context, draft_factory(), timestamp=now).entry_number for _ in range(3)]
    assert numbers == ["JE-2024-00001", "JE-2024-00002", "JE-2024-00003"]


def test_entry_number_year_follows_entry_date(context, draft_factory, now):
    """Each year keeps its own counter, keyed by the entry date."""

    journal.post(context, draft_factory(entry_date=date(2024, 12, 31)), timestamp=now)
    first_2025 = journal.post(context, draft_factory(entry_date=date(2025, 1, 1)), timestamp=now)
    second_2024 = journal.post(context, draft_factory(entry_date=date(2024, 6, 1)), timestamp=now)

    assert first_2025.entry_number == "JE-2025-00001"
    assert second_2024.entry_number == "JE-2024-00002"


def test_concurrent_posts_get_unique_gap_free_numbers(context, draft_factory, now, run_concurrently):
    outcome = run_concurrently(
        lambda index: journal.post(context, draft_factory(source_id=f"S-{index}"), timestamp=now),
        count=8,
    )

    assert outcome.errors == []
    numbers = sorted(entry.entry_number for entry in outcome.results)
    assert numbers == [f"JE-2024-{value:05d}" for value in range(1, 9)]
    assert sorted(entry.entry_number for entry in journal.list_entries(context)) == numbers
    assert data_manager.get_sequence_value(context.workbook, "JE-2024-") == 8


def test_concurrent_posts_across_years_keep_separate_counters(context, draft_factory, now, run_concurrently):
    def post(index):
        entry_date = date(2024, 6, 1) if index % 2 else date(2025, 1, 2)
        return journal.post(context, draft_factory(entry_date=entry_date), timestamp=now)

    outcome = run_concurrently(post, count=6)

    assert outcome.errors == []
    by_year = {}
    for entry in outcome.results:
        by_year.setdefault(entry.entry_date.year, []).append(entry.entry_number)
    assert sorted(by_year[2024]) == ["JE-2024-00001", "JE-2024-00002", "JE-2024-00003"]
    assert sorted(by_year[2025]) == ["JE-2025-00001", "JE-2025-00002", "JE-2025-00003"]


def test_next_entry_number_seeds_from_existing_entries(context, draft_factory, now):
    """A workbook without a counter row continues after its highest count."""

    journal.post(context, draft_factory(), timestamp=now)
    journal.post(context, draft_factory(), timestamp=now)
    sheet = context.workbook["Sequences"]
    sheet.delete_rows(2, sheet.max_row)

    assert journal.next_entry_number(context, 2024) == "JE-2024-00003"


def test_post_writes_audit_row(context, draft_factory, now):
    entry = journal.post(context, draft_factory(), timestamp=now)

    rows = audit.get_audit_log(context, actions=[AuditAction.JOURNAL_ENTRY_CREATED])
    assert [row.entity_id for row in rows] == [entry.entry_id]
    assert audit.audit_details(rows[0])["entry_number"] == "JE-2024-00001"


def test_posted_entries_are_balanced_after_many_posts(context, draft_factory, line_factory, now):
    """Every stored entry satisfies the balance check and the trial balance closes."""

    journal.post(context, draft_factory("10.00"), timestamp=now)
    journal.post(
        context,
        draft_factory(
            lines=(
                line_factory("1201", debit="100.00"),
                line_factory("1104", debit="18.00"),
                line_factory("2101", credit="118.00"),
            ),
            source_type=SourceType.PURCHASE,
        ),
        timestamp=now,
    )

    for entry in journal.list_entries(context):
        assert journal.validate(entry)
    balances = reports.trial_balance(context)
    assert sum(b.debit for b in balances.values()) == sum(b.credit for b in balances.values())


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_get_entry_raises_for_unknown_id(context):
    with pytest.raises(EntryNotFound):
        journal.get_entry(context, "JE-missing")


def test_entries_for_period_filters_by_date_and_status(context, draft_factory, now):
    inside = journal.post(context, draft_factory(entry_date=date(2024, 3, 1)), timestamp=now)
    journal.post(context, draft_factory(entry_date=date(2024, 4, 1)), timestamp=now)

    result = journal.entries_for_period(context, date(2024, 3, 1), date(2024, 3, 31))
    assert [entry.entry_id for entry in result] == [inside.entry_id]


def test_entries_by_source_type(context, draft_factory, now):
    journal.post(context, draft_factory(), timestamp=now)
    purchase = journal.post(context, draft_factory(source_type=SourceType.PURCHASE), timestamp=now)

    result = journal.entries_by_source_type(context, SourceType.PURCHASE)
    assert [entry.entry_id for entry in result] == [purchase.entry_id]


# ---------------------------------------------------------------------------
# Voiding
# ---------------------------------------------------------------------------


def test_void_posts_mirror_reversal(context, draft_factory, now):
    original = journal.post(context, draft_factory("100.00"), timestamp=now)

    reversal = journal.void(context, original.entry_id, "Error de digitación", "ana", timestamp=now)

    assert reversal.reversal_of == original.entry_id
    assert reversal.source_type is original.source_type
    assert reversal.source_id == original.source_id
    assert reversal.description == f"REVERSO {original.entry_number}: Error de digitación"
    for before, after in zip(original.lines, reversal.lines):
        assert after.account_code == before.account_code
        assert after.debit == before.credit
        assert after.credit == before.debit
        assert after.description.startswith("REVERSO: ")


def test_void_marks_original_voided(context, draft_factory, now):
    original = journal.post(context, draft_factory(), timestamp=now)
    journal.void(context, original.entry_id, "Duplicada", "ana", timestamp=now)

    stored = journal.get_entry(context, original.entry_id)
    assert stored.status is EntryStatus.VOIDED
    assert stored.voided_by == "ana"
    assert stored.void_reason == "Duplicada"
    assert stored.voided_at is not None


def test_void_nets_account_balances_to_zero(context, draft_factory, now):
    """Original plus reversal leave every account exactly where it started."""

    original = journal.post(context, draft_factory("75.50"), timestamp=now)
    reversal = journal.void(context, original.entry_id, "Anulada", timestamp=now)

    for code in ("1101", "4101"):
        debit = sum(line.debit for e in (original, reversal) for line in e.lines if line.account_code == code)
        credit = sum(line.credit for e in (original, reversal) for line in e.lines if line.account_code == code)
        assert debit == credit


def test_void_twice_raises_already_voided(context, draft_factory, now):
    original = journal.post(context, draft_factory(), timestamp=now)
    journal.void(context, original.entry_id, "Primera", timestamp=now)

    with pytest.raises(AlreadyVoided):
        journal.void(context, original.entry_id, "Segunda", timestamp=now)
    assert len(journal.list_entries(context)) == 2


def test_void_unknown_entry_raises(context):
    with pytest.raises(EntryNotFound):
        journal.void(context, "missing", "Nada")


def test_void_logs_audit_action(context, draft_factory, now):
    original = journal.post(context, draft_factory(), timestamp=now)
    reversal = journal.void(context, original.entry_id, "Anulada", "luis", timestamp=now)

    rows = audit.get_audit_log(context, actions=[AuditAction.JOURNAL_ENTRY_VOIDED])
    assert len(rows) == 1
    assert rows[0].entity_id == original.entry_id
    assert rows[0].user_name == "luis"
    assert audit.audit_details(rows[0])["reversal_id"] == reversal.entry_id
