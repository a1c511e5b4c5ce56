"""Journal ledger.

The ledger owns the ``JournalEntries`` and ``JournalLines`` sheets. Entries
arrive as unposted :class:`EntryDraft` objects (usually built by
:mod:`pos_ledger.factories`), are checked for balance, numbered, and appended
with ``status = posted``. Posted entries are never edited; :func:`void` posts
a mirror-image reversal and only then flags the original as ``voided``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import data_manager, log
from .audit import log_accounting_action
from .concurrency import STORE_KEY, entry_number_key, journal_entry_key
from .constants import AuditAction, EntryStatus, SourceType
from .context import (
    JOURNAL_CACHE,
    RuntimeContext,
    generate_id,
    get_cache_bucket,
    invalidate_cache,
    resolve_timestamp,
)
from .errors import AlreadyVoided, BusinessRuleViolation, EntryNotFound, UnbalancedEntry
from .tax import ZERO


BALANCE_TOLERANCE = Decimal("0.02")
ENTRY_NUMBER_PREFIX = "JE"
REVERSAL_PREFIX = "REVERSO"
ENTRY_ENTITY = "journal_entry"


@dataclass(frozen=True)
class EntryDraft:
    """An entry that has not been numbered or posted yet."""

    entry_date: date
    description: str
    source_type: SourceType
    lines: Tuple[data_manager.JournalEntryLine, ...]
    source_id: Optional[str] = None
    shift_id: Optional[str] = None
    created_by: Optional[str] = None
    reversal_of: Optional[str] = None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)


Balanceable = Union[EntryDraft, data_manager.JournalEntry]


def entry_prefix(year: int) -> str:
    return f"{ENTRY_NUMBER_PREFIX}-{year}-"


def line_totals(lines: Iterable[data_manager.JournalEntryLine]) -> Tuple[Decimal, Decimal]:
    """Return ``(sum of debits, sum of credits)`` for ``lines``."""

    debit = ZERO
    credit = ZERO
    for line in lines:
        debit += line.debit
        credit += line.credit
    return debit, credit


def validate(entry: Balanceable) -> bool:
    """Return ``True`` when debits and credits agree within the tolerance."""

    debit, credit = line_totals(entry.lines)
    return abs(debit - credit) < BALANCE_TOLERANCE


# ---------------------------------------------------------------------------
# Cached reads
# ---------------------------------------------------------------------------


def _ensure_journal_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = get_cache_bucket(context, JOURNAL_CACHE)
    if "all" not in bucket:
        all_entries = list(data_manager.iter_journal_entries(context.workbook))
        bucket["all"] = all_entries
        bucket["by_id"] = {entry.entry_id: entry for entry in all_entries}
        log.debug("Populated journal cache with %d entries", len(all_entries))
    return bucket


def list_entries(
    context: RuntimeContext,
    *,
    status: Optional[EntryStatus] = None,
    source_type: Optional[SourceType] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[data_manager.JournalEntry]:
    """Return entries in posting order, filtered by every supplied criterion.

    ``start`` and ``end`` are inclusive bounds on ``entry_date``.
    """

    entries: Sequence[data_manager.JournalEntry] = _ensure_journal_cache(context)["all"]
    return [
        entry
        for entry in entries
        if (status is None or entry.status is status)
        and (source_type is None or entry.source_type is source_type)
        and (start is None or entry.entry_date >= start)
        and (end is None or entry.entry_date <= end)
    ]


def get_entry(context: RuntimeContext, entry_id: str) -> data_manager.JournalEntry:
    """Return the entry with ``entry_id``.

    Raises:
        EntryNotFound: If no such entry exists.
    """

    entry = _ensure_journal_cache(context)["by_id"].get(entry_id)
    if entry is None:
        log.warning("Journal entry lookup failed for id '%s'", entry_id)
        raise EntryNotFound(f"Journal entry '{entry_id}' does not exist")
    return entry


def entries_for_period(context: RuntimeContext, start: date, end: date) -> List[data_manager.JournalEntry]:
    """Posted entries dated within ``[start, end]``."""

    return list_entries(context, status=EntryStatus.POSTED, start=start, end=end)


def entries_by_source_type(
    context: RuntimeContext,
    source_type: SourceType,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[data_manager.JournalEntry]:
    """Posted entries produced by one kind of business event."""

    return list_entries(context, status=EntryStatus.POSTED, source_type=source_type, start=start, end=end)


# ---------------------------------------------------------------------------
# Numbering and posting
# ---------------------------------------------------------------------------


def next_entry_number(context: RuntimeContext, year: Optional[int] = None) -> str:
    """Allocate the next ``JE-<year>-<00000>`` number for ``year``.

    The counter lives on the ``Sequences`` sheet. The first allocation for a
    year seeds it from the number of entries already carrying that year's
    prefix, so workbooks written before the counter existed keep counting
    from where they left off.
    """

    if year is None:
        year = resolve_timestamp(None).year
    prefix = entry_prefix(year)

    with context.locks.hold(entry_number_key(year)), context.locks.hold(STORE_KEY):
        last = data_manager.get_sequence_value(context.workbook, prefix)
        if last is None:
            last = sum(
                1
                for entry in _ensure_journal_cache(context)["all"]
                if entry.entry_number.startswith(prefix)
            )
        value = last + 1
        data_manager.set_sequence_value(context.workbook, prefix, value)

    return f"{prefix}{value:05d}"


def post(
    context: RuntimeContext,
    draft: EntryDraft,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    """Validate, number, and append ``draft`` as a posted entry.

    Args:
        context (RuntimeContext): Active runtime context.
        draft (EntryDraft): Entry to post; its ``entry_date`` selects the
            numbering year.
        timestamp (datetime | None): Creation/posting time override.

    Returns:
        JournalEntry: The stored entry.

    Raises:
        UnbalancedEntry: If the lines do not balance within
            ``BALANCE_TOLERANCE`` or fewer than two lines were supplied.
        BusinessRuleViolation: If a line carries a negative amount.
    """

    debit, credit = line_totals(draft.lines)

    if len(draft.lines) < 2:
        log.error("Rejected entry '%s': %d line(s)", draft.description, len(draft.lines))
        raise UnbalancedEntry(
            "A journal entry needs at least two lines",
            total_debit=debit,
            total_credit=credit,
        )

    if any(line.debit < ZERO or line.credit < ZERO for line in draft.lines):
        log.error("Rejected entry '%s': negative line amount", draft.description)
        raise BusinessRuleViolation("Journal lines cannot carry negative amounts")

    if not validate(draft):
        log.error(
            "Rejected unbalanced entry '%s': debit %s, credit %s",
            draft.description,
            debit,
            credit,
        )
        raise UnbalancedEntry(
            f"Entry does not balance: debit {debit} != credit {credit}",
            total_debit=debit,
            total_credit=credit,
        )

    when = resolve_timestamp(timestamp)
    year = draft.entry_date.year

    with context.locks.hold(entry_number_key(year)):
        entry = data_manager.JournalEntry(
            entry_id=generate_id("JE", when=when),
            entry_number=next_entry_number(context, year),
            entry_date=draft.entry_date,
            description=draft.description,
            source_type=draft.source_type,
            source_id=draft.source_id,
            lines=tuple(draft.lines),
            total_debit=debit,
            total_credit=credit,
            status=EntryStatus.POSTED,
            created_at=when,
            posted_at=when,
            created_by=draft.created_by,
            shift_id=draft.shift_id,
            reversal_of=draft.reversal_of,
        )
        with context.locks.hold(STORE_KEY):
            data_manager.append_journal_entry(context.workbook, entry)
            invalidate_cache(context, JOURNAL_CACHE)

    details: Dict[str, Any] = {
        "source_type": entry.source_type.value,
        "entry_number": entry.entry_number,
    }
    if entry.reversal_of:
        details["reversal_of"] = entry.reversal_of
    log_accounting_action(
        context,
        AuditAction.JOURNAL_ENTRY_CREATED,
        entity_type=ENTRY_ENTITY,
        entity_id=entry.entry_id,
        user_name=entry.created_by,
        details=details,
        timestamp=when,
    )
    log.info(
        "Posted %s (%s) for %s: %s",
        entry.entry_number,
        entry.source_type.value,
        debit,
        entry.description,
    )
    return entry


# ---------------------------------------------------------------------------
# Voiding
# ---------------------------------------------------------------------------


def build_reversal(
    original: data_manager.JournalEntry,
    *,
    reason: str,
    entry_date: date,
    voided_by: Optional[str] = None,
) -> EntryDraft:
    """Mirror ``original``: swap every debit and credit and tag descriptions."""

    lines = tuple(
        data_manager.JournalEntryLine(
            account_code=line.account_code,
            account_name=line.account_name,
            debit=line.credit,
            credit=line.debit,
            description=f"{REVERSAL_PREFIX}: {line.description or ''}",
            tax_rate=line.tax_rate,
        )
        for line in original.lines
    )
    return EntryDraft(
        entry_date=entry_date,
        description=f"{REVERSAL_PREFIX} {original.entry_number}: {reason}",
        source_type=original.source_type,
        source_id=original.source_id,
        shift_id=original.shift_id,
        lines=lines,
        created_by=voided_by,
        reversal_of=original.entry_id,
    )


def void(
    context: RuntimeContext,
    entry_id: str,
    reason: str,
    actor: Optional[str] = None,
    *,
    void_date: Optional[date] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.JournalEntry:
    """Reverse a posted entry and mark it voided.

    The reversal is posted first, so if posting fails the original is left
    untouched and still ``posted``.

    Args:
        context (RuntimeContext): Active runtime context.
        entry_id (str): Identifier of the entry to void.
        reason (str): Free-text justification, copied into the reversal.
        actor (str | None): Who requested the void.
        void_date (date | None): Date of the reversal; today when omitted.
        timestamp (datetime | None): Posting time override.

    Returns:
        JournalEntry: The newly posted reversal entry.

    Raises:
        EntryNotFound: If ``entry_id`` does not exist.
        AlreadyVoided: If the entry was voided before.
    """

    when = resolve_timestamp(timestamp)

    with context.locks.hold(journal_entry_key(entry_id)):
        original = get_entry(context, entry_id)
        if original.status is EntryStatus.VOIDED:
            log.warning("Entry %s is already voided", original.entry_number)
            raise AlreadyVoided(f"Journal entry {original.entry_number} is already voided")

        draft = build_reversal(
            original,
            reason=reason,
            entry_date=void_date or when.date(),
            voided_by=actor,
        )
        reversal = post(context, draft, timestamp=when)

        with context.locks.hold(STORE_KEY):
            data_manager.update_journal_entry(
                context.workbook,
                entry_id,
                field_values={
                    "Status": EntryStatus.VOIDED,
                    "VoidedAt": when,
                    "VoidedBy": actor,
                    "VoidReason": reason,
                },
            )
            invalidate_cache(context, JOURNAL_CACHE)

    log_accounting_action(
        context,
        AuditAction.JOURNAL_ENTRY_VOIDED,
        entity_type=ENTRY_ENTITY,
        entity_id=entry_id,
        user_name=actor,
        details={"reason": reason, "reversal_id": reversal.entry_id},
        timestamp=when,
    )
    log.info("Voided %s with %s: %s", original.entry_number, reversal.entry_number, reason)
    return reversal


__all__ = [
    "BALANCE_TOLERANCE",
    "EntryDraft",
    "validate",
    "line_totals",
    "next_entry_number",
    "post",
    "void",
    "build_reversal",
    "get_entry",
    "list_entries",
    "entries_for_period",
    "entries_by_source_type",
]
