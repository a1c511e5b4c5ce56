"""Append-only accounting audit trail.

Every ledger and inventory mutation leaves one row on the ``AuditLog`` sheet.
Details are stored as a JSON object so new fields never require a schema
change.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Union

from . import data_manager, log
from .concurrency import STORE_KEY
from .constants import AuditAction
from .context import RuntimeContext, generate_id, resolve_timestamp


ActionLike = Union[AuditAction, str]


def _action_value(action: ActionLike) -> str:
    return action.value if isinstance(action, AuditAction) else str(action)


def log_accounting_action(
    context: RuntimeContext,
    action: ActionLike,
    *,
    entity_type: str,
    entity_id: str,
    details: Optional[Mapping[str, Any]] = None,
    user_name: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.AuditRow:
    """Append an audit row describing ``action`` on ``entity_type``/``entity_id``.

    Args:
        context (RuntimeContext): Context whose workbook receives the row.
        action (AuditAction | str): Action tag, usually an :class:`AuditAction`.
        entity_type (str): Kind of entity touched (``journal_entry``,
            ``inventory_lot``, ...).
        entity_id (str): Identifier of the touched entity.
        details (Mapping | None): Extra facts serialized as JSON. Decimals and
            dates are written as strings.
        user_name (str | None): Operator responsible for the action.
        timestamp (datetime | None): Override for deterministic tests.

    Returns:
        AuditRow: The record that was appended.
    """

    when = resolve_timestamp(timestamp)
    record = data_manager.AuditRow(
        audit_id=generate_id("AUD", when=when),
        timestamp=when,
        action=_action_value(action),
        entity_type=entity_type,
        entity_id=entity_id,
        user_name=user_name,
        details=json.dumps(dict(details or {}), default=str, sort_keys=True),
    )
    with context.locks.hold(STORE_KEY):
        data_manager.append_audit_row(context.workbook, record)
    log.debug("Audit %s on %s %s", record.action, entity_type, entity_id)
    return record


def get_audit_log(
    context: RuntimeContext,
    *,
    actions: Optional[Iterable[ActionLike]] = None,
    entity_type: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[data_manager.AuditRow]:
    """Return audit rows matching every supplied filter, newest first.

    ``start`` and ``end`` are inclusive calendar dates compared against the
    date part of each row's timestamp.
    """

    records = list(data_manager.iter_audit_log(context.workbook))

    if actions:
        wanted = {_action_value(action) for action in actions}
        records = [record for record in records if record.action in wanted]

    if entity_type:
        records = [record for record in records if record.entity_type == entity_type]

    if start is not None:
        records = [record for record in records if record.timestamp.date() >= start]

    if end is not None:
        records = [record for record in records if record.timestamp.date() <= end]

    # ties keep the latest append first
    records.reverse()
    records.sort(key=lambda record: record.timestamp, reverse=True)
    return records


def audit_details(record: data_manager.AuditRow) -> dict[str, Any]:
    """Decode the JSON details of ``record`` (empty dict when absent)."""

    if not record.details:
        return {}
    return json.loads(record.details)


__all__ = ["log_accounting_action", "get_audit_log", "audit_details"]
