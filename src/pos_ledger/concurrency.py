"""In-process serialization points for read-then-write sequences.

Entry-number allocation (per year), lot consumption (per product), and voiding
(per entry) read shared state and then write it back. Each runs under a named
mutex taken from :class:`KeyedLocks`. Workbook mutations additionally take
:data:`STORE_KEY` so appends from different scopes never interleave inside
``openpyxl``.

Workflows that check a record and then post against it (closing a shift,
paying an invoice, settling card sales, opening a shift number) hold a
workflow key from the check through the final row update.

Lock order is always ``workflow key -> entry key -> year key -> STORE_KEY``
and ``workflow key -> product key -> STORE_KEY``.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


STORE_KEY = "store"
CARD_SETTLEMENT_KEY = "card-settlement"


def product_key(product_id: str) -> str:
    return f"fifo:{product_id}"


def entry_number_key(year: int) -> str:
    return f"entry-number:{year}"


def journal_entry_key(entry_id: str) -> str:
    return f"journal-entry:{entry_id}"


def shift_key(shift_id: str) -> str:
    return f"shift:{shift_id}"


def shift_number_key(shift_number: str) -> str:
    return f"shift-number:{shift_number}"


def invoice_key(invoice_id: str) -> str:
    return f"invoice:{invoice_id}"


class KeyedLocks:
    """Registry of re-entrant locks created lazily per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


__all__ = [
    "KeyedLocks",
    "STORE_KEY",
    "CARD_SETTLEMENT_KEY",
    "product_key",
    "entry_number_key",
    "journal_entry_key",
    "shift_key",
    "shift_number_key",
    "invoice_key",
]
