"""Sequential document numbers (``GRN``, ``INV``, ``PO``, ``PAY``).

Numbers have the form ``<PREFIX><year><seq:04d>``. The sequence for each
prefix and year lives in a counter record at ``counters/<PREFIX><year>``
that is advanced with ``compare_and_set``, so two concurrent creators can
never draw the same number.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Optional

from . import log
from .constants import Collection, DocumentPrefix
from .ledger_store import LedgerStore, StoreAccessError, join_path


MAX_COUNTER_ATTEMPTS = 8


def counter_path(prefix: DocumentPrefix, year: int) -> str:
    return join_path(Collection.COUNTERS.value, f"{DocumentPrefix(prefix).value}{year}")


def format_document_number(prefix: DocumentPrefix, year: int, sequence: int) -> str:
    """Return ``<PREFIX><year><sequence>`` with the sequence padded to four digits."""

    return f"{DocumentPrefix(prefix).value}{year}{sequence:04d}"


def fallback_document_number(prefix: DocumentPrefix, year: int, *, millis: Optional[int] = None) -> str:
    """Number built from the last four digits of the epoch milliseconds."""

    if millis is None:
        millis = int(time.time() * 1000)
    return f"{DocumentPrefix(prefix).value}{year}{str(millis)[-4:]}"


def next_document_number(store: LedgerStore, prefix: DocumentPrefix, when: datetime) -> str:
    """Draw the next number for ``prefix`` in the year of ``when``.

    Args:
        store (LedgerStore): Store holding the counter records.
        prefix (DocumentPrefix): Document family being numbered.
        when (datetime): Creation time; only its year is used.

    Returns:
        str: The formatted document number. When the counter cannot be read
            or stays contended for ``MAX_COUNTER_ATTEMPTS`` rounds, the
            epoch-millisecond fallback is returned instead.
    """
    year = when.year
    path = counter_path(prefix, year)
    try:
        for _ in range(MAX_COUNTER_ATTEMPTS):
            current = store.read(path)
            sequence = int(current) if current is not None else 0
            if store.compare_and_set(path, current, sequence + 1):
                return format_document_number(prefix, year, sequence + 1)
        log.warning("Counter '%s' stayed contended after %d attempts", path, MAX_COUNTER_ATTEMPTS)
    except (StoreAccessError, TypeError, ValueError) as exc:
        log.warning("Counter '%s' unavailable: %s", path, exc)
    return fallback_document_number(prefix, year)
