"""Deterministic AsinKey assignment for output paths."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Sequence

from .models import ProductRecord


def sort_for_keys(records: Iterable[ProductRecord]) -> list[ProductRecord]:
    """Sort by (market, asin, source_order); ties keep their input order."""
    return sorted(records, key=lambda r: (r.market, r.asin, r.source_order))


def assign_asin_keys(records: Sequence[ProductRecord]) -> list[str]:
    """Return one AsinKey per record, parallel to `records`.

    The first record of a (market, asin) pair keeps the bare asin; the Nth
    later duplicate gets `asin_N`. Records are visited in the given order and
    are not modified.
    """
    seen: defaultdict[tuple[str, str], int] = defaultdict(int)
    keys: list[str] = []
    for record in records:
        count = seen[record.key]
        keys.append(record.asin if count == 0 else f"{record.asin}_{count}")
        seen[record.key] = count + 1
    return keys
