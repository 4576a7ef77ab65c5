"""Catalog reconciliation: merge this run's feed rows with the prior snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from .classifier import ClassifiedRow, RowKind
from .errors import EmptyFeedError
from .models import CatalogSnapshot, HiddenReason, Key, ProductRecord
from .utils import is_absolute_http_url, norm, utc_now_iso

logger = logging.getLogger(__name__)

Criterion = Callable[[ProductRecord], int]


def _extra_length(name: str) -> Criterion:
    return lambda record: len(norm(record.extras.get(name)))


DEDUP_CRITERIA: dict[str, Criterion] = {
    "valid_link": lambda record: int(is_absolute_http_url(record.link)),
    "has_image": lambda record: int(bool(norm(record.image_url))),
    "title_length": lambda record: len(norm(record.title)),
    "keyword_length": _extra_length("keyword"),
    "store_length": _extra_length("store"),
    "remark_length": _extra_length("remark"),
}


class DedupPolicy:
    """Pick the better of two records sharing a natural key.

    Criteria are compared in order; the first one that differs decides and a
    higher score wins. When every criterion ties, the record with the earlier
    `source_order` wins.
    """

    def __init__(self, criteria: Iterable[str] = ("valid_link", "has_image", "title_length")):
        self.criteria = tuple(criteria)
        unknown = [name for name in self.criteria if name not in DEDUP_CRITERIA]
        if unknown:
            available = ", ".join(DEDUP_CRITERIA)
            raise ValueError(f"Unknown dedup criteria: {', '.join(unknown)}. Available: {available}")

    def score(self, record: ProductRecord) -> tuple[int, ...]:
        return tuple(DEDUP_CRITERIA[name](record) for name in self.criteria)

    def pick(self, existing: ProductRecord, incoming: ProductRecord) -> ProductRecord:
        existing_score = self.score(existing)
        incoming_score = self.score(incoming)
        if incoming_score != existing_score:
            return incoming if incoming_score > existing_score else existing
        return incoming if incoming.source_order < existing.source_order else existing


def sort_active(records: Iterable[ProductRecord]) -> list[ProductRecord]:
    """Active catalog order: market, then asin, ascending."""
    return sorted(records, key=lambda r: (r.market, r.asin))


@dataclass
class ReconcileResult:
    snapshot: CatalogSnapshot
    rows_total: int = 0
    rows_skipped: int = 0
    duplicates_resolved: int = 0
    hidden_non_amazon: int = 0
    hidden_inactive: int = 0
    removed_keys: list[Key] = field(default_factory=list)
    archived_removed: int = 0


def _earliest(*stamps: str) -> str:
    present = [s for s in stamps if s]
    return min(present) if present else ""


class Reconciler:
    """Compute the next active catalog and archive from classified rows."""

    def __init__(self, policy: DedupPolicy | None = None, clock: Callable[[], str] = utc_now_iso):
        self.policy = policy or DedupPolicy()
        self.clock = clock

    def reconcile(self, rows: list[ClassifiedRow], prior: CatalogSnapshot) -> ReconcileResult:
        """
        Merge classified rows with the prior snapshot.

        Raises:
            EmptyFeedError: if no row is usable. Nothing has been persisted
                at this point, so the last good state stays on disk.
        """
        now = self.clock()
        result = ReconcileResult(snapshot=CatalogSnapshot(), rows_total=len(rows))

        prior_active: dict[Key, ProductRecord] = {}
        for record in prior.active:
            prior_active.setdefault(record.key, record)
        archive: dict[Key, ProductRecord] = dict(prior.archive)

        active: dict[Key, ProductRecord] = {}
        usable = 0

        for row in rows:
            if not row.usable or row.record is None:
                result.rows_skipped += 1
                continue
            usable += 1
            record = row.record

            if row.kind is RowKind.ACTIVE:
                previous = prior_active.get(record.key) or archive.get(record.key)
                candidate = replace(
                    record,
                    hidden_reason=HiddenReason.NONE,
                    first_seen_at=_earliest(
                        previous.first_seen_at if previous else "", record.first_seen_at, now
                    ),
                    updated_at=now,
                )
                if (existing := active.get(record.key)) is None:
                    active[record.key] = candidate
                else:
                    result.duplicates_resolved += 1
                    active[record.key] = self.policy.pick(existing, candidate)
                continue

            if row.kind is RowKind.NON_AMAZON:
                result.hidden_non_amazon += 1
            else:
                result.hidden_inactive += 1

            previous = archive.get(record.key) or prior_active.get(record.key)
            archive[record.key] = replace(
                record,
                first_seen_at=_earliest(
                    previous.first_seen_at if previous else "", record.first_seen_at, now
                ),
                updated_at=now,
            )

        if usable == 0:
            raise EmptyFeedError(
                f"Feed produced no usable rows ({len(rows)} data rows); refusing to overwrite catalog"
            )

        for key, old in prior_active.items():
            if key in active:
                continue
            result.removed_keys.append(key)
            if key not in archive:
                archive[key] = replace(old, hidden_reason=HiddenReason.REMOVED, updated_at=now)
                result.archived_removed += 1

        result.snapshot = CatalogSnapshot(active=sort_active(active.values()), archive=archive)

        logger.info(
            f"Reconciled {len(rows)} rows: active={len(active)} archive={len(archive)} "
            f"duplicates={result.duplicates_resolved} removed={len(result.removed_keys)} "
            f"skipped={result.rows_skipped}"
        )
        return result
