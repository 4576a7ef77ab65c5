"""Map raw feed rows to tagged records."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .models import HiddenReason, ProductRecord
from .utils import is_all_digits, norm, normalize_url, upper

PUBLISHED_STATUSES = frozenset(
    {"", "1", "true", "yes", "on", "active", "enabled", "publish", "published", "online"}
)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "market": ("market",),
    "asin": ("asin",),
    "title": ("title", "product_title", "name"),
    "link": ("link", "url", "amazon_link"),
    "image_url": ("image_url", "image", "img", "imageurl"),
    "status": ("status", "state", "enabled"),
    "keyword": ("keyword", "keywords"),
    "store": ("store", "brand", "shop"),
    "remark": ("remark", "notes", "tag"),
    "discount_price": ("discount_price", "discountprice", "price"),
    "commission": ("commission", "fee"),
}

EXTRA_FIELDS = ("keyword", "store", "remark", "discount_price", "commission")
REQUIRED_FIELDS = ("market", "asin")


class RowKind(str, Enum):
    ACTIVE = "active"
    NON_AMAZON = "non_amazon"
    INACTIVE = "inactive"
    SKIP = "skip"


@dataclass(frozen=True)
class ClassifiedRow:
    kind: RowKind
    record: ProductRecord | None = None

    @property
    def usable(self) -> bool:
        return self.kind is not RowKind.SKIP


def normalize_header(name: str) -> str:
    """Lowercase a header and strip it down to word characters.

    "Image URL" -> "image_url", " ASIN " -> "asin".
    """
    value = re.sub(r"\s+", "_", norm(name).lower())
    return re.sub(r"[^\w]", "", value)


class HeaderIndex:
    """Case-insensitive, alias-aware column lookup."""

    def __init__(self, headers: list[str]):
        self.columns: dict[str, int] = {}
        for idx, header in enumerate(headers):
            # First occurrence of a header name wins.
            self.columns.setdefault(normalize_header(header), idx)

    def has_field(self, name: str) -> bool:
        return any(alias in self.columns for alias in FIELD_ALIASES.get(name, (name,)))

    def missing_required(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not self.has_field(name)]

    def get(self, cells: list[str], name: str) -> str:
        """Return the first non-empty cell among the field's aliases."""
        for alias in FIELD_ALIASES.get(name, (name,)):
            idx = self.columns.get(alias)
            if idx is None or idx >= len(cells):
                continue
            if value := norm(cells[idx]):
                return value
        return ""


def is_published_status(status: str) -> bool:
    return norm(status).lower() in PUBLISHED_STATUSES


def classify_row(index: HeaderIndex, cells: list[str], source_order: int, now: str) -> ClassifiedRow:
    """Classify one data row; never raises on content."""
    market = upper(index.get(cells, "market"))
    asin = upper(index.get(cells, "asin"))
    if not market or not asin:
        return ClassifiedRow(RowKind.SKIP)

    status = index.get(cells, "status")
    record = ProductRecord(
        market=market,
        asin=asin,
        title=index.get(cells, "title"),
        link=normalize_url(index.get(cells, "link")),
        image_url=normalize_url(index.get(cells, "image_url")),
        status=status,
        first_seen_at=now,
        updated_at=now,
        source_order=source_order,
        extras={name: value for name in EXTRA_FIELDS if (value := index.get(cells, name))},
    )

    # A purely numeric identifier belongs to another marketplace.
    if is_all_digits(asin):
        record.hidden_reason = HiddenReason.NON_AMAZON
        return ClassifiedRow(RowKind.NON_AMAZON, record)

    if not is_published_status(status):
        record.hidden_reason = HiddenReason.INACTIVE
        return ClassifiedRow(RowKind.INACTIVE, record)

    return ClassifiedRow(RowKind.ACTIVE, record)
