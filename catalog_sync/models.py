"""Data models for the catalog sync."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum


class HiddenReason(str, Enum):
    """Why a record is not publicly listed."""

    NONE = "none"
    NON_AMAZON = "non_amazon_numeric_id"
    INACTIVE = "inactive_status"
    REMOVED = "removed_from_active"


Key = tuple[str, str]


def storage_key(market: str, asin: str) -> str:
    """Build the `MARKET|ASIN` string used in persisted mappings."""
    return f"{market.strip().upper()}|{asin.strip().upper()}"


@dataclass
class ProductRecord:
    """A product listing as seen in the feed or carried from a prior run."""

    market: str
    asin: str
    title: str = ""
    link: str = ""
    image_url: str = ""
    status: str = ""
    hidden_reason: HiddenReason = HiddenReason.NONE
    first_seen_at: str = ""
    updated_at: str = ""
    source_order: int = 0
    extras: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> Key:
        return (self.market, self.asin)

    @property
    def storage_key(self) -> str:
        return storage_key(self.market, self.asin)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "market": self.market,
            "asin": self.asin,
            "title": self.title,
            "link": self.link,
            "image_url": self.image_url,
            "status": self.status,
            "hidden_reason": self.hidden_reason.value,
            "first_seen_at": self.first_seen_at,
            "updated_at": self.updated_at,
            "source_order": self.source_order,
        }
        if self.extras:
            data["extras"] = dict(self.extras)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ProductRecord | None:
        """Build a record from persisted JSON; returns None for unusable entries."""
        if not isinstance(data, dict):
            return None
        market = str(data.get("market") or "").strip().upper()
        asin = str(data.get("asin") or "").strip().upper()
        if not market or not asin:
            return None

        # Older catalogs stored the reason under `_hidden_reason`.
        raw_reason = data.get("hidden_reason") or data.get("_hidden_reason") or HiddenReason.NONE.value
        if raw_reason == "non_amazon_numeric_asin":
            raw_reason = HiddenReason.NON_AMAZON.value
        try:
            reason = HiddenReason(raw_reason)
        except ValueError:
            reason = HiddenReason.NONE

        try:
            source_order = int(data.get("source_order") or 0)
        except (TypeError, ValueError):
            source_order = 0

        extras = data.get("extras")
        return cls(
            market=market,
            asin=asin,
            title=str(data.get("title") or ""),
            link=str(data.get("link") or ""),
            image_url=str(data.get("image_url") or ""),
            status=str(data.get("status") or ""),
            hidden_reason=reason,
            first_seen_at=str(data.get("first_seen_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
            source_order=source_order,
            extras={str(k): str(v) for k, v in extras.items()} if isinstance(extras, dict) else {},
        )


@dataclass
class CatalogSnapshot:
    """Active listings plus the archive ledger."""

    active: list[ProductRecord] = field(default_factory=list)
    archive: dict[Key, ProductRecord] = field(default_factory=dict)

    def archive_records(self) -> list[ProductRecord]:
        """Archive entries sorted by natural key."""
        return [self.archive[key] for key in sorted(self.archive)]

    def union(self) -> list[ProductRecord]:
        """Active records followed by archive records (overlaps kept)."""
        return [*self.active, *self.archive_records()]


@dataclass
class AssetCacheEntry:
    """Manifest entry for a cached preview image."""

    source_url: str
    extension: str
    byte_size: int
    fetched_at: str

    def to_dict(self) -> dict:
        return {
            "source_url": self.source_url,
            "extension": self.extension,
            "byte_size": self.byte_size,
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> AssetCacheEntry | None:
        if not isinstance(data, dict):
            return None
        extension = str(data.get("extension") or "").lstrip(".").lower()
        if not extension:
            return None
        try:
            byte_size = int(data.get("byte_size") or 0)
        except (TypeError, ValueError):
            byte_size = 0
        return cls(
            source_url=str(data.get("source_url") or ""),
            extension=extension,
            byte_size=byte_size,
            fetched_at=str(data.get("fetched_at") or ""),
        )


@dataclass
class RunSummary:
    """Counters reported at the end of a sync run."""

    rows_total: int = 0
    rows_skipped: int = 0
    duplicates_resolved: int = 0
    active_count: int = 0
    archive_count: int = 0
    hidden_non_amazon: int = 0
    hidden_inactive: int = 0
    removed_from_active: int = 0
    images_cached: int = 0
    images_fetched: int = 0
    images_stale: int = 0
    images_placeholder: int = 0
    images_failed: int = 0
    pages_written: int = 0
    pages_failed: int = 0
    published: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
