"""Run configuration.

A `SyncConfig` is built once (from the environment plus CLI overrides) and
handed to every component explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SITE_ORIGIN = "https://ama.omino.top"
DEFAULT_DEDUP_CRITERIA = ("valid_link", "has_image", "title_length")


def _split_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class SyncConfig:
    """Immutable settings for one sync run."""

    feed_url: str
    site_origin: str = DEFAULT_SITE_ORIGIN
    site_dir: Path = field(default_factory=Path.cwd)
    out_dir: Path | None = None
    assets_dir: Path | None = None
    history_db: Path | None = None
    assets_url_path: str = "/og"
    placeholder_path: str = "/og-placeholder.jpg"
    route_param: str = "open"
    image_timeout: float = 8.0
    image_attempts: int = 2
    image_backoff: float = 0.5
    min_image_bytes: int = 4096
    download_concurrency: int = 8
    feed_timeout: float = 30.0
    feed_attempts: int = 3
    feed_backoff: float = 0.8
    dedup_criteria: tuple[str, ...] = DEFAULT_DEDUP_CRITERIA

    def __post_init__(self):
        object.__setattr__(self, "site_origin", self.site_origin.strip().rstrip("/"))
        object.__setattr__(self, "site_dir", Path(self.site_dir))
        if self.out_dir is None:
            object.__setattr__(self, "out_dir", self.site_dir / "p")
        if self.assets_dir is None:
            object.__setattr__(self, "assets_dir", self.site_dir / "og")
        if self.history_db is None:
            object.__setattr__(self, "history_db", self.site_dir / ".sync" / "history.db")
        if self.download_concurrency < 1:
            raise ValueError("download_concurrency must be at least 1")
        if self.image_attempts < 1 or self.feed_attempts < 1:
            raise ValueError("attempt counts must be at least 1")

    @property
    def products_path(self) -> Path:
        return self.site_dir / "products.json"

    @property
    def archive_path(self) -> Path:
        return self.site_dir / "archive.json"

    @property
    def manifest_path(self) -> Path:
        return self.assets_dir / "manifest.json"

    @property
    def placeholder_url(self) -> str:
        return f"{self.site_origin}{self.placeholder_path}"

    def asset_url(self, market: str, asin: str, extension: str) -> str:
        """Public URL of a cached preview image."""
        prefix = self.assets_url_path.rstrip("/")
        return f"{self.site_origin}{prefix}/{market.lower()}/{asin}.{extension}"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None, **overrides) -> SyncConfig:
        """Build a config from CSV_URL / SITE_ORIGIN / SITE_DIR / OUT_DIR / DEDUP_CRITERIA."""
        env = os.environ if env is None else env

        site_dir = overrides.pop("site_dir", None) or Path(env.get("SITE_DIR", "").strip() or Path.cwd())
        site_dir = Path(site_dir)

        out_dir = overrides.pop("out_dir", None)
        if out_dir is None and env.get("OUT_DIR", "").strip():
            # OUT_DIR is relative to the site root.
            out_dir = site_dir / env["OUT_DIR"].strip().lstrip("/")

        values = {
            "feed_url": env.get("CSV_URL", "").strip(),
            "site_origin": env.get("SITE_ORIGIN", "").strip() or DEFAULT_SITE_ORIGIN,
            "site_dir": site_dir,
            "out_dir": Path(out_dir) if out_dir is not None else None,
        }
        if criteria := _split_list(env.get("DEDUP_CRITERIA")):
            values["dedup_criteria"] = criteria

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
