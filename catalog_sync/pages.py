"""Static preview pages: render, stage a generation, then switch to it."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .assets import ResolvedImage
from .config import SyncConfig
from .errors import PersistenceError, PublishError
from .keys import assign_asin_keys, sort_for_keys
from .models import Key, ProductRecord
from .utils import is_safe_segment

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

SITE_NAME = "Product Picks"
OG_DESCRIPTION = (
    "Independent product reference. Purchases are completed on Amazon. "
    "As an Amazon Associate, we earn from qualifying purchases."
)


@dataclass(frozen=True)
class PageSpec:
    """One page to emit at /p/{market_lower}/{asin_key}/."""

    market: str
    asin_key: str
    image_url: str

    @property
    def market_lower(self) -> str:
        return self.market.lower()

    @property
    def route(self) -> str:
        return f"/p/{quote(self.market_lower, safe='')}/{quote(self.asin_key, safe='')}"

    @property
    def relative_path(self) -> Path:
        return Path(self.market_lower) / self.asin_key / "index.html"


@dataclass
class PublishResult:
    written: int = 0
    failed: int = 0


def build_page_specs(
    records: Sequence[ProductRecord],
    images: Mapping[Key, ResolvedImage],
    placeholder_url: str,
) -> list[PageSpec]:
    """Assign AsinKeys over the active+archive union and bind resolved images."""
    ordered = sort_for_keys(records)
    keys = assign_asin_keys(ordered)
    specs = []
    for record, asin_key in zip(ordered, keys):
        image = images.get(record.key)
        specs.append(
            PageSpec(
                market=record.market,
                asin_key=asin_key,
                image_url=image.url if image else placeholder_url,
            )
        )
    return specs


class PageSynthesizer:
    """Publishes the page tree as immutable generations behind a symlink.

    `out_dir` is a symlink to a sibling `.{name}.gen-{token}` directory. Each
    publish writes a complete new generation, then repoints the link with a
    single `os.replace`, so readers always see one whole generation.
    """

    def __init__(self, config: SyncConfig, env: Environment | None = None):
        self.config = config
        self.out_dir: Path = config.out_dir
        self.env = env or Environment(
            loader=FileSystemLoader(TEMPLATES_DIR),
            autoescape=select_autoescape(["html"]),
        )
        self.template = self.env.get_template("preview.html")

    def render(self, page: PageSpec) -> str:
        origin = self.config.site_origin
        og_title = f"Product Reference • {page.market.upper()} • {page.asin_key}"
        return self.template.render(
            site_name=SITE_NAME,
            og_title=og_title,
            og_description=OG_DESCRIPTION,
            page_url=f"{origin}{page.route}/",
            og_image=page.image_url or self.config.placeholder_url,
            redirect_url=f"{origin}/?{self.config.route_param}={quote(page.route, safe='')}",
        )

    def _sibling(self, kind: str, token: str) -> Path:
        return self.out_dir.parent / f".{self.out_dir.name}.{kind}-{token}"

    def _siblings(self, *kinds: str) -> list[Path]:
        parent = self.out_dir.parent
        found: list[Path] = []
        for kind in kinds:
            found.extend(parent.glob(f".{self.out_dir.name}.{kind}-*"))
        return sorted(found)

    def live_generation(self) -> str | None:
        """Name of the generation directory currently published, if any."""
        if not self.out_dir.is_symlink():
            return None
        return Path(os.readlink(self.out_dir)).name

    def _recover_leftovers(self) -> None:
        """Relink or remove what an interrupted run left beside the tree."""
        adopted = self._siblings("adopted")
        if adopted and not os.path.lexists(self.out_dir):
            logger.warning(f"Relinking {self.out_dir} to {adopted[-1].name} after an interrupted run")
            os.symlink(adopted[-1].name, self.out_dir)

        live = self.live_generation()
        for leftover in self._siblings("gen", "adopted", "link"):
            if leftover.name == live:
                continue
            if leftover.is_symlink() or leftover.is_file():
                leftover.unlink(missing_ok=True)
            else:
                shutil.rmtree(leftover, ignore_errors=True)

    def _adopt_plain_directory(self, token: str) -> None:
        """Move a tree published as a plain directory behind the symlink."""
        if self.out_dir.is_symlink() or not os.path.lexists(self.out_dir):
            return
        adopted = self._sibling("adopted", token)
        os.rename(self.out_dir, adopted)
        os.symlink(adopted.name, self.out_dir)
        logger.info(f"Moved existing {self.out_dir} to {adopted.name}")

    def _write_page(self, generation: Path, page: PageSpec, written: set[Path]) -> None:
        if not is_safe_segment(page.market_lower) or not is_safe_segment(page.asin_key):
            raise PersistenceError(f"Unsafe page path {page.market_lower}/{page.asin_key}")
        relative = page.relative_path
        if relative in written:
            raise PersistenceError(f"Duplicate page path {relative.as_posix()}")
        target = generation / relative
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(self.render(page), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Cannot write {relative.as_posix()}: {e}") from e
        written.add(relative)

    def _carry_previous(self, generation: Path, page: PageSpec, written: set[Path]) -> None:
        if not is_safe_segment(page.market_lower) or not is_safe_segment(page.asin_key):
            return
        relative = page.relative_path
        previous = self.out_dir / relative
        if relative in written or not previous.is_file():
            return
        try:
            (generation / relative).parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(previous, generation / relative)
            written.add(relative)
        except OSError as e:
            logger.warning(f"Could not carry previous page {relative.as_posix()}: {e}")

    def stage(self, pages: Sequence[PageSpec], generation: Path) -> PublishResult:
        """Write every page under `generation`; failures are isolated per page."""
        result = PublishResult()
        written: set[Path] = set()
        generation.mkdir(parents=True)

        for page in pages:
            try:
                self._write_page(generation, page, written)
                result.written += 1
            except PersistenceError as e:
                result.failed += 1
                logger.error(f"Skipping page: {e}")
                self._carry_previous(generation, page, written)
        return result

    def swap(self, generation: Path, token: str) -> None:
        """Point `out_dir` at `generation` with one atomic rename.

        Raises:
            PublishError: the previous generation stays published.
        """
        previous = self.live_generation()
        link = self._sibling("link", token)
        try:
            os.symlink(generation.name, link)
            os.replace(link, self.out_dir)
        except OSError as e:
            with contextlib.suppress(OSError):
                link.unlink(missing_ok=True)
            shutil.rmtree(generation, ignore_errors=True)
            raise PublishError(f"Could not publish {self.out_dir}: {e}") from e

        if previous and previous != generation.name:
            shutil.rmtree(self.out_dir.parent / previous, ignore_errors=True)

    def publish(self, pages: Sequence[PageSpec]) -> PublishResult:
        """Stage all pages as a new generation and publish it."""
        token = uuid.uuid4().hex[:8]
        generation = self._sibling("gen", token)
        try:
            self.out_dir.parent.mkdir(parents=True, exist_ok=True)
            self._recover_leftovers()
            self._adopt_plain_directory(token)
            result = self.stage(pages, generation)
        except OSError as e:
            shutil.rmtree(generation, ignore_errors=True)
            raise PublishError(f"Could not stage pages: {e}") from e

        self.swap(generation, token)
        logger.info(f"Published {result.written} pages to {self.out_dir} ({generation.name}, {result.failed} failed)")
        return result
