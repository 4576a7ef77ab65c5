"""One sync run: feed -> catalog -> images -> pages."""

from __future__ import annotations

import logging
import sqlite3
from time import perf_counter
from typing import Callable, Iterable

import httpx

from .assets import AssetCache, AssetResolver, ImageSource
from .classifier import HeaderIndex, classify_row
from .config import SyncConfig
from .db import RunHistory
from .errors import EmptyFeedError, FeedError, PublishError, SyncError
from .feed import fetch_feed_text, parse_csv, split_header
from .models import Key, RunSummary
from .pages import PageSynthesizer, build_page_specs
from .reconcile import DedupPolicy, ReconcileResult, Reconciler
from .retry import RetryPolicy
from .store import CatalogStore
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


def classify_feed(text: str, now: str):
    """Parse feed text and classify every data row."""
    rows = parse_csv(text)
    if not rows:
        raise EmptyFeedError("Feed is empty")

    headers, data = split_header(rows)
    index = HeaderIndex(headers)
    if missing := index.missing_required():
        raise FeedError(f"Feed missing required column(s): {', '.join(missing)}")

    logger.info(f"Feed headers: {' | '.join(headers)}; data rows: {len(data)}")
    return [classify_row(index, cells, order, now) for order, cells in enumerate(data)]


class SyncPipeline:
    """Runs the full sync for one configuration."""

    def __init__(
        self,
        config: SyncConfig,
        *,
        feed_client: httpx.AsyncClient | None = None,
        image_client: httpx.AsyncClient | None = None,
        history: RunHistory | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.config = config
        self.feed_client = feed_client
        self.image_client = image_client
        self.history = history
        self.clock = clock
        self.store = CatalogStore(config.products_path, config.archive_path)
        self.reconciler = Reconciler(DedupPolicy(config.dedup_criteria), clock=clock)
        self.feed_policy = RetryPolicy(
            max_attempts=config.feed_attempts,
            timeout=config.feed_timeout,
            backoff=config.feed_backoff,
            retry_on=(httpx.HTTPError, TimeoutError),
        )

    async def run(self, skip_pages: bool = False, invalidate: Iterable[Key] = ()) -> RunSummary:
        """
        Execute one run and return its summary.

        Raises:
            SyncError: for fatal failures (feed transport, unusable feed,
                catalog or manifest persistence). products.json, archive.json
                and the manifest are left as they were when one is raised.
        """
        summary = RunSummary()
        run_id = self._start_history()
        start = perf_counter()

        try:
            await self._run(summary, skip_pages, list(invalidate))
        except SyncError as e:
            summary.error = str(e)
            self._complete_history(run_id, "failed", summary, perf_counter() - start)
            raise

        status = "completed" if summary.error is None else "degraded"
        self._complete_history(run_id, status, summary, perf_counter() - start)
        return summary

    async def _run(self, summary: RunSummary, skip_pages: bool, invalidate: list[Key]) -> None:
        config = self.config

        logger.info(f"Fetching feed {config.feed_url}")
        text = await fetch_feed_text(config.feed_url, self.feed_policy, client=self.feed_client)
        logger.info(f"Feed bytes: {len(text)}")

        rows = classify_feed(text, self.clock())
        prior = self.store.load()
        result = self.reconciler.reconcile(rows, prior)
        self._apply_reconcile(summary, result)

        snapshot = result.snapshot
        union = snapshot.union()

        cache = AssetCache.load(config.manifest_path, config.assets_dir)
        for key in invalidate:
            if cache.invalidate(key):
                logger.info(f"Invalidated cached image for {key[0]}|{key[1]}")

        resolver = AssetResolver(config, cache, client=self.image_client)
        images = await resolver.resolve_all(union)
        for image in images.values():
            if image.source is ImageSource.CACHE:
                summary.images_cached += 1
            elif image.source is ImageSource.FRESH:
                summary.images_fetched += 1
            elif image.source is ImageSource.STALE:
                summary.images_stale += 1
            else:
                summary.images_placeholder += 1
        summary.images_failed = len(resolver.failed)

        # Catalog and manifest are committed together once everything is resolved.
        self.store.save(snapshot, extra=cache.manifest_payload())

        if skip_pages:
            return

        synthesizer = PageSynthesizer(config)
        specs = build_page_specs(union, images, config.placeholder_url)
        try:
            published = synthesizer.publish(specs)
        except PublishError as e:
            summary.error = str(e)
            summary.pages_failed = len(specs)
            logger.error(f"Page tree not published, previous generation kept: {e}")
            return
        summary.pages_written = published.written
        summary.pages_failed = published.failed
        summary.published = True

    @staticmethod
    def _apply_reconcile(summary: RunSummary, result: ReconcileResult) -> None:
        summary.rows_total = result.rows_total
        summary.rows_skipped = result.rows_skipped
        summary.duplicates_resolved = result.duplicates_resolved
        summary.hidden_non_amazon = result.hidden_non_amazon
        summary.hidden_inactive = result.hidden_inactive
        summary.removed_from_active = len(result.removed_keys)
        summary.active_count = len(result.snapshot.active)
        summary.archive_count = len(result.snapshot.archive)

    def _start_history(self) -> int | None:
        if self.history is None:
            return None
        try:
            return self.history.start_run(self.config.feed_url)
        except sqlite3.Error as e:
            logger.warning(f"Could not record run start: {e}")
            return None

    def _complete_history(self, run_id: int | None, status: str, summary: RunSummary, duration: float) -> None:
        if self.history is None or run_id is None:
            return
        try:
            self.history.complete_run(run_id, status, summary, duration_seconds=duration)
        except sqlite3.Error as e:
            logger.warning(f"Could not record run {run_id}: {e}")
