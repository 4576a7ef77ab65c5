"""Preview image cache and resolution.

Every record resolves to an image URL through a fixed chain:

1. cache hit: the manifest entry has the same source URL and the file exists
2. fresh fetch: download with timeout and retry, validate, store
3. stale reuse: keep the previously cached file for the key
4. placeholder: the shared fallback image

Resolution never raises; a failed download only affects its own record.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Iterable

import httpx
from PIL import Image, UnidentifiedImageError

from .config import SyncConfig
from .errors import ImageFetchError, PersistenceError
from .models import AssetCacheEntry, Key, ProductRecord, storage_key
from .retry import RetryPolicy
from .store import atomic_write_bytes, json_bytes, read_json
from .utils import coerce_https, is_safe_segment, utc_now_iso

logger = logging.getLogger(__name__)

RASTER_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

PIL_FORMAT_EXTENSIONS = {
    "JPEG": "jpg",
    "PNG": "png",
    "WEBP": "webp",
    "GIF": "gif",
}

IMAGE_HEADERS = {
    "user-agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "accept": "image/avif,image/webp,image/png,image/jpeg,image/*;q=0.8",
}


def _key_from_storage(value: str) -> Key | None:
    market, sep, asin = value.partition("|")
    if not sep or not market or not asin:
        return None
    return (market.upper(), asin.upper())


class AssetCache:
    """Manifest-backed image cache keyed by (market, asin)."""

    def __init__(self, manifest_path: Path, assets_dir: Path):
        self.manifest_path = manifest_path
        self.assets_dir = assets_dir
        self.entries: dict[Key, AssetCacheEntry] = {}

    @classmethod
    def load(cls, manifest_path: Path, assets_dir: Path) -> AssetCache:
        cache = cls(manifest_path, assets_dir)
        raw = read_json(manifest_path, {})
        if isinstance(raw, dict):
            for name, value in raw.items():
                key = _key_from_storage(str(name))
                entry = AssetCacheEntry.from_dict(value)
                if key and entry:
                    cache.entries[key] = entry
        logger.info(f"Loaded asset manifest with {len(cache.entries)} entries")
        return cache

    def path_for(self, key: Key, extension: str) -> Path | None:
        market, asin = key
        if not is_safe_segment(market) or not is_safe_segment(asin):
            return None
        return self.assets_dir / market.lower() / f"{asin}.{extension}"

    def get(self, key: Key) -> AssetCacheEntry | None:
        return self.entries.get(key)

    def cached_file(self, key: Key) -> Path | None:
        """Path of the cached file for `key` if it still exists on disk."""
        entry = self.entries.get(key)
        if entry is None:
            return None
        path = self.path_for(key, entry.extension)
        return path if path is not None and path.is_file() else None

    def matches(self, key: Key, source_url: str) -> bool:
        entry = self.entries.get(key)
        return bool(entry and source_url and entry.source_url == source_url and self.cached_file(key))

    def put(self, key: Key, entry: AssetCacheEntry, data: bytes) -> Path:
        """Store image bytes and record the manifest entry."""
        path = self.path_for(key, entry.extension)
        if path is None:
            raise PersistenceError(f"Unsafe asset path for {storage_key(*key)}")

        previous = self.entries.get(key)
        atomic_write_bytes(path, data)
        if previous and previous.extension != entry.extension:
            if (old_path := self.path_for(key, previous.extension)) is not None:
                old_path.unlink(missing_ok=True)
        self.entries[key] = entry
        return path

    def invalidate(self, key: Key) -> bool:
        """Drop the manifest entry and its file. Returns True if one existed."""
        entry = self.entries.pop(key, None)
        if entry is None:
            return False
        if (path := self.path_for(key, entry.extension)) is not None:
            path.unlink(missing_ok=True)
        return True

    def manifest_payload(self) -> dict[Path, bytes]:
        """Serialized manifest keyed by its path, for a combined commit."""
        payload = {
            storage_key(*key): self.entries[key].to_dict()
            for key in sorted(self.entries)
        }
        return {self.manifest_path: json_bytes(payload)}


class ImageSource(str, Enum):
    CACHE = "cache"
    FRESH = "fresh"
    STALE = "stale"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class ResolvedImage:
    url: str
    source: ImageSource
    error: str | None = None


def validate_image(body: bytes, content_type: str | None, min_bytes: int) -> str:
    """Check a downloaded payload and return its file extension.

    Raises:
        ImageFetchError: for non-raster content types, undersized payloads
            (typically error or interstitial pages) or undecodable bytes.
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime not in RASTER_CONTENT_TYPES:
        raise ImageFetchError(f"Disallowed content type {mime or '(none)'}")
    if len(body) < min_bytes:
        raise ImageFetchError(f"Payload too small ({len(body)} bytes)")

    try:
        with Image.open(BytesIO(body)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise ImageFetchError(f"Undecodable image: {e}") from e

    if fmt not in PIL_FORMAT_EXTENSIONS:
        raise ImageFetchError(f"Unsupported image format {fmt}")
    return PIL_FORMAT_EXTENSIONS[fmt]


class AssetResolver:
    """Resolve preview images for a batch of records."""

    def __init__(
        self,
        config: SyncConfig,
        cache: AssetCache,
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.cache = cache
        self.policy = policy or RetryPolicy(
            max_attempts=config.image_attempts,
            timeout=config.image_timeout,
            backoff=config.image_backoff,
            retry_on=(httpx.HTTPError, TimeoutError),
        )
        self.client = client
        self.failed: list[Key] = []

    async def fetch_image(self, client: httpx.AsyncClient, url: str) -> tuple[bytes, str]:
        """Download and validate one image; raises ImageFetchError."""

        async def attempt() -> httpx.Response:
            resp = await client.get(url, headers=IMAGE_HEADERS)
            resp.raise_for_status()
            return resp

        try:
            resp = await self.policy.run(attempt, label=f"image {url}")
        except httpx.HTTPStatusError as e:
            raise ImageFetchError(f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, TimeoutError) as e:
            raise ImageFetchError(f"Download failed: {e!r}") from e

        body = resp.content
        extension = await asyncio.to_thread(
            validate_image, body, resp.headers.get("content-type"), self.config.min_image_bytes
        )
        return body, extension

    def _fallback(self, record: ProductRecord, error: str | None) -> ResolvedImage:
        key = record.key
        if self.cache.cached_file(key) is not None:
            entry = self.cache.get(key)
            return ResolvedImage(
                url=self.config.asset_url(record.market, record.asin, entry.extension),
                source=ImageSource.STALE,
                error=error,
            )
        return ResolvedImage(url=self.config.placeholder_url, source=ImageSource.PLACEHOLDER, error=error)

    async def resolve(self, client: httpx.AsyncClient, record: ProductRecord) -> ResolvedImage:
        key = record.key
        source_url = coerce_https(record.image_url)

        if self.cache.matches(key, source_url):
            entry = self.cache.get(key)
            return ResolvedImage(
                url=self.config.asset_url(record.market, record.asin, entry.extension),
                source=ImageSource.CACHE,
            )

        if not source_url:
            return self._fallback(record, None)

        try:
            body, extension = await self.fetch_image(client, source_url)
            entry = AssetCacheEntry(
                source_url=source_url,
                extension=extension,
                byte_size=len(body),
                fetched_at=utc_now_iso(),
            )
            await asyncio.to_thread(self.cache.put, key, entry, body)
        except (ImageFetchError, PersistenceError) as e:
            self.failed.append(key)
            logger.warning(f"Image for {record.storage_key} unavailable ({source_url}): {e}")
            return self._fallback(record, str(e))

        return ResolvedImage(
            url=self.config.asset_url(record.market, record.asin, extension),
            source=ImageSource.FRESH,
        )

    async def resolve_all(self, records: Iterable[ProductRecord]) -> dict[Key, ResolvedImage]:
        """Resolve one image per natural key; the first record seen for a key wins."""
        unique: dict[Key, ProductRecord] = {}
        for record in records:
            unique.setdefault(record.key, record)

        if self.client is not None:
            return await self._resolve_with(self.client, list(unique.values()))

        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(self.config.image_timeout),
        ) as client:
            return await self._resolve_with(client, list(unique.values()))

    async def _resolve_with(
        self, client: httpx.AsyncClient, records: list[ProductRecord]
    ) -> dict[Key, ResolvedImage]:
        semaphore = asyncio.Semaphore(self.config.download_concurrency)

        async def bounded(record: ProductRecord) -> ResolvedImage:
            async with semaphore:
                return await self.resolve(client, record)

        results = await asyncio.gather(*(bounded(r) for r in records), return_exceptions=True)

        resolved: dict[Key, ResolvedImage] = {}
        for record, result in zip(records, results):
            if isinstance(result, Exception):
                logger.error(f"Unexpected error resolving image for {record.storage_key}: {result!r}")
                self.failed.append(record.key)
                result = self._fallback(record, str(result))
            resolved[record.key] = result
        return resolved
