"""JSON persistence for the catalog and the asset manifest."""

from __future__ import annotations

import errno
import json
import logging
import os
import tempfile
from pathlib import Path

from .errors import PersistenceError
from .models import CatalogSnapshot, ProductRecord

logger = logging.getLogger(__name__)


def _stage(path: Path, data: bytes) -> Path:
    """Write `data` to a temp file beside `path` and return the temp path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


def _roll_back(replaced: dict[Path, bytes | None]) -> None:
    for path, previous in replaced.items():
        try:
            if previous is None:
                path.unlink(missing_ok=True)
            else:
                os.replace(_stage(path, previous), path)
        except OSError as e:
            logger.error(f"Could not roll back {path}: {e}")


def atomic_write_many(files: dict[Path, bytes]) -> None:
    """Stage every file first, then move them all into place.

    A failure while staging leaves every target untouched. A failure while
    moving files into place puts back the targets already replaced.
    """
    staged: dict[Path, Path] = {}
    replaced: dict[Path, bytes | None] = {}
    try:
        for path, data in files.items():
            if path.is_dir():
                raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), str(path))
            staged[path] = _stage(path, data)
        for path, tmp in staged.items():
            previous = path.read_bytes() if path.exists() else None
            os.replace(tmp, path)
            replaced[path] = previous
    except OSError as e:
        _roll_back(replaced)
        raise PersistenceError(f"Cannot write {', '.join(str(p) for p in files)}: {e}") from e
    finally:
        for tmp in staged.values():
            tmp.unlink(missing_ok=True)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    atomic_write_many({path: data})


def json_bytes(payload) -> bytes:
    return (json.dumps(payload, ensure_ascii=False, indent=2) + "\n").encode("utf-8")


def read_json(path: Path, fallback, strict: bool = False):
    """Read a JSON document, returning `fallback` when missing.

    Unreadable documents raise PersistenceError when `strict`, otherwise
    they are logged and treated as missing.
    """
    if not path.exists():
        return fallback
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        if strict:
            raise PersistenceError(f"Cannot read {path}: {e}") from e
        logger.warning(f"Ignoring unreadable {path}: {e}")
        return fallback


def _records_from(payload) -> list[ProductRecord]:
    # Accept a bare list, {"items": [...]} or {"items": {key: record}}.
    items = payload
    if isinstance(payload, dict):
        items = payload.get("items", [])
    if isinstance(items, dict):
        items = list(items.values())
    if not isinstance(items, list):
        return []
    return [record for item in items if (record := ProductRecord.from_dict(item)) is not None]


class CatalogStore:
    """Reads and writes products.json / archive.json."""

    def __init__(self, products_path: Path, archive_path: Path):
        self.products_path = products_path
        self.archive_path = archive_path

    def load(self) -> CatalogSnapshot:
        """Load the prior snapshot; a corrupt document raises PersistenceError."""
        active = _records_from(read_json(self.products_path, [], strict=True))
        archive = {}
        for record in _records_from(read_json(self.archive_path, [], strict=True)):
            archive.setdefault(record.key, record)
        logger.info(f"Loaded prior catalog: active={len(active)} archive={len(archive)}")
        return CatalogSnapshot(active=active, archive=archive)

    def payloads(self, snapshot: CatalogSnapshot) -> dict[Path, bytes]:
        """Serialized products.json and archive.json, keyed by target path."""
        return {
            self.products_path: json_bytes([r.to_dict() for r in snapshot.active]),
            self.archive_path: json_bytes([r.to_dict() for r in snapshot.archive_records()]),
        }

    def save(self, snapshot: CatalogSnapshot, extra: dict[Path, bytes] | None = None) -> None:
        """Persist both documents, plus any `extra` files, as one commit.

        Raises:
            PersistenceError: no target is left half-updated.
        """
        atomic_write_many({**self.payloads(snapshot), **(extra or {})})
        names = [p.name for p in [self.products_path, self.archive_path, *(extra or {})]]
        logger.info(f"Wrote {', '.join(names)}")
