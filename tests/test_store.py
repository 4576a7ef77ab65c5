import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from catalog_sync.errors import PersistenceError
from catalog_sync.models import CatalogSnapshot, HiddenReason, ProductRecord
from catalog_sync.store import CatalogStore, atomic_write_many


class TestAtomicWriteMany(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.a = self.root / "a.json"
        self.b = self.root / "b.json"
        self.c = self.root / "og" / "c.json"
        self.a.write_bytes(b"old a")
        self.b.write_bytes(b"old b")

    def tearDown(self):
        self._tmp.cleanup()

    def leftovers(self):
        return [p.name for p in self.root.rglob("*.tmp")]

    def test_writes_every_file(self):
        atomic_write_many({self.a: b"new a", self.b: b"new b", self.c: b"new c"})
        self.assertEqual(
            (self.a.read_bytes(), self.b.read_bytes(), self.c.read_bytes()),
            (b"new a", b"new b", b"new c"),
        )
        self.assertEqual(self.leftovers(), [])

    def test_directory_target_fails_before_anything_is_replaced(self):
        self.c.mkdir(parents=True)
        (self.c / "keep").write_text("x")
        with self.assertRaises(PersistenceError):
            atomic_write_many({self.a: b"new a", self.b: b"new b", self.c: b"new c"})
        self.assertEqual((self.a.read_bytes(), self.b.read_bytes()), (b"old a", b"old b"))
        self.assertEqual(self.leftovers(), [])

    def test_failed_replace_restores_files_already_moved(self):
        real_replace = os.replace

        def flaky_replace(src, dst):
            if Path(dst) == self.c:
                raise OSError("disk detached")
            return real_replace(src, dst)

        with mock.patch("catalog_sync.store.os.replace", side_effect=flaky_replace):
            with self.assertRaises(PersistenceError):
                atomic_write_many({self.a: b"new a", self.b: b"new b", self.c: b"new c"})

        self.assertEqual((self.a.read_bytes(), self.b.read_bytes()), (b"old a", b"old b"))
        self.assertFalse(self.c.exists())
        self.assertEqual(self.leftovers(), [])

    def test_new_file_is_removed_on_rollback(self):
        fresh = self.root / "fresh.json"
        real_replace = os.replace

        def flaky_replace(src, dst):
            if Path(dst) == self.b:
                raise OSError("read-only")
            return real_replace(src, dst)

        with mock.patch("catalog_sync.store.os.replace", side_effect=flaky_replace):
            with self.assertRaises(PersistenceError):
                atomic_write_many({fresh: b"new", self.b: b"new b"})
        self.assertFalse(fresh.exists())


class TestCatalogStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = CatalogStore(self.root / "products.json", self.root / "archive.json")

    def tearDown(self):
        self._tmp.cleanup()

    def test_save_and_load(self):
        snapshot = CatalogSnapshot(
            active=[ProductRecord("US", "B1", title="lamp")],
            archive={("DE", "B2"): ProductRecord("DE", "B2", hidden_reason=HiddenReason.INACTIVE)},
        )
        manifest = self.root / "og" / "manifest.json"
        self.store.save(snapshot, extra={manifest: b"{}\n"})

        loaded = self.store.load()
        self.assertEqual([r.key for r in loaded.active], [("US", "B1")])
        self.assertEqual(loaded.archive[("DE", "B2")].hidden_reason, HiddenReason.INACTIVE)
        self.assertEqual(manifest.read_bytes(), b"{}\n")

    def test_corrupt_catalog_is_a_persistence_error(self):
        (self.root / "archive.json").write_text("{not json", encoding="utf-8")
        with self.assertRaises(PersistenceError):
            self.store.load()


if __name__ == "__main__":
    unittest.main()
