import unittest

from catalog_sync.classifier import HeaderIndex, RowKind, classify_row, normalize_header
from catalog_sync.models import HiddenReason

NOW = "2026-01-01T00:00:00+00:00"


class TestHeaderIndex(unittest.TestCase):
    def test_normalize_header(self):
        self.assertEqual(normalize_header(" Image URL "), "image_url")
        self.assertEqual(normalize_header("ASIN"), "asin")

    def test_aliases_are_case_insensitive(self):
        index = HeaderIndex(["Market", "ASIN", "Image", "Link"])
        cells = ["us", "b0", "https://img.test/a.jpg", "https://amazon.test/dp/b0"]
        self.assertEqual(index.get(cells, "image_url"), "https://img.test/a.jpg")
        self.assertEqual(index.get(cells, "link"), "https://amazon.test/dp/b0")

    def test_first_non_empty_alias_wins(self):
        index = HeaderIndex(["market", "asin", "image_url", "img"])
        self.assertEqual(index.get(["US", "B1", "", "https://img.test/b.png"], "image_url"), "https://img.test/b.png")

    def test_missing_required(self):
        self.assertEqual(HeaderIndex(["title", "asin"]).missing_required(), ["market"])
        self.assertEqual(HeaderIndex(["MARKET", "asin"]).missing_required(), [])

    def test_short_row_reads_empty(self):
        index = HeaderIndex(["market", "asin", "title"])
        self.assertEqual(index.get(["US"], "title"), "")


class TestClassifyRow(unittest.TestCase):
    def setUp(self):
        self.index = HeaderIndex(["market", "asin", "title", "link", "image_url", "status", "store"])

    def classify(self, *cells, order=0):
        return classify_row(self.index, list(cells), order, NOW)

    def test_skip_when_market_or_asin_blank(self):
        self.assertIs(self.classify("  ", "B1").kind, RowKind.SKIP)
        self.assertIs(self.classify("US", "   ").kind, RowKind.SKIP)
        self.assertIsNone(self.classify("", "").record)

    def test_numeric_asin_is_non_amazon_even_if_published(self):
        row = self.classify("us", " 123456789012 ", "Walmart thing", "", "", "active")
        self.assertIs(row.kind, RowKind.NON_AMAZON)
        self.assertEqual(row.record.hidden_reason, HiddenReason.NON_AMAZON)
        self.assertEqual(row.record.asin, "123456789012")

    def test_unpublished_status_is_inactive(self):
        for status in ("disabled", "0", "off", "Draft"):
            with self.subTest(status=status):
                row = self.classify("US", "B1", "t", "", "", status)
                self.assertIs(row.kind, RowKind.INACTIVE)
                self.assertEqual(row.record.hidden_reason, HiddenReason.INACTIVE)

    def test_published_statuses_and_empty_are_active(self):
        for status in ("", "1", "TRUE", " Online ", "published"):
            with self.subTest(status=status):
                self.assertIs(self.classify("US", "B1", "t", "", "", status).kind, RowKind.ACTIVE)

    def test_active_record_is_normalized(self):
        row = self.classify(
            " us ", "b0abc", " Desk lamp ", "https://amazon.test/dp/B0ABC", "ftp://img/x.jpg", "", "Acme", order=7
        )
        record = row.record
        self.assertIs(row.kind, RowKind.ACTIVE)
        self.assertEqual((record.market, record.asin), ("US", "B0ABC"))
        self.assertEqual(record.title, "Desk lamp")
        self.assertEqual(record.link, "https://amazon.test/dp/B0ABC")
        self.assertEqual(record.image_url, "")
        self.assertEqual(record.source_order, 7)
        self.assertEqual(record.extras, {"store": "Acme"})
        self.assertEqual(record.first_seen_at, NOW)

    def test_relative_link_is_dropped(self):
        self.assertEqual(self.classify("US", "B1", "t", "/dp/B1").record.link, "")


if __name__ == "__main__":
    unittest.main()
