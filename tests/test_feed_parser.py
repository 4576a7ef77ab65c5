import unittest

from catalog_sync.feed import parse_csv, split_header


class TestParseCsv(unittest.TestCase):
    def test_quoted_fields_with_commas_quotes_and_newlines(self):
        text = 'market,asin,title\r\nUS,B000000001,"Mug, ""large""\nblue"\r\n'
        rows = parse_csv(text)
        self.assertEqual(
            rows,
            [
                ["market", "asin", "title"],
                ["US", "B000000001", 'Mug, "large"\nblue'],
            ],
        )

    def test_lf_and_crlf_rows_match(self):
        self.assertEqual(parse_csv("a,b\nc,d\n"), parse_csv("a,b\r\nc,d\r\n"))

    def test_trailing_blank_rows_are_dropped(self):
        rows = parse_csv("a,b\n1,2\n\n,\n  ,  \n")
        self.assertEqual(rows, [["a", "b"], ["1", "2"]])

    def test_unterminated_quote_runs_to_end_without_raising(self):
        rows = parse_csv('a,b\n1,"never closed\n2,3\n')
        self.assertEqual(rows[0], ["a", "b"])
        self.assertEqual(rows[1], ["1", "never closed\n2,3\n"])

    def test_ragged_rows_are_kept(self):
        rows = parse_csv("a,b,c\n1\n1,2,3,4\n")
        self.assertEqual(rows[1], ["1"])
        self.assertEqual(rows[2], ["1", "2", "3", "4"])

    def test_stray_quote_inside_unquoted_field_is_literal(self):
        self.assertEqual(parse_csv('a 5" tube,b\n'), [['a 5" tube', "b"]])

    def test_bom_and_missing_final_newline(self):
        self.assertEqual(parse_csv("\ufeffmarket,asin\nUS,B1"), [["market", "asin"], ["US", "B1"]])

    def test_empty_text(self):
        self.assertEqual(parse_csv(""), [])


class TestSplitHeader(unittest.TestCase):
    def test_blank_data_rows_removed(self):
        headers, data = split_header([[" market ", "asin"], ["", ""], ["US", "B1"]])
        self.assertEqual(headers, ["market", "asin"])
        self.assertEqual(data, [["US", "B1"]])

    def test_no_rows(self):
        self.assertEqual(split_header([]), ([], []))
