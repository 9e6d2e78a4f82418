"""
Tests for census_atlas.csv_loader module.

Tests cover:
- Header detection below e-Stat title/notes lines
- Junk column removal (row numbers, blank and unnamed columns)
- Rows with more cells than the header are kept, not dropped or shifted
- Byte-level loading in both encodings
"""

import logging

import pytest

from census_atlas.config import CsvConfig
from census_atlas.csv_loader import find_header_row, load_csv_bytes, parse_csv_text

ESTAT_TEXT = (
    "国勢調査 小地域集計 27 大阪府\n"
    "男女別人口\n"
    "\n"
    ",KEY_CODE,市区町村コード,町丁字コード,男女,総数,\n"
    "1,272110010,27211,0010,総数,\"1,234\",\n"
    "2,272110020,27211,0020,総数,-,\n"
)


class TestFindHeaderRow:
    """Tests for find_header_row()."""

    def test_all_of_markers(self):
        lines = ["title", "note", "市区町村コード,町丁字コード,総数"]
        assert find_header_row(lines) == 2

    def test_any_of_marker(self):
        lines = ["title", "KEY_CODE,総数"]
        assert find_header_row(lines) == 1

    def test_partial_all_of_is_not_a_header(self):
        lines = ["市区町村コードの説明", "市区町村コード,町丁字コード"]
        assert find_header_row(lines) == 1

    def test_defaults_to_first_line(self):
        assert find_header_row(["a,b", "1,2"]) == 0

    def test_only_scans_leading_lines(self):
        lines = ["x"] * 5 + ["KEY_CODE"]
        assert find_header_row(lines, CsvConfig(header_scan_lines=5)) == 0


class TestParseCsvText:
    """Tests for parse_csv_text()."""

    def test_finds_header_and_drops_junk_columns(self):
        df = parse_csv_text(ESTAT_TEXT)
        assert list(df.columns) == ["KEY_CODE", "市区町村コード", "町丁字コード", "男女", "総数"]
        assert len(df) == 2

    def test_values_stay_strings(self):
        df = parse_csv_text(ESTAT_TEXT)
        assert df.loc[0, "町丁字コード"] == "0010"
        assert df.loc[0, "総数"] == "1,234"
        assert df.loc[1, "総数"] == "-"

    def test_digit_only_column_dropped(self):
        df = parse_csv_text("KEY_CODE,2020,総数\n272110010,x,5\n")
        assert "2020" not in df.columns
        assert list(df.columns) == ["KEY_CODE", "総数"]

    def test_short_rows_padded_with_empty_strings(self):
        df = parse_csv_text("KEY_CODE,男女,総数\n272110010,総数\n")
        assert df.loc[0, "総数"] == ""

    def test_long_rows_kept_with_extra_cells_dropped(self):
        text = "KEY_CODE,総数\n272110010,5\n272110020,6,7,8\n272110030,9\n"
        df = parse_csv_text(text)
        assert df["KEY_CODE"].tolist() == ["272110010", "272110020", "272110030"]
        assert df["総数"].tolist() == ["5", "6", "9"]
        assert list(df.columns) == ["KEY_CODE", "総数"]

    def test_trailing_commas_do_not_shift_columns(self):
        text = (
            "KEY_CODE,市区町村コード,町丁字コード,総数\n"
            "272110010,27211,0010,5,\n"
            "272110020,27211,0020,6,\n"
        )
        df = parse_csv_text(text)
        assert df["KEY_CODE"].tolist() == ["272110010", "272110020"]
        assert df["町丁字コード"].tolist() == ["0010", "0020"]
        assert df["総数"].tolist() == ["5", "6"]

    def test_long_rows_logged_as_warning(self, caplog):
        logger = logging.getLogger("test_csv_long_rows")
        text = "KEY_CODE,総数\n272110010,5,\n272110020,6\n"
        with caplog.at_level(logging.INFO, logger="test_csv_long_rows"):
            parse_csv_text(text, logger=logger)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert warnings[0].event_type == "csv_long_rows"
        assert warnings[0].context["rows"] == 1

    def test_no_warning_for_well_formed_rows(self, caplog):
        logger = logging.getLogger("test_csv_clean_rows")
        with caplog.at_level(logging.INFO, logger="test_csv_clean_rows"):
            parse_csv_text("KEY_CODE,総数\n272110010,5\n", logger=logger)
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_blank_rows_dropped(self):
        df = parse_csv_text("KEY_CODE,総数\n272110010,5\n,\n\n272110020,6\n")
        assert df["KEY_CODE"].tolist() == ["272110010", "272110020"]

    def test_crlf_line_endings(self):
        df = parse_csv_text("KEY_CODE,総数\r\n272110010,5\r\n")
        assert df.loc[0, "総数"] == "5"

    @pytest.mark.parametrize("text", ["", "\n\n", "   "])
    def test_empty_text(self, text):
        assert parse_csv_text(text).empty


class TestLoadCsvBytes:
    """Tests for load_csv_bytes()."""

    @pytest.mark.parametrize("encoding", ["utf-8", "cp932"])
    def test_both_encodings(self, encoding):
        df = load_csv_bytes(ESTAT_TEXT.encode(encoding))
        assert df.loc[0, "男女"] == "総数"
        assert df.loc[1, "KEY_CODE"] == "272110020"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
