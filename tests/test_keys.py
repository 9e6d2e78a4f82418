"""
Tests for census_atlas.keys module.

Tests cover:
- Identifier normalization
- Lenient numeric parsing of census cells
- Polygon key widths and key sets
- Composite key resolution across zero-padding differences
"""

import math

import pytest

from census_atlas.keys import (
    EXACT,
    FALLBACK,
    NONE,
    REPADDED,
    UNVERIFIED,
    ResolvedKey,
    area_code_widths,
    city_code_of,
    city_codes_from_shapes,
    normalize_key,
    polygon_key_set,
    resolve_key,
    resolve_key_detailed,
    safe_to_number,
)


class TestNormalizeKey:
    """Tests for normalize_key()."""

    def test_strips_whitespace_and_trailing_decimal(self):
        assert normalize_key(" 272110010.0 ") == "272110010"

    def test_none_and_nan_become_empty(self):
        assert normalize_key(None) == ""
        assert normalize_key(float("nan")) == ""

    def test_numbers_are_stringified(self):
        assert normalize_key(10) == "10"
        assert normalize_key(10.0) == "10"

    def test_keeps_other_decimals(self):
        assert normalize_key("10.5") == "10.5"

    @pytest.mark.parametrize("raw", ["10.0.0", " 0010 ", "27211.0 ", "abc", ""])
    def test_idempotent(self, raw):
        once = normalize_key(raw)
        assert normalize_key(once) == once


class TestSafeToNumber:
    """Tests for safe_to_number()."""

    def test_parses_thousands_separators(self):
        assert safe_to_number("1,234") == 1234.0

    def test_parses_plain_numbers(self):
        assert safe_to_number(" 42 ") == 42.0
        assert safe_to_number(7) == 7.0
        assert safe_to_number(2.5) == 2.5

    @pytest.mark.parametrize("value", ["-", "–", "―", "", "   ", None, "abc", "inf", float("nan")])
    def test_no_data_is_none(self, value):
        assert safe_to_number(value) is None

    def test_never_returns_non_finite(self):
        assert safe_to_number(float("inf")) is None


class TestPolygonHelpers:
    """Tests for area_code_widths(), polygon_key_set(), city_codes_from_shapes()."""

    def test_widths_from_dataframe(self, sample_shapes):
        assert area_code_widths(sample_shapes) == [4, 6]

    def test_widths_from_iterable(self):
        assert area_code_widths(["272110010", "27211", "2721100010.0"]) == [4, 5]

    def test_widths_without_key_column(self, sample_shapes):
        assert area_code_widths(sample_shapes.drop(columns=["KEY_CODE"])) == []

    def test_key_set(self, sample_shapes):
        keys = polygon_key_set(sample_shapes)
        assert "272110010" in keys
        assert len(keys) == 5

    def test_empty_key_set_is_none(self):
        assert polygon_key_set([]) is None
        assert polygon_key_set(["", None]) is None

    def test_city_codes_in_first_seen_order(self, sample_shapes):
        assert city_codes_from_shapes(sample_shapes) == ["27211", "27207"]

    def test_city_code_of_short_key(self):
        assert city_code_of("2721") == ""
        assert city_code_of("272110010") == "27211"


class TestResolveKey:
    """Tests for resolve_key() and resolve_key_detailed()."""

    @pytest.fixture
    def keys(self):
        return frozenset({"272110010", "272110020", "27207000100"})

    def test_city_and_area_repadded(self, keys):
        row = {"市区町村コード": "27211", "町丁字コード": "10"}
        result = resolve_key_detailed(row, [4, 6], keys)
        assert result == ResolvedKey("272110010", REPADDED)

    def test_city_and_area_exact(self, keys):
        row = {"市区町村コード": "27211", "町丁字コード": "0010"}
        assert resolve_key_detailed(row, [4, 6], keys) == ResolvedKey("272110010", EXACT)

    def test_over_padded_area_is_trimmed(self, keys):
        row = {"市区町村コード": "27211", "町丁字コード": "000010"}
        assert resolve_key(row, [4], keys) == "272110010"

    @pytest.mark.parametrize("area", ["0", "00", "00000", "0000000"])
    def test_all_zero_area_matches_at_any_padding(self, area):
        row = {"市区町村コード": "27211", "町丁字コード": area}
        assert resolve_key(row, [4], {"272110000"}) == "272110000"

    def test_all_zero_direct_key_is_trimmed(self):
        row = {"KEY_CODE": "2721100000"}
        assert resolve_key_detailed(row, [4], {"272110000"}) == ResolvedKey("272110000", REPADDED)

    def test_tries_every_width(self, keys):
        row = {"市区町村コード": "27207", "町丁字コード": "100"}
        assert resolve_key(row, [4, 6], keys) == "27207000100"

    def test_numeric_cells_from_spreadsheets(self, keys):
        row = {"市区町村コード": 27211.0, "町丁字コード": 20.0}
        assert resolve_key(row, [4], keys) == "272110020"

    def test_short_city_code_is_padded(self):
        row = {"市区町村コード": "1101", "町丁字コード": "0010"}
        assert resolve_key(row, [4], frozenset({"011010010"})) == "011010010"

    def test_unmatched_is_fallback(self, keys):
        row = {"市区町村コード": "27211", "町丁字コード": "990"}
        result = resolve_key_detailed(row, [4], keys)
        assert result.confidence == FALLBACK
        assert result.key == "27211990"

    def test_no_polygon_keys_is_unverified(self):
        row = {"市区町村コード": "27211", "町丁字コード": "10"}
        assert resolve_key_detailed(row, [4], None) == ResolvedKey("2721110", UNVERIFIED)

    def test_no_widths_is_unverified(self, keys):
        row = {"市区町村コード": "27211", "町丁字コード": "10"}
        assert resolve_key_detailed(row, [], keys) == ResolvedKey("2721110", UNVERIFIED)

    @pytest.mark.parametrize("row", [
        {"市区町村コード": "27211"},
        {"町丁字コード": "10"},
        {"市区町村コード": "27211", "町丁字コード": "-"},
        {"市区町村コード": "27211", "町丁字コード": "abc"},
        {"市区町村コード": "", "町丁字コード": "10"},
        {},
    ])
    def test_no_identifier(self, keys, row):
        result = resolve_key_detailed(row, [4], keys)
        assert result == ResolvedKey("", NONE)
        assert not result

    def test_direct_key_exact(self, keys):
        assert resolve_key_detailed({"KEY_CODE": "272110010"}, [4], keys) == ResolvedKey("272110010", EXACT)

    def test_direct_key_takes_precedence(self, keys):
        row = {"KEY_CODE": "272110020", "市区町村コード": "27211", "町丁字コード": "10"}
        assert resolve_key(row, [4], keys) == "272110020"

    def test_direct_key_repadded(self, keys):
        result = resolve_key_detailed({"KEY_CODE": "27211010"}, [4], keys)
        assert result == ResolvedKey("272110010", REPADDED)

    def test_direct_key_known_width_unmatched(self, keys):
        result = resolve_key_detailed({"KEY_CODE": "272119999"}, [4], keys)
        assert result == ResolvedKey("272119999", FALLBACK)

    def test_direct_key_without_polygons(self):
        assert resolve_key_detailed({"KEY_CODE": "272110010.0"}, [4], None) == ResolvedKey("272110010", UNVERIFIED)

    def test_nan_direct_key_falls_through_to_city_and_area(self, keys):
        row = {"KEY_CODE": math.nan, "市区町村コード": "27211", "町丁字コード": "10"}
        assert resolve_key(row, [4], keys) == "272110010"

    def test_alias_columns(self, keys):
        row = {"CITY": "27211", "S_AREA": "20"}
        assert resolve_key(row, [4], keys) == "272110020"

    def test_works_with_pandas_rows(self, keys, population_df):
        row = population_df.iloc[0]
        assert resolve_key(row, [4], keys) == "272110010"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
