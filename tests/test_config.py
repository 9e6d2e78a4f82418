"""
Tests for census_atlas.config module.
"""

import pytest

from census_atlas.config import (
    AtlasConfig,
    ColumnConfig,
    ConfigError,
    CsvConfig,
    EncodingConfig,
    load_config,
    parse_config,
    parse_stations,
)

MINIMAL = {
    "cities": {"targets": ["27211"], "labels": {"27211": "茨木市"}},
    "region": {"min_lon": 135.5, "min_lat": 34.8, "max_lon": 135.6, "max_lat": 34.9},
}


class TestLoadConfig:
    """Tests for the project's own config files."""

    def test_loads_project_config(self):
        config = load_config()
        assert isinstance(config, AtlasConfig)
        assert config.target_cities == ("27211", "27207", "27205", "27203")
        assert config.city_labels["27211"] == "茨木市"
        assert config.region.projected_crs == "EPSG:6674"
        assert config.grid_cell_size_m == 250.0
        assert config.walking_speed_m_per_min == 80.0

    def test_stations_loaded(self):
        config = load_config()
        names = {s.name for s in config.stations}
        assert {"茨木", "茨木市", "南茨木"} <= names
        assert all(s.color.startswith("#") for s in config.stations)

    def test_encoding_keywords_from_yaml(self, atlas_config):
        assert ("市区町村コード", 6.0) in atlas_config.encoding.keywords
        assert atlas_config.encoding.replacement_penalty_divisor == 2000.0

    def test_household_hierarchy(self, atlas_config):
        keys = atlas_config.household_hierarchy.keys()
        assert keys[0] == "総数"
        assert "うち夫婦のみの世帯" in keys

    def test_missing_stations_file(self, tmp_path):
        from census_atlas.paths import paths
        config = load_config(paths.params_yml, tmp_path / "none.yml")
        assert config.stations == []
        assert config.rail_lines == ()


class TestParseConfig:
    """Tests for parse_config()."""

    def test_minimal_config_uses_defaults(self):
        config = parse_config(MINIMAL)
        assert config.columns == ColumnConfig()
        assert config.encoding == EncodingConfig()
        assert config.csv == CsvConfig()
        assert config.operator_prefixes == ()
        assert config.sources.shapes == ()
        assert config.household_hierarchy is None

    def test_city_name_to_code(self):
        assert parse_config(MINIMAL).city_name_to_code == {"茨木市": "27211"}

    def test_region_bounds(self):
        assert parse_config(MINIMAL).region.as_bounds() == (135.5, 34.8, 135.6, 34.9)

    @pytest.mark.parametrize("section", ["cities", "region"])
    def test_missing_required_section(self, section):
        params = {k: v for k, v in MINIMAL.items() if k != section}
        with pytest.raises(ConfigError, match=section):
            parse_config(params)

    def test_missing_region_value(self):
        params = dict(MINIMAL, region={"min_lon": 135.5})
        with pytest.raises(ConfigError, match="min_lat"):
            parse_config(params)

    @pytest.mark.parametrize("crs", ["EPSG:4326", "not-a-crs"])
    def test_projected_crs_validated(self, crs):
        params = dict(MINIMAL, region=dict(MINIMAL["region"], projected_crs=crs))
        with pytest.raises(ConfigError, match="projected_crs"):
            parse_config(params)

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            parse_config(["not", "a", "mapping"])

    def test_column_aliases_accept_strings(self):
        params = dict(MINIMAL, columns={"city_code": "CITY", "poi": {"name": "name"}})
        columns = parse_config(params).columns
        assert columns.city_code == ("CITY",)
        assert columns.area_code == ColumnConfig().area_code
        assert columns.poi.name == "name"
        assert columns.poi.address == "住所"

    def test_header_markers(self):
        params = dict(MINIMAL, csv={"header_scan_lines": 10, "header_markers": {"any_of": ["KEY"]}})
        csv = parse_config(params).csv
        assert csv.header_scan_lines == 10
        assert csv.header_any_of == ("KEY",)
        assert csv.header_all_of == CsvConfig().header_all_of

    def test_raw_kept(self):
        assert parse_config(MINIMAL).raw["params"] is MINIMAL


class TestParseStations:
    """Tests for parse_stations()."""

    def test_colors_and_lines(self):
        data = {
            "colors": {"JR": "#0075BF"},
            "lines": [{"id": "JR京都線", "color": "JR", "stations": [
                {"name": "茨木", "lat": 34.81, "lon": 135.56},
                {"id": "x", "name": "千里丘", "lat": "34.79", "lon": "135.55"},
            ]}],
            "connectors": [{"id": "c", "color": "#123456", "coordinates": [[135.5, 34.8], [135.6, 34.9]]}],
        }
        lines, connectors = parse_stations(data)
        assert lines[0].color == "#0075BF"
        assert lines[0].stations[0].id == "JR京都線_茨木"
        assert lines[0].stations[1].lat == 34.79
        assert connectors[0].color == "#123456"
        assert connectors[0].coordinates == ((135.5, 34.8), (135.6, 34.9))

    def test_empty(self):
        assert parse_stations(None) == ((), ())

    def test_line_without_id(self):
        with pytest.raises(ConfigError, match="id"):
            parse_stations({"lines": [{"stations": []}]})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
