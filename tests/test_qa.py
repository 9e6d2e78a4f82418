"""
Tests for census_atlas.qa module.
"""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import Polygon, box

from census_atlas.config import Region
from census_atlas.features import JoinReport
from census_atlas.qa import (
    QAResult,
    check_bounds,
    check_crs,
    check_join_coverage,
    check_no_empty_geoms,
    check_points_in_region,
    check_unique_keys,
    run_shape_qa_checks,
)


class TestCheckCrs:
    """Tests for check_crs()."""

    def test_wgs84_passes(self, sample_shapes):
        assert check_crs(sample_shapes).passed

    def test_other_crs_fails(self, sample_shapes):
        result = check_crs(sample_shapes.to_crs("EPSG:6674"))
        assert not result.passed
        assert "mismatch" in result.message

    def test_no_crs_fails(self):
        gdf = gpd.GeoDataFrame({"a": [1]}, geometry=[box(0, 0, 1, 1)])
        assert not check_crs(gdf).passed

    def test_plain_dataframe_fails(self):
        assert not check_crs(pd.DataFrame({"a": [1]})).passed

    def test_any_crs_when_not_specified(self, sample_shapes):
        assert check_crs(sample_shapes.to_crs("EPSG:6674"), expected_crs=None).passed


class TestCheckBounds:
    """Tests for check_bounds() and check_points_in_region()."""

    def test_inside_default_region(self, sample_shapes):
        result = check_bounds(sample_shapes)
        assert result.passed
        assert result.check_name == "bounds_region"

    def test_outside_region(self, sample_shapes):
        tokyo = Region(min_lon=139.5, min_lat=35.5, max_lon=139.9, max_lat=35.8)
        assert not check_bounds(sample_shapes, tokyo).passed

    def test_projected_input_is_reprojected(self, sample_shapes):
        assert check_bounds(sample_shapes.to_crs("EPSG:6674")).passed

    def test_points_in_region(self):
        points = pd.DataFrame({"lat": [34.81, 35.70], "lon": [135.56, 139.70]})
        result = check_points_in_region(points)
        assert not result.passed
        assert result.details["outside"] == 1

    def test_no_points(self):
        assert check_points_in_region(pd.DataFrame({"lat": [], "lon": []})).passed


class TestCheckUniqueKeys:
    """Tests for check_unique_keys()."""

    def test_unique(self, sample_shapes):
        assert check_unique_keys(sample_shapes).passed

    def test_duplicates(self):
        result = check_unique_keys(pd.DataFrame({"KEY_CODE": ["1", "1", "2"]}))
        assert not result.passed
        assert result.details["sample_duplicates"] == {"1": 2}

    def test_missing_column(self):
        assert not check_unique_keys(pd.DataFrame({"x": [1]})).passed


class TestCheckNoEmptyGeoms:
    """Tests for check_no_empty_geoms()."""

    def test_valid(self, sample_shapes):
        assert check_no_empty_geoms(sample_shapes).passed

    def test_empty_geometry(self):
        gdf = gpd.GeoDataFrame({"a": [1, 2]}, geometry=[box(0, 0, 1, 1), Polygon()], crs="EPSG:4326")
        result = check_no_empty_geoms(gdf)
        assert not result.passed
        assert result.details["empty"] == 1


class TestCheckJoinCoverage:
    """Tests for check_join_coverage()."""

    def test_good_coverage(self):
        report = JoinReport(rows_keyed=10, rows_joined=9, join_misses=1)
        result = check_join_coverage(report, "population")
        assert result.passed
        assert result.check_name == "join_coverage_population"

    def test_poor_coverage(self):
        report = JoinReport(rows_keyed=10, rows_joined=2, join_misses=8)
        result = check_join_coverage(report, "household")
        assert not result.passed
        assert "20.0%" in result.message

    def test_no_keyed_rows_passes(self):
        assert check_join_coverage(JoinReport(), "business").passed

    def test_custom_threshold(self):
        report = JoinReport(rows_keyed=10, rows_joined=9, join_misses=1)
        assert not check_join_coverage(report, "population", min_join_rate=0.95).passed


class TestRunShapeQaChecks:
    """Tests for run_shape_qa_checks()."""

    def test_all_pass(self, sample_shapes):
        results = run_shape_qa_checks(sample_shapes)
        assert len(results) == 4
        assert all(results)

    def test_failure_raises(self, sample_shapes):
        dup = pd.concat([sample_shapes, sample_shapes.iloc[[0]]], ignore_index=True)
        dup = gpd.GeoDataFrame(dup, crs="EPSG:4326")
        with pytest.raises(ValueError, match="unique_keys"):
            run_shape_qa_checks(dup)

    def test_failure_reported_without_raising(self, sample_shapes):
        dup = gpd.GeoDataFrame(pd.concat([sample_shapes, sample_shapes.iloc[[0]]], ignore_index=True),
                               crs="EPSG:4326")
        results = run_shape_qa_checks(dup, fail_on_error=False)
        assert [r.check_name for r in results if not r] == ["unique_keys"]

    def test_result_truthiness(self):
        assert QAResult("x", True, "ok")
        assert not QAResult("x", False, "bad")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
