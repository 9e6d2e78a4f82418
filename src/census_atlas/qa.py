"""
Quality assurance checks for shapes, values, and placed points.

This module provides QA checks for:
- CRS validation
- Geographic bounds (configured study region)
- Unique area keys
- Empty geometries
- Join coverage of a census table against the polygons
"""

import logging
from dataclasses import dataclass
from typing import Any

import pandas as pd

from census_atlas.config import Region
from census_atlas.logging_utils import log_qa_check

EXPECTED_CRS_WGS84 = "EPSG:4326"

# Northern Osaka: Toyonaka, Suita, Takatsuki, Ibaraki
DEFAULT_REGION = Region(min_lon=135.35, min_lat=34.70, max_lon=135.75, max_lat=35.05)

# A join rate below this fails the coverage check
DEFAULT_MIN_JOIN_RATE = 0.5


@dataclass
class QAResult:
    """Result of a QA check."""
    check_name: str
    passed: bool
    message: str
    details: dict[str, Any] | None = None

    def __bool__(self) -> bool:
        return self.passed


def _report(result: QAResult, logger: logging.Logger | None) -> QAResult:
    if logger:
        log_qa_check(logger, result.check_name, result.passed, result.message, **(result.details or {}))
    return result


# =============================================================================
# CRS checks
# =============================================================================

def check_crs(
    gdf: pd.DataFrame,
    expected_crs: str | None = EXPECTED_CRS_WGS84,
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that a GeoDataFrame has a CRS, and the expected one if given.

    Args:
        gdf: GeoDataFrame to check.
        expected_crs: Expected CRS string (e.g., "EPSG:4326"). If None, just checks CRS exists.
        logger: Optional logger for structured logging.
    """
    import geopandas as gpd

    check_name = "crs_valid"

    if not isinstance(gdf, gpd.GeoDataFrame):
        return _report(QAResult(check_name, False, "Input is not a GeoDataFrame",
                                {"type": type(gdf).__name__}), logger)
    if gdf.crs is None:
        return _report(QAResult(check_name, False, "GeoDataFrame has no CRS defined",
                                {"crs": None}), logger)
    if expected_crs is None:
        return _report(QAResult(check_name, True, f"CRS is defined: {gdf.crs}",
                                {"crs": str(gdf.crs)}), logger)

    details = {"crs": str(gdf.crs), "expected": expected_crs}
    try:
        matches = gdf.crs.to_epsg() == int(expected_crs.split(":")[1])
    except (ValueError, IndexError, AttributeError):
        matches = str(gdf.crs) == expected_crs

    if matches:
        return _report(QAResult(check_name, True, f"CRS is {expected_crs}", details), logger)
    return _report(QAResult(check_name, False, f"CRS mismatch: got {gdf.crs}, expected {expected_crs}",
                            details), logger)


# =============================================================================
# Bounds checks
# =============================================================================

def check_bounds(
    gdf: pd.DataFrame,
    region: Region | None = None,
    tolerance: float = 0.01,
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that geometries fall within the study region.

    Args:
        gdf: GeoDataFrame to check; reprojected to WGS84 if needed.
        region: Bounding region (defaults to northern Osaka).
        tolerance: Tolerance for bounds check (degrees).
        logger: Optional logger.
    """
    import geopandas as gpd

    check_name = "bounds_region"
    region = region or DEFAULT_REGION

    if not isinstance(gdf, gpd.GeoDataFrame):
        return _report(QAResult(check_name, False, "Input is not a GeoDataFrame"), logger)
    if gdf.crs is None:
        return _report(QAResult(check_name, False, "Cannot check bounds: no CRS defined"), logger)

    gdf_wgs84 = gdf.to_crs(EXPECTED_CRS_WGS84) if gdf.crs.to_epsg() != 4326 else gdf
    min_lon, min_lat, max_lon, max_lat = (float(v) for v in gdf_wgs84.total_bounds)

    within = (
        min_lon >= region.min_lon - tolerance and
        max_lon <= region.max_lon + tolerance and
        min_lat >= region.min_lat - tolerance and
        max_lat <= region.max_lat + tolerance
    )
    details = {
        "data_bounds": {"min_lon": min_lon, "min_lat": min_lat, "max_lon": max_lon, "max_lat": max_lat},
        "expected_bounds": region.as_dict(),
    }
    message = "All geometries within region bounds" if within else "Some geometries outside region bounds"
    return _report(QAResult(check_name, within, message, details), logger)


def check_points_in_region(
    points: pd.DataFrame,
    region: Region | None = None,
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check that placed points (lat/lon columns) fall inside the region."""
    check_name = "points_in_region"
    region = region or DEFAULT_REGION

    if points.empty:
        return _report(QAResult(check_name, True, "No points to check", {"total": 0}), logger)

    inside = (
        points["lon"].between(region.min_lon, region.max_lon)
        & points["lat"].between(region.min_lat, region.max_lat)
    )
    outside = int((~inside).sum())
    details = {"total": len(points), "outside": outside}
    if outside:
        return _report(QAResult(check_name, False, f"{outside} points outside region bounds", details), logger)
    return _report(QAResult(check_name, True, f"All {len(points)} points within region bounds", details),
                   logger)


# =============================================================================
# Key and geometry checks
# =============================================================================

def check_unique_keys(
    df: pd.DataFrame,
    key_column: str = "KEY_CODE",
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check that key_column has unique values."""
    check_name = "unique_keys"

    if key_column not in df.columns:
        return _report(QAResult(check_name, False, f"Key column '{key_column}' not found",
                                {"columns": [str(c) for c in df.columns]}), logger)

    total = len(df)
    unique = int(df[key_column].nunique())
    if total == unique:
        return _report(QAResult(check_name, True, f"All {total} keys are unique",
                                {"total": total, "unique": unique, "column": key_column}), logger)

    counts = df[key_column].value_counts()
    sample = {str(k): int(v) for k, v in counts[counts > 1].head(5).items()}
    return _report(QAResult(
        check_name, False, f"Found {total - unique} duplicate keys",
        {"total": total, "unique": unique, "duplicates": total - unique,
         "sample_duplicates": sample, "column": key_column},
    ), logger)


def check_no_empty_geoms(
    gdf: pd.DataFrame,
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check that there are no empty or null geometries."""
    import geopandas as gpd

    check_name = "no_empty_geoms"

    if not isinstance(gdf, gpd.GeoDataFrame):
        return _report(QAResult(check_name, False, "Input is not a GeoDataFrame"), logger)

    empty = int(gdf.geometry.is_empty.sum())
    null = int(gdf.geometry.isna().sum())
    details = {"total": len(gdf), "empty": empty, "null": null}
    if empty == 0 and null == 0:
        return _report(QAResult(check_name, True, f"All {len(gdf)} geometries are non-empty", details), logger)
    return _report(QAResult(check_name, False, f"Found {empty} empty and {null} null geometries", details),
                   logger)


# =============================================================================
# Join coverage
# =============================================================================

def check_join_coverage(
    report: Any,
    dataset: str,
    min_join_rate: float = DEFAULT_MIN_JOIN_RATE,
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that enough keyed rows of a table matched a polygon.

    Args:
        report: JoinReport of the table.
        dataset: Dataset name used in the message.
        min_join_rate: Lowest acceptable rows_joined / rows_keyed.
    """
    check_name = f"join_coverage_{dataset}"
    rate = report.join_rate
    details = {"join_rate": rate, "rows_keyed": report.rows_keyed,
               "join_misses": report.join_misses, "min_join_rate": min_join_rate}

    if rate is None:
        return _report(QAResult(check_name, True, f"No keyed rows in {dataset}", details), logger)
    if rate >= min_join_rate:
        return _report(QAResult(check_name, True, f"{rate:.1%} of {dataset} rows joined", details), logger)
    return _report(QAResult(check_name, False,
                            f"Only {rate:.1%} of {dataset} rows joined (minimum {min_join_rate:.0%})",
                            details), logger)


# =============================================================================
# Aggregate QA runner
# =============================================================================

def run_shape_qa_checks(
    gdf: pd.DataFrame,
    region: Region | None = None,
    key_column: str = "KEY_CODE",
    logger: logging.Logger | None = None,
    fail_on_error: bool = True,
) -> list[QAResult]:
    """
    Run the standard checks on canonical shapes.

    Raises:
        ValueError: If fail_on_error and any check fails.
    """
    results = [
        check_crs(gdf, EXPECTED_CRS_WGS84, logger),
        check_bounds(gdf, region, logger=logger),
        check_unique_keys(gdf, key_column, logger),
        check_no_empty_geoms(gdf, logger),
    ]

    if fail_on_error:
        failed = [r for r in results if not r.passed]
        if failed:
            messages = [f"{r.check_name}: {r.message}" for r in failed]
            raise ValueError("QA checks failed:\n" + "\n".join(messages))

    return results
