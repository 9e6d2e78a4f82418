"""
Town-block polygons, city boundaries, and the rail overlay.

Shapefiles come one per city (e-Stat "r2ka<code>.shp"). They are read with
geopandas, reprojected to EPSG:4326, and concatenated. A city whose file is
missing is skipped; loading fails only when no source can be read.
"""

import logging
from typing import Any, Iterable, Mapping

import geopandas as gpd
import pandas as pd
from shapely.geometry import LineString

from census_atlas.config import Connector, RailLine, ShapeSource
from census_atlas.keys import city_code_of, normalize_key
from census_atlas.logging_utils import log_event, log_step_end, log_step_start
from census_atlas.paths import resolve_location

WGS84 = "EPSG:4326"

# Boundary property names that may carry a city code, in lookup order
BOUNDARY_CODE_FIELDS = (
    "CITY_CODE", "city_code", "code", "CITY", "city", "市区町村コード", "市区町村ｺｰﾄﾞ",
)
BOUNDARY_NAME_FIELDS = ("CITY_NAME", "city_name", "name", "市区町村名")


class ShapeLoadError(Exception):
    """Raised when none of the configured shapefiles could be read."""
    pass


def to_wgs84(gdf: gpd.GeoDataFrame, logger: logging.Logger | None = None) -> gpd.GeoDataFrame:
    """Reproject to EPSG:4326; a frame without a CRS is assumed to be in it."""
    if gdf.crs is None:
        if logger:
            logger.warning("No CRS detected, setting to EPSG:4326")
        return gdf.set_crs(WGS84)
    if gdf.crs.to_epsg() != 4326:
        return gdf.to_crs(WGS84)
    return gdf


def load_shapes(
    sources: Iterable[ShapeSource],
    logger: logging.Logger | None = None,
) -> gpd.GeoDataFrame:
    """
    Read and concatenate the town-block shapefiles.

    Args:
        sources: Shapefile locations (paths relative to the project root,
            absolute paths, or URLs).
        logger: Optional logger; each failed source is logged as a warning.

    Returns:
        GeoDataFrame in EPSG:4326 with a normalized KEY_CODE column.

    Raises:
        ShapeLoadError: If every source fails.
    """
    sources = list(sources)
    if logger:
        log_step_start(logger, "load_shapes", sources=len(sources))

    frames = []
    errors = []
    for source in sources:
        location = resolve_location(source.path)
        try:
            gdf = gpd.read_file(location)
        except Exception as e:
            errors.append(f"{source.path}: {e}")
            if logger:
                logger.warning(f"Failed to read shapefile {source.path}: {e}")
            continue
        frames.append(to_wgs84(gdf, logger))

    if not frames:
        detail = " / ".join(errors) if errors else "no shape sources configured"
        raise ShapeLoadError(f"Failed to load map data: {detail}")

    combined = gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), crs=WGS84)
    if "KEY_CODE" in combined.columns:
        combined["KEY_CODE"] = combined["KEY_CODE"].map(normalize_key)

    if logger:
        log_step_end(logger, "load_shapes", feature_count=len(combined),
                     failed_sources=len(errors))
    return combined


def canonical_shapes(gdf: gpd.GeoDataFrame, logger: logging.Logger | None = None) -> gpd.GeoDataFrame:
    """
    Normalize town-block polygons to the canonical schema.

    Keeps KEY_CODE and the name columns, adds city_code, and merges parts
    that share a KEY_CODE (e-Stat ships water areas as separate parts) into
    one feature. Sorted by KEY_CODE for determinism.
    """
    keep = [c for c in ("KEY_CODE", "CITY_NAME", "S_NAME", "S_NAME_JA") if c in gdf.columns]
    if "KEY_CODE" not in keep:
        raise ValueError(f"Shapes have no KEY_CODE column: {list(gdf.columns)}")

    out = gdf[keep + [gdf.geometry.name]].copy()
    out["KEY_CODE"] = out["KEY_CODE"].map(normalize_key)
    out = out[out["KEY_CODE"] != ""]

    parts = len(out)
    if out["KEY_CODE"].duplicated().any():
        out = out.dissolve(by="KEY_CODE", as_index=False, aggfunc="first")
        if logger:
            logger.info(f"Merged {parts - len(out)} polygon parts sharing a KEY_CODE")

    out["city_code"] = out["KEY_CODE"].map(city_code_of)
    out = out.rename_geometry("geometry") if out.geometry.name != "geometry" else out
    columns = ["KEY_CODE", "city_code"] + [c for c in keep if c != "KEY_CODE"] + ["geometry"]
    return out[columns].sort_values("KEY_CODE").reset_index(drop=True)


# =============================================================================
# Cities
# =============================================================================

def city_codes(gdf: gpd.GeoDataFrame | pd.DataFrame | None) -> list[str]:
    """City codes present in the polygons, in first-seen order."""
    if gdf is None or gdf.empty or "KEY_CODE" not in gdf.columns:
        return []
    codes = gdf["KEY_CODE"].map(lambda k: city_code_of(normalize_key(k)))
    return [c for c in codes.drop_duplicates().tolist() if c]


def city_name_map(gdf: gpd.GeoDataFrame | pd.DataFrame | None) -> dict[str, str]:
    """City code -> CITY_NAME, first non-empty name per code."""
    out: dict[str, str] = {}
    if gdf is None or gdf.empty or "KEY_CODE" not in gdf.columns or "CITY_NAME" not in gdf.columns:
        return out
    for key, name in zip(gdf["KEY_CODE"], gdf["CITY_NAME"]):
        code = city_code_of(normalize_key(key))
        name = normalize_key(name)
        if code and name and code not in out:
            out[code] = name
    return out


def active_city_codes(available: Iterable[str], targets: Iterable[str]) -> list[str]:
    """Configured target cities present in the data, else everything available."""
    available = list(available)
    if not available:
        return []
    present = set(available)
    filtered = [code for code in targets if code in present]
    return filtered or available


def select_cities(previous: Iterable[str], active: Iterable[str]) -> list[str]:
    """Keep a previous city selection where still valid; default to all active."""
    active = list(active)
    previous = list(previous)
    if not previous:
        return active
    present = set(active)
    kept = [code for code in previous if code in present]
    return kept or active


def city_display_names(
    codes: Iterable[str],
    name_map: Mapping[str, str],
    labels: Mapping[str, str],
) -> list[str]:
    return [name_map.get(c) or labels.get(c) or c for c in codes]


def filter_to_cities(gdf: gpd.GeoDataFrame, codes: Iterable[str] | None) -> gpd.GeoDataFrame:
    """Polygons of the given cities; no codes means no filtering."""
    codes = list(codes or [])
    if not codes or gdf.empty:
        return gdf
    wanted = set(codes)
    mask = gdf["KEY_CODE"].map(lambda k: city_code_of(normalize_key(k)) in wanted)
    return gdf[mask]


def city_code_of_boundary(props: Mapping[str, Any], name_to_code: Mapping[str, str]) -> str:
    """
    City code of a city-boundary feature.

    Tries the code properties first, then maps the city name through
    name_to_code. Returns "" when neither is available.
    """
    for field in BOUNDARY_CODE_FIELDS:
        direct = normalize_key(props.get(field))
        if direct:
            return direct[:5]
    for field in BOUNDARY_NAME_FIELDS:
        name = normalize_key(props.get(field))
        if name:
            return name_to_code.get(name, "")
    return ""


def filter_boundaries(
    boundary: gpd.GeoDataFrame | None,
    codes: Iterable[str],
    name_to_code: Mapping[str, str],
) -> gpd.GeoDataFrame | None:
    """Boundary features of the selected cities."""
    codes = set(codes)
    if boundary is None or boundary.empty or not codes:
        return None
    attrs = boundary.drop(columns=boundary.geometry.name)
    boundary_codes = [city_code_of_boundary(row, name_to_code) for row in attrs.to_dict("records")]
    mask = pd.Series([c in codes for c in boundary_codes], index=boundary.index)
    return boundary[mask]


def city_centroids(
    gdf: gpd.GeoDataFrame,
    projected_crs: str = "EPSG:6674",
) -> dict[str, tuple[float, float]]:
    """
    City code -> (lat, lon) of the dissolved city polygon's centroid.

    The centroid is computed in projected_crs (JGD2011 zone VI by default,
    which covers Osaka) and converted back to lon/lat.
    """
    if gdf is None or gdf.empty or "KEY_CODE" not in gdf.columns:
        return {}
    work = gdf[["KEY_CODE", gdf.geometry.name]].copy()
    work["city_code"] = work["KEY_CODE"].map(lambda k: city_code_of(normalize_key(k)))
    work = work[work["city_code"] != ""]
    if work.empty:
        return {}

    dissolved = work.dissolve(by="city_code")
    if dissolved.crs is None:
        dissolved = dissolved.set_crs(WGS84)
    centroids = dissolved.to_crs(projected_crs).geometry.centroid.to_crs(WGS84)
    return {code: (pt.y, pt.x) for code, pt in centroids.items()}


# =============================================================================
# Rail overlay and bounds
# =============================================================================

def build_rail_lines(
    lines: Iterable[RailLine],
    connectors: Iterable[Connector] = (),
) -> gpd.GeoDataFrame:
    """Rail lines (through their stations in order) and connectors as LineStrings."""
    records = []
    for line in lines:
        coords = [(s.lon, s.lat) for s in line.stations]
        if len(coords) < 2:
            continue
        records.append({"id": line.id, "color": line.color, "geometry": LineString(coords)})
    for c in connectors:
        if len(c.coordinates) < 2:
            continue
        records.append({"id": c.id, "color": c.color, "geometry": LineString(c.coordinates)})

    if not records:
        return gpd.GeoDataFrame({"id": [], "color": []}, geometry=[], crs=WGS84)
    return gpd.GeoDataFrame(records, geometry="geometry", crs=WGS84)


def region_bounds(gdf: gpd.GeoDataFrame) -> tuple[float, float, float, float] | None:
    """(min_lon, min_lat, max_lon, max_lat) of the polygons, or None when empty."""
    if gdf is None or gdf.empty:
        return None
    minx, miny, maxx, maxy = (float(v) for v in gdf.total_bounds)
    return minx, miny, maxx, maxy


def load_boundary(location: str | None, logger: logging.Logger | None = None) -> gpd.GeoDataFrame | None:
    """City boundary GeoJSON in EPSG:4326, or None when not configured."""
    if not location:
        return None
    gdf = gpd.read_file(resolve_location(location))
    gdf = to_wgs84(gdf, logger)
    if logger:
        log_event(logger, logging.INFO, f"Loaded {len(gdf)} city boundary features",
                  "boundary_loaded", feature_count=len(gdf))
    return gdf
