"""
Immutable snapshot + selection -> view model.

A Snapshot holds everything that was loaded (polygons, tables, stations,
city centroids). A Selection is what the user picked (mode, filters,
cities, scale scope). build_view_model() derives every renderer input from
the two without mutating either, so a new selection never needs a reload.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import geopandas as gpd
import pandas as pd

from census_atlas.acquire import LoadResult, TABLE_DATASETS
from census_atlas.config import AtlasConfig
from census_atlas.features import (
    Filters,
    FeatureValues,
    JoinReport,
    KeyContext,
    Mode,
    ValueStats,
    build_feature_values,
    default_filters,
    value_stats,
)
from census_atlas.grid import GridCell, bin_points
from census_atlas.keys import city_code_of, normalize_key
from census_atlas.placement import PlacedPoint, PlacementSummary, build_station_index, place_all
from census_atlas.shapes import (
    active_city_codes,
    city_centroids,
    city_codes,
    city_display_names,
    city_name_map,
    filter_boundaries,
    filter_to_cities,
    select_cities,
)

SCALE_SELECTED = "selected"
SCALE_ALL = "all"


@dataclass(frozen=True)
class Snapshot:
    shapes: gpd.GeoDataFrame
    tables: Mapping[str, pd.DataFrame | None]
    config: AtlasConfig
    boundary: gpd.GeoDataFrame | None = None
    station_index: Mapping[str, tuple[float, float]] = field(default_factory=dict)
    city_centroids: Mapping[str, tuple[float, float]] = field(default_factory=dict)

    @classmethod
    def from_load_result(cls, result: LoadResult, config: AtlasConfig) -> "Snapshot":
        shapes = result.shapes
        if shapes is None:
            shapes = gpd.GeoDataFrame({"KEY_CODE": []}, geometry=[], crs="EPSG:4326")
        return cls(
            shapes=shapes,
            tables={name: result.tables.get(name) for name in TABLE_DATASETS},
            config=config,
            boundary=result.boundary,
            station_index=build_station_index(config.stations),
            city_centroids=city_centroids(shapes, config.region.projected_crs),
        )

    @property
    def active_cities(self) -> list[str]:
        return active_city_codes(city_codes(self.shapes), self.config.target_cities)


@dataclass(frozen=True)
class Selection:
    mode: Mode | str = Mode.POPULATION
    filters: Filters = field(default_factory=Filters)
    cities: tuple[str, ...] = ()
    scale_scope: str = SCALE_SELECTED

    @classmethod
    def default(cls, snapshot: Snapshot) -> "Selection":
        config = snapshot.config
        mode = config.mode_defaults.get("default", Mode.POPULATION.value)
        return cls(mode=Mode(mode), filters=default_filters(snapshot.tables, config))


@dataclass(frozen=True)
class ViewModel:
    mode: Mode
    values: dict[str, float | None]
    city_ratio: float | None
    stats: ValueStats
    report: JoinReport
    active_cities: list[str]
    selected_cities: list[str]
    city_names: list[str]
    display_shapes: gpd.GeoDataFrame
    boundaries: gpd.GeoDataFrame | None
    points: list[PlacedPoint]
    placement: PlacementSummary
    grid: list[GridCell]


def _values_for(
    snapshot: Snapshot,
    shapes: gpd.GeoDataFrame,
    cities: list[str],
    mode: Mode,
    filters: Filters,
    logger: logging.Logger | None,
) -> FeatureValues:
    if shapes.empty:
        return FeatureValues(mode=mode, values={})
    ctx = KeyContext.from_shapes(shapes, cities, snapshot.config.columns)
    return build_feature_values(mode, snapshot.tables, ctx, filters, logger=logger)


def build_view_model(
    snapshot: Snapshot,
    selection: Selection,
    logger: logging.Logger | None = None,
) -> ViewModel:
    """
    Derive the values, stats, points, and grid for one selection.

    Values are joined against the polygons of the selected cities. With
    scale_scope "all", the colour-scale domain is computed over every active
    city instead, so colours stay comparable across selections.

    Raises:
        ValueError: On an unknown mode or scale scope.
    """
    config = snapshot.config
    mode = Mode(selection.mode)
    if selection.scale_scope not in (SCALE_SELECTED, SCALE_ALL):
        raise ValueError(f"Unknown scale scope: {selection.scale_scope}")

    active = snapshot.active_cities
    selected = select_cities(selection.cities, active)
    display = filter_to_cities(snapshot.shapes, selected)

    result = _values_for(snapshot, display, selected, mode, selection.filters, logger)

    if selection.scale_scope == SCALE_ALL:
        scope_shapes = filter_to_cities(snapshot.shapes, active)
        scope = _values_for(snapshot, scope_shapes, active, mode, selection.filters, None)
        stats = value_stats(scope.values, mode, scope_shapes["KEY_CODE"] if not scope_shapes.empty else [])
    else:
        stats = value_stats(result.values, mode, display["KEY_CODE"] if not display.empty else [])

    points, placement = place_all(
        snapshot.tables.get("restaurants"),
        snapshot.station_index,
        snapshot.city_centroids,
        city_labels=config.city_labels,
        columns=config.columns.poi,
        walking_speed_m_per_min=config.walking_speed_m_per_min,
        operator_prefixes=config.operator_prefixes,
        logger=logger,
    )
    grid = bin_points(points, config.region.as_bounds(), config.grid_cell_size_m) if points else []

    return ViewModel(
        mode=mode,
        values=result.values,
        city_ratio=result.city_ratio,
        stats=stats,
        report=result.report,
        active_cities=active,
        selected_cities=selected,
        city_names=city_display_names(selected, city_name_map(snapshot.shapes), config.city_labels),
        display_shapes=display,
        boundaries=filter_boundaries(snapshot.boundary, selected, config.city_name_to_code),
        points=points,
        placement=placement,
        grid=grid,
    )


# =============================================================================
# Output shaping
# =============================================================================

def feature_collection(
    gdf: gpd.GeoDataFrame,
    values: Mapping[str, float | None],
    value_column: str = "value",
) -> gpd.GeoDataFrame:
    """Copy of the polygons with the value of each area attached (null for no data)."""
    out = gdf.copy()
    keys = out["KEY_CODE"].map(normalize_key)
    out["city_code"] = keys.map(city_code_of)
    out[value_column] = pd.Series([values.get(k) for k in keys], index=out.index, dtype="float64")
    name_cols = [c for c in ("S_NAME_JA", "S_NAME") if c in out.columns]
    if name_cols:
        names = out[name_cols].apply(
            lambda row: next((normalize_key(v) for v in row if normalize_key(v)), ""), axis=1
        )
        out["area_name"] = names.replace("", "(名称不明)")
    return out


def values_frame(
    values: Mapping[str, float | None],
    mode: Mode | str,
    polygon_keys: Iterable[str] | None = None,
) -> pd.DataFrame:
    """Value map as a table, one row per area key, sorted by key."""
    mode = Mode(mode)
    known = set(polygon_keys) if polygon_keys is not None else None
    keys = sorted(values)
    return pd.DataFrame({
        "area_key": pd.Series(keys, dtype="object"),
        "city_code": pd.Series([city_code_of(k) for k in keys], dtype="object"),
        "mode": pd.Series([mode.value] * len(keys), dtype="object"),
        "value": pd.Series([values[k] for k in keys], dtype="float64"),
        "in_polygons": pd.Series([known is None or k in known for k in keys], dtype="bool"),
    })


def view_summary(view: ViewModel) -> dict[str, Any]:
    """JSON-ready summary of a view model (no geometries)."""
    return {
        "mode": view.mode.value,
        "city_ratio": view.city_ratio,
        "stats": {"min": view.stats.min, "max": view.stats.max, "mid": view.stats.mid},
        "active_cities": view.active_cities,
        "selected_cities": view.selected_cities,
        "city_names": view.city_names,
        "value_count": sum(1 for v in view.values.values() if v is not None),
        "join_report": view.report.as_dict(),
        "placement": view.placement.as_dict(),
        "grid_cells": len(view.grid),
        "grid_points": sum(c.count for c in view.grid),
    }
