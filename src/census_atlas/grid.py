"""
Fixed-size heatmap grid over a lon/lat rectangle.

Cells are square in metres at the centre latitude of the rectangle:
lat step = cell / 111,195 and lon step = cell / (111,195 * cos(centre lat)).
Every cell of the rectangle is returned, empty ones included, so the total
count always equals the number of in-bounds points.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Iterable

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import box

from census_atlas.logging_utils import log_event
from census_atlas.placement import METERS_PER_DEG_LAT, PlacedPoint

DEFAULT_CELL_SIZE_M = 250.0


@dataclass(frozen=True)
class GridCell:
    x_index: int
    y_index: int
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float
    count: int

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def grid_steps(bounds: tuple[float, float, float, float], cell_size_m: float) -> tuple[float, float]:
    """(lon_step, lat_step) in degrees for cell_size_m at the centre latitude."""
    _, min_lat, _, max_lat = bounds
    center_lat = (min_lat + max_lat) / 2.0
    lat_step = cell_size_m / METERS_PER_DEG_LAT
    lon_step = cell_size_m / (METERS_PER_DEG_LAT * math.cos(math.radians(center_lat)))
    return lon_step, lat_step


def _coords(points: Iterable[Any]) -> np.ndarray:
    """(lon, lat) array from PlacedPoints or (lon, lat) pairs."""
    pairs = []
    for p in points:
        if isinstance(p, PlacedPoint):
            pairs.append((p.lon, p.lat))
        else:
            lon, lat = p
            pairs.append((float(lon), float(lat)))
    if not pairs:
        return np.empty((0, 2), dtype=float)
    return np.asarray(pairs, dtype=float)


def bin_points(
    points: Iterable[Any],
    bounds: tuple[float, float, float, float],
    cell_size_m: float = DEFAULT_CELL_SIZE_M,
    logger: logging.Logger | None = None,
) -> list[GridCell]:
    """
    Count points per grid cell.

    Args:
        points: PlacedPoint objects or (lon, lat) pairs.
        bounds: (min_lon, min_lat, max_lon, max_lat) in degrees.
        cell_size_m: Cell edge length in metres.

    Returns:
        Every cell of the rectangle, row by row from the south-west corner.
        Points outside bounds are dropped; points on the max edge land in
        the last cell.
    """
    if cell_size_m <= 0:
        raise ValueError(f"cell_size_m must be positive, got {cell_size_m}")
    min_lon, min_lat, max_lon, max_lat = bounds
    if max_lon <= min_lon or max_lat <= min_lat:
        raise ValueError(f"Degenerate bounds: {bounds}")

    lon_step, lat_step = grid_steps(bounds, cell_size_m)
    nx = max(1, math.ceil((max_lon - min_lon) / lon_step))
    ny = max(1, math.ceil((max_lat - min_lat) / lat_step))

    coords = _coords(points)
    counts = np.zeros((ny, nx), dtype=np.int64)
    dropped = 0
    if len(coords):
        lon, lat = coords[:, 0], coords[:, 1]
        inside = (
            np.isfinite(lon) & np.isfinite(lat)
            & (lon >= min_lon) & (lon <= max_lon)
            & (lat >= min_lat) & (lat <= max_lat)
        )
        dropped = int((~inside).sum())
        xi = np.floor((lon[inside] - min_lon) / lon_step).astype(np.int64)
        yi = np.floor((lat[inside] - min_lat) / lat_step).astype(np.int64)
        xi = np.clip(xi, 0, nx - 1)
        yi = np.clip(yi, 0, ny - 1)
        np.add.at(counts, (yi, xi), 1)

    cells = []
    for y in range(ny):
        for x in range(nx):
            cells.append(GridCell(
                x_index=x,
                y_index=y,
                min_lon=min_lon + x * lon_step,
                min_lat=min_lat + y * lat_step,
                max_lon=min(min_lon + (x + 1) * lon_step, max_lon),
                max_lat=min(min_lat + (y + 1) * lat_step, max_lat),
                count=int(counts[y, x]),
            ))

    if logger:
        log_event(logger, logging.INFO,
                  f"Binned {int(counts.sum()):,} points into {nx} x {ny} cells "
                  f"({dropped:,} out of bounds)",
                  "grid_binned", nx=nx, ny=ny, cell_size_m=cell_size_m,
                  points_binned=int(counts.sum()), points_dropped=dropped)

    return cells


def cells_frame(cells: Iterable[GridCell], non_empty_only: bool = False) -> pd.DataFrame:
    """Grid cells as a DataFrame, optionally without empty cells."""
    records = [c.as_dict() for c in cells if c.count or not non_empty_only]
    frame = pd.DataFrame.from_records(records, columns=list(GridCell.__dataclass_fields__))
    return frame.astype({
        "x_index": "int64", "y_index": "int64", "count": "int64",
        "min_lon": "float64", "min_lat": "float64", "max_lon": "float64", "max_lat": "float64",
    })


def cells_geodataframe(frame: pd.DataFrame) -> gpd.GeoDataFrame:
    """Cell polygons (EPSG:4326) from a cells_frame() table."""
    geometry = [
        box(r.min_lon, r.min_lat, r.max_lon, r.max_lat)
        for r in frame[["min_lon", "min_lat", "max_lon", "max_lat"]].itertuples(index=False)
    ]
    return gpd.GeoDataFrame(frame.copy(), geometry=geometry, crs="EPSG:4326")
