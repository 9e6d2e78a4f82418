#!/usr/bin/env python3
"""
00_build_geographies.py

Build the canonical town-block polygons of the target cities, plus the
derived geography layers the other steps and the renderer need.

Pipeline Step: 00

Inputs:
    - data/raw/shapes/r2ka<city code>.shp (e-Stat 町丁・字 boundaries)
    - City boundary GeoJSON (optional, sources.boundary)
    - configs/params.yml, configs/stations.yml

Outputs:
    - data/processed/geo/town_blocks.parquet (GeoParquet)
    - data/processed/geo/town_blocks.geojson (export only)
    - data/processed/geo/city_boundaries.geojson (when configured)
    - data/processed/geo/rail_lines.geojson
    - data/processed/geo/city_centroids.json
    - data/processed/metadata/town_blocks_metadata.json

QA Checks:
    - CRS is EPSG:4326
    - Bounds within the configured region
    - Unique KEY_CODE
    - No empty geometries

Failure Modes:
    - No shapefile readable (ShapeLoadError)
    - Out-of-region geometry
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import logging

import geopandas as gpd

from census_atlas.config import AtlasConfig, load_config
from census_atlas.hashing import write_metadata_sidecar
from census_atlas.io_utils import atomic_write_geojson, atomic_write_geoparquet, atomic_write_json
from census_atlas.logging_utils import (
    get_logger, get_run_id, log_output_written, log_step_end, log_step_start
)
from census_atlas.paths import ensure_dir, paths, resolve_location
from census_atlas.qa import run_shape_qa_checks
from census_atlas.schemas import SCHEMA_CANONICAL_SHAPES, validate_geodataframe
from census_atlas.shapes import (
    active_city_codes,
    build_rail_lines,
    canonical_shapes,
    city_centroids,
    city_codes,
    filter_boundaries,
    filter_to_cities,
    load_boundary,
    load_shapes,
)


# =============================================================================
# CONSTANTS
# =============================================================================

SCRIPT_NAME = "00_build_geographies"


# =============================================================================
# MAIN FUNCTIONS
# =============================================================================

def build_town_blocks(config: AtlasConfig, logger: logging.Logger) -> gpd.GeoDataFrame:
    """Load every configured shapefile and keep the active cities."""
    log_step_start(logger, "build_town_blocks")

    raw = load_shapes(config.sources.shapes, logger=logger)
    available = city_codes(raw)
    active = active_city_codes(available, config.target_cities)
    logger.info(f"Cities in shapes: {available}; active: {active}")

    canonical = canonical_shapes(filter_to_cities(raw, active), logger)

    log_step_end(logger, "build_town_blocks", feature_count=len(canonical), cities=active)
    return canonical


def write_outputs(
    gdf: gpd.GeoDataFrame,
    config: AtlasConfig,
    logger: logging.Logger,
    run_id: str,
) -> dict:
    """Write polygons, boundaries, rail overlay, and centroids."""
    log_step_start(logger, "write_outputs")

    output_dir = ensure_dir(paths.processed_geo)
    outputs = {}

    parquet_path = output_dir / "town_blocks.parquet"
    atomic_write_geoparquet(parquet_path, gdf)
    log_output_written(logger, parquet_path, row_count=len(gdf))
    outputs["parquet"] = parquet_path

    geojson_path = output_dir / "town_blocks.geojson"
    atomic_write_geojson(geojson_path, gdf)
    log_output_written(logger, geojson_path, row_count=len(gdf))
    outputs["geojson"] = geojson_path

    cities = sorted(gdf["city_code"].unique().tolist())

    if config.sources.boundary:
        boundary = load_boundary(config.sources.boundary, logger)
        selected = filter_boundaries(boundary, cities, config.city_name_to_code)
        if selected is not None and not selected.empty:
            boundary_path = output_dir / "city_boundaries.geojson"
            atomic_write_geojson(boundary_path, selected)
            log_output_written(logger, boundary_path, row_count=len(selected))
            outputs["boundaries"] = boundary_path
        else:
            logger.warning("No city boundary feature matched the active cities")

    rail = build_rail_lines(config.rail_lines, config.connectors)
    if not rail.empty:
        rail_path = output_dir / "rail_lines.geojson"
        atomic_write_geojson(rail_path, rail)
        log_output_written(logger, rail_path, row_count=len(rail))
        outputs["rail"] = rail_path

    centroids = city_centroids(gdf, config.region.projected_crs)
    centroid_path = output_dir / "city_centroids.json"
    atomic_write_json(centroid_path, {code: {"lat": lat, "lon": lon} for code, (lat, lon) in centroids.items()})
    log_output_written(logger, centroid_path, row_count=len(centroids))
    outputs["centroids"] = centroid_path

    metadata_path = write_metadata_sidecar(
        output_path=parquet_path,
        run_id=run_id,
        metadata_dir=paths.processed_metadata,
        input_files=[resolve_location(s.path) for s in config.sources.shapes],
        config=config.raw.get("params"),
        parameters={"crs": str(gdf.crs), "cities": cities},
        row_count=len(gdf),
        extra={"bounds": [float(v) for v in gdf.total_bounds]},
    )
    outputs["metadata"] = metadata_path
    logger.info(f"Wrote metadata sidecar: {metadata_path}")

    log_step_end(logger, "write_outputs")
    return outputs


# =============================================================================
# MAIN
# =============================================================================

def main():
    """Main entry point for 00_build_geographies."""
    run_id = get_run_id()
    logger = get_logger(SCRIPT_NAME, run_id)

    logger.info("=" * 60)
    logger.info(f"Starting {SCRIPT_NAME}")
    logger.info(f"Run ID: {run_id}")
    logger.info("=" * 60)

    try:
        config = load_config()

        canonical = build_town_blocks(config, logger)
        run_shape_qa_checks(canonical, config.region, logger=logger, fail_on_error=True)
        validate_geodataframe(canonical, SCHEMA_CANONICAL_SHAPES)

        outputs = write_outputs(canonical, config, logger, run_id)

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Town blocks: {len(canonical)}")
        logger.info(f"   Output: {outputs['parquet']}")
        logger.info("=" * 60)
        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        logger.error("Place the e-Stat shapefiles under data/raw/shapes/ (see configs/params.yml).")
        return 1

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
