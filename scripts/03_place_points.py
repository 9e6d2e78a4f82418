#!/usr/bin/env python3
"""
03_place_points.py

Place every restaurant on the map: geocoded coordinates when present,
otherwise an offset from the nearest station, otherwise the city centroid.

Pipeline Step: 03

Inputs:
    - data/interim/restaurants_geocoded.parquet (step 02), else the raw
      restaurant table (sources.restaurants)
    - data/processed/geo/city_centroids.json (step 00)
    - configs/stations.yml

Outputs:
    - data/processed/points/points.parquet
    - data/processed/points/points.geojson
    - data/processed/metadata/points_metadata.json

QA Checks:
    - Placed points within the configured region (logged, not fatal)

Failure Modes:
    - Restaurant table missing
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import logging

import pandas as pd

from census_atlas.acquire import load_sources
from census_atlas.config import AtlasConfig, load_config
from census_atlas.hashing import write_metadata_sidecar
from census_atlas.io_utils import atomic_write_geojson, atomic_write_parquet, read_json
from census_atlas.logging_utils import (
    get_logger, get_run_id, log_output_written, log_step_end, log_step_start
)
from census_atlas.paths import ensure_dir, paths
from census_atlas.placement import build_station_index, place_all, points_frame, points_geodataframe
from census_atlas.qa import check_points_in_region
from census_atlas.schemas import SCHEMA_PLACED_POINTS, validate_schema


# =============================================================================
# CONSTANTS
# =============================================================================

SCRIPT_NAME = "03_place_points"


# =============================================================================
# MAIN FUNCTIONS
# =============================================================================

def load_restaurants(config: AtlasConfig, logger: logging.Logger) -> tuple[pd.DataFrame, Path | None]:
    """Geocoded table from step 02 when available, else the raw table."""
    geocoded = paths.data_interim / "restaurants_geocoded.parquet"
    if geocoded.exists():
        logger.info(f"Using geocoded table: {geocoded}")
        return pd.read_parquet(geocoded), geocoded

    result = load_sources(config.sources, encoding_config=config.encoding, csv_config=config.csv,
                          datasets=["restaurants"], logger=logger)
    table = result.tables.get("restaurants")
    if table is None:
        raise FileNotFoundError(result.errors.get("restaurants", "no restaurant source configured"))
    return table, None


def load_centroids() -> dict[str, tuple[float, float]]:
    path = paths.processed_geo / "city_centroids.json"
    if not path.exists():
        raise FileNotFoundError(f"{path} (run 00_build_geographies first)")
    return {code: (c["lat"], c["lon"]) for code, c in read_json(path).items()}


# =============================================================================
# MAIN
# =============================================================================

def main():
    """Main entry point for 03_place_points."""
    run_id = get_run_id()
    logger = get_logger(SCRIPT_NAME, run_id)

    logger.info("=" * 60)
    logger.info(f"Starting {SCRIPT_NAME}")
    logger.info(f"Run ID: {run_id}")
    logger.info("=" * 60)

    try:
        config = load_config()
        table, source_path = load_restaurants(config, logger)
        centroids = load_centroids()
        station_index = build_station_index(config.stations)
        logger.info(f"{len(station_index)} stations, {len(centroids)} city centroids")

        log_step_start(logger, "place_points", rows=len(table))
        points, summary = place_all(
            table,
            station_index,
            centroids,
            city_labels=config.city_labels,
            columns=config.columns.poi,
            walking_speed_m_per_min=config.walking_speed_m_per_min,
            operator_prefixes=config.operator_prefixes,
            logger=logger,
        )
        log_step_end(logger, "place_points", **summary.as_dict())

        df = points_frame(points)
        validate_schema(df, SCHEMA_PLACED_POINTS)
        check_points_in_region(df, config.region, logger=logger)

        output_dir = ensure_dir(paths.processed_points)
        parquet_path = output_dir / "points.parquet"
        atomic_write_parquet(parquet_path, df)
        log_output_written(logger, parquet_path, row_count=len(df))

        geojson_path = output_dir / "points.geojson"
        atomic_write_geojson(geojson_path, points_geodataframe(df))
        log_output_written(logger, geojson_path, row_count=len(df))

        write_metadata_sidecar(
            output_path=parquet_path,
            run_id=run_id,
            metadata_dir=paths.processed_metadata,
            input_files=[source_path, paths.stations_yml] if source_path else [paths.stations_yml],
            config=config.raw.get("params"),
            parameters={
                "walking_speed_m_per_min": config.walking_speed_m_per_min,
                "operator_prefixes": list(config.operator_prefixes),
            },
            row_count=len(df),
            extra={"placement": summary.as_dict()},
        )

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Placed: {len(points):,} of {summary.rows_seen:,} rows")
        logger.info(f"   By confidence: {summary.by_confidence}")
        logger.info("=" * 60)
        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
