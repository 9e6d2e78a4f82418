#!/usr/bin/env python3
"""
04_build_grid.py

Bin the placed points into the fixed-size heatmap grid over the study region.

Pipeline Step: 04

Inputs:
    - data/processed/points/points.parquet (step 03)
    - configs/params.yml (region, grid.cell_size_m)

Outputs:
    - data/processed/grid/grid.parquet (every cell, zero counts included)
    - data/processed/grid/grid.geojson (non-empty cells only)
    - data/processed/metadata/grid_metadata.json

QA Checks:
    - Total count equals the number of in-region points

Failure Modes:
    - Step 03 outputs missing
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pandas as pd

from census_atlas.config import load_config
from census_atlas.grid import bin_points, cells_frame, cells_geodataframe
from census_atlas.hashing import write_metadata_sidecar
from census_atlas.io_utils import atomic_write_geojson, atomic_write_parquet
from census_atlas.logging_utils import get_logger, get_run_id, log_output_written, log_qa_check
from census_atlas.paths import ensure_dir, paths
from census_atlas.schemas import SCHEMA_GRID_CELLS, validate_schema


# =============================================================================
# CONSTANTS
# =============================================================================

SCRIPT_NAME = "04_build_grid"


# =============================================================================
# MAIN
# =============================================================================

def main():
    """Main entry point for 04_build_grid."""
    run_id = get_run_id()
    logger = get_logger(SCRIPT_NAME, run_id)

    logger.info("=" * 60)
    logger.info(f"Starting {SCRIPT_NAME}")
    logger.info(f"Run ID: {run_id}")
    logger.info("=" * 60)

    try:
        config = load_config()

        points_path = paths.processed_points / "points.parquet"
        if not points_path.exists():
            raise FileNotFoundError(f"{points_path} (run 03_place_points first)")
        points = pd.read_parquet(points_path)

        bounds = config.region.as_bounds()
        cells = bin_points(zip(points["lon"], points["lat"]), bounds, config.grid_cell_size_m,
                           logger=logger)
        df = cells_frame(cells)
        validate_schema(df, SCHEMA_GRID_CELLS)

        region = config.region
        in_region = int((
            points["lon"].between(region.min_lon, region.max_lon)
            & points["lat"].between(region.min_lat, region.max_lat)
        ).sum())
        total = int(df["count"].sum())
        log_qa_check(logger, "grid_conservation", total == in_region,
                     f"{total:,} binned, {in_region:,} in region")
        if total != in_region:
            raise ValueError(f"Grid count {total} differs from in-region points {in_region}")

        output_dir = ensure_dir(paths.processed_grid)
        parquet_path = output_dir / "grid.parquet"
        atomic_write_parquet(parquet_path, df)
        log_output_written(logger, parquet_path, row_count=len(df))

        non_empty = df[df["count"] > 0].reset_index(drop=True)
        geojson_path = output_dir / "grid.geojson"
        atomic_write_geojson(geojson_path, cells_geodataframe(non_empty))
        log_output_written(logger, geojson_path, row_count=len(non_empty))

        write_metadata_sidecar(
            output_path=parquet_path,
            run_id=run_id,
            metadata_dir=paths.processed_metadata,
            input_files=[points_path],
            config=config.raw.get("params"),
            parameters={"cell_size_m": config.grid_cell_size_m, "bounds": list(bounds)},
            row_count=len(df),
            extra={"points_binned": total, "non_empty_cells": len(non_empty)},
        )

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Cells: {len(df):,} ({len(non_empty):,} non-empty)")
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
