#!/usr/bin/env python3
"""
01_build_area_values.py

Join the census tables to the town-block polygons and write one value per
area for every display mode.

Pipeline Step: 01

Inputs:
    - data/processed/geo/town_blocks.parquet (from step 00)
    - Population (h03), household (h06), and business CSVs (sources.*)
    - configs/params.yml (modes, default filters, column aliases)

Outputs:
    - data/processed/values/area_values_<mode>.parquet
    - data/processed/values/choropleth_<mode>.geojson
    - data/processed/values/join_report.json
    - data/processed/metadata/area_values_<mode>_metadata.json

QA Checks:
    - Join coverage per source table (logged, not fatal)

Failure Modes:
    - Step 00 outputs missing
    - Every census table failed to load
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import logging
from dataclasses import replace

import geopandas as gpd

from census_atlas.acquire import load_sources
from census_atlas.config import AtlasConfig, load_config
from census_atlas.features import MODE_TABLE, Mode
from census_atlas.hashing import write_metadata_sidecar
from census_atlas.io_utils import atomic_write_geojson, atomic_write_json, atomic_write_parquet
from census_atlas.logging_utils import (
    get_logger, get_run_id, log_output_written, log_step_end, log_step_start
)
from census_atlas.paths import ensure_dir, paths, resolve_location
from census_atlas.pipeline import (
    Selection,
    Snapshot,
    ViewModel,
    build_view_model,
    feature_collection,
    values_frame,
    view_summary,
)
from census_atlas.placement import build_station_index
from census_atlas.qa import check_join_coverage
from census_atlas.schemas import SCHEMA_AREA_VALUES, validate_schema


# =============================================================================
# CONSTANTS
# =============================================================================

SCRIPT_NAME = "01_build_area_values"

CENSUS_DATASETS = ("population", "household", "business")


# =============================================================================
# MAIN FUNCTIONS
# =============================================================================

def load_snapshot(config: AtlasConfig, logger: logging.Logger) -> Snapshot:
    """Canonical polygons from step 00 plus freshly loaded census tables."""
    log_step_start(logger, "load_snapshot")

    shapes_path = paths.processed_geo / "town_blocks.parquet"
    if not shapes_path.exists():
        raise FileNotFoundError(f"{shapes_path} (run 00_build_geographies first)")
    shapes = gpd.read_parquet(shapes_path)

    result = load_sources(
        config.sources,
        encoding_config=config.encoding,
        csv_config=config.csv,
        datasets=CENSUS_DATASETS,
        logger=logger,
    )
    loaded = [name for name in CENSUS_DATASETS if result.tables.get(name) is not None]
    if not loaded:
        raise RuntimeError(f"No census table could be loaded: {result.errors}")

    snapshot = Snapshot(
        shapes=shapes,
        tables=result.tables,
        config=config,
        station_index=build_station_index(config.stations),
    )
    log_step_end(logger, "load_snapshot", polygons=len(shapes), tables=loaded,
                 errors=result.errors)
    return snapshot


def write_mode_outputs(
    view: ViewModel,
    snapshot: Snapshot,
    logger: logging.Logger,
    run_id: str,
) -> Path:
    """Write the value table and choropleth layer of one mode."""
    mode = view.mode.value
    output_dir = ensure_dir(paths.processed_values)

    df = values_frame(view.values, view.mode, snapshot.shapes["KEY_CODE"])
    validate_schema(df, SCHEMA_AREA_VALUES)
    values_path = output_dir / f"area_values_{mode}.parquet"
    atomic_write_parquet(values_path, df)
    log_output_written(logger, values_path, row_count=len(df))

    choropleth = feature_collection(view.display_shapes, view.values)
    choropleth_path = output_dir / f"choropleth_{mode}.geojson"
    atomic_write_geojson(choropleth_path, choropleth)
    log_output_written(logger, choropleth_path, row_count=len(choropleth))

    source = getattr(snapshot.config.sources, MODE_TABLE[view.mode])
    write_metadata_sidecar(
        output_path=values_path,
        run_id=run_id,
        metadata_dir=paths.processed_metadata,
        input_files=[resolve_location(source)] if source else None,
        config=snapshot.config.raw.get("params"),
        parameters={"mode": mode, "cities": view.selected_cities},
        row_count=len(df),
        extra=view_summary(view),
    )
    return values_path


# =============================================================================
# MAIN
# =============================================================================

def main():
    """Main entry point for 01_build_area_values."""
    run_id = get_run_id()
    logger = get_logger(SCRIPT_NAME, run_id)

    logger.info("=" * 60)
    logger.info(f"Starting {SCRIPT_NAME}")
    logger.info(f"Run ID: {run_id}")
    logger.info("=" * 60)

    try:
        config = load_config()
        snapshot = load_snapshot(config, logger)
        base = Selection.default(snapshot)
        logger.info(f"Default filters: {base.filters}")

        reports = {}
        for mode in Mode:
            log_step_start(logger, f"mode_{mode.value}")
            view = build_view_model(snapshot, replace(base, mode=mode), logger=logger)
            write_mode_outputs(view, snapshot, logger, run_id)

            dataset = MODE_TABLE[mode]
            check_join_coverage(view.report, dataset, logger=logger)
            reports[mode.value] = {"dataset": dataset, "city_ratio": view.city_ratio,
                                   **view.report.as_dict()}
            log_step_end(logger, f"mode_{mode.value}",
                         values=sum(1 for v in view.values.values() if v is not None))

        report_path = ensure_dir(paths.processed_values) / "join_report.json"
        atomic_write_json(report_path, {"run_id": run_id, "modes": reports})
        log_output_written(logger, report_path)

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Modes: {[m.value for m in Mode]}")
        logger.info(f"   Join report: {report_path}")
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
