#!/usr/bin/env python3
"""
02_geocode_points.py

Geocode restaurant addresses that carry no coordinates, using the GSI
address search API. Optional: step 03 falls back to station-distance and
city-centroid placement for anything left without coordinates.

Pipeline Step: 02

Inputs:
    - Restaurant table (sources.restaurants)
    - data/interim/geocode_cache.json (reused between runs)

Outputs:
    - data/interim/restaurants_geocoded.parquet
    - data/interim/geocode_cache.json

Failure Modes:
    - Restaurant table missing or unreadable
    - Network errors (logged per address, never fatal)
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import requests

from census_atlas.acquire import load_sources
from census_atlas.config import load_config
from census_atlas.geocode import fill_coordinates, geocode_addresses
from census_atlas.io_utils import atomic_write_parquet
from census_atlas.keys import safe_to_number
from census_atlas.logging_utils import get_logger, get_run_id, log_output_written
from census_atlas.paths import ensure_dir, paths


# =============================================================================
# CONSTANTS
# =============================================================================

SCRIPT_NAME = "02_geocode_points"

USER_AGENT = "census-atlas/0.1"


# =============================================================================
# MAIN
# =============================================================================

def main():
    """Main entry point for 02_geocode_points."""
    run_id = get_run_id()
    logger = get_logger(SCRIPT_NAME, run_id)

    logger.info("=" * 60)
    logger.info(f"Starting {SCRIPT_NAME}")
    logger.info(f"Run ID: {run_id}")
    logger.info("=" * 60)

    try:
        config = load_config()
        if not config.sources.restaurants:
            logger.warning("No restaurant source configured; nothing to geocode")
            return 0

        result = load_sources(config.sources, encoding_config=config.encoding, csv_config=config.csv,
                              datasets=["restaurants"], logger=logger)
        table = result.tables.get("restaurants")
        if table is None:
            raise FileNotFoundError(result.errors.get("restaurants", "restaurant table not loaded"))

        poi = config.columns.poi
        needs = table
        if poi.lat in table.columns and poi.lon in table.columns:
            has_coords = table[poi.lat].map(safe_to_number).notna() & table[poi.lon].map(safe_to_number).notna()
            needs = table[~has_coords]
        addresses = needs[poi.address].tolist() if poi.address in needs.columns else []
        logger.info(f"{len(needs):,} of {len(table):,} rows need geocoding")

        geocoding = config.geocoding
        with requests.Session() as session:
            session.headers["User-Agent"] = USER_AGENT
            coords = geocode_addresses(
                addresses,
                session=session,
                delay_s=geocoding.delay_s,
                endpoint=geocoding.endpoint,
                timeout_s=geocoding.timeout_s,
                cache_path=geocoding.cache,
                logger=logger,
            )

        geocoded = fill_coordinates(table, coords, poi)
        output_path = ensure_dir(paths.data_interim) / "restaurants_geocoded.parquet"
        atomic_write_parquet(output_path, geocoded)
        log_output_written(logger, output_path, row_count=len(geocoded))

        found = sum(1 for v in coords.values() if v is not None)
        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Geocoded: {found:,} of {len(coords):,} addresses")
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
