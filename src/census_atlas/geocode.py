"""
Address geocoding against the GSI (国土地理院) address search API.

Requests are issued one at a time with a fixed delay between them; the
service is free and asks clients not to hammer it. Successful answers are
cached in a JSON file so later runs only query new addresses.
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable

import pandas as pd
import requests

from census_atlas.config import GeocodingConfig, PoiColumns
from census_atlas.io_utils import atomic_write_json, read_json
from census_atlas.keys import normalize_key, safe_to_number
from census_atlas.logging_utils import log_event, log_step_end, log_step_start
from census_atlas.paths import resolve_location

Coordinate = tuple[float, float]  # (lat, lon)


def load_cache(cache_path: Path | str | None) -> dict[str, Coordinate]:
    if cache_path is None:
        return {}
    path = Path(resolve_location(cache_path))
    if not path.exists():
        return {}
    data = read_json(path)
    return {addr: (float(v[0]), float(v[1])) for addr, v in data.items() if v}


def save_cache(cache_path: Path | str, cache: dict[str, Coordinate]) -> Path:
    path = Path(resolve_location(cache_path))
    return atomic_write_json(path, {addr: list(coord) for addr, coord in sorted(cache.items())})


def parse_response(payload: Any) -> Coordinate | None:
    """
    First hit of an AddressSearch answer as (lat, lon).

    The API returns a list of GeoJSON-like features with
    geometry.coordinates = [lon, lat]; an empty list means no match.
    """
    if not isinstance(payload, list) or not payload:
        return None
    first = payload[0]
    try:
        lon, lat = first["geometry"]["coordinates"][:2]
    except (KeyError, TypeError, ValueError):
        return None
    lat_f, lon_f = safe_to_number(lat), safe_to_number(lon)
    if lat_f is None or lon_f is None:
        return None
    return lat_f, lon_f


def geocode_address(
    address: str,
    session: requests.Session | None = None,
    endpoint: str = GeocodingConfig.endpoint,
    timeout_s: float = GeocodingConfig.timeout_s,
    logger: logging.Logger | None = None,
) -> Coordinate | None:
    """Geocode one address. Network errors and empty answers give None."""
    getter = session.get if session is not None else requests.get
    try:
        response = getter(endpoint, params={"q": address}, timeout=timeout_s)
        response.raise_for_status()
        payload = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        if logger:
            log_event(logger, logging.WARNING, f"Geocoding failed for {address}: {e}",
                      "geocode_failed", address=address, error=str(e))
        return None

    coord = parse_response(payload)
    if coord is None and logger:
        log_event(logger, logging.INFO, f"No geocoding match for {address}",
                  "geocode_no_match", address=address)
    return coord


def geocode_addresses(
    addresses: Iterable[str],
    session: requests.Session | None = None,
    delay_s: float = GeocodingConfig.delay_s,
    endpoint: str = GeocodingConfig.endpoint,
    timeout_s: float = GeocodingConfig.timeout_s,
    cache_path: Path | str | None = None,
    logger: logging.Logger | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Coordinate | None]:
    """
    Geocode distinct addresses serially, sleeping delay_s between requests.

    Args:
        addresses: Addresses to geocode; blanks and duplicates are skipped.
        session: Optional requests session.
        delay_s: Fixed pause between two requests.
        endpoint: AddressSearch URL.
        timeout_s: Per-request timeout.
        cache_path: JSON cache file; read before and written after.
        logger: Optional logger.
        sleep: Sleep function (replaceable in tests).

    Returns:
        Address -> (lat, lon), or None when it could not be geocoded.
    """
    wanted = [a for a in dict.fromkeys(normalize_key(a) for a in addresses) if a]
    cache = load_cache(cache_path)
    pending = [a for a in wanted if a not in cache]

    if logger:
        log_step_start(logger, "geocode_addresses", addresses=len(wanted),
                       cached=len(wanted) - len(pending))

    results: dict[str, Coordinate | None] = {a: cache[a] for a in wanted if a in cache}
    for i, address in enumerate(pending):
        if i:
            sleep(delay_s)
        coord = geocode_address(address, session, endpoint, timeout_s, logger)
        results[address] = coord
        if coord is not None:
            cache[address] = coord

    if cache_path is not None and pending:
        save_cache(cache_path, cache)

    if logger:
        found = sum(1 for v in results.values() if v is not None)
        log_step_end(logger, "geocode_addresses", requested=len(pending),
                     found=found, missing=len(results) - found)

    return {a: results.get(a) for a in wanted}


def fill_coordinates(
    df: pd.DataFrame,
    coords: dict[str, Coordinate | None],
    columns: PoiColumns | None = None,
) -> pd.DataFrame:
    """
    Copy of df with lat/lon filled from coords where a row has none.

    Rows that already carry numeric coordinates are left untouched.
    """
    columns = columns or PoiColumns()
    out = df.copy()
    for col in (columns.lat, columns.lon):
        if col not in out.columns:
            out[col] = ""

    for idx, row in out.iterrows():
        if safe_to_number(row[columns.lat]) is not None and safe_to_number(row[columns.lon]) is not None:
            continue
        coord = coords.get(normalize_key(row.get(columns.address)))
        if coord is None:
            continue
        out.at[idx, columns.lat] = str(coord[0])
        out.at[idx, columns.lon] = str(coord[1])
    return out
