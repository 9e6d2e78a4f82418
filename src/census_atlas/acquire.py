"""
Concurrent loading of every configured data source.

Each dataset is loaded in its own worker thread. A failure in one dataset is
recorded as a message and never stops the others; the failed dataset is then
treated as having no rows. Sources may be local paths (relative to the
project root) or http(s) URLs.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

import geopandas as gpd
import pandas as pd
import requests

from census_atlas.config import CsvConfig, EncodingConfig, Sources
from census_atlas.csv_loader import load_csv_bytes
from census_atlas.io_utils import read_bytes
from census_atlas.logging_utils import log_event, log_step_end, log_step_start
from census_atlas.paths import resolve_location
from census_atlas.shapes import load_boundary, load_shapes

TABLE_DATASETS = ("population", "household", "business", "restaurants")
DATASETS = ("shapes", "boundary") + TABLE_DATASETS

DEFAULT_TIMEOUT_S = 60


class AcquisitionError(Exception):
    """Raised when a data source cannot be fetched."""
    pass


@dataclass
class LoadResult:
    shapes: gpd.GeoDataFrame | None = None
    boundary: gpd.GeoDataFrame | None = None
    tables: dict[str, pd.DataFrame | None] = field(
        default_factory=lambda: {name: None for name in TABLE_DATASETS}
    )
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def table(self, name: str) -> pd.DataFrame | None:
        return self.tables.get(name)


def fetch_bytes(
    location: str | Path,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> bytes:
    """
    Read raw bytes from a local path or an http(s) URL.

    Raises:
        AcquisitionError: On a missing file, a network error, or a non-2xx
            response.
    """
    resolved = resolve_location(location)
    if isinstance(resolved, str):
        getter = session.get if session is not None else requests.get
        try:
            response = getter(resolved, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise AcquisitionError(f"Failed to fetch data - {resolved}: {e}") from e
        return response.content

    try:
        return read_bytes(resolved)
    except FileNotFoundError as e:
        raise AcquisitionError(str(e)) from e


def _table_loader(
    location: str,
    encoding_config: EncodingConfig | None,
    csv_config: CsvConfig | None,
    session: requests.Session | None,
    logger: logging.Logger | None,
) -> Callable[[], pd.DataFrame]:
    def load() -> pd.DataFrame:
        buf = fetch_bytes(location, session=session)
        return load_csv_bytes(buf, encoding_config, csv_config, logger=logger)
    return load


def load_sources(
    sources: Sources,
    cancel_event: threading.Event | None = None,
    encoding_config: EncodingConfig | None = None,
    csv_config: CsvConfig | None = None,
    session: requests.Session | None = None,
    max_workers: int | None = None,
    datasets: Iterable[str] | None = None,
    logger: logging.Logger | None = None,
) -> LoadResult | None:
    """
    Load shapes, city boundaries, and every census/POI table concurrently.

    Datasets without a configured source are left as None without an error,
    except shapes, which are required.

    Args:
        sources: Configured source locations.
        cancel_event: If set by the time loading finishes, the result is
            discarded.
        encoding_config: Keyword weights for CSV encoding detection.
        csv_config: Header detection settings.
        session: Optional requests session for URL sources.
        max_workers: Thread pool size (defaults to one per dataset).
        datasets: Restrict loading to these dataset names.
        logger: Optional logger.

    Returns:
        LoadResult, or None when cancelled.
    """
    wanted = set(datasets) if datasets is not None else set(DATASETS)
    unknown = wanted - set(DATASETS)
    if unknown:
        raise ValueError(f"Unknown datasets: {sorted(unknown)}")

    tasks: dict[str, Callable[[], Any]] = {}
    if "shapes" in wanted:
        tasks["shapes"] = lambda: load_shapes(sources.shapes, logger=logger)
    if sources.boundary and "boundary" in wanted:
        tasks["boundary"] = lambda: load_boundary(sources.boundary, logger=logger)
    for name in TABLE_DATASETS:
        location = getattr(sources, name)
        if location and name in wanted:
            tasks[name] = _table_loader(location, encoding_config, csv_config, session, logger)

    if logger:
        log_step_start(logger, "load_sources", datasets=list(tasks))

    result = LoadResult()
    with ThreadPoolExecutor(max_workers=max_workers or max(1, len(tasks))) as pool:
        futures = {name: pool.submit(task) for name, task in tasks.items()}
        for name, future in futures.items():
            try:
                value = future.result()
            except Exception as e:
                result.errors[name] = str(e) or type(e).__name__
                if logger:
                    log_event(logger, logging.WARNING, f"Failed to load {name}: {e}",
                              "acquisition_failed", dataset=name, error=str(e))
                continue
            if name == "shapes":
                result.shapes = value
            elif name == "boundary":
                result.boundary = value
            else:
                result.tables[name] = value

    if cancel_event is not None and cancel_event.is_set():
        if logger:
            logger.info("Loading cancelled; discarding results")
        return None

    if logger:
        loaded = {name: len(t) for name, t in result.tables.items() if t is not None}
        log_step_end(logger, "load_sources", rows=loaded, failed=sorted(result.errors))

    return result
