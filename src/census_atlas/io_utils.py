"""
Atomic writes and I/O helper utilities.

Outputs are written to a temporary file in the target directory and then
moved into place, so a renderer never reads a half-written layer.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    import geopandas as gpd
    import pandas as pd

from census_atlas.paths import ensure_dir


def atomic_write(
    target_path: Path | str,
    write_func: Callable[..., None],
    *args,
    **kwargs
) -> Path:
    """
    Write to a file atomically using a temporary file and rename.

    Args:
        target_path: Final destination path.
        write_func: Called as write_func(temp_path, *args, **kwargs).

    Returns:
        The target path (as Path object).

    Raises:
        Exception: Re-raises any exception from write_func after cleanup.
    """
    target_path = Path(target_path)
    ensure_dir(target_path.parent)

    temp_fd, temp_name = tempfile.mkstemp(
        suffix=".tmp",
        prefix=f"{target_path.stem}_",
        dir=target_path.parent
    )
    temp_path = Path(temp_name)

    try:
        os.close(temp_fd)
        write_func(temp_path, *args, **kwargs)
        temp_path.replace(target_path)
        return target_path

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_write_json(target_path: Path | str, data: Any, indent: int = 2) -> Path:
    """Write JSON data to a file atomically (UTF-8, non-ASCII kept as is)."""
    def write_json(temp_path: Path, data: Any, indent: int):
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False, default=str)

    return atomic_write(target_path, write_json, data, indent)


def atomic_write_parquet(
    target_path: Path | str,
    df: "pd.DataFrame",
    **kwargs
) -> Path:
    """
    Write a DataFrame to Parquet atomically.

    Args:
        target_path: Destination file path.
        df: DataFrame to write.
        **kwargs: Passed to pyarrow.parquet.write_table.
    """
    import pyarrow as pa
    import pyarrow.parquet as pq

    def write_parquet(temp_path: Path, df: "pd.DataFrame", **kwargs):
        table = pa.Table.from_pandas(df, preserve_index=False)
        pq.write_table(table, temp_path, **kwargs)

    return atomic_write(target_path, write_parquet, df, **kwargs)


def atomic_write_geojson(target_path: Path | str, gdf: "gpd.GeoDataFrame") -> Path:
    """Write a GeoDataFrame to GeoJSON atomically."""
    def write_geojson(temp_path: Path, gdf):
        gdf.to_file(temp_path, driver="GeoJSON")

    return atomic_write(target_path, write_geojson, gdf)


def atomic_write_geoparquet(target_path: Path | str, gdf: "gpd.GeoDataFrame") -> Path:
    """Write a GeoDataFrame to GeoParquet atomically."""
    def write_geoparquet(temp_path: Path, gdf):
        gdf.to_parquet(temp_path)

    return atomic_write(target_path, write_geoparquet, gdf)


# =============================================================================
# Read utilities
# =============================================================================

def read_bytes(file_path: Path | str) -> bytes:
    """
    Read a local file as raw bytes.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")
    return file_path.read_bytes()


def read_json(file_path: Path | str) -> Any:
    """
    Read a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"JSON file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_yaml(file_path: Path | str) -> Any:
    """
    Read a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    import yaml

    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"YAML file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)
