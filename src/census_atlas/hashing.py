"""
Hashing utilities.

Two jobs share this module:

- Stable pseudo-random numbers derived from text. Station-distance placement
  needs a bearing that is the same on every run for the same shop, so it is
  derived from a digest rather than from a random generator.
- Metadata sidecars. Every output gets a JSON sidecar with input file hashes,
  a config digest, library versions, the run id and the run parameters.
"""

import hashlib
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from census_atlas.io_utils import atomic_write_json


def hash_file(file_path: Path | str, algorithm: str = "sha256") -> str:
    """
    Compute the hash of a file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {file_path}")

    hasher = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            hasher.update(chunk)

    return hasher.hexdigest()


def hash_string(content: str, algorithm: str = "sha256") -> str:
    """Compute the hex digest of a UTF-8 string."""
    hasher = hashlib.new(algorithm)
    hasher.update(content.encode("utf-8"))
    return hasher.hexdigest()


def hash_dict(data: dict, algorithm: str = "sha256") -> str:
    """Compute the hash of a dictionary (JSON-serialized, sorted keys)."""
    content = json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)
    return hash_string(content, algorithm)


def stable_fraction(content: str) -> float:
    """
    Map a string to a float in [0, 1) that never changes between runs.

    Uses the first 32 bits of the SHA-256 digest. Python's built-in hash() is
    salted per process and cannot be used here.

    Example:
        >>> stable_fraction("abc") == stable_fraction("abc")
        True
    """
    digest = hash_string(content)
    return int(digest[:8], 16) / float(1 << 32)


def get_library_versions() -> dict[str, str]:
    """Get versions of the libraries that shape the outputs."""
    versions = {
        "python": sys.version.split()[0],
    }

    for lib in ["pandas", "geopandas", "numpy", "pyarrow", "shapely", "pyproj", "yaml"]:
        try:
            module = __import__(lib)
            versions[lib] = getattr(module, "__version__", "unknown")
        except ImportError:
            versions[lib] = "not installed"

    return versions


def create_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    input_files: list[Path | str] | None = None,
    config: dict[str, Any] | None = None,
    parameters: dict[str, Any] | None = None,
    row_count: int | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a metadata sidecar dictionary for an output file.

    Args:
        output_path: Path to the output file.
        run_id: Unique run identifier.
        input_files: Local input files to hash. Missing files and URLs are
            recorded without a hash.
        config: Parsed config whose digest is recorded.
        parameters: Runtime parameters (mode, filters, ...).
        row_count: Number of rows in the output.
        extra: Additional metadata (e.g. a join report).

    Returns:
        Metadata dictionary ready to be written as JSON.
    """
    output_path = Path(output_path)

    metadata = {
        "output_file": output_path.name,
        "output_path": str(output_path),
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "library_versions": get_library_versions(),
    }

    if input_files:
        metadata["input_file_hashes"] = {}
        for f in input_files:
            p = Path(f)
            metadata["input_file_hashes"][str(f)] = hash_file(p) if p.exists() else None

    if config is not None:
        metadata["config_hash"] = hash_dict(config)

    if parameters:
        metadata["parameters"] = parameters

    if row_count is not None:
        metadata["row_count"] = row_count

    if output_path.exists():
        metadata["output_hash"] = hash_file(output_path)

    if extra:
        metadata["extra"] = extra

    return metadata


def write_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    metadata_dir: Path | str | None = None,
    **kwargs: Any,
) -> Path:
    """
    Write a metadata sidecar JSON file for an output.

    The sidecar is named "<output stem>_metadata.json" and goes next to the
    output unless metadata_dir is given.

    Returns:
        Path to the written metadata file.
    """
    output_path = Path(output_path)
    metadata = create_metadata_sidecar(output_path=output_path, run_id=run_id, **kwargs)

    target_dir = Path(metadata_dir) if metadata_dir is not None else output_path.parent
    sidecar_path = target_dir / f"{output_path.stem}_metadata.json"

    atomic_write_json(sidecar_path, metadata)

    return sidecar_path
