"""
Canonical root detection and path resolution.

Every script and library function resolves files through census_atlas.paths.
Relative paths in configs/params.yml are interpreted against the project root,
which is marked by a .project-root file.
"""

from pathlib import Path
from typing import Union

# Cached project root
_PROJECT_ROOT: Path | None = None


def get_project_root() -> Path:
    """
    Find and return the project root directory.

    Searches upward from this file's location for the .project-root marker.
    Result is cached.

    Returns:
        Path to the project root directory.

    Raises:
        FileNotFoundError: If .project-root marker is not found.
    """
    global _PROJECT_ROOT

    if _PROJECT_ROOT is not None:
        return _PROJECT_ROOT

    current = Path(__file__).resolve().parent

    for _ in range(10):  # Limit search depth
        marker = current / ".project-root"
        if marker.exists():
            _PROJECT_ROOT = current
            return _PROJECT_ROOT

        parent = current.parent
        if parent == current:
            break
        current = parent

    raise FileNotFoundError(
        "Could not find .project-root marker. "
        "Ensure you are running from within the Census Atlas repository."
    )


def get_path(*parts: str) -> Path:
    """
    Resolve a path relative to the project root.

    Example:
        >>> get_path("data", "processed", "values")
        PosixPath('/path/to/project/data/processed/values')
    """
    return get_project_root() / Path(*parts)


def resolve_location(location: str | Path) -> str | Path:
    """
    Resolve a data source location from the config.

    http(s) URLs are returned unchanged; absolute paths are kept as they are;
    anything else is taken relative to the project root.
    """
    text = str(location)
    if text.startswith(("http://", "https://")):
        return text
    p = Path(text)
    if p.is_absolute():
        return p
    return get_project_root() / p


# =============================================================================
# Canonical path constants
# =============================================================================

class Paths:
    """
    Canonical path constants for the project.

    All paths are resolved relative to the project root.
    """

    @property
    def root(self) -> Path:
        """Project root directory."""
        return get_project_root()

    # -------------------------------------------------------------------------
    # Config paths
    # -------------------------------------------------------------------------
    @property
    def configs(self) -> Path:
        return get_path("configs")

    @property
    def params_yml(self) -> Path:
        return get_path("configs", "params.yml")

    @property
    def stations_yml(self) -> Path:
        return get_path("configs", "stations.yml")

    # -------------------------------------------------------------------------
    # Data paths
    # -------------------------------------------------------------------------
    @property
    def data_raw(self) -> Path:
        return get_path("data", "raw")

    @property
    def data_interim(self) -> Path:
        return get_path("data", "interim")

    @property
    def data_processed(self) -> Path:
        return get_path("data", "processed")

    @property
    def processed_geo(self) -> Path:
        return get_path("data", "processed", "geo")

    @property
    def processed_values(self) -> Path:
        return get_path("data", "processed", "values")

    @property
    def processed_points(self) -> Path:
        return get_path("data", "processed", "points")

    @property
    def processed_grid(self) -> Path:
        return get_path("data", "processed", "grid")

    @property
    def processed_metadata(self) -> Path:
        return get_path("data", "processed", "metadata")

    # -------------------------------------------------------------------------
    # Logs
    # -------------------------------------------------------------------------
    @property
    def logs(self) -> Path:
        return get_path("logs")


# Singleton instance for convenience
paths = Paths()


def ensure_dir(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        The Path object for the directory.
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p
