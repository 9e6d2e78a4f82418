"""
Command-line entry points for the pipeline scripts.

Installed via [project.scripts] in pyproject.toml:

    census-atlas-geographies    # step 00
    census-atlas-values         # step 01
    census-atlas-geocode        # step 02
    census-atlas-points         # step 03
    census-atlas-grid           # step 04
    census-atlas-run-all        # full pipeline

Each is a thin wrapper that runs the matching file in scripts/.
"""

import subprocess
import sys

from census_atlas.paths import get_project_root

PIPELINE_STEPS = [
    ("00_build_geographies.py", "Building town-block geographies"),
    ("01_build_area_values.py", "Building area values"),
    ("02_geocode_points.py", "Geocoding points of interest"),
    ("03_place_points.py", "Placing points of interest"),
    ("04_build_grid.py", "Building heatmap grid"),
]


def _run_script(script_name: str, *args: str) -> int:
    """Run a pipeline script and return its exit code."""
    script_path = get_project_root() / "scripts" / script_name

    if not script_path.exists():
        print(f"Error: Script not found: {script_path}", file=sys.stderr)
        return 1

    result = subprocess.run([sys.executable, str(script_path), *args], cwd=get_project_root())
    return result.returncode


def run_00_geographies() -> int:
    """Run step 00: canonical town-block polygons."""
    return _run_script("00_build_geographies.py", *sys.argv[1:])


def run_01_values() -> int:
    """Run step 01: per-area values for every mode."""
    return _run_script("01_build_area_values.py", *sys.argv[1:])


def run_02_geocode() -> int:
    """Run step 02: geocode POI addresses (network)."""
    return _run_script("02_geocode_points.py", *sys.argv[1:])


def run_03_points() -> int:
    """Run step 03: place POI rows on the map."""
    return _run_script("03_place_points.py", *sys.argv[1:])


def run_04_grid() -> int:
    """Run step 04: bin placed points into the heatmap grid."""
    return _run_script("04_build_grid.py", *sys.argv[1:])


def run_all(skip_geocode: bool = True) -> int:
    """
    Run the full pipeline in order.

    Geocoding is skipped by default since it calls an external service.
    Returns the first non-zero exit code, or 0 if all succeed.
    """
    print("=" * 60)
    print("Census Atlas - Full Pipeline")
    print("=" * 60)

    for script_name, description in PIPELINE_STEPS:
        if skip_geocode and script_name.startswith("02_"):
            print(f"\n[{description}] skipped")
            continue

        print(f"\n[{description}]")
        print("-" * 40)

        exit_code = _run_script(script_name)
        if exit_code != 0:
            print(f"\nPipeline failed at: {script_name}")
            return exit_code

    print("\n" + "=" * 60)
    print("Full pipeline completed successfully")
    print("=" * 60)
    return 0


def main() -> int:
    """Entry point for census-atlas-run-all; pass --geocode to include step 02."""
    return run_all(skip_geocode="--geocode" not in sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
