"""
Schema validation for pipeline outputs.

Every table a script writes is validated first; a missing column, an
unexpected null, or a dtype drift raises SchemaValidationError and the
script fails instead of writing a broken layer.
"""

from dataclasses import dataclass

import pandas as pd


class SchemaValidationError(Exception):
    """Raised when data does not conform to expected schema."""
    pass


@dataclass
class ColumnSpec:
    """Specification for a single column."""
    name: str
    dtype: str  # "object", "int64", "float64", "geometry"
    required: bool = True
    nullable: bool = False
    description: str = ""


@dataclass
class TableSchema:
    """Schema definition for a table."""
    name: str
    description: str
    columns: list[ColumnSpec]

    def required_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.required]

    def all_columns(self) -> list[str]:
        return [c.name for c in self.columns]


# Accepted pandas dtypes per declared dtype
_COMPATIBLE_DTYPES = {
    "object": {"object", "string", "str", "category"},
    "int64": {"int64", "int32", "Int64", "Int32"},
    "float64": {"float64", "float32", "Float64"},
}


# =============================================================================
# Output schemas
# =============================================================================

SCHEMA_CANONICAL_SHAPES = TableSchema(
    name="canonical_shapes",
    description="Town-block (町丁・字) polygons of the target cities",
    columns=[
        ColumnSpec("KEY_CODE", "object", description="City code + area suffix"),
        ColumnSpec("city_code", "object", description="5-digit city code"),
        ColumnSpec("CITY_NAME", "object", required=False, nullable=True,
                   description="City name"),
        ColumnSpec("S_NAME", "object", required=False, nullable=True,
                   description="Town-block name"),
        ColumnSpec("geometry", "geometry", description="Polygon in EPSG:4326"),
    ]
)

SCHEMA_AREA_VALUES = TableSchema(
    name="area_values",
    description="One value per area key for a display mode",
    columns=[
        ColumnSpec("area_key", "object", description="Resolved area key"),
        ColumnSpec("city_code", "object", description="5-digit city code"),
        ColumnSpec("mode", "object", description="population|household|business|analysis"),
        ColumnSpec("value", "float64", nullable=True, description="Value; null means no data"),
        ColumnSpec("in_polygons", "bool", description="Whether the key is a polygon key"),
    ]
)

SCHEMA_PLACED_POINTS = TableSchema(
    name="placed_points",
    description="Point-of-interest rows with derived coordinates",
    columns=[
        ColumnSpec("name", "object"),
        ColumnSpec("lat", "float64"),
        ColumnSpec("lon", "float64"),
        ColumnSpec("confidence", "object",
                   description="geocoded|station-distance|city-centroid-fallback"),
        ColumnSpec("address", "object", required=False, nullable=True),
        ColumnSpec("station", "object", required=False, nullable=True),
        ColumnSpec("distance_m", "float64", required=False, nullable=True),
    ]
)

SCHEMA_GRID_CELLS = TableSchema(
    name="grid_cells",
    description="Heatmap grid cells with point counts",
    columns=[
        ColumnSpec("x_index", "int64"),
        ColumnSpec("y_index", "int64"),
        ColumnSpec("min_lon", "float64"),
        ColumnSpec("min_lat", "float64"),
        ColumnSpec("max_lon", "float64"),
        ColumnSpec("max_lat", "float64"),
        ColumnSpec("count", "int64"),
    ]
)

SCHEMA_REGISTRY: dict[str, TableSchema] = {
    s.name: s
    for s in (SCHEMA_CANONICAL_SHAPES, SCHEMA_AREA_VALUES, SCHEMA_PLACED_POINTS, SCHEMA_GRID_CELLS)
}


# =============================================================================
# Validation functions
# =============================================================================

def get_schema(name: str) -> TableSchema:
    """
    Get a schema by name from the registry.

    Raises:
        ValueError: If schema not found.
    """
    if name not in SCHEMA_REGISTRY:
        raise ValueError(f"Unknown schema: {name}. Available: {list(SCHEMA_REGISTRY.keys())}")
    return SCHEMA_REGISTRY[name]


def _dtype_errors(df: pd.DataFrame, schema: TableSchema) -> list[str]:
    errors = []
    for col in schema.columns:
        if col.name not in df.columns:
            continue
        series = df[col.name]

        if not col.nullable and series.isna().any():
            errors.append(
                f"Column '{col.name}' has {int(series.isna().sum())} null values but is not nullable"
            )

        if col.dtype == "geometry":
            continue
        actual = str(series.dtype)
        if actual != col.dtype and actual not in _COMPATIBLE_DTYPES.get(col.dtype, set()):
            errors.append(f"Column '{col.name}' has dtype '{actual}', expected '{col.dtype}'")
    return errors


def validate_schema(
    df: pd.DataFrame,
    schema: TableSchema | str,
    strict: bool = False,
) -> list[str]:
    """
    Validate a DataFrame against a schema.

    Args:
        df: DataFrame to validate.
        schema: TableSchema object or schema name from registry.
        strict: If True, fail on extra columns not in schema.

    Returns:
        Empty list when valid.

    Raises:
        SchemaValidationError: If validation fails.
    """
    if isinstance(schema, str):
        schema = get_schema(schema)

    errors = [f"Missing required column: {c}" for c in schema.required_columns() if c not in df.columns]

    if strict:
        extra = set(df.columns) - set(schema.all_columns())
        if extra:
            errors.append(f"Unexpected columns: {sorted(map(str, extra))}")

    errors.extend(_dtype_errors(df, schema))

    if errors:
        error_msg = f"Schema validation failed for '{schema.name}':\n" + "\n".join(f"  - {e}" for e in errors)
        raise SchemaValidationError(error_msg)

    return errors


def validate_geodataframe(
    gdf: pd.DataFrame,
    schema: TableSchema | str,
    expected_epsg: int | None = 4326,
) -> list[str]:
    """
    Validate a GeoDataFrame: CRS, no empty geometries, then the table schema.

    Raises:
        SchemaValidationError: If validation fails.
    """
    import geopandas as gpd

    if not isinstance(gdf, gpd.GeoDataFrame):
        raise SchemaValidationError("Expected GeoDataFrame but got DataFrame")

    errors = []
    if expected_epsg is not None:
        if gdf.crs is None:
            errors.append("GeoDataFrame has no CRS defined")
        elif gdf.crs.to_epsg() != expected_epsg:
            errors.append(f"CRS mismatch: got {gdf.crs}, expected EPSG:{expected_epsg}")

    empty = int(gdf.geometry.is_empty.sum())
    if empty:
        errors.append(f"GeoDataFrame has {empty} empty geometries")

    try:
        validate_schema(gdf, schema)
    except SchemaValidationError as e:
        errors.extend(line.strip().lstrip("- ") for line in str(e).split("\n")[1:])

    if errors:
        error_msg = "GeoDataFrame validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise SchemaValidationError(error_msg)

    return errors
