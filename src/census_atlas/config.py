"""
Typed configuration.

configs/params.yml and configs/stations.yml are parsed once into frozen
dataclasses. Column names are in the source language (Japanese) and are
matched exactly; each logical field that has aliases carries them as a tuple
in lookup order.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pyproj import CRS
from pyproj.exceptions import CRSError

from census_atlas.io_utils import read_yaml
from census_atlas.paths import paths


class ConfigError(Exception):
    """Raised when a config file is missing a required section or value."""
    pass


@dataclass(frozen=True)
class PoiColumns:
    """Column names of the point-of-interest (restaurant) table."""
    name: str = "店名"
    address: str = "住所"
    lat: str = "緯度"
    lon: str = "経度"
    station: str = "最寄り駅"
    category: str = "ジャンル"
    rating: str = "評価"
    budget_lunch: str = "予算（昼）"
    budget_dinner: str = "予算（夜）"


@dataclass(frozen=True)
class ColumnConfig:
    """Logical field -> source column name(s)."""
    key_code: tuple[str, ...] = ("KEY_CODE",)
    city_code: tuple[str, ...] = ("市区町村コード", "CITY", "city")
    area_code: tuple[str, ...] = ("町丁字コード", "S_AREA", "area")
    sex: str = "男女"
    household_row_type: str = "世帯員の年齢による世帯の種類"
    household_total: str = "総数"
    age_marker: str = "歳"
    age_exclude_marker: str = "（再掲）"
    age_excluded_names: tuple[str, ...] = ("総年齢", "平均年齢")
    poi: PoiColumns = field(default_factory=PoiColumns)


@dataclass(frozen=True)
class EncodingConfig:
    unicode: str = "utf-8"
    legacy: str = "cp932"
    keywords: tuple[tuple[str, float], ...] = (
        ("市区町村コード", 6.0),
        ("町丁字コード", 6.0),
        ("地域階層レベル", 3.0),
        ("KEY_CODE", 6.0),
    )
    replacement_penalty_divisor: float = 2000.0


@dataclass(frozen=True)
class CsvConfig:
    header_scan_lines: int = 60
    header_all_of: tuple[str, ...] = ("市区町村コード", "町丁字コード")
    header_any_of: tuple[str, ...] = ("KEY_CODE",)


@dataclass(frozen=True)
class Region:
    """Bounding region in WGS84 degrees plus the CRS used for centroids."""
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float
    projected_crs: str = "EPSG:6674"

    def as_bounds(self) -> tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def as_dict(self) -> dict[str, float]:
        return {
            "min_lon": self.min_lon,
            "max_lon": self.max_lon,
            "min_lat": self.min_lat,
            "max_lat": self.max_lat,
        }


@dataclass(frozen=True)
class Station:
    id: str
    name: str
    lat: float
    lon: float
    line_id: str
    color: str


@dataclass(frozen=True)
class RailLine:
    id: str
    color: str
    stations: tuple[Station, ...]


@dataclass(frozen=True)
class Connector:
    id: str
    color: str
    coordinates: tuple[tuple[float, float], ...]  # (lon, lat)


@dataclass(frozen=True)
class HouseholdNode:
    key: str
    children: tuple["HouseholdNode", ...] = ()

    def keys(self) -> list[str]:
        """All column keys of this subtree, depth first."""
        out = [self.key]
        for child in self.children:
            out.extend(child.keys())
        return out


@dataclass(frozen=True)
class ShapeSource:
    code: str
    path: str


@dataclass(frozen=True)
class Sources:
    shapes: tuple[ShapeSource, ...] = ()
    boundary: str | None = None
    population: str | None = None
    household: str | None = None
    business: str | None = None
    restaurants: str | None = None


@dataclass(frozen=True)
class GeocodingConfig:
    endpoint: str = "https://msearch.gsi.go.jp/address-search/AddressSearch"
    delay_s: float = 1.0
    timeout_s: float = 15.0
    cache: str = "data/interim/geocode_cache.json"


@dataclass(frozen=True)
class AtlasConfig:
    sources: Sources
    target_cities: tuple[str, ...]
    city_labels: dict[str, str]
    region: Region
    columns: ColumnConfig
    encoding: EncodingConfig
    csv: CsvConfig
    mode_defaults: dict[str, Any]
    analysis_metric_options: tuple[str, ...]
    household_hierarchy: HouseholdNode | None
    walking_speed_m_per_min: float
    operator_prefixes: tuple[str, ...]
    grid_cell_size_m: float
    geocoding: GeocodingConfig
    rail_lines: tuple[RailLine, ...] = ()
    connectors: tuple[Connector, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def city_name_to_code(self) -> dict[str, str]:
        return {name: code for code, name in self.city_labels.items()}

    @property
    def stations(self) -> list[Station]:
        return [s for line in self.rail_lines for s in line.stations]


# =============================================================================
# Parsing
# =============================================================================

def _require(section: dict, key: str, where: str) -> Any:
    if not isinstance(section, dict) or key not in section:
        raise ConfigError(f"Missing '{key}' in {where}")
    return section[key]


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _parse_projected_crs(value: Any) -> str:
    """Centroids are computed in this CRS, so it must be a valid projected one."""
    try:
        crs = CRS.from_user_input(value)
    except CRSError as e:
        raise ConfigError(f"region.projected_crs is not a valid CRS: {value!r}") from e
    if not crs.is_projected:
        raise ConfigError(f"region.projected_crs must be projected, got {crs.name}")
    return str(value)


def _parse_hierarchy(node: dict | None) -> HouseholdNode | None:
    if not node:
        return None
    children = tuple(
        child for child in (_parse_hierarchy(c) for c in node.get("children") or [])
        if child is not None
    )
    return HouseholdNode(key=str(node["key"]), children=children)


def _parse_columns(section: dict | None) -> ColumnConfig:
    if not section:
        return ColumnConfig()
    defaults = ColumnConfig()
    poi = section.get("poi") or {}
    return ColumnConfig(
        key_code=_as_tuple(section.get("key_code")) or defaults.key_code,
        city_code=_as_tuple(section.get("city_code")) or defaults.city_code,
        area_code=_as_tuple(section.get("area_code")) or defaults.area_code,
        sex=section.get("sex", defaults.sex),
        household_row_type=section.get("household_row_type", defaults.household_row_type),
        household_total=section.get("household_total", defaults.household_total),
        age_marker=section.get("age_marker", defaults.age_marker),
        age_exclude_marker=section.get("age_exclude_marker", defaults.age_exclude_marker),
        age_excluded_names=_as_tuple(section.get("age_excluded_names")) or defaults.age_excluded_names,
        poi=PoiColumns(**{k: str(v) for k, v in poi.items()}),
    )


def _parse_encoding(section: dict | None) -> EncodingConfig:
    if not section:
        return EncodingConfig()
    defaults = EncodingConfig()
    keywords = section.get("keywords")
    return EncodingConfig(
        unicode=section.get("unicode", defaults.unicode),
        legacy=section.get("legacy", defaults.legacy),
        keywords=tuple((str(k), float(v)) for k, v in keywords.items()) if keywords else defaults.keywords,
        replacement_penalty_divisor=float(
            section.get("replacement_penalty_divisor", defaults.replacement_penalty_divisor)
        ),
    )


def _parse_csv(section: dict | None) -> CsvConfig:
    if not section:
        return CsvConfig()
    markers = section.get("header_markers") or {}
    defaults = CsvConfig()
    return CsvConfig(
        header_scan_lines=int(section.get("header_scan_lines", defaults.header_scan_lines)),
        header_all_of=_as_tuple(markers.get("all_of")) or defaults.header_all_of,
        header_any_of=_as_tuple(markers.get("any_of")) or defaults.header_any_of,
    )


def _parse_sources(section: dict | None) -> Sources:
    if not section:
        return Sources()
    shapes = tuple(
        ShapeSource(code=str(s.get("code", "")), path=str(_require(s, "path", "sources.shapes")))
        for s in section.get("shapes") or []
    )
    return Sources(
        shapes=shapes,
        boundary=section.get("boundary"),
        population=section.get("population"),
        household=section.get("household"),
        business=section.get("business"),
        restaurants=section.get("restaurants"),
    )


def parse_stations(data: dict | None) -> tuple[tuple[RailLine, ...], tuple[Connector, ...]]:
    """Parse the stations.yml structure into rail lines and connectors."""
    if not data:
        return (), ()
    colors = data.get("colors") or {}
    lines = []
    for line in data.get("lines") or []:
        line_id = str(_require(line, "id", "stations.lines"))
        color = colors.get(line.get("color"), line.get("color", ""))
        stations = tuple(
            Station(
                id=str(s.get("id", f"{line_id}_{s['name']}")),
                name=str(s["name"]),
                lat=float(s["lat"]),
                lon=float(s["lon"]),
                line_id=line_id,
                color=color,
            )
            for s in line.get("stations") or []
        )
        lines.append(RailLine(id=line_id, color=color, stations=stations))

    connectors = tuple(
        Connector(
            id=str(c["id"]),
            color=colors.get(c.get("color"), c.get("color", "")),
            coordinates=tuple((float(lon), float(lat)) for lon, lat in c["coordinates"]),
        )
        for c in data.get("connectors") or []
    )
    return tuple(lines), connectors


def parse_config(params: dict, stations: dict | None = None) -> AtlasConfig:
    """
    Build an AtlasConfig from already-parsed YAML dictionaries.

    Raises:
        ConfigError: If a required section is missing.
    """
    if not isinstance(params, dict):
        raise ConfigError("params.yml must contain a mapping at the top level")

    cities = _require(params, "cities", "params.yml")
    region = _require(params, "region", "params.yml")
    placement = params.get("placement") or {}
    grid = params.get("grid") or {}
    geocoding = params.get("geocoding") or {}

    rail_lines, connectors = parse_stations(stations)

    return AtlasConfig(
        sources=_parse_sources(params.get("sources")),
        target_cities=_as_tuple(cities.get("targets")),
        city_labels={str(k): str(v) for k, v in (cities.get("labels") or {}).items()},
        region=Region(
            min_lon=float(_require(region, "min_lon", "region")),
            min_lat=float(_require(region, "min_lat", "region")),
            max_lon=float(_require(region, "max_lon", "region")),
            max_lat=float(_require(region, "max_lat", "region")),
            projected_crs=_parse_projected_crs(region.get("projected_crs", "EPSG:6674")),
        ),
        columns=_parse_columns(params.get("columns")),
        encoding=_parse_encoding(params.get("encoding")),
        csv=_parse_csv(params.get("csv")),
        mode_defaults=dict(params.get("modes") or {}),
        analysis_metric_options=_as_tuple(params.get("analysis_metric_options")),
        household_hierarchy=_parse_hierarchy(params.get("household_hierarchy")),
        walking_speed_m_per_min=float(placement.get("walking_speed_m_per_min", 80)),
        operator_prefixes=_as_tuple(placement.get("operator_prefixes")),
        grid_cell_size_m=float(grid.get("cell_size_m", 250)),
        geocoding=GeocodingConfig(**geocoding),
        rail_lines=rail_lines,
        connectors=connectors,
        raw={"params": params, "stations": stations},
    )


def load_config(
    params_path: Path | str | None = None,
    stations_path: Path | str | None = None,
) -> AtlasConfig:
    """
    Load configs/params.yml and configs/stations.yml.

    The stations file is optional; without it station-distance placement
    never matches and the rail overlay is empty.
    """
    params_path = Path(params_path) if params_path else paths.params_yml
    stations_path = Path(stations_path) if stations_path else paths.stations_yml

    params = read_yaml(params_path)
    stations = read_yaml(stations_path) if stations_path.exists() else None
    return parse_config(params, stations)
