"""
Area key normalization and composite key resolution.

Census CSVs and the town-block shapefiles are produced independently, and
their area-code suffixes often disagree on zero padding: the shapefile may
store "0010" where the CSV has "10" or "000010". resolve_key() reconciles the
two by trying every known suffix width against the set of polygon keys.

Resolution never fails outright. When nothing matches, the best unverified
guess is returned, and resolve_key_detailed() tags it so the caller can count
how often that happens.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import pandas as pd

from census_atlas.config import ColumnConfig

CITY_CODE_LENGTH = 5

NO_DATA_GLYPHS = frozenset({"-", "–", "―"})

_NON_DIGIT = re.compile(r"[^0-9]")
_TRAILING_ZERO_DECIMAL = re.compile(r"\.0$")

# Confidence tags for a resolved key
EXACT = "exact"            # verbatim match against the polygon keys
REPADDED = "repadded"      # matched after re-padding the area suffix
UNVERIFIED = "unverified"  # no polygon keys or widths to check against
FALLBACK = "fallback"      # checked, nothing matched, best guess returned
NONE = "none"              # the row has no usable identifier

CONFIDENCE_LEVELS = (EXACT, REPADDED, UNVERIFIED, FALLBACK, NONE)


@dataclass(frozen=True)
class ResolvedKey:
    key: str
    confidence: str

    def __bool__(self) -> bool:
        return bool(self.key)


def normalize_key(raw: Any) -> str:
    """
    Canonicalize a raw identifier.

    Trims whitespace and strips a trailing ".0" left by spreadsheet exports of
    numeric codes. None and NaN become "". Repeated until stable, so the
    function is idempotent.

    Example:
        >>> normalize_key(" 272110010.0 ")
        '272110010'
    """
    if raw is None:
        return ""
    if isinstance(raw, float) and math.isnan(raw):
        return ""

    s = str(raw)
    while True:
        stripped = _TRAILING_ZERO_DECIMAL.sub("", s.strip())
        if stripped == s:
            return s
        s = stripped


def safe_to_number(value: Any) -> float | None:
    """
    Parse a census cell into a float.

    Thousands separators are removed; empty cells and the hyphen glyphs used
    for "no data" give None, as does anything non-finite. Never raises.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        f = float(value)
        return f if math.isfinite(f) else None

    s = str(value).strip()
    if not s or s in NO_DATA_GLYPHS:
        return None
    try:
        f = float(s.replace(",", ""))
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def city_code_of(key: str) -> str:
    """The 5-digit city code of an area key, or "" for a short key."""
    return key[:CITY_CODE_LENGTH] if len(key) >= CITY_CODE_LENGTH else ""


# =============================================================================
# Polygon-side helpers
# =============================================================================

def _shape_keys(shapes: "pd.DataFrame | Iterable[Any]") -> list[str]:
    if isinstance(shapes, pd.DataFrame):
        if "KEY_CODE" not in shapes.columns:
            return []
        raw = shapes["KEY_CODE"].tolist()
    else:
        raw = list(shapes)
    return [normalize_key(k) for k in raw]


def area_code_widths(shapes: "pd.DataFrame | Iterable[Any]") -> list[int]:
    """
    Sorted distinct area-suffix widths found in the polygon keys.

    Accepts a (Geo)DataFrame with a KEY_CODE column or an iterable of raw
    keys. Keys of 5 characters or fewer carry no area suffix and are ignored.
    """
    widths = {len(k) - CITY_CODE_LENGTH for k in _shape_keys(shapes) if len(k) > CITY_CODE_LENGTH}
    return sorted(widths)


def polygon_key_set(shapes: "pd.DataFrame | Iterable[Any]") -> frozenset[str] | None:
    """Normalized polygon keys, or None when there are no polygons."""
    keys = frozenset(k for k in _shape_keys(shapes) if k)
    return keys or None


def city_codes_from_shapes(shapes: "pd.DataFrame | Iterable[Any]") -> list[str]:
    """Distinct city codes in the polygon keys, in first-seen order."""
    seen: dict[str, None] = {}
    for k in _shape_keys(shapes):
        code = city_code_of(k)
        if code:
            seen.setdefault(code, None)
    return list(seen)


# =============================================================================
# Resolution
# =============================================================================

def _first_present(row: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    for name in aliases:
        if name in row:
            value = row[name]
            if value is None or (isinstance(value, float) and math.isnan(value)):
                continue
            return value
    return None


def _candidates(city: str, area: str, widths: Iterable[int], first: str) -> list[str]:
    """Candidate keys in lookup order, de-duplicated."""
    ordered = {first: None}
    trimmed = area.lstrip("0") or ("0" if area else "")
    if area:
        for w in widths:
            ordered.setdefault(f"{city}{area.zfill(w)}", None)
    if trimmed:
        for w in widths:
            ordered.setdefault(f"{city}{trimmed.zfill(w)}", None)
    return list(ordered)


def _match(candidates: list[str], polygon_keys: frozenset[str] | set[str]) -> str | None:
    for key in candidates:
        if key in polygon_keys:
            return key
    return None


def resolve_key_detailed(
    row: Mapping[str, Any],
    area_code_widths: Iterable[int] | None,
    polygon_keys: frozenset[str] | set[str] | None = None,
    columns: ColumnConfig | None = None,
) -> ResolvedKey:
    """
    Resolve the polygon key of a data row, with a confidence tag.

    Args:
        row: Mapping of column name to raw value (dict or pandas Series).
        area_code_widths: Suffix widths observed in the polygon keys.
        polygon_keys: Known polygon keys; None disables verification.
        columns: Column aliases (defaults match the e-Stat small-area tables).

    Returns:
        ResolvedKey; key is "" when the row carries no usable identifier.
    """
    columns = columns or ColumnConfig()
    widths = sorted(set(area_code_widths or ()))

    direct = normalize_key(_first_present(row, columns.key_code))
    if direct:
        if polygon_keys is None:
            return ResolvedKey(direct, UNVERIFIED)
        if direct in polygon_keys:
            return ResolvedKey(direct, EXACT)
        suffix_len = len(direct) - CITY_CODE_LENGTH
        if not widths or suffix_len <= 0 or suffix_len in widths:
            return ResolvedKey(direct, FALLBACK)

        city = direct[:CITY_CODE_LENGTH]
        area = _NON_DIGIT.sub("", direct[CITY_CODE_LENGTH:])
        hit = _match(_candidates(city, area, widths, direct), polygon_keys)
        if hit is not None:
            return ResolvedKey(hit, REPADDED)
        return ResolvedKey(direct, FALLBACK)

    city = normalize_key(_first_present(row, columns.city_code))
    area = normalize_key(_first_present(row, columns.area_code))
    if not city or not area or area == "-":
        return ResolvedKey("", NONE)

    area_digits = _NON_DIGIT.sub("", area)
    if not area_digits:
        return ResolvedKey("", NONE)

    city5 = city.zfill(CITY_CODE_LENGTH)
    base_key = f"{city5}{area_digits}"
    if not widths:
        return ResolvedKey(base_key, UNVERIFIED)

    if polygon_keys is not None:
        hit = _match(_candidates(city5, area_digits, widths, base_key), polygon_keys)
        if hit is not None:
            return ResolvedKey(hit, EXACT if hit == base_key else REPADDED)
        return ResolvedKey(base_key, FALLBACK)

    return ResolvedKey(base_key, UNVERIFIED)


def resolve_key(
    row: Mapping[str, Any],
    area_code_widths: Iterable[int] | None,
    polygon_keys: frozenset[str] | set[str] | None = None,
    columns: ColumnConfig | None = None,
) -> str:
    """Resolve the polygon key of a data row ("" when it has none)."""
    return resolve_key_detailed(row, area_code_widths, polygon_keys, columns).key
