"""
Feature value building: census rows -> {area key: value}.

One pure function per mode turns resolved rows into the value map that the
choropleth is coloured from:

- population: sum of selected age-bracket columns over the selected sexes
- household: one metric column of the selected household row type
- business: sum of one metric over every row of an area
- analysis: specialization coefficient (location quotient) of a household
  type against the city-wide share

A mode with no source rows yields an empty map, never an exception. Rows whose
key matches no polygon still land in the map under their best-guess key, where
the renderer simply never looks them up; the JoinReport counts them.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

import pandas as pd

from census_atlas.config import AtlasConfig, ColumnConfig, HouseholdNode
from census_atlas.keys import (
    CONFIDENCE_LEVELS,
    area_code_widths,
    city_code_of,
    normalize_key,
    polygon_key_set,
    resolve_key_detailed,
    safe_to_number,
)
from census_atlas.logging_utils import log_join_summary

KEY_COLUMN = "_area_key"
CONFIDENCE_COLUMN = "_key_confidence"

MISSED_KEY_SAMPLE_SIZE = 10


class Mode(str, Enum):
    POPULATION = "population"
    HOUSEHOLD = "household"
    BUSINESS = "business"
    ANALYSIS = "analysis"


# Which loaded table feeds each mode
MODE_TABLE = {
    Mode.POPULATION: "population",
    Mode.HOUSEHOLD: "household",
    Mode.BUSINESS: "business",
    Mode.ANALYSIS: "household",
}


@dataclass(frozen=True)
class Filters:
    """Active filter selection. Unused fields are ignored by other modes."""
    sexes: Mapping[str, bool] = field(default_factory=lambda: {"男": True, "女": True, "総数": False})
    age_columns: tuple[str, ...] = ()
    household_row_type: str = "総数"
    household_metric: str = "総数"
    business_metric: str | None = None
    analysis_metric: str = "単独世帯"


@dataclass(frozen=True)
class KeyContext:
    """Everything the resolver needs to know about the polygons."""
    area_code_widths: tuple[int, ...] = ()
    polygon_keys: frozenset[str] | None = None
    target_cities: frozenset[str] | None = None
    columns: ColumnConfig = field(default_factory=ColumnConfig)

    @classmethod
    def from_shapes(
        cls,
        shapes: pd.DataFrame,
        target_cities: Iterable[str] | None = None,
        columns: ColumnConfig | None = None,
    ) -> "KeyContext":
        targets = frozenset(target_cities) if target_cities else None
        return cls(
            area_code_widths=tuple(area_code_widths(shapes)),
            polygon_keys=polygon_key_set(shapes),
            target_cities=targets,
            columns=columns or ColumnConfig(),
        )

    def in_targets(self, key: str) -> bool:
        if self.target_cities is None:
            return True
        return city_code_of(key) in self.target_cities


@dataclass
class JoinReport:
    """Counts of what happened to each row during key resolution."""
    rows_seen: int = 0
    rows_without_key: int = 0
    rows_outside_targets: int = 0
    rows_keyed: int = 0
    rows_joined: int = 0
    join_misses: int = 0
    by_confidence: dict[str, int] = field(default_factory=lambda: {c: 0 for c in CONFIDENCE_LEVELS})
    missed_keys: list[str] = field(default_factory=list)

    @property
    def join_rate(self) -> float | None:
        if not self.rows_keyed:
            return None
        return self.rows_joined / self.rows_keyed

    def as_dict(self) -> dict[str, Any]:
        return {
            "rows_seen": self.rows_seen,
            "rows_without_key": self.rows_without_key,
            "rows_outside_targets": self.rows_outside_targets,
            "rows_keyed": self.rows_keyed,
            "rows_joined": self.rows_joined,
            "join_misses": self.join_misses,
            "join_rate": self.join_rate,
            "by_confidence": dict(self.by_confidence),
            "missed_keys": list(self.missed_keys),
        }


@dataclass(frozen=True)
class FeatureValues:
    mode: Mode
    values: dict[str, float | None]
    city_ratio: float | None = None
    report: JoinReport = field(default_factory=JoinReport)


@dataclass(frozen=True)
class ValueStats:
    min: float
    max: float
    mid: float | None = None


# =============================================================================
# Resolution over a whole table
# =============================================================================

def resolve_rows(df: pd.DataFrame | None, ctx: KeyContext) -> tuple[pd.DataFrame, JoinReport]:
    """
    Resolve every row of a table and keep the ones that belong on the map.

    Returns a copy of the keyed rows with KEY_COLUMN and CONFIDENCE_COLUMN
    added, plus the JoinReport for the table.
    """
    report = JoinReport()
    if df is None or df.empty:
        return pd.DataFrame(columns=[KEY_COLUMN, CONFIDENCE_COLUMN]), report

    report.rows_seen = len(df)
    resolved = [
        resolve_key_detailed(row, ctx.area_code_widths, ctx.polygon_keys, ctx.columns)
        for _, row in df.iterrows()
    ]
    frame = df.assign(
        **{
            KEY_COLUMN: [r.key for r in resolved],
            CONFIDENCE_COLUMN: [r.confidence for r in resolved],
        }
    )

    for r in resolved:
        report.by_confidence[r.confidence] = report.by_confidence.get(r.confidence, 0) + 1

    has_key = frame[KEY_COLUMN] != ""
    report.rows_without_key = int((~has_key).sum())

    in_targets = frame[KEY_COLUMN].map(ctx.in_targets)
    report.rows_outside_targets = int((has_key & ~in_targets).sum())

    frame = frame[has_key & in_targets]
    report.rows_keyed = len(frame)

    if ctx.polygon_keys is None:
        report.rows_joined = report.rows_keyed
    else:
        joined = frame[KEY_COLUMN].isin(ctx.polygon_keys)
        report.rows_joined = int(joined.sum())
        report.join_misses = report.rows_keyed - report.rows_joined
        misses = frame.loc[~joined, KEY_COLUMN].drop_duplicates()
        report.missed_keys = misses.head(MISSED_KEY_SAMPLE_SIZE).tolist()

    return frame.reset_index(drop=True), report


def _numbers(series: pd.Series) -> pd.Series:
    """Safe-parse a column; "no data" becomes NaN."""
    return series.map(safe_to_number).astype(float)


def _none_if_nan(value: Any) -> float | None:
    if value is None:
        return None
    f = float(value)
    return None if math.isnan(f) else f


# =============================================================================
# Mode builders
# =============================================================================

def population_values(frame: pd.DataFrame, ctx: KeyContext, filters: Filters) -> dict[str, float | None]:
    """
    Sum selected age brackets over selected sexes, per area.

    Only the last row per (area, sex) counts. An area with rows but no
    numeric contribution maps to None.
    """
    sex_col = ctx.columns.sex
    if frame.empty or sex_col not in frame.columns:
        return {}

    frame = frame.assign(_sex=frame[sex_col].map(normalize_key))
    frame = frame[frame["_sex"] != ""]
    frame = frame.drop_duplicates(subset=[KEY_COLUMN, "_sex"], keep="last")

    values: dict[str, float | None] = {k: None for k in frame[KEY_COLUMN].drop_duplicates()}

    selected = [sex for sex, on in filters.sexes.items() if on]
    ages = [c for c in dict.fromkeys(filters.age_columns) if c in frame.columns]
    chosen = frame[frame["_sex"].isin(selected)]
    if not ages or chosen.empty:
        return values

    numbers = chosen[ages].apply(_numbers)
    row_totals = numbers.sum(axis=1, min_count=1)
    totals = row_totals.groupby(chosen[KEY_COLUMN], sort=False).sum(min_count=1)

    for key, total in totals.items():
        values[key] = _none_if_nan(total)
    return values


def household_values(frame: pd.DataFrame, ctx: KeyContext, filters: Filters) -> dict[str, float | None]:
    """One metric of the selected household row type; the last row per area wins."""
    type_col = ctx.columns.household_row_type
    if frame.empty or type_col not in frame.columns:
        return {}

    rows = frame[frame[type_col].map(normalize_key) == filters.household_row_type]
    rows = rows.drop_duplicates(subset=[KEY_COLUMN], keep="last")
    if filters.household_metric not in rows.columns:
        return {k: None for k in rows[KEY_COLUMN]}

    metric = _numbers(rows[filters.household_metric])
    return {k: _none_if_nan(v) for k, v in zip(rows[KEY_COLUMN], metric)}


def business_values(frame: pd.DataFrame, ctx: KeyContext, filters: Filters) -> dict[str, float | None]:
    """Sum one metric over every row of an area (one row per industry, etc.)."""
    metric_col = filters.business_metric
    if frame.empty or not metric_col or metric_col not in frame.columns:
        return {}

    metric = _numbers(frame[metric_col])
    valid = metric.notna()
    totals = metric[valid].groupby(frame.loc[valid, KEY_COLUMN], sort=False).sum()
    return {k: float(v) for k, v in totals.items()}


def analysis_values(
    frame: pd.DataFrame, ctx: KeyContext, filters: Filters
) -> tuple[dict[str, float | None], float | None]:
    """
    Specialization coefficient of filters.analysis_metric per area.

    coefficient = (local numerator / local total) / (city numerator / city total)

    Rows with a missing numerator, a missing total, or a zero total are
    skipped. A zero or undefined city ratio returns an empty map.

    Returns:
        (values, city_ratio)
    """
    type_col = ctx.columns.household_row_type
    total_col = ctx.columns.household_total
    metric_col = filters.analysis_metric
    if frame.empty or type_col not in frame.columns:
        return {}, None
    if metric_col not in frame.columns or total_col not in frame.columns:
        return {}, None

    rows = frame[frame[type_col].map(normalize_key) == filters.household_row_type]
    numer = _numbers(rows[metric_col])
    denom = _numbers(rows[total_col])
    valid = numer.notna() & denom.notna() & (denom != 0)

    city_denom = float(denom[valid].sum())
    city_ratio = float(numer[valid].sum()) / city_denom if city_denom else None
    if not city_ratio:
        return {}, city_ratio

    local = numer[valid] / denom[valid]
    values: dict[str, float | None] = {}
    for key, ratio in zip(rows.loc[valid, KEY_COLUMN], local):
        values[key] = float(ratio) / city_ratio
    return values, city_ratio


def build_feature_values(
    mode: Mode | str,
    tables: Mapping[str, pd.DataFrame | None],
    ctx: KeyContext,
    filters: Filters,
    logger: logging.Logger | None = None,
) -> FeatureValues:
    """
    Build the {area key: value} map for a mode.

    Args:
        mode: One of Mode (or its string value).
        tables: Loaded tables keyed by dataset name ("population",
            "household", "business"). Missing datasets may be None.
        ctx: Polygon keys, widths, and the active target cities.
        filters: Active filter selection.
        logger: Optional logger for the join summary.

    Returns:
        FeatureValues with the value map, the city ratio (analysis only),
        and the join report of the source table.
    """
    mode = Mode(mode)
    dataset = MODE_TABLE[mode]
    frame, report = resolve_rows(tables.get(dataset), ctx)

    city_ratio = None
    if mode is Mode.POPULATION:
        values = population_values(frame, ctx, filters)
    elif mode is Mode.HOUSEHOLD:
        values = household_values(frame, ctx, filters)
    elif mode is Mode.BUSINESS:
        values = business_values(frame, ctx, filters)
    else:
        values, city_ratio = analysis_values(frame, ctx, filters)

    if logger and report.rows_seen:
        log_join_summary(logger, dataset, report)

    return FeatureValues(mode=mode, values=values, city_ratio=city_ratio, report=report)


# =============================================================================
# Option discovery
# =============================================================================

def discover_age_columns(df: pd.DataFrame | None, columns: ColumnConfig | None = None) -> list[str]:
    """
    Age-bracket columns of a population table, e.g. "0~4歳".

    A column qualifies when it contains the years marker and a digit, is not
    a restated aggregate, and is not one of the excluded summary columns.
    """
    columns = columns or ColumnConfig()
    if df is None or df.empty:
        return []
    out = []
    for name in df.columns:
        if not isinstance(name, str):
            continue
        if columns.age_marker not in name or not any(ch.isdigit() for ch in name):
            continue
        if columns.age_exclude_marker in name or name in columns.age_excluded_names:
            continue
        out.append(name)
    return out


def _distinct_normalized(df: pd.DataFrame | None, column: str) -> list[str]:
    if df is None or df.empty or column not in df.columns:
        return []
    values = df[column].map(normalize_key)
    return [v for v in values.drop_duplicates().tolist() if v]


def sex_options(df: pd.DataFrame | None, columns: ColumnConfig | None = None) -> list[str]:
    columns = columns or ColumnConfig()
    return _distinct_normalized(df, columns.sex)


def household_row_types(df: pd.DataFrame | None, columns: ColumnConfig | None = None) -> list[str]:
    columns = columns or ColumnConfig()
    return _distinct_normalized(df, columns.household_row_type)


def analysis_metric_options(df: pd.DataFrame | None, candidates: Iterable[str]) -> list[str]:
    """Configured numerator candidates present as columns, else all of them."""
    candidates = list(candidates)
    if df is None or df.empty:
        return candidates
    available = [c for c in candidates if c in df.columns]
    return available or candidates


def household_metric_options(
    df: pd.DataFrame | None,
    hierarchy: HouseholdNode | None,
) -> list[str]:
    """
    Selectable household metrics, in hierarchy order (depth first).

    Only hierarchy entries present as columns of the table are offered. With
    no table loaded yet every entry is offered; with no hierarchy configured
    there is nothing to choose from.
    """
    if hierarchy is None:
        return []
    keys = list(dict.fromkeys(hierarchy.keys()))
    if df is None or df.empty:
        return keys
    return [k for k in keys if k in df.columns]


def business_numeric_columns(df: pd.DataFrame | None, sample_size: int = 30) -> list[str]:
    """
    Columns of a business table that look numeric.

    Code columns are skipped. A column qualifies when at least 3 of the first
    sample_size rows parse as numbers (scanning stops after 5 hits).
    """
    if df is None or df.empty:
        return []
    sample = df.head(sample_size)
    out = []
    for name in df.columns:
        text = str(name)
        if not text or "コード" in text or "CODE" in text.upper():
            continue
        seen = 0
        for value in sample[name]:
            if safe_to_number(value) is None:
                continue
            seen += 1
            if seen >= 5:
                break
        if seen >= 3:
            out.append(name)
    return out


def default_filters(
    tables: Mapping[str, pd.DataFrame | None],
    config: AtlasConfig,
) -> Filters:
    """Initial selection: every age column, configured sexes and metrics."""
    modes = config.mode_defaults
    population = modes.get("population") or {}
    household = modes.get("household") or {}
    business = modes.get("business") or {}
    analysis = modes.get("analysis") or {}

    business_metric = business.get("metric")
    if not business_metric:
        numeric = business_numeric_columns(tables.get("business"))
        business_metric = numeric[0] if numeric else None

    household_metric = str(household.get("metric", "総数"))
    household_options = household_metric_options(tables.get("household"), config.household_hierarchy)
    if household_options and household_metric not in household_options:
        household_metric = household_options[0]

    analysis_options = analysis_metric_options(tables.get("household"), config.analysis_metric_options)
    analysis_metric = analysis.get("metric") or (analysis_options[0] if analysis_options else "")
    if analysis_options and analysis_metric not in analysis_options:
        analysis_metric = analysis_options[0]

    return Filters(
        sexes=dict(population.get("sexes") or Filters().sexes),
        age_columns=tuple(discover_age_columns(tables.get("population"), config.columns)),
        household_row_type=str(household.get("row_type", "総数")),
        household_metric=household_metric,
        business_metric=business_metric,
        analysis_metric=analysis_metric,
    )


def value_stats(
    values: Mapping[str, float | None],
    mode: Mode | str,
    keys_in_scope: Iterable[str] | None = None,
) -> ValueStats:
    """
    Colour-scale domain for the current values.

    Only polygon keys in scope count when keys_in_scope is given. With no
    values the domain is (0, 1) with no midpoint; otherwise the analysis mode is
    centred on 1.0.
    """
    mode = Mode(mode)
    if keys_in_scope is None:
        candidates = values.values()
    else:
        candidates = (values.get(normalize_key(k)) for k in keys_in_scope)
    nums = [float(v) for v in candidates if v is not None and not math.isnan(float(v))]
    if not nums:
        return ValueStats(min=0.0, max=1.0)
    mid = 1.0 if mode is Mode.ANALYSIS else None
    return ValueStats(min=min(nums), max=max(nums), mid=mid)
