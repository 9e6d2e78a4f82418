"""
CSV table loading for e-Stat small-area tables.

The e-Stat CSVs start with a few lines of title and notes before the real
header, and often carry a leading row-number column. The loader finds the
header, parses everything as strings, and drops the junk columns. Numbers are
interpreted later by consumers through keys.safe_to_number().
"""

import csv
import io
import logging
import re

import pandas as pd

from census_atlas.config import CsvConfig, EncodingConfig
from census_atlas.encoding import decode_smart
from census_atlas.logging_utils import log_event

_DIGITS_ONLY = re.compile(r"^\d+$")
_PANDAS_UNNAMED = re.compile(r"^Unnamed: \d+(_level_\d+)?$")


def find_header_row(lines: list[str], config: CsvConfig | None = None) -> int:
    """
    Index of the header line among the leading metadata lines.

    Only the first config.header_scan_lines lines are scanned. A line is the
    header when it contains every "all_of" marker or any "any_of" marker.
    Defaults to 0.
    """
    config = config or CsvConfig()
    for i, line in enumerate(lines[: config.header_scan_lines]):
        line = line or ""
        if config.header_all_of and all(m in line for m in config.header_all_of):
            return i
        if any(m in line for m in config.header_any_of):
            return i
    return 0


def _is_junk_column(name: object) -> bool:
    text = str(name)
    trimmed = text.strip()
    if not trimmed:
        return True
    if _PANDAS_UNNAMED.match(trimmed):
        return True
    return bool(_DIGITS_ONLY.match(text))


def parse_csv_text(
    text: str,
    config: CsvConfig | None = None,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Parse decoded CSV text into a strings-only DataFrame.

    No data row is rejected except empty ones. Cells beyond the header width
    (a trailing comma, a stray extra field) are cut off and the row is kept;
    missing trailing cells become "". Blank lines and rows with no content are
    dropped.

    Returns:
        DataFrame with object dtype columns. Empty when there is no data.
    """
    config = config or CsvConfig()
    lines = re.split(r"\r?\n", text)
    header_idx = find_header_row(lines, config)
    sliced = "\n".join(lines[header_idx:])

    if not sliced.strip():
        return pd.DataFrame()

    header_width = len(next(csv.reader([lines[header_idx]]), []))
    long_rows: list[list[str]] = []

    def _on_long_row(fields: list[str]) -> list[str]:
        long_rows.append(fields)
        return fields[:header_width]

    try:
        df = pd.read_csv(
            io.StringIO(sliced),
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=True,
            index_col=False,
            on_bad_lines=_on_long_row,
            engine="python",
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame()

    junk = [c for c in df.columns if _is_junk_column(c)]
    if junk:
        df = df.drop(columns=junk)

    df = df.fillna("")
    if len(df.columns) and len(df):
        non_empty = df.apply(lambda col: col.str.strip() != "").any(axis=1)
        df = df[non_empty].reset_index(drop=True)

    if logger:
        if long_rows:
            log_event(logger, logging.WARNING,
                      f"{len(long_rows):,} rows had more cells than the {header_width} header columns; "
                      f"extra cells were dropped",
                      "csv_long_rows", rows=len(long_rows), header_width=header_width)
        log_event(logger, logging.INFO,
                  f"Parsed CSV: {len(df):,} rows, {len(df.columns)} columns "
                  f"(header at line {header_idx})",
                  "csv_parsed", header_row=header_idx, rows=len(df),
                  columns=len(df.columns), dropped_columns=[str(c) for c in junk],
                  long_rows=len(long_rows))

    return df


def load_csv_bytes(
    buf: bytes,
    encoding_config: EncodingConfig | None = None,
    csv_config: CsvConfig | None = None,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """Decode CSV bytes (UTF-8 or cp932) and parse them."""
    text = decode_smart(buf, encoding_config, logger=logger)
    return parse_csv_text(text, csv_config, logger=logger)
