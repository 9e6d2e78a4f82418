"""
Tests for census_atlas.logging_utils and census_atlas.hashing.

Tests cover:
- JSONL log records with event type and context
- Join summary log level
- Stable fractions used for deterministic bearings
- Metadata sidecars
"""

import json
import logging

import pytest

from census_atlas.features import JoinReport
from census_atlas.hashing import hash_dict, stable_fraction, write_metadata_sidecar
from census_atlas.logging_utils import get_logger, log_event, log_join_summary


def _read_jsonl(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


class TestJsonlLogging:
    """Tests for get_logger() and the JSONL handler."""

    def test_writes_structured_records(self, tmp_path):
        logger = get_logger("test_jsonl", run_id="run_a", log_dir=tmp_path)
        log_event(logger, logging.INFO, "Parsed 茨木市", "csv_parsed", rows=3)

        records = _read_jsonl(tmp_path / "test_jsonl_run_a.jsonl")
        parsed = [r for r in records if r.get("event_type") == "csv_parsed"]
        assert len(parsed) == 1
        assert parsed[0]["run_id"] == "run_a"
        assert parsed[0]["context"] == {"rows": 3}
        assert parsed[0]["message"] == "Parsed 茨木市"

    def test_logger_is_reused(self, tmp_path):
        first = get_logger("test_reuse", run_id="run_b", log_dir=tmp_path)
        second = get_logger("test_reuse", run_id="run_b", log_dir=tmp_path)
        assert first is second


class TestJoinSummary:
    """Tests for log_join_summary()."""

    @pytest.mark.parametrize("joined,misses,level", [(9, 1, logging.INFO), (4, 6, logging.WARNING)])
    def test_level(self, caplog, joined, misses, level):
        logger = logging.getLogger("test_join_summary")
        report = JoinReport(rows_seen=10, rows_keyed=10, rows_joined=joined, join_misses=misses)
        with caplog.at_level(logging.INFO, logger="test_join_summary"):
            log_join_summary(logger, "population", report)
        assert caplog.records[-1].levelno == level
        assert caplog.records[-1].event_type == "join_summary"


class TestStableFraction:
    """Tests for stable_fraction()."""

    def test_deterministic(self):
        assert stable_fraction("A亭茨木市元町1-1") == stable_fraction("A亭茨木市元町1-1")

    @pytest.mark.parametrize("text", ["", "a", "茨木", "x" * 1000])
    def test_in_unit_interval(self, text):
        assert 0.0 <= stable_fraction(text) < 1.0

    def test_known_value(self):
        # sha256("abc") starts with ba7816bf
        assert stable_fraction("abc") == pytest.approx(0xba7816bf / 2 ** 32)


class TestMetadataSidecar:
    """Tests for write_metadata_sidecar()."""

    def test_sidecar_contents(self, tmp_path):
        output = tmp_path / "grid.parquet"
        output.write_bytes(b"data")
        source = tmp_path / "points.parquet"
        source.write_bytes(b"points")

        sidecar = write_metadata_sidecar(
            output_path=output,
            run_id="run_c",
            metadata_dir=tmp_path / "metadata",
            input_files=[source, "https://example.com/h03.csv"],
            config={"grid": {"cell_size_m": 250}},
            parameters={"cell_size_m": 250},
            row_count=12,
            extra={"non_empty_cells": 3},
        )

        assert sidecar == tmp_path / "metadata" / "grid_metadata.json"
        meta = json.loads(sidecar.read_text(encoding="utf-8"))
        assert meta["run_id"] == "run_c"
        assert meta["row_count"] == 12
        assert meta["config_hash"] == hash_dict({"grid": {"cell_size_m": 250}})
        assert meta["input_file_hashes"][str(source)] is not None
        assert meta["input_file_hashes"]["https://example.com/h03.csv"] is None
        assert meta["extra"] == {"non_empty_cells": 3}
        assert "output_hash" in meta

    def test_sidecar_next_to_output(self, tmp_path):
        sidecar = write_metadata_sidecar(tmp_path / "points.parquet", run_id="run_d")
        assert sidecar == tmp_path / "points_metadata.json"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
