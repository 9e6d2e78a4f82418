"""
Tests for census_atlas.acquire module.

Tests cover:
- Fetching bytes from local paths and URLs
- Concurrent loading with per-dataset error isolation
- Cancellation and dataset filtering
"""

import threading

import pytest
import requests

from census_atlas.acquire import AcquisitionError, fetch_bytes, load_sources
from census_atlas.config import ShapeSource, Sources

POPULATION_CSV = (
    "人口等基本集計\n"
    "KEY_CODE,市区町村コード,町丁字コード,男女,0～4歳\n"
    "272110010,27211,0010,総数,30\n"
)
HOUSEHOLD_CSV = (
    "市区町村コード,町丁字コード,世帯員の年齢による世帯の種類,総数,単独世帯\n"
    "27211,10,総数,100,20\n"
)


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


@pytest.fixture
def source_files(tmp_path, sample_shapes):
    shapes = tmp_path / "shapes.geojson"
    sample_shapes.to_file(shapes, driver="GeoJSON")
    population = tmp_path / "population.csv"
    population.write_bytes(POPULATION_CSV.encode("cp932"))
    household = tmp_path / "household.csv"
    household.write_bytes(HOUSEHOLD_CSV.encode("utf-8"))
    return {"shapes": shapes, "population": population, "household": household, "dir": tmp_path}


class TestFetchBytes:
    """Tests for fetch_bytes()."""

    def test_local_file(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"abc")
        assert fetch_bytes(str(path)) == b"abc"

    def test_missing_file(self, tmp_path):
        with pytest.raises(AcquisitionError):
            fetch_bytes(tmp_path / "missing.csv")

    def test_url(self):
        session = FakeSession(FakeResponse(b"KEY_CODE\n"))
        assert fetch_bytes("https://example.com/a.csv", session=session, timeout=5) == b"KEY_CODE\n"
        assert session.calls == [("https://example.com/a.csv", {"timeout": 5})]

    def test_http_error(self):
        session = FakeSession(FakeResponse(status_code=404))
        with pytest.raises(AcquisitionError, match="Failed to fetch data"):
            fetch_bytes("https://example.com/a.csv", session=session)

    def test_network_error(self):
        session = FakeSession(requests.exceptions.ConnectionError("refused"))
        with pytest.raises(AcquisitionError, match="refused"):
            fetch_bytes("http://example.com/a.csv", session=session)


class TestLoadSources:
    """Tests for load_sources()."""

    def test_loads_everything(self, source_files):
        sources = Sources(
            shapes=(ShapeSource("27211", str(source_files["shapes"])),),
            population=str(source_files["population"]),
            household=str(source_files["household"]),
        )
        result = load_sources(sources)
        assert result.ok
        assert len(result.shapes) == 5
        assert result.table("population").loc[0, "男女"] == "総数"
        assert result.table("household").loc[0, "単独世帯"] == "20"
        assert result.table("business") is None
        assert result.boundary is None

    def test_failed_table_does_not_stop_others(self, source_files):
        sources = Sources(
            shapes=(ShapeSource("27211", str(source_files["shapes"])),),
            population=str(source_files["dir"] / "missing.csv"),
            household=str(source_files["household"]),
        )
        result = load_sources(sources)
        assert not result.ok
        assert set(result.errors) == {"population"}
        assert result.table("population") is None
        assert result.table("household") is not None
        assert result.shapes is not None

    def test_failed_shapes_recorded(self, source_files):
        sources = Sources(
            shapes=(ShapeSource("27211", str(source_files["dir"] / "missing.shp")),),
            household=str(source_files["household"]),
        )
        result = load_sources(sources)
        assert "Failed to load map data" in result.errors["shapes"]
        assert result.shapes is None
        assert result.table("household") is not None

    def test_cancelled_load_is_discarded(self, source_files):
        cancel = threading.Event()
        cancel.set()
        sources = Sources(household=str(source_files["household"]))
        assert load_sources(sources, cancel_event=cancel, datasets=["household"]) is None

    def test_dataset_filter(self, source_files):
        sources = Sources(
            shapes=(ShapeSource("27211", str(source_files["dir"] / "missing.shp")),),
            household=str(source_files["household"]),
        )
        result = load_sources(sources, datasets=["household"])
        assert result.ok
        assert result.shapes is None
        assert result.table("household") is not None

    def test_unknown_dataset(self):
        with pytest.raises(ValueError, match="Unknown datasets"):
            load_sources(Sources(), datasets=["weather"])

    def test_logs_failures(self, source_files, caplog):
        import logging
        logger = logging.getLogger("test_acquire")
        sources = Sources(population=str(source_files["dir"] / "missing.csv"))
        with caplog.at_level(logging.WARNING, logger="test_acquire"):
            load_sources(sources, datasets=["population"], logger=logger)
        assert any("Failed to load population" in r.getMessage() for r in caplog.records)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
