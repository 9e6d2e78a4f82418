"""
Pytest configuration and shared fixtures.

This module provides common fixtures used across test modules: a parsed
config, a small set of town-block polygons, and census tables shaped like
the e-Stat small-area CSVs after parsing (every cell a string).
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pandas as pd
import geopandas as gpd
from shapely.geometry import box


IBARAKI = "27211"
TAKATSUKI = "27207"


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    from census_atlas.paths import get_project_root
    return get_project_root()


@pytest.fixture(scope="session")
def params_config():
    """Load the params.yml configuration."""
    from census_atlas.io_utils import read_yaml
    from census_atlas.paths import paths
    return read_yaml(paths.params_yml)


@pytest.fixture(scope="session")
def stations_config():
    """Load the stations.yml configuration."""
    from census_atlas.io_utils import read_yaml
    from census_atlas.paths import paths
    return read_yaml(paths.stations_yml)


@pytest.fixture
def atlas_config(params_config, stations_config):
    """AtlasConfig parsed from the project's config files."""
    from census_atlas.config import parse_config
    return parse_config(params_config, stations_config)


def _block(lon: float, lat: float, size: float = 0.005):
    return box(lon, lat, lon + size, lat + size)


@pytest.fixture
def sample_shapes():
    """
    Five town blocks: three in Ibaraki (4-digit suffixes), two in Takatsuki.

    One Takatsuki key uses a 6-digit suffix so that two suffix widths exist.
    """
    return gpd.GeoDataFrame(
        {
            "KEY_CODE": ["272110010", "272110020", "272110030", "272070010", "27207000100"],
            "CITY_NAME": ["茨木市", "茨木市", "茨木市", "高槻市", "高槻市"],
            "S_NAME": ["元町", "新庄町", "", "城北町", "本町"],
        },
        geometry=[
            _block(135.560, 34.810),
            _block(135.566, 34.810),
            _block(135.572, 34.810),
            _block(135.610, 34.850),
            _block(135.616, 34.850),
        ],
        crs="EPSG:4326",
    )


@pytest.fixture
def population_df():
    """Population table (h03 style): one row per area and sex."""
    return pd.DataFrame({
        "市区町村コード": ["27211"] * 6 + ["27207"] * 2,
        "町丁字コード": ["10", "10", "10", "20", "20", "20", "10", "10"],
        "男女": ["総数", "男", "女", "総数", "男", "女", "男", "女"],
        "0～4歳": ["30", "10", "20", "12", "5", "7", "3", "4"],
        "5～9歳": ["60", "25", "35", "-", "-", "-", "1", "2"],
        "総年齢": ["999", "999", "999", "999", "999", "999", "999", "999"],
        "（再掲）15歳未満": ["90", "35", "55", "12", "5", "7", "4", "6"],
    })


@pytest.fixture
def household_df():
    """Household table (h06 style): one row per area and household row type."""
    return pd.DataFrame({
        "市区町村コード": ["27211", "27211", "27211", "27211"],
        "町丁字コード": ["10", "10", "20", "20"],
        "世帯員の年齢による世帯の種類": ["総数", "65歳以上の世帯員のいる世帯", "総数", "65歳以上の世帯員のいる世帯"],
        "総数": ["100", "40", "200", "90"],
        "単独世帯": ["20", "10", "60", "30"],
    })


@pytest.fixture
def restaurants_df():
    """Restaurant listings: one geocoded, one near a station, one by address only."""
    return pd.DataFrame({
        "店名": ["A亭", "B食堂", "C屋", "D軒"],
        "住所": ["大阪府茨木市元町1-1", "大阪府茨木市新庄町2-2", "大阪府高槻市城北町3-3", "東京都千代田区1-1"],
        "緯度": ["34.815", "", "", ""],
        "経度": ["135.565", "", "", ""],
        "最寄り駅": ["", "茨木駅 徒歩5分（0.8km）", "", "不明"],
        "ジャンル": ["和食", "洋食", "中華", "カフェ"],
        "評価": ["3.5", "-", "3.1", ""],
    })


@pytest.fixture
def temp_parquet_file(tmp_path):
    """Create a temporary parquet file path."""
    return tmp_path / "test_output.parquet"


@pytest.fixture
def temp_json_file(tmp_path):
    """Create a temporary JSON file path."""
    return tmp_path / "test_output.json"


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "smoke: mark test as smoke test (quick sanity checks)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (may take > 10 seconds)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires full pipeline data)"
    )
