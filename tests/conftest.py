from __future__ import annotations

from typing import Dict

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from aim_sample import config


def make_points(counts: Dict[int, int], *, project: str = "BLM_AIM", seed: int = 0) -> pd.DataFrame:
    """Tabular AIM-style headers: ``counts[year]`` plots per year, scattered over the West."""
    rng = np.random.default_rng(seed)
    rows = []
    for year, n in counts.items():
        for i in range(n):
            rows.append(
                {
                    "PrimaryKey": f"PK{year}_{i:05d}",
                    "Longitude_NAD83": rng.uniform(-120.0, -104.0),
                    "Latitude_NAD83": rng.uniform(33.0, 46.0),
                    "DateVisited": f"{year}-06-{(i % 28) + 1:02d}T10:30:00",
                    "ProjectKey": project,
                }
            )
    return pd.DataFrame(rows)


def make_records(counts: Dict[int, int]) -> gpd.GeoDataFrame:
    """Eligible records already in the equal-area CRS, as the sampler sees them."""
    df = make_points(counts)
    gdf = gpd.GeoDataFrame(
        {
            "PrimaryKey": df["PrimaryKey"].astype("string"),
            "year": df["DateVisited"].str[:4].astype(int).astype("Int64"),
        },
        geometry=gpd.points_from_xy(df["Longitude_NAD83"], df["Latitude_NAD83"]),
        crs=config.CRS_NAD83,
    )
    return gdf.to_crs(config.CRS_ALBERS)


@pytest.fixture
def points_csv(tmp_path):
    def _write(counts: Dict[int, int], name: str = "points.csv", **kwargs):
        path = tmp_path / name
        make_points(counts, **kwargs).to_csv(path, index=False)
        return path

    return _write
