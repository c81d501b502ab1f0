"""Shared fixtures: unit-square neighborhoods and a few housing projects."""

from __future__ import annotations

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import Polygon, box

from create_sample_neighborhoods import create_sample_neighborhoods


@pytest.fixture
def two_squares() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"neighborhood": ["N1", "N2"]},
        geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)],
        crs="EPSG:4326",
    )


@pytest.fixture
def three_squares() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"neighborhood": ["N1", "N2", "N3"]},
        geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1), box(2, 0, 3, 1)],
        crs="EPSG:4326",
    )


@pytest.fixture
def square_with_hole() -> gpd.GeoDataFrame:
    shell = [(0, 0), (4, 0), (4, 4), (0, 4)]
    hole = [(1, 1), (3, 1), (3, 3), (1, 3)]
    return gpd.GeoDataFrame(
        {"neighborhood": ["Ring", "Core"]},
        geometry=[Polygon(shell, [hole]), box(1, 1, 3, 3)],
        crs="EPSG:4326",
    )


@pytest.fixture
def projects() -> pd.DataFrame:
    return pd.DataFrame({
        "project_name": ["Elm Court", "Oak Row", "Far Away"],
        "lon": [0.5, 1.5, 5.0],
        "lat": [0.5, 0.5, 5.0],
        "affordable_units": [10, 5, 3],
        "status": ["Completed", "Pipeline", "Completed"],
    })


@pytest.fixture
def sample_layers():
    return create_sample_neighborhoods(rows=4, cols=5, n_projects=80, seed=7)
