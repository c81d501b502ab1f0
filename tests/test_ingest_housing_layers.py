"""Tests for the source loaders and the batch CLI."""

from __future__ import annotations

import pandas as pd
import pytest
import requests

from create_sample_neighborhoods import create_sample_neighborhoods
from neighborhood_aggregator import MalformedPointError, aggregate_points_to_neighborhoods
from scripts.ingest import ingest_housing_layers as ingest


@pytest.fixture
def sample_dir(tmp_path):
    create_sample_neighborhoods(rows=3, cols=3, n_projects=40, seed=1, out_dir=tmp_path)
    return tmp_path


class TestLoaders:
    def test_normalize_coordinate_aliases(self) -> None:
        df = pd.DataFrame({"Latitude": [1.0], "LONGITUDE": [2.0], "units": [3]})
        out = ingest.normalize_coordinate_columns(df)
        assert list(out.columns) == ["lat", "lon", "units"]

    def test_normalize_prefers_existing_lat_lon(self, two_squares) -> None:
        df = pd.DataFrame({"x": [1.0], "lon": [0.5], "lat": [0.5], "affordable_units": [4]})
        out = ingest.normalize_coordinate_columns(df)
        assert list(out.columns) == ["x", "lon", "lat", "affordable_units"]
        result = aggregate_points_to_neighborhoods(out, two_squares)
        assert result.aggregates["affordable_units"].tolist() == [4]

    def test_normalize_rejects_duplicate_columns(self) -> None:
        df = pd.DataFrame([[1.0, 2.0, 3.0]], columns=["lat", "lon", "lon"])
        with pytest.raises(MalformedPointError, match="Duplicate"):
            ingest.normalize_coordinate_columns(df)

    def test_main_handles_x_lon_lat_csv(self, sample_dir, tmp_path) -> None:
        projects = pd.read_csv(sample_dir / "housing_projects.csv")
        projects.insert(0, "x", range(len(projects)))
        path = tmp_path / "with_x.csv"
        projects.to_csv(path, index=False)
        code = ingest.main([
            "--points", str(path),
            "--neighborhoods", str(sample_dir / "neighborhoods.geojson"),
            "--out-dir", str(tmp_path / "out"),
        ])
        assert code == 0

    def test_normalize_requires_coordinates(self) -> None:
        with pytest.raises(MalformedPointError):
            ingest.normalize_coordinate_columns(pd.DataFrame({"units": [1]}))

    def test_fetch_local_keeps_bad_rows(self, tmp_path) -> None:
        path = tmp_path / "projects.csv"
        pd.DataFrame({"lat": [1.0, None], "lng": [2.0, 3.0]}).to_csv(path, index=False)
        df = ingest.fetch_housing_points(path)
        assert len(df) == 2
        assert {"lat", "lon"}.issubset(df.columns)

    def test_fetch_missing_file(self, tmp_path) -> None:
        with pytest.raises(RuntimeError):
            ingest.fetch_housing_points(tmp_path / "nope.csv")

    def test_fetch_url_falls_back_to_local(self, tmp_path, monkeypatch) -> None:
        fallback = tmp_path / "fallback.csv"
        pd.DataFrame({"latitude": [1.0], "longitude": [2.0]}).to_csv(fallback, index=False)

        def offline(*args, **kwargs):
            raise requests.ConnectionError("offline")

        monkeypatch.setattr(ingest.requests, "get", offline)
        df = ingest.fetch_housing_points("https://example.com/projects.csv", raw_path=fallback)
        assert df["lat"].tolist() == [1.0]

    def test_fetch_url_without_fallback(self, monkeypatch) -> None:
        def offline(*args, **kwargs):
            raise requests.ConnectionError("offline")

        monkeypatch.setattr(ingest.requests, "get", offline)
        with pytest.raises(RuntimeError):
            ingest.fetch_housing_points("https://example.com/projects.csv", raw_path=None)

    def test_load_neighborhoods(self, sample_dir) -> None:
        gdf = ingest.load_neighborhood_gdf(sample_dir / "neighborhoods.geojson")
        assert list(gdf.columns) == ["neighborhood", "geometry"]
        assert len(gdf) == 9
        assert gdf.crs.to_epsg() == 4326

    def test_load_neighborhoods_missing_id(self, sample_dir) -> None:
        with pytest.raises(RuntimeError, match="name"):
            ingest.load_neighborhood_gdf(sample_dir / "neighborhoods.geojson", id_col="name")

    def test_config_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("HOUSING_POINTS_URL", "https://example.com/p.csv")
        config = ingest.config_from_env(neighborhoods_source="n.geojson")
        assert config.points_source == "https://example.com/p.csv"
        assert config.neighborhoods_source == "n.geojson"


class TestMain:
    def test_writes_outputs(self, sample_dir, tmp_path) -> None:
        out_dir = tmp_path / "out"
        code = ingest.main([
            "--points", str(sample_dir / "housing_projects.csv"),
            "--neighborhoods", str(sample_dir / "neighborhoods.geojson"),
            "--out-dir", str(out_dir),
            "--map-html", str(tmp_path / "map.html"),
        ])
        assert code == 0
        units = pd.read_csv(out_dir / "neighborhood_units.csv")
        joined = pd.read_csv(out_dir / "joined_projects.csv")
        assert len(joined) == 40
        assert units["neighborhood"].notna().all()
        assert (out_dir / "enriched_neighborhoods.geojson").exists()
        assert (tmp_path / "map.html").exists()

    def test_malformed_points_exit_code(self, sample_dir, tmp_path, capsys) -> None:
        bad = pd.read_csv(sample_dir / "housing_projects.csv")
        bad.loc[0, "lat"] = None
        bad_path = tmp_path / "bad.csv"
        bad.to_csv(bad_path, index=False)
        code = ingest.main([
            "--points", str(bad_path),
            "--neighborhoods", str(sample_dir / "neighborhoods.geojson"),
            "--out-dir", str(tmp_path / "out"),
        ])
        assert code == 1
        assert "[ingest] Error" in capsys.readouterr().out
        assert not (tmp_path / "out").exists()

    def test_crs_mismatch_needs_explicit_reprojection(self, sample_dir, tmp_path) -> None:
        neighborhoods = ingest.load_neighborhood_gdf(sample_dir / "neighborhoods.geojson")
        projected = tmp_path / "projected.gpkg"
        neighborhoods.to_crs("EPSG:3857").to_file(projected, driver="GPKG")
        args = [
            "--points", str(sample_dir / "housing_projects.csv"),
            "--neighborhoods", str(projected),
            "--out-dir", str(tmp_path / "out"),
        ]
        assert ingest.main(args) == 1
        assert ingest.main(args + ["--to-crs", "EPSG:4326"]) == 0
