"""Tests for the plotly map layers."""

from __future__ import annotations

import pytest

from housing_map import (
    MapView,
    add_circle_markers,
    add_legend,
    add_markers,
    add_polygons,
    add_tile_layer,
    base_map,
    build_housing_map,
)
from neighborhood_aggregator import aggregate_points_to_neighborhoods, build_point_geometry
from palettes import NA_COLOR, BinnedPalette, CategoricalPalette


class TestMapView:
    def test_from_bounds_centers(self) -> None:
        view = MapView.from_bounds((0.0, 0.0, 2.0, 1.0))
        assert view.lat == 0.5
        assert view.lon == 1.0
        assert 1.0 <= view.zoom <= 16.0


class TestLayers:
    def setup_method(self) -> None:
        self.fig = base_map(MapView(lat=0.5, lon=1.0, zoom=8), style="open-street-map")

    def test_base_map(self) -> None:
        assert self.fig.layout.map.style == "open-street-map"
        assert self.fig.layout.map.center.lat == 0.5
        assert self.fig.layout.map.zoom == 8

    def test_unknown_style(self) -> None:
        with pytest.raises(ValueError):
            base_map(MapView(0, 0), style="neon")

    def test_tile_layer(self) -> None:
        add_tile_layer(self.fig, "https://tiles.example.com/{z}/{x}/{y}.png", attribution="Example")
        layers = self.fig.layout.map.layers
        assert len(layers) == 1
        assert layers[0].source[0].startswith("https://tiles.example.com")
        assert layers[0].sourceattribution == "Example"

    def test_markers(self, projects) -> None:
        add_markers(self.fig, build_point_geometry(projects), label_col="project_name")
        trace = self.fig.data[0]
        assert trace.type == "scattermap"
        assert list(trace.lon) == [0.5, 1.5, 5.0]
        assert list(trace.text) == ["Elm Court", "Oak Row", "Far Away"]

    def test_circle_markers_use_palette(self, projects) -> None:
        palette = CategoricalPalette(["Completed", "Pipeline"], colors=["#111111", "#222222"])
        add_circle_markers(self.fig, build_point_geometry(projects), palette, "status", radius=5)
        marker = self.fig.data[0].marker
        assert list(marker.color) == ["#111111", "#222222", "#111111"]
        assert marker.size == 10

    def test_polygons_one_trace_per_color(self, two_squares) -> None:
        polygons = two_squares.assign(units=[3.0, None])
        palette = BinnedPalette([0, 5, 10])
        add_polygons(self.fig, polygons, palette, "units", "neighborhood")
        assert len(self.fig.data) == 2
        fills = {trace.colorscale[0][1]: list(trace.locations) for trace in self.fig.data}
        assert fills[NA_COLOR] == ["1"]
        assert fills[palette(3.0)] == ["0"]

    def test_polygons_need_lonlat(self, two_squares) -> None:
        projected = two_squares.to_crs("EPSG:3857").assign(units=[1, 2])
        with pytest.raises(ValueError, match="EPSG:4326"):
            add_polygons(self.fig, projected, BinnedPalette([0, 5]), "units", "neighborhood")

    def test_legend_annotation(self) -> None:
        legend = BinnedPalette([0, 10, 20]).legend("Units", position="bottomleft")
        add_legend(self.fig, legend)
        note = self.fig.layout.annotations[0]
        assert "Units" in note.text
        assert "No data" in note.text
        assert note.xanchor == "left"
        assert note.yanchor == "bottom"


class TestBuildHousingMap:
    def test_choropleth_with_status_markers(self, projects, two_squares) -> None:
        result = aggregate_points_to_neighborhoods(projects, two_squares)
        fig = build_housing_map(result, palette_kind="quantile", bins=4)
        types = [trace.type for trace in fig.data]
        assert types.count("choroplethmap") == 2
        assert types.count("scattermap") == 1
        assert len(fig.layout.annotations) == 2

    def test_neighborhood_without_data_drawn_neutral(self, projects, three_squares) -> None:
        records = projects.assign(lon=[0.2, 0.8, 1.5], lat=[0.2, 0.8, 0.5])
        result = aggregate_points_to_neighborhoods(records, three_squares)
        fig = build_housing_map(result, palette_kind="binned", bins=3, show_points=False)
        na_traces = [t for t in fig.data if t.type == "choroplethmap" and t.colorscale[0][1] == NA_COLOR]
        assert len(na_traces) == 1
        assert list(na_traces[0].locations) == ["2"]

    def test_unknown_palette(self, projects, two_squares) -> None:
        result = aggregate_points_to_neighborhoods(projects, two_squares)
        with pytest.raises(ValueError):
            build_housing_map(result, palette_kind="categorical")
