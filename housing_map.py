"""
Interactive housing map built as a plotly figure on a MapLibre `map` subplot.

The pieces mirror how these maps are usually assembled step by step:
set a view and base tiles, add extra tile layers, drop markers or styled
circle markers, fill polygons from a palette, then add legends.
`build_housing_map` stacks them into the affordable-units choropleth.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass

import geopandas as gpd
import pandas as pd
import plotly.graph_objects as go

from neighborhood_aggregator import NeighborhoodAggregation
from palettes import (
    CategoricalPalette,
    LegendSpec,
    Palette,
    make_palette,
)

BASE_STYLES = (
    "open-street-map",
    "carto-positron",
    "carto-darkmatter",
    "carto-voyager",
    "white-bg",
)
DEFAULT_STYLE = "carto-positron"
MARKER_COLOR = "#1f77b4"

_LEGEND_ANCHORS = {
    "topright": dict(x=0.99, y=0.99, xanchor="right", yanchor="top"),
    "topleft": dict(x=0.01, y=0.99, xanchor="left", yanchor="top"),
    "bottomright": dict(x=0.99, y=0.02, xanchor="right", yanchor="bottom"),
    "bottomleft": dict(x=0.01, y=0.02, xanchor="left", yanchor="bottom"),
}


@dataclass(frozen=True)
class MapView:
    lat: float
    lon: float
    zoom: float = 11

    @classmethod
    def from_bounds(cls, bounds) -> "MapView":
        """Center on (minx, miny, maxx, maxy) with a zoom that roughly fits the extent."""
        minx, miny, maxx, maxy = (float(b) for b in bounds)
        span = max(maxx - minx, maxy - miny, 1e-6)
        zoom = max(1.0, min(16.0, math.log2(360.0 / span)))
        return cls(lat=(miny + maxy) / 2.0, lon=(minx + maxx) / 2.0, zoom=round(zoom, 1))


def _require_lonlat(gdf: gpd.GeoDataFrame) -> None:
    if gdf.crs is not None and gdf.crs.to_epsg() != 4326:
        raise ValueError(f"Map layers must be in EPSG:4326, got {gdf.crs.to_string()}; call to_crs(4326) first")


def base_map(view: MapView, style: str = DEFAULT_STYLE, height: int = 600) -> go.Figure:
    """Empty figure with the view and base tiles set."""
    if style not in BASE_STYLES:
        raise ValueError(f"Base style must be one of {BASE_STYLES}, got {style!r}")
    fig = go.Figure()
    fig.update_layout(
        map=dict(style=style, center=dict(lat=view.lat, lon=view.lon), zoom=view.zoom),
        margin=dict(l=0, r=0, t=0, b=0),
        height=height,
        showlegend=False,
    )
    return fig


def add_tile_layer(fig: go.Figure, url: str, attribution: str = "", below: str = "traces") -> go.Figure:
    """Add a raster XYZ tile layer ({z}/{x}/{y} url) on top of the base style."""
    layers = list(fig.layout.map.layers or [])
    layers.append(dict(sourcetype="raster", source=[url], sourceattribution=attribution, below=below))
    fig.update_layout(map_layers=layers)
    return fig


def add_markers(
    fig: go.Figure,
    points: gpd.GeoDataFrame,
    label_col: str | None = None,
    color: str = MARKER_COLOR,
    size: int = 9,
    name: str = "Projects",
) -> go.Figure:
    """Plain markers with the label shown on hover."""
    _require_lonlat(points)
    labels = points[label_col].astype(str).tolist() if label_col else None
    fig.add_trace(go.Scattermap(
        lat=points.geometry.y, lon=points.geometry.x,
        mode="markers",
        marker=go.scattermap.Marker(size=size, color=color),
        text=labels,
        hoverinfo="text" if labels else "lat+lon",
        name=name,
    ))
    return fig


def add_circle_markers(
    fig: go.Figure,
    points: gpd.GeoDataFrame,
    palette: Palette,
    color_col: str,
    radius: float = 6,
    label_col: str | None = None,
    opacity: float = 0.85,
    name: str = "Projects",
) -> go.Figure:
    """Circle markers colored by `palette(points[color_col])`."""
    _require_lonlat(points)
    colors = palette(points[color_col].tolist())
    hover = [
        f"{label}<br>{color_col}: {'No data' if pd.isna(value) else value}"
        for label, value in zip(
            points[label_col].astype(str) if label_col else [""] * len(points),
            points[color_col],
        )
    ]
    fig.add_trace(go.Scattermap(
        lat=points.geometry.y, lon=points.geometry.x,
        mode="markers",
        marker=go.scattermap.Marker(size=radius * 2, color=colors, opacity=opacity),
        text=hover,
        hoverinfo="text",
        name=name,
    ))
    return fig


def add_polygons(
    fig: go.Figure,
    polygons: gpd.GeoDataFrame,
    palette: Palette,
    value_col: str,
    id_col: str,
    opacity: float = 0.6,
    line_color: str = "white",
) -> go.Figure:
    """
    Fill each polygon with palette(value). One trace per color, so nulls keep
    the palette's na_color instead of being pushed onto a continuous scale.
    """
    _require_lonlat(polygons)
    shapes = polygons.reset_index(drop=True)
    geojson = json.loads(shapes.geometry.to_json())
    colors = pd.Series(palette(shapes[value_col].tolist()), index=shapes.index)
    hover = [
        f"{pid}<br>{value_col}: {'No data' if pd.isna(v) else v}"
        for pid, v in zip(shapes[id_col], shapes[value_col])
    ]

    for color, members in colors.groupby(colors, sort=False):
        idx = members.index.tolist()
        fig.add_trace(go.Choroplethmap(
            geojson=geojson,
            locations=[str(i) for i in idx],
            z=[0] * len(idx),
            colorscale=[[0, color], [1, color]],
            showscale=False,
            marker=dict(opacity=opacity, line=dict(color=line_color, width=1)),
            text=[hover[i] for i in idx],
            hoverinfo="text",
            name=str(color),
        ))
    return fig


def add_legend(fig: go.Figure, legend: LegendSpec) -> go.Figure:
    """Legend box drawn as an annotation in one of the four map corners."""
    anchor = _LEGEND_ANCHORS.get(legend.position)
    if anchor is None:
        raise ValueError(f"Unknown legend position {legend.position!r}")
    rows = [f"<span style='color:{c}'>■</span> {label}" for label, c in zip(legend.labels, legend.colors)]
    fig.add_annotation(
        text=f"<b>{legend.title}</b><br>" + "<br>".join(rows),
        xref="paper", yref="paper",
        showarrow=False,
        align="left",
        bgcolor=f"rgba(255,255,255,{legend.opacity})",
        bordercolor="#cccccc",
        borderwidth=1,
        borderpad=6,
        **anchor,
    )
    return fig


def build_housing_map(
    result: NeighborhoodAggregation,
    palette_kind: str = "quantile",
    bins: int = 4,
    colorscale: str = "YlOrRd",
    status_col: str | None = "status",
    label_col: str | None = "project_name",
    style: str = DEFAULT_STYLE,
    show_points: bool = True,
    view: MapView | None = None,
) -> go.Figure:
    """Choropleth of affordable units per neighborhood with projects as status-colored circles."""
    enriched = result.enriched
    values = enriched[result.value_col]
    view = view or MapView.from_bounds(enriched.total_bounds)
    fig = base_map(view, style=style)

    if values.notna().any():
        if palette_kind == "linear":
            palette = make_palette("linear", values, colorscale=colorscale)
        elif palette_kind == "binned":
            palette = make_palette("binned", values, bins=bins, colorscale=colorscale)
        elif palette_kind == "quantile":
            palette = make_palette("quantile", values, n=bins, colorscale=colorscale)
        else:
            raise ValueError(f"Unsupported choropleth palette {palette_kind!r}")
        add_polygons(fig, enriched, palette, result.value_col, result.id_col)
        add_legend(fig, palette.legend("Affordable units", position="bottomright"))
    else:
        add_polygons(fig, enriched, CategoricalPalette(["_"]), result.value_col, result.id_col)

    points = result.joined
    if show_points and not points.empty:
        label = label_col if label_col in points.columns else None
        if status_col and status_col in points.columns and points[status_col].notna().any():
            status_palette = CategoricalPalette.from_values(points[status_col])
            add_circle_markers(fig, points, status_palette, status_col, label_col=label, name="Projects")
            add_legend(fig, status_palette.legend("Project status", position="topright", include_na=False))
        else:
            add_markers(fig, points, label_col=label)
    return fig
