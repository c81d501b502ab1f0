"""
Color palettes for the housing maps.

A palette is a plain callable: value (or a sequence of values) -> color string.
Four flavours, matching the usual choropleth options:

- LinearPalette      continuous numeric range
- BinnedPalette      equal-width intervals (or explicit bin edges)
- QuantilePalette    intervals holding equal numbers of observations
- CategoricalPalette discrete levels

Missing values and values outside the palette's domain always get the
palette's `na_color` so "no data" never borrows the bottom of the scale.
Each palette can describe itself as a LegendSpec for the map legend.
"""

from __future__ import annotations

import bisect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from plotly.colors import qualitative, sample_colorscale
from plotly.exceptions import PlotlyError

NA_COLOR = "#808080"
NA_LABEL = "No data"
DEFAULT_SCALE = "Viridis"
LEGEND_POSITIONS = ("topright", "topleft", "bottomright", "bottomleft")


@dataclass(frozen=True)
class LegendSpec:
    title: str
    labels: tuple
    colors: tuple
    position: str = "bottomright"
    opacity: float = 0.8


def sample_scale(colorscale: str, points: Sequence[float]) -> list[str]:
    """Sample a named plotly color scale ("Viridis", "YlOrRd_r", ...) at 0..1 positions."""
    try:
        return list(sample_colorscale(colorscale, [float(p) for p in points]))
    except PlotlyError as exc:
        raise ValueError(f"Unknown color scale {colorscale!r}") from exc


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def _clean_numeric(values) -> np.ndarray:
    arr = pd.to_numeric(pd.Series(list(values), dtype=object), errors="coerce").astype(float).to_numpy()
    return arr[np.isfinite(arr)]


class Palette(ABC):
    na_color: str = NA_COLOR

    @abstractmethod
    def color(self, value) -> str:
        """Color string for a single value."""

    def __call__(self, values):
        if pd.api.types.is_list_like(values):
            return [self.color(v) for v in values]
        return self.color(values)

    @abstractmethod
    def _legend_entries(self) -> list[tuple[str, str]]:
        """(label, color) rows, without the no-data entry."""

    def legend(
        self,
        title: str,
        position: str = "bottomright",
        include_na: bool = True,
        na_label: str = NA_LABEL,
        opacity: float = 0.8,
    ) -> LegendSpec:
        if position not in LEGEND_POSITIONS:
            raise ValueError(f"Legend position must be one of {LEGEND_POSITIONS}, got {position!r}")
        entries = self._legend_entries()
        if include_na:
            entries.append((na_label, self.na_color))
        labels, colors = zip(*entries) if entries else ((), ())
        return LegendSpec(title=title, labels=tuple(labels), colors=tuple(colors), position=position, opacity=opacity)


class LinearPalette(Palette):
    """Continuous mapping of [vmin, vmax] onto a color scale."""

    def __init__(self, domain: tuple[float, float], colorscale: str = DEFAULT_SCALE,
                 na_color: str = NA_COLOR, legend_steps: int = 5):
        vmin, vmax = float(domain[0]), float(domain[1])
        if not (np.isfinite(vmin) and np.isfinite(vmax)) or vmin > vmax:
            raise ValueError(f"Invalid domain {domain!r}")
        self.domain = (vmin, vmax)
        self.colorscale = colorscale
        self.na_color = na_color
        self.legend_steps = max(2, int(legend_steps))
        sample_scale(colorscale, [0.0])

    @classmethod
    def from_values(cls, values, **kwargs) -> "LinearPalette":
        clean = _clean_numeric(values)
        if clean.size == 0:
            raise ValueError("Cannot build a palette domain from no numeric values")
        return cls((clean.min(), clean.max()), **kwargs)

    def _position(self, value: float) -> float:
        vmin, vmax = self.domain
        if vmax == vmin:
            return 0.0
        return (value - vmin) / (vmax - vmin)

    def color(self, value) -> str:
        if pd.isna(value):
            return self.na_color
        value = float(value)
        vmin, vmax = self.domain
        if value < vmin or value > vmax:
            return self.na_color
        return sample_scale(self.colorscale, [self._position(value)])[0]

    def _legend_entries(self):
        vmin, vmax = self.domain
        stops = np.linspace(vmin, vmax, self.legend_steps) if vmax > vmin else np.array([vmin])
        colors = sample_scale(self.colorscale, [self._position(v) for v in stops])
        return [(_fmt(v), c) for v, c in zip(stops, colors)]


class BinnedPalette(Palette):
    """
    Maps values into intervals [e0, e1), [e1, e2), ..., [e(n-1), en].

    Bin colors are evenly spaced samples of the color scale.
    """

    def __init__(self, edges: Sequence[float], colorscale: str = DEFAULT_SCALE, na_color: str = NA_COLOR):
        edges = [float(e) for e in edges]
        if len(edges) < 2:
            raise ValueError("Need at least two bin edges")
        # a single degenerate bin [v, v] is allowed for constant data
        degenerate = len(edges) == 2 and edges[0] == edges[1]
        if not degenerate and any(b <= a for a, b in zip(edges, edges[1:])):
            raise ValueError(f"Bin edges must be strictly increasing: {edges}")
        self.edges = edges
        self.colorscale = colorscale
        self.na_color = na_color
        n = len(edges) - 1
        self.bin_colors = sample_scale(colorscale, np.linspace(0.0, 1.0, n) if n > 1 else [0.5])

    @classmethod
    def equal_width(cls, domain: tuple[float, float], bins: int = 5, **kwargs) -> "BinnedPalette":
        vmin, vmax = float(domain[0]), float(domain[1])
        if bins < 1:
            raise ValueError("bins must be >= 1")
        if vmax == vmin:
            return cls([vmin, vmax], **kwargs)
        return cls(np.linspace(vmin, vmax, bins + 1), **kwargs)

    @classmethod
    def from_values(cls, values, bins: int = 5, **kwargs) -> "BinnedPalette":
        clean = _clean_numeric(values)
        if clean.size == 0:
            raise ValueError("Cannot build bins from no numeric values")
        return cls.equal_width((clean.min(), clean.max()), bins=bins, **kwargs)

    @property
    def n_bins(self) -> int:
        return len(self.edges) - 1

    def bin_index(self, value) -> int | None:
        if pd.isna(value):
            return None
        value = float(value)
        if value < self.edges[0] or value > self.edges[-1]:
            return None
        if value == self.edges[-1]:
            return self.n_bins - 1
        return bisect.bisect_right(self.edges, value) - 1

    def color(self, value) -> str:
        idx = self.bin_index(value)
        return self.na_color if idx is None else self.bin_colors[idx]

    def _legend_entries(self):
        return [
            (f"{_fmt(lo)} – {_fmt(hi)}", c)
            for lo, hi, c in zip(self.edges, self.edges[1:], self.bin_colors)
        ]


class QuantilePalette(BinnedPalette):
    """Bins whose edges are quantiles of the observed values (equal counts per bin)."""

    @classmethod
    def from_values(cls, values, n: int = 4, **kwargs) -> "QuantilePalette":
        clean = _clean_numeric(values)
        if clean.size == 0:
            raise ValueError("Cannot build quantiles from no numeric values")
        if n < 1:
            raise ValueError("n must be >= 1")
        edges = np.unique(np.quantile(clean, np.linspace(0.0, 1.0, n + 1)))
        if edges.size == 1:
            edges = np.array([edges[0], edges[0]])
        return cls(edges, **kwargs)


class CategoricalPalette(Palette):
    """Discrete levels -> colors; unknown levels get na_color."""

    def __init__(self, levels: Sequence, colors: Sequence[str] | None = None, na_color: str = NA_COLOR):
        levels = list(dict.fromkeys(levels))
        if not levels:
            raise ValueError("Need at least one level")
        colors = list(colors or qualitative.Set2)
        self.levels = levels
        self.mapping = {lvl: colors[i % len(colors)] for i, lvl in enumerate(levels)}
        self.na_color = na_color

    @classmethod
    def from_values(cls, values, **kwargs) -> "CategoricalPalette":
        levels = sorted({v for v in values if not pd.isna(v)}, key=str)
        return cls(levels, **kwargs)

    def color(self, value) -> str:
        if pd.isna(value):
            return self.na_color
        return self.mapping.get(value, self.na_color)

    def _legend_entries(self):
        return [(str(lvl), self.mapping[lvl]) for lvl in self.levels]


PALETTE_KINDS = {
    "linear": LinearPalette,
    "binned": BinnedPalette,
    "quantile": QuantilePalette,
    "categorical": CategoricalPalette,
}


def make_palette(kind: str, values, **kwargs) -> Palette:
    """Build a palette of `kind` from the observed `values`."""
    if kind not in PALETTE_KINDS:
        raise ValueError(f"Palette kind must be one of {tuple(PALETTE_KINDS)}, got {kind!r}")
    return PALETTE_KINDS[kind].from_values(values, **kwargs)
