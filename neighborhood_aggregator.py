"""
neighborhood_aggregator.py

Assigns affordable housing projects to the neighborhood that contains them and
rolls the unit counts up to the neighborhood layer:

1) Point geometry from raw longitude/latitude columns,
2) Point-in-polygon containment join (left join, every project survives),
3) Grouped sum of affordable units per neighborhood,
4) Re-join of the sums onto every neighborhood polygon for choropleth coloring.

Neighborhoods without any project keep a null value so the map can tell
"no data" apart from "zero units".
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass

import geopandas as gpd
import numpy as np
import pandas as pd

from scripts.utils.data_quality import flag_invalid_coordinates

DEFAULT_CRS = "EPSG:4326"
PREDICATES = ("intersects", "within")
JOIN_METHODS = ("index", "naive")


# -----------------------------
# Errors and warnings
# -----------------------------
class MalformedPointError(ValueError):
    """A point record has missing, non-numeric or out-of-range coordinates."""

    def __init__(self, message: str, rows: list | None = None):
        super().__init__(message)
        self.rows = list(rows or [])


class CoordinateSystemMismatch(ValueError):
    """Point and polygon layers are not in the same coordinate reference system."""


class AmbiguousContainmentWarning(UserWarning):
    """A point fell inside more than one polygon."""


class UnmatchedPointsWarning(UserWarning):
    """Points outside every polygon were left out of an aggregate."""


# -----------------------------
# Config
# -----------------------------
@dataclass(frozen=True)
class AggregatorConfig:
    id_col: str = "neighborhood"
    value_col: str = "affordable_units"
    lon_col: str = "lon"
    lat_col: str = "lat"
    crs: str = DEFAULT_CRS
    predicate: str = "intersects"
    method: str = "index"
    dropna: bool = True
    warn_unmatched: bool = False


@dataclass(frozen=True)
class NeighborhoodAggregation:
    id_col: str
    value_col: str
    points: gpd.GeoDataFrame
    joined: gpd.GeoDataFrame
    aggregates: pd.DataFrame
    enriched: gpd.GeoDataFrame

    @property
    def unmatched(self) -> gpd.GeoDataFrame:
        return self.joined[self.joined[self.id_col].isna()]

    @property
    def without_data(self) -> gpd.GeoDataFrame:
        return self.enriched[self.enriched[self.value_col].isna()]


# -----------------------------
# Point geometry
# -----------------------------
def build_point_geometry(
    records: pd.DataFrame,
    lon_col: str = "lon",
    lat_col: str = "lat",
    crs: str = DEFAULT_CRS,
) -> gpd.GeoDataFrame:
    """
    Turn lon/lat columns into a point GeoDataFrame tagged with `crs`.

    One point per record, order and index preserved. A single bad coordinate
    fails the whole call and MalformedPointError.rows lists the offenders.
    """
    missing = [c for c in (lon_col, lat_col) if c not in records.columns]
    if missing:
        raise MalformedPointError(f"Point records missing coordinate column(s): {', '.join(missing)}")

    flagged = flag_invalid_coordinates(records, lon_col=lon_col, lat_col=lat_col)
    bad = flagged.index[~flagged["has_valid_coords"]].tolist()
    if bad:
        preview = ", ".join(str(i) for i in bad[:10])
        more = f" (+{len(bad) - 10} more)" if len(bad) > 10 else ""
        raise MalformedPointError(
            f"{len(bad)} point record(s) have missing or invalid coordinates: rows {preview}{more}",
            rows=bad,
        )

    lon = pd.to_numeric(records[lon_col]).astype(float)
    lat = pd.to_numeric(records[lat_col]).astype(float)
    return gpd.GeoDataFrame(records.copy(), geometry=gpd.points_from_xy(lon, lat), crs=crs)


# -----------------------------
# Containment join
# -----------------------------
def _check_crs(points: gpd.GeoDataFrame, polygons: gpd.GeoDataFrame) -> None:
    if points.crs is None or polygons.crs is None:
        raise CoordinateSystemMismatch(
            f"Both layers need a CRS (points: {points.crs}, polygons: {polygons.crs})"
        )
    if not points.crs.equals(polygons.crs):
        raise CoordinateSystemMismatch(
            f"Point CRS {points.crs.to_string()} does not match polygon CRS "
            f"{polygons.crs.to_string()}; reproject one layer explicitly with to_crs()"
        )


def _candidate_pairs_index(points: gpd.GeoDataFrame, polygons: gpd.GeoDataFrame, predicate: str) -> pd.DataFrame:
    # STRtree query evaluates predicate(point, polygon) after the bounding-box prefilter
    point_pos, poly_pos = polygons.sindex.query(points.geometry, predicate=predicate)
    return pd.DataFrame({"point_pos": point_pos, "poly_pos": poly_pos}, dtype="int64")


def _candidate_pairs_naive(points: gpd.GeoDataFrame, polygons: gpd.GeoDataFrame, predicate: str) -> pd.DataFrame:
    point_pos, poly_pos = [], []
    for j, polygon in enumerate(polygons.geometry):
        if polygon is None or polygon.is_empty:
            continue
        if predicate == "within":
            hits = points.geometry.within(polygon).to_numpy()
        else:
            hits = points.geometry.intersects(polygon).to_numpy()
        idx = np.flatnonzero(hits)
        point_pos.extend(idx.tolist())
        poly_pos.extend([j] * len(idx))
    return pd.DataFrame({"point_pos": point_pos, "poly_pos": poly_pos}, dtype="int64")


def spatial_join_containment(
    points: gpd.GeoDataFrame,
    polygons: gpd.GeoDataFrame,
    id_col: str,
    predicate: str = "intersects",
    method: str = "index",
) -> gpd.GeoDataFrame:
    """
    Annotate every point with the `id_col` of the polygon containing it.

    predicate:
      - "intersects": boundary-inclusive (a point on an edge counts as inside)
      - "within": boundary-exclusive (interior only)

    Left join: the result has exactly the rows of `points`, in order, with a
    null id where no polygon matched. When several polygons match, the first
    in polygon order wins and an AmbiguousContainmentWarning is raised.

    method="index" uses the polygon layer's STRtree; method="naive" tests every
    point against every polygon. Both return the same frame.
    """
    if predicate not in PREDICATES:
        raise ValueError(f"predicate must be one of {PREDICATES}, got {predicate!r}")
    if method not in JOIN_METHODS:
        raise ValueError(f"method must be one of {JOIN_METHODS}, got {method!r}")
    if id_col not in polygons.columns:
        raise ValueError(f"Polygon layer has no {id_col!r} column")
    if id_col in points.columns:
        raise ValueError(f"Point layer already has a {id_col!r} column")
    _check_crs(points, polygons)

    if method == "index" and len(points) and len(polygons):
        pairs = _candidate_pairs_index(points, polygons, predicate)
    elif len(points) and len(polygons):
        pairs = _candidate_pairs_naive(points, polygons, predicate)
    else:
        pairs = pd.DataFrame({"point_pos": [], "poly_pos": []}, dtype="int64")

    pairs = pairs.sort_values(["point_pos", "poly_pos"], kind="mergesort")
    n_hits = pairs.groupby("point_pos").size()
    ambiguous = n_hits[n_hits > 1]
    if not ambiguous.empty:
        names = points.index[ambiguous.index.to_numpy()].tolist()
        warnings.warn(
            f"{len(ambiguous)} point(s) fall inside more than one polygon; "
            f"kept the first polygon in input order for rows {names[:10]}",
            AmbiguousContainmentWarning,
            stacklevel=2,
        )
    first = pairs.drop_duplicates(subset="point_pos", keep="first")

    ids = polygons[id_col].to_numpy(dtype=object)
    assigned = pd.Series([None] * len(points), index=points.index, dtype=object)
    assigned.iloc[first["point_pos"].to_numpy()] = ids[first["poly_pos"].to_numpy()]

    # object dtype keeps unmatched ids as None
    joined = points.copy()
    joined[id_col] = assigned
    return joined


# -----------------------------
# Grouped sum
# -----------------------------
def _exact_sum(values: pd.Series):
    present = values.dropna()
    if present.empty:
        return np.nan
    if pd.api.types.is_integer_dtype(present):
        return int(present.sum())
    # fsum is exactly rounded, so the total does not depend on row order
    return math.fsum(present.astype(float))


def aggregate_by_group(
    joined: pd.DataFrame,
    group_key: str,
    value_field: str,
    dropna: bool = True,
    warn_unmatched: bool = False,
) -> pd.DataFrame:
    """
    Sum `value_field` per `group_key`.

    Only groups with at least one record appear. The null group (points that
    matched no polygon) is dropped unless dropna=False. Sums are exact, so
    reordering the input never changes the result; rows come back sorted by key.
    """
    for col in (group_key, value_field):
        if col not in joined.columns:
            raise ValueError(f"Joined records have no {col!r} column")

    values = joined[value_field]
    numeric = pd.to_numeric(values, errors="coerce")
    bad = numeric.isna() & values.notna()
    if bad.any():
        raise ValueError(
            f"Non-numeric {value_field!r} values in rows {joined.index[bad].tolist()[:10]}"
        )

    frame = pd.DataFrame({group_key: joined[group_key].to_numpy(), value_field: numeric.to_numpy()})
    null_key = frame[group_key].isna()
    if null_key.any() and dropna and warn_unmatched:
        warnings.warn(
            f"{int(null_key.sum())} record(s) with no {group_key!r} left out of the {value_field!r} totals",
            UnmatchedPointsWarning,
            stacklevel=2,
        )

    matched = frame[~null_key]
    if matched.empty:
        agg = pd.DataFrame({group_key: pd.Series(dtype=object), value_field: pd.Series(dtype=float)})
    else:
        agg = (
            matched.groupby(group_key, sort=True)[value_field]
            .agg(_exact_sum)
            .reset_index()
        )

    if not dropna and null_key.any():
        null_row = pd.DataFrame({group_key: [None], value_field: [_exact_sum(frame.loc[null_key, value_field])]})
        agg = pd.concat([agg, null_row], ignore_index=True)
    return agg.reset_index(drop=True)


# -----------------------------
# Re-join onto polygons
# -----------------------------
def enrich_polygons(
    polygons: gpd.GeoDataFrame,
    aggregates: pd.DataFrame,
    join_key: str,
) -> gpd.GeoDataFrame:
    """
    Left-join `aggregates` onto every polygon by `join_key`.

    Every polygon is kept (order, index and CRS unchanged) and no new ids are
    introduced. Polygons without an aggregate get a null value, not zero.
    """
    if join_key not in polygons.columns:
        raise ValueError(f"Polygon layer has no {join_key!r} column")
    if join_key not in aggregates.columns:
        raise ValueError(f"Aggregates have no {join_key!r} column")

    aggs = aggregates[aggregates[join_key].notna()]
    if aggs[join_key].duplicated().any():
        raise ValueError(f"Aggregates contain duplicate {join_key!r} keys")
    value_cols = [c for c in aggs.columns if c != join_key]
    clashing = [c for c in value_cols if c in polygons.columns]
    if clashing:
        raise ValueError(f"Polygon layer already has column(s) {clashing}")

    lookup = aggs.set_index(join_key)
    enriched = polygons.copy()
    for col in value_cols:
        enriched[col] = enriched[join_key].map(lookup[col])
    return enriched


# -----------------------------
# Pipeline
# -----------------------------
def aggregate_points_to_neighborhoods(
    records: pd.DataFrame,
    polygons: gpd.GeoDataFrame,
    config: AggregatorConfig | None = None,
) -> NeighborhoodAggregation:
    """Run point geometry -> containment join -> grouped sum -> polygon enrichment."""
    config = config or AggregatorConfig()
    points = build_point_geometry(records, lon_col=config.lon_col, lat_col=config.lat_col, crs=config.crs)
    joined = spatial_join_containment(
        points, polygons, config.id_col, predicate=config.predicate, method=config.method
    )
    aggregates = aggregate_by_group(
        joined, config.id_col, config.value_col,
        dropna=config.dropna, warn_unmatched=config.warn_unmatched,
    )
    enriched = enrich_polygons(polygons, aggregates, config.id_col)
    return NeighborhoodAggregation(
        id_col=config.id_col,
        value_col=config.value_col,
        points=points,
        joined=joined,
        aggregates=aggregates,
        enriched=enriched,
    )
