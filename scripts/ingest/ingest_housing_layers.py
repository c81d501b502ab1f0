"""Load affordable housing projects and neighborhood boundaries, then aggregate
affordable units to neighborhoods.

Outputs to data/processed/ (or --out-dir):
- neighborhood_units.csv           (columns: <id-col>, <value-col>)
- joined_projects.csv              (every project plus its containing <id-col>, blank when outside)
- enriched_neighborhoods.geojson   (every neighborhood, <value-col> null when no project matched)
- optional interactive map HTML    (--map-html)

Sources are a local path or an http(s) URL. Defaults come from the
environment (.env at the repo root is loaded):

    HOUSING_POINTS_URL   : CSV of projects (name, lat/lon, units, status)
    NEIGHBORHOODS_URL    : GeoJSON / shapefile of neighborhood polygons

A remote points download that fails falls back to data/raw/housing_projects.csv.
Bad coordinates and CRS mismatches stop the run with exit status 1.

Usage: python scripts/ingest/ingest_housing_layers.py --help
"""
from __future__ import annotations

import argparse
import io
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import geopandas as gpd
import pandas as pd
import requests
from dotenv import load_dotenv

from neighborhood_aggregator import (
    AggregatorConfig,
    CoordinateSystemMismatch,
    MalformedPointError,
    aggregate_points_to_neighborhoods,
)
from scripts.utils.data_quality import summarize_join

ROOT = Path(__file__).resolve().parent.parent.parent
DATA_RAW = ROOT / "data" / "raw"
DATA_PROCESSED = ROOT / "data" / "processed"

DEFAULT_POINTS = DATA_RAW / "housing_projects.csv"
DEFAULT_NEIGHBORHOODS = DATA_RAW / "neighborhoods.geojson"

LAT_ALIASES = ("lat", "latitude", "y")
LON_ALIASES = ("lon", "lng", "long", "longitude", "x")


@dataclass(frozen=True)
class IngestConfig:
    points_source: str = str(DEFAULT_POINTS)
    neighborhoods_source: str = str(DEFAULT_NEIGHBORHOODS)
    fallback_points: Path = DEFAULT_POINTS
    out_dir: Path = DATA_PROCESSED
    target_crs: Optional[str] = None
    timeout: int = 30


def config_from_env(**overrides) -> IngestConfig:
    """IngestConfig with sources taken from .env / the environment, then `overrides`."""
    load_dotenv(ROOT / ".env")
    values = {
        "points_source": os.getenv("HOUSING_POINTS_URL", str(DEFAULT_POINTS)),
        "neighborhoods_source": os.getenv("NEIGHBORHOODS_URL", str(DEFAULT_NEIGHBORHOODS)),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return IngestConfig(**values)


def _is_url(source: str) -> bool:
    return str(source).startswith(("http://", "https://"))


# ---------------------------------------------------------------------------
# Geometry source
# ---------------------------------------------------------------------------

def load_neighborhood_gdf(source: str | Path, id_col: str = "neighborhood", target_crs: Optional[str] = None) -> gpd.GeoDataFrame:
    """Read neighborhood polygons; keep only `id_col` and geometry.

    The CRS is left as supplied unless `target_crs` is given explicitly.
    """
    gdf = gpd.read_file(source)
    if id_col not in gdf.columns:
        raise RuntimeError(f"Neighborhood layer {source} has no '{id_col}' column (columns: {list(gdf.columns)})")
    if gdf.crs is None:
        raise RuntimeError(f"Neighborhood layer {source} has no CRS")
    gdf[id_col] = gdf[id_col].astype(str)
    if target_crs:
        gdf = gdf.to_crs(target_crs)
    return gdf[[id_col, "geometry"]]


# ---------------------------------------------------------------------------
# Point data source
# ---------------------------------------------------------------------------

def normalize_coordinate_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename the recognised latitude / longitude columns to 'lat' / 'lon'.

    Existing 'lat' / 'lon' columns win over aliases.
    """
    if df.columns.duplicated().any():
        raise MalformedPointError(f"Duplicate column names in {list(df.columns)}")

    def _find(canonical, aliases):
        if canonical in df.columns:
            return canonical
        return next((c for c in df.columns if str(c).lower() in aliases), None)

    lat_key = _find("lat", LAT_ALIASES)
    lon_key = _find("lon", LON_ALIASES)
    if lat_key is None or lon_key is None:
        raise MalformedPointError(f"Could not find latitude/longitude columns in {list(df.columns)}")
    return df.rename(columns={lat_key: "lat", lon_key: "lon"})


def fetch_housing_points(source: str | Path, raw_path: Path | None = None, timeout: int = 30) -> pd.DataFrame:
    """Return the housing projects table with 'lat' / 'lon' columns.

    URLs are downloaded with requests; when the download fails and `raw_path`
    exists the local copy is used instead. Rows are never dropped here:
    coordinate problems are reported by the aggregation step.
    """
    df = None
    if _is_url(source):
        try:
            resp = requests.get(str(source), timeout=timeout)
            resp.raise_for_status()
            df = pd.read_csv(io.StringIO(resp.text))
        except requests.RequestException as exc:
            print(f"[ingest] Download failed ({exc}); trying local fallback")
            if raw_path is None or not Path(raw_path).exists():
                raise RuntimeError(f"Could not load housing projects from {source} and no local fallback") from exc
            df = pd.read_csv(raw_path)
    else:
        path = Path(source)
        if not path.exists():
            raise RuntimeError(f"Housing projects file not found at {path}. Run create_sample_neighborhoods.py or pass --points.")
        df = pd.read_csv(path)

    return normalize_coordinate_columns(df)


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

def write_csv(df: pd.DataFrame, path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    print(f"[ingest] Wrote {path} with {len(df)} rows")


def write_geojson(gdf: gpd.GeoDataFrame, path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_file(path, driver="GeoJSON")
    print(f"[ingest] Wrote {path} with {len(gdf)} features")


# ---------------------------------------------------------------------------
# Main orchestration
# ---------------------------------------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Aggregate affordable housing units to neighborhoods")
    parser.add_argument('--points', type=str, default=None, help='Housing projects CSV (path or URL); default $HOUSING_POINTS_URL')
    parser.add_argument('--neighborhoods', type=str, default=None, help='Neighborhood polygons (path or URL); default $NEIGHBORHOODS_URL')
    parser.add_argument('--id-col', type=str, default='neighborhood', help='Neighborhood identifier column')
    parser.add_argument('--value-col', type=str, default='affordable_units', help='Numeric column summed per neighborhood')
    parser.add_argument('--status-col', type=str, default='status', help='Categorical column used to color project markers')
    parser.add_argument('--name-col', type=str, default='project_name', help='Project label column')
    parser.add_argument('--predicate', choices=['intersects', 'within'], default='intersects',
                        help='intersects: points on a boundary count as inside; within: interior only')
    parser.add_argument('--keep-unmatched', action='store_true', help='Keep the null group (projects outside every neighborhood) in the totals')
    parser.add_argument('--warn-unmatched', action='store_true', help='Warn when projects outside every neighborhood are left out')
    parser.add_argument('--to-crs', type=str, default=None, help='Explicitly reproject neighborhoods (e.g. EPSG:4326) before joining')
    parser.add_argument('--out-dir', type=str, default=None, help='Output directory (default data/processed)')
    parser.add_argument('--map-html', type=str, default=None, help='Also write an interactive map to this HTML file')
    parser.add_argument('--palette', choices=['linear', 'binned', 'quantile'], default='quantile', help='Choropleth palette for --map-html')
    parser.add_argument('--bins', type=int, default=4, help='Bin / quantile count for --map-html')
    parser.add_argument('--sample', action='store_true', help='Generate sample data into data/raw first')

    args = parser.parse_args(argv)

    config = config_from_env(
        points_source=args.points,
        neighborhoods_source=args.neighborhoods,
        out_dir=Path(args.out_dir) if args.out_dir else None,
        target_crs=args.to_crs,
    )

    if args.sample:
        from create_sample_neighborhoods import create_sample_neighborhoods
        create_sample_neighborhoods(out_dir=DATA_RAW)

    agg_config = AggregatorConfig(
        id_col=args.id_col,
        value_col=args.value_col,
        predicate=args.predicate,
        dropna=not args.keep_unmatched,
        warn_unmatched=args.warn_unmatched,
    )

    try:
        print(f"[ingest] Loading neighborhoods from {config.neighborhoods_source}")
        neighborhoods = load_neighborhood_gdf(config.neighborhoods_source, id_col=args.id_col, target_crs=config.target_crs)
        print(f"[ingest] Loading housing projects from {config.points_source}")
        projects = fetch_housing_points(config.points_source, raw_path=config.fallback_points, timeout=config.timeout)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = aggregate_points_to_neighborhoods(projects, neighborhoods, agg_config)
        for w in caught:
            print(f"[ingest] Warning: {w.message}")
    except (MalformedPointError, CoordinateSystemMismatch, RuntimeError) as exc:
        print(f"[ingest] Error: {exc}")
        return 1

    stats = summarize_join(result.joined, args.id_col)
    print(f"[ingest] {stats['matched']:,} of {stats['points']:,} projects matched "
          f"{stats['groups']:,} neighborhoods; {stats['unmatched']:,} outside all neighborhoods")

    out_dir = Path(config.out_dir)
    write_csv(result.aggregates, out_dir / 'neighborhood_units.csv')
    write_csv(pd.DataFrame(result.joined.drop(columns='geometry')), out_dir / 'joined_projects.csv')
    write_geojson(result.enriched, out_dir / 'enriched_neighborhoods.geojson')

    if args.map_html:
        from housing_map import build_housing_map
        fig = build_housing_map(
            result,
            palette_kind=args.palette,
            bins=args.bins,
            status_col=args.status_col,
            label_col=args.name_col,
        )
        fig.write_html(args.map_html, include_plotlyjs="cdn")
        print(f"[ingest] Wrote map to {args.map_html}")

    print("[ingest] Done.")
    return 0


if __name__ == '__main__':  # pragma: no cover - CLI entry
    raise SystemExit(main())
