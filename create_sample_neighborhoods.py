"""
Create sample neighborhoods and affordable housing projects for trying out the maps
"""

from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import Polygon

# Philadelphia bounds approximately
CITY_BOUNDS = {
    'north': 40.138,
    'south': 39.867,
    'east': -74.955,
    'west': -75.280
}

STATUSES = ['Completed', 'Under Construction', 'Pipeline']


def create_sample_neighborhoods(rows=6, cols=8, n_projects=150, seed=42, out_dir=None):
    """
    Create a grid of rectangular neighborhoods and random housing projects.

    Projects are scattered over a box slightly larger than the city so a few
    land outside every neighborhood; the eastern columns get fewer projects so
    some neighborhoods end up with none.
    """
    rng = np.random.default_rng(seed)
    b = CITY_BOUNDS
    lat_step = (b['north'] - b['south']) / rows
    lon_step = (b['east'] - b['west']) / cols

    neighborhoods = []
    for i in range(rows):
        for j in range(cols):
            south = b['south'] + i * lat_step
            north = south + lat_step
            west = b['west'] + j * lon_step
            east = west + lon_step

            polygon = Polygon([
                (west, south),
                (east, south),
                (east, north),
                (west, north),
                (west, south)
            ])
            neighborhoods.append({
                'neighborhood': f'N{i:02d}{j:02d}',
                'geometry': polygon
            })

    gdf = gpd.GeoDataFrame(neighborhoods, crs='EPSG:4326')

    # Skew longitudes west so the far-east neighborhoods are sparse
    pad_lat = lat_step * 0.5
    pad_lon = lon_step * 0.5
    u = rng.beta(1.2, 2.5, size=n_projects)
    lons = (b['west'] - pad_lon) + u * ((b['east'] + pad_lon) - (b['west'] - pad_lon))
    lats = rng.uniform(b['south'] - pad_lat, b['north'] + pad_lat, size=n_projects)

    projects = pd.DataFrame({
        'project_name': [f'Project {k + 1:03d}' for k in range(n_projects)],
        'lat': np.round(lats, 6),
        'lon': np.round(lons, 6),
        'affordable_units': rng.integers(4, 240, size=n_projects),
        'status': rng.choice(STATUSES, size=n_projects, p=[0.6, 0.25, 0.15]),
    })

    if out_dir is not None:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        gdf.to_file(out_dir / "neighborhoods.geojson", driver="GeoJSON")
        projects.to_csv(out_dir / "housing_projects.csv", index=False)

        print(f"Creating {len(gdf)} sample neighborhoods and {len(projects)} projects...")
        print("Files created:")
        print(f"  - {out_dir / 'neighborhoods.geojson'}")
        print(f"  - {out_dir / 'housing_projects.csv'}")
        print(f"\nData summary:")
        print(f"  - Affordable units: {projects['affordable_units'].sum():,}")
        print(f"  - Status counts: {projects['status'].value_counts().to_dict()}")

    return gdf, projects


if __name__ == "__main__":
    create_sample_neighborhoods(out_dir=Path(__file__).resolve().parent / "data" / "raw")
