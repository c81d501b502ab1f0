import numpy as np
import pandas as pd


def flag_invalid_coordinates(df: pd.DataFrame, lon_col: str = 'lon', lat_col: str = 'lat') -> pd.DataFrame:
    """Add a boolean 'has_valid_coords' column to a point-records DataFrame.

    Criteria for 'has_valid_coords':
    - lon and lat are present and parse as numbers
    - both are finite (no inf / NaN)
    - lon is within [-180, 180] and lat within [-90, 90]
    """
    df = df.copy()
    lon = pd.to_numeric(df.get(lon_col, pd.Series(np.nan, index=df.index)), errors='coerce').astype(float)
    lat = pd.to_numeric(df.get(lat_col, pd.Series(np.nan, index=df.index)), errors='coerce').astype(float)

    df['has_valid_coords'] = True
    df['has_valid_coords'] = df['has_valid_coords'] & np.isfinite(lon) & np.isfinite(lat)
    df['has_valid_coords'] = df['has_valid_coords'] & lon.between(-180.0, 180.0)
    df['has_valid_coords'] = df['has_valid_coords'] & lat.between(-90.0, 90.0)
    return df


def summarize_join(joined: pd.DataFrame, group_col: str) -> dict:
    """Counts of points that did / did not land in a polygon after a containment join."""
    matched = joined[group_col].notna()
    return {
        'points': int(len(joined)),
        'matched': int(matched.sum()),
        'unmatched': int((~matched).sum()),
        'groups': int(joined.loc[matched, group_col].nunique()),
    }
