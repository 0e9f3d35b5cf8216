"""
Minimum distance from each school to the subway network.

Distances are measured in the same metric CRS as the walking buffer. Coverage
is decided against the same line network, so a school with distance <= radius
(up to the boundary tolerance) is a school inside the buffer.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.ops import unary_union

from subway_access.config import DISTANCE_BANDS_M, DISTANCE_COL, METRIC_CRS
from subway_access.loader import to_metric

log = logging.getLogger(__name__)


def min_distances(points: gpd.GeoDataFrame, lines: gpd.GeoDataFrame, metric_crs: str = METRIC_CRS) -> pd.Series:
    """Distance in metres from every point to the nearest line segment.

    The result has the points' index and order.
    """
    if points.empty:
        return pd.Series(dtype=float, index=points.index, name=DISTANCE_COL)

    points_m = to_metric(points, metric_crs)
    lines_m = to_metric(lines, metric_crs)
    network = unary_union(list(lines_m.geometry))

    distances = points_m.geometry.distance(network)
    log.info("Computed distances for %d points (mean %.1f m)", len(distances), distances.mean())
    return pd.Series(distances.to_numpy(dtype=float), index=points.index, name=DISTANCE_COL)


def attach_distances(points: gpd.GeoDataFrame, distances: pd.Series) -> gpd.GeoDataFrame:
    """Add the distance column, aligned on the index."""
    out = points.copy()
    out[DISTANCE_COL] = distances.reindex(out.index)
    return out


def distance_summary(distances: pd.Series) -> Dict[str, float]:
    d = distances.dropna()
    if d.empty:
        return {"count": 0, "mean_m": np.nan, "median_m": np.nan, "min_m": np.nan, "max_m": np.nan}
    return {
        "count": int(d.size),
        "mean_m": float(d.mean()),
        "median_m": float(d.median()),
        "min_m": float(d.min()),
        "max_m": float(d.max()),
    }


def distance_band_counts(distances: pd.Series, bands_m: Optional[List[float]] = None) -> pd.DataFrame:
    """Count points in successive distance bands.

    Bands: 0-250, 250-500, ..., 1250-1500 and a final band beyond the last edge.
    The first band includes distance 0.
    """
    bands_m = bands_m or DISTANCE_BANDS_M
    d = distances.dropna().to_numpy()

    rows = []
    prev = 0.0
    for band in bands_m:
        if prev == 0.0:
            mask = (d >= prev) & (d <= band)
        else:
            mask = (d > prev) & (d <= band)
        rows.append({"band": f"{int(prev)}-{int(band)}m", "lower_m": prev, "upper_m": float(band),
                     "count": int(mask.sum())})
        prev = float(band)
    rows.append({"band": f">{int(prev)}m", "lower_m": prev, "upper_m": np.inf, "count": int((d > prev).sum())})

    out = pd.DataFrame(rows)
    out["share_pct"] = out["count"] / len(d) * 100.0 if len(d) else 0.0
    return out
