"""
Restrict schools to the spatial extent of the subway network.

Schools far outside the network's bounding box would otherwise dominate the
distance and clustering statistics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import geopandas as gpd

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def contains(self, x: float, y: float) -> bool:
        return self.xmin <= x <= self.xmax and self.ymin <= y <= self.ymax

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def area(self) -> float:
        return self.width * self.height


def line_bounds(lines: gpd.GeoDataFrame) -> BoundingBox:
    """Min/max over every vertex of every line feature."""
    xmin, ymin, xmax, ymax = lines.total_bounds
    return BoundingBox(float(xmin), float(ymin), float(xmax), float(ymax))


def filter_points_to_bbox(points: gpd.GeoDataFrame, bbox: BoundingBox) -> gpd.GeoDataFrame:
    """Keep points inside `bbox`, edges included. The index is preserved."""
    if points.empty:
        return points.copy()

    xs = points.geometry.x
    ys = points.geometry.y
    inside = xs.between(bbox.xmin, bbox.xmax) & ys.between(bbox.ymin, bbox.ymax)
    kept = points.loc[inside].copy()
    log.info("Kept %d of %d points inside the line bounding box", len(kept), len(points))
    return kept
