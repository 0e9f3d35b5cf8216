"""
Walking-distance buffer around the subway network and school coverage.

Buffers are built in the metric CRS (metres), never in degrees: a degree-based
radius silently yields near-zero coverage. Membership is boundary-inclusive
within an explicit tolerance, so a school on the buffer edge counts as
covered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from subway_access.config import METRIC_CRS
from subway_access.errors import ConfigurationError, GeometryValidityError
from subway_access.loader import to_metric

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BufferPolygon:
    geometry: BaseGeometry
    crs: str
    radius_m: float
    network: BaseGeometry
    n_repaired: int = 0


@dataclass(frozen=True)
class CoverageResult:
    in_count: int
    out_count: int
    percentage: float
    n_repaired: int = 0

    @property
    def total(self) -> int:
        return self.in_count + self.out_count


def repair_geometry(geom: BaseGeometry) -> BaseGeometry:
    """Return `geom` if valid, otherwise its `make_valid` repair.

    Raises GeometryValidityError when the repair does not produce a valid
    geometry, or collapses a non-empty input to nothing.
    """
    if geom is None:
        raise GeometryValidityError("geometry is missing")
    if geom.is_valid:
        return geom
    fixed = shapely.make_valid(geom)
    if not fixed.is_valid or (fixed.is_empty and not geom.is_empty):
        raise GeometryValidityError(f"could not repair {geom.geom_type} geometry", source=geom.wkt[:80])
    return fixed


def repair_geometries(geoms: gpd.GeoSeries) -> Tuple[gpd.GeoSeries, int]:
    """Repair every invalid geometry in `geoms`; returns the series and the repaired count."""
    invalid = ~geoms.is_valid
    n_invalid = int(invalid.sum())
    if n_invalid == 0:
        return geoms, 0

    repaired = geoms.copy()
    repaired.loc[invalid] = geoms.loc[invalid].make_valid()
    still_invalid = ~repaired.is_valid | (repaired.is_empty & ~geoms.is_empty)
    if still_invalid.any():
        first = still_invalid[still_invalid].index[0]
        raise GeometryValidityError(
            f"{int(still_invalid.sum())} geometries remain invalid after repair",
            source=f"row {first}",
        )
    log.warning("Repaired %d invalid geometries", n_invalid)
    return repaired, n_invalid


def build_buffer(
    lines: gpd.GeoDataFrame,
    radius_m: float,
    metric_crs: str = METRIC_CRS,
    quad_segs: int = 16,
) -> BufferPolygon:
    """Union of `radius_m` buffers around every line, in `metric_crs`.

    A radius of 0 returns the union of the lines themselves. The repaired
    line network is kept next to the polygon so membership can be decided
    against the exact radius rather than the polygon's segmented caps.
    """
    if radius_m < 0:
        raise ConfigurationError(f"buffer radius must be >= 0, got {radius_m}", stage="buffer",
                                 source="buffer_radius_m")

    lines_m = to_metric(lines, metric_crs)
    geoms, n_repaired = repair_geometries(lines_m.geometry)
    network = unary_union(list(geoms))

    if radius_m == 0:
        merged = network
    else:
        buffered = shapely.buffer(geoms.to_numpy(), radius_m, quad_segs=quad_segs)
        merged = shapely.union_all(buffered)

    merged = repair_geometry(merged)
    log.info("Built %.2f m buffer around %d line features", radius_m, len(lines_m))
    return BufferPolygon(geometry=merged, crs=metric_crs, radius_m=float(radius_m),
                         network=network, n_repaired=n_repaired)


def _classify(points: gpd.GeoDataFrame, buffer: BufferPolygon, tolerance_m: float) -> Tuple[pd.Series, int]:
    pts = to_metric(points, buffer.crs)
    geoms, n_repaired = repair_geometries(pts.geometry)
    pts = gpd.GeoDataFrame(geometry=geoms.to_numpy(), crs=buffer.crs)  # positional index

    network_gdf = gpd.GeoDataFrame({"network_id": [0]}, geometry=[buffer.network], crs=buffer.crs)
    # Left-semi join: keep only points within the walking radius of a line
    joined = gpd.sjoin(pts, network_gdf, how="inner", predicate="dwithin",
                       distance=buffer.radius_m + tolerance_m)

    mask = np.zeros(len(pts), dtype=bool)
    mask[np.unique(joined.index.to_numpy())] = True
    return pd.Series(mask, index=points.index), n_repaired


def covered_mask(points: gpd.GeoDataFrame, buffer: BufferPolygon, tolerance_m: float = 1e-3) -> pd.Series:
    """Boolean per point: is it within the buffer radius (plus `tolerance_m`) of the network?

    This is the exact round buffer. The stored polygon flattens each cap into
    `quad_segs` segments and can sit up to r(1 - cos(pi / 4q)) inside it.
    """
    if points.empty:
        return pd.Series(dtype=bool, index=points.index)
    mask, _ = _classify(points, buffer, tolerance_m)
    return mask


def coverage(points: gpd.GeoDataFrame, buffer: BufferPolygon, tolerance_m: float = 1e-3) -> CoverageResult:
    """Count schools inside/outside the buffer and the covered percentage.

    An empty point set gives (0, 0, 0.0).
    """
    total = len(points)
    if total == 0:
        log.info("No points to classify against the buffer")
        return CoverageResult(in_count=0, out_count=0, percentage=0.0)

    mask, n_repaired = _classify(points, buffer, tolerance_m)
    in_count = int(mask.sum())
    out_count = total - in_count
    percentage = in_count / total * 100.0
    log.info("Coverage: %d in, %d out (%.2f%%)", in_count, out_count, percentage)
    return CoverageResult(in_count=in_count, out_count=out_count, percentage=percentage,
                          n_repaired=n_repaired)
