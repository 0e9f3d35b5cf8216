"""
Load the subway-line and school-point datasets.

Both layers are read with geopandas, given EPSG:4326 when the file carries no
CRS, and reprojected to the analysis' geographic CRS. Distance work later
goes through `to_metric`, so every engine measures in the same metric CRS.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Union

import geopandas as gpd

from subway_access.config import GEOGRAPHIC_CRS, METRIC_CRS
from subway_access.errors import LoadError

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

LINE_TYPES = ("LineString", "MultiLineString")
POINT_TYPES = ("Point",)


def read_layer(path: PathLike, target_crs: str = GEOGRAPHIC_CRS) -> gpd.GeoDataFrame:
    """Read a vector dataset and reproject it to `target_crs`.

    Rows with null or empty geometry are dropped (and counted in the log).
    Raises LoadError when the file is missing, unreadable, has no geometry
    column or ends up with no usable geometry.
    """
    path = Path(path)
    if not path.exists():
        raise LoadError("dataset not found", source=str(path))

    try:
        frame = gpd.read_file(path)
    except Exception as e:
        raise LoadError(f"could not read dataset: {e}", source=str(path)) from e

    if not isinstance(frame, gpd.GeoDataFrame):
        raise LoadError("dataset has no geometry column", source=str(path))
    try:
        geometry = frame.geometry
    except AttributeError as e:
        raise LoadError("dataset has no geometry column", source=str(path)) from e

    missing = geometry.isna() | geometry.is_empty
    if missing.any():
        log.warning("Dropping %d rows with missing geometry from %s", int(missing.sum()), path.name)
        frame = frame.loc[~missing]
    if frame.empty and not missing.any():
        # An empty but well-formed layer is a valid (if degenerate) dataset
        log.warning("Dataset %s has no features", path.name)
    elif frame.empty:
        raise LoadError("dataset has no usable geometries", source=str(path))

    if frame.crs is None:
        log.warning("No CRS on %s, assuming %s", path.name, GEOGRAPHIC_CRS)
        frame = frame.set_crs(GEOGRAPHIC_CRS)
    if frame.crs != target_crs:
        log.info("Reprojecting %s from %s to %s", path.name, frame.crs, target_crs)
        frame = frame.to_crs(target_crs)
    return frame


def _check_geometry_types(frame: gpd.GeoDataFrame, allowed: Iterable[str], path: PathLike) -> None:
    found = set(frame.geom_type.unique())
    unexpected = found - set(allowed)
    if unexpected:
        raise LoadError(
            f"expected {', '.join(allowed)} geometries, found {', '.join(sorted(unexpected))}",
            source=str(path),
        )


def load_lines(path: PathLike, target_crs: str = GEOGRAPHIC_CRS) -> gpd.GeoDataFrame:
    """Load the subway line layer."""
    log.info("Loading subway lines from %s", path)
    lines = read_layer(path, target_crs)
    if lines.empty:
        raise LoadError("line dataset has no features", source=str(path))
    _check_geometry_types(lines, LINE_TYPES, path)
    log.info("Loaded %d line features", len(lines))
    return lines


def load_points(path: PathLike, target_crs: str = GEOGRAPHIC_CRS) -> gpd.GeoDataFrame:
    """Load the school point layer. An empty layer is returned as-is."""
    log.info("Loading school points from %s", path)
    points = read_layer(path, target_crs)
    if not points.empty:
        _check_geometry_types(points, POINT_TYPES, path)
    log.info("Loaded %d point features", len(points))
    return points


def to_metric(frame: gpd.GeoDataFrame, metric_crs: str = METRIC_CRS) -> gpd.GeoDataFrame:
    """Reproject to the metric CRS shared by the buffer, distance and point-pattern stages."""
    if frame.crs is None:
        frame = frame.set_crs(GEOGRAPHIC_CRS)
    if frame.crs == metric_crs:
        return frame
    return frame.to_crs(metric_crs)
