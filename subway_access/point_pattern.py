"""
Point-pattern analysis of school locations.

Pipeline:
1. Build a planar point process on the bounding window of the schools (metric CRS)
2. Estimate a Gaussian kernel intensity surface over the window
3. Compute Ripley's K function, with Ripley's isotropic edge correction
4. Build a Monte Carlo envelope from CSR simulations with the same n and window
5. Read the intensity surface back at every school

The envelope is reproducible: simulation i always draws from child i of
`SeedSequence(seed)`, whatever the number of joblib workers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.interpolate import RegularGridInterpolator
from scipy.spatial import cKDTree
from sklearn.neighbors import KernelDensity

from subway_access.config import DENSITY_COL, METRIC_CRS
from subway_access.errors import ConfigurationError, DegeneratePatternError
from subway_access.loader import to_metric
from subway_access.spatial_filter import BoundingBox

log = logging.getLogger(__name__)

# Ripley's edge weight is capped, as for circles mostly outside the window it blows up
MAX_EDGE_WEIGHT = 100.0


@dataclass(frozen=True)
class PointProcess:
    coords: np.ndarray  # (n, 2), metres
    window: BoundingBox
    crs: str = METRIC_CRS

    @property
    def n(self) -> int:
        return int(self.coords.shape[0])

    @property
    def area(self) -> float:
        return self.window.area

    @property
    def intensity(self) -> float:
        return self.n / self.area


@dataclass(frozen=True)
class IntensitySurface:
    xs: np.ndarray
    ys: np.ndarray
    values: np.ndarray  # (len(ys), len(xs)), points per square metre
    bandwidth_m: float
    crs: str = METRIC_CRS

    def to_frame(self) -> pd.DataFrame:
        X, Y = np.meshgrid(self.xs, self.ys)
        return pd.DataFrame({"x": X.ravel(), "y": Y.ravel(), "intensity": self.values.ravel()})


@dataclass(frozen=True)
class KFunctionCurve:
    radii: np.ndarray
    values: np.ndarray
    correction: str = "isotropic"

    @property
    def theoretical(self) -> np.ndarray:
        """K(r) = pi r^2 under complete spatial randomness."""
        return np.pi * self.radii ** 2

    @property
    def l_values(self) -> np.ndarray:
        return np.sqrt(self.values / np.pi)


@dataclass(frozen=True)
class Envelope:
    radii: np.ndarray
    observed: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    mean: np.ndarray
    n_simulations: int
    rank: int
    seed: int

    def contains(self, values: np.ndarray) -> np.ndarray:
        """Pointwise test: is each value within [lower, upper]?"""
        return (values >= self.lower) & (values <= self.upper)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "r_m": self.radii,
            "k_observed": self.observed,
            "k_lower": self.lower,
            "k_upper": self.upper,
            "k_mean": self.mean,
            "k_theoretical": np.pi * self.radii ** 2,
        })


def build_point_process(points: gpd.GeoDataFrame, metric_crs: str = METRIC_CRS) -> PointProcess:
    """Point process on the bounding window of `points`.

    Raises DegeneratePatternError for fewer than 2 points or a zero-area window.
    """
    if len(points) < 2:
        raise DegeneratePatternError(f"need at least 2 points, got {len(points)}", source="points")

    pts = to_metric(points, metric_crs)
    coords = np.column_stack([pts.geometry.x.to_numpy(), pts.geometry.y.to_numpy()]).astype(float)
    xmin, ymin = coords.min(axis=0)
    xmax, ymax = coords.max(axis=0)
    window = BoundingBox(float(xmin), float(ymin), float(xmax), float(ymax))
    if window.area <= 0:
        raise DegeneratePatternError("observation window has zero area", source="points")

    log.info("Point process: %d points, window %.0f x %.0f m", len(coords), window.width, window.height)
    return PointProcess(coords=coords, window=window, crs=metric_crs)


def estimate_intensity(process: PointProcess, bandwidth_m: float, grid_size: int = 128) -> IntensitySurface:
    """Gaussian kernel intensity on a grid_size x grid_size node grid spanning the window."""
    if bandwidth_m <= 0:
        raise ConfigurationError(f"bandwidth must be positive, got {bandwidth_m}", stage="intensity",
                                 source="kde_bandwidth")
    if grid_size < 2:
        raise ConfigurationError(f"grid size must be >= 2, got {grid_size}", stage="intensity",
                                 source="kde_grid_size")

    w = process.window
    xs = np.linspace(w.xmin, w.xmax, grid_size)
    ys = np.linspace(w.ymin, w.ymax, grid_size)
    X, Y = np.meshgrid(xs, ys)
    grid_points = np.vstack([X.ravel(), Y.ravel()]).T

    kde = KernelDensity(bandwidth=bandwidth_m, kernel="gaussian")
    kde.fit(process.coords)
    # density integrates to 1; scale by n to get intensity
    density = np.exp(kde.score_samples(grid_points)).reshape(len(ys), len(xs))
    values = density * process.n

    log.info("Intensity surface: %dx%d grid, bandwidth %.1f m, max %.3g per m2",
             grid_size, grid_size, bandwidth_m, values.max())
    return IntensitySurface(xs=xs, ys=ys, values=values, bandwidth_m=float(bandwidth_m), crs=process.crs)


def default_radii(window: BoundingBox, n_radii: int = 128) -> np.ndarray:
    """Evenly spaced radii up to a quarter of the shorter window side."""
    rmax = 0.25 * min(window.width, window.height)
    return np.linspace(0.0, rmax, n_radii)


def _isotropic_weights(centers: np.ndarray, d: np.ndarray, window: BoundingBox) -> np.ndarray:
    """Ripley's edge weight for circles of radius d centred at `centers`.

    The weight is 1 / (fraction of the circle's circumference inside the
    rectangular window).
    """
    left = centers[:, 0] - window.xmin
    right = window.xmax - centers[:, 0]
    bottom = centers[:, 1] - window.ymin
    top = window.ymax - centers[:, 1]

    safe_d = np.where(d > 0, d, 1.0)

    def half_angle(e):
        # half the arc cut off by an edge at distance e
        return np.where(e < d, np.arccos(np.clip(e / safe_d, -1.0, 1.0)), 0.0)

    a_left, a_right, a_bottom, a_top = (half_angle(e) for e in (left, right, bottom, top))
    outside = 2.0 * (a_left + a_right + a_bottom + a_top)

    # Arcs of two adjacent edges overlap when the corner lies inside the circle
    for e1, e2, a1, a2 in (
        (left, bottom, a_left, a_bottom),
        (left, top, a_left, a_top),
        (right, bottom, a_right, a_bottom),
        (right, top, a_right, a_top),
    ):
        corner_inside = e1 ** 2 + e2 ** 2 < d ** 2
        outside = outside - np.where(corner_inside, a1 + a2 - np.pi / 2.0, 0.0)

    inside_fraction = 1.0 - outside / (2.0 * np.pi)
    weights = 1.0 / np.clip(inside_fraction, 1.0 / MAX_EDGE_WEIGHT, 1.0)
    return np.where(d > 0, weights, 1.0)


def _k_values(coords: np.ndarray, window: BoundingBox, radii: np.ndarray, correction: str) -> np.ndarray:
    n = coords.shape[0]
    if n < 2:
        return np.zeros_like(radii, dtype=float)

    tree = cKDTree(coords)
    pairs = tree.query_pairs(float(radii.max()), output_type="ndarray")
    if pairs.size == 0:
        return np.zeros_like(radii, dtype=float)

    i, j = pairs[:, 0], pairs[:, 1]
    d = np.linalg.norm(coords[i] - coords[j], axis=1)

    # each unordered pair counts for (i, j) and (j, i)
    if correction == "isotropic":
        contrib = _isotropic_weights(coords[i], d, window) + _isotropic_weights(coords[j], d, window)
    elif correction == "none":
        contrib = np.full(d.shape, 2.0)
    else:
        raise ConfigurationError(f"unknown K-function correction {correction!r}", stage="k_function",
                                 source="k_correction")

    order = np.argsort(d, kind="stable")
    d_sorted = d[order]
    cum = np.cumsum(contrib[order])
    idx = np.searchsorted(d_sorted, radii, side="right")
    sums = np.where(idx > 0, cum[np.maximum(idx - 1, 0)], 0.0)

    return window.area / (n * n) * sums


def k_function(
    process: PointProcess,
    radii: Optional[Sequence[float]] = None,
    correction: str = "isotropic",
    n_radii: int = 128,
) -> KFunctionCurve:
    """Ripley's K: (area / n^2) * sum over ordered pairs i != j of w_ij 1[d_ij <= r]."""
    if process.n < 2 or process.area <= 0:
        raise DegeneratePatternError("K function needs at least 2 points in a window with positive area")

    radii = default_radii(process.window, n_radii) if radii is None else np.asarray(radii, dtype=float)
    values = _k_values(process.coords, process.window, radii, correction)
    return KFunctionCurve(radii=radii, values=values, correction=correction)


def simulate_csr(process: PointProcess, rng: np.random.Generator) -> PointProcess:
    """One complete-spatial-randomness pattern with the same n and window."""
    w = process.window
    coords = rng.uniform(low=(w.xmin, w.ymin), high=(w.xmax, w.ymax), size=(process.n, 2))
    return PointProcess(coords=coords, window=w, crs=process.crs)


def _simulate_statistic(process, radii, statistic, seed_seq) -> np.ndarray:
    rng = np.random.default_rng(seed_seq)
    simulated = simulate_csr(process, rng)
    return statistic(simulated, radii).values


def monte_carlo_envelope(
    process: PointProcess,
    n_simulations: int = 999,
    seed: int = 6750,
    radii: Optional[Sequence[float]] = None,
    statistic: Callable[..., KFunctionCurve] = k_function,
    rank: int = 1,
    n_jobs: int = 1,
    n_radii: int = 128,
) -> Envelope:
    """Pointwise simulation envelope of `statistic` under CSR.

    Bounds are the `rank`-th smallest and largest simulated values at each
    radius (rank 1 gives min/max).
    """
    if n_simulations < 1:
        raise ConfigurationError(f"n_simulations must be >= 1, got {n_simulations}", stage="envelope",
                                 source="n_simulations")
    if not 1 <= rank <= n_simulations:
        raise ConfigurationError(f"rank must be in [1, {n_simulations}], got {rank}", stage="envelope",
                                 source="envelope_rank")
    if process.n < 2 or process.area <= 0:
        raise DegeneratePatternError("envelope needs at least 2 points in a window with positive area")

    radii = default_radii(process.window, n_radii) if radii is None else np.asarray(radii, dtype=float)
    observed = statistic(process, radii).values

    children = np.random.SeedSequence(seed).spawn(n_simulations)
    log.info("Running %d CSR simulations (seed %d, n_jobs %d)", n_simulations, seed, n_jobs)
    if n_jobs == 1:
        sims = [_simulate_statistic(process, radii, statistic, child) for child in children]
    else:
        sims = Parallel(n_jobs=n_jobs)(
            delayed(_simulate_statistic)(process, radii, statistic, child) for child in children
        )
    sims = np.vstack(sims)

    ordered = np.sort(sims, axis=0)
    return Envelope(
        radii=radii,
        observed=observed,
        lower=ordered[rank - 1],
        upper=ordered[n_simulations - rank],
        mean=sims.mean(axis=0),
        n_simulations=n_simulations,
        rank=rank,
        seed=seed,
    )


def k_statistic(correction: str) -> Callable[..., KFunctionCurve]:
    """K function with a fixed edge correction, usable as an envelope statistic."""
    return partial(k_function, correction=correction)


def sample_intensity_at_points(
    surface: IntensitySurface,
    points: gpd.GeoDataFrame,
    method: str = "linear",
) -> pd.Series:
    """Read the surface at each point (bilinear or nearest node). Points off the grid get NaN."""
    if points.empty:
        return pd.Series(dtype=float, index=points.index, name=DENSITY_COL)

    pts = to_metric(points, surface.crs)
    interp = RegularGridInterpolator(
        (surface.ys, surface.xs), surface.values, method=method, bounds_error=False, fill_value=np.nan
    )
    query = np.column_stack([pts.geometry.y.to_numpy(), pts.geometry.x.to_numpy()])
    return pd.Series(interp(query), index=points.index, name=DENSITY_COL)


def attach_density(points: gpd.GeoDataFrame, density: pd.Series) -> gpd.GeoDataFrame:
    out = points.copy()
    out[DENSITY_COL] = density.reindex(out.index)
    return out
