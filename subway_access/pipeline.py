#!/usr/bin/env python3
"""
Subway accessibility of NYC schools: full analysis run.

This script:
1. Loads subway lines and school points, reprojected to WGS84
2. Keeps schools inside the subway network's bounding box
3. Builds the half-mile walking buffer and computes school coverage
4. Computes each school's distance to the nearest subway line
5. Estimates school intensity, Ripley's K and a CSR Monte Carlo envelope
6. Regresses school density on subway distance

Outputs (in --out, default result/):
- schools_with_metrics.csv - schools with distance, density and coverage flag
- distance_bands.csv - school counts per distance band
- k_envelope.csv - observed K(r) with simulation envelope
- intensity_surface.csv - KDE grid
- regression_coefficients.csv - OLS coefficients
- accessibility_results.txt - summary report

Usage:
  python -m subway_access --lines data/subway_lines.geojson --schools data/school_points.geojson
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import geopandas as gpd
import pandas as pd

from subway_access.association import RegressionModel, correlation, fit
from subway_access.config import (
    BANDWIDTH_UNITS,
    K_CORRECTIONS,
    RESULT_DIR,
    SAMPLING_METHODS,
    SCHOOLS_GEOJSON,
    SUBWAY_LINES_GEOJSON,
    AnalysisConfig,
)
from subway_access.coverage import BufferPolygon, CoverageResult, build_buffer, coverage, covered_mask
from subway_access.distance import attach_distances, distance_band_counts, distance_summary, min_distances
from subway_access.errors import AccessibilityError, ConfigurationError
from subway_access.loader import PathLike, load_lines, load_points
from subway_access.point_pattern import (
    Envelope,
    IntensitySurface,
    KFunctionCurve,
    attach_density,
    build_point_process,
    default_radii,
    estimate_intensity,
    k_function,
    k_statistic,
    monte_carlo_envelope,
    sample_intensity_at_points,
)
from subway_access.spatial_filter import filter_points_to_bbox, line_bounds

log = logging.getLogger(__name__)

COVERED_COL = "within_walk_buffer"


@dataclass(frozen=True)
class AnalysisResult:
    config: AnalysisConfig
    schools: gpd.GeoDataFrame
    buffer: BufferPolygon
    coverage: CoverageResult
    distance_stats: Dict[str, float]
    distance_bands: pd.DataFrame
    surface: IntensitySurface
    k_curve: KFunctionCurve
    envelope: Envelope
    regression: RegressionModel
    correlation: float
    repaired_geometries: Dict[str, int]


def analyze(lines: gpd.GeoDataFrame, schools: gpd.GeoDataFrame, config: Optional[AnalysisConfig] = None) -> AnalysisResult:
    """Run every stage on already-loaded frames; schools are reprojected to the lines CRS."""
    config = config or AnalysisConfig()

    if schools.crs != lines.crs:
        if schools.crs is None or lines.crs is None:
            raise ConfigurationError(f"cannot align schools CRS {schools.crs} with lines CRS {lines.crs}",
                                     stage="analyze", source="crs")
        log.info("Reprojecting schools from %s to the lines CRS %s", schools.crs, lines.crs)
        schools = schools.to_crs(lines.crs)

    bbox = line_bounds(lines)
    schools = filter_points_to_bbox(schools, bbox)

    buffer = build_buffer(lines, config.buffer_radius_m, config.metric_crs, config.buffer_quad_segs)
    cov = coverage(schools, buffer, config.boundary_tolerance_m)
    schools = schools.copy()
    schools[COVERED_COL] = covered_mask(schools, buffer, config.boundary_tolerance_m)

    distances = min_distances(schools, lines, config.metric_crs)
    schools = attach_distances(schools, distances)

    process = build_point_process(schools, config.metric_crs)
    surface = estimate_intensity(process, config.kde_bandwidth_m, config.kde_grid_size)
    radii = default_radii(process.window, config.n_radii)
    k_curve = k_function(process, radii, correction=config.k_correction)
    envelope = monte_carlo_envelope(
        process,
        n_simulations=config.n_simulations,
        seed=config.random_seed,
        radii=radii,
        statistic=k_statistic(config.k_correction),
        rank=config.envelope_rank,
        n_jobs=config.n_jobs,
    )

    density = sample_intensity_at_points(surface, schools, method=config.intensity_sampling)
    schools = attach_density(schools, density)

    regression = fit(schools)
    r = correlation(schools)

    return AnalysisResult(
        config=config,
        schools=schools,
        buffer=buffer,
        coverage=cov,
        distance_stats=distance_summary(distances),
        distance_bands=distance_band_counts(distances),
        surface=surface,
        k_curve=k_curve,
        envelope=envelope,
        regression=regression,
        correlation=r,
        repaired_geometries={"lines": buffer.n_repaired, "schools": cov.n_repaired},
    )


def run_analysis(lines_path: PathLike, schools_path: PathLike, config: Optional[AnalysisConfig] = None) -> AnalysisResult:
    """Load both datasets and run the full analysis."""
    config = config or AnalysisConfig()
    lines = load_lines(lines_path, config.target_crs)
    schools = load_points(schools_path, config.target_crs)
    return analyze(lines, schools, config)


def save_results(result: AnalysisResult, out_dir: PathLike) -> Dict[str, Path]:
    """Write CSV artifacts and the text report; returns the written paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "schools": out_dir / "schools_with_metrics.csv",
        "distance_bands": out_dir / "distance_bands.csv",
        "envelope": out_dir / "k_envelope.csv",
        "surface": out_dir / "intensity_surface.csv",
        "regression": out_dir / "regression_coefficients.csv",
        "report": out_dir / "accessibility_results.txt",
    }

    schools = pd.DataFrame(result.schools.drop(columns=result.schools.geometry.name))
    schools.insert(0, "lng", result.schools.geometry.x)
    schools.insert(1, "lat", result.schools.geometry.y)
    schools.to_csv(paths["schools"], index=True)

    result.distance_bands.to_csv(paths["distance_bands"], index=False)
    env = result.envelope.to_frame()
    env["l_observed"] = result.k_curve.l_values
    env.to_csv(paths["envelope"], index=False)
    result.surface.to_frame().to_csv(paths["surface"], index=False)
    result.regression.to_frame().to_csv(paths["regression"], index=False)

    cfg = result.config
    cov = result.coverage
    reg = result.regression
    stats = result.distance_stats
    inside = result.envelope.contains(result.envelope.observed)
    with open(paths["report"], "w") as f:
        f.write("SUBWAY ACCESSIBILITY OF SCHOOLS\n")
        f.write("=" * 50 + "\n\n")

        f.write("Configuration:\n")
        for key, value in cfg.model_dump().items():
            f.write(f"  {key}: {value}\n")
        f.write(f"  kde_bandwidth_m: {cfg.kde_bandwidth_m:.2f}\n\n")

        f.write("Coverage:\n")
        f.write(f"  Schools analysed: {cov.total}\n")
        f.write(f"  Within {cfg.buffer_radius_m:.2f} m of a subway line: {cov.in_count}\n")
        f.write(f"  Outside: {cov.out_count}\n")
        f.write(f"  Coverage: {cov.percentage:.2f}%\n")
        repaired = result.repaired_geometries
        f.write(f"  Repaired geometries: lines {repaired['lines']}, schools {repaired['schools']}\n\n")

        f.write("Distance to nearest subway line:\n")
        f.write(f"  Mean: {stats['mean_m']:.1f} m\n")
        f.write(f"  Median: {stats['median_m']:.1f} m\n")
        f.write(f"  Min: {stats['min_m']:.1f} m\n")
        f.write(f"  Max: {stats['max_m']:.1f} m\n\n")

        f.write("Ripley's K:\n")
        f.write(f"  Simulations: {result.envelope.n_simulations} (seed {result.envelope.seed}, "
                f"rank {result.envelope.rank})\n")
        f.write(f"  Radii inside envelope: {int(inside.sum())} of {inside.size}\n")
        above = result.envelope.observed > result.envelope.upper
        f.write(f"  Radii above envelope (clustering): {int(above.sum())}\n\n")

        f.write("Regression (school_density ~ subway_distance_m):\n")
        f.write(f"  Intercept: {reg.intercept:.6g} (SE {reg.intercept_se:.3g}, p={reg.intercept_p:.3g})\n")
        f.write(f"  Slope: {reg.slope:.6g} (SE {reg.slope_se:.3g}, t={reg.slope_t:.3f}, p={reg.slope_p:.3g})\n")
        f.write(f"  R²: {reg.r_squared:.4f}\n")
        f.write(f"  Observations: {reg.n_obs}\n")
        f.write(f"  Pearson r: {result.correlation:.4f}\n")

    return paths


def _default(field: str):
    return AnalysisConfig.model_fields[field].default


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Subway accessibility analysis of school locations")
    parser.add_argument("--lines", type=str, default=str(SUBWAY_LINES_GEOJSON), help="Subway line dataset")
    parser.add_argument("--schools", type=str, default=str(SCHOOLS_GEOJSON), help="School point dataset")
    parser.add_argument("--out", type=str, default=str(RESULT_DIR), help="Output directory")
    parser.add_argument("--radius", type=float, default=_default("buffer_radius_m"), help="Walking buffer radius (m)")
    parser.add_argument("--bandwidth", type=float, default=_default("kde_bandwidth"), help="KDE bandwidth")
    parser.add_argument("--bandwidth-unit", choices=BANDWIDTH_UNITS, default=_default("kde_bandwidth_unit"))
    parser.add_argument("--grid-size", type=int, default=_default("kde_grid_size"), help="KDE grid nodes per axis")
    parser.add_argument("--sampling", choices=SAMPLING_METHODS, default=_default("intensity_sampling"),
                        help="How the KDE grid is sampled at schools")
    parser.add_argument("--simulations", type=int, default=_default("n_simulations"))
    parser.add_argument("--rank", type=int, default=_default("envelope_rank"), help="Envelope rank (1 = min/max)")
    parser.add_argument("--seed", type=int, default=_default("random_seed"))
    parser.add_argument("--n-radii", type=int, default=_default("n_radii"), help="K-function radii")
    parser.add_argument("--correction", choices=K_CORRECTIONS, default=_default("k_correction"))
    parser.add_argument("--target-crs", type=str, default=_default("target_crs"), help="CRS datasets are loaded into")
    parser.add_argument("--metric-crs", type=str, default=_default("metric_crs"))
    parser.add_argument("--tolerance", type=float, default=_default("boundary_tolerance_m"),
                        help="Buffer boundary tolerance (m)")
    parser.add_argument("--quad-segs", type=int, default=_default("buffer_quad_segs"),
                        help="Segments per quarter circle in the buffer polygon")
    parser.add_argument("--jobs", type=int, default=_default("n_jobs"), help="Parallel workers for simulations")
    parser.add_argument("--plots", action="store_true", help="Also write summary figures")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def build_config(args: argparse.Namespace) -> AnalysisConfig:
    return AnalysisConfig(
        buffer_radius_m=args.radius,
        kde_bandwidth=args.bandwidth,
        kde_bandwidth_unit=args.bandwidth_unit,
        kde_grid_size=args.grid_size,
        intensity_sampling=args.sampling,
        n_simulations=args.simulations,
        envelope_rank=args.rank,
        random_seed=args.seed,
        n_radii=args.n_radii,
        k_correction=args.correction,
        target_crs=args.target_crs,
        metric_crs=args.metric_crs,
        boundary_tolerance_m=args.tolerance,
        buffer_quad_segs=args.quad_segs,
        n_jobs=args.jobs,
    )


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        config = build_config(args)
        result = run_analysis(args.lines, args.schools, config)
        paths = save_results(result, args.out)
        if args.plots:
            from subway_access.plots import save_all_plots
            paths.update(save_all_plots(result, args.out))
    except AccessibilityError as e:
        log.error("%s", e)
        return 1

    print(f"\nCoverage: {result.coverage.percentage:.2f}% of {result.coverage.total} schools")
    print(f"Pearson r (density vs distance): {result.correlation:.4f}")
    print("\nResults saved to:")
    for path in paths.values():
        print(f"  - {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
