"""
Summary figures for an analysis run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

from subway_access.config import DENSITY_COL, DISTANCE_COL
from subway_access.loader import to_metric

sns.set_palette("husl")


def plot_intensity_surface(result, outpath: Path) -> Path:
    """KDE surface with schools overlaid, in metric coordinates."""
    surface = result.surface
    schools = to_metric(result.schools, surface.crs)

    fig, ax = plt.subplots(figsize=(10, 10))
    mesh = ax.pcolormesh(surface.xs, surface.ys, surface.values, shading="auto", cmap="inferno")
    ax.scatter(schools.geometry.x, schools.geometry.y, s=4, color="white", alpha=0.6, label="Schools")
    fig.colorbar(mesh, ax=ax, label="Schools per m²")
    ax.set_title(f"School intensity (bandwidth {surface.bandwidth_m:.0f} m)")
    ax.set_xlabel("Easting (m)")
    ax.set_ylabel("Northing (m)")
    ax.set_aspect("equal")
    ax.legend(loc="upper left")

    fig.tight_layout()
    fig.savefig(outpath, dpi=300, bbox_inches="tight")
    plt.close(fig)
    return outpath


def plot_k_envelope(result, outpath: Path) -> Path:
    env = result.envelope

    fig, ax = plt.subplots(figsize=(10, 7))
    ax.fill_between(env.radii, env.lower, env.upper, color="lightgray", alpha=0.8,
                    label=f"CSR envelope ({env.n_simulations} sims)")
    ax.plot(env.radii, env.mean, "--", color="red", alpha=0.7, label="Simulated mean")
    ax.plot(env.radii, np.pi * env.radii ** 2, ":", color="blue", alpha=0.7, label="πr²")
    ax.plot(env.radii, env.observed, color="black", linewidth=2, label="Observed K(r)")
    ax.set_xlabel("r (m)")
    ax.set_ylabel("K(r)")
    ax.set_title("Ripley's K function of school locations")
    ax.grid(True, alpha=0.3)
    ax.legend()

    fig.tight_layout()
    fig.savefig(outpath, dpi=300, bbox_inches="tight")
    plt.close(fig)
    return outpath


def plot_density_vs_distance(result, outpath: Path) -> Path:
    schools = result.schools
    reg = result.regression

    fig, ax = plt.subplots(figsize=(10, 7))
    sns.scatterplot(x=schools[DISTANCE_COL], y=schools[DENSITY_COL], ax=ax, s=15, alpha=0.6)
    x = np.linspace(schools[DISTANCE_COL].min(), schools[DISTANCE_COL].max(), 100)
    ax.plot(x, reg.intercept + reg.slope * x, "--", color="red", linewidth=2,
            label=f"OLS (slope {reg.slope:.3g}, R² {reg.r_squared:.3f})")
    ax.set_xlabel("Distance to nearest subway line (m)")
    ax.set_ylabel("School intensity (per m²)")
    ax.set_title(f"School density vs subway distance (r = {result.correlation:.3f})")
    ax.grid(True, alpha=0.3)
    ax.legend()

    fig.tight_layout()
    fig.savefig(outpath, dpi=300, bbox_inches="tight")
    plt.close(fig)
    return outpath


def save_all_plots(result, out_dir) -> Dict[str, Path]:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    return {
        "intensity_plot": plot_intensity_surface(result, out_dir / "intensity_surface.png"),
        "envelope_plot": plot_k_envelope(result, out_dir / "k_envelope.png"),
        "regression_plot": plot_density_vs_distance(result, out_dir / "density_vs_distance.png"),
    }
