"""
Analysis configuration.

Defaults reproduce the reference NYC run: a half-mile walking buffer
(804.67 m), a KDE bandwidth of 0.01 degrees, 999 CSR simulations seeded
with 6750.

All distance, buffer, KDE and K-function work happens in one metric CRS
(UTM zone 18N for New York City). The KDE bandwidth may be given in degrees,
as in the reference run, and is then converted once to metres with the
111,320 m/degree approximation, so every stage sees the same unit.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from subway_access.errors import ConfigurationError


# Project paths (local defaults)
PROJECT_ROOT = Path.cwd()
DATA_DIR = PROJECT_ROOT / "data"
RESULT_DIR = PROJECT_ROOT / "result"

SUBWAY_LINES_GEOJSON = DATA_DIR / "subway_lines.geojson"
SCHOOLS_GEOJSON = DATA_DIR / "school_points.geojson"

# Coordinate reference systems
GEOGRAPHIC_CRS = "EPSG:4326"
METRIC_CRS = "EPSG:32618"  # UTM 18N, metres

METERS_PER_DEGREE = 111_320.0

# Distance bands in meters
DISTANCE_BANDS_M = [250, 500, 750, 1000, 1250, 1500]

# Column names attached to the school frame
DISTANCE_COL = "subway_distance_m"
DENSITY_COL = "school_density"

BANDWIDTH_UNITS = ("degree", "metre")
K_CORRECTIONS = ("isotropic", "none")
SAMPLING_METHODS = ("linear", "nearest")


class AnalysisConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    buffer_radius_m: float = 804.67
    kde_bandwidth: float = 0.01
    kde_bandwidth_unit: str = "degree"
    kde_grid_size: int = 128
    n_simulations: int = 999
    envelope_rank: int = 1
    random_seed: int = 6750
    n_radii: int = 128
    k_correction: str = "isotropic"
    target_crs: str = GEOGRAPHIC_CRS
    metric_crs: str = METRIC_CRS
    boundary_tolerance_m: float = 1e-3
    buffer_quad_segs: int = 16
    intensity_sampling: str = "linear"
    n_jobs: int = 1

    @field_validator("buffer_radius_m", "kde_bandwidth")
    @classmethod
    def _positive(cls, value, info):
        if value <= 0:
            raise ConfigurationError(f"{info.field_name} must be positive, got {value}", source=info.field_name)
        return value

    @field_validator("boundary_tolerance_m", "random_seed")
    @classmethod
    def _non_negative(cls, value, info):
        if value < 0:
            raise ConfigurationError(f"{info.field_name} must be >= 0, got {value}", source=info.field_name)
        return value

    @field_validator("n_simulations", "envelope_rank", "buffer_quad_segs")
    @classmethod
    def _at_least_one(cls, value, info):
        if value < 1:
            raise ConfigurationError(f"{info.field_name} must be >= 1, got {value}", source=info.field_name)
        return value

    @field_validator("kde_grid_size", "n_radii")
    @classmethod
    def _at_least_two(cls, value, info):
        if value < 2:
            raise ConfigurationError(f"{info.field_name} must be >= 2, got {value}", source=info.field_name)
        return value

    @field_validator("kde_bandwidth_unit")
    @classmethod
    def _bandwidth_unit(cls, value):
        if value not in BANDWIDTH_UNITS:
            raise ConfigurationError(f"kde_bandwidth_unit must be one of {BANDWIDTH_UNITS}, got {value!r}",
                                     source="kde_bandwidth_unit")
        return value

    @field_validator("k_correction")
    @classmethod
    def _correction(cls, value):
        if value not in K_CORRECTIONS:
            raise ConfigurationError(f"k_correction must be one of {K_CORRECTIONS}, got {value!r}",
                                     source="k_correction")
        return value

    @field_validator("intensity_sampling")
    @classmethod
    def _sampling(cls, value):
        if value not in SAMPLING_METHODS:
            raise ConfigurationError(f"intensity_sampling must be one of {SAMPLING_METHODS}, got {value!r}",
                                     source="intensity_sampling")
        return value

    @model_validator(mode="after")
    def _rank_within_simulations(self):
        if self.envelope_rank > self.n_simulations:
            raise ConfigurationError(
                f"envelope_rank ({self.envelope_rank}) cannot exceed n_simulations ({self.n_simulations})",
                source="envelope_rank",
            )
        return self

    @property
    def kde_bandwidth_m(self) -> float:
        """Bandwidth in metres of the metric CRS."""
        if self.kde_bandwidth_unit == "degree":
            return self.kde_bandwidth * METERS_PER_DEGREE
        return self.kde_bandwidth
