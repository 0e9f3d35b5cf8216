"""
Association between school clustering and subway proximity.

Fits school_density = b0 + b1 * subway_distance_m + e by OLS (statsmodels) on
complete observations only: rows missing either value are dropped
explicitly before fitting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd
import statsmodels.api as sm

from subway_access.config import DENSITY_COL, DISTANCE_COL
from subway_access.errors import InsufficientDataError

log = logging.getLogger(__name__)

MIN_OBSERVATIONS = 3


@dataclass(frozen=True)
class RegressionModel:
    intercept: float
    slope: float
    intercept_se: float
    slope_se: float
    intercept_t: float
    slope_t: float
    intercept_p: float
    slope_p: float
    r_squared: float
    n_obs: int

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "term": ["const", DISTANCE_COL],
            "coefficient": [self.intercept, self.slope],
            "std_error": [self.intercept_se, self.slope_se],
            "t_value": [self.intercept_t, self.slope_t],
            "p_value": [self.intercept_p, self.slope_p],
        })


def complete_observations(points: pd.DataFrame, x_col: str = DISTANCE_COL, y_col: str = DENSITY_COL) -> pd.DataFrame:
    """Rows where both columns are present."""
    missing = [c for c in (x_col, y_col) if c not in points.columns]
    if missing:
        raise InsufficientDataError(f"missing column(s): {', '.join(missing)}", source=", ".join(missing))

    non_numeric = [c for c in (x_col, y_col) if not pd.api.types.is_numeric_dtype(points[c])]
    if non_numeric:
        raise InsufficientDataError(f"non-numeric column(s): {', '.join(non_numeric)}",
                                    source=", ".join(non_numeric))

    data = points[[x_col, y_col]]
    complete = data.dropna(subset=[x_col, y_col])
    dropped = len(data) - len(complete)
    if dropped:
        log.warning("Dropped %d rows with missing %s/%s", dropped, x_col, y_col)
    if len(complete) < MIN_OBSERVATIONS:
        raise InsufficientDataError(
            f"need at least {MIN_OBSERVATIONS} complete observations, got {len(complete)}",
            source=f"{x_col}, {y_col}",
        )
    return complete


def fit(points: pd.DataFrame, x_col: str = DISTANCE_COL, y_col: str = DENSITY_COL) -> RegressionModel:
    """OLS of density on distance to the nearest subway line."""
    data = complete_observations(points, x_col, y_col)

    X = sm.add_constant(data[[x_col]], has_constant="add")
    results = sm.OLS(data[y_col], X).fit()

    model = RegressionModel(
        intercept=float(results.params["const"]),
        slope=float(results.params[x_col]),
        intercept_se=float(results.bse["const"]),
        slope_se=float(results.bse[x_col]),
        intercept_t=float(results.tvalues["const"]),
        slope_t=float(results.tvalues[x_col]),
        intercept_p=float(results.pvalues["const"]),
        slope_p=float(results.pvalues[x_col]),
        r_squared=float(results.rsquared),
        n_obs=int(results.nobs),
    )
    log.info("OLS: slope %.4g (p=%.3g), R2 %.4f, n=%d", model.slope, model.slope_p, model.r_squared, model.n_obs)
    return model


def correlation(points: pd.DataFrame, x_col: str = DISTANCE_COL, y_col: str = DENSITY_COL) -> float:
    """Pearson correlation of the same complete observations used by `fit`."""
    data = complete_observations(points, x_col, y_col)
    return float(data[x_col].corr(data[y_col], method="pearson"))
