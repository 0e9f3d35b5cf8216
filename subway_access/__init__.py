"""Spatial accessibility of schools to the NYC subway network."""

from subway_access.config import AnalysisConfig
from subway_access.errors import (
    AccessibilityError,
    ConfigurationError,
    DegeneratePatternError,
    GeometryValidityError,
    InsufficientDataError,
    LoadError,
)
from subway_access.pipeline import AnalysisResult, analyze, run_analysis, save_results

__all__ = [
    "AnalysisConfig",
    "AnalysisResult",
    "AccessibilityError",
    "ConfigurationError",
    "DegeneratePatternError",
    "GeometryValidityError",
    "InsufficientDataError",
    "LoadError",
    "analyze",
    "run_analysis",
    "save_results",
]
