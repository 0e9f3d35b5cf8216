"""
Exceptions raised by the accessibility analysis.

Every error records the pipeline stage it came from and, where there is one,
the offending input (a file path, a column name, a config field).
"""

from __future__ import annotations

from typing import Optional


class AccessibilityError(Exception):
    """Base class for all analysis errors."""

    stage = "analysis"

    def __init__(self, message: str, stage: Optional[str] = None, source: Optional[str] = None):
        self.message = message
        if stage is not None:
            self.stage = stage
        self.source = source
        super().__init__(message)

    def __str__(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.source:
            text += f" (input: {self.source})"
        return text


class LoadError(AccessibilityError):
    """Dataset is missing, unreadable or carries no geometry."""

    stage = "load"


class GeometryValidityError(AccessibilityError):
    """Geometry is still invalid after a repair attempt."""

    stage = "repair"


class DegeneratePatternError(AccessibilityError):
    """Point pattern is empty, a singleton, or has a zero-area window."""

    stage = "point_pattern"


class InsufficientDataError(AccessibilityError):
    """Too few complete observations to fit the association model."""

    stage = "association"


class ConfigurationError(AccessibilityError):
    """A tunable parameter is outside its valid range."""

    stage = "config"
