"""
Typed errors raised by the scoring engine.

- InputValidationError: malformed image, fatal before any pixel work.
- ConfigurationError: invalid weights/bands/matrix, fatal at construction.
- InsufficientDataError: population too small for a measurement. Non-fatal:
  the feature extractor records it and the analysis continues with
  degraded confidence.
- ScoringError: a criterion function returned a non-finite value or asked
  for a feature that was never extracted.
"""

from typing import Optional


class MorphoscoreError(Exception):
    """Base class for all engine errors."""


class InputValidationError(MorphoscoreError, ValueError):
    """Malformed input image (dimensions, buffer)."""


class ConfigurationError(MorphoscoreError, ValueError):
    """Invalid pipeline configuration, detected at construction time."""


class ScoringError(MorphoscoreError):
    """A criterion could not be evaluated against a FeatureSet."""


class InsufficientDataError(MorphoscoreError):
    """Population too small for a meaningful measurement."""

    def __init__(
        self,
        feature: str,
        population: int = 0,
        minimum: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.feature = feature
        self.population = population
        self.minimum = minimum
        if message is None:
            if minimum is None:
                message = f"{feature}: empty population"
            else:
                message = (
                    f"{feature}: {population} item(s) detected, "
                    f"at least {minimum} required"
                )
        super().__init__(message)

    def with_feature(self, feature: str) -> "InsufficientDataError":
        """Re-target the error at a derived feature name."""
        return InsufficientDataError(
            feature,
            population=self.population,
            minimum=self.minimum,
            message=f"{feature}: {self.args[0]}",
        )

    def to_dict(self) -> dict:
        return {
            "feature": self.feature,
            "population": self.population,
            "minimum": self.minimum,
            "message": str(self),
        }
