"""
Score -> label banding.

Bands are ordered from most to least severe with strictly decreasing
thresholds. A score gets the first band whose threshold it strictly
exceeds (score > threshold); otherwise the default label. Every score in
[0, 1] gets exactly one label.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

from morphoscore.constants import DEFAULT_LABEL, DEFAULT_LABEL_BANDS
from morphoscore.errors import ConfigurationError


@dataclass(frozen=True)
class LabelBand:
    label: str
    threshold: float

    def __post_init__(self):
        if not self.label:
            raise ConfigurationError("Label band needs a non-empty label")
        if not 0.0 <= self.threshold < 1.0:
            raise ConfigurationError(
                f"Band '{self.label}': threshold must be in [0, 1), got {self.threshold}"
            )


class Classifier:
    """
    Usage:
        classifier = Classifier([LabelBand("high", 0.85), LabelBand("low", 0.45)], "minimal")
        classifier.classify(0.9)      # "high"
        classifier.rank("high")       # 0 (most severe)
    """

    def __init__(self, bands: Sequence[LabelBand] = None, default_label: str = DEFAULT_LABEL):
        if bands is None:
            bands = [LabelBand(label, threshold) for label, threshold in DEFAULT_LABEL_BANDS]
        self.bands: Tuple[LabelBand, ...] = tuple(bands)

        thresholds = [b.threshold for b in self.bands]
        if any(b >= a for a, b in zip(thresholds, thresholds[1:])):
            raise ConfigurationError(f"Band thresholds must be strictly decreasing, got {thresholds}")
        if not default_label:
            raise ConfigurationError("default_label must not be empty")

        self.default_label = default_label
        self.labels: Tuple[str, ...] = tuple(b.label for b in self.bands) + (default_label,)
        if len(set(self.labels)) != len(self.labels):
            raise ConfigurationError(f"Duplicate labels: {self.labels}")

    def classify(self, score: float) -> str:
        for band in self.bands:
            if score > band.threshold:
                return band.label
        return self.default_label

    def rank(self, label: str) -> int:
        """0 for the most severe label, len(bands) for the default."""
        try:
            return self.labels.index(label)
        except ValueError:
            raise ConfigurationError(
                f"Unknown label: {label}. Valid: {', '.join(self.labels)}"
            ) from None
