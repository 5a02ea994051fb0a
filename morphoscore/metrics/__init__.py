"""
Metrics: structure detection and scalar feature extraction.

Usage:
    >>> from morphoscore.metrics import FeatureExtractor
    >>> features = FeatureExtractor().extract(channels)
    >>> features["pleomorphism_index"], dict(features.insufficient)
"""

from .structures import (
    StructureInfo,
    count_surrounding,
    detect_structures,
    label_structures,
)
from .features import (
    FeatureExtractor,
    FeatureSet,
    band_density,
    below_density,
    channel_ratio,
    count_local_maxima,
    dispersion,
    gradient_magnitudes,
    local_maxima_mask,
    quadrant_means,
    threshold_density,
    window_densities,
)

__all__ = [
    'StructureInfo',
    'count_surrounding',
    'detect_structures',
    'label_structures',
    'FeatureExtractor',
    'FeatureSet',
    'band_density',
    'below_density',
    'channel_ratio',
    'count_local_maxima',
    'dispersion',
    'gradient_magnitudes',
    'local_maxima_mask',
    'quadrant_means',
    'threshold_density',
    'window_densities',
]
