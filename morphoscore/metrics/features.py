"""
Feature extraction: pure scalar measurements over stain channels.

Every measurement is a pure function of its inputs (same channels -> same
values, no hidden state). Measurements over a population (detected
structures, density windows, edge pixels) raise InsufficientDataError when
the population is empty or below its configured minimum; FeatureExtractor
catches it, stores INSUFFICIENT_DATA_SENTINEL as the value and records the
error in FeatureSet.insufficient. NaN / inf never leave this module.

Feature catalogue (channels stretched to [0, 1]):

CHANNEL STATISTICS
    <channel>_mean, <channel>_std        one pair per stain channel
    mean_channel_intensity               mean of primary and secondary means
    primary_fraction                     primary / (primary + secondary)

INTENSITY-THRESHOLD DENSITIES
    primary_density                      primary > density_cutoff
    mitotic_fraction                     primary > mitotic_cutoff
    secondary_density                    secondary > cytoplasm_cutoff
    secondary_low_fraction               secondary < secondary_low_cutoff
    secondary_band_fraction              secondary in (band_low, band_high)
    secondary_high_fraction              secondary > secondary_high_cutoff

LOCAL MAXIMA
    local_maxima_count                   strict neighbourhood maxima
    local_maxima_density                 count / pixel count

STRUCTURES (population: detected structures, minimum min_structures)
    structure_count
    structure_area_mean, structure_area_cv, structure_intensity_cv
    pleomorphism_index                   (area cv + intensity cv) / 2, capped at 1
    hull_complexity                      mean (1 - solidity)
    nc_ratio                             mean area / surrounding secondary area

DENSITY WINDOWS (population: dense windows, minimum min_windows)
    window_count
    window_density                       mean density of dense windows
    chromatin_texture                    (std + 1 / (1 + var)) / 2 over windows

SPATIAL / ARCHITECTURE
    quadrant_variance, distribution_score
    edge_mean, edge_variance             over primary edge pixels
    edge_density                         strong edge pixels / pixel count
    architectural_organization           (secondary_low_fraction + 1 - edge_variance) / 2
"""

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage

from morphoscore.constants import (
    CYTOPLASM_CUTOFF,
    CYTOPLASM_RADIUS,
    DEFAULT_CHANNEL_NAMES,
    DENSITY_CUTOFF,
    EDGE_CUTOFF,
    INSUFFICIENT_DATA_SENTINEL,
    LOCAL_MAXIMA_CUTOFF,
    LOCAL_MAXIMA_NEIGHBORHOOD,
    MAX_STRUCTURE_AREA,
    MIN_STRUCTURE_AREA,
    MIN_STRUCTURES,
    MIN_WINDOWS,
    MITOTIC_CUTOFF,
    PRIMARY_CHANNEL,
    SECONDARY_BAND,
    SECONDARY_CHANNEL,
    SECONDARY_HIGH_CUTOFF,
    SECONDARY_LOW_CUTOFF,
    STRONG_EDGE_CUTOFF,
    STRUCTURE_CUTOFF,
    WINDOW_MIN_DENSITY,
    WINDOW_SIZE,
)
from morphoscore.errors import ConfigurationError, InputValidationError, InsufficientDataError
from morphoscore.metrics.structures import StructureInfo, detect_structures
from morphoscore.preprocessing.stain_separation import StainChannel

logger = logging.getLogger(__name__)


# =========================================================================
# MEASUREMENT FUNCTIONS
# =========================================================================

def threshold_density(values: np.ndarray, cutoff: float) -> float:
    """Fraction of pixels strictly above cutoff (0.0 for an empty array)."""
    if values.size == 0:
        return 0.0
    return float(np.count_nonzero(values > cutoff)) / values.size


def below_density(values: np.ndarray, cutoff: float) -> float:
    """Fraction of pixels strictly below cutoff."""
    if values.size == 0:
        return 0.0
    return float(np.count_nonzero(values < cutoff)) / values.size


def band_density(values: np.ndarray, low: float, high: float) -> float:
    """Fraction of pixels strictly inside (low, high)."""
    if values.size == 0:
        return 0.0
    inside = (values > low) & (values < high)
    return float(np.count_nonzero(inside)) / values.size


def local_maxima_mask(
    values: np.ndarray,
    cutoff: float,
    neighborhood: int = LOCAL_MAXIMA_NEIGHBORHOOD
) -> np.ndarray:
    """
    Candidate structure centres: pixels equal to their neighbourhood maximum,
    strictly above cutoff, and strictly above their neighbourhood minimum
    (flat plateaus are not maxima).
    """
    if neighborhood not in (3, 5):
        raise ConfigurationError(f"neighborhood must be 3 or 5, got {neighborhood}")
    local_max = ndimage.maximum_filter(values, size=neighborhood, mode="nearest")
    local_min = ndimage.minimum_filter(values, size=neighborhood, mode="nearest")
    return (values == local_max) & (values > local_min) & (values > cutoff)


def count_local_maxima(
    values: np.ndarray,
    cutoff: float,
    neighborhood: int = LOCAL_MAXIMA_NEIGHBORHOOD
) -> int:
    return int(np.count_nonzero(local_maxima_mask(values, cutoff, neighborhood)))


def dispersion(values: Sequence[float], name: str = "dispersion") -> Tuple[float, float, float]:
    """
    Population mean, std and coefficient of variation.

    Raises:
        InsufficientDataError: empty population
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        raise InsufficientDataError(name)
    mean = float(arr.mean())
    std = float(arr.std())
    cv = std / mean if mean > 0 else 0.0
    return mean, std, cv


def channel_ratio(a: np.ndarray, b: np.ndarray, name: str = "channel_ratio") -> float:
    """
    mean(a) / (mean(a) + mean(b)).

    Raises:
        InsufficientDataError: both channels are empty or all-zero
    """
    mean_a = float(a.mean()) if a.size else 0.0
    mean_b = float(b.mean()) if b.size else 0.0
    total = mean_a + mean_b
    if total <= 0:
        raise InsufficientDataError(name, message=f"{name}: no stain signal in either channel")
    return mean_a / total


def window_densities(
    values: np.ndarray,
    cutoff: float,
    window: int = WINDOW_SIZE,
    min_density: float = WINDOW_MIN_DENSITY
) -> List[float]:
    """
    Tile the channel in non-overlapping window x window blocks and return the
    above-cutoff density of every block denser than min_density.
    Partial blocks at the right/bottom edges are skipped.
    """
    h, w = values.shape
    densities = []
    for y in range(0, h - window + 1, window):
        for x in range(0, w - window + 1, window):
            density = threshold_density(values[y:y + window, x:x + window], cutoff)
            if density > min_density:
                densities.append(density)
    return densities


def quadrant_means(values: np.ndarray) -> List[float]:
    """
    Mean intensity of the four quadrants (TL, TR, BL, BR).

    Raises:
        InsufficientDataError: image smaller than 2x2
    """
    h, w = values.shape
    if h < 2 or w < 2:
        raise InsufficientDataError("quadrant_means", population=h * w, minimum=4)
    mid_h, mid_w = h // 2, w // 2
    quadrants = (
        values[:mid_h, :mid_w],
        values[:mid_h, mid_w:],
        values[mid_h:, :mid_w],
        values[mid_h:, mid_w:],
    )
    return [float(q.mean()) for q in quadrants]


def gradient_magnitudes(values: np.ndarray) -> np.ndarray:
    """Absolute horizontal central differences |v[x+1] - v[x-1]|, flattened."""
    if values.shape[1] < 3:
        return np.zeros(0, dtype=np.float64)
    return np.abs(values[:, 2:] - values[:, :-2]).ravel()


def _require(population: int, minimum: int, name: str) -> None:
    if population < minimum or population == 0:
        raise InsufficientDataError(name, population=population, minimum=minimum)


# =========================================================================
# FEATURE SET
# =========================================================================

class FeatureSet(Mapping):
    """
    Immutable mapping feature name -> float.

    `insufficient` maps the names of sentinel-valued features to the
    InsufficientDataError that produced them.
    """

    def __init__(
        self,
        values: Dict[str, float],
        insufficient: Optional[Dict[str, InsufficientDataError]] = None
    ):
        self._values = MappingProxyType(dict(values))
        self._insufficient = MappingProxyType(dict(insufficient or {}))

    def __getitem__(self, name: str) -> float:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"FeatureSet({dict(self._values)!r}, insufficient={sorted(self._insufficient)})"

    @property
    def insufficient(self) -> Mapping:
        return self._insufficient

    def is_sufficient(self, name: str) -> bool:
        return name not in self._insufficient

    def to_dict(self) -> Dict[str, float]:
        return dict(self._values)


# =========================================================================
# FEATURE EXTRACTOR
# =========================================================================

STRUCTURE_FEATURES = (
    "structure_area_mean",
    "structure_area_cv",
    "structure_intensity_cv",
    "pleomorphism_index",
    "hull_complexity",
    "nc_ratio",
)
WINDOW_FEATURES = ("window_density", "chromatin_texture")
EDGE_FEATURES = ("edge_mean", "edge_variance", "architectural_organization")

BASE_FEATURES = (
    "mean_channel_intensity",
    "primary_fraction",
    "primary_density",
    "mitotic_fraction",
    "secondary_density",
    "secondary_low_fraction",
    "secondary_band_fraction",
    "secondary_high_fraction",
    "local_maxima_count",
    "local_maxima_density",
    "structure_count",
    *STRUCTURE_FEATURES,
    "window_count",
    *WINDOW_FEATURES,
    "quadrant_variance",
    "distribution_score",
    "edge_density",
    *EDGE_FEATURES,
)


class FeatureExtractor:
    """
    Computes the feature catalogue from post-processed stain channels.

    Usage:
        extractor = FeatureExtractor()
        features = extractor.extract(channels)
        features["structure_count"], features.insufficient
    """

    def __init__(
        self,
        channel_names: Sequence[str] = DEFAULT_CHANNEL_NAMES,
        primary_channel: str = PRIMARY_CHANNEL,
        secondary_channel: str = SECONDARY_CHANNEL,
        structure_cutoff: float = STRUCTURE_CUTOFF,
        min_structure_area: int = MIN_STRUCTURE_AREA,
        max_structure_area: int = MAX_STRUCTURE_AREA,
        min_structures: int = MIN_STRUCTURES,
        density_cutoff: float = DENSITY_CUTOFF,
        mitotic_cutoff: float = MITOTIC_CUTOFF,
        local_maxima_cutoff: float = LOCAL_MAXIMA_CUTOFF,
        local_maxima_neighborhood: int = LOCAL_MAXIMA_NEIGHBORHOOD,
        window_size: int = WINDOW_SIZE,
        window_min_density: float = WINDOW_MIN_DENSITY,
        min_windows: int = MIN_WINDOWS,
        secondary_low_cutoff: float = SECONDARY_LOW_CUTOFF,
        secondary_band: Tuple[float, float] = SECONDARY_BAND,
        secondary_high_cutoff: float = SECONDARY_HIGH_CUTOFF,
        cytoplasm_cutoff: float = CYTOPLASM_CUTOFF,
        cytoplasm_radius: int = CYTOPLASM_RADIUS,
        edge_cutoff: float = EDGE_CUTOFF,
        strong_edge_cutoff: float = STRONG_EDGE_CUTOFF,
    ):
        self.channel_names = tuple(channel_names)
        for role, name in (("primary", primary_channel), ("secondary", secondary_channel)):
            if name not in self.channel_names:
                raise ConfigurationError(
                    f"{role} channel '{name}' not in channel names {self.channel_names}"
                )
        if local_maxima_neighborhood not in (3, 5):
            raise ConfigurationError(
                f"local_maxima_neighborhood must be 3 or 5, got {local_maxima_neighborhood}"
            )
        if min_structure_area < 1 or max_structure_area < min_structure_area:
            raise ConfigurationError(
                f"Invalid structure area bounds [{min_structure_area}, {max_structure_area}]"
            )
        if window_size < 1 or cytoplasm_radius < 0:
            raise ConfigurationError("window_size must be >= 1 and cytoplasm_radius >= 0")
        if min_structures < 1 or min_windows < 1:
            raise ConfigurationError("min_structures and min_windows must be >= 1")
        band_low, band_high = secondary_band
        if band_low >= band_high:
            raise ConfigurationError(f"Invalid secondary band {secondary_band}")

        self.primary_channel = primary_channel
        self.secondary_channel = secondary_channel
        self.structure_cutoff = structure_cutoff
        self.min_structure_area = min_structure_area
        self.max_structure_area = max_structure_area
        self.min_structures = min_structures
        self.density_cutoff = density_cutoff
        self.mitotic_cutoff = mitotic_cutoff
        self.local_maxima_cutoff = local_maxima_cutoff
        self.local_maxima_neighborhood = local_maxima_neighborhood
        self.window_size = window_size
        self.window_min_density = window_min_density
        self.min_windows = min_windows
        self.secondary_low_cutoff = secondary_low_cutoff
        self.secondary_band = (float(band_low), float(band_high))
        self.secondary_high_cutoff = secondary_high_cutoff
        self.cytoplasm_cutoff = cytoplasm_cutoff
        self.cytoplasm_radius = cytoplasm_radius
        self.edge_cutoff = edge_cutoff
        self.strong_edge_cutoff = strong_edge_cutoff

    @property
    def feature_names(self) -> Tuple[str, ...]:
        """Every feature name extract() produces."""
        per_channel = []
        for name in self.channel_names:
            per_channel.extend((f"{name}_mean", f"{name}_std"))
        return tuple(per_channel) + BASE_FEATURES

    def extract(self, channels: Dict[str, StainChannel]) -> FeatureSet:
        """
        Compute all features.

        Raises:
            InputValidationError: a configured channel is missing
        """
        missing = [name for name in self.channel_names if name not in channels]
        if missing:
            raise InputValidationError(f"Missing stain channel(s): {missing}")

        values: Dict[str, float] = {}
        insufficient: Dict[str, InsufficientDataError] = {}

        def record(name: str, compute: Callable[[], float]) -> None:
            try:
                value = float(compute())
            except InsufficientDataError as exc:
                values[name] = INSUFFICIENT_DATA_SENTINEL
                insufficient[name] = exc if exc.feature == name else exc.with_feature(name)
                return
            if not np.isfinite(value):
                values[name] = INSUFFICIENT_DATA_SENTINEL
                insufficient[name] = InsufficientDataError(
                    name, message=f"{name}: non-finite measurement"
                )
                return
            values[name] = value

        for name in self.channel_names:
            channel = channels[name]
            values[f"{name}_mean"] = channel.mean
            values[f"{name}_std"] = channel.std

        primary = channels[self.primary_channel].values
        secondary = channels[self.secondary_channel].values
        pixel_count = primary.size

        record("mean_channel_intensity", lambda: (primary.mean() + secondary.mean()) / 2)
        record("primary_fraction", lambda: channel_ratio(primary, secondary, "primary_fraction"))

        # Densities
        record("primary_density", lambda: threshold_density(primary, self.density_cutoff))
        record("mitotic_fraction", lambda: threshold_density(primary, self.mitotic_cutoff))
        record("secondary_density", lambda: threshold_density(secondary, self.cytoplasm_cutoff))
        record("secondary_low_fraction", lambda: below_density(secondary, self.secondary_low_cutoff))
        record("secondary_band_fraction", lambda: band_density(secondary, *self.secondary_band))
        record("secondary_high_fraction", lambda: threshold_density(secondary, self.secondary_high_cutoff))

        # Local maxima
        maxima = count_local_maxima(primary, self.local_maxima_cutoff, self.local_maxima_neighborhood)
        record("local_maxima_count", lambda: maxima)
        record("local_maxima_density", lambda: maxima / pixel_count)

        # Structures
        structures = detect_structures(
            primary,
            secondary,
            cutoff=self.structure_cutoff,
            min_area=self.min_structure_area,
            max_area=self.max_structure_area,
            cytoplasm_cutoff=self.cytoplasm_cutoff,
            cytoplasm_radius=self.cytoplasm_radius,
        )
        record("structure_count", lambda: len(structures))
        self._structure_features(structures, record)

        # Density windows
        densities = window_densities(
            primary, self.density_cutoff, self.window_size, self.window_min_density
        )
        record("window_count", lambda: len(densities))
        self._window_features(densities, record)

        # Spatial distribution
        record("quadrant_variance", lambda: float(np.var(quadrant_means(primary))))
        record("distribution_score", lambda: 1.0 - min(float(np.var(quadrant_means(primary))), 1.0))

        # Edges / architecture
        gradients = gradient_magnitudes(primary)
        record("edge_density", lambda: np.count_nonzero(gradients > self.strong_edge_cutoff) / pixel_count)
        low_fraction = values["secondary_low_fraction"]
        self._edge_features(gradients, low_fraction, record)

        features = FeatureSet(values, insufficient)
        if insufficient:
            logger.debug(f"Insufficient data for {len(insufficient)} feature(s): {sorted(insufficient)}")
        return features

    def _structure_features(self, structures: List[StructureInfo], record) -> None:
        def population() -> List[StructureInfo]:
            _require(len(structures), self.min_structures, "structure_count")
            return structures

        def area_cv() -> float:
            return dispersion([s.area for s in population()], "structure_area")[2]

        def intensity_cv() -> float:
            return dispersion([s.mean_intensity for s in population()], "structure_intensity")[2]

        def nc_ratio() -> float:
            ratios = [s.nc_ratio for s in population() if s.nc_ratio is not None]
            return min(dispersion(ratios, "nc_ratio")[0], 1.0)

        record("structure_area_mean", lambda: dispersion([s.area for s in population()])[0])
        record("structure_area_cv", area_cv)
        record("structure_intensity_cv", intensity_cv)
        record("pleomorphism_index", lambda: min((area_cv() + intensity_cv()) / 2, 1.0))
        record("hull_complexity", lambda: min(dispersion([s.complexity for s in population()])[0], 1.0))
        record("nc_ratio", nc_ratio)

    def _window_features(self, densities: List[float], record) -> None:
        def stats() -> Tuple[float, float, float]:
            _require(len(densities), self.min_windows, "window_count")
            return dispersion(densities, "window_density")

        def texture() -> float:
            _, std, _ = stats()
            return min((std + 1.0 / (1.0 + std ** 2)) / 2, 1.0)

        record("window_density", lambda: min(stats()[0], 1.0))
        record("chromatin_texture", texture)

    def _edge_features(self, gradients: np.ndarray, low_fraction: float, record) -> None:
        edges = gradients[gradients > self.edge_cutoff]

        def variance() -> float:
            _, std, _ = dispersion(edges, "edge_pixels")
            return std ** 2

        record("edge_mean", lambda: dispersion(edges, "edge_pixels")[0])
        record("edge_variance", variance)
        record(
            "architectural_organization",
            lambda: min((low_fraction + 1.0 - min(variance(), 1.0)) / 2, 1.0),
        )
