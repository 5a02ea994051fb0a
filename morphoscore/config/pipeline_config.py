"""
Pipeline configuration.

Every tunable number of the engine (stain vectors, cutoffs, weights,
confidence caps, label bands) lives in a PipelineConfig. Organ presets are
plain dictionaries loaded through PipelineConfig.from_dict, so a JSON file
and a preset go through the same validation.

Usage:
    config = load_config("lung.json")
    config = PipelineConfig.from_dict({...})
    save_config(config, "copy.json")
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar, Union

from morphoscore import constants
from morphoscore.errors import ConfigurationError
from morphoscore.metrics.features import FeatureExtractor
from morphoscore.preprocessing.channel_processing import ChannelPostProcessor
from morphoscore.preprocessing.stain_separation import StainUnmixer
from morphoscore.scoring.classifier import Classifier, LabelBand
from morphoscore.scoring.criteria import Category, Criterion
from morphoscore.scoring.ensemble import Tier

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =========================================================================
# STAGE CONFIGS
# =========================================================================

@dataclass(frozen=True)
class UnmixingConfig:
    stain_vectors: Tuple[Tuple[float, float, float], ...] = constants.DEFAULT_STAIN_VECTORS
    channel_names: Tuple[str, ...] = constants.DEFAULT_CHANNEL_NAMES
    epsilon: float = constants.OD_EPSILON
    max_density: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "stain_vectors", tuple(tuple(v) for v in self.stain_vectors))
        object.__setattr__(self, "channel_names", tuple(self.channel_names))

    def build(self) -> StainUnmixer:
        return StainUnmixer(
            stain_vectors=self.stain_vectors,
            channel_names=self.channel_names,
            epsilon=self.epsilon,
            max_density=self.max_density,
        )


@dataclass(frozen=True)
class PostProcessingConfig:
    smoothing: str = constants.DEFAULT_SMOOTHING
    kernel_size: int = constants.DEFAULT_KERNEL_SIZE
    low_percentile: float = constants.DEFAULT_LOW_PERCENTILE
    high_percentile: float = constants.DEFAULT_HIGH_PERCENTILE
    min_dynamic_range: float = constants.MIN_DYNAMIC_RANGE

    def build(self) -> ChannelPostProcessor:
        return ChannelPostProcessor(**asdict(self))


@dataclass(frozen=True)
class FeatureConfig:
    primary_channel: str = constants.PRIMARY_CHANNEL
    secondary_channel: str = constants.SECONDARY_CHANNEL
    structure_cutoff: float = constants.STRUCTURE_CUTOFF
    min_structure_area: int = constants.MIN_STRUCTURE_AREA
    max_structure_area: int = constants.MAX_STRUCTURE_AREA
    min_structures: int = constants.MIN_STRUCTURES
    density_cutoff: float = constants.DENSITY_CUTOFF
    mitotic_cutoff: float = constants.MITOTIC_CUTOFF
    local_maxima_cutoff: float = constants.LOCAL_MAXIMA_CUTOFF
    local_maxima_neighborhood: int = constants.LOCAL_MAXIMA_NEIGHBORHOOD
    window_size: int = constants.WINDOW_SIZE
    window_min_density: float = constants.WINDOW_MIN_DENSITY
    min_windows: int = constants.MIN_WINDOWS
    secondary_low_cutoff: float = constants.SECONDARY_LOW_CUTOFF
    secondary_band: Tuple[float, float] = constants.SECONDARY_BAND
    secondary_high_cutoff: float = constants.SECONDARY_HIGH_CUTOFF
    cytoplasm_cutoff: float = constants.CYTOPLASM_CUTOFF
    cytoplasm_radius: int = constants.CYTOPLASM_RADIUS
    edge_cutoff: float = constants.EDGE_CUTOFF
    strong_edge_cutoff: float = constants.STRONG_EDGE_CUTOFF

    def __post_init__(self):
        object.__setattr__(self, "secondary_band", tuple(self.secondary_band))

    def build(self, channel_names: Tuple[str, ...]) -> FeatureExtractor:
        return FeatureExtractor(channel_names=channel_names, **asdict(self))


# =========================================================================
# SCORING CONFIGS
# =========================================================================

@dataclass(frozen=True)
class CriterionSpec:
    """Declarative criterion: score / confidence are {"kind": ..., **params}."""
    name: str
    weight: float
    score: Dict[str, Any]
    confidence: Optional[Dict[str, Any]] = None
    description: str = ""

    def build(self, insufficient_confidence: float) -> Criterion:
        return Criterion.from_spec(
            name=self.name,
            weight=self.weight,
            score=self.score,
            confidence=self.confidence,
            description=self.description,
            insufficient_confidence=insufficient_confidence,
        )


@dataclass(frozen=True)
class CategorySpec:
    name: str
    tier: str
    weight: float
    criteria: Tuple[CriterionSpec, ...]
    description: str = ""

    def __post_init__(self):
        criteria = tuple(
            c if isinstance(c, CriterionSpec) else _from_mapping(CriterionSpec, c, f"criterion of '{self.name}'")
            for c in self.criteria
        )
        object.__setattr__(self, "criteria", criteria)

    def build(self, insufficient_confidence: float) -> Category:
        return Category(
            name=self.name,
            criteria=tuple(c.build(insufficient_confidence) for c in self.criteria),
            tier=self.tier,
            weight=self.weight,
            description=self.description,
        )


@dataclass(frozen=True)
class TierSpec:
    name: str
    weight: float
    confidence_boost: float = constants.CONFIDENCE_BOOST
    confidence_cap: float = constants.CONFIDENCE_CAP

    def build(self) -> Tier:
        return Tier(**asdict(self))


@dataclass(frozen=True)
class LabelBandSpec:
    label: str
    threshold: float

    def build(self) -> LabelBand:
        return LabelBand(self.label, self.threshold)


def _default_bands() -> Tuple[LabelBandSpec, ...]:
    return tuple(LabelBandSpec(label, threshold) for label, threshold in constants.DEFAULT_LABEL_BANDS)


def _default_tiers() -> Tuple[TierSpec, ...]:
    return (
        TierSpec(constants.MORPHOMETRIC_TIER, 0.7),
        TierSpec(constants.PATTERN_TIER, 0.3),
    )


# =========================================================================
# PIPELINE CONFIG
# =========================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Complete, immutable description of one scoring pipeline."""
    name: str = "custom"
    description: str = ""
    unmixing: UnmixingConfig = field(default_factory=UnmixingConfig)
    post_processing: PostProcessingConfig = field(default_factory=PostProcessingConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    categories: Tuple[CategorySpec, ...] = ()
    tiers: Tuple[TierSpec, ...] = field(default_factory=_default_tiers)
    label_bands: Tuple[LabelBandSpec, ...] = field(default_factory=_default_bands)
    default_label: str = constants.DEFAULT_LABEL
    confidence_boost: float = constants.CONFIDENCE_BOOST
    confidence_cap: float = constants.CONFIDENCE_CAP
    insufficient_confidence: float = constants.INSUFFICIENT_DATA_CONFIDENCE

    def __post_init__(self):
        object.__setattr__(self, "categories", tuple(self.categories))
        object.__setattr__(self, "tiers", tuple(self.tiers))
        object.__setattr__(self, "label_bands", tuple(self.label_bands))

    # --- Builders -----------------------------------------------------------

    def build_categories(self) -> Tuple[Category, ...]:
        return tuple(c.build(self.insufficient_confidence) for c in self.categories)

    def build_tiers(self) -> Tuple[Tier, ...]:
        return tuple(t.build() for t in self.tiers)

    def build_classifier(self) -> Classifier:
        return Classifier([b.build() for b in self.label_bands], self.default_label)

    # --- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """
        Build a config from plain data (JSON / preset).

        Raises:
            ConfigurationError: unknown keys, missing required fields or wrong shapes
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Config must be a mapping, got {type(data).__name__}")
        data = dict(data)
        nested = {
            "unmixing": UnmixingConfig,
            "post_processing": PostProcessingConfig,
            "features": FeatureConfig,
        }
        for key, sub_cls in nested.items():
            if key in data:
                data[key] = _from_mapping(sub_cls, data[key], key)
        if "categories" in data:
            data["categories"] = tuple(_from_mapping(CategorySpec, c, "category") for c in data["categories"])
        if "tiers" in data:
            data["tiers"] = tuple(_from_mapping(TierSpec, t, "tier") for t in data["tiers"])
        if "label_bands" in data:
            data["label_bands"] = tuple(_from_mapping(LabelBandSpec, b, "label band") for b in data["label_bands"])
        return _from_mapping(cls, data, "pipeline config")


# =========================================================================
# HELPERS
# =========================================================================

def _from_mapping(cls: Type[T], data: Any, where: str) -> T:
    if isinstance(data, cls):
        return data
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{where}: expected a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"{where}: unknown key(s) {unknown}. Valid: {', '.join(sorted(known))}")
    try:
        return cls(**data)
    except TypeError as exc:
        raise ConfigurationError(f"{where}: {exc}") from exc


def _to_plain(value: Any) -> Any:
    """Tuples -> lists so the dict round-trips through JSON unchanged."""
    if isinstance(value, Mapping):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """
    Load a PipelineConfig from a JSON file.

    Raises:
        ConfigurationError: unreadable file, invalid JSON or invalid config
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc

    config = PipelineConfig.from_dict(data)
    logger.info(f"Loaded config '{config.name}' from {path}")
    return config


def save_config(config: PipelineConfig, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    return path


