"""
Criteria and categories.

A Criterion maps a FeatureSet to a (score, confidence) pair in [0, 1].
Scoring and confidence functions are built from declarative kinds so that
organ presets stay pure data:

SCORE KINDS
    direct        value of one feature, clipped to [0, 1]
    linear        (value - low) / (high - low), clipped; `invert` flips it
    banded        levels[i] where i = number of cutoffs the value is > than
    weighted_sum  intercept + sum(coefficient * feature)

CONFIDENCE KINDS
    constant      fixed value
    feature       min(offset + scale * feature, cap)
    population    min(feature / saturation, 1)

A Category groups criteria whose weights sum to 1 and belongs to one tier.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from morphoscore.constants import (
    DEFAULT_CRITERION_CONFIDENCE,
    INSUFFICIENT_DATA_CONFIDENCE,
    TIER_NAMES,
    WEIGHT_TOLERANCE,
)
from morphoscore.errors import ConfigurationError, ScoringError

FeatureFn = Callable[[Mapping[str, float]], float]


# =========================================================================
# SCORE FUNCTIONS
# =========================================================================

def direct_score(feature: str) -> Tuple[FeatureFn, Tuple[str, ...]]:
    return (lambda f: f[feature]), (feature,)


def linear_score(
    feature: str,
    low: float = 0.0,
    high: float = 1.0,
    invert: bool = False
) -> Tuple[FeatureFn, Tuple[str, ...]]:
    low, high = float(low), float(high)
    if not high > low:
        raise ConfigurationError(f"linear score on '{feature}': high must be > low")
    span = high - low

    def score(f):
        value = min(max((f[feature] - low) / span, 0.0), 1.0)
        return 1.0 - value if invert else value

    return score, (feature,)


def banded_score(
    feature: str,
    cutoffs: Sequence[float],
    levels: Sequence[float]
) -> Tuple[FeatureFn, Tuple[str, ...]]:
    """value > cutoffs[i] moves one level up (strict boundary)."""
    cutoffs = tuple(float(c) for c in cutoffs)
    levels = tuple(float(l) for l in levels)
    if len(levels) != len(cutoffs) + 1:
        raise ConfigurationError(
            f"banded score on '{feature}': need {len(cutoffs) + 1} levels, got {len(levels)}"
        )
    if any(b <= a for a, b in zip(cutoffs, cutoffs[1:])):
        raise ConfigurationError(f"banded score on '{feature}': cutoffs must be strictly increasing")

    def score(f):
        value = f[feature]
        return levels[sum(1 for c in cutoffs if value > c)]

    return score, (feature,)


def weighted_sum_score(
    coefficients: Mapping[str, float],
    intercept: float = 0.0
) -> Tuple[FeatureFn, Tuple[str, ...]]:
    if not coefficients:
        raise ConfigurationError("weighted_sum score needs at least one coefficient")
    terms = tuple((name, float(c)) for name, c in coefficients.items())

    def score(f):
        return intercept + sum(c * f[name] for name, c in terms)

    return score, tuple(name for name, _ in terms)


SCORE_KINDS = {
    "direct": direct_score,
    "linear": linear_score,
    "banded": banded_score,
    "weighted_sum": weighted_sum_score,
}


# =========================================================================
# CONFIDENCE FUNCTIONS
# =========================================================================

def constant_confidence(value: float = DEFAULT_CRITERION_CONFIDENCE) -> Tuple[FeatureFn, Tuple[str, ...]]:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"constant confidence must be in [0, 1], got {value}")
    return (lambda f: value), ()


def feature_confidence(
    feature: str,
    offset: float = 0.0,
    scale: float = 1.0,
    cap: float = 1.0
) -> Tuple[FeatureFn, Tuple[str, ...]]:
    return (lambda f: min(offset + scale * f[feature], cap)), (feature,)


def population_confidence(feature: str, saturation: float) -> Tuple[FeatureFn, Tuple[str, ...]]:
    """Confidence grows with population size and saturates at 1."""
    if saturation <= 0:
        raise ConfigurationError(f"population confidence on '{feature}': saturation must be > 0")
    return (lambda f: min(f[feature] / saturation, 1.0)), (feature,)


CONFIDENCE_KINDS = {
    "constant": constant_confidence,
    "feature": feature_confidence,
    "population": population_confidence,
}


def _build(kinds: Dict[str, Callable], spec: Mapping[str, Any], role: str):
    params = dict(spec)
    kind = params.pop("kind", None)
    if kind not in kinds:
        raise ConfigurationError(
            f"Unknown {role} kind: {kind!r}. Valid: {', '.join(kinds)}"
        )
    try:
        return kinds[kind](**params)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid parameters for {role} kind '{kind}': {exc}") from exc


def build_score(spec: Mapping[str, Any]) -> Tuple[FeatureFn, Tuple[str, ...]]:
    """{"kind": "linear", "feature": ..., ...} -> (function, dependencies)"""
    return _build(SCORE_KINDS, spec, "score")


def build_confidence(spec: Optional[Mapping[str, Any]]) -> Tuple[FeatureFn, Tuple[str, ...]]:
    if spec is None:
        return constant_confidence()
    return _build(CONFIDENCE_KINDS, spec, "confidence")


# =========================================================================
# CRITERION
# =========================================================================

@dataclass(frozen=True)
class CriterionScore:
    """Evaluation of one criterion against one FeatureSet."""
    name: str
    weight: float
    score: float
    confidence: float
    insufficient: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "weight": self.weight,
            "score": self.score,
            "confidence": self.confidence,
            "insufficient": self.insufficient,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Criterion:
    name: str
    features: Tuple[str, ...]
    weight: float
    score_fn: FeatureFn
    confidence_fn: FeatureFn = field(default_factory=lambda: constant_confidence()[0])
    description: str = ""
    insufficient_confidence: float = INSUFFICIENT_DATA_CONFIDENCE

    def __post_init__(self):
        object.__setattr__(self, "features", tuple(self.features))
        if not self.name:
            raise ConfigurationError("Criterion name must not be empty")
        if not np.isfinite(self.weight) or self.weight < 0:
            raise ConfigurationError(f"Criterion '{self.name}': weight must be >= 0, got {self.weight}")
        if not 0.0 <= self.insufficient_confidence <= 1.0:
            raise ConfigurationError(f"Criterion '{self.name}': insufficient_confidence must be in [0, 1]")

    @classmethod
    def from_spec(
        cls,
        name: str,
        weight: float,
        score: Mapping[str, Any],
        confidence: Optional[Mapping[str, Any]] = None,
        description: str = "",
        insufficient_confidence: float = INSUFFICIENT_DATA_CONFIDENCE,
    ) -> "Criterion":
        """Build a criterion from declarative score / confidence specs."""
        try:
            weight = float(weight)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Criterion '{name}': invalid weight {weight!r}") from exc
        score_fn, score_deps = build_score(score)
        confidence_fn, confidence_deps = build_confidence(confidence)
        features = tuple(dict.fromkeys(score_deps + confidence_deps))
        return cls(
            name=name,
            features=features,
            weight=weight,
            score_fn=score_fn,
            confidence_fn=confidence_fn,
            description=description,
            insufficient_confidence=insufficient_confidence,
        )

    def evaluate(self, features: Mapping[str, float]) -> CriterionScore:
        """
        Score this criterion.

        Raises:
            ScoringError: missing feature or non-finite function output
        """
        missing = [name for name in self.features if name not in features]
        if missing:
            raise ScoringError(f"Criterion '{self.name}': unknown feature(s) {missing}")

        flagged = getattr(features, "insufficient", {})
        insufficient = [name for name in self.features if name in flagged]
        if insufficient:
            return CriterionScore(
                name=self.name,
                weight=self.weight,
                score=0.0,
                confidence=self.insufficient_confidence,
                insufficient=True,
                reason="; ".join(str(flagged[name]) for name in insufficient),
            )

        score = float(self.score_fn(features))
        confidence = float(self.confidence_fn(features))
        if not (np.isfinite(score) and np.isfinite(confidence)):
            raise ScoringError(
                f"Criterion '{self.name}' produced a non-finite value "
                f"(score={score}, confidence={confidence})"
            )
        return CriterionScore(
            name=self.name,
            weight=self.weight,
            score=min(max(score, 0.0), 1.0),
            confidence=min(max(confidence, 0.0), 1.0),
        )


# =========================================================================
# CATEGORY
# =========================================================================

def check_weights(weights: Sequence[float], owner: str, tolerance: float = WEIGHT_TOLERANCE) -> None:
    """Weights must be non-negative and sum to 1 within tolerance."""
    if len(weights) == 0:
        raise ConfigurationError(f"{owner}: no weighted members")
    if any(w < 0 for w in weights):
        raise ConfigurationError(f"{owner}: negative weight in {list(weights)}")
    total = float(sum(weights))
    if abs(total - 1.0) > tolerance:
        raise ConfigurationError(f"{owner}: weights sum to {total:.6f}, expected 1.0")


@dataclass(frozen=True)
class Category:
    """Ordered criteria of one tier. Criterion weights sum to 1."""
    name: str
    criteria: Tuple[Criterion, ...]
    tier: str
    weight: float
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "criteria", tuple(self.criteria))
        if self.tier not in TIER_NAMES:
            raise ConfigurationError(
                f"Category '{self.name}': unknown tier '{self.tier}'. Valid: {', '.join(TIER_NAMES)}"
            )
        if not 0.0 <= self.weight <= 1.0:
            raise ConfigurationError(f"Category '{self.name}': weight must be in [0, 1]")
        names = [c.name for c in self.criteria]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Category '{self.name}': duplicate criteria {names}")
        check_weights([c.weight for c in self.criteria], f"Category '{self.name}'")

    @property
    def features(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(f for c in self.criteria for f in c.features))


# =========================================================================
# CRITERION SCORER
# =========================================================================

class CriterionScorer:
    """
    Read-only registry of categories, evaluated against one FeatureSet.

    Usage:
        scorer = CriterionScorer(categories)
        results = scorer.evaluate(features)   # {category: (CriterionScore, ...)}
    """

    def __init__(self, categories: Sequence[Category]):
        names = [c.name for c in categories]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate category names: {names}")
        self.categories = tuple(categories)
        self._by_name = MappingProxyType({c.name: c for c in self.categories})

    def __getitem__(self, name: str) -> Category:
        return self._by_name[name]

    @property
    def features(self) -> Tuple[str, ...]:
        """Every feature any criterion depends on."""
        return tuple(dict.fromkeys(f for c in self.categories for f in c.features))

    def check_features(self, available: Sequence[str]) -> None:
        """Fail at construction time on criteria that reference unknown features."""
        available = set(available)
        unknown = [f for f in self.features if f not in available]
        if unknown:
            raise ConfigurationError(f"Criteria reference unknown feature(s): {unknown}")

    def evaluate(self, features: Mapping[str, float]) -> Dict[str, Tuple[CriterionScore, ...]]:
        return {
            category.name: tuple(c.evaluate(features) for c in category.criteria)
            for category in self.categories
        }
