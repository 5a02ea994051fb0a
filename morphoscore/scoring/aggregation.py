"""
Weighted aggregation of criterion scores into category scores.

    score      = sum(w_i * s_i)
    confidence = min(mean(c_i) + boost, cap)

Insufficient criteria still contribute (score 0.0, degraded confidence)
and are listed in the category breakdown.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Sequence, Tuple

import numpy as np

from morphoscore.constants import CONFIDENCE_BOOST, CONFIDENCE_CAP
from morphoscore.errors import ConfigurationError, ScoringError
from morphoscore.scoring.criteria import Category, CriterionScore


@dataclass(frozen=True)
class CategoryScore:
    name: str
    tier: str
    weight: float
    score: float
    confidence: float
    criteria: Tuple[CriterionScore, ...]
    features: Mapping[str, float]

    @property
    def insufficient_data(self) -> Tuple[str, ...]:
        """Names of criteria scored on insufficient data."""
        return tuple(c.name for c in self.criteria if c.insufficient)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "confidence": self.confidence,
            "tier": self.tier,
            "weight": self.weight,
            "features": dict(self.features),
            "criteria": {c.name: c.to_dict() for c in self.criteria},
            "insufficient_data": list(self.insufficient_data),
        }


class WeightedAggregator:
    """
    Usage:
        aggregator = WeightedAggregator()
        category_score = aggregator.aggregate(category, criterion_scores, features)
    """

    def __init__(self, confidence_boost: float = CONFIDENCE_BOOST, confidence_cap: float = CONFIDENCE_CAP):
        if not 0.0 <= confidence_cap <= 1.0:
            raise ConfigurationError(f"confidence_cap must be in [0, 1], got {confidence_cap}")
        if confidence_boost < 0:
            raise ConfigurationError(f"confidence_boost must be >= 0, got {confidence_boost}")
        self.confidence_boost = confidence_boost
        self.confidence_cap = confidence_cap

    def aggregate(
        self,
        category: Category,
        scores: Sequence[CriterionScore],
        features: Mapping[str, float]
    ) -> CategoryScore:
        if [s.name for s in scores] != [c.name for c in category.criteria]:
            raise ScoringError(f"Category '{category.name}': criterion scores do not match its criteria")

        score = sum(s.weight * s.score for s in scores)
        confidence = min(float(np.mean([s.confidence for s in scores])) + self.confidence_boost,
                         self.confidence_cap)

        return CategoryScore(
            name=category.name,
            tier=category.tier,
            weight=category.weight,
            score=min(max(float(score), 0.0), 1.0),
            confidence=confidence,
            criteria=tuple(scores),
            features=MappingProxyType({name: features[name] for name in category.features}),
        )

    def aggregate_all(
        self,
        categories: Sequence[Category],
        evaluated: Mapping[str, Sequence[CriterionScore]],
        features: Mapping[str, float]
    ) -> Dict[str, CategoryScore]:
        return {
            category.name: self.aggregate(category, evaluated[category.name], features)
            for category in categories
        }
