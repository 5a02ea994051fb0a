"""
Two-tier ensemble integration.

Tiers:
- morphometric: hand-crafted morphometry categories
- pattern: pattern-recognition categories (plain weighted categories,
  no trained model)

Per tier:
    S_t = sum(category weight * category score)
    C_t = min(mean(category confidences) + boost, cap)
Final:
    score      = w_m * S_m + w_p * S_p
    confidence = min(w_m * C_m + w_p * C_p, cap)

All weight invariants are checked once, at construction.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Sequence, Tuple

import numpy as np

from morphoscore.constants import (
    CONFIDENCE_BOOST,
    CONFIDENCE_CAP,
    TIER_NAMES,
)
from morphoscore.errors import ConfigurationError, ScoringError
from morphoscore.scoring.aggregation import CategoryScore
from morphoscore.scoring.criteria import Category, check_weights


@dataclass(frozen=True)
class Tier:
    name: str
    weight: float
    confidence_boost: float = CONFIDENCE_BOOST
    confidence_cap: float = CONFIDENCE_CAP

    def __post_init__(self):
        if self.name not in TIER_NAMES:
            raise ConfigurationError(f"Unknown tier: {self.name}. Valid: {', '.join(TIER_NAMES)}")
        if not 0.0 <= self.weight <= 1.0:
            raise ConfigurationError(f"Tier '{self.name}': weight must be in [0, 1], got {self.weight}")
        if not 0.0 <= self.confidence_cap <= 1.0 or self.confidence_boost < 0:
            raise ConfigurationError(f"Tier '{self.name}': invalid confidence boost/cap")


@dataclass(frozen=True)
class TierScore:
    name: str
    weight: float
    score: float
    confidence: float
    categories: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight": self.weight,
            "score": self.score,
            "confidence": self.confidence,
            "categories": list(self.categories),
        }


@dataclass(frozen=True)
class EnsembleScore:
    final_score: float
    confidence: float
    tiers: Dict[str, TierScore]


class EnsembleIntegrator:
    """
    Usage:
        integrator = EnsembleIntegrator(tiers, categories)
        ensemble = integrator.integrate(category_scores)
        ensemble.final_score, ensemble.confidence
    """

    def __init__(
        self,
        tiers: Sequence[Tier],
        categories: Sequence[Category],
        confidence_cap: float = CONFIDENCE_CAP
    ):
        names = sorted(t.name for t in tiers)
        if names != sorted(TIER_NAMES):
            raise ConfigurationError(
                f"Exactly one '{TIER_NAMES[0]}' and one '{TIER_NAMES[1]}' tier required, got {names}"
            )
        check_weights([t.weight for t in tiers], "Tiers")
        if not 0.0 <= confidence_cap <= 1.0:
            raise ConfigurationError(f"confidence_cap must be in [0, 1], got {confidence_cap}")

        self.tiers = MappingProxyType(
            {t.name: t for t in sorted(tiers, key=lambda t: TIER_NAMES.index(t.name))}
        )
        self.members = MappingProxyType({
            name: tuple(c.name for c in categories if c.tier == name)
            for name in self.tiers
        })
        for name in self.tiers:
            check_weights(
                [c.weight for c in categories if c.tier == name],
                f"Tier '{name}' categories"
            )
        self.confidence_cap = confidence_cap

    def integrate(self, category_scores: Mapping[str, CategoryScore]) -> EnsembleScore:
        tier_scores = {}
        for name, tier in self.tiers.items():
            try:
                members = [category_scores[c] for c in self.members[name]]
            except KeyError as exc:
                raise ScoringError(f"Tier '{name}': missing category score {exc}") from exc

            score = sum(m.weight * m.score for m in members)
            confidence = min(
                float(np.mean([m.confidence for m in members])) + tier.confidence_boost,
                tier.confidence_cap,
            )
            tier_scores[name] = TierScore(
                name=name,
                weight=tier.weight,
                score=min(max(float(score), 0.0), 1.0),
                confidence=confidence,
                categories=self.members[name],
            )

        final_score = sum(t.weight * t.score for t in tier_scores.values())
        final_confidence = min(
            sum(t.weight * t.confidence for t in tier_scores.values()),
            self.confidence_cap,
        )
        return EnsembleScore(
            final_score=min(max(float(final_score), 0.0), 1.0),
            confidence=min(max(float(final_confidence), 0.0), 1.0),
            tiers=tier_scores,
        )
