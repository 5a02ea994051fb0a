"""
Scoring: criteria -> categories -> two-tier ensemble -> label.
"""

from .criteria import (
    CONFIDENCE_KINDS,
    SCORE_KINDS,
    Category,
    Criterion,
    CriterionScore,
    CriterionScorer,
    build_confidence,
    build_score,
    check_weights,
)
from .aggregation import CategoryScore, WeightedAggregator
from .ensemble import EnsembleIntegrator, EnsembleScore, Tier, TierScore
from .classifier import Classifier, LabelBand

__all__ = [
    'CONFIDENCE_KINDS',
    'SCORE_KINDS',
    'Category',
    'Criterion',
    'CriterionScore',
    'CriterionScorer',
    'build_confidence',
    'build_score',
    'check_weights',
    'CategoryScore',
    'WeightedAggregator',
    'EnsembleIntegrator',
    'EnsembleScore',
    'Tier',
    'TierScore',
    'Classifier',
    'LabelBand',
]
