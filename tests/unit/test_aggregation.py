"""
Tests unitaires pour l'agrégation pondérée (catégories) et l'ensemble à deux tiers.
"""

import pytest

from morphoscore.errors import ConfigurationError, ScoringError
from morphoscore.scoring.aggregation import WeightedAggregator
from morphoscore.scoring.criteria import Category, Criterion, CriterionScore
from morphoscore.scoring.ensemble import EnsembleIntegrator, Tier


def _criterion(name, weight):
    return Criterion.from_spec(name, weight, {"kind": "direct", "feature": name})


def _category(name, tier, weight, *criteria):
    return Category(name, tuple(_criterion(n, w) for n, w in criteria), tier, weight)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def categories():
    return (
        _category("nuclear", "morphometric", 0.6, ("a", 0.5), ("b", 0.5)),
        _category("tissue", "morphometric", 0.4, ("c", 1.0)),
        _category("texture", "pattern", 1.0, ("d", 0.3), ("e", 0.7)),
    )


@pytest.fixture
def tiers():
    return (Tier("morphometric", 0.7), Tier("pattern", 0.3))


@pytest.fixture
def features():
    return {"a": 0.8, "b": 0.4, "c": 1.0, "d": 0.0, "e": 1.0}


def _aggregate(categories, features, aggregator=None):
    aggregator = aggregator or WeightedAggregator()
    evaluated = {c.name: tuple(x.evaluate(features) for x in c.criteria) for c in categories}
    return aggregator.aggregate_all(categories, evaluated, features)


# ============================================================================
# TESTS: WEIGHTED AGGREGATOR
# ============================================================================

class TestWeightedAggregator:

    def test_weighted_score(self, categories, features):
        scores = _aggregate(categories, features)
        assert scores["nuclear"].score == pytest.approx(0.6)
        assert scores["tissue"].score == pytest.approx(1.0)
        assert scores["texture"].score == pytest.approx(0.7)

    def test_confidence_boost_and_cap(self, categories, features):
        """Mean confidence 0.7 + boost 0.1 = 0.8; a 0.75 cap wins."""
        assert _aggregate(categories, features)["nuclear"].confidence == pytest.approx(0.8)
        capped = _aggregate(categories, features, WeightedAggregator(0.1, 0.75))
        assert capped["nuclear"].confidence == pytest.approx(0.75)

    def test_breakdown(self, categories, features):
        nuclear = _aggregate(categories, features)["nuclear"]
        data = nuclear.to_dict()
        assert data["tier"] == "morphometric"
        assert data["features"] == {"a": 0.8, "b": 0.4}
        assert set(data["criteria"]) == {"a", "b"}
        assert data["insufficient_data"] == []

    def test_insufficient_listed(self, categories):
        category = categories[0]
        scores = (
            CriterionScore("a", 0.5, 1.0, 0.7),
            CriterionScore("b", 0.5, 0.0, 0.2, insufficient=True, reason="b: empty population"),
        )
        result = WeightedAggregator().aggregate(category, scores, {"a": 1.0, "b": 0.0})
        assert result.insufficient_data == ("b",)
        assert result.score == pytest.approx(0.5)
        assert result.confidence == pytest.approx(0.55)

    def test_mismatched_scores(self, categories):
        with pytest.raises(ScoringError):
            WeightedAggregator().aggregate(categories[0], (CriterionScore("a", 1.0, 1.0, 1.0),), {"a": 1.0})

    def test_invalid_cap(self):
        with pytest.raises(ConfigurationError):
            WeightedAggregator(confidence_cap=1.5)


# ============================================================================
# TESTS: ENSEMBLE INTEGRATOR
# ============================================================================

class TestEnsembleIntegrator:

    def test_final_score(self, tiers, categories, features):
        """S_m = 0.6*0.6 + 0.4*1.0 = 0.76, S_p = 0.7, final = 0.7*0.76 + 0.3*0.7."""
        ensemble = EnsembleIntegrator(tiers, categories).integrate(_aggregate(categories, features))
        assert ensemble.tiers["morphometric"].score == pytest.approx(0.76)
        assert ensemble.tiers["pattern"].score == pytest.approx(0.7)
        assert ensemble.final_score == pytest.approx(0.742)

    def test_final_confidence(self, tiers, categories, features):
        """Category conf 0.8 -> tier conf 0.9 -> final min(0.9, 0.95)."""
        ensemble = EnsembleIntegrator(tiers, categories).integrate(_aggregate(categories, features))
        assert ensemble.tiers["pattern"].confidence == pytest.approx(0.9)
        assert ensemble.confidence == pytest.approx(0.9)

    def test_confidence_cap(self, categories, features):
        tiers = (Tier("morphometric", 0.5, confidence_boost=0.5, confidence_cap=1.0),
                 Tier("pattern", 0.5, confidence_boost=0.5, confidence_cap=1.0))
        ensemble = EnsembleIntegrator(tiers, categories, confidence_cap=0.95).integrate(
            _aggregate(categories, features)
        )
        assert ensemble.confidence == pytest.approx(0.95)

    def test_bounds(self, tiers, categories):
        for value in (0.0, 1.0):
            features = dict.fromkeys("abcde", value)
            ensemble = EnsembleIntegrator(tiers, categories).integrate(_aggregate(categories, features))
            assert 0.0 <= ensemble.final_score <= 1.0
            assert 0.0 <= ensemble.confidence <= 1.0

    def test_tier_weights_must_sum_to_one(self, categories):
        with pytest.raises(ConfigurationError):
            EnsembleIntegrator((Tier("morphometric", 0.7), Tier("pattern", 0.4)), categories)

    def test_exactly_two_tiers(self, categories):
        with pytest.raises(ConfigurationError):
            EnsembleIntegrator((Tier("morphometric", 1.0),), categories)
        with pytest.raises(ConfigurationError):
            EnsembleIntegrator(
                (Tier("morphometric", 0.5), Tier("morphometric", 0.5)), categories
            )

    def test_unknown_tier_name(self):
        with pytest.raises(ConfigurationError):
            Tier("ai", 0.3)

    def test_category_weights_per_tier(self, tiers):
        categories = (
            _category("nuclear", "morphometric", 0.5, ("a", 1.0)),
            _category("texture", "pattern", 1.0, ("d", 1.0)),
        )
        with pytest.raises(ConfigurationError, match="morphometric"):
            EnsembleIntegrator(tiers, categories)

    def test_empty_tier(self, tiers):
        categories = (_category("nuclear", "morphometric", 1.0, ("a", 1.0)),)
        with pytest.raises(ConfigurationError):
            EnsembleIntegrator(tiers, categories)

    def test_registry_read_only(self, tiers, categories):
        """Tiers and tier members cannot be altered after construction."""
        integrator = EnsembleIntegrator(tiers, categories)
        with pytest.raises(TypeError):
            integrator.tiers["pattern"] = Tier("pattern", 0.9)
        with pytest.raises(TypeError):
            integrator.members["morphometric"] = ()
        assert set(integrator.members) == {"morphometric", "pattern"}
