#!/usr/bin/env python3
"""
Tests d'intégration end-to-end pour le pipeline de scoring morphométrique.

Usage:
    pytest tests/integration/test_pipeline_e2e.py -v
"""

import json
import logging

import cv2
import numpy as np
import pytest

from morphoscore import Pipeline, RawImage
from morphoscore.config import get_preset, list_presets
from morphoscore.errors import ConfigurationError, InputValidationError
from morphoscore.result import DiagnosticResult


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def pipeline():
    return Pipeline()


@pytest.fixture
def tissue_image():
    """Image synthétique H&E: fond rose + 36 noyaux violets de tailles variables."""
    image = np.full((200, 200, 3), [240, 200, 210], dtype=np.uint8)
    rng = np.random.RandomState(7)
    for row in range(6):
        for col in range(6):
            radius = int(rng.randint(4, 9))
            shade = int(rng.randint(40, 70))
            cv2.circle(image, (18 + col * 33, 18 + row * 33), radius,
                       (shade + 40, shade, shade + 60), -1)
    return image


@pytest.fixture
def white_image():
    return np.full((16, 16, 4), 255, dtype=np.uint8)


@pytest.fixture
def lavender_image():
    return np.full((4, 4, 4), [200, 150, 230, 255], dtype=np.uint8)


# ============================================================================
# TESTS: RESULT CONTRACT
# ============================================================================

class TestResultContract:
    """Bornes et structure du DiagnosticResult."""

    def test_bounds_random_images(self, pipeline):
        rng = np.random.RandomState(0)
        for size in (3, 16, 64):
            image = rng.randint(0, 256, size=(size, size, 4)).astype(np.uint8)
            result = pipeline.analyze(image)
            assert 0.0 <= result.final_score <= 1.0
            assert 0.0 <= result.confidence <= 1.0
            assert result.label in pipeline.classifier.labels

    def test_tissue_image(self, pipeline, tissue_image):
        result = pipeline.analyze(tissue_image)
        assert isinstance(result, DiagnosticResult)
        assert 0.0 <= result.final_score <= 1.0
        assert set(result.tiers) == {"morphometric", "pattern"}
        assert "nuclear_morphometry" not in result.insufficient_data

    def test_to_dict_is_json(self, pipeline, tissue_image):
        data = json.loads(pipeline.analyze(tissue_image).to_json())
        assert set(data) == {"final_score", "confidence", "label", "categories",
                             "tiers", "timestamp", "metadata"}
        category = data["categories"]["nuclear_morphometry"]
        assert {"score", "confidence", "features", "tier", "criteria", "insufficient_data"} <= set(category)
        assert data["timestamp"].endswith("+00:00")

    def test_metadata(self, pipeline, tissue_image):
        metadata = pipeline.analyze(tissue_image).metadata
        assert metadata["width"] == 200
        assert metadata["height"] == 200
        assert metadata["pixel_count"] == 40000
        assert metadata["config_name"] == "generic"
        assert metadata["processing_time_ms"] >= 0
        assert set(metadata["channel_stats"]) == {"primary", "secondary", "residual"}

    def test_accepts_buffer_tuple(self, pipeline, lavender_image):
        from_array = pipeline.analyze(lavender_image)
        from_tuple = pipeline.analyze((4, 4, lavender_image.tobytes()))
        assert from_array.final_score == from_tuple.final_score


# ============================================================================
# TESTS: EDGE CASES
# ============================================================================

class TestEdgeCases:

    def test_white_image_degrades(self, pipeline, white_image):
        """Pure white: zero structures, insufficient-data path, no NaN."""
        result = pipeline.analyze(white_image)
        assert np.isfinite(result.final_score)
        assert np.isfinite(result.confidence)
        for stats in result.metadata["channel_stats"].values():
            assert stats["max"] == pytest.approx(0.0, abs=1e-9)
        nuclear = result.categories["nuclear_morphometry"]
        assert nuclear.features["structure_count"] == 0.0
        assert set(nuclear.insufficient_data) == {"pleomorphism", "contour_irregularity", "nc_ratio"}
        assert nuclear.confidence == pytest.approx(0.3)

    def test_white_image_logs_warning(self, white_image, caplog):
        logger = logging.getLogger("test.morphoscore")
        with caplog.at_level(logging.WARNING, logger="test.morphoscore"):
            Pipeline(logger=logger).analyze(white_image)
        assert any("Insufficient data" in r.getMessage() for r in caplog.records)

    def test_lavender_deterministic(self, pipeline, lavender_image):
        results = [pipeline.analyze(lavender_image) for _ in range(3)]
        assert len({r.label for r in results}) == 1
        assert len({r.final_score for r in results}) == 1
        stats = results[0].metadata["channel_stats"]
        # uniform channels are not stretched: unmixed values survive post-processing
        assert stats["primary"]["mean"] == pytest.approx(0.1547, abs=1e-3)
        assert stats["secondary"]["mean"] == pytest.approx(0.1324, abs=1e-3)
        assert stats["residual"]["max"] == 0.0
        for channel in stats.values():
            assert np.isfinite(channel["mean"]) and np.isfinite(channel["std"])

    def test_alpha_ignored(self, pipeline, tissue_image):
        opaque = np.dstack([tissue_image, np.full((200, 200), 255, np.uint8)])
        translucent = np.dstack([tissue_image, np.random.RandomState(1).randint(0, 256, (200, 200)).astype(np.uint8)])
        assert pipeline.analyze(opaque).final_score == pipeline.analyze(translucent).final_score

    @pytest.mark.parametrize("image", [
        None,
        np.zeros((4, 4), dtype=np.uint8),
        np.zeros((0, 4, 4), dtype=np.uint8),
        (4, 4, b"short"),
        "image.png",
    ])
    def test_invalid_input(self, pipeline, image):
        with pytest.raises(InputValidationError):
            pipeline.analyze(image)


# ============================================================================
# TESTS: BATCH & PRESETS
# ============================================================================

class TestBatch:

    def test_order_preserved(self, pipeline, tissue_image, white_image, lavender_image):
        images = [tissue_image, white_image, lavender_image, RawImage.from_array(tissue_image)]
        sequential = pipeline.analyze_batch(images)
        threaded = pipeline.analyze_batch(images, max_workers=3)
        assert [r.final_score for r in sequential] == [r.final_score for r in threaded]
        assert [r.metadata["width"] for r in threaded] == [200, 16, 4, 200]

    def test_error_propagates(self, pipeline, lavender_image):
        with pytest.raises(InputValidationError):
            pipeline.analyze_batch([lavender_image, None], max_workers=2)

    def test_invalid_workers(self, pipeline):
        with pytest.raises(ConfigurationError):
            pipeline.analyze_batch([], max_workers=0)


class TestPresets:

    @pytest.mark.parametrize("name", list_presets())
    def test_preset_end_to_end(self, name, tissue_image):
        result = Pipeline.from_preset(name).analyze(tissue_image)
        assert 0.0 <= result.final_score <= 1.0
        assert 0.0 <= result.confidence <= 1.0
        assert result.label in Pipeline(get_preset(name)).classifier.labels
        assert result.metadata["config_name"] == name
