"""
Morphometric scoring pipeline.

Image -> StainUnmixer -> ChannelPostProcessor -> FeatureExtractor
      -> CriterionScorer -> WeightedAggregator -> EnsembleIntegrator
      -> Classifier -> DiagnosticResult

All components are built and validated once, from an immutable
PipelineConfig, at construction. analyze() keeps every intermediate
local, so one Pipeline can serve several threads.

Usage:
    pipeline = Pipeline.from_preset("lung")
    result = pipeline.analyze(image_rgba)
    result.final_score, result.label, result.to_json()
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from morphoscore.config.pipeline_config import PipelineConfig
from morphoscore.config.presets import DEFAULT_PRESET, get_preset
from morphoscore.constants import ENGINE_VERSION
from morphoscore.errors import ConfigurationError, InputValidationError
from morphoscore.preprocessing.stain_separation import RawImage, StainChannel
from morphoscore.result import DiagnosticResult, utc_timestamp
from morphoscore.scoring.aggregation import WeightedAggregator
from morphoscore.scoring.criteria import CriterionScorer
from morphoscore.scoring.ensemble import EnsembleIntegrator

ImageInput = Union[RawImage, np.ndarray, Tuple[int, int, Any]]


def to_raw_image(image: ImageInput) -> RawImage:
    """
    Accept a RawImage, an (H, W, 3|4) array or a (width, height, pixels) tuple.

    Raises:
        InputValidationError: None or unsupported input
    """
    if image is None:
        raise InputValidationError("Missing image")
    if isinstance(image, RawImage):
        return image
    if isinstance(image, np.ndarray):
        return RawImage.from_array(image)
    if isinstance(image, tuple) and len(image) == 3:
        return RawImage.from_buffer(*image)
    raise InputValidationError(f"Unsupported image type: {type(image).__name__}")


class Pipeline:
    """
    Configuration-driven scoring engine.

    Args:
        config: PipelineConfig (default: the generic preset)
        logger: Injected logger (default: module logger)

    Raises:
        ConfigurationError: any invalid weight, band, matrix or feature reference
    """

    def __init__(self, config: Optional[PipelineConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config if config is not None else get_preset(DEFAULT_PRESET)
        self.logger = logger if logger is not None else logging.getLogger(__name__)

        self.unmixer = self.config.unmixing.build()
        self.post_processor = self.config.post_processing.build()
        self.extractor = self.config.features.build(self.unmixer.channel_names)

        categories = self.config.build_categories()
        self.scorer = CriterionScorer(categories)
        self.scorer.check_features(self.extractor.feature_names)
        self.aggregator = WeightedAggregator(self.config.confidence_boost, self.config.confidence_cap)
        self.integrator = EnsembleIntegrator(
            self.config.build_tiers(), categories, self.config.confidence_cap
        )
        self.classifier = self.config.build_classifier()

        self.logger.debug(
            f"Pipeline '{self.config.name}' ready: {len(categories)} categories, "
            f"{len(self.scorer.features)} features referenced"
        )

    @classmethod
    def from_preset(cls, name: str, logger: Optional[logging.Logger] = None) -> "Pipeline":
        return cls(get_preset(name), logger=logger)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, image: ImageInput) -> DiagnosticResult:
        """
        Score one image.

        Raises:
            InputValidationError: malformed image (before any pixel work)
            ScoringError: a criterion produced a non-finite value
        """
        start_time = time.time()
        raw = to_raw_image(image)
        timings: Dict[str, float] = {}

        def timed(stage: str, fn, *args):
            t0 = time.time()
            out = fn(*args)
            timings[stage] = (time.time() - t0) * 1000
            return out

        channels = timed("unmixing", self.unmixer.unmix, raw)
        channels = timed("post_processing", self.post_processor.process, channels)
        features = timed("features", self.extractor.extract, channels)
        evaluated = timed("criteria", self.scorer.evaluate, features)
        category_scores = timed(
            "aggregation", self.aggregator.aggregate_all, self.scorer.categories, evaluated, features
        )
        ensemble = timed("ensemble", self.integrator.integrate, category_scores)
        label = self.classifier.classify(ensemble.final_score)

        for stage, ms in timings.items():
            self.logger.debug(f"  {stage}: {ms:.1f} ms")

        if features.insufficient:
            self.logger.warning(
                f"Insufficient data for {len(features.insufficient)} feature(s): "
                f"{', '.join(sorted(features.insufficient))}"
            )

        processing_time = (time.time() - start_time) * 1000
        result = DiagnosticResult(
            final_score=ensemble.final_score,
            confidence=ensemble.confidence,
            label=label,
            categories=MappingProxyType(category_scores),
            tiers=MappingProxyType(ensemble.tiers),
            timestamp=utc_timestamp(),
            metadata=MappingProxyType(self._metadata(raw, channels, processing_time)),
        )
        self.logger.info(
            f"[{self.config.name}] {raw.width}x{raw.height}: score={result.final_score:.3f} "
            f"confidence={result.confidence:.3f} label={label} ({processing_time:.0f} ms)"
        )
        return result

    def analyze_batch(self, images: Iterable[ImageInput], max_workers: int = 1) -> List[DiagnosticResult]:
        """
        Score independent images, preserving input order.

        The first failing image raises; no partial list is returned.
        """
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {max_workers}")
        images = list(images)
        if max_workers == 1 or len(images) <= 1:
            return [self.analyze(image) for image in images]
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self.analyze, images))

    def _metadata(self, raw: RawImage, channels: Dict[str, StainChannel], processing_time: float) -> Dict[str, Any]:
        return {
            "width": raw.width,
            "height": raw.height,
            "pixel_count": raw.width * raw.height,
            "config_name": self.config.name,
            "engine_version": ENGINE_VERSION,
            "processing_time_ms": processing_time,
            "channel_stats": {name: channel.stats() for name, channel in channels.items()},
        }
