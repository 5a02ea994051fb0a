"""
Configuration: pipeline dataclasses, JSON load/save and organ presets.
"""

from .pipeline_config import (
    CategorySpec,
    CriterionSpec,
    FeatureConfig,
    LabelBandSpec,
    PipelineConfig,
    PostProcessingConfig,
    TierSpec,
    UnmixingConfig,
    load_config,
    save_config,
)
from .presets import DEFAULT_PRESET, PRESETS, get_preset, list_presets

__all__ = [
    'CategorySpec',
    'CriterionSpec',
    'FeatureConfig',
    'LabelBandSpec',
    'PipelineConfig',
    'PostProcessingConfig',
    'TierSpec',
    'UnmixingConfig',
    'load_config',
    'save_config',
    'DEFAULT_PRESET',
    'PRESETS',
    'get_preset',
    'list_presets',
]
