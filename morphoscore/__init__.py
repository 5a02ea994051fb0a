"""
morphoscore - configuration-driven morphometric scoring of stained tissue images.

Usage:
    >>> from morphoscore import Pipeline
    >>> result = Pipeline.from_preset("lung").analyze(image_rgba)
    >>> result.final_score, result.confidence, result.label
"""

from .constants import ENGINE_VERSION
from .errors import (
    ConfigurationError,
    InputValidationError,
    InsufficientDataError,
    MorphoscoreError,
    ScoringError,
)
from .preprocessing import RawImage
from .config import PipelineConfig, get_preset, list_presets, load_config, save_config
from .pipeline import Pipeline
from .result import DiagnosticResult

__version__ = ENGINE_VERSION

__all__ = [
    'ConfigurationError',
    'InputValidationError',
    'InsufficientDataError',
    'MorphoscoreError',
    'ScoringError',
    'RawImage',
    'PipelineConfig',
    'get_preset',
    'list_presets',
    'load_config',
    'save_config',
    'Pipeline',
    'DiagnosticResult',
]
