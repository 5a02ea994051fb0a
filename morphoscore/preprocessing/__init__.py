"""
Preprocessing: stain unmixing and channel post-processing.

Usage:
    >>> from morphoscore.preprocessing import RawImage, StainUnmixer, ChannelPostProcessor
    >>> channels = StainUnmixer().unmix(RawImage.from_array(image_rgba))
    >>> channels = ChannelPostProcessor().process(channels)
"""

from .stain_separation import (
    RawImage,
    StainChannel,
    StainUnmixer,
    build_unmixing_matrix,
    rgb_to_od,
    validate_raw_image,
)
from .channel_processing import (
    ChannelPostProcessor,
    smooth_channel,
    stretch_contrast,
)

__all__ = [
    'RawImage',
    'StainChannel',
    'StainUnmixer',
    'build_unmixing_matrix',
    'rgb_to_od',
    'validate_raw_image',
    'ChannelPostProcessor',
    'smooth_channel',
    'stretch_contrast',
]
