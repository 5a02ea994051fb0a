#!/usr/bin/env python3
"""
Stain Separation - Ruifrok colour deconvolution

Separates an RGBA stained-tissue image into named intensity channels
(default: primary / secondary / residual) by projecting optical density
onto a fixed unmixing matrix.

Physical model (Beer-Lambert law):
    OD = -log10(I / I0)
Stain absorption is linear in OD, so each pixel's OD 3-vector is a linear
combination of the reference stain vectors. The unmixing matrix is the
pseudo-inverse of the (N, 3) stain matrix, which works for both 2 and 3
stains.

Background (near-white) pixels have OD ~ 0 in every channel. Tissue vs.
background discrimination downstream relies on this.

Reference:
- Ruifrok AC, Johnston DA. "Quantification of histochemical staining by color deconvolution."
  Analytical and Quantitative Cytology and Histology, 2001.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple, Union

from morphoscore.constants import (
    DEFAULT_CHANNEL_NAMES,
    DEFAULT_STAIN_VECTORS,
    OD_EPSILON,
)
from morphoscore.errors import ConfigurationError, InputValidationError


# =========================================================================
# DATA CLASSES
# =========================================================================

@dataclass(frozen=True, eq=False)
class RawImage:
    """RGBA image as supplied by an external loader. Immutable."""
    width: int
    height: int
    pixels: np.ndarray  # uint8, length width * height * 4

    @classmethod
    def from_buffer(
        cls,
        width: int,
        height: int,
        pixels: Union[bytes, bytearray, memoryview, Sequence[int], np.ndarray, None]
    ) -> "RawImage":
        """
        Build a RawImage from a flat RGBA buffer.

        Raises:
            InputValidationError: missing buffer, bad dimensions or length, non-integer values
        """
        if pixels is None:
            raise InputValidationError("Missing pixel buffer")
        _validate_dimensions(width, height)

        if isinstance(pixels, (bytes, bytearray, memoryview)):
            buffer = np.frombuffer(bytes(pixels), dtype=np.uint8)
        else:
            buffer = np.asarray(pixels)
            if buffer.dtype.kind == "f":
                if not np.all(np.isfinite(buffer)):
                    raise InputValidationError("Pixel values must be finite")
                if np.any(buffer != np.floor(buffer)):
                    raise InputValidationError("Pixel values must be integers")
            elif buffer.dtype.kind not in "iu":
                raise InputValidationError(f"Unsupported pixel dtype: {buffer.dtype}")
            if buffer.size and (buffer.min() < 0 or buffer.max() > 255):
                raise InputValidationError("Pixel values must be in [0, 255]")
            buffer = buffer.astype(np.uint8).ravel()

        expected = width * height * 4
        if buffer.size != expected:
            raise InputValidationError(
                f"Pixel buffer has {buffer.size} values, expected {expected} "
                f"({width}x{height} RGBA)"
            )

        buffer = buffer.copy()
        buffer.setflags(write=False)
        return cls(width=width, height=height, pixels=buffer)

    @classmethod
    def from_array(cls, image: np.ndarray) -> "RawImage":
        """
        Build a RawImage from an (H, W, 4) RGBA or (H, W, 3) RGB array.

        RGB input gets an opaque alpha channel.
        """
        if image is None:
            raise InputValidationError("Missing image array")
        image = np.asarray(image)
        if image.ndim != 3 or image.shape[2] not in (3, 4):
            raise InputValidationError(
                f"Expected (H, W, 3) or (H, W, 4) array, got shape {image.shape}"
            )
        height, width = image.shape[:2]
        if image.shape[2] == 3:
            alpha = np.full((height, width, 1), 255, dtype=image.dtype)
            image = np.concatenate([image, alpha], axis=2)
        return cls.from_buffer(width, height, image.reshape(-1))

    def rgb(self) -> np.ndarray:
        """RGB view (H, W, 3) of the buffer. Alpha is dropped."""
        return self.pixels.reshape(self.height, self.width, 4)[:, :, :3]


@dataclass(frozen=True, eq=False)
class StainChannel:
    """One unmixed stain intensity map and its summary statistics."""
    name: str
    values: np.ndarray  # (H, W) float64
    mean: float = field(init=False)
    std: float = field(init=False)
    min: float = field(init=False)
    max: float = field(init=False)

    def __post_init__(self):
        values = np.ascontiguousarray(self.values, dtype=np.float64)
        object.__setattr__(self, "values", values)
        if values.size == 0:
            stats = (0.0, 0.0, 0.0, 0.0)
        else:
            stats = (
                float(values.mean()),
                float(values.std()),
                float(values.min()),
                float(values.max()),
            )
        for key, value in zip(("mean", "std", "min", "max"), stats):
            object.__setattr__(self, key, value)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    def with_values(self, values: np.ndarray) -> "StainChannel":
        """Return a new channel with the same name and new intensities."""
        return StainChannel(name=self.name, values=values)

    def stats(self) -> Dict[str, float]:
        return {"mean": self.mean, "std": self.std, "min": self.min, "max": self.max}


# =========================================================================
# OPTICAL DENSITY
# =========================================================================

def rgb_to_od(image_rgb: np.ndarray, epsilon: float = OD_EPSILON) -> np.ndarray:
    """
    Convert RGB to Optical Density (OD)

    Beer-Lambert law: OD = -log10(I / I0)
    where I = transmitted light, I0 = incident light (white = 255)

    Args:
        image_rgb: RGB image in range [0, 255]
        epsilon: Small value to avoid log(0)

    Returns:
        Optical density (H, W, 3), float64
    """
    image_float = image_rgb.astype(np.float64) / 255.0
    image_float = np.maximum(image_float, epsilon)
    return -np.log10(image_float)


def build_unmixing_matrix(stain_vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Build the fixed (3, N) unmixing matrix from N reference stain vectors.

    Rows of the stain matrix are L2-normalised before inversion.

    Raises:
        ConfigurationError: not N x 3 with N in {2, 3}, zero or degenerate vectors
    """
    stains = np.asarray(stain_vectors, dtype=np.float64)
    if stains.ndim != 2 or stains.shape[1] != 3 or stains.shape[0] not in (2, 3):
        raise ConfigurationError(
            f"Stain matrix must be (N, 3) with N in {{2, 3}}, got {stains.shape}"
        )
    norms = np.linalg.norm(stains, axis=1)
    if np.any(norms <= 0):
        raise ConfigurationError("Stain vectors must be non-zero")
    stains = stains / norms[:, None]

    if np.linalg.matrix_rank(stains) < stains.shape[0]:
        raise ConfigurationError("Stain vectors are linearly dependent")

    return np.linalg.pinv(stains)


# =========================================================================
# STAIN UNMIXER
# =========================================================================

class StainUnmixer:
    """
    Separates a RawImage into named stain channels.

    Usage:
        unmixer = StainUnmixer()
        channels = unmixer.unmix(RawImage.from_array(image_rgba))
        channels["primary"].mean
    """

    def __init__(
        self,
        stain_vectors: Sequence[Sequence[float]] = DEFAULT_STAIN_VECTORS,
        channel_names: Sequence[str] = DEFAULT_CHANNEL_NAMES,
        epsilon: float = OD_EPSILON,
        max_density: Optional[float] = None,
    ):
        """
        Args:
            stain_vectors: N reference OD vectors (R, G, B), N = 2 or 3
            channel_names: One name per stain vector
            epsilon: Floor applied before log10
            max_density: Upper clamp of stain intensities (default -log10(epsilon))
        """
        if not 0 < epsilon < 1:
            raise ConfigurationError(f"epsilon must be in (0, 1), got {epsilon}")
        self.unmixing_matrix = build_unmixing_matrix(stain_vectors)
        self.unmixing_matrix.setflags(write=False)

        names = tuple(channel_names)
        if len(names) != self.unmixing_matrix.shape[1]:
            raise ConfigurationError(
                f"{len(names)} channel name(s) for "
                f"{self.unmixing_matrix.shape[1]} stain vector(s)"
            )
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate channel names: {names}")

        self.channel_names = names
        self.epsilon = epsilon
        self.max_density = -np.log10(epsilon) if max_density is None else float(max_density)
        if self.max_density <= 0:
            raise ConfigurationError("max_density must be positive")

    def unmix(self, image: RawImage) -> Dict[str, StainChannel]:
        """
        Unmix an image into stain channels.

        Args:
            image: RawImage (alpha ignored)

        Returns:
            Dict channel name -> StainChannel, ordered as channel_names

        Raises:
            InputValidationError: missing image/buffer or bad dimensions
        """
        validate_raw_image(image)

        od = rgb_to_od(image.rgb(), self.epsilon)
        concentrations = od.reshape(-1, 3) @ self.unmixing_matrix
        concentrations = np.clip(concentrations, 0.0, self.max_density)
        concentrations = concentrations.reshape(image.height, image.width, -1)

        return {
            name: StainChannel(name=name, values=concentrations[:, :, i])
            for i, name in enumerate(self.channel_names)
        }


# =========================================================================
# VALIDATION
# =========================================================================

def _validate_dimensions(width, height) -> None:
    for label, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise InputValidationError(f"{label} must be an integer, got {value!r}")
        if value <= 0:
            raise InputValidationError(f"{label} must be > 0, got {value}")


def validate_raw_image(image: Optional[RawImage]) -> None:
    """Fail fast on malformed images, before any pixel work."""
    if image is None:
        raise InputValidationError("Missing image")
    if not isinstance(image, RawImage):
        raise InputValidationError(
            f"Expected RawImage, got {type(image).__name__}"
        )
    if image.pixels is None:
        raise InputValidationError("Missing pixel buffer")
    _validate_dimensions(image.width, image.height)
    if image.pixels.size != image.width * image.height * 4:
        raise InputValidationError(
            f"Pixel buffer has {image.pixels.size} values, expected "
            f"{image.width * image.height * 4}"
        )
