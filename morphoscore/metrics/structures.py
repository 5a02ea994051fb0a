"""
Structure detection on the primary stain channel.

Structures (candidate nuclei) are 8-connected components of pixels above a
cutoff, filtered by area, then measured with skimage regionprops.

Per-structure attributes:
- area            pixel count
- perimeter       skimage perimeter estimate
- mean_intensity  mean primary intensity inside the structure
- solidity        area / convex hull area (1.0 = convex)
- centroid        (row, col)
- surrounding     secondary-stain pixels above a cutoff in a square window
                  around the centroid (cytoplasm estimate for N/C ratio)
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy import ndimage
from skimage.measure import regionprops

from morphoscore.constants import (
    CYTOPLASM_CUTOFF,
    CYTOPLASM_RADIUS,
    MAX_STRUCTURE_AREA,
    MIN_STRUCTURE_AREA,
    STRUCTURE_CUTOFF,
)

# 8-connectivity
_STRUCTURE_ELEMENT = np.ones((3, 3), dtype=bool)


@dataclass(frozen=True)
class StructureInfo:
    """Measurements for one detected structure."""
    label: int
    area: int
    perimeter: float
    mean_intensity: float
    solidity: float
    centroid: Tuple[float, float]  # (row, col)
    surrounding: int = 0           # secondary-stain pixels in the window

    @property
    def complexity(self) -> float:
        """1 - solidity: 0 for convex shapes, grows with irregularity."""
        return max(0.0, 1.0 - self.solidity)

    @property
    def nc_ratio(self) -> Optional[float]:
        if self.surrounding <= 0:
            return None
        return self.area / self.surrounding


def label_structures(
    primary: np.ndarray,
    cutoff: float = STRUCTURE_CUTOFF,
    min_area: int = MIN_STRUCTURE_AREA,
    max_area: int = MAX_STRUCTURE_AREA
) -> np.ndarray:
    """
    Label connected components above cutoff.

    Returns:
        Instance map (H, W) int32, 0 = background, 1..N = structures
        (relabelled sequentially after area filtering)
    """
    mask = primary > cutoff
    labels, n = ndimage.label(mask, structure=_STRUCTURE_ELEMENT)
    if n == 0:
        return labels.astype(np.int32)

    areas = np.bincount(labels.ravel(), minlength=n + 1)
    keep = (areas >= min_area) & (areas <= max_area)
    keep[0] = False

    filtered = np.where(keep[labels], labels, 0)
    relabelled, _ = ndimage.label(filtered > 0, structure=_STRUCTURE_ELEMENT)
    return relabelled.astype(np.int32)


def count_surrounding(
    secondary: np.ndarray,
    centroids: List[Tuple[float, float]],
    cutoff: float = CYTOPLASM_CUTOFF,
    radius: int = CYTOPLASM_RADIUS
) -> List[int]:
    """Count secondary pixels above cutoff in a (2r+1)^2 window per centroid."""
    if not centroids:
        return []

    window = 2 * radius + 1
    mask = (secondary > cutoff).astype(np.float64)
    # Mean over the window with zero padding, rescaled to a count
    counts = ndimage.uniform_filter(mask, size=window, mode="constant", cval=0.0)
    counts = counts * window * window

    h, w = secondary.shape
    result = []
    for row, col in centroids:
        r = min(max(int(round(row)), 0), h - 1)
        c = min(max(int(round(col)), 0), w - 1)
        result.append(int(round(counts[r, c])))
    return result


def detect_structures(
    primary: np.ndarray,
    secondary: Optional[np.ndarray] = None,
    cutoff: float = STRUCTURE_CUTOFF,
    min_area: int = MIN_STRUCTURE_AREA,
    max_area: int = MAX_STRUCTURE_AREA,
    cytoplasm_cutoff: float = CYTOPLASM_CUTOFF,
    cytoplasm_radius: int = CYTOPLASM_RADIUS
) -> List[StructureInfo]:
    """
    Detect and measure structures.

    Args:
        primary: (H, W) primary stain channel, stretched to [0, 1]
        secondary: (H, W) secondary channel for the N/C estimate (optional)

    Returns:
        List of StructureInfo, ordered by label
    """
    labels = label_structures(primary, cutoff, min_area, max_area)
    props = regionprops(labels, intensity_image=primary)
    if len(props) == 0:
        return []

    centroids = [tuple(prop.centroid) for prop in props]
    if secondary is not None:
        surrounding = count_surrounding(
            secondary, centroids, cytoplasm_cutoff, cytoplasm_radius
        )
    else:
        surrounding = [0] * len(props)

    structures = []
    for prop, centroid, around in zip(props, centroids, surrounding):
        structures.append(StructureInfo(
            label=int(prop.label),
            area=int(prop.area),
            perimeter=float(prop.perimeter),
            mean_intensity=float(prop.intensity_mean),
            solidity=float(prop.solidity),
            centroid=(float(centroid[0]), float(centroid[1])),
            surrounding=around,
        ))
    return structures
