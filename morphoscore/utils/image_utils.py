"""
Utilitaires de chargement et de redimensionnement des images.

Ce module est le SEUL point de décodage des fichiers image: le moteur de
scoring ne reçoit que des RawImage (RGBA, uint8).
"""

from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from morphoscore.errors import InputValidationError
from morphoscore.preprocessing.stain_separation import RawImage


def to_rgba(image: np.ndarray) -> np.ndarray:
    """
    Convertit une image décodée par OpenCV (BGR / BGRA / niveaux de gris)
    en RGBA uint8.

    Raises:
        InputValidationError: Si la shape est invalide
    """
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    raise InputValidationError(
        f"Shape invalide: {image.shape}. Attendu: (H, W), (H, W, 3) ou (H, W, 4)."
    )


def resize_max_side(image: np.ndarray, max_side: Optional[int]) -> np.ndarray:
    """
    Réduit l'image pour que son plus grand côté soit <= max_side.

    Les images plus petites sont retournées telles quelles.
    """
    if max_side is None:
        return image
    h, w = image.shape[:2]
    scale = max_side / max(h, w)
    if scale >= 1.0:
        return image
    new_size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    return cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)


def load_image(path: Union[str, Path], max_side: Optional[int] = None) -> RawImage:
    """
    Charge un fichier image en RawImage RGBA.

    Args:
        path: Chemin du fichier (PNG, JPEG, TIFF...)
        max_side: Taille max du plus grand côté (None = pas de redimensionnement)

    Raises:
        InputValidationError: Fichier absent ou non décodable
    """
    path = Path(path)
    if not path.exists():
        raise InputValidationError(f"Image introuvable: {path}")

    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise InputValidationError(f"Image non décodable: {path}")
    if image.dtype != np.uint8:
        # 16 bits -> 8 bits
        image = (image / 257).astype(np.uint8)

    rgba = resize_max_side(to_rgba(image), max_side)
    return RawImage.from_array(rgba)
