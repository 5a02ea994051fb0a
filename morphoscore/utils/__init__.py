"""Utilitaires hors moteur (décodage d'images)."""

from .image_utils import load_image, resize_max_side, to_rgba

__all__ = ['load_image', 'resize_max_side', 'to_rgba']
