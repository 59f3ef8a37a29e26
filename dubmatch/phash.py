"""Perceptual hashing of small grayscale frames."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

IMAGE_SIZE = 32
HASH_SIZE = 8

_GRAY_MODES = frozenset({"L", "I;16"})


def _dct_matrix(size: int) -> np.ndarray:
    k = np.arange(size)[:, None]
    n = np.arange(size)[None, :]
    return np.cos(np.pi * k * (n + 0.5) / size)


def _is_wide(image: Image.Image) -> bool:
    return image.mode.startswith("I")


def _normalize(image: Image.Image) -> Image.Image:
    """Bring an image to 32x32 grayscale, keeping 16-bit depth where present."""
    size = (IMAGE_SIZE, IMAGE_SIZE)
    if _is_wide(image):
        wide = image.convert("I")
        if wide.size != size:
            wide = wide.resize(size, Image.Resampling.BILINEAR)
        pixels = np.clip(np.asarray(wide), 0, 65535).astype(np.uint16)
        return Image.fromarray(pixels)
    gray = image.convert("L")
    if gray.size != size:
        gray = gray.resize(size, Image.Resampling.BILINEAR)
    return gray


class PerceptualHash:
    """Computes 64-bit DCT-based perceptual hashes of images."""

    def __init__(self) -> None:
        self._cosines = _dct_matrix(IMAGE_SIZE)

    def check_image(self, image: Image.Image) -> bool:
        """Tell whether an image can be hashed without conversion."""
        return image.size == (IMAGE_SIZE, IMAGE_SIZE) and image.mode in _GRAY_MODES

    def hash(self, image: Image.Image) -> int:
        """Return the 64-bit perceptual hash of an image."""
        if not self.check_image(image):
            image = _normalize(image)

        value_range = 65535.0 if _is_wide(image) else 255.0
        pixels = np.floor(np.asarray(image, dtype=np.float64) * 255.0 / value_range)

        dct_rows = 2.0 * (self._cosines @ pixels)
        dct = 2.0 * (dct_rows @ self._cosines.T)

        low_freqs = dct[:HASH_SIZE, :HASH_SIZE].ravel()
        median = float(np.median(low_freqs))

        result = 0
        for bit in low_freqs > median:
            result = (result << 1) | int(bit)
        return result

    def hash_file(self, path: str | Path) -> int:
        """Hash the image stored at ``path``; an unreadable image hashes to 0."""
        try:
            with Image.open(path) as image:
                image.load()
                return self.hash(image)
        except (OSError, ValueError):
            logger.debug("could not read image %s", path)
            return 0


def compute_hash(image: Image.Image) -> int:
    """Hash a single image."""
    return PerceptualHash().hash(image)


def phash_dist(a: int, b: int) -> int:
    """Hamming distance between two hashes."""
    return (a ^ b).bit_count()