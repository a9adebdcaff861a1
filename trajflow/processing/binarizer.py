"""Strict two-class binarization against a white background reference."""

from __future__ import annotations

import numpy as np

from trajflow.capture.image_source import to_rgba
from trajflow.config import ExtractionConfig

WHITE = np.array([255, 255, 255], dtype=np.int16)


class Binarizer:
    """Splits a raster into trajectory ink (black) and background (white).

    Any pixel within `white_threshold` (L1 RGB distance) of pure white is
    background; everything else is foreground. Compression noise and
    antialiasing end up on one side or the other, never in between.
    """

    def __init__(self, config: ExtractionConfig):
        self._threshold = config.white_threshold

    def foreground_mask(self, image: np.ndarray) -> np.ndarray:
        """Return an (h, w) boolean mask, True where a pixel is trajectory ink."""
        rgb = to_rgba(image)[..., :3].astype(np.int16)
        diff = np.abs(rgb - WHITE).sum(axis=2)
        return diff > self._threshold

    def process(self, image: np.ndarray) -> np.ndarray:
        """Return a fully opaque RGBA image containing only black and white."""
        mask = self.foreground_mask(image)
        out = np.full(mask.shape + (4,), 255, dtype=np.uint8)
        out[mask, :3] = 0
        return out
