"""Decode encoded raster images into RGBA pixel buffers."""

from __future__ import annotations

import logging
from pathlib import Path

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def to_rgba(image: np.ndarray) -> np.ndarray:
    """Promote a grayscale, RGB or RGBA array to RGBA uint8."""
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    channels = image.shape[2]
    if channels == 4:
        return image
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2RGBA)
    raise ValueError(f"Unsupported channel count: {channels}")


def decode_image(data: bytes) -> np.ndarray:
    """Decode BMP/PNG/JPEG bytes into an (h, w, 4) RGBA array."""
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError("Could not decode image data")

    if image.dtype != np.uint8:
        image = cv2.convertScaleAbs(image, alpha=255.0 / max(1, int(image.max())))

    if image.ndim == 2:
        rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    elif image.shape[2] == 4:
        rgba = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    else:
        rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)

    logger.debug("Decoded %dx%d image", rgba.shape[1], rgba.shape[0])
    return rgba


def read_image(path: str | Path) -> np.ndarray:
    """Read an image file from disk as RGBA."""
    return decode_image(Path(path).read_bytes())


def encode_png(rgba: np.ndarray) -> bytes:
    """Encode an RGBA array as PNG bytes."""
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA))
    if not ok:
        raise ValueError("Could not encode image")
    return buffer.tobytes()
