"""
Image Decoder
=============

Dedicated module for turning captured image handles into OpenCV matrices.

Design Rules:
    - This is the ONLY place in the codebase that decodes images
    - Accepts ndarray (passed through), base64 JPEG text, or raw JPEG bytes
    - Always returns a 3-channel BGR uint8 image
    - Fails fast on corrupt frames
"""

import base64
import binascii
import logging
from typing import Any

import cv2
import numpy as np


logger = logging.getLogger(__name__)


class ImageDecodeError(Exception):
    """Raised when an image handle cannot be decoded."""
    pass


def decode_image(handle: Any) -> np.ndarray:
    """
    Decode an image handle to a BGR numpy array.

    Args:
        handle: HxW / HxWx3 / HxWx4 uint8 ndarray, base64-encoded JPEG
            string (optionally a data: URL), or encoded JPEG bytes

    Returns:
        BGR image as np.ndarray (H, W, 3), dtype=uint8

    Raises:
        ImageDecodeError: If decoding fails or the image is invalid
    """
    if isinstance(handle, np.ndarray):
        return _as_bgr(handle)

    if isinstance(handle, str):
        if handle.startswith("data:"):
            handle = handle.split(",", 1)[-1]
        try:
            handle = base64.b64decode(handle, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ImageDecodeError(f"Invalid base64 image data: {e}")

    if isinstance(handle, (bytes, bytearray, memoryview)):
        nparr = np.frombuffer(handle, np.uint8)
        if nparr.size == 0:
            raise ImageDecodeError("Empty image data")
        bgr = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if bgr is None:
            raise ImageDecodeError("cv2.imdecode returned None")
        return _as_bgr(bgr)

    raise ImageDecodeError(f"Unsupported image handle type: {type(handle).__name__}")


def _as_bgr(image: np.ndarray) -> np.ndarray:
    """Validate an ndarray and normalize it to 3-channel uint8."""
    if image.dtype != np.uint8:
        raise ImageDecodeError(f"Invalid dtype: {image.dtype}")

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3 and image.shape[2] == 3:
        return image
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

    raise ImageDecodeError(f"Invalid image shape: {image.shape}")


def encode_jpeg_b64(image: np.ndarray, quality: int = 80) -> str:
    """
    Encode a BGR image as base64 JPEG.

    Used by capture clients building frame messages.
    """
    ok, buf = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ImageDecodeError("cv2.imencode failed")
    return base64.b64encode(buf.tobytes()).decode("ascii")
