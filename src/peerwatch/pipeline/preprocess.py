"""
Detector Preprocessing
======================

Letterbox resize and tensor conversion for detection models.

The input image is scaled to fit the model input while preserving aspect
ratio, centered, and padded with black. Detections produced on that canvas
stay in canvas coordinates; mapping them back to the captured frame is the
display's job, using the returned LetterboxGeometry.
"""

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np


@dataclass(frozen=True, slots=True)
class LetterboxGeometry:
    """
    Placement of the source image on the model input canvas.

    Attributes:
        input_width: Canvas width
        input_height: Canvas height
        scale: Source-to-canvas scale factor
        pad_x: Left padding in canvas pixels
        pad_y: Top padding in canvas pixels
    """

    input_width: int
    input_height: int
    scale: float
    pad_x: int
    pad_y: int


def letterbox(
    image: np.ndarray,
    input_width: int,
    input_height: int,
) -> Tuple[np.ndarray, LetterboxGeometry]:
    """
    Fit `image` into an input_width x input_height canvas.

    Args:
        image: HxWx3 uint8 image
        input_width: Target canvas width
        input_height: Target canvas height

    Returns:
        Tuple of (canvas, geometry)
    """
    h, w = image.shape[:2]
    if h == 0 or w == 0:
        raise ValueError(f"Cannot letterbox empty image of shape {image.shape}")

    scale = min(input_width / w, input_height / h)
    draw_w = max(1, round(w * scale))
    draw_h = max(1, round(h * scale))
    pad_x = (input_width - draw_w) // 2
    pad_y = (input_height - draw_h) // 2

    resized = cv2.resize(image, (draw_w, draw_h), interpolation=cv2.INTER_LINEAR)
    canvas = np.zeros((input_height, input_width, 3), dtype=np.uint8)
    canvas[pad_y:pad_y + draw_h, pad_x:pad_x + draw_w] = resized

    return canvas, LetterboxGeometry(
        input_width=input_width,
        input_height=input_height,
        scale=scale,
        pad_x=pad_x,
        pad_y=pad_y,
    )


def to_input_tensor(canvas_bgr: np.ndarray) -> np.ndarray:
    """
    Convert a BGR canvas to a float32 NCHW RGB tensor in [0, 1].

    Returns:
        Array of shape (1, 3, H, W)
    """
    rgb = cv2.cvtColor(canvas_bgr, cv2.COLOR_BGR2RGB)
    chw = rgb.astype(np.float32).transpose(2, 0, 1) / 255.0
    return np.ascontiguousarray(chw[np.newaxis, ...])
