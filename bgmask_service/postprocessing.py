"""Morphological mask cleanup and alpha compositing."""

from __future__ import annotations

from io import BytesIO
import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from . import config
from .errors import ProcessingFailure
from .preprocessing import PixelBuffer, ensure_alpha

logger = logging.getLogger(__name__)

# 18 of 25 cells (72%) in a 5x5 window.
MAJORITY_5X5 = 18
SMOOTH_LOW = 5
SMOOTH_HIGH = 7


def _window_counts(mask: np.ndarray, size: int) -> np.ndarray:
    """Number of background cells in the `size x size` window around each pixel."""
    kernel = np.ones((size, size), np.float32)
    counts = cv2.filter2D(mask.astype(np.float32), -1, kernel, borderType=cv2.BORDER_CONSTANT)
    return np.rint(counts).astype(np.int32)


def _interior(shape, margin: int) -> np.ndarray:
    """Pixels whose full window fits inside the image."""
    inside = np.zeros(shape, dtype=bool)
    h, w = shape
    if h > 2 * margin and w > 2 * margin:
        inside[margin:h - margin, margin:w - margin] = True
    return inside


def erode_mask(mask: np.ndarray) -> np.ndarray:
    """Foreground pixels surrounded by mostly background become background."""
    background = _window_counts(mask, 5)
    flip = ~mask & (background >= MAJORITY_5X5) & _interior(mask.shape, 2)
    out = mask.copy()
    out[flip] = True
    return out


def dilate_mask(mask: np.ndarray) -> np.ndarray:
    """Background pixels surrounded by mostly foreground become foreground."""
    foreground = 25 - _window_counts(mask, 5)
    flip = mask & (foreground >= MAJORITY_5X5) & _interior(mask.shape, 2)
    out = mask.copy()
    out[flip] = False
    return out


def open_mask(mask: np.ndarray) -> np.ndarray:
    """Drop single background pixels with no background among their 8 neighbours."""
    neighbours = _window_counts(mask, 3) - mask.astype(np.int32)
    flip = mask & (neighbours == 0) & _interior(mask.shape, 1)
    out = mask.copy()
    out[flip] = False
    return out


def smooth_mask_edges(mask: np.ndarray) -> np.ndarray:
    """Pixels in a borderline 3x3 neighbourhood (5-7 background) go to background."""
    counts = _window_counts(mask, 3)
    borderline = (counts >= SMOOTH_LOW) & (counts <= SMOOTH_HIGH) & _interior(mask.shape, 1)
    out = mask.copy()
    out[borderline] = True
    return out


def clean_mask(mask: np.ndarray) -> np.ndarray:
    """
    Run erosion, dilation, opening and edge smoothing in that order.

    Every pass reads the previous pass's output and returns a new grid, so
    no pass sees its own partial writes.
    """
    cleaned = mask.astype(bool)
    for step in (erode_mask, dilate_mask, open_mask, smooth_mask_edges):
        before = cleaned
        cleaned = step(cleaned)
        logger.debug("cleanup: %s flipped %d pixels", step.__name__, int(np.count_nonzero(before != cleaned)))
    return cleaned


def apply_mask(buffer: PixelBuffer, mask: np.ndarray) -> np.ndarray:
    """
    Compose an RGBA array: background pixels get alpha 0, the rest 255.

    Colour channels are copied untouched; the input buffer is not modified.
    """
    if mask.shape != (buffer.height, buffer.width):
        raise ProcessingFailure(
            f"Mask shape {mask.shape} does not match image {buffer.height}x{buffer.width}"
        )
    rgba = ensure_alpha(buffer).pixels.copy()
    rgba[:, :, 3] = np.where(mask, 0, 255).astype(np.uint8)
    return rgba


def encode_png(rgba: np.ndarray, compress_level: Optional[int] = None) -> bytes:
    """Encode an `(H, W, 4)` uint8 array as an RGBA PNG."""
    if compress_level is None:
        compress_level = config.get_settings().png_compress_level
    out = Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8))
    buf = BytesIO()
    out.save(buf, format="PNG", compress_level=compress_level)
    return buf.getvalue()


def maybe_dump_debug(rgb: np.ndarray, mask: np.ndarray, debug_dir: Path) -> None:
    """Write the mask and a red background overlay when DEBUG is enabled."""
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        mask_path = debug_dir / "mask.png"
        overlay_path = debug_dir / "background_overlay.png"

        cv2.imwrite(str(mask_path), mask.astype(np.uint8) * 255)

        overlay = rgb[:, :, :3].copy()
        overlay[mask] = [255, 0, 0]  # background in red (RGB)
        overlay_bgr = cv2.cvtColor(overlay, cv2.COLOR_RGB2BGR)
        cv2.imwrite(str(overlay_path), overlay_bgr)
        logger.debug("postprocess: wrote debug outputs to %s", debug_dir)
    except Exception as exc:  # noqa: BLE001
        logger.warning("postprocess: failed to write debug outputs: %s", exc)
