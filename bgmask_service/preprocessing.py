"""
Image loading and input validation.

Everything that turns caller input (encoded bytes, files, raw buffers) into a
`PixelBuffer` lives here, so the segmentation stages can assume a valid
`H x W x C` uint8 array with `C in {3, 4}`.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from . import config
from .errors import InvalidImage, UnsupportedChannelLayout

logger = logging.getLogger(__name__)

SUPPORTED_CHANNELS = (3, 4)


@dataclass(frozen=True)
class PixelBuffer:
    pixels: np.ndarray  # (H, W, C) uint8, row-major
    width: int
    height: int
    channels: int

    @property
    def rgb(self) -> np.ndarray:
        """Colour channels only, as float64 for distance arithmetic."""
        return self.pixels[:, :, :3].astype(np.float64)


def validate_dimensions(width: Optional[int], height: Optional[int], channels: Optional[int]) -> None:
    """Reject geometry the pipeline cannot work with before any stage runs."""
    if not width or not height or width <= 0 or height <= 0:
        raise InvalidImage(f"Invalid image dimensions: {width}x{height}")
    if channels not in SUPPORTED_CHANNELS:
        raise UnsupportedChannelLayout(channels)


def _check_pixel_cap(width: int, height: int, max_pixels: Optional[int]) -> None:
    if max_pixels is None:
        max_pixels = config.get_settings().max_image_pixels
    if width * height > max_pixels:
        raise InvalidImage(
            f"Image has {width * height} pixels which exceeds the limit of {max_pixels}"
        )


def pixel_buffer_from_raw(pixels: bytes, width: int, height: int, channels: int) -> PixelBuffer:
    """
    Wrap a raw row-major RGB/RGBA byte buffer.

    No pixel-count cap applies here; callers bound input size before
    handing buffers over (see `load_pixel_buffer_from_bytes`).

    Raises:
        InvalidImage: zero dimensions or a length that does not match
            `width * height * channels`.
        UnsupportedChannelLayout: channels not in {3, 4}.
    """
    validate_dimensions(width, height, channels)
    expected = width * height * channels
    if len(pixels) != expected:
        raise InvalidImage(
            f"Buffer length {len(pixels)} does not match {width}x{height}x{channels} ({expected})"
        )

    array = np.frombuffer(pixels, dtype=np.uint8).reshape(height, width, channels)
    return PixelBuffer(pixels=array, width=width, height=height, channels=channels)


def pixel_buffer_from_array(array: np.ndarray) -> PixelBuffer:
    """Wrap an existing `(H, W, C)` uint8 array without copying."""
    if array.ndim != 3:
        raise InvalidImage(f"Expected an (H, W, C) array, got shape {array.shape}")
    height, width, channels = array.shape
    validate_dimensions(width, height, channels)
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    return PixelBuffer(pixels=array, width=width, height=height, channels=channels)


def _to_supported_mode(image: Image.Image) -> Image.Image:
    """Normalise palette/greyscale/CMYK images to RGB or RGBA."""
    has_alpha = image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )
    target = "RGBA" if has_alpha else "RGB"
    if image.mode != target:
        image = image.convert(target)
    return image


def load_pixel_buffer_from_bytes(image_bytes: bytes, max_pixels: Optional[int] = None) -> PixelBuffer:
    """
    Decode an encoded image (PNG, JPEG, WebP, ...) into a `PixelBuffer`.

    The decoded channel layout follows the source: images carrying
    transparency come back as RGBA, everything else as RGB. Images larger
    than `max_pixels` (default `MAX_IMAGE_PIXELS`) are refused.
    """
    if not image_bytes:
        raise InvalidImage("Empty image data")
    try:
        image = Image.open(BytesIO(image_bytes))
        # Checked on the header, before pixel data is decoded.
        _check_pixel_cap(image.width, image.height, max_pixels)
        image = _to_supported_mode(image)
        array = np.asarray(image, dtype=np.uint8)
    except InvalidImage:
        raise
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise InvalidImage("Invalid image data") from exc

    logger.debug("decoded image %dx%d mode=%s", image.width, image.height, image.mode)
    return pixel_buffer_from_array(array)


def ensure_alpha(buffer: PixelBuffer) -> PixelBuffer:
    """Return an RGBA buffer, synthesising an opaque alpha channel when missing."""
    if buffer.channels == 4:
        return buffer
    alpha = np.full((buffer.height, buffer.width, 1), 255, dtype=np.uint8)
    rgba = np.concatenate([buffer.pixels, alpha], axis=2)
    return PixelBuffer(pixels=rgba, width=buffer.width, height=buffer.height, channels=4)
