"""
High-level background removal pipeline.

`remove_background` is the core buffer-to-buffer contract; `process_image_bytes`
and `process_image_file` wrap it for the HTTP API, the batch worker and the
local script:
bytes in -> decode -> segmentation -> mask cleanup -> RGBA (PNG) out.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from . import config
from .errors import ProcessingFailure
from .postprocessing import apply_mask, clean_mask, encode_png, maybe_dump_debug
from .preprocessing import (
    PixelBuffer,
    load_pixel_buffer_from_bytes,
    pixel_buffer_from_raw,
)
from .segmentation import segment

logger = logging.getLogger(__name__)


@dataclass
class ProcessedImage:
    processed_path: Path
    png_bytes: bytes
    width: int
    height: int


def create_background_mask(buffer: PixelBuffer) -> np.ndarray:
    """Boolean `(H, W)` mask, True where the pixel is background."""
    try:
        mask, estimate = segment(buffer)
        mask = clean_mask(mask)
    except (IndexError, cv2.error) as exc:
        raise ProcessingFailure(f"Segmentation failed: {exc}") from exc

    if mask.shape != (buffer.height, buffer.width) or mask.dtype != np.bool_:
        raise ProcessingFailure(f"Segmentation produced a {mask.dtype} mask of shape {mask.shape}")
    logger.debug(
        "mask %dx%d threshold=%.2f background=%.2f%%",
        buffer.width,
        buffer.height,
        estimate.threshold,
        100.0 * float(mask.mean()),
    )
    return mask


def remove_background_array(buffer: PixelBuffer) -> np.ndarray:
    """Segment `buffer` and return an `(H, W, 4)` RGBA array with the background cleared."""
    mask = create_background_mask(buffer)
    return apply_mask(buffer, mask)


def _remove_and_maybe_dump(buffer: PixelBuffer) -> np.ndarray:
    """Wrapper-level removal that also writes debug images when DEBUG is set."""
    rgba = remove_background_array(buffer)
    settings = config.get_settings()
    if settings.debug:
        maybe_dump_debug(rgba, rgba[:, :, 3] == 0, Path(settings.debug_output_dir))
    return rgba


def remove_background(pixels: bytes, width: int, height: int, channels: int) -> bytes:
    """
    Core contract: raw RGB/RGBA bytes in, `width * height * 4` RGBA bytes out.

    Raises:
        InvalidImage: zero dimensions or a buffer size mismatch.
        UnsupportedChannelLayout: channels not in {3, 4}.
        ProcessingFailure: an internal stage broke its contract.
    """
    buffer = pixel_buffer_from_raw(pixels, width, height, channels)
    return remove_background_array(buffer).tobytes()


def process_image_bytes(image_bytes: bytes) -> bytes:
    """Full pipeline from encoded image bytes to RGBA PNG bytes."""
    buffer = load_pixel_buffer_from_bytes(image_bytes)
    rgba = _remove_and_maybe_dump(buffer)
    return encode_png(rgba)


def output_path_for(image_path: Path, suffix: Optional[str] = None) -> Path:
    """`photo.jpg` -> `photo_nobg.png` in the same directory."""
    if suffix is None:
        suffix = config.get_settings().output_suffix
    return image_path.with_name(f"{image_path.stem}{suffix}.png")


def process_image_file(
    image_path: Union[str, Path], output_path: Optional[Union[str, Path]] = None
) -> ProcessedImage:
    """Remove the background of an image on disk and write the PNG next to it."""
    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Input file not found: {image_path}")
    target = Path(output_path) if output_path is not None else output_path_for(image_path)

    buffer = load_pixel_buffer_from_bytes(image_path.read_bytes())
    png_bytes = encode_png(_remove_and_maybe_dump(buffer))

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(png_bytes)
    logger.info("Wrote cutout %s (%dx%d)", target, buffer.width, buffer.height)
    return ProcessedImage(
        processed_path=target,
        png_bytes=png_bytes,
        width=buffer.width,
        height=buffer.height,
    )


def is_background_removal_available() -> bool:
    """The in-house remover has no model or remote dependency to wait for."""
    return True
