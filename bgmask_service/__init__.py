"""
In-house background removal package.

Exposes the colour/edge segmentation pipeline, its mask cleanup and
compositing primitives, a batch worker and the FastAPI application.
"""

from .errors import ImageError, InvalidImage, ProcessingFailure, UnsupportedChannelLayout
from .pipeline import (
    create_background_mask,
    is_background_removal_available,
    process_image_bytes,
    process_image_file,
    remove_background,
)

__all__ = [
    "ImageError",
    "InvalidImage",
    "ProcessingFailure",
    "UnsupportedChannelLayout",
    "create_background_mask",
    "is_background_removal_available",
    "process_image_bytes",
    "process_image_file",
    "remove_background",
]
