"""
Error taxonomy for background removal.

Input problems subclass `ValueError` so HTTP and batch callers can keep
treating them as client errors; `ProcessingFailure` is a broken internal
contract and subclasses `RuntimeError`.
"""

from __future__ import annotations


class ImageError(Exception):
    """Base class for every failure raised by the removal pipeline."""


class InvalidImage(ImageError, ValueError):
    """Missing/zero dimensions, undecodable data, or a buffer size mismatch."""


class UnsupportedChannelLayout(ImageError, ValueError):
    """Channel count outside {3, 4}."""

    def __init__(self, channels: int):
        super().__init__(f"Unsupported channel count {channels}; expected 3 (RGB) or 4 (RGBA)")
        self.channels = channels


class ProcessingFailure(ImageError, RuntimeError):
    """An internal stage violated its own output contract."""
