"""
Colour/edge based background segmentation.

Stages, each consuming the previous one's output:
 - `estimate_background`: background colour + adaptive threshold from the frame,
 - `compute_edge_map`: Sobel gradient magnitude of the red channel,
 - `classify_pixels`: per-pixel background/foreground decision,
 - `expand_from_border`: absorb background connected to the image frame.

The channel weights and blend factors were tuned empirically; changing any of
them is a behaviour change for every stored cutout.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .errors import InvalidImage
from .preprocessing import PixelBuffer

logger = logging.getLogger(__name__)

# Per-channel weights of the squared colour distance (R, G, B).
CHANNEL_WEIGHTS = np.array([2.0, 4.0, 3.0])
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

THRESHOLD_MIN = 30.0
THRESHOLD_MAX = 60.0
SPREAD_SCALE = 1.5

COLOR_BLEND = 0.7
LUMA_BLEND = 0.3

FRAME_BAND_RATIO = 0.08
FRAME_LENIENCY = 1.4
STRONG_EDGE = 50.0
STRONG_EDGE_STRICTNESS = 0.7
FLOOD_LENIENCY = 1.2


@dataclass(frozen=True)
class ColorEstimate:
    r: float
    g: float
    b: float
    threshold: float

    @property
    def color(self) -> np.ndarray:
        return np.array([self.r, self.g, self.b], dtype=np.float64)


def weighted_color_distance(rgb: np.ndarray, color: np.ndarray) -> np.ndarray:
    """Green-heavy Euclidean distance of every pixel in `rgb` to `color`."""
    diff = rgb - color
    return np.sqrt(np.sum(diff * diff * CHANNEL_WEIGHTS, axis=-1)) / 3.0


def luminance(rgb: np.ndarray) -> np.ndarray:
    return rgb @ LUMA_WEIGHTS


def _corner_size(width: int, height: int) -> int:
    shorter = min(width, height)
    return min(shorter, max(5, int(shorter * 0.05)))


def _sample_corners(rgb: np.ndarray, size: int) -> np.ndarray:
    h, w = rgb.shape[:2]
    blocks = [
        rgb[:size, :size],  # Top-left
        rgb[:size, w - size:],  # Top-right
        rgb[h - size:, :size],  # Bottom-left
        rgb[h - size:, w - size:],  # Bottom-right
    ]
    return np.concatenate([block.reshape(-1, 3) for block in blocks])


def _sample_frame(rgb: np.ndarray, step: int) -> np.ndarray:
    h, w = rgb.shape[:2]
    return np.concatenate([
        rgb[0, ::step],  # Top row
        rgb[h - 1, ::step],  # Bottom row
        rgb[::step, 0],  # Left column
        rgb[::step, w - 1],  # Right column
    ])


def estimate_background(buffer: PixelBuffer, rgb: Optional[np.ndarray] = None) -> ColorEstimate:
    """
    Estimate the background colour from corner blocks and the image frame.

    Corner samples are counted twice. The threshold is 1.5x the RMS distance
    of the samples to their mean, clamped to [30, 60].
    """
    if not buffer.width or not buffer.height:
        raise InvalidImage(f"Invalid image dimensions: {buffer.width}x{buffer.height}")

    if rgb is None:
        rgb = buffer.rgb
    corners = _sample_corners(rgb, _corner_size(buffer.width, buffer.height))
    step = max(1, min(buffer.width, buffer.height) // 50)
    frame = _sample_frame(rgb, step)

    samples = np.concatenate([corners, corners, frame])
    mean = samples.mean(axis=0)
    diff = samples - mean
    spread = float(np.sqrt(np.mean(np.sum(diff * diff, axis=1))))
    threshold = float(min(THRESHOLD_MAX, max(THRESHOLD_MIN, spread * SPREAD_SCALE)))

    estimate = ColorEstimate(r=float(mean[0]), g=float(mean[1]), b=float(mean[2]), threshold=threshold)
    logger.debug(
        "sampler: %d samples bg=(%.1f, %.1f, %.1f) spread=%.2f threshold=%.2f",
        len(samples),
        estimate.r,
        estimate.g,
        estimate.b,
        spread,
        threshold,
    )
    return estimate


def compute_edge_map(buffer: PixelBuffer) -> np.ndarray:
    """Sobel gradient magnitude of the red channel; the one-pixel frame stays 0."""
    edge_map = np.zeros((buffer.height, buffer.width), dtype=np.float64)
    if buffer.height < 3 or buffer.width < 3:
        return edge_map

    red = buffer.pixels[:, :, 0].astype(np.float64)
    sobel_x = cv2.Sobel(red, cv2.CV_64F, 1, 0, ksize=3)
    sobel_y = cv2.Sobel(red, cv2.CV_64F, 0, 1, ksize=3)
    magnitude = np.sqrt(sobel_x**2 + sobel_y**2)

    edge_map[1:-1, 1:-1] = magnitude[1:-1, 1:-1]
    return edge_map


def _frame_band(width: int, height: int) -> np.ndarray:
    """Boolean grid marking pixels within 8% of the shorter side from any edge."""
    band = FRAME_BAND_RATIO * min(width, height)
    xs = np.arange(width)
    ys = np.arange(height)
    near_x = (xs < band) | (xs >= width - band)
    near_y = (ys < band) | (ys >= height - band)
    return near_y[:, None] | near_x[None, :]


def classify_pixels(
    buffer: PixelBuffer,
    estimate: ColorEstimate,
    edge_map: np.ndarray,
    rgb: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Initial background mask (True = background).

    A pixel is background when its blended colour/luminance distance to the
    estimate is under a threshold that is relaxed near the frame and tightened
    on strong interior edges.
    """
    if rgb is None:
        rgb = buffer.rgb
    color = estimate.color
    distance = weighted_color_distance(rgb, color)
    lum_diff = np.abs(luminance(rgb) - float(luminance(color)))
    combined = distance * COLOR_BLEND + lum_diff * LUMA_BLEND

    base = estimate.threshold
    thresholds = np.where(
        _frame_band(buffer.width, buffer.height),
        base * FRAME_LENIENCY,
        np.where(edge_map > STRONG_EDGE, base * STRONG_EDGE_STRICTNESS, base),
    )
    mask = combined < thresholds
    logger.debug("classifier: %.2f%% background", 100.0 * float(mask.mean()))
    return mask


def _frame_seeds(mask: np.ndarray) -> np.ndarray:
    seeds = np.zeros_like(mask, dtype=bool)
    seeds[0, :] = mask[0, :]
    seeds[-1, :] = mask[-1, :]
    seeds[:, 0] = mask[:, 0]
    seeds[:, -1] = mask[:, -1]
    return seeds


def expand_from_border(
    mask: np.ndarray,
    buffer: PixelBuffer,
    estimate: ColorEstimate,
    rgb: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Flood the background label inward from frame pixels already marked background.

    Any 4-connected path of pixels within 1.2x the threshold of the background
    colour that starts next to a seed becomes background, whatever the
    classifier said. Reachability is computed by labelling the 4-connected
    components of the "near background" set and keeping those touching a
    seed, which is what a breadth-first walk from the seeds would visit.
    The mask is updated in place and returned.
    """
    seeds = _frame_seeds(mask)
    if not seeds.any():
        logger.debug("flood fill: no background on the frame, skipping")
        return mask

    if rgb is None:
        rgb = buffer.rgb
    near = weighted_color_distance(rgb, estimate.color) < estimate.threshold * FLOOD_LENIENCY
    _, labels = cv2.connectedComponents(near.astype(np.uint8), connectivity=4)

    cross = cv2.getStructuringElement(cv2.MORPH_CROSS, (3, 3))
    reach = cv2.dilate(seeds.astype(np.uint8), cross).astype(bool)
    touched = np.unique(labels[reach & near])
    touched = touched[touched > 0]

    before = int(mask.sum())
    if touched.size:
        mask |= np.isin(labels, touched)
    logger.debug(
        "flood fill: %d seeds, %d components, +%d pixels",
        int(seeds.sum()),
        int(touched.size),
        int(mask.sum()) - before,
    )
    return mask


def segment(buffer: PixelBuffer) -> Tuple[np.ndarray, ColorEstimate]:
    """Run sampler -> edge map -> classifier -> flood fill and return the raw mask."""
    rgb = buffer.rgb
    estimate = estimate_background(buffer, rgb)
    edge_map = compute_edge_map(buffer)
    mask = classify_pixels(buffer, estimate, edge_map, rgb)
    mask = expand_from_border(mask, buffer, estimate, rgb)
    return mask, estimate
