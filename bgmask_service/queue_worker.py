"""
Batch worker.

Processes a list of images from disk independently: a failing item is logged
and reported in its result while the rest of the batch carries on. Items
share no state, so they can be spread over a thread pool.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from . import config
from .errors import ImageError
from .pipeline import process_image_file

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    input_path: Path
    output_path: Optional[Path] = None


@dataclass
class BatchResult:
    input_path: Path
    output_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _process_item(item: BatchItem) -> BatchResult:
    logger.info("Processing batch item path=%s", item.input_path)
    try:
        processed = process_image_file(item.input_path, item.output_path)
    except (ImageError, OSError) as exc:
        logger.warning("Batch item %s failed: %s", item.input_path, exc)
        return BatchResult(input_path=Path(item.input_path), error=str(exc))
    return BatchResult(input_path=Path(item.input_path), output_path=processed.processed_path)


def process_batch(items: Iterable[BatchItem], max_workers: Optional[int] = None) -> List[BatchResult]:
    """
    Process a batch of images.

    Returns one result per item, in input order.
    """
    items = list(items)
    if max_workers is None:
        max_workers = config.get_settings().batch_max_workers

    if max_workers <= 1 or len(items) <= 1:
        results = [_process_item(item) for item in items]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(_process_item, items))

    failed = sum(1 for result in results if not result.ok)
    logger.info("Batch finished: %d ok, %d failed", len(results) - failed, failed)
    return results
