"""
Quick local helper: removes the background of local images and writes RGBA
PNGs to disk. This bypasses the HTTP layer.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bgmask_service.pipeline import process_image_file
from bgmask_service.queue_worker import BatchItem, process_batch


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove image backgrounds without an ML model")
    parser.add_argument("--input", required=True, nargs="+", help="Path(s) to the input image(s)")
    parser.add_argument("--output", help="Path to write the RGBA PNG (single input only)")
    parser.add_argument("--workers", type=int, default=None, help="Thread count for multiple inputs")
    parser.add_argument("--verbose", action="store_true", help="Log per-stage details")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    inputs = [Path(p) for p in args.input]
    if len(inputs) == 1:
        processed = process_image_file(inputs[0], args.output)
        print(f"Wrote RGBA output to {processed.processed_path}")
        return

    if args.output:
        raise SystemExit("--output can only be used with a single input")
    results = process_batch([BatchItem(input_path=p) for p in inputs], max_workers=args.workers)
    for result in results:
        if result.ok:
            print(f"{result.input_path} -> {result.output_path}")
        else:
            print(f"{result.input_path} FAILED: {result.error}")
    if not all(result.ok for result in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
