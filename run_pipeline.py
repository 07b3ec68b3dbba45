"""
PII Shield batch runner
Masks PII in one or more document images and writes the results to disk

Usage:
    python run_pipeline.py samples/aadhaar.jpg samples/form.png --output-dir results
    pii-shield samples/*.jpg --color-coded --visualize
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import os
import sys
from datetime import datetime
from typing import Dict, List, Optional

import cv2
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for saving plots
import matplotlib.pyplot as plt
import numpy as np

from job_orchestrator import Job, JobState, PipelineOrchestrator
from ocr_engines import build_ocr_engine
from pii_pipeline import InputRejected, OCR_ENGINES, ShieldConfig

logger = logging.getLogger(__name__)

LOG_HANDLER_NAME = "pii-shield-console"

# ============================================
# LOGGING
# ============================================

def setup_logging(verbose: bool = False):
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if any(h.name == LOG_HANDLER_NAME for h in root.handlers):
        return

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler = logging.StreamHandler()
    handler.set_name(LOG_HANDLER_NAME)
    handler.setFormatter(fmt)
    root.addHandler(handler)

# ============================================
# UTILITY FUNCTIONS
# ============================================

def guess_mime_type(image_path: str) -> str:
    mime_type, _ = mimetypes.guess_type(image_path)
    return mime_type or "application/octet-stream"


def build_report(image_path: str, job: Job) -> Dict:
    """JSON report for one processed image"""
    by_category: Dict[str, List[str]] = {}
    for match in job.matches:
        by_category.setdefault(match.category, []).append(match.matched_text)

    return {
        'input_file': image_path,
        'timestamp': datetime.now().isoformat(),
        'status': job.state.value,
        'error': str(job.error) if job.error else None,
        'elapsed_ms': round(job.elapsed_ms, 2),
        'pii_matches': [m.to_dict() for m in job.matches],
        'pii_summary': by_category,
        'extracted_text': job.extracted_text
    }


def save_results(image_path: str, job: Job, output_dir: str) -> str:
    """Write masked image and JSON report; returns the output base path"""
    os.makedirs(output_dir, exist_ok=True)
    base_name = os.path.splitext(os.path.basename(image_path))[0]

    if job.masked_image is not None:
        with open(os.path.join(output_dir, f"{base_name}_masked.png"), 'wb') as f:
            f.write(job.masked_image)

    with open(os.path.join(output_dir, f"{base_name}_report.json"), 'w', encoding='utf-8') as f:
        json.dump(build_report(image_path, job), f, indent=2)

    return os.path.join(output_dir, base_name)


def visualize_and_save(image_bytes: bytes, job: Job, output_path: str):
    """Side-by-side original / masked figure"""
    original = cv2.imdecode(np.frombuffer(image_bytes, np.uint8), cv2.IMREAD_COLOR)
    masked = cv2.imdecode(np.frombuffer(job.masked_image, np.uint8), cv2.IMREAD_COLOR)

    fig, axes = plt.subplots(1, 2, figsize=(16, 8))

    axes[0].imshow(cv2.cvtColor(original, cv2.COLOR_BGR2RGB))
    axes[0].set_title('Original Image', fontsize=14)
    axes[0].axis('off')

    axes[1].imshow(cv2.cvtColor(masked, cv2.COLOR_BGR2RGB))
    axes[1].set_title(f'Masked Image ({len(job.matches)} PII)', fontsize=14)
    axes[1].axis('off')

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def print_pii_report(image_path: str, job: Job):
    print("\n" + "=" * 60)
    print("PII DETECTION REPORT")
    print("=" * 60)
    print(f"File: {image_path}")
    print("-" * 60)

    if job.state is JobState.FAILED:
        print(f"\n  FAILED: {job.error}")
    elif not job.matches:
        print("\n  No PII detected in this image.")
    else:
        print(f"\nDetected PII ({len(job.matches)}):")
        for match in job.matches:
            print(f"  [{match.category}] {match.matched_text}  ({match.confidence:.0f}%)")

    print("\n" + "=" * 60)

# ============================================
# MAIN EXECUTION
# ============================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Detect and mask PII in document images")
    parser.add_argument("images", nargs="+", help="Image files to process")
    parser.add_argument("--output-dir", default="results", help="Directory for masked images and reports")
    parser.add_argument("--engine", choices=OCR_ENGINES, help="OCR engine (default: tesseract)")
    parser.add_argument("--language", help="OCR language code (default: eng)")
    parser.add_argument("--color-coded", action="store_true", help="Mask with per-category colors")
    parser.add_argument("--opacity", type=float, help="Mask opacity between 0 and 1")
    parser.add_argument("--cross-word", action="store_true",
                        help="Let multi-word matches (names) use the box of one of their words")
    parser.add_argument("--visualize", action="store_true", help="Save a side-by-side comparison figure")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


async def process_images(orchestrator: PipelineOrchestrator, args: argparse.Namespace) -> int:
    failures = 0

    for image_path in args.images:
        if not os.path.exists(image_path):
            logger.error("MISSING: %s", image_path)
            failures += 1
            continue

        with open(image_path, 'rb') as f:
            image_bytes = f.read()

        try:
            job = await orchestrator.submit(image_bytes, guess_mime_type(image_path))
        except InputRejected as exc:
            logger.error("Skipping %s: %s", image_path, exc)
            failures += 1
            continue

        print_pii_report(image_path, job)
        base_path = save_results(image_path, job, args.output_dir)
        print(f"Results saved to: {base_path}_*")

        if job.state is JobState.FAILED:
            failures += 1
        elif args.visualize:
            visualize_and_save(image_bytes, job, f"{base_path}_visualization.png")

    return failures


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    overrides = {}
    if args.engine:
        overrides['ocr_engine'] = args.engine
    if args.language:
        overrides['language'] = args.language
    if args.color_coded:
        overrides['color_coded_masks'] = True
    if args.opacity is not None:
        overrides['mask_opacity'] = args.opacity
    if args.cross_word:
        overrides['allow_cross_word_correlation'] = True

    config = ShieldConfig.from_env(**overrides)
    orchestrator = PipelineOrchestrator(build_ocr_engine(config), config)

    failures = asyncio.run(process_images(orchestrator, args))

    print(f"\n{'=' * 60}")
    print(f"Processed {len(args.images)} image(s), {failures} failed")
    print(f"All results saved to: {args.output_dir}/")
    print(f"{'=' * 60}")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
