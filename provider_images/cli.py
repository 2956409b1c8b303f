#!/usr/bin/env python3
"""
Classify provider images and select hero images.

Probes every logo and gallery image of every provider for accessibility,
content type, size and dimensions, classifies each image as logo / photo /
unknown, scores its quality and picks one hero per provider. Results go to
provider_image_metadata and the hero URL is denormalized onto the provider.

With --vision, low-confidence images (< 0.7) that no admin has overridden are
reclassified with Claude Vision afterwards.

Usage:
    classify-provider-images --dry-run
    classify-provider-images
    classify-provider-images --resume
    classify-provider-images --vision
    classify-provider-images --vision-only
    classify-provider-images --vision --vision-batch-size=4
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import httpx
from anthropic import AsyncAnthropic

from provider_images.checkpoint import FileCheckpointStore
from provider_images.config import (
    ANTHROPIC_API_KEY,
    CHECKPOINT_FILE,
    LOG_FILE,
    PAGE_SIZE,
    PROBE_CONCURRENCY,
    PROBE_TIMEOUT,
    VISION_BATCH_SIZE,
    VISION_MODEL,
)
from provider_images.pipeline import ProviderCountError, run_main_pass
from provider_images.pool import BoundedPool
from provider_images.stats import RunStats
from provider_images.store import MetadataStore, get_supabase_client
from provider_images.vision import VisionClassifier, run_vision_pass

logger = logging.getLogger("provider_images")

# ─── Logging ─────────────────────────────────────────────────────────────────


def setup_logging(log_file: Path) -> logging.Logger:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger("provider_images")
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return logger

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)
    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


# ─── Main ─────────────────────────────────────────────────────────────────────


async def run(args: argparse.Namespace) -> RunStats:
    vision_enabled = args.vision or args.vision_only

    if vision_enabled and not ANTHROPIC_API_KEY:
        logger.error("ANTHROPIC_API_KEY not set. Add it to .env or export it.")
        sys.exit(1)

    logger.info("Connecting to Supabase...")
    store = MetadataStore(get_supabase_client())

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(PROBE_TIMEOUT, connect=PROBE_TIMEOUT),
        limits=httpx.Limits(
            max_connections=args.concurrency,
            max_keepalive_connections=max(args.concurrency // 2, 1),
        ),
        follow_redirects=True,
    )

    stats = RunStats()
    try:
        if not args.vision_only:
            logger.info("=== DRY RUN ===" if args.dry_run else "=== LIVE CLASSIFICATION ===")
            if vision_enabled:
                logger.info(f"Vision AI: enabled (batch size {args.vision_batch_size})")
            try:
                main_stats = await run_main_pass(
                    store,
                    http_client,
                    BoundedPool(args.concurrency),
                    FileCheckpointStore(Path(args.checkpoint)),
                    page_size=args.page_size,
                    dry_run=args.dry_run,
                    resume=args.resume,
                )
            except ProviderCountError as e:
                logger.error(str(e))
                sys.exit(1)
            stats.merge(main_stats)
        else:
            logger.info(
                "=== DRY RUN (vision only) ===" if args.dry_run else "=== VISION-ONLY CLASSIFICATION ==="
            )

        if vision_enabled:
            classifier = VisionClassifier(AsyncAnthropic(api_key=ANTHROPIC_API_KEY), model=args.model)
            vision_stats = await run_vision_pass(
                store,
                http_client,
                classifier,
                batch_size=args.vision_batch_size,
                dry_run=args.dry_run,
            )
            stats.merge(vision_stats)
    finally:
        await http_client.aclose()

    logger.info("\n" + stats.summary(vision=vision_enabled))
    if args.dry_run:
        logger.info("Dry run complete. Run without --dry-run to execute.")
    return stats


# ─── CLI ─────────────────────────────────────────────────────────────────────


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="classify-provider-images",
        description="Classify provider images (logo / photo) and select hero images",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Probe, classify and score but skip all DB writes and checkpoints"
    )
    parser.add_argument(
        "--resume", action="store_true",
        help="Resume after the last checkpointed provider_id"
    )
    parser.add_argument(
        "--vision", action="store_true",
        help="Run the Claude Vision pass on low-confidence images after the main pass"
    )
    parser.add_argument(
        "--vision-only", action="store_true",
        help="Skip the main pass and run only the Vision pass"
    )
    parser.add_argument(
        "--vision-batch-size", type=_positive_int, default=VISION_BATCH_SIZE,
        help="Images per Vision API call"
    )
    parser.add_argument(
        "--page-size", type=_positive_int, default=PAGE_SIZE,
        help="Providers per page (checkpoint written after each)"
    )
    parser.add_argument(
        "--concurrency", type=_positive_int, default=PROBE_CONCURRENCY,
        help="Concurrent image probes"
    )
    parser.add_argument(
        "--model", default=VISION_MODEL,
        help="Claude model for Vision classification"
    )
    parser.add_argument(
        "--checkpoint", default=str(CHECKPOINT_FILE),
        help="Path to the checkpoint JSON file"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(LOG_FILE)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
