"""
Vision pass: reclassify low-confidence images with Claude.

Pages through metadata rows below the confidence threshold, downloads each
image (capped at 512KB, never stored), sends small batches to Claude, writes
the verdicts back and re-picks the hero for every provider touched.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import anthropic
import httpx
from tqdm import tqdm

from provider_images.config import (
    USER_AGENT,
    VISION_BATCH_SIZE,
    VISION_IMAGE_MAX_BYTES,
    VISION_IMAGE_TIMEOUT,
    VISION_MAX_TOKENS,
    VISION_MODEL,
    VISION_PAGE_SIZE,
)
from provider_images.hero import VISION_LOW_QUALITY
from provider_images.models import TYPE_LOGO, TYPE_PHOTO
from provider_images.stats import RunStats

logger = logging.getLogger(__name__)

VISION_TYPES = ("logo", "photo_good", "photo_bad")
BAD_PHOTO_PENALTY = 0.3

ACCEPTED_MEDIA_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")

# (image_url, bytes, media_type)
ImageData = Tuple[str, bytes, str]


class VisionError(Exception):
    """The vision service could not classify a batch."""


class VisionResponseError(VisionError):
    """The vision service answered, but not with the array we asked for."""


@dataclass(frozen=True)
class VisionVerdict:
    type: str
    confidence: float
    description: str = ""


# ─── Response parsing ─────────────────────────────────────────────────────────


def extract_json_array(text: str) -> str:
    """Return the first balanced [...] span in `text`, ignoring brackets inside strings."""
    start = text.find("[")
    if start < 0:
        raise VisionResponseError("no JSON array in response")

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    raise VisionResponseError("unbalanced JSON array in response")


def parse_vision_response(text: str, expected: int) -> List[VisionVerdict]:
    """
    Parse the model's reply into exactly `expected` verdicts.

    The array may be wrapped in prose or markdown fences. Anything else that
    is off (bad JSON, wrong length, unknown type, non-numeric confidence)
    raises VisionResponseError and the caller drops the whole batch.
    """
    try:
        items = json.loads(extract_json_array(text))
    except json.JSONDecodeError as e:
        raise VisionResponseError(f"invalid JSON: {e}") from e

    if not isinstance(items, list) or len(items) != expected:
        got = len(items) if isinstance(items, list) else type(items).__name__
        raise VisionResponseError(f"expected {expected} verdicts, got {got}")

    verdicts: List[VisionVerdict] = []
    for i, item in enumerate(items, 1):
        if not isinstance(item, dict):
            raise VisionResponseError(f"verdict {i} is not an object")
        kind = item.get("type")
        if kind not in VISION_TYPES:
            raise VisionResponseError(f"verdict {i} has unknown type {kind!r}")
        confidence = item.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise VisionResponseError(f"verdict {i} has non-numeric confidence {confidence!r}")
        verdicts.append(
            VisionVerdict(
                type=kind,
                confidence=min(max(float(confidence), 0.0), 1.0),
                description=str(item.get("description") or ""),
            )
        )
    return verdicts


def map_verdict(verdict: VisionVerdict) -> Tuple[str, float, float]:
    """Vision verdict -> (image_type, confidence, quality_score)."""
    if verdict.type == "logo":
        image_type, confidence, quality = TYPE_LOGO, verdict.confidence, VISION_LOW_QUALITY
    elif verdict.type == "photo_good":
        image_type, confidence = TYPE_PHOTO, verdict.confidence
        quality = 0.6 + confidence * 0.3
    else:
        # photo_bad: still a photo, but penalised
        image_type, confidence, quality = (
            TYPE_PHOTO,
            verdict.confidence * BAD_PHOTO_PENALTY,
            VISION_LOW_QUALITY,
        )
    return image_type, round(confidence, 3), round(quality, 3)


# ─── Image download ───────────────────────────────────────────────────────────


def _normalise_media_type(content_type: str) -> str:
    ct = content_type.split(";")[0].strip().lower()
    if ct == "image/jpg":
        ct = "image/jpeg"
    if ct not in ACCEPTED_MEDIA_TYPES:
        ct = "image/jpeg"
    return ct


async def download_image(client: httpx.AsyncClient, url: str) -> Optional[Tuple[bytes, str]]:
    """
    Download up to 512KB of an image into memory.
    Returns (bytes, media_type) or None on failure.
    """
    buf = bytearray()
    try:
        async with client.stream(
            "GET", url, timeout=VISION_IMAGE_TIMEOUT, headers={"User-Agent": USER_AGENT}
        ) as resp:
            if not 200 <= resp.status_code < 400:
                logger.debug(f"Download {resp.status_code} for {url}")
                return None
            media_type = _normalise_media_type(resp.headers.get("content-type", ""))
            async for chunk in resp.aiter_bytes():
                buf.extend(chunk)
                if len(buf) >= VISION_IMAGE_MAX_BYTES:
                    break
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.debug(f"Download failed for {url}: {e!r}")
        return None

    if not buf:
        return None
    return bytes(buf[:VISION_IMAGE_MAX_BYTES]), media_type


# ─── Claude Vision ────────────────────────────────────────────────────────────

_VISION_INSTRUCTION = """\
Classify each of the {count} images above for a senior care provider directory.

For each image, respond with a JSON object:
{{ "type": "logo" | "photo_good" | "photo_bad", "confidence": 0.0-1.0, "description": "brief description" }}

- "logo" = company logo, icon, brand mark, or text-only branding image
- "photo_good" = real photograph of a facility, room, staff, residents, or exterior, clear and good quality
- "photo_bad" = real photograph but blurry, watermarked, very small, low quality, or mostly text overlay

Respond with a JSON array of {count} objects, one per image, in the same order. Only output the JSON array, no other text."""


class VisionClassifier:
    """Sends batches of images to Claude and returns one verdict per image."""

    def __init__(
        self,
        client: Any,  # anthropic.AsyncAnthropic
        model: str = VISION_MODEL,
        max_tokens: int = VISION_MAX_TOKENS,
    ) -> None:
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @staticmethod
    def build_content(images: List[ImageData]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = []
        for i, (url, data, media_type) in enumerate(images, 1):
            content.append({"type": "text", "text": f"Image {i} (URL: {url}):"})
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": media_type,
                        "data": base64.standard_b64encode(data).decode("utf-8"),
                    },
                }
            )
        content.append({"type": "text", "text": _VISION_INSTRUCTION.format(count=len(images))})
        return content

    async def classify(self, images: List[ImageData]) -> List[VisionVerdict]:
        if not images:
            return []
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": self.build_content(images)}],
            )
        except anthropic.APIError as e:
            raise VisionError(f"Vision API error: {e}") from e

        text = "".join(getattr(block, "text", "") for block in response.content)
        return parse_vision_response(text, expected=len(images))


# ─── Vision pass ──────────────────────────────────────────────────────────────


async def _process_batch(
    batch: List[Dict[str, Any]],
    store: Any,
    http_client: httpx.AsyncClient,
    classifier: VisionClassifier,
    stats: RunStats,
    dry_run: bool,
) -> int:
    """
    Classify and write back one sub-batch.
    Returns how many of its rows left the low-confidence result set.
    """
    downloads = await asyncio.gather(
        *[download_image(http_client, row["image_url"]) for row in batch]
    )

    rows: List[Dict[str, Any]] = []
    images: List[ImageData] = []
    for row, dl in zip(batch, downloads):
        if dl is None:
            stats.vision_download_failures += 1
            logger.debug(f"  Skip (no download): {row['image_url']}")
            continue
        data, media_type = dl
        rows.append(row)
        images.append((row["image_url"], data, media_type))

    if not images:
        return 0

    try:
        verdicts = await classifier.classify(images)
    except VisionResponseError as e:
        logger.warning(f"  Discarding vision batch of {len(images)}: {e}")
        stats.errors += 1
        return 0
    except VisionError as e:
        logger.error(f"  {e}")
        stats.errors += 1
        return 0

    stats.vision_batches += 1

    left = 0
    affected: List[Any] = []
    for row, verdict in zip(rows, verdicts):
        image_type, confidence, quality = map_verdict(verdict)
        stats.vision_classified += 1

        if dry_run:
            logger.info(
                f"  [DRY RUN] {row['image_url']}: {verdict.type} ({verdict.confidence:.2f}) "
                f"-> {image_type} conf={confidence} quality={quality} | {verdict.description}"
            )
            continue

        try:
            updated = store.apply_vision_result(
                row["provider_id"], row["image_url"], image_type, confidence, quality
            )
        except Exception as e:
            logger.error(f"  Vision update failed for {row['image_url']}: {e}")
            stats.errors += 1
            continue

        left += 1
        if not updated:
            stats.vision_skipped_overridden += 1
            continue
        if row["provider_id"] not in affected:
            affected.append(row["provider_id"])

    for provider_id in affected:
        try:
            store.recompute_hero(provider_id)
        except Exception as e:
            logger.error(f"  Hero recalculation failed for {provider_id}: {e}")
            stats.errors += 1

    return left


async def run_vision_pass(
    store: Any,
    http_client: httpx.AsyncClient,
    classifier: VisionClassifier,
    batch_size: int = VISION_BATCH_SIZE,
    dry_run: bool = False,
    page_size: int = VISION_PAGE_SIZE,
) -> RunStats:
    """Reclassify every accessible, non-overridden row below the confidence threshold."""
    stats = RunStats()

    logger.info("=== VISION AI PASS ===" + (" [DRY RUN]" if dry_run else ""))
    logger.info(f"  Batch size: {batch_size} images per API call")
    logger.info(f"  Model: {classifier.model}")

    offset = 0
    with tqdm(desc="Vision pass", unit="img") as pbar:
        while True:
            try:
                rows = store.fetch_low_confidence(offset, page_size)
            except Exception as e:
                logger.error(f"  Vision query error: {e}")
                stats.errors += 1
                break

            if not rows:
                break

            left = 0
            for start in range(0, len(rows), batch_size):
                batch = rows[start : start + batch_size]
                left += await _process_batch(batch, store, http_client, classifier, stats, dry_run)
                pbar.update(len(batch))

            if len(rows) < page_size:
                break
            # Updated rows drop out of the result set; the rest are still ahead of us.
            offset += len(rows) - left

    logger.info(f"  Vision pass complete: {stats.vision_classified:,} images reclassified")
    return stats
