"""Heuristic logo/photo classification and quality scoring."""

from __future__ import annotations

import re

from provider_images.models import (
    SOURCE_GALLERY,
    SOURCE_LOGO,
    TYPE_LOGO,
    TYPE_PHOTO,
    TYPE_UNKNOWN,
    Classification,
    ProbeResult,
)

# ─── Heuristic patterns ───────────────────────────────────────────────────────

LOGO_URL_RE = re.compile(
    r"("
    r"/logo|/brand|/icon|logo\.|favicon|_logo|-logo"
    r")",
    re.IGNORECASE,
)

SMALL_SIDE_PX   = 300
LARGE_SIDE_PX   = 600
SQUARE_MIN      = 0.7
SQUARE_MAX      = 1.4
LANDSCAPE_MIN   = 1.2

# ─── Quality weights ──────────────────────────────────────────────────────────

RESOLUTION_WEIGHT = 0.30
ASPECT_WEIGHT     = 0.20
TYPE_WEIGHT       = 0.40
ACCESS_WEIGHT     = 0.10

FULL_RESOLUTION_PX = 1920
IDEAL_ASPECT       = 1.6  # 16:10 listing card

TYPE_SCORES = {
    TYPE_PHOTO: TYPE_WEIGHT,
    TYPE_UNKNOWN: 0.15,
    TYPE_LOGO: 0.04,
}


def classify_image(url: str, source_field: str, probe: ProbeResult) -> Classification:
    """Classify one image as logo, photo or unknown. First matching rule wins."""
    if source_field == SOURCE_LOGO:
        return Classification(TYPE_LOGO, "source_field", 0.9)

    if LOGO_URL_RE.search(url):
        return Classification(TYPE_LOGO, "url_pattern", 0.8)

    if probe.has_dimensions:
        w, h = probe.width, probe.height
        aspect = w / h

        if w < SMALL_SIDE_PX and h < SMALL_SIDE_PX and SQUARE_MIN <= aspect <= SQUARE_MAX:
            return Classification(TYPE_LOGO, "dimensions_small_square", 0.7)

        if w > LARGE_SIDE_PX and aspect > LANDSCAPE_MIN:
            return Classification(TYPE_PHOTO, "dimensions_large_landscape", 0.8)

        if w > LARGE_SIDE_PX or h > LARGE_SIDE_PX:
            return Classification(TYPE_PHOTO, "dimensions_large", 0.65)

    elif probe.is_accessible and source_field == SOURCE_GALLERY:
        return Classification(TYPE_PHOTO, "source_field_default", 0.5)

    return Classification(TYPE_UNKNOWN, "no_signal", 0.3)


def score_quality(probe: ProbeResult, classification: Classification) -> float:
    """
    Score an image for hero selection, 0.0 - 1.0.

    Components:
      - Resolution (30%): longest side, capped at 1920px
      - Aspect fit (20%): distance from 16:10
      - Type (40%): photo full, unknown 0.15, logo 0.04
      - Accessibility (10%)
    """
    score = 0.0

    if probe.has_dimensions:
        longest = max(probe.width, probe.height)
        score += min(longest / FULL_RESOLUTION_PX, 1.0) * RESOLUTION_WEIGHT

        aspect = probe.width / probe.height
        score += max(0.0, 1 - abs(aspect - IDEAL_ASPECT) / 2) * ASPECT_WEIGHT

    score += TYPE_SCORES.get(classification.image_type, TYPE_SCORES[TYPE_UNKNOWN])

    if probe.is_accessible:
        score += ACCESS_WEIGHT

    return round(score, 3)
