"""Hero image selection: one canonical image per provider."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from provider_images.models import REVIEW_ADMIN_OVERRIDDEN, TYPE_PHOTO, ImageRecord

T = TypeVar("T")

# Quality the vision pass assigns to logos and poor photos.
VISION_LOW_QUALITY = 0.1


def _best(candidates: Iterable[T], quality: Callable[[T], float]) -> Optional[T]:
    """Highest quality candidate; ties go to the first seen."""
    best: Optional[T] = None
    for candidate in candidates:
        if best is None or quality(candidate) > quality(best):
            best = candidate
    return best


def select_hero(records: Sequence[ImageRecord]) -> Optional[ImageRecord]:
    """
    Flag the hero among one provider's freshly classified records.

    Accessible photos win over everything else; within the pool the highest
    quality_score wins. With no accessible record, nothing is selected.
    """
    accessible = [r for r in records if r.is_accessible]
    photos = [r for r in accessible if r.image_type == TYPE_PHOTO]
    hero = _best(photos or accessible, lambda r: r.quality_score)

    for record in records:
        record.is_hero = record is hero
    return hero


def is_good_photo(row: Dict[str, Any]) -> bool:
    if row.get("image_type") != TYPE_PHOTO:
        return False
    if row.get("review_status") == REVIEW_ADMIN_OVERRIDDEN:
        return True
    return float(row.get("quality_score") or 0) > VISION_LOW_QUALITY


def select_stored_hero(rows: List[Dict[str, Any]]) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Pick the hero among a provider's stored, accessible metadata rows.

    Returns (row, denormalize). The best good photo wins and is denormalized
    onto the provider. Without one, the best row of any kind still carries the
    is_hero flag but the provider's hero_image_url must be cleared, so the
    listing falls back to a placeholder instead of a logo or a poor photo.
    """
    good = [r for r in rows if is_good_photo(r)]
    if good:
        return _best(good, _stored_quality), True

    photos = [r for r in rows if r.get("image_type") == TYPE_PHOTO]
    return _best(photos or rows, _stored_quality), False


def _stored_quality(row: Dict[str, Any]) -> float:
    return float(row.get("quality_score") or 0)
