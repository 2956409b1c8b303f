"""Data models for provider images."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

SOURCE_LOGO = "logo"
SOURCE_GALLERY = "gallery"

TYPE_LOGO = "logo"
TYPE_PHOTO = "photo"
TYPE_UNKNOWN = "unknown"

REVIEW_ADMIN_OVERRIDDEN = "admin_overridden"

GALLERY_DELIMITER = "|"


@dataclass(frozen=True)
class ImageReference:
    """One image URL attached to a provider, and which field it came from."""

    provider_id: Any
    url: str
    source_field: str


@dataclass
class ProbeResult:
    """What a HEAD + partial GET revealed about one URL."""

    url: str
    is_accessible: bool = False
    width: Optional[int] = None
    height: Optional[int] = None
    file_size_bytes: Optional[int] = None
    content_type: Optional[str] = None

    @property
    def has_dimensions(self) -> bool:
        return bool(self.width and self.height and self.width > 0 and self.height > 0)


@dataclass(frozen=True)
class Classification:
    image_type: str
    classification_method: str
    classification_confidence: float


@dataclass
class ImageRecord:
    """A row of the image metadata table, keyed by (provider_id, image_url)."""

    provider_id: Any
    image_url: str
    source_field: str
    image_type: str
    classification_method: str
    classification_confidence: float
    quality_score: float
    width: Optional[int] = None
    height: Optional[int] = None
    file_size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    is_accessible: bool = False
    is_hero: bool = False

    @property
    def key(self) -> tuple:
        return (self.provider_id, self.image_url)

    def to_row(self) -> Dict[str, Any]:
        # review_status is never written; new rows take the table default.
        return {
            "provider_id": self.provider_id,
            "image_url": self.image_url,
            "source_field": self.source_field,
            "image_type": self.image_type,
            "classification_method": self.classification_method,
            "classification_confidence": self.classification_confidence,
            "quality_score": self.quality_score,
            "width": self.width,
            "height": self.height,
            "file_size_bytes": self.file_size_bytes,
            "content_type": self.content_type,
            "is_accessible": self.is_accessible,
            "is_hero": self.is_hero,
        }


@dataclass(frozen=True)
class HeroUpdate:
    provider_id: Any
    hero_image_url: str


def provider_image_refs(provider: Dict[str, Any]) -> List[ImageReference]:
    """
    Build the image references for one provider row.

    The logo comes first; gallery URLs are split on '|'. A gallery entry equal
    to the logo, or repeated within the gallery, is emitted once.
    """
    provider_id = provider.get("provider_id")
    refs: List[ImageReference] = []
    seen: set = set()

    logo = (provider.get("provider_logo") or "").strip()
    if logo:
        refs.append(ImageReference(provider_id, logo, SOURCE_LOGO))
        seen.add(logo)

    gallery = provider.get("provider_images") or ""
    for part in gallery.split(GALLERY_DELIMITER):
        url = part.strip()
        if not url or url in seen:
            continue
        seen.add(url)
        refs.append(ImageReference(provider_id, url, SOURCE_GALLERY))

    return refs
