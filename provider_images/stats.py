"""Per-invocation run statistics."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import List


@dataclass
class RunStats:
    providers_processed: int = 0
    images_probed: int = 0
    images_classified: int = 0
    logos: int = 0
    photos: int = 0
    unknown: int = 0
    inaccessible: int = 0
    heroes_selected: int = 0
    errors: int = 0
    skipped_overridden: int = 0
    admin_heroes_kept: int = 0
    vision_batches: int = 0
    vision_classified: int = 0
    vision_skipped_overridden: int = 0
    vision_download_failures: int = 0

    def merge(self, other: "RunStats") -> "RunStats":
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    def summary(self, vision: bool = False) -> str:
        lines: List[str] = [
            "=" * 60,
            "Image classification complete",
            "=" * 60,
            f"  Providers processed     : {self.providers_processed:,}",
            f"  Images probed           : {self.images_probed:,}",
            f"  Images classified       : {self.images_classified:,}",
            f"    Logos                 : {self.logos:,}",
            f"    Photos                : {self.photos:,}",
            f"    Unknown               : {self.unknown:,}",
            f"    Inaccessible          : {self.inaccessible:,}",
            f"  Heroes selected         : {self.heroes_selected:,}",
            f"  Skipped (overridden)    : {self.skipped_overridden:,}",
            f"  Admin heroes kept       : {self.admin_heroes_kept:,}",
        ]
        if vision:
            lines += [
                "  Vision AI:",
                f"    Batches sent          : {self.vision_batches:,}",
                f"    Images classified     : {self.vision_classified:,}",
                f"    Download failures     : {self.vision_download_failures:,}",
                f"    Skipped (overridden)  : {self.vision_skipped_overridden:,}",
            ]
        lines += [
            f"  Errors                  : {self.errors:,}",
            "=" * 60,
        ]
        return "\n".join(lines)
