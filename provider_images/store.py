"""Supabase gateway for providers and the image metadata table."""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from supabase import Client, create_client

from provider_images.config import (
    CONFIDENCE_THRESHOLD,
    METADATA_TABLE,
    OVERRIDE_CHUNK_SIZE,
    PROVIDERS_TABLE,
    SUPABASE_KEY,
    SUPABASE_URL,
    WRITE_CHUNK_SIZE,
)
from provider_images.hero import select_stored_hero
from provider_images.models import REVIEW_ADMIN_OVERRIDDEN, HeroUpdate, ImageRecord
from provider_images.stats import RunStats

logger = logging.getLogger(__name__)

ACTIVE_PROVIDERS = "deleted.is.null,deleted.eq.false"
NOT_OVERRIDDEN = f"review_status.is.null,review_status.neq.{REVIEW_ADMIN_OVERRIDDEN}"
VISION_METHOD = "vision_ai"


def get_supabase_client() -> Client:
    """Create Supabase client using service role key."""
    if not SUPABASE_URL or not SUPABASE_KEY:
        logger.error("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        sys.exit(1)
    return create_client(SUPABASE_URL, SUPABASE_KEY)


class MetadataStore:
    """
    Reads providers and reads/writes provider_image_metadata.

    Rows with review_status = 'admin_overridden' are never written: the main
    pass filters them out before upserting and every vision-pass update
    re-checks the status in the same statement.
    """

    def __init__(
        self,
        client: Client,
        providers_table: str = PROVIDERS_TABLE,
        metadata_table: str = METADATA_TABLE,
        chunk_size: int = WRITE_CHUNK_SIZE,
    ) -> None:
        self.client = client
        self.providers_table = providers_table
        self.metadata_table = metadata_table
        self.chunk_size = chunk_size

    def _providers(self):
        return self.client.table(self.providers_table)

    def _metadata(self):
        return self.client.table(self.metadata_table)

    # ── Providers ────────────────────────────────────────────────────────────

    def count_providers(self) -> int:
        resp = (
            self._providers()
            .select("provider_id", count="exact", head=True)
            .or_(ACTIVE_PROVIDERS)
            .execute()
        )
        return resp.count or 0

    def fetch_provider_page(self, after_id: Any, limit: int) -> List[Dict[str, Any]]:
        """Next page of active providers in provider_id order, strictly after `after_id`."""
        query = (
            self._providers()
            .select("provider_id,provider_logo,provider_images")
            .or_(ACTIVE_PROVIDERS)
            .order("provider_id")
            .limit(limit)
        )
        if after_id is not None:
            query = query.gt("provider_id", after_id)
        return query.execute().data or []

    # ── Main pass writes ─────────────────────────────────────────────────────

    def fetch_overridden(self, provider_ids: Sequence[Any]) -> Dict[Tuple[Any, str], bool]:
        """Map (provider_id, image_url) -> is_hero for every admin-overridden row."""
        overridden: Dict[Tuple[Any, str], bool] = {}
        for i in range(0, len(provider_ids), OVERRIDE_CHUNK_SIZE):
            batch = list(provider_ids[i : i + OVERRIDE_CHUNK_SIZE])
            resp = (
                self._metadata()
                .select("provider_id,image_url,is_hero")
                .in_("provider_id", batch)
                .eq("review_status", REVIEW_ADMIN_OVERRIDDEN)
                .execute()
            )
            for row in resp.data or []:
                overridden[(row["provider_id"], row["image_url"])] = bool(row.get("is_hero"))
        return overridden

    def upsert_metadata(
        self,
        records: List[ImageRecord],
        stats: RunStats,
        overridden: Optional[Dict[Tuple[Any, str], bool]] = None,
    ) -> None:
        """
        Upsert records in chunks, leaving admin-overridden rows alone.

        `overridden` is the fetch_overridden() map for these providers; it is
        looked up here when not given. Providers whose hero an admin picked
        never get a second hero flag.
        """
        if not records:
            return

        if overridden is None:
            overridden = self.fetch_overridden(list(dict.fromkeys(r.provider_id for r in records)))
        admin_heroes = {pid for (pid, _), is_hero in overridden.items() if is_hero}

        rows: List[Dict[str, Any]] = []
        for record in records:
            if record.key in overridden:
                stats.skipped_overridden += 1
                continue
            if record.provider_id in admin_heroes:
                record.is_hero = False
            rows.append(record.to_row())

        for i in range(0, len(rows), self.chunk_size):
            batch = rows[i : i + self.chunk_size]
            try:
                self._metadata().upsert(batch, on_conflict="provider_id,image_url").execute()
            except Exception as e:
                logger.error(
                    f"  Metadata upsert failed (chunk {i // self.chunk_size + 1}, "
                    f"{len(batch)} rows, providers {batch[0]['provider_id']}..{batch[-1]['provider_id']}): {e}"
                )
                stats.errors += 1

    def write_hero_urls(self, updates: Iterable[HeroUpdate], stats: RunStats) -> None:
        failed = 0
        for update in updates:
            try:
                self._providers().update(
                    {"hero_image_url": update.hero_image_url}
                ).eq("provider_id", update.provider_id).execute()
            except Exception as e:
                logger.error(f"  hero_image_url update failed for {update.provider_id}: {e}")
                failed += 1
        if failed:
            logger.error(f"  {failed} hero_image_url updates failed")
            stats.errors += failed

    # ── Vision pass ──────────────────────────────────────────────────────────

    def fetch_low_confidence(self, offset: int, limit: int) -> List[Dict[str, Any]]:
        """Accessible, non-overridden rows not yet seen by the vision pass, least confident first."""
        resp = (
            self._metadata()
            .select("provider_id,image_url,image_type,classification_confidence")
            .lt("classification_confidence", CONFIDENCE_THRESHOLD)
            .eq("is_accessible", True)
            .or_(NOT_OVERRIDDEN)
            .neq("classification_method", VISION_METHOD)
            .order("classification_confidence")
            .range(offset, offset + limit - 1)
            .execute()
        )
        return resp.data or []

    def apply_vision_result(
        self,
        provider_id: Any,
        image_url: str,
        image_type: str,
        confidence: float,
        quality_score: float,
    ) -> bool:
        """Write a vision classification. False if the row is now admin-overridden."""
        resp = (
            self._metadata()
            .update(
                {
                    "image_type": image_type,
                    "classification_method": VISION_METHOD,
                    "classification_confidence": confidence,
                    "quality_score": quality_score,
                }
            )
            .eq("provider_id", provider_id)
            .eq("image_url", image_url)
            .or_(NOT_OVERRIDDEN)
            .execute()
        )
        return bool(resp.data)

    def recompute_hero(self, provider_id: Any) -> Optional[Dict[str, Any]]:
        """
        Re-pick a provider's hero from its stored rows.

        Leaves the provider untouched when it has no accessible image or when
        an admin picked the hero. Otherwise moves the is_hero flag and sets
        hero_image_url to the winner if it is a good photo, or clears it.
        """
        rows = (
            self._metadata()
            .select("image_url,image_type,quality_score,is_accessible,review_status,is_hero")
            .eq("provider_id", provider_id)
            .order("quality_score", desc=True)
            .execute()
        ).data or []

        if any(r.get("review_status") == REVIEW_ADMIN_OVERRIDDEN and r.get("is_hero") for r in rows):
            logger.debug(f"  {provider_id}: hero chosen by admin, leaving as is")
            return None

        accessible = [r for r in rows if r.get("is_accessible")]
        if not accessible:
            return None

        hero, denormalize = select_stored_hero(accessible)

        self._metadata().update({"is_hero": False}).eq("provider_id", provider_id).or_(
            NOT_OVERRIDDEN
        ).execute()
        self._metadata().update({"is_hero": True}).eq("provider_id", provider_id).eq(
            "image_url", hero["image_url"]
        ).or_(NOT_OVERRIDDEN).execute()

        hero_url = hero["image_url"] if denormalize else None
        self._providers().update({"hero_image_url": hero_url}).eq("provider_id", provider_id).execute()
        return hero
