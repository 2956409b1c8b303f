"""
Main pass: probe, classify, score and pick a hero for every provider image.

Providers are read in provider_id order, one page at a time. A page's images
are probed through the shared pool, its records and hero URLs are written,
and only then is the checkpoint moved past the page's last provider.
"""

from __future__ import annotations

import logging
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from provider_images.checkpoint import CheckpointStore
from provider_images.classify import classify_image, score_quality
from provider_images.config import PAGE_SIZE
from provider_images.hero import select_hero
from provider_images.models import (
    TYPE_LOGO,
    TYPE_PHOTO,
    HeroUpdate,
    ImageRecord,
    ProbeResult,
    provider_image_refs,
)
from provider_images.pool import BoundedPool
from provider_images.probe import probe_image
from provider_images.stats import RunStats

logger = logging.getLogger(__name__)

Prober = Callable[[httpx.AsyncClient, str], Awaitable[ProbeResult]]
Overrides = Dict[Tuple[Any, str], bool]


class ProviderCountError(RuntimeError):
    """The provider count query failed; the run cannot start."""


async def process_page(
    providers: List[Dict[str, Any]],
    http_client: httpx.AsyncClient,
    pool: BoundedPool,
    probe: Prober = probe_image,
    overridden: Optional[Overrides] = None,
) -> Tuple[List[ImageRecord], List[HeroUpdate], RunStats]:
    """
    Probe every image of a page of providers and build their metadata records.

    Admin-overridden images (`overridden`, from MetadataStore.fetch_overridden)
    are never hero candidates, and a provider whose hero an admin picked gets
    no hero update at all.
    """
    overridden = overridden or {}
    admin_heroes = {pid for (pid, _), is_hero in overridden.items() if is_hero}
    stats = RunStats()
    per_provider = [(p, provider_image_refs(p)) for p in providers]
    refs = [ref for _, provider_refs in per_provider for ref in provider_refs]

    def on_probe_error(i: int, exc: Exception) -> ProbeResult:
        logger.warning(f"  Probe crashed for {refs[i].url}: {exc!r}")
        stats.errors += 1
        return ProbeResult(url=refs[i].url)

    probes = await pool.run([partial(probe, http_client, ref.url) for ref in refs], on_probe_error)

    records: List[ImageRecord] = []
    hero_updates: List[HeroUpdate] = []
    cursor = 0
    for provider, provider_refs in per_provider:
        provider_records: List[ImageRecord] = []
        for ref in provider_refs:
            result = probes[cursor]
            cursor += 1

            classification = classify_image(ref.url, ref.source_field, result)
            quality = score_quality(result, classification)

            stats.images_probed += 1
            stats.images_classified += 1
            if not result.is_accessible:
                stats.inaccessible += 1
            if classification.image_type == TYPE_LOGO:
                stats.logos += 1
            elif classification.image_type == TYPE_PHOTO:
                stats.photos += 1
            else:
                stats.unknown += 1

            provider_records.append(
                ImageRecord(
                    provider_id=ref.provider_id,
                    image_url=ref.url,
                    source_field=ref.source_field,
                    image_type=classification.image_type,
                    classification_method=classification.classification_method,
                    classification_confidence=classification.classification_confidence,
                    quality_score=quality,
                    width=result.width,
                    height=result.height,
                    file_size_bytes=result.file_size_bytes,
                    content_type=result.content_type,
                    is_accessible=result.is_accessible,
                )
            )

        if provider["provider_id"] in admin_heroes:
            stats.admin_heroes_kept += 1
        else:
            hero = select_hero([r for r in provider_records if r.key not in overridden])
            if hero is not None:
                hero_updates.append(HeroUpdate(hero.provider_id, hero.image_url))
                stats.heroes_selected += 1

        records.extend(provider_records)
        stats.providers_processed += 1

    return records, hero_updates, stats


def write_page(
    store: Any,
    records: List[ImageRecord],
    hero_updates: List[HeroUpdate],
    stats: RunStats,
    overridden: Overrides,
) -> None:
    store.upsert_metadata(records, stats, overridden)
    store.write_hero_urls(hero_updates, stats)


async def run_main_pass(
    store: Any,
    http_client: httpx.AsyncClient,
    pool: BoundedPool,
    checkpoints: CheckpointStore,
    page_size: int = PAGE_SIZE,
    dry_run: bool = False,
    resume: bool = False,
    probe: Prober = probe_image,
) -> RunStats:
    """
    Page through every active provider and classify its images.

    Raises ProviderCountError before any work starts if the provider count
    query fails.
    """
    stats = RunStats()
    last_id = None

    if resume:
        checkpoint = checkpoints.load()
        if checkpoint is not None:
            logger.info(
                f"  Resuming from checkpoint: {checkpoint.last_provider_id} "
                f"({checkpoint.providers_processed:,} providers done)"
            )
            last_id = checkpoint.last_provider_id
            stats.providers_processed = checkpoint.providers_processed

    try:
        total = store.count_providers()
    except Exception as e:
        raise ProviderCountError(f"Count query failed: {e}") from e
    logger.info(f"Total providers: {total:,}")
    logger.info(f"Page size: {page_size}")
    logger.info(f"Probe concurrency: {pool.concurrency}")

    start = time.monotonic()
    page = 0
    while True:
        try:
            providers = store.fetch_provider_page(last_id, page_size)
        except Exception as e:
            logger.error(f"Provider query error: {e}")
            stats.errors += 1
            break

        if not providers:
            break

        page += 1
        page_start = time.monotonic()

        try:
            overridden = store.fetch_overridden([p["provider_id"] for p in providers])
        except Exception as e:
            logger.error(f"Override lookup failed on page {page}, stopping before it: {e}")
            stats.errors += 1
            break

        records, hero_updates, page_stats = await process_page(
            providers, http_client, pool, probe, overridden
        )
        stats.merge(page_stats)

        if not dry_run:
            write_page(store, records, hero_updates, stats, overridden)

        last_id = providers[-1]["provider_id"]
        if not dry_run:
            checkpoints.save(last_id, stats.providers_processed)

        elapsed = time.monotonic() - page_start
        total_elapsed = time.monotonic() - start
        logger.info(
            f"  {'[DRY RUN] ' if dry_run else ''}Page {page}: {len(providers)} providers, "
            f"{len(records)} images | Total: {stats.providers_processed:,}/{total:,} providers | "
            f"{elapsed:.1f}s/page, {total_elapsed:.0f}s elapsed"
        )

    return stats
