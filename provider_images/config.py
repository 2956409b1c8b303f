"""Project-wide configuration for the provider image classifier."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(os.environ.get("PROVIDER_IMAGES_ROOT", Path.cwd()))

load_dotenv(PROJECT_ROOT / ".env")

# ─── Paths ────────────────────────────────────────────────────────────────────

DATA_DIR        = PROJECT_ROOT / "data"
CHECKPOINT_FILE = DATA_DIR / "classify_checkpoint.json"
LOG_FILE        = DATA_DIR / "image_classification.log"

# ─── Credentials ──────────────────────────────────────────────────────────────

SUPABASE_URL      = os.environ.get("SUPABASE_URL", "") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL", "")
SUPABASE_KEY      = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")

# ─── Tables ───────────────────────────────────────────────────────────────────

PROVIDERS_TABLE = os.environ.get("PROVIDERS_TABLE", "providers")
METADATA_TABLE  = os.environ.get("IMAGE_METADATA_TABLE", "provider_image_metadata")

# ─── Tuning constants ─────────────────────────────────────────────────────────

PAGE_SIZE               = 500     # providers per page (checkpoint written after each)
WRITE_CHUNK_SIZE        = 500     # metadata rows per upsert statement
OVERRIDE_CHUNK_SIZE     = 100     # provider ids per override lookup
PROBE_CONCURRENCY       = 20
PROBE_TIMEOUT           = 8       # seconds, per HEAD / range GET
PROBE_RANGE_BYTES       = 16 * 1024
VISION_MODEL            = "claude-haiku-4-5-20251001"
VISION_PAGE_SIZE        = 100     # metadata rows fetched per vision page
VISION_BATCH_SIZE       = 5       # images per Vision API call
VISION_MAX_TOKENS       = 1024
VISION_IMAGE_TIMEOUT    = 15      # seconds to download one image
VISION_IMAGE_MAX_BYTES  = 512 * 1024
CONFIDENCE_THRESHOLD    = 0.7     # rows below this go to the vision pass

USER_AGENT = "Mozilla/5.0 (compatible; ProviderImageBot/1.0)"
