"""Durable "last fully processed provider" marker for resumable runs."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    last_provider_id: Any
    providers_processed: int
    timestamp: str


class CheckpointStore(Protocol):
    def load(self) -> Optional[Checkpoint]: ...

    def save(self, last_provider_id: Any, providers_processed: int) -> Checkpoint: ...


def _new_checkpoint(last_provider_id: Any, providers_processed: int) -> Checkpoint:
    return Checkpoint(
        last_provider_id=last_provider_id,
        providers_processed=providers_processed,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


class FileCheckpointStore:
    """Checkpoint kept as a JSON file, replaced atomically on every save."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Checkpoint]:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
            return Checkpoint(
                last_provider_id=data["last_provider_id"],
                providers_processed=int(data.get("providers_processed", 0)),
                timestamp=str(data.get("timestamp", "")),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable checkpoint {self.path}: {e}")
            return None

    def save(self, last_provider_id: Any, providers_processed: int) -> Checkpoint:
        checkpoint = _new_checkpoint(last_provider_id, providers_processed)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(asdict(checkpoint), f, indent=2)
        tmp.replace(self.path)
        return checkpoint


class MemoryCheckpointStore:
    """In-process checkpoint, for tests and one-off runs."""

    def __init__(self, checkpoint: Optional[Checkpoint] = None) -> None:
        self.checkpoint = checkpoint
        self.saves = 0

    def load(self) -> Optional[Checkpoint]:
        return self.checkpoint

    def save(self, last_provider_id: Any, providers_processed: int) -> Checkpoint:
        self.checkpoint = _new_checkpoint(last_provider_id, providers_processed)
        self.saves += 1
        return self.checkpoint
