# src/dossierforge/storage/checkpoint_store.py - v1
"""Checkpoint persistence, one JSON file per run_id.

Checkpoint I/O never fails a run: save reports False and load reports
None when the filesystem or the record itself is unusable.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from dossierforge.storage import layout
from dossierforge.storage.models import Checkpoint

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Save/load/delete checkpoints under {cache_root}/checkpoints."""

    def __init__(self, cache_root: Path | str) -> None:
        self._cache_root = Path(cache_root).expanduser()

    async def save(self, checkpoint: Checkpoint) -> bool:
        path = layout.checkpoint_path(self._cache_root, checkpoint.run_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(f".{os.getpid()}.tmp")
            tmp.write_text(checkpoint.model_dump_json(), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            logger.warning("Checkpoint save failed for run %s: %s", checkpoint.run_id, e)
            return False
        logger.debug(
            "Checkpoint saved for run %s (%s, %d steps done)",
            checkpoint.run_id, checkpoint.reason, len(checkpoint.state.done_ids()),
        )
        return True

    async def load(self, run_id: str) -> Checkpoint | None:
        path = layout.checkpoint_path(self._cache_root, run_id)
        if not path.exists():
            return None
        try:
            return Checkpoint(**json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("Checkpoint for run %s is unreadable: %s", run_id, e)
            return None

    async def delete(self, run_id: str) -> None:
        path = layout.checkpoint_path(self._cache_root, run_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Checkpoint delete failed for run %s: %s", run_id, e)

    async def exists(self, run_id: str) -> bool:
        return layout.checkpoint_path(self._cache_root, run_id).exists()

    async def list_runs(self) -> list[str]:
        directory = layout.checkpoints_dir(self._cache_root)
        if not directory.is_dir():
            return []
        return sorted(p.stem for p in directory.glob("*.json"))
