# src/dossierforge/storage/build_state_store.py - v1
"""Single-record persistence of the last successful BuildState."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from dossierforge.storage import layout
from dossierforge.storage.models import BuildState

logger = logging.getLogger(__name__)


class BuildStateStore:
    def __init__(self, cache_root: Path | str) -> None:
        self._path = layout.build_state_path(Path(cache_root))

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> BuildState | None:
        """Return the stored BuildState, or None (first build or unreadable)."""
        if not self._path.exists():
            return None
        try:
            return BuildState(**json.loads(self._path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("Build state unreadable, treating as first build: %s", e)
            return None

    async def save(self, state: BuildState) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(f".{os.getpid()}.tmp")
            tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            logger.warning("Build state save failed: %s", e)
            return False
        return True

    async def clear(self) -> None:
        self._path.unlink(missing_ok=True)
