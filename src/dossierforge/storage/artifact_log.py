# src/dossierforge/storage/artifact_log.py - v1
"""Externally observable log of step results.

Each completed step writes artifacts/{run_id}/{step_id}/result.json and
refreshes the run's index.json (name, path, hash, timestamp, size).
Write failures are logged and swallowed; the log is informational.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError

from dossierforge.cache.fingerprint import content_hash
from dossierforge.storage import layout
from dossierforge.storage.base_output_writer import BaseOutputWriter
from dossierforge.storage.models import ArtifactEntry, ArtifactIndex

logger = logging.getLogger(__name__)


class ArtifactLog:
    """Per-run artifact log written through an output writer."""

    def __init__(self, writer: BaseOutputWriter, run_id: str) -> None:
        self._writer = writer
        self._run_id = run_id
        self._index: ArtifactIndex | None = None
        self._lock = asyncio.Lock()

    @property
    def run_id(self) -> str:
        return self._run_id

    async def record(self, step_id: str, name: str, data: Any) -> ArtifactEntry | None:
        """Write one step result and update the index."""
        path = layout.step_result_path(self._run_id, step_id)
        body = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        entry = ArtifactEntry(
            name=name,
            path=path,
            hash=content_hash(data),
            size=len(body.encode("utf-8")),
            step=step_id,
        )
        async with self._lock:
            try:
                await self._writer.write(path, body)
                index = await self._load_index()
                index.entries[step_id] = entry
                index.updated_at = entry.timestamp
                await self._writer.write(
                    layout.artifact_index_path(self._run_id),
                    index.model_dump_json(indent=2),
                )
            except OSError as e:
                logger.warning("Artifact log write failed for %s: %s", step_id, e)
                return None
        return entry

    async def index(self) -> ArtifactIndex:
        async with self._lock:
            return await self._load_index()

    async def _load_index(self) -> ArtifactIndex:
        if self._index is not None:
            return self._index
        path = layout.artifact_index_path(self._run_id)
        index = ArtifactIndex(run_id=self._run_id)
        if await self._writer.exists(path):
            try:
                index = ArtifactIndex(**json.loads(await self._writer.read(path)))
            except (json.JSONDecodeError, ValidationError, TypeError) as e:
                logger.warning("Artifact index for %s unreadable, starting fresh: %s", self._run_id, e)
        self._index = index
        return index
