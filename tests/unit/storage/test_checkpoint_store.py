# tests/unit/storage/test_checkpoint_store.py - v1
"""Tests for storage/checkpoint_store.py."""

from __future__ import annotations

import pytest

from dossierforge.core.models import RebuildPlan
from dossierforge.pipeline.state import PipelineState
from dossierforge.storage import layout
from dossierforge.storage.checkpoint_store import CheckpointStore
from dossierforge.storage.models import Checkpoint


def _checkpoint(run_id: str = "r1", reason: str = "critical") -> Checkpoint:
    state = PipelineState.initial(run_id, ["input", "evidence"])
    state.mark_running("input")
    state.mark_completed("input", duration_ms=3, hash="abc")
    state.artifacts["pitch"] = {"project_title": "BakeRide"}
    return Checkpoint(
        run_id=run_id,
        reason=reason,
        state=state,
        plan=RebuildPlan(to_rebuild=frozenset({"input", "evidence"}), reason="initial"),
        input={"project_title": "BakeRide", "elevator_pitch": "x"},
    )


class TestCheckpointStore:
    @pytest.mark.asyncio
    async def test_save_load(self, tmp_cache_dir):
        store = CheckpointStore(tmp_cache_dir)
        assert await store.save(_checkpoint())

        loaded = await store.load("r1")
        assert loaded.reason == "critical"
        assert loaded.state.status_of("input") == "completed"
        assert loaded.state.artifacts["pitch"]["project_title"] == "BakeRide"
        assert loaded.plan.to_rebuild == frozenset({"input", "evidence"})

    @pytest.mark.asyncio
    async def test_overwrite_keeps_latest(self, tmp_cache_dir):
        store = CheckpointStore(tmp_cache_dir)
        await store.save(_checkpoint(reason="critical"))
        await store.save(_checkpoint(reason="timeout"))
        assert (await store.load("r1")).reason == "timeout"
        assert await store.list_runs() == ["r1"]

    @pytest.mark.asyncio
    async def test_missing(self, tmp_cache_dir):
        store = CheckpointStore(tmp_cache_dir)
        assert await store.load("nope") is None
        assert not await store.exists("nope")
        assert await store.list_runs() == []

    @pytest.mark.asyncio
    async def test_corrupt_reads_as_missing(self, tmp_cache_dir):
        path = layout.checkpoint_path(tmp_cache_dir, "bad")
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        assert await CheckpointStore(tmp_cache_dir).load("bad") is None

    @pytest.mark.asyncio
    async def test_delete(self, tmp_cache_dir):
        store = CheckpointStore(tmp_cache_dir)
        await store.save(_checkpoint())
        await store.delete("r1")
        await store.delete("r1")
        assert not await store.exists("r1")

    @pytest.mark.asyncio
    async def test_save_failure_reported(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        assert not await CheckpointStore(blocker).save(_checkpoint())
