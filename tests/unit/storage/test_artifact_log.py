# tests/unit/storage/test_artifact_log.py - v1
"""Tests for storage/artifact_log.py and storage/local_writer.py."""

from __future__ import annotations

import asyncio
import json

import pytest

from dossierforge.cache.fingerprint import content_hash
from dossierforge.storage import layout
from dossierforge.storage.artifact_log import ArtifactLog
from dossierforge.storage.local_writer import LocalWriter


class FailingWriter(LocalWriter):
    async def write(self, path, content):
        raise OSError("read-only filesystem")


class TestLocalWriter:
    @pytest.mark.asyncio
    async def test_write_read(self, tmp_output_dir):
        writer = LocalWriter(tmp_output_dir)
        await writer.write("a/b.json", '{"x": 1}')
        await writer.write("a/c.bin", b"\x00\x01")
        assert await writer.read("a/b.json") == b'{"x": 1}'
        assert await writer.exists("a/c.bin")
        assert await writer.list_dir("a") == ["b.json", "c.bin"]
        assert await writer.list_dir("missing") == []

    @pytest.mark.asyncio
    async def test_append(self, tmp_output_dir):
        writer = LocalWriter(tmp_output_dir)
        await writer.append("log.jsonl", "one\n")
        await writer.append("log.jsonl", "two\n")
        assert (tmp_output_dir / "log.jsonl").read_text() == "one\ntwo\n"


class TestArtifactLog:
    @pytest.mark.asyncio
    async def test_record_writes_result_and_index(self, tmp_output_dir):
        log = ArtifactLog(LocalWriter(tmp_output_dir), "r1")
        data = {"headline": "Big market", "data": {"tam": 1e9}}

        entry = await log.record("market", "Market Section", data)

        result = json.loads((tmp_output_dir / layout.step_result_path("r1", "market")).read_text())
        assert result == data
        assert entry.hash == content_hash(data)
        index = json.loads((tmp_output_dir / layout.artifact_index_path("r1")).read_text())
        assert index["entries"]["market"]["name"] == "Market Section"
        assert index["entries"]["market"]["path"] == layout.step_result_path("r1", "market")

    @pytest.mark.asyncio
    async def test_concurrent_records_all_indexed(self, tmp_output_dir):
        log = ArtifactLog(LocalWriter(tmp_output_dir), "r1")
        await asyncio.gather(*(log.record(s, s.title(), {"s": s}) for s in ("team", "market", "gtm")))
        assert set((await log.index()).entries) == {"team", "market", "gtm"}

    @pytest.mark.asyncio
    async def test_existing_index_extended(self, tmp_output_dir):
        writer = LocalWriter(tmp_output_dir)
        await ArtifactLog(writer, "r1").record("input", "Input Processing", {"a": 1})
        await ArtifactLog(writer, "r1").record("brief", "Brief Extraction", {"b": 2})
        index = await ArtifactLog(writer, "r1").index()
        assert set(index.entries) == {"input", "brief"}

    @pytest.mark.asyncio
    async def test_write_failure_swallowed(self, tmp_output_dir):
        log = ArtifactLog(FailingWriter(tmp_output_dir), "r1")
        assert await log.record("market", "Market Section", {}) is None
