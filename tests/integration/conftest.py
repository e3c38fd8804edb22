# tests/integration/conftest.py - v1
"""Shared fixtures for integration tests.

No network and no containers: every pipeline here runs against the
dry-run provider through the real ClientPool, with real cache backends
on temp directories.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from dossierforge.config.settings import Settings


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end runs on real backends")


@pytest.fixture(params=["json", "sqlite"])
def dry_settings(request, tmp_path: Path) -> Settings:
    """Dry-run settings, once per file-based cache backend."""
    return Settings(
        _env_file=None,
        dry_run=True,
        cache_backend=request.param,
        cache_root=tmp_path / "cache",
        output_path=tmp_path / "output",
        llm_retry_base_delay_s=0.01,
        llm_retry_max_delay_s=0.05,
    )
