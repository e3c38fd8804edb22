# src/dossierforge/storage/layout.py - v1
"""On-disk layout for checkpoints, build state, artifacts and dossiers.

Checkpoints and build state live under CACHE_ROOT next to the cache
entries. Artifact logs and final dossiers live under OUTPUT_PATH.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

# Under {cache_root}/
CHECKPOINTS_DIR = "checkpoints"
STATE_DIR = "state"
BUILD_STATE_FILE = "build_state.json"

# Under {output_path}/
ARTIFACTS_DIR = "artifacts"
DOSSIERS_DIR = "dossiers"

# Under {output_path}/artifacts/{run_id}/
STEP_RESULT_FILE = "result.json"
ARTIFACT_INDEX_FILE = "index.json"
CALLS_LOG_FILE = "calls_log.jsonl"


def generate_run_id(timestamp: datetime | None = None) -> str:
    """Generate a run_id: yyyymmdd_hhmmss_{uuid4_short}."""
    ts = timestamp or datetime.now(timezone.utc)
    short_uuid = uuid.uuid4().hex[:8]
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{short_uuid}"


# --- Cache-root paths ---

def checkpoints_dir(cache_root: Path) -> Path:
    return Path(cache_root).expanduser() / CHECKPOINTS_DIR


def checkpoint_path(cache_root: Path, run_id: str) -> Path:
    safe = run_id.replace("/", "_").replace("\\", "_")
    return checkpoints_dir(cache_root) / f"{safe}.json"


def build_state_path(cache_root: Path) -> Path:
    return Path(cache_root).expanduser() / STATE_DIR / BUILD_STATE_FILE


# --- Output paths (relative, resolved by the output writer) ---

def run_artifacts_dir(run_id: str) -> str:
    return f"{ARTIFACTS_DIR}/{run_id}"


def step_result_path(run_id: str, step_id: str) -> str:
    return f"{run_artifacts_dir(run_id)}/{step_id}/{STEP_RESULT_FILE}"


def artifact_index_path(run_id: str) -> str:
    return f"{run_artifacts_dir(run_id)}/{ARTIFACT_INDEX_FILE}"


def calls_log_path(run_id: str) -> str:
    return f"{run_artifacts_dir(run_id)}/{CALLS_LOG_FILE}"


def dossier_path(run_id: str) -> str:
    return f"{DOSSIERS_DIR}/{run_id}.json"
