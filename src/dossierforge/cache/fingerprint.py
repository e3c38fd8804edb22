# src/dossierforge/cache/fingerprint.py - v1
"""Deterministic hashing for cache keys and build-state comparison.

Cache keys depend only on (step id, inputs, prompt version, env flags).
Inputs are serialized canonically so key order inside nested mappings
never changes the key.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

_KEY_DIGEST_CHARS = 32
_CONTENT_DIGEST_CHARS = 16


def canonical_json(value: Any) -> str:
    """Serialize value with sorted keys and no insignificant whitespace."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def create_step_cache_key(
    step_id: str,
    inputs: Mapping[str, Any],
    prompt_version: str,
    env_flags: Mapping[str, Any] | None = None,
) -> str:
    """Build the cache key for one step invocation.

    Args:
        step_id: Step identifier, also kept in clear as a key prefix.
        inputs: The exact inputs handed to the step.
        prompt_version: Version tag of the step's prompt templates.
        env_flags: Flags that change output semantics (dry-run, model).

    Returns:
        ``step_<id>_<digest>`` where digest covers every argument.
    """
    payload = {
        "step": step_id,
        "inputs": dict(inputs),
        "prompt_version": prompt_version,
        "env": dict(env_flags or {}),
    }
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return f"step_{step_id}_{digest[:_KEY_DIGEST_CHARS]}"


def content_hash(value: Any) -> str:
    """Short content hash of text or structured data.

    Text is stripped before hashing so trailing whitespace edits do not
    register as a change. Empty or missing content hashes to "".
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else canonical_json(value)
    text = text.strip()
    if not text:
        return ""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:_CONTENT_DIGEST_CHARS]
