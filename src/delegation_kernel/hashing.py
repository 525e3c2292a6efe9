"""Content hashing for audit payload previews."""

from __future__ import annotations

import json
from typing import Any

from blake3 import blake3


def stable_json_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(obj: Any, *, truncate: int | None = None) -> str:
    """Deterministic blake3 digest of a JSON-serializable object."""
    digest = blake3(stable_json_dumps(obj).encode("utf-8")).hexdigest()
    return digest[:truncate] if truncate else digest


__all__ = ["stable_json_dumps", "content_hash"]
