"""Deterministic cache keys for provider calls."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any


def fingerprint(operation: str, source_id: str, fields: Mapping[str, Any]) -> str:
    """
    Hash an operation, a provider id and normalized request fields.

    The same logical request always yields the same key, independent of
    dict ordering; different providers never share a key.
    """
    payload = json.dumps(
        {"op": operation, "source": source_id, "fields": dict(fields)},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
