"""Cycle-safe JSON serialization.

``stable_stringify`` produces a canonical string (sorted keys, compact
separators) used for fingerprints and repetition signatures.
``safe_json_dumps`` is used for event persistence. Both replace cyclic
references with ``"[Circular]"`` instead of raising.
"""

import dataclasses
import json
from typing import Any, Set

from pydantic import BaseModel

CIRCULAR = "[Circular]"
MAX_DEPTH_EXCEEDED = "[MaxDepthExceeded]"
MAX_DEPTH = 100


def to_plain(value: Any, *, _seen: Set[int] | None = None, _depth: int = 0) -> Any:
    """Convert ``value`` to JSON-native data, marking cycles."""
    seen = _seen if _seen is not None else set()

    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if _depth > MAX_DEPTH:
        return MAX_DEPTH_EXCEEDED

    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}

    if isinstance(value, dict):
        marker = id(value)
        if marker in seen:
            return CIRCULAR
        seen.add(marker)
        try:
            return {
                str(key): to_plain(item, _seen=seen, _depth=_depth + 1)
                for key, item in value.items()
            }
        finally:
            seen.discard(marker)

    if isinstance(value, (list, tuple, set, frozenset)):
        marker = id(value)
        if marker in seen:
            return CIRCULAR
        seen.add(marker)
        try:
            items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
            return [to_plain(item, _seen=seen, _depth=_depth + 1) for item in items]
        finally:
            seen.discard(marker)

    return str(value)


def stable_stringify(value: Any) -> str:
    """Canonical JSON with sorted keys."""
    return json.dumps(to_plain(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def safe_json_dumps(value: Any) -> str:
    return json.dumps(to_plain(value), separators=(",", ":"), ensure_ascii=False)
