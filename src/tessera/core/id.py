"""Prefixed, time-sortable identifiers (``ses_…``, ``call_…``)."""

import secrets
import time
from typing import Literal

PREFIX_MAP = {
    "session": "ses",
    "turn": "trn",
    "call": "call",
    "approval": "apr",
}

IDPrefix = Literal["session", "turn", "call", "approval"]

LENGTH = 26
TIME_HEX = 14
_BASE62 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"

_last_timestamp = 0
_counter = 0


def _create(prefix: IDPrefix, timestamp: int | None = None) -> str:
    global _last_timestamp, _counter

    now_ms = timestamp if timestamp is not None else int(time.time() * 1000)
    if now_ms != _last_timestamp:
        _last_timestamp = now_ms
        _counter = 0
    _counter += 1

    # 56 bits: millisecond timestamp shifted left by 12, plus a per-ms counter
    encoded = (now_ms * 0x1000) + _counter
    suffix = "".join(secrets.choice(_BASE62) for _ in range(LENGTH - TIME_HEX))
    return f"{PREFIX_MAP[prefix]}_{encoded:0{TIME_HEX}x}{suffix}"


def ascending(prefix: IDPrefix, given: str | None = None) -> str:
    """Generate an ascending ID, or validate and return ``given``."""
    if given is not None:
        if not given.startswith(PREFIX_MAP[prefix]):
            raise ValueError(f"ID {given} does not start with {PREFIX_MAP[prefix]}")
        return given
    return _create(prefix)


def timestamp(id_str: str) -> int:
    """Millisecond timestamp embedded in an ascending ID."""
    parts = id_str.split("_")
    if len(parts) != 2:
        raise ValueError(f"Invalid ID format: {id_str}")
    return int(parts[1][:TIME_HEX], 16) // 0x1000


class Identifier:
    """Namespace class for ID generation functions."""

    ascending = staticmethod(ascending)
    timestamp = staticmethod(timestamp)
