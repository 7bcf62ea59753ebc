"""Structured history events and their sinks.

A sink implements ``async append(event)`` and may implement ``flush()`` and
``close()`` (sync or async). The emitter fans each event out to every
sink; a failing sink is reported on the error channel and does not stop
the others.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from ..util.error import format_error
from ..util.log import Log, write_error_record
from ..util.serialize import safe_json_dumps, to_plain

log = Log.create({"service": "session.history"})

HistoryEventType = Literal[
    "session_start",
    "session_end",
    "turn_start",
    "assistant",
    "action",
    "observation",
    "final",
    "turn_end",
    "context_compacted",
    "system_hint",
]


class HistoryEvent(BaseModel):
    """One immutable history record."""
    ts: str
    session_id: str = Field(alias="sessionId")
    type: HistoryEventType
    turn: Optional[int] = None
    step: Optional[int] = None
    content: Optional[str] = None
    role: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        if "meta" in data:
            data["meta"] = to_plain(data["meta"])
        return data

    def to_json(self) -> str:
        return safe_json_dumps(self.to_record())


def create_history_event(
    session_id: str,
    type: HistoryEventType,
    *,
    turn: Optional[int] = None,
    step: Optional[int] = None,
    content: Optional[str] = None,
    role: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> HistoryEvent:
    return HistoryEvent(
        ts=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        session_id=session_id,
        type=type,
        turn=turn,
        step=step,
        content=content,
        role=role,
        meta=to_plain(meta) if meta is not None else None,
    )


@runtime_checkable
class HistorySink(Protocol):
    async def append(self, event: HistoryEvent) -> None: ...


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


def _sink_name(sink: Any) -> str:
    return getattr(sink, "name", None) or type(sink).__name__


class JsonlHistorySink:
    """Appends one JSON line per event to a file.

    Writes are serialized; the parent directory is created on first write.
    """

    def __init__(self, path: str, *, name: str = "jsonl") -> None:
        self.path = Path(path)
        self.name = name
        self._lock = asyncio.Lock()
        self._closed = False

    def _write(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    async def append(self, event: HistoryEvent) -> None:
        if self._closed:
            raise RuntimeError("History sink is closed")
        line = event.to_json()
        async with self._lock:
            await asyncio.to_thread(self._write, line)

    async def flush(self) -> None:
        # Each append opens, writes and closes; waiting on the lock drains in-flight writes.
        async with self._lock:
            return None

    async def close(self) -> None:
        if self._closed:
            return
        await self.flush()
        self._closed = True


class MemoryHistorySink:
    """Keeps events in a list; useful for live consumers and tests."""

    def __init__(self, *, name: str = "memory") -> None:
        self.name = name
        self.events: List[HistoryEvent] = []

    async def append(self, event: HistoryEvent) -> None:
        self.events.append(event)


class HistoryEmitter:
    """Fan-out to sinks with per-sink failure isolation."""

    def __init__(self, sinks: Sequence[Any] = ()) -> None:
        self.sinks: List[Any] = list(sinks)

    def add_sink(self, sink: Any) -> None:
        self.sinks.append(sink)

    def _report(self, sink: Any, error: Exception, event: str = "history_sink_append_failed") -> None:
        record = {
            "level": "error",
            "event": event,
            "sink": _sink_name(sink),
            "message": format_error(error),
        }
        write_error_record(record)
        log.error("history sink failed", {"sink": record["sink"], "error": record["message"]})

    async def emit(self, event: HistoryEvent) -> None:
        for sink in self.sinks:
            try:
                await _maybe_await(sink.append(event))
            except Exception as e:
                self._report(sink, e)

    async def flush(self) -> None:
        for sink in self.sinks:
            flush = getattr(sink, "flush", None)
            if flush is None:
                continue
            try:
                await _maybe_await(flush())
            except Exception as e:
                self._report(sink, e, "history_sink_flush_failed")

    async def close(self) -> None:
        await self.flush()
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if close is None:
                continue
            try:
                await _maybe_await(close())
            except Exception as e:
                self._report(sink, e, "history_sink_close_failed")
