"""Shared test helpers."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from tessera.session.llm import ModelRequest
from tessera.session.token_counter import TokenCounter
from tessera.tool import Tool, ToolContext, ToolInfo, ToolResult


class WordEncoding:
    """Whitespace tokenizer standing in for a tiktoken encoding."""

    def encode(self, text: str, disallowed_special: Any = ()) -> List[str]:
        return text.split()


def word_counter() -> TokenCounter:
    return TokenCounter(model="test-model", encoding=WordEncoding())


class ScriptedModel:
    """Model stub returning scripted responses in order.

    Items may be strings, dicts, ``ModelResponse`` objects or exceptions
    (raised). Compaction requests are answered from ``summaries``.
    """

    def __init__(self, responses: List[Any], summaries: Optional[List[Any]] = None) -> None:
        self.responses = list(responses)
        self.summaries = list(summaries or [])
        self.requests: List[ModelRequest] = []
        self.compaction_requests: List[ModelRequest] = []

    async def __call__(self, request: ModelRequest) -> Any:
        if request.purpose == "compaction":
            self.compaction_requests.append(request)
            item = self.summaries.pop(0) if self.summaries else "summary"
        else:
            self.requests.append(request)
            item = self.responses.pop(0) if self.responses else json.dumps({"final": "done"})
        if isinstance(item, BaseException):
            raise item
        return item


def tool_call(name: str, tool_input: Dict[str, Any], call_id: str = "") -> str:
    payload: Dict[str, Any] = {"tool": name, "input": tool_input}
    if call_id:
        payload["id"] = call_id
    return json.dumps(payload)


def final(text: str) -> str:
    return json.dumps({"final": text})


class NoteParams(BaseModel):
    text: str


def read_note_tool(calls: Optional[List[str]] = None, delay: float = 0.0) -> ToolInfo:
    async def execute(args: NoteParams, ctx: ToolContext) -> ToolResult:
        if delay:
            await asyncio.sleep(delay)
        if calls is not None:
            calls.append(args.text)
        return ToolResult.text(f"note: {args.text}")

    return Tool.define(
        "read_note",
        "Read a note",
        NoteParams,
        execute,
        supports_parallel=True,
        is_mutating=False,
    )


def write_note_tool(calls: Optional[List[str]] = None) -> ToolInfo:
    async def execute(args: NoteParams, ctx: ToolContext) -> ToolResult:
        if calls is not None:
            calls.append(args.text)
        return ToolResult.text(f"wrote: {args.text}")

    return Tool.define("write_note", "Write a note", NoteParams, execute)
