"""Assistant output parsing.

Models that do not emit structured tool calls answer with a small JSON
protocol instead:

    {"tool": "read_file", "input": {"path": "a.txt"}}
    {"actions": [{"tool": ..., "input": ...}, ...]}
    [{"tool": ..., "input": ...}, ...]
    {"final": "the answer"}

The parser tolerates the usual damage (code fences, raw newlines inside
strings, unescaped inner quotes, trailing commas) and never raises. When
both an action and a final answer can be read, the action wins.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Optional, Tuple

from ..util.log import Log
from .message import Action, ParsedAssistant

log = Log.create({"service": "session.parser"})

THINK_BLOCK = re.compile(r"<\s*(think|thinking)\s*>([\s\S]*?)<\/\s*\1\s*>", re.IGNORECASE)
LEADING_THINK_BLOCK = re.compile(r"^\s*<\s*(think|thinking)\s*>([\s\S]*?)<\/\s*\1\s*>", re.IGNORECASE)
FENCED_BLOCK = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?([\s\S]*?)```")

MAX_REPAIR_CHARS = 200_000
MAX_SPANS = 8


def build_thinking(parts: Iterable[Optional[str]]) -> Optional[str]:
    """Join non-empty thinking fragments with a blank line."""
    cleaned = [part.strip() for part in parts if part and part.strip()]
    if not cleaned:
        return None
    return "\n\n".join(cleaned)


def extract_thinking(text: str) -> Tuple[Optional[str], str]:
    """Split leading think blocks off ``text``.

    Returns ``(thinking, remainder)``.
    """
    parts: List[str] = []
    rest = text or ""
    while True:
        match = LEADING_THINK_BLOCK.match(rest)
        if not match:
            break
        parts.append(match.group(2))
        rest = rest[match.end():]
    return build_thinking(parts), rest.strip()


def strip_think_blocks(text: str) -> str:
    """Remove every think block, wherever it appears."""
    return THINK_BLOCK.sub("", text or "").strip()


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    match = re.fullmatch(r"```[a-zA-Z0-9_-]*[ \t]*\n?([\s\S]*?)\n?```", stripped)
    if match:
        return match.group(1).strip()
    return stripped


def repair_json(text: str) -> str:
    """Best-effort repair of almost-JSON.

    Escapes raw control characters and stray quotes inside string
    literals, and drops trailing commas before a closing bracket. A quote
    inside a string only closes it when the next non-blank character is a
    structural one (``,`` ``:`` ``}`` ``]``) or the end of input.
    """
    out: List[str] = []
    in_string = False
    escaped = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string:
            if escaped:
                out.append(ch)
                escaped = False
            elif ch == "\\":
                out.append(ch)
                escaped = True
            elif ch == '"':
                j = i + 1
                while j < n and text[j] in " \t\r\n":
                    j += 1
                if j >= n or text[j] in ",:}]":
                    out.append(ch)
                    in_string = False
                else:
                    out.append('\\"')
            elif ch == "\n":
                out.append("\\n")
            elif ch == "\r":
                out.append("\\r")
            elif ch == "\t":
                out.append("\\t")
            else:
                out.append(ch)
        else:
            if ch == '"':
                in_string = True
                out.append(ch)
            elif ch == ",":
                j = i + 1
                while j < n and text[j] in " \t\r\n":
                    j += 1
                if j < n and text[j] in "}]":
                    i += 1
                    continue
                out.append(ch)
            else:
                out.append(ch)
        i += 1
    return "".join(out)


def _span_end(text: str, start: int) -> int:
    """Index just past the bracket span opened at ``start``, or -1."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return -1
            if not stack:
                return idx + 1
    return -1


def _balanced_spans(text: str, limit: int = MAX_SPANS) -> List[str]:
    """Top-level ``{...}`` / ``[...]`` spans embedded in prose."""
    spans: List[str] = []
    idx = 0
    while idx < len(text) and len(spans) < limit:
        if text[idx] in "{[":
            end = _span_end(text, idx)
            if end > 0:
                spans.append(text[idx:end])
                idx = end
                continue
        idx += 1
    return spans


def _load(candidate: str) -> Any:
    """Strict parse, then one repair attempt. Returns None on failure."""
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        pass
    if len(candidate) > MAX_REPAIR_CHARS:
        return None
    try:
        return json.loads(repair_json(candidate))
    except (json.JSONDecodeError, ValueError):
        return None


def _to_action(value: Any) -> Optional[Action]:
    if not isinstance(value, dict):
        return None
    tool = value.get("tool")
    if not isinstance(tool, str) or not tool.strip():
        return None
    tool_input = value.get("input", {})
    if tool_input is None:
        tool_input = {}
    action_id = value.get("id")
    return Action(
        id=action_id if isinstance(action_id, str) else "",
        tool=tool.strip(),
        input=tool_input,
    )


def _actions_from(value: Any) -> List[Action]:
    if isinstance(value, list):
        items = value
    elif isinstance(value, dict) and isinstance(value.get("actions"), list):
        items = value["actions"]
    else:
        action = _to_action(value)
        return [action] if action else []
    return [action for action in (_to_action(item) for item in items) if action]


def _final_from(value: Any) -> Optional[str]:
    if not isinstance(value, dict):
        return None
    final = value.get("final")
    if isinstance(final, str) and final.strip():
        return final.strip()
    return None


def _candidates(text: str) -> List[str]:
    seen: List[str] = []

    def add(candidate: Optional[str]) -> None:
        if candidate:
            candidate = candidate.strip()
            if candidate and candidate not in seen:
                seen.append(candidate)

    add(strip_code_fences(text))
    for match in FENCED_BLOCK.finditer(text):
        add(match.group(1))
    for span in _balanced_spans(text):
        add(span)
    return seen


class ActionParser:
    """Turns raw assistant text into a ``ParsedAssistant``."""

    def parse(self, raw: str) -> ParsedAssistant:
        try:
            return self._parse(raw or "")
        except Exception as e:  # parsing must never abort a turn
            log.warn("assistant parse failed", {"error": e})
            return ParsedAssistant(text=(raw or "").strip())

    def _parse(self, raw: str) -> ParsedAssistant:
        thinking, body = extract_thinking(raw)
        if not body:
            return ParsedAssistant(thinking=thinking, text="")

        final: Optional[str] = None
        for candidate in _candidates(body):
            value = _load(candidate)
            if value is None:
                continue
            actions = _actions_from(value)
            if actions:
                return ParsedAssistant(thinking=thinking, actions=actions, text=body)
            if final is None:
                final = _final_from(value)

        return ParsedAssistant(thinking=thinking, final=final, text=body)


_default_parser = ActionParser()


def parse_assistant(raw: str) -> ParsedAssistant:
    return _default_parser.parse(raw)
