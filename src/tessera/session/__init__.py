"""Session runtime modules with lazy exports to avoid import cycles."""

from __future__ import annotations

from importlib import import_module
from typing import Dict, Tuple

_EXPORTS: Dict[str, Tuple[str, str]] = {
    "AgentSession": (".processor", "AgentSession"),
    "SessionState": (".processor", "SessionState"),
    "create_session": (".factory", "create_session"),
    "ChatMessage": (".message", "ChatMessage"),
    "ToolCall": (".message", "ToolCall"),
    "Action": (".message", "Action"),
    "Observation": (".message", "Observation"),
    "ParsedAssistant": (".message", "ParsedAssistant"),
    "ResultStatus": (".message", "ResultStatus"),
    "TokenUsage": (".message", "TokenUsage"),
    "UsageReport": (".message", "UsageReport"),
    "TurnResult": (".message", "TurnResult"),
    "TurnStatus": (".message", "TurnStatus"),
    "ActionParser": (".parser", "ActionParser"),
    "parse_assistant": (".parser", "parse_assistant"),
    "TokenCounter": (".token_counter", "TokenCounter"),
    "RepetitionGuard": (".doom_loop", "RepetitionGuard"),
    "SessionCompaction": (".compaction", "SessionCompaction"),
    "build_compaction_user_prompt": (".compaction", "build_compaction_user_prompt"),
    "is_context_summary_message": (".compaction", "is_context_summary_message"),
    "AgentHooks": (".hooks", "AgentHooks"),
    "HookRunner": (".hooks", "HookRunner"),
    "HistoryEvent": (".history", "HistoryEvent"),
    "HistoryEmitter": (".history", "HistoryEmitter"),
    "JsonlHistorySink": (".history", "JsonlHistorySink"),
    "ModelRequest": (".llm", "ModelRequest"),
    "ModelResponse": (".llm", "ModelResponse"),
    "ConcurrentTurnNotAllowed": (".errors", "ConcurrentTurnNotAllowed"),
    "SessionClosedError": (".errors", "SessionClosedError"),
    "SessionBusyError": (".errors", "SessionBusyError"),
}


def __getattr__(name: str):
    target = _EXPORTS.get(name)
    if not target:
        raise AttributeError(name)

    module_name, attr_name = target
    module = import_module(module_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


__all__ = list(_EXPORTS.keys())
