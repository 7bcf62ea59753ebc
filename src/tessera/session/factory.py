"""Factory for assembling an AgentSession with its collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence

from ..core.bus import Bus
from ..core.config import RuntimeConfig, SessionOptions
from ..core.global_paths import GlobalPath
from ..core.id import Identifier
from ..tool import ToolInfo, ToolRegistry
from .history import HistoryEmitter, JsonlHistorySink
from .hooks import AgentHooks, HookRunner
from .llm import CallModel
from .processor import AgentSession, ApprovalHandler
from .token_counter import TokenCounter


def create_session(
    call_model: CallModel,
    *,
    system_prompt: str,
    options: Optional[SessionOptions] = None,
    tools: Optional[Sequence[ToolInfo]] = None,
    hooks: Optional[AgentHooks] = None,
    middlewares: Sequence[AgentHooks] = (),
    sinks: Sequence[Any] = (),
    bus: Optional[Bus] = None,
    approval_handler: Optional[ApprovalHandler] = None,
    token_counter: Optional[TokenCounter] = None,
) -> AgentSession:
    """Build a session.

    Hooks and middlewares are fixed here for the life of the session. When
    ``options`` is a ``RuntimeConfig`` with history enabled, a JSONL sink is
    added under ``history.directory`` (default: the per-user data dir).
    """
    options = options or SessionOptions()
    if not options.session_id:
        options = options.model_copy(update={"session_id": Identifier.ascending("session")})

    emitter = HistoryEmitter(sinks)
    if isinstance(options, RuntimeConfig) and options.history.enabled:
        directory = options.history.directory or GlobalPath.history()
        emitter.add_sink(JsonlHistorySink(str(Path(directory) / f"{options.session_id}.jsonl")))

    return AgentSession(
        call_model=call_model,
        system_prompt=system_prompt,
        options=options,
        tools=ToolRegistry(list(tools or [])),
        hooks=HookRunner(hooks, middlewares),
        history=emitter,
        bus=bus,
        token_counter=token_counter,
        approval_handler=approval_handler,
    )
