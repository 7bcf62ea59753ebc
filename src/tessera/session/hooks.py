"""Lifecycle hooks and middleware.

Handlers are observational. Each named event has a handler list built once
at session creation: the primary ``AgentHooks`` first, then every
middleware in registration order. A failing handler is logged and skipped.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .message import Action, ChatMessage, Observation, TurnResult
from ..util.log import Log

log = Log.create({"service": "session.hooks"})

HookHandler = Callable[[Any], Union[None, Awaitable[None]]]

HOOK_EVENTS = (
    "turn_start",
    "action",
    "observation",
    "final",
    "approval_request",
    "approval_response",
)


@dataclass
class AgentHooks:
    """One hook set; a middleware is just another ``AgentHooks``."""
    on_turn_start: Optional[HookHandler] = None
    on_action: Optional[HookHandler] = None
    on_observation: Optional[HookHandler] = None
    on_final: Optional[HookHandler] = None
    on_approval_request: Optional[HookHandler] = None
    on_approval_response: Optional[HookHandler] = None
    name: str = ""


@dataclass(frozen=True)
class TurnStartEvent:
    session_id: str
    turn: int
    input: str
    history: List[ChatMessage]


@dataclass(frozen=True)
class ActionEvent:
    session_id: str
    turn: int
    step: int
    action: Action
    batch_size: int
    thinking: Optional[str]
    history: List[ChatMessage]


@dataclass(frozen=True)
class ObservationEvent:
    session_id: str
    turn: int
    step: int
    action: Action
    observation: Observation
    history: List[ChatMessage]


@dataclass(frozen=True)
class FinalEvent:
    session_id: str
    turn: int
    step: int
    result: TurnResult
    history: List[ChatMessage]


@dataclass(frozen=True)
class ApprovalEvent:
    session_id: str
    turn: int
    step: int
    request: Any
    decision: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def snapshot_history(history: Sequence[ChatMessage]) -> List[ChatMessage]:
    """Deep copy of history for handing to external code."""
    return [message.model_copy(deep=True) for message in history]


class HookRunner:
    """Holds the ordered handler lists for one session."""

    def __init__(self, hooks: Optional[AgentHooks] = None, middlewares: Sequence[AgentHooks] = ()) -> None:
        sets = [hooks, *middlewares]
        self._handlers: Dict[str, List[Tuple[str, HookHandler]]] = {name: [] for name in HOOK_EVENTS}
        for index, hook_set in enumerate(sets):
            if hook_set is None:
                continue
            label = hook_set.name or ("hooks" if index == 0 else f"middleware[{index - 1}]")
            for event in HOOK_EVENTS:
                handler = getattr(hook_set, f"on_{event}")
                if handler is not None:
                    self._handlers[event].append((label, handler))

    def handlers(self, event: str) -> List[HookHandler]:
        return [handler for _, handler in self._handlers.get(event, [])]

    async def run(self, event: str, payload: Any) -> None:
        for label, handler in self._handlers.get(event, []):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.warn(f"Hook {event} failed", {"source": label, "error": e})
