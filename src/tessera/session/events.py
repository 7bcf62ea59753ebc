"""Live event stream definitions.

Published on the session's ``Bus`` for UI-style consumers. Every event is
self-describing: ``EventPayload(type=..., payload=...)``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..core.bus import BusEvent
from .message import TokenUsage


class SessionStatusProps(BaseModel):
    session_id: str
    status: Literal["idle", "running", "awaiting_approval", "closed"]


class TurnStartProps(BaseModel):
    session_id: str
    turn: int
    input: str
    prompt_tokens: int


class AssistantChunkProps(BaseModel):
    session_id: str
    turn: int
    step: int
    chunk: str


class ContextUsageProps(BaseModel):
    session_id: str
    turn: int
    step: int
    phase: Literal["turn_start", "step_start", "post_compact"]
    prompt_tokens: int
    context_window: int
    threshold_tokens: int
    usage_percent: float


class ToolActionProps(BaseModel):
    session_id: str
    turn: int
    step: int
    action: Dict[str, Any]
    parallel_actions: List[Dict[str, Any]] = Field(default_factory=list)
    thinking: Optional[str] = None


class ToolObservationProps(BaseModel):
    session_id: str
    turn: int
    step: int
    observation: str
    result_status: str
    parallel_result_statuses: List[str] = Field(default_factory=list)


class ApprovalRequestProps(BaseModel):
    session_id: str
    fingerprint: str
    tool_name: str
    reason: str
    risk_level: str
    params: Any = None


class TurnFinalProps(BaseModel):
    session_id: str
    turn: int
    step: int
    final_text: str
    status: str
    error_message: Optional[str] = None
    turn_usage: TokenUsage
    token_usage: TokenUsage


class SystemMessageProps(BaseModel):
    session_id: str
    title: str
    content: str
    tone: Literal["info", "warning", "error"] = "info"


class ErrorProps(BaseModel):
    session_id: str
    code: str
    message: str


SessionStatus = BusEvent.define("session.status", SessionStatusProps)
TurnStart = BusEvent.define("turn.start", TurnStartProps)
AssistantChunk = BusEvent.define("assistant.chunk", AssistantChunkProps)
ContextUsage = BusEvent.define("context.usage", ContextUsageProps)
ToolAction = BusEvent.define("tool.action", ToolActionProps)
ToolObservation = BusEvent.define("tool.observation", ToolObservationProps)
ApprovalRequested = BusEvent.define("approval.request", ApprovalRequestProps)
TurnFinal = BusEvent.define("turn.final", TurnFinalProps)
SystemMessage = BusEvent.define("system.message", SystemMessageProps)
SessionErrorEvent = BusEvent.define("error", ErrorProps)
