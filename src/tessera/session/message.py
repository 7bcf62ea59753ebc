"""Conversation data model.

Messages are kept in chat-completions shape: assistant messages may carry
``tool_calls`` and every tool call is answered by a ``tool`` message with a
matching ``tool_call_id``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant", "tool"]


class ToolCall(BaseModel):
    """A tool call attached to an assistant message."""
    id: str
    name: str
    arguments: str = "{}"

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ChatMessage(BaseModel):
    role: Role
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    reasoning_content: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Optional[List[ToolCall]] = None,
        reasoning_content: Optional[str] = None,
    ) -> "ChatMessage":
        return cls(
            role="assistant",
            content=content,
            tool_calls=tool_calls or None,
            reasoning_content=reasoning_content or None,
        )

    @classmethod
    def tool(cls, tool_call_id: str, name: str, content: str) -> "ChatMessage":
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)

    def to_openai(self, *, include_reasoning: bool = False) -> Dict[str, Any]:
        """Render as a chat-completions message dict."""
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.role == "assistant":
            if self.tool_calls:
                data["tool_calls"] = [call.to_openai() for call in self.tool_calls]
            if include_reasoning and self.reasoning_content:
                data["reasoning_content"] = self.reasoning_content
        if self.role == "tool":
            data["tool_call_id"] = self.tool_call_id or ""
        return data


class TokenUsage(BaseModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0

    def accumulate(self, delta: "UsageReport") -> "TokenUsage":
        """Return the sum of this usage and ``delta``.

        The delta's total is its explicit ``total`` when the provider
        reported one, otherwise ``prompt + completion``.
        """
        delta_total = delta.total if delta.total is not None else delta.prompt + delta.completion
        return TokenUsage(
            prompt=self.prompt + delta.prompt,
            completion=self.completion + delta.completion,
            total=self.total + delta_total,
        )


class UsageReport(BaseModel):
    """Usage reported for one model call; ``total`` is optional."""
    prompt: int = 0
    completion: int = 0
    total: Optional[int] = None


def accumulate_usage(base: TokenUsage, delta: UsageReport) -> TokenUsage:
    return base.accumulate(delta)


class Action(BaseModel):
    """One requested tool invocation. ``input`` is opaque to the runtime."""
    id: str = ""
    tool: str
    input: Any = Field(default_factory=dict)


class ParsedAssistant(BaseModel):
    thinking: Optional[str] = None
    actions: List[Action] = Field(default_factory=list)
    final: Optional[str] = None
    text: str = ""

    @property
    def action(self) -> Optional[Action]:
        return self.actions[0] if self.actions else None


class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    DENIED = "denied"
    CANCELLED = "cancelled"


class Observation(BaseModel):
    """Recorded result of executing one action."""
    action_id: str
    tool: str
    status: ResultStatus
    text: str
    duration_ms: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_message(self) -> ChatMessage:
        return ChatMessage.tool(self.action_id, self.tool, self.text)


class TurnStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


class TurnResult(BaseModel):
    final_text: str
    status: TurnStatus
    error_message: Optional[str] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    turn: int = 0
    steps: int = 0
