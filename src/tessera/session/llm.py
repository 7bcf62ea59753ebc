"""Model call contract.

The session depends on a single coroutine function::

    async def call_model(request: ModelRequest) -> ModelResponse | str | dict

Failures raised by it end the current turn with an error status.
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .message import ChatMessage, UsageReport


class ToolCallBlock(BaseModel):
    """A structured tool call returned by the model."""
    id: str = ""
    name: str
    input: Any = Field(default_factory=dict)

    @property
    def arguments(self) -> str:
        if isinstance(self.input, str):
            return self.input
        return json.dumps(self.input, ensure_ascii=False)


class ModelResponse(BaseModel):
    content: str = ""
    tool_calls: List[ToolCallBlock] = Field(default_factory=list)
    usage: Optional[UsageReport] = None
    reasoning_content: Optional[str] = None
    stop_reason: Optional[str] = None


ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


class ModelRequest(BaseModel):
    """Everything a model client needs for one step.

    ``payload`` is the chat-completions request already gated by the
    resolved model profile; clients that speak that API can send it as is.
    """
    messages: List[ChatMessage]
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)
    purpose: str = "step"
    on_chunk: Optional[ChunkCallback] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


CallModel = Callable[[ModelRequest], Awaitable[Union[ModelResponse, str, Dict[str, Any]]]]


def normalize_model_response(raw: Any) -> ModelResponse:
    """Accept a ``ModelResponse``, plain text, or a dict of its fields."""
    if isinstance(raw, ModelResponse):
        return raw
    if raw is None:
        return ModelResponse()
    if isinstance(raw, str):
        return ModelResponse(content=raw)
    if isinstance(raw, dict):
        return ModelResponse.model_validate(raw)
    raise TypeError(f"Unsupported model response type: {type(raw).__name__}")
