"""Model call adapter for the OpenAI chat-completions client.

Sends the profile-gated payload from ``ModelRequest`` as a streaming
request and folds the stream back into a ``ModelResponse``. Text deltas
are forwarded to ``request.on_chunk``.
"""

import inspect
import json
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from ..session.llm import ModelRequest, ModelResponse, ToolCallBlock
from ..session.message import UsageReport
from ..util.log import Log

log = Log.create({"service": "provider.openai"})

RESERVED_KEYS = {"model", "messages", "stream", "stream_options", "tools", "tool_choice", "parallel_tool_calls"}


class OpenAIChatModel:
    """Callable implementing the model call contract over ``AsyncOpenAI``."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Any = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.client = client if client is not None else AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.options = options or {}

    def _params(self, request: ModelRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(request.payload)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}
        for key, value in self.options.items():
            if key not in RESERVED_KEYS:
                params[key] = value
        return params

    async def __call__(self, request: ModelRequest) -> ModelResponse:
        params = self._params(request)
        log.info("streaming", {"model": params.get("model"), "message_count": len(params.get("messages", []))})

        stream = await self.client.chat.completions.create(**params)

        text_parts = []
        reasoning_parts = []
        calls: Dict[int, Dict[str, Any]] = {}
        usage: Optional[UsageReport] = None
        stop_reason: Optional[str] = None

        async for chunk in stream:
            if getattr(chunk, "usage", None):
                usage = UsageReport(
                    prompt=chunk.usage.prompt_tokens or 0,
                    completion=chunk.usage.completion_tokens or 0,
                    total=getattr(chunk.usage, "total_tokens", None),
                )
            if not chunk.choices:
                continue

            choice = chunk.choices[0]
            delta = choice.delta
            if delta.content:
                text_parts.append(delta.content)
                if request.on_chunk is not None:
                    result = request.on_chunk(delta.content)
                    if inspect.isawaitable(result):
                        await result
            reasoning = getattr(delta, "reasoning_content", None)
            if reasoning:
                reasoning_parts.append(reasoning)

            for tc in delta.tool_calls or []:
                current = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    current["id"] = tc.id
                if tc.function and tc.function.name:
                    current["name"] = tc.function.name
                if tc.function and tc.function.arguments:
                    current["arguments"] += tc.function.arguments

            if choice.finish_reason:
                stop_reason = choice.finish_reason

        tool_calls = []
        for idx in sorted(calls):
            data = calls[idx]
            try:
                tool_input: Any = json.loads(data["arguments"]) if data["arguments"] else {}
            except json.JSONDecodeError:
                # Left as a string; the executor reports it as invalid input.
                tool_input = data["arguments"]
            tool_calls.append(ToolCallBlock(id=data["id"], name=data["name"], input=tool_input))

        return ModelResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            usage=usage,
            reasoning_content="".join(reasoning_parts) or None,
            stop_reason=stop_reason,
        )
