"""Model capability profiles and chat-completions request construction.

Capabilities are only enabled when an explicit override says so. Anything
unknown resolves to the fallback profile with every capability off, since
sending e.g. ``parallel_tool_calls`` to a provider that rejects it fails
the whole request.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from ..core.config import ModelProfileOverride
from ..session.message import ChatMessage


class ModelProfile(BaseModel):
    wire_api: str = "chat_completions"
    supports_parallel_tool_calls: bool = False
    supports_reasoning_content: bool = False
    supports_verbosity: bool = False
    context_window: Optional[int] = None
    is_fallback: bool = True


class ResolvedModelProfile(BaseModel):
    profile: ModelProfile
    warning: Optional[str] = None


def _normalize_key(value: str) -> str:
    return (value or "").strip().lower()


def _coerce_override(value: Any) -> ModelProfileOverride:
    if isinstance(value, ModelProfileOverride):
        return value
    return ModelProfileOverride.model_validate(value or {})


def resolve_model_profile(
    provider: str,
    model: str,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ResolvedModelProfile:
    """Resolve capabilities: ``provider:model`` override, then ``model``, then fallback."""
    table = {_normalize_key(key): _coerce_override(value) for key, value in (overrides or {}).items()}
    provider_key = _normalize_key(provider)
    model_key = _normalize_key(model)

    override = None
    if provider_key and model_key:
        override = table.get(f"{provider_key}:{model_key}")
    if override is None and model_key:
        override = table.get(model_key)

    if override is None:
        label = f"{provider_key}:{model_key}" if provider_key else (model_key or "<unset>")
        return ResolvedModelProfile(
            profile=ModelProfile(),
            warning=f"No capability profile for {label}; using conservative defaults.",
        )

    return ResolvedModelProfile(
        profile=ModelProfile(
            supports_parallel_tool_calls=override.supports_parallel_tool_calls is True,
            supports_reasoning_content=override.supports_reasoning_content is True,
            supports_verbosity=override.supports_verbosity is True,
            context_window=override.context_window,
            is_fallback=False,
        )
    )


def to_openai_tools(tools: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("input_schema") or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


def build_chat_request(
    model: str,
    messages: Sequence[ChatMessage],
    tools: Optional[Sequence[Mapping[str, Any]]],
    profile: ModelProfile,
    *,
    verbosity: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a chat-completions payload gated by ``profile``.

    ``tools`` and ``tool_choice`` appear only when tools exist;
    ``parallel_tool_calls`` only when tools exist and the profile allows it.
    """
    payload: Dict[str, Any] = {
        "model": model,
        "messages": [
            message.to_openai(include_reasoning=profile.supports_reasoning_content)
            for message in messages
        ],
    }
    if tools:
        payload["tools"] = to_openai_tools(tools)
        payload["tool_choice"] = "auto"
        if profile.supports_parallel_tool_calls:
            payload["parallel_tool_calls"] = True
    if verbosity and profile.supports_verbosity:
        payload["verbosity"] = verbosity
    return payload
