"""Token estimates for text and chat message sequences (tiktoken)."""

from __future__ import annotations

import json
from typing import Any, List, Optional, Sequence

import tiktoken

from ..util.log import Log
from .message import ChatMessage

log = Log.create({"service": "session.tokens"})

FALLBACK_ENCODING = "cl100k_base"
TOKENS_PER_MESSAGE = 4
TOKENS_PER_NAME = 1
REPLY_PRIMING_TOKENS = 2
CHARS_PER_TOKEN = 4


def _load_encoding(model: Optional[str]) -> Any:
    if model:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            log.debug("no tokenizer for model, using fallback", {"model": model})
    return tiktoken.get_encoding(FALLBACK_ENCODING)


def estimate_tokens(text: str) -> int:
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


class TokenCounter:
    """Counts tokens with the model's tiktoken encoding.

    The encoding is resolved on first use and falls back to
    ``cl100k_base`` for models tiktoken does not know. If the encoding
    cannot be loaded or fails to encode, counting switches to a
    character-based estimate for the rest of the counter's life.
    """

    def __init__(self, model: Optional[str] = None, encoding: Any = None) -> None:
        self.model = model
        self._encoding = encoding
        self.degraded = False

    @property
    def encoding(self) -> Any:
        if self._encoding is None:
            self._encoding = _load_encoding(self.model)
        return self._encoding

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        if not self.degraded:
            try:
                return len(self.encoding.encode(text, disallowed_special=()))
            except Exception as e:
                self.degraded = True
                log.warn("tokenizer unavailable, estimating from characters", {"model": self.model, "error": e})
        return estimate_tokens(text)

    def count_message(self, message: ChatMessage) -> int:
        payload = message.content or ""
        if message.role == "assistant" and message.tool_calls:
            payload += json.dumps([call.to_openai() for call in message.tool_calls])
        if message.role == "tool":
            payload += (message.tool_call_id or "") + (message.name or "")
        tokens = TOKENS_PER_MESSAGE + self.count_text(payload)
        if message.name:
            tokens += TOKENS_PER_NAME
        return tokens

    def count_messages(self, messages: Sequence[ChatMessage]) -> int:
        """Prompt-size estimate: per-message overhead plus reply priming."""
        return sum(self.count_message(m) for m in messages) + REPLY_PRIMING_TOKENS

    def count_tools(self, tools: List[dict]) -> int:
        if not tools:
            return 0
        return self.count_text(json.dumps(tools))

    def close(self) -> None:
        """Drop the cached encoding."""
        self._encoding = None
