"""Context compaction.

When the prompt grows close to the model's context window, everything
after the system prompt is summarized by the model into a single handoff
message. The summary message is a user message whose content starts with
``CONTEXT_SUMMARY_PREFIX`` followed by a newline; that exact boundary is
what ``is_context_summary_message`` checks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..core.config import CompactionConfig
from ..provider.model_profile import ModelProfile, build_chat_request
from ..util.error import format_error
from ..util.log import Log
from .llm import CallModel, ModelRequest, normalize_model_response
from .message import ChatMessage
from .parser import strip_think_blocks

log = Log.create({"service": "session.compaction"})

MAX_MESSAGE_CONTENT_CHARS = 4000

CONTEXT_COMPACTION_SYSTEM_PROMPT = (
    "You are performing a CONTEXT CHECKPOINT COMPACTION. Create a handoff summary for "
    "another LLM that will resume the task.\n\n"
    "Include:\n"
    "- Current progress and key decisions made\n"
    "- Important context, constraints, or user preferences\n"
    "- What remains to be done (clear next steps)\n"
    "- Any critical data, examples, or references needed to continue\n\n"
    "Be concise, structured, and focused on helping the next LLM seamlessly continue the work."
)

CONTEXT_SUMMARY_PREFIX = (
    "Another language model started to solve this problem and produced a summary of its "
    "thinking process. Use this summary to continue the task without redoing completed work."
)


def _normalize_content(content: str) -> str:
    text = (content or "").replace("\r\n", "\n").strip()
    if len(text) > MAX_MESSAGE_CONTENT_CHARS:
        return text[:MAX_MESSAGE_CONTENT_CHARS] + "..."
    return text


def _header(index: int, message: ChatMessage) -> str:
    role = message.role.upper()
    if message.role == "assistant" and message.tool_calls:
        names = ", ".join(call.name for call in message.tool_calls)
        return f"[{index}] {role} (tool_calls: {names})"
    if message.role == "tool" and message.name:
        return f"[{index}] {role} ({message.name})"
    return f"[{index}] {role}"


def format_transcript(messages: Sequence[ChatMessage]) -> str:
    if not messages:
        return "(empty)"
    return "\n\n".join(
        f"{_header(index, message)}\n{_normalize_content(message.content)}"
        for index, message in enumerate(messages)
    )


def build_compaction_user_prompt(messages: Sequence[ChatMessage]) -> str:
    return "\n".join([
        "Conversation history to summarize:",
        format_transcript(messages),
        "",
        "Return only the summary body in plain text. Do not add markdown fences.",
    ])


def build_summary_message(summary: str) -> ChatMessage:
    return ChatMessage.user(f"{CONTEXT_SUMMARY_PREFIX}\n{summary}")


def is_context_summary_message(message: ChatMessage) -> bool:
    return message.role == "user" and (message.content or "").startswith(CONTEXT_SUMMARY_PREFIX + "\n")


@dataclass
class CompactionResult:
    compacted: bool
    history: List[ChatMessage]
    summary: Optional[str] = None
    error: Optional[str] = None
    messages_before: int = 0
    messages_after: int = 0


class SessionCompaction:
    """Compaction policy and execution."""

    @classmethod
    def usage_percent(cls, prompt_tokens: int, context_window: int) -> float:
        if context_window <= 0:
            return 0.0
        return prompt_tokens / context_window * 100

    @classmethod
    def threshold_tokens(cls, context_window: int, config: CompactionConfig) -> int:
        return int(context_window * config.threshold_percent / 100)

    @classmethod
    def should_compact(cls, prompt_tokens: int, context_window: int, config: CompactionConfig) -> bool:
        if not config.auto or context_window <= 0:
            return False
        return cls.usage_percent(prompt_tokens, context_window) >= config.threshold_percent

    @classmethod
    async def compact(
        cls,
        history: Sequence[ChatMessage],
        call_model: CallModel,
        *,
        model: str = "",
        profile: Optional[ModelProfile] = None,
    ) -> CompactionResult:
        """Summarize ``history`` after its system prompt.

        Failures leave history untouched and are reported in the result.
        """
        history = list(history)
        head: List[ChatMessage] = []
        body = history
        if history and history[0].role == "system":
            head, body = [history[0]], history[1:]

        if not body:
            return CompactionResult(compacted=False, history=history, error="Nothing to compact.",
                                    messages_before=len(history), messages_after=len(history))

        messages = [
            ChatMessage.system(CONTEXT_COMPACTION_SYSTEM_PROMPT),
            ChatMessage.user(build_compaction_user_prompt(body)),
        ]
        request = ModelRequest(
            messages=messages,
            payload=build_chat_request(model, messages, None, profile or ModelProfile()),
            purpose="compaction",
        )
        try:
            response = normalize_model_response(await call_model(request))
        except Exception as e:
            log.warn("compaction model call failed", {"error": e})
            return CompactionResult(compacted=False, history=history, error=format_error(e),
                                    messages_before=len(history), messages_after=len(history))

        summary = strip_think_blocks(response.content)
        if not summary:
            log.warn("compaction returned an empty summary")
            return CompactionResult(compacted=False, history=history, error="Empty summary.",
                                    messages_before=len(history), messages_after=len(history))

        compacted = [*head, build_summary_message(summary)]
        log.info("compacted", {"before": len(history), "after": len(compacted)})
        return CompactionResult(compacted=True, history=compacted, summary=summary,
                                messages_before=len(history), messages_after=len(compacted))
