"""Repetition detection for consecutive identical tool calls."""

from __future__ import annotations

from typing import Any, List, Optional

from ..util.serialize import stable_stringify

LOOP_WARNING = (
    "Warning: you have called `{tool}` with identical arguments {count} times in a row "
    "without making progress. Do not repeat this call. Use the results you already have, "
    "try a different approach, or give your final answer."
)


class RepetitionGuard:
    """Track consecutive identical invocations.

    ``record`` returns a warning text when the same tool/argument signature
    has been seen exactly ``threshold`` times in a row, so a streak warns
    once. A different call or a final answer resets the streak.
    """

    def __init__(self, *, threshold: int = 3, window: int = 50) -> None:
        self.threshold = threshold
        self.window = window
        self.signatures: List[str] = []
        self._count = 0

    @staticmethod
    def signature(tool_name: str, tool_input: Any) -> str:
        return f"{tool_name}:{stable_stringify(tool_input)}"

    def record(self, tool_name: str, tool_input: Any) -> Optional[str]:
        signature = self.signature(tool_name, tool_input)
        if self.signatures and self.signatures[-1] != signature:
            self.signatures.clear()
            self._count = 0
        self.signatures.append(signature)
        self._count += 1
        if len(self.signatures) > self.window:
            self.signatures[:] = self.signatures[-self.window:]

        if self._count != self.threshold:
            return None
        return LOOP_WARNING.format(tool=tool_name, count=self.threshold)

    @property
    def streak(self) -> int:
        return len(self.signatures)

    def reset(self) -> None:
        self.signatures.clear()
        self._count = 0
