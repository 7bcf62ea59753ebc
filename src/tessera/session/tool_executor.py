"""Tool dispatch through the approval gate.

Every action is resolved against the registry, validated by the tool,
checked by the gate, executed, and turned into an ``Observation``. No
exception from a tool escapes: failures become ``error`` observations that
are fed back to the model.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..core.config import DEFAULT_MAX_TOOL_RESULT_CHARS, EnvironmentConfig
from ..permission import (
    ApprovalCancelledError,
    ApprovalDecision,
    ApprovalGate,
    ApprovalOutcome,
    ApprovalRequest,
    denied_observation_text,
)
from ..tool import ToolContext, ToolRegistry
from ..tool.tool import ToolInputError
from ..util.error import format_error
from ..util.log import Log
from .message import Action, Observation, ResultStatus

log = Log.create({"service": "session.tool_executor"})

EMPTY_OUTPUT = "(no tool output)"
CANCELLED_OUTPUT = "Tool execution cancelled."

DecisionProvider = Callable[[Action, ApprovalRequest], Awaitable[ApprovalDecision]]


def oversize_notice(tool_name: str, size: int, limit: int) -> str:
    return (
        f"[Output of {tool_name} omitted: {size} characters exceeds the {limit}-character limit. "
        "Request a smaller slice (narrower range, more specific pattern) and try again.]"
    )


def skipped_after_denial_text(tool_name: str) -> str:
    return f"Skipped tool execution after previous rejection. {tool_name}"


def cancelled_observation(action: Action) -> Observation:
    return Observation(
        action_id=action.id,
        tool=action.tool,
        status=ResultStatus.CANCELLED,
        text=CANCELLED_OUTPUT,
    )


def _decode_input(tool_input: Any) -> Any:
    if isinstance(tool_input, str):
        text = tool_input.strip()
        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return tool_input
    return tool_input


class ToolExecutor:
    """Runs the actions of one step, serially or as a parallel batch."""

    def __init__(
        self,
        *,
        session_id: str,
        registry: ToolRegistry,
        gate: ApprovalGate,
        request_decision: DecisionProvider,
        environment: Optional[EnvironmentConfig] = None,
        max_result_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS,
    ) -> None:
        self.session_id = session_id
        self.registry = registry
        self.gate = gate
        self.request_decision = request_decision
        self.environment = environment or EnvironmentConfig()
        self.max_result_chars = max_result_chars

    def can_parallelize(self, actions: Sequence[Action]) -> bool:
        """True when every tool in the batch is known, parallel-safe and read-only."""
        if len(actions) < 2:
            return False
        for action in actions:
            tool = self.registry.get(action.tool)
            if tool is None or not tool.supports_parallel or tool.is_mutating:
                return False
        return True

    async def execute_batch(
        self,
        actions: Sequence[Action],
        *,
        turn: int,
        step: int,
        parallel: bool = False,
        halt_on_denial: bool = False,
        results: Optional[Dict[str, Observation]] = None,
    ) -> List[Observation]:
        """Execute ``actions`` and return observations in input order.

        ``results`` is filled as each action completes, so a caller that is
        cancelled mid-batch can still see what finished.
        """
        collected = results if results is not None else {}

        if parallel and len(actions) > 1:
            async def run(action: Action) -> None:
                collected[action.id] = await self.execute(action, turn=turn, step=step)

            await asyncio.gather(*(run(action) for action in actions))
        else:
            halted = False
            for action in actions:
                if halted:
                    collected[action.id] = Observation(
                        action_id=action.id,
                        tool=action.tool,
                        status=ResultStatus.CANCELLED,
                        text=skipped_after_denial_text(action.tool),
                    )
                    continue
                observation = await self.execute(action, turn=turn, step=step)
                collected[action.id] = observation
                if halt_on_denial and observation.status == ResultStatus.DENIED:
                    halted = True

        return [collected[action.id] for action in actions]

    async def _authorize(self, action: Action, tool_input: Any) -> Optional[Observation]:
        """None when the action may run, otherwise the observation to record."""
        check = self.gate.check(action.tool, tool_input)
        if check.outcome == ApprovalOutcome.ALLOW:
            return None
        if check.outcome == ApprovalOutcome.DENY:
            log.info("tool denied by policy", {"tool": action.tool, "reason": check.reason})
            return Observation(
                action_id=action.id,
                tool=action.tool,
                status=ResultStatus.DENIED,
                text=check.reason or denied_observation_text(action.tool),
            )

        if check.request is None:
            log.warn("approval required without a request, denying", {"tool": action.tool})
            return Observation(
                action_id=action.id,
                tool=action.tool,
                status=ResultStatus.DENIED,
                text=check.reason or denied_observation_text(action.tool),
            )
        try:
            decision = await self.request_decision(action, check.request)
        except ApprovalCancelledError:
            return cancelled_observation(action)
        if decision == ApprovalDecision.DENY:
            log.info("tool denied by user", {"tool": action.tool})
            return Observation(
                action_id=action.id,
                tool=action.tool,
                status=ResultStatus.DENIED,
                text=denied_observation_text(action.tool),
                metadata={"fingerprint": check.request.fingerprint},
            )
        return None

    async def execute(self, action: Action, *, turn: int, step: int) -> Observation:
        started = time.monotonic()
        tool_input = _decode_input(action.input)

        def observation(status: ResultStatus, text: str, metadata: Optional[Dict[str, Any]] = None) -> Observation:
            return Observation(
                action_id=action.id,
                tool=action.tool,
                status=status,
                text=text,
                duration_ms=int((time.monotonic() - started) * 1000),
                metadata=metadata or {},
            )

        tool = self.registry.get(action.tool)
        if tool is None:
            return observation(ResultStatus.ERROR, f"Unknown tool: {action.tool}")

        try:
            args = tool.validate(tool_input)
        except ToolInputError as e:
            return observation(ResultStatus.ERROR, str(e))

        blocked = await self._authorize(action, tool_input)
        if blocked is not None:
            return blocked

        ctx = ToolContext(
            session_id=self.session_id,
            call_id=action.id,
            turn=turn,
            step=step,
            environment=self.environment,
        )
        try:
            result = await tool.execute(args, ctx)
        except asyncio.CancelledError:
            ctx.abort()
            raise
        except Exception as e:
            log.error("tool execution error", {"tool": action.tool, "error": e})
            return observation(ResultStatus.ERROR, f"Tool execution failed: {format_error(e)}")

        output = result.output
        metadata = dict(result.metadata or {})
        if result.title:
            metadata["title"] = result.title
        if len(output) > self.max_result_chars:
            metadata.update(truncated=True, original_chars=len(output))
            output = oversize_notice(action.tool, len(output), self.max_result_chars)
        if not output.strip():
            output = EMPTY_OUTPUT

        status = ResultStatus.ERROR if result.is_error else ResultStatus.SUCCESS
        log.info("tool executed", {"tool": action.tool, "status": status.value})
        return observation(status, output, metadata)
