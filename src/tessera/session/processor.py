"""Agent session: the per-session turn/step state machine.

    Idle -> TurnRunning -> (StepRunning <-> AwaitingApproval) -> Idle
    any state -> Closed

A turn appends the user input, then loops model steps. Each step either
executes the actions the model asked for (results go back into history in
input order) or ends the turn with a final answer. The loop is bounded by
``max_steps``; hitting the bound yields a fallback answer with status
``ok`` so a turn always resolves.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..core.bus import Bus, BusEvent
from ..core.config import DEFAULT_CONTEXT_WINDOW, ApprovalMode, SessionOptions
from ..core.id import Identifier
from ..permission import TOOLS_DISABLED_REASON, ApprovalDecision, ApprovalGate, ApprovalRequest
from ..provider.model_profile import build_chat_request, resolve_model_profile
from ..tool import ToolRegistry
from ..util.error import format_error
from ..util.log import Log
from . import events
from .compaction import CompactionResult, SessionCompaction
from .doom_loop import RepetitionGuard
from .errors import ConcurrentTurnNotAllowed, SessionBusyError, SessionClosedError
from .history import HistoryEmitter, HistoryEventType, create_history_event
from .hooks import (
    ActionEvent,
    ApprovalEvent,
    FinalEvent,
    HookRunner,
    ObservationEvent,
    TurnStartEvent,
    snapshot_history,
)
from .llm import CallModel, ModelRequest, ModelResponse, normalize_model_response
from .message import (
    Action,
    ChatMessage,
    Observation,
    ParsedAssistant,
    ResultStatus,
    TokenUsage,
    ToolCall,
    TurnResult,
    TurnStatus,
    UsageReport,
)
from .parser import ActionParser, build_thinking, extract_thinking
from .token_counter import TokenCounter
from .tool_executor import ToolExecutor, cancelled_observation

log = Log.create({"service": "session.processor"})

FALLBACK_FINAL_TEXT = (
    "I reached the step limit for this turn before producing a final answer. "
    "Please refine the request or ask me to continue."
)
NO_ANSWER_TEXT = "Unable to produce a final answer. Please retry or adjust the request."
CANCELLED_MESSAGE = "Turn cancelled."
DENIED_MESSAGE = "Tool execution was denied."
TOOLS_DISABLED_MESSAGE = "Tool usage is disabled in the current permission mode."

ApprovalHandler = Callable[[ApprovalRequest], Union[Any, Awaitable[Any]]]


class SessionState(str, Enum):
    IDLE = "idle"
    TURN_RUNNING = "turn_running"
    STEP_RUNNING = "step_running"
    AWAITING_APPROVAL = "awaiting_approval"
    CLOSED = "closed"


_STATUS = {
    SessionState.IDLE: "idle",
    SessionState.TURN_RUNNING: "running",
    SessionState.STEP_RUNNING: "running",
    SessionState.AWAITING_APPROVAL: "awaiting_approval",
    SessionState.CLOSED: "closed",
}


def _arguments_json(tool_input: Any) -> str:
    if isinstance(tool_input, str):
        return tool_input
    return json.dumps(tool_input, ensure_ascii=False, default=str)


class AgentSession:
    """Owns history, counters and usage for one conversation."""

    def __init__(
        self,
        *,
        call_model: CallModel,
        system_prompt: str,
        options: Optional[SessionOptions] = None,
        tools: Optional[ToolRegistry] = None,
        hooks: Optional[HookRunner] = None,
        history: Optional[HistoryEmitter] = None,
        bus: Optional[Bus] = None,
        token_counter: Optional[TokenCounter] = None,
        approval_handler: Optional[ApprovalHandler] = None,
        parser: Optional[ActionParser] = None,
    ) -> None:
        self.options = options or SessionOptions()
        self.session_id = self.options.session_id or Identifier.ascending("session")
        self.call_model = call_model
        self.tools = tools or ToolRegistry()
        self.hooks = hooks or HookRunner()
        self.emitter = history or HistoryEmitter()
        self.bus = bus
        self.counter = token_counter or TokenCounter(self.options.tokenizer_model or self.options.model or None)
        self.approval_handler = approval_handler
        self.parser = parser or ActionParser()

        resolved = resolve_model_profile(self.options.provider, self.options.model, self.options.model_profiles)
        self.profile = resolved.profile
        if resolved.warning:
            log.warn(resolved.warning, {"session": self.session_id})
        self.context_window = (
            self.options.context_window or self.profile.context_window or DEFAULT_CONTEXT_WINDOW
        )

        self.gate = ApprovalGate(self.options.approval)
        self.guard = RepetitionGuard(threshold=self.options.repetition_threshold)
        self.executor = ToolExecutor(
            session_id=self.session_id,
            registry=self.tools,
            gate=self.gate,
            request_decision=self._request_decision,
            environment=self.options.environment,
            max_result_chars=self.options.max_tool_result_chars,
        )

        self._history: List[ChatMessage] = [ChatMessage.system(system_prompt)]
        self._usage = TokenUsage()
        self._turn = 0
        self._step = 0
        self._state = SessionState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._started = False
        self._awaiting = 0
        self._last_reported_prompt: Optional[int] = None
        self._pending_actions: List[Action] = []
        self._step_results: Dict[str, Observation] = {}

    # -- accessors ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> List[ChatMessage]:
        """Defensive copy of the conversation."""
        return snapshot_history(self._history)

    @property
    def usage(self) -> TokenUsage:
        return self._usage.model_copy()

    @property
    def turn(self) -> int:
        return self._turn

    @property
    def closed(self) -> bool:
        return self._state == SessionState.CLOSED

    @property
    def tools_disabled(self) -> bool:
        return self.gate.mode == ApprovalMode.DISABLED

    def pending_approvals(self) -> List[ApprovalRequest]:
        return self.gate.pending()

    def respond_approval(self, fingerprint: str, decision: Any) -> bool:
        """Deliver an external decision for a pending approval request."""
        return self.gate.respond(fingerprint, decision)

    # -- plumbing ----------------------------------------------------------

    async def _publish(self, event: BusEvent, payload: Dict[str, Any]) -> None:
        if self.bus is None:
            return
        await self.bus.publish(event, {"session_id": self.session_id, **payload})

    async def _record(self, type: HistoryEventType, **fields: Any) -> None:
        await self.emitter.emit(create_history_event(self.session_id, type, **fields))

    async def _set_state(self, state: SessionState) -> None:
        previous = self._state
        self._state = state
        if _STATUS[previous] != _STATUS[state]:
            await self._publish(events.SessionStatus, {"status": _STATUS[state]})

    async def _ensure_started(self) -> None:
        if self._started:
            return
        self._started = True
        await self._record(
            "session_start",
            meta={
                "provider": self.options.provider,
                "model": self.options.model,
                "profile": self.profile.model_dump(),
                "context_window": self.context_window,
            },
        )

    def _tool_definitions(self) -> List[Dict[str, Any]]:
        if self.tools_disabled:
            return []
        return self.tools.definitions()

    def _estimate_prompt(self) -> int:
        return self.counter.count_messages(self._history) + self.counter.count_tools(self._tool_definitions())

    async def _publish_context_usage(self, turn: int, step: int, phase: str, prompt_tokens: int) -> None:
        await self._publish(events.ContextUsage, {
            "turn": turn,
            "step": step,
            "phase": phase,
            "prompt_tokens": prompt_tokens,
            "context_window": self.context_window,
            "threshold_tokens": SessionCompaction.threshold_tokens(self.context_window, self.options.compaction),
            "usage_percent": round(SessionCompaction.usage_percent(prompt_tokens, self.context_window), 2),
        })

    # -- public API --------------------------------------------------------

    async def run_turn(self, user_input: str) -> TurnResult:
        """Run one turn to completion.

        Raises ``ConcurrentTurnNotAllowed`` while another turn (or an
        explicit compaction) is in flight and ``SessionClosedError`` after
        ``close``.
        """
        if self._state == SessionState.CLOSED:
            raise SessionClosedError(self.session_id)
        if self._state != SessionState.IDLE:
            raise ConcurrentTurnNotAllowed(self.session_id)

        self._state = SessionState.TURN_RUNNING
        self._turn += 1
        turn = self._turn
        task = asyncio.ensure_future(self._run_turn(turn, user_input))
        self._task = task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                # cancel() landed before the turn body started running
                return TurnResult(
                    final_text="",
                    status=TurnStatus.CANCELLED,
                    error_message=CANCELLED_MESSAGE,
                    turn=turn,
                )
            # The caller itself was cancelled: settle the turn, then propagate.
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            self._task = None
            if self._state != SessionState.CLOSED:
                await self._set_state(SessionState.IDLE)

    def cancel(self) -> bool:
        """Cancel the in-flight turn. Returns False when there is none."""
        task = self._task
        if task is None or task.done():
            return False
        log.info("cancelling turn", {"session": self.session_id, "turn": self._turn})
        task.cancel()
        return True

    async def compact(self) -> CompactionResult:
        """Compact history now. Only allowed while idle."""
        if self._state == SessionState.CLOSED:
            raise SessionClosedError(self.session_id)
        if self._state != SessionState.IDLE:
            raise SessionBusyError(self.session_id, "compact")
        self._state = SessionState.TURN_RUNNING
        try:
            await self._ensure_started()
            return await self._compact(self._turn, self._step, reason="manual")
        finally:
            if self._state != SessionState.CLOSED:
                self._state = SessionState.IDLE

    async def close(self) -> None:
        """Cancel any running turn, flush and close sinks. Idempotent."""
        if self._state == SessionState.CLOSED:
            return
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self.gate.clear()
        await self._ensure_started()
        await self._record("session_end", meta={"usage": self._usage.model_dump(), "turns": self._turn})
        await self.emitter.close()
        self.counter.close()
        await self._set_state(SessionState.CLOSED)
        log.info("session closed", {"session": self.session_id})

    # -- turn loop ---------------------------------------------------------

    async def _run_turn(self, turn: int, user_input: str) -> TurnResult:
        turn_usage = TokenUsage()
        step = 0
        try:
            await self._ensure_started()
            await self._publish(events.SessionStatus, {"status": "running"})
            self.guard.reset()
            self._history.append(ChatMessage.user(user_input))
            await self._record("turn_start", turn=turn, content=user_input, role="user")

            prompt_tokens = self._estimate_prompt()
            await self._publish(events.TurnStart, {"turn": turn, "input": user_input, "prompt_tokens": prompt_tokens})
            await self._publish_context_usage(turn, 0, "turn_start", prompt_tokens)
            await self.hooks.run("turn_start", TurnStartEvent(
                session_id=self.session_id,
                turn=turn,
                input=user_input,
                history=snapshot_history(self._history),
            ))

            while step < self.options.max_steps:
                step += 1
                self._step = step
                await self._set_state(SessionState.STEP_RUNNING)
                await self._maybe_auto_compact(turn, step)

                try:
                    response = await self._call_model(turn, step)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    message = f"LLM call failed: {format_error(e)}"
                    log.error("model call failed", {"session": self.session_id, "turn": turn, "error": e})
                    await self._publish(events.SessionErrorEvent, {"code": "llm_call_failed", "message": message})
                    return await self._finish(turn, step, "", TurnStatus.ERROR, turn_usage, error_message=message)

                usage = self._usage_for(response)
                turn_usage = turn_usage.accumulate(usage)
                self._usage = self._usage.accumulate(usage)
                self._last_reported_prompt = usage.prompt

                parsed = self._parse(response)
                await self._record(
                    "assistant",
                    turn=turn,
                    step=step,
                    content=response.content,
                    role="assistant",
                    meta={"thinking": parsed.thinking, "actions": len(parsed.actions)},
                )

                if parsed.actions and self.tools_disabled:
                    return await self._refuse_actions(turn, step, response, parsed, turn_usage)

                if parsed.actions:
                    stop = await self._run_actions(turn, step, response, parsed)
                    if stop:
                        return await self._finish(
                            turn, step, "", TurnStatus.CANCELLED, turn_usage, error_message=DENIED_MESSAGE
                        )
                    continue

                final_text = parsed.final if parsed.final is not None else parsed.text
                self.guard.reset()
                if not final_text.strip():
                    return await self._finish(
                        turn, step, NO_ANSWER_TEXT, TurnStatus.ERROR, turn_usage,
                        error_message="Model returned an empty response.",
                    )
                self._history.append(ChatMessage.assistant(
                    response.content, reasoning_content=response.reasoning_content,
                ))
                return await self._finish(turn, step, final_text, TurnStatus.OK, turn_usage)

            log.warn("step limit reached", {"session": self.session_id, "turn": turn, "steps": step})
            self._history.append(ChatMessage.assistant(FALLBACK_FINAL_TEXT))
            return await self._finish(turn, step, FALLBACK_FINAL_TEXT, TurnStatus.OK, turn_usage, degraded=True)

        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and hasattr(current, "uncancel"):
                current.uncancel()
            return await self._finish_cancelled(turn, step, turn_usage)

    def _usage_for(self, response: ModelResponse) -> UsageReport:
        if response.usage is not None:
            return response.usage
        return UsageReport(
            prompt=self._estimate_prompt(),
            completion=self.counter.count_text(response.content),
        )

    def _parse(self, response: ModelResponse) -> ParsedAssistant:
        if response.tool_calls:
            thinking, text = extract_thinking(response.content)
            actions = [
                Action(id=call.id or Identifier.ascending("call"), tool=call.name, input=call.input)
                for call in response.tool_calls
            ]
            return ParsedAssistant(
                thinking=build_thinking([response.reasoning_content, thinking]),
                actions=actions,
                text=text,
            )

        parsed = self.parser.parse(response.content)
        if parsed.actions:
            parsed.actions = [
                action if action.id else action.model_copy(update={"id": Identifier.ascending("call")})
                for action in parsed.actions
            ]
            parsed.final = None
        if response.reasoning_content:
            parsed.thinking = build_thinking([response.reasoning_content, parsed.thinking])
        return parsed

    async def _call_model(self, turn: int, step: int) -> ModelResponse:
        tools = self._tool_definitions()
        payload = build_chat_request(
            self.options.model,
            self._history,
            tools,
            self.profile,
            verbosity=self.options.verbosity,
        )

        async def on_chunk(chunk: str) -> None:
            await self._publish(events.AssistantChunk, {"turn": turn, "step": step, "chunk": chunk})

        request = ModelRequest(
            messages=snapshot_history(self._history),
            tools=tools,
            payload=payload,
            on_chunk=on_chunk,
        )
        return normalize_model_response(await self.call_model(request))

    async def _refuse_actions(
        self,
        turn: int,
        step: int,
        response: ModelResponse,
        parsed: ParsedAssistant,
        turn_usage: TokenUsage,
    ) -> TurnResult:
        actions = parsed.actions
        self._history.append(ChatMessage.assistant(
            response.content,
            tool_calls=[ToolCall(id=a.id, name=a.tool, arguments=_arguments_json(a.input)) for a in actions],
            reasoning_content=response.reasoning_content,
        ))
        for action in actions:
            self._history.append(ChatMessage.tool(action.id, action.tool, TOOLS_DISABLED_REASON))
        self._history.append(ChatMessage.assistant(TOOLS_DISABLED_MESSAGE))

        tool_names = ",".join(action.tool for action in actions)
        log.warn("model requested tools while tools are disabled", {
            "session": self.session_id,
            "turn": turn,
            "tools": tool_names,
        })
        await self._publish(events.SessionErrorEvent, {"code": "tool_disabled", "message": TOOLS_DISABLED_MESSAGE})
        return await self._finish(
            turn, step, TOOLS_DISABLED_MESSAGE, TurnStatus.ERROR, turn_usage,
            error_message=TOOLS_DISABLED_MESSAGE,
        )

    async def _run_actions(
        self,
        turn: int,
        step: int,
        response: ModelResponse,
        parsed: ParsedAssistant,
    ) -> bool:
        """Execute one step's actions. Returns True when the turn must stop."""
        actions = parsed.actions
        self._history.append(ChatMessage.assistant(
            response.content,
            tool_calls=[ToolCall(id=a.id, name=a.tool, arguments=_arguments_json(a.input)) for a in actions],
            reasoning_content=response.reasoning_content,
        ))
        self._pending_actions = list(actions)
        self._step_results = {}

        warnings: List[str] = []
        for action in actions:
            warning = self.guard.record(action.tool, action.input)
            if warning and warning not in warnings:
                warnings.append(warning)
            await self._record(
                "action",
                turn=turn,
                step=step,
                content=action.tool,
                meta={"id": action.id, "input": action.input},
            )
            await self.hooks.run("action", ActionEvent(
                session_id=self.session_id,
                turn=turn,
                step=step,
                action=action.model_copy(deep=True),
                batch_size=len(actions),
                thinking=parsed.thinking,
                history=snapshot_history(self._history),
            ))

        action_dicts = [action.model_dump() for action in actions]
        await self._publish(events.ToolAction, {
            "turn": turn,
            "step": step,
            "action": action_dicts[0],
            "parallel_actions": action_dicts if len(actions) > 1 else [],
            "thinking": parsed.thinking,
        })

        parallel = (
            self.options.parallel_tool_calls
            and self.profile.supports_parallel_tool_calls
            and self.executor.can_parallelize(actions)
        )
        observations = await self.executor.execute_batch(
            actions,
            turn=turn,
            step=step,
            parallel=parallel,
            halt_on_denial=self.options.stop_on_denial,
            results=self._step_results,
        )
        await self._record_observations(turn, step, actions, observations)

        for warning in warnings:
            log.warn("repeated tool call", {"session": self.session_id, "turn": turn, "step": step})
            self._history.append(ChatMessage.system(warning))
            await self._record("system_hint", turn=turn, step=step, content=warning, role="system")
            await self._publish(events.SystemMessage, {
                "title": "Repeated tool call",
                "content": warning,
                "tone": "warning",
            })

        return self.options.stop_on_denial and any(o.status == ResultStatus.DENIED for o in observations)

    async def _record_observations(
        self,
        turn: int,
        step: int,
        actions: Sequence[Action],
        observations: Sequence[Observation],
    ) -> None:
        for observation in observations:
            self._history.append(observation.to_message())
        self._pending_actions = []
        self._step_results = {}

        for action, observation in zip(actions, observations):
            await self._record(
                "observation",
                turn=turn,
                step=step,
                content=observation.text,
                role="tool",
                meta={
                    "id": observation.action_id,
                    "tool": observation.tool,
                    "status": observation.status.value,
                    "duration_ms": observation.duration_ms,
                },
            )
            await self.hooks.run("observation", ObservationEvent(
                session_id=self.session_id,
                turn=turn,
                step=step,
                action=action.model_copy(deep=True),
                observation=observation.model_copy(deep=True),
                history=snapshot_history(self._history),
            ))

        if observations:
            await self._publish(events.ToolObservation, {
                "turn": turn,
                "step": step,
                "observation": observations[0].text,
                "result_status": observations[0].status.value,
                "parallel_result_statuses": (
                    [o.status.value for o in observations] if len(observations) > 1 else []
                ),
            })

    async def _request_decision(self, action: Action, request: ApprovalRequest) -> ApprovalDecision:
        self._awaiting += 1
        await self._set_state(SessionState.AWAITING_APPROVAL)
        try:
            await self._publish(events.ApprovalRequested, {
                "fingerprint": request.fingerprint,
                "tool_name": request.tool_name,
                "reason": request.reason,
                "risk_level": request.risk_level.value,
                "params": request.params,
            })
            await self.hooks.run("approval_request", ApprovalEvent(
                session_id=self.session_id,
                turn=self._turn,
                step=self._step,
                request=request.model_copy(deep=True),
            ))

            if self.approval_handler is not None:
                try:
                    raw = self.approval_handler(request)
                    if inspect.isawaitable(raw):
                        raw = await raw
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    log.error("approval handler failed, denying", {"tool": request.tool_name, "error": e})
                    raw = ApprovalDecision.DENY
            else:
                raw = await self.gate.wait_for_decision(request)

            decision = self.gate.record(request.fingerprint, raw)
            await self.hooks.run("approval_response", ApprovalEvent(
                session_id=self.session_id,
                turn=self._turn,
                step=self._step,
                request=request.model_copy(deep=True),
                decision=decision.value,
            ))
            return decision
        finally:
            self._awaiting -= 1
            if self._awaiting == 0 and self._state == SessionState.AWAITING_APPROVAL:
                await self._set_state(SessionState.STEP_RUNNING)

    async def _maybe_auto_compact(self, turn: int, step: int) -> None:
        estimated = self._estimate_prompt()
        config = self.options.compaction
        signal = estimated
        if config.basis == "reported" and self._last_reported_prompt is not None:
            signal = self._last_reported_prompt
        await self._publish_context_usage(turn, step, "step_start", signal)

        if len(self._history) <= 2:
            return
        if SessionCompaction.should_compact(signal, self.context_window, config):
            log.info("auto compaction triggered", {
                "session": self.session_id,
                "prompt_tokens": signal,
                "context_window": self.context_window,
            })
            await self._compact(turn, step, reason="auto")

    async def _compact(self, turn: int, step: int, *, reason: str) -> CompactionResult:
        result = await SessionCompaction.compact(
            self._history,
            self.call_model,
            model=self.options.model,
            profile=self.profile,
        )
        if not result.compacted:
            await self._publish(events.SystemMessage, {
                "title": "Compaction skipped",
                "content": result.error or "Compaction did not produce a summary.",
                "tone": "warning",
            })
            return result

        self._history = result.history
        self._last_reported_prompt = None
        await self._record(
            "context_compacted",
            turn=turn,
            step=step,
            content=result.summary,
            role="user",
            meta={"reason": reason, "before": result.messages_before, "after": result.messages_after},
        )
        await self._publish(events.SystemMessage, {
            "title": "Context compacted",
            "content": f"Summarized {result.messages_before} messages into {result.messages_after}.",
            "tone": "info",
        })
        await self._publish_context_usage(turn, step, "post_compact", self._estimate_prompt())
        return result

    async def _finish_cancelled(self, turn: int, step: int, turn_usage: TokenUsage) -> TurnResult:
        if self._pending_actions:
            actions = self._pending_actions
            observations = [self._step_results.get(a.id) or cancelled_observation(a) for a in actions]
            await self._record_observations(turn, step, actions, observations)
        self.gate.cancel_pending()
        log.info("turn cancelled", {"session": self.session_id, "turn": turn, "step": step})
        return await self._finish(turn, step, "", TurnStatus.CANCELLED, turn_usage, error_message=CANCELLED_MESSAGE)

    async def _finish(
        self,
        turn: int,
        step: int,
        final_text: str,
        status: TurnStatus,
        turn_usage: TokenUsage,
        *,
        error_message: Optional[str] = None,
        degraded: bool = False,
    ) -> TurnResult:
        result = TurnResult(
            final_text=final_text,
            status=status,
            error_message=error_message,
            usage=turn_usage,
            turn=turn,
            steps=step,
        )
        await self._record(
            "final",
            turn=turn,
            step=step,
            content=final_text,
            role="assistant",
            meta={"status": status.value, "error": error_message, "degraded": degraded},
        )
        await self._publish(events.TurnFinal, {
            "turn": turn,
            "step": step,
            "final_text": final_text,
            "status": status.value,
            "error_message": error_message,
            "turn_usage": turn_usage,
            "token_usage": self._usage,
        })
        await self.hooks.run("final", FinalEvent(
            session_id=self.session_id,
            turn=turn,
            step=step,
            result=result.model_copy(deep=True),
            history=snapshot_history(self._history),
        ))
        await self._record("turn_end", turn=turn, step=step, meta={
            "status": status.value,
            "usage": turn_usage.model_dump(),
            "total_usage": self._usage.model_dump(),
        })
        return result
