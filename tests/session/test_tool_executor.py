import asyncio

import pytest

from tessera.core.config import ApprovalConfig, ApprovalMode
from tessera.permission import ApprovalCheck, ApprovalDecision, ApprovalGate, ApprovalOutcome
from tessera.session.message import Action, ResultStatus
from tessera.session.tool_executor import EMPTY_OUTPUT, ToolExecutor
from tessera.tool import Tool, ToolContext, ToolRegistry, ToolResult
from tests.helpers import NoteParams, read_note_tool, write_note_tool


def _executor(tools, *, mode=ApprovalMode.DANGEROUS, decision=ApprovalDecision.ONCE, max_result_chars=12_000):
    asked = []

    async def request_decision(action, request):
        asked.append(request)
        return decision

    executor = ToolExecutor(
        session_id="ses_test",
        registry=ToolRegistry(tools),
        gate=ApprovalGate(ApprovalConfig(mode=mode)),
        request_decision=request_decision,
        max_result_chars=max_result_chars,
    )
    return executor, asked


def _tool(name, execute, **kwargs):
    return Tool.define(name, name, NoteParams, execute, **kwargs)


@pytest.mark.anyio
async def test_parallel_batch_keeps_input_order() -> None:
    finished: list[str] = []
    slow = read_note_tool(finished, delay=0.05)
    executor, _ = _executor([slow])
    actions = [
        Action(id="c1", tool="read_note", input={"text": "first"}),
        Action(id="c2", tool="read_note", input={"text": "second"}),
    ]

    assert executor.can_parallelize(actions)
    observations = await executor.execute_batch(actions, turn=1, step=1, parallel=True)

    assert [o.action_id for o in observations] == ["c1", "c2"]
    assert [o.text for o in observations] == ["note: first", "note: second"]
    assert sorted(finished) == ["first", "second"]


@pytest.mark.anyio
async def test_parallel_batches_run_concurrently() -> None:
    order: list[str] = []

    async def execute(args: NoteParams, ctx: ToolContext) -> ToolResult:
        await asyncio.sleep(0.05 if args.text == "slow" else 0)
        order.append(args.text)
        return ToolResult.text(args.text)

    tool = _tool("read_timed", execute, supports_parallel=True, is_mutating=False)
    executor, _ = _executor([tool])
    actions = [
        Action(id="a", tool="read_timed", input={"text": "slow"}),
        Action(id="b", tool="read_timed", input={"text": "fast"}),
    ]

    observations = await executor.execute_batch(actions, turn=1, step=1, parallel=True)

    assert order == ["fast", "slow"]
    assert [o.text for o in observations] == ["slow", "fast"]


def test_mutating_or_unknown_tools_are_not_parallelized() -> None:
    executor, _ = _executor([read_note_tool(), write_note_tool()])

    mixed = [Action(id="1", tool="read_note", input={}), Action(id="2", tool="write_note", input={})]
    unknown = [Action(id="1", tool="read_note", input={}), Action(id="2", tool="nope", input={})]
    single = [Action(id="1", tool="read_note", input={})]

    assert not executor.can_parallelize(mixed)
    assert not executor.can_parallelize(unknown)
    assert not executor.can_parallelize(single)


@pytest.mark.anyio
async def test_invalid_input_is_reported_without_approval() -> None:
    executor, asked = _executor([write_note_tool()], mode=ApprovalMode.AUTO)

    observation = await executor.execute(Action(id="c", tool="write_note", input={"wrong": 1}), turn=1, step=1)

    assert observation.status == ResultStatus.ERROR
    assert "invalid arguments" in observation.text
    assert asked == []


@pytest.mark.anyio
async def test_json_string_input_is_decoded() -> None:
    executor, _ = _executor([read_note_tool()])

    observation = await executor.execute(Action(id="c", tool="read_note", input='{"text": "hi"}'), turn=1, step=1)

    assert observation.status == ResultStatus.SUCCESS
    assert observation.text == "note: hi"


@pytest.mark.anyio
async def test_tool_exception_becomes_error_observation() -> None:
    async def execute(args, ctx):
        raise OSError("disk gone")

    executor, _ = _executor([_tool("read_broken", execute)])

    observation = await executor.execute(Action(id="c", tool="read_broken", input={"text": "x"}), turn=1, step=1)

    assert observation.status == ResultStatus.ERROR
    assert observation.text == "Tool execution failed: disk gone"


@pytest.mark.anyio
async def test_error_results_empty_output_and_oversize() -> None:
    async def failing(args, ctx):
        return ToolResult.error("bad path")

    async def empty(args, ctx):
        return ToolResult.text("  ")

    async def huge(args, ctx):
        return ToolResult.text("x" * 50)

    executor, _ = _executor(
        [_tool("t_fail", failing), _tool("t_empty", empty), _tool("t_huge", huge)],
        max_result_chars=20,
    )

    failed = await executor.execute(Action(id="1", tool="t_fail", input={"text": ""}), turn=1, step=1)
    blank = await executor.execute(Action(id="2", tool="t_empty", input={"text": ""}), turn=1, step=1)
    big = await executor.execute(Action(id="3", tool="t_huge", input={"text": ""}), turn=1, step=1)

    assert failed.status == ResultStatus.ERROR
    assert failed.text == "bad path"
    assert blank.text == EMPTY_OUTPUT
    assert big.status == ResultStatus.SUCCESS
    assert "50 characters exceeds the 20-character limit" in big.text
    assert big.metadata["truncated"] is True


@pytest.mark.anyio
async def test_tool_context_carries_environment() -> None:
    contexts = []

    async def execute(args, ctx):
        contexts.append(ctx)
        return ToolResult.text("ok")

    executor, _ = _executor([_tool("read_ctx", execute)])
    executor.environment.cwd = "/work"

    await executor.execute(Action(id="call_9", tool="read_ctx", input={"text": ""}), turn=3, step=2)

    ctx = contexts[0]
    assert (ctx.session_id, ctx.call_id, ctx.turn, ctx.step) == ("ses_test", "call_9", 3, 2)
    assert ctx.environment.cwd == "/work"


@pytest.mark.anyio
async def test_halt_on_denial_skips_remaining_actions() -> None:
    executor, asked = _executor([write_note_tool()], mode=ApprovalMode.AUTO, decision=ApprovalDecision.DENY)
    actions = [
        Action(id="1", tool="write_note", input={"text": "a"}),
        Action(id="2", tool="write_note", input={"text": "b"}),
    ]

    observations = await executor.execute_batch(actions, turn=1, step=1, halt_on_denial=True)

    assert [o.status for o in observations] == [ResultStatus.DENIED, ResultStatus.CANCELLED]
    assert len(asked) == 1


@pytest.mark.anyio
async def test_approval_check_without_request_is_denied() -> None:
    class BrokenGate(ApprovalGate):
        def check(self, tool_name, params):
            return ApprovalCheck(outcome=ApprovalOutcome.REQUIRE_APPROVAL)

    ran: list[str] = []
    asked = []

    async def request_decision(action, request):
        asked.append(request)
        return ApprovalDecision.ONCE

    executor = ToolExecutor(
        session_id="ses_test",
        registry=ToolRegistry([write_note_tool(ran)]),
        gate=BrokenGate(),
        request_decision=request_decision,
    )

    observation = await executor.execute(Action(id="c1", tool="write_note", input={"text": "x"}), turn=1, step=1)

    assert observation.status == ResultStatus.DENIED
    assert asked == []
    assert ran == []
