import asyncio

import pytest

from tessera.core.config import ApprovalConfig, ApprovalMode, SessionOptions
from tessera.permission import ApprovalDecision
from tessera.session import AgentHooks, create_session
from tessera.session.message import TurnStatus
from tessera.session.processor import DENIED_MESSAGE, TOOLS_DISABLED_MESSAGE, SessionState
from tests.helpers import ScriptedModel, final, read_note_tool, tool_call, word_counter, write_note_tool


def _session(model, *, tools, approval=None, stop_on_denial=False, **kwargs):
    return create_session(
        model,
        system_prompt="system",
        options=SessionOptions(
            provider="test",
            model="stub",
            approval=approval or ApprovalConfig(),
            stop_on_denial=stop_on_denial,
        ),
        tools=tools,
        token_counter=word_counter(),
        **kwargs,
    )


def _tool_messages(session):
    return [m for m in session.history if m.role == "tool"]


@pytest.mark.anyio
async def test_once_approval_is_not_remembered() -> None:
    executed: list[str] = []
    requests = []

    def handler(request):
        requests.append(request)
        return "once"

    write = tool_call("write_note", {"text": "x"})
    model = ScriptedModel([write, final("a"), write, final("b")])
    session = _session(model, tools=[write_note_tool(executed)], approval_handler=handler)

    await session.run_turn("first")
    await session.run_turn("second")

    assert executed == ["x", "x"]
    assert len(requests) == 2
    assert requests[0].tool_name == "write_note"
    assert requests[0].risk_level.value == "write"


@pytest.mark.anyio
async def test_session_approval_is_remembered_across_turns() -> None:
    executed: list[str] = []
    requests = []

    async def handler(request):
        requests.append(request)
        return ApprovalDecision.SESSION

    write = tool_call("write_note", {"text": "x"})
    model = ScriptedModel([write, final("a"), write, final("b")])
    session = _session(model, tools=[write_note_tool(executed)], approval_handler=handler)

    await session.run_turn("first")
    await session.run_turn("second")

    assert executed == ["x", "x"]
    assert len(requests) == 1


@pytest.mark.anyio
async def test_session_approval_is_scoped_to_parameters() -> None:
    requests = []

    def handler(request):
        requests.append(request)
        return "session"

    model = ScriptedModel([
        tool_call("write_note", {"text": "x"}),
        tool_call("write_note", {"text": "y"}),
        final("done"),
    ])
    session = _session(model, tools=[write_note_tool()], approval_handler=handler)

    await session.run_turn("go")

    assert len(requests) == 2
    assert requests[0].fingerprint != requests[1].fingerprint


@pytest.mark.anyio
async def test_denied_action_is_fed_back_and_turn_continues() -> None:
    executed: list[str] = []
    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("understood")])
    session = _session(model, tools=[write_note_tool(executed)], approval_handler=lambda r: "deny")

    result = await session.run_turn("go")

    assert result.status == TurnStatus.OK
    assert result.final_text == "understood"
    assert executed == []
    assert _tool_messages(session)[0].content == "User denied tool execution: write_note"


@pytest.mark.anyio
async def test_stop_on_denial_ends_turn() -> None:
    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("never")])
    session = _session(
        model,
        tools=[write_note_tool()],
        approval_handler=lambda r: "deny",
        stop_on_denial=True,
    )

    result = await session.run_turn("go")

    assert result.status == TurnStatus.CANCELLED
    assert result.error_message == DENIED_MESSAGE
    assert len(model.requests) == 1


@pytest.mark.anyio
async def test_stop_on_denial_skips_rest_of_batch() -> None:
    executed: list[str] = []
    model = ScriptedModel([
        '[{"tool": "write_note", "input": {"text": "a"}}, {"tool": "write_note", "input": {"text": "b"}}]',
    ])
    session = _session(
        model,
        tools=[write_note_tool(executed)],
        approval_handler=lambda r: "deny",
        stop_on_denial=True,
    )

    await session.run_turn("go")

    contents = [m.content for m in _tool_messages(session)]
    assert contents[0] == "User denied tool execution: write_note"
    assert contents[1].startswith("Skipped tool execution after previous rejection.")
    assert executed == []


@pytest.mark.anyio
async def test_invalid_or_failing_handler_denies() -> None:
    executed: list[str] = []

    def broken(request):
        raise RuntimeError("ui went away")

    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("ok")])
    session = _session(model, tools=[write_note_tool(executed)], approval_handler=broken)
    await session.run_turn("go")
    assert executed == []

    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("ok")])
    session = _session(model, tools=[write_note_tool(executed)], approval_handler=lambda r: "maybe")
    await session.run_turn("go")
    assert executed == []


@pytest.mark.anyio
async def test_external_response_resolves_pending_request(bus, bus_events) -> None:
    executed: list[str] = []
    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("ok")])
    session = _session(model, tools=[write_note_tool(executed)], bus=bus)

    task = asyncio.create_task(session.run_turn("go"))
    for _ in range(200):
        if session.pending_approvals():
            break
        await asyncio.sleep(0.01)

    pending = session.pending_approvals()
    assert len(pending) == 1
    assert session.state == SessionState.AWAITING_APPROVAL

    assert session.respond_approval(pending[0].fingerprint, "once") is True
    result = await task

    assert result.final_text == "ok"
    assert executed == ["x"]
    requested = [e for e in bus_events if e.type == "approval.request"]
    assert requested[0].payload["fingerprint"] == pending[0].fingerprint
    statuses = [e.payload["status"] for e in bus_events if e.type == "session.status"]
    assert "awaiting_approval" in statuses
    assert statuses[-1] == "idle"


@pytest.mark.anyio
async def test_denied_tools_never_reach_the_handler() -> None:
    requests = []
    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("ok")])
    session = _session(
        model,
        tools=[write_note_tool()],
        approval=ApprovalConfig(denied_tools=["WRITE_NOTE"]),
        approval_handler=requests.append,
    )

    await session.run_turn("go")

    assert requests == []
    assert _tool_messages(session)[0].content == 'Tool "write_note" is disabled by configuration.'


@pytest.mark.anyio
async def test_approval_modes() -> None:
    requests = []

    def handler(request):
        requests.append(request.tool_name)
        return "once"

    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("ok")])
    session = _session(
        model,
        tools=[write_note_tool()],
        approval=ApprovalConfig(mode=ApprovalMode.DANGEROUS),
        approval_handler=handler,
    )
    await session.run_turn("go")
    assert requests == []

    model = ScriptedModel([tool_call("read_note", {"text": "x"}), final("ok")])
    session = _session(
        model,
        tools=[read_note_tool()],
        approval=ApprovalConfig(mode=ApprovalMode.STRICT),
        approval_handler=handler,
    )
    await session.run_turn("go")
    assert requests == ["read_note"]


@pytest.mark.anyio
async def test_approval_hooks_report_decision() -> None:
    seen = []
    model = ScriptedModel([tool_call("write_note", {"text": "x"}), final("ok")])
    session = _session(
        model,
        tools=[write_note_tool()],
        approval_handler=lambda r: "session",
        hooks=AgentHooks(
            on_approval_request=lambda e: seen.append(("request", e.request.tool_name, e.decision)),
            on_approval_response=lambda e: seen.append(("response", e.request.tool_name, e.decision)),
        ),
    )

    await session.run_turn("go")

    assert seen == [("request", "write_note", None), ("response", "write_note", "session")]


@pytest.mark.anyio
async def test_disabled_tools_end_turn_when_model_requests_them(bus, bus_events) -> None:
    executed: list[str] = []
    model = ScriptedModel([tool_call("read_note", {"text": "a"}, call_id="c1"), final("never")])
    session = _session(
        model,
        tools=[read_note_tool(executed)],
        approval=ApprovalConfig(mode=ApprovalMode.DISABLED),
        bus=bus,
    )

    result = await session.run_turn("read it")

    assert result.status == TurnStatus.ERROR
    assert result.final_text == TOOLS_DISABLED_MESSAGE
    assert result.error_message == TOOLS_DISABLED_MESSAGE
    assert executed == []
    assert len(model.requests) == 1
    assert model.requests[0].tools == []
    assert "tools" not in model.requests[0].payload
    assert [m.role for m in session.history] == ["system", "user", "assistant", "tool", "assistant"]
    assert session.history[3].tool_call_id == "c1"
    assert session.history[-1].content == TOOLS_DISABLED_MESSAGE
    errors = [e for e in bus_events if e.type == "error"]
    assert errors and errors[0].payload["code"] == "tool_disabled"
    assert session.state == SessionState.IDLE


@pytest.mark.anyio
async def test_disabled_tools_still_allow_plain_answers() -> None:
    session = _session(
        ScriptedModel([final("just text")]),
        tools=[read_note_tool()],
        approval=ApprovalConfig(mode="disabled"),
    )

    result = await session.run_turn("hi")

    assert result.status == TurnStatus.OK
    assert result.final_text == "just text"
