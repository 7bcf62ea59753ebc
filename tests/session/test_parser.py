from tessera.session.parser import (
    ActionParser,
    extract_thinking,
    parse_assistant,
    repair_json,
    strip_code_fences,
    strip_think_blocks,
)


def test_single_action() -> None:
    parsed = parse_assistant('{"tool": "read_file", "input": {"path": "a.txt"}}')

    assert parsed.final is None
    assert parsed.action is not None
    assert parsed.action.tool == "read_file"
    assert parsed.action.input == {"path": "a.txt"}


def test_action_list_and_actions_object() -> None:
    as_list = parse_assistant('[{"tool": "a", "input": {}}, {"tool": "b"}]')
    as_object = parse_assistant('{"actions": [{"tool": "a", "input": {"x": 1}}, {"tool": "b", "input": null}]}')

    assert [a.tool for a in as_list.actions] == ["a", "b"]
    assert as_list.actions[1].input == {}
    assert [a.tool for a in as_object.actions] == ["a", "b"]
    assert as_object.actions[1].input == {}


def test_final_answer() -> None:
    parsed = parse_assistant('{"final": "  The answer is 42.  "}')

    assert parsed.actions == []
    assert parsed.final == "The answer is 42."


def test_plain_text_has_no_action_or_final() -> None:
    parsed = parse_assistant("Just chatting, no JSON here.")

    assert parsed.actions == []
    assert parsed.final is None
    assert parsed.text == "Just chatting, no JSON here."


def test_action_wins_over_final() -> None:
    raw = '{"final": "done"}\n{"tool": "list_dir", "input": {"path": "."}}'

    parsed = parse_assistant(raw)

    assert parsed.action is not None
    assert parsed.action.tool == "list_dir"
    assert parsed.final is None


def test_fenced_json_inside_prose() -> None:
    raw = 'I will look first.\n```json\n{"tool": "grep_files", "input": {"pattern": "TODO"}}\n```\nThanks.'

    parsed = parse_assistant(raw)

    assert parsed.action is not None
    assert parsed.action.input == {"pattern": "TODO"}


def test_embedded_object_in_prose() -> None:
    parsed = parse_assistant('Sure thing: {"final": "ok"} -- bye')

    assert parsed.final == "ok"


def test_leading_think_blocks_become_thinking() -> None:
    raw = "<think>plan A</think>\n<thinking>plan B</thinking>\n{\"final\": \"yes\"}"

    parsed = parse_assistant(raw)

    assert parsed.thinking == "plan A\n\nplan B"
    assert parsed.final == "yes"


def test_raw_newlines_and_inner_quotes_are_repaired() -> None:
    raw = '{"tool": "write_file", "input": {"content": "line one\nsay "hi" now"}}'

    parsed = parse_assistant(raw)

    assert parsed.action is not None
    assert parsed.action.input["content"] == 'line one\nsay "hi" now'


def test_trailing_commas_are_dropped() -> None:
    parsed = parse_assistant('{"tool": "read_file", "input": {"path": "a",},}')

    assert parsed.action is not None
    assert parsed.action.input == {"path": "a"}


def test_action_id_is_kept_when_given() -> None:
    parsed = parse_assistant('{"id": "call_1", "tool": "read_file", "input": {}}')

    assert parsed.action is not None
    assert parsed.action.id == "call_1"


def test_entries_without_tool_name_are_ignored() -> None:
    parsed = parse_assistant('[{"tool": ""}, {"input": {}}, {"tool": "ok"}]')

    assert [a.tool for a in parsed.actions] == ["ok"]


def test_parser_never_raises_on_garbage() -> None:
    parser = ActionParser()

    for raw in ["", "{", "}}}{{{", '{"tool": ', "[1, 2, 3]", '{"final": 7}', None]:
        parsed = parser.parse(raw)  # type: ignore[arg-type]
        assert parsed.actions == []
        assert parsed.final is None


def test_helpers() -> None:
    assert strip_code_fences("```json\n{}\n```") == "{}"
    assert strip_code_fences("plain") == "plain"
    assert strip_think_blocks("a <think>x</think> b") == "a  b"
    assert extract_thinking("no thinking") == (None, "no thinking")
    assert repair_json('{"a": [1, 2,],}') == '{"a": [1, 2]}'
