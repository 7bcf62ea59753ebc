import pytest
from pydantic import BaseModel

from tessera.tool import Tool, ToolContext, ToolInfo, ToolRegistry, ToolResult
from tessera.tool.tool import ContentPart, ToolInputError


class PathParams(BaseModel):
    path: str
    limit: int = 10


class ListTool(ToolInfo[PathParams]):
    id = "list_dir"
    description = "List a directory"
    parameters_type = PathParams
    supports_parallel = True
    is_mutating = False

    async def execute(self, args: PathParams, ctx: ToolContext) -> ToolResult:
        return ToolResult.text(f"{ctx.environment.cwd}/{args.path}")


def test_registry_is_instance_scoped() -> None:
    first = ToolRegistry([ListTool()])
    second = ToolRegistry()

    assert "list_dir" in first
    assert "list_dir" not in second
    assert len(first) == 1
    assert first.get("list_dir").supports_parallel is True
    assert first.get("missing") is None


def test_definitions_expose_json_schema() -> None:
    definition = ToolRegistry([ListTool()]).definitions()[0]

    assert definition["name"] == "list_dir"
    assert definition["description"] == "List a directory"
    assert definition["input_schema"]["required"] == ["path"]


def test_validate_raises_tool_input_error() -> None:
    tool = ListTool()

    assert tool.validate({"path": "src"}).limit == 10
    with pytest.raises(ToolInputError) as info:
        tool.validate({"limit": "many"})
    assert info.value.tool_id == "list_dir"
    assert "invalid arguments" in str(info.value)


@pytest.mark.anyio
async def test_defined_tool_defaults_are_conservative() -> None:
    async def execute(args: PathParams, ctx: ToolContext) -> ToolResult:
        return ToolResult.text(args.path)

    tool = Tool.define("echo_path", "Echo", PathParams, execute)

    assert tool.supports_parallel is False
    assert tool.is_mutating is True
    result = await tool.execute(tool.validate({"path": "x"}), ToolContext(session_id="s", call_id="c"))
    assert result.output == "x"


def test_result_output_renders_parts() -> None:
    result = ToolResult(parts=[
        ContentPart(text="line"),
        ContentPart(type="image", data="base64..."),
        ContentPart(type="json", data={"a": 1}),
    ])

    assert result.output == 'line\n[image]\n{"a":1}'
    assert ToolResult.error("nope").is_error is True
