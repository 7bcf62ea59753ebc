"""Tool contract.

A tool declares a pydantic parameter model; input is validated here, at
the tool boundary, so the session core can treat it as an opaque value.

Example:
    class ReadParams(BaseModel):
        path: str

    class ReadTool(ToolInfo[ReadParams]):
        id = "read_file"
        description = "Read a text file"
        parameters_type = ReadParams
        supports_parallel = True
        is_mutating = False

        async def execute(self, args: ReadParams, ctx: ToolContext) -> ToolResult:
            root = Path(ctx.environment.cwd or ".")
            return ToolResult.text((root / args.path).read_text())
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.config import EnvironmentConfig
from ..util.serialize import safe_json_dumps

T = TypeVar("T", bound=BaseModel)


class ToolInputError(ValueError):
    """Tool input failed schema validation."""

    def __init__(self, tool_id: str, detail: str):
        self.tool_id = tool_id
        super().__init__(
            f"The {tool_id} tool was called with invalid arguments: {detail}\n"
            "Please rewrite the input so it satisfies the expected schema."
        )


@dataclass
class ToolContext:
    """Context handed to a tool execution."""
    session_id: str
    call_id: str
    turn: int = 0
    step: int = 0
    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    extra: Dict[str, Any] = field(default_factory=dict)
    _aborted: bool = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        self._aborted = True


class ContentPart(BaseModel):
    type: Literal["text", "image", "json"] = "text"
    text: Optional[str] = None
    data: Any = None


@dataclass
class ToolResult:
    """Result payload: one or more content parts plus an error flag."""
    parts: List[ContentPart] = field(default_factory=list)
    is_error: bool = False
    title: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def text(cls, output: str, *, title: str = "", metadata: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(parts=[ContentPart(text=output)], title=title, metadata=metadata or {})

    @classmethod
    def error(cls, message: str, *, metadata: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(parts=[ContentPart(text=message)], is_error=True, metadata=metadata or {})

    @property
    def output(self) -> str:
        """Text rendering of all parts, in order."""
        chunks: List[str] = []
        for part in self.parts:
            if part.type == "text":
                chunks.append(part.text or "")
            elif part.type == "image":
                chunks.append("[image]")
            else:
                chunks.append(safe_json_dumps(part.data))
        return "\n".join(chunk for chunk in chunks if chunk)


class ToolInfo(ABC, Generic[T]):
    """Base class for tool definitions.

    ``supports_parallel`` and ``is_mutating`` decide whether the tool may
    run inside a parallel batch; both default to the conservative side.
    """

    id: str
    description: str
    parameters_type: Type[T]
    supports_parallel: bool = False
    is_mutating: bool = True

    def validate(self, tool_input: Any) -> T:
        if isinstance(tool_input, self.parameters_type):
            return tool_input
        try:
            return self.parameters_type.model_validate(tool_input)
        except ValidationError as e:
            raise ToolInputError(self.id, str(e)) from e

    def definition(self) -> Dict[str, Any]:
        return {
            "name": self.id,
            "description": self.description,
            "input_schema": self.parameters_type.model_json_schema(),
        }

    @abstractmethod
    async def execute(self, args: T, ctx: ToolContext) -> ToolResult:
        raise NotImplementedError


class Tool:
    """Factory for function-backed tools."""

    @staticmethod
    def define(
        tool_id: str,
        description: str,
        parameters_type: Type[T],
        execute_fn: Callable[[T, ToolContext], Awaitable[ToolResult]],
        *,
        supports_parallel: bool = False,
        is_mutating: bool = True,
    ) -> ToolInfo[T]:
        _tool_id = tool_id
        _description = description
        _parameters_type = parameters_type
        _supports_parallel = supports_parallel
        _is_mutating = is_mutating

        class FunctionalTool(ToolInfo[T]):
            id = _tool_id
            description = _description
            parameters_type = _parameters_type
            supports_parallel = _supports_parallel
            is_mutating = _is_mutating

            async def execute(self, args: T, ctx: ToolContext) -> ToolResult:
                return await execute_fn(args, ctx)

        return FunctionalTool()


class ToolRegistry:
    """Tools available to one session, keyed by id."""

    def __init__(self, tools: Optional[List[ToolInfo]] = None) -> None:
        self._tools: Dict[str, ToolInfo] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolInfo) -> None:
        self._tools[tool.id] = tool

    def get(self, tool_id: str) -> Optional[ToolInfo]:
        return self._tools.get(tool_id)

    def list(self) -> List[ToolInfo]:
        return list(self._tools.values())

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._tools

    def __len__(self) -> int:
        return len(self._tools)
