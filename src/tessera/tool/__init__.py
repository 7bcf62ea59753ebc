"""Tool contract consumed by the session runtime."""

from .tool import ContentPart, Tool, ToolContext, ToolInfo, ToolRegistry, ToolResult

__all__ = ["ContentPart", "Tool", "ToolContext", "ToolInfo", "ToolRegistry", "ToolResult"]
