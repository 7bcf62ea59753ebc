"""Tessera - agent session runtime.

Runs multi-turn conversations between a user and a tool-calling language
model: action parsing, approval gating, repetition guarding, context
compaction and structured history events.
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    """Lazy import module components."""
    if name in ("Bus", "BusEvent", "GlobalPath", "Identifier", "RuntimeConfig", "SessionOptions"):
        from . import core
        return getattr(core, name)
    if name == "Log":
        from .util.log import Log
        return Log
    if name in ("AgentSession", "AgentHooks", "create_session", "TurnResult", "ChatMessage"):
        from . import session
        return getattr(session, name)
    if name in ("ApprovalGate", "ApprovalDecision", "ApprovalRequest"):
        from . import permission
        return getattr(permission, name)
    if name in ("ModelProfile", "resolve_model_profile"):
        from . import provider
        return getattr(provider, name)
    if name in ("Tool", "ToolContext", "ToolInfo", "ToolResult"):
        from . import tool
        return getattr(tool, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    # Core
    "Bus",
    "BusEvent",
    "GlobalPath",
    "Identifier",
    "RuntimeConfig",
    "SessionOptions",
    "Log",
    # Session
    "AgentSession",
    "AgentHooks",
    "create_session",
    "TurnResult",
    "ChatMessage",
    # Permission
    "ApprovalGate",
    "ApprovalDecision",
    "ApprovalRequest",
    # Provider
    "ModelProfile",
    "resolve_model_profile",
    # Tool
    "Tool",
    "ToolContext",
    "ToolInfo",
    "ToolResult",
]
