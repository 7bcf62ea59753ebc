"""Tool risk classification."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from ..core.config import ApprovalMode, RiskLevel

DEFAULT_TOOL_RISK_LEVELS: Dict[str, RiskLevel] = {
    "read_file": RiskLevel.READ,
    "list_dir": RiskLevel.READ,
    "grep_files": RiskLevel.READ,
    "glob": RiskLevel.READ,
    "webfetch": RiskLevel.READ,
    "web_search": RiskLevel.READ,
    "view_image": RiskLevel.READ,
    "update_plan": RiskLevel.READ,
    "get_memory": RiskLevel.READ,
    "apply_patch": RiskLevel.WRITE,
    "write_file": RiskLevel.WRITE,
    "edit_file": RiskLevel.WRITE,
    "shell": RiskLevel.EXECUTE,
    "shell_command": RiskLevel.EXECUTE,
    "exec_command": RiskLevel.EXECUTE,
    "write_stdin": RiskLevel.EXECUTE,
}

# Checked in order: execute first, so "run_write_script" is execute.
RISK_KEYWORDS = (
    (RiskLevel.EXECUTE, ("exec", "run", "shell", "command", "stdin", "bash")),
    (RiskLevel.WRITE, ("write", "patch", "create", "delete", "modify", "update", "edit", "remove")),
    (RiskLevel.READ, ("read", "get", "fetch", "search", "list", "find", "grep", "view")),
)


def classify_tool_risk(
    tool_name: str,
    overrides: Optional[Mapping[str, RiskLevel]] = None,
) -> RiskLevel:
    """Risk level of a tool: explicit override, known default, then name keywords.

    Unknown names default to ``write``.
    """
    name = tool_name.strip().lower()
    if overrides:
        for key, level in overrides.items():
            if key.strip().lower() == name:
                return RiskLevel(level)
    if name in DEFAULT_TOOL_RISK_LEVELS:
        return DEFAULT_TOOL_RISK_LEVELS[name]
    for level, keywords in RISK_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return level
    return RiskLevel.WRITE


def requires_approval(mode: ApprovalMode, risk: RiskLevel) -> bool:
    if mode in (ApprovalMode.DANGEROUS, ApprovalMode.DISABLED):
        return False
    if mode == ApprovalMode.STRICT:
        return True
    return risk in (RiskLevel.WRITE, RiskLevel.EXECUTE)
