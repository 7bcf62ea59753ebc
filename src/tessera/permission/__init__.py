"""Approval gate and tool risk classification."""

from .approval import (
    ApprovalCancelledError,
    ApprovalCheck,
    ApprovalDecision,
    ApprovalGate,
    ApprovalOutcome,
    ApprovalRequest,
    approval_fingerprint,
    TOOLS_DISABLED_REASON,
    denied_observation_text,
)
from .risk import DEFAULT_TOOL_RISK_LEVELS, classify_tool_risk, requires_approval

__all__ = [
    "ApprovalCancelledError",
    "ApprovalCheck",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalOutcome",
    "ApprovalRequest",
    "approval_fingerprint",
    "TOOLS_DISABLED_REASON",
    "denied_observation_text",
    "DEFAULT_TOOL_RISK_LEVELS",
    "classify_tool_risk",
    "requires_approval",
]
