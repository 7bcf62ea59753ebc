"""Approval gate for risky tool calls.

Each call is reduced to a fingerprint (tool name plus canonical
parameters). ``check`` decides whether the call may run, must be denied,
or needs a decision. Pending decisions are ``asyncio.Future`` objects keyed
by fingerprint and resolved through ``respond``.

Decision scopes:
- ``session``: remembered for the life of the gate (one session).
- ``once``: applies to the pending request only.
- ``deny``: the action is not executed.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from ..core.config import ApprovalConfig, ApprovalMode, RiskLevel
from ..util.log import Log
from ..util.serialize import stable_stringify
from .risk import classify_tool_risk, requires_approval

log = Log.create({"service": "permission.approval"})

PREVIOUSLY_DENIED_REASON = "This request was previously denied."
TOOLS_DISABLED_REASON = "Tool execution skipped: tools are disabled in current permission mode."


class ApprovalDecision(str, Enum):
    ONCE = "once"
    SESSION = "session"
    DENY = "deny"

    @classmethod
    def coerce(cls, value: Any) -> "ApprovalDecision":
        """Parse a decision; anything unrecognized fails closed to ``deny``."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            for decision in cls:
                if decision.value == text:
                    return decision
        log.warn("invalid approval decision, treating as deny", {"value": repr(value)})
        return cls.DENY


class ApprovalOutcome(str, Enum):
    ALLOW = "allow"
    REQUIRE_APPROVAL = "require_approval"
    DENY = "deny"


class ApprovalRequest(BaseModel):
    fingerprint: str
    tool_name: str
    reason: str
    risk_level: RiskLevel
    params: Any = Field(default_factory=dict)


@dataclass
class ApprovalCheck:
    outcome: ApprovalOutcome
    request: Optional[ApprovalRequest] = None
    reason: Optional[str] = None


class ApprovalCancelledError(Exception):
    """Raised to waiters when their pending request is withdrawn."""

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__(f"Approval request {fingerprint} was cancelled")


def approval_fingerprint(tool_name: str, params: Any) -> str:
    digest = hashlib.sha256(f"{tool_name}:{stable_stringify(params)}".encode("utf-8"))
    return digest.hexdigest()[:16]


def denied_observation_text(tool_name: str) -> str:
    return f"User denied tool execution: {tool_name}"


class ApprovalGate:
    """Per-session approval policy, decision cache and pending requests."""

    @dataclass
    class _Pending:
        request: ApprovalRequest
        future: asyncio.Future

    def __init__(self, config: Optional[ApprovalConfig] = None) -> None:
        self.config = config or ApprovalConfig()
        self._session_approved: Set[str] = set()
        self._denied: Set[str] = set()
        self._pending: Dict[str, ApprovalGate._Pending] = {}

    @property
    def mode(self) -> ApprovalMode:
        return self.config.mode

    def risk_level(self, tool_name: str) -> RiskLevel:
        return classify_tool_risk(tool_name, self.config.risk_levels)

    def check(self, tool_name: str, params: Any) -> ApprovalCheck:
        if self.mode == ApprovalMode.DISABLED:
            return ApprovalCheck(outcome=ApprovalOutcome.DENY, reason=TOOLS_DISABLED_REASON)

        denied_tools = {name.strip().lower() for name in self.config.denied_tools}
        if tool_name.strip().lower() in denied_tools:
            return ApprovalCheck(
                outcome=ApprovalOutcome.DENY,
                reason=f'Tool "{tool_name}" is disabled by configuration.',
            )

        risk = self.risk_level(tool_name)
        if not requires_approval(self.mode, risk):
            return ApprovalCheck(outcome=ApprovalOutcome.ALLOW)

        fingerprint = approval_fingerprint(tool_name, params)
        if fingerprint in self._session_approved:
            return ApprovalCheck(outcome=ApprovalOutcome.ALLOW)

        reason = f'Tool "{tool_name}" requires approval.'
        if fingerprint in self._denied:
            reason = PREVIOUSLY_DENIED_REASON
        request = ApprovalRequest(
            fingerprint=fingerprint,
            tool_name=tool_name,
            reason=reason,
            risk_level=risk,
            params=params,
        )
        return ApprovalCheck(outcome=ApprovalOutcome.REQUIRE_APPROVAL, request=request, reason=reason)

    def record(self, fingerprint: str, decision: Any) -> ApprovalDecision:
        """Store a decision. ``once`` leaves nothing behind."""
        decision = ApprovalDecision.coerce(decision)
        self._session_approved.discard(fingerprint)
        self._denied.discard(fingerprint)
        if decision == ApprovalDecision.SESSION:
            self._session_approved.add(fingerprint)
        elif decision == ApprovalDecision.DENY:
            self._denied.add(fingerprint)
        log.info("approval recorded", {"fingerprint": fingerprint, "decision": decision.value})
        return decision

    async def wait_for_decision(self, request: ApprovalRequest) -> ApprovalDecision:
        """Suspend until ``respond`` is called for this fingerprint.

        Identical concurrent requests share one pending future.
        """
        pending = self._pending.get(request.fingerprint)
        if pending is None:
            future = asyncio.get_running_loop().create_future()
            pending = ApprovalGate._Pending(request=request, future=future)
            self._pending[request.fingerprint] = pending
        try:
            return await asyncio.shield(pending.future)
        finally:
            if pending.future.done() and self._pending.get(request.fingerprint) is pending:
                del self._pending[request.fingerprint]

    def respond(self, fingerprint: str, decision: Any) -> bool:
        """Resolve a pending request. Returns False when nothing is pending."""
        pending = self._pending.pop(fingerprint, None)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(ApprovalDecision.coerce(decision))
        return True

    def pending(self) -> List[ApprovalRequest]:
        return [item.request for item in self._pending.values()]

    def cancel_pending(self) -> None:
        """Withdraw every pending request; waiters get ``ApprovalCancelledError``."""
        pending = list(self._pending.values())
        self._pending.clear()
        for item in pending:
            if not item.future.done():
                item.future.set_exception(ApprovalCancelledError(item.request.fingerprint))
                # Retrieve the exception so an unobserved future does not warn.
                item.future.exception()

    def clear(self) -> None:
        self.cancel_pending()
        self._session_approved.clear()
        self._denied.clear()
