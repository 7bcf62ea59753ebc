from tessera.core.config import ApprovalMode, RiskLevel
from tessera.permission.risk import classify_tool_risk, requires_approval


def test_known_tools_use_defaults() -> None:
    assert classify_tool_risk("read_file") == RiskLevel.READ
    assert classify_tool_risk("apply_patch") == RiskLevel.WRITE
    assert classify_tool_risk("shell") == RiskLevel.EXECUTE


def test_keyword_fallback_prefers_execute_then_write() -> None:
    assert classify_tool_risk("run_write_script") == RiskLevel.EXECUTE
    assert classify_tool_risk("update_ticket") == RiskLevel.WRITE
    assert classify_tool_risk("search_docs") == RiskLevel.READ
    assert classify_tool_risk("mystery") == RiskLevel.WRITE


def test_overrides_win() -> None:
    overrides = {"Shell": RiskLevel.READ, "mystery": "read"}

    assert classify_tool_risk("shell", overrides) == RiskLevel.READ
    assert classify_tool_risk("MYSTERY", overrides) == RiskLevel.READ


def test_requires_approval_by_mode() -> None:
    assert not requires_approval(ApprovalMode.AUTO, RiskLevel.READ)
    assert requires_approval(ApprovalMode.AUTO, RiskLevel.WRITE)
    assert requires_approval(ApprovalMode.AUTO, RiskLevel.EXECUTE)
    assert requires_approval(ApprovalMode.STRICT, RiskLevel.READ)
    assert not requires_approval(ApprovalMode.DANGEROUS, RiskLevel.EXECUTE)
    assert not requires_approval(ApprovalMode.DISABLED, RiskLevel.EXECUTE)
