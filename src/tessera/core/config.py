"""Configuration schema: pydantic models for runtime and session options."""

from __future__ import annotations

import math
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MAX_STEPS = 100
DEFAULT_MAX_TOOL_RESULT_CHARS = 12_000
DEFAULT_CONTEXT_WINDOW = 120_000
DEFAULT_REPETITION_THRESHOLD = 3


class ApprovalMode(str, Enum):
    """How eagerly tool calls are routed through approval."""
    AUTO = "auto"
    STRICT = "strict"
    DANGEROUS = "dangerous"
    DISABLED = "disabled"


class RiskLevel(str, Enum):
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"


class ModelProfileOverride(BaseModel):
    """Capability override for a ``provider:model`` or bare model key."""
    supports_parallel_tool_calls: Optional[bool] = Field(None, alias="supportsParallelToolCalls")
    supports_reasoning_content: Optional[bool] = Field(None, alias="supportsReasoningContent")
    supports_verbosity: Optional[bool] = Field(None, alias="supportsVerbosity")
    context_window: Optional[int] = Field(None, alias="contextWindow")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("context_window", mode="before")
    @classmethod
    def _positive_window(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
            return None
        return int(math.floor(value))


class CompactionConfig(BaseModel):
    """Auto-compaction policy.

    ``basis`` selects the prompt-token signal compared against the context
    window: ``estimated`` counts the outgoing history locally, ``reported``
    uses the prompt tokens the provider reported for the previous step.
    """
    auto: bool = True
    threshold_percent: float = Field(80.0, alias="thresholdPercent", gt=0, le=100)
    basis: Literal["estimated", "reported"] = "estimated"

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ApprovalConfig(BaseModel):
    """Approval gate settings."""
    mode: ApprovalMode = ApprovalMode.AUTO
    risk_levels: Dict[str, RiskLevel] = Field(default_factory=dict, alias="riskLevels")
    denied_tools: List[str] = Field(default_factory=list, alias="deniedTools")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class EnvironmentConfig(BaseModel):
    """Paths handed to tools instead of reading process globals."""
    cwd: Optional[str] = None
    home: Optional[str] = None
    sandbox_root: Optional[str] = Field(None, alias="sandboxRoot")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Optional[str] = None
    format: Optional[Literal["kv", "json", "pretty"]] = None
    console: Optional[bool] = None
    file: Optional[bool] = None
    directory: Optional[str] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class HistoryConfig(BaseModel):
    """Durable JSONL history settings."""
    enabled: bool = False
    directory: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class SessionOptions(BaseModel):
    """Per-session settings injected at creation time."""
    session_id: Optional[str] = Field(None, alias="sessionId")
    provider: str = ""
    model: str = ""
    max_steps: int = Field(DEFAULT_MAX_STEPS, alias="maxSteps", ge=1)
    context_window: Optional[int] = Field(None, alias="contextWindow")
    max_tool_result_chars: int = Field(DEFAULT_MAX_TOOL_RESULT_CHARS, alias="maxToolResultChars", ge=1)
    repetition_threshold: int = Field(DEFAULT_REPETITION_THRESHOLD, alias="repetitionThreshold", ge=2)
    parallel_tool_calls: bool = Field(True, alias="parallelToolCalls")
    stop_on_denial: bool = Field(False, alias="stopOnDenial")
    verbosity: Optional[Literal["low", "medium", "high"]] = None
    tokenizer_model: Optional[str] = Field(None, alias="tokenizerModel")
    model_profiles: Dict[str, ModelProfileOverride] = Field(default_factory=dict, alias="modelProfiles")
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RuntimeConfig(SessionOptions):
    """Everything a config file may carry: session options plus process concerns."""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
