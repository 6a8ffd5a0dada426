from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Category(str, Enum):
    AUTO_FIXABLE = "auto-fixable"
    NEEDS_REASONING = "needs-reasoning"
    DEPENDENCY_WARNING = "dependency-warning"


class Disposition(str, Enum):
    SILENT_FIX = "silent-fix"
    BLOCK_WITH_INSTRUCTIONS = "block-with-instructions"
    BLOCK_WITH_EXPLANATION = "block-with-explanation"


class Sensitivity(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class InsightCategory(str, Enum):
    TYPE_MISMATCH = "type-mismatch"
    MISSING_MODULE = "missing-module"
    UNKNOWN = "unknown"


# --- Classification models ---


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    complexity_score: int = Field(ge=0, le=100)


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    file_path: str
    line: int | None = None
    column: int | None = None
    category: Category
    complexity_score: int = Field(ge=0, le=100)


# --- Config resolver models ---


class ProjectConfigEntry(BaseModel):
    config_path: str
    content_hash: str
    include_patterns: list[str] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(default_factory=list)


class ConfigCacheData(BaseModel):
    hashes: dict[str, str] = Field(default_factory=dict)
    mappings: dict[str, ProjectConfigEntry] = Field(default_factory=dict)


# --- Escalation models ---


class CircuitBreakerState(BaseModel):
    is_open: bool = False
    consecutive_failures: int = 0
    last_failure_timestamp: int = 0


class CheckOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int
    had_errors: bool
    error_count: int = 0
    was_escalated: bool = False


class WindowStats(BaseModel):
    samples: int = 0
    escalated: int = 0
    rate: float = 0.0
    mean_error_count: float = 0.0


class EscalationDecision(BaseModel):
    escalate: bool
    reason: str
    threshold: float
    complexity_score: int
    current_rate: float
    factors: list[str] = Field(default_factory=list)


# --- Orchestrator models ---


class ErrorDetail(BaseModel):
    message: str
    line: int | None = None
    category: Category


class ProjectContext(BaseModel):
    is_monorepo: bool
    relative_path: str
    package_pattern: str | None = None
    package_name: str | None = None
    component_path: str | None = None
    framework: str | None = None


class ImportInfo(BaseModel):
    import_path: str
    is_relative: bool


class ReasoningContext(BaseModel):
    file_path: str
    config_path: str
    file_content: str | None = None
    error_details: list[ErrorDetail] = Field(default_factory=list)
    project: ProjectContext
    imports: list[ImportInfo] = Field(default_factory=list)
    nearby_files: list[str] = Field(default_factory=list)


class ErrorExplanation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str
    root_cause: str = Field(validation_alias=AliasChoices("root_cause", "rootCause"))
    suggestion: str
    code_example: str | None = Field(default=None, validation_alias=AliasChoices("code_example", "codeExample"))


class Analysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    explanations: list[ErrorExplanation]
    impact_assessment: str = Field(validation_alias=AliasChoices("impact_assessment", "impactAssessment"))
    best_practices: list[str] = Field(validation_alias=AliasChoices("best_practices", "bestPractices"))


class ReasoningResponse(BaseModel):
    success: bool
    analysis: Analysis


class ErrorInsight(BaseModel):
    category: InsightCategory
    explanation: ErrorExplanation


class InvocationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_size: int
    response_size: int = 0
    model: str
    succeeded: bool
    cached: bool = False
    category: str | None = None
    timestamp: int = 0
    duration_ms: int = 0
    failure: str | None = None


class OrchestratorMetrics(BaseModel):
    total_invocations: int = 0
    successful_invocations: int = 0
    failed_invocations: int = 0
    cache_hits: int = 0
    average_response_time_ms: float = 0.0
    total_tokens_used: int = 0


# --- Command execution ---


class CommandTrace(BaseModel):
    command: str
    cwd: str
    started_at: str
    duration_ms: int
    exit_code: int
    timed_out: bool = False
    launch_error: str | None = None
    stdout: str = ""
    stderr: str = ""


# --- Ledger models ---


class Statistics(BaseModel):
    total_checks: int = 0
    checks_with_errors: int = 0
    escalated_checks: int = 0
    escalation_percentage: float = 0.0


class CostProjection(BaseModel):
    average_tokens_per_invocation: float = 0.0
    projected_monthly_invocations: int = 0
    projected_monthly_tokens: float = 0.0
    projected_monthly_cost: float = 0.0


class CategoryCost(BaseModel):
    invocations: int = 0
    average_tokens: float = 0.0


class CachingSavings(BaseModel):
    cached_invocations: int = 0
    saved_tokens: int = 0
    estimated_savings: float = 0.0


class BudgetStatus(BaseModel):
    invocations_today: int = 0
    daily_invocation_limit: int
    month_to_date_cost: float = 0.0
    monthly_cost_limit: float
    exhausted: bool = False


# --- Engine output ---


class DiagnosticVerdict(BaseModel):
    diagnostic: Diagnostic
    escalated: bool
    reason: str


class CheckReport(BaseModel):
    file_path: str
    config_path: str
    disposition: Disposition
    verdicts: list[DiagnosticVerdict] = Field(default_factory=list)
    analysis: Analysis | None = None
    summary: str = ""
    extra: dict[str, Any] = Field(default_factory=dict)
