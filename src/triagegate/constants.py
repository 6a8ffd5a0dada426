from __future__ import annotations

TRIAGEGATE_DIR = ".triagegate"
CONFIG_CACHE_FILE = ".triagegate/config-cache.json"
STATE_FILE = ".triagegate/state.json"
REPORT_FILE = ".triagegate/report.json"
BRIEF_MD_FILE = ".triagegate/brief.md"

ENV_PREFIX = "TRIAGEGATE_"

# Most specific first; registration order is the priority.
CONFIG_CANDIDATES: tuple[str, ...] = (
    "tsconfig.webview.json",
    "tsconfig.test.json",
    "tsconfig.json",
    "pyrightconfig.json",
    "pyproject.toml",
)
WEBVIEW_CONFIG = "tsconfig.webview.json"
TEST_CONFIG = "tsconfig.test.json"
DEFAULT_CONFIG_NAME = "tsconfig.json"

ROLLING_WINDOW_SIZE = 100
RATE_CEILING_MIN_SAMPLES = 20
ADAPTIVE_MIN_SAMPLES = 10

# (min complexity score, target escalation rate midpoint)
SENSITIVITY_LEVELS: dict[str, dict[str, float]] = {
    "conservative": {"min_complexity_score": 70, "target_escalation_rate": 0.125},
    "balanced": {"min_complexity_score": 50, "target_escalation_rate": 0.20},
    "aggressive": {"min_complexity_score": 30, "target_escalation_rate": 0.325},
}

DEFAULT_ENGINE_CONFIG: dict = {
    "enabled": True,
    "escalation_sensitivity": "conservative",
    "max_escalation_rate": 0.15,
    "monthly_cost_limit": 10.0,
    "daily_invocation_limit": 100,
    "timeout_ms": 30000,
    "escalation_cooldown_ms": 0,
    "circuit_breaker": {
        "max_failures": 3,
        "cooldown_ms": 60000,
    },
    "always_escalate_patterns": [],
    "never_escalate_patterns": [],
    "min_complexity_score": None,
    "track_metrics": True,
    "debug": False,
    "reasoning_command": None,
    "model": "sub-agent",
    # Feedback loop constants for the adaptive threshold. Tunable.
    "adaptive": {
        "step": 5,
        "ceiling": 95,
        "hard_floor": 20,
        "rate_floor": 0.10,
        "busy_error_count": 3.0,
    },
}

# Ledger assumptions for the monthly projection
COST_PER_TOKEN = 0.01 / 1000
CHARS_PER_TOKEN = 4
INVOCATIONS_PER_HOUR = 2
HOURS_PER_MONTH = 24 * 30
COST_ROLLING_WINDOW = 50
HIGH_TOKEN_THRESHOLD = 1500
LOW_CACHE_HIT_RATIO = 0.5
LOW_SUCCESS_RATIO = 0.8
SAVED_TOKENS_PER_CACHE_HIT = 700


class RefusalReason:
    DISABLED = "DISABLED"
    NEVER_PATTERN = "NEVER_PATTERN"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    COOLDOWN = "COOLDOWN"
    RATE_CEILING = "RATE_CEILING"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    AUTO_FIXABLE = "AUTO_FIXABLE"
    BELOW_THRESHOLD = "BELOW_THRESHOLD"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class EscalationReason:
    ALWAYS_PATTERN = "ALWAYS_PATTERN"
    COMPLEXITY = "COMPLEXITY"
