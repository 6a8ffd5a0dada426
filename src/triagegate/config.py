from __future__ import annotations

import copy
import os
import re
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from triagegate.constants import DEFAULT_ENGINE_CONFIG, ENV_PREFIX, SENSITIVITY_LEVELS
from triagegate.errors import ConfigValidationError
from triagegate.models import Sensitivity

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


class CircuitBreakerConfig(BaseModel):
    max_failures: int = Field(default=3, gt=0)
    cooldown_ms: int = Field(default=60000, gt=0)


class AdaptiveConfig(BaseModel):
    step: float = Field(default=5, gt=0)
    ceiling: float = Field(default=95, ge=0, le=100)
    hard_floor: float = Field(default=20, ge=0, le=100)
    rate_floor: float = Field(default=0.10, ge=0, le=1)
    busy_error_count: float = Field(default=3.0, ge=0)


class EngineConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    escalation_sensitivity: Sensitivity = Sensitivity.CONSERVATIVE
    max_escalation_rate: float = Field(default=0.15, gt=0, le=1)
    monthly_cost_limit: float = Field(default=10.0, gt=0)
    daily_invocation_limit: int = Field(default=100, gt=0)
    timeout_ms: int = Field(default=30000, gt=0)
    escalation_cooldown_ms: int = Field(default=0, ge=0)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    always_escalate_patterns: list[str] = Field(default_factory=list)
    never_escalate_patterns: list[str] = Field(default_factory=list)
    min_complexity_score: int | None = Field(default=None, ge=0, le=100)
    track_metrics: bool = True
    debug: bool = False
    reasoning_command: str | None = None
    model: str = "sub-agent"
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    source: str = "defaults"

    @field_validator("always_escalate_patterns", "never_escalate_patterns")
    @classmethod
    def _patterns_compile(cls, patterns: list[str]) -> list[str]:
        invalid = []
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                invalid.append(f"{pattern!r} ({exc})")
        if invalid:
            raise ValueError("invalid regex pattern(s): " + ", ".join(invalid))
        return patterns

    @property
    def effective_min_complexity(self) -> int:
        if self.min_complexity_score is not None:
            return self.min_complexity_score
        return int(SENSITIVITY_LEVELS[self.escalation_sensitivity.value]["min_complexity_score"])

    @property
    def target_escalation_rate(self) -> float:
        return SENSITIVITY_LEVELS[self.escalation_sensitivity.value]["target_escalation_rate"]


# env var suffix -> dotted config key
_ENV_KEYS: dict[str, str] = {
    "ENABLED": "enabled",
    "SENSITIVITY": "escalation_sensitivity",
    "MAX_ESCALATION_RATE": "max_escalation_rate",
    "MONTHLY_COST_LIMIT": "monthly_cost_limit",
    "DAILY_LIMIT": "daily_invocation_limit",
    "TIMEOUT_MS": "timeout_ms",
    "ESCALATION_COOLDOWN_MS": "escalation_cooldown_ms",
    "MAX_FAILURES": "circuit_breaker.max_failures",
    "COOLDOWN_MS": "circuit_breaker.cooldown_ms",
    "MIN_COMPLEXITY": "min_complexity_score",
    "ALWAYS_ESCALATE": "always_escalate_patterns",
    "NEVER_ESCALATE": "never_escalate_patterns",
    "TRACK_METRICS": "track_metrics",
    "DEBUG": "debug",
    "REASONING_COMMAND": "reasoning_command",
    "MODEL": "model",
}

_LIST_KEYS = {"always_escalate_patterns", "never_escalate_patterns"}
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_KEY_ALIASES = {"timeout": "timeout_ms", "cooldown_period": "cooldown_ms"}


def load_config(
    cwd: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> EngineConfig:
    """Build the effective config: CLI > environment > file > defaults."""
    cwd = cwd or Path.cwd()
    environ = os.environ if environ is None else environ

    user, source = load_file_config(cwd)
    merged = _merge_config(_defaults(), user)
    env = env_overrides(environ)
    merged = _merge_config(merged, env)
    if cli_overrides:
        merged = _merge_config(merged, _normalize_keys(cli_overrides))
    merged["source"] = source
    return validate_config(merged)


def load_file_config(cwd: Path) -> tuple[dict, str]:
    # Try triagegate.toml first
    triagegate_toml = cwd / "triagegate.toml"
    if triagegate_toml.exists():
        return _normalize_keys(_load_toml(triagegate_toml)), str(triagegate_toml)

    # Try pyproject.toml [tool.triagegate]
    pyproject = cwd / "pyproject.toml"
    if pyproject.exists():
        full = _load_toml(pyproject)
        user_config = full.get("tool", {}).get("triagegate", {})
        if user_config:
            return _normalize_keys(user_config), str(pyproject)

    return {}, "defaults"


def env_overrides(environ: Mapping[str, str]) -> dict:
    overrides: dict = {}
    for suffix, dotted in _ENV_KEYS.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        value: Any = raw
        if dotted in _LIST_KEYS:
            value = [p for p in raw.split(",") if p]
        _set_dotted(overrides, dotted, value)
    return overrides


def validate_config(data: dict) -> EngineConfig:
    try:
        return EngineConfig.model_validate(data)
    except ValidationError as exc:
        errors = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"]) or "config"
            errors.append(f"{loc}: {err['msg']}")
        raise ConfigValidationError(errors) from exc


def _load_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigValidationError([f"Cannot parse {path}: {exc}"]) from exc


def _defaults() -> dict:
    return copy.deepcopy(DEFAULT_ENGINE_CONFIG)


def _merge_config(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def _normalize_keys(data: dict) -> dict:
    """Accept camelCase keys (``circuitBreaker.maxFailures``) alongside snake_case."""
    normalized: dict = {}
    for key, value in data.items():
        snake = _CAMEL_RE.sub("_", key).lower().replace("-", "_")
        snake = _KEY_ALIASES.get(snake, snake)
        normalized[snake] = _normalize_keys(value) if isinstance(value, dict) else value
    return normalized


def _set_dotted(target: dict, dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value
