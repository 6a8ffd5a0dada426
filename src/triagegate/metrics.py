"""Append-only usage and cost ledger.

Every query degrades to zeroed values on missing data; nothing here raises
into the caller.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import threading
from collections import Counter, deque
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from triagegate.classifier import error_pattern
from triagegate.constants import (
    CHARS_PER_TOKEN,
    COST_PER_TOKEN,
    COST_ROLLING_WINDOW,
    HIGH_TOKEN_THRESHOLD,
    HOURS_PER_MONTH,
    INVOCATIONS_PER_HOUR,
    LOW_CACHE_HIT_RATIO,
    LOW_SUCCESS_RATIO,
    SAVED_TOKENS_PER_CACHE_HIT,
)
from triagegate.fs import now_ms
from triagegate.models import (
    BudgetStatus,
    CachingSavings,
    CategoryCost,
    CheckOutcome,
    CostProjection,
    InvocationRecord,
    Statistics,
)

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
MONTH_MS = 30 * DAY_MS
EXPORT_FORMATS = ("json", "csv", "prometheus")


def tokens_for(record: InvocationRecord) -> float:
    return (record.prompt_size + record.response_size) / CHARS_PER_TOKEN


class UsageLedger:
    def __init__(
        self,
        *,
        monthly_cost_limit: float = 10.0,
        daily_invocation_limit: int = 100,
        max_escalation_rate: float = 0.15,
        clock: Callable[[], int] = now_ms,
        history_limit: int = 5000,
    ) -> None:
        self.monthly_cost_limit = monthly_cost_limit
        self.daily_invocation_limit = daily_invocation_limit
        self.max_escalation_rate = max_escalation_rate
        self._clock = clock
        self._lock = threading.Lock()
        self._checks: deque[CheckOutcome] = deque(maxlen=history_limit)
        self._invocations: deque[InvocationRecord] = deque(maxlen=history_limit)
        self._patterns: Counter[str] = Counter()
        self._total_checks = 0
        self._checks_with_errors = 0
        self._escalated_checks = 0

    # --- recording ---

    def record(self, item: InvocationRecord | CheckOutcome) -> None:
        if isinstance(item, InvocationRecord):
            self.record_invocation(item)
        elif isinstance(item, CheckOutcome):
            self.record_check(item)
        else:
            logger.debug("Ignoring unknown ledger item %r", type(item).__name__)

    def record_invocation(self, record: InvocationRecord) -> None:
        with self._lock:
            self._invocations.append(record)

    def record_check(self, outcome: CheckOutcome) -> None:
        with self._lock:
            self._checks.append(outcome)
            self._total_checks += 1
            if outcome.had_errors:
                self._checks_with_errors += 1
            if outcome.was_escalated:
                self._escalated_checks += 1

    def record_error_pattern(self, text: str) -> None:
        with self._lock:
            self._patterns[error_pattern(text or "")] += 1

    def reset(self) -> None:
        with self._lock:
            self._checks.clear()
            self._invocations.clear()
            self._patterns.clear()
            self._total_checks = self._checks_with_errors = self._escalated_checks = 0

    # --- queries ---

    def statistics(self) -> Statistics:
        with self._lock:
            return _statistics(self._total_checks, self._checks_with_errors, self._escalated_checks)

    def hourly_statistics(self) -> Statistics:
        return self._statistics_since(self._clock() - HOUR_MS)

    def daily_statistics(self) -> Statistics:
        return self._statistics_since(self._clock() - DAY_MS)

    def _statistics_since(self, since: int) -> Statistics:
        with self._lock:
            recent = [c for c in self._checks if c.timestamp >= since]
        return _statistics(
            len(recent),
            sum(1 for c in recent if c.had_errors),
            sum(1 for c in recent if c.was_escalated),
        )

    def rolling_escalation_average(self, window_size: int) -> float:
        """Escalation percentage over the last ``window_size`` checks."""
        with self._lock:
            recent = list(self._checks)[-window_size:] if window_size > 0 else []
        if not recent:
            return 0.0
        return sum(1 for c in recent if c.was_escalated) / len(recent) * 100

    def error_patterns(self) -> dict[str, int]:
        with self._lock:
            return dict(self._patterns)

    def cost_projection(self, window: int = COST_ROLLING_WINDOW) -> CostProjection:
        with self._lock:
            paid = [r for r in self._invocations if not r.cached][-window:]
        if not paid:
            return CostProjection()
        average_tokens = sum(tokens_for(r) for r in paid) / len(paid)
        monthly_invocations = INVOCATIONS_PER_HOUR * HOURS_PER_MONTH
        monthly_tokens = average_tokens * monthly_invocations
        return CostProjection(
            average_tokens_per_invocation=average_tokens,
            projected_monthly_invocations=monthly_invocations,
            projected_monthly_tokens=monthly_tokens,
            projected_monthly_cost=monthly_tokens * COST_PER_TOKEN,
        )

    def cost_by_category(self) -> dict[str, CategoryCost]:
        totals: dict[str, list[float]] = {}
        with self._lock:
            for record in self._invocations:
                if record.category:
                    totals.setdefault(record.category, []).append(tokens_for(record))
        return {
            category: CategoryCost(invocations=len(tokens), average_tokens=sum(tokens) / len(tokens))
            for category, tokens in totals.items()
        }

    def caching_savings(self) -> CachingSavings:
        with self._lock:
            cached = sum(1 for r in self._invocations if r.cached)
        saved = cached * SAVED_TOKENS_PER_CACHE_HIT
        return CachingSavings(cached_invocations=cached, saved_tokens=saved, estimated_savings=saved * COST_PER_TOKEN)

    def cache_hit_ratio(self) -> float:
        with self._lock:
            total = len(self._invocations)
            cached = sum(1 for r in self._invocations if r.cached)
        return cached / total if total else 0.0

    def success_ratio(self) -> float:
        with self._lock:
            paid = [r for r in self._invocations if not r.cached]
        if not paid:
            return 1.0
        return sum(1 for r in paid if r.succeeded) / len(paid)

    def budget_status(self) -> BudgetStatus:
        now = self._clock()
        with self._lock:
            paid = [r for r in self._invocations if not r.cached]
        today = sum(1 for r in paid if r.timestamp >= now - DAY_MS)
        month_cost = sum(tokens_for(r) for r in paid if r.timestamp >= now - MONTH_MS) * COST_PER_TOKEN
        return BudgetStatus(
            invocations_today=today,
            daily_invocation_limit=self.daily_invocation_limit,
            month_to_date_cost=month_cost,
            monthly_cost_limit=self.monthly_cost_limit,
            exhausted=today >= self.daily_invocation_limit or month_cost >= self.monthly_cost_limit,
        )

    def budget_exhausted(self) -> bool:
        return self.budget_status().exhausted

    def recommendations(self) -> list[str]:
        recommendations: list[str] = []
        projection = self.cost_projection()
        if projection.average_tokens_per_invocation > HIGH_TOKEN_THRESHOLD:
            recommendations.append(
                f"Average token usage is high ({projection.average_tokens_per_invocation:.0f} tokens/invocation): "
                "consider narrower context (drop file content or imports from the prompt)."
            )

        with self._lock:
            has_invocations = bool(self._invocations)
        if has_invocations and self.cache_hit_ratio() < LOW_CACHE_HIT_RATIO:
            recommendations.append(
                f"Cache hit rate is low ({self.cache_hit_ratio():.0%}): repeated diagnostics are not being reused."
            )

        if has_invocations and self.success_ratio() < LOW_SUCCESS_RATIO:
            recommendations.append(
                f"Sub-agent success rate is {self.success_ratio():.0%}: check the reasoning command and timeout."
            )

        stats = self.statistics()
        if stats.total_checks and stats.escalation_percentage / 100 > self.max_escalation_rate:
            recommendations.append(
                f"Escalation rate {stats.escalation_percentage:.1f}% exceeds the "
                f"{self.max_escalation_rate:.0%} ceiling: consider a more conservative sensitivity."
            )

        budget = self.budget_status()
        if budget.exhausted:
            recommendations.append("Invocation budget exhausted: escalations are paused until usage falls.")
        return recommendations

    # --- export & persistence ---

    def export(self, fmt: str = "json") -> str:
        stats = self.statistics()
        if fmt == "json":
            return json.dumps(
                {
                    **stats.model_dump(mode="json"),
                    "cost_projection": self.cost_projection().model_dump(mode="json"),
                    "error_patterns": self.error_patterns(),
                    "recommendations": self.recommendations(),
                }
            )
        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(["timestamp", "had_errors", "error_count", "was_escalated"])
            with self._lock:
                rows = list(self._checks)
            for c in rows:
                writer.writerow([c.timestamp, c.had_errors, c.error_count, c.was_escalated])
            return buf.getvalue()
        if fmt == "prometheus":
            projection = self.cost_projection()
            return "\n".join(
                [
                    f"triagegate_checks_total {stats.total_checks}",
                    f"triagegate_checks_with_errors_total {stats.checks_with_errors}",
                    f"triagegate_escalated_checks_total {stats.escalated_checks}",
                    f"triagegate_escalation_ratio {stats.escalation_percentage / 100:.4f}",
                    f"triagegate_projected_monthly_cost_usd {projection.projected_monthly_cost:.4f}",
                    f"triagegate_cache_hit_ratio {self.cache_hit_ratio():.4f}",
                ]
            ) + "\n"
        return ""

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_checks": self._total_checks,
                "checks_with_errors": self._checks_with_errors,
                "escalated_checks": self._escalated_checks,
                "error_patterns": dict(self._patterns),
                "checks": [c.model_dump(mode="json") for c in self._checks],
                "invocations": [r.model_dump(mode="json") for r in self._invocations],
            }

    def restore(self, data: dict[str, Any]) -> None:
        """Load a snapshot; malformed data leaves the ledger empty."""
        try:
            checks = [CheckOutcome.model_validate(c) for c in data.get("checks", [])]
            invocations = [InvocationRecord.model_validate(r) for r in data.get("invocations", [])]
            patterns = Counter({str(k): int(v) for k, v in data.get("error_patterns", {}).items()})
            totals = (
                int(data.get("total_checks", len(checks))),
                int(data.get("checks_with_errors", 0)),
                int(data.get("escalated_checks", 0)),
            )
        except (AttributeError, TypeError, ValueError, ValidationError):
            logger.debug("Ignoring malformed ledger snapshot", exc_info=True)
            return
        with self._lock:
            self._checks.clear()
            self._checks.extend(checks)
            self._invocations.clear()
            self._invocations.extend(invocations)
            self._patterns = patterns
            self._total_checks, self._checks_with_errors, self._escalated_checks = totals


def _statistics(total: int, with_errors: int, escalated: int) -> Statistics:
    return Statistics(
        total_checks=total,
        checks_with_errors=with_errors,
        escalated_checks=escalated,
        escalation_percentage=(escalated / total * 100) if total else 0.0,
    )
