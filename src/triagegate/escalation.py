"""Selective escalation: decide which classified diagnostics get deep analysis.

The controller keeps the escalation rate inside a band with four brakes, in
order: the orchestrator's circuit breaker, a cooldown since the last
escalation, a hard ceiling on the rolling escalation rate, and an adaptive
complexity threshold. The threshold starts at the sensitivity level's minimum
complexity and is nudged by a proportional feedback loop whose constants live
in ``EngineConfig.adaptive``.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

from triagegate.breaker import CircuitBreaker
from triagegate.config import EngineConfig
from triagegate.constants import (
    ADAPTIVE_MIN_SAMPLES,
    RATE_CEILING_MIN_SAMPLES,
    ROLLING_WINDOW_SIZE,
    EscalationReason,
    RefusalReason,
)
from triagegate.fs import now_ms
from triagegate.models import Category, CheckOutcome, EscalationDecision, WindowStats

logger = logging.getLogger(__name__)


class RollingCheckWindow:
    """Most recent ``size`` check outcomes; the oldest is evicted first."""

    def __init__(self, size: int = ROLLING_WINDOW_SIZE, outcomes: Iterable[CheckOutcome] = ()) -> None:
        self.size = size
        self._outcomes: deque[CheckOutcome] = deque(outcomes, maxlen=size)

    def append(self, outcome: CheckOutcome) -> None:
        self._outcomes.append(outcome)

    def __len__(self) -> int:
        return len(self._outcomes)

    def outcomes(self) -> list[CheckOutcome]:
        return list(self._outcomes)

    def escalation_rate(self) -> float:
        if not self._outcomes:
            return 0.0
        return sum(1 for o in self._outcomes if o.was_escalated) / len(self._outcomes)

    def mean_error_count(self) -> float:
        if not self._outcomes:
            return 0.0
        return sum(o.error_count for o in self._outcomes) / len(self._outcomes)

    def stats(self) -> WindowStats:
        escalated = sum(1 for o in self._outcomes if o.was_escalated)
        return WindowStats(
            samples=len(self._outcomes),
            escalated=escalated,
            rate=self.escalation_rate(),
            mean_error_count=self.mean_error_count(),
        )


class EscalationController:
    def __init__(
        self,
        config: EngineConfig,
        *,
        breaker: CircuitBreaker | None = None,
        window: RollingCheckWindow | None = None,
        budget_exhausted: Callable[[], bool] | None = None,
        clock: Callable[[], int] = now_ms,
        threshold: float | None = None,
    ) -> None:
        self.config = config
        self.breaker = breaker
        self.window = window if window is not None else RollingCheckWindow()
        self._budget_exhausted = budget_exhausted
        self._clock = clock
        self.threshold = float(config.effective_min_complexity if threshold is None else threshold)
        self._always = [re.compile(p) for p in config.always_escalate_patterns]
        self._never = [re.compile(p) for p in config.never_escalate_patterns]
        self._last_escalation: int | None = None
        self._pending = 0
        self._lock = threading.Lock()

    def should_escalate(
        self,
        category: Category,
        complexity_score: int,
        window_stats: WindowStats | None = None,
        *,
        message: str = "",
    ) -> bool:
        return self.explain_decision(category, complexity_score, window_stats, message=message).escalate

    def explain_decision(
        self,
        category: Category,
        complexity_score: int,
        window_stats: WindowStats | None = None,
        *,
        message: str = "",
        commit: bool = True,
    ) -> EscalationDecision:
        try:
            with self._lock:
                return self._decide(category, complexity_score, window_stats, message, commit)
        except Exception:
            # Fail closed.
            logger.warning("Escalation decision failed; not escalating", exc_info=True)
            return EscalationDecision(
                escalate=False,
                reason=RefusalReason.INTERNAL_ERROR,
                threshold=self.threshold,
                complexity_score=complexity_score if isinstance(complexity_score, int) else 0,
                current_rate=0.0,
            )

    def _decide(
        self,
        category: Category,
        complexity_score: int,
        window_stats: WindowStats | None,
        message: str,
        commit: bool = True,
    ) -> EscalationDecision:
        stats = window_stats if window_stats is not None else self._effective_stats()

        def verdict(escalate: bool, reason: str, *factors: str) -> EscalationDecision:
            return EscalationDecision(
                escalate=escalate,
                reason=reason,
                threshold=self.threshold,
                complexity_score=complexity_score,
                current_rate=stats.rate,
                factors=list(factors),
            )

        if not self.config.enabled:
            return verdict(False, RefusalReason.DISABLED, "enabled")

        if message and any(p.search(message) for p in self._never):
            return verdict(False, RefusalReason.NEVER_PATTERN, "never-escalate-patterns")

        if self.breaker is not None and self.breaker.is_refusing():
            logger.debug("Escalation refused: sub-agent circuit breaker is open")
            return verdict(False, RefusalReason.CIRCUIT_OPEN, "circuit-breaker")

        if self._budget_exhausted is not None and self._budget_exhausted():
            logger.debug("Escalation refused: invocation budget exhausted")
            return verdict(False, RefusalReason.BUDGET_EXHAUSTED, "budget")

        now = self._clock()
        if self._last_escalation is not None and now - self._last_escalation < self.config.escalation_cooldown_ms:
            logger.debug("Escalation refused: cooldown active")
            return verdict(False, RefusalReason.COOLDOWN, "cooldown")

        if stats.samples >= RATE_CEILING_MIN_SAMPLES and stats.rate >= self.config.max_escalation_rate:
            logger.debug("Escalation refused: rolling rate %.3f at ceiling", stats.rate)
            return verdict(False, RefusalReason.RATE_CEILING, "escalation-rate")

        # The always-list overrides the complexity gate only; the rate ceiling above still applies.
        if message and any(p.search(message) for p in self._always):
            if commit:
                self._last_escalation = now
            return verdict(True, EscalationReason.ALWAYS_PATTERN, "always-escalate-patterns")

        if category == Category.AUTO_FIXABLE:
            return verdict(False, RefusalReason.AUTO_FIXABLE, "category")

        if complexity_score > self.threshold:
            if commit:
                self._last_escalation = now
            return verdict(True, EscalationReason.COMPLEXITY, "complexity", "escalation-rate", "cooldown")

        return verdict(False, RefusalReason.BELOW_THRESHOLD, "complexity")

    def reserve_escalation(self) -> None:
        """Count an in-flight escalated check against the rate ceiling until its outcome is recorded."""
        with self._lock:
            self._pending += 1

    def release_reservation(self) -> None:
        with self._lock:
            self._pending = max(0, self._pending - 1)

    @property
    def pending_escalations(self) -> int:
        with self._lock:
            return self._pending

    def record_outcome(
        self,
        *,
        had_errors: bool,
        error_count: int = 0,
        was_escalated: bool = False,
        timestamp: int | None = None,
        reserved: bool = False,
    ) -> CheckOutcome:
        outcome = CheckOutcome(
            timestamp=self._clock() if timestamp is None else timestamp,
            had_errors=had_errors,
            error_count=error_count,
            was_escalated=was_escalated,
        )
        with self._lock:
            if reserved:
                self._pending = max(0, self._pending - 1)
            self.window.append(outcome)
            self._update_threshold()
        return outcome

    def rolling_escalation_rate(self) -> float:
        with self._lock:
            return self.window.escalation_rate()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "base_threshold": self.config.effective_min_complexity,
                "threshold": self.threshold,
                "last_escalation": self._last_escalation,
                "window": [o.model_dump(mode="json") for o in self.window.outcomes()],
            }

    def restore(self, data: dict[str, Any]) -> None:
        """Reload a snapshot; a tuned threshold only survives an unchanged base threshold."""
        outcomes = [CheckOutcome.model_validate(o) for o in data.get("window", [])]
        last = data.get("last_escalation")
        with self._lock:
            self.window = RollingCheckWindow(self.window.size, outcomes)
            self._last_escalation = int(last) if last is not None else None
            if data.get("base_threshold") == self.config.effective_min_complexity and "threshold" in data:
                self.threshold = float(data["threshold"])

    def _effective_stats(self) -> WindowStats:
        stats = self.window.stats()
        if not self._pending:
            return stats
        samples = stats.samples + self._pending
        escalated = stats.escalated + self._pending
        return stats.model_copy(update={"samples": samples, "escalated": escalated, "rate": escalated / samples})

    def _update_threshold(self) -> None:
        if len(self.window) < ADAPTIVE_MIN_SAMPLES:
            return
        adaptive = self.config.adaptive
        rate = self.window.escalation_rate()
        mean_errors = self.window.mean_error_count()
        previous = self.threshold

        if rate > self.config.max_escalation_rate:
            self.threshold = max(previous, min(adaptive.ceiling, previous + adaptive.step))
        elif rate < adaptive.rate_floor and mean_errors > adaptive.busy_error_count:
            self.threshold = min(previous, max(adaptive.hard_floor, previous - adaptive.step))

        if self.threshold != previous:
            logger.debug("Adaptive threshold %.1f -> %.1f (rate %.3f)", previous, self.threshold, rate)
