"""The quality gate: classify, decide, escalate, record.

``QualityGateEngine`` owns one instance of each component and is passed
around explicitly. A single lock serializes the decide/record steps that
touch the rolling window, cooldown and ledger; classification, context
building and the sub-agent call run outside it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from triagegate.breaker import CircuitBreaker
from triagegate.classifier import classify_diagnostic
from triagegate.config import EngineConfig
from triagegate.constants import STATE_FILE
from triagegate.context import build_context
from triagegate.escalation import EscalationController
from triagegate.fs import now_ms, read_json, write_json
from triagegate.metrics import UsageLedger
from triagegate.models import (
    Analysis,
    Category,
    CheckReport,
    CircuitBreakerState,
    Diagnostic,
    DiagnosticVerdict,
    Disposition,
    InvocationRecord,
)
from triagegate.orchestrator import SubAgentOrchestrator, extract_insights
from triagegate.reasoning import ReasoningClient
from triagegate.resolver import ConfigResolverCache
from triagegate.summary import SummaryFormatter, formatter_for

logger = logging.getLogger(__name__)


def choose_disposition(diagnostics: list[Diagnostic], analysis: Analysis | None) -> Disposition:
    if all(d.category == Category.AUTO_FIXABLE for d in diagnostics):
        return Disposition.SILENT_FIX
    if analysis is not None:
        return Disposition.BLOCK_WITH_EXPLANATION
    return Disposition.BLOCK_WITH_INSTRUCTIONS


class QualityGateEngine:
    def __init__(
        self,
        config: EngineConfig,
        *,
        project_root: Path,
        client: ReasoningClient | None = None,
        clock: Callable[[], int] = now_ms,
        formatter: SummaryFormatter | None = None,
        state_file: Path | None = None,
    ) -> None:
        self.config = config
        self.project_root = Path(project_root)
        self.state_file = state_file if state_file is not None else self.project_root / STATE_FILE
        self.formatter = formatter if formatter is not None else formatter_for(with_analysis=client is not None)
        self._lock = threading.Lock()

        self.resolver = ConfigResolverCache(self.project_root)
        self.ledger = UsageLedger(
            monthly_cost_limit=config.monthly_cost_limit,
            daily_invocation_limit=config.daily_invocation_limit,
            max_escalation_rate=config.max_escalation_rate,
            clock=clock,
        )
        # The orchestrator owns the breaker; the controller only consults it.
        self.breaker = CircuitBreaker(
            max_failures=config.circuit_breaker.max_failures,
            cooldown_ms=config.circuit_breaker.cooldown_ms,
            clock=clock,
        )
        self.controller = EscalationController(
            config,
            breaker=self.breaker,
            budget_exhausted=self.ledger.budget_exhausted,
            clock=clock,
        )
        self.orchestrator = None
        if client is not None:
            self.orchestrator = SubAgentOrchestrator(
                client,
                breaker=self.breaker,
                timeout_ms=config.timeout_ms,
                on_invocation=self._on_invocation,
                clock=clock,
            )

    def check(self, diagnostics: list[str], file_path: str) -> CheckReport:
        config_path = self.resolver.resolve(file_path)
        classified = [classify_diagnostic(text, file_path) for text in diagnostics]

        with self._lock:
            decisions = [
                self.controller.explain_decision(d.category, d.complexity_score, message=d.message)
                for d in classified
            ]
            # Held until the outcome is recorded so concurrent checks see it.
            if any(decision.escalate for decision in decisions):
                self.controller.reserve_escalation()
        verdicts = [
            DiagnosticVerdict(diagnostic=d, escalated=decision.escalate, reason=decision.reason)
            for d, decision in zip(classified, decisions)
        ]
        escalated = [v.diagnostic.message for v in verdicts if v.escalated]

        analysis = None
        try:
            if escalated and self.orchestrator is not None:
                context = build_context(escalated, file_path, self.resolver)
                analysis = self.orchestrator.analyze(escalated, context)
            elif escalated:
                logger.debug("Escalation requested for %s but no reasoning client is configured", file_path)
        except BaseException:
            if escalated:
                self.controller.release_reservation()
            raise

        with self._lock:
            outcome = self.controller.record_outcome(
                had_errors=bool(classified),
                error_count=len(classified),
                was_escalated=bool(escalated),
                reserved=bool(escalated),
            )
            if self.config.track_metrics:
                self.ledger.record_check(outcome)
                for d in classified:
                    if d.category != Category.AUTO_FIXABLE:
                        self.ledger.record_error_pattern(d.message)

        disposition = choose_disposition(classified, analysis)
        extra: dict[str, Any] = {
            "threshold": self.controller.threshold,
            "rolling_rate": self.controller.rolling_escalation_rate(),
        }
        if analysis is not None:
            extra["insights"] = [i.category.value for i in extract_insights(analysis)]
        report = CheckReport(
            file_path=file_path,
            config_path=config_path,
            disposition=disposition,
            verdicts=verdicts,
            analysis=analysis,
            extra=extra,
        )
        return report.model_copy(update={"summary": self.formatter.format(report)})

    def preview(self, text: str, file_path: str = "") -> dict[str, Any]:
        """Classify one diagnostic and explain the decision without recording anything."""
        diagnostic = classify_diagnostic(text, file_path)
        decision = self.controller.explain_decision(
            diagnostic.category, diagnostic.complexity_score, message=diagnostic.message, commit=False
        )
        return {
            "diagnostic": diagnostic.model_dump(mode="json"),
            "decision": decision.model_dump(mode="json"),
            "config_path": self.resolver.resolve(file_path) if file_path else None,
        }

    def check_many(self, items: Iterable[tuple[list[str], str]], max_workers: int = 4) -> list[CheckReport]:
        """Check several files concurrently; reports come back in input order."""
        items = list(items)
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="triagegate-check") as pool:
            return list(pool.map(lambda item: self.check(*item), items))

    def _on_invocation(self, record: InvocationRecord) -> None:
        # Budget enforcement reads invocations, so they are kept even without track_metrics.
        self.ledger.record_invocation(record)

    # --- state ---

    def snapshot(self) -> dict[str, Any]:
        return {
            "controller": self.controller.snapshot(),
            "breaker": self.breaker.state.model_dump(mode="json"),
            "ledger": self.ledger.snapshot(),
        }

    def restore(self, data: dict[str, Any]) -> None:
        try:
            self.controller.restore(data.get("controller", {}))
            if "breaker" in data:
                self.breaker.restore(CircuitBreakerState.model_validate(data["breaker"]))
        except (AttributeError, TypeError, ValueError, ValidationError):
            logger.debug("Ignoring malformed engine state", exc_info=True)
            return
        self.ledger.restore(data.get("ledger", {}))

    def load_state(self) -> bool:
        if not self.state_file.is_file():
            return False
        try:
            data = read_json(self.state_file)
        except (OSError, ValueError):
            logger.debug("Could not read engine state from %s", self.state_file, exc_info=True)
            return False
        if not isinstance(data, dict):
            return False
        self.restore(data)
        return True

    def save_state(self) -> Path:
        write_json(self.state_file, self.snapshot())
        return self.state_file

    def close(self) -> None:
        if self.orchestrator is not None:
            self.orchestrator.close()
