"""Sub-agent orchestration: package context, call the reasoning step, validate.

``analyze`` never raises. Timeouts, transport errors and malformed responses
are all one failure to the breaker, and every path that reaches the external
boundary produces an ``InvocationRecord`` for the usage ledger.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from triagegate.breaker import CircuitBreaker
from triagegate.classifier import categorize
from triagegate.errors import InvocationTimeout, OrchestratorFailure, TransportFailure
from triagegate.fs import now_ms
from triagegate.models import (
    Analysis,
    ErrorInsight,
    InsightCategory,
    InvocationRecord,
    OrchestratorMetrics,
    ReasoningContext,
)
from triagegate.reasoning import ReasoningClient, parse_response

logger = logging.getLogger(__name__)

_ERROR_CODE_RE = re.compile(r"\b(TS\d{3,5}|report[A-Z]\w+)\b")
_CHARS_PER_TOKEN = 4


def build_prompt(diagnostics: list[str], context: ReasoningContext) -> str:
    project = context.project
    lines = [
        f"Analyze type-checker diagnostics in a {'monorepo' if project.is_monorepo else 'single project'} context.",
        "",
        "**File Context:**",
        f"- File: {context.file_path}",
        f"- Project Config: {context.config_path}",
    ]
    if project.is_monorepo and project.package_name:
        lines.append(f"- Package: {project.package_name}")
    if project.framework:
        lines.append(f"- Framework: {project.framework}")

    lines += ["", "**Diagnostics:**", *diagnostics]

    codes = list(dict.fromkeys(m.group(1) for d in diagnostics for m in _ERROR_CODE_RE.finditer(d)))
    if codes:
        lines += ["", f"**Error Codes:** {', '.join(codes)}"]

    if any("generic" in d or "constraint" in d for d in diagnostics):
        lines += ["", "**Note:** Complex generic type errors detected. Please provide a detailed explanation."]

    if context.file_content:
        lines += ["", "**File Content:**", "```", context.file_content, "```"]

    if context.imports:
        lines += ["", "**Imports:**"]
        lines += [f"- {i.import_path} ({'relative' if i.is_relative else 'external'})" for i in context.imports]

    if context.nearby_files:
        lines += ["", f"**Nearby Files:** {', '.join(context.nearby_files)}"]

    if project.is_monorepo:
        workspace = [i.import_path for i in context.imports if i.import_path.startswith("@") and not i.is_relative]
        lines += ["", "This is a monorepo project."]
        if workspace:
            lines.append(f"**Workspace Dependencies:** {', '.join(workspace)}")

    lines += [
        "",
        "Respond with JSON only: "
        '{"success": true, "analysis": {"explanations": [{"error": str, "root_cause": str, '
        '"suggestion": str, "code_example": str | null}], "impact_assessment": str, "best_practices": [str]}}',
    ]
    return "\n".join(lines) + "\n"


def extract_insights(analysis: Analysis) -> list[ErrorInsight]:
    insights = []
    for explanation in analysis.explanations:
        if "not assignable to type" in explanation.error or "Type mismatch" in explanation.error:
            category = InsightCategory.TYPE_MISMATCH
        elif "Cannot find module" in explanation.error:
            category = InsightCategory.MISSING_MODULE
        else:
            category = InsightCategory.UNKNOWN
        insights.append(ErrorInsight(category=category, explanation=explanation))
    return insights


class SubAgentOrchestrator:
    def __init__(
        self,
        client: ReasoningClient,
        *,
        breaker: CircuitBreaker | None = None,
        timeout_ms: int = 30000,
        on_invocation: Callable[[InvocationRecord], None] | None = None,
        clock: Callable[[], int] = now_ms,
        cache_responses: bool = True,
        max_workers: int = 4,
    ) -> None:
        self.client = client
        self.breaker = breaker if breaker is not None else CircuitBreaker(clock=clock)
        self.timeout_ms = timeout_ms
        self._on_invocation = on_invocation
        self._clock = clock
        self._cache_responses = cache_responses
        self._cache: dict[str, Analysis] = {}
        self._metrics = OrchestratorMetrics()
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="triagegate-reasoning")

    def analyze(
        self,
        diagnostics: list[str],
        context: ReasoningContext,
        timeout_ms: int | None = None,
    ) -> Analysis | None:
        if not diagnostics:
            return None
        try:
            prompt = build_prompt(diagnostics, context)
        except Exception:
            logger.warning("Could not build sub-agent prompt", exc_info=True)
            return None

        category = categorize(diagnostics[0]).value
        key = hashlib.sha256(prompt.encode("utf-8")).hexdigest()

        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            self._record(prompt, 0, succeeded=True, cached=True, category=category, duration_ms=0)
            return cached

        if not self.breaker.allow_request():
            logger.debug("Sub-agent analysis skipped: circuit breaker is open")
            return None

        timeout_s = (timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000
        started = self._clock()
        raw = ""
        try:
            raw = self._invoke(prompt, timeout_s)
            response = parse_response(raw)
        except OrchestratorFailure as exc:
            self.breaker.record_failure()
            logger.warning("Sub-agent analysis failed (%s): %s", type(exc).__name__, exc)
            self._record(
                prompt,
                len(raw),
                succeeded=False,
                category=category,
                duration_ms=self._clock() - started,
                failure=type(exc).__name__,
            )
            return None

        self.breaker.record_success()
        if self._cache_responses:
            with self._lock:
                self._cache[key] = response.analysis
        self._record(prompt, len(raw), succeeded=True, category=category, duration_ms=self._clock() - started)
        return response.analysis

    def _invoke(self, prompt: str, timeout_s: float) -> str:
        try:
            future = self._executor.submit(self.client.invoke, prompt, timeout_seconds=timeout_s)
        except RuntimeError as exc:
            raise TransportFailure(f"reasoning executor unavailable: {exc}") from exc
        try:
            return future.result(timeout=timeout_s)
        except FuturesTimeout as exc:
            # Whatever the call returns later is dropped with the future.
            future.cancel()
            raise InvocationTimeout(f"no response within {timeout_s:.1f}s") from exc
        except OrchestratorFailure:
            raise
        except Exception as exc:
            raise TransportFailure(f"{type(exc).__name__}: {exc}") from exc

    def _record(
        self,
        prompt: str,
        response_size: int,
        *,
        succeeded: bool,
        category: str | None,
        duration_ms: int,
        cached: bool = False,
        failure: str | None = None,
    ) -> None:
        record = InvocationRecord(
            prompt_size=len(prompt),
            response_size=response_size,
            model=getattr(self.client, "model", "unknown"),
            succeeded=succeeded,
            cached=cached,
            category=category,
            timestamp=self._clock(),
            duration_ms=duration_ms,
            failure=failure,
        )
        with self._lock:
            m = self._metrics
            m.total_invocations += 1
            if cached:
                m.cache_hits += 1
            elif succeeded:
                m.successful_invocations += 1
                m.average_response_time_ms += (duration_ms - m.average_response_time_ms) / m.successful_invocations
            else:
                m.failed_invocations += 1
            m.total_tokens_used += (record.prompt_size + record.response_size) // _CHARS_PER_TOKEN
        if self._on_invocation is not None:
            try:
                self._on_invocation(record)
            except Exception:
                logger.debug("Invocation listener failed", exc_info=True)

    def metrics(self) -> OrchestratorMetrics:
        with self._lock:
            return self._metrics.model_copy()

    def is_circuit_open(self) -> bool:
        return self.breaker.is_open

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
