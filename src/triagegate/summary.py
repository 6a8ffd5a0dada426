from __future__ import annotations

import re
from typing import Protocol

from triagegate.models import Analysis, CheckReport, Disposition

_TS_LOCATION = re.compile(r"^([^(\s]+)\((\d+),(\d+)\)")
_MESSAGE_AFTER_CODE = re.compile(r"error [A-Za-z0-9]+: (.+)$")
_LEADING_LOCATION = re.compile(r"^.*?:\d+:\d+\s*-\s*")

_DISPOSITION_HEADLINES: dict[Disposition, str] = {
    Disposition.SILENT_FIX: "All issues are auto-fixable. Continue with your task.",
    Disposition.BLOCK_WITH_INSTRUCTIONS: "Fix the issues listed above before continuing.",
    Disposition.BLOCK_WITH_EXPLANATION: "Fix the issues listed above; an analysis of the root causes is attached.",
}


def extract_message(diagnostic: str) -> str:
    match = _MESSAGE_AFTER_CODE.search(diagnostic)
    if match:
        return match.group(1)
    return _LEADING_LOCATION.sub("", diagnostic).strip()


def format_location(diagnostic: str) -> str | None:
    match = _TS_LOCATION.match(diagnostic.strip())
    if match:
        return f"{match.group(1)}:{match.group(2)}:{match.group(3)}"
    return None


def format_integrated_output(errors: list[str], analysis: Analysis | None) -> str:
    lines: list[str] = []
    if analysis is None:
        for error in errors:
            location = format_location(error)
            prefix = f"{location} - " if location else ""
            lines.append(f"{prefix}{extract_message(error)}")
        return "\n".join(lines) + ("\n" if lines else "")

    lines += ["=" * 42, "Type Error Analysis", "=" * 42, ""]
    for index, error in enumerate(errors):
        location = format_location(error)
        if location:
            lines.append(f"at {location}")
        lines.append(f"error: {extract_message(error)}")
        if index < len(analysis.explanations):
            explanation = analysis.explanations[index]
            lines += ["", "Root cause:", f"   {explanation.root_cause}"]
            lines += ["", "Suggested fix:", f"   {explanation.suggestion}"]
            if explanation.code_example:
                lines += ["", "Example:"]
                lines += [f"   {line}" for line in explanation.code_example.splitlines()]
        lines.append("")

    if analysis.best_practices:
        lines.append("Best practices:")
        lines += [f"   - {practice}" for practice in analysis.best_practices]
    if analysis.impact_assessment:
        lines.append(f"Impact: {analysis.impact_assessment}")
    return "\n".join(lines) + "\n"


class SummaryFormatter(Protocol):
    def format(self, report: CheckReport) -> str: ...


class PlainSummaryFormatter:
    """Raw diagnostics only, grouped by disposition."""

    def format(self, report: CheckReport) -> str:
        blocking = [v for v in report.verdicts if v.diagnostic.category.value != "auto-fixable"]
        fixable = [v for v in report.verdicts if v.diagnostic.category.value == "auto-fixable"]
        lines: list[str] = []
        if fixable:
            lines.append(f"=== Auto-fixable ({len(fixable)}) ===")
            lines += [f"  {v.diagnostic.message}" for v in fixable]
        if blocking:
            lines.append(f"=== Quality Check Summary ({len(blocking)}) ===")
            lines += [f"  {v.diagnostic.message}" for v in blocking]
        lines.append(_DISPOSITION_HEADLINES[report.disposition])
        return "\n".join(lines) + "\n"


class AnalysisSummaryFormatter(PlainSummaryFormatter):
    """Adds the sub-agent analysis for escalated diagnostics."""

    def format(self, report: CheckReport) -> str:
        base = super().format(report)
        if report.analysis is None:
            return base
        escalated = [v.diagnostic.message for v in report.verdicts if v.escalated]
        return base + "\n" + format_integrated_output(escalated, report.analysis)


def formatter_for(*, with_analysis: bool) -> SummaryFormatter:
    return AnalysisSummaryFormatter() if with_analysis else PlainSummaryFormatter()


def generate_markdown(report: CheckReport) -> str:
    lines = [
        f"# Quality Gate Brief - {report.file_path}",
        "",
        f"**Disposition:** {report.disposition.value}  ",
        f"**Project config:** {report.config_path}  ",
        f"**Summary:** {report.summary}",
        "",
    ]

    if report.verdicts:
        lines.append("## Diagnostics")
        lines.append("")
        for verdict in report.verdicts:
            d = verdict.diagnostic
            location = f" (line {d.line})" if d.line is not None else ""
            lines.append(f"### {d.category.value}{location}")
            lines.append(f"- **Message:** {d.message}")
            lines.append(f"- **Complexity:** {d.complexity_score}")
            lines.append(f"- **Escalated:** {verdict.escalated} ({verdict.reason})")
            lines.append("")

    if report.analysis is not None:
        lines.append("## Analysis")
        lines.append("")
        for explanation in report.analysis.explanations:
            lines.append(f"- **{explanation.error}**")
            lines.append(f"  - Root cause: {explanation.root_cause}")
            lines.append(f"  - Suggestion: {explanation.suggestion}")
        lines.append("")
        lines.append(f"**Impact:** {report.analysis.impact_assessment}")
        lines.append("")
        if report.analysis.best_practices:
            lines.append("## Best Practices")
            lines.append("")
            lines += [f"- {p}" for p in report.analysis.best_practices]
            lines.append("")

    return "\n".join(lines)
