"""Rule-table classification of raw checker diagnostics.

Both tables are ordered and pure: the same text always yields the same
``(category, complexity_score)`` pair.
"""

from __future__ import annotations

import re

from triagegate.models import Category, Classification, Diagnostic

# First matching group wins. Matched case-insensitively.
CATEGORY_RULES: tuple[tuple[Category, tuple[str, ...]], ...] = (
    (
        Category.AUTO_FIXABLE,
        (
            "prettier",
            "eslint",
            "ruff",
            "black would reformat",
            "formatting",
            "auto-fixed",
            "semicolon",
            "quotes",
            "indentation",
            "whitespace",
            "trailing comma",
        ),
    ),
    (
        Category.DEPENDENCY_WARNING,
        (
            "dependency",
            "imported",
            "node_modules",
            "site-packages",
        ),
    ),
    (
        Category.NEEDS_REASONING,
        (
            "not assignable to",
            "does not exist on type",
            "cannot find module",
            "does not satisfy the constraint",
            "incorrectly extends",
            "no properties in common",
            "type instantiation is excessively deep",
            "promise<",
            "generic",
            "interface",
            "is not a known attribute",
            "could not be resolved",
            "cannot access attribute",
            "incompatible type",
        ),
    ),
)

DEFAULT_CATEGORY = Category.DEPENDENCY_WARNING

BASE_COMPLEXITY = 10

# Case-sensitive substring -> additive weight
COMPLEXITY_WEIGHTS: tuple[tuple[str, int], ...] = (
    ("generic", 30),
    ("constraint", 20),
    ("does not satisfy the constraint", 25),
    ("interface", 20),
    ("not assignable to", 25),
    ("does not exist on type", 15),
    ("Cannot find module", 10),
    ("Promise<", 15),
    ("extends", 20),
    ("infer", 30),
    ("keyof", 20),
    ("typeof", 10),
    ("excessively deep", 40),
)

# Longest first: (minimum length, bonus)
LENGTH_BONUSES: tuple[tuple[int, int], ...] = (
    (500, 20),
    (300, 15),
    (200, 10),
    (100, 5),
)

_LOCATION_PATTERNS = (
    re.compile(r"^(?P<file>[^(\s]+)\((?P<line>\d+),(?P<col>\d+)\)"),
    re.compile(r"^(?P<file>[^:\s]+(?::[\\/][^:\s]+)?):(?P<line>\d+):(?P<col>\d+)"),
    re.compile(r"\bline (?P<line>\d+)(?:, col(?:umn)? (?P<col>\d+))?", re.IGNORECASE),
)

_PATTERN_BUCKETS: tuple[tuple[str, str], ...] = (
    ("Cannot find name", "Cannot find name"),
    ("not assignable", "Type mismatch"),
    ("does not exist on type", "Property missing"),
)


def categorize(text: str) -> Category:
    if not text or not isinstance(text, str):
        return DEFAULT_CATEGORY
    lowered = text.lower()
    for category, needles in CATEGORY_RULES:
        if any(needle in lowered for needle in needles):
            return category
    return DEFAULT_CATEGORY


def complexity_score(text: str) -> int:
    if not text or not isinstance(text, str):
        return 0
    score = BASE_COMPLEXITY
    for needle, weight in COMPLEXITY_WEIGHTS:
        if needle in text:
            score += weight
    for min_length, bonus in LENGTH_BONUSES:
        if len(text) > min_length:
            score += bonus
            break
    return max(0, min(score, 100))


def classify(text: str) -> Classification:
    return Classification(category=categorize(text), complexity_score=complexity_score(text))


def parse_location(text: str) -> tuple[str | None, int | None, int | None]:
    """Extract ``(file, line, column)`` from ``file(12,5)`` or ``file:12:5`` shapes."""
    if not text:
        return None, None, None
    stripped = text.strip()
    for pattern in _LOCATION_PATTERNS:
        match = pattern.search(stripped)
        if not match:
            continue
        groups = match.groupdict()
        col = groups.get("col")
        return groups.get("file"), int(groups["line"]), int(col) if col else None
    return None, None, None


def classify_diagnostic(text: str, file_path: str) -> Diagnostic:
    result = classify(text)
    _, line, column = parse_location(text)
    return Diagnostic(
        message=text if isinstance(text, str) else "",
        file_path=file_path,
        line=line,
        column=column,
        category=result.category,
        complexity_score=result.complexity_score,
    )


def error_pattern(text: str) -> str:
    for needle, bucket in _PATTERN_BUCKETS:
        if needle in text:
            return bucket
    return "Other"
