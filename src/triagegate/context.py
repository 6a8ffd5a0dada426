from __future__ import annotations

import re
from pathlib import Path, PurePosixPath

from triagegate.classifier import categorize, parse_location
from triagegate.fs import read_text_or_none
from triagegate.models import ErrorDetail, ImportInfo, ProjectContext, ReasoningContext
from triagegate.resolver import ConfigResolverCache

_MONOREPO_MARKERS = ("packages", "apps")
_MAX_FILE_CHARS = 20000

_JS_IMPORT_PATTERNS = (
    re.compile(r"""import\s+(?:type\s+)?[\w*{}\s,]+?\s+from\s+['"`]([^'"`]+)['"`]"""),
    re.compile(r"""import\s+['"`]([^'"`]+)['"`]"""),
    re.compile(r"""require\(\s*['"`]([^'"`]+)['"`]\s*\)"""),
)
_PY_IMPORT_PATTERNS = (
    re.compile(r"^\s*from\s+(\.*[\w.]*)\s+import\s+", re.MULTILINE),
    re.compile(r"^\s*import\s+([\w.]+)", re.MULTILINE),
)

_NEARBY_SUFFIXES = (".test.ts", ".test.tsx", ".spec.ts", ".spec.tsx", ".stories.tsx")
_NEARBY_FIXED = ("index.ts", "index.tsx", "__init__.py", "conftest.py")


def extract_imports(content: str, *, python: bool = False) -> list[ImportInfo]:
    if not content:
        return []
    patterns = _PY_IMPORT_PATTERNS if python else _JS_IMPORT_PATTERNS
    seen: set[str] = set()
    imports: list[ImportInfo] = []
    for pattern in patterns:
        for match in pattern.finditer(content):
            import_path = match.group(1)
            if not import_path or import_path in seen:
                continue
            seen.add(import_path)
            imports.append(ImportInfo(import_path=import_path, is_relative=import_path.startswith(".")))
    return imports


def analyze_project(file_path: str) -> ProjectContext:
    parts = PurePosixPath(Path(file_path).as_posix()).parts
    marker_index = next((i for i, p in enumerate(parts) if p in _MONOREPO_MARKERS), None)
    is_monorepo = marker_index is not None

    package_name = None
    if is_monorepo and marker_index + 1 < len(parts) - 1:
        package_name = parts[marker_index + 1]

    component_path = None
    if is_monorepo and "src" in parts[marker_index:]:
        src_index = parts.index("src", marker_index)
        between = parts[src_index:-1]
        component_path = "/".join(between) if len(between) > 1 else None

    framework = None
    if "app" in parts and file_path.endswith(".tsx"):
        framework = "nextjs"
    elif file_path.endswith(".py"):
        framework = "python"

    if is_monorepo:
        relative_path = "/".join(parts[marker_index:])
    elif "src" in parts:
        relative_path = "/".join(parts[parts.index("src") :])
    elif "app" in parts:
        relative_path = "/".join(parts[parts.index("app") :])
    else:
        relative_path = parts[-1] if parts else file_path

    return ProjectContext(
        is_monorepo=is_monorepo,
        relative_path=relative_path,
        package_pattern="workspace:*" if is_monorepo else None,
        package_name=package_name,
        component_path=component_path,
        framework=framework,
    )


def nearby_files(file_path: str | Path) -> list[str]:
    path = Path(file_path)
    stem = path.name.split(".")[0]
    names = [f"{stem}{suffix}" for suffix in _NEARBY_SUFFIXES] + [f"test_{stem}.py", *_NEARBY_FIXED]
    found = []
    for name in names:
        candidate = path.with_name(name)
        if candidate != path and candidate.is_file():
            found.append(name)
    tests_dir = path.parent / "__tests__"
    if tests_dir.is_dir():
        found.extend(f"__tests__/{p.name}" for p in sorted(tests_dir.glob(f"{stem}.*")))
    return found


def error_details(diagnostics: list[str]) -> list[ErrorDetail]:
    return [
        ErrorDetail(message=text, line=parse_location(text)[1], category=categorize(text)) for text in diagnostics
    ]


def build_context(
    diagnostics: list[str],
    file_path: str,
    resolver: ConfigResolverCache,
    *,
    include_content: bool = True,
) -> ReasoningContext:
    # Relative to the project root.
    path = Path(file_path)
    if not path.is_absolute():
        path = resolver.project_root / path
    content = read_text_or_none(path) if include_content else None
    if content is not None and len(content) > _MAX_FILE_CHARS:
        content = content[:_MAX_FILE_CHARS]
    return ReasoningContext(
        file_path=file_path,
        config_path=resolver.resolve(file_path),
        file_content=content,
        error_details=error_details(diagnostics),
        project=analyze_project(file_path),
        imports=extract_imports(content or "", python=file_path.endswith(".py")),
        nearby_files=nearby_files(path),
    )
