"""Checksum-validated mapping of source files to project configurations.

A workspace can hold several checker configurations (``tsconfig.json``,
``tsconfig.test.json``, ``pyrightconfig.json`` ...). Each one claims files
through include/exclude globs. The cache remembers which config claims which
include pattern and the sha256 of every config it read; any change to the set
of configs or to one of their hashes triggers a full rebuild on the next
lookup. A copy is written to ``.triagegate/config-cache.json`` so a new process
can skip parsing, but it is always re-validated before use.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import threading
from collections.abc import Callable, Sequence
from functools import lru_cache
from pathlib import Path

from pathspec import GitIgnoreSpec
from pydantic import ValidationError

from triagegate.constants import (
    CONFIG_CACHE_FILE,
    CONFIG_CANDIDATES,
    DEFAULT_CONFIG_NAME,
    TEST_CONFIG,
    WEBVIEW_CONFIG,
)
from triagegate.errors import ConfigParseError
from triagegate.fs import read_json, sha256_file, write_json
from triagegate.models import ConfigCacheData, ProjectConfigEntry

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

_JSONC_COMMENTS = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*|/\*.*?\*/', re.DOTALL)
_TRAILING_COMMAS = re.compile(r",(\s*[}\]])")
_TEST_HINTS = (".test.", ".spec.", "tests/", "test_", "__tests__/")


def _strip_jsonc(text: str) -> str:
    without_comments = _JSONC_COMMENTS.sub(lambda m: m.group(1) or "", text)
    return _TRAILING_COMMAS.sub(r"\1", without_comments)


def parse_config_file(path: Path) -> tuple[list[str], list[str]]:
    """Return ``(include, exclude)`` patterns declared by a config file."""
    try:
        if path.suffix == ".toml":
            with open(path, "rb") as f:
                section = tomllib.load(f).get("tool", {}).get("pyright", {})
        else:
            section = json.loads(_strip_jsonc(path.read_text(encoding="utf-8")))
    except (OSError, UnicodeDecodeError, ValueError, tomllib.TOMLDecodeError) as exc:
        raise ConfigParseError(str(path), str(exc)) from exc

    if not isinstance(section, dict):
        raise ConfigParseError(str(path), "top-level value is not an object")

    include = section.get("include") or []
    exclude = section.get("exclude") or []
    if not isinstance(include, list) or not isinstance(exclude, list):
        raise ConfigParseError(str(path), "include/exclude must be lists")
    return [_clean_pattern(p) for p in include if isinstance(p, str)], [
        _clean_pattern(p) for p in exclude if isinstance(p, str)
    ]


def _clean_pattern(pattern: str) -> str:
    return pattern[2:] if pattern.startswith("./") else pattern


@lru_cache(maxsize=512)
def _compiled(pattern: str) -> GitIgnoreSpec:
    return GitIgnoreSpec.from_lines([pattern])


def matches_pattern(relative_path: str, pattern: str) -> bool:
    if pattern.endswith("/**/*"):
        return relative_path.startswith(pattern[:-4])
    return _compiled(pattern).match_file(relative_path)


def pattern_specificity(pattern: str) -> int:
    return len(pattern.split("/")) + (0 if "**" in pattern else 10)


class ConfigResolverCache:
    def __init__(
        self,
        project_root: Path,
        *,
        candidates: Sequence[str] = CONFIG_CANDIDATES,
        cache_file: Path | None = None,
        on_rebuild: Callable[[], None] | None = None,
    ) -> None:
        self.project_root = Path(project_root).resolve()
        self.candidates = tuple(candidates)
        self.cache_file = cache_file if cache_file is not None else self.project_root / CONFIG_CACHE_FILE
        self.rebuild_count = 0
        self._on_rebuild = on_rebuild
        self._cache = ConfigCacheData()
        self._lock = threading.Lock()
        self._load_cache()

    # --- validity ---

    def discover(self) -> list[Path]:
        return [self.project_root / name for name in self.candidates if (self.project_root / name).is_file()]

    def is_valid(self) -> bool:
        config_files = self.discover()
        hashes = self._cache.hashes
        if len(hashes) != len(config_files):
            return False
        for path in config_files:
            current = sha256_file(path)
            if current is None or current != hashes.get(str(path)):
                return False
        return True

    # --- rebuild ---

    def rebuild(self) -> None:
        with self._lock:
            self._rebuild_locked()

    def _ensure_valid(self) -> None:
        if self.is_valid():
            return
        with self._lock:
            # Another thread rebuilt while we waited for the lock.
            if self.is_valid():
                return
            self._rebuild_locked()

    def _rebuild_locked(self) -> None:
        cache = ConfigCacheData()
        for path in self.discover():
            content_hash = sha256_file(path)
            if content_hash is None:
                continue
            cache.hashes[str(path)] = content_hash
            try:
                include, exclude = parse_config_file(path)
            except ConfigParseError as exc:
                logger.debug("Skipping config: %s", exc)
                continue
            entry = ProjectConfigEntry(
                config_path=str(path),
                content_hash=content_hash,
                include_patterns=include,
                exclude_patterns=exclude,
            )
            for pattern in include:
                # Registration order is priority: most specific config claims first.
                cache.mappings.setdefault(pattern, entry)

        self._cache = cache
        self.rebuild_count += 1
        logger.debug("Config cache rebuilt: %d configs, %d patterns", len(cache.hashes), len(cache.mappings))
        if self._on_rebuild is not None:
            self._on_rebuild()
        self._save_cache()

    # --- lookup ---

    def resolve(self, file_path: str | Path) -> str:
        try:
            return self._resolve(Path(file_path))
        except Exception:
            logger.debug("Config resolution failed for %s; using default", file_path, exc_info=True)
            return str(self.project_root / DEFAULT_CONFIG_NAME)

    def _resolve(self, file_path: Path) -> str:
        self._ensure_valid()
        relative = self._relative(file_path)

        for pattern, entry in self._sorted_mappings():
            if not matches_pattern(relative, pattern):
                continue
            if any(matches_pattern(relative, excluded) for excluded in entry.exclude_patterns):
                continue
            return entry.config_path

        return self._fallback(relative)

    def _fallback(self, relative: str) -> str:
        if "webview/" in relative:
            webview = self.project_root / WEBVIEW_CONFIG
            if webview.is_file():
                return str(webview)

        if any(hint in relative for hint in _TEST_HINTS):
            test_config = self.project_root / TEST_CONFIG
            if test_config.is_file():
                return str(test_config)

        for path in self.discover():
            if path.name in (WEBVIEW_CONFIG, TEST_CONFIG):
                continue
            return str(path)

        return str(self.project_root / DEFAULT_CONFIG_NAME)

    def _sorted_mappings(self) -> list[tuple[str, ProjectConfigEntry]]:
        return sorted(self._cache.mappings.items(), key=lambda item: pattern_specificity(item[0]), reverse=True)

    def _relative(self, file_path: Path) -> str:
        path = file_path if file_path.is_absolute() else self.project_root / file_path
        try:
            return path.resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            return path.as_posix()

    def mappings(self) -> dict[str, ProjectConfigEntry]:
        self._ensure_valid()
        return dict(self._cache.mappings)

    def is_excluded(self, file_path: str | Path, config_path: str | Path) -> bool:
        """Whether ``config_path`` excludes ``file_path``; unknown configs exclude nothing."""
        self._ensure_valid()
        relative = self._relative(Path(file_path))
        for entry in self._cache.mappings.values():
            if entry.config_path == str(config_path):
                return any(matches_pattern(relative, p) for p in entry.exclude_patterns)
        return False

    # --- persistence ---

    def _load_cache(self) -> None:
        try:
            self._cache = ConfigCacheData.model_validate(read_json(self.cache_file))
        except (OSError, ValueError, ValidationError):
            self._cache = ConfigCacheData()

    def _save_cache(self) -> None:
        try:
            write_json(self.cache_file, self._cache.model_dump(mode="json"))
        except OSError:
            logger.debug("Could not persist config cache to %s", self.cache_file)
