from __future__ import annotations

import shlex
import shutil

from triagegate.config import EngineConfig


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def reasoning_executable(command: str) -> str | None:
    try:
        parts = shlex.split(command)
    except ValueError:
        return None
    return parts[0] if parts else None


def check_environment(*, command: str, config: EngineConfig, replay: bool = False) -> list[str]:
    warnings: list[str] = []
    if command != "check" or replay:
        return warnings
    if not config.enabled:
        warnings.append("escalation is disabled: every diagnostic is blocked with instructions only")
    elif not config.reasoning_command:
        warnings.append("no reasoning command configured: escalated diagnostics will not be analyzed")
    else:
        exe = reasoning_executable(config.reasoning_command)
        if exe is None or not command_exists(exe):
            warnings.append(f"{exe or config.reasoning_command} not found: sub-agent analysis will fail")
    return warnings
