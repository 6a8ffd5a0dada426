from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path

from triagegate.fs import now_iso
from triagegate.models import CommandTrace


def _decode(stream: bytes | str | None) -> str:
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream or ""


def run_command(
    command: str,
    *,
    cwd: Path | str | None = None,
    timeout_seconds: float | None = None,
    env: dict[str, str] | None = None,
    input_text: str | None = None,
) -> CommandTrace:
    """Run a shell command, feeding ``input_text`` on stdin.

    Never raises for process failures: a timeout sets ``timed_out`` and a
    command that cannot be launched sets ``launch_error``.
    """
    work_dir = str(cwd) if cwd else os.getcwd()
    merged_env = {**os.environ, **(env or {})}
    started_at = now_iso()
    start = time.monotonic()
    timed_out = False
    launch_error = None

    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=work_dir,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            env=merged_env,
        )
        exit_code = result.returncode
        stdout = result.stdout or ""
        stderr = result.stderr or ""
    except subprocess.TimeoutExpired as exc:
        timed_out = True
        exit_code = 1
        stdout = _decode(exc.stdout)
        stderr = _decode(exc.stderr)
    except OSError as exc:
        launch_error = str(exc)
        exit_code = 127
        stdout = ""
        stderr = str(exc)

    duration_ms = int((time.monotonic() - start) * 1000)

    return CommandTrace(
        command=command,
        cwd=work_dir,
        started_at=started_at,
        duration_ms=duration_ms,
        exit_code=exit_code,
        timed_out=timed_out,
        launch_error=launch_error,
        stdout=stdout,
        stderr=stderr,
    )
