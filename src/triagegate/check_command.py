from __future__ import annotations

import time
from pathlib import Path

from triagegate.config import EngineConfig
from triagegate.constants import BRIEF_MD_FILE, REPORT_FILE, TRIAGEGATE_DIR
from triagegate.engine import QualityGateEngine
from triagegate.fs import ensure_dir, now_iso, write_json, write_text
from triagegate.models import Disposition
from triagegate.reasoning import build_client
from triagegate.summary import generate_markdown


def execute_check(
    *,
    config: EngineConfig,
    diagnostics: list[str],
    file_path: str,
    cwd: Path | None = None,
    replay_file: Path | None = None,
) -> dict:
    cwd = cwd or Path.cwd()
    ensure_dir(cwd / TRIAGEGATE_DIR)

    started_at = now_iso()
    start_ms = _monotonic_ms()

    client = build_client(command=config.reasoning_command, model=config.model, cwd=cwd, replay_file=replay_file)
    engine = QualityGateEngine(config, project_root=cwd, client=client)
    try:
        engine.load_state()
        report = engine.check(diagnostics, file_path)
        state_path = engine.save_state()
    finally:
        engine.close()

    report = report.model_copy(
        update={
            "extra": {
                **report.extra,
                "started_at": started_at,
                "duration_ms": _monotonic_ms() - start_ms,
                "config_source": config.source,
            }
        }
    )

    report_path = cwd / REPORT_FILE
    brief_path = cwd / BRIEF_MD_FILE
    write_json(report_path, report.model_dump(mode="json"))
    write_text(brief_path, generate_markdown(report))

    return {
        "status": "pass" if report.disposition == Disposition.SILENT_FIX else "blocked",
        "disposition": report.disposition.value,
        "config_path": report.config_path,
        "escalated": sum(1 for v in report.verdicts if v.escalated),
        "summary": report.summary,
        "report_path": str(report_path),
        "brief_path": str(brief_path),
        "state_path": str(state_path),
    }


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)
