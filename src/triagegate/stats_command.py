from __future__ import annotations

import json
from pathlib import Path

from triagegate.config import EngineConfig
from triagegate.constants import STATE_FILE
from triagegate.errors import UnknownExportFormat
from triagegate.fs import read_json
from triagegate.metrics import EXPORT_FORMATS, UsageLedger


def load_ledger(config: EngineConfig, cwd: Path) -> UsageLedger:
    ledger = UsageLedger(
        monthly_cost_limit=config.monthly_cost_limit,
        daily_invocation_limit=config.daily_invocation_limit,
        max_escalation_rate=config.max_escalation_rate,
    )
    state_path = cwd / STATE_FILE
    if state_path.is_file():
        try:
            data = read_json(state_path)
        except (OSError, ValueError):
            data = {}
        if isinstance(data, dict):
            ledger.restore(data.get("ledger", {}))
    return ledger


def execute_stats(*, config: EngineConfig, fmt: str = "json", cwd: Path | None = None) -> str:
    cwd = cwd or Path.cwd()
    if fmt not in EXPORT_FORMATS:
        raise UnknownExportFormat(f"unknown format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")

    ledger = load_ledger(config, cwd)
    if fmt != "json":
        return ledger.export(fmt)

    payload = json.loads(ledger.export("json"))
    payload["hourly"] = ledger.hourly_statistics().model_dump(mode="json")
    payload["daily"] = ledger.daily_statistics().model_dump(mode="json")
    payload["budget"] = ledger.budget_status().model_dump(mode="json")
    payload["caching"] = ledger.caching_savings().model_dump(mode="json")
    payload["cost_by_category"] = {k: v.model_dump(mode="json") for k, v in ledger.cost_by_category().items()}
    return json.dumps(payload, indent=2) + "\n"
