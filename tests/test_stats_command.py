from __future__ import annotations

import json
from pathlib import Path

import pytest

from helpers import FORMAT_ERROR, GENERIC_ERROR, analysis_payload
from triagegate.check_command import execute_check
from triagegate.config import EngineConfig
from triagegate.errors import UnknownExportFormat
from triagegate.stats_command import execute_stats, load_ledger

FILE = "src/components/Form.tsx"


@pytest.fixture
def checked_project(ts_project: Path) -> Path:
    replay = ts_project / "replay.json"
    replay.write_text(json.dumps(analysis_payload(GENERIC_ERROR)))
    config = EngineConfig()
    execute_check(config=config, diagnostics=[GENERIC_ERROR], file_path=FILE, cwd=ts_project, replay_file=replay)
    execute_check(config=config, diagnostics=[FORMAT_ERROR], file_path=FILE, cwd=ts_project)
    return ts_project


class TestExecuteStats:
    def test_json_report(self, checked_project: Path):
        data = json.loads(execute_stats(config=EngineConfig(), cwd=checked_project))
        assert data["total_checks"] == 2
        assert data["escalated_checks"] == 1
        assert data["escalation_percentage"] == 50.0
        assert data["budget"]["invocations_today"] == 1
        assert data["daily"]["total_checks"] == 2
        assert "caching" in data
        assert "cost_by_category" in data

    def test_csv(self, checked_project: Path):
        lines = execute_stats(config=EngineConfig(), fmt="csv", cwd=checked_project).splitlines()
        assert lines[0] == "timestamp,had_errors,error_count,was_escalated"
        assert len(lines) == 3

    def test_prometheus(self, checked_project: Path):
        out = execute_stats(config=EngineConfig(), fmt="prometheus", cwd=checked_project)
        assert "triagegate_checks_total 2" in out

    def test_unknown_format(self, tmp_path: Path):
        with pytest.raises(UnknownExportFormat):
            execute_stats(config=EngineConfig(), fmt="xml", cwd=tmp_path)

    def test_no_state_is_empty(self, tmp_path: Path):
        data = json.loads(execute_stats(config=EngineConfig(), cwd=tmp_path))
        assert data["total_checks"] == 0


class TestLoadLedger:
    def test_corrupt_state_gives_empty_ledger(self, tmp_path: Path):
        state = tmp_path / ".triagegate" / "state.json"
        state.parent.mkdir()
        state.write_text("[not, json")
        assert load_ledger(EngineConfig(), tmp_path).statistics().total_checks == 0

    def test_limits_come_from_config(self, tmp_path: Path):
        ledger = load_ledger(EngineConfig(daily_invocation_limit=7), tmp_path)
        assert ledger.budget_status().daily_invocation_limit == 7
