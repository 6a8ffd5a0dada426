from __future__ import annotations

import json
from pathlib import Path

import pytest
from helpers import GENERIC_ERROR, FakeClock, analysis_payload

from triagegate.config import EngineConfig
from triagegate.reasoning import ReplayReasoningClient


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def replay_client() -> ReplayReasoningClient:
    return ReplayReasoningClient([analysis_payload(GENERIC_ERROR)], repeat_last=True)


@pytest.fixture
def ts_project(tmp_path: Path) -> Path:
    """A workspace with a base, test and webview tsconfig."""
    tmp_path = tmp_path.resolve()
    (tmp_path / "tsconfig.json").write_text(json.dumps({"include": ["src/**/*"], "exclude": ["src/generated/**"]}))
    (tmp_path / "tsconfig.test.json").write_text(
        '{\n  // test files\n  "include": ["src/**/*.test.ts", "tests/**/*"],\n}\n'
    )
    (tmp_path / "tsconfig.webview.json").write_text(json.dumps({"include": ["src/webview/**/*"]}))
    src = tmp_path / "src" / "components"
    src.mkdir(parents=True)
    (src / "Form.tsx").write_text("import React from 'react';\nimport { Field } from './Field';\n")
    return tmp_path
