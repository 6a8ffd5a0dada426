from __future__ import annotations

import hashlib
import json
from pathlib import Path

from triagegate.fs import (
    ensure_dir,
    load_diagnostics,
    now_iso,
    now_ms,
    parse_diagnostics,
    read_json,
    read_text_or_none,
    sha256_file,
    write_json,
    write_text,
)


class TestEnsureDir:
    def test_creates_nested_dirs(self, tmp_path: Path):
        target = tmp_path / "a" / "b" / "c"
        ensure_dir(target)
        ensure_dir(target)  # idempotent
        assert target.is_dir()


class TestWriteAndRead:
    def test_json_creates_parent_dirs(self, tmp_path: Path):
        path = tmp_path / "sub" / "state.json"
        write_json(path, {"window": [1, 2]})
        assert read_json(path) == {"window": [1, 2]}

    def test_write_text(self, tmp_path: Path):
        path = tmp_path / "nested" / "brief.md"
        write_text(path, "# Brief")
        assert path.read_text() == "# Brief"

    def test_read_text_or_none(self, tmp_path: Path):
        path = tmp_path / "a.ts"
        assert read_text_or_none(path) is None
        path.write_text("const a = 1;")
        assert read_text_or_none(path) == "const a = 1;"

    def test_sha256_file(self, tmp_path: Path):
        path = tmp_path / "tsconfig.json"
        assert sha256_file(path) is None
        path.write_bytes(b"{}")
        assert sha256_file(path) == hashlib.sha256(b"{}").hexdigest()


class TestDiagnostics:
    def test_newline_delimited(self):
        assert parse_diagnostics("a.ts(1,1): error\n\n  \nb.ts(2,2): error\n") == [
            "a.ts(1,1): error",
            "b.ts(2,2): error",
        ]

    def test_json_array_drops_non_strings(self):
        assert parse_diagnostics(json.dumps(["one", 2, "", "two"])) == ["one", "two"]

    def test_empty(self):
        assert parse_diagnostics("   ") == []

    def test_load_from_file(self, tmp_path: Path):
        path = tmp_path / "diags.json"
        path.write_text(json.dumps(["one"]))
        assert load_diagnostics(path) == ["one"]


class TestClock:
    def test_now_iso(self):
        assert now_iso().endswith("+00:00")

    def test_now_ms(self):
        assert now_ms() > 1_600_000_000_000
