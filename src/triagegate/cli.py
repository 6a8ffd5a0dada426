from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from triagegate import __version__
from triagegate.check_command import execute_check
from triagegate.config import load_config
from triagegate.engine import QualityGateEngine
from triagegate.env import check_environment
from triagegate.errors import ConfigValidationError
from triagegate.fs import load_diagnostics, parse_diagnostics
from triagegate.metrics import EXPORT_FORMATS
from triagegate.models import Sensitivity
from triagegate.stats_command import execute_stats

EXIT_PASS = 0
EXIT_BLOCKED = 2
EXIT_CONFIG_ERROR = 3


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="triagegate",
        description="Escalation-aware quality gate for checker diagnostics",
    )
    parser.add_argument("--version", action="version", version=f"triagegate {__version__}")

    # Config overrides shared by every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--sensitivity", choices=[s.value for s in Sensitivity], help="Escalation sensitivity")
    common.add_argument("--max-rate", type=float, help="Maximum rolling escalation rate (0-1)")
    common.add_argument("--min-complexity", type=int, help="Override the sensitivity's minimum complexity")
    common.add_argument("--timeout-ms", type=int, help="Sub-agent timeout in milliseconds")
    common.add_argument("--reasoning-command", help="Command that receives the prompt on stdin")
    common.add_argument("--disable", action="store_true", default=False, help="Never escalate")
    common.add_argument("--debug", action="store_true", default=False, help="Debug logging on stderr")

    sub = parser.add_subparsers(dest="command")

    # check
    check_p = sub.add_parser("check", parents=[common], help="Triage diagnostics for one file")
    check_p.add_argument("--file", required=True, help="Source file the diagnostics belong to")
    check_p.add_argument("--diagnostics", default="-", help="Diagnostics file (JSON array or lines); '-' for stdin")
    check_p.add_argument("--replay", default=None, help="Serve sub-agent responses from a JSON file")

    # resolve
    resolve_p = sub.add_parser("resolve", parents=[common], help="Show the project config that owns a file")
    resolve_p.add_argument("path", help="Source file path")

    # classify
    classify_p = sub.add_parser("classify", parents=[common], help="Classify one diagnostic and explain the decision")
    classify_p.add_argument("text", help="Diagnostic text")
    classify_p.add_argument("--file", default="", help="Source file the diagnostic belongs to")

    # stats
    stats_p = sub.add_parser("stats", parents=[common], help="Print usage statistics")
    stats_p.add_argument("--format", default="json", choices=list(EXPORT_FORMATS), help="Output format")

    # config
    sub.add_parser("config", parents=[common], help="Print the effective configuration")

    return parser


def _cli_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.sensitivity is not None:
        overrides["escalation_sensitivity"] = args.sensitivity
    if args.max_rate is not None:
        overrides["max_escalation_rate"] = args.max_rate
    if args.min_complexity is not None:
        overrides["min_complexity_score"] = args.min_complexity
    if args.timeout_ms is not None:
        overrides["timeout_ms"] = args.timeout_ms
    if args.reasoning_command is not None:
        overrides["reasoning_command"] = args.reasoning_command
    if args.disable:
        overrides["enabled"] = False
    if args.debug:
        overrides["debug"] = True
    return overrides


def _resolve_path(cwd: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else cwd / path


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    cwd = Path.cwd()

    try:
        config = load_config(cwd, cli_overrides=_cli_overrides(args))
    except ConfigValidationError as exc:
        for error in exc.errors:
            print(f"[triagegate error] {error}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.WARNING,
        format="[triagegate %(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # Print environment warnings
    replay = getattr(args, "replay", None) is not None
    for w in check_environment(command=args.command, config=config, replay=replay):
        print(f"[triagegate warn] {w}", file=sys.stderr)

    if args.command == "check":
        if args.diagnostics == "-":
            diagnostics = parse_diagnostics(sys.stdin.read())
        else:
            diagnostics = load_diagnostics(_resolve_path(cwd, args.diagnostics))
        result = execute_check(
            config=config,
            diagnostics=diagnostics,
            file_path=args.file,
            cwd=cwd,
            replay_file=_resolve_path(cwd, args.replay) if replay else None,
        )
        print(json.dumps(result, indent=2))
        sys.exit(EXIT_PASS if result["status"] == "pass" else EXIT_BLOCKED)

    elif args.command == "resolve":
        engine = QualityGateEngine(config, project_root=cwd)
        config_path = engine.resolver.resolve(args.path)
        result = {
            "file": args.path,
            "config_path": config_path,
            "excluded": engine.resolver.is_excluded(args.path, config_path),
        }
        print(json.dumps(result, indent=2))
        sys.exit(0)

    elif args.command == "classify":
        engine = QualityGateEngine(config, project_root=cwd)
        engine.load_state()
        print(json.dumps(engine.preview(args.text, args.file), indent=2))
        sys.exit(0)

    elif args.command == "stats":
        sys.stdout.write(execute_stats(config=config, fmt=args.format, cwd=cwd))
        sys.exit(0)

    elif args.command == "config":
        print(config.model_dump_json(indent=2))
        sys.exit(0)
