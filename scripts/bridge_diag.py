"""Bridge MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from bridge_mcp.config import BridgeSettings
from bridge_mcp.pty import strip_ansi
from bridge_mcp.pty.utils import prompt_file_path, task_log_dir, task_log_path


def load_settings() -> BridgeSettings:
    try:
        return BridgeSettings()
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}")
        raise SystemExit(1)


def cmd_config(args: argparse.Namespace) -> None:
    settings = load_settings()
    print(json.dumps(settings.model_dump(mode="json"), indent=2))


def cmd_logs(args: argparse.Namespace) -> None:
    project = Path(args.project).expanduser().resolve()
    log_dir = task_log_dir(project)
    if not log_dir.is_dir():
        print(f"No task logs under {log_dir}")
        raise SystemExit(1)

    records = []
    for log_path in sorted(log_dir.glob("task_*.log")):
        task_id = log_path.stem
        stat = log_path.stat()
        records.append(
            {
                "task_id": task_id,
                "log_file": str(log_path),
                "size_bytes": stat.st_size,
                "modified_at": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                "has_prompt": prompt_file_path(project, task_id).exists(),
            }
        )
    records.sort(key=lambda record: record["modified_at"], reverse=True)

    if args.json:
        print(json.dumps(records, indent=2))
    else:
        for record in records:
            print(f"{record['task_id']} [{record['size_bytes']} bytes] {record['modified_at']}")


def cmd_tail(args: argparse.Namespace) -> None:
    log_path = task_log_path(Path(args.project).expanduser().resolve(), args.task_id)
    try:
        raw = log_path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        print(f"Log file not available: {exc}")
        raise SystemExit(1)

    text = raw if args.raw else strip_ansi(raw)
    lines = text.splitlines()
    if args.lines is not None and args.lines > 0:
        lines = lines[-args.lines :]
    print("\n".join(lines))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bridge MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_config = sub.add_parser("config", help="Show the effective configuration")
    p_config.set_defaults(func=cmd_config)

    p_logs = sub.add_parser("logs", help="List task logs recorded for a project")
    p_logs.add_argument("project", help="Project directory")
    p_logs.add_argument("--json", action="store_true", help="Output JSON")
    p_logs.set_defaults(func=cmd_logs)

    p_tail = sub.add_parser("tail", help="Print the end of a task log")
    p_tail.add_argument("project", help="Project directory")
    p_tail.add_argument("task_id")
    p_tail.add_argument(
        "--lines",
        type=int,
        default=40,
        help="Number of trailing lines to show (0 for all)",
    )
    p_tail.add_argument("--raw", action="store_true", help="Keep terminal escape sequences")
    p_tail.set_defaults(func=cmd_tail)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
