from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config.loader import ConfigError, load_config
from ..db.history_store import HistoryStoreError, open_history_store
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.error_record import RUN_LEVEL, ErrorRecord
from ..services.history import DEFAULT_LOGS
from ..services.orchestrator import (
    PipelineError,
    RunContext,
    run_debug_rows,
    run_dept_health,
    run_history,
    run_inspect,
    run_log_dept_snapshot,
    run_log_snapshot,
    run_log_utilization,
    run_snapshot,
    run_utilization,
)
from ..services.summary import render_summary_line
from ..sheets.client import FetchError

"""CLI entrypoint.

Flow:
- load .env (override) and the YAML config
- dispatch the sub-command (each prints one JSON document on stdout)
- SUMMARY line on the log stream, error records flushed to logs/

Exit codes: 0 success, 1 fatal (stdout then carries ``{"error": message}``).
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1

ERROR_TYPES: dict[type[Exception], str] = {
    ConfigError: "CONFIG_ERROR",
    FetchError: "FETCH_FAILED",
    HistoryStoreError: "HISTORY_STORE_ERROR",
    PipelineError: "PIPELINE_ERROR",
}

HISTORY_COMMANDS = {"log-snapshot", "log-dept-snapshot", "log-utilization", "history"}


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; its values win over variables already in the process."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="portfolio-snapshot", description="Smartsheet portfolio snapshot & history")
    p.add_argument("--config", help="Config YAML (default: config/dashboard.yml, else packaged defaults)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("snapshot", help="Live / new business / internal portfolio snapshot")
    sub.add_parser("dept-health", help="Delivery & Experiences departmental health")
    sub.add_parser("utilization", help="Agency utilization")
    sub.add_parser("log-snapshot", help="Append the weekly snapshot to history")
    sub.add_parser("log-dept-snapshot", help="Append last month's penetration to history")
    sub.add_parser("log-utilization", help="Append the utilization summary to history")
    hist = sub.add_parser("history", help="Print a history log")
    hist.add_argument("log", choices=sorted(DEFAULT_LOGS))
    insp = sub.add_parser("inspect", help="Show columns and sample rows of a sheet / report")
    insp.add_argument("source_id")
    insp.add_argument("--kind", choices=["sheet", "report"], default="sheet")
    sub.add_parser("debug-rows", help="Row counts per source sheet / workflow status")
    return p.parse_args(argv)


def _print_json(doc: Any) -> None:
    print(json.dumps(doc, ensure_ascii=False, indent=2, default=str))


def _dispatch(args: argparse.Namespace, ctx: RunContext) -> tuple[Any, Any]:
    command = args.command
    if command in HISTORY_COMMANDS:
        store, logs = open_history_store(ctx.config.history)
        if command == "log-snapshot":
            return run_log_snapshot(ctx, store, logs)
        if command == "log-dept-snapshot":
            return run_log_dept_snapshot(ctx, store, logs)
        if command == "log-utilization":
            return run_log_utilization(ctx, store, logs)
        return run_history(ctx, store, logs, args.log)
    if command == "snapshot":
        return run_snapshot(ctx)
    if command == "dept-health":
        return run_dept_health(ctx)
    if command == "utilization":
        return run_utilization(ctx)
    if command == "inspect":
        return run_inspect(ctx, args.source_id, args.kind)
    return run_debug_rows(ctx)


def _fail(logger: logging.Logger, errors: ErrorLogBuffer, command: str, e: Exception) -> int:
    logger.error(f"{command}: {e}")
    error_type = next((v for k, v in ERROR_TYPES.items() if isinstance(e, k)), "UNEXPECTED")
    errors.append(ErrorRecord.create(command, RUN_LEVEL, "", error_type, str(e)))
    path = errors.flush()
    if path is not None:
        logger.info(f"error log written: {path}")
    _print_json({"error": str(e)})
    return EXIT_FATAL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] が渡された場合に sys.argv が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        for h in logger.handlers:
            h.setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
        logger.debug("debug mode enabled")

    errors = ErrorLogBuffer()
    try:
        cfg = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        return _fail(logger, errors, args.command, e)

    ctx = RunContext(command=args.command, config=cfg, errors=errors)
    try:
        doc, result = _dispatch(args, ctx)
    except (ConfigError, FetchError, HistoryStoreError, PipelineError) as e:
        return _fail(logger, errors, args.command, e)

    skipped = len(errors)
    path = errors.flush()
    if path is not None:
        logger.warning(f"{skipped} optional source(s) skipped; see {path}")
    _print_json(doc)
    # log_summary が "SUMMARY " を付与するため除去して渡す
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return EXIT_SUCCESS


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
