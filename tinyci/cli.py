"""Command line entry point.

Subcommands:
- run:     poll the configured pipelines (or run one cycle with --once)
- history: print recorded runs

Exit code behavior:
- 0 on normal completion (task failures under the lenient policy included)
- 1 when git is missing, or when a pipeline failure stops the run
- 2 for CLI usage and config errors in --once mode
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from tinyci import __version__
from tinyci.config import RunFailurePolicy, RunnerSettings, TaskFailurePolicy
from tinyci.errors import FatalRunError, HistoryError, MissingToolError
from tinyci.history.store import HistoryStore
from tinyci.logging_setup import configure_logging
from tinyci.pipeline.definitions import JsonFileConfigSource
from tinyci.scheduler import build_poll_loop
from tinyci.tracing import init_tracing
from tinyci.vcs.git import ensure_git_available


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tinyci", description="Minimal polling CI runner")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Poll pipelines and run the ones with new commits")
    p_run.add_argument("-c", "--config", default=None, help="Pipeline config file (default: <workdir>/config.json)")
    p_run.add_argument("-w", "--workdir", default=None, help="Directory for pipelines/ and history.json (default: cwd)")
    p_run.add_argument("--once", action="store_true", help="Run a single cycle instead of polling forever")
    p_run.add_argument("--interval", type=float, default=None, help="Seconds between poll cycles")
    p_run.add_argument("--strict", action="store_true", help="Abort a pipeline on its first failing task")
    p_run.add_argument(
        "--on-run-failure",
        choices=[p.value for p in RunFailurePolicy],
        default=None,
        help=(
            "When a run errors (clone, checkout or strict task abort): "
            "stop the runner (abort) or skip the pipeline (skip)"
        ),
    )
    p_run.add_argument("--task-timeout", type=int, default=None, help="Default per-task timeout in seconds")
    p_run.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    p_run.add_argument("--log-file", default=None, help="Also write logs to this file")

    p_hist = sub.add_parser("history", help="Show recorded runs")
    p_hist.add_argument("-w", "--workdir", default=None, help="Directory holding history.json (default: cwd)")
    p_hist.add_argument("-p", "--pipeline", default=None, help="Only show this pipeline identity")
    p_hist.add_argument("-n", "--limit", type=int, default=10, help="Runs per pipeline, newest last (default: 10)")
    p_hist.add_argument("--json", action="store_true", help="Print raw JSON")

    return parser


def _settings_from_args(args: argparse.Namespace) -> RunnerSettings:
    workdir = Path(args.workdir) if args.workdir else None
    config_path = Path(args.config) if args.config else None
    if config_path is None and workdir is not None:
        config_path = workdir / "config.json"

    return RunnerSettings.from_env(
        workdir=workdir,
        config_path=config_path,
        poll_interval_seconds=args.interval,
        task_failure=TaskFailurePolicy.ABORT if args.strict else None,
        run_failure=args.on_run_failure,
        task_timeout_seconds=args.task_timeout,
    )


def _cmd_run(args: argparse.Namespace) -> int:
    configure_logging(args.log_level, args.log_file)

    try:
        ensure_git_available()
    except MissingToolError as e:
        logger.error(str(e))
        return 1

    try:
        settings = _settings_from_args(args)
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        return 2

    init_tracing()
    settings.workdir.mkdir(parents=True, exist_ok=True)
    loop = build_poll_loop(settings, JsonFileConfigSource(settings.config_path))
    logger.info(f"tinyci {__version__} watching {settings.config_path} (workdir: {settings.workdir})")

    try:
        if args.once:
            report = loop.run_once()
            if report.config_error:
                return 2
        else:
            loop.run_forever()
    except FatalRunError as e:
        logger.error(f"Stopping: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        return 130

    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    workdir = Path(args.workdir) if args.workdir else Path.cwd()
    settings = RunnerSettings(workdir=workdir)
    store = HistoryStore(settings.history_path)

    try:
        history = store.load()
    except HistoryError as e:
        print(str(e), file=sys.stderr)
        return 1

    if args.pipeline:
        history = {args.pipeline: history.get(args.pipeline, [])}

    limit = max(0, int(args.limit))
    if args.json:
        payload = {
            identity: [log.to_dict() for log in (logs[-limit:] if limit else [])]
            for identity, logs in history.items()
        }
        print(json.dumps(payload, indent=2))
        return 0

    if not history:
        print(f"No runs recorded in {settings.history_path}")
        return 0

    for identity, logs in history.items():
        print(f"{identity}: {len(logs)} run(s)")
        shown = logs[-limit:] if limit else []
        for log in shown:
            status = "ok" if log.succeeded else "FAILED"
            commit = (log.commit_hash or "-")[:12]
            failed = len(log.failed_tasks())
            suffix = f" ({failed} failed task(s))" if failed else ""
            print(f"  {log.start_time.isoformat()}  {commit}  {log.elapsed_ms}ms  {status}{suffix}")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "run":
        return _cmd_run(args)
    if args.cmd == "history":
        return _cmd_history(args)

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
