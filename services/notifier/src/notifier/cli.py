from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sqlite3

from common.utils import now_utc

from notifier.config import Settings, load_settings, mask_secret
from notifier.context import build_context
from notifier.errors import NotifierError
from notifier.models import RunSummary


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="notifier")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one digest cycle and print its summary")
    run_parser.add_argument(
        "--force",
        action="store_true",
        help="Run even if another run is active or nothing is pending",
    )
    run_parser.add_argument("--limit", type=int, default=None, help="Override the job fetch limit")

    subparsers.add_parser("healthcheck", help="Validate configuration and database access")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8003)
    return parser


async def _run_once(settings: Settings, *, force: bool, limit: int | None) -> RunSummary:
    context = build_context(settings)
    await context.start(start_scheduler=False)
    try:
        return await context.orchestrator.run(source="cli", force=force, limit=limit)
    finally:
        await context.close()


def _cmd_run(args: argparse.Namespace) -> int:
    settings = load_settings()
    summary = asyncio.run(_run_once(settings, force=args.force, limit=args.limit))
    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    return 0 if summary.ok else 1


async def _check_database(settings: Settings) -> dict[str, int]:
    context = build_context(settings)
    await context.start(start_scheduler=False)
    try:
        counts = context.jobs.count_pending_jobs(settings.created_after(now_utc()))
        return counts.model_dump()
    finally:
        await context.close()


def _cmd_healthcheck() -> int:
    settings = load_settings()
    print(f"database: {settings.database_path}")
    print(f"smtp host: {settings.smtp.host or '(not set)'} dry_run={settings.dry_run}")
    print(
        "telegram:",
        f"enabled={settings.telegram.enabled}",
        f"token={mask_secret(settings.telegram.bot_token) or '(not set)'}",
    )
    try:
        counts = asyncio.run(_check_database(settings))
    except (NotifierError, OSError, sqlite3.Error) as exc:
        print(f"healthcheck failed: {exc}")
        return 1
    print(f"pending jobs: {counts}")
    print("healthcheck passed")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("notifier.main:app", host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(message)s")

    try:
        if args.command == "run":
            return _cmd_run(args)
        if args.command == "healthcheck":
            return _cmd_healthcheck()
        if args.command == "serve":
            return _cmd_serve(args)
    except ValueError as exc:
        print(exc)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
