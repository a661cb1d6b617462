#!/usr/bin/env python3
"""Command-line interface for venue event ingestion.

Commands:
  - event-ingest ingest           : Submit a scraper payload and process it
  - event-ingest sites            : List configured sites
  - event-ingest validate-config  : Validate the site registry

Typical usage:
  event-ingest ingest --site fabcafe --input fabcafe.json
  event-ingest ingest --input payload.json --dry-run
  event-ingest sites
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from event_ingest.configs.config import load_sites_config, validate_sites_config
from event_ingest.configs.settings import get_settings
from event_ingest.ingestion.orchestrator import IngestionOrchestrator
from event_ingest.monitoring.logging import LoggingOptions, setup_logging
from event_ingest.storage.memory_store import InMemoryEventStore


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="event-ingest", description="Venue event ingestion CLI")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = p.add_subparsers(dest="cmd")

    # ingest
    pi = sub.add_parser("ingest", help="Submit a scraper payload and process it")
    pi.add_argument(
        "--input",
        "-i",
        required=True,
        help='JSON file: a list of events or {"site": ..., "events": [...]}',
    )
    pi.add_argument("--site", "-s", default=None, help="Site key (overrides the payload's)")
    pi.add_argument("--concurrency", "-p", type=int, default=None, help="Worker count")
    pi.add_argument("--timeout", type=float, default=None, help="Per-task timeout (s)")
    pi.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the in-memory store instead of DATABASE_URL",
    )
    pi.add_argument(
        "--retry-dead-letters",
        type=int,
        default=0,
        help="Redeliver dead letters up to N more times",
    )

    # sites
    sub.add_parser("sites", help="List configured sites")

    # validate-config
    pv = sub.add_parser("validate-config", help="Validate the site registry")
    pv.add_argument("--config", "-c", default=None, help="Path to sites.yaml")

    return p.parse_args(argv)


def _read_json(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    with open(p, encoding="utf-8") as f:
        return json.load(f)


def main(argv: list[str] | None = None) -> int:
    """Entry point; returns a process exit code."""
    try:
        return _main_impl(argv)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in input: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _main_impl(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging(
        LoggingOptions(
            level=args.log_level or settings.LOG_LEVEL,
            json_logs=args.json_logs or settings.JSON_LOGS,
        )
    )

    if not args.cmd:
        print("Error: Command required. Use --help for usage info.", file=sys.stderr)
        return 1

    if args.cmd == "sites":
        sites = load_sites_config(settings.SITES_CONFIG_PATH)
        print(f"{'SITE':<24} {'STRATEGY':<10} {'ENABLED':<8} {'ORGANIZATION'}")
        print("-" * 64)
        for key, cfg in sites.items():
            print(f"{key:<24} {cfg.strategy:<10} {str(cfg.enabled):<8} {cfg.organization or '-'}")
        return 0

    if args.cmd == "validate-config":
        problems = validate_sites_config(Path(args.config) if args.config else None)
        if not problems:
            print("Config is VALID.")
            return 0
        print("Config is INVALID. Issues found:", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        return 2

    if args.cmd == "ingest":
        return asyncio.run(_run_ingest(args))

    return 1


async def _run_ingest(args: argparse.Namespace) -> int:
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if args.concurrency:
        overrides["WORKER_CONCURRENCY"] = args.concurrency
    if args.timeout:
        overrides["TASK_TIMEOUT_S"] = args.timeout
    if overrides:
        settings = settings.model_copy(update=overrides)

    payload = _read_json(args.input)

    store = InMemoryEventStore() if args.dry_run else None
    orchestrator = IngestionOrchestrator.from_settings(settings, store=store)

    if isinstance(payload, list):
        if not args.site:
            raise ValueError("--site is required when the input is a list of events")
        receipt = orchestrator.submit(args.site, payload)
    else:
        if args.site and isinstance(payload, dict):
            payload = {**payload, "site": args.site}
        receipt = orchestrator.submit_payload(payload)

    if not receipt.accepted:
        print(json.dumps(receipt.as_dict(), indent=2, ensure_ascii=False))
        return 1

    pool = orchestrator.pool
    try:
        await pool.run_until_idle()
        for _ in range(args.retry_dead_letters):
            if not pool.requeue_dead_letters():
                break
            await pool.run_until_idle()
    finally:
        await orchestrator.aclose()

    summary = {
        "submission": receipt.as_dict(),
        "stats": pool.stats.as_dict(),
        "dead_letters": [
            {
                "task_id": d.task.task_id,
                "attempt": d.task.attempt,
                "state": d.state.value if d.state else None,
                "reason": d.reason,
                "title": d.task.raw_event.get("title"),
            }
            for d in pool.dead_letters
        ],
    }
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0 if not pool.dead_letters else 3


if __name__ == "__main__":
    raise SystemExit(main())
