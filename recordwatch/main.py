"""Command-line entrypoints for recordwatch."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import os
import signal
from pathlib import Path
from typing import Dict, List, Optional

import tomllib
from dotenv import load_dotenv
from pydantic import ValidationError

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop optional on some platforms
    uvloop = None

from recordwatch.fetch.fetcher import JsonEndpointFetcher, create_http_client
from recordwatch.matching.matcher import WIRE_FIELD_NAMES, match_targets
from recordwatch.observability.log import configure_logging
from recordwatch.observability.metrics import MetricsRegistry
from recordwatch.orchestrator.checkpoint import (
    clear_stop_request,
    list_snapshots,
    load_snapshot,
    request_stop,
    save_snapshot,
    stop_requested,
)
from recordwatch.orchestrator.poller import DatePoller
from recordwatch.orchestrator.registry import JobRegistry
from recordwatch.quality.validate import SchemaRegistry
from recordwatch.tracking.dates import expand_date_range
from recordwatch.tracking.models import DeathRecord, InvalidRangeError
from recordwatch.tracking.settings import PollIntervalConfig
from recordwatch.tracking.tracker import JobSnapshot

SCHEMA_ROOT = Path("config/schemas")


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file."""
    with path.open("rb") as handle:
        return tomllib.load(handle)


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="recordwatch", description="Date-ranged registry record watcher")
    sub = parser.add_subparsers(dest="command", required=True)

    poll = sub.add_parser("poll", help="Poll a date range until stopped")
    poll.add_argument("--start", required=True, help="First date to poll (ISO)")
    poll.add_argument("--end", required=True, help="Last date to poll (ISO, inclusive)")
    poll.add_argument("--name", action="append", default=[], help="Target name to match; repeatable")
    poll.add_argument("--interval", type=float, help="Minutes between polling passes")
    poll.add_argument("--cron", help="Cron expression overriding --interval")
    poll.add_argument("--source-url", help="URL template with a {date} placeholder")
    poll.add_argument("--ticks", type=int, help="Number of passes before exiting")
    poll.add_argument("--concurrency", type=int, help="Maximum concurrent fetches")
    poll.add_argument("--snapshots", help="Directory for job status snapshots")

    status = sub.add_parser("status", help="Print the saved status of a job")
    status.add_argument("--job-id", help="Job id; defaults to the most recent job")
    status.add_argument("--snapshots", help="Directory for job status snapshots")

    stop = sub.add_parser("stop", help="Ask the process polling a job to stop")
    stop.add_argument("--job-id", required=True, help="Job id to stop")
    stop.add_argument("--snapshots", help="Directory for job status snapshots")

    match = sub.add_parser("match", help="Match target names against one record")
    match.add_argument("--name", action="append", required=True, help="Target name; repeatable")
    match.add_argument("--record-name", default="")
    match.add_argument("--fathers-name", default="")
    match.add_argument("--mothers-name", default="")
    match.add_argument("--gender", default="")
    match.add_argument("--date-of-death", default="")

    return parser


def _snapshot_root(args: argparse.Namespace, settings: Dict[str, object]) -> Path:
    return Path(args.snapshots or settings["app"]["snapshot_dir"])


async def run_poll(args: argparse.Namespace, settings: Dict[str, object]) -> JobSnapshot:
    """Create a job for the requested range and poll it to completion."""
    try:
        poll_config = PollIntervalConfig.from_settings(settings, interval_minutes=args.interval, cron=args.cron)
    except ValidationError as exc:
        raise SystemExit(f"Invalid poll settings: {exc}")
    try:
        date_range = expand_date_range(args.start, args.end)
    except InvalidRangeError as exc:
        raise SystemExit(f"Invalid date range: {exc}")

    fetch_cfg = settings["fetch"]
    source_url = args.source_url or os.environ.get("RECORDWATCH_SOURCE_URL") or fetch_cfg["source_url"]
    concurrency = args.concurrency or fetch_cfg["max_concurrency"]
    snapshot_root = _snapshot_root(args, settings)
    metrics_root = Path(settings["app"]["metrics_dir"])
    progress_every = float(settings["app"].get("snapshot_every_seconds", 5.0))

    registry = JobRegistry()
    tracker = registry.create(date_range, args.name, poll_config)
    metrics = MetricsRegistry()

    def on_pass(snapshot: JobSnapshot) -> None:
        save_snapshot(snapshot_root, snapshot)

    async with create_http_client(
        user_agent=fetch_cfg["user_agent"],
        timeout=fetch_cfg["timeout_seconds"],
        max_connections=concurrency,
    ) as client:
        fetcher = JsonEndpointFetcher(
            url_template=source_url,
            client=client,
            timeout=fetch_cfg["timeout_seconds"],
            max_attempts=fetch_cfg.get("max_attempts", 4),
            backoff_seconds=fetch_cfg.get("backoff_seconds", 1.0),
            metrics=metrics,
        )
        poller = DatePoller(
            tracker,
            fetcher,
            metrics=metrics,
            max_concurrency=concurrency,
            on_pass=on_pass,
            on_progress=on_pass,
            progress_every_seconds=progress_every,
            stop_check=lambda: stop_requested(snapshot_root, tracker.job_id),
        )
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, poller.stop)
        snapshot = await poller.run(ticks=args.ticks)

    save_snapshot(snapshot_root, snapshot)
    clear_stop_request(snapshot_root, snapshot.job_id)
    metrics.export(path=metrics_root / f"job_{snapshot.job_id}.json", job_id=snapshot.job_id)
    return snapshot


def _summary(snapshot: JobSnapshot) -> Dict[str, object]:
    return {
        "jobId": snapshot.job_id,
        "status": snapshot.status.value,
        "totalRequests": snapshot.total_requests,
        "records": sum(len(items) for items in snapshot.records_by_date.values()),
        "foundDates": [day.isoformat() for day in sorted(snapshot.matches_by_date)],
        "errorDates": [day.isoformat() for day in sorted(snapshot.pending_retry_dates)],
    }


def cmd_status(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    root = _snapshot_root(args, settings)
    job_id = args.job_id
    if job_id is None:
        known = list_snapshots(root)
        if not known:
            raise SystemExit(f"No job snapshots under {root}")
        job_id = known[0]
    payload = load_snapshot(root, job_id)
    if payload is None:
        raise SystemExit(f"No snapshot for job {job_id}")
    result = SchemaRegistry(SCHEMA_ROOT).validate("job_status", payload)
    if not result.ok:
        print(json.dumps({"jobId": job_id, "errors": result.errors}, indent=2))
        raise SystemExit(1)
    print(json.dumps(payload, indent=2))


def cmd_stop(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    root = _snapshot_root(args, settings)
    payload = load_snapshot(root, args.job_id)
    if payload is None:
        raise SystemExit(f"No snapshot for job {args.job_id}")
    if payload.get("status") == "stopped":
        print(json.dumps({"jobId": args.job_id, "stopRequested": False, "status": "stopped"}, indent=2))
        return
    request_stop(root, args.job_id)
    print(json.dumps({"jobId": args.job_id, "stopRequested": True, "status": payload.get("status")}, indent=2))


def cmd_match(args: argparse.Namespace) -> None:
    record = DeathRecord(
        name=args.record_name,
        gender=args.gender,
        date_of_death=args.date_of_death,
        fathers_name=args.fathers_name,
        mothers_name=args.mothers_name,
    )
    report: List[Dict[str, object]] = []
    for found in match_targets(record, args.name):
        report.append(
            {
                "target": found.target,
                "field": WIRE_FIELD_NAMES[found.field],
                "kind": found.kind.value,
                "score": found.score,
                "matchedPart": found.matched_part,
                "highlights": [[span.start, span.end] for span in found.spans],
            }
        )
    print(json.dumps(report, indent=2))


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(Path("config/settings.toml"))
    configure_logging(Path("config/logging.yaml"))

    if args.command == "poll":
        runner = uvloop.run if uvloop is not None else asyncio.run
        snapshot = runner(run_poll(args, settings))
        print(json.dumps(_summary(snapshot), indent=2))
        return

    if args.command == "status":
        cmd_status(args, settings)
        return

    if args.command == "stop":
        cmd_stop(args, settings)
        return

    if args.command == "match":
        cmd_match(args)


if __name__ == "__main__":
    main()
