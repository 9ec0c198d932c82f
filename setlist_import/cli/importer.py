"""Standalone CLI for running artist imports without the web server.

Usage::

    python -m setlist_import.cli import K8vZ917G1Y7
    python -m setlist_import.cli import K8vZ917G1Y7 --key K8vZ9171ob7 --key K8vZ91713wV
    python -m setlist_import.cli import K8vZ917G1Y7 --quiet
    python -m setlist_import.cli status 42

``import`` runs initiate + the full import for each key (several keys go
through the batch runner, a few at a time) and prints a JSON summary to
stdout.  ``status`` prints the last persisted progress of a job.
Progress is logged to stderr unless ``--quiet`` is given.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

from setlist_import.pipeline.progress_bus import GLOBAL_CHANNEL, ProgressBus
from setlist_import.utils.errors import ConfigurationError
from setlist_import.utils.logging import configure_logging


def _logs_to_stderr() -> None:
    # Read by Settings when setlist_import.main is first imported.
    os.environ.setdefault("LOG_STREAM", "stderr")


def _suppress_logs() -> None:
    """Only WARNING and above, on stderr.

    Must run before ``setlist_import.main`` is imported: structlog caches
    loggers on first use.
    """
    os.environ["LOG_LEVEL"] = "WARNING"
    os.environ["LOG_STREAM"] = "stderr"
    configure_logging("WARNING", stream=sys.stderr)


def _print_progress(event: dict[str, Any]) -> None:
    print(
        f"[{event.get('job_id')}] {event.get('stage')} "
        f"{event.get('progress', 0):5.1f}%  {event.get('message', '')}",
        file=sys.stderr,
    )


def _report_skipped_updates(progress_bus: ProgressBus) -> None:
    dropped = progress_bus.dropped_events(GLOBAL_CHANNEL)
    if dropped:
        print(f"({dropped} progress updates not shown)", file=sys.stderr)


async def _run_import(keys: list[str], quiet: bool) -> int:
    _logs_to_stderr()
    # Deferred: importing main builds settings and configures logging.
    from setlist_import.main import build_components, config, settings, shutdown_components

    try:
        settings.require_credentials()
    except ConfigurationError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    components = build_components(settings, config)
    await components["store"].initialize()
    progress_bus = components["progress_bus"]
    if not quiet:
        progress_bus.subscribe(GLOBAL_CHANNEL, _print_progress)

    try:
        orchestrator = components["orchestrator"]
        if len(keys) == 1:
            results = [await orchestrator.import_artist(keys[0])]
        else:
            results = await orchestrator.run_batch(keys)
        await progress_bus.wait_idle()
        if not quiet:
            _report_skipped_updates(progress_bus)
    finally:
        await shutdown_components(components)

    print(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
    return 0 if all(r.success for r in results) else 2


async def _run_status(job_id: str) -> int:
    _logs_to_stderr()
    from setlist_import.main import build_components, config, settings, shutdown_components

    components = build_components(settings, config)
    await components["store"].initialize()
    try:
        job = await components["progress_bus"].get_status(job_id)
    finally:
        await shutdown_components(components)

    if job is None:
        print(f"Error: no import found for job {job_id}", file=sys.stderr)
        return 1
    print(json.dumps(job.to_event(), indent=2))
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m setlist_import.cli",
        description="Import artists' shows, venues and studio catalogs.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("import", help="Import one or more artists by attraction id")
    run.add_argument("artist_key", help="Ticketmaster attraction id")
    run.add_argument(
        "--key",
        dest="extra_keys",
        action="append",
        default=[],
        metavar="ARTIST_KEY",
        help="Additional attraction id (repeatable)",
    )
    run.add_argument(
        "--quiet", "-q", action="store_true", help="Only print the JSON summary"
    )

    status = sub.add_parser("status", help="Show the last known progress of a job")
    status.add_argument("job_id")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "import":
        if args.quiet:
            _suppress_logs()
        keys = list(dict.fromkeys([args.artist_key, *args.extra_keys]))
        return asyncio.run(_run_import(keys, quiet=args.quiet))

    _suppress_logs()
    return asyncio.run(_run_status(args.job_id))


if __name__ == "__main__":
    sys.exit(main())
