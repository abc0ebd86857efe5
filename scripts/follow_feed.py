#!/usr/bin/env python3
"""Follow a live position feed and print what the tracking core sees.

Connects a :class:`twintrack.TrackingSession` to the configured feed,
echoes every diagnostic entry as it arrives and prints a summary of the
live snapshot at a fixed interval.

Usage
-----
::

    export TWINTRACK_FEED_URL="ws://localhost:3000"
    python scripts/follow_feed.py --duration 60

Options::

    --url URL            Override TWINTRACK_FEED_URL
    --duration SECONDS   Stop after SECONDS (default: run until Ctrl-C)
    --every SECONDS      Snapshot summary interval (default: 5)
    --no-persist         Do not write history
    --verbose, -v        Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from twintrack import DiagnosticEntry, TrackerConfig, TrackingSession, TrackingSnapshot  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow a twintrack position feed.")
    parser.add_argument("--url", help="Feed URL (default: TWINTRACK_FEED_URL)")
    parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    parser.add_argument("--every", type=float, default=5.0, help="Snapshot summary interval in seconds")
    parser.add_argument("--no-persist", action="store_true", help="Do not write history")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def _print_entry(entry: DiagnosticEntry) -> None:
    stamp = time.strftime("%H:%M:%S", time.localtime(entry.timestamp / 1000))
    print(f"[{stamp}] {entry.category:<15} {entry.message}")


def _print_snapshot(snapshot: TrackingSnapshot) -> None:
    print(f"--- {snapshot.connection_status} | {len(snapshot)} tracked | v{snapshot.version}")
    for entity_id, entity in sorted(snapshot.entities.items()):
        path = snapshot.paths.get(entity_id)
        points = len(path.points) if path is not None else 0
        pos = entity.position
        print(
            f"    {entity.display_name:<20} {entity.kind:<9} "
            f"{pos.latitude:>10.6f} {pos.longitude:>11.6f}  path={points}"
        )


async def _run(args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {}
    if args.url:
        overrides["feed_url"] = args.url
    if args.no_persist:
        overrides["persistence_enabled"] = False
    config = TrackerConfig.from_env(**overrides)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + args.duration if args.duration else None

    async with TrackingSession(config) as session:
        session.diagnostics.subscribe(_print_entry)
        await session.connect()
        while deadline is None or loop.time() < deadline:
            await asyncio.sleep(args.every)
            _print_snapshot(session.snapshot)
        await session.stop(flush=True)

    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
