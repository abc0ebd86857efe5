#!/usr/bin/env python3
"""Inspect the persisted track history.

Prints storage statistics and, for one object, its stored summary and
track points within an optional time window. Can also run a retention
purge by hand.

Usage
-----
::

    python scripts/replay_history.py --db twintrack.sqlite3
    python scripts/replay_history.py --db twintrack.sqlite3 --object obj-1 --since 2024-01-01T00:00:00Z
    python scripts/replay_history.py --db twintrack.sqlite3 --purge-days 7
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from twintrack._scheduling import now_ms  # noqa: E402
from twintrack.exceptions import PersistenceError  # noqa: E402
from twintrack.models._base import datetime_to_ms  # noqa: E402
from twintrack.persistence import SqliteTrackStore  # noqa: E402
from twintrack.persistence.history import DAY_MS  # noqa: E402


def _parse_time(value: str) -> int:
    return datetime_to_ms(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _format_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=UTC).isoformat()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect twintrack track history.")
    parser.add_argument("--db", default="twintrack.sqlite3", help="History database file")
    parser.add_argument("--object", dest="object_id", help="Print the stored track of this object")
    parser.add_argument("--since", type=_parse_time, help="Window start (ISO-8601)")
    parser.add_argument("--until", type=_parse_time, help="Window end (ISO-8601)")
    parser.add_argument("--purge-days", type=int, help="Delete history older than this many days")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output track points as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not Path(args.db).exists():
        print(f"No history database at {args.db}", file=sys.stderr)
        return 1

    store = SqliteTrackStore(args.db)
    try:
        store.open()
        if args.purge_days is not None:
            result = store.purge_older_than(now_ms() - args.purge_days * DAY_MS)
            print(f"Purged {result.objects_deleted} object(s) and {result.points_deleted} point(s)")

        stats = store.storage_stats()
        print(f"Objects: {stats.object_count}  Points: {stats.point_count}  ~{stats.estimated_size} bytes")

        if args.object_id:
            record = store.get_object_record(args.object_id)
            if record is None:
                print(f"No record for {args.object_id}")
                return 1
            print(
                f"{record.display_name} ({record.kind}) "
                f"first={_format_ms(record.first_seen_at)} last={_format_ms(record.last_seen_at)} "
                f"source={record.source_id or '-'}"
            )
            points = store.query_path(args.object_id, args.since, args.until)
            if args.json_mode:
                print(json.dumps([p.model_dump() for p in points], indent=2))
            else:
                for point in points:
                    print(f"  {_format_ms(point.timestamp)}  {point.latitude:.6f} {point.longitude:.6f}")
    except PersistenceError as exc:
        print(f"History error: {exc}", file=sys.stderr)
        return 2
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
