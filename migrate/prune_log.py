#!/usr/bin/env python3
"""Inspect the sample log and apply the retention window.

Run inside the container:
    docker compose exec laundrylog python -m migrate.prune_log

Or locally:
    LOG_PATH=./data/laundry_log.jsonl python -m migrate.prune_log
"""

import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

from laundrylog.config import LOG_PATH, RETENTION_DAYS
from laundrylog.logstore import LogStore, parse_line
from laundrylog.models import format_ts


def main(path: Path = Path(LOG_PATH), now: datetime | None = None) -> int:
    store = LogStore(path)
    if not store.exists():
        print(f"Log {path} not found.")
        return 1

    now = now or datetime.now(timezone.utc)
    total_lines = 0
    valid = 0
    skipped = 0
    oldest = newest = None

    try:
        with path.open("rb") as f:
            for raw in f:
                if not raw.strip():
                    continue
                total_lines += 1
                entry = parse_line(raw)
                if entry is None:
                    skipped += 1
                    continue
                valid += 1
                if oldest is None or entry.timestamp < oldest:
                    oldest = entry.timestamp
                if newest is None or entry.timestamp > newest:
                    newest = entry.timestamp
    except OSError as e:
        print(f"  Error reading {path}: {e}", file=sys.stderr)
        return 1

    print(f"Log {path}:")
    print(f"  Lines read:      {total_lines}")
    print(f"  Valid entries:   {valid}")
    print(f"  Skipped:         {skipped}")
    print(f"  Oldest entry:    {format_ts(oldest) if oldest else '-'}")
    print(f"  Newest entry:    {format_ts(newest) if newest else '-'}")

    removed = store.prune(timedelta(days=RETENTION_DAYS), now)
    print(f"  Pruned:          {removed} (retention {RETENTION_DAYS} days)")
    return 0


if __name__ == "__main__":
    start = time.time()
    code = main()
    elapsed = time.time() - start
    print(f"  Elapsed: {elapsed:.1f}s")
    sys.exit(code)
