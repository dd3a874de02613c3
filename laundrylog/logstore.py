"""Append-only JSONL log of machine samples.

One SampleEntry per line. Lines that fail to decode or validate are skipped
on every read and dropped on prune; they are never repaired.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from .app_logging import log_with_fields
from .config import LOG_PATH
from .models import SampleEntry

logger = logging.getLogger("laundrylog.logstore")

_store: LogStore | None = None

_READ_BLOCK = 64 * 1024


def parse_line(raw: bytes) -> SampleEntry | None:
    """Parse one log line, or None when it is not a valid entry."""
    try:
        return SampleEntry.model_validate_json(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValidationError):
        return None


def _iter_lines_reversed(path: Path) -> Iterator[bytes]:
    """Yield non-blank lines of ``path`` from last to first."""
    with path.open("rb") as f:
        f.seek(0, os.SEEK_END)
        pos = f.tell()
        tail = b""
        while pos > 0:
            step = min(_READ_BLOCK, pos)
            pos -= step
            f.seek(pos)
            chunk = f.read(step) + tail
            parts = chunk.split(b"\n")
            tail = parts[0]
            for line in reversed(parts[1:]):
                if line.strip():
                    yield line
        if tail.strip():
            yield tail


class LogStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.skipped_lines = 0
        self._write_lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def append(self, entry: SampleEntry) -> None:
        """Append one entry durably. Raises OSError if the file is unwritable."""
        data = entry.to_line().encode("utf-8")
        with self._write_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("ab+") as f:
                # A torn last line would swallow this entry too.
                if f.tell() > 0:
                    f.seek(-1, os.SEEK_END)
                    if f.read(1) != b"\n":
                        data = b"\n" + data
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

    def scan(self) -> Iterator[SampleEntry]:
        """Lazily yield every valid entry in file order."""
        if not self.path.exists():
            return
        skipped = 0
        try:
            with self.path.open("rb") as f:
                for raw in f:
                    if not raw.strip():
                        continue
                    entry = parse_line(raw)
                    if entry is None:
                        skipped += 1
                        continue
                    yield entry
        finally:
            if skipped:
                self.skipped_lines += skipped
                log_with_fields(
                    logger, logging.WARNING, "skipped malformed log lines",
                    path=str(self.path), skipped=skipped,
                )

    def last_valid(self) -> SampleEntry | None:
        if not self.path.exists():
            return None
        for raw in _iter_lines_reversed(self.path):
            entry = parse_line(raw)
            if entry is not None:
                return entry
        return None

    def prune(self, retention: timedelta, now: datetime) -> int:
        """Drop entries older than ``now - retention`` and malformed lines.

        Returns the number of lines removed. The file is left untouched when
        nothing would be removed; otherwise the kept lines are written to a
        temporary file and swapped in atomically.
        """
        cutoff = now - retention
        with self._write_lock:
            if not self.path.exists():
                return 0
            with self.path.open("rb") as f:
                lines = [raw for raw in f if raw.strip()]
            kept = []
            for raw in lines:
                entry = parse_line(raw)
                if entry is not None and entry.timestamp >= cutoff:
                    kept.append(raw if raw.endswith(b"\n") else raw + b"\n")
            removed = len(lines) - len(kept)
            if removed == 0:
                return 0

            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "wb") as tmp:
                    tmp.writelines(kept)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        log_with_fields(
            logger, logging.INFO, "pruned log",
            path=str(self.path), removed=removed, kept=len(kept),
        )
        return removed


def get_store() -> LogStore:
    global _store
    if _store is None:
        _store = LogStore(Path(LOG_PATH))
    return _store


def close_store():
    global _store
    _store = None
