"""Latest-known machine status, served without waiting on a live scrape.

Lifecycle: EMPTY at process start, WARM after a refresh or a seed from the
log, STALE once ``STALE_AFTER_S`` has passed since ``last_updated``, WARM
again after the next refresh. Only the refresh coordinator writes to it.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from enum import Enum

from .config import STALE_AFTER_S
from .models import MachineRecord, SampleEntry, Snapshot


class CacheState(str, Enum):
    EMPTY = "empty"
    WARM = "warm"
    STALE = "stale"


class SnapshotCache:
    def __init__(self, stale_after: timedelta = timedelta(seconds=STALE_AFTER_S)) -> None:
        self.stale_after = stale_after
        self._lock = threading.Lock()
        self._machines: list[MachineRecord] | None = None
        self._last_updated: datetime | None = None

    def state(self, now: datetime | None = None) -> CacheState:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            return self._state(now)

    def _state(self, now: datetime) -> CacheState:
        if self._machines is None:
            return CacheState.EMPTY
        if self._last_updated is None or now - self._last_updated > self.stale_after:
            return CacheState.STALE
        return CacheState.WARM

    def read(self, now: datetime | None = None) -> tuple[Snapshot, bool]:
        """Return a copy of the snapshot and whether it is due for a refresh."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            snap = Snapshot(machines=list(self._machines or []), last_updated=self._last_updated)
            return snap, self._state(now) != CacheState.WARM

    def seed(self, entry: SampleEntry) -> bool:
        """Warm an EMPTY cache from a logged entry. No-op once populated."""
        with self._lock:
            if self._machines is not None:
                return False
            self._machines = list(entry.machines)
            self._last_updated = entry.timestamp
            return True

    def update(self, machines: list[MachineRecord], at: datetime) -> None:
        with self._lock:
            self._machines = list(machines)
            self._last_updated = at
