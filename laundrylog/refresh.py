"""Refresh cycle: scrape every location, log one sample, update the snapshot.

At most one cycle runs at a time. A background trigger while a cycle is in
flight is dropped; a synchronous caller waits for the in-flight cycle and
shares its result.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from .app_logging import log_with_fields
from .cache import CacheState, SnapshotCache
from .config import REFRESH_INTERVAL_S, RETENTION_DAYS
from .logstore import LogStore
from .models import MachineRecord, SampleEntry, Snapshot
from .source import EndpointListError, MachineSource

logger = logging.getLogger("laundrylog.refresh")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Flight:
    done: threading.Event = field(default_factory=threading.Event)
    snapshot: Snapshot | None = None
    error: BaseException | None = None


class Refresher:
    def __init__(
        self,
        store: LogStore,
        cache: SnapshotCache,
        source: MachineSource,
        clock: Callable[[], datetime] = utc_now,
        retention: timedelta = timedelta(days=RETENTION_DAYS),
    ) -> None:
        self.store = store
        self.cache = cache
        self.source = source
        self.clock = clock
        self.retention = retention
        self._lock = threading.Lock()
        self._inflight: _Flight | None = None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._inflight is not None

    def snapshot(self, now: datetime | None = None) -> Snapshot:
        """Cached read: seed from the log if empty, kick off a refresh if stale."""
        now = now or self.clock()
        if self.cache.state(now) is CacheState.EMPTY:
            entry = self.store.last_valid()
            if entry is not None:
                self.cache.seed(entry)
        snap, stale = self.cache.read(now)
        if stale:
            self.trigger()
        return snap

    def trigger(self) -> bool:
        """Start a background refresh. Returns False if one is already running."""
        with self._lock:
            if self._inflight is not None:
                return False
            flight = self._inflight = _Flight()
        t = threading.Thread(target=self._run_quietly, args=(flight,), daemon=True, name="RefreshThread")
        t.start()
        return True

    def refresh(self) -> Snapshot:
        """Run a cycle now, or wait for the one in flight.

        Raises EndpointListError when the location index cannot be fetched.
        """
        with self._lock:
            flight = self._inflight
            owner = flight is None
            if owner:
                flight = self._inflight = _Flight()
        if owner:
            self._run(flight)
        else:
            flight.done.wait()
        if flight.error is not None:
            raise flight.error
        return flight.snapshot

    def _run_quietly(self, flight: _Flight) -> None:
        try:
            self._run(flight)
        except EndpointListError:
            pass  # logged in _cycle
        except Exception:
            logger.exception("background refresh failed")

    def _run(self, flight: _Flight) -> None:
        try:
            flight.snapshot = self._cycle()
        except BaseException as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                self._inflight = None
            flight.done.set()

    def _cycle(self) -> Snapshot:
        started = time.monotonic()
        try:
            links = self.source.fetch_location_links()
        except EndpointListError as e:
            log_with_fields(logger, logging.ERROR, "failed to fetch location list", error=str(e))
            raise

        machines: list[MachineRecord] = []
        failed: list[str] = []
        for link in links:
            try:
                machines.extend(self.source.fetch_location_records(link))
            except Exception as e:
                failed.append(link.name)
                log_with_fields(
                    logger, logging.WARNING, "failed to fetch location",
                    location=link.name, url=link.url, error=str(e),
                )

        now = self.clock()
        entry = SampleEntry(timestamp=now, machines=machines)
        try:
            self.store.append(entry)
        except OSError as e:
            log_with_fields(logger, logging.ERROR, "failed to append sample", path=str(self.store.path), error=str(e))
        try:
            self.store.prune(self.retention, now)
        except OSError as e:
            log_with_fields(logger, logging.ERROR, "failed to prune log", path=str(self.store.path), error=str(e))

        self.cache.update(machines, entry.timestamp)
        log_with_fields(
            logger, logging.INFO, "refresh complete",
            locations=len(links), failed_locations=failed, machines=len(machines),
            elapsed_ms=round((time.monotonic() - started) * 1000),
        )
        return Snapshot(machines=machines, last_updated=entry.timestamp)


def start_refresh_thread(refresher: Refresher, shutdown: threading.Event,
                         interval: float = REFRESH_INTERVAL_S) -> threading.Thread:
    """Refresh immediately, then every ``interval`` seconds until ``shutdown`` is set."""
    def loop():
        while not shutdown.is_set():
            try:
                refresher.refresh()
            except EndpointListError:
                pass  # logged by the refresher, retried next tick
            except Exception:
                logger.exception("scheduled refresh failed")
            shutdown.wait(timeout=interval)

    t = threading.Thread(target=loop, daemon=True, name="RefreshTimerThread")
    t.start()
    return t
