from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from tempfile import TemporaryDirectory
import threading
import time
import unittest

from fastapi.testclient import TestClient

from laundrylog.aggregator import DAY_NAMES, DAY_SHORT, TZ
from laundrylog.logstore import LogStore
from laundrylog.main import create_app
from laundrylog.models import ExternalHealth, MachineRecord, SampleEntry
from laundrylog.source import EndpointListError, LocationLink


def rec(location: str, machine: str, mtype: str, status: str) -> MachineRecord:
    return MachineRecord(location=location, machine_id=machine, type=mtype, status=status)


class FakeSource:
    def __init__(self) -> None:
        self.links_error = False
        self.health = ExternalHealth(ok=True, status=200, bytes=1234)
        self.link_calls = 0
        self.pages = {"Harkness": [rec("Harkness", "01", "Washer", "Available")]}

    def fetch_location_links(self) -> list[LocationLink]:
        self.link_calls += 1
        if self.links_error:
            raise EndpointListError("index unavailable")
        return [LocationLink(name, f"https://example.test/{name}.aspx") for name in self.pages]

    def fetch_location_records(self, link: LocationLink) -> list[MachineRecord]:
        return list(self.pages[link.name])

    def check(self) -> ExternalHealth:
        return self.health


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = TemporaryDirectory()
        self.store = LogStore(Path(self._temp_dir.name) / "laundry_log.jsonl")
        self.source = FakeSource()
        app = create_app(store=self.store, source=self.source, refresh_on_startup=False)
        self._client_cm = TestClient(app)
        self.client = self._client_cm.__enter__()
        self.refresher = app.state.refresher

    def tearDown(self) -> None:
        deadline = time.monotonic() + 5
        while self.refresher.in_flight and time.monotonic() < deadline:
            time.sleep(0.01)
        self._client_cm.__exit__(None, None, None)
        self._temp_dir.cleanup()


class HealthTest(ApiTestCase):
    def test_health(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertIs(body["ok"], True)
        self.assertGreaterEqual(body["uptime"], 0)
        self.assertTrue(body["timestamp"].endswith("Z"))
        self.assertFalse(self.store.exists())

    def test_external_health(self) -> None:
        resp = self.client.get("/health/external")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"ok": True, "status": 200, "bytes": 1234})

        self.source.health = ExternalHealth(ok=False, error="timed out")
        resp = self.client.get("/health/external")
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json(), {"ok": False, "error": "timed out"})


class StatusTest(ApiTestCase):
    def test_live_status(self) -> None:
        resp = self.client.get("/api/laundry")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["machines"], [{
            "location": "Harkness", "machineId": "01", "type": "Washer",
            "status": "Available", "timeRemaining": None,
        }])
        self.assertTrue(body["lastUpdated"].endswith("Z"))
        self.assertEqual(len(list(self.store.scan())), 1)

        snap = self.client.get("/api/laundry/snapshot").json()
        self.assertEqual(snap, body)
        self.assertEqual(self.source.link_calls, 1)

    def test_live_status_failure(self) -> None:
        self.source.links_error = True
        resp = self.client.get("/api/laundry")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "Failed to fetch laundry data."})
        self.assertFalse(self.store.exists())

    def test_cached_status_on_cold_start(self) -> None:
        resp = self.client.get("/api/laundry", params={"cached": "1"})
        self.assertEqual(resp.json(), {"machines": [], "lastUpdated": None})

        deadline = time.monotonic() + 5
        while self.source.link_calls == 0 or self.refresher.in_flight:
            self.assertLess(time.monotonic(), deadline)
            time.sleep(0.01)

        resp = self.client.get("/api/laundry/snapshot")
        self.assertEqual(len(resp.json()["machines"]), 1)
        self.assertEqual(self.source.link_calls, 1)

    def test_cached_status_seeded_from_log(self) -> None:
        ts = datetime.now(UTC) - timedelta(minutes=5)
        self.store.append(SampleEntry(timestamp=ts, machines=[rec("Lazrus", "04", "Dryer", "In Use")]))
        body = self.client.get("/api/laundry", params={"cached": "1"}).json()
        self.assertEqual(body["machines"][0]["location"], "Lazrus")
        self.assertFalse(self.refresher.in_flight)
        self.assertEqual(self.source.link_calls, 0)


class AnalyticsTest(ApiTestCase):
    def test_no_log_data(self) -> None:
        for path in ("/api/laundry/best-times", "/api/laundry/machine-analytics", "/api/laundry/weekly-times"):
            resp = self.client.get(path)
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(resp.json(), {"message": "No log data yet."})

    def test_analytics(self) -> None:
        ts = (datetime.now(UTC) - timedelta(hours=1)).replace(minute=0, second=0, microsecond=0)
        old = ts - timedelta(days=10)
        for when in (old, ts):
            self.store.append(SampleEntry(timestamp=when, machines=[
                rec("Harkness", "01", "Washer", "Available"),
                rec("Harkness", "02", "Dryer", "In Use"),
            ]))
        local = ts.astimezone(TZ)

        best = self.client.get("/api/laundry/best-times").json()["bestTimes"]
        self.assertIn({"time": f"{DAY_NAMES[local.weekday()]} {local.hour}:00", "availableCount": 1}, best)

        week = self.client.get("/api/laundry/machine-analytics", params={"period": "week"}).json()
        self.assertEqual([row["total"] for row in week["machineAnalytics"]], [1, 1])
        all_time = self.client.get("/api/laundry/machine-analytics").json()
        self.assertEqual([row["machineId"] for row in all_time["machineAnalytics"]], ["01", "02"])
        self.assertEqual([row["total"] for row in all_time["machineAnalytics"]], [2, 2])

        stats = self.client.get("/api/laundry/weekly-times").json()["weekStats"]
        self.assertEqual(stats, {
            DAY_SHORT[local.weekday()]: {
                str(local.hour): {"available": 1.0, "inUse": 1.0, "total": 2.0, "count": 1},
            },
        })
        filtered = self.client.get("/api/laundry/weekly-times", params={"type": "dryer", "location": "harkness"})
        bucket = filtered.json()["weekStats"][DAY_SHORT[local.weekday()]][str(local.hour)]
        self.assertEqual(bucket, {"available": 0.0, "inUse": 1.0, "total": 1.0, "count": 1})


class ConcurrentReadTest(ApiTestCase):
    def test_stale_cached_reads_share_one_refresh(self) -> None:
        gate = threading.Event()
        original = self.source.fetch_location_links

        def slow_links():
            gate.wait(timeout=5)
            return original()

        self.source.fetch_location_links = slow_links
        self.store.append(SampleEntry(
            timestamp=datetime.now(UTC) - timedelta(hours=2),
            machines=[rec("Lazrus", "04", "Dryer", "In Use")],
        ))
        for _ in range(5):
            body = self.client.get("/api/laundry/snapshot").json()
            self.assertEqual(body["machines"][0]["location"], "Lazrus")
        self.assertTrue(self.refresher.in_flight)
        gate.set()
        deadline = time.monotonic() + 5
        while self.refresher.in_flight:
            self.assertLess(time.monotonic(), deadline)
            time.sleep(0.01)
        self.assertEqual(self.source.link_calls, 1)
        self.assertEqual(len(list(self.store.scan())), 2)


if __name__ == "__main__":
    unittest.main()
