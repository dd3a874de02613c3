"""Analytics over the sample log.

Three read-side views, each a pure function of the log contents plus query
parameters: best times to find a free machine, per-machine status counts and
a weekly availability heatmap. Weekday and hour come from the entry
timestamp in the configured local timezone.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from .config import TZ_NAME, WEEK_DAYS
from .logstore import LogStore

TZ = ZoneInfo(TZ_NAME)

# Indexed by datetime.weekday() (Monday == 0).
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
DAY_SHORT = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# First match wins.
CATEGORIES = (
    ("available", "available"),
    ("in use", "inUse"),
    ("out of order", "outOfOrder"),
    ("end of cycle", "endOfCycle"),
    ("almost done", "almostDone"),
)


def classify(status: str) -> str | None:
    """Map free-text status to a category key, or None if nothing matches."""
    lowered = status.lower()
    for needle, key in CATEGORIES:
        if needle in lowered:
            return key
    return None


def _slot(ts: datetime) -> tuple[int, int]:
    """(weekday, hour) in local time."""
    local = ts.astimezone(TZ)
    return local.weekday(), local.hour


def _week_order(weekday: int) -> int:
    # Sunday first
    return (weekday + 1) % 7


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def best_times(store: LogStore) -> list[dict]:
    """Rank (weekday, hour) slots by how often a machine read exactly "available".

    Ties are broken chronologically, Sunday through Saturday then by hour.
    """
    hour_stats = Counter()
    for entry in store.scan():
        slot = _slot(entry.timestamp)
        for machine in entry.machines:
            if machine.status.lower() == "available":
                hour_stats[slot] += 1

    ranked = sorted(
        hour_stats.items(),
        key=lambda kv: (-kv[1], _week_order(kv[0][0]), kv[0][1]),
    )
    return [
        {"time": f"{DAY_NAMES[day]} {hour}:00", "availableCount": count}
        for (day, hour), count in ranked
    ]


def machine_analytics(store: LogStore, period: str | None = None,
                      now: datetime | None = None) -> list[dict]:
    """Per-machine status counts, all time or the trailing week when period == "week"."""
    min_date = None
    if period == "week":
        min_date = _now(now) - timedelta(days=WEEK_DAYS)

    stats: dict[tuple[str, str], dict] = {}
    for entry in store.scan():
        if min_date is not None and entry.timestamp < min_date:
            continue
        for machine in entry.machines:
            key = (machine.location, machine.machine_id)
            row = stats.get(key)
            if row is None:
                row = stats[key] = {
                    "location": machine.location,
                    "machineId": machine.machine_id,
                    "type": machine.type,
                    "available": 0,
                    "inUse": 0,
                    "outOfOrder": 0,
                    "endOfCycle": 0,
                    "almostDone": 0,
                    "total": 0,
                }
            category = classify(machine.status)
            if category is not None:
                row[category] += 1
            row["total"] += 1

    return [stats[k] for k in sorted(stats)]


def _norm(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip().lower()
    return value or None


def weekly_times(store: LogStore, location: str | None = None, type_: str | None = None,
                 status: str | None = None, now: datetime | None = None) -> dict:
    """Average available / in-use / total machines per (weekday, hour) over the last week.

    Only entries with at least one machine passing the filters count as a
    sample. Slots with no samples are absent from the result, so a missing
    key means "no data" rather than "nothing available".
    """
    location, type_, status = _norm(location), _norm(type_), _norm(status)
    min_date = _now(now) - timedelta(days=WEEK_DAYS)

    sums = defaultdict(lambda: {"available": 0, "inUse": 0, "total": 0})
    counts = Counter()

    for entry in store.scan():
        if entry.timestamp < min_date:
            continue
        machines = [
            m for m in entry.machines
            if (location is None or m.location.strip().lower() == location)
            and (type_ is None or m.type.strip().lower() == type_)
            and (status is None or m.status.strip().lower() == status)
        ]
        if not machines:
            continue
        slot = _slot(entry.timestamp)
        bucket = sums[slot]
        for m in machines:
            category = classify(m.status)
            if category in ("available", "inUse"):
                bucket[category] += 1
            bucket["total"] += 1
        counts[slot] += 1

    week_stats: dict[str, dict[int, dict]] = {}
    for (day, hour) in sorted(sums, key=lambda s: (_week_order(s[0]), s[1])):
        n = counts[(day, hour)]
        b = sums[(day, hour)]
        week_stats.setdefault(DAY_SHORT[day], {})[hour] = {
            "available": b["available"] / n,
            "inUse": b["inUse"] / n,
            "total": b["total"] / n,
            "count": n,
        }
    return week_stats
