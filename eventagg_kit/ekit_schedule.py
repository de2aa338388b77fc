from datetime import datetime, timedelta
from zoneinfo import ZoneInfo


def parse_sched_when(s: str):
    if s.startswith("EVERY:"):
        v = s[6:]
        if v.endswith("h"):
            return "EVERY", int(v[:-1]) * 3600
        if v.endswith("m"):
            return "EVERY", int(v[:-1]) * 60
        raise ValueError("bad EVERY")
    if s.startswith("DAILY:"):
        h, m = [int(x) for x in s[6:].split(":")]
        if not (0 <= h < 24 and 0 <= m < 60):
            raise ValueError("bad DAILY time")
        return "WEEKDAYS", list(range(7)), h, m
    if s.startswith("WEEKDAYS:"):
        rest = s[9:]
        days_part, time_part = rest.split("/", 1)
        days = []
        for d in days_part.split(":"):
            idx = "MO TU WE TH FR SA SU".split().index(d)
            days.append(idx)
        h, m = [int(x) for x in time_part.split(":")]
        return "WEEKDAYS", days, h, m
    raise ValueError("bad sched_when")


def calculate_next_run(sched_when: str, last_run_ts: float, tz_name: str = "UTC", random_seed: str = "") -> float:
    """
    Next run strictly after last_run_ts. EVERY periods are shifted by a
    stable per-seed offset so jobs with the same period don't all fire at once.
    """
    tz = ZoneInfo(tz_name)
    kind, *p = parse_sched_when(sched_when)
    if kind == "EVERY":
        period = p[0]
        raw = 0
        for ch in random_seed:
            raw = (raw * 131 + ord(ch)) & 0xFFFFFFFF
        shift = (raw / 2**32) * period
        delta = (period - (last_run_ts - shift) % period) % period
        if delta == 0:
            delta = period
        return last_run_ts + delta

    last_dt = datetime.fromtimestamp(last_run_ts, tz=tz)
    days, h, m = p
    day = last_dt.date()
    while True:
        candidate = datetime.combine(day, datetime.min.time(), tz).replace(hour=h, minute=m)
        if candidate > last_dt and candidate.weekday() in days:
            return candidate.timestamp()
        day += timedelta(days=1)
