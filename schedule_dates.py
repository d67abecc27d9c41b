"""
Calendar helpers for the schedule planner.

Dates travel through task records as ISO ``YYYY-MM-DD`` strings and are
converted to ``datetime.date`` for arithmetic. Every helper here is pure.
"""

import math
from datetime import date, datetime, timedelta

import pandas as pd


ISO_FORMAT = "%Y-%m-%d"
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y")


# ── Parsing ─────────────────────────────────────────────────────────────────

def norm_date(d):
    """Normalise a date-like object to a plain ``date``."""
    if isinstance(d, pd.Timestamp):
        return d.to_pydatetime().date()
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    raise TypeError(f"norm_date expected date or datetime, got {type(d).__name__}: {d!r}")


def parse_date(val, context=""):
    """Parse a date from an ISO string, date, datetime or Timestamp."""
    ctx = f" ({context})" if context else ""
    if val is None or val is pd.NaT or (isinstance(val, float) and math.isnan(val)):
        raise ValueError(f"Date is blank{ctx}")
    if isinstance(val, date):
        return norm_date(val)
    if isinstance(val, str):
        val = val.strip()
        if not val:
            raise ValueError(f"Date is blank{ctx}")
        # Timestamps such as 2024-01-02T09:00:00Z keep only their date part
        head = val[:10] if len(val) > 10 and val[10] in "T " else val
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(head, fmt).date()
            except ValueError:
                pass
        raise ValueError(f"Cannot parse date{ctx}: {val!r}. Expected YYYY-MM-DD")
    raise ValueError(f"Cannot parse date{ctx}: {val!r}")


def safe_date(val):
    """Like parse_date, but returns None for blank or malformed values."""
    try:
        return parse_date(val)
    except ValueError:
        return None


def to_iso(val):
    """Format a date-like value as YYYY-MM-DD."""
    return parse_date(val).strftime(ISO_FORMAT)


def today_iso():
    return date.today().strftime(ISO_FORMAT)


def add_days(val, days):
    """Shift a date-like value by a number of calendar days, returning ISO."""
    return to_iso(parse_date(val) + timedelta(days=days))


def month_key(val):
    """'2024-01-17' -> '2024-01'."""
    return parse_date(val).strftime("%Y-%m")


# ── Working Days ────────────────────────────────────────────────────────────

def is_weekend(val):
    return parse_date(val).weekday() >= 5


def is_working_day(val):
    """Check if a date is a working day (Monday to Friday)."""
    return not is_weekend(val)


def _step_to_workday(d, step):
    while d.weekday() >= 5:
        d += timedelta(days=step)
    return d


def next_business_day(val):
    """Roll forward to the first workday on or after the given date."""
    return _step_to_workday(parse_date(val), 1).strftime(ISO_FORMAT)


def previous_business_day(val):
    """Roll backward to the last workday on or before the given date."""
    return _step_to_workday(parse_date(val), -1).strftime(ISO_FORMAT)


def task_days(start, end):
    """Every calendar day from start to end inclusive; empty if either is bad or reversed."""
    s, e = safe_date(start), safe_date(end)
    if s is None or e is None or e < s:
        return []
    return [s + timedelta(days=i) for i in range((e - s).days + 1)]


def count_working_days(start, end):
    """Count working days between start and end (inclusive)."""
    return sum(1 for d in task_days(start, end) if d.weekday() < 5)


# ── Ranges & Timeline ───────────────────────────────────────────────────────

def find_task_date_range(tasks):
    """Earliest start and latest end across tasks, or None when nothing is datable."""
    starts = [d for d in (safe_date(t.get("start_date")) for t in tasks) if d is not None]
    ends = [d for d in (safe_date(t.get("end_date")) for t in tasks) if d is not None]
    if not starts or not ends:
        return None
    return {"start": min(starts).strftime(ISO_FORMAT),
            "end": max(ends).strftime(ISO_FORMAT)}


def default_timeline_range(today=None):
    """Two weeks back to roughly six weeks ahead of today."""
    base = parse_date(today) if today is not None else date.today()
    return {"start": (base - timedelta(days=14)).strftime(ISO_FORMAT),
            "end": (base + timedelta(days=45)).strftime(ISO_FORMAT)}


def expand_range(date_range, padding_percent=0.2):
    """Pad a range on both sides by a fraction of its span (span counted as at least 1 day)."""
    start = parse_date(date_range["start"])
    end = parse_date(date_range["end"])
    span = max((end - start).days, 1)
    padding = math.ceil(span * padding_percent)
    return {"start": (start - timedelta(days=padding)).strftime(ISO_FORMAT),
            "end": (end + timedelta(days=padding)).strftime(ISO_FORMAT)}


def range_to_timeline(date_range):
    """Convert a {start, end} range to timeline_start / timeline_days (days >= 1)."""
    start = parse_date(date_range["start"])
    end = parse_date(date_range["end"])
    return {"timeline_start": start.strftime(ISO_FORMAT),
            "timeline_days": max((end - start).days + 1, 1)}


def generate_span_dates(start, days):
    """ISO dates for `days` consecutive days beginning at start."""
    if days <= 0:
        return []
    span = pd.date_range(start=parse_date(start), periods=int(days), freq="D")
    return [ts.strftime(ISO_FORMAT) for ts in span]


def ensure_baseline(task):
    """Return the task with baseline dates defaulted to its current dates."""
    if task.get("baseline_start") and task.get("baseline_end"):
        return task
    return {
        **task,
        "baseline_start": task.get("baseline_start") or task.get("start_date"),
        "baseline_end": task.get("baseline_end") or task.get("end_date"),
    }
