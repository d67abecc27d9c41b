"""
Record shapes for the schedule planner: tasks, usage logs and project settings.

Records are plain dicts. The normalisers fill defaults but never reject
bad values; structural problems are reported by the validation engine.
"""

import math
import uuid
from datetime import date, datetime, timezone

from schedule_dates import (
    default_timeline_range,
    ensure_baseline,
    expand_range,
    find_task_date_range,
    parse_date,
    range_to_timeline,
    safe_date,
    today_iso,
)


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_VALUES = ["not_started", "in_progress", "blocked", "completed"]
PRIORITY_VALUES = ["P0", "P1", "P2"]
TASK_TYPES = ["task", "milestone"]
SEVERITY_VALUES = ["error", "warning", "info"]
SCALE_VALUES = ["day", "week", "month"]
USAGE_UNITS = ["hour", "point", "currency"]
USAGE_SOURCES = ["manual", "copilot", "api"]

# Issues that are not about a single task carry this id
PROJECT_ISSUE_ID = "__project__"

NUMERIC_FIELDS = [
    "estimated_hours",
    "actual_hours",
    "budget",
    "api_expected",
    "api_actual",
    "subscription_monthly",
]

DEFAULT_SETTINGS = {
    "project_name": "Project Schedule",
    "timeline_start": None,
    "timeline_days": None,
    "scale": "week",
    "timezone": "UTC",
    "locale": "en-US",
    "resource_daily_limit": 8,
    "budget_threshold_warning": 0.8,
    "budget_threshold_critical": 1.0,
    "disable_weekend_milestones": True,
    "strict_over_allocation": False,
}


def new_task_id(existing=()):
    """Generate a 'T-xxxxxxxx' id not present in `existing`."""
    while True:
        candidate = f"T-{uuid.uuid4().hex[:8]}"
        if candidate not in existing:
            return candidate


def _number(val, default=0):
    """Coerce to float, falling back to default for blanks. Negatives are kept."""
    if val is None or val == "":
        return default
    try:
        num = float(val)
    except (TypeError, ValueError):
        return default
    if math.isnan(num):
        return default
    return num


def _unique(items):
    seen = []
    for item in items or []:
        if item not in seen:
            seen.append(item)
    return seen


# ── Tasks ────────────────────────────────────────────────────────────────────

def normalize_task(task):
    """Fill defaults on a raw task dict. Milestones get end_date = start_date."""
    task = dict(task)
    task_type = task.get("type")
    if task_type not in TASK_TYPES:
        task_type = "milestone" if task.pop("is_milestone", False) else "task"
    task.pop("is_milestone", None)

    start = task.get("start_date") or today_iso()
    end = start if task_type == "milestone" else (task.get("end_date") or start)
    if isinstance(start, (date, datetime)):
        start = start.strftime("%Y-%m-%d")
    if isinstance(end, (date, datetime)):
        end = end.strftime("%Y-%m-%d")

    daily_capacity = task.get("daily_capacity")
    normalized = {
        **task,
        "id": task.get("id"),
        "name": task.get("name") or "New task",
        "owner": task.get("owner") or None,
        "status": task.get("status") or "not_started",
        "priority": task.get("priority") or "P2",
        "tags": _unique(task.get("tags")),
        "type": task_type,
        "start_date": start,
        "end_date": end,
        "dependency_ids": _unique(task.get("dependency_ids")),
        "daily_capacity": None if daily_capacity in (None, "") else _number(daily_capacity),
    }
    for field in NUMERIC_FIELDS:
        normalized[field] = _number(task.get(field))
    return ensure_baseline(normalized)


def normalize_tasks(tasks):
    return [normalize_task(t) for t in tasks]


# ── Settings ─────────────────────────────────────────────────────────────────

def normalize_settings(overrides=None, tasks=None, today=None):
    """Merge overrides over DEFAULT_SETTINGS; derive the timeline when absent.

    Explicit values are kept even when invalid so validate_settings can report them.
    """
    settings = {**DEFAULT_SETTINGS, **(overrides or {})}
    if settings.get("timeline_start") in (None, "") or settings.get("timeline_days") is None:
        date_range = find_task_date_range(tasks or []) or default_timeline_range(today)
        settings.update(range_to_timeline(expand_range(date_range, 0.2)))
    return settings


def validate_settings(settings):
    """Validate project settings. Returns a list of error strings."""
    errors = []
    if safe_date(settings.get("timeline_start")) is None:
        errors.append(f"timeline_start '{settings.get('timeline_start')}' is not a valid date.")

    days = settings.get("timeline_days")
    if not isinstance(days, int) or isinstance(days, bool) or days < 1:
        errors.append(f"timeline_days must be an integer >= 1 (got {days!r}).")

    limit = settings.get("resource_daily_limit")
    if not isinstance(limit, (int, float)) or limit <= 0:
        errors.append(f"resource_daily_limit must be positive (got {limit!r}).")

    warning = settings.get("budget_threshold_warning")
    critical = settings.get("budget_threshold_critical")
    for key, val in (("budget_threshold_warning", warning),
                     ("budget_threshold_critical", critical)):
        if not isinstance(val, (int, float)) or not 0 <= val <= 1:
            errors.append(f"{key} must be between 0 and 1 (got {val!r}).")
    if isinstance(warning, (int, float)) and isinstance(critical, (int, float)) and critical < warning:
        errors.append(f"budget_threshold_critical ({critical}) is below "
                      f"budget_threshold_warning ({warning}).")

    if settings.get("scale") not in SCALE_VALUES:
        errors.append(f"scale '{settings.get('scale')}' not recognised. "
                      f"Valid: {', '.join(SCALE_VALUES)}")
    return errors


# ── Usage Logs ───────────────────────────────────────────────────────────────

def create_usage_log(**fields):
    """Build an immutable usage record with a fresh 'U-' id and creation stamp."""
    cost = fields.get("cost")
    return {
        "task_id": fields.get("task_id"),
        "task_name": fields.get("task_name"),
        "date": fields.get("date") or today_iso(),
        "spent": _number(fields.get("spent")),
        "unit": fields.get("unit") or "hour",
        "source": fields.get("source") or "manual",
        "cost": None if cost in (None, "") else _number(cost),
        "currency": fields.get("currency"),
        "note": fields.get("note"),
        "id": f"U-{uuid.uuid4().hex[:8]}",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def log_amount(log):
    """Monetary weight of a log: cost when recorded, otherwise spent."""
    cost = log.get("cost")
    return cost if cost is not None else (log.get("spent") or 0)


def month_usage_total(logs, today=None):
    """Sum of log amounts dated within the calendar month of `today`."""
    ref = parse_date(today) if today is not None else date.today()
    total = 0.0
    for log in logs or []:
        d = safe_date(log.get("date"))
        if d is not None and (d.year, d.month) == (ref.year, ref.month):
            total += log_amount(log)
    return total


def summarize_usage(logs):
    """Totals of `spent` overall, per task (None -> 'unassigned') and per source."""
    summary = {
        "total": 0.0,
        "by_task": {},
        "by_source": {source: 0.0 for source in USAGE_SOURCES},
    }
    for log in logs or []:
        spent = log.get("spent") or 0
        summary["total"] += spent
        source = log.get("source") or "manual"
        summary["by_source"][source] = summary["by_source"].get(source, 0.0) + spent
        key = log.get("task_id") or "unassigned"
        entry = summary["by_task"].setdefault(key, {
            "task_id": log.get("task_id"),
            "task_name": log.get("task_name") or log.get("task_id") or "Unassigned",
            "spent": 0.0,
            "cost": 0.0,
        })
        entry["spent"] += spent
        if log.get("cost") is not None:
            entry["cost"] += log["cost"]
    return summary


def map_usage_to_tasks(logs, tasks):
    """Fill task_name on logs that reference a task but lack a name."""
    names = {t["id"]: t.get("name") for t in tasks}
    mapped = []
    for log in logs:
        if log.get("task_id") and not log.get("task_name"):
            log = {**log, "task_name": names.get(log["task_id"], log["task_id"])}
        mapped.append(log)
    return mapped
