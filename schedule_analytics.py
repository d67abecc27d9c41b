"""
Schedule analytics: validation, resource heatmap, cost roll-ups and auto-leveling.

Validation, heatmap and cost functions are pure (tasks, settings, logs) ->
derived view; their results are replaced wholesale on every call.
level_tasks is the one mutating function and updates task dicts in place.
"""

from datetime import date, timedelta

import pandas as pd

from schedule_dates import (
    ISO_FORMAT,
    generate_span_dates,
    month_key,
    next_business_day,
    parse_date,
    safe_date,
    task_days,
)
from schedule_model import (
    NUMERIC_FIELDS,
    PROJECT_ISSUE_ID,
    month_usage_total,
)


def _issue(code, task_id, field, message, severity="error", fix=None):
    return {
        "code": code,
        "task_id": task_id,
        "field": field,
        "message": message,
        "severity": severity,
        "fix": fix,
    }


# ── Dependency Graph ─────────────────────────────────────────────────────────

_DONE = object()


def build_dependency_index(tasks):
    """Adjacency maps for one pass: id -> task (first occurrence) and id -> dependent ids."""
    by_id = {}
    dependents = {}
    for task in tasks:
        by_id.setdefault(task["id"], task)
    for task in tasks:
        for dep_id in task.get("dependency_ids") or []:
            if dep_id in by_id and dep_id != task["id"]:
                dependents.setdefault(dep_id, []).append(task["id"])
    return by_id, dependents


def find_dependency_cycles(tasks, by_id=None):
    """Depth-first search with an active-path marker.

    Returns a list of cycles, each as the list of task ids on it, in the
    order they were first detected. A task appears in at most one cycle.
    Self-references are not cycles here; they are reported separately.
    """
    if by_id is None:
        by_id, _ = build_dependency_index(tasks)

    visited = set()
    reported = set()
    cycles = []

    for root in tasks:
        if root["id"] in visited:
            continue
        path = [root["id"]]
        on_path = {root["id"]}
        frames = [iter(root.get("dependency_ids") or [])]
        visited.add(root["id"])
        while frames:
            dep_id = next(frames[-1], _DONE)
            if dep_id is _DONE:
                frames.pop()
                on_path.discard(path.pop())
                continue
            if dep_id not in by_id or dep_id == path[-1]:
                continue
            if dep_id in on_path:
                members = path[path.index(dep_id):]
                if not reported.intersection(members):
                    reported.update(members)
                    cycles.append(members)
                continue
            if dep_id in visited:
                continue
            visited.add(dep_id)
            path.append(dep_id)
            on_path.add(dep_id)
            frames.append(iter(by_id[dep_id].get("dependency_ids") or []))
    return cycles


# ── Validation ───────────────────────────────────────────────────────────────

def _validate_task(task, ids, settings, today):
    """Per-task rules. Every rule runs; none stops the others."""
    issues = []
    tid = task["id"]
    start = safe_date(task.get("start_date"))
    end = safe_date(task.get("end_date"))
    is_milestone = task.get("type") == "milestone"

    if start is None:
        issues.append(_issue("invalid_date", tid, "start_date",
                             f"Start date {task.get('start_date')!r} is not a valid date."))
    if end is None:
        issues.append(_issue("invalid_date", tid, "end_date",
                             f"End date {task.get('end_date')!r} is not a valid date."))

    if start and end and end < start:
        issues.append(_issue("end_before_start", tid, "end_date",
                             f"End date {end} is before start date {start}."))

    if is_milestone and (start is None or end is None or start != end):
        issues.append(_issue("milestone_duration", tid, "end_date",
                             "Milestones must have zero duration (start = end)."))

    if is_milestone and settings.get("disable_weekend_milestones") and start and start.weekday() >= 5:
        target = next_business_day(start)
        issues.append(_issue(
            "milestone_weekend", tid, "start_date",
            f"Milestone falls on a weekend ({start:%a} {start}); suggest {target}.",
            severity="warning",
            fix={"action": "shift_milestone", "payload": {"task_id": tid, "date": target}},
        ))

    if not task.get("baseline_start") or not task.get("baseline_end"):
        issues.append(_issue("missing_baseline", tid, "baseline_start",
                             "No baseline recorded; current dates will be used as the plan.",
                             severity="info"))

    if not is_milestone and end and end < today and task.get("status") != "completed":
        overdue = (today - end).days
        issues.append(_issue("overdue", tid, "end_date",
                             f"Task ended {end} ({overdue} day{'s' if overdue != 1 else ''} ago) "
                             f"but is {task.get('status')}.",
                             severity="warning"))

    for dep_id in task.get("dependency_ids") or []:
        if dep_id == tid:
            issues.append(_issue("dependency_self", tid, "dependency_ids",
                                 "A task cannot depend on itself."))
        elif dep_id not in ids:
            issues.append(_issue("dependency_missing", tid, "dependency_ids",
                                 f"Dependency {dep_id} does not exist."))

    for field in NUMERIC_FIELDS + ["daily_capacity"]:
        val = task.get(field)
        if isinstance(val, (int, float)) and val < 0:
            issues.append(_issue("negative_value", tid, field,
                                 f"{field} must be non-negative (got {val:g})."))
    return issues


def _validate_budget(tasks, settings, usage_logs, today):
    total_budget = sum(t.get("budget") or 0 for t in tasks)
    if total_budget <= 0:
        return []
    used = month_usage_total(usage_logs, today)
    ratio = used / total_budget
    month = today.strftime("%Y-%m")
    if ratio >= settings["budget_threshold_critical"]:
        return [_issue("budget_critical", PROJECT_ISSUE_ID, "budget",
                       f"Usage for {month} is {ratio:.0%} of the total budget "
                       f"({used:,.2f} of {total_budget:,.2f}).")]
    if ratio >= settings["budget_threshold_warning"]:
        return [_issue("budget_warning", PROJECT_ISSUE_ID, "budget",
                       f"Usage for {month} is {ratio:.0%} of the total budget "
                       f"({used:,.2f} of {total_budget:,.2f}).",
                       severity="warning")]
    return []


def validate_schedule(tasks, settings, usage_logs=None, today=None):
    """Validate the full task set. Returns a list of issue dicts.

    Order is deterministic: per-task rules in list order, then dependency
    ordering, dependency cycles, the project budget and finally resource
    over-allocation. Malformed input is reported, never raised.
    """
    today = parse_date(today) if today is not None else date.today()
    issues = []
    seen = set()
    for task in tasks:
        if task["id"] in seen:
            issues.append(_issue("duplicate_id", task["id"], "id",
                                 f"Task id {task['id']} is not unique."))
        seen.add(task["id"])

    by_id, _ = build_dependency_index(tasks)
    for task in tasks:
        issues.extend(_validate_task(task, by_id, settings, today))

    # Finish-to-start: the dependent may only start after the dependency ends.
    # Starting on the day it ends is a violation; leveling moves it to the next workday.
    for task in tasks:
        start = safe_date(task.get("start_date"))
        if start is None:
            continue
        for dep_id in task.get("dependency_ids") or []:
            dep = by_id.get(dep_id)
            if dep is None or dep_id == task["id"]:
                continue
            dep_end = safe_date(dep.get("end_date"))
            if dep_end is not None and start <= dep_end:
                issues.append(_issue("dependency_order", task["id"], "start_date",
                                     f"Starts {start}, must start after dependency "
                                     f"{dep_id} ends ({dep_end})."))

    for cycle in find_dependency_cycles(tasks, by_id):
        path = " -> ".join(cycle + [cycle[0]])
        issues.append(_issue("dependency_cycle", cycle[0], "dependency_ids",
                             f"Dependency cycle detected: {path}."))

    issues.extend(_validate_budget(tasks, settings, usage_logs, today))

    severity = "error" if settings.get("strict_over_allocation") else "warning"
    for row in build_heatmap(tasks, settings)["over_allocated"]:
        issues.append(_issue("over_allocation", row["task_id"], "owner",
                             f"{row['owner']} is over-allocated on {row['date']} "
                             f"by {row['over_by']:.1f}h.",
                             severity=severity))
    return issues


def summarize_issues(issues):
    """Count issues per severity."""
    counts = {"error": 0, "warning": 0, "info": 0}
    for issue in issues:
        counts[issue["severity"]] = counts.get(issue["severity"], 0) + 1
    return counts


# ── Resource Heatmap ─────────────────────────────────────────────────────────

def build_heatmap(tasks, settings):
    """Per-owner daily load over the settings timeline, plus over-allocation rows.

    Estimated hours are spread evenly over the task's working days (calendar
    days when the span is weekend-only). Load on dates outside the timeline
    window is dropped, so it is neither shown nor flagged. An unparseable
    timeline gives an empty window.
    """
    start = safe_date(settings.get("timeline_start"))
    days = settings.get("timeline_days")
    valid_days = isinstance(days, int) and not isinstance(days, bool)
    dates = generate_span_dates(start, days) if start is not None and valid_days else []
    window = set(dates)
    owners = []
    for task in tasks:
        if task.get("owner") and task["owner"] not in owners:
            owners.append(task["owner"])
    matrix = {owner: {d: 0.0 for d in dates} for owner in owners}
    over_allocated = []

    for task in tasks:
        owner = task.get("owner")
        if not owner:
            continue
        span = task_days(task.get("start_date"), task.get("end_date"))
        if not span:
            continue
        working = [d for d in span if d.weekday() < 5]
        fill = working or span
        per_day = (task.get("estimated_hours") or 0) / len(fill)
        limit = task.get("daily_capacity")
        if limit is None:
            limit = settings["resource_daily_limit"]
        for day in fill:
            key = day.strftime(ISO_FORMAT)
            if key not in window:
                continue
            matrix[owner][key] += per_day
            if matrix[owner][key] > limit:
                over_allocated.append({
                    "owner": owner,
                    "date": key,
                    "over_by": matrix[owner][key] - limit,
                    "task_id": task["id"],
                })

    return {"matrix": matrix, "owners": owners, "dates": dates,
            "over_allocated": over_allocated}


def heatmap_frame(heatmap):
    """Heatmap matrix as a DataFrame: one row per owner, one column per date."""
    return pd.DataFrame(
        [[heatmap["matrix"][o][d] for d in heatmap["dates"]] for o in heatmap["owners"]],
        index=pd.Index(heatmap["owners"], name="owner"),
        columns=heatmap["dates"],
        dtype=float,
    )


# ── Cost Lines ───────────────────────────────────────────────────────────────

def _cost_line(dimension, key, items, settings):
    budget = sum(t.get("budget") or 0 for t in items)
    subscription = sum(t.get("subscription_monthly") or 0 for t in items)
    expected = sum(t.get("api_expected") or 0 for t in items)
    actual = sum(t.get("api_actual") or 0 for t in items)
    variance = actual - expected
    forecast = actual + variance * settings["budget_threshold_warning"]
    return {
        "dimension": dimension,
        "key": key,
        "total_budget": round(budget, 2),
        "total_subscription": round(subscription, 2),
        "api_expected": round(expected, 2),
        "api_actual": round(actual, 2),
        "variance": round(variance, 2),
        "forecast": round(forecast, 2),
    }


def build_cost_lines(tasks, settings):
    """One line per task, then per owner, then per start month (YYYY-MM)."""
    lines = [_cost_line("task", t["id"], [t], settings) for t in tasks]

    by_owner = {}
    for t in tasks:
        if t.get("owner"):
            by_owner.setdefault(t["owner"], []).append(t)
    lines.extend(_cost_line("owner", owner, items, settings) for owner, items in by_owner.items())

    by_month = {}
    for t in tasks:
        start = t.get("start_date")
        key = month_key(start) if safe_date(start) else str(start or "")[:7]
        by_month.setdefault(key, []).append(t)
    lines.extend(_cost_line("month", key, items, settings) for key, items in by_month.items())
    return lines


def cost_totals(lines):
    """Project totals from the task-dimension lines."""
    task_lines = [line for line in lines if line["dimension"] == "task"]
    keys = ["total_budget", "total_subscription", "api_expected", "api_actual",
            "variance", "forecast"]
    return {k: round(sum(line[k] for line in task_lines), 2) for k in keys}


# ── Auto-Leveling ────────────────────────────────────────────────────────────

def level_tasks(tasks):
    """Push tasks to start after their latest dependency ends. Returns the moved ids.

    One relaxation pass in list order, not a full longest-path schedule:
    a task sees shifts already made earlier in the same pass, but chains
    listed out of dependency order need the pass to be run again.
    Missing dependencies and malformed dates leave a task unconstrained.
    Tasks are never moved earlier and keep their calendar duration.
    """
    by_id, _ = build_dependency_index(tasks)
    moved = []
    for task in tasks:
        start = safe_date(task.get("start_date"))
        end = safe_date(task.get("end_date"))
        if start is None or end is None:
            continue
        dep_ends = []
        for dep_id in task.get("dependency_ids") or []:
            dep = by_id.get(dep_id)
            if dep is None or dep is task:
                continue
            dep_end = safe_date(dep.get("end_date"))
            if dep_end is not None:
                dep_ends.append(dep_end)
        if not dep_ends:
            continue
        latest = max(dep_ends)
        if start > latest:
            continue
        new_start = parse_date(next_business_day(latest + timedelta(days=1)))
        if new_start <= start:
            continue
        duration = end - start
        new_end = parse_date(next_business_day(new_start + duration))
        task["start_date"] = new_start.strftime(ISO_FORMAT)
        task["end_date"] = new_end.strftime(ISO_FORMAT)
        moved.append(task["id"])
    return moved
