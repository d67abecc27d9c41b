"""
Schedule store: the single owner of the live task collection.

Every task mutation pushes a serialized snapshot of the whole collection
onto the undo stack first and clears the redo stack. Derived views
(issues, heatmap, cost lines) are recomputed on request and never patched.
"""

import copy
import json
from datetime import datetime, timezone

from schedule_analytics import (
    build_cost_lines,
    build_heatmap,
    level_tasks,
    validate_schedule,
)
from schedule_dates import (
    default_timeline_range,
    expand_range,
    find_task_date_range,
    next_business_day,
    range_to_timeline,
    safe_date,
)
from schedule_model import (
    NUMERIC_FIELDS,
    create_usage_log,
    new_task_id,
    normalize_settings,
    normalize_task,
    normalize_tasks,
    validate_settings,
)


DEFAULT_HISTORY_LIMIT = 100

# Every normalized task carries these; snapshots without them are rejected
REQUIRED_TASK_FIELDS = [
    "name", "status", "priority", "type", "start_date", "end_date",
    "dependency_ids", "tags", "daily_capacity",
] + NUMERIC_FIELDS


class SnapshotError(ValueError):
    """Raised when a serialized snapshot or project payload cannot be restored."""


def _decode_snapshot(payload):
    """Parse and check a snapshot. Returns (tasks, order) without touching any state."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise SnapshotError(f"Snapshot is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot must be a JSON object with 'tasks' and 'order'.")
    tasks, order = data.get("tasks"), data.get("order")
    if not isinstance(tasks, dict) or not isinstance(order, list):
        raise SnapshotError("Snapshot must contain a 'tasks' object and an 'order' list.")
    for task_id, task in tasks.items():
        if not isinstance(task, dict) or task.get("id") != task_id:
            raise SnapshotError(f"Snapshot task {task_id!r} is malformed.")
        missing = [field for field in REQUIRED_TASK_FIELDS if field not in task]
        if missing:
            raise SnapshotError(f"Snapshot task {task_id!r} is missing {', '.join(missing)}.")
        for field in ("dependency_ids", "tags"):
            if not isinstance(task[field], list):
                raise SnapshotError(f"Snapshot task {task_id!r} has a non-list {field}.")
    if not all(isinstance(task_id, str) for task_id in order):
        raise SnapshotError("Snapshot order must contain task id strings only.")
    if len(set(order)) != len(order) or set(order) != set(tasks):
        raise SnapshotError("Snapshot order does not match its tasks.")
    return tasks, order


class ScheduleStore:
    """Live schedule state with bounded undo/redo history."""

    def __init__(self, tasks=None, settings=None, usage_logs=None,
                 history_limit=DEFAULT_HISTORY_LIMIT):
        if not isinstance(history_limit, int) or history_limit < 1:
            raise ValueError(f"history_limit must be an integer >= 1 (got {history_limit!r}).")
        self.tasks = {}
        self.order = []
        self.usage_logs = []
        self.issues = []
        self.undo_stack = []
        self.redo_stack = []
        self.history_limit = history_limit
        self._used_ids = set()
        batch = set()
        for raw in tasks or []:
            self._insert(normalize_task(raw), batch)
        self.settings = normalize_settings(settings, self.ordered_tasks())
        for log in usage_logs or []:
            self.usage_logs.append(dict(log))

    # ── Snapshots ───────────────────────────────────────────────────────────

    def serialize(self):
        """Opaque snapshot of the whole task collection and its order."""
        return json.dumps({"tasks": self.tasks, "order": self.order})

    def restore(self, snapshot):
        """Replace tasks and order from a snapshot. Raises SnapshotError, leaving state as is."""
        tasks, order = _decode_snapshot(snapshot)
        self.tasks = tasks
        self.order = order
        self._used_ids.update(order)

    def _push_undo(self):
        self.undo_stack.append(self.serialize())
        del self.undo_stack[:-self.history_limit]
        self.redo_stack.clear()

    def can_undo(self):
        return bool(self.undo_stack)

    def can_redo(self):
        return bool(self.redo_stack)

    def undo(self):
        """Step back one mutation. Returns False when there is nothing to undo."""
        if not self.undo_stack:
            return False
        tasks, order = _decode_snapshot(self.undo_stack[-1])
        self.redo_stack.append(self.serialize())
        del self.redo_stack[:-self.history_limit]
        self.undo_stack.pop()
        self.tasks, self.order = tasks, order
        return True

    def redo(self):
        """Re-apply the last undone mutation. Returns False when there is nothing to redo."""
        if not self.redo_stack:
            return False
        tasks, order = _decode_snapshot(self.redo_stack[-1])
        self.undo_stack.append(self.serialize())
        del self.undo_stack[:-self.history_limit]
        self.redo_stack.pop()
        self.tasks, self.order = tasks, order
        return True

    # ── Tasks ───────────────────────────────────────────────────────────────

    def ordered_tasks(self):
        return [self.tasks[task_id] for task_id in self.order]

    def get_task(self, task_id):
        return self.tasks.get(task_id)

    def _insert(self, task, taken=None):
        """Store a task, assigning a fresh id when it has none or its id is taken."""
        taken = self._used_ids if taken is None else taken
        if not task.get("id") or task["id"] in taken:
            task["id"] = new_task_id(taken | self._used_ids)
        taken.add(task["id"])
        self._used_ids.add(task["id"])
        self.tasks[task["id"]] = task
        self.order.append(task["id"])
        return task["id"]

    def add_task(self, task=None, **fields):
        """Add a task built from a dict and/or keyword fields. Returns its id."""
        new = normalize_task({**(task or {}), **fields})
        self._push_undo()
        return self._insert(new)

    def add_milestone(self, task=None, **fields):
        """Add a milestone snapped to the next workday. Returns its id."""
        raw = {**(task or {}), **fields, "type": "milestone"}
        if safe_date(raw.get("start_date")) is not None:
            raw["start_date"] = next_business_day(raw["start_date"])
        raw.pop("end_date", None)
        return self.add_task(raw)

    def update_task(self, task_id, **patch):
        """Merge a patch into a task. Unknown ids are ignored. Returns the updated task."""
        current = self.tasks.get(task_id)
        if current is None:
            return None
        patch.pop("id", None)
        self._push_undo()
        updated = normalize_task({**current, **patch})
        self.tasks[task_id] = updated
        return updated

    def delete_tasks(self, task_ids):
        """Remove tasks and strip them from every dependency list. Returns removed ids."""
        doomed = [tid for tid in dict.fromkeys(task_ids) if tid in self.tasks]
        if not doomed:
            return []
        self._push_undo()
        for tid in doomed:
            del self.tasks[tid]
        self.order = [tid for tid in self.order if tid not in doomed]
        for task in self.tasks.values():
            task["dependency_ids"] = [d for d in task["dependency_ids"] if d not in doomed]
        return doomed

    def delete_task(self, task_id):
        return bool(self.delete_tasks([task_id]))

    def duplicate_tasks(self, task_ids):
        """Copy tasks under fresh ids, appended at the end. Returns the new ids."""
        sources = [self.tasks[tid] for tid in dict.fromkeys(task_ids) if tid in self.tasks]
        if not sources:
            return []
        self._push_undo()
        new_ids = []
        for source in sources:
            clone = copy.deepcopy(source)
            clone["id"] = None
            clone["name"] = f"{source['name']} (copy)"
            new_ids.append(self._insert(normalize_task(clone)))
        return new_ids

    def link(self, from_id, to_id):
        """Make `to_id` depend on `from_id` (finish-to-start)."""
        target = self.tasks.get(to_id)
        if from_id == to_id or target is None or from_id in target["dependency_ids"]:
            return False
        self._push_undo()
        target["dependency_ids"] = target["dependency_ids"] + [from_id]
        return True

    def unlink(self, from_id, to_id):
        target = self.tasks.get(to_id)
        if target is None or from_id not in target["dependency_ids"]:
            return False
        self._push_undo()
        target["dependency_ids"] = [d for d in target["dependency_ids"] if d != from_id]
        return True

    def set_baseline(self, task_id):
        """Freeze the task's current dates as its baseline."""
        task = self.tasks.get(task_id)
        if task is None:
            return False
        self._push_undo()
        task["baseline_start"] = task["start_date"]
        task["baseline_end"] = task["end_date"]
        return True

    def shift_milestone_to_weekday(self, task_id, target_date=None):
        """Move a milestone to target_date, or to the next workday when not given."""
        task = self.tasks.get(task_id)
        if task is None or task["type"] != "milestone":
            return False
        if target_date is None:
            if safe_date(task["start_date"]) is None:
                return False
            target_date = next_business_day(task["start_date"])
        self._push_undo()
        task["start_date"] = target_date
        task["end_date"] = target_date
        return True

    def apply_fix(self, issue):
        """Apply the remediation attached to a validation issue, if any."""
        fix = issue.get("fix")
        if not fix:
            return False
        if fix["action"] == "shift_milestone":
            payload = fix["payload"]
            return self.shift_milestone_to_weekday(payload["task_id"], payload.get("date"))
        raise ValueError(f"Unknown fix action: {fix['action']!r}")

    def auto_level(self):
        """One leveling pass over tasks in insertion order, as a single undo step.

        Returns the ids of the tasks that moved.
        """
        self._push_undo()
        return level_tasks(self.ordered_tasks())

    def import_tasks(self, tasks):
        """Replace the whole collection with the given tasks, keeping their order."""
        normalized = [normalize_task(t) for t in tasks]
        self._push_undo()
        self.tasks = {}
        self.order = []
        # Re-importing known tasks keeps their ids; only clashes within the batch are renamed
        batch = set()
        for task in normalized:
            self._insert(task, batch)
        return list(self.order)

    def export_tasks(self):
        """JSON list of tasks in order."""
        return json.dumps(self.ordered_tasks(), indent=2, ensure_ascii=False)

    # ── Usage Logs ──────────────────────────────────────────────────────────

    def add_usage_log(self, **fields):
        log = create_usage_log(**fields)
        self.usage_logs.append(log)
        return log["id"]

    def import_usage_logs(self, logs):
        created = [create_usage_log(**log) for log in logs]
        self.usage_logs.extend(created)
        return [log["id"] for log in created]

    def delete_usage_logs(self, log_ids):
        doomed = set(log_ids)
        before = len(self.usage_logs)
        self.usage_logs = [log for log in self.usage_logs if log["id"] not in doomed]
        return before - len(self.usage_logs)

    def clear_usage_logs(self):
        self.usage_logs = []

    # ── Settings ────────────────────────────────────────────────────────────

    def set_settings(self, **overrides):
        """Merge settings overrides. Raises ValueError when the result is invalid."""
        merged = {**self.settings, **overrides}
        errors = validate_settings(merged)
        if errors:
            raise ValueError("Invalid settings: " + " ".join(errors))
        self.settings = merged
        return merged

    def fit_timeline_to_tasks(self):
        """Reset the timeline to the task date range padded by 20%."""
        date_range = find_task_date_range(self.ordered_tasks()) or default_timeline_range()
        return self.set_settings(**range_to_timeline(expand_range(date_range, 0.2)))

    # ── Derived Views ───────────────────────────────────────────────────────

    def run_validation(self, today=None):
        """Recompute issues for the current state, replacing the previous list."""
        self.issues = validate_schedule(self.ordered_tasks(), self.settings,
                                        self.usage_logs, today=today)
        return self.issues

    def heatmap(self):
        return build_heatmap(self.ordered_tasks(), self.settings)

    def cost_lines(self):
        return build_cost_lines(self.ordered_tasks(), self.settings)

    # ── Persistence Payload ─────────────────────────────────────────────────

    def export_project(self):
        """Serialized project: tasks, settings and usage logs."""
        return json.dumps({
            "tasks": self.ordered_tasks(),
            "settings": self.settings,
            "usage_logs": self.usage_logs,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }, indent=2, ensure_ascii=False)

    def import_project(self, payload):
        """Load a project payload. Raises SnapshotError for corrupt payloads."""
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Project payload is not valid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("tasks", []), list):
            raise SnapshotError("Project payload must be an object with a 'tasks' list.")
        raw_tasks = data.get("tasks", [])
        if not all(isinstance(t, dict) for t in raw_tasks):
            raise SnapshotError("Every task in the project payload must be an object.")
        logs = data.get("usage_logs") or []
        if not isinstance(logs, list) or not all(isinstance(log, dict) for log in logs):
            raise SnapshotError("usage_logs must be a list of objects.")
        settings = normalize_settings(data.get("settings"), normalize_tasks(raw_tasks))
        errors = validate_settings(settings)
        if errors:
            raise SnapshotError("Project settings are invalid: " + " ".join(errors))

        self.import_tasks(raw_tasks)
        self.settings = settings
        self.usage_logs = [dict(log) for log in logs]
        self.issues = []
        return list(self.order)
