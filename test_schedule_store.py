"""Tests for ScheduleStore: mutations, undo/redo history and project payloads."""

import json

import pytest

from schedule_store import ScheduleStore, SnapshotError

BEFORE_ALL = "2023-12-01"


@pytest.fixture
def store():
    return ScheduleStore(
        tasks=[
            {"id": "A", "name": "Design", "start_date": "2024-01-01", "end_date": "2024-01-02",
             "owner": "Alice", "estimated_hours": 8},
            {"id": "B", "name": "Build", "start_date": "2024-01-02", "end_date": "2024-01-03",
             "owner": "Bob", "dependency_ids": ["A"]},
        ],
        settings={"timeline_start": "2024-01-01", "timeline_days": 14},
    )


def _state(store):
    return json.loads(store.serialize())


class TestConstruction:
    def test_tasks_normalized_in_order(self, store):
        assert store.order == ["A", "B"]
        assert store.get_task("A")["baseline_start"] == "2024-01-01"
        assert store.get_task("B")["status"] == "not_started"

    def test_no_history_on_load(self, store):
        assert not store.can_undo()
        assert not store.can_redo()

    def test_timeline_derived_when_missing(self):
        s = ScheduleStore(tasks=[{"id": "A", "start_date": "2024-01-01", "end_date": "2024-01-11"}])
        assert s.settings["timeline_start"] == "2023-12-30"
        assert s.settings["timeline_days"] == 15

    def test_duplicate_ids_renamed_on_load(self):
        s = ScheduleStore(tasks=[{"id": "A"}, {"id": "A"}])
        assert s.order[0] == "A"
        assert s.order[1].startswith("T-")


class TestUndoRedo:
    def test_undo_empty_returns_false(self, store):
        assert store.undo() is False
        assert store.redo() is False

    def test_add_then_undo(self, store):
        new_id = store.add_task(name="Test", start_date="2024-01-04", end_date="2024-01-05")
        assert new_id.startswith("T-")
        assert store.undo() is True
        assert new_id not in store.tasks
        assert store.order == ["A", "B"]

    def test_undo_redo_round_trip(self, store):
        store.update_task("A", name="Design v2", estimated_hours=12)
        after = _state(store)
        store.undo()
        assert store.get_task("A")["name"] == "Design"
        store.redo()
        assert _state(store) == after

    def test_new_mutation_clears_redo(self, store):
        store.update_task("A", name="X")
        store.undo()
        assert store.can_redo()
        store.update_task("B", name="Y")
        assert not store.can_redo()

    def test_history_is_bounded(self):
        s = ScheduleStore(history_limit=3)
        for i in range(5):
            s.add_task(name=f"Task {i}")
        assert len(s.undo_stack) == 3
        for _ in range(3):
            assert s.undo()
        assert not s.can_undo()
        assert len(s.order) == 2

    def test_history_limit_of_one(self):
        s = ScheduleStore(history_limit=1)
        s.add_task(name="One")
        s.add_task(name="Two")
        assert len(s.undo_stack) == 1

    @pytest.mark.parametrize("limit", [0, -1, 2.5])
    def test_history_limit_below_one_rejected(self, limit):
        with pytest.raises(ValueError, match="history_limit"):
            ScheduleStore(history_limit=limit)

    def test_auto_level_is_one_undo_step(self, store):
        moved = store.auto_level()
        assert moved == ["B"]
        assert store.get_task("B")["start_date"] == "2024-01-03"
        assert len(store.undo_stack) == 1
        store.undo()
        assert store.get_task("B")["start_date"] == "2024-01-02"

    def test_unknown_task_update_records_nothing(self, store):
        assert store.update_task("ghost", name="X") is None
        assert not store.can_undo()


class TestSnapshots:
    def test_serialize_restore_round_trip(self, store):
        snapshot = store.serialize()
        store.update_task("A", name="Changed")
        store.delete_task("B")
        store.restore(snapshot)
        assert store.order == ["A", "B"]
        assert store.get_task("A")["name"] == "Design"

    @pytest.mark.parametrize("payload", [
        "not json",
        "[]",
        '{"tasks": {}}',
        '{"tasks": {}, "order": ["ghost"]}',
        '{"tasks": {"A": {"id": "B"}}, "order": ["A"]}',
        '{"tasks": {"A": {"id": "A"}}, "order": ["A", "A"]}',
        '{"tasks": {"a": {"id": "a"}}, "order": ["a"]}',
        '{"tasks": {}, "order": [[1]]}',
    ])
    def test_corrupt_snapshot_leaves_state_intact(self, store, payload):
        before = store.serialize()
        with pytest.raises(SnapshotError):
            store.restore(payload)
        assert store.serialize() == before

    def test_corrupt_undo_entry_leaves_stacks_intact(self, store):
        store.update_task("A", name="Changed")
        store.undo_stack[-1] = "{broken"
        before = store.serialize()
        with pytest.raises(SnapshotError):
            store.undo()
        assert store.serialize() == before
        assert len(store.undo_stack) == 1
        assert not store.can_redo()

    def test_snapshot_error_is_value_error(self):
        assert issubclass(SnapshotError, ValueError)

    def test_task_missing_fields_rejected(self, store):
        """A bare task would break later mutations, so restore refuses it."""
        with pytest.raises(SnapshotError, match="dependency_ids"):
            store.restore('{"tasks": {"a": {"id": "a"}}, "order": ["a"]}')
        assert store.link("A", "B") is False
        assert store.order == ["A", "B"]

    def test_non_list_dependencies_rejected(self, store):
        data = _state(store)
        data["tasks"]["B"]["dependency_ids"] = "A"
        with pytest.raises(SnapshotError, match="dependency_ids"):
            store.restore(json.dumps(data))
        assert store.get_task("B")["dependency_ids"] == ["A"]

    def test_unhashable_order_entry_rejected(self, store):
        with pytest.raises(SnapshotError, match="order"):
            store.restore('{"tasks": {}, "order": [[1]]}')


class TestMutations:
    def test_ids_never_reused(self, store):
        first = store.add_task(name="One")
        store.delete_task(first)
        second = store.add_task(name="Two", id=first)
        assert second != first

    def test_add_milestone_snaps_to_workday(self, store):
        mid = store.add_milestone(name="Launch", start_date="2024-01-06")
        task = store.get_task(mid)
        assert task["type"] == "milestone"
        assert task["start_date"] == task["end_date"] == "2024-01-08"

    def test_update_milestone_forces_zero_duration(self, store):
        mid = store.add_milestone(name="Launch", start_date="2024-01-08")
        store.update_task(mid, start_date="2024-01-10", end_date="2024-01-12")
        assert store.get_task(mid)["end_date"] == "2024-01-10"

    def test_update_cannot_change_id(self, store):
        store.update_task("A", id="Z", name="Renamed")
        assert "Z" not in store.tasks
        assert store.get_task("A")["name"] == "Renamed"

    def test_delete_strips_dependencies(self, store):
        assert store.delete_tasks(["A", "ghost"]) == ["A"]
        assert store.order == ["B"]
        assert store.get_task("B")["dependency_ids"] == []

    def test_delete_nothing_records_nothing(self, store):
        assert store.delete_tasks(["ghost"]) == []
        assert not store.can_undo()

    def test_duplicate(self, store):
        new_ids = store.duplicate_tasks(["A"])
        assert len(new_ids) == 1
        clone = store.get_task(new_ids[0])
        assert clone["name"] == "Design (copy)"
        assert clone["start_date"] == "2024-01-01"
        assert store.order[-1] == new_ids[0]

    def test_link_and_unlink(self, store):
        assert store.link("B", "A") is True
        assert store.get_task("A")["dependency_ids"] == ["B"]
        assert store.link("B", "A") is False
        assert store.unlink("B", "A") is True
        assert store.get_task("A")["dependency_ids"] == []
        assert store.unlink("B", "A") is False

    def test_self_link_refused(self, store):
        assert store.link("A", "A") is False
        assert not store.can_undo()

    def test_set_baseline(self, store):
        store.update_task("A", start_date="2024-01-03", end_date="2024-01-04")
        assert store.get_task("A")["baseline_start"] == "2024-01-01"
        store.set_baseline("A")
        task = store.get_task("A")
        assert (task["baseline_start"], task["baseline_end"]) == ("2024-01-03", "2024-01-04")

    def test_apply_weekend_milestone_fix(self, store):
        mid = store.add_milestone(name="Launch", start_date="2024-01-08")
        store.update_task(mid, start_date="2024-01-06")
        issues = store.run_validation(today=BEFORE_ALL)
        fix = next(i for i in issues if i["code"] == "milestone_weekend")
        assert store.apply_fix(fix) is True
        assert store.get_task(mid)["start_date"] == "2024-01-08"
        assert not any(i["code"] == "milestone_weekend" for i in store.run_validation(today=BEFORE_ALL))

    def test_apply_fix_without_fix(self, store):
        assert store.apply_fix({"code": "overdue", "fix": None}) is False

    def test_apply_unknown_fix(self, store):
        with pytest.raises(ValueError):
            store.apply_fix({"fix": {"action": "teleport", "payload": {}}})

    def test_import_replaces_collection(self, store):
        store.import_tasks([{"id": "X", "name": "Only"}])
        assert store.order == ["X"]
        store.undo()
        assert store.order == ["A", "B"]

    def test_export_reimport_keeps_ids(self, store):
        exported = json.loads(store.export_tasks())
        store.import_tasks(exported)
        assert store.order == ["A", "B"]


class TestUsageAndSettings:
    def test_usage_logs_outside_history(self, store):
        log_id = store.add_usage_log(task_id="A", date="2024-01-02", spent=2, cost=40)
        assert log_id.startswith("U-")
        assert not store.can_undo()
        assert store.delete_usage_logs([log_id]) == 1
        assert store.usage_logs == []

    def test_import_and_clear_usage_logs(self, store):
        ids = store.import_usage_logs([{"spent": 1}, {"spent": 2, "source": "api"}])
        assert len(ids) == 2
        store.clear_usage_logs()
        assert store.usage_logs == []

    def test_invalid_settings_rejected(self, store):
        with pytest.raises(ValueError):
            store.set_settings(timeline_days=0)
        assert store.settings["timeline_days"] == 14

    def test_fit_timeline(self, store):
        store.fit_timeline_to_tasks()
        assert store.settings["timeline_start"] == "2023-12-31"
        assert store.settings["timeline_days"] == 5

    def test_run_validation_replaces_issues(self, store):
        first = store.run_validation(today=BEFORE_ALL)
        assert any(i["code"] == "dependency_order" for i in first)
        store.auto_level()
        second = store.run_validation(today=BEFORE_ALL)
        assert second is store.issues
        assert not any(i["code"] == "dependency_order" for i in second)


class TestProjectPayload:
    def test_round_trip(self, store):
        store.add_usage_log(task_id="A", date="2024-01-02", spent=2)
        payload = store.export_project()
        fresh = ScheduleStore()
        fresh.import_project(payload)
        assert fresh.order == ["A", "B"]
        assert fresh.settings["timeline_days"] == 14
        assert len(fresh.usage_logs) == 1

    @pytest.mark.parametrize("payload", [
        "{oops",
        "[]",
        '{"tasks": "nope"}',
        '{"tasks": [1, 2]}',
        '{"tasks": [], "usage_logs": "x"}',
        '{"tasks": [], "settings": {"timeline_start": "2024-01-01", "timeline_days": 0}}',
        '{"tasks": [], "settings": {"timeline_start": "2024-01-01", "timeline_days": 5, "scale": "year"}}',
    ])
    def test_corrupt_payload_rejected(self, store, payload):
        before = store.serialize()
        with pytest.raises(SnapshotError):
            store.import_project(payload)
        assert store.serialize() == before
        assert not store.can_undo()
