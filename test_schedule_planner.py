"""End-to-end tests for schedule_planner: project files, console output, charts and report."""

import json
import os
from datetime import date

import pytest
from openpyxl import load_workbook

from schedule_planner import (
    export_workbook,
    generate_template,
    load_project_file,
    main,
    print_issues,
    print_summary,
    render_cost,
    render_heatmap,
    save_project_file,
)
from schedule_store import ScheduleStore, SnapshotError

TODAY = date(2024, 1, 10)


def _write_project(tmp_path, tasks, settings=None, usage_logs=None, name="project.json"):
    path = str(tmp_path / name)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({
            "tasks": tasks,
            "settings": settings or {"timeline_start": "2024-01-01", "timeline_days": 14},
            "usage_logs": usage_logs or [],
        }, f)
    return path


@pytest.fixture
def template_path(tmp_path):
    path = str(tmp_path / "schedule_project.json")
    generate_template(path, TODAY)
    return path


@pytest.fixture
def template_store(template_path):
    return load_project_file(template_path)


class TestProjectFiles:
    def test_template_round_trip(self, template_store):
        """Template loads with its four seed tasks and no undo history."""
        assert template_store.order == ["T-1001", "T-1002", "T-1003", "T-1004"]
        assert not template_store.can_undo()
        milestone = template_store.get_task("T-1003")
        assert milestone["type"] == "milestone"
        assert milestone["start_date"] == "2024-01-12"

    def test_template_dates_relative_to_today(self, template_store):
        assert template_store.get_task("T-1001")["start_date"] == "2023-12-31"
        assert template_store.get_task("T-1004")["end_date"] == "2024-01-16"

    def test_save_and_reload(self, template_store, tmp_path):
        path = str(tmp_path / "nested" / "copy.json")
        template_store.update_task("T-1001", name="Kickoff (renamed)")
        save_project_file(path, template_store)
        reloaded = load_project_file(path)
        assert reloaded.get_task("T-1001")["name"] == "Kickoff (renamed)"
        assert reloaded.settings == template_store.settings

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SnapshotError):
            load_project_file(str(path))


class TestConsoleOutput:
    def test_print_issues_hides_info_by_default(self, capsys):
        issues = [
            {"code": "overdue", "task_id": "A", "field": "end_date", "message": "late",
             "severity": "warning", "fix": None},
            {"code": "missing_baseline", "task_id": "B", "field": "baseline_start",
             "message": "no baseline", "severity": "info", "fix": None},
            {"code": "end_before_start", "task_id": "C", "field": "end_date",
             "message": "reversed", "severity": "error", "fix": None},
        ]
        print_issues(issues)
        out = capsys.readouterr().out
        assert "WARNING: A" in out
        assert "INFO" not in out
        assert out.index("ERROR: C") < out.index("WARNING: A")

        print_issues(issues, show_info=True)
        assert "INFO: B" in capsys.readouterr().out

    def test_print_issues_shows_fix(self, capsys):
        print_issues([{"code": "milestone_weekend", "task_id": "M", "field": "start_date",
                       "message": "weekend", "severity": "warning",
                       "fix": {"action": "shift_milestone",
                               "payload": {"task_id": "M", "date": "2024-01-08"}}}])
        assert "shift_milestone -> 2024-01-08" in capsys.readouterr().out

    def test_print_summary(self, template_store, capsys):
        issues = template_store.run_validation(TODAY)
        print_summary(template_store, template_store.heatmap(), template_store.cost_lines(), issues)
        out = capsys.readouterr().out
        assert "EXECUTIVE SUMMARY: Example Schedule" in out
        assert "Tasks:         4 total" in out
        assert "Bob:" in out
        assert "Baseline drift:" in out


class TestRenderSmoke:
    """Smoke tests for chart and report writers."""

    def test_render_heatmap(self, template_store, tmp_path):
        """render_heatmap produces a non-zero PNG."""
        p = str(tmp_path / "heatmap.png")
        assert render_heatmap(template_store.heatmap(), p, template_store.settings) == p
        assert os.path.getsize(p) > 0

    def test_render_heatmap_without_owners(self, tmp_path, capsys):
        store = ScheduleStore(tasks=[{"id": "A", "start_date": "2024-01-01"}])
        p = str(tmp_path / "heatmap.png")
        assert render_heatmap(store.heatmap(), p, store.settings) is None
        assert not os.path.exists(p)
        assert "No resource data" in capsys.readouterr().out

    def test_render_cost(self, template_store, tmp_path):
        """render_cost produces a non-zero PNG."""
        p = str(tmp_path / "cost.png")
        assert render_cost(template_store.cost_lines(), p) == p
        assert os.path.getsize(p) > 0

    def test_export_workbook(self, template_store, tmp_path):
        """Report has one row per task and one row per issue."""
        issues = template_store.run_validation(TODAY)
        p = str(tmp_path / "report.xlsx")
        export_workbook(template_store, p, issues=issues)
        wb = load_workbook(p)
        assert wb.sheetnames == ["Tasks", "Issues", "Cost", "Heatmap"]
        assert wb["Tasks"].max_row == 5
        assert wb["Tasks"]["A2"].value == "T-1001"
        assert wb["Issues"].max_row == len(issues) + 1
        assert wb["Heatmap"]["A2"].value == "Alice"


class TestMain:
    def test_template_flag(self, tmp_path):
        path = str(tmp_path / "new.json")
        main(["--template", "--input", path, "--today", "2024-01-10"])
        assert len(load_project_file(path).order) == 4

    def test_full_run(self, template_path, tmp_path, capsys):
        """All charts, the report and summary.txt are written."""
        outdir = str(tmp_path / "out")
        main(["--input", template_path, "--outdir", outdir, "--report",
              "--today", "2024-01-10", "--check"])
        for name in ("resource_heatmap.png", "cost_overview.png",
                     "schedule_report.xlsx", "summary.txt"):
            assert os.path.exists(os.path.join(outdir, name)), name
        with open(os.path.join(outdir, "summary.txt"), encoding="utf-8") as f:
            assert "EXECUTIVE SUMMARY" in f.read()
        out = capsys.readouterr().out
        assert "Validation (2024-01-10):" in out
        assert "WARNING: T-1002 (end_date)" in out
        assert "Done." in out

    def test_charts_none(self, template_path, tmp_path):
        outdir = str(tmp_path / "out")
        main(["--input", template_path, "--outdir", outdir, "--charts", "none",
              "--today", "2024-01-10"])
        assert os.listdir(outdir) == ["summary.txt"]

    def test_missing_input(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--input", str(tmp_path / "nope.json")])
        assert exc.value.code == 1
        assert "--template" in capsys.readouterr().out

    def test_corrupt_input(self, tmp_path, capsys):
        path = tmp_path / "broken.json"
        path.write_text('{"tasks": "nope"}', encoding="utf-8")
        with pytest.raises(SystemExit) as exc:
            main(["--input", str(path), "--outdir", str(tmp_path / "out")])
        assert exc.value.code == 1
        assert "ERROR:" in capsys.readouterr().out

    def test_invalid_today(self, template_path):
        with pytest.raises(SystemExit) as exc:
            main(["--input", template_path, "--today", "someday"])
        assert exc.value.code == 1

    def test_check_fails_on_errors(self, tmp_path):
        path = _write_project(tmp_path, [
            {"id": "A", "start_date": "2024-01-05", "end_date": "2024-01-03"},
        ])
        with pytest.raises(SystemExit) as exc:
            main(["--input", path, "--outdir", str(tmp_path / "out"), "--charts", "none",
                  "--today", "2023-12-01", "--check"])
        assert exc.value.code == 1

    def test_level_and_save(self, tmp_path):
        path = _write_project(tmp_path, [
            {"id": "A", "start_date": "2024-01-01", "end_date": "2024-01-02"},
            {"id": "B", "start_date": "2024-01-02", "end_date": "2024-01-03",
             "dependency_ids": ["A"]},
        ])
        main(["--input", path, "--outdir", str(tmp_path / "out"), "--charts", "none",
              "--today", "2023-12-01", "--level", "--save", "--check"])
        b = load_project_file(path).get_task("B")
        assert (b["start_date"], b["end_date"]) == ("2024-01-03", "2024-01-04")

    def test_level_without_save_leaves_file(self, tmp_path, capsys):
        tasks = [
            {"id": "A", "start_date": "2024-01-01", "end_date": "2024-01-02"},
            {"id": "B", "start_date": "2024-01-02", "end_date": "2024-01-03",
             "dependency_ids": ["A"]},
        ]
        path = _write_project(tmp_path, tasks)
        main(["--input", path, "--outdir", str(tmp_path / "out"), "--charts", "none",
              "--today", "2023-12-01", "--level"])
        assert load_project_file(path).get_task("B")["start_date"] == "2024-01-02"
        assert "NOTE: changes are not saved" in capsys.readouterr().out

    def test_fix_milestones(self, tmp_path):
        path = _write_project(tmp_path, [
            {"id": "M", "name": "Launch", "type": "milestone", "start_date": "2024-01-06"},
        ])
        main(["--input", path, "--outdir", str(tmp_path / "out"), "--charts", "none",
              "--today", "2023-12-01", "--fix-milestones", "--save"])
        assert load_project_file(path).get_task("M")["start_date"] == "2024-01-08"

    def test_strict_turns_over_allocation_into_error(self, tmp_path):
        path = _write_project(tmp_path, [
            {"id": "A", "owner": "Alice", "start_date": "2024-01-02", "end_date": "2024-01-02",
             "estimated_hours": 12},
        ])
        args = ["--input", path, "--outdir", str(tmp_path / "out"), "--charts", "none",
                "--today", "2023-12-01", "--check"]
        main(args)
        with pytest.raises(SystemExit):
            main(args + ["--strict"])
