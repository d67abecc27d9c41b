"""
Schedule Planner
Reads a project file (tasks, settings, usage logs), validates the schedule,
optionally auto-levels it, and outputs a console summary, resource heatmap
and cost charts as PNGs, and an Excel report.

Features:
  - Full-schedule validation (dates, milestones, dependencies, cycles, budget)
  - Per-owner daily resource load with over-allocation detection
  - Cost roll-ups by task, owner and start month
  - One-pass dependency auto-leveling (run again to propagate long chains)
  - Weekend-milestone fixes applied from validation suggestions
"""

import argparse
import io
import json
import os
import sys
from datetime import datetime, timedelta

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.colors import LinearSegmentedColormap
import numpy as np
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from openpyxl.formatting.rule import CellIsRule, ColorScaleRule

from schedule_analytics import cost_totals, heatmap_frame, summarize_issues
from schedule_dates import parse_date, today_iso
from schedule_model import (
    PRIORITY_VALUES,
    STATUS_VALUES,
    summarize_usage,
    validate_settings,
)
from schedule_store import ScheduleStore, SnapshotError


# ── Constants ────────────────────────────────────────────────────────────────

_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_INPUT = os.path.join(_DIR, "schedule_project.json")

SEVERITY_LABELS = {"error": "ERROR", "warning": "WARNING", "info": "INFO"}
SEVERITY_FILLS = {"error": "FFCDD2", "warning": "FFE0B2", "info": "E3F2FD"}

STYLE = {
    "font_family": ["Segoe UI", "DejaVu Sans"],
    "title_size": 18,
    "subtitle_size": 13,
    "label_size": 9.5,
    "tick_size": 8.5,
    "small_size": 7.5,
    "bg_color": "#FAFAFA",
    "panel_bg": "#FFFFFF",
    "text_primary": "#1A1A2E",
    "text_secondary": "#555555",
    "text_muted": "#999999",
    "grid_color": "#E0E0E0",
    "over_capacity_color": "#E53935",
    "heat_colors": ["#FFFFFF", "#BBDEFB", "#1E88E5", "#0D47A1"],
    "weekend_color": "#EEEEEE",
    "budget_color": "#1E88E5",
    "expected_color": "#90A4AE",
    "actual_color": "#FB8C00",
    "dpi": 180,
    "fig_width": 20,
}


# ── Style Helpers ────────────────────────────────────────────────────────────

def apply_style():
    """Configure matplotlib rcParams for consistent styling."""
    plt.rcParams.update({
        "font.family": STYLE["font_family"],
        "font.size": STYLE["label_size"],
        "axes.facecolor": STYLE["panel_bg"],
        "figure.facecolor": STYLE["bg_color"],
        "axes.edgecolor": STYLE["grid_color"],
        "axes.linewidth": 0.8,
        "axes.grid": False,
        "xtick.color": STYLE["text_secondary"],
        "ytick.color": STYLE["text_secondary"],
        "text.color": STYLE["text_primary"],
    })


def style_axes(ax, title="", ylabel=""):
    """Apply consistent axis styling to any subplot."""
    if title:
        ax.set_title(title, fontsize=STYLE["subtitle_size"], fontweight="bold",
                     color=STYLE["text_primary"], pad=12, loc="left")
    if ylabel:
        ax.set_ylabel(ylabel, fontsize=STYLE["label_size"], color=STYLE["text_secondary"])
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.set_axisbelow(True)


def add_header_footer(fig, title, subtitle=""):
    """Add a title block and generation timestamp footer."""
    fig.suptitle(title, fontsize=STYLE["title_size"], fontweight="bold",
                 color=STYLE["text_primary"], y=0.98, x=0.04, ha="left")
    if subtitle:
        fig.text(0.04, 0.935, subtitle, fontsize=STYLE["small_size"] + 1,
                 color=STYLE["text_muted"], ha="left")
    fig.text(0.98, 0.008, f"Generated {datetime.now().strftime('%d %b %Y %H:%M')}",
             ha="right", fontsize=STYLE["small_size"], color=STYLE["text_muted"])
    fig.text(0.04, 0.008, "Schedule Planner",
             ha="left", fontsize=STYLE["small_size"], color=STYLE["text_muted"])


class _TeeWriter:
    """Write to two streams simultaneously (for summary.txt capture)."""
    def __init__(self, a, b):
        self.a, self.b = a, b
    def write(self, data):
        self.a.write(data)
        self.b.write(data)
    def flush(self):
        self.a.flush()
        self.b.flush()


# ── Project Files ────────────────────────────────────────────────────────────

def load_project_file(filepath):
    """Load a project JSON file into a new ScheduleStore. Raises SnapshotError if corrupt."""
    with open(filepath, "r", encoding="utf-8") as f:
        payload = f.read()
    store = ScheduleStore()
    store.import_project(payload)
    # Loading is not an edit the user can undo
    store.undo_stack.clear()
    return store


def save_project_file(filepath, store):
    """Write the store's project payload to a JSON file."""
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(filepath, "w", encoding="utf-8") as f:
        f.write(store.export_project())


def _seed_tasks(today):
    """Example project relative to `today`: kickoff, workshop, milestone, cost check."""
    def iso(offset):
        return (today + timedelta(days=offset)).strftime("%Y-%m-%d")

    return [
        {"id": "T-1001", "name": "Project kickoff", "owner": "Alice", "status": "completed",
         "priority": "P1", "tags": ["kickoff"], "start_date": iso(-10), "end_date": iso(-7),
         "type": "task", "baseline_start": iso(-12), "baseline_end": iso(-7),
         "dependency_ids": [], "estimated_hours": 24, "actual_hours": 26,
         "budget": 1500, "api_expected": 200000, "api_actual": 210000,
         "subscription_monthly": 300, "billing_model": "gpt-4o",
         "notes": "Prepare material and access."},
        {"id": "T-1002", "name": "Requirements workshop", "owner": "Bob", "status": "in_progress",
         "priority": "P0", "tags": ["workshop"], "start_date": iso(-5), "end_date": iso(-3),
         "type": "task", "baseline_start": iso(-6), "baseline_end": iso(-2),
         "dependency_ids": ["T-1001"], "estimated_hours": 16, "actual_hours": 8,
         "budget": 1200, "api_expected": 120000, "api_actual": 60000,
         "billing_model": "gpt-4o-mini"},
        {"id": "T-1003", "name": "Milestone M1 sign-off", "owner": "Clara",
         "status": "not_started", "priority": "P1", "tags": ["milestone"],
         "start_date": iso(2), "end_date": iso(2), "type": "milestone",
         "baseline_start": iso(1), "baseline_end": iso(1),
         "dependency_ids": ["T-1002"], "estimated_hours": 4, "budget": 500,
         "api_expected": 50000, "notes": "Confirm stakeholder sync."},
        {"id": "T-1004", "name": "API cost model check", "owner": "Alice", "status": "blocked",
         "priority": "P0", "tags": ["cost"], "start_date": iso(1), "end_date": iso(6),
         "type": "task", "baseline_start": iso(0), "baseline_end": iso(5),
         "dependency_ids": ["T-1002"], "estimated_hours": 32, "budget": 2500,
         "api_expected": 300000, "subscription_monthly": 200,
         "notes": "Waiting on updated model pricing."},
    ]


def generate_template(output_path, today=None):
    """Write an example project file to output_path."""
    today = parse_date(today) if today is not None else datetime.now().date()
    store = ScheduleStore(tasks=_seed_tasks(today),
                         settings={"project_name": "Example Schedule"})
    save_project_file(output_path, store)
    print(f"Template created: {output_path}")
    print(f"  Tasks: {len(store.order)}")
    print(f"  Timeline: {store.settings['timeline_start']} "
          f"(+{store.settings['timeline_days']} days)")


# ── Console Output ───────────────────────────────────────────────────────────

def print_issues(issues, show_info=False):
    """Print validation issues, worst first, one per line."""
    rank = {"error": 0, "warning": 1, "info": 2}
    for issue in sorted(issues, key=lambda i: rank.get(i["severity"], 3)):
        if issue["severity"] == "info" and not show_info:
            continue
        label = SEVERITY_LABELS.get(issue["severity"], issue["severity"].upper())
        hint = ""
        if issue.get("fix"):
            hint = f" [fix: {issue['fix']['action']} -> {issue['fix']['payload'].get('date')}]"
        print(f"  {label}: {issue['task_id']} ({issue['field']}): {issue['message']}{hint}")


def print_summary(store, heatmap, cost_lines, issues):
    """Print executive summary statistics to console."""
    tasks = store.ordered_tasks()
    settings = store.settings
    counts = summarize_issues(issues)

    print()
    print("=" * 60)
    print(f"  EXECUTIVE SUMMARY: {settings.get('project_name', '')}")
    print("=" * 60)
    status_parts = []
    for status in STATUS_VALUES:
        n = sum(1 for t in tasks if t.get("status") == status)
        if n:
            status_parts.append(f"{n} {status.replace('_', ' ')}")
    milestones = sum(1 for t in tasks if t.get("type") == "milestone")
    print(f"  Tasks:         {len(tasks)} total ({', '.join(status_parts) or 'none'}); "
          f"{milestones} milestone{'s' if milestones != 1 else ''}")
    print(f"  Timeline:      {settings['timeline_start']} (+{settings['timeline_days']} days)")
    print(f"  Issues:        {counts['error']} error(s), {counts['warning']} warning(s), "
          f"{counts['info']} info")

    # Resource load
    frame = heatmap_frame(heatmap)
    if not frame.empty:
        print()
        print("  Resource load:")
        for owner, row in frame.iterrows():
            peak_day = row.idxmax()
            print(f"    {owner}: {row.sum():.1f}h total, peak {row.max():.1f}h on {peak_day}")
    over = heatmap["over_allocated"]
    if over:
        by_owner = {}
        for row in over:
            by_owner.setdefault(row["owner"], set()).add(row["date"])
        print(f"  Over-allocated: {len(over)} contribution(s) on "
              f"{sum(len(d) for d in by_owner.values())} owner-day(s)")
        for owner, days in by_owner.items():
            days = sorted(days)
            suffix = f" ... +{len(days) - 3} more" if len(days) > 3 else ""
            print(f"    {owner}: {', '.join(days[:3])}{suffix}")

    # Priority breakdown
    print()
    print("  By priority:")
    for p in PRIORITY_VALUES:
        p_tasks = [t for t in tasks if t.get("priority") == p]
        if p_tasks:
            hours = sum(t.get("estimated_hours") or 0 for t in p_tasks)
            print(f"    {p}: {len(p_tasks)} task{'s' if len(p_tasks) != 1 else ''} ({hours:.4g}h)")

    # Cost
    totals = cost_totals(cost_lines)
    print()
    print(f"  Budget:        {totals['total_budget']:,.2f} "
          f"(+{totals['total_subscription']:,.2f}/month subscriptions)")
    print(f"  API usage:     {totals['api_actual']:,.0f} of {totals['api_expected']:,.0f} expected "
          f"(variance {totals['variance']:+,.0f}, forecast {totals['forecast']:,.0f})")

    # Baseline drift
    drift = []
    for t in tasks:
        try:
            shift = (parse_date(t["end_date"]) - parse_date(t["baseline_end"])).days
        except (KeyError, ValueError):
            continue
        if shift:
            drift.append((t, shift))
    if drift:
        print()
        print(f"  Baseline drift: {len(drift)} task{'s' if len(drift) != 1 else ''}")
        for t, shift in drift:
            print(f"    {t['name']}: {shift:+d} day{'s' if abs(shift) != 1 else ''}")

    # Usage
    if store.usage_logs:
        usage = summarize_usage(store.usage_logs)
        print()
        print(f"  Usage logged:  {usage['total']:.4g} across {len(store.usage_logs)} entries")
        for source, spent in usage["by_source"].items():
            if spent:
                print(f"    {source}: {spent:.4g}")

    print("=" * 60)
    print()


# ── Chart: Resource Heatmap ─────────────────────────────────────────────────

def render_heatmap(heatmap, output_path, settings):
    """Render the owner x day load heatmap; over-allocated cells get a red outline."""
    apply_style()
    frame = heatmap_frame(heatmap)
    if frame.empty:
        print("  No resource data. Check: tasks have an owner and fall inside the timeline.")
        return None

    values = frame.to_numpy()
    dates = list(frame.columns)
    owners = list(frame.index)
    limit = settings["resource_daily_limit"]

    fig_height = max(4, len(owners) * 0.6 + 2.5)
    fig = plt.figure(figsize=(STYLE["fig_width"], fig_height), facecolor=STYLE["bg_color"])
    ax = fig.add_axes([0.08, 0.2, 0.86, 0.62])

    cmap = LinearSegmentedColormap.from_list("load", STYLE["heat_colors"])
    vmax = max(float(np.nanmax(values)), float(limit), 1.0)
    ax.imshow(values, aspect="auto", cmap=cmap, vmin=0, vmax=vmax, interpolation="nearest")

    # Weekend columns
    for j, d in enumerate(dates):
        if parse_date(d).weekday() >= 5:
            ax.axvspan(j - 0.5, j + 0.5, color=STYLE["weekend_color"], alpha=0.5, zorder=2)

    flagged = {(row["owner"], row["date"]) for row in heatmap["over_allocated"]}
    for owner, d in flagged:
        i, j = owners.index(owner), dates.index(d)
        ax.add_patch(mpatches.Rectangle((j - 0.5, i - 0.5), 1, 1, fill=False,
                                        edgecolor=STYLE["over_capacity_color"],
                                        linewidth=1.6, zorder=4))

    # Hour labels only when the grid is small enough to read
    if len(dates) <= 45:
        for i in range(len(owners)):
            for j in range(len(dates)):
                if values[i, j] > 0.05:
                    over = (owners[i], dates[j]) in flagged
                    ax.text(j, i, f"{values[i, j]:.1f}", ha="center", va="center",
                            fontsize=5.5, zorder=5,
                            color=STYLE["over_capacity_color"] if over else STYLE["text_primary"],
                            fontweight="bold" if over else "normal")

    step = max(1, len(dates) // 40)
    ax.set_xticks(range(0, len(dates), step))
    ax.set_xticklabels([parse_date(d).strftime("%d %b") for d in dates[::step]],
                       rotation=45, ha="right", fontsize=STYLE["tick_size"])
    ax.set_yticks(range(len(owners)))
    ax.set_yticklabels(owners, fontsize=STYLE["label_size"])

    ax.legend(handles=[mpatches.Patch(facecolor="none", edgecolor=STYLE["over_capacity_color"],
                                      label=f"Over daily limit ({limit:g}h or task override)")],
              loc="upper right", bbox_to_anchor=(1.0, 1.12),
              fontsize=STYLE["small_size"], framealpha=0.9)
    style_axes(ax, title="Daily Resource Load (hours)")
    add_header_footer(fig, f"Resource Heatmap: {dates[0]} to {dates[-1]}",
                      subtitle=f"{len(heatmap['over_allocated'])} over-allocation(s)")

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Resource heatmap saved: {output_path}")
    return output_path


# ── Chart: Cost by Owner ────────────────────────────────────────────────────

def render_cost(cost_lines, output_path):
    """Render budget and API expected/actual per owner as grouped bars."""
    apply_style()
    lines = [line for line in cost_lines if line["dimension"] == "owner"]
    if not lines:
        print("  No owner cost data. Check: tasks have an owner.")
        return None

    keys = [line["key"] for line in lines]
    x = np.arange(len(keys))
    width = 0.38

    fig = plt.figure(figsize=(max(8, len(keys) * 1.6 + 4), 6), facecolor=STYLE["bg_color"])
    ax_budget = fig.add_axes([0.08, 0.15, 0.4, 0.65])
    ax_api = fig.add_axes([0.56, 0.15, 0.4, 0.65])

    budget = np.array([line["total_budget"] for line in lines])
    subs = np.array([line["total_subscription"] for line in lines])
    ax_budget.bar(x, budget, width * 1.6, color=STYLE["budget_color"], label="Budget", zorder=3)
    ax_budget.bar(x, subs, width * 1.6, bottom=budget, color=STYLE["expected_color"],
                  label="Subscriptions / month", zorder=3)
    ax_budget.set_xticks(x)
    ax_budget.set_xticklabels(keys, fontsize=STYLE["tick_size"])
    ax_budget.legend(fontsize=STYLE["small_size"])
    style_axes(ax_budget, title="Budget by Owner")

    expected = np.array([line["api_expected"] for line in lines])
    actual = np.array([line["api_actual"] for line in lines])
    ax_api.bar(x - width / 2, expected, width, color=STYLE["expected_color"],
               label="Expected", zorder=3)
    colors = [STYLE["over_capacity_color"] if a > e else STYLE["actual_color"]
              for a, e in zip(actual, expected)]
    ax_api.bar(x + width / 2, actual, width, color=colors, label="Actual", zorder=3)
    for i, line in enumerate(lines):
        if line["variance"]:
            ax_api.text(x[i] + width / 2, actual[i], f"{line['variance']:+,.0f}",
                        ha="center", va="bottom", fontsize=STYLE["small_size"] - 1,
                        color=STYLE["text_secondary"])
    ax_api.set_xticks(x)
    ax_api.set_xticklabels(keys, fontsize=STYLE["tick_size"])
    ax_api.legend(fontsize=STYLE["small_size"])
    style_axes(ax_api, title="API Usage by Owner")

    add_header_footer(fig, "Cost Overview")

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Cost chart saved: {output_path}")
    return output_path


# ── Excel Report ─────────────────────────────────────────────────────────────

def export_workbook(store, output_path, heatmap=None, cost_lines=None, issues=None):
    """Write an Excel report with Tasks, Issues, Cost and Heatmap sheets."""
    heatmap = heatmap if heatmap is not None else store.heatmap()
    cost_lines = cost_lines if cost_lines is not None else store.cost_lines()
    issues = issues if issues is not None else store.issues

    wb = Workbook()
    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="2E3B4E", end_color="2E3B4E", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    def style_header(ws, row=1):
        for cell in ws[row]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
            cell.border = thin_border

    def style_data_rows(ws, start_row=2):
        for row in ws.iter_rows(min_row=start_row, max_row=ws.max_row):
            for cell in row:
                cell.border = thin_border
                cell.alignment = Alignment(vertical="center")

    def set_widths(ws, widths):
        for col, width in widths.items():
            ws.column_dimensions[col].width = width

    # ── Sheet 1: Tasks ──
    ws_tasks = wb.active
    ws_tasks.title = "Tasks"
    ws_tasks.append(["ID", "Name", "Owner", "Status", "Priority", "Type", "Start", "End",
                     "Baseline Start", "Baseline End", "Depends On", "Est. Hours",
                     "Actual Hours", "Budget", "Tags"])
    for t in store.ordered_tasks():
        ws_tasks.append([
            t["id"], t["name"], t.get("owner") or "", t["status"], t["priority"], t["type"],
            t["start_date"], t["end_date"], t.get("baseline_start"), t.get("baseline_end"),
            ", ".join(t["dependency_ids"]), t["estimated_hours"], t["actual_hours"],
            t["budget"], ", ".join(t["tags"]),
        ])
    set_widths(ws_tasks, {"A": 12, "B": 34, "C": 14, "D": 13, "E": 9, "F": 11, "G": 12,
                          "H": 12, "I": 14, "J": 14, "K": 24, "L": 11, "M": 12, "N": 12,
                          "O": 20})
    style_header(ws_tasks)
    style_data_rows(ws_tasks)
    ws_tasks.freeze_panes = "A2"

    # ── Sheet 2: Issues ──
    ws_issues = wb.create_sheet("Issues")
    ws_issues.append(["Severity", "Code", "Task", "Field", "Message", "Suggested Fix"])
    for issue in issues:
        fix = issue.get("fix")
        ws_issues.append([
            issue["severity"], issue["code"], issue["task_id"], issue["field"], issue["message"],
            f"{fix['action']}: {json.dumps(fix['payload'])}" if fix else "",
        ])
    set_widths(ws_issues, {"A": 10, "B": 20, "C": 14, "D": 16, "E": 70, "F": 40})
    style_header(ws_issues)
    style_data_rows(ws_issues)
    ws_issues.freeze_panes = "A2"
    if ws_issues.max_row > 1:
        for severity, color in SEVERITY_FILLS.items():
            ws_issues.conditional_formatting.add(
                f"A2:A{ws_issues.max_row}",
                CellIsRule(operator="equal", formula=[f'"{severity}"'],
                           fill=PatternFill(bgColor=color)))

    # ── Sheet 3: Cost ──
    ws_cost = wb.create_sheet("Cost")
    ws_cost.append(["Dimension", "Key", "Budget", "Subscription", "API Expected",
                    "API Actual", "Variance", "Forecast"])
    for line in cost_lines:
        ws_cost.append([line["dimension"], line["key"], line["total_budget"],
                        line["total_subscription"], line["api_expected"], line["api_actual"],
                        line["variance"], line["forecast"]])
    set_widths(ws_cost, {"A": 12, "B": 16, "C": 14, "D": 14, "E": 14, "F": 14, "G": 14,
                         "H": 14})
    style_header(ws_cost)
    style_data_rows(ws_cost)
    ws_cost.freeze_panes = "C2"
    if ws_cost.max_row > 1:
        ws_cost.conditional_formatting.add(
            f"G2:G{ws_cost.max_row}",
            CellIsRule(operator="greaterThan", formula=["0"],
                       font=Font(bold=True, color="C62828")))

    # ── Sheet 4: Heatmap ──
    ws_heat = wb.create_sheet("Heatmap")
    frame = heatmap_frame(heatmap)
    ws_heat.append(["Owner"] + list(frame.columns))
    for owner, row in frame.iterrows():
        ws_heat.append([owner] + [round(float(v), 2) for v in row])
    ws_heat.column_dimensions["A"].width = 16
    style_header(ws_heat)
    style_data_rows(ws_heat)
    ws_heat.freeze_panes = "B2"
    if ws_heat.max_row > 1 and ws_heat.max_column > 1:
        last = ws_heat.cell(row=ws_heat.max_row, column=ws_heat.max_column).coordinate
        ws_heat.conditional_formatting.add(
            f"B2:{last}",
            ColorScaleRule(start_type="num", start_value=0, start_color="FFFFFF",
                           end_type="num", end_value=store.settings["resource_daily_limit"],
                           end_color="1E88E5"))
        ws_heat.conditional_formatting.add(
            f"B2:{last}",
            CellIsRule(operator="greaterThan",
                       formula=[str(store.settings["resource_daily_limit"])],
                       font=Font(bold=True, color="C62828")))

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    wb.save(output_path)
    print(f"  Excel report saved: {output_path}")
    return output_path


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Schedule Planner: validate a project schedule and generate "
                    "resource, cost and Excel reports"
    )
    parser.add_argument(
        "--template", action="store_true",
        help="Generate an example project file at --input"
    )
    parser.add_argument(
        "--input", default=DEFAULT_INPUT,
        help="Path to the project JSON file (default: schedule_project.json)"
    )
    parser.add_argument(
        "--outdir", default=None,
        help="Output directory for charts, report and summary (default: output/)"
    )
    parser.add_argument(
        "--charts", default=["all"], nargs="+",
        choices=["all", "heatmap", "cost", "none"],
        help="Which charts to generate (default: all)"
    )
    parser.add_argument(
        "--report", action="store_true",
        help="Also write an Excel report (schedule_report.xlsx)"
    )
    parser.add_argument(
        "--level", action="store_true",
        help="Run one auto-leveling pass before reporting"
    )
    parser.add_argument(
        "--fix-milestones", action="store_true",
        help="Apply suggested fixes for weekend milestones"
    )
    parser.add_argument(
        "--fit-timeline", action="store_true",
        help="Reset the timeline to the task date range (+20%% padding)"
    )
    parser.add_argument(
        "--save", action="store_true",
        help="Write changes from --level / --fix-milestones / --fit-timeline back to --input"
    )
    parser.add_argument(
        "--today", default=None,
        help="Reference date for overdue and budget checks (YYYY-MM-DD, default: today)"
    )
    parser.add_argument(
        "--strict", action="store_true",
        help="Treat resource over-allocation as an error"
    )
    parser.add_argument(
        "--show-info", action="store_true",
        help="Also print informational issues"
    )
    parser.add_argument(
        "--check", action="store_true",
        help="Exit with status 1 when any error-severity issue is found"
    )
    args = parser.parse_args(argv)

    today = None
    if args.today:
        try:
            today = parse_date(args.today)
        except ValueError:
            print(f"  ERROR: Invalid --today date '{args.today}'. Use YYYY-MM-DD format.")
            sys.exit(1)

    if args.template:
        generate_template(args.input, today)
        return

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        print("Run with --template first to create an example project.")
        sys.exit(1)

    out_dir = args.outdir or os.path.join(_DIR, "output")

    # Load
    print(f"Loading project from: {args.input}")
    try:
        store = load_project_file(args.input)
    except SnapshotError as e:
        print(f"  ERROR: {e}")
        sys.exit(1)
    owners = sorted({t["owner"] for t in store.ordered_tasks() if t.get("owner")})
    print(f"  Tasks: {len(store.order)}")
    print(f"  Owners: {', '.join(owners) if owners else 'none'}")
    print(f"  Usage logs: {len(store.usage_logs)}")

    if args.strict:
        store.settings["strict_over_allocation"] = True
    errors = validate_settings(store.settings)
    if errors:
        for e in errors:
            print(f"  ERROR: {e}")
        sys.exit(1)

    # Edits
    changed = False
    if args.fix_milestones:
        fixes = [i for i in store.run_validation(today) if i.get("fix")]
        for issue in fixes:
            store.apply_fix(issue)
        print(f"  Weekend milestones moved: {len(fixes)}")
        changed = changed or bool(fixes)
    if args.level:
        moved = store.auto_level()
        print(f"  Auto-level: {len(moved)} task{'s' if len(moved) != 1 else ''} moved "
              f"(one pass; run again to propagate long chains)")
        changed = changed or bool(moved)
    if args.fit_timeline:
        store.fit_timeline_to_tasks()
        print(f"  Timeline fitted: {store.settings['timeline_start']} "
              f"(+{store.settings['timeline_days']} days)")
        changed = True
    if changed and args.save:
        save_project_file(args.input, store)
        print(f"  Saved: {args.input}")
    elif changed:
        print("  NOTE: changes are not saved. Use --save to write them back.")

    # Derived views
    issues = store.run_validation(today)
    heatmap = store.heatmap()
    cost_lines = store.cost_lines()

    print()
    print(f"Validation ({today or today_iso()}):")
    print_issues(issues, show_info=args.show_info)
    if not any(i["severity"] != "info" for i in issues):
        print("  No problems found.")

    # Summary (capture output for summary.txt)
    summary_capture = io.StringIO()
    _orig_stdout = sys.stdout
    sys.stdout = _TeeWriter(_orig_stdout, summary_capture)
    try:
        print_summary(store, heatmap, cost_lines, issues)
    finally:
        sys.stdout = _orig_stdout
    summary_text = summary_capture.getvalue()

    charts = args.charts
    gen_all = "all" in charts
    output_files = []

    if gen_all or "heatmap" in charts:
        path = render_heatmap(heatmap, os.path.join(out_dir, "resource_heatmap.png"),
                              store.settings)
        if path:
            output_files.append(path)

    if gen_all or "cost" in charts:
        path = render_cost(cost_lines, os.path.join(out_dir, "cost_overview.png"))
        if path:
            output_files.append(path)

    if args.report:
        output_files.append(export_workbook(store, os.path.join(out_dir, "schedule_report.xlsx"),
                                            heatmap, cost_lines, issues))

    os.makedirs(out_dir, exist_ok=True)
    summary_path = os.path.join(out_dir, "summary.txt")
    with open(summary_path, "w", encoding="utf-8") as sf:
        sf.write(summary_text)
    output_files.append(summary_path)

    print()
    print("  Output:")
    for f in output_files:
        print(f"    {os.path.abspath(f)}")
    print("\nDone.")

    if args.check and summarize_issues(issues)["error"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
