from __future__ import annotations

import typer
from rich.console import Console

from adopulse.models import TeamSummaryReport, TimeTrackingReport
from adopulse.periods import DEFAULT_RANGE, resolve_range
from adopulse.render import to_rich_table
from adopulse.snapshots import DEFAULT_LOOKBACK_DAYS, MAX_LOOKBACK_DAYS

snapshot_app = typer.Typer(help="Daily snapshots of team and time-tracking metrics (DuckDB).", add_completion=False)
console = Console()


def _store():
    from adopulse.config import load_config
    from adopulse.db import DB
    from adopulse.snapshots import SnapshotStore

    cfg = load_config()
    store = SnapshotStore(DB(cfg.db_path_resolved))
    store.ensure_schema()
    return cfg, store


@snapshot_app.command("save")
def snapshot_save(
    team: str = typer.Option(..., "--team", "-t", help="ADO team name"),
    range_: str = typer.Option(DEFAULT_RANGE, "--range", "-r", help="Lookback used for the captured metrics"),
) -> None:
    """Capture today's team summary (and time tracking when 7pace is set up). Re-running on the same day is a no-op."""
    from adopulse.commands.report import _run
    from adopulse.service import PulseService

    cfg, store = _store()
    svc = PulseService.from_config(cfg)
    period = resolve_range(range_)

    out = {"team": team, "team_snapshot": False, "time_snapshots": 0}
    summary = _run(lambda: svc.team_summary(team, period))
    if isinstance(summary, TeamSummaryReport):
        store.save_team_summary(summary, org=cfg.ado_org, project=cfg.ado_project)
        out["team_snapshot"] = True

    if svc.seven_pace is not None:
        time_report = _run(lambda: svc.time_tracking(team, period))
        if isinstance(time_report, TimeTrackingReport):
            out["time_snapshots"] = store.save_time_report(time_report, org=cfg.ado_org)
    console.print(out)


@snapshot_app.command("list")
def snapshot_list(
    kind: str = typer.Option("pr", "--type", help="pr | time"),
    team: str | None = typer.Option(None, "--team", "-t", help="Only this team (pr snapshots)"),
    days: int = typer.Option(DEFAULT_LOOKBACK_DAYS, min=1, max=MAX_LOOKBACK_DAYS, help="Look back N days"),
) -> None:
    cfg, store = _store()
    if kind == "time":
        rows = store.get_time_snapshots(cfg.ado_org, days)
        console.print(
            to_rich_table(
                ["date", "member", "total h", "created"],
                [(r.snapshot_date, r.member_name, r.total_hours, r.created_at) for r in rows],
                title=f"Time snapshots ({len(rows)})",
            )
        )
        return
    if kind != "pr":
        raise typer.BadParameter("--type must be pr or time")

    rows = store.get_team_snapshots(cfg.ado_org, cfg.ado_project, team, days)
    table_rows = []
    for r in rows:
        team_kpis = (r.metrics or {}).get("team") or {}
        table_rows.append(
            (r.snapshot_date, r.team_slug, team_kpis.get("totalPRs", "-"), team_kpis.get("activeContributors", "-"), r.created_at)
        )
    console.print(
        to_rich_table(["date", "team", "PRs", "active", "created"], table_rows, title=f"Team snapshots ({len(rows)})")
    )
