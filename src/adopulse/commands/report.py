from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import typer
from rich.console import Console

from adopulse.ado_client import AdoApiError, TeamNotFoundError
from adopulse.models import TeamValidatorReport
from adopulse.periods import DEFAULT_RANGE, RANGES, resolve_range
from adopulse.render import (
    alignment_tables,
    diagnostics_tables,
    identity_tables,
    invalid_input_table,
    stale_tables,
    team_summary_tables,
    time_tables,
    to_rich_table,
    user_time_tables,
)
from adopulse.seven_pace import SevenPaceApiError
from adopulse.settings import issues_to_table
from adopulse.validation import InvalidInput

report_app = typer.Typer(help="Team reports from Azure DevOps and 7pace.", add_completion=False)
console = Console()

TEAM_OPT = typer.Option(..., "--team", "-t", help="ADO team name (case-insensitive)")
RANGE_OPT = typer.Option(DEFAULT_RANGE, "--range", "-r", help=f"Lookback: {' | '.join(RANGES)}")
AGENCY_OPT = typer.Option(None, "--agency", "-a", help="Only members of this agency (repeatable)")
JSON_OPT = typer.Option(False, "--json", help="Print the report as JSON")


def _hint_for_status(status_code: int | None) -> str:
    if status_code == 401:
        return "Check: the PAT was rejected (401). It needs Code:Read, Work Items:Read and, for alignment, Analytics:Read."
    if status_code == 203:
        return "Check: ADO answered with a sign-in page; the PAT is expired or was not accepted."
    if status_code == 403:
        return "Check: the PAT has no access to this project or API (403)."
    if status_code == 404:
        return "Check: org / project names in `adopulse config show` (404)."
    if status_code == 410:
        return "Check: the Analytics extension is not enabled for this organization (410)."
    if status_code == 503:
        return "Check: network access to dev.azure.com (connection failed)."
    if status_code == 504:
        return "Check: the request timed out; try a shorter --range."
    return "Check: PAT scopes and the org / project settings."


def _service():
    from adopulse.config import load_config
    from adopulse.service import PulseService

    svc = PulseService.from_config(load_config())
    if svc.settings_issues:
        console.print(issues_to_table(svc.settings_issues))
    return svc


def _check_range(range_: str) -> str:
    if range_ not in RANGES:
        raise typer.BadParameter(f"--range must be one of: {', '.join(RANGES)}")
    return range_


def _emit(report: Any, as_json: bool, tables: Callable[[Any], list]) -> None:
    if isinstance(report, InvalidInput):
        console.print(invalid_input_table(report))
        raise SystemExit(1)
    if as_json:
        console.print_json(json.dumps(report.to_dict()))
        return
    for t in tables(report):
        console.print(t)


def _run(fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except AdoApiError as e:
        console.print(f"[red]ADO request failed: HTTP {e.status}[/red] {e}")
        console.print(f"[yellow]{_hint_for_status(e.status)}[/yellow]")
        raise typer.Exit(1) from e
    except SevenPaceApiError as e:
        console.print(f"[red]7pace request failed: {e.code} (HTTP {e.status})[/red] {e}")
        if e.code == "AUTH_ERROR":
            console.print("[yellow]Check: seven_pace_token in `adopulse config show`.[/yellow]")
        raise typer.Exit(1) from e
    except TeamNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e


@report_app.command("team-summary")
def team_summary(
    team: str = TEAM_OPT,
    range_: str = RANGE_OPT,
    agency: list[str] | None = AGENCY_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """PR activity per member, repo breakdown, coverage and data confidence."""
    period = resolve_range(_check_range(range_))
    svc = _service()
    report = _run(lambda: svc.team_summary(team, period, agency or []))
    _emit(report, as_json, team_summary_tables)


@report_app.command("alignment")
def alignment(
    team: str = TEAM_OPT,
    range_: str = RANGE_OPT,
    agency: list[str] | None = AGENCY_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """How much of the team's PR work lands inside the team's area paths."""
    period = resolve_range(_check_range(range_))
    svc = _service()
    report = _run(lambda: svc.alignment(team, period, agency or []))
    _emit(report, as_json, alignment_tables)


@report_app.command("stale")
def stale(
    team: str = TEAM_OPT,
    agency: list[str] | None = AGENCY_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """Open PRs of the team bucketed by age."""
    svc = _service()
    report = _run(lambda: svc.stale(team, agency or []))
    _emit(report, as_json, stale_tables)


@report_app.command("time")
def time_tracking(
    team: str = TEAM_OPT,
    range_: str = RANGE_OPT,
    agency: list[str] | None = AGENCY_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """7pace hours per member and feature, with logging compliance."""
    period = resolve_range(_check_range(range_))
    svc = _service()
    report = _run(lambda: svc.time_tracking(team, period, agency or []))
    _emit(report, as_json, time_tables)


@report_app.command("diagnostics")
def diagnostics(
    team: str = TEAM_OPT,
    range_: str = RANGE_OPT,
    agency: list[str] | None = AGENCY_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """How far the team's numbers can be trusted."""
    period = resolve_range(_check_range(range_))
    svc = _service()
    report = _run(lambda: svc.diagnostics(team, period, agency or []))
    _emit(report, as_json, diagnostics_tables)


@report_app.command("identity-check")
def identity_check(
    team: str = TEAM_OPT,
    range_: str = RANGE_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """Roster identities next to PR author identities."""
    period = resolve_range(_check_range(range_))
    svc = _service()
    report = _run(lambda: svc.identity_check(team, period))
    _emit(report, as_json, identity_tables)


def _validator_tables(report: TeamValidatorReport) -> list:
    return [
        to_rich_table(
            ["member", "unique name", "found", "PRs"],
            [
                (m.display_name, m.unique_name, "yes" if m.found_in_project_prs else "no", m.matched_pr_count)
                for m in report.roster_members
            ],
            title=f"Team validator: {report.team_name} ({report.total_project_prs} project PRs)",
        )
    ]


@report_app.command("team-validator")
def validator(
    team: str = TEAM_OPT,
    range_: str = RANGE_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """Roster members not seen among project PR authors, listed first."""
    period = resolve_range(_check_range(range_))
    svc = _service()
    report = _run(lambda: svc.team_validator(team, period))
    _emit(report, as_json, _validator_tables)


@report_app.command("user-time")
def user_time(
    email: str = typer.Option(..., "--email", "-e", help="7pace user email / ADO unique name"),
    range_: str = RANGE_OPT,
    as_json: bool = JSON_OPT,
) -> None:
    """One person's 7pace hours grouped by work item."""
    period = resolve_range(_check_range(range_))
    svc = _service()
    report = _run(lambda: svc.user_time(email, period))
    if report is None:
        console.print("[yellow]7pace is not configured; set seven_pace_base_url and seven_pace_token.[/yellow]")
        raise typer.Exit(1)
    _emit(report, as_json, user_time_tables)
