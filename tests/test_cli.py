from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

import adopulse.commands.report as report_cmd
from adopulse.ado_client import AdoApiError, TeamNotFoundError
from adopulse.cli import app
from adopulse.models import ActivityRecord, Period, RosterMember, WorklogEntry
from adopulse.reports import build_team_summary, build_user_time, disconnected_time_report
from adopulse.validation import InputIssue, InvalidInput

runner = CliRunner()

NOW = dt.datetime(2025, 3, 14, tzinfo=dt.timezone.utc)
PERIOD = Period(days=14, start=NOW - dt.timedelta(days=14), end=NOW, label="last 14 days")


class _StubService:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[str, tuple]] = []

    def _answer(self, name: str, *args: Any) -> Any:
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error
        return self.result

    def team_summary(self, team, period, agencies=()):
        return self._answer("team_summary", team, period, agencies)

    def time_tracking(self, team, period, agencies=()):
        return self._answer("time_tracking", team, period, agencies)

    def user_time(self, email, period):
        return self._answer("user_time", email, period)


def _use(monkeypatch: pytest.MonkeyPatch, svc: _StubService) -> None:
    monkeypatch.setattr(report_cmd, "_service", lambda: svc)


def _summary():
    roster = [RosterMember(unique_name="alice@corp.com", display_name="Alice", id="a")]
    prs = [
        ActivityRecord(
            author_unique_name="alice@corp.com",
            author_display_name="Alice",
            repo_or_feature="shop",
            timestamp=NOW,
        )
    ]
    return build_team_summary("Team A", roster, prs, PERIOD)


def test_help_lists_command_groups() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for group in ("config", "report", "snapshot", "profiles"):
        assert group in result.stdout


def test_config_set_masks_the_pat(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADOPULSE_HOME", str(tmp_path))
    result = runner.invoke(app, ["config", "set", "--org", "acme", "--project", "Shop", "--pat", "supersecretpat"])
    assert result.exit_code == 0, result.stdout
    assert (tmp_path / "config.toml").exists()

    shown = runner.invoke(app, ["config", "show"])
    assert shown.exit_code == 0
    assert "supersecretpat" not in shown.stdout
    assert "tpat" in shown.stdout


def test_team_summary_json(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _StubService(_summary())
    _use(monkeypatch, svc)

    result = runner.invoke(app, ["report", "team-summary", "--team", "Team A", "--json", "-a", "Acme", "-a", "Beta"])

    assert result.exit_code == 0, result.stdout
    data = json.loads(result.stdout)
    assert data["team"]["totalPRs"] == 1
    assert data["coverage"]["matchRate"] == 100
    name, (team, period, agencies) = svc.calls[0]
    assert (name, team, agencies) == ("team_summary", "Team A", ["Acme", "Beta"])
    assert period.days == 14


def test_team_summary_tables(monkeypatch: pytest.MonkeyPatch) -> None:
    _use(monkeypatch, _StubService(_summary()))
    result = runner.invoke(app, ["report", "team-summary", "-t", "Team A", "-r", "7"])
    assert result.exit_code == 0, result.stdout
    assert "Members" in result.stdout
    assert "Coverage" in result.stdout


def test_invalid_input_exits_1(monkeypatch: pytest.MonkeyPatch) -> None:
    _use(monkeypatch, _StubService(InvalidInput((InputIssue("roster", "roster is required"),))))
    result = runner.invoke(app, ["report", "team-summary", "-t", "Team A"])
    assert result.exit_code == 1
    assert "Invalid input" in result.stdout


def test_ado_401_prints_pat_hint(monkeypatch: pytest.MonkeyPatch) -> None:
    _use(monkeypatch, _StubService(error=AdoApiError("ADO API error: 401 Unauthorized", 401, "https://x")))
    result = runner.invoke(app, ["report", "team-summary", "-t", "Team A"])
    assert result.exit_code == 1
    assert "HTTP 401" in result.stdout
    assert "PAT" in result.stdout


def test_unknown_team_exits_1(monkeypatch: pytest.MonkeyPatch) -> None:
    _use(monkeypatch, _StubService(error=TeamNotFoundError('Team "Nope" not found')))
    result = runner.invoke(app, ["report", "team-summary", "-t", "Nope"])
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_unknown_range_is_a_usage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _StubService(_summary())
    _use(monkeypatch, svc)
    result = runner.invoke(app, ["report", "team-summary", "-t", "Team A", "--range", "30"])
    assert result.exit_code == 2
    assert svc.calls == []


def test_time_without_seven_pace(monkeypatch: pytest.MonkeyPatch) -> None:
    _use(monkeypatch, _StubService(disconnected_time_report("Team A", PERIOD)))
    result = runner.invoke(app, ["report", "time", "-t", "Team A"])
    assert result.exit_code == 0, result.stdout
    assert "7pace is not configured" in result.stdout


def test_user_time_json(monkeypatch: pytest.MonkeyPatch) -> None:
    entries = [WorklogEntry("alice@corp.com", "Alice", 3, NOW, work_item_id=7, work_item_title="Fix login")]
    svc = _StubService(build_user_time("alice@corp.com", entries, PERIOD))
    _use(monkeypatch, svc)
    result = runner.invoke(app, ["report", "user-time", "--email", "alice@corp.com", "--json"])
    assert result.exit_code == 0, result.stdout
    data = json.loads(result.stdout)
    assert data["totalHours"] == 3
    assert data["workItems"][0]["workItemId"] == 7
    assert svc.calls[0][0] == "user_time"


def test_user_time_without_seven_pace_exits_1(monkeypatch: pytest.MonkeyPatch) -> None:
    _use(monkeypatch, _StubService(None))
    result = runner.invoke(app, ["report", "user-time", "-e", "alice@corp.com"])
    assert result.exit_code == 1
    assert "7pace is not configured" in result.stdout
