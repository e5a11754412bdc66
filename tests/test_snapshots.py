from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from adopulse.db import DB
from adopulse.snapshots import SnapshotStore, clamp_days, team_slug

TODAY = dt.date(2025, 3, 14)


def _store(tmp_path: Path) -> SnapshotStore:
    store = SnapshotStore(DB(tmp_path / "snap" / "adopulse.duckdb"))
    store.ensure_schema()
    return store


def test_team_slug_and_day_clamp() -> None:
    assert team_slug("  Team A / Payments ") == "team-a-payments"
    assert clamp_days(None) == 30
    assert clamp_days(0) == 1
    assert clamp_days(1000) == 365


def test_first_team_snapshot_of_the_day_wins(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save_team_snapshot(team="Team A", org="acme", project="Shop", metrics={"team": {"totalPRs": 4}}, today=TODAY)
    store.save_team_snapshot(team="team a", org="acme", project="Shop", metrics={"team": {"totalPRs": 9}}, today=TODAY)
    store.save_team_snapshot(
        team="Team A", org="acme", project="Shop", metrics={"team": {"totalPRs": 2}}, today=TODAY - dt.timedelta(days=1)
    )
    store.save_team_snapshot(team="Team B", org="acme", project="Shop", metrics={}, today=TODAY)

    rows = store.get_team_snapshots("acme", "Shop", team="Team A", today=TODAY)
    assert [(r.snapshot_date, r.metrics["team"]["totalPRs"]) for r in rows] == [
        (TODAY, 4),
        (TODAY - dt.timedelta(days=1), 2),
    ]
    assert len(store.get_team_snapshots("acme", "Shop", today=TODAY)) == 3
    assert store.get_team_snapshots("acme", "Other", today=TODAY) == []


def test_lookback_window(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save_team_snapshot(team="A", org="acme", project="Shop", metrics={}, today=TODAY - dt.timedelta(days=40))
    assert store.get_team_snapshots("acme", "Shop", today=TODAY) == []
    assert len(store.get_team_snapshots("acme", "Shop", days=60, today=TODAY)) == 1


def test_time_snapshots(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save_time_snapshot(
        member_id="alice@corp.com", member_name="Alice", org="acme", hours={"capExHours": 6}, total_hours=6, today=TODAY
    )
    store.save_time_snapshot(
        member_id="alice@corp.com", member_name="Alice", org="acme", hours={"capExHours": 9}, total_hours=9, today=TODAY
    )
    [row] = store.get_time_snapshots("acme", today=TODAY)
    assert row.total_hours == 6
    assert row.hours == {"capExHours": 6}
    assert row.to_dict()["snapshotDate"] == "2025-03-14"


def test_corrupt_json_reads_as_none(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    store = _store(tmp_path)
    with store.db.connect() as conn:
        conn.execute(
            "INSERT INTO team_pr_snapshots (snapshot_date, team_slug, org, project, metrics_json) VALUES (?, ?, ?, ?, ?)",
            [TODAY, "a", "acme", "Shop", "{not json"],
        )
    with caplog.at_level("WARNING"):
        [row] = store.get_team_snapshots("acme", "Shop", today=TODAY)
    assert row.metrics is None
    assert "Corrupt JSON" in caplog.text
