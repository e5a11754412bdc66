from __future__ import annotations

import datetime as dt
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from adopulse.db import DB
from adopulse.models import TeamSummaryReport, TimeTrackingReport

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30
MAX_LOOKBACK_DAYS = 365
MAX_ROWS = 100


@dataclass(frozen=True)
class TeamSnapshotRow:
    snapshot_date: dt.date
    team_slug: str
    org: str
    project: str
    created_at: dt.datetime | None
    metrics: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshotDate": self.snapshot_date.isoformat(),
            "teamSlug": self.team_slug,
            "org": self.org,
            "project": self.project,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "metrics": self.metrics,
        }


@dataclass(frozen=True)
class TimeSnapshotRow:
    snapshot_date: dt.date
    member_id: str
    member_name: str
    org: str
    total_hours: float
    created_at: dt.datetime | None
    hours: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshotDate": self.snapshot_date.isoformat(),
            "memberId": self.member_id,
            "memberName": self.member_name,
            "org": self.org,
            "totalHours": self.total_hours,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "hours": self.hours,
        }


def team_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


def clamp_days(days: int | None) -> int:
    if days is None:
        return DEFAULT_LOOKBACK_DAYS
    return min(max(days, 1), MAX_LOOKBACK_DAYS)


def _safe_json(raw: str, **context: Any) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Corrupt JSON in snapshot row %s", context)
        return None


class SnapshotStore:
    """
    One row per (day, team) and per (day, member); a second save on the
    same day is ignored so the first capture of the day wins.
    """

    def __init__(self, db: DB) -> None:
        self.db = db

    def ensure_schema(self) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS team_pr_snapshots (
                  snapshot_date DATE NOT NULL,
                  team_slug VARCHAR NOT NULL,
                  org VARCHAR NOT NULL,
                  project VARCHAR NOT NULL,
                  metrics_json VARCHAR NOT NULL,
                  created_at TIMESTAMP DEFAULT current_timestamp,
                  PRIMARY KEY (snapshot_date, team_slug, org, project)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS time_tracking_snapshots (
                  snapshot_date DATE NOT NULL,
                  member_id VARCHAR NOT NULL,
                  member_name VARCHAR NOT NULL,
                  org VARCHAR NOT NULL,
                  hours_json VARCHAR NOT NULL,
                  total_hours DOUBLE NOT NULL DEFAULT 0,
                  created_at TIMESTAMP DEFAULT current_timestamp,
                  PRIMARY KEY (snapshot_date, member_id, org)
                )
                """
            )

    def save_team_snapshot(
        self, *, team: str, org: str, project: str, metrics: Any, today: dt.date | None = None
    ) -> None:
        today = today or dt.date.today()
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO team_pr_snapshots (snapshot_date, team_slug, org, project, metrics_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                [today, team_slug(team), org, project, json.dumps(metrics)],
            )

    def save_time_snapshot(
        self,
        *,
        member_id: str,
        member_name: str,
        org: str,
        hours: Any,
        total_hours: float,
        today: dt.date | None = None,
    ) -> None:
        today = today or dt.date.today()
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO time_tracking_snapshots
                  (snapshot_date, member_id, member_name, org, hours_json, total_hours)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [today, member_id, member_name, org, json.dumps(hours), float(total_hours)],
            )

    def save_team_summary(self, report: TeamSummaryReport, *, org: str, project: str, today: dt.date | None = None) -> None:
        self.save_team_snapshot(
            team=report.team.name,
            org=org,
            project=project,
            metrics={
                "team": report.team.to_dict(),
                "byRepo": [r.to_dict() for r in report.by_repo],
                "members": [
                    {
                        "uniqueName": m.unique_name,
                        "prCount": m.pr_count,
                        "reviewsGiven": m.reviews_given,
                        "isExcluded": m.is_excluded,
                    }
                    for m in report.members
                ],
            },
            today=today,
        )

    def save_time_report(self, report: TimeTrackingReport, *, org: str, today: dt.date | None = None) -> int:
        saved = 0
        for m in report.members:
            self.save_time_snapshot(
                member_id=m.unique_name,
                member_name=m.display_name,
                org=org,
                hours={
                    "capExHours": m.cap_ex_hours,
                    "opExHours": m.op_ex_hours,
                    "unclassifiedHours": m.unclassified_hours,
                    "features": [f.to_dict() for f in m.features],
                },
                total_hours=m.total_hours,
                today=today,
            )
            saved += 1
        return saved

    def get_team_snapshots(
        self, org: str, project: str, team: str | None = None, days: int | None = None, today: dt.date | None = None
    ) -> list[TeamSnapshotRow]:
        cutoff = (today or dt.date.today()) - dt.timedelta(days=clamp_days(days))
        sql = """
            SELECT snapshot_date, team_slug, org, project, created_at, metrics_json
            FROM team_pr_snapshots
            WHERE snapshot_date >= ? AND org = ? AND project = ?
        """
        params: list[Any] = [cutoff, org, project]
        if team:
            sql += " AND team_slug = ?"
            params.append(team_slug(team))
        sql += f" ORDER BY snapshot_date DESC LIMIT {MAX_ROWS}"

        with self.db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            TeamSnapshotRow(
                snapshot_date=r[0],
                team_slug=r[1],
                org=r[2],
                project=r[3],
                created_at=r[4],
                metrics=_safe_json(r[5], team_slug=r[1], org=r[2], project=r[3]),
            )
            for r in rows
        ]

    def get_time_snapshots(self, org: str, days: int | None = None, today: dt.date | None = None) -> list[TimeSnapshotRow]:
        cutoff = (today or dt.date.today()) - dt.timedelta(days=clamp_days(days))
        with self.db.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT snapshot_date, member_id, member_name, org, total_hours, created_at, hours_json
                FROM time_tracking_snapshots
                WHERE snapshot_date >= ? AND org = ?
                ORDER BY snapshot_date DESC LIMIT {MAX_ROWS}
                """,
                [cutoff, org],
            ).fetchall()
        return [
            TimeSnapshotRow(
                snapshot_date=r[0],
                member_id=r[1],
                member_name=r[2],
                org=r[3],
                total_hours=float(r[4]),
                created_at=r[5],
                hours=_safe_json(r[6], member_id=r[1], org=r[3]),
            )
            for r in rows
        ]
