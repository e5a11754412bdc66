from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from adopulse.models import Period


@dataclass(frozen=True)
class InputIssue:
    field: str
    message: str


@dataclass(frozen=True)
class InvalidInput:
    """
    Returned by report builders instead of a report when the caller handed in
    something malformed. Callers branch on it with isinstance().
    """

    issues: tuple[InputIssue, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "invalid input",
            "issues": [{"field": i.field, "message": i.message} for i in self.issues],
        }


def check_roster(roster: Iterable[Any] | None) -> list[InputIssue]:
    if roster is None:
        return [InputIssue("roster", "roster is required")]
    return []


def check_records(records: Iterable[Any] | None, *, field: str = "records") -> list[InputIssue]:
    if records is None:
        return [InputIssue(field, f"{field} is required")]
    return []


def check_period(period: Period | None) -> list[InputIssue]:
    if period is None:
        return [InputIssue("period", "period is required")]
    issues: list[InputIssue] = []
    if period.days < 0:
        issues.append(InputIssue("period.days", f"day count must be >= 0, got {period.days}"))
    if period.end < period.start:
        issues.append(InputIssue("period", "period ends before it starts"))
    return issues


def check_hours_per_day(hours_per_day: float) -> list[InputIssue]:
    if hours_per_day < 0:
        return [InputIssue("hoursPerDay", f"hours per day must be >= 0, got {hours_per_day}")]
    return []


def collect(*groups: list[InputIssue]) -> InvalidInput | None:
    issues = [i for g in groups for i in g]
    if not issues:
        return None
    return InvalidInput(tuple(issues))
