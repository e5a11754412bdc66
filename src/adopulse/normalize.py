"""
Boundary between upstream payloads and the engine.

Azure DevOps hands out pull requests in two shapes (Analytics OData with
PascalCase fields, REST with camelCase fields), and 7pace does the same for
worklogs. Everything is turned into the one canonical shape here so the
engine never branches on where a record came from.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Mapping
from typing import Any

from adopulse.models import (
    ActivityRecord,
    ExpenseType,
    RosterMember,
    TeamScope,
    Worklog,
    WorklogEntry,
)

FEATURE_TYPE = "Feature"
MAX_PARENT_DEPTH = 5

WorkItem = Mapping[str, Any]


def parse_datetime_loose(value: Any) -> dt.datetime | None:
    if value is None:
        return None

    # epoch seconds/ms
    if isinstance(value, (int, float)):
        seconds = float(value) / 1000.0 if value > 1_000_000_000_000 else float(value)
        try:
            return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = dt.datetime.fromisoformat(s)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=dt.timezone.utc)
        return parsed

    return None


def _get_nested(d: Mapping[str, Any], *keys: str) -> Any:
    cur: Any = d
    for k in keys:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(k)
    return cur


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ── Roster / scope ───────────────────────────────────────────────────


def roster_member(obj: Mapping[str, Any]) -> RosterMember:
    # team member listings wrap the identity: {"identity": {...}}
    ident = obj.get("identity") if isinstance(obj.get("identity"), Mapping) else obj
    return RosterMember(
        unique_name=_str(ident.get("uniqueName")),
        display_name=_str(ident.get("displayName")),
        id=_str(ident.get("id")),
    )


def roster(items: Iterable[Mapping[str, Any]]) -> list[RosterMember]:
    return [roster_member(o) for o in items]


def team_scope(field_values: Mapping[str, Any]) -> TeamScope:
    values = field_values.get("values") or []
    return TeamScope(
        area_paths=tuple(_str(v.get("value")) for v in values if isinstance(v, Mapping) and v.get("value")),
        default_area_path=_str(field_values.get("defaultValue")),
    )


# ── Pull requests ────────────────────────────────────────────────────


def pr_from_odata(obj: Mapping[str, Any]) -> ActivityRecord:
    user = _str(_get_nested(obj, "CreatedBy", "UserName"))
    work_items = obj.get("WorkItems") or []
    return ActivityRecord(
        author_unique_name=user,
        # the analytics feed carries no display name; the user name stands in
        author_display_name=user,
        repo_or_feature=_str(_get_nested(obj, "Repository", "RepositoryName")),
        timestamp=parse_datetime_loose(obj.get("CompletedDate")),
        linked_area_paths=tuple(_str(wi.get("AreaPath")) for wi in work_items if isinstance(wi, Mapping)),
        id=_int_or_none(obj.get("PullRequestId")),
        title=_str(obj.get("Title")),
        created=parse_datetime_loose(obj.get("CreatedDate")),
    )


def pr_from_rest(
    obj: Mapping[str, Any],
    work_items: Mapping[int, WorkItem] | None = None,
) -> ActivityRecord:
    """
    REST PR -> canonical record. Area paths are only known when the linked
    work items were looked up and passed in `work_items`.
    """
    refs = obj.get("workItemRefs") or []
    paths: tuple[str, ...] = ()
    if work_items is not None:
        paths = tuple(
            _str(_get_nested(work_items.get(_int_or_none(ref.get("id")) or 0) or {}, "fields", "System.AreaPath"))
            for ref in refs
            if isinstance(ref, Mapping)
        )
    reviewers = obj.get("reviewers") or []
    return ActivityRecord(
        author_unique_name=_str(_get_nested(obj, "createdBy", "uniqueName")),
        author_display_name=_str(_get_nested(obj, "createdBy", "displayName")),
        repo_or_feature=_str(_get_nested(obj, "repository", "name")),
        timestamp=parse_datetime_loose(obj.get("closedDate")),
        linked_area_paths=paths,
        id=_int_or_none(obj.get("pullRequestId")),
        title=_str(obj.get("title")),
        created=parse_datetime_loose(obj.get("creationDate")),
        reviewer_count=len(reviewers) if isinstance(reviewers, list) else 0,
        url=_str(obj.get("url")),
    )


def work_item_ids(prs: Iterable[Mapping[str, Any]]) -> list[int]:
    out: list[int] = []
    for pr in prs:
        for ref in pr.get("workItemRefs") or []:
            wid = _int_or_none(ref.get("id")) if isinstance(ref, Mapping) else None
            if wid is not None and wid not in out:
                out.append(wid)
    return out


# ── Worklogs ─────────────────────────────────────────────────────────


def worklog_from_rest(obj: Mapping[str, Any]) -> Worklog:
    user = obj.get("user") if isinstance(obj.get("user"), Mapping) else {}
    return Worklog(
        id=_str(obj.get("id")),
        user_id=_str(user.get("id")),
        unique_name=_str(user.get("uniqueName")),
        display_name=_str(user.get("name")),
        work_item_id=_int_or_none(obj.get("workItemId")) or 0,
        hours=float(obj.get("length") or 0) / 3600,
        timestamp=parse_datetime_loose(obj.get("timestamp")),
    )


def worklog_from_odata(obj: Mapping[str, Any]) -> Worklog:
    user = obj.get("User") if isinstance(obj.get("User"), Mapping) else {}
    return Worklog(
        id=_str(obj.get("Id")),
        user_id=_str(obj.get("UserId") or user.get("Id")),
        unique_name=_str(user.get("Email")),
        display_name=_str(user.get("Name")),
        work_item_id=_int_or_none(obj.get("WorkItemId")) or 0,
        hours=float(obj.get("PeriodLength") or 0) / 3600,
        timestamp=parse_datetime_loose(obj.get("Timestamp")),
    )


def _fields(item: WorkItem | None) -> Mapping[str, Any]:
    if item is None:
        return {}
    fields = item.get("fields")
    return fields if isinstance(fields, Mapping) else {}


def expense_type(raw: Any) -> ExpenseType:
    if raw == ExpenseType.CAPEX.value:
        return ExpenseType.CAPEX
    if raw == ExpenseType.OPEX.value:
        return ExpenseType.OPEX
    return ExpenseType.UNCLASSIFIED


def resolve_feature(
    work_item_id: int,
    work_items: Mapping[int, WorkItem],
    max_depth: int = MAX_PARENT_DEPTH,
) -> tuple[int | None, str, ExpenseType]:
    """
    Walk `System.Parent` up from `work_item_id` to the nearest Feature.
    Returns (feature id, title, expense type); (None, "No Feature",
    Unclassified) when no Feature is reachable within `max_depth` steps.
    """
    current: int | None = work_item_id
    depth = 0
    while current is not None and depth < max_depth:
        item = work_items.get(current)
        if item is None:
            break
        fields = _fields(item)
        if fields.get("System.WorkItemType") == FEATURE_TYPE:
            return current, _str(fields.get("System.Title")) or f"Feature {current}", expense_type(
                fields.get("Custom.FeatureExpense")
            )
        current = _int_or_none(fields.get("System.Parent"))
        depth += 1
    return None, "No Feature", ExpenseType.UNCLASSIFIED


def worklog_entry(wl: Worklog, work_items: Mapping[int, WorkItem]) -> WorklogEntry:
    """
    Classify one worklog. Time logged on anything below a Feature is
    "wrong level" and is attributed to the Feature above it.
    """
    if not wl.work_item_id:
        return WorklogEntry(
            author_unique_name=wl.unique_name,
            author_display_name=wl.display_name,
            hours=wl.hours,
            timestamp=wl.timestamp,
        )

    fields = _fields(work_items.get(wl.work_item_id))
    wi_type = fields.get("System.WorkItemType")
    feature_id, feature_title, expense = resolve_feature(wl.work_item_id, work_items)
    return WorklogEntry(
        author_unique_name=wl.unique_name,
        author_display_name=wl.display_name,
        hours=wl.hours,
        timestamp=wl.timestamp,
        work_item_id=wl.work_item_id,
        feature_id=feature_id,
        feature_title=feature_title,
        expense_type=expense,
        logged_at_wrong_level=wi_type != FEATURE_TYPE,
        work_item_type=_str(wi_type) or None,
        work_item_title=_str(fields.get("System.Title")),
    )


def worklog_entries(worklogs: Iterable[Worklog], work_items: Mapping[int, WorkItem]) -> list[WorklogEntry]:
    return [worklog_entry(wl, work_items) for wl in worklogs]
