from __future__ import annotations

import datetime as dt

from adopulse.models import ExpenseType, Worklog
from adopulse.normalize import (
    parse_datetime_loose,
    pr_from_odata,
    pr_from_rest,
    resolve_feature,
    roster,
    team_scope,
    work_item_ids,
    worklog_entry,
    worklog_from_odata,
    worklog_from_rest,
)


def _wi(id_: int, type_: str, *, parent: int | None = None, title: str = "", expense: str | None = None) -> dict:
    fields: dict = {"System.WorkItemType": type_, "System.Title": title}
    if parent is not None:
        fields["System.Parent"] = parent
    if expense is not None:
        fields["Custom.FeatureExpense"] = expense
    return {"id": id_, "fields": fields}


WORK_ITEMS = {
    1: _wi(1, "Feature", title="Checkout", expense="CapEx"),
    2: _wi(2, "User Story", parent=1, title="Pay by card"),
    3: _wi(3, "Task", parent=2, title="Wire up gateway"),
    4: _wi(4, "Feature", expense="OpEx"),
    5: _wi(5, "Task", parent=404),
}


def test_parse_datetime_loose() -> None:
    assert parse_datetime_loose("2025-03-14T10:00:00Z") == dt.datetime(2025, 3, 14, 10, tzinfo=dt.timezone.utc)
    assert parse_datetime_loose("2025-03-14T10:00:00").tzinfo is dt.timezone.utc
    assert parse_datetime_loose(0) == dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)
    assert parse_datetime_loose(1_741_946_400_000) == dt.datetime(2025, 3, 14, 10, tzinfo=dt.timezone.utc)
    assert parse_datetime_loose("not a date") is None
    assert parse_datetime_loose("") is None
    assert parse_datetime_loose(None) is None


def test_roster_unwraps_identity() -> None:
    members = roster(
        [
            {"identity": {"id": "a", "uniqueName": "alice@corp.com", "displayName": "Alice"}},
            {"id": "b", "uniqueName": "bob@corp.com", "displayName": "Bob"},
        ]
    )
    assert [(m.id, m.unique_name, m.display_name) for m in members] == [
        ("a", "alice@corp.com", "Alice"),
        ("b", "bob@corp.com", "Bob"),
    ]


def test_team_scope() -> None:
    scope = team_scope(
        {"defaultValue": "Proj\\A", "values": [{"value": "Proj\\A", "includeChildren": True}, {"value": ""}, {}]}
    )
    assert scope.area_paths == ("Proj\\A",)
    assert scope.default_area_path == "Proj\\A"
    assert team_scope({}).area_paths == ()


def test_pr_from_odata() -> None:
    pr = pr_from_odata(
        {
            "PullRequestId": 7,
            "Title": "Add cart",
            "CreatedDate": "2025-03-10T09:00:00Z",
            "CompletedDate": "2025-03-11T09:00:00Z",
            "CreatedBy": {"UserName": "alice@corp.com"},
            "Repository": {"RepositoryName": "shop"},
            "WorkItems": [{"WorkItemId": 1, "AreaPath": "Proj\\A"}, {"WorkItemId": 2, "AreaPath": "Proj\\B"}],
        }
    )
    assert pr.id == 7
    assert pr.author_unique_name == "alice@corp.com"
    assert pr.repo_or_feature == "shop"
    assert pr.linked_area_paths == ("Proj\\A", "Proj\\B")
    assert pr.timestamp == dt.datetime(2025, 3, 11, 9, tzinfo=dt.timezone.utc)


def test_pr_from_rest_with_and_without_work_items() -> None:
    raw = {
        "pullRequestId": 9,
        "title": "Fix",
        "createdBy": {"uniqueName": "bob@corp.com", "displayName": "Bob"},
        "repository": {"name": "api"},
        "creationDate": "2025-03-01T00:00:00Z",
        "closedDate": "2025-03-02T00:00:00Z",
        "workItemRefs": [{"id": "11"}],
        "reviewers": [{"id": "r1"}, {"id": "r2"}],
    }
    bare = pr_from_rest(raw)
    assert bare.linked_area_paths == ()
    assert bare.reviewer_count == 2
    assert bare.author_display_name == "Bob"

    linked = pr_from_rest(raw, {11: {"id": 11, "fields": {"System.AreaPath": "Proj\\A"}}})
    assert linked.linked_area_paths == ("Proj\\A",)


def test_work_item_ids_dedupes_in_order() -> None:
    prs = [{"workItemRefs": [{"id": "3"}, {"id": "1"}]}, {"workItemRefs": [{"id": "3"}, {"id": "x"}]}, {}]
    assert work_item_ids(prs) == [3, 1]


def test_worklog_payloads() -> None:
    rest = worklog_from_rest(
        {
            "id": "w1",
            "user": {"id": "u1", "uniqueName": "alice@corp.com", "name": "Alice"},
            "workItemId": 3,
            "length": 5400,
            "timestamp": "2025-03-10T08:00:00",
        }
    )
    assert (rest.user_id, rest.unique_name, rest.work_item_id, rest.hours) == ("u1", "alice@corp.com", 3, 1.5)

    odata = worklog_from_odata(
        {"Id": "w2", "UserId": "u2", "User": {"Email": "bob@corp.com", "Name": "Bob"}, "WorkItemId": 4, "PeriodLength": 7200}
    )
    assert (odata.user_id, odata.unique_name, odata.hours) == ("u2", "bob@corp.com", 2.0)


def test_resolve_feature_walks_parents() -> None:
    assert resolve_feature(3, WORK_ITEMS) == (1, "Checkout", ExpenseType.CAPEX)
    assert resolve_feature(4, WORK_ITEMS) == (4, "Feature 4", ExpenseType.OPEX)
    assert resolve_feature(5, WORK_ITEMS) == (None, "No Feature", ExpenseType.UNCLASSIFIED)
    assert resolve_feature(3, WORK_ITEMS, max_depth=2) == (None, "No Feature", ExpenseType.UNCLASSIFIED)


def _worklog(work_item_id: int) -> Worklog:
    return Worklog(
        id="w",
        user_id="u",
        unique_name="alice@corp.com",
        display_name="Alice",
        work_item_id=work_item_id,
        hours=2.0,
        timestamp=None,
    )


def test_worklog_entry_flags_time_below_feature() -> None:
    on_feature = worklog_entry(_worklog(1), WORK_ITEMS)
    assert on_feature.logged_at_wrong_level is False
    assert on_feature.expense_type is ExpenseType.CAPEX

    on_task = worklog_entry(_worklog(3), WORK_ITEMS)
    assert on_task.logged_at_wrong_level is True
    assert on_task.feature_id == 1
    assert on_task.work_item_type == "Task"
    assert on_task.work_item_title == "Wire up gateway"

    no_item = worklog_entry(_worklog(0), WORK_ITEMS)
    assert no_item.feature_id is None
    assert no_item.feature_title == "No Feature"
    assert no_item.logged_at_wrong_level is False
