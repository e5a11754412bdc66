from __future__ import annotations

import datetime as dt

from adopulse.alignment import area_path_matches, aggregate, build_alignment_report, classify
from adopulse.models import ActivityRecord, Classification, Period, RosterMember, TeamScope, pct
from adopulse.validation import InvalidInput

NOW = dt.datetime(2025, 3, 14, tzinfo=dt.timezone.utc)
PERIOD = Period(days=14, start=NOW - dt.timedelta(days=14), end=NOW)
SCOPE = TeamScope(area_paths=("Proj\\TeamA",), default_area_path="Proj\\TeamA")


def _pr(author: str, *paths: str) -> ActivityRecord:
    return ActivityRecord(
        author_unique_name=author,
        author_display_name=author,
        repo_or_feature="repo",
        timestamp=NOW,
        linked_area_paths=paths,
    )


def test_area_path_prefix_needs_separator() -> None:
    scope = ["Proj\\TeamA"]
    assert area_path_matches("Proj\\TeamA", scope)
    assert area_path_matches("Proj\\TeamA\\Sub", scope)
    assert not area_path_matches("Proj\\TeamAX", scope)
    assert not area_path_matches("Proj", scope)


def test_classify_mixed_links_count_as_aligned() -> None:
    assert classify(_pr("a", "Other\\X", "Proj\\TeamA\\Sub"), SCOPE) is Classification.ALIGNED
    assert classify(_pr("a", "Other\\X"), SCOPE) is Classification.OUT_OF_SCOPE
    assert classify(_pr("a"), SCOPE) is Classification.UNLINKED


def test_aggregate_one_of_each() -> None:
    totals = aggregate([_pr("a", "Proj\\TeamA"), _pr("a", "Other"), _pr("a")], SCOPE)
    assert (totals.aligned, totals.out_of_scope_count, totals.unlinked, totals.total) == (1, 1, 1, 3)
    assert totals.aligned_pct == 33


def test_out_of_scope_histogram_sorted_by_count_then_path() -> None:
    totals = aggregate(
        [_pr("a", "Zeta"), _pr("a", "Beta"), _pr("a", "Zeta"), _pr("a", "Alpha")],
        SCOPE,
    )
    assert [(h.area_path, h.count) for h in totals.out_of_scope_by_area_path] == [
        ("Zeta", 2),
        ("Alpha", 1),
        ("Beta", 1),
    ]


def test_pct_rounds_half_up() -> None:
    assert pct(1, 2) == 50
    assert pct(2, 3) == 67
    assert pct(1, 8) == 13
    assert pct(0, 0) == 0


def test_report_only_counts_roster_authors() -> None:
    roster = [RosterMember(unique_name="Alice@corp.com", display_name="Alice", id="a")]
    records = [_pr("alice@corp.com", "Proj\\TeamA"), _pr("alice@corp.com"), _pr("dave@vendor.com", "Other")]
    report = build_alignment_report(roster, records, SCOPE, PERIOD)

    assert not isinstance(report, InvalidInput)
    assert report.totals.total == 2
    assert report.totals.aligned == 1
    assert report.members[0].alignment.unlinked == 1
    assert len(report.categorized[Classification.OUT_OF_SCOPE]) == 0

    d = report.to_dict()
    assert d["alignment"]["alignedPct"] == 50
    assert d["teamAreaPath"] == "Proj\\TeamA"
    assert set(d["categorizedPRs"]) == {"aligned", "outOfScope", "unlinked"}


def test_report_rejects_missing_roster_and_negative_days() -> None:
    bad_period = Period(days=-1, start=NOW, end=NOW)
    res = build_alignment_report(None, [], SCOPE, bad_period)
    assert isinstance(res, InvalidInput)
    assert [i.field for i in res.issues] == ["roster", "period.days"]
