from __future__ import annotations

from collections.abc import Iterable, Sequence

from adopulse.identity import normalize_identity
from adopulse.models import (
    ActivityRecord,
    AlignmentReport,
    AlignmentTotals,
    AreaPathCount,
    Classification,
    MemberAlignment,
    Period,
    RosterMember,
    TeamScope,
    pct,
)
from adopulse.validation import InvalidInput, check_period, check_records, check_roster, collect

AREA_PATH_SEPARATOR = "\\"


def area_path_matches(area_path: str, scope: Iterable[str]) -> bool:
    # "TeamA\Sub" is under "TeamA"; "TeamAX" is not.
    return any(area_path == s or area_path.startswith(s + AREA_PATH_SEPARATOR) for s in scope)


def classify(activity: ActivityRecord, scope: TeamScope) -> Classification:
    paths = activity.linked_area_paths
    if not paths:
        return Classification.UNLINKED
    if any(area_path_matches(p, scope.area_paths) for p in paths):
        return Classification.ALIGNED
    return Classification.OUT_OF_SCOPE


def aggregate(activities: Iterable[ActivityRecord], scope: TeamScope) -> AlignmentTotals:
    aligned = 0
    unlinked = 0
    out_of_scope = 0
    total = 0
    by_area: dict[str, int] = {}

    for activity in activities:
        total += 1
        c = classify(activity, scope)
        if c is Classification.ALIGNED:
            aligned += 1
        elif c is Classification.UNLINKED:
            unlinked += 1
        else:
            out_of_scope += 1
            for path in activity.linked_area_paths:
                if not area_path_matches(path, scope.area_paths):
                    by_area[path] = by_area.get(path, 0) + 1

    histogram = tuple(
        AreaPathCount(area_path=p, count=n) for p, n in sorted(by_area.items(), key=lambda kv: (-kv[1], kv[0]))
    )
    return AlignmentTotals(
        aligned=aligned,
        out_of_scope_count=out_of_scope,
        out_of_scope_by_area_path=histogram,
        unlinked=unlinked,
        total=total,
    )


def aligned_pct(totals: AlignmentTotals) -> int:
    return pct(totals.aligned, totals.total)


def categorize(activities: Iterable[ActivityRecord], scope: TeamScope) -> dict[Classification, tuple[ActivityRecord, ...]]:
    buckets: dict[Classification, list[ActivityRecord]] = {c: [] for c in Classification}
    for activity in activities:
        buckets[classify(activity, scope)].append(activity)
    return {c: tuple(v) for c, v in buckets.items()}


def member_alignments(
    roster: Sequence[RosterMember], activities: Iterable[ActivityRecord], scope: TeamScope
) -> tuple[MemberAlignment, ...]:
    by_member: dict[str, list[ActivityRecord]] = {}
    for activity in activities:
        by_member.setdefault(activity.author_key, []).append(activity)
    return tuple(
        MemberAlignment(
            unique_name=m.unique_name,
            display_name=m.display_name,
            alignment=aggregate(by_member.get(normalize_identity(m.unique_name), ()), scope),
        )
        for m in roster
    )


def build_alignment_report(
    roster: Sequence[RosterMember] | None,
    records: Sequence[ActivityRecord] | None,
    scope: TeamScope,
    period: Period,
) -> AlignmentReport | InvalidInput:
    invalid = collect(check_roster(roster), check_records(records, field="pullRequests"), check_period(period))
    if invalid is not None:
        return invalid

    keys = {normalize_identity(m.unique_name) for m in roster}
    team_prs = [r for r in records if r.author_key in keys]

    return AlignmentReport(
        period=period,
        scope=scope,
        totals=aggregate(team_prs, scope),
        members=member_alignments(roster, team_prs, scope),
        categorized=categorize(team_prs, scope),
    )
