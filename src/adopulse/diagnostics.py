from __future__ import annotations

from collections.abc import Mapping, Sequence

from adopulse.identity import API_PAGE_LIMIT, build_author_pool, match_member, normalize_identity
from adopulse.models import (
    ActivityRecord,
    AuthorStat,
    Confidence,
    DataDiagnostics,
    DiagnosticRosterMember,
    DiagnosticsSummary,
    Period,
    RosterMember,
    TeamValidatorReport,
    ValidatorMember,
)
from adopulse.validation import InvalidInput, check_period, check_records, check_roster, collect

LOW_CONFIDENCE_BELOW = 0.5
MEDIUM_CONFIDENCE_BELOW = 0.8


def confidence_for(members_with_prs: int, total_roster_members: int) -> Confidence:
    if total_roster_members == 0:
        # no roster, nothing to doubt
        return Confidence.HIGH
    if members_with_prs == 0:
        return Confidence.ZERO
    ratio = members_with_prs / total_roster_members
    if ratio < LOW_CONFIDENCE_BELOW:
        return Confidence.LOW
    if ratio < MEDIUM_CONFIDENCE_BELOW:
        return Confidence.MEDIUM
    return Confidence.HIGH


def summarize(roster_members: Sequence[DiagnosticRosterMember]) -> DiagnosticsSummary:
    total = len(roster_members)
    with_prs = sum(1 for m in roster_members if m.found_in_project_prs and m.matched_pr_count > 0)
    not_found = sum(1 for m in roster_members if not m.found_in_project_prs)
    found_but_zero = sum(1 for m in roster_members if m.found_in_project_prs and m.matched_pr_count == 0)
    return DiagnosticsSummary(
        total_roster_members=total,
        members_with_prs=with_prs,
        members_not_found=not_found,
        members_found_but_zero=found_but_zero,
        confidence=confidence_for(with_prs, total),
    )


def resolve_roster(
    roster: Sequence[RosterMember], authors: Mapping[str, AuthorStat]
) -> tuple[DiagnosticRosterMember, ...]:
    """
    Certain matches only: a fuzzy hint never counts towards confidence.
    """
    out: list[DiagnosticRosterMember] = []
    for member in roster:
        match = match_member(member, authors, fuzzy=False)
        out.append(
            DiagnosticRosterMember(
                unique_name=member.unique_name,
                display_name=member.display_name,
                matched_pr_count=match.matched_count if match.is_certain else 0,
                found_in_project_prs=match.is_certain,
                match_type=match.match_type,
            )
        )
    return tuple(out)


def diagnose(
    roster: Sequence[RosterMember] | None,
    records: Sequence[ActivityRecord] | None,
    period: Period,
    *,
    api_limit: int = API_PAGE_LIMIT,
) -> DataDiagnostics | InvalidInput:
    invalid = collect(check_roster(roster), check_records(records, field="pullRequests"), check_period(period))
    if invalid is not None:
        return invalid

    members = resolve_roster(roster, build_author_pool(records))
    return DataDiagnostics(
        period=period,
        api_limit_hit=len(records) >= api_limit,
        total_project_prs=len(records),
        roster_members=members,
        summary=summarize(members),
    )


def team_validator(
    team_name: str,
    roster: Sequence[RosterMember] | None,
    records: Sequence[ActivityRecord] | None,
    period: Period,
    *,
    api_limit: int = API_PAGE_LIMIT,
) -> TeamValidatorReport | InvalidInput:
    invalid = collect(check_roster(roster), check_records(records, field="pullRequests"), check_period(period))
    if invalid is not None:
        return invalid

    by_author: dict[str, list[ActivityRecord]] = {}
    for r in records:
        by_author.setdefault(r.author_key, []).append(r)

    members = []
    for m in roster:
        prs = by_author.get(normalize_identity(m.unique_name), [])
        members.append(
            ValidatorMember(
                unique_name=m.unique_name,
                display_name=m.display_name,
                found_in_project_prs=bool(prs),
                prs=tuple(prs),
            )
        )
    # not found first, then by display name
    members.sort(key=lambda v: (v.found_in_project_prs, v.display_name.lower()))

    return TeamValidatorReport(
        period=period,
        team_name=team_name,
        api_limit_hit=len(records) >= api_limit,
        total_project_prs=len(records),
        roster_members=tuple(members),
    )
