from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from dataclasses import replace
from functools import singledispatch
from typing import TypeVar

from adopulse.alignment import aggregate, categorize
from adopulse.diagnostics import summarize
from adopulse.identity import normalize_identity
from adopulse.models import (
    AlignmentReport,
    DataDiagnostics,
    MemberProfile,
    RosterMember,
    StalePRReport,
    TeamSummaryReport,
    TimeTrackingReport,
)
from adopulse.reports import (
    compute_governance,
    compute_team_kpis,
    coverage_for,
    sort_time_entries,
    stale_summary,
    summarize_repos,
    summarize_time,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# ── Agency lookups ───────────────────────────────────────────────────


def build_agency_lookup(profiles: Iterable[MemberProfile]) -> dict[str, MemberProfile]:
    return {p.id: p for p in profiles}


def build_agency_lookup_by_email(profiles: Iterable[MemberProfile]) -> dict[str, MemberProfile]:
    return {normalize_identity(p.email): p for p in profiles if p.email}


def profile_for(
    member: RosterMember,
    by_id: Mapping[str, MemberProfile],
    by_email: Mapping[str, MemberProfile],
) -> MemberProfile | None:
    profile = by_id.get(member.id)
    if profile is None:
        profile = by_email.get(normalize_identity(member.unique_name))
    return profile


def filter_members_by_agency(
    members: Sequence[T],
    agencies: Collection[str],
    lookup: Mapping[str, MemberProfile],
    key: Callable[[T], str],
) -> Sequence[T]:
    """
    Members whose profile carries one of `agencies`. A member without a
    profile is dropped under an active filter. No agencies: `members` itself.
    """
    if not agencies:
        return members
    out = []
    for member in members:
        profile = lookup.get(key(member))
        if profile is not None and profile.agency in agencies:
            out.append(member)
    return out


def identities_for_agencies(
    roster: Iterable[RosterMember],
    agencies: Collection[str],
    profiles: Iterable[MemberProfile],
) -> frozenset[str]:
    """Normalized unique names of the roster members belonging to `agencies`."""
    profiles = list(profiles)
    by_id = build_agency_lookup(profiles)
    by_email = build_agency_lookup_by_email(profiles)
    out = set()
    for member in roster:
        profile = profile_for(member, by_id, by_email)
        if profile is not None and profile.agency in agencies:
            out.add(normalize_identity(member.unique_name))
    return frozenset(out)


# ── Recomputation ────────────────────────────────────────────────────
#
# `_derive` always re-derives from the entities that survive the filter,
# even when nothing survives. The public entry points add the
# empty-filter passthrough on top.


@singledispatch
def _derive(report: object, identities: frozenset[str]) -> object:
    raise TypeError(f"no recomputation registered for {type(report).__name__}")


@_derive.register(TeamSummaryReport)
def _derive_team_summary(report: TeamSummaryReport, identities: frozenset[str]) -> TeamSummaryReport:
    members = tuple(m for m in report.members if m.key in identities)
    by_repo = summarize_repos(members)
    coverage = report.coverage
    return replace(
        report,
        team=compute_team_kpis(report.team.name, members),
        members=members,
        by_repo=by_repo,
        diagnostics=_derive_diagnostics(report.diagnostics, identities),
        # authors outside the roster have no profile, so they never survive a filter
        coverage=coverage_for(members, by_repo, coverage.project_prs_by_repo, coverage.total_project_prs),
    )


@_derive.register(AlignmentReport)
def _derive_alignment(report: AlignmentReport, identities: frozenset[str]) -> AlignmentReport:
    prs = [pr for c in report.categorized.values() for pr in c if pr.author_key in identities]
    return replace(
        report,
        totals=aggregate(prs, report.scope),
        members=tuple(m for m in report.members if m.key in identities),
        categorized=categorize(prs, report.scope),
    )


@_derive.register(DataDiagnostics)
def _derive_diagnostics(report: DataDiagnostics, identities: frozenset[str]) -> DataDiagnostics:
    roster = tuple(m for m in report.roster_members if m.key in identities)
    return replace(report, roster_members=roster, summary=summarize(roster))


@_derive.register(StalePRReport)
def _derive_stale(report: StalePRReport, identities: frozenset[str]) -> StalePRReport:
    prs = tuple(
        p for p in report.prs if p.author_unique_name and normalize_identity(p.author_unique_name) in identities
    )
    return StalePRReport(summary=stale_summary(prs), prs=prs)


@_derive.register(TimeTrackingReport)
def _derive_time(report: TimeTrackingReport, identities: frozenset[str]) -> TimeTrackingReport:
    members = sort_time_entries(m for m in report.members if m.key in identities)
    wrong_level = tuple(
        w for w in report.wrong_level_entries if normalize_identity(w.member_unique_name) in identities
    )
    summary = summarize_time(members, len(wrong_level))
    active = sum(1 for m in members if not m.is_excluded)
    governance = report.governance
    if governance is not None:
        governance = compute_governance(governance.hours_per_day, governance.business_days, active, summary.total_hours)
    return replace(
        report,
        total_members=active,
        summary=summary,
        members=tuple(members),
        wrong_level_entries=wrong_level,
        governance=governance,
    )


def recompute(report: R, identities: Collection[str]) -> R:
    """
    Restrict `report` to the given unique names and re-derive every count,
    percentage, histogram and confidence tier from what is left.

    An empty `identities` returns `report` itself, untouched.
    """
    if not identities:
        return report
    keys = frozenset(normalize_identity(i) for i in identities)
    logger.debug("recomputing %s for %d identities", type(report).__name__, len(keys))
    return _derive(report, keys)


def recompute_team_summary(report: TeamSummaryReport, identities: Collection[str]) -> TeamSummaryReport:
    return recompute(report, identities)


def recompute_alignment(report: AlignmentReport, identities: Collection[str]) -> AlignmentReport:
    return recompute(report, identities)


def recompute_diagnostics(report: DataDiagnostics, identities: Collection[str]) -> DataDiagnostics:
    return recompute(report, identities)


def recompute_stale(report: StalePRReport, identities: Collection[str]) -> StalePRReport:
    return recompute(report, identities)


def recompute_time_tracking(report: TimeTrackingReport, identities: Collection[str]) -> TimeTrackingReport:
    return recompute(report, identities)


def apply_agency_filter(
    report: R,
    agencies: Collection[str],
    roster: Iterable[RosterMember],
    profiles: Iterable[MemberProfile],
) -> R:
    """
    Restrict `report` to the roster members of the selected agencies.

    No agencies: `report` itself. Agencies that match nobody give an empty
    report rather than falling through to the unfiltered one.
    """
    if not agencies:
        return report
    identities = identities_for_agencies(roster, agencies, profiles)
    logger.debug("agency filter %s resolved to %d identities", sorted(agencies), len(identities))
    return _derive(report, identities)
