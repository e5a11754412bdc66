from __future__ import annotations

import datetime as dt
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def isoformat_z(value: dt.datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def pct(part: int, whole: int) -> int:
    """
    Whole-number percentage with round-half-up, 0 when `whole` is 0.
    Integer arithmetic so 1/3 -> 33 and 1/2 -> 50 without float drift.
    """
    if whole <= 0:
        return 0
    return (part * 200 + whole) // (2 * whole)


def round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


class MatchType(str, Enum):
    EXACT = "exact"
    LOWERCASE = "lowercase"
    FUZZY = "fuzzy"
    NONE = "none"


class Confidence(str, Enum):
    ZERO = "zero"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Classification(str, Enum):
    ALIGNED = "aligned"
    OUT_OF_SCOPE = "outOfScope"
    UNLINKED = "unlinked"


class Staleness(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"


class ExpenseType(str, Enum):
    CAPEX = "CapEx"
    OPEX = "OpEx"
    UNCLASSIFIED = "Unclassified"


# ── Collaborator inputs ──────────────────────────────────────────────


@dataclass(frozen=True)
class RosterMember:
    unique_name: str
    display_name: str
    id: str

    @property
    def key(self) -> str:
        return self.unique_name.strip().lower()


@dataclass(frozen=True)
class ActivityRecord:
    """
    One pull request in the canonical shape, regardless of whether it came
    from the Analytics OData feed or the REST API.
    """

    author_unique_name: str
    author_display_name: str
    repo_or_feature: str
    timestamp: dt.datetime | None
    linked_area_paths: tuple[str, ...] = ()
    id: int | None = None
    title: str = ""
    created: dt.datetime | None = None
    reviewer_count: int = 0
    url: str = ""

    @property
    def author_key(self) -> str:
        return self.author_unique_name.strip().lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pullRequestId": self.id,
            "title": self.title,
            "authorUniqueName": self.author_unique_name,
            "authorDisplayName": self.author_display_name,
            "repoName": self.repo_or_feature,
            "creationDate": isoformat_z(self.created),
            "completedDate": isoformat_z(self.timestamp),
            "areaPaths": list(self.linked_area_paths),
        }


@dataclass(frozen=True)
class Worklog:
    """A 7pace worklog as fetched, before feature resolution."""

    id: str
    user_id: str
    unique_name: str
    display_name: str
    work_item_id: int
    hours: float
    timestamp: dt.datetime | None


@dataclass(frozen=True)
class WorklogEntry:
    author_unique_name: str
    author_display_name: str
    hours: float
    timestamp: dt.datetime | None
    work_item_id: int = 0
    feature_id: int | None = None
    feature_title: str = "No Feature"
    expense_type: ExpenseType = ExpenseType.UNCLASSIFIED
    logged_at_wrong_level: bool = False
    work_item_type: str | None = None
    work_item_title: str = ""

    @property
    def author_key(self) -> str:
        return self.author_unique_name.strip().lower()


@dataclass(frozen=True)
class MemberProfile:
    id: str
    agency: str
    employment_type: str
    display_name: str = ""
    email: str = ""


@dataclass(frozen=True)
class MemberRoleExclusion:
    unique_name: str
    role: str
    exclude_from_metrics: bool = True


@dataclass(frozen=True)
class TeamScope:
    area_paths: tuple[str, ...]
    default_area_path: str = ""


@dataclass(frozen=True)
class Period:
    days: int
    start: dt.datetime
    end: dt.datetime
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": self.days,
            "from": isoformat_z(self.start),
            "to": isoformat_z(self.end),
            "label": self.label,
        }


# ── Identity ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthorStat:
    unique_name: str
    display_name: str
    count: int


@dataclass(frozen=True)
class MatchResult:
    matched_author_key: str | None
    match_type: MatchType
    matched_count: int

    @property
    def is_certain(self) -> bool:
        return self.match_type in (MatchType.EXACT, MatchType.LOWERCASE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "matchedAuthorKey": self.matched_author_key,
            "matchType": self.match_type.value,
            "matchedCount": self.matched_count,
        }


@dataclass(frozen=True)
class UnmatchedAuthor:
    unique_name: str
    display_name: str
    pr_count: int
    possible_match_name: str | None = None

    @property
    def possible_match(self) -> bool:
        return self.possible_match_name is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "uniqueName": self.unique_name,
            "displayName": self.display_name,
            "prCount": self.pr_count,
            "possibleMatch": self.possible_match,
            "possibleMatchName": self.possible_match_name,
        }


@dataclass(frozen=True)
class RosterIdentity:
    member: RosterMember
    match: MatchResult


@dataclass(frozen=True)
class AuthorIdentity:
    author: AuthorStat
    matched_roster_member: str | None


@dataclass(frozen=True)
class IdentityCheckReport:
    period: Period
    api_limit_hit: bool
    roster_members: tuple[RosterIdentity, ...]
    authors: tuple[AuthorIdentity, ...]

    @property
    def unmatched_roster_members(self) -> list[str]:
        return [r.member.unique_name for r in self.roster_members if r.match.match_type is MatchType.NONE]

    @property
    def unmatched_authors(self) -> list[str]:
        return [a.author.unique_name for a in self.authors if a.matched_roster_member is None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "apiLimitHit": self.api_limit_hit,
            "rosterMembers": [
                {
                    "id": r.member.id,
                    "uniqueName": r.member.unique_name,
                    "displayName": r.member.display_name,
                    "matchedAuthorUniqueName": r.match.matched_author_key,
                    "matchedPRCount": r.match.matched_count,
                    "matchType": r.match.match_type.value,
                }
                for r in self.roster_members
            ],
            "prAuthors": [
                {
                    "uniqueName": a.author.unique_name,
                    "displayName": a.author.display_name,
                    "prCount": a.author.count,
                    "matchedRosterMember": a.matched_roster_member,
                }
                for a in self.authors
            ],
            "unmatchedRosterMembers": self.unmatched_roster_members,
            "unmatchedPRAuthors": self.unmatched_authors,
        }


# ── Alignment ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AreaPathCount:
    area_path: str
    count: int


@dataclass(frozen=True)
class AlignmentTotals:
    aligned: int
    out_of_scope_count: int
    out_of_scope_by_area_path: tuple[AreaPathCount, ...]
    unlinked: int
    total: int

    @property
    def aligned_pct(self) -> int:
        return pct(self.aligned, self.total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "aligned": self.aligned,
            "outOfScope": {
                "count": self.out_of_scope_count,
                "byAreaPath": [{"areaPath": a.area_path, "count": a.count} for a in self.out_of_scope_by_area_path],
            },
            "unlinked": self.unlinked,
            "total": self.total,
        }


@dataclass(frozen=True)
class MemberAlignment:
    unique_name: str
    display_name: str
    alignment: AlignmentTotals

    @property
    def key(self) -> str:
        return self.unique_name.strip().lower()


@dataclass(frozen=True)
class AlignmentReport:
    period: Period
    scope: TeamScope
    totals: AlignmentTotals
    members: tuple[MemberAlignment, ...]
    categorized: Mapping[Classification, tuple[ActivityRecord, ...]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "teamAreaPath": self.scope.default_area_path,
            "alignment": {
                "total": self.totals.total,
                "aligned": self.totals.aligned,
                "outOfScope": self.totals.out_of_scope_count,
                "unlinked": self.totals.unlinked,
                "alignedPct": self.totals.aligned_pct,
                "teamAreaPath": self.scope.default_area_path,
            },
            "members": [
                {
                    "uniqueName": m.unique_name,
                    "displayName": m.display_name,
                    "alignment": m.alignment.to_dict(),
                }
                for m in self.members
            ],
            "categorizedPRs": {
                c.value: [pr.to_dict() for pr in self.categorized.get(c, ())] for c in Classification
            },
        }


# ── Diagnostics ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class DiagnosticRosterMember:
    unique_name: str
    display_name: str
    matched_pr_count: int
    found_in_project_prs: bool
    match_type: MatchType = MatchType.NONE

    @property
    def key(self) -> str:
        return self.unique_name.strip().lower()


@dataclass(frozen=True)
class DiagnosticsSummary:
    total_roster_members: int
    members_with_prs: int
    members_not_found: int
    members_found_but_zero: int
    confidence: Confidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRosterMembers": self.total_roster_members,
            "membersWithPRs": self.members_with_prs,
            "membersNotFound": self.members_not_found,
            "membersFoundButZero": self.members_found_but_zero,
        }


@dataclass(frozen=True)
class DataDiagnostics:
    period: Period
    api_limit_hit: bool
    total_project_prs: int
    roster_members: tuple[DiagnosticRosterMember, ...]
    summary: DiagnosticsSummary

    @property
    def confidence(self) -> Confidence:
        return self.summary.confidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "apiLimitHit": self.api_limit_hit,
            "totalProjectPRs": self.total_project_prs,
            "rosterMembers": [
                {
                    "uniqueName": m.unique_name,
                    "displayName": m.display_name,
                    "matchedPRCount": m.matched_pr_count,
                    "foundInProjectPRs": m.found_in_project_prs,
                }
                for m in self.roster_members
            ],
            "summary": self.summary.to_dict(),
            "confidence": self.summary.confidence.value,
        }


@dataclass(frozen=True)
class ValidatorMember:
    unique_name: str
    display_name: str
    found_in_project_prs: bool
    prs: tuple[ActivityRecord, ...]

    @property
    def matched_pr_count(self) -> int:
        return len(self.prs)


@dataclass(frozen=True)
class TeamValidatorReport:
    period: Period
    team_name: str
    api_limit_hit: bool
    total_project_prs: int
    roster_members: tuple[ValidatorMember, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "team": {"name": self.team_name, "totalMembers": len(self.roster_members)},
            "apiLimitHit": self.api_limit_hit,
            "totalProjectPRs": self.total_project_prs,
            "rosterMembers": [
                {
                    "uniqueName": m.unique_name,
                    "displayName": m.display_name,
                    "foundInProjectPRs": m.found_in_project_prs,
                    "matchedPRCount": m.matched_pr_count,
                    "prs": [pr.to_dict() for pr in m.prs],
                }
                for m in self.roster_members
            ],
        }


# ── Team summary ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class MemberSummary:
    id: str
    display_name: str
    unique_name: str
    pr_count: int
    repos: tuple[str, ...]
    last_pr_date: dt.datetime | None
    reviews_given: int = 0
    review_flagged: bool = False
    is_excluded: bool = False
    role: str | None = None
    prs: tuple[ActivityRecord, ...] = ()

    @property
    def key(self) -> str:
        return self.unique_name.strip().lower()

    @property
    def is_active(self) -> bool:
        return self.pr_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "uniqueName": self.unique_name,
            "prCount": self.pr_count,
            "repos": list(self.repos),
            "lastPRDate": isoformat_z(self.last_pr_date),
            "isActive": self.is_active,
            "reviewsGiven": self.reviews_given,
            "reviewFlagged": self.review_flagged,
            "isExcluded": self.is_excluded,
            "role": self.role,
        }


@dataclass(frozen=True)
class RepoSummary:
    repo_name: str
    total_prs: int
    contributors: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"repoName": self.repo_name, "totalPRs": self.total_prs, "contributors": list(self.contributors)}


@dataclass(frozen=True)
class MostActiveRepo:
    repo_name: str
    total_prs: int


@dataclass(frozen=True)
class TeamKPIs:
    name: str
    total_prs: int
    active_contributors: int
    total_members: int
    most_active_repo: MostActiveRepo | None

    def to_dict(self) -> dict[str, Any]:
        most = self.most_active_repo
        return {
            "name": self.name,
            "totalPRs": self.total_prs,
            "activeContributors": self.active_contributors,
            "totalMembers": self.total_members,
            "mostActiveRepo": None if most is None else {"repoName": most.repo_name, "totalPRs": most.total_prs},
        }


@dataclass(frozen=True)
class RepoCoverage:
    total_project_prs: int
    team_matched_prs: int
    team_repos: tuple[str, ...]
    prs_in_team_repos: int
    unmatched_in_team_repos: tuple[UnmatchedAuthor, ...]
    # all project PRs per repo, kept so a filtered view can re-derive coverage
    project_prs_by_repo: Mapping[str, int] = field(default_factory=dict, repr=False)

    @property
    def gap_prs(self) -> int:
        return self.prs_in_team_repos - self.team_matched_prs

    @property
    def match_rate(self) -> int:
        if self.prs_in_team_repos <= 0:
            return 100
        return pct(self.team_matched_prs, self.prs_in_team_repos)

    @property
    def zero_activity_warning(self) -> bool:
        return self.team_matched_prs == 0 and self.total_project_prs > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalProjectPRs": self.total_project_prs,
            "teamMatchedPRs": self.team_matched_prs,
            "gapPRs": self.gap_prs,
            "matchRate": self.match_rate,
            "teamRepos": list(self.team_repos),
            "PRsInTeamRepos": self.prs_in_team_repos,
            "unmatchedInTeamRepos": [u.to_dict() for u in self.unmatched_in_team_repos],
            "zeroActivityWarning": self.zero_activity_warning,
        }


@dataclass(frozen=True)
class TeamSummaryReport:
    period: Period
    team: TeamKPIs
    members: tuple[MemberSummary, ...]
    by_repo: tuple[RepoSummary, ...]
    diagnostics: DataDiagnostics
    coverage: RepoCoverage

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "team": self.team.to_dict(),
            "members": [m.to_dict() for m in self.members],
            "byRepo": [r.to_dict() for r in self.by_repo],
            "diagnostics": self.diagnostics.to_dict(),
            "coverage": self.coverage.to_dict(),
        }


# ── Stale PRs ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OpenPR:
    id: int | None
    title: str
    author: str
    author_unique_name: str
    repo_name: str
    created_date: dt.datetime | None
    age_in_days: int
    reviewer_count: int
    staleness: Staleness

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "authorUniqueName": self.author_unique_name,
            "repoName": self.repo_name,
            "createdDate": isoformat_z(self.created_date),
            "ageInDays": self.age_in_days,
            "reviewerCount": self.reviewer_count,
            "staleness": self.staleness.value,
        }


@dataclass(frozen=True)
class StaleSummary:
    fresh: int
    aging: int
    stale: int
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {"fresh": self.fresh, "aging": self.aging, "stale": self.stale, "total": self.total}


@dataclass(frozen=True)
class StalePRReport:
    summary: StaleSummary
    prs: tuple[OpenPR, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.summary.to_dict(), "prs": [p.to_dict() for p in self.prs]}


# ── Time tracking ────────────────────────────────────────────────────


@dataclass(frozen=True)
class FeatureTime:
    feature_id: int | None
    feature_title: str
    expense_type: ExpenseType
    hours: float
    logged_at_wrong_level: bool = False
    original_work_item_id: int | None = None
    original_work_item_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "featureId": self.feature_id,
            "featureTitle": self.feature_title,
            "expenseType": self.expense_type.value,
            "hours": self.hours,
            "loggedAtWrongLevel": self.logged_at_wrong_level,
        }
        if self.original_work_item_id is not None:
            out["originalWorkItemId"] = self.original_work_item_id
            out["originalWorkItemType"] = self.original_work_item_type
        return out


@dataclass(frozen=True)
class MemberTimeEntry:
    display_name: str
    unique_name: str
    total_hours: float
    cap_ex_hours: float
    op_ex_hours: float
    unclassified_hours: float
    wrong_level_hours: float = 0.0
    wrong_level_count: int = 0
    is_excluded: bool = False
    role: str | None = None
    features: tuple[FeatureTime, ...] = ()

    @property
    def key(self) -> str:
        return self.unique_name.strip().lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "displayName": self.display_name,
            "uniqueName": self.unique_name,
            "totalHours": self.total_hours,
            "capExHours": self.cap_ex_hours,
            "opExHours": self.op_ex_hours,
            "unclassifiedHours": self.unclassified_hours,
            "wrongLevelHours": self.wrong_level_hours,
            "wrongLevelCount": self.wrong_level_count,
            "isExcluded": self.is_excluded,
            "role": self.role,
            "features": [f.to_dict() for f in self.features],
        }


@dataclass(frozen=True)
class WrongLevelEntry:
    work_item_id: int
    title: str
    work_item_type: str
    member_name: str
    member_unique_name: str
    hours: float
    resolved_feature_id: int | None = None
    resolved_feature_title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workItemId": self.work_item_id,
            "title": self.title,
            "workItemType": self.work_item_type,
            "memberName": self.member_name,
            "hours": self.hours,
            "resolvedFeatureId": self.resolved_feature_id,
            "resolvedFeatureTitle": self.resolved_feature_title,
        }


@dataclass(frozen=True)
class TimeSummary:
    total_hours: float
    cap_ex_hours: float
    op_ex_hours: float
    unclassified_hours: float
    members_logging: int
    members_not_logging: int
    wrong_level_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalHours": self.total_hours,
            "capExHours": self.cap_ex_hours,
            "opExHours": self.op_ex_hours,
            "unclassifiedHours": self.unclassified_hours,
            "membersLogging": self.members_logging,
            "membersNotLogging": self.members_not_logging,
            "wrongLevelCount": self.wrong_level_count,
        }


@dataclass(frozen=True)
class Governance:
    expected_hours: float
    business_days: int
    hours_per_day: float
    active_members: int
    compliance_pct: float
    is_compliant: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "expectedHours": self.expected_hours,
            "businessDays": self.business_days,
            "hoursPerDay": self.hours_per_day,
            "activeMembers": self.active_members,
            "compliancePct": self.compliance_pct,
            "isCompliant": self.is_compliant,
        }


@dataclass(frozen=True)
class TimeDiagnostics:
    total_worklogs: int
    worklogs_matched_to_team: int
    missing_unique_name_count: int
    mapped_but_not_on_team: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalWorklogs": self.total_worklogs,
            "worklogsMatchedToTeam": self.worklogs_matched_to_team,
            "unmappedUserIdCount": self.missing_unique_name_count,
            "mappedButNotOnTeamCount": len(self.mapped_but_not_on_team),
            "mappedButNotOnTeam": list(self.mapped_but_not_on_team[:10]),
        }


@dataclass(frozen=True)
class TimeTrackingReport:
    period: Period
    team_name: str
    total_members: int
    summary: TimeSummary
    members: tuple[MemberTimeEntry, ...]
    wrong_level_entries: tuple[WrongLevelEntry, ...]
    governance: Governance | None
    diagnostics: TimeDiagnostics | None = None
    seven_pace_connected: bool = True

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "sevenPaceConnected": self.seven_pace_connected,
            "period": self.period.to_dict(),
            "team": {"name": self.team_name, "totalMembers": self.total_members},
            "summary": self.summary.to_dict(),
            "members": [m.to_dict() for m in self.members],
            "wrongLevelEntries": [w.to_dict() for w in self.wrong_level_entries],
        }
        if self.governance is not None:
            out["governance"] = self.governance.to_dict()
        if self.diagnostics is not None:
            out["diagnostics"] = self.diagnostics.to_dict()
        return out


@dataclass(frozen=True)
class WorkItemTime:
    work_item_id: int
    title: str
    work_item_type: str
    feature_title: str
    total_hours: float
    entry_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "workItemId": self.work_item_id,
            "title": self.title,
            "type": self.work_item_type,
            "featureTitle": self.feature_title,
            "totalHours": self.total_hours,
            "entryCount": self.entry_count,
        }


@dataclass(frozen=True)
class UserTimeReport:
    """One person's 7pace hours grouped by work item."""

    email: str
    period: Period
    total_hours: float
    entry_count: int
    work_items: tuple[WorkItemTime, ...]
    hit_page_cap: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "period": self.period.to_dict(),
            "totalHours": self.total_hours,
            "entryCount": self.entry_count,
            "workItems": [w.to_dict() for w in self.work_items],
            "hitPageCap": self.hit_page_cap,
        }
