from __future__ import annotations

import datetime as dt
import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from adopulse.diagnostics import diagnose
from adopulse.identity import API_PAGE_LIMIT, normalize_identity, unmatched_in_repos
from adopulse.models import (
    ActivityRecord,
    ExpenseType,
    FeatureTime,
    Governance,
    MemberSummary,
    MemberTimeEntry,
    MostActiveRepo,
    OpenPR,
    Period,
    RepoCoverage,
    RepoSummary,
    RosterMember,
    Staleness,
    StalePRReport,
    StaleSummary,
    TeamKPIs,
    TeamSummaryReport,
    TimeDiagnostics,
    TimeSummary,
    TimeTrackingReport,
    UserTimeReport,
    WorkItemTime,
    WorklogEntry,
    WrongLevelEntry,
    round2,
)
from adopulse.periods import count_business_days, utc_now
from adopulse.validation import (
    InputIssue,
    InvalidInput,
    check_hours_per_day,
    check_period,
    check_records,
    check_roster,
    collect,
)

logger = logging.getLogger(__name__)

DEFAULT_HOURS_PER_DAY = 8
COMPLIANCE_THRESHOLD_PCT = 80
REVIEW_FLAG_MIN_PRS = 3
REVIEW_FLAG_MAX_REVIEWS = 1
FRESH_MAX_DAYS = 2
AGING_MAX_DAYS = 6

Exclusions = Mapping[str, str] | frozenset[str] | set[str]


def exclusion_roles(excluded: Exclusions | None) -> dict[str, str | None]:
    """Normalize an exclusion set or a `uniqueName -> role` mapping into one lookup."""
    if not excluded:
        return {}
    if isinstance(excluded, Mapping):
        return {normalize_identity(k): v for k, v in excluded.items()}
    return {normalize_identity(k): None for k in excluded}


# ── Team summary ─────────────────────────────────────────────────────


def most_active_repo(members: Iterable[MemberSummary]) -> MostActiveRepo | None:
    counts: Counter[str] = Counter()
    for m in members:
        for pr in m.prs:
            counts[pr.repo_or_feature] += 1
    best: MostActiveRepo | None = None
    # alphabetical walk + strict ">" keeps the first name on ties
    for repo in sorted(counts):
        if best is None or counts[repo] > best.total_prs:
            best = MostActiveRepo(repo_name=repo, total_prs=counts[repo])
    return best


def compute_team_kpis(name: str, members: Sequence[MemberSummary]) -> TeamKPIs:
    counted = [m for m in members if not m.is_excluded]
    return TeamKPIs(
        name=name,
        total_prs=sum(m.pr_count for m in counted),
        active_contributors=sum(1 for m in counted if m.pr_count > 0),
        total_members=len(counted),
        most_active_repo=most_active_repo(counted),
    )


def summarize_repos(members: Iterable[MemberSummary]) -> tuple[RepoSummary, ...]:
    totals: Counter[str] = Counter()
    contributors: dict[str, list[str]] = {}
    for m in members:
        if m.is_excluded:
            continue
        for pr in m.prs:
            totals[pr.repo_or_feature] += 1
            names = contributors.setdefault(pr.repo_or_feature, [])
            if pr.author_display_name not in names:
                names.append(pr.author_display_name)
    return tuple(
        RepoSummary(repo_name=repo, total_prs=n, contributors=tuple(contributors[repo]))
        for repo, n in sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    )


def coverage_for(
    members: Sequence[MemberSummary],
    by_repo: Sequence[RepoSummary],
    project_prs_by_repo: Mapping[str, int],
    total_project_prs: int,
    unmatched: tuple = (),
) -> RepoCoverage:
    team_repos = tuple(r.repo_name for r in by_repo)
    return RepoCoverage(
        total_project_prs=total_project_prs,
        team_matched_prs=sum(m.pr_count for m in members if not m.is_excluded),
        team_repos=team_repos,
        prs_in_team_repos=sum(project_prs_by_repo.get(r, 0) for r in team_repos),
        unmatched_in_team_repos=unmatched,
        project_prs_by_repo=dict(project_prs_by_repo),
    )


def _member_summary(
    member: RosterMember,
    prs: Sequence[ActivityRecord],
    reviews_given: int,
    role: str | None,
    is_excluded: bool,
) -> MemberSummary:
    repos: list[str] = []
    for pr in prs:
        if pr.repo_or_feature not in repos:
            repos.append(pr.repo_or_feature)
    stamps = [pr.timestamp for pr in prs if pr.timestamp is not None]
    return MemberSummary(
        id=member.id,
        display_name=member.display_name,
        unique_name=member.unique_name,
        pr_count=len(prs),
        repos=tuple(repos),
        last_pr_date=max(stamps) if stamps else None,
        reviews_given=reviews_given,
        review_flagged=len(prs) >= REVIEW_FLAG_MIN_PRS and reviews_given <= REVIEW_FLAG_MAX_REVIEWS,
        is_excluded=is_excluded,
        role=role,
        prs=tuple(prs),
    )


def build_team_summary(
    team_name: str,
    roster: Sequence[RosterMember] | None,
    project_prs: Sequence[ActivityRecord] | None,
    period: Period,
    *,
    reviews_given: Mapping[str, int] | None = None,
    excluded: Exclusions | None = None,
    api_limit: int = API_PAGE_LIMIT,
) -> TeamSummaryReport | InvalidInput:
    """
    Per-member PR activity for a team, with repo breakdown, roster
    diagnostics and coverage of the repos the team touched.

    `reviews_given` is keyed by roster member id. `excluded` holds unique
    names (optionally mapped to a role) that stay listed but do not count
    towards team KPIs.
    """
    invalid = collect(check_roster(roster), check_records(project_prs, field="pullRequests"), check_period(period))
    if invalid is not None:
        return invalid

    reviews_given = reviews_given or {}
    roles = exclusion_roles(excluded)

    by_author: dict[str, list[ActivityRecord]] = {}
    for pr in project_prs:
        by_author.setdefault(pr.author_key, []).append(pr)

    members: list[MemberSummary] = []
    for m in roster:
        key = normalize_identity(m.unique_name)
        members.append(
            _member_summary(
                m,
                by_author.get(key, []),
                int(reviews_given.get(m.id, 0)),
                role=roles.get(key),
                is_excluded=key in roles,
            )
        )
    members.sort(key=lambda s: -s.pr_count)

    by_repo = summarize_repos(members)
    project_by_repo = Counter(pr.repo_or_feature for pr in project_prs)
    team_repo_names = {r.repo_name for r in by_repo}
    unmatched = unmatched_in_repos((pr for pr in project_prs if pr.repo_or_feature in team_repo_names), roster)

    diagnostics = diagnose(roster, project_prs, period, api_limit=api_limit)
    logger.debug("team summary %s: %d members, %d project PRs", team_name, len(members), len(project_prs))

    return TeamSummaryReport(
        period=period,
        team=compute_team_kpis(team_name, members),
        members=tuple(members),
        by_repo=by_repo,
        diagnostics=diagnostics,
        coverage=coverage_for(members, by_repo, project_by_repo, len(project_prs), unmatched),
    )


# ── Stale PRs ────────────────────────────────────────────────────────


def staleness_for(age_in_days: int) -> Staleness:
    if age_in_days <= FRESH_MAX_DAYS:
        return Staleness.FRESH
    if age_in_days <= AGING_MAX_DAYS:
        return Staleness.AGING
    return Staleness.STALE


def stale_summary(prs: Iterable[OpenPR]) -> StaleSummary:
    counts = Counter(p.staleness for p in prs)
    return StaleSummary(
        fresh=counts[Staleness.FRESH],
        aging=counts[Staleness.AGING],
        stale=counts[Staleness.STALE],
        total=sum(counts.values()),
    )


def build_stale_report(
    roster: Sequence[RosterMember] | None,
    open_prs: Sequence[ActivityRecord] | None,
    *,
    now: dt.datetime | None = None,
) -> StalePRReport | InvalidInput:
    invalid = collect(check_roster(roster), check_records(open_prs, field="openPullRequests"))
    if invalid is not None:
        return invalid

    now = now or utc_now()
    keys = {normalize_identity(m.unique_name) for m in roster}

    prs: list[OpenPR] = []
    for pr in open_prs:
        if pr.author_key not in keys:
            continue
        created = pr.created or pr.timestamp
        age = (now - created).days if created is not None else 0
        prs.append(
            OpenPR(
                id=pr.id,
                title=pr.title,
                author=pr.author_display_name,
                author_unique_name=pr.author_unique_name,
                repo_name=pr.repo_or_feature,
                created_date=created,
                age_in_days=age,
                reviewer_count=pr.reviewer_count,
                staleness=staleness_for(age),
            )
        )
    prs.sort(key=lambda p: -p.age_in_days)
    return StalePRReport(summary=stale_summary(prs), prs=tuple(prs))


# ── Time tracking / governance ───────────────────────────────────────


def compute_governance(
    hours_per_day: float, business_days: int, active_members: int, total_hours: float
) -> Governance:
    expected = hours_per_day * business_days * active_members
    raw = total_hours / expected * 100 if expected > 0 else 0.0
    return Governance(
        expected_hours=expected,
        business_days=business_days,
        hours_per_day=hours_per_day,
        active_members=active_members,
        compliance_pct=round2(raw),
        is_compliant=raw >= COMPLIANCE_THRESHOLD_PCT,
    )


def summarize_time(members: Sequence[MemberTimeEntry], wrong_level_count: int) -> TimeSummary:
    counted = [m for m in members if not m.is_excluded]
    not_logging = sum(1 for m in counted if m.total_hours == 0)
    return TimeSummary(
        total_hours=round2(sum(m.total_hours for m in counted)),
        cap_ex_hours=round2(sum(m.cap_ex_hours for m in counted)),
        op_ex_hours=round2(sum(m.op_ex_hours for m in counted)),
        unclassified_hours=round2(sum(m.unclassified_hours for m in counted)),
        members_logging=len(counted) - not_logging,
        members_not_logging=not_logging,
        wrong_level_count=wrong_level_count,
    )


@dataclass
class _MemberHours:
    member: RosterMember
    is_excluded: bool
    role: str | None
    total: float = 0.0
    cap_ex: float = 0.0
    op_ex: float = 0.0
    unclassified: float = 0.0
    wrong_level_hours: float = 0.0
    wrong_level_count: int = 0
    features: dict[str, FeatureTime] = field(default_factory=dict)

    def add(self, wl: WorklogEntry) -> None:
        self.total += wl.hours
        if wl.expense_type is ExpenseType.CAPEX:
            self.cap_ex += wl.hours
        elif wl.expense_type is ExpenseType.OPEX:
            self.op_ex += wl.hours
        else:
            self.unclassified += wl.hours
        if wl.logged_at_wrong_level:
            self.wrong_level_hours += wl.hours
            self.wrong_level_count += 1

        fkey = str(wl.feature_id) if wl.feature_id is not None else "none"
        existing = self.features.get(fkey)
        if existing is not None:
            self.features[fkey] = FeatureTime(
                feature_id=existing.feature_id,
                feature_title=existing.feature_title,
                expense_type=existing.expense_type,
                hours=existing.hours + wl.hours,
                logged_at_wrong_level=existing.logged_at_wrong_level,
                original_work_item_id=existing.original_work_item_id,
                original_work_item_type=existing.original_work_item_type,
            )
        else:
            self.features[fkey] = FeatureTime(
                feature_id=wl.feature_id,
                feature_title=wl.feature_title,
                expense_type=wl.expense_type,
                hours=wl.hours,
                logged_at_wrong_level=wl.logged_at_wrong_level,
                original_work_item_id=wl.work_item_id if wl.logged_at_wrong_level else None,
                original_work_item_type=wl.work_item_type if wl.logged_at_wrong_level else None,
            )

    def entry(self) -> MemberTimeEntry:
        features = sorted(
            (
                FeatureTime(
                    feature_id=f.feature_id,
                    feature_title=f.feature_title,
                    expense_type=f.expense_type,
                    hours=round2(f.hours),
                    logged_at_wrong_level=f.logged_at_wrong_level,
                    original_work_item_id=f.original_work_item_id,
                    original_work_item_type=f.original_work_item_type,
                )
                for f in self.features.values()
            ),
            key=lambda f: -f.hours,
        )
        return MemberTimeEntry(
            display_name=self.member.display_name,
            unique_name=self.member.unique_name,
            total_hours=round2(self.total),
            cap_ex_hours=round2(self.cap_ex),
            op_ex_hours=round2(self.op_ex),
            unclassified_hours=round2(self.unclassified),
            wrong_level_hours=round2(self.wrong_level_hours),
            wrong_level_count=self.wrong_level_count,
            is_excluded=self.is_excluded,
            role=self.role,
            features=tuple(features),
        )


def sort_time_entries(members: Iterable[MemberTimeEntry]) -> list[MemberTimeEntry]:
    # counted members first, then by hours
    return sorted(members, key=lambda m: (m.is_excluded, -m.total_hours))


def build_time_report(
    team_name: str,
    roster: Sequence[RosterMember] | None,
    worklogs: Sequence[WorklogEntry] | None,
    period: Period,
    *,
    hours_per_day: float = DEFAULT_HOURS_PER_DAY,
    excluded: Exclusions | None = None,
) -> TimeTrackingReport | InvalidInput:
    invalid = collect(
        check_roster(roster),
        check_records(worklogs, field="worklogs"),
        check_period(period),
        check_hours_per_day(hours_per_day),
    )
    if invalid is not None:
        return invalid

    roles = exclusion_roles(excluded)
    acc: dict[str, _MemberHours] = {}
    for m in roster:
        key = normalize_identity(m.unique_name)
        acc[key] = _MemberHours(member=m, is_excluded=key in roles, role=roles.get(key))

    missing_unique_name = 0
    not_on_team: list[str] = []
    matched = 0
    wrong_level: list[WrongLevelEntry] = []

    for wl in worklogs:
        key = wl.author_key
        if not key:
            missing_unique_name += 1
            continue
        member = acc.get(key)
        if member is None:
            if wl.author_unique_name not in not_on_team:
                not_on_team.append(wl.author_unique_name)
            continue
        matched += 1
        member.add(wl)
        if wl.logged_at_wrong_level:
            wrong_level.append(
                WrongLevelEntry(
                    work_item_id=wl.work_item_id,
                    title=wl.work_item_title or f"Work item {wl.work_item_id}",
                    work_item_type=wl.work_item_type or "Unknown",
                    member_name=member.member.display_name,
                    member_unique_name=member.member.unique_name,
                    hours=wl.hours,
                    resolved_feature_id=wl.feature_id,
                    resolved_feature_title=wl.feature_title if wl.feature_id is not None else None,
                )
            )

    members = sort_time_entries(a.entry() for a in acc.values())
    summary = summarize_time(members, len(wrong_level))
    active = sum(1 for m in members if not m.is_excluded)
    governance = compute_governance(
        hours_per_day, count_business_days(period.start, period.end), active, summary.total_hours
    )

    return TimeTrackingReport(
        period=period,
        team_name=team_name,
        total_members=active,
        summary=summary,
        members=tuple(members),
        wrong_level_entries=tuple(wrong_level),
        governance=governance,
        diagnostics=TimeDiagnostics(
            total_worklogs=len(worklogs),
            worklogs_matched_to_team=matched,
            missing_unique_name_count=missing_unique_name,
            mapped_but_not_on_team=tuple(not_on_team),
        ),
    )


def disconnected_time_report(team_name: str, period: Period) -> TimeTrackingReport:
    """Placeholder shape when no 7pace integration is configured."""
    return TimeTrackingReport(
        period=period,
        team_name=team_name,
        total_members=0,
        summary=TimeSummary(0, 0, 0, 0, 0, 0, 0),
        members=(),
        wrong_level_entries=(),
        governance=None,
        seven_pace_connected=False,
    )


def build_user_time(
    email: str,
    entries: Sequence[WorklogEntry] | None,
    period: Period,
    *,
    hit_page_cap: bool = False,
) -> UserTimeReport | InvalidInput:
    issues = collect(check_records(entries, field="worklogs"), check_period(period))
    if issues is not None:
        return issues
    if not email.strip():
        return InvalidInput((InputIssue("email", "email is required"),))

    by_item: dict[int, list[WorklogEntry]] = {}
    for e in entries or []:
        by_item.setdefault(e.work_item_id, []).append(e)

    items = []
    for wid, group in by_item.items():
        first = group[0]
        items.append(
            WorkItemTime(
                work_item_id=wid,
                title=first.work_item_title or ("No work item" if not wid else f"Work item {wid}"),
                work_item_type=first.work_item_type or "",
                feature_title=first.feature_title,
                total_hours=round2(sum(e.hours for e in group)),
                entry_count=len(group),
            )
        )
    items.sort(key=lambda w: (-w.total_hours, w.work_item_id))
    return UserTimeReport(
        email=email.strip().lower(),
        period=period,
        total_hours=round2(sum(e.hours for e in entries or [])),
        entry_count=len(entries or []),
        work_items=tuple(items),
        hit_page_cap=hit_page_cap,
    )
