from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from rich.table import Table

from adopulse.models import (
    AlignmentReport,
    DataDiagnostics,
    IdentityCheckReport,
    StalePRReport,
    Staleness,
    TeamSummaryReport,
    TimeTrackingReport,
    UserTimeReport,
    isoformat_z,
)
from adopulse.validation import InvalidInput

_STALENESS_STYLE = {
    Staleness.FRESH: "green",
    Staleness.AGING: "yellow",
    Staleness.STALE: "red",
}


def to_rich_table(columns: Sequence[str], rows: Sequence[Sequence[Any]], title: str | None = None) -> Table:
    t = Table(title=title, show_lines=False)
    for c in columns:
        t.add_column(str(c))
    for r in rows:
        t.add_row(*[("" if v is None else str(v)) for v in r])
    return t


def invalid_input_table(invalid: InvalidInput) -> Table:
    return to_rich_table(["field", "message"], [(i.field, i.message) for i in invalid.issues], title="Invalid input")


def _period_title(label: str, period_label: str) -> str:
    return f"{label} ({period_label})"


def team_summary_tables(report: TeamSummaryReport) -> list[Table]:
    team = report.team
    most = team.most_active_repo
    kpis = to_rich_table(
        ["team", "PRs", "active", "members", "most active repo", "confidence"],
        [
            (
                team.name,
                team.total_prs,
                team.active_contributors,
                team.total_members,
                f"{most.repo_name} ({most.total_prs})" if most else "-",
                report.diagnostics.confidence.value,
            )
        ],
        title=_period_title("Team summary", report.period.label),
    )
    members = to_rich_table(
        ["member", "PRs", "repos", "last PR", "reviews", "flag", "role"],
        [
            (
                m.display_name,
                m.pr_count,
                len(m.repos),
                isoformat_z(m.last_pr_date) or "-",
                m.reviews_given,
                "low reviews" if m.review_flagged else "",
                f"{m.role or 'excluded'}" if m.is_excluded else "",
            )
            for m in report.members
        ],
        title="Members",
    )
    repos = to_rich_table(
        ["repo", "PRs", "contributors"],
        [(r.repo_name, r.total_prs, ", ".join(r.contributors)) for r in report.by_repo],
        title="By repo",
    )
    cov = report.coverage
    coverage = to_rich_table(
        ["project PRs", "team PRs", "PRs in team repos", "gap", "match rate", "zero activity"],
        [
            (
                cov.total_project_prs,
                cov.team_matched_prs,
                cov.prs_in_team_repos,
                cov.gap_prs,
                f"{cov.match_rate}%",
                "yes" if cov.zero_activity_warning else "",
            )
        ],
        title="Coverage",
    )
    tables = [kpis, members, repos, coverage]
    if cov.unmatched_in_team_repos:
        tables.append(unmatched_table(cov.unmatched_in_team_repos))
    return tables


def unmatched_table(unmatched: Sequence[Any]) -> Table:
    return to_rich_table(
        ["author", "unique name", "PRs", "possible match"],
        [(u.display_name, u.unique_name, u.pr_count, u.possible_match_name or "") for u in unmatched],
        title="Unmatched authors in team repos",
    )


def alignment_tables(report: AlignmentReport) -> list[Table]:
    t = report.totals
    totals = to_rich_table(
        ["team area path", "total", "aligned", "out of scope", "unlinked", "aligned %"],
        [(report.scope.default_area_path, t.total, t.aligned, t.out_of_scope_count, t.unlinked, f"{t.aligned_pct}%")],
        title=_period_title("PR alignment", report.period.label),
    )
    by_area = to_rich_table(
        ["area path", "PRs"],
        [(a.area_path, a.count) for a in t.out_of_scope_by_area_path],
        title="Out of scope by area path",
    )
    members = to_rich_table(
        ["member", "total", "aligned", "out of scope", "unlinked", "aligned %"],
        [
            (
                m.display_name,
                m.alignment.total,
                m.alignment.aligned,
                m.alignment.out_of_scope_count,
                m.alignment.unlinked,
                f"{m.alignment.aligned_pct}%",
            )
            for m in report.members
        ],
        title="Members",
    )
    return [totals, by_area, members]


def stale_tables(report: StalePRReport) -> list[Table]:
    s = report.summary
    summary = to_rich_table(["fresh", "aging", "stale", "total"], [(s.fresh, s.aging, s.stale, s.total)], title="Open PRs")
    prs = Table(title="By age", show_lines=False)
    for c in ["id", "title", "author", "repo", "age (days)", "reviewers", "staleness"]:
        prs.add_column(c)
    for p in report.prs:
        style = _STALENESS_STYLE[p.staleness]
        prs.add_row(
            "" if p.id is None else str(p.id),
            p.title,
            p.author,
            p.repo_name,
            str(p.age_in_days),
            str(p.reviewer_count),
            f"[{style}]{p.staleness.value}[/{style}]",
        )
    return [summary, prs]


def time_tables(report: TimeTrackingReport) -> list[Table]:
    if not report.seven_pace_connected:
        return [to_rich_table(["status"], [("7pace is not configured",)], title="Time tracking")]
    s = report.summary
    summary = to_rich_table(
        ["total h", "CapEx h", "OpEx h", "unclassified h", "logging", "not logging", "wrong level"],
        [
            (
                s.total_hours,
                s.cap_ex_hours,
                s.op_ex_hours,
                s.unclassified_hours,
                s.members_logging,
                s.members_not_logging,
                s.wrong_level_count,
            )
        ],
        title=_period_title(f"Time tracking: {report.team_name}", report.period.label),
    )
    tables = [summary]
    g = report.governance
    if g is not None:
        status = "[green]compliant[/green]" if g.is_compliant else "[red]below target[/red]"
        tables.append(
            to_rich_table(
                ["expected h", "business days", "h/day", "active members", "compliance", "status"],
                [(g.expected_hours, g.business_days, g.hours_per_day, g.active_members, f"{g.compliance_pct}%", status)],
                title="Governance",
            )
        )
    tables.append(
        to_rich_table(
            ["member", "total h", "CapEx h", "OpEx h", "unclassified h", "wrong level h", "role"],
            [
                (
                    m.display_name,
                    m.total_hours,
                    m.cap_ex_hours,
                    m.op_ex_hours,
                    m.unclassified_hours,
                    m.wrong_level_hours,
                    (m.role or "excluded") if m.is_excluded else "",
                )
                for m in report.members
            ],
            title="Members",
        )
    )
    if report.wrong_level_entries:
        tables.append(
            to_rich_table(
                ["work item", "type", "title", "member", "hours", "feature"],
                [
                    (w.work_item_id, w.work_item_type, w.title, w.member_name, w.hours, w.resolved_feature_title or "-")
                    for w in report.wrong_level_entries
                ],
                title="Time logged below Feature level",
            )
        )
    return tables


def diagnostics_tables(report: DataDiagnostics) -> list[Table]:
    s = report.summary
    summary = to_rich_table(
        ["project PRs", "API limit hit", "roster", "with PRs", "not found", "found, 0 PRs", "confidence"],
        [
            (
                report.total_project_prs,
                "yes" if report.api_limit_hit else "",
                s.total_roster_members,
                s.members_with_prs,
                s.members_not_found,
                s.members_found_but_zero,
                s.confidence.value,
            )
        ],
        title=_period_title("Data confidence", report.period.label),
    )
    members = to_rich_table(
        ["member", "unique name", "found", "PRs", "match"],
        [
            (m.display_name, m.unique_name, "yes" if m.found_in_project_prs else "no", m.matched_pr_count, m.match_type.value)
            for m in report.roster_members
        ],
        title="Roster",
    )
    return [summary, members]


def identity_tables(report: IdentityCheckReport) -> list[Table]:
    roster = to_rich_table(
        ["member", "unique name", "matched author", "PRs", "match"],
        [
            (
                r.member.display_name,
                r.member.unique_name,
                r.match.matched_author_key or "",
                r.match.matched_count,
                r.match.match_type.value,
            )
            for r in report.roster_members
        ],
        title=_period_title("Roster identities", report.period.label),
    )
    authors = to_rich_table(
        ["author", "unique name", "PRs", "roster member"],
        [
            (a.author.display_name, a.author.unique_name, a.author.count, a.matched_roster_member or "")
            for a in report.authors
        ],
        title="PR authors" + (" (API limit hit)" if report.api_limit_hit else ""),
    )
    return [roster, authors]


def user_time_tables(report: UserTimeReport) -> list[Table]:
    title = f"{report.email}: {report.total_hours} h in {report.entry_count} worklogs"
    if report.hit_page_cap:
        title += " (page cap hit)"
    return [
        to_rich_table(
            ["work item", "type", "title", "feature", "hours", "entries"],
            [
                (w.work_item_id or "", w.work_item_type, w.title, w.feature_title, w.total_hours, w.entry_count)
                for w in report.work_items
            ],
            title=_period_title(title, report.period.label),
        )
    ]
