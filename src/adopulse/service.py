from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from adopulse import normalize
from adopulse.ado_client import AdoClient
from adopulse.alignment import build_alignment_report
from adopulse.config import AdoPulseConfig
from adopulse.diagnostics import diagnose, team_validator
from adopulse.filtering import apply_agency_filter
from adopulse.identity import identity_check
from adopulse.models import (
    IdentityCheckReport,
    MemberProfile,
    Period,
    RosterMember,
    TeamValidatorReport,
    UserTimeReport,
)
from adopulse.reports import (
    build_stale_report,
    build_team_summary,
    build_time_report,
    build_user_time,
    disconnected_time_report,
)
from adopulse.seven_pace import SevenPaceClient, fill_unique_names
from adopulse.settings import SettingsIssue, excluded_roles, load_exclusions, load_profiles
from adopulse.validation import InvalidInput

logger = logging.getLogger(__name__)


@dataclass
class PulseService:
    """
    Fetches what a report needs from Azure DevOps / 7pace and hands it to the
    report builders. Agency filtering happens last, on the built report.
    """

    ado: AdoClient
    seven_pace: SevenPaceClient | None = None
    hours_per_day: float = 8.0
    profiles: list[MemberProfile] = field(default_factory=list)
    excluded: dict[str, str] = field(default_factory=dict)
    settings_issues: list[SettingsIssue] = field(default_factory=list)

    @classmethod
    def from_config(cls, cfg: AdoPulseConfig) -> "PulseService":
        profiles, profile_issues = load_profiles(cfg.profiles_path)
        exclusions, exclusion_issues = load_exclusions(cfg.exclusions_path)
        return cls(
            ado=AdoClient.from_config(cfg),
            seven_pace=SevenPaceClient.from_config(cfg),
            hours_per_day=cfg.hours_per_day,
            profiles=profiles,
            excluded=excluded_roles(exclusions),
            settings_issues=[*profile_issues, *exclusion_issues],
        )

    def _filtered(self, report: Any, agencies: Sequence[str], roster: Sequence[RosterMember]) -> Any:
        if isinstance(report, InvalidInput) or not agencies:
            return report
        return apply_agency_filter(report, list(agencies), roster, self.profiles)

    def team_summary(self, team: str, period: Period, agencies: Sequence[str] = ()) -> Any:
        roster = self.ado.get_team_members(team)
        prs = [pr for pr in self.ado.get_pull_requests(period.start) if pr.timestamp is None or pr.timestamp <= period.end]
        reviews = self.ado.reviews_given_by_members(roster, period.start)
        report = build_team_summary(team, roster, prs, period, reviews_given=reviews, excluded=self.excluded)
        return self._filtered(report, agencies, roster)

    def alignment(self, team: str, period: Period, agencies: Sequence[str] = ()) -> Any:
        roster = self.ado.get_team_members(team)
        scope = self.ado.get_team_scope(team)
        prs = self.ado.prs_with_work_items(period.start, period.end)
        report = build_alignment_report(roster, prs, scope, period)
        return self._filtered(report, agencies, roster)

    def stale(self, team: str, agencies: Sequence[str] = ()) -> Any:
        roster = self.ado.get_team_members(team)
        report = build_stale_report(roster, self.ado.get_open_pull_requests())
        return self._filtered(report, agencies, roster)

    def diagnostics(self, team: str, period: Period, agencies: Sequence[str] = ()) -> Any:
        roster = self.ado.get_team_members(team)
        report = diagnose(roster, self.ado.get_pull_requests(period.start), period)
        return self._filtered(report, agencies, roster)

    def identity_check(self, team: str, period: Period) -> IdentityCheckReport:
        roster = self.ado.get_team_members(team)
        return identity_check(roster, self.ado.get_pull_requests(period.start), period)

    def team_validator(self, team: str, period: Period) -> TeamValidatorReport | InvalidInput:
        roster = self.ado.get_team_members(team)
        return team_validator(team, roster, self.ado.get_pull_requests(period.start), period)

    def time_tracking(self, team: str, period: Period, agencies: Sequence[str] = ()) -> Any:
        if self.seven_pace is None:
            return disconnected_time_report(team, period)
        roster = self.ado.get_team_members(team)
        fetched = self.seven_pace.get_worklogs(period.start, period.end)
        worklogs = fetched.worklogs
        if any(not wl.unique_name for wl in worklogs):
            worklogs = fill_unique_names(worklogs, self.seven_pace.get_users())
        ids = [wl.work_item_id for wl in worklogs if wl.work_item_id]
        work_items = self.ado.with_ancestors(ids)
        entries = normalize.worklog_entries(worklogs, work_items)
        logger.debug("time tracking %s: %d worklogs, %d work items", team, len(entries), len(work_items))
        report = build_time_report(
            team, roster, entries, period, hours_per_day=self.hours_per_day, excluded=self.excluded
        )
        return self._filtered(report, agencies, roster)

    def user_time(self, email: str, period: Period) -> UserTimeReport | InvalidInput | None:
        """One user's worklogs by work item; None without a 7pace integration."""
        if self.seven_pace is None:
            return None
        fetched = self.seven_pace.get_worklogs_for_user(email.strip(), period.start, period.end)
        ids = [wl.work_item_id for wl in fetched.worklogs if wl.work_item_id]
        work_items = self.ado.with_ancestors(ids) if ids else {}
        entries = normalize.worklog_entries(fetched.worklogs, work_items)
        return build_user_time(email, entries, period, hit_page_cap=fetched.pagination.hit_safety_cap)
