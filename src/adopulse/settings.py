"""
Member profiles (agency / employment type) and role exclusions.

Both live in small CSV files next to the config so they can be edited in a
spreadsheet:

    member_profiles.csv  ado_id,agency,employment_type,display_name,email
    member_roles.csv     unique_name,role,exclude_from_metrics

Rows that do not validate are reported as `SettingsIssue`s and skipped;
the rest are still loaded.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path

from rich.table import Table

from adopulse.models import MemberProfile, MemberRoleExclusion

PROFILE_COLUMNS = ["ado_id", "agency", "employment_type", "display_name", "email"]
EXCLUSION_COLUMNS = ["unique_name", "role", "exclude_from_metrics"]

_TRUE = {"1", "true", "yes", "y"}
_FALSE = {"0", "false", "no", "n", ""}


@dataclass(frozen=True)
class SettingsIssue:
    file: str
    row: int
    key: str
    field: str
    message: str


def _check_columns(file: str, fieldnames: list[str] | None, required: set[str]) -> SettingsIssue | None:
    missing = required - set(fieldnames or [])
    if missing:
        # header row; nothing below it can be read
        return SettingsIssue(file, 1, "", ", ".join(sorted(missing)), f"missing required columns: {sorted(missing)}")
    return None


def load_profiles(path: Path) -> tuple[list[MemberProfile], list[SettingsIssue]]:
    if not path.exists():
        return [], []
    profiles: dict[str, MemberProfile] = {}
    issues: list[SettingsIssue] = []
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        r = csv.DictReader(f)
        header = _check_columns("profiles", r.fieldnames, {"ado_id", "agency", "employment_type"})
        if header is not None:
            return [], [header]
        for idx, row in enumerate(r, start=2):
            ado_id = str(row.get("ado_id") or "").strip()
            agency = str(row.get("agency") or "").strip()
            employment_type = str(row.get("employment_type") or "").strip()
            if not ado_id:
                issues.append(SettingsIssue("profiles", idx, "", "ado_id", "missing ado_id"))
                continue
            if not agency:
                issues.append(SettingsIssue("profiles", idx, ado_id, "agency", "missing agency"))
                continue
            if not employment_type:
                issues.append(SettingsIssue("profiles", idx, ado_id, "employment_type", "missing employment_type"))
                continue
            if ado_id in profiles:
                issues.append(SettingsIssue("profiles", idx, ado_id, "ado_id", "duplicate ado_id, later row wins"))
            profiles[ado_id] = MemberProfile(
                id=ado_id,
                agency=agency,
                employment_type=employment_type,
                display_name=str(row.get("display_name") or "").strip(),
                email=str(row.get("email") or "").strip(),
            )
    return list(profiles.values()), issues


def save_profiles(path: Path, profiles: list[MemberProfile]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(PROFILE_COLUMNS)
        for p in profiles:
            w.writerow([p.id, p.agency, p.employment_type, p.display_name, p.email])


def upsert_profile(path: Path, profile: MemberProfile) -> list[MemberProfile]:
    profiles, issues = load_profiles(path)
    header = next((i for i in issues if i.row == 1), None)
    if header is not None:
        raise ValueError(f"{path.name} {header.message}")
    for i, p in enumerate(profiles):
        if p.id == profile.id:
            profiles[i] = profile
            break
    else:
        profiles.append(profile)
    save_profiles(path, profiles)
    return profiles


def load_exclusions(path: Path) -> tuple[list[MemberRoleExclusion], list[SettingsIssue]]:
    if not path.exists():
        return [], []
    out: list[MemberRoleExclusion] = []
    issues: list[SettingsIssue] = []
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        r = csv.DictReader(f)
        header = _check_columns("roles", r.fieldnames, {"unique_name", "role"})
        if header is not None:
            return [], [header]
        for idx, row in enumerate(r, start=2):
            unique_name = str(row.get("unique_name") or "").strip()
            role = str(row.get("role") or "").strip()
            flag = str(row.get("exclude_from_metrics") or "true").strip().lower()
            if not unique_name:
                issues.append(SettingsIssue("roles", idx, "", "unique_name", "missing unique_name"))
                continue
            if flag not in _TRUE | _FALSE:
                issues.append(SettingsIssue("roles", idx, unique_name, "exclude_from_metrics", f"invalid bool '{flag}'"))
                continue
            out.append(MemberRoleExclusion(unique_name=unique_name, role=role, exclude_from_metrics=flag in _TRUE))
    return out, issues


def excluded_roles(exclusions: list[MemberRoleExclusion]) -> dict[str, str]:
    """`uniqueName -> role` for the members kept out of team metrics."""
    return {e.unique_name.lower(): e.role for e in exclusions if e.exclude_from_metrics}


def issues_to_table(issues: list[SettingsIssue], limit: int = 50) -> Table:
    t = Table(title=f"Settings Issues (showing up to {limit})", show_lines=False)
    t.add_column("file")
    t.add_column("row")
    t.add_column("key")
    t.add_column("field")
    t.add_column("message")
    for it in issues[:limit]:
        t.add_row(it.file, str(it.row), it.key, it.field, it.message)
    return t
