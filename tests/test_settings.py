from __future__ import annotations

from pathlib import Path

import pytest

from adopulse.config import AdoPulseConfig
from adopulse.models import MemberProfile
from adopulse.service import PulseService
from adopulse.settings import excluded_roles, load_exclusions, load_profiles, upsert_profile


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_missing_files_load_empty(tmp_path: Path) -> None:
    assert load_profiles(tmp_path / "nope.csv") == ([], [])
    assert load_exclusions(tmp_path / "nope.csv") == ([], [])


def test_load_profiles_reports_bad_rows(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "member_profiles.csv",
        "ado_id,agency,employment_type,display_name,email\n"
        "a,Acme,fte,Alice,alice@corp.com\n"
        ",Acme,fte,,\n"
        "b,,contractor,,\n"
        "a,Beta,contractor,Alice,alice@corp.com\n",
    )
    profiles, issues = load_profiles(path)

    assert profiles == [
        MemberProfile(id="a", agency="Beta", employment_type="contractor", display_name="Alice", email="alice@corp.com")
    ]
    assert [(i.row, i.field) for i in issues] == [(3, "ado_id"), (4, "agency"), (5, "ado_id")]


def test_missing_columns_are_reported_as_header_issue(tmp_path: Path) -> None:
    path = _write(tmp_path / "member_profiles.csv", "ado_id,agency\na,Acme\n")
    profiles, issues = load_profiles(path)
    assert profiles == []
    assert [(i.file, i.row, i.field) for i in issues] == [("profiles", 1, "employment_type")]

    roles = _write(tmp_path / "member_roles.csv", "name\nalice\n")
    exclusions, issues = load_exclusions(roles)
    assert exclusions == []
    assert [(i.row, i.field) for i in issues] == [(1, "role, unique_name")]


def test_upsert_refuses_a_file_with_missing_columns(tmp_path: Path) -> None:
    path = _write(tmp_path / "member_profiles.csv", "ado_id,agency\na,Acme\n")
    with pytest.raises(ValueError, match="employment_type"):
        upsert_profile(path, MemberProfile(id="b", agency="Beta", employment_type="fte"))
    assert path.read_text(encoding="utf-8") == "ado_id,agency\na,Acme\n"


def test_upsert_profile_replaces_by_id(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "member_profiles.csv"
    upsert_profile(path, MemberProfile(id="a", agency="Acme", employment_type="fte"))
    upsert_profile(path, MemberProfile(id="b", agency="Beta", employment_type="contractor"))
    profiles = upsert_profile(path, MemberProfile(id="a", agency="Gamma", employment_type="fte"))

    assert [(p.id, p.agency) for p in profiles] == [("a", "Gamma"), ("b", "Beta")]
    reloaded, issues = load_profiles(path)
    assert reloaded == profiles
    assert issues == []


def test_load_exclusions(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "member_roles.csv",
        "unique_name,role,exclude_from_metrics\n"
        "Carol@corp.com,Manager,\n"
        "dan@corp.com,Scrum Master,no\n"
        "erin@corp.com,Architect,maybe\n",
    )
    exclusions, issues = load_exclusions(path)

    assert [(e.unique_name, e.exclude_from_metrics) for e in exclusions] == [
        ("Carol@corp.com", True),
        ("dan@corp.com", False),
    ]
    assert [(i.key, i.field) for i in issues] == [("erin@corp.com", "exclude_from_metrics")]
    assert excluded_roles(exclusions) == {"carol@corp.com": "Manager"}


def test_service_loads_with_broken_settings_files(tmp_path: Path) -> None:
    profiles = _write(tmp_path / "member_profiles.csv", "id,agency\na,Acme\n")
    cfg = AdoPulseConfig(
        ado_org="acme",
        ado_project="Shop",
        ado_pat="x",
        profiles_file=str(profiles),
        exclusions_file=str(tmp_path / "member_roles.csv"),
    )
    svc = PulseService.from_config(cfg)
    assert svc.profiles == []
    assert [(i.file, i.row) for i in svc.settings_issues] == [("profiles", 1)]
