from __future__ import annotations

from pathlib import Path

import pytest

from adopulse.config import AdoPulseConfig, load_config, save_config


def test_save_and_load_round_trip(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADOPULSE_HOME", str(tmp_path))
    save_config(
        AdoPulseConfig(
            ado_org="acme",
            ado_project='My "Shop"',
            ado_pat="supersecretpat",
            seven_pace_base_url="https://acme.timehub.7pace.com/api/rest/",
            seven_pace_token="tok",
            hours_per_day=7.5,
        )
    )
    cfg = load_config()

    assert cfg.ado_project == 'My "Shop"'
    assert cfg.seven_pace_base_url == "https://acme.timehub.7pace.com/api/rest"
    assert cfg.seven_pace_configured is True
    assert cfg.hours_per_day == 7.5
    assert cfg.profiles_path == tmp_path / "member_profiles.csv"
    assert cfg.exclusions_path == tmp_path / "member_roles.csv"
    assert cfg.db_path_resolved == tmp_path / "adopulse.duckdb"


def test_masked_dict_hides_secrets(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADOPULSE_HOME", str(tmp_path))
    d = AdoPulseConfig(ado_org="acme", ado_project="Shop", ado_pat="supersecretpat", seven_pace_token="abc").masked_dict()
    assert d["ado_pat"] == "**********tpat"
    assert d["seven_pace_token"] == "***"
    assert d["ADOPULSE_HOME"] == str(tmp_path)


def test_missing_config_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADOPULSE_HOME", str(tmp_path))
    with pytest.raises(SystemExit, match="Config file not found"):
        load_config()


def test_invalid_hours_per_day_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADOPULSE_HOME", str(tmp_path))
    (tmp_path / "config.toml").write_text(
        'ado_org = "a"\nado_project = "p"\nado_pat = "x"\nhours_per_day = "lots"\n', encoding="utf-8"
    )
    with pytest.raises(SystemExit, match="hours_per_day"):
        load_config()


def test_db_path_directory_gets_default_file_name(tmp_path: Path) -> None:
    cfg = AdoPulseConfig(ado_org="a", ado_project="p", ado_pat="x", db_path=str(tmp_path))
    assert cfg.db_path_resolved == tmp_path / "adopulse.duckdb"
    cfg = AdoPulseConfig(ado_org="a", ado_project="p", ado_pat="x", db_path=str(tmp_path / "pulse.db"))
    assert cfg.db_path_resolved == tmp_path / "pulse.db"
