from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomllib

DEFAULT_HOURS_PER_DAY = 8.0


def _default_home() -> Path:
    return Path(os.environ.get("ADOPULSE_HOME", Path.home() / ".adopulse")).expanduser()


def _mask_secret(value: str, keep: int = 4) -> str:
    if not value:
        return value
    if len(value) <= keep:
        return "*" * len(value)
    return "*" * (len(value) - keep) + value[-keep:]


def _safe_toml_str(value: str) -> str:
    # Minimal TOML string escaping for our config needs.
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class AdoPulseConfig:
    ado_org: str
    ado_project: str
    ado_pat: str
    seven_pace_base_url: str | None = None
    seven_pace_token: str | None = None
    hours_per_day: float = DEFAULT_HOURS_PER_DAY
    profiles_file: str | None = None
    exclusions_file: str | None = None
    db_path: str | None = None

    @property
    def home_dir(self) -> Path:
        return _default_home()

    @property
    def config_path(self) -> Path:
        return self.home_dir / "config.toml"

    @property
    def seven_pace_configured(self) -> bool:
        return bool(self.seven_pace_base_url and self.seven_pace_token)

    @property
    def db_path_resolved(self) -> Path:
        if self.db_path:
            p = Path(self.db_path).expanduser()
            if p.is_dir():
                return p / "adopulse.duckdb"
            return p
        return self.home_dir / "adopulse.duckdb"

    @property
    def profiles_path(self) -> Path:
        if self.profiles_file:
            return Path(self.profiles_file).expanduser()
        return self.home_dir / "member_profiles.csv"

    @property
    def exclusions_path(self) -> Path:
        if self.exclusions_file:
            return Path(self.exclusions_file).expanduser()
        return self.home_dir / "member_roles.csv"

    def masked_dict(self) -> dict[str, Any]:
        return {
            "ado_org": self.ado_org,
            "ado_project": self.ado_project,
            "ado_pat": _mask_secret(self.ado_pat),
            "seven_pace_base_url": self.seven_pace_base_url or "",
            "seven_pace_token": _mask_secret(self.seven_pace_token or ""),
            "hours_per_day": self.hours_per_day,
            "profiles_file": str(self.profiles_path),
            "exclusions_file": str(self.exclusions_path),
            "db_path": str(self.db_path_resolved),
            "ADOPULSE_HOME": str(self.home_dir),
        }


def _ensure_dirs(cfg: AdoPulseConfig) -> None:
    cfg.home_dir.mkdir(parents=True, exist_ok=True)


def load_config() -> AdoPulseConfig:
    home = _default_home()
    path = home / "config.toml"
    if not path.exists():
        raise SystemExit(
            f"Config file not found: {path}\n"
            "Run first: adopulse config set --org ... --project ... --pat ..."
        )
    data = tomllib.loads(path.read_text(encoding="utf-8"))
    try:
        hours_per_day = float(data.get("hours_per_day", DEFAULT_HOURS_PER_DAY))
    except (TypeError, ValueError) as e:
        raise SystemExit(f"Invalid hours_per_day in {path}: {data.get('hours_per_day')!r}") from e
    cfg = AdoPulseConfig(
        ado_org=str(data["ado_org"]),
        ado_project=str(data["ado_project"]),
        ado_pat=str(data["ado_pat"]),
        seven_pace_base_url=str(data["seven_pace_base_url"]).rstrip("/") if data.get("seven_pace_base_url") else None,
        seven_pace_token=data.get("seven_pace_token"),
        hours_per_day=hours_per_day,
        profiles_file=data.get("profiles_file"),
        exclusions_file=data.get("exclusions_file"),
        db_path=data.get("db_path"),
    )
    _ensure_dirs(cfg)
    return cfg


def save_config(cfg: AdoPulseConfig) -> None:
    _ensure_dirs(cfg)
    lines: list[str] = []
    for key, value in {
        "ado_org": cfg.ado_org,
        "ado_project": cfg.ado_project,
        "ado_pat": cfg.ado_pat,
        "seven_pace_base_url": (cfg.seven_pace_base_url or "").rstrip("/"),
        "seven_pace_token": cfg.seven_pace_token or "",
        "profiles_file": cfg.profiles_file or "",
        "exclusions_file": cfg.exclusions_file or "",
        "db_path": cfg.db_path or "",
    }.items():
        if value == "":
            continue
        if not re.fullmatch(r"[a-zA-Z0-9_]+", key):
            raise ValueError(f"Invalid config key: {key}")
        lines.append(f"{key} = {_safe_toml_str(str(value))}")
    lines.append(f"hours_per_day = {float(cfg.hours_per_day)}")

    cfg.config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
