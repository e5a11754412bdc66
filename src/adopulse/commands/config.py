from __future__ import annotations

import typer
from rich.console import Console

from adopulse.config import DEFAULT_HOURS_PER_DAY, AdoPulseConfig, load_config, save_config

config_app = typer.Typer(help="Manage Azure DevOps / 7pace credentials and local settings.", add_completion=False)
console = Console()


@config_app.command("set")
def config_set(
    org: str = typer.Option(..., help="Azure DevOps organization"),
    project: str = typer.Option(..., help="Azure DevOps project"),
    pat: str = typer.Option(..., help="Personal access token (stored in the local config)"),
    seven_pace_base_url: str | None = typer.Option(
        None, help="7pace REST base URL, e.g. https://<org>.timehub.7pace.com/api/rest"
    ),
    seven_pace_token: str | None = typer.Option(None, help="7pace API token"),
    hours_per_day: float = typer.Option(DEFAULT_HOURS_PER_DAY, min=0, help="Expected logged hours per business day"),
    profiles_file: str | None = typer.Option(None, help="Member profiles CSV (default ~/.adopulse/member_profiles.csv)"),
    exclusions_file: str | None = typer.Option(None, help="Role exclusions CSV (default ~/.adopulse/member_roles.csv)"),
    db_path: str | None = typer.Option(None, help="DuckDB snapshot file (default ~/.adopulse/adopulse.duckdb)"),
) -> None:
    cfg = AdoPulseConfig(
        ado_org=org,
        ado_project=project,
        ado_pat=pat,
        seven_pace_base_url=seven_pace_base_url.rstrip("/") if seven_pace_base_url else None,
        seven_pace_token=seven_pace_token,
        hours_per_day=hours_per_day,
        profiles_file=profiles_file,
        exclusions_file=exclusions_file,
        db_path=db_path,
    )
    save_config(cfg)
    console.print("[green]Config saved:[/green]")
    console.print(load_config().masked_dict())


@config_app.command("show")
def config_show() -> None:
    cfg = load_config()
    console.print(cfg.masked_dict())


@config_app.command("path")
def config_path() -> None:
    cfg = load_config()
    console.print(
        {
            "config": str(cfg.config_path),
            "profiles_file": str(cfg.profiles_path),
            "exclusions_file": str(cfg.exclusions_path),
            "db_path": str(cfg.db_path_resolved),
        }
    )
