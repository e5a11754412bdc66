from __future__ import annotations

import typer
from rich.console import Console

from adopulse.config import load_config
from adopulse.models import MemberProfile
from adopulse.render import to_rich_table
from adopulse.settings import issues_to_table, load_exclusions, load_profiles, upsert_profile

profiles_app = typer.Typer(help="Member agency profiles and role exclusions.", add_completion=False)
console = Console()


@profiles_app.command("show")
def profiles_show() -> None:
    cfg = load_config()
    profiles, issues = load_profiles(cfg.profiles_path)
    exclusions, exclusion_issues = load_exclusions(cfg.exclusions_path)
    issues += exclusion_issues

    console.print(
        to_rich_table(
            ["ado id", "display name", "email", "agency", "employment"],
            [(p.id, p.display_name, p.email, p.agency, p.employment_type) for p in profiles],
            title=f"Member profiles ({cfg.profiles_path})",
        )
    )
    console.print(
        to_rich_table(
            ["unique name", "role", "excluded from metrics"],
            [(e.unique_name, e.role, "yes" if e.exclude_from_metrics else "no") for e in exclusions],
            title=f"Role exclusions ({cfg.exclusions_path})",
        )
    )
    if issues:
        console.print(issues_to_table(issues))
        raise SystemExit(1)


@profiles_app.command("set")
def profiles_set(
    ado_id: str = typer.Option(..., "--ado-id", help="ADO identity id of the member"),
    agency: str = typer.Option(..., help="Agency / vendor the member works for"),
    employment_type: str = typer.Option(..., help="e.g. fte, contractor"),
    display_name: str = typer.Option("", help="Display name"),
    email: str = typer.Option("", help="ADO unique name / email, used when the id does not match"),
) -> None:
    """Add or replace one member profile."""
    cfg = load_config()
    try:
        profiles = upsert_profile(
            cfg.profiles_path,
            MemberProfile(
                id=ado_id.strip(),
                agency=agency.strip(),
                employment_type=employment_type.strip(),
                display_name=display_name.strip(),
                email=email.strip(),
            ),
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e
    console.print({"profiles_file": str(cfg.profiles_path), "profiles": len(profiles)})
