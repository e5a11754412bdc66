from __future__ import annotations

import typer

from adopulse.commands.config import config_app
from adopulse.commands.profiles import profiles_app
from adopulse.commands.report import report_app
from adopulse.commands.snapshot import snapshot_app
from adopulse.log import setup_logging

app = typer.Typer(
    name="adopulse",
    help="AdoPulse - Azure DevOps team health CLI (PR activity, alignment, 7pace time tracking).",
    add_completion=False,
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")
app.add_typer(report_app, name="report")
app.add_typer(snapshot_app, name="snapshot")
app.add_typer(profiles_app, name="profiles")


@app.callback()
def _root_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every upstream request"),
) -> None:
    setup_logging(verbose)
