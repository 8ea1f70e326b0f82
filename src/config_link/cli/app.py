import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from config_link.cli.bindings import resolve, watch
from config_link.cli.values import get, set_value, table
from config_link.config import get_log_level

app = typer.Typer(
    name="config-link",
    help="Config Link CLI: read and patch values in Lua, JSON and spreadsheet sources.",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback()
def setup(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output.")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else get_log_level(),
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


app.command("resolve")(resolve)
app.command("get")(get)
app.command("set")(set_value)
app.command("table")(table)
app.command("watch")(watch)


def main() -> None:
    app()
