import json
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from config_link.core.errors import WriteFailure
from config_link.core.linker import Linker
from config_link.models import BindingDescriptor, DeclaredType, ResolvedBinding, TableData

console = Console()

_VERBATIM_TYPES = frozenset({DeclaredType.STRING, DeclaredType.COLOR, DeclaredType.CODE})


def display_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def parse_cli_value(text: str, declared_type: DeclaredType) -> Any:
    """Turn a command-line argument into the Python value to write.

    Strings, colors and code are taken verbatim; everything else is read as YAML
    so that ``12``, ``true`` and ``[1, 2]`` arrive typed.
    """
    if declared_type in _VERBATIM_TYPES:
        return text
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"Cannot read {text!r}: {exc}") from exc


def render_table(data: TableData) -> None:
    table = Table(show_lines=False)
    table.add_column("#", justify="right")
    for column in data.columns:
        table.add_column(column)
    indices: Sequence[int | None] = data.source_row_indices or [row.row_index for row in data.rows]
    for row, source_index in zip(data.rows, indices, strict=False):
        table.add_row(str(source_index), *(escape(display_value(row.data.get(c))) for c in data.columns))
    console.print(table)
    console.print(f"({len(data.rows)} of {data.total_rows} rows)")


def _fail(resolved: ResolvedBinding) -> None:
    console.print(f"[red]{resolved.status.value}[/red]: {escape(resolved.error or '')}")
    raise typer.Exit(1)


def get(
    file: Annotated[str, typer.Argument(help="Lua, JSON or spreadsheet file.")],
    path: Annotated[str, typer.Argument(help="Value path, e.g. Config.Items[1].name.")],
    type: Annotated[
        DeclaredType, typer.Option("--type", help="Declared type; 'code' looks up function definitions.")
    ] = DeclaredType.SELECT,
) -> None:
    """Print the value found at a path."""
    descriptor = BindingDescriptor(file=file, key=path, type=type)
    resolved = Linker().resolve(descriptor, Path.cwd())
    if not resolved.ok:
        _fail(resolved)
    node = resolved.node
    console.print(display_value(resolved.current_value), markup=False, highlight=False)
    if node is not None and node.location is not None:
        loc = node.location
        where = f"{loc.start_line}:{loc.start_column}-{loc.end_line}:{loc.end_column}"
        console.print(f"[dim]{node.kind.value} at {where}[/dim]")


def set_value(
    file: Annotated[str, typer.Argument(help="Lua, JSON or spreadsheet file.")],
    path: Annotated[str, typer.Argument(help="Value path; spreadsheets take Sheet[row].Column.")],
    value: Annotated[str, typer.Argument(help="New value.")],
    type: Annotated[DeclaredType, typer.Option("--type", help="Declared type of the value.")],
) -> None:
    """Write a value in place, keeping the rest of the file byte for byte."""
    descriptor = BindingDescriptor(file=file, key=path, type=type)
    try:
        outcome = Linker().write_value(descriptor, parse_cli_value(value, type), Path.cwd())
    except WriteFailure as exc:
        console.print(f"[red]Write failed[/red]: {escape(str(exc))}")
        raise typer.Exit(1) from exc
    if not outcome.ok:
        console.print(f"[red]{outcome.status.value}[/red]: {escape(outcome.error or '')}")
        raise typer.Exit(1)
    console.print(f"[green]Wrote[/green] {path} in {outcome.absolute_file_path}")
    if outcome.fallback_reason:
        console.print(f"[yellow]Saved with {outcome.backend}[/yellow]: {escape(outcome.fallback_reason)}")


def table(
    file: Annotated[str, typer.Argument(help="Lua, JSON or spreadsheet file.")],
    path: Annotated[str, typer.Argument(help="Path to an array of records or a sheet name.")],
    max_rows: Annotated[int | None, typer.Option(help="Show at most this many rows.")] = None,
    tail_rows: Annotated[int | None, typer.Option(help="Start this many rows before the end.")] = None,
    filter_column: Annotated[str | None, typer.Option(help="Only keep rows matching on this column.")] = None,
    filter_value: Annotated[
        list[str] | None, typer.Option("--filter-value", help="Accepted value for --filter-column.")
    ] = None,
) -> None:
    """Show an array of records as a table."""
    descriptor = BindingDescriptor(
        file=file,
        key=path,
        type=DeclaredType.TABLE,
        max_rows=max_rows,
        tail_rows=tail_rows,
        filter_column=filter_column,
        filter_values=filter_value,
    )
    resolved = Linker().resolve(descriptor, Path.cwd())
    if not resolved.ok:
        _fail(resolved)
    if resolved.table is None:
        console.print(f"[yellow]{path} is not an array of records[/yellow]")
        raise typer.Exit(1)
    render_table(resolved.table)
