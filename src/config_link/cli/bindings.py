import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from config_link.cli.values import display_value
from config_link.core.descriptors import load_descriptors, validate_descriptor
from config_link.core.linker import Linker
from config_link.models import ResolvedBinding
from config_link.watcher.watchfiles_adapter import LinkedFileWatcher

console = Console()

_STATUS_STYLES = {"ok": "green", "fallback-used": "yellow"}


def _render_bindings(bindings: list[ResolvedBinding]) -> None:
    table = Table(show_lines=False)
    for header in ("line", "label", "key", "type", "status", "value"):
        table.add_column(header)
    for binding in bindings:
        style = _STATUS_STYLES.get(binding.status.value, "red")
        value = display_value(binding.current_value) if binding.ok else (binding.error or "")
        table.add_row(
            str(binding.start_line or ""),
            escape(binding.label or ""),
            escape(binding.path),
            binding.declared_type.value,
            f"[{style}]{binding.status.value}[/{style}]",
            escape(value),
        )
    console.print(table)
    console.print(f"({len(bindings)} bindings)")


def _link_document(linker: Linker, document: Path) -> list[ResolvedBinding]:
    descriptors = load_descriptors(document)
    for descriptor in descriptors:
        for problem in validate_descriptor(descriptor):
            console.print(f"[yellow]line {descriptor.start_line}[/yellow]: {problem}")
    return linker.link_bindings(descriptors, document.parent)


def resolve(
    document: Annotated[Path, typer.Argument(help="Markdown file with lua-config blocks.")],
) -> None:
    """Resolve every binding described in a markdown document."""
    if not document.is_file():
        console.print(f"[red]File not found[/red]: {document}")
        raise typer.Exit(1)
    bindings = _link_document(Linker(), document)
    _render_bindings(bindings)
    if any(not b.ok for b in bindings):
        raise typer.Exit(1)


def watch(
    directory: Annotated[Path, typer.Argument(help="Directory holding the linked files.")],
    document: Annotated[
        Path | None, typer.Option("--doc", help="Markdown document to re-resolve after each change.")
    ] = None,
) -> None:
    """Watch a directory and report changes to linked files."""
    linker = Linker()

    async def _on_change(paths: set[Path]) -> None:
        for path in sorted(paths):
            console.print(f"[cyan]Changed[/cyan] {path}")
        if document is not None:
            _render_bindings(_link_document(linker, document))

    async def _run() -> None:
        watcher = LinkedFileWatcher(directory, linker, _on_change)
        await watcher.start()
        try:
            await asyncio.Event().wait()
        finally:
            await watcher.stop()

    console.print(f"Watching {directory} (Ctrl+C to stop)")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("Stopped.")
