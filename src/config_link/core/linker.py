import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from config_link.core.cache import ParseCache
from config_link.core.formats import detect_format_from_path, get_adapter, is_text_format
from config_link.core.paths import child_path, try_parse_path
from config_link.core.patch import write_value
from config_link.core.spreadsheet import SpreadsheetAdapter, TableLookupError, write_cell
from config_link.models import (
    BindingDescriptor,
    DeclaredType,
    ResolvedBinding,
    SegmentKind,
    Status,
    TableData,
    TableRow,
    WriteResult,
)

logger = logging.getLogger(__name__)


def resolve_file_path(file: str, base_dir: str | Path) -> Path:
    candidate = Path(file).expanduser()
    if not candidate.is_absolute():
        candidate = Path(base_dir) / candidate
    return candidate.resolve()


class Linker:
    """Resolve binding descriptors against their source files and write values back."""

    def __init__(self, cache: ParseCache | None = None) -> None:
        self.cache = cache if cache is not None else ParseCache()

    def clear_cache(self, path: str | Path | None = None) -> None:
        self.cache.clear(path)

    def link_bindings(self, descriptors: Iterable[BindingDescriptor], base_dir: str | Path) -> list[ResolvedBinding]:
        return [self.resolve(descriptor, base_dir) for descriptor in descriptors]

    def resolve(self, descriptor: BindingDescriptor, base_dir: str | Path) -> ResolvedBinding:
        absolute = resolve_file_path(descriptor.file, base_dir)

        def result(status: Status, **extra: Any) -> ResolvedBinding:
            return ResolvedBinding(
                **descriptor.model_dump(),
                status=status,
                absolute_file_path=str(absolute),
                **extra,
            )

        if not absolute.is_file():
            return result(Status.FILE_NOT_FOUND, error=f"File not found: {absolute}")

        parsed_path = try_parse_path(descriptor.path)
        if not parsed_path.ok:
            return result(Status.INVALID_PATH, error=parsed_path.error)

        try:
            entry = self.cache.get_or_parse(absolute)
        except FileNotFoundError:
            return result(Status.FILE_NOT_FOUND, error=f"File not found: {absolute}")
        except ValueError as exc:
            return result(Status.PARSE_ERROR, error=str(exc))
        if not entry.result.ok:
            return result(Status.PARSE_ERROR, error=entry.result.error)

        adapter = get_adapter(entry.fmt)
        document = entry.result.document
        segments = parsed_path.segments

        if descriptor.declared_type is DeclaredType.CODE and hasattr(adapter, "find_function"):
            located = adapter.find_function(document, segments)
        else:
            located = adapter.locate_by_path(document, segments)
        if not located.ok:
            return result(located.status, error=located.error)

        table: TableData | None = None
        if descriptor.declared_type is DeclaredType.TABLE:
            if isinstance(adapter, SpreadsheetAdapter):
                try:
                    table = adapter.read_table(
                        document,
                        str(segments[0].value),
                        max_rows=descriptor.max_rows,
                        tail_rows=descriptor.tail_rows,
                        filter_column=descriptor.filter_column,
                        filter_values=descriptor.filter_values,
                    )
                except TableLookupError as exc:
                    return result(Status.KEY_NOT_FOUND, error=str(exc), node=located.node)
            else:
                rows = adapter.extract_array_rows(located.node)
                if rows is not None:
                    table = _table_from_rows(rows, descriptor.columns)

        return result(Status.OK, current_value=located.node.value, node=located.node, table=table)

    def write_value(self, descriptor: BindingDescriptor, value: Any, base_dir: str | Path) -> WriteResult:
        """Write ``value`` at the descriptor's path from a fresh read of the file.

        Raises:
            WriteFailure: on I/O errors.
        """
        absolute = resolve_file_path(descriptor.file, base_dir)
        if not absolute.is_file():
            return WriteResult(
                status=Status.FILE_NOT_FOUND,
                absolute_file_path=str(absolute),
                error=f"File not found: {absolute}",
            )
        try:
            fmt = detect_format_from_path(absolute)
        except ValueError as exc:
            return WriteResult(status=Status.PARSE_ERROR, absolute_file_path=str(absolute), error=str(exc))

        if is_text_format(fmt):
            outcome = write_value(absolute, descriptor.path, value, descriptor.declared_type)
        else:
            outcome = self._write_spreadsheet_path(absolute, descriptor.path, value)
        if outcome.ok:
            self.clear_cache(absolute)
        return outcome

    def write_table_cell(
        self,
        descriptor: BindingDescriptor,
        row_index: int,
        column_key: str,
        value: Any,
        base_dir: str | Path,
        source_row_indices: Sequence[int | None] | None = None,
    ) -> WriteResult:
        """Write one cell of a table binding.

        ``row_index`` is the 0-based position in the extracted rows. For
        spreadsheets it is mapped through ``source_row_indices`` (or the
        descriptor's read window) back to an absolute sheet row.
        """
        absolute = resolve_file_path(descriptor.file, base_dir)
        if not absolute.is_file():
            return WriteResult(
                status=Status.FILE_NOT_FOUND,
                absolute_file_path=str(absolute),
                error=f"File not found: {absolute}",
            )
        try:
            fmt = detect_format_from_path(absolute)
        except ValueError as exc:
            return WriteResult(status=Status.PARSE_ERROR, absolute_file_path=str(absolute), error=str(exc))

        parsed = try_parse_path(descriptor.path)
        if not parsed.ok:
            return WriteResult(status=Status.INVALID_PATH, absolute_file_path=str(absolute), error=parsed.error)
        if is_text_format(fmt):
            element = row_index + get_adapter(fmt).index_base
            cell_path = child_path(descriptor.path, element, column_key)
            outcome = write_value(absolute, cell_path, value, None)
        else:
            outcome = write_cell(
                absolute,
                str(parsed.segments[0].value),
                row_index,
                column_key,
                value,
                source_row_indices=source_row_indices,
                max_rows=descriptor.max_rows,
                tail_rows=descriptor.tail_rows,
                filter_column=descriptor.filter_column,
                filter_values=descriptor.filter_values,
            )
        if outcome.ok:
            self.clear_cache(absolute)
        return outcome

    def _write_spreadsheet_path(self, absolute: Path, path: str, value: Any) -> WriteResult:
        parsed = try_parse_path(path)
        if not parsed.ok:
            return WriteResult(status=Status.INVALID_PATH, absolute_file_path=str(absolute), error=parsed.error)
        segments = parsed.segments
        if len(segments) != 3 or segments[1].kind is not SegmentKind.INDEX or segments[2].kind is SegmentKind.INDEX:
            return WriteResult(
                status=Status.INVALID_PATH,
                absolute_file_path=str(absolute),
                error="Spreadsheet writes need a Sheet[row].Column path",
            )
        # the row segment is already absolute
        return write_cell(
            absolute,
            str(segments[0].value),
            0,
            str(segments[2].value),
            value,
            source_row_indices=[int(segments[1].value)],
        )


def _table_from_rows(rows: list[TableRow], columns: Sequence[str] | None) -> TableData:
    if columns:
        ordered = list(columns)
    else:
        ordered = []
        for row in rows:
            for column in row.data:
                if column not in ordered:
                    ordered.append(column)
    return TableData(columns=ordered, rows=rows, total_rows=len(rows))
