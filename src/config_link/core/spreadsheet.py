"""Spreadsheet tables: windowed reads and single-cell writes.

Writes go through openpyxl first so styles, formulas and other sheets survive.
When openpyxl fails on a workbook the value is written again with pandas,
which keeps only cell values; callers are told which backend did the work.
"""

import codecs
import io
import logging
import zipfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import openpyxl
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from pandas.errors import EmptyDataError

from config_link.config import MAX_TABLE_ROWS_CAP
from config_link.core.errors import WriteFailure
from config_link.core.paths import format_path
from config_link.core.ports.adapter import ParseResult
from config_link.models import (
    CellAddress,
    LocateResult,
    PathSegment,
    SegmentKind,
    Status,
    TableData,
    TableRow,
    ValueKind,
    ValueNode,
    WriteResult,
)

logger = logging.getLogger(__name__)

RICH_BACKEND = "openpyxl"
COMPATIBILITY_BACKEND = "pandas"

_WORKBOOK_SUFFIXES = frozenset({".xlsx", ".xlsm"})

_READ_ERRORS = (OSError, ValueError, KeyError, zipfile.BadZipFile, InvalidFileException)


class TableLookupError(ValueError):
    """A sheet, column or row could not be resolved."""


@dataclass(frozen=True)
class SheetData:
    name: str
    headers: list[str]
    rows: list[list[Any]] = field(default_factory=list)

    def column_index(self, column_key: str) -> int:
        try:
            return self.headers.index(column_key)
        except ValueError:
            raise TableLookupError(f"Field not found: {column_key}") from None

    def row_dict(self, index: int) -> dict[str, Any]:
        return dict(zip(self.headers, self.rows[index]))


@dataclass(frozen=True)
class WorkbookSnapshot:
    path: Path
    sheets: dict[str, SheetData]

    @property
    def sheet_names(self) -> list[str]:
        return list(self.sheets)

    def resolve_sheet(self, requested: str | None) -> SheetData:
        if not self.sheets:
            raise TableLookupError(f"Workbook has no sheets: {self.path}")
        if not requested:
            return next(iter(self.sheets.values()))
        if requested in self.sheets:
            return self.sheets[requested]
        wanted = requested.strip().lower()
        for name, sheet in self.sheets.items():
            if name.lower() == wanted:
                return sheet
        raise TableLookupError(f"Worksheet not found: {requested}")


@dataclass(frozen=True)
class CellUpdate:
    row_index: int
    column_key: str
    value: Any


@dataclass(frozen=True)
class _SheetRef:
    snapshot: WorkbookSnapshot
    sheet: SheetData


def normalize_headers(raw: Sequence[Any]) -> list[str]:
    headers = []
    for idx, value in enumerate(raw):
        text = "" if value is None or _is_missing(value) else str(value).strip()
        headers.append(text or f"col_{idx + 1}")
    return headers


def _is_missing(value: Any) -> bool:
    return isinstance(value, float) and value != value


def _clean(value: Any) -> Any:
    return None if _is_missing(value) else value


def _to_sheet(name: str, values: list[list[Any]]) -> SheetData:
    while values and all(_clean(v) in (None, "") for v in values[-1]):
        values.pop()
    if not values:
        return SheetData(name=name, headers=[])
    header_row = list(values[0])
    # read-only worksheets pad every row to the widest one
    while header_row and _clean(header_row[-1]) in (None, ""):
        header_row.pop()
    headers = normalize_headers(header_row)
    width = len(headers)
    rows = []
    for raw in values[1:]:
        row = [_clean(v) for v in raw[:width]]
        row.extend([None] * (width - len(row)))
        rows.append(row)
    return SheetData(name=name, headers=headers, rows=rows)


def _read_csv_values(path: Path) -> list[list[Any]]:
    # CSV carries no types: cells stay the text written in the file
    try:
        frame = pd.read_csv(path, header=None, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except EmptyDataError:
        return []
    return [[None if _clean(value) in (None, "") else value for value in row] for row in frame.values.tolist()]


def load_snapshot(path: str | Path) -> WorkbookSnapshot:
    """Read every sheet of a workbook into memory and close the file."""
    path = Path(path)
    suffix = path.suffix.lower()
    sheets: dict[str, SheetData] = {}
    if suffix in _WORKBOOK_SUFFIXES:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
        try:
            for worksheet in workbook.worksheets:
                values = [list(row) for row in worksheet.iter_rows(min_row=1, values_only=True)]
                sheets[worksheet.title] = _to_sheet(worksheet.title, values)
        finally:
            workbook.close()
    elif suffix == ".csv":
        values = _read_csv_values(path)
        sheets[path.stem] = _to_sheet(path.stem, values)
    else:
        raise ValueError(f"Unsupported spreadsheet extension: {suffix}")
    return WorkbookSnapshot(path=path, sheets=sheets)


def resolve_window(total: int, max_rows: int | None = None, tail_rows: int | None = None) -> tuple[int, int]:
    """Return the ``[start, end)`` slice of ``total`` rows to show.

    ``max_rows`` is clamped to ``MAX_TABLE_ROWS_CAP``; a missing or
    non-positive value means "up to the cap". ``tail_rows`` anchors the
    window to the end of the table.
    """
    limit = min(max_rows, MAX_TABLE_ROWS_CAP) if max_rows and max_rows > 0 else MAX_TABLE_ROWS_CAP
    start = 0
    if tail_rows and tail_rows > 0:
        start = max(0, total - min(tail_rows, total))
    end = min(total, start + limit)
    return start, end


def _matching_rows(sheet: SheetData, filter_column: str | None, filter_values: Sequence[Any] | None) -> list[int]:
    indices = list(range(len(sheet.rows)))
    if not filter_column or not filter_values:
        return indices
    column = sheet.column_index(filter_column)
    allowed = {str(v).strip() for v in filter_values}
    return [i for i in indices if _cell_text(sheet.rows[i][column]) in allowed]


def _cell_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def window_table(
    sheet: SheetData,
    max_rows: int | None = None,
    tail_rows: int | None = None,
    filter_column: str | None = None,
    filter_values: Sequence[Any] | None = None,
) -> TableData:
    candidates = _matching_rows(sheet, filter_column, filter_values)
    start, end = resolve_window(len(candidates), max_rows, tail_rows)
    visible = candidates[start:end]
    rows = [
        TableRow(
            row_index=position,
            data=sheet.row_dict(source_index),
            ranges={
                column: CellAddress(sheet=sheet.name, row_index=source_index, column_key=column)
                for column in sheet.headers
            },
        )
        for position, source_index in enumerate(visible)
    ]
    return TableData(columns=list(sheet.headers), rows=rows, source_row_indices=visible, total_rows=len(candidates))


def read_table(
    path: str | Path,
    sheet: str | None = None,
    max_rows: int | None = None,
    tail_rows: int | None = None,
    filter_column: str | None = None,
    filter_values: Sequence[Any] | None = None,
) -> TableData:
    snapshot = load_snapshot(path)
    return window_table(snapshot.resolve_sheet(sheet), max_rows, tail_rows, filter_column, filter_values)


def resolve_source_row(
    row_index: int,
    start: int,
    visible_count: int,
    source_row_indices: Sequence[int | None] | None = None,
) -> int:
    if source_row_indices:
        if row_index < 0 or row_index >= len(source_row_indices):
            raise TableLookupError(f"Invalid row index: {row_index}")
        mapped = source_row_indices[row_index]
        if mapped is None or mapped < 0:
            raise TableLookupError(f"Invalid source row mapping at index: {row_index}")
        return mapped
    if row_index < 0 or row_index >= visible_count:
        raise TableLookupError(f"Invalid row index: {row_index}")
    return start + row_index


def _cell_value(value: Any) -> Any:
    return None if value is None or value == "" else value


def _write_with_openpyxl(path: Path, sheet_name: str, cells: Sequence[tuple[int, int, Any]]) -> None:
    workbook = openpyxl.load_workbook(path, keep_vba=path.suffix.lower() == ".xlsm")
    try:
        worksheet = workbook[sheet_name]
        for row, column, value in cells:
            worksheet.cell(row=row, column=column).value = value
        workbook.save(path)
    finally:
        workbook.close()


def _write_with_pandas(path: Path, sheet_name: str, cells: Sequence[tuple[int, int, Any]]) -> None:
    frames = pd.read_excel(path, sheet_name=None, header=None, engine="openpyxl")
    frames[sheet_name] = _with_cells(frames[sheet_name], cells, blank=None)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, frame in frames.items():
            frame.to_excel(writer, sheet_name=name, header=False, index=False)


def _with_cells(frame: pd.DataFrame, cells: Sequence[tuple[int, int, Any]], blank: Any) -> pd.DataFrame:
    rows = max([len(frame), *(row for row, _, _ in cells)])
    columns = max([len(frame.columns), *(column for _, column, _ in cells)])
    frame = frame.astype(object).reindex(index=range(rows), columns=range(columns))
    for row, column, value in cells:
        frame.iat[row - 1, column - 1] = blank if value is None else value
    return frame


def _csv_text(frame: pd.DataFrame, newline: str, trailing_newline: bool) -> str:
    text = frame.to_csv(header=False, index=False, lineterminator=newline)
    if not trailing_newline and text.endswith(newline):
        text = text[: -len(newline)]
    return text


def _write_csv(path: Path, cells: Sequence[tuple[int, int, Any]]) -> str | None:
    """Rewrite a CSV file with ``cells`` changed, keeping its line endings and BOM.

    Returns a reason when pandas also changes bytes outside the edited cells,
    e.g. by dropping redundant quotes or blank lines.
    """
    raw = path.read_bytes()
    has_bom = raw.startswith(codecs.BOM_UTF8)
    original = raw.decode("utf-8-sig")
    newline = "\r\n" if "\r\n" in original else "\n"
    trailing_newline = original.endswith(("\n", "\r"))
    frame = pd.read_csv(io.StringIO(original), header=None, dtype=str, keep_default_na=False)
    untouched = _csv_text(frame, newline, trailing_newline)
    updated = _csv_text(_with_cells(frame, cells, blank=""), newline, trailing_newline)
    with path.open("w", encoding="utf-8-sig" if has_bom else "utf-8", newline="") as handle:
        handle.write(updated)
    if untouched != original:
        return "pandas normalized the CSV layout outside the edited cells"
    return None


def write_cells(
    path: str | Path,
    sheet: str | None,
    updates: Sequence[CellUpdate],
    source_row_indices: Sequence[int | None] | None = None,
    max_rows: int | None = None,
    tail_rows: int | None = None,
    filter_column: str | None = None,
    filter_values: Sequence[Any] | None = None,
) -> WriteResult:
    """Write several cells of one sheet in a single save.

    ``row_index`` of each update is a visible row: it is mapped through
    ``source_row_indices`` when given, otherwise through the same filter
    and window a read with these options would apply.

    Raises:
        WriteFailure: if the file cannot be read or no backend can save it.
    """
    path = Path(path)
    try:
        snapshot = load_snapshot(path)
    except _READ_ERRORS as exc:
        raise WriteFailure(path, exc) from exc
    try:
        target = snapshot.resolve_sheet(sheet)
        if not target.headers:
            raise TableLookupError("Worksheet has no header row")
        candidates = _matching_rows(target, filter_column, filter_values)
        start, end = resolve_window(len(candidates), max_rows, tail_rows)
        cells = []
        for update in updates:
            column = target.column_index(update.column_key)
            source_row = resolve_source_row(update.row_index, start, end - start, source_row_indices)
            if not source_row_indices:
                source_row = candidates[source_row]
            if source_row >= len(target.rows):
                raise TableLookupError(f"Invalid row index: {update.row_index}")
            # header is sheet row 1, data row 0 is sheet row 2
            cells.append((source_row + 2, column + 1, _cell_value(update.value)))
    except TableLookupError as exc:
        return WriteResult(status=Status.KEY_NOT_FOUND, absolute_file_path=str(path), error=str(exc))

    if path.suffix.lower() not in _WORKBOOK_SUFFIXES:
        try:
            reason = _write_csv(path, cells)
        except _READ_ERRORS as exc:
            raise WriteFailure(path, exc) from exc
        logger.info("Wrote %d cell(s) to %s with %s", len(cells), path, COMPATIBILITY_BACKEND)
        if reason:
            logger.warning("%s: %s", path, reason)
            return WriteResult(
                status=Status.FALLBACK_USED,
                absolute_file_path=str(path),
                backend=COMPATIBILITY_BACKEND,
                fallback_reason=reason,
            )
        return WriteResult(status=Status.OK, absolute_file_path=str(path), backend=COMPATIBILITY_BACKEND)

    try:
        _write_with_openpyxl(path, target.name, cells)
    except Exception as rich_error:
        reason = f"{type(rich_error).__name__}: {rich_error}"
        logger.warning("openpyxl could not save %s (%s); retrying with pandas", path, reason)
        try:
            _write_with_pandas(path, target.name, cells)
        except Exception as exc:
            raise WriteFailure(path, f"{reason}; fallback failed: {exc}") from exc
        return WriteResult(
            status=Status.FALLBACK_USED,
            absolute_file_path=str(path),
            backend=COMPATIBILITY_BACKEND,
            fallback_reason=reason,
        )
    logger.info("Wrote %d cell(s) to %s with %s", len(cells), path, RICH_BACKEND)
    return WriteResult(status=Status.OK, absolute_file_path=str(path), backend=RICH_BACKEND)


def write_cell(
    path: str | Path,
    sheet: str | None,
    row_index: int,
    column_key: str,
    value: Any,
    source_row_indices: Sequence[int | None] | None = None,
    max_rows: int | None = None,
    tail_rows: int | None = None,
    filter_column: str | None = None,
    filter_values: Sequence[Any] | None = None,
) -> WriteResult:
    return write_cells(
        path,
        sheet,
        [CellUpdate(row_index=row_index, column_key=column_key, value=value)],
        source_row_indices=source_row_indices,
        max_rows=max_rows,
        tail_rows=tail_rows,
        filter_column=filter_column,
        filter_values=filter_values,
    )


def _cell_kind(value: Any) -> ValueKind:
    if value is None:
        return ValueKind.NIL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int | float):
        return ValueKind.NUMBER
    return ValueKind.STRING


class SpreadsheetAdapter:
    """Paths address ``Sheet``, ``Sheet[row]`` or ``Sheet[row].Column``.

    Row indices are absolute, 0-based data rows (the header is not a row).
    """

    name = "spreadsheet"
    index_base = 0

    def load(self, path: Path) -> ParseResult:
        try:
            return ParseResult(document=load_snapshot(path))
        except _READ_ERRORS as exc:
            return ParseResult(error=f"Cannot read spreadsheet {path}: {exc}")

    def read_table(
        self,
        snapshot: WorkbookSnapshot,
        sheet: str | None = None,
        max_rows: int | None = None,
        tail_rows: int | None = None,
        filter_column: str | None = None,
        filter_values: Sequence[Any] | None = None,
    ) -> TableData:
        return window_table(snapshot.resolve_sheet(sheet), max_rows, tail_rows, filter_column, filter_values)

    def locate_by_path(self, document: WorkbookSnapshot, segments: Sequence[PathSegment]) -> LocateResult:
        if not segments or segments[0].kind is not SegmentKind.KEY:
            return LocateResult(status=Status.INVALID_PATH, error="Path must start with a sheet name")
        try:
            sheet = document.resolve_sheet(str(segments[0].value))
        except TableLookupError as exc:
            return LocateResult(status=Status.KEY_NOT_FOUND, error=str(exc))
        if len(segments) == 1:
            table = window_table(sheet)
            node = ValueNode(kind=ValueKind.TABLE, value=[row.data for row in table.rows], raw_text=sheet.name)
            node._native = _SheetRef(document, sheet)
            return LocateResult(status=Status.OK, node=node)

        row_segment = segments[1]
        if row_segment.kind is not SegmentKind.INDEX or int(row_segment.value) >= len(sheet.rows):
            return LocateResult(status=Status.KEY_NOT_FOUND, error=f"Row '{format_path(segments[:2])}' not found")
        row_index = int(row_segment.value)
        if len(segments) == 2:
            return LocateResult(status=Status.OK, node=ValueNode(kind=ValueKind.TABLE, value=sheet.row_dict(row_index)))

        if len(segments) > 3 or segments[2].kind is SegmentKind.INDEX or str(segments[2].value) not in sheet.headers:
            return LocateResult(status=Status.KEY_NOT_FOUND, error=f"Cell '{format_path(segments)}' not found")
        column_key = str(segments[2].value)
        value = sheet.rows[row_index][sheet.column_index(column_key)]
        node = ValueNode(
            kind=_cell_kind(value),
            value=value,
            raw_text="" if value is None else str(value),
            cell=CellAddress(sheet=sheet.name, row_index=row_index, column_key=column_key),
        )
        return LocateResult(status=Status.OK, node=node)

    def extract_array_rows(self, node: ValueNode) -> list[TableRow] | None:
        ref = node._native
        if not isinstance(ref, _SheetRef):
            return None
        return window_table(ref.sheet).rows
