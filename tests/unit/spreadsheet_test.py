"""Tests for spreadsheet snapshots, windowed tables and cell writes."""

from pathlib import Path

import openpyxl
import pytest

from config_link.config import MAX_TABLE_ROWS_CAP
from config_link.core.errors import WriteFailure
from config_link.core.paths import parse_path
from config_link.core.spreadsheet import (
    COMPATIBILITY_BACKEND,
    RICH_BACKEND,
    SpreadsheetAdapter,
    TableLookupError,
    load_snapshot,
    normalize_headers,
    read_table,
    resolve_source_row,
    resolve_window,
    write_cell,
)
from config_link.models import CellAddress, Status, ValueKind


def _cell(path: Path, sheet: str, coordinate: str) -> object:
    workbook = openpyxl.load_workbook(path)
    try:
        return workbook[sheet][coordinate].value
    finally:
        workbook.close()


class TestResolveWindow:
    @pytest.mark.parametrize(
        ("total", "max_rows", "tail_rows", "expected"),
        [
            (10, None, None, (0, 10)),
            (10, 3, None, (0, 3)),
            (10, None, 4, (6, 10)),
            (10, 2, 4, (6, 8)),
            (3, None, 10, (0, 3)),
            (0, 5, 5, (0, 0)),
            (10, 0, None, (0, 10)),
            (10, -1, -1, (0, 10)),
        ],
    )
    def test_bounds(self, total: int, max_rows: int | None, tail_rows: int | None, expected: tuple[int, int]) -> None:
        assert resolve_window(total, max_rows, tail_rows) == expected

    def test_cap(self) -> None:
        assert resolve_window(5000) == (0, MAX_TABLE_ROWS_CAP)
        assert resolve_window(5000, max_rows=5000) == (0, MAX_TABLE_ROWS_CAP)

    def test_tail_with_cap(self) -> None:
        assert resolve_window(5000, tail_rows=10) == (4990, 5000)


class TestSnapshot:
    def test_headers_are_normalized(self) -> None:
        assert normalize_headers([None, " a ", "", float("nan")]) == ["col_1", "a", "col_3", "col_4"]

    def test_loads_all_sheets(self, workbook_file: Path) -> None:
        snapshot = load_snapshot(workbook_file)
        assert snapshot.sheet_names == ["Items", "Notes"]
        items = snapshot.sheets["Items"]
        assert items.headers == ["id", "name", "level"]
        assert items.rows[0] == [1, "Sword", 1]
        assert len(items.rows) == 5

    def test_sheet_resolution(self, workbook_file: Path) -> None:
        snapshot = load_snapshot(workbook_file)
        assert snapshot.resolve_sheet(None).name == "Items"
        assert snapshot.resolve_sheet("notes").name == "Notes"
        with pytest.raises(TableLookupError):
            snapshot.resolve_sheet("Missing")

    def test_short_rows_are_padded(self, make_workbook) -> None:
        path = make_workbook("ragged.xlsx", {"S": [["a", "b", "c"], [1], [1, 2, 3, 4]]})
        sheet = load_snapshot(path).sheets["S"]
        assert sheet.rows == [[1, None, None], [1, 2, 3]]

    def test_csv(self, csv_file: Path) -> None:
        snapshot = load_snapshot(csv_file)
        assert snapshot.sheet_names == ["items"]
        assert snapshot.sheets["items"].row_dict(3) == {"id": "4", "name": "Axe", "level": "5"}

    def test_csv_cells_keep_their_text(self, tmp_path: Path) -> None:
        path = tmp_path / "codes.csv"
        path.write_text("id,code,name\n1,007,Sword\n,010,Bow\n3,NA,Axe\n", encoding="utf-8")
        sheet = load_snapshot(path).sheets["codes"]
        assert sheet.rows == [["1", "007", "Sword"], [None, "010", "Bow"], ["3", "NA", "Axe"]]

    def test_csv_filter_matches_text(self, tmp_path: Path) -> None:
        path = tmp_path / "codes.csv"
        path.write_text("id,code,name\n1,007,Sword\n,010,Bow\n3,NA,Axe\n", encoding="utf-8")
        table = read_table(path, filter_column="id", filter_values=["1"])
        assert [row.data["name"] for row in table.rows] == ["Sword"]
        write_cell(path, None, 0, "name", "Dagger", filter_column="code", filter_values=["NA"])
        assert path.read_text(encoding="utf-8") == "id,code,name\n1,007,Sword\n,010,Bow\n3,NA,Dagger\n"

    def test_csv_with_only_a_header(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.csv"
        path.write_text("a,b\n", encoding="utf-8")
        sheet = load_snapshot(path).sheets["empty"]
        assert sheet.headers == ["a", "b"]
        assert sheet.rows == []


class TestReadTable:
    def test_default_window(self, workbook_file: Path) -> None:
        table = read_table(workbook_file, "Items")
        assert table.columns == ["id", "name", "level"]
        assert table.source_row_indices == [0, 1, 2, 3, 4]
        assert table.total_rows == 5

    def test_max_rows(self, workbook_file: Path) -> None:
        table = read_table(workbook_file, "Items", max_rows=2)
        assert [row.data["name"] for row in table.rows] == ["Sword", "Shield"]

    def test_tail_rows(self, workbook_file: Path) -> None:
        table = read_table(workbook_file, "Items", tail_rows=2)
        assert table.source_row_indices == [3, 4]
        assert [row.row_index for row in table.rows] == [0, 1]

    def test_filter_before_window(self, workbook_file: Path) -> None:
        table = read_table(workbook_file, "Items", tail_rows=1, filter_column="level", filter_values=["3"])
        assert table.source_row_indices == [2]
        assert table.rows[0].data["name"] == "Bow"
        assert table.total_rows == 2

    def test_ranges_are_cell_addresses(self, workbook_file: Path) -> None:
        table = read_table(workbook_file, "Items", filter_column="name", filter_values=["Axe"])
        assert table.rows[0].ranges["level"] == CellAddress(sheet="Items", row_index=3, column_key="level")

    def test_unknown_filter_column(self, workbook_file: Path) -> None:
        with pytest.raises(TableLookupError):
            read_table(workbook_file, "Items", filter_column="color", filter_values=["red"])


class TestResolveSourceRow:
    def test_window_offset(self) -> None:
        assert resolve_source_row(1, start=3, visible_count=2) == 4

    def test_explicit_mapping(self) -> None:
        assert resolve_source_row(1, 0, 0, source_row_indices=[7, 9]) == 9

    def test_out_of_range(self) -> None:
        with pytest.raises(TableLookupError):
            resolve_source_row(2, 0, 2)

    def test_missing_mapping(self) -> None:
        with pytest.raises(TableLookupError, match="mapping"):
            resolve_source_row(0, 0, 0, source_row_indices=[None, 3])


class TestWriteCell:
    def test_writes_with_openpyxl(self, workbook_file: Path) -> None:
        outcome = write_cell(workbook_file, "Items", 1, "name", "Buckler")
        assert outcome.status is Status.OK
        assert outcome.backend == RICH_BACKEND
        assert _cell(workbook_file, "Items", "B3") == "Buckler"
        assert _cell(workbook_file, "Notes", "A2") == "keep me"

    def test_row_mapped_through_source_indices(self, workbook_file: Path) -> None:
        write_cell(workbook_file, "Items", 0, "level", 10, source_row_indices=[4])
        assert _cell(workbook_file, "Items", "C6") == 10

    def test_row_mapped_through_tail_window(self, workbook_file: Path) -> None:
        write_cell(workbook_file, "Items", 0, "level", 9, tail_rows=2)
        assert _cell(workbook_file, "Items", "C5") == 9

    def test_row_mapped_through_filter(self, workbook_file: Path) -> None:
        write_cell(workbook_file, "Items", 1, "name", "Longbow", filter_column="level", filter_values=["3"])
        assert _cell(workbook_file, "Items", "B4") == "Longbow"
        assert _cell(workbook_file, "Items", "B3") == "Shield"

    def test_blank_value_clears_cell(self, workbook_file: Path) -> None:
        write_cell(workbook_file, "Items", 0, "name", "")
        assert _cell(workbook_file, "Items", "B2") is None

    @pytest.mark.parametrize(
        ("sheet", "row", "column", "message"),
        [
            ("Items", 9, "name", "Invalid row index"),
            ("Items", 0, "color", "Field not found"),
            ("Missing", 0, "name", "Worksheet not found"),
        ],
    )
    def test_lookup_failures(self, workbook_file: Path, sheet: str, row: int, column: str, message: str) -> None:
        outcome = write_cell(workbook_file, sheet, row, column, "x")
        assert outcome.status is Status.KEY_NOT_FOUND
        assert message in outcome.error

    def test_falls_back_when_openpyxl_fails(self, workbook_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def _broken(*args: object) -> None:
            raise RuntimeError("boom")

        monkeypatch.setattr("config_link.core.spreadsheet._write_with_openpyxl", _broken)
        outcome = write_cell(workbook_file, "Items", 1, "name", "Buckler")
        assert outcome.status is Status.FALLBACK_USED
        assert outcome.ok
        assert outcome.backend == COMPATIBILITY_BACKEND
        assert "boom" in outcome.fallback_reason
        assert _cell(workbook_file, "Items", "B3") == "Buckler"
        assert _cell(workbook_file, "Notes", "A2") == "keep me"

    def test_write_failure_when_both_backends_fail(
        self, workbook_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _broken(*args: object) -> None:
            raise OSError("disk full")

        monkeypatch.setattr("config_link.core.spreadsheet._write_with_openpyxl", _broken)
        monkeypatch.setattr("config_link.core.spreadsheet._write_with_pandas", _broken)
        with pytest.raises(WriteFailure):
            write_cell(workbook_file, "Items", 0, "name", "x")

    def test_csv_uses_compatibility_backend(self, csv_file: Path) -> None:
        outcome = write_cell(csv_file, None, 0, "name", "Dagger")
        assert outcome.status is Status.OK
        assert outcome.backend == COMPATIBILITY_BACKEND
        table = read_table(csv_file)
        assert table.rows[0].data["name"] == "Dagger"
        assert table.rows[1].data["name"] == "Shield"

    def test_csv_line_endings_are_kept(self, tmp_path: Path) -> None:
        path = tmp_path / "prices.csv"
        path.write_bytes(b'id,name,price\r\n1,"Sword, long",1.50\r\n2,Bow,007\r\n')
        outcome = write_cell(path, None, 1, "name", "Axe")
        assert outcome.status is Status.OK
        assert path.read_bytes() == b'id,name,price\r\n1,"Sword, long",1.50\r\n2,Axe,007\r\n'

    def test_csv_without_trailing_newline(self, tmp_path: Path) -> None:
        path = tmp_path / "short.csv"
        path.write_bytes(b"a,b\n1,2")
        write_cell(path, None, 0, "b", 3)
        assert path.read_bytes() == b"a,b\n1,3"

    def test_csv_layout_change_is_reported(self, tmp_path: Path) -> None:
        path = tmp_path / "quoted.csv"
        path.write_bytes(b'"a","b"\n1,2\n')
        outcome = write_cell(path, None, 0, "b", 3)
        assert outcome.status is Status.FALLBACK_USED
        assert outcome.fallback_reason
        assert path.read_bytes() == b"a,b\n1,3\n"

    def test_unreadable_workbook(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"not a workbook")
        with pytest.raises(WriteFailure):
            write_cell(path, None, 0, "a", 1)


class TestSpreadsheetAdapter:
    def test_sheet_node(self, workbook_file: Path) -> None:
        adapter = SpreadsheetAdapter()
        snapshot = adapter.load(workbook_file).document
        result = adapter.locate_by_path(snapshot, parse_path("Items"))
        assert result.node.kind is ValueKind.TABLE
        rows = adapter.extract_array_rows(result.node)
        assert len(rows) == 5

    def test_cell_node(self, workbook_file: Path) -> None:
        adapter = SpreadsheetAdapter()
        snapshot = adapter.load(workbook_file).document
        node = adapter.locate_by_path(snapshot, parse_path("Items[1].name")).node
        assert (node.kind, node.value) == (ValueKind.STRING, "Shield")
        assert node.cell == CellAddress(sheet="Items", row_index=1, column_key="name")
        assert adapter.extract_array_rows(node) is None

    def test_row_node(self, workbook_file: Path) -> None:
        adapter = SpreadsheetAdapter()
        snapshot = adapter.load(workbook_file).document
        node = adapter.locate_by_path(snapshot, parse_path("Items[0]")).node
        assert node.value == {"id": 1, "name": "Sword", "level": 1}

    @pytest.mark.parametrize("path", ["Missing", "Items[5]", "Items[0].color", "Items.name"])
    def test_not_found(self, workbook_file: Path, path: str) -> None:
        adapter = SpreadsheetAdapter()
        snapshot = adapter.load(workbook_file).document
        assert adapter.locate_by_path(snapshot, parse_path(path)).status is Status.KEY_NOT_FOUND

    def test_unreadable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"not a workbook")
        parsed = SpreadsheetAdapter().load(path)
        assert not parsed.ok
