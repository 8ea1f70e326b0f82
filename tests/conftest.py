"""Shared fixtures and helpers for tests."""

from pathlib import Path

import openpyxl
import pytest

from config_link.core.linker import Linker

_REPO_ROOT = Path(__file__).parent.parent


# ---------------------------------------------------------------------------
# Auto-marker: tag tests as "unit" or "integration" based on directory
# ---------------------------------------------------------------------------


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        test_path = Path(str(item.fspath))
        rel = test_path.relative_to(_REPO_ROOT / "tests")
        parts = rel.parts
        if parts and parts[0] == "integration":
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# ---------------------------------------------------------------------------
# Sample sources
# ---------------------------------------------------------------------------

SAMPLE_LUA = """\
-- Game tuning
Config = {
    HP = 100, -- starting health
    Name = "Hero",
    Debug = false,
    Speed = 1.5,
    Items = {
        { id = 1, name = "Sword", price = 250 },
        { id = 2, name = "Shield", price = 120 },
    },
    Tags = { "fast", "strong" },
    ["display name"] = "The Hero",
}

function Config.OnLoad(player)
    print(player.name)
end
"""

SAMPLE_JSON = """\
{
    // server settings
    "server": { "port": 8080, "host": "localhost" },
    "features": ["chat", "trade"],
    "items": [
        { "id": 1, "name": "Sword" },
        { "id": 2, "name": "Bow" },
    ],
}
"""

SHEET_HEADERS = ["id", "name", "level"]
SHEET_ROWS = [
    [1, "Sword", 1],
    [2, "Shield", 3],
    [3, "Bow", 3],
    [4, "Axe", 5],
    [5, "Staff", 7],
]


@pytest.fixture
def lua_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.lua"
    path.write_text(SAMPLE_LUA, encoding="utf-8")
    return path


@pytest.fixture
def json_file(tmp_path: Path) -> Path:
    path = tmp_path / "settings.jsonc"
    path.write_text(SAMPLE_JSON, encoding="utf-8")
    return path


def build_workbook(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    """Write ``sheets`` (name -> rows including the header) to an xlsx file."""
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        worksheet = workbook.create_sheet(name)
        for row in rows:
            worksheet.append(row)
    workbook.save(path)
    return path


@pytest.fixture
def workbook_file(tmp_path: Path) -> Path:
    return build_workbook(
        tmp_path / "items.xlsx",
        {
            "Items": [SHEET_HEADERS, *SHEET_ROWS],
            "Notes": [["note"], ["keep me"]],
        },
    )


@pytest.fixture
def csv_file(tmp_path: Path) -> Path:
    path = tmp_path / "items.csv"
    lines = [",".join(SHEET_HEADERS)] + [",".join(str(v) for v in row) for row in SHEET_ROWS]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def linker() -> Linker:
    return Linker()


@pytest.fixture
def make_workbook(tmp_path: Path):
    def _make(name: str, sheets: dict[str, list[list[object]]]) -> Path:
        return build_workbook(tmp_path / name, sheets)

    return _make
