from pathlib import Path

from config_link.core.ports.adapter import FormatAdapter, TextFormatAdapter

_FORMAT_ALIASES = {
    "csv": "spreadsheet",
    "excel": "spreadsheet",
    "json": "json",
    "jsonc": "json",
    "lua": "lua",
    "sheet": "spreadsheet",
    "spreadsheet": "spreadsheet",
    "xlsm": "spreadsheet",
    "xlsx": "spreadsheet",
}

_EXTENSION_FORMAT_MAP = {
    ".csv": "spreadsheet",
    ".json": "json",
    ".jsonc": "json",
    ".lua": "lua",
    ".xlsm": "spreadsheet",
    ".xlsx": "spreadsheet",
}

_TEXT_FORMATS = frozenset({"json", "lua"})

_SUPPORTED_FORMATS = set(_EXTENSION_FORMAT_MAP.values())


def normalize_format(fmt: str) -> str:
    normalized = fmt.strip().lower()
    resolved = _FORMAT_ALIASES.get(normalized, normalized)
    if resolved not in _SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported format: {fmt}")
    return resolved


def detect_format_from_path(path: str | Path) -> str:
    suffix = Path(path).suffix.lower()
    fmt = _EXTENSION_FORMAT_MAP.get(suffix)
    if fmt is None:
        raise ValueError(f"Unsupported file extension: {suffix or '<none>'}")
    return fmt


def is_supported_path(path: str | Path) -> bool:
    return Path(path).suffix.lower() in _EXTENSION_FORMAT_MAP


def is_text_format(fmt: str) -> bool:
    return fmt in _TEXT_FORMATS


def get_adapter(fmt: str) -> FormatAdapter:
    fmt = normalize_format(fmt)
    if fmt == "lua":
        from config_link.core.lua import LuaAdapter

        return LuaAdapter()
    if fmt == "json":
        from config_link.core.jsonc import JsonAdapter

        return JsonAdapter()
    from config_link.core.spreadsheet import SpreadsheetAdapter

    return SpreadsheetAdapter()


def get_text_adapter(fmt: str) -> TextFormatAdapter:
    adapter = get_adapter(fmt)
    if not isinstance(adapter, TextFormatAdapter):
        raise ValueError(f"Format {fmt} is not a text format")
    return adapter
