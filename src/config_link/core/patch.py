import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from config_link.core.errors import InvalidPathError, TypeMismatchError, WriteFailure
from config_link.core.formats import detect_format_from_path, get_text_adapter, is_text_format
from config_link.core.literals import declared_type_for, format_json_value, format_lua_value, is_compatible
from config_link.core.paths import parse_path
from config_link.core.text import read_source, write_source
from config_link.models import DeclaredType, SourceRange, Status, ValueNode, WriteResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatchResult:
    status: Status
    text: str | None = None
    node: ValueNode | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is Status.OK


def format_value(value: Any, declared_type: DeclaredType | str, fmt: str = "lua") -> str:
    """Serialize ``value`` as a literal of ``fmt`` for the given declared type.

    Raises:
        TypeMismatchError: if ``value`` cannot be expressed as ``declared_type``.
    """
    declared_type = DeclaredType(declared_type)
    if fmt == "json":
        return format_json_value(value, declared_type)
    if fmt == "lua":
        return format_lua_value(value, declared_type)
    raise ValueError(f"Cannot format literals for {fmt}")


def apply_range_patch(source: str, source_range: SourceRange | tuple[int, int], literal: str) -> str:
    """Replace exactly ``source[start:end]`` with ``literal``."""
    if isinstance(source_range, SourceRange):
        start, end = source_range.start, source_range.end
    else:
        start, end = source_range
    if not 0 <= start <= end <= len(source):
        raise ValueError(f"Range [{start}, {end}) is outside a source of length {len(source)}")
    return source[:start] + literal + source[end:]


def patch_source(
    source: str,
    fmt: str,
    path: str,
    value: Any,
    declared_type: DeclaredType | str | None,
) -> PatchResult:
    """Parse, locate, format and splice in one pass over a fresh source string.

    With no ``declared_type`` the value is written as the kind already at ``path``.
    """
    declared_type = DeclaredType(declared_type) if declared_type is not None else None
    adapter = get_text_adapter(fmt)
    try:
        segments = parse_path(path)
    except InvalidPathError as exc:
        return PatchResult(status=Status.INVALID_PATH, error=str(exc))

    parsed = adapter.parse(source)
    if not parsed.ok:
        return PatchResult(status=Status.PARSE_ERROR, error=parsed.error)

    if declared_type is DeclaredType.CODE and hasattr(adapter, "find_function"):
        located = adapter.find_function(parsed.document, segments)
    else:
        located = adapter.locate_by_path(parsed.document, segments)
    if not located.ok:
        return PatchResult(status=located.status, error=located.error)

    node = located.node
    if declared_type is None:
        declared_type = declared_type_for(node.kind, value)
    if not is_compatible(declared_type, node.kind):
        return PatchResult(
            status=Status.TYPE_MISMATCH,
            node=node,
            error=f"Cannot write a {declared_type.value} value over a {node.kind.value} at '{path}'",
        )
    try:
        literal = adapter.format_value(value, declared_type)
    except TypeMismatchError as exc:
        return PatchResult(status=Status.TYPE_MISMATCH, node=node, error=str(exc))
    return PatchResult(status=Status.OK, text=apply_range_patch(source, node.source_range, literal), node=node)


def write_value(
    file_path: str | Path,
    path: str,
    value: Any,
    declared_type: DeclaredType | str | None,
) -> WriteResult:
    """Re-read ``file_path``, patch the value at ``path`` and save the file.

    Raises:
        WriteFailure: on any I/O error while reading or saving.
    """
    file_path = Path(file_path)
    fmt = detect_format_from_path(file_path)
    if not is_text_format(fmt):
        raise ValueError(f"{file_path} is not a text source; write cells through the spreadsheet module")
    try:
        source = read_source(file_path)
    except (OSError, UnicodeDecodeError) as exc:
        raise WriteFailure(file_path, exc) from exc

    result = patch_source(source, fmt, path, value, declared_type)
    if not result.ok:
        return WriteResult(
            status=result.status, absolute_file_path=str(file_path), error=result.error, node=result.node
        )

    try:
        write_source(file_path, result.text)
    except OSError as exc:
        raise WriteFailure(file_path, exc) from exc
    logger.info("Wrote %s in %s", path, file_path)
    return WriteResult(status=Status.OK, absolute_file_path=str(file_path), node=result.node)
