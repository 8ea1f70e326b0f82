import functools
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from config_link.core.errors import InvalidPathError
from config_link.models import PathSegment, SegmentKind

_IDENTIFIER = re.compile(r"^[^\W\d]\w*$")
_ESCAPE = re.compile(r"\\(.)", re.DOTALL)


@functools.lru_cache(maxsize=1)
def _path_parser() -> Lark:
    grammar = (Path(__file__).parent.parent / "grammars" / "path.lark").read_text(encoding="utf-8")
    return Lark(grammar, start="path", parser="lalr", maybe_placeholders=False)


@dataclass(frozen=True)
class PathParseResult:
    segments: list[PathSegment] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _unquote(token: str) -> str:
    return _ESCAPE.sub(lambda m: m.group(1), token[1:-1])


def _to_segment(node: Tree | Token) -> PathSegment:
    if isinstance(node, Token):
        return PathSegment(kind=SegmentKind.KEY, value=str(node))
    token = node.children[0]
    if node.data == "key":
        return PathSegment(kind=SegmentKind.KEY, value=str(token))
    if node.data == "index":
        return PathSegment(kind=SegmentKind.INDEX, value=int(token))
    return PathSegment(kind=SegmentKind.STRING_KEY, value=_unquote(str(token)))


def parse_path(text: str) -> list[PathSegment]:
    """Split a binding path such as ``Items[2]["display name"]`` into segments.

    Raises:
        InvalidPathError: if ``text`` does not match the path grammar.
    """
    stripped = text.strip()
    if not stripped:
        raise InvalidPathError("Path is empty")
    try:
        tree = _path_parser().parse(stripped)
    except UnexpectedInput as exc:
        raise InvalidPathError(f"Invalid path {text!r} at column {exc.column}") from None
    return [_to_segment(child) for child in tree.children]


def try_parse_path(text: str) -> PathParseResult:
    try:
        return PathParseResult(segments=parse_path(text))
    except InvalidPathError as exc:
        return PathParseResult(error=str(exc))


def format_path(segments: Sequence[PathSegment]) -> str:
    parts: list[str] = []
    for i, segment in enumerate(segments):
        if segment.kind is SegmentKind.INDEX:
            parts.append(f"[{segment.value}]")
        elif segment.kind is SegmentKind.KEY and _IDENTIFIER.match(str(segment.value)):
            parts.append(str(segment.value) if i == 0 else f".{segment.value}")
        else:
            escaped = str(segment.value).replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'["{escaped}"]')
    return "".join(parts)


def child_path(path: str, index: int, column: str | None = None) -> str:
    """Append an element index and optionally a column key to ``path``."""
    segments = [*parse_path(path), PathSegment(kind=SegmentKind.INDEX, value=index)]
    if column is not None:
        kind = SegmentKind.KEY if _IDENTIFIER.match(column) else SegmentKind.STRING_KEY
        segments.append(PathSegment(kind=kind, value=column))
    return format_path(segments)
