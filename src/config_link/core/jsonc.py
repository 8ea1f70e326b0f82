import functools
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from config_link.config import get_max_nesting_depth
from config_link.core.errors import NestingTooDeepError
from config_link.core.literals import format_json_value
from config_link.core.paths import format_path
from config_link.core.ports.adapter import ParseResult
from config_link.core.text import LineIndex, describe_parse_error, read_source, span
from config_link.models import (
    DeclaredType,
    LocateResult,
    PathSegment,
    SegmentKind,
    Status,
    TableRow,
    ValueKind,
    ValueNode,
)

logger = logging.getLogger(__name__)

JsonNode = Tree | Token

_SCALAR_KINDS = {
    "STRING": ValueKind.STRING,
    "NUMBER": ValueKind.NUMBER,
    "TRUE": ValueKind.BOOLEAN,
    "FALSE": ValueKind.BOOLEAN,
    "NULL": ValueKind.NIL,
}


@functools.lru_cache(maxsize=1)
def _json_parser() -> Lark:
    grammar = (Path(__file__).parent.parent / "grammars" / "json.lark").read_text(encoding="utf-8")
    return Lark(grammar, start="document", parser="lalr", propagate_positions=True, maybe_placeholders=False)


@dataclass(frozen=True)
class JsonDocument:
    source: str
    root: JsonNode
    lines: LineIndex


@dataclass(frozen=True)
class _NodeRef:
    document: JsonDocument
    node: JsonNode


def node_span(node: JsonNode) -> tuple[int, int]:
    if isinstance(node, Token):
        return node.start_pos, node.end_pos
    return node.meta.start_pos, node.meta.end_pos


def _is_object(node: JsonNode) -> bool:
    return isinstance(node, Tree) and node.data == "object"


def _is_array(node: JsonNode) -> bool:
    return isinstance(node, Tree) and node.data == "array"


def find_member(obj: Tree, key: str) -> JsonNode | None:
    # duplicate keys: the last one wins, as with json.loads
    match: JsonNode | None = None
    for pair in obj.children:
        if json.loads(str(pair.children[0])) == key:
            match = pair.children[1]
    return match


def parse_source(source: str) -> JsonDocument:
    """Parse JSON or JSONC. Raises ``lark.exceptions.UnexpectedInput`` on syntax errors."""
    tree = _json_parser().parse(source)
    return JsonDocument(source=source, root=tree.children[0], lines=LineIndex(source))


class JsonAdapter:
    """Locate and extract values in JSON/JSONC documents.

    Indices are 0-based. When the document root is an object the first path
    segment is one of its keys; for any other root the first segment only
    names the document and lookup starts at the root value.
    """

    name = "json"
    index_base = 0

    def __init__(self, max_depth: int | None = None) -> None:
        self._max_depth = max_depth if max_depth is not None else get_max_nesting_depth()

    def parse(self, source: str) -> ParseResult:
        try:
            return ParseResult(document=parse_source(source))
        except UnexpectedInput as exc:
            return ParseResult(error=describe_parse_error(exc))

    def load(self, path: Path) -> ParseResult:
        try:
            source = read_source(path)
        except (OSError, UnicodeDecodeError) as exc:
            return ParseResult(error=f"Cannot read {path}: {exc}")
        result = self.parse(source)
        if result.ok:
            logger.debug("Parsed %s", path)
        return result

    def format_value(self, value: Any, declared_type: DeclaredType) -> str:
        return format_json_value(value, declared_type)

    def _python_value(self, node: JsonNode, depth: int) -> tuple[ValueKind, Any]:
        if depth > self._max_depth:
            raise NestingTooDeepError(self._max_depth)
        if isinstance(node, Token):
            return _SCALAR_KINDS[node.type], json.loads(str(node))
        if node.data == "object":
            return ValueKind.TABLE, {
                json.loads(str(pair.children[0])): self._python_value(pair.children[1], depth + 1)[1]
                for pair in node.children
            }
        return ValueKind.TABLE, [self._python_value(child, depth + 1)[1] for child in node.children]

    def to_value_node(self, document: JsonDocument, node: JsonNode) -> ValueNode:
        start, end = node_span(node)
        kind, value = self._python_value(node, 0)
        value_node = ValueNode(
            kind=kind,
            value=value,
            source_range=span(start, end),
            location=document.lines.location(start, end),
            raw_text=document.source[start:end],
        )
        value_node._native = _NodeRef(document, node)
        return value_node

    def locate_by_path(self, document: JsonDocument, segments: Sequence[PathSegment]) -> LocateResult:
        if not segments or segments[0].kind is not SegmentKind.KEY:
            return LocateResult(status=Status.INVALID_PATH, error="Path must start with a name")
        node = document.root
        start = 1
        if _is_object(node):
            start = 0
        for i in range(start, len(segments)):
            segment = segments[i]
            child: JsonNode | None = None
            if segment.kind is SegmentKind.INDEX:
                if _is_array(node) and int(segment.value) < len(node.children):
                    child = node.children[int(segment.value)]
            elif _is_object(node):
                child = find_member(node, str(segment.value))
            if child is None:
                return LocateResult(
                    status=Status.KEY_NOT_FOUND,
                    error=f"Key '{format_path(segments[: i + 1])}' not found",
                )
            node = child
        try:
            return LocateResult(status=Status.OK, node=self.to_value_node(document, node))
        except NestingTooDeepError as exc:
            return LocateResult(status=Status.PARSE_ERROR, error=str(exc))

    def extract_array_rows(self, node: ValueNode) -> list[TableRow] | None:
        ref = node._native
        if not isinstance(ref, _NodeRef) or not _is_array(ref.node):
            return None
        elements = ref.node.children
        if not all(_is_object(element) for element in elements):
            return None
        rows: list[TableRow] = []
        for row_index, element in enumerate(elements):
            data: dict[str, Any] = {}
            ranges: dict[str, Any] = {}
            for pair in element.children:
                column = json.loads(str(pair.children[0]))
                data[column] = self._python_value(pair.children[1], 1)[1]
                ranges[column] = span(*node_span(pair.children[1]))
            start, end = node_span(element)
            rows.append(
                TableRow(
                    row_index=row_index,
                    data=data,
                    ranges=ranges,
                    location=ref.document.lines.location(start, end),
                )
            )
        return rows
