import functools
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from config_link.config import get_max_nesting_depth
from config_link.core.errors import NestingTooDeepError
from config_link.core.literals import format_lua_value
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

LuaNode = Tree | Token

_NO_KEY = object()

_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "\n": "\n",
}

_ESCAPE = re.compile(
    r"\\(?:(?P<dec>[0-9]{1,3})|x(?P<hex>[0-9a-fA-F]{2})|u\{(?P<uni>[0-9a-fA-F]+)\}|(?P<skip>z\s*)|\r\n?|(?P<ch>[\s\S]))"
)
_LONG_BRACKET_OPEN = re.compile(r"^\[(=*)\[")


@functools.lru_cache(maxsize=1)
def _lua_parser() -> Lark:
    grammar = (Path(__file__).parent.parent / "grammars" / "lua.lark").read_text(encoding="utf-8")
    return Lark(grammar, start="chunk", parser="lalr", propagate_positions=True, maybe_placeholders=False)


@dataclass(frozen=True)
class RootBinding:
    name: str
    value: LuaNode


@dataclass(frozen=True)
class FunctionDefinition:
    names: tuple[str, ...]
    node: LuaNode


@dataclass(frozen=True)
class LuaDocument:
    source: str
    tree: Tree
    lines: LineIndex
    bindings: list[RootBinding] = field(default_factory=list)
    functions: list[FunctionDefinition] = field(default_factory=list)

    def find_binding(self, name: str) -> RootBinding | None:
        # later top-level assignments shadow earlier ones
        for binding in reversed(self.bindings):
            if binding.name == name:
                return binding
        return None

    def find_function(self, names: Sequence[str]) -> FunctionDefinition | None:
        wanted = tuple(names)
        for definition in reversed(self.functions):
            if definition.names == wanted:
                return definition
        return None


@dataclass(frozen=True)
class _NodeRef:
    document: LuaDocument
    node: LuaNode


def node_span(node: LuaNode) -> tuple[int, int]:
    if isinstance(node, Token):
        return node.start_pos, node.end_pos
    return node.meta.start_pos, node.meta.end_pos


def decode_string(raw: str) -> str:
    """Decode a Lua string literal, quoted or long-bracketed."""
    opening = _LONG_BRACKET_OPEN.match(raw)
    if opening:
        width = len(opening.group(0))
        body = raw[width:-width]
        # a newline right after the opening bracket is not part of the string
        if body.startswith("\r\n"):
            return body[2:]
        if body.startswith("\n"):
            return body[1:]
        return body
    return _ESCAPE.sub(_replace_escape, raw[1:-1])


def _replace_escape(match: re.Match[str]) -> str:
    if match.group("dec") is not None:
        return chr(int(match.group("dec")))
    if match.group("hex") is not None:
        return chr(int(match.group("hex"), 16))
    if match.group("uni") is not None:
        return chr(int(match.group("uni"), 16))
    if match.group("skip") is not None:
        return ""
    ch = match.group("ch")
    if ch is None:
        return "\n"
    return _SIMPLE_ESCAPES.get(ch, ch)


def parse_number(text: str) -> int | float:
    lowered = text.lower()
    if lowered.startswith("0x"):
        if "." in lowered or "p" in lowered:
            return float.fromhex(text)
        return int(text, 16)
    if "." in lowered or "e" in lowered:
        return float(text)
    return int(text)


def _tree_children(node: LuaNode, data: str) -> list[Tree]:
    if isinstance(node, Token):
        return []
    return [child for child in node.children if isinstance(child, Tree) and child.data == data]


def _statements(tree: Tree) -> list[Tree]:
    block = tree.children[0] if tree.children else None
    if not isinstance(block, Tree):
        return []
    return [child for child in block.children if isinstance(child, Tree)]


def _is_table(node: LuaNode) -> bool:
    return isinstance(node, Tree) and node.data == "table"


def table_fields(node: Tree) -> list[Tree]:
    if not node.children:
        return []
    field_list = node.children[0]
    return [child for child in field_list.children if isinstance(child, Tree)]


def _target_names(node: Tree) -> list[str] | None:
    if node.data in ("name_target", "s_name"):
        return [str(node.children[0])]
    if node.data in ("field_target", "s_field"):
        base = node.children[0]
        prefix = _target_names(base) if isinstance(base, Tree) else None
        if prefix is None:
            return None
        return [*prefix, str(node.children[1])]
    return None


def _function_names(func_name: Tree) -> tuple[str, ...]:
    names: list[str] = []
    for child in func_name.children:
        if isinstance(child, Token):
            names.append(str(child))
        elif child.data == "method_name":
            names.append(str(child.children[0]))
    return tuple(names)


def _collect(tree: Tree) -> tuple[list[RootBinding], list[FunctionDefinition]]:
    bindings: list[RootBinding] = []
    functions: list[FunctionDefinition] = []
    for statement in _statements(tree):
        if statement.data == "local_stat":
            names = _tree_children(statement, "att_name")
            exp_lists = _tree_children(statement, "exp_list")
            values = exp_lists[0].children if exp_lists else []
            for att_name, value in zip(names, values):
                name = str(att_name.children[0])
                bindings.append(RootBinding(name=name, value=value))
                if isinstance(value, Tree) and value.data == "function_def":
                    functions.append(FunctionDefinition(names=(name,), node=statement))
        elif statement.data == "assignment":
            *targets, exp_list = statement.children
            for target, value in zip(targets, exp_list.children):
                target_names = _target_names(target)
                if target.data == "name_target":
                    bindings.append(RootBinding(name=target_names[0], value=value))
                if target_names and isinstance(value, Tree) and value.data == "function_def":
                    functions.append(FunctionDefinition(names=tuple(target_names), node=statement))
        elif statement.data == "function_decl":
            functions.append(FunctionDefinition(names=_function_names(statement.children[0]), node=statement))
        elif statement.data == "local_function":
            functions.append(FunctionDefinition(names=(str(statement.children[0]),), node=statement))
    return bindings, functions


def parse_source(source: str) -> LuaDocument:
    """Parse a Lua chunk. Raises ``lark.exceptions.UnexpectedInput`` on syntax errors."""
    tree = _lua_parser().parse(source)
    bindings, functions = _collect(tree)
    return LuaDocument(source=source, tree=tree, lines=LineIndex(source), bindings=bindings, functions=functions)


def _literal_key(node: LuaNode) -> Any:
    if isinstance(node, Token):
        if node.type == "STRING":
            return decode_string(str(node))
        if node.type == "NUMBER":
            return parse_number(str(node))
        if node.type in ("TRUE", "FALSE"):
            return node.type == "TRUE"
        return _NO_KEY
    if node.data == "negate" and isinstance(node.children[0], Token) and node.children[0].type == "NUMBER":
        return -parse_number(str(node.children[0]))
    return _NO_KEY


def _matches_index(key: Any, index: int) -> bool:
    return isinstance(key, int | float) and not isinstance(key, bool) and key == index


def find_field(table: Tree, segment: PathSegment) -> LuaNode | None:
    """Return the value of the last field in ``table`` matching ``segment``."""
    match: LuaNode | None = None
    position = 0
    for entry in table_fields(table):
        if entry.data == "positional_field":
            position += 1
            if segment.kind is SegmentKind.INDEX and position == segment.value:
                match = entry.children[0]
        elif entry.data == "named_field":
            if segment.kind is not SegmentKind.INDEX and str(entry.children[0]) == segment.value:
                match = entry.children[1]
        else:
            key = _literal_key(entry.children[0])
            if segment.kind is SegmentKind.INDEX:
                if _matches_index(key, int(segment.value)):
                    match = entry.children[1]
            elif isinstance(key, str) and key == segment.value:
                match = entry.children[1]
    return match


class LuaAdapter:
    """Locate and extract values in Lua sources.

    Indices are 1-based. Positional elements are counted separately from
    explicit ``[n] = v`` fields; both can satisfy an index segment, and the
    field written last in the constructor wins.
    """

    name = "lua"
    index_base = 1

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
            logger.debug("Parsed %s (%d root bindings)", path, len(result.document.bindings))
        return result

    def format_value(self, value: Any, declared_type: DeclaredType) -> str:
        return format_lua_value(value, declared_type)

    # -- values ---------------------------------------------------------------

    def _python_value(self, source: str, node: LuaNode, depth: int) -> tuple[ValueKind, Any]:
        if depth > self._max_depth:
            raise NestingTooDeepError(self._max_depth)
        if isinstance(node, Token):
            if node.type == "NUMBER":
                return ValueKind.NUMBER, parse_number(str(node))
            if node.type == "STRING":
                return ValueKind.STRING, decode_string(str(node))
            if node.type in ("TRUE", "FALSE"):
                return ValueKind.BOOLEAN, node.type == "TRUE"
            if node.type == "NIL":
                return ValueKind.NIL, None
            return ValueKind.EXPRESSION, str(node)
        if node.data == "negate":
            operand = node.children[0]
            if isinstance(operand, Token) and operand.type == "NUMBER":
                return ValueKind.NUMBER, -parse_number(str(operand))
        if node.data == "table":
            return ValueKind.TABLE, self._table_value(source, node, depth + 1)
        start, end = node_span(node)
        if node.data == "function_def":
            return ValueKind.FUNCTION, source[start:end]
        return ValueKind.EXPRESSION, source[start:end]

    def _table_value(self, source: str, node: Tree, depth: int) -> list[Any] | dict[Any, Any]:
        entries = table_fields(node)
        if all(entry.data == "positional_field" for entry in entries):
            return [self._python_value(source, entry.children[0], depth)[1] for entry in entries]
        result: dict[Any, Any] = {}
        position = 0
        for entry in entries:
            if entry.data == "positional_field":
                position += 1
                result[position] = self._python_value(source, entry.children[0], depth)[1]
            elif entry.data == "named_field":
                result[str(entry.children[0])] = self._python_value(source, entry.children[1], depth)[1]
            else:
                key = _literal_key(entry.children[0])
                if key is _NO_KEY:
                    continue
                result[key] = self._python_value(source, entry.children[1], depth)[1]
        return result

    def to_value_node(self, document: LuaDocument, node: LuaNode, kind: ValueKind | None = None) -> ValueNode:
        start, end = node_span(node)
        raw_text = document.source[start:end]
        if kind is None:
            kind, value = self._python_value(document.source, node, 0)
        else:
            value = raw_text
        value_node = ValueNode(
            kind=kind,
            value=value,
            source_range=span(start, end),
            location=document.lines.location(start, end),
            raw_text=raw_text,
        )
        value_node._native = _NodeRef(document, node)
        return value_node

    # -- lookup ---------------------------------------------------------------

    def _resolve(self, document: LuaDocument, segments: Sequence[PathSegment]) -> tuple[LuaNode | None, str | None]:
        root_name = str(segments[0].value)
        binding = document.find_binding(root_name)
        if binding is None:
            return None, f"Variable '{root_name}' not found"
        node = binding.value
        for i in range(1, len(segments)):
            if not _is_table(node):
                return None, f"'{format_path(segments[:i])}' is not a table"
            child = find_field(node, segments[i])
            if child is None:
                return None, f"Key '{format_path(segments[: i + 1])}' not found"
            node = child
        return node, None

    def locate_by_path(self, document: LuaDocument, segments: Sequence[PathSegment]) -> LocateResult:
        if not segments or segments[0].kind is not SegmentKind.KEY:
            return LocateResult(status=Status.INVALID_PATH, error="Path must start with a variable name")
        node, error = self._resolve(document, segments)
        if node is None:
            return LocateResult(status=Status.KEY_NOT_FOUND, error=error)
        try:
            return LocateResult(status=Status.OK, node=self.to_value_node(document, node))
        except NestingTooDeepError as exc:
            return LocateResult(status=Status.PARSE_ERROR, error=str(exc))

    def find_function(self, document: LuaDocument, segments: Sequence[PathSegment]) -> LocateResult:
        """Locate a function definition by its dotted name.

        Declarations such as ``function A.B()``, ``function A:B()``,
        ``A.B = function() end`` and ``local function f()`` cover the whole
        statement. Functions stored in table fields cover the function body.
        """
        if not segments or segments[0].kind is not SegmentKind.KEY:
            return LocateResult(status=Status.INVALID_PATH, error="Path must start with a variable name")
        if all(segment.kind is not SegmentKind.INDEX for segment in segments):
            definition = document.find_function([str(segment.value) for segment in segments])
            if definition is not None:
                node = self.to_value_node(document, definition.node, kind=ValueKind.FUNCTION)
                return LocateResult(status=Status.OK, node=node)
        node, error = self._resolve(document, segments)
        if node is None or not (isinstance(node, Tree) and node.data == "function_def"):
            return LocateResult(
                status=Status.KEY_NOT_FOUND,
                error=error or f"Function '{format_path(segments)}' not found",
            )
        return LocateResult(status=Status.OK, node=self.to_value_node(document, node, kind=ValueKind.FUNCTION))

    # -- tables ---------------------------------------------------------------

    def extract_array_rows(self, node: ValueNode) -> list[TableRow] | None:
        ref = node._native
        if not isinstance(ref, _NodeRef) or not _is_table(ref.node):
            return None
        document = ref.document
        entries = table_fields(ref.node)
        if any(entry.data != "positional_field" or not _is_table(entry.children[0]) for entry in entries):
            return None
        rows: list[TableRow] = []
        for row_index, entry in enumerate(entries):
            element = entry.children[0]
            data: dict[str, Any] = {}
            ranges: dict[str, Any] = {}
            for cell in table_fields(element):
                if cell.data == "named_field":
                    column = str(cell.children[0])
                elif cell.data == "keyed_field":
                    key = _literal_key(cell.children[0])
                    if not isinstance(key, str):
                        continue
                    column = key
                else:
                    continue
                value_node = cell.children[1]
                data[column] = self._python_value(document.source, value_node, 1)[1]
                ranges[column] = span(*node_span(value_node))
            start, end = node_span(element)
            rows.append(
                TableRow(row_index=row_index, data=data, ranges=ranges, location=document.lines.location(start, end))
            )
        return rows
