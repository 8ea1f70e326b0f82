from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from config_link.models import DeclaredType, LocateResult, PathSegment, TableRow, ValueNode


@dataclass(frozen=True)
class ParseResult:
    """Tagged outcome of parsing one source snapshot."""

    document: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class FormatAdapter(Protocol):
    name: str
    index_base: int

    def load(self, path: Path) -> ParseResult: ...

    def locate_by_path(self, document: Any, segments: Sequence[PathSegment]) -> LocateResult: ...

    def extract_array_rows(self, node: ValueNode) -> list[TableRow] | None: ...


@runtime_checkable
class TextFormatAdapter(FormatAdapter, Protocol):
    def parse(self, source: str) -> ParseResult: ...

    def format_value(self, value: Any, declared_type: DeclaredType) -> str: ...
