from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator


class Status(str, Enum):
    OK = "ok"
    FILE_NOT_FOUND = "file-not-found"
    PARSE_ERROR = "parse-error"
    KEY_NOT_FOUND = "key-not-found"
    INVALID_PATH = "invalid-path"
    TYPE_MISMATCH = "type-mismatch"
    WRITE_FAILURE = "write-failure"
    FALLBACK_USED = "fallback-used"


class SegmentKind(str, Enum):
    KEY = "key"
    INDEX = "index"
    STRING_KEY = "string-key"


class ValueKind(str, Enum):
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NIL = "nil"
    TABLE = "table"
    FUNCTION = "function"
    EXPRESSION = "expression"


class DeclaredType(str, Enum):
    NUMBER = "number"
    SLIDER = "slider"
    STRING = "string"
    BOOLEAN = "boolean"
    SELECT = "select"
    COLOR = "color"
    ARRAY = "array"
    TABLE = "table"
    CODE = "code"


class PathSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SegmentKind
    value: str | int


class SourceRange(BaseModel):
    """Half-open ``[start, end)`` character offsets into a parsed source string."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "SourceRange":
        if self.end < self.start:
            raise ValueError(f"range end {self.end} precedes start {self.start}")
        return self


class Location(BaseModel):
    """Lines are 1-based, columns are 0-based character columns."""

    model_config = ConfigDict(frozen=True)

    start_line: int
    start_column: int
    end_line: int
    end_column: int


class CellAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    sheet: str
    row_index: int
    column_key: str


class ValueNode(BaseModel):
    """A located value.

    Only valid against the source snapshot that produced it. The adapter keeps
    its own native node in a private attribute so rows can be extracted later.
    """

    kind: ValueKind
    value: Any = None
    source_range: SourceRange | None = None
    location: Location | None = None
    raw_text: str = ""
    cell: CellAddress | None = None

    _native: Any = PrivateAttr(default=None)


class TableRow(BaseModel):
    row_index: int
    data: dict[str, Any]
    ranges: dict[str, SourceRange | CellAddress]
    location: Location | None = None


class TableData(BaseModel):
    columns: list[str]
    rows: list[TableRow]
    source_row_indices: list[int] | None = None
    total_rows: int | None = None


class BindingDescriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file: str
    path: str = Field(alias="key")
    declared_type: DeclaredType = Field(alias="type")
    label: str | None = None
    min: float | None = None
    max: float | None = None
    step: float | None = None
    unit: str | None = None
    options: list[Any] | None = None
    readonly: bool = False
    columns: list[str] | None = None
    max_rows: int | None = None
    tail_rows: int | None = None
    filter_column: str | None = None
    filter_values: list[str] | None = None
    start_line: int | None = None
    end_line: int | None = None


class ResolvedBinding(BindingDescriptor):
    status: Status
    absolute_file_path: str
    current_value: Any = None
    node: ValueNode | None = None
    error: str | None = None
    table: TableData | None = None

    @property
    def ok(self) -> bool:
        return self.status is Status.OK


class LocateResult(BaseModel):
    status: Status
    node: ValueNode | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is Status.OK


class WriteResult(BaseModel):
    status: Status
    absolute_file_path: str
    error: str | None = None
    node: ValueNode | None = None
    backend: str | None = None
    fallback_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (Status.OK, Status.FALLBACK_USED)
