import bisect
from pathlib import Path

from lark.exceptions import UnexpectedInput

from config_link.models import Location, SourceRange


class LineIndex:
    """Map character offsets of one source string to line/column positions."""

    def __init__(self, text: str) -> None:
        self._length = len(text)
        self._line_starts = [0]
        start = text.find("\n")
        while start != -1:
            self._line_starts.append(start + 1)
            start = text.find("\n", start + 1)

    def position(self, offset: int) -> tuple[int, int]:
        offset = min(max(offset, 0), self._length)
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return line + 1, offset - self._line_starts[line]

    def location(self, start: int, end: int) -> Location:
        start_line, start_column = self.position(start)
        end_line, end_column = self.position(end)
        return Location(
            start_line=start_line,
            start_column=start_column,
            end_line=end_line,
            end_column=end_column,
        )


def describe_parse_error(exc: UnexpectedInput) -> str:
    line = getattr(exc, "line", -1)
    column = getattr(exc, "column", -1)
    token = getattr(exc, "token", None)
    if not isinstance(line, int) or line < 1:
        return "Unexpected end of input"
    if token is not None and str(token):
        return f"Syntax error at line {line}, column {column}: unexpected {str(token)!r}"
    return f"Syntax error at line {line}, column {column}"


def span(start: int, end: int) -> SourceRange:
    return SourceRange(start=start, end=end)


def read_source(path: str | Path) -> str:
    # newline="" keeps CRLF files byte-identical on write back
    with open(path, encoding="utf-8", newline="") as fh:
        return fh.read()


def write_source(path: str | Path, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(text)
