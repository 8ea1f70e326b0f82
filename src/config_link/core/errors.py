from pathlib import Path


class InvalidPathError(ValueError):
    """Raised when a binding path does not match the path grammar."""


class TypeMismatchError(ValueError):
    """Raised when a value cannot be written as its declared type."""


class NestingTooDeepError(ValueError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Nesting deeper than {limit} levels")
        self.limit = limit


class WriteFailure(Exception):
    def __init__(self, path: str | Path, cause: BaseException | str) -> None:
        super().__init__(f"Failed to write {path}: {cause}")
        self.path = str(path)
        self.cause = cause
