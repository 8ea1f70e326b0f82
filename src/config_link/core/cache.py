import logging
import os
from dataclasses import dataclass
from pathlib import Path

from config_link.core.formats import detect_format_from_path, get_adapter
from config_link.core.ports.adapter import ParseResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseCacheEntry:
    absolute_path: str
    mtime_ns: int
    fmt: str
    result: ParseResult


class ParseCache:
    """Parsed documents keyed by absolute path and validated by modification time.

    A file is parsed at most once per ``(path, mtime)``; failed parses are
    cached as well. Not thread-safe: callers serialize access per file.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ParseCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str | Path) and _key(path) in self._entries

    def get_or_parse(self, path: str | Path) -> ParseCacheEntry:
        """Return the cached entry for ``path``, reparsing when the file changed.

        Raises:
            FileNotFoundError: if ``path`` does not exist.
            ValueError: if the extension is not supported.
        """
        key = _key(path)
        mtime_ns = os.stat(key).st_mtime_ns
        entry = self._entries.get(key)
        if entry is not None and entry.mtime_ns == mtime_ns:
            logger.debug("Parse cache hit for %s", key)
            return entry

        fmt = detect_format_from_path(key)
        result = get_adapter(fmt).load(Path(key))
        entry = ParseCacheEntry(absolute_path=key, mtime_ns=mtime_ns, fmt=fmt, result=result)
        self._entries[key] = entry
        logger.debug("Parsed %s (ok=%s)", key, result.ok)
        return entry

    def clear(self, path: str | Path | None = None) -> None:
        if path is None:
            self._entries.clear()
            return
        self._entries.pop(_key(path), None)


def _key(path: str | Path) -> str:
    return str(Path(path).resolve())
