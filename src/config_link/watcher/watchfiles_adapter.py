from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchfiles import awatch

from config_link.core.formats import is_supported_path

if TYPE_CHECKING:
    from config_link.core.linker import Linker

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[set[Path]], Coroutine[Any, Any, None]]


def linked_paths(changes: Iterable[tuple[Any, str]]) -> set[Path]:
    """Keep the changed paths a binding can point at."""
    return {Path(p) for _, p in changes if is_supported_path(p)}


class LinkedFileWatcher:
    """Keep a ``Linker``'s parse cache in step with edits made outside the linker.

    Changed Lua, JSON and spreadsheet files are evicted from the cache before
    ``on_change`` runs, so a callback that re-resolves bindings reads fresh
    values even when the edit kept the old modification time.

    Implements the ``FileWatcherPort`` protocol.
    """

    def __init__(self, directory: str | Path, linker: Linker, on_change: ChangeCallback | None = None) -> None:
        self._directory = Path(directory)
        self._linker = linker
        self._on_change = on_change
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._watch())
        logger.info("Watching %s", self._directory)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Stopped watching %s", self._directory)

    def evict(self, paths: Iterable[Path]) -> int:
        """Drop ``paths`` from the parse cache; returns how many were cached."""
        evicted = 0
        for path in paths:
            if path in self._linker.cache:
                evicted += 1
            self._linker.clear_cache(path)
        return evicted

    async def _watch(self) -> None:
        async for changes in awatch(self._directory):
            paths = linked_paths(changes)
            if not paths:
                continue
            evicted = self.evict(paths)
            logger.info("%d linked file(s) changed, %d cached parse(s) dropped", len(paths), evicted)
            if self._on_change is None:
                continue
            try:
                await self._on_change(paths)
            except Exception:
                logger.exception("Error in watcher callback")
