from typing import Protocol


class FileWatcherPort(Protocol):
    """Background watch over a directory of linked source files."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...
