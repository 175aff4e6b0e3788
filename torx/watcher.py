"""
watcher.py

Responsibility: turn filesystem changes under a folder into ChangeEvents for
template sources.

Rules:
- Only direct children of the folder are reported unless recursive=True.
- Non-template paths are dropped; every remaining change in a batch is yielded.
- Any failure of the event source ends the stream as WatchSubscriptionError.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Iterable

from watchfiles import Change, awatch

from torx.discovery import is_template_path

ChangeBatch = Iterable[tuple[Change, str]]


class WatchSubscriptionError(RuntimeError):
    pass


class ChangeKind(enum.Enum):
    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


_KINDS = {
    Change.added: ChangeKind.ADDED,
    Change.deleted: ChangeKind.REMOVED,
    Change.modified: ChangeKind.CHANGED,
}


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    path: Path


class ChangeWatcher:
    """Async stream of template ChangeEvents for one folder"""

    def __init__(
        self,
        folder: str | Path,
        *,
        recursive: bool = False,
        source: AsyncIterable[ChangeBatch] | None = None,
    ) -> None:
        self.folder = Path(folder)
        self.recursive = recursive
        self._source = source
        self._stop = asyncio.Event()
        self._closed = False

    def close(self) -> None:
        """Stop the stream; iteration ends at the next batch boundary"""
        self._closed = True
        self._stop.set()

    def _subscribe(self) -> AsyncIterable[ChangeBatch]:
        if self._source is not None:
            return self._source
        if not self.folder.is_dir():
            raise WatchSubscriptionError(f"Cannot watch {self.folder}: not a directory")
        return awatch(self.folder, stop_event=self._stop, recursive=self.recursive)

    def _accept(self, path: Path) -> bool:
        if not is_template_path(path):
            return False
        if self.recursive:
            return True
        return path.parent.resolve() == self.folder.resolve()

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[ChangeEvent]:
        """
        Yield one ChangeEvent per template change, in path order within a batch.
        Raises WatchSubscriptionError if the underlying source fails.
        """
        batches = self._subscribe().__aiter__()
        while not self._closed:
            try:
                batch = await batches.__anext__()
            except StopAsyncIteration:
                return
            except Exception as e:  # noqa: BLE001 - any source failure ends the subscription
                raise WatchSubscriptionError(f"Watching {self.folder} failed: {e}") from e

            for change, raw_path in sorted(batch, key=lambda c: c[1]):
                path = Path(raw_path)
                if change in _KINDS and self._accept(path):
                    yield ChangeEvent(_KINDS[change], path)
