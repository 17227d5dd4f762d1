"""Structural contract between the sync engine and a remote store.

The engine only ever talks to a :class:`RemoteStore`. All calls return
immediately; results arrive through callbacks, possibly after the engine has
already observed the echo of its own write.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any, Protocol

from firesync.exceptions import FiresyncWriteError
from firesync.snapshot import Snapshot


class EventKind(StrEnum):
    VALUE = "value"
    CHILD_ADDED = "child_added"
    CHILD_CHANGED = "child_changed"
    CHILD_REMOVED = "child_removed"
    CHILD_MOVED = "child_moved"


#: Receives the snapshot an event refers to. For ``child_removed`` this is
#: the last value of the removed child.
EventHandler = Callable[[Snapshot], None]

#: ``completion(error)``; ``error`` is ``None`` once the write is acknowledged.
Completion = Callable[[FiresyncWriteError | None], None]

ReadErrorHandler = Callable[[FiresyncWriteError], None]


class RemoteStore(Protocol):
    """Hierarchical, event-emitting key-value store addressed by path."""

    def read(
        self,
        path: str,
        callback: EventHandler,
        on_error: ReadErrorHandler | None = None,
    ) -> None:
        """Deliver the current value at *path* once."""
        ...

    def subscribe(self, path: str, kind: EventKind, handler: EventHandler) -> None:
        ...

    def unsubscribe(self, path: str, kind: EventKind, handler: EventHandler | None = None) -> None:
        ...

    def write(self, path: str, value: Any, callback: Completion | None = None) -> None:
        """Replace the node at *path*; ``None`` deletes it."""
        ...

    def merge_update(self, path: str, patch: Mapping[str, Any], callback: Completion | None = None) -> None:
        """Set only the listed children of *path*; ``None`` values delete."""
        ...

    def write_with_priority(
        self,
        path: str,
        value: Any,
        priority: Any,
        callback: Completion | None = None,
    ) -> None:
        ...

    def generate_key(self, path: str) -> str:
        """Return a new unique child key for *path*."""
        ...
