"""In-process :class:`~firesync.store.base.RemoteStore`.

Useful for tests and for offline prototyping. With ``auto_flush=True``
(default) events and completion callbacks run synchronously inside the
write call; with ``auto_flush=False`` they queue until :meth:`MemoryStore.flush`.
A write's events normally precede its completion callback; ``ack_first=True``
reverses that, as a real server may acknowledge before the echo arrives.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any, Literal

from firesync import _paths
from firesync._pushid import generate_push_id
from firesync.exceptions import FiresyncWriteError
from firesync.snapshot import with_priority
from firesync.store.base import Completion, EventHandler, EventKind, ReadErrorHandler
from firesync.store.tree import EventTree

_logger = logging.getLogger(__name__)

WriteOp = Literal["set", "update", "set_with_priority"]


@dataclass(frozen=True)
class StoreWrite:
    """One write as issued by a client, recorded in :attr:`MemoryStore.writes`."""

    op: WriteOp
    path: str
    value: Any
    priority: Any = None


class MemoryStore:
    """Event-emitting store held entirely in memory."""

    def __init__(
        self,
        data: Any = None,
        *,
        auto_flush: bool = True,
        ack_first: bool = False,
        key_generator: Callable[[], str] = generate_push_id,
    ) -> None:
        self._auto_flush = auto_flush
        self._ack_first = ack_first
        self._held: list[Callable[[], None]] | None = None
        self._queue: deque[Callable[[], None]] = deque()
        self._flushing = False
        self._tree = EventTree(data, deliver=self._deliver)
        self._denied: set[str] = set()
        self._key_generator = key_generator
        self.writes: list[StoreWrite] = []

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(self, fn: Callable[[], None]) -> None:
        if self._held is not None:
            self._held.append(fn)
            return
        self._queue.append(fn)
        if self._auto_flush:
            self.flush()

    def flush(self) -> int:
        """Run queued events and callbacks, including any they enqueue.

        Returns the number of callables run. Re-entrant calls return ``0``;
        the outer flush drains the queue.
        """
        if self._flushing:
            return 0
        self._flushing = True
        count = 0
        try:
            while self._queue:
                fn = self._queue.popleft()
                fn()
                count += 1
        finally:
            self._flushing = False
        return count

    @property
    def pending(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Inspection and rules
    # ------------------------------------------------------------------

    def get(self, path: str = "") -> Any:
        """Export-form value at *path*, bypassing events."""
        return self._tree.get(path)

    def deny(self, path: str) -> None:
        """Reject all further writes at or below *path*."""
        self._denied.add(_paths.normalize(path))

    def allow(self, path: str) -> None:
        self._denied.discard(_paths.normalize(path))

    def _check_writable(self, path: str) -> FiresyncWriteError | None:
        for denied in self._denied:
            if _paths.is_prefix(denied, path):
                return FiresyncWriteError(
                    f"permission denied writing /{_paths.normalize(path)}",
                    path=path,
                    code="permission_denied",
                )
        return None

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    def read(self, path: str, callback: EventHandler, on_error: ReadErrorHandler | None = None) -> None:
        self._deliver(partial(callback, self._tree.snapshot(path)))

    def subscribe(self, path: str, kind: EventKind, handler: EventHandler) -> None:
        self._tree.subscribe(path, kind, handler)

    def unsubscribe(self, path: str, kind: EventKind, handler: EventHandler | None = None) -> None:
        self._tree.unsubscribe(path, kind, handler)

    def write(self, path: str, value: Any, callback: Completion | None = None) -> None:
        self._apply(StoreWrite("set", _paths.normalize(path), value), callback)

    def merge_update(self, path: str, patch: Mapping[str, Any], callback: Completion | None = None) -> None:
        self._apply(StoreWrite("update", _paths.normalize(path), dict(patch)), callback)

    def write_with_priority(
        self,
        path: str,
        value: Any,
        priority: Any,
        callback: Completion | None = None,
    ) -> None:
        self._apply(StoreWrite("set_with_priority", _paths.normalize(path), value, priority), callback)

    def generate_key(self, path: str) -> str:
        return self._key_generator()

    def _apply(self, write: StoreWrite, callback: Completion | None) -> None:
        self.writes.append(write)
        error = self._check_writable(write.path)
        held: list[Callable[[], None]] = []
        if self._ack_first:
            self._held = held
        try:
            if error is not None:
                _logger.warning("Rejected %s at /%s: %s", write.op, write.path, error.code)
            elif write.op == "update":
                self._tree.update(write.path, write.value)
            elif write.op == "set_with_priority":
                self._tree.set(write.path, with_priority(write.value, write.priority))
            else:
                self._tree.set(write.path, write.value)
        finally:
            self._held = None
        if callback is not None:
            self._deliver(partial(callback, error))
        for fn in held:
            self._deliver(fn)
