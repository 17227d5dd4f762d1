"""Echo suppression.

Two mechanisms keep local and remote mutations from re-triggering each
other:

* :func:`applying_remote` marks a record while a remote value is being
  applied, so the resulting local ``change`` is not pushed back.
* :class:`EchoSuppressor` remembers silent local adds/removes by identifier
  so the matching remote echo is applied without a second notification.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from enum import StrEnum
from typing import Any

from firesync.local.model import Model

_logger = logging.getLogger(__name__)


@contextmanager
def applying_remote(record: Model) -> Iterator[Model]:
    """Hold ``record.remote_changing`` for the duration of the block.

    The previous value is restored on exit, so nested applications leave the
    flag set until the outermost one finishes. The block must not yield to
    the event loop.
    """
    previous = record.remote_changing
    record.remote_changing = True
    try:
        yield record
    finally:
        record.remote_changing = previous


def remember_snapshot(record: Model, snapshot: Any) -> None:
    """Store the diff baseline for *record*."""
    record._remote_snapshot = snapshot  # noqa: SLF001


class EchoKind(StrEnum):
    ADD = "add"
    REMOVE = "remove"


class EchoSuppressor:
    """Pending echo expectations keyed by operation and identifier.

    Each :meth:`expect` is matched by exactly one :meth:`consume` for the
    same ``(kind, key)``, so concurrent batches cannot steal each other's
    suppression.
    """

    def __init__(self) -> None:
        self._pending: Counter[tuple[EchoKind, str]] = Counter()

    def __len__(self) -> int:
        return sum(self._pending.values())

    @property
    def pending(self) -> bool:
        return bool(self._pending)

    def expect(self, kind: EchoKind, key: str) -> None:
        self._pending[(kind, key)] += 1
        _logger.debug("Expecting %s echo for %s", kind, key)

    def expects(self, kind: EchoKind, key: str) -> bool:
        return self._pending[(kind, key)] > 0

    def consume(self, kind: EchoKind, key: str) -> bool:
        """Return ``True`` (and forget it) if an echo was expected."""
        entry = (kind, key)
        if not self._pending[entry]:
            return False
        self._pending[entry] -= 1
        if not self._pending[entry]:
            del self._pending[entry]
        return True

    def discard(self, kind: EchoKind, key: str) -> None:
        """Drop one expectation, e.g. when its write failed."""
        self.consume(kind, key)

    def clear(self) -> None:
        self._pending.clear()
