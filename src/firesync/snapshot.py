"""Immutable view of a remote node at a point in time.

Stores keep node data in Firebase "export" form: a node's priority lives
under a ``.priority`` key inside its object, and a scalar that carries a
priority is wrapped as ``{".value": v, ".priority": p}``. :class:`Snapshot`
separates the two: :attr:`Snapshot.value` is the plain value and
:meth:`Snapshot.export` restores the export form.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict

from firesync._constants import PRIORITY_KEY, VALUE_KEY


def strip_priorities(raw: Any) -> Any:
    """Return a deep copy of *raw* without priority metadata."""
    if not isinstance(raw, dict):
        return copy.deepcopy(raw)
    if VALUE_KEY in raw:
        return copy.deepcopy(raw[VALUE_KEY])
    return {key: strip_priorities(value) for key, value in raw.items() if key != PRIORITY_KEY}


def priority_of(raw: Any) -> Any:
    if isinstance(raw, dict):
        return raw.get(PRIORITY_KEY)
    return None


def with_priority(value: Any, priority: Any) -> Any:
    """Combine a plain value and a priority into export form."""
    if priority is None or value is None:
        return copy.deepcopy(value)
    if isinstance(value, dict):
        exported = copy.deepcopy(value)
        exported[PRIORITY_KEY] = priority
        return exported
    return {VALUE_KEY: copy.deepcopy(value), PRIORITY_KEY: priority}


def _priority_rank(priority: Any) -> tuple[int, Any]:
    # Nodes without priority first, then numeric, then string priorities.
    if priority is None:
        return (0, 0)
    if isinstance(priority, bool):
        return (1, int(priority))
    if isinstance(priority, (int, float)):
        return (1, priority)
    return (2, str(priority))


def child_order_key(key: str, raw: Any) -> tuple[tuple[int, Any], str]:
    """Sort key ordering sibling nodes by priority, then by key."""
    return (_priority_rank(priority_of(raw)), key)


class Snapshot(BaseModel):
    """Key, value and priority of a remote node."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: str | None
    value: Any = None
    priority: Any = None
    raw: Any = None
    """Node data in export form, nested priorities included."""

    @classmethod
    def from_export(cls, key: str | None, raw: Any) -> Snapshot:
        return cls(
            key=key,
            value=strip_priorities(raw),
            priority=priority_of(raw),
            raw=copy.deepcopy(raw),
        )

    def exists(self) -> bool:
        return self.value is not None

    def export_object(self) -> dict[str, Any] | None:
        """Export form of an object node; ``None`` for scalars and missing nodes.

        A scalar with a priority exports as ``{".value": v, ".priority": p}``,
        which must not be mistaken for an attribute map.
        """
        if not isinstance(self.value, dict):
            return None
        return self.export()

    def export(self) -> Any:
        """The node value with its priority folded back in."""
        if self.raw is not None:
            return copy.deepcopy(self.raw)
        return with_priority(self.value, self.priority)

    def child(self, key: str) -> Snapshot:
        raw = self.export()
        child_raw = raw.get(key) if isinstance(raw, dict) and key != PRIORITY_KEY else None
        return Snapshot.from_export(key, child_raw)

    def children(self) -> Iterator[Snapshot]:
        """Child snapshots in store order."""
        raw = self.export()
        if not isinstance(raw, dict) or VALUE_KEY in raw:
            return
        items = [(key, value) for key, value in raw.items() if key != PRIORITY_KEY]
        for key, value in sorted(items, key=lambda item: child_order_key(*item)):
            yield Snapshot.from_export(key, value)
