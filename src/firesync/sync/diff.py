"""Patch computation between a remote snapshot and local attributes.

Merge-updates only touch the keys they list, so every key that disappeared
locally must be listed with ``None`` or the stale remote field survives.
A priority cannot travel in a merge; when it differs, the patch asks for a
full node replace instead.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from firesync._constants import PRIORITY_KEY


class SyncPatch(BaseModel):
    """Minimal change set needed to make the remote node match local state.

    ``updates`` maps each differing key to its local value, or ``None`` when
    the key must be deleted remotely. When ``replace`` is set, the caller
    must write ``value`` together with ``priority`` as a whole node rather
    than merging ``updates``.
    """

    model_config = ConfigDict(frozen=True)

    updates: dict[str, Any] = Field(default_factory=dict)
    replace: bool = False
    value: dict[str, Any] | None = None
    priority: Any = None

    def is_empty(self) -> bool:
        return not self.updates and not self.replace

    def __bool__(self) -> bool:
        return not self.is_empty()


def _union(first: Iterable[str], second: Iterable[str]) -> list[str]:
    keys = list(dict.fromkeys(first))
    keys.extend(key for key in second if key not in keys)
    return keys


def compute_patch(
    remote: Mapping[str, Any] | None,
    local: Mapping[str, Any],
    *,
    priority_key: str = PRIORITY_KEY,
) -> SyncPatch:
    """Diff *remote* against *local* over the union of their keys."""
    remote = remote or {}
    updates: dict[str, Any] = {}
    for key in _union(remote, local):
        if key not in local:
            updates[key] = None
        elif key not in remote or local[key] != remote[key]:
            updates[key] = local[key]

    if priority_key in updates:
        value = {key: val for key, val in local.items() if key != priority_key}
        return SyncPatch(
            updates=updates,
            replace=True,
            value=value,
            priority=local.get(priority_key),
        )
    return SyncPatch(updates=updates)


def tombstone_patch(changes: Mapping[str, Any], *, id_attribute: str) -> dict[str, Any]:
    """Turn per-key changes into a merge payload.

    Removed keys (``None``) become explicit deletes, except the identifier:
    it comes from the node path, so it is dropped rather than deleted.
    """
    patch: dict[str, Any] = {}
    for key, value in changes.items():
        if value is None:
            if key == id_attribute:
                continue
            patch[key] = None
        else:
            patch[key] = value
    return patch


def stale_keys(local_keys: Iterable[str], incoming: Mapping[str, Any], *, keep: Iterable[str] = ()) -> list[str]:
    """Local keys missing from an incoming remote value."""
    kept = set(keep)
    return [key for key in local_keys if key not in incoming and key not in kept]
