"""In-memory hierarchical data with Firebase write semantics and events.

:class:`EventTree` backs :class:`~firesync.store.memory.MemoryStore` and
mirrors each streamed location inside :class:`~firesync.store.rest.RestStore`.

Write semantics:

* ``None`` deletes a node; objects left without children are pruned.
* Data is kept in export form (``.priority`` inside objects).
* Writes never mutate existing node objects; each write builds new parent
  objects along the path, so the previous root stays a valid "before" image
  for event derivation.

After every write, each subscribed location on the written path (ancestor,
self, or descendant) is compared before/after and its handlers receive
``child_removed``, ``child_added``, ``child_changed``, ``child_moved`` and
finally ``value`` events.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from functools import partial
from typing import Any

from firesync import _paths
from firesync._constants import PRIORITY_KEY, VALUE_KEY
from firesync.snapshot import Snapshot, child_order_key, priority_of
from firesync.store.base import EventHandler, EventKind

_logger = logging.getLogger(__name__)

Deliver = Callable[[Callable[[], None]], None]


def _call_now(fn: Callable[[], None]) -> None:
    fn()


def normalize_value(value: Any) -> Any:
    """Copy *value* into stored form: no ``None`` children, no empty objects."""
    if isinstance(value, Mapping):
        if VALUE_KEY in value:
            inner = normalize_value(value[VALUE_KEY])
            priority = value.get(PRIORITY_KEY)
            if inner is None:
                return None
            if priority is None or isinstance(inner, dict):
                return inner
            return {VALUE_KEY: inner, PRIORITY_KEY: priority}
        node: dict[str, Any] = {}
        for key, child in value.items():
            if key == PRIORITY_KEY:
                if child is not None:
                    node[PRIORITY_KEY] = child
                continue
            normalized = normalize_value(child)
            if normalized is not None:
                node[str(key)] = normalized
        return node if _has_children(node) else None
    return copy.deepcopy(value)


def _has_children(node: Mapping[str, Any]) -> bool:
    return any(key != PRIORITY_KEY for key in node)


def _children(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict) or VALUE_KEY in raw:
        return {}
    return {key: value for key, value in raw.items() if key != PRIORITY_KEY}


def _ordered(children: Mapping[str, Any]) -> list[str]:
    return sorted(children, key=lambda key: child_order_key(key, children[key]))


def _lookup(root: Any, segments: list[str]) -> Any:
    node = root
    for segment in segments:
        if segment == PRIORITY_KEY:
            return priority_of(node)
        children = _children(node)
        if segment not in children:
            return None
        node = children[segment]
    return node


def _assign(node: Any, segments: list[str], value: Any) -> Any:
    """Return a copy of *node* with *value* placed at *segments*."""
    if not segments:
        return value
    head, rest = segments[0], segments[1:]
    if isinstance(node, dict) and VALUE_KEY not in node:
        updated = dict(node)
    else:
        # Writing below a leaf replaces the leaf; only its priority survives.
        priority = priority_of(node)
        updated = {PRIORITY_KEY: priority} if priority is not None else {}
    if head == PRIORITY_KEY:
        if value is None:
            updated.pop(PRIORITY_KEY, None)
        else:
            updated[PRIORITY_KEY] = value
    else:
        child = _assign(updated.get(head), rest, value)
        if child is None:
            updated.pop(head, None)
        else:
            updated[head] = child
    return updated if _has_children(updated) else None


class EventTree:
    """Mutable tree plus per-location event subscriptions."""

    def __init__(self, data: Any = None, *, deliver: Deliver | None = None) -> None:
        self._root: Any = normalize_value(data)
        self._deliver = deliver or _call_now
        self._subscriptions: dict[str, dict[EventKind, list[EventHandler]]] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, path: str = "") -> Any:
        """Export-form value at *path* (a copy), or ``None``."""
        return copy.deepcopy(_lookup(self._root, _paths.split(path)))

    def snapshot(self, path: str = "") -> Snapshot:
        return Snapshot.from_export(_paths.key_of(path), _lookup(self._root, _paths.split(path)))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, path: str, value: Any) -> None:
        before = self._root
        self._root = _assign(self._root, _paths.split(path), normalize_value(value))
        self._emit_changes(path, before)

    def update(self, path: str, patch: Mapping[str, Any]) -> None:
        """Apply several child writes atomically, then emit once."""
        before = self._root
        for key, value in patch.items():
            self._root = _assign(self._root, _paths.split(_paths.join(path, str(key))), normalize_value(value))
        self._emit_changes(path, before)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, path: str, kind: EventKind, handler: EventHandler) -> None:
        """Register *handler* and replay the current state to it."""
        location = _paths.normalize(path)
        self._subscriptions.setdefault(location, {}).setdefault(kind, []).append(handler)

        current = _lookup(self._root, _paths.split(location))
        if kind == EventKind.VALUE:
            self._deliver(partial(handler, Snapshot.from_export(_paths.key_of(location), current)))
        elif kind == EventKind.CHILD_ADDED:
            children = _children(current)
            for key in _ordered(children):
                self._deliver(partial(handler, Snapshot.from_export(key, children[key])))

    def unsubscribe(self, path: str, kind: EventKind, handler: EventHandler | None = None) -> None:
        location = _paths.normalize(path)
        kinds = self._subscriptions.get(location)
        if not kinds:
            return
        if handler is None:
            kinds.pop(kind, None)
        else:
            remaining = [h for h in kinds.get(kind, []) if h != handler]
            if remaining:
                kinds[kind] = remaining
            else:
                kinds.pop(kind, None)
        if not kinds:
            del self._subscriptions[location]

    def has_subscribers(self, path: str | None = None) -> bool:
        if path is None:
            return bool(self._subscriptions)
        return _paths.normalize(path) in self._subscriptions

    # ------------------------------------------------------------------
    # Event derivation
    # ------------------------------------------------------------------

    def _emit_changes(self, changed_path: str, before: Any) -> None:
        for location, kinds in list(self._subscriptions.items()):
            if not (_paths.is_prefix(location, changed_path) or _paths.is_prefix(changed_path, location)):
                continue
            segments = _paths.split(location)
            old = _lookup(before, segments)
            new = _lookup(self._root, segments)
            if old == new:
                continue
            self._emit_location(location, kinds, old, new)

    def _emit_location(
        self,
        location: str,
        kinds: Mapping[EventKind, list[EventHandler]],
        old: Any,
        new: Any,
    ) -> None:
        old_children = _children(old)
        new_children = _children(new)
        events: list[tuple[EventKind, Snapshot]] = []

        for key in _ordered(old_children):
            if key not in new_children:
                events.append((EventKind.CHILD_REMOVED, Snapshot.from_export(key, old_children[key])))
        for key in _ordered(new_children):
            if key not in old_children:
                events.append((EventKind.CHILD_ADDED, Snapshot.from_export(key, new_children[key])))
        for key in _ordered(new_children):
            if key in old_children and old_children[key] != new_children[key]:
                events.append((EventKind.CHILD_CHANGED, Snapshot.from_export(key, new_children[key])))
        for key in _ordered(new_children):
            if key in old_children and priority_of(old_children[key]) != priority_of(new_children[key]):
                events.append((EventKind.CHILD_MOVED, Snapshot.from_export(key, new_children[key])))
        events.append((EventKind.VALUE, Snapshot.from_export(_paths.key_of(location), new)))

        for kind, snapshot in events:
            for handler in list(kinds.get(kind, ())):
                _logger.debug("Dispatch %s at /%s key=%s", kind, location, snapshot.key)
                self._deliver(partial(handler, snapshot))
