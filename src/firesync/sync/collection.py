"""Collection-level synchronization against a store location's children.

Local membership follows the store: ``add`` / ``remove`` / ``create`` /
``reset`` only issue remote writes, and the resulting ``child_added`` /
``child_removed`` events are what change the local collection. A silent
local operation registers an expected echo so the event that comes back is
applied without a second ``add`` / ``remove`` notification.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, ClassVar

from firesync import _paths
from firesync.exceptions import FiresyncConfigError, FiresyncConsistencyError, FiresyncWriteError
from firesync.local.collection import Collection, ModelInput, _as_list
from firesync.local.model import Callback, Model
from firesync.snapshot import Snapshot
from firesync.store.base import Completion, EventKind, RemoteStore
from firesync.sync.diff import compute_patch, stale_keys
from firesync.sync.guard import EchoKind, EchoSuppressor, applying_remote, remember_snapshot

_logger = logging.getLogger(__name__)

#: ``callback(item, error)`` where *item* is the member model when one is
#: known, else the attribute dict that was written.
ItemCallback = Callable[[Model | dict[str, Any], FiresyncWriteError | None], None]


def _by_id(model: Model) -> str:
    return "" if model.id is None else str(model.id)


class SyncedCollection(Collection):
    """A :class:`Collection` mirroring the children of one store location.

    The store and location come from the constructor or from the class
    attributes ``store`` and ``url``. Members are kept ordered by id.

    Events: ``sync`` (once, after the initial children arrived), ``error``
    (failed write), plus the :class:`Collection` events.
    """

    store: ClassVar[RemoteStore | None] = None
    url: ClassVar[str | Callable[[SyncedCollection], str] | None] = None
    comparator = staticmethod(_by_id)

    def __init__(
        self,
        models: Iterable[ModelInput] | None = None,
        *,
        store: RemoteStore | None = None,
        path: str | Callable[[SyncedCollection], str] | None = None,
    ) -> None:
        super().__init__()
        self.synced = False
        self._echoes = EchoSuppressor()
        self._pending: dict[str, Model] = {}

        resolved_store = store if store is not None else type(self).store
        if resolved_store is None:
            raise FiresyncConfigError(f"{type(self).__name__} requires a store")
        self._store: RemoteStore = resolved_store
        self._path = self._resolve_path(path)

        self._subscriptions: dict[EventKind, Callable[[Snapshot], None]] = {
            EventKind.CHILD_ADDED: self._on_child_added,
            EventKind.CHILD_MOVED: self._on_child_moved,
            EventKind.CHILD_CHANGED: self._on_child_changed,
            EventKind.CHILD_REMOVED: self._on_child_removed,
        }
        for kind, handler in self._subscriptions.items():
            self._store.subscribe(self._path, kind, handler)
        # Subscribed last so the first value follows the replayed children.
        self._store.subscribe(self._path, EventKind.VALUE, self._on_initial_value)

        if models:
            self.add(models)

    def _resolve_path(self, path: str | Callable[[SyncedCollection], str] | None) -> str:
        source = path if path is not None else type(self).url
        if callable(source):
            source = source(self)
        if not isinstance(source, str):
            raise FiresyncConfigError(f"{type(self).__name__} requires a path (or url)")
        return _paths.normalize(source)

    @property
    def path(self) -> str:
        return self._path

    @property
    def suppress_next_echo(self) -> bool:
        """Whether any silent add/remove is still waiting for its echo."""
        return self._echoes.pending

    def close(self) -> None:
        """Stop receiving child events."""
        if not self.synced:
            self._store.unsubscribe(self._path, EventKind.VALUE, self._on_initial_value)
        for kind, handler in self._subscriptions.items():
            self._store.unsubscribe(self._path, kind, handler)

    def _child_path(self, key: Any) -> str:
        return _paths.join(self._path, _paths.validate_key(str(key)))

    # ------------------------------------------------------------------
    # Not applicable to a live collection
    # ------------------------------------------------------------------

    def sync(self, *args: Any, **kwargs: Any) -> None:
        _logger.warning("sync called on a synced collection at /%s, ignoring", self._path)

    def fetch(self, *args: Any, **kwargs: Any) -> None:
        _logger.warning("fetch called on a synced collection at /%s, ignoring", self._path)

    # ------------------------------------------------------------------
    # Local -> remote
    # ------------------------------------------------------------------

    def add(  # type: ignore[override]
        self,
        models: ModelInput | Iterable[ModelInput],
        *,
        silent: bool = False,
        callback: ItemCallback | None = None,
    ) -> list[dict[str, Any]]:
        """Write each item to ``path/<id>``, generating ids where missing.

        Members appear locally when the store reports ``child_added``.
        """
        written: list[dict[str, Any]] = []
        for attributes, model in self._parse_models(models):
            key = str(attributes[self.model.id_attribute])
            will_echo = self._expects_child_added(key)
            echo = None
            if silent and will_echo:
                echo = EchoKind.ADD
                self._echoes.expect(echo, key)
            if model is not None and will_echo:
                self._pending[key] = model
            item: Model | dict[str, Any] = model if model is not None else attributes
            self._store.write(
                self._child_path(key),
                attributes,
                self._completion("add", key, item, callback, echo),
            )
            written.append(attributes)
        return written

    def remove(  # type: ignore[override]
        self,
        models: Any,
        *,
        silent: bool = False,
        callback: ItemCallback | None = None,
    ) -> list[Any]:
        """Delete each item's node; accepts models, attribute dicts or ids."""
        removed: list[Any] = []
        for item in _as_list(models):
            key = self._item_id(item)
            if key is None:
                _logger.warning("Cannot remove an item without id from /%s", self._path)
                continue
            echo = None
            if silent and self._expects_child_removed(key):
                echo = EchoKind.REMOVE
                self._echoes.expect(echo, key)
            target = self.get(key) or item
            self._store.write(self._child_path(key), None, self._completion("remove", key, target, callback, echo))
            removed.append(target)
        return removed

    def create(  # type: ignore[override]
        self,
        attributes: ModelInput,
        *,
        silent: bool = False,
        callback: ItemCallback | None = None,
    ) -> Model | None:
        """Build a member from *attributes* and add it.

        The returned model is the instance that joins the collection once
        the store echoes the write.
        """
        model = self._prepare_model(attributes)
        if model is None:
            return None
        self.add([model], silent=silent, callback=callback)
        return model

    def reset(  # type: ignore[override]
        self,
        models: Iterable[ModelInput] | None = None,
        *,
        silent: bool = False,
    ) -> list[dict[str, Any]]:
        """Replace all members remotely, then emit a single ``reset``."""
        self.remove(list(self.models), silent=True)
        added = self.add(list(models or []), silent=True)
        if not silent:
            self.trigger("reset", self)
        return added

    def _parse_models(self, models: ModelInput | Iterable[ModelInput]) -> list[tuple[dict[str, Any], Model | None]]:
        id_attribute = self.model.id_attribute
        parsed: list[tuple[dict[str, Any], Model | None]] = []
        for item in _as_list(models):
            if isinstance(item, Model):
                model: Model | None = item
                attributes = item.to_dict()
            elif isinstance(item, Mapping):
                model = None
                attributes = dict(item)
            else:
                raise TypeError(f"cannot add {type(item).__name__} to a collection")
            if attributes.get(id_attribute) is None:
                attributes[id_attribute] = self._store.generate_key(self._path)
                if model is not None:
                    model.set(id_attribute, attributes[id_attribute], silent=True)
            parsed.append((attributes, model))
        return parsed

    def _expects_child_added(self, key: str) -> bool:
        """Whether a write to ``path/<key>`` will come back as ``child_added``.

        Writing over a current member only yields ``child_changed`` (or no
        event at all when the value is unchanged), and a repeated write of an
        id whose add is still in flight yields no second ``child_added``.
        """
        if self._echoes.expects(EchoKind.ADD, key):
            return False
        return self.get(key) is None or self._echoes.expects(EchoKind.REMOVE, key)

    def _expects_child_removed(self, key: str) -> bool:
        if self._echoes.expects(EchoKind.REMOVE, key):
            return False
        return self.get(key) is not None or self._echoes.expects(EchoKind.ADD, key)

    def _item_id(self, item: Any) -> str | None:
        if isinstance(item, Model):
            value = item.id
        elif isinstance(item, Mapping):
            value = item.get(self.model.id_attribute)
        else:
            value = item
        return None if value is None else str(value)

    def _completion(
        self,
        operation: str,
        key: str,
        item: Any,
        callback: ItemCallback | None,
        echo: EchoKind | None,
    ) -> Completion:
        def _done(error: FiresyncWriteError | None) -> None:
            if error is not None:
                # A rejected write never echoes.
                if echo is not None:
                    self._echoes.discard(echo, key)
                if operation == "add":
                    self._pending.pop(key, None)
                _logger.warning("%s of /%s failed: %s", operation, self._child_path(key), error)
                self.trigger("error", self, error)
            if callback is not None:
                callback(item, error)

        return _done

    # ------------------------------------------------------------------
    # Member events
    # ------------------------------------------------------------------

    def _model_changed(self, model: Model) -> None:
        if model.remote_changing or model.id is None:
            return
        patch = compute_patch(model.remote_snapshot, model.to_dict())
        if patch.is_empty():
            return
        key = str(model.id)
        completion = self._completion("update", key, model, None, None)
        if patch.replace:
            self._store.write_with_priority(self._child_path(key), patch.value, patch.priority, completion)
        else:
            self._store.merge_update(self._child_path(key), patch.updates, completion)

    def _model_destroyed(self, model: Model, callback: Callback | None) -> None:
        if model.id is None:
            super()._model_destroyed(model, callback)
            return
        key = str(model.id)
        self._store.write(self._child_path(key), None, self._completion("destroy", key, model, callback, None))

    # ------------------------------------------------------------------
    # Remote -> local
    # ------------------------------------------------------------------

    def _on_initial_value(self, snapshot: Snapshot) -> None:
        if self.synced:
            return
        self._store.unsubscribe(self._path, EventKind.VALUE, self._on_initial_value)
        self.synced = True
        self.trigger("sync", self)

    def _on_child_added(self, snapshot: Snapshot) -> None:
        value = snapshot.export_object()
        if value is None:
            value = {}
        id_attribute = self.model.id_attribute
        if value.get(id_attribute) is None:
            value[id_attribute] = snapshot.key
        key = str(value[id_attribute])

        pending = self._pending.pop(key, None)
        silent = self._echoes.consume(EchoKind.ADD, key)
        existing = self.get(value[id_attribute])
        if existing is not None:
            # Re-delivered after a stream reconnect: treat as a change.
            self._apply_remote(existing, value)
            return
        self._add_local([pending if pending is not None else value], silent=silent)

        member = self.get(value[id_attribute])
        if member is not None:
            remember_snapshot(member, value)

    def _on_child_changed(self, snapshot: Snapshot) -> None:
        value = snapshot.export_object()
        item_id = value.get(self.model.id_attribute) if value is not None else None
        if item_id is None:
            item_id = snapshot.key

        item = self.get(item_id)
        if item is None:
            raise FiresyncConsistencyError(
                f"child_changed for unknown id {item_id!r} at /{self._path}",
                path=self._path,
                key=str(item_id),
            )
        if value is None:
            _logger.warning("Non-object child %r at /%s, not diffing keys", item_id, self._path)
            return
        self._apply_remote(item, value)

    def _apply_remote(self, item: Model, value: dict[str, Any]) -> None:
        id_attribute = self.model.id_attribute
        with applying_remote(item):
            value[id_attribute] = item.id
            remember_snapshot(item, value)
            for key in stale_keys(list(item.attributes), value, keep=(id_attribute,)):
                item.unset(key)
            item.set(value)

    def _on_child_removed(self, snapshot: Snapshot) -> None:
        value = snapshot.export_object()
        item_id = value.get(self.model.id_attribute) if value is not None else None
        if item_id is None:
            item_id = snapshot.key
        key = str(item_id)

        self._pending.pop(key, None)
        silent = self._echoes.consume(EchoKind.REMOVE, key)
        self._remove_local([item_id], silent=silent)

    def _on_child_moved(self, snapshot: Snapshot) -> None:
        # Order is by id, which a move never changes.
        _logger.debug("child_moved at /%s key=%s", self._path, snapshot.key)
