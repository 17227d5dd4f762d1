"""Per-record synchronization.

A :class:`SyncedModel` picks one of two strategies at construction and keeps
it for life:

* :class:`ContinuousSync` subscribes to the record's ``value`` event and
  pushes every local change as a merge-update.
* :class:`OneShotSync` never subscribes; ``fetch`` / ``save`` /
  ``sync`` move data once, on request.

Both share :meth:`RecordSyncEngine.apply_remote` (remote -> local) and
:meth:`RecordSyncEngine.push_local` (local -> remote).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from enum import StrEnum
from functools import partial
from typing import Any, ClassVar

from firesync import _paths
from firesync._constants import PRIORITY_KEY
from firesync.exceptions import FiresyncConfigError, FiresyncWriteError
from firesync.local.model import Callback, Model
from firesync.snapshot import Snapshot
from firesync.store.base import Completion, EventKind, RemoteStore
from firesync.sync.diff import stale_keys, tombstone_patch
from firesync.sync.guard import applying_remote, remember_snapshot

_logger = logging.getLogger(__name__)


class SyncMode(StrEnum):
    CONTINUOUS = "continuous"
    ONE_SHOT = "one_shot"


class RecordSyncEngine:
    """Behaviour shared by both record strategies."""

    mode: ClassVar[SyncMode]

    def __init__(self, record: SyncedModel, store: RemoteStore, path: str) -> None:
        self.record = record
        self.store = store
        self.path = path

    def attach(self) -> None:
        """Start listening to the store, if the strategy does."""

    def detach(self) -> None:
        """Stop listening to the store."""

    def on_local_change(self, changes: Mapping[str, Any]) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Remote -> local
    # ------------------------------------------------------------------

    def apply_remote(self, snapshot: Snapshot) -> None:
        """Make local attributes mirror *snapshot*.

        Local keys missing remotely are unset, a new record takes its id
        from the snapshot key, and the remaining keys are merged. None of
        this is pushed back. A non-object value leaves attributes untouched.
        """
        record = self.record
        incoming = snapshot.export_object()
        id_attribute = record.id_attribute

        with applying_remote(record):
            if incoming is not None:
                for key in stale_keys(list(record.attributes), incoming, keep=(id_attribute,)):
                    record.unset(key)
            elif snapshot.exists():
                _logger.warning("Non-object value at /%s, not diffing keys", self.path)

            if record.is_new() and snapshot.key is not None:
                record.set(id_attribute, snapshot.key, silent=True)

            if incoming is not None:
                merged = dict(incoming)
                remote_id = merged.pop(id_attribute, None)
                if remote_id is not None and remote_id != record.id:
                    _logger.warning(
                        "Ignoring %s=%r stored at /%s (record id is %r)",
                        id_attribute,
                        remote_id,
                        self.path,
                        record.id,
                    )
                record.set(merged)
                if record.id is not None:
                    incoming[id_attribute] = record.id
                remember_snapshot(record, incoming)

        self._mark_synced()

    def _mark_synced(self) -> None:
        record = self.record
        if record.synced:
            return
        record.synced = True
        self._apply_defaults()
        record.trigger("sync", record)

    def _apply_defaults(self) -> None:
        record = self.record
        missing = {key: value for key, value in record.declared_defaults().items() if key not in record.attributes}
        if missing:
            record.set(missing)

    # ------------------------------------------------------------------
    # Local -> remote
    # ------------------------------------------------------------------

    def push_local(self, changes: Mapping[str, Any]) -> None:
        """Send *changes* as a merge-update unless they are a remote echo."""
        record = self.record
        if record.remote_changing:
            _logger.debug("Skipping push for /%s while applying remote value", self.path)
            return

        patch = tombstone_patch(changes, id_attribute=record.id_attribute)
        if not patch:
            return
        if PRIORITY_KEY in patch:
            value = {
                key: val
                for key, val in record.attributes.items()
                if key not in (PRIORITY_KEY, record.id_attribute)
            }
            self.store.write_with_priority(
                self.path,
                value,
                record.get(PRIORITY_KEY),
                self._completion("update"),
            )
        else:
            self.store.merge_update(self.path, patch, self._completion("update"))

    def destroy(self, callback: Callback | None = None) -> None:
        """Delete the remote node and announce ``destroy`` without waiting."""
        self.store.write(self.path, None, self._completion("destroy", callback))
        self.record.trigger("destroy", self.record, callback)
        self.detach()

    def _completion(self, operation: str, callback: Callback | None = None) -> Completion:
        def _done(error: FiresyncWriteError | None) -> None:
            if error is not None:
                _logger.warning("%s of /%s failed: %s", operation, self.path, error)
                self.record.trigger("error", self.record, error)
            if callback is not None:
                callback(self.record, error)

        return _done

    # ------------------------------------------------------------------
    # Explicit operations
    # ------------------------------------------------------------------

    def fetch(self, callback: Callback | None = None) -> None:
        raise NotImplementedError

    def save(self, attributes: Mapping[str, Any] | None = None, callback: Callback | None = None) -> None:
        raise NotImplementedError

    def sync(self, method: str, callback: Callback | None = None) -> None:
        raise NotImplementedError


class ContinuousSync(RecordSyncEngine):
    """Live two-way binding through a ``value`` subscription."""

    mode = SyncMode.CONTINUOUS

    def attach(self) -> None:
        self.store.subscribe(self.path, EventKind.VALUE, self._on_value)

    def detach(self) -> None:
        self.store.unsubscribe(self.path, EventKind.VALUE, self._on_value)

    def _on_value(self, snapshot: Snapshot) -> None:
        self.apply_remote(snapshot)

    def on_local_change(self, changes: Mapping[str, Any]) -> None:
        self.push_local(changes)

    def _ignored(self, operation: str) -> None:
        _logger.warning("%s called on an auto-synced model at /%s, ignoring", operation, self.path)

    def fetch(self, callback: Callback | None = None) -> None:
        self._ignored("fetch")

    def save(self, attributes: Mapping[str, Any] | None = None, callback: Callback | None = None) -> None:
        self._ignored("save")

    def sync(self, method: str, callback: Callback | None = None) -> None:
        self._ignored("sync")


class OneShotSync(RecordSyncEngine):
    """Explicit, request/response style synchronization."""

    mode = SyncMode.ONE_SHOT

    def on_local_change(self, changes: Mapping[str, Any]) -> None:
        # Keep removed keys as explicit None so the next update deletes them.
        record = self.record
        if record.remote_changing:
            return
        tombstones = {key: None for key, value in changes.items() if value is None and key != record.id_attribute}
        if tombstones:
            record.set(tombstones, silent=True)

    def fetch(self, callback: Callback | None = None) -> None:
        self.sync("read", callback)

    def save(self, attributes: Mapping[str, Any] | None = None, callback: Callback | None = None) -> None:
        if attributes:
            self.record.set(attributes)
        self.sync("create" if self.record.is_new() else "update", callback)

    def sync(self, method: str, callback: Callback | None = None) -> None:
        record = self.record
        if method == "read":
            self.store.read(
                self.path,
                partial(self._on_read, callback),
                on_error=self._completion("read", callback),
            )
        elif method == "create":
            # A create replaces the node, so defaults cannot clobber remote data.
            if not record.synced:
                self._apply_defaults()
            self.store.write(self.path, record.to_dict(), self._saved("create", callback))
        elif method == "update":
            self.store.merge_update(self.path, record.to_dict(), self._saved("update", callback))
        elif method == "delete":
            self.destroy(callback)
        else:
            raise ValueError(f"unknown sync method {method!r}")

    def _on_read(self, callback: Callback | None, snapshot: Snapshot) -> None:
        self.apply_remote(snapshot)
        if callback is not None:
            callback(self.record, None)

    def _saved(self, operation: str, callback: Callback | None) -> Completion:
        done = self._completion(operation, callback)

        def _acknowledged(error: FiresyncWriteError | None) -> None:
            record = self.record
            if error is None:
                if record.is_new():
                    record.set(record.id_attribute, _paths.key_of(self.path), silent=True)
                self._mark_synced()
            done(error)

        return _acknowledged


PathSource = str | Callable[["SyncedModel"], str]


class SyncedModel(Model):
    """A :class:`Model` bound to one location of a remote store.

    The store and location come from the constructor or from the class
    attributes ``store`` and ``url`` (a path string, or a callable taking
    the model and returning one). ``defaults`` are applied only after the
    first remote value has been received (or, in one-shot mode, just
    before a create), so they never overwrite data already present remotely.

    Events: ``sync`` (once, after the first remote value or acknowledged
    save), ``error`` (failed write), plus the :class:`Model` events.
    """

    store: ClassVar[RemoteStore | None] = None
    url: ClassVar[PathSource | None] = None
    auto_sync: ClassVar[bool] = True

    _engine: RecordSyncEngine | None = None

    def __init__(
        self,
        attributes: Mapping[str, Any] | None = None,
        *,
        store: RemoteStore | None = None,
        path: PathSource | None = None,
        auto_sync: bool | None = None,
    ) -> None:
        self.synced = False
        super().__init__(attributes)

        resolved_store = store if store is not None else type(self).store
        if resolved_store is None:
            raise FiresyncConfigError(f"{type(self).__name__} requires a store")
        location = self._resolve_path(path)
        mode = type(self).auto_sync if auto_sync is None else auto_sync

        engine_cls: type[RecordSyncEngine] = ContinuousSync if mode else OneShotSync
        self._engine = engine_cls(self, resolved_store, location)
        self._engine.attach()

    def _resolve_path(self, path: PathSource | None) -> str:
        source = path if path is not None else type(self).url
        if callable(source):
            source = source(self)
        if not isinstance(source, str) or not _paths.normalize(source):
            raise FiresyncConfigError(f"{type(self).__name__} requires a non-root path (or url)")
        return _paths.normalize(source)

    def _initial_defaults(self) -> dict[str, Any]:
        return {}

    def declared_defaults(self) -> dict[str, Any]:
        return super()._initial_defaults()

    @property
    def engine(self) -> RecordSyncEngine:
        if self._engine is None:
            raise FiresyncConfigError("model is not bound to a store")
        return self._engine

    @property
    def mode(self) -> SyncMode:
        return self.engine.mode

    @property
    def path(self) -> str:
        return self.engine.path

    def set(self, attrs: Mapping[str, Any] | str, *args: Any, **kwargs: Any) -> dict[str, Any]:
        changes = super().set(attrs, *args, **kwargs)
        if changes and not kwargs.get("silent", False) and self._engine is not None:
            self._engine.on_local_change(changes)
        return changes

    def fetch(self, callback: Callback | None = None) -> None:
        self.engine.fetch(callback)

    def save(self, attributes: Mapping[str, Any] | None = None, callback: Callback | None = None) -> None:
        self.engine.save(attributes, callback)

    def sync(self, method: str, callback: Callback | None = None) -> None:
        self.engine.sync(method, callback)

    def destroy(self, callback: Callback | None = None) -> None:
        self.engine.destroy(callback)

    def close(self) -> None:
        """Drop the store subscription, if any."""
        self.engine.detach()
