"""In-memory record with change notification.

:class:`Model` is the local half of a synchronized record: an attribute map,
per-call change tracking and ``change`` / ``change:<key>`` / ``destroy``
events. It knows nothing about the remote store; the sync engine attaches
through :attr:`Model.remote_changing` and :attr:`Model.remote_snapshot`.
"""

from __future__ import annotations

import copy
import itertools
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from firesync._constants import ID_ATTRIBUTE
from firesync.exceptions import FiresyncIdentifierError, FiresyncWriteError
from firesync.local.events import Events

if TYPE_CHECKING:
    from firesync.local.collection import Collection

#: ``callback(model, error)``; ``error`` is ``None`` on success.
Callback = Callable[["Model", FiresyncWriteError | None], None]

_MISSING: Any = object()
_cid_counter = itertools.count(1)


class Model(Events):
    """A mutable attribute map identified by :attr:`id_attribute`.

    Subclasses may declare ``defaults``; they are applied at construction
    unless a subclass overrides :meth:`_initial_defaults`.
    """

    id_attribute: ClassVar[str] = ID_ATTRIBUTE
    defaults: ClassVar[Mapping[str, Any] | None] = None

    def __init__(
        self,
        attributes: Mapping[str, Any] | None = None,
        *,
        collection: Collection | None = None,
    ) -> None:
        self.cid = f"c{next(_cid_counter)}"
        self.attributes: dict[str, Any] = {}
        self.changed: dict[str, Any] = {}
        self.collection = collection
        self.remote_changing = False
        self._remote_snapshot: Any = None

        initial = {**self._initial_defaults(), **dict(attributes or {})}
        self.set(initial, silent=True)
        self.changed = {}

    def _initial_defaults(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.defaults or {}))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} {self.attributes!r}>"

    @property
    def id(self) -> Any:
        return self.attributes.get(self.id_attribute)

    @property
    def remote_snapshot(self) -> Any:
        """Attribute map last observed on the remote side (engine-owned)."""
        return copy.deepcopy(self._remote_snapshot)

    def is_new(self) -> bool:
        return self.id is None

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def has(self, key: str) -> bool:
        return self.attributes.get(key) is not None

    def set(
        self,
        attrs: Mapping[str, Any] | str,
        value: Any = _MISSING,
        *,
        silent: bool = False,
        unset: bool = False,
    ) -> dict[str, Any]:
        """Set (or with ``unset=True`` remove) attributes.

        Returns the changes actually applied, mapping each key to its new
        value (``None`` for removed keys). Unless ``silent``, fires
        ``change:<key>`` per changed key and then one ``change``.
        """
        if isinstance(attrs, str):
            if value is _MISSING and not unset:
                raise TypeError("set(key, value) requires a value")
            items = {attrs: None if value is _MISSING else value}
        else:
            items = dict(attrs)
        self._check_identifier(items, unset)

        changes: dict[str, Any] = {}
        for key, new_value in items.items():
            if unset:
                if key in self.attributes:
                    del self.attributes[key]
                    changes[key] = None
                continue
            current = self.attributes.get(key, _MISSING)
            if current is _MISSING or current != new_value:
                self.attributes[key] = copy.deepcopy(new_value)
                changes[key] = new_value
        self.changed = dict(changes)

        if changes and not silent:
            for key in changes:
                self.trigger(f"change:{key}", self, self.attributes.get(key))
            self.trigger("change", self)
        return changes

    def unset(self, key: str, *, silent: bool = False) -> dict[str, Any]:
        return self.set({key: None}, unset=True, silent=silent)

    def changed_attributes(self) -> dict[str, Any]:
        """Changes made by the most recent :meth:`set` call."""
        return dict(self.changed)

    def has_changed(self, key: str | None = None) -> bool:
        if key is None:
            return bool(self.changed)
        return key in self.changed

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.attributes)

    def destroy(self, callback: Callback | None = None) -> None:
        """Announce destruction; the owning collection handles persistence."""
        owner = self.collection
        self.trigger("destroy", self, callback)
        if owner is None and callback is not None:
            callback(self, None)

    def _check_identifier(self, items: Mapping[str, Any], unset: bool) -> None:
        key = self.id_attribute
        if key not in items or self.id is None:
            return
        if unset or items[key] != self.id:
            raise FiresyncIdentifierError(f"identifier {self.id!r} cannot be changed once assigned")
