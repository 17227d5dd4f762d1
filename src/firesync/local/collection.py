"""Ordered, id-keyed set of local models."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, ClassVar

from firesync.local.events import ALL_EVENTS, Events
from firesync.local.model import Callback, Model

ModelInput = Model | Mapping[str, Any]


class Collection(Events):
    """Local membership and ordering for :class:`Model` instances.

    Events: ``add`` (model, collection), ``remove`` (model, collection),
    ``reset`` (collection), ``sort`` (collection); member events such as
    ``change`` and ``destroy`` are re-emitted from the collection.

    Public ``add`` / ``remove`` / ``reset`` / ``create`` are the mutation
    entry points subclasses may redirect (for instance to a remote store);
    ``_add_local`` / ``_remove_local`` always change local membership only.
    """

    model: ClassVar[type[Model]] = Model
    comparator: ClassVar[Callable[[Model], Any] | None] = None

    def __init__(self, models: Iterable[ModelInput] | None = None) -> None:
        self.models: list[Model] = []
        self._by_id: dict[Any, Model] = {}
        if models is not None:
            self._add_local(models, silent=True)

    def __len__(self) -> int:
        return len(self.models)

    def __iter__(self) -> Iterator[Model]:
        return iter(list(self.models))

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Model):
            return item in self.models
        return item in self._by_id

    def get(self, item: Any) -> Model | None:
        """Look a member up by model, attribute mapping, or id."""
        if isinstance(item, Model):
            return item if item in self.models else self._by_id.get(item.id)
        if isinstance(item, Mapping):
            return self._by_id.get(item.get(self.model.id_attribute))
        return self._by_id.get(item)

    def at(self, index: int) -> Model:
        return self.models[index]

    def ids(self) -> list[Any]:
        return [model.id for model in self.models]

    def to_list(self) -> list[dict[str, Any]]:
        return [model.to_dict() for model in self.models]

    # ------------------------------------------------------------------
    # Mutation entry points
    # ------------------------------------------------------------------

    def add(self, models: ModelInput | Iterable[ModelInput], *, silent: bool = False) -> list[Model]:
        return self._add_local(models, silent=silent)

    def remove(self, models: ModelInput | Iterable[ModelInput], *, silent: bool = False) -> list[Model]:
        return self._remove_local(models, silent=silent)

    def reset(self, models: Iterable[ModelInput] | None = None, *, silent: bool = False) -> list[Model]:
        self._remove_local(list(self.models), silent=True)
        added = self._add_local(models or [], silent=True)
        if not silent:
            self.trigger("reset", self)
        return added

    def create(self, attributes: ModelInput, *, silent: bool = False) -> Model | None:
        model = self._prepare_model(attributes)
        if model is None:
            return None
        self._add_local([model], silent=silent)
        return model

    def sort(self, *, silent: bool = False) -> None:
        if self.comparator is None:
            return
        self.models.sort(key=type(self).comparator)
        if not silent:
            self.trigger("sort", self)

    # ------------------------------------------------------------------
    # Local membership
    # ------------------------------------------------------------------

    def _prepare_model(self, attributes: ModelInput) -> Model | None:
        """Construct a member from raw attributes (or adopt a model)."""
        if isinstance(attributes, Model):
            if attributes.collection is None:
                attributes.collection = self
            return attributes
        return self.model(attributes, collection=self)

    def _add_local(self, models: ModelInput | Iterable[ModelInput], *, silent: bool = False) -> list[Model]:
        added: list[Model] = []
        for item in _as_list(models):
            model = self._prepare_model(item)
            if model is None or self.get(model) is not None:
                continue
            self.models.append(model)
            if model.id is not None:
                self._by_id[model.id] = model
            model.on(ALL_EVENTS, self._on_model_event)
            added.append(model)
        if added:
            self.sort(silent=True)
        if not silent:
            for model in added:
                self.trigger("add", model, self)
        return added

    def _remove_local(self, models: ModelInput | Iterable[ModelInput], *, silent: bool = False) -> list[Model]:
        removed: list[Model] = []
        for item in _as_list(models):
            model = self.get(item)
            if model is None:
                continue
            self.models.remove(model)
            self._by_id.pop(model.id, None)
            model.off(ALL_EVENTS, self._on_model_event)
            if model.collection is self:
                model.collection = None
            removed.append(model)
            if not silent:
                self.trigger("remove", model, self)
        return removed

    # ------------------------------------------------------------------
    # Member events
    # ------------------------------------------------------------------

    def _on_model_event(self, event: str, model: Model, *args: Any) -> None:
        if event == "destroy":
            callback = args[0] if args else None
            self._model_destroyed(model, callback)
            self._remove_local([model])
        elif event == "change":
            self._model_changed(model)
        self.trigger(event, model, *args)

    def _model_changed(self, model: Model) -> None:
        """Hook run before a member's ``change`` is re-emitted."""

    def _model_destroyed(self, model: Model, callback: Callback | None) -> None:
        if callback is not None:
            callback(model, None)


def _as_list(models: Any) -> list[Any]:
    if isinstance(models, (Model, Mapping, str, bytes)) or not isinstance(models, Iterable):
        return [models]
    return list(models)
