from __future__ import annotations

from typing import Any

import pytest

from firesync.exceptions import FiresyncIdentifierError
from firesync.local.collection import Collection
from firesync.local.model import Model


class _Todo(Model):
    defaults = {"done": False}


def _record(target: Any, *names: str) -> list[tuple[Any, ...]]:
    seen: list[tuple[Any, ...]] = []
    for name in names:
        target.on(name, lambda *args, _name=name: seen.append((_name, *args)))
    return seen


def test_set_returns_changes_and_fires_events_once() -> None:
    todo = _Todo({"title": "a"})
    seen = _record(todo, "change", "change:title", "change:done")

    changes = todo.set({"title": "b", "done": False})

    assert changes == {"title": "b"}
    assert [event[0] for event in seen] == ["change:title", "change"]
    assert seen[0][2] == "b"


def test_set_without_changes_is_quiet() -> None:
    todo = _Todo({"title": "a"})
    seen = _record(todo, "change")

    assert todo.set("title", "a") == {}
    assert seen == []


def test_silent_set_fires_nothing() -> None:
    todo = _Todo()
    seen = _record(todo, "change", "all")

    todo.set("title", "x", silent=True)
    assert todo.get("title") == "x"
    assert seen == []


def test_unset_reports_none() -> None:
    todo = _Todo({"title": "a"})
    assert todo.unset("title") == {"title": None}
    assert "title" not in todo.attributes
    assert todo.unset("title") == {}


def test_defaults_applied_at_construction() -> None:
    todo = _Todo({"title": "a"})
    assert todo.to_dict() == {"done": False, "title": "a"}
    assert todo.changed_attributes() == {}


def test_identifier_cannot_change_once_assigned() -> None:
    todo = _Todo({"id": "t1"})

    with pytest.raises(FiresyncIdentifierError):
        todo.set("id", "t2")
    with pytest.raises(FiresyncIdentifierError):
        todo.unset("id")

    # Setting the same id again is not a change.
    assert todo.set("id", "t1") == {}
    assert todo.id == "t1"


def test_new_model_can_receive_identifier() -> None:
    todo = _Todo()
    assert todo.is_new()
    todo.set("id", "t1")
    assert not todo.is_new()


def test_destroy_without_collection_calls_back() -> None:
    todo = _Todo({"id": "t1"})
    results: list[Any] = []

    todo.destroy(lambda model, error: results.append((model, error)))
    assert results == [(todo, None)]


def test_collection_orders_by_comparator_and_skips_duplicates() -> None:
    class ByTitle(Collection):
        comparator = staticmethod(lambda model: model.get("title"))

    todos = ByTitle()
    seen = _record(todos, "add")

    todos.add([{"id": "1", "title": "b"}, {"id": "2", "title": "a"}])
    todos.add({"id": "1", "title": "b"})

    assert todos.ids() == ["2", "1"]
    assert len(seen) == 2
    assert "1" in todos
    assert todos.get({"id": "2"}) is todos.at(0)


def test_collection_remove_by_id_and_reset() -> None:
    todos = Collection([{"id": "1"}, {"id": "2"}])
    seen = _record(todos, "remove", "reset", "add")

    todos.remove("1")
    assert todos.ids() == ["2"]
    assert seen[0][0] == "remove"

    todos.reset([{"id": "3"}, {"id": "4"}])
    assert todos.ids() == ["3", "4"]
    assert [event[0] for event in seen[1:]] == ["reset"]


def test_collection_reemits_member_events_and_removes_destroyed() -> None:
    todos = Collection([{"id": "1", "title": "a"}])
    seen = _record(todos, "change", "remove")
    member = todos.get("1")
    assert member is not None

    member.set("title", "b")
    member.destroy()

    assert [event[0] for event in seen] == ["change", "remove"]
    assert len(todos) == 0
    assert member.collection is None


def test_all_handler_receives_event_name() -> None:
    todos = Collection()
    seen: list[tuple[Any, ...]] = []
    todos.on("all", lambda *args: seen.append(args))

    todos.add({"id": "1"})
    assert seen[0][0] == "add"
    assert seen[0][2] is todos


def test_once_handler_runs_once_and_can_be_removed() -> None:
    todo = Model()
    calls: list[str] = []

    def handler(*_: Any) -> None:
        calls.append("x")

    todo.once("ping", handler)
    todo.trigger("ping")
    todo.trigger("ping")
    assert calls == ["x"]

    todo.once("ping", handler)
    todo.off("ping", handler)
    todo.trigger("ping")
    assert calls == ["x"]
