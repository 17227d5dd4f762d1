from __future__ import annotations

import pytest
from pydantic import ValidationError

from firesync import _paths
from firesync.snapshot import Snapshot, with_priority


def test_from_export_separates_priority() -> None:
    snap = Snapshot.from_export("t1", {"title": "a", ".priority": 4, "sub": {"n": 1, ".priority": 1}})

    assert snap.key == "t1"
    assert snap.priority == 4
    assert snap.value == {"title": "a", "sub": {"n": 1}}
    assert snap.export() == {"title": "a", ".priority": 4, "sub": {"n": 1, ".priority": 1}}


def test_wrapped_scalar() -> None:
    snap = Snapshot.from_export("score", {".value": 12, ".priority": "p"})

    assert snap.value == 12
    assert snap.priority == "p"
    assert snap.exists()


def test_missing_node() -> None:
    snap = Snapshot.from_export("gone", None)

    assert not snap.exists()
    assert snap.export() is None
    assert list(snap.children()) == []


def test_children_in_store_order() -> None:
    snap = Snapshot.from_export("todos", {"b": 1, "a": {".value": 2, ".priority": 1}, "c": 3})

    assert [child.key for child in snap.children()] == ["b", "c", "a"]
    assert snap.child("a").value == 2
    assert snap.child("missing").exists() is False


def test_snapshot_is_immutable() -> None:
    snap = Snapshot.from_export("k", {"a": 1})

    with pytest.raises(ValidationError):
        snap.key = "other"  # type: ignore[misc]


def test_with_priority_forms() -> None:
    assert with_priority({"a": 1}, None) == {"a": 1}
    assert with_priority({"a": 1}, 2) == {"a": 1, ".priority": 2}
    assert with_priority("x", 2) == {".value": "x", ".priority": 2}
    assert with_priority(None, 2) is None


def test_path_helpers() -> None:
    assert _paths.normalize("//todos/a/") == "todos/a"
    assert _paths.join("todos", "/a", "b/") == "todos/a/b"
    assert _paths.key_of("todos/a") == "a"
    assert _paths.key_of("") is None
    assert _paths.is_prefix("", "todos")
    assert _paths.is_prefix("todos", "todos/a")
    assert not _paths.is_prefix("todo", "todos/a")
    assert _paths.relative("todos", "todos/a/b") == "a/b"

    with pytest.raises(ValueError):
        _paths.relative("users", "todos/a")
    with pytest.raises(ValueError):
        _paths.validate_key("a$b")
    with pytest.raises(ValueError):
        _paths.validate_key("")
