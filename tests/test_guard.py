from __future__ import annotations

import pytest

from firesync.local.model import Model
from firesync.sync.guard import EchoKind, EchoSuppressor, applying_remote, remember_snapshot


def test_applying_remote_restores_flag_after_error() -> None:
    record = Model()

    with pytest.raises(RuntimeError), applying_remote(record):
        assert record.remote_changing is True
        raise RuntimeError("boom")

    assert record.remote_changing is False


def test_nested_applying_remote_keeps_flag_until_outermost_exit() -> None:
    record = Model()

    with applying_remote(record):
        with applying_remote(record):
            pass
        assert record.remote_changing is True
    assert record.remote_changing is False


def test_remember_snapshot_is_returned_as_copy() -> None:
    record = Model()
    remember_snapshot(record, {"tags": ["a"]})

    snapshot = record.remote_snapshot
    snapshot["tags"].append("b")
    assert record.remote_snapshot == {"tags": ["a"]}


def test_echo_is_matched_by_identifier() -> None:
    echoes = EchoSuppressor()
    echoes.expect(EchoKind.ADD, "x")

    # Someone else's child arriving first must not eat the expectation.
    assert echoes.consume(EchoKind.ADD, "y") is False
    assert echoes.consume(EchoKind.REMOVE, "x") is False
    assert echoes.pending is True

    assert echoes.consume(EchoKind.ADD, "x") is True
    assert echoes.consume(EchoKind.ADD, "x") is False
    assert echoes.pending is False


def test_repeated_expectations_are_counted() -> None:
    echoes = EchoSuppressor()
    echoes.expect(EchoKind.ADD, "x")
    echoes.expect(EchoKind.ADD, "x")
    echoes.expect(EchoKind.REMOVE, "z")

    assert len(echoes) == 3
    echoes.discard(EchoKind.ADD, "x")
    assert len(echoes) == 2

    echoes.clear()
    assert len(echoes) == 0
    assert echoes.pending is False
