from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import pytest

from firesync.config import FiresyncConfig
from firesync.exceptions import FiresyncTransportError
from firesync.snapshot import Snapshot
from firesync.store._sse import ServerEvent, SseDecoder
from firesync.store.base import EventKind
from firesync.store.rest import RestStore, _error_code, _Stream
from firesync.sync.collection import SyncedCollection

_URL = "https://demo.firebaseio.com"


class _FakeResponse:
    def __init__(self, status: int, text: str = "", lines: list[bytes] | None = None) -> None:
        self.status = status
        self._text = text
        self._lines = lines or []

    async def text(self) -> str:
        return self._text

    @property
    def content(self) -> AsyncIterator[bytes]:
        return self._iter_lines()

    async def _iter_lines(self) -> AsyncIterator[bytes]:
        for line in self._lines:
            yield line

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeSession:
    def __init__(self, responses: list[Any] | None = None, stream_lines: list[bytes] | None = None) -> None:
        self.responses = list(responses or [])
        self.stream_lines = stream_lines or []
        self.calls: list[tuple[str, str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, *, data: Any = None, headers: Any = None, timeout: Any = None) -> Any:
        self.calls.append((method, url, data))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        status, text = response
        return _FakeResponse(status, text)

    def get(self, url: str, *, headers: Any = None, timeout: Any = None) -> _FakeResponse:
        self.calls.append(("STREAM", url, headers["accept"]))
        return _FakeResponse(200, lines=self.stream_lines)

    async def close(self) -> None:
        self.closed = True


def _store(session: Any = None, **config: Any) -> RestStore:
    return RestStore(FiresyncConfig(url=_URL, **config), session=session)


# ----------------------------------------------------------------------
# SSE decoding
# ----------------------------------------------------------------------


def test_sse_decoder_dispatches_on_blank_line() -> None:
    decoder = SseDecoder()

    assert decoder.feed("event: put\n") is None
    assert decoder.feed('data: {"path":"/","data":{"a":1}}\n') is None
    assert decoder.feed("\n") == ServerEvent("put", {"path": "/", "data": {"a": 1}})


def test_sse_decoder_handles_comments_multiline_and_plain_text() -> None:
    decoder = SseDecoder()

    assert decoder.feed(": ping") is None
    assert decoder.feed("") is None

    decoder.feed("event: patch")
    decoder.feed('data: {"path": "/a",')
    decoder.feed('data: "data": {"n": 2}}')
    assert decoder.feed("") == ServerEvent("patch", {"path": "/a", "data": {"n": 2}})

    decoder.feed("event: keep-alive")
    decoder.feed("data: null")
    assert decoder.feed("\r\n") == ServerEvent("keep-alive", None)

    decoder.feed("data: hello")
    assert decoder.feed("") == ServerEvent("message", "hello")


def test_error_code_from_body() -> None:
    assert _error_code('{"error" : "Permission denied"}') == "permission_denied"
    assert _error_code("not json") == ""
    assert _error_code('{"other": 1}') == ""


# ----------------------------------------------------------------------
# Stream mirroring
# ----------------------------------------------------------------------


def test_stream_defers_subscribers_until_first_full_value() -> None:
    stream = _Stream(_store(), "todos")
    seen: list[tuple[str, Any]] = []
    stream.subscribe(EventKind.CHILD_ADDED, lambda snap: seen.append(("added", snap.key)))
    stream.subscribe(EventKind.VALUE, lambda snap: seen.append(("value", snap.value)))

    assert stream.handle(ServerEvent("keep-alive", None)) is True
    assert seen == []

    assert stream.handle(ServerEvent("put", {"path": "/", "data": {"a": {"n": 1}}})) is True
    assert stream.loaded is True
    assert seen == [("added", "a"), ("value", {"a": {"n": 1}})]

    seen.clear()
    stream.handle(ServerEvent("patch", {"path": "/a", "data": {"n": 2}}))
    stream.handle(ServerEvent("put", {"path": "/b", "data": {"n": 3}}))
    assert seen == [
        ("value", {"a": {"n": 2}}),
        ("added", "b"),
        ("value", {"a": {"n": 2}, "b": {"n": 3}}),
    ]


def test_stream_ends_on_cancel_and_ignores_malformed_events() -> None:
    stream = _Stream(_store(), "todos")

    assert stream.handle(ServerEvent("put", "garbage")) is True
    assert stream.loaded is False
    assert stream.handle(ServerEvent("cancel", None)) is False
    assert stream.handle(ServerEvent("auth_revoked", None)) is False


def test_stream_unsubscribe_before_load() -> None:
    stream = _Stream(_store(), "todos")
    handler = lambda snap: None  # noqa: E731

    stream.subscribe(EventKind.VALUE, handler)
    assert stream.has_subscribers()
    stream.unsubscribe(EventKind.VALUE, handler)
    assert not stream.has_subscribers()


def test_url_for_adds_auth_and_export_format() -> None:
    store = _store(auth="tok")

    assert store.url_for("todos/x") == f"{_URL}/todos/x.json?auth=tok"
    assert store.url_for("/todos/", export=True) == f"{_URL}/todos.json?auth=tok&format=export"
    assert _store(export_format=False).url_for("a", export=True) == f"{_URL}/a.json"


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_writes_map_to_http_methods() -> None:
    session = _FakeSession([(200, '{"a":1}'), (200, "null"), (200, '{"b":2}'), (200, "{}")])
    store = _store(session)
    results: list[Any] = []

    store.write("todos/x", {"a": 1}, results.append)
    store.write("todos/y", None, results.append)
    store.merge_update("todos/x", {"b": 2}, results.append)
    store.write_with_priority("todos/z", {"c": 3}, 7, results.append)
    await store.drain()

    assert session.calls == [
        ("PUT", f"{_URL}/todos/x.json", '{"a":1}'),
        ("DELETE", f"{_URL}/todos/y.json", None),
        ("PATCH", f"{_URL}/todos/x.json", '{"b":2}'),
        ("PUT", f"{_URL}/todos/z.json", '{"c":3,".priority":7}'),
    ]
    assert results == [None, None, None, None]


@pytest.mark.asyncio
async def test_rejected_write_reports_transport_error() -> None:
    session = _FakeSession([(401, '{"error" : "Permission denied"}')])
    store = _store(session, auth="tok")
    results: list[Any] = []

    store.write("todos/x", {"a": 1}, results.append)
    await store.drain()

    error = results[0]
    assert isinstance(error, FiresyncTransportError)
    assert error.code == "permission_denied"
    assert error.status_code == 401
    assert "tok" not in str(error)


@pytest.mark.asyncio
async def test_network_failure_is_wrapped() -> None:
    session = _FakeSession([aiohttp.ClientConnectionError("refused")])
    store = _store(session)
    results: list[Any] = []

    store.merge_update("todos/x", {"a": 1}, results.append)
    await store.drain()

    assert isinstance(results[0], FiresyncTransportError)
    assert results[0].status_code is None


@pytest.mark.asyncio
async def test_read_returns_snapshot_with_priority() -> None:
    session = _FakeSession([(200, '{"a":1,".priority":2}')])
    store = _store(session)
    snapshots: list[Snapshot] = []

    store.read("todos", snapshots.append)
    await store.drain()

    assert session.calls[0][1] == f"{_URL}/todos.json?format=export"
    assert snapshots[0].key == "todos"
    assert snapshots[0].value == {"a": 1}
    assert snapshots[0].priority == 2


@pytest.mark.asyncio
async def test_failed_read_goes_to_error_handler() -> None:
    session = _FakeSession([(500, "boom")])
    store = _store(session)
    errors: list[Any] = []

    store.read("todos", lambda snap: None, on_error=errors.append)
    await store.drain()

    assert isinstance(errors[0], FiresyncTransportError)
    assert errors[0].status_code == 500


@pytest.mark.asyncio
async def test_collection_follows_event_stream() -> None:
    lines = [
        b"event: put\n",
        b'data: {"path":"/","data":{"x":{"id":"x","title":"a"}}}\n',
        b"\n",
        b"event: keep-alive\n",
        b"data: null\n",
        b"\n",
        b"event: patch\n",
        b'data: {"path":"/x","data":{"title":"b"}}\n',
        b"\n",
    ]
    session = _FakeSession(stream_lines=lines)
    store = _store(session, stream_max_retries=0)

    todos = SyncedCollection(store=store, path="todos")
    sizes: list[int] = []
    todos.on("sync", lambda collection: sizes.append(len(collection)))
    stream = store._streams["todos"]  # type: ignore[attr-defined]
    await stream._task  # type: ignore[attr-defined]
    await store.drain()

    assert todos.synced is True
    assert sizes == [1]
    assert todos.ids() == ["x"]
    assert todos.get("x").get("title") == "b"  # type: ignore[union-attr]
    # Membership and the sync event come from the stream alone.
    assert session.calls == [("STREAM", f"{_URL}/todos.json?format=export", "text/event-stream")]

    todos.close()
    assert store._streams == {}  # type: ignore[attr-defined]
    await store.aclose()
    assert session.closed is False


@pytest.mark.asyncio
async def test_owned_session_is_closed() -> None:
    async with RestStore(FiresyncConfig(url=_URL)) as store:
        http = store._require_session()  # type: ignore[attr-defined]
        assert isinstance(http, aiohttp.ClientSession)

    assert http.closed
