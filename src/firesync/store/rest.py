"""Firebase Realtime Database adapter over the REST and streaming API.

Reads and writes are plain HTTP requests against ``<url>/<path>.json``.
Subscriptions open one Server-Sent Events stream per location; the ``put``
and ``patch`` events are mirrored into an
:class:`~firesync.store.tree.EventTree`, which derives the child and value
events the sync engine consumes.

All :class:`~firesync.store.base.RemoteStore` methods return immediately and
must be called from inside a running event loop; the HTTP work runs in
background tasks.

Usage::

    async with RestStore(FiresyncConfig.from_env()) as store:
        todos = SyncedCollection(store=store, path="todos")
        ...
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Coroutine, Mapping
from typing import Any
from urllib.parse import urlencode

import aiohttp

from firesync import _paths
from firesync._constants import USER_AGENT
from firesync._pushid import generate_push_id
from firesync._redact import redact_for_log, redact_url
from firesync.config import FiresyncConfig
from firesync.exceptions import FiresyncError, FiresyncTransportError, FiresyncWriteError
from firesync.snapshot import Snapshot, with_priority
from firesync.store._sse import ServerEvent, SseDecoder
from firesync.store.base import Completion, EventHandler, EventKind, ReadErrorHandler
from firesync.store.tree import EventTree

_logger = logging.getLogger(__name__)

_NO_BODY: Any = object()


def _error_code(text: str) -> str:
    """Turn a ``{"error": "Permission denied"}`` body into ``permission_denied``."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return ""
    message = body.get("error") if isinstance(body, dict) else None
    if not isinstance(message, str):
        return ""
    return "_".join(message.lower().split())


class _Stream:
    """One SSE connection mirroring a single location."""

    def __init__(self, store: RestStore, location: str) -> None:
        self._store = store
        self.location = location
        self.tree = EventTree()
        self.loaded = False
        self._waiting: list[tuple[EventKind, EventHandler]] = []
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._store._task_done)  # noqa: SLF001

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        # Until the first full value arrives the mirror is empty; replaying
        # it would report the location as deleted.
        if self.loaded:
            self.tree.subscribe("", kind, handler)
        else:
            self._waiting.append((kind, handler))

    def unsubscribe(self, kind: EventKind, handler: EventHandler | None) -> None:
        self._waiting = [
            (k, h) for k, h in self._waiting if not (k == kind and (handler is None or h == handler))
        ]
        self.tree.unsubscribe("", kind, handler)

    def has_subscribers(self) -> bool:
        return bool(self._waiting) or self.tree.has_subscribers()

    def handle(self, event: ServerEvent) -> bool:
        """Apply one server event; return ``False`` when the stream must end."""
        if event.event in {"put", "patch"}:
            if not isinstance(event.data, dict) or "path" not in event.data:
                _logger.debug("Malformed %s event on /%s", event.event, self.location)
                return True
            path = _paths.normalize(str(event.data["path"]))
            data = event.data.get("data")
            _logger.debug("Stream /%s %s path=/%s data=%s", self.location, event.event, path, redact_for_log(data))
            if event.event == "put":
                self.tree.set(path, data)
            elif isinstance(data, Mapping):
                self.tree.update(path, data)
            if not self.loaded and event.event == "put" and not path:
                self._mark_loaded()
            return True
        if event.event == "keep-alive":
            return True
        if event.event in {"cancel", "auth_revoked"}:
            _logger.warning("Stream /%s closed by server: %s", self.location, event.event)
            return False
        _logger.debug("Ignoring SSE event %s on /%s", event.event, self.location)
        return True

    def _mark_loaded(self) -> None:
        self.loaded = True
        waiting, self._waiting = self._waiting, []
        for kind, handler in waiting:
            self.tree.subscribe("", kind, handler)

    async def _run(self) -> None:
        config = self._store.config
        failures = 0
        while True:
            try:
                await self._consume()
                return
            except FiresyncTransportError as exc:
                _logger.warning("Stream /%s failed: %s", self.location, exc)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                _logger.warning("Stream /%s dropped: %s", self.location, exc)
            failures += 1
            if failures > config.stream_max_retries:
                _logger.error("Stream /%s giving up after %d attempts", self.location, failures)
                return
            await asyncio.sleep(config.stream_retry_delay)

    async def _consume(self) -> None:
        http = self._store._require_session()  # noqa: SLF001
        url = self._store.url_for(self.location, export=True)
        headers = {"accept": "text/event-stream", "user-agent": USER_AGENT}
        _logger.debug("STREAM %s", redact_url(url))
        async with http.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=None)) as resp:
            if resp.status != 200:
                text = await resp.text()
                raise FiresyncTransportError(
                    f"HTTP {resp.status} opening stream /{self.location}",
                    path=self.location,
                    code=_error_code(text),
                    status_code=resp.status,
                )
            decoder = SseDecoder()
            async for raw_line in resp.content:
                event = decoder.feed(raw_line.decode("utf-8"))
                if event is not None and not self.handle(event):
                    return
        raise FiresyncTransportError(f"Stream /{self.location} ended", path=self.location)


class RestStore:
    """:class:`~firesync.store.base.RemoteStore` backed by the Firebase REST API."""

    def __init__(
        self,
        config: FiresyncConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        key_generator: Callable[[], str] = generate_push_id,
    ) -> None:
        self.config = config
        self._external_session = session is not None
        self._http = session
        self._key_generator = key_generator
        self._tasks: set[asyncio.Task[Any]] = set()
        self._streams: dict[str, _Stream] = {}

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RestStore:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel streams and pending requests, and close the owned session."""
        for stream in self._streams.values():
            stream.stop()
        self._streams.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if not self._external_session and self._http is not None:
            await self._http.close()
            self._http = None

    async def drain(self) -> None:
        """Wait until every issued read and write has completed."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http is None:
            raise FiresyncError("Store not initialized. Use 'async with RestStore(...) as store:'")
        return self._http

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("Background store task failed", exc_info=exc)

    def url_for(self, path: str, *, export: bool = False) -> str:
        query: dict[str, str] = {}
        if self.config.auth:
            query["auth"] = self.config.auth
        if export and self.config.export_format:
            query["format"] = "export"
        url = f"{self.config.url}/{_paths.normalize(path)}.json"
        return f"{url}?{urlencode(query)}" if query else url

    async def request(self, method: str, path: str, body: Any = _NO_BODY, *, export: bool = False) -> Any:
        """Send one REST request and return the decoded JSON response."""
        http = self._require_session()
        url = self.url_for(path, export=export)
        headers = {"content-type": "application/json; charset=UTF-8", "user-agent": USER_AGENT}
        data = None if body is _NO_BODY else json.dumps(body, separators=(",", ":"))
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)

        _logger.debug("%s %s body=%s", method, redact_url(url), redact_for_log(None if body is _NO_BODY else body))

        try:
            async with http.request(method, url, data=data, headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                if resp.status >= 300:
                    raise FiresyncTransportError(
                        f"HTTP {resp.status} from {method} /{_paths.normalize(path)}: {text[:200]}",
                        path=path,
                        code=_error_code(text),
                        status_code=resp.status,
                    )
        except FiresyncTransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FiresyncTransportError(f"{method} /{_paths.normalize(path)} failed: {exc}", path=path) from exc

        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise FiresyncTransportError(
                f"Invalid JSON from {method} /{_paths.normalize(path)}: {text[:200]}",
                path=path,
            ) from exc

    def _send(self, method: str, path: str, body: Any, callback: Completion | None) -> None:
        async def _run() -> None:
            error: FiresyncWriteError | None = None
            try:
                await self.request(method, path, body)
            except FiresyncWriteError as exc:
                _logger.warning("%s /%s failed: %s", method, _paths.normalize(path), exc)
                error = exc
            if callback is not None:
                callback(error)

        self._spawn(_run())

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    def read(self, path: str, callback: EventHandler, on_error: ReadErrorHandler | None = None) -> None:
        async def _run() -> None:
            try:
                data = await self.request("GET", path, export=True)
            except FiresyncWriteError as exc:
                if on_error is None:
                    _logger.warning("Read of /%s failed: %s", _paths.normalize(path), exc)
                    return
                on_error(exc)
                return
            callback(Snapshot.from_export(_paths.key_of(path), data))

        self._spawn(_run())

    def subscribe(self, path: str, kind: EventKind, handler: EventHandler) -> None:
        location = _paths.normalize(path)
        stream = self._streams.get(location)
        if stream is None:
            stream = _Stream(self, location)
            self._streams[location] = stream
            stream.start()
        stream.subscribe(kind, handler)

    def unsubscribe(self, path: str, kind: EventKind, handler: EventHandler | None = None) -> None:
        location = _paths.normalize(path)
        stream = self._streams.get(location)
        if stream is None:
            return
        stream.unsubscribe(kind, handler)
        if not stream.has_subscribers():
            stream.stop()
            del self._streams[location]

    def write(self, path: str, value: Any, callback: Completion | None = None) -> None:
        if value is None:
            self._send("DELETE", path, _NO_BODY, callback)
        else:
            self._send("PUT", path, value, callback)

    def merge_update(self, path: str, patch: Mapping[str, Any], callback: Completion | None = None) -> None:
        self._send("PATCH", path, dict(patch), callback)

    def write_with_priority(
        self,
        path: str,
        value: Any,
        priority: Any,
        callback: Completion | None = None,
    ) -> None:
        self._send("PUT", path, with_priority(value, priority), callback)

    def generate_key(self, path: str) -> str:
        return self._key_generator()
