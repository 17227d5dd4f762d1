"""Minimal synchronous event emitter for local models and collections."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

Handler = Callable[..., Any]

#: Handlers registered under this name receive every event, with the event
#: name prepended to the arguments.
ALL_EVENTS = "all"


class Events:
    """Mixin providing ``on`` / ``off`` / ``once`` / ``trigger``.

    Handlers run synchronously in registration order. Registering or removing
    a handler while an event is being dispatched affects the next dispatch,
    not the current one.
    """

    _handlers: dict[str, list[Handler]]

    def _handler_map(self) -> dict[str, list[Handler]]:
        try:
            return self._handlers
        except AttributeError:
            self._handlers = {}
            return self._handlers

    def on(self, event: str, handler: Handler) -> None:
        self._handler_map().setdefault(event, []).append(handler)

    def off(self, event: str | None = None, handler: Handler | None = None) -> None:
        """Remove handlers; omitted arguments act as wildcards."""
        handlers = self._handler_map()
        names = [event] if event is not None else list(handlers)
        for name in names:
            if handler is None:
                handlers.pop(name, None)
                continue
            remaining = [h for h in handlers.get(name, []) if h != handler and getattr(h, "_wrapped", None) != handler]
            if remaining:
                handlers[name] = remaining
            else:
                handlers.pop(name, None)

    def once(self, event: str, handler: Handler) -> None:
        def _once(*args: Any) -> Any:
            self.off(event, _once)
            return handler(*args)

        _once._wrapped = handler  # type: ignore[attr-defined]
        self.on(event, _once)

    def trigger(self, event: str, *args: Any) -> None:
        handlers = self._handler_map()
        for handler in list(handlers.get(event, ())):
            handler(*args)
        if event != ALL_EVENTS:
            for handler in list(handlers.get(ALL_EVENTS, ())):
                handler(event, *args)
