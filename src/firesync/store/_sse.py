"""Incremental Server-Sent Events decoding for the streaming REST API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerEvent:
    """One dispatched SSE event with its JSON-decoded data."""

    event: str
    data: Any = None


@dataclass
class SseDecoder:
    """Feed raw lines, get :class:`ServerEvent` objects at blank lines."""

    _event: str = ""
    _data: list[str] = field(default_factory=list)

    def feed(self, line: str) -> ServerEvent | None:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> ServerEvent | None:
        if not self._event and not self._data:
            return None
        event, raw = self._event or "message", "\n".join(self._data)
        self._event, self._data = "", []
        try:
            data = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            _logger.debug("Non-JSON data for SSE event %s", event)
            data = raw
        return ServerEvent(event=event, data=data)
