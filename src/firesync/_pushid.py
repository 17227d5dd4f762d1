"""Chronologically ordered, collision-resistant key generation.

Keys are 20 characters: 8 characters of millisecond timestamp followed by
12 random characters. Within the same millisecond the random part is
incremented instead of regenerated, so keys generated by one process still
sort in creation order.
"""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable

from firesync._constants import PUSH_CHARS, PUSH_ID_RANDOM_CHARS, PUSH_ID_TIME_CHARS

_BASE = len(PUSH_CHARS)


class PushIdGenerator:
    """Stateful generator; one instance per process is enough."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random: list[int] = [0] * PUSH_ID_RANDOM_CHARS

    def __call__(self) -> str:
        now_ms = int(self._clock() * 1000)
        with self._lock:
            if now_ms == self._last_ms:
                self._increment_random()
            else:
                self._last_random = [secrets.randbelow(_BASE) for _ in range(PUSH_ID_RANDOM_CHARS)]
            self._last_ms = now_ms
            random_part = "".join(PUSH_CHARS[i] for i in self._last_random)

        time_chars: list[str] = []
        remaining = now_ms
        for _ in range(PUSH_ID_TIME_CHARS):
            time_chars.append(PUSH_CHARS[remaining % _BASE])
            remaining //= _BASE
        if remaining:
            raise ValueError("timestamp does not fit into a push id")
        return "".join(reversed(time_chars)) + random_part

    def _increment_random(self) -> None:
        # Carry from the last digit; wraps only after 64**12 ids in one millisecond.
        for index in range(PUSH_ID_RANDOM_CHARS - 1, -1, -1):
            if self._last_random[index] != _BASE - 1:
                self._last_random[index] += 1
                return
            self._last_random[index] = 0


generate_push_id = PushIdGenerator()
