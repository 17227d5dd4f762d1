"""Client configuration for the REST store."""

from __future__ import annotations

import dataclasses
import os
from typing import Any
from urllib.parse import urlsplit

from firesync.exceptions import FiresyncConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class FiresyncConfig:
    """Connection settings for :class:`firesync.store.rest.RestStore`.

    Parameters
    ----------
    url : str
        Database root URL, e.g. ``https://my-app.firebaseio.com``.
    auth : str or None
        Database secret or ID token, sent as the ``auth`` query parameter.
    request_timeout : float
        Total timeout in seconds for a single read or write request.
    stream_retry_delay : float
        Seconds to wait before reconnecting a dropped event stream.
    stream_max_retries : int
        Consecutive reconnect attempts before a stream gives up.
        ``0`` disables reconnection.
    export_format : bool
        Request ``format=export`` so priorities are included in values.
    """

    url: str
    auth: str | None = None
    request_timeout: float = 30.0
    stream_retry_delay: float = 2.0
    stream_max_retries: int = 10
    export_format: bool = True

    def __post_init__(self) -> None:
        url = (self.url or "").strip().rstrip("/")
        parts = urlsplit(url)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise FiresyncConfigError(f"url must be an absolute http(s) URL, got {self.url!r}")
        object.__setattr__(self, "url", url)
        if self.request_timeout <= 0:
            raise FiresyncConfigError("request_timeout must be positive")
        if self.stream_retry_delay < 0 or self.stream_max_retries < 0:
            raise FiresyncConfigError("stream retry settings must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> FiresyncConfig:
        """Create configuration from environment variables.

        Reads ``FIRESYNC_URL``, ``FIRESYNC_AUTH`` and optional
        ``FIRESYNC_*`` tuning variables. Explicit keyword arguments
        override environment values.

        Raises
        ------
        FiresyncConfigError
            When no URL is provided by either source.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        url = env.get("FIRESYNC_URL")
        if url is not None:
            config_kwargs["url"] = url
        auth = env.get("FIRESYNC_AUTH")
        if auth:
            config_kwargs["auth"] = auth

        timeout_env = env.get("FIRESYNC_REQUEST_TIMEOUT")
        if timeout_env is not None and "request_timeout" not in overrides:
            config_kwargs["request_timeout"] = float(timeout_env)

        delay_env = env.get("FIRESYNC_STREAM_RETRY_DELAY")
        if delay_env is not None and "stream_retry_delay" not in overrides:
            config_kwargs["stream_retry_delay"] = float(delay_env)

        retries_env = env.get("FIRESYNC_STREAM_MAX_RETRIES")
        if retries_env is not None and "stream_max_retries" not in overrides:
            config_kwargs["stream_max_retries"] = int(retries_env)

        if "export_format" not in overrides:
            config_kwargs["export_format"] = _env_bool(env.get("FIRESYNC_EXPORT_FORMAT"), True)

        config_kwargs.update(overrides)
        if not config_kwargs.get("url"):
            raise FiresyncConfigError("FIRESYNC_URL is not set and no url was given")

        return cls(**config_kwargs)
