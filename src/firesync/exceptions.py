"""Custom exception hierarchy for firesync."""

from __future__ import annotations


class FiresyncError(Exception):
    """Base exception for all firesync errors."""


class FiresyncConfigError(FiresyncError):
    """Invalid or missing configuration (store, path, or URL)."""


class FiresyncIdentifierError(FiresyncError):
    """Attempt to change or unset a record identifier once assigned."""


class FiresyncConsistencyError(FiresyncError):
    """Remote event stream contradicts local state.

    Raised when a ``child_changed`` event arrives for an identifier that was
    never added locally. Fabricating a record here would hide a lost
    ``child_added`` event, so the engine fails loudly instead.
    """

    def __init__(self, message: str, *, path: str = "", key: str = "") -> None:
        self.path = path
        self.key = key
        super().__init__(message)


class FiresyncWriteError(FiresyncError):
    """A remote write (set, update, delete) did not complete.

    Passed to completion callbacks; never raised out of the sync engine.
    """

    def __init__(self, message: str, *, path: str = "", code: str = "") -> None:
        self.path = path
        self.code = code
        super().__init__(message)


class FiresyncTransportError(FiresyncWriteError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        path: str = "",
        code: str = "",
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, path=path, code=code)
