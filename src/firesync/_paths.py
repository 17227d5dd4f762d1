"""Path helpers for slash-separated store locations.

Paths are normalized to have no leading or trailing slash; the root is the
empty string.
"""

from __future__ import annotations

# Characters the Firebase Realtime Database rejects inside a key.
_FORBIDDEN_KEY_CHARS = frozenset(".#$[]")


def normalize(path: str) -> str:
    """Collapse duplicate slashes and strip leading/trailing ones."""
    return "/".join(segment for segment in path.split("/") if segment)


def split(path: str) -> list[str]:
    normalized = normalize(path)
    return normalized.split("/") if normalized else []


def join(*parts: str) -> str:
    return normalize("/".join(parts))


def key_of(path: str) -> str | None:
    """Last segment of *path*, or ``None`` for the root."""
    segments = split(path)
    return segments[-1] if segments else None


def is_prefix(prefix: str, path: str) -> bool:
    """Return ``True`` when *prefix* is *path* or one of its ancestors."""
    prefix_segments = split(prefix)
    return split(path)[: len(prefix_segments)] == prefix_segments


def relative(base: str, path: str) -> str:
    """Strip the *base* prefix from *path*.

    Raises :class:`ValueError` if *path* is not under *base*.
    """
    if not is_prefix(base, path):
        raise ValueError(f"{path!r} is not under {base!r}")
    return "/".join(split(path)[len(split(base)) :])


def validate_key(key: str) -> str:
    """Reject keys that cannot be stored as a single path segment."""
    if not key or "/" in key or any(ch in _FORBIDDEN_KEY_CHARS for ch in key):
        raise ValueError(f"invalid key: {key!r}")
    return key
