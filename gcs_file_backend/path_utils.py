"""Object key validation utilities.

Bucket objects are addressed by opaque key strings. ``foo/bar/test``,
``foo//bar`` and ``logs/`` are three distinct keys, not directory paths, so
keys reach the provider exactly as given. Only keys the provider can never
store are rejected here.
"""

from __future__ import annotations

from typing import Any

from .interfaces import InvalidOperationError, PathLike

# Object names the provider refuses outright.
RESERVED_KEYS = frozenset({".", ".."})


def validate_not_empty(path: Any) -> None:
    """Validate that a key is not the empty string.

    Args:
        path: Key to validate

    Raises:
        InvalidOperationError: If key is empty.

    """
    if str(path) == "":
        raise InvalidOperationError.empty_path_not_allowed(path)


def validate_not_reserved(key: str) -> None:
    """Validate that a key is not one of the reserved object names."""
    if key in RESERVED_KEYS:
        raise InvalidOperationError.reserved_key(key)


def to_object_key(path: PathLike) -> str:
    """Return the object key for ``path`` without rewriting it.

    ``Path`` objects are converted with ``str()``; strings pass through
    unchanged, leading and repeated slashes included.

    Raises:
        InvalidOperationError: If the key is empty or reserved.

    """
    key = path if isinstance(path, str) else str(path)
    validate_not_empty(key)
    validate_not_reserved(key)
    return key
