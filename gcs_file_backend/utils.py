"""Shared utility functions for the backend and its streams.

Key utilities:
- Data type coercion (bytes, str, BinaryIO)
- Payload decoding for text reads
- Content-type inference from object keys

Example usage:
    >>> from gcs_file_backend.utils import coerce_to_bytes
    >>> coerce_to_bytes("Hello, world!")
    b'Hello, world!'

    >>> guess_content_type("reports/summary.json")
    'application/json'
"""

from __future__ import annotations

import io
import mimetypes
from typing import BinaryIO, Callable, Optional

ContentTypeResolver = Callable[[str], Optional[str]]


def coerce_to_bytes(
    data: bytes | bytearray | memoryview | str | BinaryIO,
    *,
    encoding: str = "utf-8",
) -> bytes:
    """Coerce supported input types to raw bytes.

    Handles bytes-like values, strings, and file-like objects.

    Args:
        data: Input data to coerce
        encoding: Encoding applied to text input

    Returns:
        Raw bytes representation

    Raises:
        TypeError: If data type is not supported.

    """
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode(encoding)

    if hasattr(data, "read"):
        result = data.read()

        # Reset seekable streams so callers can reuse them
        if hasattr(data, "seek"):
            try:
                data.seek(0)
            except (OSError, io.UnsupportedOperation):
                pass

        if isinstance(result, str):
            return result.encode(encoding)
        if isinstance(result, (bytes, bytearray)):
            return bytes(result)
        message = f"Unsupported stream payload type: {type(result).__name__}"
        raise TypeError(message)

    message = f"Unsupported data type: {type(data).__name__}"
    raise TypeError(message)


def decode_payload(payload: bytes, encoding: str | None) -> bytes | str:
    """Return the payload as text when an encoding is given, else unchanged."""
    if encoding is None:
        return payload
    return payload.decode(encoding)


def guess_content_type(path: str) -> str | None:
    """Infer a content type from an object key.

    Pure and synchronous; returns None when the extension is unknown so the
    provider default applies.
    """
    mimetype, _ = mimetypes.guess_type(path, strict=False)
    return mimetype
