"""Core interfaces and error types for the GCS file backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Callable, Union

if TYPE_CHECKING:
    import asyncio

    from .streams import DeferredReadStream, DeferredWriteStream

PathLike = Union[str, Path]

DEFAULT_CHUNK_SIZE = 64 * 1024

CompletionCallback = Callable[[Union[BaseException, None], Any], None]


class FileBackendError(RuntimeError):
    """Base exception for backend operations."""

    def __init__(
        self,
        message: str,
        *,
        path: PathLike | None = None,
    ) -> None:
        """Initialise the base error with an optional object key context."""
        path_str = str(path) if path is not None else None
        detail = message if path_str is None else ": ".join((message, path_str))
        super().__init__(detail)
        self.message = message
        self.path = path_str


class ConfigurationError(FileBackendError, ValueError):
    """Raised when a backend cannot be constructed from its options."""

    @classmethod
    def missing_bucket_name(cls) -> ConfigurationError:
        """Return an error indicating the bucket name is absent."""
        return cls("bucket_name required")

    @classmethod
    def missing_credentials(cls) -> ConfigurationError:
        """Return an error indicating no credential material was supplied."""
        return cls("key_file or credentials required")

    @classmethod
    def missing_dependency(cls) -> ConfigurationError:
        """Return an error indicating the Google SDK is unavailable."""
        return cls(
            "Install the 'google-cloud-storage' package to use GCSFileBackend",
        )

    @classmethod
    def invalid_mapping(cls) -> ConfigurationError:
        """Return an error indicating connection info is not a mapping."""
        return cls("connection_info must be a mapping")


class BucketUnavailableError(FileBackendError):
    """Raised when the bucket is missing and cannot or may not be created."""

    def __init__(self, bucket_name: str, *, reason: str) -> None:
        """Create an error for the bucket with the resolution outcome."""
        super().__init__(f"bucket does not exist {bucket_name} ({reason})")
        self.bucket_name = bucket_name
        self.reason = reason

    @classmethod
    def missing(cls, bucket_name: str) -> BucketUnavailableError:
        """Return an error for an absent bucket with auto-create disabled."""
        return cls(bucket_name, reason="createBucket disabled")

    @classmethod
    def creation_failed(cls, bucket_name: str) -> BucketUnavailableError:
        """Return an error for a bucket whose creation call failed."""
        return cls(bucket_name, reason="creation failed")

    @classmethod
    def check_failed(cls, bucket_name: str) -> BucketUnavailableError:
        """Return an error for a bucket whose existence check failed."""
        return cls(bucket_name, reason="existence check failed")

    @classmethod
    def resolution_cancelled(cls, bucket_name: str) -> BucketUnavailableError:
        """Return an error for a bucket whose resolution was cancelled."""
        return cls(bucket_name, reason="resolution cancelled")


class TransportError(FileBackendError):
    """Raised when the remote storage provider reports a failure."""

    @classmethod
    def request_failed(
        cls,
        operation: str,
        *,
        path: PathLike | None = None,
    ) -> TransportError:
        """Return an error describing a failed provider request."""
        return cls(f"Storage request failed during {operation}", path=path)


class NotFoundError(TransportError):
    """Raised when a requested object is missing from the bucket."""

    def __init__(self, path: PathLike) -> None:
        """Create a not-found error for the provided object key."""
        super().__init__("Object not found", path=path)


class InvalidOperationError(FileBackendError):
    """Raised when an operation is not allowed for the given key or stream."""

    def __init__(self, message: str, *, path: PathLike | None = None) -> None:
        """Initialise an invalid operation error scoped to a key."""
        super().__init__(message, path=path)

    @classmethod
    def empty_path_not_allowed(cls, path: PathLike) -> InvalidOperationError:
        """Return an error when an operation targets an empty key."""
        return cls("Path cannot be empty", path=path)

    @classmethod
    def reserved_key(cls, path: PathLike) -> InvalidOperationError:
        """Return an error for an object name the provider never accepts."""
        return cls("Key is reserved", path=path)

    @classmethod
    def write_after_end(cls) -> InvalidOperationError:
        """Return an error for data written to an ended stream."""
        return cls("write after end")

    @classmethod
    def stream_aborted(cls) -> InvalidOperationError:
        """Return the default error used when a stream is aborted."""
        return cls("stream aborted")


class FileBackend(ABC):
    """Standardised interface for bucket-backed virtual filesystems.

    Stream factories return immediately; failures while the remote side is
    being prepared are delivered through the stream. Buffered operations
    return an awaitable task, or report through ``callback(error, result)``
    when one is given.
    """

    @abstractmethod
    def create_read_stream(
        self,
        path: PathLike,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> DeferredReadStream:
        """Open a readable stream for an object.

        Args:
            path: Object key within the bucket.
            chunk_size: Number of bytes requested from the remote per read.

        """

    @abstractmethod
    def create_write_stream(
        self,
        path: PathLike,
        *,
        content_type: str | None = None,
        gzip: bool | None = None,
        public: bool | None = None,
        encoding: str = "utf-8",
    ) -> DeferredWriteStream:
        """Open a writable stream for an object.

        Args:
            path: Object key within the bucket.
            content_type: Explicit content type, inferred from the key if None.
            gzip: Compress on the wire; defaults to the backend setting.
            public: Apply a public-read ACL; defaults to the backend setting.
            encoding: Encoding applied to ``str`` chunks.

        """

    @abstractmethod
    def read_file(
        self,
        path: PathLike,
        *,
        encoding: str | None = None,
        callback: CompletionCallback | None = None,
    ) -> asyncio.Task | None:
        """Read a whole object.

        Args:
            path: Object key within the bucket.
            encoding: Decode the payload to text when set.
            callback: Optional ``(error, data)`` completion handler.

        Returns:
            A task resolving to bytes or str, or None when a callback is used.

        """

    @abstractmethod
    def write_file(
        self,
        path: PathLike,
        data: bytes | str | BinaryIO,
        *,
        encoding: str = "utf-8",
        content_type: str | None = None,
        callback: CompletionCallback | None = None,
    ) -> asyncio.Task | None:
        """Write a whole object.

        Args:
            path: Object key within the bucket.
            data: Payload to store.
            encoding: Encoding applied when ``data`` is text.
            content_type: Explicit content type, inferred from the key if None.
            callback: Optional ``(error, None)`` completion handler.

        Returns:
            A task resolving once the upload is finalised, or None when a
            callback is used.

        """
