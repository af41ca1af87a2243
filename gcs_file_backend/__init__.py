"""Virtual filesystem over a Google Cloud Storage bucket.

This package exposes a bucket through a small file API: streaming reads and
writes, and whole-file reads and writes, without callers having to check
whether the bucket exists or wire up upload streams themselves.

Core Components:
    - FileBackend: Abstract interface implemented by the backend
    - GCSFileBackend: Google Cloud Storage implementation
    - BucketGate: Once-per-instance bucket existence check and creation
    - DeferredReadStream / DeferredWriteStream: Stream handles returned before
      the remote side is ready

Quick Start:

    >>> import asyncio
    >>> from gcs_file_backend import GCSFileBackend
    >>> async def main():
    ...     backend = GCSFileBackend({"bucket_name": "assets", "key_file": "key.json"})
    ...     await backend.write_file("docs/readme.txt", "Hello, world!")
    ...     return await backend.read_file("docs/readme.txt", encoding="utf-8")
    >>> asyncio.run(main())
    'Hello, world!'

Exception Handling:

    >>> from gcs_file_backend import BucketUnavailableError, NotFoundError
    >>> try:
    ...     await backend.read_file("missing.txt")
    ... except NotFoundError:
    ...     print("Object not found")

Supported Operations:
    - create_read_stream() - Stream an object
    - create_write_stream() - Upload an object from a stream
    - read_file() - Read a whole object
    - write_file() - Write a whole object
    - bucket_exists() - Resolve (and optionally create) the bucket

"""

from .bucket_gate import BucketGate, BucketState
from .config import GCSBackendConfig
from .factory import BackendFactory, register_backend_factory, resolve_backend
from .gcs_backend import GCSFileBackend
from .interfaces import (
    DEFAULT_CHUNK_SIZE,
    BucketUnavailableError,
    CompletionCallback,
    ConfigurationError,
    FileBackend,
    FileBackendError,
    InvalidOperationError,
    NotFoundError,
    PathLike,
    TransportError,
)
from .storage_client import GCSStorageClient, StorageClient, WriteOptions
from .streams import (
    DeferredReadStream,
    DeferredWriteStream,
    StreamKind,
    create_deferred,
)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "BackendFactory",
    "BucketGate",
    "BucketState",
    "BucketUnavailableError",
    "CompletionCallback",
    "ConfigurationError",
    "DeferredReadStream",
    "DeferredWriteStream",
    "FileBackend",
    "FileBackendError",
    "GCSBackendConfig",
    "GCSFileBackend",
    "GCSStorageClient",
    "InvalidOperationError",
    "NotFoundError",
    "PathLike",
    "StorageClient",
    "StreamKind",
    "TransportError",
    "WriteOptions",
    "create_deferred",
    "register_backend_factory",
    "resolve_backend",
]
