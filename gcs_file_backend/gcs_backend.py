"""Google Cloud Storage bucket exposed as a small virtual filesystem.

Key Features:
    - Bucket existence checked once per instance, optionally creating it
    - Read and write streams returned immediately, attached once the bucket
      check and remote negotiation finish
    - Whole-file ``read_file`` / ``write_file`` in awaitable or callback style
    - Content type inferred from the object key unless given explicitly
    - Instance-wide gzip and public-read defaults, overridable per stream

Example:

    >>> import asyncio
    >>> from gcs_file_backend import GCSFileBackend
    >>>
    >>> async def main():
    ...     backend = GCSFileBackend(
    ...         {"bucket_name": "my-assets", "key_file": "key.json", "create_bucket": True},
    ...     )
    ...     await backend.write_file("reports/today.txt", "hello world")
    ...     text = await backend.read_file("reports/today.txt", encoding="utf-8")
    ...
    >>> asyncio.run(main())

All methods must be called while an event loop is running. Provider calls
are blocking and run through ``asyncio.to_thread()``.

"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, BinaryIO

from .bucket_gate import BucketGate
from .completion import complete
from .config import GCSBackendConfig
from .interfaces import DEFAULT_CHUNK_SIZE, FileBackend, PathLike
from .path_utils import to_object_key
from .storage_client import GCSStorageClient, WriteOptions
from .streams import DeferredReadStream, DeferredWriteStream
from .utils import coerce_to_bytes, decode_payload, guess_content_type

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .interfaces import CompletionCallback
    from .storage_client import RemoteReader, RemoteWriter, StorageClient
    from .utils import ContentTypeResolver

logger = logging.getLogger(__name__)


class GCSFileBackend(FileBackend):
    """File backend backed by a Google Cloud Storage bucket."""

    def __init__(
        self,
        connection_info: Mapping[str, Any],
        *,
        client: Any | None = None,
        storage: StorageClient | None = None,
        content_type_resolver: ContentTypeResolver | None = None,
    ) -> None:
        """Initialise the backend from connection options.

        No request is made here; the bucket is checked on first use.

        Args:
            connection_info: Options mapping (``bucket_name``, ``create_bucket``,
                ``key_file``, ``credentials``, ``default_gzip``,
                ``default_public``, ``project_id``; camelCase keys accepted).
            client: Pre-built ``google.cloud.storage.Client``. Credential
                options are not required when given.
            storage: Pre-built :class:`StorageClient`, replacing the Google SDK
                boundary entirely.
            content_type_resolver: ``resolver(key) -> str | None`` used when a
                write does not name its content type.

        Raises:
            ConfigurationError: If the bucket name is missing, or if neither
                ``key_file`` nor ``credentials`` is supplied.

        """
        self._config = GCSBackendConfig.from_mapping(
            connection_info,
            require_credentials=client is None and storage is None,
        )
        if storage is not None:
            self._storage = storage
        else:
            self._storage = GCSStorageClient.from_config(self._config, client=client)
        self._gate = BucketGate(self._storage, create_bucket=self._config.create_bucket)
        self._content_type_resolver = content_type_resolver or guess_content_type
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> GCSBackendConfig:
        """Immutable instance configuration."""
        return self._config

    @property
    def gate(self) -> BucketGate:
        """Bucket existence gate shared by every operation of this instance."""
        return self._gate

    @property
    def bucket(self) -> Any:
        """SDK bucket handle, for operations this backend does not wrap."""
        return getattr(self._storage, "bucket", None)

    async def bucket_exists(self) -> bool:
        """Return True once the bucket exists, creating it when configured.

        Raises:
            BucketUnavailableError: If the bucket is absent and cannot be
                created.
            TransportError: If the existence check failed.

        """
        await self._gate.ensure_exists()
        return True

    def create_read_stream(
        self,
        path: PathLike,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> DeferredReadStream:
        """Return a readable stream for ``path`` without waiting on the bucket.

        A missing object surfaces as :class:`NotFoundError` when reading, an
        invalid key as :class:`InvalidOperationError`.
        """

        async def _open_remote() -> RemoteReader:
            key = to_object_key(path)
            await self._gate.ensure_exists()
            return await asyncio.to_thread(self._storage.open_read_stream, key)

        return DeferredReadStream(_open_remote, chunk_size=chunk_size, name=str(path))

    def create_write_stream(
        self,
        path: PathLike,
        *,
        content_type: str | None = None,
        gzip: bool | None = None,
        public: bool | None = None,
        encoding: str = "utf-8",
    ) -> DeferredWriteStream:
        """Return a writable stream for ``path`` without waiting on the bucket.

        The object is uploaded whole when the stream ends; completion is
        reported by ``wait_closed()``. Invalid keys and content-type resolver
        failures are reported the same way.
        """

        async def _open_remote() -> RemoteWriter:
            key = to_object_key(path)
            options = WriteOptions(
                gzip=self._config.default_gzip if gzip is None else gzip,
                public=self._config.default_public if public is None else public,
                content_type=content_type or self._content_type_resolver(key),
                resumable=False,
            )
            await self._gate.ensure_exists()
            return await asyncio.to_thread(
                self._storage.open_write_stream,
                key,
                options,
            )

        return DeferredWriteStream(_open_remote, encoding=encoding, name=str(path))

    def read_file(
        self,
        path: PathLike,
        *,
        encoding: str | None = None,
        callback: CompletionCallback | None = None,
    ) -> asyncio.Task[bytes | str] | None:
        """Read a whole object as bytes, or as text when ``encoding`` is set."""
        return complete(
            self._read_file(path, encoding=encoding),
            callback,
            tasks=self._pending,
        )

    def write_file(
        self,
        path: PathLike,
        data: bytes | str | BinaryIO,
        *,
        encoding: str = "utf-8",
        content_type: str | None = None,
        callback: CompletionCallback | None = None,
    ) -> asyncio.Task[None] | None:
        """Store ``data`` as the whole content of ``path``."""
        return complete(
            self._write_file(
                path,
                data,
                encoding=encoding,
                content_type=content_type,
            ),
            callback,
            tasks=self._pending,
        )

    async def _read_file(self, path: PathLike, *, encoding: str | None) -> bytes | str:
        stream = self.create_read_stream(path)
        payload = await stream.read()
        logger.debug("Read %d bytes from %s", len(payload), stream.name)
        return decode_payload(payload, encoding)

    async def _write_file(
        self,
        path: PathLike,
        data: bytes | str | BinaryIO,
        *,
        encoding: str,
        content_type: str | None,
    ) -> None:
        if hasattr(data, "read"):
            # File-like payloads may block on disk or network reads.
            payload = await asyncio.to_thread(coerce_to_bytes, data, encoding=encoding)
        else:
            payload = coerce_to_bytes(data, encoding=encoding)
        stream = self.create_write_stream(
            path,
            content_type=content_type,
            encoding=encoding,
        )
        stream.end(payload)
        await stream.wait_closed()
        logger.debug("Wrote %d bytes to %s", len(payload), stream.name)

    def __repr__(self) -> str:
        """Return a short description naming the bucket."""
        return f"GCSFileBackend(bucket_name={self._config.bucket_name!r})"
