"""Boundary between the backend and the Google Cloud Storage SDK.

The backend only needs four provider calls: check the bucket, create the
bucket, open an object for reading, and open an object for writing. They are
described by the :class:`StorageClient` protocol and implemented over
``google-cloud-storage`` by :class:`GCSStorageClient`. All calls are blocking;
the async layers run them through ``asyncio.to_thread()``.

Every SDK failure is translated at this seam: a missing object becomes
:class:`NotFoundError`, anything else becomes :class:`TransportError`, both
chained from the SDK exception.

Example:

    >>> from google.cloud import storage
    >>> sdk = storage.Client.from_service_account_json("key.json")
    >>> storage_client = GCSStorageClient(sdk, "my-bucket")
    >>> storage_client.bucket_exists()
    True

"""

from __future__ import annotations

import logging
import tempfile
import zlib
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from .interfaces import (
    ConfigurationError,
    FileBackendError,
    NotFoundError,
    TransportError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .config import GCSBackendConfig

logger = logging.getLogger(__name__)

# Uploads are spooled in memory up to this size, then on disk.
DEFAULT_SPOOL_SIZE = 8 * 1024 * 1024

PUBLIC_READ_ACL = "publicRead"

# wbits for a gzip container rather than a raw zlib stream
_GZIP_WBITS = 16 + zlib.MAX_WBITS


@dataclass(frozen=True)
class WriteOptions:
    """Transfer options requested for an object upload."""

    gzip: bool = False
    public: bool = False
    content_type: str | None = None
    resumable: bool = False


class RemoteReader(Protocol):
    """Blocking byte source for one object."""

    def read(self, size: int = -1) -> bytes:
        """Return up to ``size`` bytes, or an empty result at end of object."""
        ...

    def close(self) -> None:
        """Release the underlying download."""
        ...


class RemoteWriter(Protocol):
    """Blocking byte sink for one object."""

    def write(self, data: bytes) -> int:
        """Accept a chunk of the object payload."""
        ...

    def close(self) -> None:
        """Finalise the object; returns once the provider has stored it."""
        ...

    def abort(self) -> None:
        """Discard the upload without finalising it."""
        ...


class StorageClient(Protocol):
    """Provider calls the backend depends on."""

    bucket_name: str

    def bucket_exists(self) -> bool:
        """Return True when the bucket exists."""
        ...

    def create_bucket(self) -> None:
        """Create the bucket."""
        ...

    def open_read_stream(self, key: str) -> RemoteReader:
        """Open an object for reading."""
        ...

    def open_write_stream(self, key: str, options: WriteOptions) -> RemoteWriter:
        """Open an object for writing."""
        ...


@contextmanager
def _translate_errors(operation: str, *, path: str | None = None) -> Iterator[None]:
    """Re-raise SDK failures as backend transport errors."""
    try:
        yield
    except FileBackendError:
        raise
    except Exception as exc:
        if path is not None and _is_not_found_error(exc):
            raise NotFoundError(path) from exc
        raise TransportError.request_failed(operation, path=path) from exc


def _is_not_found_error(exc: Exception) -> bool:
    """Return True when the exception is an HTTP 404 from the provider."""
    code = getattr(exc, "code", None)
    try:
        return int(code) == 404
    except (TypeError, ValueError):
        return False


class _ObjectReader:
    """Adapter translating SDK errors raised while reading an object."""

    def __init__(self, reader: Any, key: str) -> None:
        self._reader = reader
        self._key = key

    def read(self, size: int = -1) -> bytes:
        with _translate_errors("read", path=self._key):
            return self._reader.read(size)

    def close(self) -> None:
        with _translate_errors("close", path=self._key):
            self._reader.close()


class _ObjectWriter:
    """Upload sink applying gzip, ACL and content type on finalisation.

    Non-resumable uploads collect the payload in a spooled temporary file and
    send the whole object on :meth:`close`. Resumable uploads stream through
    the SDK's blob writer instead.
    """

    def __init__(
        self,
        blob: Any,
        key: str,
        options: WriteOptions,
        *,
        spool_size: int = DEFAULT_SPOOL_SIZE,
    ) -> None:
        self._blob = blob
        self._key = key
        self._options = options
        self._closed = False
        self._compressor = (
            zlib.compressobj(wbits=_GZIP_WBITS) if options.gzip else None
        )
        if options.gzip:
            blob.content_encoding = "gzip"
        if options.resumable:
            with _translate_errors("open upload", path=key):
                self._sink = blob.open(
                    "wb",
                    content_type=options.content_type,
                    predefined_acl=self._predefined_acl,
                )
        else:
            self._sink = tempfile.SpooledTemporaryFile(max_size=spool_size)

    @property
    def _predefined_acl(self) -> str | None:
        return PUBLIC_READ_ACL if self._options.public else None

    def write(self, data: bytes) -> int:
        payload = self._compressor.compress(data) if self._compressor else data
        if payload:
            with _translate_errors("write", path=self._key):
                self._sink.write(payload)
        return len(data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._compressor is not None:
            tail = self._compressor.flush()
            with _translate_errors("write", path=self._key):
                self._sink.write(tail)

        if self._options.resumable:
            with _translate_errors("upload", path=self._key):
                self._sink.close()
            return

        try:
            size = self._sink.tell()
            self._sink.seek(0)
            logger.debug("Uploading %s (%d bytes)", self._key, size)
            with _translate_errors("upload", path=self._key):
                self._blob.upload_from_file(
                    self._sink,
                    size=size,
                    content_type=self._options.content_type,
                    predefined_acl=self._predefined_acl,
                )
        finally:
            self._sink.close()

    def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        # An unfinished resumable session is never finalised; it expires
        # provider-side.
        if not self._options.resumable:
            self._sink.close()


class GCSStorageClient:
    """:class:`StorageClient` implementation for one Google Cloud Storage bucket."""

    def __init__(
        self,
        client: Any,
        bucket_name: str,
        *,
        project_id: str | None = None,
    ) -> None:
        """Bind the SDK client to a bucket handle.

        Args:
            client: ``google.cloud.storage.Client`` or a compatible object.
            bucket_name: Name of the bucket all objects live in.
            project_id: Project used when the bucket has to be created.

        """
        self.bucket_name = bucket_name
        self._client = client
        self._project_id = project_id
        # Creating the handle performs no request.
        self.bucket = client.bucket(bucket_name)

    @classmethod
    def from_config(
        cls,
        config: GCSBackendConfig,
        *,
        client: Any | None = None,
    ) -> GCSStorageClient:
        """Create a storage client, building the SDK client when not given."""
        if client is None:
            client = _build_sdk_client(config)
        return cls(client, config.bucket_name, project_id=config.project_id)

    def bucket_exists(self) -> bool:
        with _translate_errors("bucket existence check"):
            return bool(self.bucket.exists())

    def create_bucket(self) -> None:
        with _translate_errors("bucket creation"):
            self.bucket.create(project=self._project_id)

    def open_read_stream(self, key: str) -> RemoteReader:
        blob = self.bucket.blob(key)
        with _translate_errors("open read", path=key):
            reader = blob.open("rb")
        return _ObjectReader(reader, key)

    def open_write_stream(self, key: str, options: WriteOptions) -> RemoteWriter:
        return _ObjectWriter(self.bucket.blob(key), key, options)


def _build_sdk_client(config: GCSBackendConfig) -> Any:
    """Instantiate ``google.cloud.storage.Client`` from key file or credentials.

    Only local credential material is read; no request is made.
    """
    try:
        from google.cloud import storage  # type: ignore[import-not-found]
    except ImportError as exc:  # pragma: no cover
        raise ConfigurationError.missing_dependency() from exc

    if config.key_file is None and not config.credentials:
        raise ConfigurationError.missing_credentials()

    try:
        if config.key_file is not None:
            return storage.Client.from_service_account_json(
                str(config.key_file),
                project=config.project_id,
            )

        from google.oauth2 import service_account

        credentials = service_account.Credentials.from_service_account_info(
            dict(config.credentials or {}),
        )
        return storage.Client(
            project=config.project_id or credentials.project_id,
            credentials=credentials,
        )
    except (OSError, ValueError, KeyError) as exc:
        message = f"Unable to load Google Cloud credentials: {exc}"
        raise ConfigurationError(message) from exc
