"""Backend factory for URI-based backend resolution and instantiation.

Supported URI Schemes:
    - gs://bucket - GCSFileBackend for a Google Cloud Storage bucket
    - gcs://bucket - alias of gs://

Query parameters map to backend options (``key_file``, ``create_bucket``,
``default_gzip``, ``default_public``, ``project_id``). Keyword options given
to :func:`resolve_backend` are passed through unchanged, which is how a
pre-built SDK client or credentials mapping reaches the backend.

Example:
    >>> from gcs_file_backend.factory import resolve_backend
    >>> backend = resolve_backend("gs://my-assets?key_file=/etc/gcs/key.json&create_bucket=true")
    >>> backend = resolve_backend("gs://my-assets", credentials=service_account_info)

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import parse_qs, urlparse

if TYPE_CHECKING:
    from .interfaces import FileBackend

BackendFactoryFunc = Callable[[str, "dict[str, Any]"], Any]


class BackendFactory:
    """Factory for creating backends from URI strings."""

    def __init__(self) -> None:
        """Initialize the factory with built-in URI scheme handlers."""
        self._factories: dict[str, BackendFactoryFunc] = {
            "gs": self._create_gcs_backend,
            "gcs": self._create_gcs_backend,
        }

    def parse_uri(self, uri: str) -> tuple[str, str, dict[str, str]]:
        """Parse a URI into scheme, location, and query parameters.

        Args:
            uri: URI string to parse

        Returns:
            Tuple of (scheme, location, params) where params maps each query
            parameter to its first value

        Raises:
            ValueError: If URI format is invalid

        """
        parsed = urlparse(uri)

        if not parsed.scheme:
            msg = f"Invalid URI: missing scheme in '{uri}'"
            raise ValueError(msg)

        location = f"{parsed.netloc}{parsed.path}" if parsed.netloc else parsed.path
        location = location.strip("/")
        if not location:
            msg = f"Invalid URI: missing location in '{uri}'"
            raise ValueError(msg)

        params: dict[str, str] = {}
        if parsed.query:
            params = {key: values[0] for key, values in parse_qs(parsed.query).items()}

        return parsed.scheme, location, params

    def resolve(self, uri: str, **options: Any) -> FileBackend:
        """Create a backend instance from a URI string.

        Args:
            uri: URI string specifying the backend configuration
            **options: Extra options merged over the query parameters

        Returns:
            FileBackend instance

        Raises:
            ValueError: If URI scheme is unsupported
            ConfigurationError: If backend options are incomplete

        """
        scheme, location, params = self.parse_uri(uri)

        if scheme not in self._factories:
            supported = ", ".join(sorted(self._factories.keys()))
            msg = (
                f"Unsupported URI scheme: '{scheme}'. "
                f"Supported schemes: {supported}"
            )
            raise ValueError(msg)

        merged: dict[str, Any] = {**params, **options}
        return self._factories[scheme](location, merged)

    def register(self, scheme: str, factory_func: BackendFactoryFunc) -> None:
        """Register a custom backend factory for a URI scheme.

        Args:
            scheme: URI scheme to register (e.g., "s3", "memory")
            factory_func: Callable that takes (location, params) and returns a
                FileBackend

        """
        if not callable(factory_func):
            msg = "factory_func must be callable"
            raise TypeError(msg)
        self._factories[scheme] = factory_func

    def _create_gcs_backend(self, location: str, params: dict[str, Any]) -> FileBackend:
        """Create a GCSFileBackend from URI components.

        URI format: gs://bucket?key_file=/path/key.json&create_bucket=true

        Args:
            location: Bucket name; anything after the first ``/`` is rejected
            params: Backend options, plus optional ``client``, ``storage`` and
                ``content_type_resolver`` objects

        Returns:
            GCSFileBackend instance

        """
        from .gcs_backend import GCSFileBackend

        if "/" in location:
            msg = f"Invalid bucket name: '{location}' (object paths are not allowed)"
            raise ValueError(msg)

        client = params.pop("client", None)
        storage = params.pop("storage", None)
        content_type_resolver = params.pop("content_type_resolver", None)
        connection_info = {"bucket_name": location, **params}
        return GCSFileBackend(
            connection_info,
            client=client,
            storage=storage,
            content_type_resolver=content_type_resolver,
        )


# Global default factory instance
_default_factory = BackendFactory()


def resolve_backend(uri: str, **options: Any) -> FileBackend:
    """Resolve a backend from a URI using the default factory.

    Example:
        >>> backend = resolve_backend("gs://my-assets?key_file=key.json")

    """
    return _default_factory.resolve(uri, **options)


def register_backend_factory(scheme: str, factory_func: BackendFactoryFunc) -> None:
    """Register a custom backend factory for a URI scheme.

    Example:
        >>> def memory_factory(location: str, params: dict) -> FileBackend:
        ...     return MemoryBackend(name=location)
        >>> register_backend_factory("memory", memory_factory)

    """
    _default_factory.register(scheme, factory_func)
