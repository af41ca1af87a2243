"""Tests for the URI-based backend factory."""

from typing import Any

import pytest

from gcs_file_backend import ConfigurationError, FileBackend, GCSFileBackend
from gcs_file_backend.factory import (
    BackendFactory,
    register_backend_factory,
    resolve_backend,
)
from tests.fakes import FakeGCSClient

# ruff: noqa: S101  # pytest assertions are ok in tests


class TestBackendFactory:
    """Test the BackendFactory class."""

    def test_factory_initialization(self) -> None:
        """Test factory initializes with built-in schemes."""
        factory = BackendFactory()
        assert "gs" in factory._factories
        assert "gcs" in factory._factories

    def test_parse_uri_bucket(self) -> None:
        """Test parsing gs:// URIs."""
        factory = BackendFactory()

        scheme, location, params = factory.parse_uri("gs://my-assets")
        assert scheme == "gs"
        assert location == "my-assets"
        assert params == {}

    def test_parse_uri_with_query_params(self) -> None:
        """Test parsing URIs with query parameters."""
        factory = BackendFactory()
        scheme, location, params = factory.parse_uri(
            "gs://my-assets?key_file=/etc/key.json&create_bucket=true",
        )
        assert scheme == "gs"
        assert location == "my-assets"
        assert params == {"key_file": "/etc/key.json", "create_bucket": "true"}

    def test_parse_uri_missing_scheme(self) -> None:
        """Test URIs without a scheme are rejected."""
        factory = BackendFactory()
        with pytest.raises(ValueError, match="missing scheme"):
            factory.parse_uri("my-assets")

    def test_parse_uri_missing_location(self) -> None:
        """Test URIs without a bucket are rejected."""
        factory = BackendFactory()
        with pytest.raises(ValueError, match="missing location"):
            factory.parse_uri("gs://")

    def test_resolve_gcs_backend(self) -> None:
        """Test resolving a GCS backend with an injected client."""
        client = FakeGCSClient(existing_buckets=["my-assets"])
        factory = BackendFactory()

        backend = factory.resolve("gs://my-assets?create_bucket=true", client=client)

        assert isinstance(backend, GCSFileBackend)
        assert backend.config.bucket_name == "my-assets"
        assert backend.config.create_bucket is True
        assert backend.bucket is client.bucket("my-assets")

    def test_resolve_gcs_alias(self) -> None:
        """Test the gcs:// alias resolves the same backend type."""
        factory = BackendFactory()
        backend = factory.resolve("gcs://assets", client=FakeGCSClient())
        assert isinstance(backend, GCSFileBackend)

    def test_options_override_query_params(self) -> None:
        """Test keyword options take precedence over the query string."""
        factory = BackendFactory()
        backend = factory.resolve(
            "gs://assets?default_gzip=true",
            client=FakeGCSClient(),
            default_gzip=False,
        )
        assert backend.config.default_gzip is False

    def test_resolve_without_credentials(self) -> None:
        """Test resolution without client or credentials fails."""
        factory = BackendFactory()
        with pytest.raises(ConfigurationError):
            factory.resolve("gs://assets")

    def test_resolve_rejects_object_path(self) -> None:
        """Test a bucket location carrying an object path is rejected."""
        factory = BackendFactory()
        with pytest.raises(ValueError, match="Invalid bucket name"):
            factory.resolve("gs://assets/some/key", client=FakeGCSClient())

    def test_unsupported_scheme(self) -> None:
        """Test unknown schemes are rejected with the supported list."""
        factory = BackendFactory()
        with pytest.raises(ValueError, match="Supported schemes: gcs, gs"):
            factory.resolve("s3://bucket")

    def test_register_custom_factory(self) -> None:
        """Test registering a custom scheme."""
        factory = BackendFactory()
        calls: list[tuple[str, dict[str, Any]]] = []

        def custom(location: str, params: dict[str, Any]) -> Any:
            calls.append((location, params))
            return "custom-backend"

        factory.register("memory", custom)

        assert factory.resolve("memory://scratch?x=1") == "custom-backend"
        assert calls == [("scratch", {"x": "1"})]

    def test_register_non_callable(self) -> None:
        """Test registering a non-callable is rejected."""
        factory = BackendFactory()
        with pytest.raises(TypeError):
            factory.register("bad", "not callable")  # type: ignore[arg-type]


class TestModuleFunctions:
    """Test the module-level helpers."""

    def test_resolve_backend(self) -> None:
        """Test resolve_backend uses the default factory."""
        backend = resolve_backend("gs://assets", client=FakeGCSClient())
        assert isinstance(backend, FileBackend)

    def test_register_backend_factory(self) -> None:
        """Test register_backend_factory extends the default factory."""
        register_backend_factory(
            "test-scheme",
            lambda location, params: {"location": location},
        )
        assert resolve_backend("test-scheme://here") == {"location": "here"}
