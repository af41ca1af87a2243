"""Instance configuration for :class:`GCSFileBackend`.

Connection options arrive as a ``connection_info`` mapping, as produced by
application settings or the URI factory. Both snake_case keys and their
camelCase spellings (``bucketName``, ``createBucket``, ...) are accepted,
and string values (as produced by URI query parameters) are coerced.

Example:

    >>> config = GCSBackendConfig.from_mapping(
    ...     {"bucketName": "assets", "createBucket": "true", "keyFile": "key.json"},
    ... )
    >>> config.create_bucket
    True

"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .interfaces import ConfigurationError

_ALIASES: dict[str, str] = {
    "bucketName": "bucket_name",
    "createBucket": "create_bucket",
    "keyFile": "key_file",
    "keyFilename": "key_file",
    "defaultGzip": "default_gzip",
    "defaultPublic": "default_public",
    "projectId": "project_id",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class GCSBackendConfig:
    """Immutable options for one backend instance."""

    bucket_name: str
    create_bucket: bool = False
    credentials: Mapping[str, Any] | None = None
    key_file: Path | None = None
    default_gzip: bool = False
    default_public: bool = False
    project_id: str | None = None

    @property
    def has_credentials(self) -> bool:
        """Whether key file or credential material was supplied."""
        return self.key_file is not None or bool(self.credentials)

    @classmethod
    def from_mapping(
        cls,
        connection_info: Mapping[str, Any],
        *,
        require_credentials: bool = True,
    ) -> GCSBackendConfig:
        """Validate connection options and build a configuration.

        Args:
            connection_info: Mapping of backend options.
            require_credentials: Reject options without ``key_file`` or
                ``credentials``. Disabled when a pre-built client is used.

        Raises:
            ConfigurationError: If the bucket name or credentials are missing.

        """
        if not isinstance(connection_info, Mapping):
            raise ConfigurationError.invalid_mapping()

        options = {
            _ALIASES.get(key, key): value for key, value in connection_info.items()
        }

        bucket_name = options.get("bucket_name")
        if not bucket_name or not str(bucket_name).strip():
            raise ConfigurationError.missing_bucket_name()

        key_file = options.get("key_file") or None
        credentials = options.get("credentials") or None
        if credentials is not None and not isinstance(credentials, Mapping):
            message = "credentials must be a mapping of service account fields"
            raise ConfigurationError(message)

        config = cls(
            bucket_name=str(bucket_name).strip(),
            create_bucket=_to_bool(options.get("create_bucket")),
            credentials=dict(credentials) if credentials else None,
            key_file=Path(key_file) if key_file else None,
            default_gzip=_to_bool(options.get("default_gzip")),
            default_public=_to_bool(options.get("default_public")),
            project_id=str(options["project_id"])
            if options.get("project_id")
            else None,
        )
        if require_credentials and not config.has_credentials:
            raise ConfigurationError.missing_credentials()
        return config


def _to_bool(value: Any) -> bool:
    """Return option values coerced to boolean with a safe default."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    if isinstance(value, (int, float)):
        return bool(value)
    return False
