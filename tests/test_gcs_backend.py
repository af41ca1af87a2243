"""Unit tests covering the Google Cloud Storage file backend."""

from __future__ import annotations

import asyncio
import gzip
import io
import threading
from typing import Any

import pytest
from google.api_core import exceptions as gcs_exceptions

from gcs_file_backend import (
    BucketState,
    BucketUnavailableError,
    ConfigurationError,
    GCSFileBackend,
    InvalidOperationError,
    NotFoundError,
    TransportError,
)
from tests.fakes import FakeBucket, FakeGCSClient


@pytest.fixture
def fake_client() -> FakeGCSClient:
    """Expose a fresh fake SDK client with an existing bucket."""
    return FakeGCSClient(existing_buckets=["assets"])


@pytest.fixture
def bucket(fake_client: FakeGCSClient) -> FakeBucket:
    """Expose the fake bucket used by the backend."""
    return fake_client.bucket("assets")


@pytest.fixture
def backend(fake_client: FakeGCSClient) -> GCSFileBackend:
    """Provide a backend instance bound to the fake client."""
    return GCSFileBackend({"bucket_name": "assets"}, client=fake_client)


def _callback_future() -> tuple[asyncio.Future[Any], Any]:
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    def _callback(error: BaseException | None, result: Any) -> None:
        future.set_result((error, result))

    return future, _callback


@pytest.mark.asyncio
async def test_write_and_read_text(backend: GCSFileBackend) -> None:
    """Written text should read back decoded when an encoding is given."""
    await backend.write_file("test", "hello world")

    assert await backend.read_file("test", encoding="utf-8") == "hello world"
    assert await backend.read_file("test") == b"hello world"


@pytest.mark.asyncio
async def test_nested_key_is_stored_verbatim(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Hierarchical keys should be stored as a single object key."""
    await backend.write_file("foo/bar/test", b"nested")

    assert list(bucket.objects) == ["foo/bar/test"]
    assert await backend.read_file("foo/bar/test") == b"nested"


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["logs/", "a//b", "a/./b", "a\\b", "/abs"])
async def test_keys_are_stored_exactly_as_given(
    backend: GCSFileBackend,
    bucket: FakeBucket,
    key: str,
) -> None:
    """Keys are opaque; slashes and dots must reach the provider unchanged."""
    await backend.write_file(key, b"x")

    assert list(bucket.objects) == [key]
    assert await backend.read_file(key) == b"x"


@pytest.mark.asyncio
async def test_similar_keys_address_distinct_objects(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Keys differing only in slashes must not overwrite each other."""
    await backend.write_file("a/b", "single")
    await backend.write_file("a//b", "double")
    await backend.write_file("/a/b", "leading")

    assert sorted(bucket.objects) == ["/a/b", "a//b", "a/b"]
    assert await backend.read_file("a/b", encoding="utf-8") == "single"
    assert await backend.read_file("a//b", encoding="utf-8") == "double"


@pytest.mark.asyncio
async def test_write_file_accepts_binary_stream(backend: GCSFileBackend) -> None:
    """File-like payloads should be read and uploaded."""
    await backend.write_file("blob.bin", io.BytesIO(b"\x00\x01\x02"))

    assert await backend.read_file("blob.bin") == b"\x00\x01\x02"


@pytest.mark.asyncio
async def test_file_like_payload_is_read_off_the_event_loop(
    backend: GCSFileBackend,
) -> None:
    """Reading a file-like payload should happen in a worker thread."""
    loop_thread = threading.get_ident()
    reader_threads: list[int] = []

    class _TrackingBytesIO(io.BytesIO):
        def read(self, size: int | None = -1) -> bytes:
            reader_threads.append(threading.get_ident())
            return super().read(size)

    await backend.write_file("tracked.bin", _TrackingBytesIO(b"payload"))

    assert reader_threads
    assert loop_thread not in reader_threads
    assert await backend.read_file("tracked.bin") == b"payload"


@pytest.mark.asyncio
async def test_write_stream_buffers_until_bucket_resolves(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Bytes written while the bucket check runs should not be lost."""
    bucket.exists_delay = 0.05

    stream = backend.create_write_stream("streamed.txt")
    stream.write(b"hello ")
    stream.write("there ")
    assert not stream.attached

    stream.end(b"world")
    await stream.wait_closed()

    assert bucket.objects["streamed.txt"].data == b"hello there world"


@pytest.mark.asyncio
async def test_read_stream_yields_object(backend: GCSFileBackend) -> None:
    """A read stream should deliver the whole object in chunks."""
    payload = bytes(range(256)) * 10
    await backend.write_file("data.bin", payload)

    stream = backend.create_read_stream("data.bin", chunk_size=100)
    chunks = [chunk async for chunk in stream]

    assert b"".join(chunks) == payload
    assert max(len(chunk) for chunk in chunks) <= 100


@pytest.mark.asyncio
async def test_concurrent_operations_check_bucket_once(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Operations racing on a fresh instance should share one bucket check."""
    bucket.exists_delay = 0.05

    await asyncio.gather(
        *(backend.write_file(f"file-{index}.txt", str(index)) for index in range(5)),
    )

    assert bucket.exists_calls == 1
    assert len(bucket.objects) == 5


@pytest.mark.asyncio
async def test_bucket_exists_returns_true(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """bucket_exists should resolve the gate and expose the SDK bucket."""
    assert await backend.bucket_exists() is True
    assert backend.gate.state is BucketState.EXISTS
    assert backend.bucket is bucket


@pytest.mark.asyncio
async def test_missing_bucket_without_create_fails_operations() -> None:
    """Operations should fail when the bucket is absent and not created."""
    client = FakeGCSClient()
    backend = GCSFileBackend({"bucket_name": "absent"}, client=client)

    with pytest.raises(BucketUnavailableError):
        await backend.write_file("test", "data")
    with pytest.raises(BucketUnavailableError):
        await backend.read_file("test")

    stream = backend.create_write_stream("test")
    stream.end(b"data")
    with pytest.raises(BucketUnavailableError):
        await stream.wait_closed()

    assert client.bucket("absent").create_calls == 0
    assert client.bucket("absent").exists_calls == 1


@pytest.mark.asyncio
async def test_create_bucket_option_creates_once() -> None:
    """create_bucket should create an absent bucket exactly once."""
    client = FakeGCSClient()
    backend = GCSFileBackend(
        {"bucketName": "fresh", "createBucket": True, "projectId": "proj"},
        client=client,
    )

    await backend.write_file("a.txt", "a")
    await backend.write_file("b.txt", "b")

    fresh = client.bucket("fresh")
    assert fresh.created
    assert fresh.create_calls == 1
    assert fresh.exists_calls == 1
    assert fresh.create_projects == ["proj"]


@pytest.mark.asyncio
async def test_read_missing_object_raises_not_found(backend: GCSFileBackend) -> None:
    """Reading an absent object should raise NotFoundError."""
    with pytest.raises(NotFoundError) as excinfo:
        await backend.read_file("missing.txt")

    assert isinstance(excinfo.value, TransportError)
    assert excinfo.value.path == "missing.txt"
    assert isinstance(excinfo.value.__cause__, gcs_exceptions.NotFound)


@pytest.mark.asyncio
async def test_upload_failure_raises_transport_error(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Provider failures during upload should surface as TransportError."""
    bucket.upload_error = gcs_exceptions.ServiceUnavailable("try again")

    with pytest.raises(TransportError) as excinfo:
        await backend.write_file("test", "data")

    assert not isinstance(excinfo.value, NotFoundError)


@pytest.mark.asyncio
async def test_read_file_callback_style(backend: GCSFileBackend) -> None:
    """read_file should report through the callback when one is given."""
    await backend.write_file("test", "hello")
    future, callback = _callback_future()

    assert backend.read_file("test", encoding="utf-8", callback=callback) is None

    error, result = await asyncio.wait_for(future, timeout=5)
    assert error is None
    assert result == "hello"


@pytest.mark.asyncio
async def test_read_file_callback_receives_error(backend: GCSFileBackend) -> None:
    """Callback-style reads should receive errors as the first argument."""
    future, callback = _callback_future()

    backend.read_file("missing.txt", callback=callback)

    error, result = await asyncio.wait_for(future, timeout=5)
    assert isinstance(error, NotFoundError)
    assert result is None


@pytest.mark.asyncio
async def test_write_file_callback_style(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """write_file should call back once the upload is stored."""
    future, callback = _callback_future()

    assert backend.write_file("cb.txt", "value", callback=callback) is None

    error, result = await asyncio.wait_for(future, timeout=5)
    assert error is None
    assert result is None
    assert bucket.objects["cb.txt"].data == b"value"


@pytest.mark.asyncio
async def test_content_type_inferred_from_key(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Known extensions should set the object content type."""
    await backend.write_file("report.json", "{}")
    await backend.write_file("test", "plain")

    assert bucket.objects["report.json"].content_type == "application/json"
    assert bucket.objects["test"].content_type is None


@pytest.mark.asyncio
async def test_explicit_content_type_wins(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """An explicit content type should override inference."""
    await backend.write_file("report.json", "{}", content_type="text/plain")

    assert bucket.objects["report.json"].content_type == "text/plain"


@pytest.mark.asyncio
async def test_custom_content_type_resolver(fake_client: FakeGCSClient) -> None:
    """A custom resolver should be consulted for keys without a type."""
    backend = GCSFileBackend(
        {"bucket_name": "assets"},
        client=fake_client,
        content_type_resolver=lambda key: "application/x-custom",
    )

    await backend.write_file("anything", "x")

    stored = fake_client.bucket("assets").objects["anything"]
    assert stored.content_type == "application/x-custom"


@pytest.mark.asyncio
async def test_defaults_are_private_and_uncompressed(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Without options, uploads should be plain and private."""
    await backend.write_file("plain.txt", "data")

    stored = bucket.objects["plain.txt"]
    assert stored.data == b"data"
    assert stored.content_encoding is None
    assert stored.predefined_acl is None


@pytest.mark.asyncio
async def test_instance_gzip_and_public_defaults(fake_client: FakeGCSClient) -> None:
    """Instance defaults should compress and publish every upload."""
    backend = GCSFileBackend(
        {"bucket_name": "assets", "default_gzip": True, "default_public": True},
        client=fake_client,
    )

    await backend.write_file("site/index.html", "<html></html>")

    stored = fake_client.bucket("assets").objects["site/index.html"]
    assert gzip.decompress(stored.data) == b"<html></html>"
    assert stored.content_encoding == "gzip"
    assert stored.predefined_acl == "publicRead"
    assert stored.content_type == "text/html"


@pytest.mark.asyncio
async def test_stream_options_override_defaults(fake_client: FakeGCSClient) -> None:
    """Per-stream gzip and public flags should override instance defaults."""
    backend = GCSFileBackend(
        {"bucket_name": "assets", "default_gzip": True, "default_public": True},
        client=fake_client,
    )

    stream = backend.create_write_stream("raw.txt", gzip=False, public=False)
    stream.end("raw")
    await stream.wait_closed()

    stored = fake_client.bucket("assets").objects["raw.txt"]
    assert stored.data == b"raw"
    assert stored.content_encoding is None
    assert stored.predefined_acl is None


@pytest.mark.asyncio
async def test_invalid_keys_are_reported_through_streams(
    backend: GCSFileBackend,
    bucket: FakeBucket,
) -> None:
    """Empty and reserved keys should fail the stream, not the call."""
    seen: list[BaseException] = []
    writer = backend.create_write_stream("..")
    writer.add_error_callback(seen.append)
    writer.end(b"data")

    with pytest.raises(InvalidOperationError):
        await writer.wait_closed()

    reader = backend.create_read_stream("")
    with pytest.raises(InvalidOperationError):
        await reader.read()

    with pytest.raises(InvalidOperationError):
        await backend.read_file(".")

    await asyncio.sleep(0)
    assert len(seen) == 1
    assert isinstance(seen[0], InvalidOperationError)
    assert bucket.objects == {}


@pytest.mark.asyncio
async def test_content_type_resolver_failure_is_reported_through_stream(
    fake_client: FakeGCSClient,
) -> None:
    """A raising content-type resolver should fail the stream, not the call."""

    def _resolver(key: str) -> str | None:
        message = f"no type for {key}"
        raise LookupError(message)

    backend = GCSFileBackend(
        {"bucket_name": "assets"},
        client=fake_client,
        content_type_resolver=_resolver,
    )

    stream = backend.create_write_stream("report.json")
    stream.end(b"{}")

    with pytest.raises(LookupError):
        await stream.wait_closed()
    assert fake_client.bucket("assets").objects == {}


def test_missing_bucket_name_raises() -> None:
    """Construction should fail without a bucket name."""
    with pytest.raises(ConfigurationError, match="bucket_name required"):
        GCSFileBackend({"key_file": "key.json"})


def test_missing_credentials_raise() -> None:
    """Construction without a client requires credential material."""
    with pytest.raises(ConfigurationError, match="key_file or credentials required"):
        GCSFileBackend({"bucket_name": "assets"})


def test_configuration_error_is_value_error() -> None:
    """Configuration errors should be catchable as ValueError."""
    with pytest.raises(ValueError):
        GCSFileBackend({})


def test_construction_makes_no_requests(fake_client: FakeGCSClient) -> None:
    """Creating a backend should not contact the provider."""
    backend = GCSFileBackend({"bucket_name": "assets"}, client=fake_client)

    assert fake_client.bucket("assets").exists_calls == 0
    assert backend.gate.state is BucketState.UNKNOWN
    assert repr(backend) == "GCSFileBackend(bucket_name='assets')"
