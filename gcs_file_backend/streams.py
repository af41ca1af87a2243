"""Stream handles that exist before their remote transport does.

Opening an object stream requires a chain of asynchronous steps: the bucket
gate has to resolve and the provider has to hand back a reader or writer.
The handles in this module are returned synchronously and attach to the
remote side once that chain finishes.

Key Features:
    - Data written before attachment is buffered and delivered in order
    - ``write()`` returns False above the high-water mark; ``await drain()``
      waits until the remote side has caught up
    - Completion (``wait_closed()`` / ``finished``) is reported only after
      the remote transfer is finalised
    - Failures during resolution are delivered through the stream, never
      raised by the call that created it

Example:

    >>> stream = backend.create_write_stream("logs/today.txt")
    >>> stream.write(b"first line\\n")      # bucket check still running
    True
    >>> stream.end(b"last line\\n")
    >>> await stream.wait_closed()

    >>> async with backend.create_read_stream("logs/today.txt") as reader:
    ...     async for chunk in reader:
    ...         handle(chunk)

Both handles must be created while an event loop is running; the remote
reader/writer calls run in worker threads through ``asyncio.to_thread()``.

"""

from __future__ import annotations

import asyncio
import collections
import enum
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from .interfaces import DEFAULT_CHUNK_SIZE, InvalidOperationError
from .utils import coerce_to_bytes

if TYPE_CHECKING:
    from types import TracebackType

    from .storage_client import RemoteReader, RemoteWriter

logger = logging.getLogger(__name__)

DEFAULT_HIGH_WATER_MARK = 64 * 1024
DEFAULT_MAX_CHUNKS = 16

ErrorCallback = Callable[[BaseException], None]
WriterResolver = Callable[[], Awaitable["RemoteWriter"]]
ReaderResolver = Callable[[], Awaitable["RemoteReader"]]

_EOF = object()


class StreamKind(enum.Enum):
    """Direction of a deferred stream."""

    READ = "read"
    WRITE = "write"


class _DeferredStream:
    """Attachment state, completion future and error channel."""

    def __init__(self, *, name: str | None = None) -> None:
        self._loop = asyncio.get_running_loop()
        self._finished: asyncio.Future[None] = self._loop.create_future()
        self._error_callbacks: list[ErrorCallback] = []
        self._attached = False
        self._task: asyncio.Task[None] | None = None
        self.name = name

    @property
    def attached(self) -> bool:
        """Whether the remote reader/writer has been attached."""
        return self._attached

    @property
    def finished(self) -> asyncio.Future[None]:
        """Future resolved on completion or failed with the stream error."""
        return self._finished

    def add_error_callback(self, callback: ErrorCallback) -> None:
        """Register ``callback(error)``, called once if the stream fails."""
        if self._finished.done():
            error = self._error()
            if error is not None:
                self._loop.call_soon(callback, error)
            return
        self._error_callbacks.append(callback)

    async def wait_closed(self) -> None:
        """Wait for the remote transfer to complete, raising its error."""
        await asyncio.shield(self._finished)

    def _start(self, pump: Awaitable[None]) -> None:
        self._task = self._loop.create_task(pump)

    def _error(self) -> BaseException | None:
        if not self._finished.done() or self._finished.cancelled():
            return None
        return self._finished.exception()

    def _raise_if_failed(self) -> None:
        error = self._error()
        if error is not None:
            raise error

    def _fail(self, exc: BaseException) -> bool:
        """Deliver ``exc`` through the error channel; False if already settled."""
        if self._finished.done():
            return False
        logger.debug("Stream %s failed: %r", self.name, exc)
        self._finished.set_exception(exc)
        callbacks, self._error_callbacks = self._error_callbacks, []
        if callbacks:
            # Observed through the callbacks.
            self._finished.exception()
        for callback in callbacks:
            self._loop.call_soon(callback, exc)
        return True

    def _finish(self) -> None:
        if not self._finished.done():
            self._finished.set_result(None)
        self._error_callbacks.clear()


class DeferredWriteStream(_DeferredStream):
    """Writable handle whose remote writer is attached later."""

    def __init__(
        self,
        resolver: WriterResolver,
        *,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
        encoding: str = "utf-8",
        name: str | None = None,
    ) -> None:
        """Create the handle and start resolving the remote writer.

        Args:
            resolver: Coroutine function returning the remote writer.
            high_water_mark: Buffered byte count at which ``write()`` starts
                returning False.
            encoding: Encoding applied to ``str`` chunks.
            name: Label used in log messages, usually the object key.

        """
        super().__init__(name=name)
        self._chunks: collections.deque[bytes] = collections.deque()
        self._buffered = 0
        self._high_water_mark = high_water_mark
        self._encoding = encoding
        self._ending = False
        self._data_ready = asyncio.Event()
        self._drained = asyncio.Event()
        self._drained.set()
        self._start(self._pump(resolver))

    @property
    def closed(self) -> bool:
        """Whether ``end()`` or ``abort()`` has been called."""
        return self._ending

    @property
    def buffered_bytes(self) -> int:
        """Bytes accepted by ``write()`` but not yet taken by the remote."""
        return self._buffered

    def write(self, data: bytes | bytearray | memoryview | str) -> bool:
        """Queue a chunk for the remote writer.

        Returns:
            False when the caller should ``await drain()`` before writing
            more, or when the stream has already failed.

        Raises:
            InvalidOperationError: If the stream was ended.

        """
        if self._ending:
            raise InvalidOperationError.write_after_end()
        if self._finished.done():
            return False
        chunk = coerce_to_bytes(data, encoding=self._encoding)
        if chunk:
            self._chunks.append(chunk)
            self._buffered += len(chunk)
            self._data_ready.set()
        if self._buffered >= self._high_water_mark:
            self._drained.clear()
            return False
        return True

    async def drain(self) -> None:
        """Wait until the buffer is below the high-water mark."""
        await self._drained.wait()
        self._raise_if_failed()

    def end(self, data: bytes | bytearray | memoryview | str | None = None) -> None:
        """Write an optional final chunk and mark the end of the payload."""
        if data is not None:
            self.write(data)
        if self._ending:
            return
        self._ending = True
        self._data_ready.set()

    def close(self) -> None:
        """Mark the end of the payload."""
        self.end()

    async def aclose(self) -> None:
        """End the stream and wait for the upload to be finalised."""
        self.end()
        await self.wait_closed()

    def abort(self, exc: BaseException | None = None) -> None:
        """Fail the stream and discard the upload."""
        self._ending = True
        error = exc if exc is not None else InvalidOperationError.stream_aborted()
        if self._fail(error):
            # The caller asked for the failure; nothing left to observe.
            self._finished.exception()

    async def __aenter__(self) -> DeferredWriteStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None:
            self.abort(exc)
            return
        await self.aclose()

    def _fail(self, exc: BaseException) -> bool:
        failed = super()._fail(exc)
        if failed:
            self._drained.set()
            self._data_ready.set()
        return failed

    def _discard_buffer(self) -> None:
        self._chunks.clear()
        self._buffered = 0

    async def _pump(self, resolver: WriterResolver) -> None:
        try:
            remote = await resolver()
        except asyncio.CancelledError:
            self._fail(InvalidOperationError.stream_aborted())
            raise
        except Exception as exc:
            self._discard_buffer()
            self._fail(exc)
            return

        if self._finished.done():
            self._discard_buffer()
            await asyncio.to_thread(remote.abort)
            return

        self._attached = True
        logger.debug(
            "Write stream %s attached with %d bytes buffered",
            self.name,
            self._buffered,
        )
        try:
            completed = await self._flush(remote)
        except asyncio.CancelledError:
            self._fail(InvalidOperationError.stream_aborted())
            raise
        except Exception as exc:
            self._discard_buffer()
            self._fail(exc)
            await asyncio.to_thread(remote.abort)
            return

        if not completed:
            self._discard_buffer()
            await asyncio.to_thread(remote.abort)
            return
        self._finish()

    async def _flush(self, remote: RemoteWriter) -> bool:
        """Move buffered chunks to ``remote`` until the stream ends."""
        while True:
            while self._chunks:
                if self._finished.done():
                    return False
                chunk = self._chunks.popleft()
                await asyncio.to_thread(remote.write, chunk)
                # Counted until the remote has taken it.
                self._buffered -= len(chunk)
                if self._buffered < self._high_water_mark:
                    self._drained.set()
            if self._finished.done():
                return False
            if self._ending:
                break
            self._data_ready.clear()
            await self._data_ready.wait()
        await asyncio.to_thread(remote.close)
        return True


class DeferredReadStream(_DeferredStream):
    """Readable handle whose remote reader is attached later."""

    def __init__(
        self,
        resolver: ReaderResolver,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        name: str | None = None,
    ) -> None:
        """Create the handle and start resolving the remote reader.

        Args:
            resolver: Coroutine function returning the remote reader.
            chunk_size: Bytes requested from the remote per read.
            max_chunks: Chunks read ahead before the pump waits for the
                consumer.
            name: Label used in log messages, usually the object key.

        """
        super().__init__(name=name)
        self._chunk_size = chunk_size
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_chunks)
        self._leftover = bytearray()
        self._eof = False
        self._closing = False
        self._start(self._pump(resolver))

    async def read(self, size: int = -1) -> bytes:
        """Return up to ``size`` bytes, or everything left when negative.

        Returns an empty result at end of object.
        """
        if size < 0:
            parts = [bytes(self._leftover)]
            self._leftover.clear()
            while True:
                chunk = await self._next_chunk()
                if chunk is None:
                    break
                parts.append(chunk)
            return b"".join(parts)

        while len(self._leftover) < size:
            chunk = await self._next_chunk()
            if chunk is None:
                break
            self._leftover += chunk
        result = bytes(self._leftover[:size])
        del self._leftover[:size]
        return result

    async def pipe_to(self, destination: DeferredWriteStream) -> None:
        """Copy the object into ``destination`` and wait for it to finish."""
        try:
            async for chunk in self:
                if not destination.write(chunk):
                    await destination.drain()
        except Exception as exc:
            destination.abort(exc)
            await self.aclose()
            raise
        await destination.aclose()

    async def aclose(self) -> None:
        """Stop reading and release the remote reader."""
        if not self._closing:
            self._closing = True
            # Unblock a pump waiting on a full queue.
            while not self._queue.empty():
                self._queue.get_nowait()
        if self._task is not None:
            await self._task
        self._eof = True
        self._leftover.clear()
        self._error()
        self._finish()

    def __aiter__(self) -> DeferredReadStream:
        return self

    async def __anext__(self) -> bytes:
        if self._leftover:
            chunk = bytes(self._leftover)
            self._leftover.clear()
            return chunk
        chunk = await self._next_chunk()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def __aenter__(self) -> DeferredReadStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _next_chunk(self) -> bytes | None:
        if self._eof:
            self._raise_if_failed()
            return None
        item = await self._queue.get()
        if item is _EOF:
            self._eof = True
            self._finish()
            return None
        if isinstance(item, BaseException):
            self._eof = True
            self._error()
            raise item
        return item

    async def _pump(self, resolver: ReaderResolver) -> None:
        try:
            remote = await resolver()
        except asyncio.CancelledError:
            self._fail(InvalidOperationError.stream_aborted())
            raise
        except Exception as exc:
            await self._deliver(exc)
            return

        self._attached = True
        logger.debug("Read stream %s attached", self.name)
        error: Exception | None = None
        try:
            while not self._closing:
                chunk = await asyncio.to_thread(remote.read, self._chunk_size)
                if not chunk:
                    break
                await self._queue.put(bytes(chunk))
        except asyncio.CancelledError:
            self._fail(InvalidOperationError.stream_aborted())
            raise
        except Exception as exc:
            error = exc

        try:
            await asyncio.to_thread(remote.close)
        except Exception as exc:
            if error is None:
                error = exc

        await self._deliver(error if error is not None else _EOF)

    async def _deliver(self, item: Any) -> None:
        """Queue end-of-object or an error behind the data already read."""
        if isinstance(item, BaseException):
            self._fail(item)
        if not self._closing:
            await self._queue.put(item)


def create_deferred(
    kind: StreamKind,
    resolver: Callable[[], Awaitable[Any]],
    **options: Any,
) -> Union[DeferredReadStream, DeferredWriteStream]:
    """Return a deferred stream of ``kind`` backed by ``resolver``.

    Args:
        kind: Stream direction.
        resolver: Coroutine function producing the remote reader or writer.
        **options: Passed to the stream constructor.

    """
    if kind is StreamKind.READ:
        return DeferredReadStream(resolver, **options)
    return DeferredWriteStream(resolver, **options)
