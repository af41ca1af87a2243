"""Memoised bucket existence resolution with optional auto-creation.

A :class:`BucketGate` answers "may objects be read from and written to this
bucket?" at most once per instance. The first caller starts a single
resolution task; every caller arriving while it runs awaits that same task,
so one existence check and at most one creation call reach the provider no
matter how many operations start concurrently.

State transitions::

    UNKNOWN -> RESOLVING -> EXISTS
                         -> MISSING   (absent, auto-create disabled)
                         -> FAILED    (check or creation raised, or the
                                       resolution task was cancelled)

The three resolved states are terminal. State is only changed on the event
loop thread; provider calls run in worker threads via ``asyncio.to_thread()``.
A gate is bound to the event loop that first resolves it.

Example:

    >>> gate = BucketGate(storage_client, create_bucket=True)
    >>> await asyncio.gather(gate.ensure_exists(), gate.ensure_exists())
    >>> gate.state
    <BucketState.EXISTS: 'exists'>

"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING

from .interfaces import BucketUnavailableError

if TYPE_CHECKING:
    from .storage_client import StorageClient

logger = logging.getLogger(__name__)


class BucketState(enum.Enum):
    """Resolution state of the bucket guarded by a gate."""

    UNKNOWN = "unknown"
    RESOLVING = "resolving"
    EXISTS = "exists"
    MISSING = "missing"
    FAILED = "failed"

    @property
    def is_resolved(self) -> bool:
        """Whether the state is terminal."""
        return self in (BucketState.EXISTS, BucketState.MISSING, BucketState.FAILED)


class BucketGate:
    """Single-flight guard for the existence of one bucket."""

    def __init__(
        self,
        storage: StorageClient,
        *,
        create_bucket: bool = False,
    ) -> None:
        """Initialise the gate for the bucket behind ``storage``.

        Args:
            storage: Provider boundary for the bucket.
            create_bucket: Create the bucket when the check finds it absent.

        """
        self._storage = storage
        self._create_bucket = create_bucket
        self._state = BucketState.UNKNOWN
        self._pending: asyncio.Future[None] | None = None
        self._failure: BucketUnavailableError | None = None
        self._cause: BaseException | None = None

    @property
    def bucket_name(self) -> str:
        """Name of the guarded bucket."""
        return self._storage.bucket_name

    @property
    def state(self) -> BucketState:
        """Current resolution state."""
        return self._state

    async def ensure_exists(self) -> None:
        """Return once the bucket is known to exist.

        Raises:
            BucketUnavailableError: If the bucket is absent and may not be
                created, if creation failed, or on any call after a failed
                resolution.
            TransportError: If the existence check itself failed; raised to
                the callers that were waiting on that check.

        """
        if self._state is BucketState.EXISTS:
            return
        if self._state.is_resolved:
            raise self._unavailable()
        if self._pending is None:
            self._state = BucketState.RESOLVING
            self._pending = asyncio.ensure_future(self._resolve())
            self._pending.add_done_callback(self._settle_if_cancelled)
        # Shielded so a cancelled caller never cancels the shared resolution.
        await asyncio.shield(self._pending)

    async def _resolve(self) -> None:
        name = self.bucket_name
        logger.debug("Checking existence of bucket %s", name)
        try:
            exists = await asyncio.to_thread(self._storage.bucket_exists)
        except Exception as exc:
            logger.warning("Existence check for bucket %s failed: %s", name, exc)
            self._settle(
                BucketState.FAILED,
                BucketUnavailableError.check_failed(name),
                cause=exc,
            )
            raise

        if exists:
            self._settle(BucketState.EXISTS)
            return

        if not self._create_bucket:
            logger.warning("Bucket %s does not exist and createBucket is off", name)
            failure = BucketUnavailableError.missing(name)
            self._settle(BucketState.MISSING, failure)
            raise failure

        logger.info("Creating bucket %s", name)
        try:
            await asyncio.to_thread(self._storage.create_bucket)
        except Exception as exc:
            logger.warning("Creation of bucket %s failed: %s", name, exc)
            failure = BucketUnavailableError.creation_failed(name)
            self._settle(BucketState.FAILED, failure, cause=exc)
            raise failure from exc

        self._settle(BucketState.EXISTS)

    def _settle_if_cancelled(self, task: asyncio.Future[None]) -> None:
        """Fail the gate when the shared resolution task itself was cancelled."""
        if not task.cancelled() or self._state.is_resolved:
            return
        logger.warning("Resolution of bucket %s was cancelled", self.bucket_name)
        self._settle(
            BucketState.FAILED,
            BucketUnavailableError.resolution_cancelled(self.bucket_name),
        )

    def _settle(
        self,
        state: BucketState,
        failure: BucketUnavailableError | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self._state = state
        self._failure = failure
        self._cause = cause
        logger.debug("Bucket %s resolved as %s", self.bucket_name, state.value)

    def _unavailable(self) -> BucketUnavailableError:
        """Return a fresh copy of the sticky failure, chained to its cause."""
        error = BucketUnavailableError(
            self._failure.bucket_name,
            reason=self._failure.reason,
        )
        error.__cause__ = self._cause
        return error
