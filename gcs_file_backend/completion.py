"""Awaitable and callback completion for buffered operations.

Each buffered backend operation is written once, as a coroutine. This module
adapts it to the caller's completion style: without a callback the caller
gets the task to await; with a callback, ``callback(error, result)`` is
invoked exactly once and nothing is returned.

Example:

    >>> task = complete(backend_coroutine(), None, tasks=pending)
    >>> data = await task

    >>> def done(error, data):
    ...     ...
    >>> complete(backend_coroutine(), done, tasks=pending)

"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from .interfaces import CompletionCallback

T = TypeVar("T")


def complete(
    operation: Coroutine[Any, Any, T],
    callback: CompletionCallback | None,
    *,
    tasks: set[asyncio.Task[Any]],
) -> asyncio.Task[T] | None:
    """Schedule ``operation`` and report its outcome in the requested style.

    Args:
        operation: Coroutine implementing the operation.
        callback: ``(error, result)`` handler, or None for the awaitable form.
        tasks: Set holding strong references to callback-style tasks until
            they finish.

    Returns:
        The scheduled task when no callback is given, otherwise None.

    """
    task = asyncio.ensure_future(operation)
    if callback is None:
        return task

    tasks.add(task)
    task.add_done_callback(tasks.discard)
    task.add_done_callback(lambda done: _invoke(callback, done))
    return None


def _invoke(callback: CompletionCallback, task: asyncio.Task[Any]) -> None:
    """Call ``callback`` with either the task error or its result."""
    if task.cancelled():
        callback(asyncio.CancelledError(), None)
        return
    error = task.exception()
    if error is not None:
        callback(error, None)
        return
    callback(None, task.result())
