"""Run awaitables returned by user callbacks on the loop that owns them."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any


class CallbackTasks:
    """Keep references to tasks spawned for async callbacks.

    Callbacks may fire on a platform thread with no running loop; their
    awaitables are handed to the bound loop with ``call_soon_threadsafe``.
    Failures are logged under ``event`` when the task finishes.
    """

    def __init__(self, logger: logging.Logger, *, event: str) -> None:
        self._logger = logger
        self._event = event
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Future[Any]] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    def pending(self) -> int:
        return len(self._tasks)

    def bind(self) -> None:
        """Adopt the running loop, if there is one, as the owner of new tasks."""

        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            return

    def schedule(self, awaitable: Awaitable[Any], **fields: Any) -> bool:
        """Run ``awaitable`` on the owning loop; ``False`` if no loop can take it."""

        try:
            running: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        loop = self._loop
        if loop is None or loop.is_closed():
            loop = running
        if loop is None:
            self._drop(awaitable, fields)
            return False
        if loop is running:
            self._spawn(loop, awaitable, fields)
            return True
        try:
            loop.call_soon_threadsafe(self._spawn, loop, awaitable, fields)
        except RuntimeError:
            self._drop(awaitable, fields)
            return False
        return True

    def _spawn(
        self,
        loop: asyncio.AbstractEventLoop,
        awaitable: Awaitable[Any],
        fields: dict[str, Any],
    ) -> None:
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._finished(done, fields))

    def _finished(self, task: asyncio.Future[Any], fields: dict[str, Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "Async callback failed",
                exc_info=exc,
                extra={"event": self._event, **fields},
            )

    def _drop(self, awaitable: Awaitable[Any], fields: dict[str, Any]) -> None:
        self._logger.warning(
            "No event loop available for async callback",
            extra={"event": self._event, "reason": "no_loop", **fields},
        )
        close = getattr(awaitable, "close", None)
        if callable(close):
            close()


__all__ = ["CallbackTasks"]
