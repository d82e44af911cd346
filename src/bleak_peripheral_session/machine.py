"""Serialized event dispatch shared by the discovery and connection machines.

Both state machines receive everything (user commands, transport
callbacks, timer firings, I/O completions) as typed events through one
entry point, :meth:`EventProcessor.post`.  Handlers are plain
synchronous methods and run one at a time on the event loop thread:

- An event posted while a handler is running is queued and handled
  after it, in posting order.
- An event posted from another thread (some backends deliver callbacks
  on their own threads) is marshalled onto the loop with
  ``call_soon_threadsafe``.

Radio I/O never runs inside a handler.  Handlers start it with
:meth:`EventProcessor.spawn`, and the task's outcome comes back later as
another posted event.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from typing import Any

_LOGGER = logging.getLogger(__name__)


class EventProcessor:
    """Base class providing the single serialized entry point.

    Subclasses fill :attr:`_handlers` with ``{EventType: method}`` and
    call :meth:`post` for every input.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: deque[Any] = deque()
        self._dispatching = False
        self._generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        self._handlers: dict[type, Callable[[Any], None]] = {}

    @property
    def generation(self) -> int:
        return self._generation

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def post(self, event: Any) -> None:
        """Submit *event* for processing.  Safe from any thread."""
        if self._loop is not None and self._loop.is_closed():
            # Reused under a new loop, e.g. a second asyncio.run()
            self._loop = None
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            self._loop = running
            self._enqueue(event)
            return

        if self._loop is None:
            raise RuntimeError(
                f"{self._name}: no event loop bound; post the first event"
                " from the loop thread"
            )
        self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: Any) -> None:
        self._pending.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                self._dispatch(self._pending.popleft())
        finally:
            self._dispatching = False

    def _dispatch(self, event: Any) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            _LOGGER.debug("%s: no handler for %r, dropping", self._name, event)
            return
        try:
            handler(event)
        except Exception:
            _LOGGER.exception("%s: handler for %r failed", self._name, event)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        on_done: Callable[[asyncio.Task[Any]], None] | None = None,
    ) -> asyncio.Task[Any]:
        """Run *coro* as a task tracked by this machine.

        *on_done* receives the finished task (cancelled ones included) and
        is expected to translate its outcome into a posted event.
        """
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _finished(done: asyncio.Task[Any]) -> None:
            self._tasks.discard(done)
            if on_done is not None:
                on_done(done)
            elif not done.cancelled() and done.exception() is not None:
                _LOGGER.debug(
                    "%s: background task failed",
                    self._name,
                    exc_info=done.exception(),
                )

        task.add_done_callback(_finished)
        return task

    def _cancel_tasks(self) -> None:
        for task in list(self._tasks):
            task.cancel()
