"""StatusWatcher — samples a session's status and notifies on change.

A pure observer: it reads :attr:`ModelSession.status` at a fixed interval and
calls its listeners with the new value whenever it differs from the last one
it saw.  It never touches the session otherwise.
"""
from __future__ import annotations

import asyncio
import logging
import types
from collections.abc import Callable
from typing import Protocol

from harp.config import settings
from harp.core.status import SessionStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[SessionStatus], None]


class StatusSource(Protocol):
    @property
    def status(self) -> SessionStatus: ...


class StatusWatcher:
    """Polls ``source.status`` every ``interval`` seconds."""

    def __init__(self, source: StatusSource, interval: float | None = None) -> None:
        self._source = source
        self._interval = interval if interval is not None else settings.status_poll_interval
        self._listeners: list[StatusListener] = []
        self._last_status: SessionStatus | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def last_status(self) -> SessionStatus | None:
        return self._last_status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: StatusListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def poll_once(self) -> SessionStatus | None:
        """Take one sample; returns the new status if it changed, else None."""
        status = self._source.status
        if status == self._last_status:
            return None
        self._last_status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener %r failed", listener)
        return status

    async def _loop(self) -> None:
        while True:
            self.poll_once()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        """Start sampling on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="harp-status-watcher")

    async def stop(self) -> None:
        """Stop sampling, after one final sample so a last change is not missed."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.poll_once()

    async def __aenter__(self) -> "StatusWatcher":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.stop()
