"""
Debounced Calls

Coalesces bursts of requests (filter changes, category edits) into a
single execution of an async callback after a quiet period. flush()
runs a pending execution immediately and is what teardown relies on.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog


logger = structlog.get_logger(__name__)


class DebouncedCall:
    """
    A coalescing timer around an async callback.
    
    schedule() (re)starts the timer; when it fires the callback runs once,
    no matter how many times schedule() was called before that.
    """
    
    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float):
        self._callback = callback
        self._delay = delay
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._pending = False
    
    @property
    def pending(self) -> bool:
        """True if a run has been requested and not yet started."""
        return self._pending
    
    def schedule(self) -> None:
        self._pending = True
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the run stays pending until flush()
            return
        self._timer = loop.call_later(self._delay, self._fire)
    
    def cancel(self) -> None:
        """Forget any pending run."""
        self._pending = False
        self._cancel_timer()
    
    async def flush(self) -> None:
        """Run a pending callback now and wait for any run in progress."""
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            await asyncio.shield(self._task)
        if self._pending:
            self._pending = False
            await self._callback()
    
    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
    
    def _fire(self) -> None:
        self._timer = None
        if not self._pending:
            return
        self._pending = False
        self._task = asyncio.ensure_future(self._run())
    
    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as e:
            logger.error("debounced_call_failed", error=str(e))
