"""
Hold-to-confirm gesture.

A confirm request is issued only after an uninterrupted hold of
``hold_ms`` (3000 ms by default). Releasing earlier aborts with no request.
Each gate submits at most once; ``reset`` arms it again.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_HOLD_MS = 3000


class HoldToConfirm:
    """
    Clock-driven variant: the caller reports press and release, and the gate
    measures the hold with an injected monotonic clock (seconds).
    """

    def __init__(
        self,
        on_confirm: Callable[[], Any],
        hold_ms: int = DEFAULT_HOLD_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_confirm = on_confirm
        self.hold_ms = hold_ms
        self.clock = clock
        self.disabled = False
        self.completed = False
        self._pressed_at: Optional[float] = None

    @property
    def holding(self) -> bool:
        return self._pressed_at is not None

    def press(self) -> None:
        if self.disabled or self.completed:
            return
        self._pressed_at = self.clock()

    def elapsed_ms(self) -> float:
        if self._pressed_at is None:
            return 0.0
        return (self.clock() - self._pressed_at) * 1000.0

    def progress(self) -> float:
        return min(self.elapsed_ms() / self.hold_ms, 1.0) if self.hold_ms else 1.0

    def release(self) -> bool:
        """Returns True when this release completed the gesture."""
        if self._pressed_at is None or self.completed:
            return False
        elapsed = self.elapsed_ms()
        self._pressed_at = None
        if elapsed < self.hold_ms:
            logger.debug("hold aborted", extra={"elapsed_ms": round(elapsed, 1)})
            return False
        self.completed = True
        self.on_confirm()
        return True

    def reset(self) -> None:
        self.completed = False
        self._pressed_at = None


class AsyncHoldToConfirm:
    """
    Countdown variant: press starts one cancelable asyncio task per attempt
    which submits when the countdown finishes while the hold is still active.
    """

    def __init__(
        self,
        submit: Callable[[], Awaitable[Any]],
        hold_ms: int = DEFAULT_HOLD_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.submit = submit
        self.hold_ms = hold_ms
        self.sleep = sleep
        self.completed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def holding(self) -> bool:
        return self._task is not None and not self._task.done()

    def press(self) -> Optional[asyncio.Task]:
        if self.completed or self.holding:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._countdown())
        return self._task

    async def _countdown(self) -> Any:
        await self.sleep(self.hold_ms / 1000.0)
        self.completed = True
        return await self.submit()

    def release(self) -> bool:
        """Cancels an unfinished countdown. Returns True if one was aborted."""
        if self.completed or self._task is None or self._task.done():
            return False
        self._task.cancel()
        return True

    async def wait(self) -> Any:
        """Result of the submit, or None when the attempt was aborted."""
        if self._task is None:
            return None
        try:
            return await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            return None
