"""
Optimistic request reconciliation.

The caller applies a local change immediately, sends the request, and rolls
the local change back if the request ultimately fails. Only idempotent
lifecycle operations are retried on TransientError; everything else
(amendment proposals in particular) fails straight through to rollback.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from consentflow.core.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# second call is a no-op success on the server
RETRYABLE_OPERATIONS = frozenset({"confirm_consent", "review_contract"})


def is_retryable(operation: str) -> bool:
    return operation in RETRYABLE_OPERATIONS


class OptimisticAction(Generic[T]):
    def __init__(
        self,
        operation: str,
        request: Callable[[], Awaitable[T]],
        apply: Optional[Callable[[], None]] = None,
        rollback: Optional[Callable[[], None]] = None,
        max_attempts: int = 3,
        wait: Optional[wait_base] = None,
    ):
        self.operation = operation
        self.request = request
        self.apply = apply
        self.rollback = rollback
        self.max_attempts = max_attempts
        self.wait = wait or wait_exponential(multiplier=0.2, max=2)
        self.rolled_back = False

    def start(self) -> "asyncio.Future[T]":
        """Schedule the action on the running loop and hand back its future."""
        return asyncio.ensure_future(self.run())

    async def run(self) -> T:
        if self.apply:
            self.apply()
        try:
            return await self._send()
        except Exception:
            self.rolled_back = True
            if self.rollback:
                self.rollback()
            logger.info("optimistic action rolled back", extra={"operation": self.operation})
            raise

    async def _send(self) -> T:
        if not is_retryable(self.operation):
            return await self.request()

        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(TransientError),
            reraise=True,
        ):
            with attempt:
                result = await self.request()
        return result
