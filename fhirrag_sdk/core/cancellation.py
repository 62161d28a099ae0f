# fhirrag_sdk/core/cancellation.py
# SPDX-License-Identifier: Apache-2.0
"""Cooperative cancellation for facade operations."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from fhirrag_sdk.core.errors import Cancelled

__all__ = ["CancellationToken", "Sleeper"]

Sleeper = Callable[[float], Awaitable[None]]


class CancellationToken:
    """
    Signal honored at every suspension point: before a remote call, during
    retry backoff, during batch pacing and before each new batch.

    The token is created and cancelled by the caller; facades only observe it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self._reason or "operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay_s: float, *, sleeper: Sleeper = asyncio.sleep) -> None:
        """
        Sleep for ``delay_s`` unless cancelled first.

        Raises:
            Cancelled: if the token fires before or during the sleep.
        """
        self.raise_if_cancelled()
        if delay_s <= 0:
            return
        sleep_task = asyncio.ensure_future(sleeper(delay_s))
        cancel_task = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {sleep_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (sleep_task, cancel_task):
                if not task.done():
                    task.cancel()
        self.raise_if_cancelled()
        if sleep_task.done() and not sleep_task.cancelled():
            sleep_task.result()
