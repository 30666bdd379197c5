"""Cooperative cancellation shared by plan creation, task execution and tools."""

from __future__ import annotations

import asyncio
import logging

__all__ = ["CancellationToken", "OperationCancelledError", "is_cancelled"]

LOGGER = logging.getLogger(__name__)


class OperationCancelledError(Exception):
    """Raised when work is requested after the user cancelled."""

    def __init__(self, message: str = "Operation was cancelled", *, stage: str | None = None) -> None:
        self.stage = stage
        super().__init__(message)


class CancellationToken:
    """One-shot cancellation flag backed by an :class:`asyncio.Event`.

    Cancelling is idempotent and safe from signal handlers running on the
    loop thread. Checks are cooperative; nothing is interrupted forcibly.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        LOGGER.info("Cancellation requested%s", f": {reason}" if reason else "")

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        if self._event.is_set():
            raise OperationCancelledError(stage=stage)

    async def wait(self) -> None:
        await self._event.wait()


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled
