"""Cooperative cancellation for a turn.

The loop checks the token at round boundaries and between tool calls, and
passes it to every tool invocation. In-flight tools are never killed; they are
expected to watch the token and stop on their own.
"""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Read side of a cancellation signal."""

    def __init__(self, event: asyncio.Event | None = None) -> None:
        self._event = event if event is not None else asyncio.Event()

    @classmethod
    def none(cls) -> "CancellationToken":
        """A token that is never cancelled."""
        return cls()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()


class CancellationTokenSource:
    """Owner side: hands out a token and cancels it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.token = CancellationToken(self._event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()
