"""Per-turn endpoint resolution.

The model backend for a turn is resolved once, on first use, and reused by
every round of that turn. ``turn_scope()`` bounds the cached value to exactly
one turn: it is cleared on every exit path, including exceptions and
cancellation.

Usage::

    cache = TurnEndpointCache(provider)
    async with cache.turn_scope():
        endpoint = await cache.get_endpoint(request)   # resolves
        endpoint = await cache.get_endpoint(request)   # memoized
    assert cache.cached is None
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class EndpointProvider(Protocol):
    """Resolves the model backend handle for a request."""

    async def resolve(self, request: Any) -> Any: ...


class TurnEndpointCache:
    """Memoizes one resolved endpoint for the lifetime of a turn."""

    def __init__(self, provider: EndpointProvider) -> None:
        self._provider = provider
        self._endpoint: Any | None = None
        self._lock = asyncio.Lock()
        self.resolutions = 0

    @property
    def cached(self) -> Any | None:
        return self._endpoint

    async def get_endpoint(self, request: Any) -> Any:
        """Return the turn's endpoint, resolving it via the provider at most once."""
        if self._endpoint is not None:
            return self._endpoint
        async with self._lock:
            if self._endpoint is None:
                endpoint = await self._provider.resolve(request)
                if endpoint is None:
                    raise ValueError("Endpoint provider returned no endpoint")
                self.resolutions += 1
                self._endpoint = endpoint
                logger.debug("Resolved endpoint for turn: %r", endpoint)
        return self._endpoint

    def clear(self) -> None:
        self._endpoint = None

    @asynccontextmanager
    async def turn_scope(self) -> AsyncIterator["TurnEndpointCache"]:
        """Scope the cached endpoint to one turn; cleared however the turn ends."""
        self.clear()
        try:
            yield self
        finally:
            self.clear()


class StaticEndpointProvider:
    """EndpointProvider that always returns the same endpoint."""

    def __init__(self, endpoint: Any) -> None:
        self._endpoint = endpoint

    async def resolve(self, request: Any) -> Any:
        return self._endpoint
