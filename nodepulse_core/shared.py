"""Reference-counted holder for one RpcClient shared by many users."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from .rpc_client import RpcClient

_LOGGER = logging.getLogger(__name__)


class SharedRpcClient:
    """Hand out a single RpcClient and close it when the last user leaves.

    The first attach() builds the client with the factory and, when the
    client auto-connects, starts opening the socket in the background so
    the first call does not pay for the handshake.
    """

    def __init__(self, factory: Callable[[], RpcClient]) -> None:
        self._factory = factory
        self._client: RpcClient | None = None
        self._refcount = 0
        self._warm_up_task: asyncio.Task[bool] | None = None

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def client(self) -> RpcClient | None:
        return self._client

    def attach(self) -> RpcClient:
        """Return the shared client, creating it on first use."""
        if self._client is None:
            self._client = self._factory()
            _LOGGER.debug("Created shared RPC client")
            if self._client.options.auto_connect:
                self._warm_up_task = asyncio.create_task(self._client.warm_up())
        self._refcount += 1
        return self._client

    async def detach(self) -> None:
        """Release one reference; the last one closes the client.

        Raises:
            RuntimeError: If there is no reference to release.
        """
        if self._refcount == 0:
            raise RuntimeError("detach() called without a matching attach()")

        self._refcount -= 1
        if self._refcount > 0:
            return

        client, self._client = self._client, None
        warm_up, self._warm_up_task = self._warm_up_task, None
        if warm_up is not None and not warm_up.done():
            warm_up.cancel()
            await asyncio.gather(warm_up, return_exceptions=True)
        if client is not None:
            await client.close()
            _LOGGER.debug("Closed shared RPC client")

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[RpcClient]:
        """Attach for the duration of an async with block."""
        client = self.attach()
        try:
            yield client
        finally:
            await self.detach()
