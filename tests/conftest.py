"""Pytest configuration and fixtures for nodepulse_core tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from nodepulse_core.errors import NodepulseConnectionError
from nodepulse_core.transport.ws_client import NodepulseWsMessage, NodepulseWsMessageType


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    reason: str = "OK",
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call
        reason: HTTP reason phrase

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.reason = reason

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until predicate() holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


class FakeWsClient:
    """In-memory stand-in for NodepulseWsClient.

    Frames pushed with push_text()/push_json() are yielded by async
    iteration; drop() ends the iteration like a server-side close.
    """

    def __init__(
        self, connect_error: Exception | None = None, connect_delay: float = 0.0
    ) -> None:
        self.url: str | None = None
        self.connect_kwargs: dict[str, Any] = {}
        self.sent: list[str] = []
        self.closed = False
        self._connected = False
        self._connect_error = connect_error
        self._connect_delay = connect_delay
        self._queue: asyncio.Queue[NodepulseWsMessage | None] = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def sent_json(self) -> list[Any]:
        return [json.loads(item) for item in self.sent]

    async def connect(self, url: str, **kwargs: Any) -> None:
        self.url = url
        self.connect_kwargs = kwargs
        if self._connect_delay:
            await asyncio.sleep(self._connect_delay)
        if self._connect_error is not None:
            raise self._connect_error
        self._connected = True

    async def close(self) -> None:
        self.closed = True
        self._connected = False
        self._queue.put_nowait(None)

    async def send_json(self, payload: Any) -> None:
        await self.send_text(json.dumps(payload))

    async def send_text(self, data: str) -> None:
        if not self._connected:
            raise NodepulseConnectionError("WebSocket is not connected")
        self.sent.append(data)

    def push_text(self, data: str) -> None:
        self._queue.put_nowait(NodepulseWsMessage(NodepulseWsMessageType.TEXT, data))

    def push_json(self, payload: Any) -> None:
        self.push_text(json.dumps(payload))

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._connected = False
        self._queue.put_nowait(None)

    async def wait_sent(self, count: int = 1) -> None:
        await wait_until(lambda: len(self.sent) >= count)

    def __aiter__(self):
        return self._iter_messages()

    async def _iter_messages(self):
        while True:
            msg = await self._queue.get()
            if msg is None:
                yield NodepulseWsMessage(NodepulseWsMessageType.CLOSED)
                return
            yield msg


class FakeWsFactory:
    """Callable replacing the NodepulseWsClient class.

    Each call builds a FakeWsClient; entries of connect_errors are consumed
    in order so individual connection attempts can be made to fail, and
    connect_delay keeps each open in flight for a while.
    """

    def __init__(self) -> None:
        self.instances: list[FakeWsClient] = []
        self.connect_errors: list[Exception | None] = []
        self.connect_delay = 0.0

    def __call__(self) -> FakeWsClient:
        error = self.connect_errors.pop(0) if self.connect_errors else None
        ws = FakeWsClient(connect_error=error, connect_delay=self.connect_delay)
        self.instances.append(ws)
        return ws

    @property
    def latest(self) -> FakeWsClient:
        return self.instances[-1]


@pytest.fixture
def fake_ws() -> Iterator[FakeWsFactory]:
    """Replace the call client's socket with in-memory fakes."""
    factory = FakeWsFactory()
    with patch("nodepulse_core.rpc_client.NodepulseWsClient", factory):
        yield factory


@pytest.fixture
def fake_stream() -> Iterator[FakeWsFactory]:
    """Replace the live feed's push stream with in-memory fakes."""
    factory = FakeWsFactory()
    with patch("nodepulse_core.live_feed.NodepulseWsClient", factory):
        yield factory
