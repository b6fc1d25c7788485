"""WebSocket client wrapper for Nodepulse."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import NodepulseConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class NodepulseWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class NodepulseWsMessage:
    """Normalized WebSocket message payload."""

    type: NodepulseWsMessageType
    data: str | None = None


class NodepulseWsClient:
    """Wrapper around websockets library for Nodepulse endpoints."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        url: str,
        *,
        ping_interval: float | None = 20,
        timeout: float = 10.0,
    ) -> None:
        """Connect to the websocket endpoint."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def send_json(self, payload: dict[str, Any] | list[Any]) -> None:
        """Send a JSON payload to the websocket."""
        await self.send_text(json.dumps(payload))

    async def send_text(self, data: str) -> None:
        """Send a text frame.

        Raises:
            NodepulseConnectionError: If not connected or the send fails
        """
        if self._ws is None:
            raise NodepulseConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(data)
        except (ConnectionClosed, WebSocketException, OSError) as err:
            raise NodepulseConnectionError("WebSocket send failed") from err

    def __aiter__(self) -> AsyncIterator[NodepulseWsMessage]:
        if self._ws is None:
            raise NodepulseConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[NodepulseWsMessage]:
        if self._ws is None:
            raise NodepulseConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed:
            yield NodepulseWsMessage(type=NodepulseWsMessageType.CLOSED)
        except Exception:
            yield NodepulseWsMessage(type=NodepulseWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield NodepulseWsMessage(type=NodepulseWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> NodepulseWsMessage | None:
        """Normalize frames into NodepulseWsMessage; binary frames are skipped."""
        if isinstance(msg, bytes):
            return None
        if isinstance(msg, str):
            return NodepulseWsMessage(NodepulseWsMessageType.TEXT, msg)
        return NodepulseWsMessage(NodepulseWsMessageType.TEXT, str(msg))

