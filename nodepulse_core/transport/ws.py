"""WebSocket helpers for Nodepulse transports."""

from __future__ import annotations

import asyncio
from urllib.parse import urlsplit, urlunsplit

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    NodepulseConnectionError,
    NodepulseHandshakeError,
    NodepulseTimeout,
)

_WS_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def websocket_url(base_url: str, path: str) -> str:
    """Derive the ws(s):// URL for path on the server at base_url.

    http maps to ws and https to wss, so the socket and HTTP endpoints
    share one base path.
    """
    parts = urlsplit(base_url)
    scheme = _WS_SCHEMES.get(parts.scheme)
    if scheme is None or not parts.netloc:
        raise ValueError(f"Unsupported base URL: {base_url}")
    return urlunsplit((scheme, parts.netloc, path, "", ""))


def http_url(base_url: str, path: str) -> str:
    """Join base_url and path for HTTP requests."""
    return base_url.rstrip("/") + path


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = 20,
    timeout: float = 10.0,
) -> ClientConnection:
    """Connect to a WebSocket endpoint.

    Args:
        url: Full ws:// or wss:// URL
        ping_interval: Interval for protocol-level ping frames (None disables)
        timeout: Connection timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise NodepulseTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise NodepulseHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise NodepulseConnectionError("WebSocket connection failed") from err
