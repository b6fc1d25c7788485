"""Transport layer for Nodepulse.

This package contains all raw IO: no correlation, retry or mode logic.

Components:
- http: HTTP POST of JSON-RPC envelopes
- ws: WebSocket connection setup and URL helpers
- ws_client: WebSocket message iteration
"""

from .http import NodepulseHttpClient
from .ws import connect_websocket, http_url, websocket_url
from .ws_client import NodepulseWsClient, NodepulseWsMessage, NodepulseWsMessageType

__all__ = [
    "NodepulseHttpClient",
    "NodepulseWsClient",
    "NodepulseWsMessage",
    "NodepulseWsMessageType",
    "connect_websocket",
    "http_url",
    "websocket_url",
]
