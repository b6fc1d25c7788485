"""Client error types for Nodepulse call and feed transports."""

from __future__ import annotations

from typing import Any


class NodepulseClientError(Exception):
    """Base error for Nodepulse client failures."""


class NodepulseTimeout(NodepulseClientError):
    """Timeout while communicating with the server."""


class NodepulseConnectionError(NodepulseClientError):
    """Network connection to the server failed or was closed."""


class NodepulseHandshakeError(NodepulseClientError):
    """WebSocket handshake failed."""


class NodepulseResponseError(NodepulseClientError):
    """HTTP response error from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class NodepulseProtocolError(NodepulseClientError):
    """Response body or stream message does not have the expected shape."""


class NodepulseRpcError(NodepulseClientError):
    """JSON-RPC error object returned by the server."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC Error {code}: {message}")
        self.code = code
        self.rpc_message = message
        self.data = data

    @property
    def is_transient(self) -> bool:
        """Internal and server-reserved errors may succeed on retry."""
        return self.code == -32603 or -32099 <= self.code <= -32000


class InvalidStateTransition(NodepulseClientError):
    """Connection state machine was asked for a transition it does not allow."""


class ConfigLoadError(NodepulseClientError):
    """Configuration file is missing or invalid."""
