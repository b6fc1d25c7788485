"""JSON-RPC 2.0 envelope helpers.

The peer is trusted: responses are checked for the expected top-level
fields only, the protocol version string is not validated further.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .errors import NodepulseProtocolError, NodepulseRpcError

JSONRPC_VERSION = "2.0"

RequestId = int | str


class RpcErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


def build_request(
    method: str,
    params: Any = None,
    request_id: RequestId | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC request envelope.

    Args:
        method: Remote method name (e.g., "common:getNodesLatestStatus").
        params: Optional structured parameters. Omitted when None.
        request_id: Correlation id. When None the envelope is a
            notification and carries no "id" key.

    Returns:
        Request envelope dict ready for JSON serialization.
    """
    if not method:
        raise ValueError("method is required for JSON-RPC requests")

    request: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        request["params"] = params
    if request_id is not None:
        request["id"] = request_id
    return request


def is_notification(request: Mapping[str, Any]) -> bool:
    """Return True when request expects no reply."""
    return request.get("id") is None


def is_response(payload: Any) -> bool:
    """Cheap check used by the socket reader before correlating."""
    return isinstance(payload, Mapping) and (
        "result" in payload or "error" in payload
    )


@dataclass(frozen=True)
class RpcResponse:
    """Parsed JSON-RPC response (success or failure)."""

    id: RequestId | None
    result: Any = None
    error: NodepulseRpcError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the result or raise the RPC error."""
        if self.error is not None:
            raise self.error
        return self.result


def parse_error(error: Any) -> NodepulseRpcError:
    """Convert a JSON-RPC error object into NodepulseRpcError."""
    if not isinstance(error, Mapping):
        raise NodepulseProtocolError("JSON-RPC error must be an object")

    code = error.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        raise NodepulseProtocolError("JSON-RPC error code must be an integer")

    return NodepulseRpcError(
        code, str(error.get("message", "Unknown error")), error.get("data")
    )


def parse_response(payload: Any) -> RpcResponse:
    """Parse a decoded JSON-RPC response.

    Raises:
        NodepulseProtocolError: If payload lacks the expected fields.
    """
    if not isinstance(payload, Mapping):
        raise NodepulseProtocolError("JSON-RPC response must be an object")
    if "jsonrpc" not in payload:
        raise NodepulseProtocolError("JSON-RPC response is missing 'jsonrpc'")

    response_id = payload.get("id")
    if "error" in payload and payload["error"] is not None:
        return RpcResponse(id=response_id, error=parse_error(payload["error"]))
    if "result" in payload:
        return RpcResponse(id=response_id, result=payload["result"])

    raise NodepulseProtocolError("JSON-RPC response has neither result nor error")
