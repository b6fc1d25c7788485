"""Nodepulse core: JSON-RPC call client and live telemetry feed.

Components:
- rpc_client: WebSocket-first JSON-RPC client with HTTP fallback
- live_feed: pull/push telemetry feed built on a call client
- snapshot: normalized telemetry records
- shared: reference-counted client holder
- config: option dataclasses and YAML loading
"""

from .config import (
    LiveFeedOptions,
    NodepulseConfig,
    RpcClientOptions,
    load_config,
)
from .errors import (
    ConfigLoadError,
    InvalidStateTransition,
    NodepulseClientError,
    NodepulseConnectionError,
    NodepulseHandshakeError,
    NodepulseProtocolError,
    NodepulseResponseError,
    NodepulseRpcError,
    NodepulseTimeout,
)
from .live_feed import FeedMode, LiveDataFeed
from .protocol import RpcErrorCode, RpcResponse, build_request, parse_response
from .rpc_client import BatchRequest, BatchResult, RpcClient, RpcEventListeners
from .shared import SharedRpcClient
from .snapshot import (
    LiveDataBatch,
    TelemetrySnapshot,
    from_rpc_result,
    from_stream_message,
)
from .state import ConnectionState, ConnectionStateMachine

__version__ = "0.1.0"

__all__ = [
    "BatchRequest",
    "BatchResult",
    "ConfigLoadError",
    "ConnectionState",
    "ConnectionStateMachine",
    "FeedMode",
    "InvalidStateTransition",
    "LiveDataBatch",
    "LiveDataFeed",
    "LiveFeedOptions",
    "NodepulseClientError",
    "NodepulseConfig",
    "NodepulseConnectionError",
    "NodepulseHandshakeError",
    "NodepulseProtocolError",
    "NodepulseResponseError",
    "NodepulseRpcError",
    "NodepulseTimeout",
    "RpcClient",
    "RpcClientOptions",
    "RpcErrorCode",
    "RpcEventListeners",
    "RpcResponse",
    "SharedRpcClient",
    "TelemetrySnapshot",
    "build_request",
    "from_rpc_result",
    "from_stream_message",
    "load_config",
    "parse_response",
]
