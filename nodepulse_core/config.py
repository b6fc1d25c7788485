"""Typed configuration for the call client and the live data feed.

Options are plain frozen dataclasses with explicit defaults. They can be
built in code or loaded from a YAML file with load_config(). All
durations are in seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigLoadError

DEFAULT_RPC_PATH = "/api/rpc2"
DEFAULT_STREAM_PATH = "/api/clients"


def _default_headers() -> dict[str, str]:
    return {"Content-Type": "application/json"}


@dataclass(frozen=True)
class RpcClientOptions:
    """Options recognized by RpcClient.

    Attributes:
        auto_connect: Open the socket on demand from call().
        auto_reconnect: Reconnect after an unexpected socket close.
        reconnect_interval: Fixed delay before each reconnect attempt.
        max_reconnect_attempts: Attempts before giving up (stays disconnected).
        request_timeout: Default per-call timeout.
        enable_heartbeat: Send rpc.ping notifications while connected.
        heartbeat_interval: Delay between heartbeat notifications.
        enable_http_fallback: Retry a failed socket call once over HTTP.
        connect_timeout: Upper bound for opening the socket.
        headers: Extra headers for HTTP requests.
    """

    auto_connect: bool = True
    auto_reconnect: bool = True
    reconnect_interval: float = 3.0
    max_reconnect_attempts: int = 5
    request_timeout: float = 30.0
    enable_heartbeat: bool = True
    heartbeat_interval: float = 15.0
    enable_http_fallback: bool = True
    connect_timeout: float = 10.0
    headers: dict[str, str] = field(default_factory=_default_headers)

    def __post_init__(self) -> None:
        for name in (
            "reconnect_interval",
            "request_timeout",
            "heartbeat_interval",
            "connect_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must not be negative")


@dataclass(frozen=True)
class LiveFeedOptions:
    """Options recognized by LiveDataFeed.

    Attributes:
        pull_interval: Delay between the end of one pull and the next.
        pull_failure_threshold: Consecutive pull failures before switching
            to push mode.
        latest_status_method: RPC method polled in pull mode.
        stream_path: Path of the push stream endpoint.
        stream_reconnect_delay: Fixed delay before reopening the stream.
        keepalive_interval: Stream keep-alive period (None = pull_interval).
        keepalive_payload: Text frame sent as keep-alive.
    """

    pull_interval: float = 2.0
    pull_failure_threshold: int = 3
    latest_status_method: str = "common:getNodesLatestStatus"
    stream_path: str = DEFAULT_STREAM_PATH
    stream_reconnect_delay: float = 2.0
    keepalive_interval: float | None = None
    keepalive_payload: str = "get"

    def __post_init__(self) -> None:
        if self.pull_interval <= 0:
            raise ValueError("pull_interval must be positive")
        if self.pull_failure_threshold < 1:
            raise ValueError("pull_failure_threshold must be at least 1")
        if self.stream_reconnect_delay <= 0:
            raise ValueError("stream_reconnect_delay must be positive")
        if self.keepalive_interval is not None and self.keepalive_interval <= 0:
            raise ValueError("keepalive_interval must be positive")

    @property
    def effective_keepalive_interval(self) -> float:
        if self.keepalive_interval is None:
            return self.pull_interval
        return self.keepalive_interval


@dataclass(frozen=True)
class NodepulseConfig:
    """Endpoint plus option groups for one monitoring server."""

    base_url: str
    rpc_path: str = DEFAULT_RPC_PATH
    rpc: RpcClientOptions = field(default_factory=RpcClientOptions)
    feed: LiveFeedOptions = field(default_factory=LiveFeedOptions)


# camelCase option names used by browser clients, mapped to
# (field name, divisor converting the value to seconds).
_RPC_ALIASES: dict[str, tuple[str, float]] = {
    "autoConnect": ("auto_connect", 1),
    "autoReconnect": ("auto_reconnect", 1),
    "reconnectInterval": ("reconnect_interval", 1000),
    "maxReconnectAttempts": ("max_reconnect_attempts", 1),
    "requestTimeout": ("request_timeout", 1000),
    "enableHeartbeat": ("enable_heartbeat", 1),
    "heartbeatInterval": ("heartbeat_interval", 1000),
    "enableHttpFallback": ("enable_http_fallback", 1),
    "connectTimeout": ("connect_timeout", 1000),
}

_FEED_ALIASES: dict[str, tuple[str, float]] = {
    "pullInterval": ("pull_interval", 1000),
    "rpcIntervalMs": ("pull_interval", 1000),
    "pullFailureThreshold": ("pull_failure_threshold", 1),
    "rpcFailureThreshold": ("pull_failure_threshold", 1),
    "streamReconnectDelay": ("stream_reconnect_delay", 1000),
    "keepaliveInterval": ("keepalive_interval", 1000),
}


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}")
    with path.open() as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise ConfigLoadError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Top level of {path} must be a mapping")
    return data


def _normalize_section(
    section: Any, aliases: dict[str, tuple[str, float]], known: set[str], name: str
) -> dict[str, Any]:
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigLoadError(f"Section '{name}' must be a mapping")

    normalized: dict[str, Any] = {}
    for key, value in section.items():
        if key in aliases:
            field_name, divisor = aliases[key]
            if divisor != 1 and value is not None:
                try:
                    value = value / divisor
                except TypeError as err:
                    raise ConfigLoadError(
                        f"Option '{key}' in section '{name}' must be a number"
                    ) from err
        elif key in known:
            field_name = key
        else:
            raise ConfigLoadError(f"Unknown option '{key}' in section '{name}'")
        normalized[field_name] = value
    return normalized


def load_config(path: Path | str) -> NodepulseConfig:
    """Load NodepulseConfig from a YAML file.

    Expected layout:

        base_url: http://monitor.local:25774
        rpc_path: /api/rpc2
        rpc:
          reconnectInterval: 3000    # camelCase keys are in milliseconds
          max_reconnect_attempts: 5  # snake_case keys are in seconds
        feed:
          pull_interval: 2.0

    Raises:
        ConfigLoadError: If the file is missing or contains invalid options.
    """
    data = _load_yaml(Path(path))

    base_url = data.get("base_url")
    if not base_url:
        raise ConfigLoadError("base_url is required")

    rpc_kwargs = _normalize_section(
        data.get("rpc"),
        _RPC_ALIASES,
        {f.name for f in fields(RpcClientOptions)},
        "rpc",
    )
    feed_kwargs = _normalize_section(
        data.get("feed"),
        _FEED_ALIASES,
        {f.name for f in fields(LiveFeedOptions)},
        "feed",
    )

    try:
        return NodepulseConfig(
            base_url=base_url,
            rpc_path=data.get("rpc_path", DEFAULT_RPC_PATH),
            rpc=RpcClientOptions(**rpc_kwargs),
            feed=LiveFeedOptions(**feed_kwargs),
        )
    except (TypeError, ValueError) as err:
        raise ConfigLoadError(f"Invalid configuration in {path}: {err}") from err
