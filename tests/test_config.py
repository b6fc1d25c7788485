"""Tests for option dataclasses and YAML config loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from nodepulse_core.config import (
    DEFAULT_RPC_PATH,
    LiveFeedOptions,
    RpcClientOptions,
    load_config,
)
from nodepulse_core.errors import ConfigLoadError


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "nodepulse.yaml"
    path.write_text(text)
    return path


class TestDefaults:
    def test_rpc_defaults(self):
        options = RpcClientOptions()
        assert options.auto_connect is True
        assert options.auto_reconnect is True
        assert options.reconnect_interval == 3.0
        assert options.max_reconnect_attempts == 5
        assert options.request_timeout == 30.0
        assert options.heartbeat_interval == 15.0
        assert options.enable_http_fallback is True
        assert options.headers == {"Content-Type": "application/json"}

    def test_feed_defaults(self):
        options = LiveFeedOptions()
        assert options.pull_interval == 2.0
        assert options.pull_failure_threshold == 3
        assert options.latest_status_method == "common:getNodesLatestStatus"
        assert options.stream_path == "/api/clients"
        assert options.stream_reconnect_delay == 2.0
        assert options.effective_keepalive_interval == 2.0

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError, match="request_timeout"):
            RpcClientOptions(request_timeout=0)
        with pytest.raises(ValueError, match="pull_failure_threshold"):
            LiveFeedOptions(pull_failure_threshold=0)


class TestLoadConfig:
    def test_snake_case_seconds(self, tmp_path: Path):
        path = _write(
            tmp_path,
            """
base_url: http://monitor.local:25774
rpc:
  reconnect_interval: 1.5
  max_reconnect_attempts: 2
feed:
  pull_interval: 5
""",
        )

        config = load_config(path)

        assert config.base_url == "http://monitor.local:25774"
        assert config.rpc_path == DEFAULT_RPC_PATH
        assert config.rpc.reconnect_interval == 1.5
        assert config.rpc.max_reconnect_attempts == 2
        assert config.feed.pull_interval == 5

    def test_camel_case_milliseconds(self, tmp_path: Path):
        path = _write(
            tmp_path,
            """
base_url: https://monitor.example.com
rpc_path: /rpc
rpc:
  reconnectInterval: 3000
  requestTimeout: 500
  enableHttpFallback: false
feed:
  rpcIntervalMs: 2500
  rpcFailureThreshold: 4
""",
        )

        config = load_config(str(path))

        assert config.rpc_path == "/rpc"
        assert config.rpc.reconnect_interval == 3.0
        assert config.rpc.request_timeout == 0.5
        assert config.rpc.enable_http_fallback is False
        assert config.feed.pull_interval == 2.5
        assert config.feed.pull_failure_threshold == 4

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigLoadError, match="File not found"):
            load_config(tmp_path / "missing.yaml")

    def test_unknown_option(self, tmp_path: Path):
        path = _write(tmp_path, "base_url: http://x\nrpc:\n  retries: 3\n")
        with pytest.raises(ConfigLoadError, match="Unknown option 'retries'"):
            load_config(path)

    def test_base_url_required(self, tmp_path: Path):
        path = _write(tmp_path, "rpc: {}\n")
        with pytest.raises(ConfigLoadError, match="base_url"):
            load_config(path)

    def test_invalid_value_wrapped(self, tmp_path: Path):
        path = _write(tmp_path, "base_url: http://x\nfeed:\n  pull_interval: -1\n")
        with pytest.raises(ConfigLoadError, match="pull_interval"):
            load_config(path)

    def test_non_numeric_millisecond_option(self, tmp_path: Path):
        path = _write(
            tmp_path, "base_url: http://x\nrpc:\n  reconnectInterval: '3s'\n"
        )
        with pytest.raises(ConfigLoadError, match="reconnectInterval"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = _write(tmp_path, "base_url: [unclosed\n")
        with pytest.raises(ConfigLoadError, match="Invalid YAML"):
            load_config(path)
