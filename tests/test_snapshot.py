"""Tests for pull and push snapshot normalization."""

from __future__ import annotations

import json
from typing import Any

import pytest

from nodepulse_core.errors import NodepulseProtocolError
from nodepulse_core.snapshot import (
    GpuStats,
    LiveDataBatch,
    from_rpc_result,
    from_stream_message,
)

UPDATED = "2026-03-01T08:00:00.000Z"

STATUS_RESULT: dict[str, Any] = {
    "a1b2": {
        "client": "a1b2",
        "online": True,
        "cpu": 12.5,
        "ram": 1_073_741_824,
        "swap": 0,
        "disk": 21_474_836_480,
        "load": 0.52,
        "load5": 0.41,
        "load15": 0.3,
        "net_in": 1200,
        "net_out": 3400,
        "net_total_up": 9_000_000,
        "net_total_down": 7_000_000,
        "connections": 42,
        "connections_udp": 5,
        "gpu": 37.5,
        "uptime": 86400,
        "process": 180,
        "time": UPDATED,
    },
    "c3d4": {"client": "c3d4", "online": False, "time": UPDATED},
}

STREAM_MESSAGE: dict[str, Any] = {
    "data": {
        "online": ["a1b2"],
        "data": {
            "a1b2": {
                "cpu": {"usage": 12.5},
                "ram": {"used": 1_073_741_824},
                "swap": {"used": 0},
                "load": {"load1": 0.52, "load5": 0.41, "load15": 0.3},
                "disk": {"used": 21_474_836_480},
                "network": {
                    "up": 3400,
                    "down": 1200,
                    "totalUp": 9_000_000,
                    "totalDown": 7_000_000,
                },
                "connections": {"tcp": 42, "udp": 5},
                "gpu": {"count": 0, "average_usage": 37.5, "detailed_info": []},
                "uptime": 86400,
                "process": 180,
                "message": "",
                "updated_at": UPDATED,
            },
            "c3d4": {
                "cpu": {"usage": 0},
                "ram": {"used": 0},
                "swap": {"used": 0},
                "load": {"load1": 0, "load5": 0, "load15": 0},
                "disk": {"used": 0},
                "network": {"up": 0, "down": 0, "totalUp": 0, "totalDown": 0},
                "connections": {"tcp": 0, "udp": 0},
                "uptime": 0,
                "process": 0,
                "message": "",
                "updated_at": UPDATED,
            },
        },
    },
    "status": "ok",
}


class TestPullPushEquivalence:
    """Pull and push inputs for the same data normalize identically."""

    def test_same_batch(self):
        pulled = from_rpc_result(STATUS_RESULT)
        pushed = from_stream_message(json.dumps(STREAM_MESSAGE))

        assert pulled == pushed

    def test_pull_renders_push_shape(self):
        assert from_rpc_result(STATUS_RESULT).to_dict() == STREAM_MESSAGE

    def test_push_round_trips(self):
        assert from_stream_message(STREAM_MESSAGE).to_dict() == STREAM_MESSAGE


class TestFromRpcResult:
    def test_field_mapping(self):
        node = from_rpc_result(STATUS_RESULT).nodes["a1b2"]

        assert node.network.up == 3400
        assert node.network.down == 1200
        assert node.connections.tcp == 42
        assert node.load.load1 == 0.52
        assert node.gpu == GpuStats(count=0, average_usage=37.5)

    def test_missing_fields_default(self):
        node = from_rpc_result({"x": {"cpu": "n/a"}}).nodes["x"]

        assert node.cpu.usage == 0
        assert node.ram.used == 0
        assert node.gpu is None
        assert "gpu" not in node.to_dict()
        assert node.updated_at.endswith("Z")

    def test_online_uses_client_or_key(self):
        batch = from_rpc_result(
            {"k1": {"online": True, "client": "c1"}, "k2": {"online": 1}, "k3": {}}
        )
        assert batch.online == ("c1", "k2")
        assert batch.status == "ok"

    def test_empty_result(self):
        assert from_rpc_result({}) == LiveDataBatch()

    @pytest.mark.parametrize("result", [None, [], {"x": "record"}])
    def test_malformed(self, result):
        with pytest.raises(NodepulseProtocolError):
            from_rpc_result(result)


class TestFromStreamMessage:
    def test_bytes_payload(self):
        batch = from_stream_message(json.dumps(STREAM_MESSAGE).encode())
        assert batch.online == ("a1b2",)

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            "[]",
            {"status": "ok"},
            {"data": {"online": "a1b2", "data": {}}},
            {"data": {"online": [], "data": {"a1b2": 5}}},
            {"data": {"online": [], "data": {"a1b2": {"cpu": 5}}}},
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(NodepulseProtocolError):
            from_stream_message(payload)
