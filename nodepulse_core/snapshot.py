"""Telemetry snapshot normalization.

Pull mode receives a flat per-node record from the status call; push mode
receives the nested shape the server streams. Both are normalized into
TelemetrySnapshot so subscribers see one shape regardless of the source.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .errors import NodepulseProtocolError


@dataclass(frozen=True)
class CpuStats:
    usage: float = 0


@dataclass(frozen=True)
class MemoryStats:
    used: float = 0


@dataclass(frozen=True)
class LoadStats:
    load1: float = 0
    load5: float = 0
    load15: float = 0


@dataclass(frozen=True)
class NetworkStats:
    """Current rates and cumulative totals, in bytes."""

    up: float = 0
    down: float = 0
    total_up: float = 0
    total_down: float = 0


@dataclass(frozen=True)
class ConnectionCounts:
    tcp: int = 0
    udp: int = 0


@dataclass(frozen=True)
class GpuStats:
    count: int = 0
    average_usage: float = 0
    detailed_info: tuple[Any, ...] = ()


@dataclass(frozen=True)
class TelemetrySnapshot:
    """One normalized point-in-time record for a node."""

    cpu: CpuStats
    ram: MemoryStats
    swap: MemoryStats
    load: LoadStats
    disk: MemoryStats
    network: NetworkStats
    connections: ConnectionCounts
    uptime: float
    process: int
    updated_at: str
    gpu: GpuStats | None = None
    message: str = ""

    @classmethod
    def from_flat(cls, record: Mapping[str, Any]) -> TelemetrySnapshot:
        """Build from a flat status record (pull wire shape)."""
        cpu = record.get("cpu")
        gpu = record.get("gpu")
        updated_at = record.get("time")
        return cls(
            cpu=CpuStats(usage=cpu if _is_number(cpu) else 0),
            ram=MemoryStats(used=_value(record, "ram")),
            swap=MemoryStats(used=_value(record, "swap")),
            load=LoadStats(
                load1=_value(record, "load"),
                load5=_value(record, "load5"),
                load15=_value(record, "load15"),
            ),
            disk=MemoryStats(used=_value(record, "disk")),
            network=NetworkStats(
                up=_value(record, "net_out"),
                down=_value(record, "net_in"),
                total_up=_value(record, "net_total_up"),
                total_down=_value(record, "net_total_down"),
            ),
            connections=ConnectionCounts(
                tcp=_value(record, "connections"),
                udp=_value(record, "connections_udp"),
            ),
            gpu=None if gpu is None else GpuStats(average_usage=gpu),
            uptime=_value(record, "uptime"),
            process=_value(record, "process"),
            updated_at=_now_iso() if updated_at is None else str(updated_at),
        )

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> TelemetrySnapshot:
        """Build from a nested record (push wire shape)."""
        cpu = _section(record, "cpu")
        load = _section(record, "load")
        network = _section(record, "network")
        connections = _section(record, "connections")
        gpu = record.get("gpu")
        if gpu is not None and not isinstance(gpu, Mapping):
            raise NodepulseProtocolError("Field 'gpu' must be an object")
        updated_at = record.get("updated_at")
        return cls(
            cpu=CpuStats(usage=_value(cpu, "usage")),
            ram=MemoryStats(used=_value(_section(record, "ram"), "used")),
            swap=MemoryStats(used=_value(_section(record, "swap"), "used")),
            load=LoadStats(
                load1=_value(load, "load1"),
                load5=_value(load, "load5"),
                load15=_value(load, "load15"),
            ),
            disk=MemoryStats(used=_value(_section(record, "disk"), "used")),
            network=NetworkStats(
                up=_value(network, "up"),
                down=_value(network, "down"),
                total_up=_value(network, "totalUp"),
                total_down=_value(network, "totalDown"),
            ),
            connections=ConnectionCounts(
                tcp=_value(connections, "tcp"),
                udp=_value(connections, "udp"),
            ),
            gpu=None
            if gpu is None
            else GpuStats(
                count=_value(gpu, "count"),
                average_usage=_value(gpu, "average_usage"),
                detailed_info=tuple(gpu.get("detailed_info") or ()),
            ),
            uptime=_value(record, "uptime"),
            process=_value(record, "process"),
            message=str(record.get("message") or ""),
            updated_at=_now_iso() if updated_at is None else str(updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Render the nested wire shape."""
        data: dict[str, Any] = {
            "cpu": {"usage": self.cpu.usage},
            "ram": {"used": self.ram.used},
            "swap": {"used": self.swap.used},
            "load": {
                "load1": self.load.load1,
                "load5": self.load.load5,
                "load15": self.load.load15,
            },
            "disk": {"used": self.disk.used},
            "network": {
                "up": self.network.up,
                "down": self.network.down,
                "totalUp": self.network.total_up,
                "totalDown": self.network.total_down,
            },
            "connections": {
                "tcp": self.connections.tcp,
                "udp": self.connections.udp,
            },
            "uptime": self.uptime,
            "process": self.process,
            "message": self.message,
            "updated_at": self.updated_at,
        }
        if self.gpu is not None:
            data["gpu"] = {
                "count": self.gpu.count,
                "average_usage": self.gpu.average_usage,
                "detailed_info": list(self.gpu.detailed_info),
            }
        return data


@dataclass(frozen=True)
class LiveDataBatch:
    """Snapshots for every known node plus the ids of nodes online."""

    online: tuple[str, ...] = ()
    nodes: dict[str, TelemetrySnapshot] = field(default_factory=dict)
    status: str = "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": {
                "online": list(self.online),
                "data": {uuid: node.to_dict() for uuid, node in self.nodes.items()},
            },
            "status": self.status,
        }


def from_rpc_result(result: Any) -> LiveDataBatch:
    """Normalize a status call result keyed by node uuid.

    Raises:
        NodepulseProtocolError: If result or one of its records is not an
            object.
    """
    if not isinstance(result, Mapping):
        raise NodepulseProtocolError("Status result must be an object")

    online: list[str] = []
    nodes: dict[str, TelemetrySnapshot] = {}
    for uuid, record in result.items():
        if not isinstance(record, Mapping):
            raise NodepulseProtocolError(f"Status record for {uuid} must be an object")
        if record.get("online"):
            online.append(str(record.get("client") or uuid))
        nodes[str(uuid)] = TelemetrySnapshot.from_flat(record)

    return LiveDataBatch(online=tuple(online), nodes=nodes)


def from_stream_message(payload: str | bytes | Mapping[str, Any]) -> LiveDataBatch:
    """Parse one push stream message.

    Raises:
        NodepulseProtocolError: If the message is not valid JSON or does not
            have the expected shape.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as err:
            raise NodepulseProtocolError("Stream message is not valid JSON") from err

    if not isinstance(payload, Mapping):
        raise NodepulseProtocolError("Stream message must be an object")
    body = payload.get("data")
    if not isinstance(body, Mapping):
        raise NodepulseProtocolError("Stream message is missing 'data'")

    online = body.get("online") or []
    records = body.get("data") or {}
    if not isinstance(online, list) or not isinstance(records, Mapping):
        raise NodepulseProtocolError("Stream message has malformed 'data'")

    nodes: dict[str, TelemetrySnapshot] = {}
    for uuid, record in records.items():
        if not isinstance(record, Mapping):
            raise NodepulseProtocolError(f"Stream record for {uuid} must be an object")
        nodes[str(uuid)] = TelemetrySnapshot.from_dict(record)

    return LiveDataBatch(
        online=tuple(str(node) for node in online),
        nodes=nodes,
        status=str(payload.get("status", "ok")),
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _value(record: Mapping[str, Any], key: str) -> Any:
    value = record.get(key)
    return 0 if value is None else value


def _section(record: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = record.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise NodepulseProtocolError(f"Field '{key}' must be an object")
    return value


def _now_iso() -> str:
    now = datetime.now(UTC).isoformat(timespec="milliseconds")
    return now.replace("+00:00", "Z")
