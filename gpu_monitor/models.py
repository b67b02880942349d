from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class HostConfig(BaseModel):
    """Identity and address of a single monitored host."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    host: str
    port: int = Field(..., ge=1, le=65535)
    alias: str = ""

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/gpu-info"


class ProcessTelemetry(BaseModel):
    """A process holding GPU memory."""

    model_config = ConfigDict(frozen=True)

    pid: int
    name: str
    used: int  # Bytes
    owner: str | None = None  # Only set when the collector enriches processes


class GPUTelemetry(BaseModel):
    """Normalized metrics for a single GPU."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    utilization: float = 0.0  # Percent, 0-100
    memory_used: int = 0  # Bytes
    memory_total: int = 0  # Bytes
    temperature: int = 0  # Degrees C
    power_usage: int = 0  # Milliwatts
    power_limit: int = 0  # Milliwatts
    processes: list[ProcessTelemetry] = []


class HostTelemetry(BaseModel):
    """Snapshot of every GPU on one host, as served by the collector."""

    model_config = ConfigDict(frozen=True)

    node_name: str
    timestamp: datetime
    gpus: list[GPUTelemetry] = []


class NodeState(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class HostStatus(HostConfig):
    """The registry's record for one host.

    Build these with ``unknown``, ``online`` or ``offline`` so that status, data and
    error are always replaced together.
    """

    last_update: datetime | None = None
    status: NodeState = NodeState.UNKNOWN
    data: HostTelemetry | None = None  # Present iff online
    error: str | None = None  # Present iff offline

    @classmethod
    def unknown(cls, node: HostConfig) -> "HostStatus":
        return cls(**node.model_dump())

    @classmethod
    def online(cls, node: HostConfig, data: HostTelemetry) -> "HostStatus":
        return cls(
            **node.model_dump(),
            last_update=datetime.now(timezone.utc),
            status=NodeState.ONLINE,
            data=data,
        )

    @classmethod
    def offline(cls, node: HostConfig, error: str) -> "HostStatus":
        return cls(
            **node.model_dump(),
            last_update=datetime.now(timezone.utc),
            status=NodeState.OFFLINE,
            error=error,
        )
