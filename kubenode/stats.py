"""Data types of the kubelet summary stats API (``/stats/summary``).

The dataclasses mirror the wire format: :func:`to_json_dict` turns any of them
into the dictionary that is serialised to JSON, honouring field names, omitted
optional values and inlined (flattened) nested records.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, Optional

SYSTEM_CONTAINER_KUBELET = "kubelet"
SYSTEM_CONTAINER_RUNTIME = "runtime"
SYSTEM_CONTAINER_MISC = "misc"
SYSTEM_CONTAINER_PODS = "pods"


def _f(name: str, default: Any = None, *, omitempty: bool = False, factory: Any = None) -> Any:
    metadata = {"json": name, "omitempty": omitempty}
    if factory is not None:
        return field(default_factory=factory, metadata=metadata)
    return field(default=default, metadata=metadata)


def _inline(factory: Any) -> Any:
    return field(default_factory=factory, metadata={"inline": True})


class UserDefinedMetricType(str, enum.Enum):
    """How a user defined metric is to be interpreted."""

    GAUGE = "gauge"
    CUMULATIVE = "cumulative"
    DELTA = "delta"


@dataclass(kw_only=True)
class PodReference:
    name: str = _f("name", "")
    namespace: str = _f("namespace", "")
    uid: str = _f("uid", "")


@dataclass(kw_only=True)
class PVCReference:
    name: str = _f("name", "")
    namespace: str = _f("namespace", "")


@dataclass(kw_only=True)
class FsStats:
    time: Optional[datetime] = _f("time")
    available_bytes: Optional[int] = _f("availableBytes", omitempty=True)
    capacity_bytes: Optional[int] = _f("capacityBytes", omitempty=True)
    used_bytes: Optional[int] = _f("usedBytes", omitempty=True)
    inodes_free: Optional[int] = _f("inodesFree", omitempty=True)
    inodes: Optional[int] = _f("inodes", omitempty=True)
    inodes_used: Optional[int] = _f("inodesUsed", omitempty=True)


@dataclass(kw_only=True)
class CPUStats:
    time: Optional[datetime] = _f("time")
    usage_nano_cores: Optional[int] = _f("usageNanoCores", omitempty=True)
    usage_core_nano_seconds: Optional[int] = _f("usageCoreNanoSeconds", omitempty=True)


@dataclass(kw_only=True)
class MemoryStats:
    time: Optional[datetime] = _f("time")
    available_bytes: Optional[int] = _f("availableBytes", omitempty=True)
    usage_bytes: Optional[int] = _f("usageBytes", omitempty=True)
    working_set_bytes: Optional[int] = _f("workingSetBytes", omitempty=True)
    rss_bytes: Optional[int] = _f("rssBytes", omitempty=True)
    page_faults: Optional[int] = _f("pageFaults", omitempty=True)
    major_page_faults: Optional[int] = _f("majorPageFaults", omitempty=True)


@dataclass(kw_only=True)
class InterfaceStats:
    name: str = _f("name", "")
    rx_bytes: Optional[int] = _f("rxBytes", omitempty=True)
    rx_errors: Optional[int] = _f("rxErrors", omitempty=True)
    tx_bytes: Optional[int] = _f("txBytes", omitempty=True)
    tx_errors: Optional[int] = _f("txErrors", omitempty=True)


@dataclass(kw_only=True)
class NetworkStats:
    """Network stats; ``default`` (the default interface) is inlined on the wire."""

    time: Optional[datetime] = _f("time")
    default: InterfaceStats = _inline(InterfaceStats)
    interfaces: list[InterfaceStats] = _f("interfaces", omitempty=True, factory=list)


@dataclass(kw_only=True)
class AcceleratorStats:
    make: str = _f("make", "")
    model: str = _f("model", "")
    id: str = _f("id", "")
    memory_total: int = _f("memoryTotal", 0)
    memory_used: int = _f("memoryUsed", 0)
    duty_cycle: int = _f("dutyCycle", 0)


@dataclass(kw_only=True)
class VolumeStats:
    """Volume usage; ``fs`` is inlined on the wire."""

    fs: FsStats = _inline(FsStats)
    name: str = _f("name", "", omitempty=True)
    pvc_ref: Optional[PVCReference] = _f("pvcRef", omitempty=True)


@dataclass(kw_only=True)
class ProcessStats:
    process_count: Optional[int] = _f("process_count", omitempty=True)


@dataclass(kw_only=True)
class RlimitStats:
    time: Optional[datetime] = _f("time")
    max_pid: Optional[int] = _f("maxpid", omitempty=True)
    num_of_running_processes: Optional[int] = _f("curproc", omitempty=True)


@dataclass(kw_only=True)
class RuntimeStats:
    image_fs: Optional[FsStats] = _f("imageFs", omitempty=True)


@dataclass(kw_only=True)
class UserDefinedMetricDescriptor:
    name: str = _f("name", "")
    type: UserDefinedMetricType = _f("type", UserDefinedMetricType.GAUGE)
    units: str = _f("units", "")
    labels: dict[str, str] = _f("labels", omitempty=True, factory=dict)


@dataclass(kw_only=True)
class UserDefinedMetric:
    """A user defined metric; ``descriptor`` is inlined on the wire."""

    descriptor: UserDefinedMetricDescriptor = _inline(UserDefinedMetricDescriptor)
    time: Optional[datetime] = _f("time")
    value: float = _f("value", 0.0)


@dataclass(kw_only=True)
class ContainerStats:
    name: str = _f("name", "")
    start_time: Optional[datetime] = _f("startTime")
    cpu: Optional[CPUStats] = _f("cpu", omitempty=True)
    memory: Optional[MemoryStats] = _f("memory", omitempty=True)
    accelerators: list[AcceleratorStats] = _f("accelerators", omitempty=True, factory=list)
    rootfs: Optional[FsStats] = _f("rootfs", omitempty=True)
    logs: Optional[FsStats] = _f("logs", omitempty=True)
    user_defined_metrics: list[UserDefinedMetric] = _f(
        "userDefinedMetrics", omitempty=True, factory=list
    )


@dataclass(kw_only=True)
class PodStats:
    pod_ref: PodReference = _f("podRef", factory=PodReference)
    start_time: Optional[datetime] = _f("startTime")
    containers: list[ContainerStats] = _f("containers", factory=list)
    cpu: Optional[CPUStats] = _f("cpu", omitempty=True)
    memory: Optional[MemoryStats] = _f("memory", omitempty=True)
    network: Optional[NetworkStats] = _f("network", omitempty=True)
    volume_stats: list[VolumeStats] = _f("volume", omitempty=True, factory=list)
    ephemeral_storage: Optional[FsStats] = _f("ephemeral-storage", omitempty=True)
    process_stats: Optional[ProcessStats] = _f("process_stats", omitempty=True)


@dataclass(kw_only=True)
class NodeStats:
    node_name: str = _f("nodeName", "")
    system_containers: list[ContainerStats] = _f("systemContainers", omitempty=True, factory=list)
    start_time: Optional[datetime] = _f("startTime")
    cpu: Optional[CPUStats] = _f("cpu", omitempty=True)
    memory: Optional[MemoryStats] = _f("memory", omitempty=True)
    network: Optional[NetworkStats] = _f("network", omitempty=True)
    fs: Optional[FsStats] = _f("fs", omitempty=True)
    runtime: Optional[RuntimeStats] = _f("runtime", omitempty=True)
    rlimit: Optional[RlimitStats] = _f("rlimit", omitempty=True)


@dataclass(kw_only=True)
class Summary:
    """Top-level container for node and pod stats."""

    node: NodeStats = _f("node", factory=NodeStats)
    pods: list[PodStats] = _f("pods", factory=list)

    def to_json(self) -> str:
        """Serialise to compact JSON as served by the stats endpoint."""
        return json.dumps(to_json_dict(self), separators=(",", ":"))


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and len(value) == 0)


def _encode(value: Any) -> Any:
    if value is None:
        return None
    if is_dataclass(value) and not isinstance(value, type):
        return to_json_dict(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, list):
        return [_encode(item) for item in value]
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    return value


def to_json_dict(obj: Any) -> dict[str, Any]:
    """Convert a stats dataclass into its JSON wire dictionary."""
    if not is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"expected a stats record, got {type(obj).__name__}")
    result: dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if f.metadata.get("inline"):
            result.update(to_json_dict(value))
            continue
        if f.metadata.get("omitempty") and _is_empty(value):
            continue
        result[f.metadata["json"]] = _encode(value)
    return result