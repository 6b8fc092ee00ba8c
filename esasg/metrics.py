"""CloudWatch metric data points describing an Elasticsearch cluster."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from esasg.node import Node

ALL_ROLE = "all"
COORDINATE_ROLE = "coordinate"

Dimensions = Union[Mapping[str, str], Iterable[tuple[str, str]]]


class StandardUnit(str, Enum):
    """CloudWatch standard units used by these metrics."""

    COUNT = "Count"
    NONE = "None"
    PERCENT = "Percent"
    BYTES = "Bytes"
    COUNT_SECOND = "Count/Second"


@dataclass(frozen=True)
class MetricDatum:
    """A single CloudWatch metric data point."""

    metric_name: str
    value: float
    unit: StandardUnit
    dimensions: tuple[tuple[str, str], ...] = ()
    timestamp: datetime | None = None
    storage_resolution: int = 1

    def dimension(self, name: str) -> str | None:
        """Return the value of the named dimension, or None if absent."""
        return dict(self.dimensions).get(name)

    def to_dict(self) -> dict[str, Any]:
        """Return the datum in the shape the PutMetricData API expects."""
        out: dict[str, Any] = {
            "MetricName": self.metric_name,
            "Dimensions": [{"Name": n, "Value": v} for n, v in self.dimensions],
            "Unit": self.unit.value,
            "StorageResolution": self.storage_resolution,
            "Value": self.value,
        }
        if self.timestamp is not None:
            out["Timestamp"] = self.timestamp
        return out


def _ratio(numerator: float, denominator: float) -> float:
    """Divide like IEEE floats do: x/0 is ±inf, 0/0 is nan."""
    if denominator == 0:
        return math.nan if numerator == 0 else math.copysign(math.inf, numerator)
    return numerator / denominator


def _title(name: str) -> str:
    """Upper-case the first letter of every word."""
    return re.sub(r"(?<!\w)\w", lambda m: m.group().upper(), name)


def _lookup(data: Mapping[str, Any], *keys: str) -> Any:
    current: Any = data
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _number(data: Mapping[str, Any], *keys: str) -> float:
    value = _lookup(data, *keys)
    return float(value) if value is not None else 0.0


@dataclass
class _PoolTotals:
    used: float = 0.0
    max: float = 0.0
    peak_used: float = 0.0
    peak_max: float = 0.0


@dataclass
class _CollectorTotals:
    count: float = 0.0
    time_ms: float = 0.0


@dataclass
class MetricsCollector:
    """Aggregates CloudWatch metrics over a set of Elasticsearch nodes."""

    count: int = 0
    vcpus: float = 0.0
    load_1m: float = 0.0
    load_5m: float = 0.0
    load_15m: float = 0.0
    max_heap_bytes: float = 0.0
    used_heap_bytes: float = 0.0
    heap_pools: dict[str, _PoolTotals] = field(default_factory=dict)
    garbage_collectors: dict[str, _CollectorTotals] = field(default_factory=dict)
    max_fs_bytes: float = 0.0
    available_fs_bytes: float = 0.0
    any_fs: bool = False
    excluded_from_allocation: int = 0

    def add(self, node: Node, vcpu_count: int) -> None:
        """Add the stats of one node."""
        stats = node.stats
        loads = _lookup(stats, "os", "cpu", "load_average") or {}
        for window in ("1m", "5m", "15m"):
            if window not in loads:
                raise ValueError(f"missing {window} load average")

        self.count += 1
        self.vcpus += float(vcpu_count)
        self.load_1m += float(loads["1m"])
        self.load_5m += float(loads["5m"])
        self.load_15m += float(loads["15m"])

        self.max_heap_bytes += _number(stats, "jvm", "mem", "heap_max_in_bytes")
        self.used_heap_bytes += _number(stats, "jvm", "mem", "heap_used_in_bytes")

        for name, pool in (_lookup(stats, "jvm", "mem", "pools") or {}).items():
            totals = self.heap_pools.setdefault(name, _PoolTotals())
            totals.used += _number(pool, "used_in_bytes")
            totals.max += _number(pool, "max_in_bytes")
            totals.peak_used += _number(pool, "peak_used_in_bytes")
            totals.peak_max += _number(pool, "peak_max_in_bytes")

        for name, collector in (_lookup(stats, "jvm", "gc", "collectors") or {}).items():
            totals = self.garbage_collectors.setdefault(name, _CollectorTotals())
            totals.count += _number(collector, "collection_count")
            totals.time_ms += _number(collector, "collection_time_in_millis")

        if "data" in node.roles:
            fs_total = _number(stats, "fs", "total", "total_in_bytes")
            self.max_fs_bytes += fs_total
            self.available_fs_bytes += _number(stats, "fs", "total", "available_in_bytes")
            self.any_fs = self.any_fs or fs_total != 0
            if node.excluded_shard_allocation:
                self.excluded_from_allocation += 1

    def metrics(self, dimensions: Dimensions, timestamp: datetime) -> list[MetricDatum]:
        """Return the aggregated data points, or none if no node was added."""
        if self.count == 0:
            return []

        dims = tuple(dict(dimensions).items())

        def datum(name: str, value: float, unit: StandardUnit) -> MetricDatum:
            return MetricDatum(
                metric_name=name,
                value=value,
                unit=unit,
                dimensions=dims,
                timestamp=timestamp,
            )

        out = [
            datum("CountNodes", float(self.count), StandardUnit.COUNT),
            datum("CountvCPU", self.vcpus, StandardUnit.COUNT),
            datum("Load1m", self.load_1m, StandardUnit.NONE),
            datum("Load5m", self.load_5m, StandardUnit.NONE),
            datum("Load15m", self.load_15m, StandardUnit.NONE),
            datum("Load1mUtilization", _ratio(self.load_1m, self.vcpus) * 100, StandardUnit.PERCENT),
            datum("Load5mUtilization", _ratio(self.load_5m, self.vcpus) * 100, StandardUnit.PERCENT),
            datum(
                "Load15mUtilization", _ratio(self.load_15m, self.vcpus) * 100, StandardUnit.PERCENT
            ),
            datum(
                "CountExcludedFromAllocation",
                float(self.excluded_from_allocation),
                StandardUnit.COUNT,
            ),
            datum("JVMTotal", self.max_heap_bytes, StandardUnit.BYTES),
            datum("JVMUsed", self.used_heap_bytes, StandardUnit.BYTES),
            datum(
                "JVMUtilization",
                _ratio(self.used_heap_bytes, self.max_heap_bytes) * 100,
                StandardUnit.PERCENT,
            ),
        ]

        for name, pool in self.heap_pools.items():
            title = _title(name)
            out += [
                datum(f"JVM{title}PoolMax", pool.max, StandardUnit.BYTES),
                datum(f"JVM{title}PoolUsed", pool.used, StandardUnit.BYTES),
                datum(f"JVM{title}PoolPeakMax", pool.peak_max, StandardUnit.BYTES),
                datum(f"JVM{title}PoolPeakUsed", pool.peak_used, StandardUnit.BYTES),
                datum(
                    f"JVM{title}PoolUtilization",
                    _ratio(pool.used, self.max_heap_bytes) * 100,
                    StandardUnit.PERCENT,
                ),
            ]

        for name, collector in self.garbage_collectors.items():
            title = _title(name)
            out += [
                datum(f"GC{title}Count", collector.count, StandardUnit.COUNT),
                datum(f"GC{title}Time", collector.time_ms / 1000, StandardUnit.COUNT_SECOND),
            ]

        if self.any_fs:
            out += [
                datum("FSMaxBytes", self.max_fs_bytes, StandardUnit.BYTES),
                datum("FSAvailableBytes", self.available_fs_bytes, StandardUnit.BYTES),
                datum(
                    "FSUtilization",
                    (1.0 - _ratio(self.available_fs_bytes, self.max_fs_bytes)) * 100,
                    StandardUnit.PERCENT,
                ),
            ]

        return out


def make_cloudwatch_data(
    nodes: Mapping[str, Node],
    vcpu_counts: Mapping[str, int],
    timestamp: datetime | None = None,
) -> list[MetricDatum]:
    """Return metric data points for a cluster, in total and per node role.

    ``nodes`` maps instance ID to Node; ``vcpu_counts`` maps instance ID to
    the instance's vCPU count. Nodes without roles count as "coordinate".
    """
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)

    roles: dict[str, None] = {ALL_ROLE: None, COORDINATE_ROLE: None}
    cluster_name = ""
    for node in nodes.values():
        if not cluster_name:
            cluster_name = node.cluster_name
        elif cluster_name != node.cluster_name:
            raise ValueError("got nodes from two different Elasticsearch clusters")
        roles.update(dict.fromkeys(node.roles))

    collectors = {role: MetricsCollector() for role in roles}

    for instance_id, node in nodes.items():
        if instance_id not in vcpu_counts:
            raise ValueError("got nodes and vcpu_counts with different entries")
        vcpu_count = vcpu_counts[instance_id]
        for role in node.roles or [COORDINATE_ROLE]:
            collectors[role].add(node, vcpu_count)
        collectors[ALL_ROLE].add(node, vcpu_count)

    data: list[MetricDatum] = []
    for role, collector in collectors.items():
        dimensions = (("ClusterName", cluster_name), ("Role", role))
        data.extend(collector.metrics(dimensions, timestamp))
    return data