"""Info and stats about an Elasticsearch node at a point in time."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Node:
    """An Elasticsearch node: its info, stats, shards and allocation state."""

    name: str = ""
    node_id: str = ""
    host: str = ""
    ip: str = ""
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, str] = field(default_factory=dict)
    info: dict[str, Any] = field(default_factory=dict)
    cluster_name: str = ""
    elected_master: bool = False
    excluded_shard_allocation: bool = False
    stats: dict[str, Any] = field(default_factory=dict)
    shards: list[dict[str, Any]] = field(default_factory=list)

    def indices(self) -> list[str]:
        """Return the sorted names of the indices with shards on this node."""
        return sorted({shard["index"] for shard in self.shards})

    def is_master(self) -> bool:
        """Return True if the node is master-eligible."""
        return "master" in self.roles