"""Operations that write shard allocation settings to Elasticsearch."""

from __future__ import annotations

import bisect
import json
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from esasg.client import ElasticsearchClient

SHARD_ALLOC_EXCLUDE_SETTING = "cluster.routing.allocation.exclude"


def _flatten(tree: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    for key, value in tree.items():
        full = f"{prefix}.{key}" if prefix else key
        if isinstance(value, Mapping):
            yield from _flatten(value, full)
        else:
            yield full, value


def _split(value: Any) -> list[str]:
    if isinstance(value, list):
        return [item if isinstance(item, str) else json.dumps(item) for item in value]
    text = value if isinstance(value, str) else json.dumps(value)
    return text.split(",")


def _joined(values: list[str]) -> str | None:
    return ",".join(values) if values else None


@dataclass
class ShardAllocationExcludeSettings:
    """Shard allocation exclusions of an Elasticsearch cluster.

    A field of None means the setting is absent; an empty list means it is cleared.
    """

    name: list[str] | None = None
    host: list[str] | None = None
    ip: list[str] | None = None
    attr: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> ShardAllocationExcludeSettings:
        """Read exclusions from one section (persistent or transient) of cluster settings."""
        result = cls()
        prefix = SHARD_ALLOC_EXCLUDE_SETTING + "."
        for key, value in _flatten(settings):
            if not key.startswith(prefix):
                continue
            attribute = key[len(prefix):]
            values = _split(value)
            if attribute == "_name":
                result.name = values
            elif attribute == "_ip":
                result.ip = values
            elif attribute == "_host":
                result.host = values
            else:
                result.attr[attribute] = values
        return result

    def to_map(self) -> dict[str, str | None]:
        """Return flat setting keys mapped to comma-joined values (None to clear)."""
        out: dict[str, str | None] = {}
        for attribute, values in (("_name", self.name), ("_host", self.host), ("_ip", self.ip)):
            if values is not None:
                out[f"{SHARD_ALLOC_EXCLUDE_SETTING}.{attribute}"] = _joined(values)
        for attribute, values in self.attr.items():
            out[f"{SHARD_ALLOC_EXCLUDE_SETTING}.{attribute}"] = _joined(values)
        return out


class ElasticsearchCommandService:
    """Excludes nodes from, and returns them to, shard allocation."""

    def __init__(self, client: ElasticsearchClient) -> None:
        self._client = client
        # Elasticsearch has no atomic way to modify settings.
        self._lock = threading.Lock()

    def _excluded_names(self) -> list[str]:
        response = self._client.get_cluster_settings()
        settings = ShardAllocationExcludeSettings.from_settings(response.get("transient") or {})
        return sorted(settings.name or [])

    def _put_excluded_names(self, names: list[str]) -> None:
        settings = ShardAllocationExcludeSettings(name=names)
        self._client.put_cluster_settings({"transient": settings.to_map()})

    def drain(self, node_name: str) -> None:
        """Exclude a node from shard allocation so its shards move elsewhere."""
        with self._lock:
            names = self._excluded_names()
            position = bisect.bisect_left(names, node_name)
            if position < len(names) and names[position] == node_name:
                return
            names.insert(position, node_name)
            self._put_excluded_names(names)

    def undrain(self, node_name: str) -> None:
        """Reverse drain()."""
        with self._lock:
            names = self._excluded_names()
            if node_name not in names:
                return
            names.remove(node_name)
            self._put_excluded_names(names)