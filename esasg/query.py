"""Read-only queries combining several Elasticsearch endpoints into Nodes."""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any

import requests

from esasg.client import ElasticsearchClient, ElasticsearchError
from esasg.command import SHARD_ALLOC_EXCLUDE_SETTING, ShardAllocationExcludeSettings
from esasg.node import Node

DEFAULT_INCONSISTENT_NODES_RETRIES = 3

logger = logging.getLogger(__name__)


class InconsistentNodesError(Exception):
    """Different API calls returned different sets of nodes."""

    def __init__(self, message: str = "got inconsistent nodes from Elasticsearch") -> None:
        super().__init__(message)


class ShardNodeParseError(ValueError):
    """A /_cat/shards node field could not be parsed."""


def parse_shard_nodes(node: str) -> list[str]:
    """Parse the node field of a /_cat/shards row.

    Empty for an unassigned shard, one name for a normal shard, and the
    source and target names for a relocating shard.
    """
    if node == "":
        return []
    parts = node.split()
    if len(parts) == 1:
        return parts
    if len(parts) == 5:  # "src -> ip id dest"
        return [parts[0], parts[4]]
    raise ShardNodeParseError(f"couldn't parse /_cat/shards response node name: {node!r}")


def _merge(
    persistent: ShardAllocationExcludeSettings, transient: ShardAllocationExcludeSettings
) -> ShardAllocationExcludeSettings:
    merged = ShardAllocationExcludeSettings(
        name=transient.name or persistent.name,
        host=transient.host or persistent.host,
        ip=transient.ip or persistent.ip,
        attr=dict(persistent.attr),
    )
    merged.attr.update({key: values for key, values in transient.attr.items() if values})
    return merged


def _is_excluded(info: dict[str, Any], exclusions: ShardAllocationExcludeSettings) -> bool:
    ip = (info.get("ip") or "").split(":")[0]
    if (
        info.get("name") in (exclusions.name or [])
        or ip in (exclusions.ip or [])
        or info.get("host") in (exclusions.host or [])
    ):
        return True
    return any(
        value in exclusions.attr.get(key, ())
        for key, value in (info.get("attributes") or {}).items()
    )


class ElasticsearchQueryService:
    """Reads node info, stats, shards and allocation settings from Elasticsearch."""

    def __init__(
        self, client: ElasticsearchClient, retries: int = DEFAULT_INCONSISTENT_NODES_RETRIES
    ) -> None:
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self._client = client
        self._retries = retries

    def node(self, name: str) -> Node | None:
        """Return the node with the given name, or None if it doesn't exist."""
        return self.nodes(name).get(name)

    def nodes(self, *args: str) -> dict[str, Node]:
        """Return the cluster's nodes keyed by name, limited to the names given if any.

        Callers must check that every requested name is in the result.
        """
        names = list(args)
        last_error: Exception | None = None
        for attempt in range(1, self._retries + 1):
            if last_error is not None:
                logger.warning(
                    "got error describing Elasticsearch nodes: %s",
                    last_error,
                    extra={"try": attempt, "max_tries": self._retries},
                )
            try:
                return self._nodes(names)
            except (
                ElasticsearchError,
                InconsistentNodesError,
                ShardNodeParseError,
                requests.RequestException,
            ) as err:
                last_error = err
        assert last_error is not None
        raise last_error

    def _exclusions(self) -> ShardAllocationExcludeSettings:
        response = self._client.get_cluster_settings(
            filter_path=f"*.{SHARD_ALLOC_EXCLUDE_SETTING}.*"
        )
        persistent = ShardAllocationExcludeSettings.from_settings(response.get("persistent") or {})
        transient = ShardAllocationExcludeSettings.from_settings(response.get("transient") or {})
        return _merge(persistent, transient)

    def _fetch(self, names: list[str]) -> dict[str, Any]:
        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = {
                "stats": pool.submit(self._client.nodes_stats, names),
                "info": pool.submit(self._client.nodes_info, names),
                "shards": pool.submit(self._client.cat_shards),
                "settings": pool.submit(self._exclusions),
            }
            done, pending = wait(futures.values(), return_when=FIRST_EXCEPTION)
            failed = next((f for f in done if f.exception() is not None), None)
            if failed is not None:
                for future in pending:
                    future.cancel()
                raise failed.exception()  # type: ignore[misc]
            return {key: future.result() for key, future in futures.items()}

    def _nodes(self, names: list[str]) -> dict[str, Node]:
        results = self._fetch(names)
        stats_nodes: dict[str, Any] = results["stats"].get("nodes") or {}
        info_response: dict[str, Any] = results["info"]
        info_nodes: dict[str, Any] = info_response.get("nodes") or {}
        exclusions: ShardAllocationExcludeSettings = results["settings"]

        if len(stats_nodes) != len(info_nodes):
            logger.error(
                "got info and stats responses of different lengths",
                extra={
                    "stats_nodes": sorted(stats_nodes),
                    "info_nodes": sorted(info_nodes),
                },
            )
            raise InconsistentNodesError()

        nodes: dict[str, Node] = {}
        for node_id, info in info_nodes.items():
            name = info.get("name", "")
            nodes[name] = Node(
                name=name,
                node_id=node_id,
                host=info.get("host", ""),
                ip=info.get("ip", ""),
                roles=list(info.get("roles") or []),
                attributes=dict(info.get("attributes") or {}),
                info=info,
                cluster_name=info_response.get("cluster_name", ""),
                excluded_shard_allocation=_is_excluded(info, exclusions),
            )

        for stats in stats_nodes.values():
            node = nodes.get(stats.get("name", ""))
            if node is None:
                logger.error(
                    "got node in stats response that isn't in info response",
                    extra={"node_name": stats.get("name"), "nodes": sorted(nodes)},
                )
                raise InconsistentNodesError()
            node.stats = stats

        for shard in results["shards"]:
            raw = shard.get("node") or ""
            try:
                shard_nodes = parse_shard_nodes(raw)
            except ShardNodeParseError as err:
                logger.error(str(err), extra={"node_name": raw})
                raise
            for node_name in shard_nodes:
                node = nodes.get(node_name)
                if node is not None:
                    node.shards.append(shard)
                elif not names:
                    logger.error(
                        "got node in shards response that isn't in info or stats response",
                        extra={"node_name": node_name, "nodes": sorted(nodes)},
                    )
                    raise InconsistentNodesError()

        return nodes