import pytest
import responses

from esasg.client import ElasticsearchClient
from esasg.query import (
    ElasticsearchQueryService,
    InconsistentNodesError,
    ShardNodeParseError,
    parse_shard_nodes,
)

URL = "http://127.0.0.1:9200"
DATA_NODE = "i-0123456789abcdef0"
DATA_NODE_ATTRIBUTES = {
    "aws_availability_zone": "us-east-2a",
    "aws_instance_type": "i3.large",
    "aws_instance_lifecycle": "spot",
    "xpack.installed": "true",
    "aws_instance_family": "i3",
}

INFO_NODES = {
    "id-a": {
        "name": "node-a",
        "host": "10.0.0.1",
        "ip": "10.0.0.1:9300",
        "roles": ["master"],
        "attributes": {"aws_availability_zone": "us-east-2c"},
    },
    "id-b": {
        "name": DATA_NODE,
        "host": "10.0.0.2",
        "ip": "10.0.0.2:9300",
        "roles": ["data"],
        "attributes": DATA_NODE_ATTRIBUTES,
    },
    "id-c": {
        "name": "node-c",
        "host": "10.0.0.3",
        "ip": "10.0.0.3:9300",
        "roles": ["data", "ingest"],
        "attributes": {"aws_availability_zone": "us-east-2b"},
    },
}
STATS_NODES = {node_id: {"name": info["name"], "jvm": {}} for node_id, info in INFO_NODES.items()}

SHARDS = [
    {"index": "idx-1", "shard": "0", "prirep": "p", "state": "STARTED", "node": DATA_NODE},
    {"index": "idx-2", "shard": "0", "prirep": "p", "state": "STARTED", "node": "node-c"},
    {"index": "idx-2", "shard": "0", "prirep": "r", "state": "UNASSIGNED", "node": None},
    {
        "index": "idx-3",
        "shard": "0",
        "prirep": "p",
        "state": "RELOCATING",
        "node": "node-c -> 10.0.0.1 abcdefghijklmnopqrstuv node-a",
    },
]


def exclude(**values):
    return {"cluster": {"routing": {"allocation": {"exclude": values}}}}


def register_all(rsps, settings=None, stats=None, shards=None):
    rsps.add(responses.GET, URL + "/_nodes/stats", json={"nodes": stats or STATS_NODES})
    rsps.add(
        responses.GET,
        URL + "/_nodes/_all/_all",
        json={"cluster_name": "test-cluster", "nodes": INFO_NODES},
    )
    rsps.add(
        responses.GET,
        URL + "/_cluster/settings",
        json=settings or {"persistent": exclude(_name="node-c"), "transient": {}},
    )
    rsps.add(responses.GET, URL + "/_cat/shards", json=SHARDS if shards is None else shards)


def service(retries=3):
    return ElasticsearchQueryService(ElasticsearchClient(URL), retries=retries)


def test_nodes():
    with responses.RequestsMock() as rsps:
        register_all(rsps)
        nodes = service().nodes()
    assert len(nodes) == 3
    assert set(nodes) == {"node-a", DATA_NODE, "node-c"}
    assert nodes["node-c"].excluded_shard_allocation is True
    assert nodes["node-a"].excluded_shard_allocation is False
    assert nodes["node-a"].cluster_name == "test-cluster"
    assert nodes[DATA_NODE].stats == {"name": DATA_NODE, "jvm": {}}


def test_relocating_shard_counts_on_both_nodes():
    with responses.RequestsMock() as rsps:
        register_all(rsps)
        nodes = service().nodes()
    assert nodes["node-c"].indices() == ["idx-2", "idx-3"]
    assert nodes["node-a"].indices() == ["idx-3"]
    assert nodes[DATA_NODE].indices() == ["idx-1"]


def test_node():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            URL + f"/_nodes/{DATA_NODE}/stats",
            json={"nodes": {"id-b": STATS_NODES["id-b"]}},
        )
        rsps.add(
            responses.GET,
            URL + f"/_nodes/{DATA_NODE}/_all",
            json={"cluster_name": "test-cluster", "nodes": {"id-b": INFO_NODES["id-b"]}},
        )
        rsps.add(responses.GET, URL + "/_cluster/settings", json={"persistent": {}, "transient": {}})
        rsps.add(responses.GET, URL + "/_cat/shards", json=SHARDS)
        n = service().node(DATA_NODE)
    assert n is not None
    assert n.name == DATA_NODE
    assert n.roles == ["data"]
    assert n.attributes == DATA_NODE_ATTRIBUTES
    assert len(n.shards) == 1


def test_missing_node_returns_none():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL + "/_nodes/gone/stats", json={"nodes": {}})
        rsps.add(responses.GET, URL + "/_nodes/gone/_all", json={"cluster_name": "c", "nodes": {}})
        rsps.add(responses.GET, URL + "/_cluster/settings", json={})
        rsps.add(responses.GET, URL + "/_cat/shards", json=SHARDS)
        assert service().node("gone") is None


def test_transient_ip_and_attribute_exclusions():
    settings = {
        "persistent": exclude(_name="node-c"),
        "transient": exclude(_ip="10.0.0.1", aws_availability_zone="us-east-2a"),
    }
    with responses.RequestsMock() as rsps:
        register_all(rsps, settings=settings)
        nodes = service().nodes()
    assert nodes["node-a"].excluded_shard_allocation is True
    assert nodes[DATA_NODE].excluded_shard_allocation is True
    assert nodes["node-c"].excluded_shard_allocation is True


def test_inconsistent_lengths_retried_then_raised():
    stats = {"id-a": STATS_NODES["id-a"]}
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        register_all(rsps, stats=stats)
        with pytest.raises(InconsistentNodesError):
            service().nodes()
        stats_calls = [c for c in rsps.calls if c.request.url.endswith("/_nodes/stats")]
    assert len(stats_calls) == 3


def test_stats_node_missing_from_info_raises():
    stats = dict(STATS_NODES)
    stats["id-c"] = {"name": "stranger"}
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        register_all(rsps, stats=stats)
        with pytest.raises(InconsistentNodesError):
            service(retries=1).nodes()


def test_shard_on_unknown_node_raises_without_filter():
    shards = [{"index": "idx", "node": "stranger"}]
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        register_all(rsps, shards=shards)
        with pytest.raises(InconsistentNodesError):
            service(retries=1).nodes()


def test_invalid_retries():
    with pytest.raises(ValueError):
        ElasticsearchQueryService(ElasticsearchClient(URL), retries=0)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("", []),
        ("i-0123456789abcdef0", ["i-0123456789abcdef0"]),
        (
            "i-0123456789abcdef0 -> 10.0.0.1 abcdefghijklmnopqrstuv i-0fedcba9876543210",
            ["i-0123456789abcdef0", "i-0fedcba9876543210"],
        ),
    ],
    ids=["unassigned-shard", "shard", "relocating-shard"],
)
def test_parse_shard_nodes(value, expected):
    assert parse_shard_nodes(value) == expected


def test_parse_shard_nodes_error():
    with pytest.raises(ShardNodeParseError):
        parse_shard_nodes("not a node")