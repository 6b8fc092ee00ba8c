from urllib.parse import parse_qs, urlsplit

import pytest
import responses
from responses import matchers

from esasg.client import ElasticsearchClient, ElasticsearchError, NotFoundError

URL = "http://127.0.0.1:9200"


@pytest.fixture
def client():
    return ElasticsearchClient(URL)


@pytest.fixture
def rsps():
    with responses.RequestsMock() as mock:
        yield mock


def test_get_cluster_settings_returns_body(client, rsps):
    body = {"persistent": {}, "transient": {"cluster": {"routing": {}}}}
    rsps.add(responses.GET, URL + "/_cluster/settings", json=body)
    assert client.get_cluster_settings() == body


def test_get_cluster_settings_passes_filter_path(client, rsps):
    filter_path = "*.cluster.routing.allocation.exclude.*"
    rsps.add(
        responses.GET,
        URL + "/_cluster/settings",
        json={},
        match=[matchers.query_param_matcher({"filter_path": filter_path})],
    )
    assert client.get_cluster_settings(filter_path=filter_path) == {}


def test_put_cluster_settings_sends_json(client, rsps):
    body = {"transient": {"cluster.routing.allocation.exclude._name": None}}
    answer = {"acknowledged": True}
    rsps.add(
        responses.PUT,
        URL + "/_cluster/settings",
        json=answer,
        match=[matchers.json_params_matcher(body)],
    )
    assert client.put_cluster_settings(body) == answer


def test_nodes_stats_paths(client, rsps):
    all_nodes = {"nodes": {"x": {"name": "a"}}}
    some_nodes = {"nodes": {"y": {"name": "b"}}}
    rsps.add(responses.GET, URL + "/_nodes/stats", json=all_nodes)
    rsps.add(responses.GET, URL + "/_nodes/a,b/stats", json=some_nodes)
    assert client.nodes_stats() == all_nodes
    assert client.nodes_stats(["a", "b"]) == some_nodes


def test_nodes_info_paths(client, rsps):
    all_nodes = {"cluster_name": "c", "nodes": {}}
    one_node = {"cluster_name": "c", "nodes": {"z": {"name": "a"}}}
    rsps.add(responses.GET, URL + "/_nodes/_all/_all", json=all_nodes)
    rsps.add(responses.GET, URL + "/_nodes/a/_all", json=one_node)
    assert client.nodes_info() == all_nodes
    assert client.nodes_info(["a"]) == one_node


def test_cat_shards_requests_json(client, rsps):
    rows = [{"index": "idx", "node": "a"}]
    rsps.add(responses.GET, URL + "/_cat/shards", json=rows)
    assert client.cat_shards() == rows
    query = parse_qs(urlsplit(rsps.calls[0].request.url).query)
    assert query["format"] == ["json"]


def test_cluster_health_with_trailing_slash_url(rsps):
    health = {"status": "green", "relocating_shards": 0}
    rsps.add(responses.GET, URL + "/_cluster/health", json=health)
    assert ElasticsearchClient(URL + "/").cluster_health() == health


def test_missing_repository_raises_not_found(client, rsps):
    rsps.add(
        responses.GET,
        URL + "/_snapshot/backups",
        status=404,
        json={"error": {"type": "t", "reason": "missing repo"}, "status": 404},
    )
    with pytest.raises(NotFoundError) as info:
        client.get_snapshot_repository("backups")
    assert info.value.status == 404
    assert info.value.reason == "missing repo"


def test_server_error_is_not_not_found(client, rsps):
    rsps.add(responses.GET, URL + "/_cluster/health", status=500, body="boom")
    with pytest.raises(ElasticsearchError) as info:
        client.cluster_health()
    assert not isinstance(info.value, NotFoundError)
    assert info.value.status == 500


def test_create_snapshot_repository_body(client, rsps):
    rsps.add(
        responses.PUT,
        URL + "/_snapshot/backups",
        json={"acknowledged": True},
        match=[matchers.json_params_matcher({"type": "fs", "settings": {"location": "/tmp/x"}})],
    )
    assert client.create_snapshot_repository("backups", "fs", {"location": "/tmp/x"}) == {
        "acknowledged": True
    }


def test_create_snapshot_waits_for_completion(client, rsps):
    answer = {"snapshot": {"snapshot": "2019-05-05-05-26-13", "state": "SUCCESS"}}
    rsps.add(responses.PUT, URL + "/_snapshot/backups/2019-05-05-05-26-13", json=answer)
    result = client.create_snapshot("backups", "2019-05-05-05-26-13")
    assert result == answer
    query = parse_qs(urlsplit(rsps.calls[0].request.url).query)
    assert query["wait_for_completion"] == ["true"]


def test_get_and_delete_snapshots(client, rsps):
    snapshots = [{"snapshot": "2019-05-05-05-26-13"}]
    rsps.add(responses.GET, URL + "/_snapshot/backups/_all", json={"snapshots": snapshots})
    rsps.add(responses.DELETE, URL + "/_snapshot/backups/2019-05-05-05-26-13", json={})
    assert client.get_snapshots("backups") == snapshots
    client.delete_snapshot("backups", "2019-05-05-05-26-13")
    assert rsps.calls[1].request.method == "DELETE"