# esasg

Helpers for running an Elasticsearch cluster inside cloud autoscaling groups.

The package provides:

- `esasg.client.ElasticsearchClient`: a small HTTP client for the cluster
  settings, nodes stats and info, `/_cat/shards`, cluster health and snapshot
  endpoints. Error responses raise `ElasticsearchError`; a 404 raises its
  subclass `NotFoundError`.
- `esasg.command.ElasticsearchCommandService`: `drain()` a node by adding its
  name to the transient `cluster.routing.allocation.exclude._name` setting,
  and `undrain()` it again. The excluded names are kept sorted, and an empty
  list clears the setting.
- `esasg.query.ElasticsearchQueryService`: fetches node stats, node info,
  shards and allocation exclusions at the same time and merges them into
  `esasg.node.Node` objects keyed by node name. If the responses disagree on
  which nodes exist, it retries (three tries by default) and then raises
  `InconsistentNodesError`.
- `esasg.node.Node`: `indices()` returns the sorted index names with shards on
  the node; `is_master()` tells whether the node has the `master` role.
- `esasg.metrics.make_cloudwatch_data`: turns nodes and vCPU counts into
  `MetricDatum` values (load, load utilisation, JVM heap and pools, garbage
  collection, filesystem use, nodes excluded from allocation), totalled
  overall (`Role=all`), per node role, and under `coordinate` for nodes
  without roles. `MetricDatum.to_dict()` gives the shape the PutMetricData
  API expects.
- `esasg.ec2.get_instance_vcpu_count`: vCPU counts per instance
  (`CoreCount * ThreadsPerCore`), cached for five minutes. It takes any EC2
  client object with a `describe_instances(InstanceIds=...)` method.
- `esasg.snapshot`: snapshot schedules written as ISO 8601 durations
  (`SnapshotWindow`, `SnapshotWindows.next()`, `SnapshotWindows.keep()`) and
  snapshot names of the form `YYYY-MM-DD-HH-MM-SS` in UTC.
- `esasg.snapshooter`: a command that takes snapshots on a schedule and
  prunes old ones.
- `esasg.logsetup.setup_logging`: readable log lines on a terminal, JSON lines
  otherwise.

## Installation

```
pip install .
```

## Draining a node

```python
from esasg.client import ElasticsearchClient
from esasg.command import ElasticsearchCommandService

client = ElasticsearchClient("http://localhost:9200")
commands = ElasticsearchCommandService(client)
commands.drain("node-1")     # shards move off node-1
commands.undrain("node-1")   # node-1 can hold shards again
```

## Querying nodes

```python
from esasg.query import ElasticsearchQueryService

query = ElasticsearchQueryService(client)
nodes = query.nodes()                 # name -> Node
node = query.node("node-1")           # None if the node is gone
if node is not None:
    print(node.indices(), node.excluded_shard_allocation)
```

## Metric data

```python
from esasg.metrics import make_cloudwatch_data

data = make_cloudwatch_data(nodes, {name: 2 for name in nodes})
payload = [datum.to_dict() for datum in data]
```

The keys of `nodes` and of the vCPU counts must match; nodes from two
different clusters raise `ValueError`.

## Scheduled snapshots

```
esasg-snapshooter http://localhost:9200 --window P1M=PT1H --window P3M=P1W --delete
```

Each `--window KEEP=EVERY` means "take a snapshot every EVERY and keep it for
KEEP"; a snapshot is kept while any window keeps it. Months count as
30.436875 days and years as 365.2425 days. Options:

- `url` (positional, default `http://localhost:9200`)
- `--window KEEP=EVERY` (required, may be repeated)
- `-d`, `--delete`: delete snapshots the schedule no longer keeps
- `--repo NAME`: snapshot repository (default `backups`)
- `--type TYPE` and `--settings KEY=VALUE`: create the repository if it is
  missing; an existing repository of another type is an error
- `-v`, `--verbose`: debug logging

The command runs until an error occurs, then logs it and exits with status 1.

## What is not included

The package builds metric data but does not push it to CloudWatch, and it
has no long-running metrics command. It does not handle autoscaling
lifecycle hook events and does not serve health checks.

## Tests

```
pip install .[test]
pytest
```