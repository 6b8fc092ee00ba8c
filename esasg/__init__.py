"""Elasticsearch cluster tools for autoscaling groups: draining, node queries, metrics and snapshots."""

__version__ = "0.1.0"