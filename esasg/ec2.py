"""vCPU counts of EC2 instances, cached between lookups."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, MutableMapping
from typing import Any

from cachetools import TTLCache

logger = logging.getLogger(__name__)

VCPU_CACHE_TTL_SECONDS = 5 * 60

_vcpu_cache: TTLCache = TTLCache(maxsize=4096, ttl=VCPU_CACHE_TTL_SECONDS)
_cache_lock = threading.Lock()


def get_instance_vcpu_count(
    ec2: Any,
    instance_ids: Iterable[str],
    cache: MutableMapping[str, int] | None = None,
) -> dict[str, int]:
    """Return a mapping of instance ID to vCPU count.

    Counts found in ``cache`` are used as they are; the rest are fetched with
    one DescribeInstances call on ``ec2`` and stored in the cache.
    """
    cache = _vcpu_cache if cache is None else cache
    counts: dict[str, int] = {}
    to_describe: list[str] = []
    for instance_id in instance_ids:
        with _cache_lock:
            cached = cache.get(instance_id)
        if cached is not None:
            logger.debug(
                "vCPU count cache hit",
                extra={"instance_id": instance_id, "count": cached},
            )
            counts[instance_id] = cached
        else:
            logger.debug("vCPU count cache miss", extra={"instance_id": instance_id})
            to_describe.append(instance_id)

    if not to_describe:
        return counts

    logger.debug("DescribeInstances", extra={"instance_ids": to_describe})
    response = ec2.describe_instances(InstanceIds=to_describe)
    for reservation in response.get("Reservations") or []:
        for instance in reservation.get("Instances") or []:
            instance_id = instance["InstanceId"]
            cpu = instance["CpuOptions"]
            count = int(cpu["CoreCount"]) * int(cpu["ThreadsPerCore"])
            counts[instance_id] = count
            with _cache_lock:
                cache[instance_id] = count
            logger.debug(
                "got instance vCPU count",
                extra={"instance_id": instance_id, "count": count},
            )
    return counts