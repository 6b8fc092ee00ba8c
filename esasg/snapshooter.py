"""Create and clean up Elasticsearch snapshots on a schedule."""

from __future__ import annotations

import argparse
import logging
import queue
import threading
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, timezone

import requests

from esasg.client import DEFAULT_URL, ElasticsearchClient, ElasticsearchError, NotFoundError
from esasg.logsetup import setup_logging
from esasg.snapshot import (
    SnapshotWindows,
    format_snapshot_name,
    new_snapshot_window,
    parse_snapshot_name,
)

logger = logging.getLogger(__name__)

_CLOCK_TOLERANCE = timedelta(seconds=1)


def ensure_snapshot_repo(
    client: ElasticsearchClient,
    repo_type: str,
    name: str,
    settings: Mapping[str, str] | None = None,
) -> None:
    """Make sure a snapshot repository with this name and type exists.

    Creates the repository if it is missing; raises ValueError if it exists
    with a different type.
    """
    try:
        repositories = client.get_snapshot_repository(name)
    except NotFoundError:
        repositories = {}
    repo = repositories.get(name)
    if repo is None:
        logger.info("creating snapshot repository", extra={"repository": name})
        client.create_snapshot_repository(name, repo_type, settings or {})
        return
    existing_type = repo.get("type")
    if existing_type != repo_type:
        logger.error(
            "snapshot repository exists, but is the wrong type",
            extra={"want_type": repo_type, "got_type": existing_type},
        )
        raise ValueError(
            f"snapshot repository {name!r} has type {existing_type!r}, want {repo_type!r}"
        )


def create_snapshot(client: ElasticsearchClient, repo_name: str, now: datetime) -> str:
    """Create a snapshot named after ``now`` and return its name.

    Raises ValueError if ``now`` is not within one second of the current time.
    """
    current = datetime.now(timezone.utc)
    moment = now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)
    if abs(current - moment) >= _CLOCK_TOLERANCE:
        raise ValueError("now is not within one second of the current time")
    name = format_snapshot_name(moment)
    logger.info("creating snapshot", extra={"snapshot": name})
    client.create_snapshot(repo_name, name)
    return name


def delete_old_snapshots(
    client: ElasticsearchClient, repo_name: str, schedule: SnapshotWindows
) -> list[str]:
    """Delete snapshots the schedule no longer keeps; return their names."""
    deleted: list[str] = []
    for snapshot in client.get_snapshots(repo_name):
        name = snapshot["snapshot"]
        taken = parse_snapshot_name(name)
        if not schedule.keep(taken):
            logger.info("deleting snapshot", extra={"snapshot": name})
            client.delete_snapshot(repo_name, name)
            deleted.append(name)
    return deleted


def _pair(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {text!r}")
    return key, value


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapshooter",
        description="Create and clean up Elasticsearch snapshots on a schedule.",
    )
    parser.add_argument("url", nargs="?", default=DEFAULT_URL, help="Elasticsearch URL.")
    parser.add_argument(
        "--window",
        type=_pair,
        action="append",
        required=True,
        metavar="P1M=PT1H",
        help="Snapshot TTL=frequency as ISO 8601 durations. May be repeated.",
    )
    parser.add_argument(
        "-d", "--delete", action="store_true", help="Clean up old snapshots."
    )
    parser.add_argument("--repo", default="backups", help="Name of the snapshot repository.")
    parser.add_argument(
        "--type", dest="repo_type", help="Create a repository of this type if missing."
    )
    parser.add_argument(
        "--settings",
        type=_pair,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Settings for creating the snapshot repository. May be repeated.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging.")
    return parser


def _run_once(
    client: ElasticsearchClient,
    repo_name: str,
    when: datetime,
    schedule: SnapshotWindows,
    delete: bool,
    failures: queue.Queue,
) -> None:
    try:
        create_snapshot(client, repo_name, when)
        if delete:
            delete_old_snapshots(client, repo_name, schedule)
    except Exception as err:  # reported to the scheduling loop, which exits
        failures.put(err)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the snapshot scheduler until an error occurs."""
    args = _parser().parse_args(argv)
    setup_logging(args.verbose)
    log = logging.LoggerAdapter(logger, {"snapshot_repository": args.repo})

    try:
        schedule = SnapshotWindows(
            new_snapshot_window(every, keep_for) for keep_for, every in dict(args.window).items()
        )
    except ValueError as err:
        log.error("error parsing snapshot window: %s", err)
        return 1

    client = ElasticsearchClient(args.url)

    if args.repo_type:
        try:
            ensure_snapshot_repo(client, args.repo_type, args.repo, dict(args.settings))
        except (ElasticsearchError, requests.RequestException, ValueError) as err:
            log.error("error ensuring snapshot repository exists: %s", err)
            return 1

    failures: queue.Queue = queue.Queue()
    while True:
        when = schedule.next()
        delay = (when - datetime.now(timezone.utc)).total_seconds()
        try:
            error = failures.get(timeout=delay) if delay > 0 else failures.get_nowait()
        except queue.Empty:
            pass
        else:
            log.error("error while creating or deleting snapshots: %s", error)
            return 1
        log.debug("starting snapshot create/delete")
        threading.Thread(
            target=_run_once,
            args=(client, args.repo, when, schedule, args.delete, failures),
            daemon=True,
        ).start()