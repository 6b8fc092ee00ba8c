"""A small HTTP client for the Elasticsearch REST endpoints the services need."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import quote

import requests

DEFAULT_URL = "http://localhost:9200"

logger = logging.getLogger(__name__)


class ElasticsearchError(Exception):
    """Elasticsearch answered a request with an error status."""

    def __init__(self, status: int, reason: str, body: Any = None) -> None:
        super().__init__(f"elasticsearch returned status {status}: {reason}")
        self.status = status
        self.reason = reason
        self.body = body


class NotFoundError(ElasticsearchError):
    """Elasticsearch answered with 404 Not Found."""


def _quote(part: str) -> str:
    return quote(part, safe=",*")


def _error_reason(response: requests.Response) -> tuple[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason or "", response.text
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("reason") or error.get("type") or error), payload
    if error:
        return str(error), payload
    return response.reason or "", payload


class ElasticsearchClient:
    """Thin wrapper around the Elasticsearch REST API."""

    def __init__(
        self,
        url: str = DEFAULT_URL,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url.rstrip("/")
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        logger.debug("elasticsearch request", extra={"method": method, "path": path})
        response = self._session.request(
            method,
            self.url + path,
            params=params,
            json=body,
            timeout=self._timeout,
        )
        if not response.ok:
            reason, payload = _error_reason(response)
            error_cls = NotFoundError if response.status_code == 404 else ElasticsearchError
            raise error_cls(response.status_code, reason, payload)
        if not response.content:
            return None
        return response.json()

    def get_cluster_settings(self, filter_path: str | None = None) -> dict[str, Any]:
        """Return the cluster settings, with "persistent" and "transient" sections."""
        params = {"filter_path": filter_path} if filter_path else None
        return self._request("GET", "/_cluster/settings", params=params) or {}

    def put_cluster_settings(self, body: Mapping[str, Any]) -> Any:
        """Update cluster settings with the given body."""
        return self._request("PUT", "/_cluster/settings", body=body)

    def nodes_stats(self, names: Iterable[str] | None = None) -> dict[str, Any]:
        """Return node stats, limited to the given node names if any."""
        names = list(names or [])
        path = f"/_nodes/{_quote(','.join(names))}/stats" if names else "/_nodes/stats"
        return self._request("GET", path) or {}

    def nodes_info(self, names: Iterable[str] | None = None) -> dict[str, Any]:
        """Return node info, limited to the given node names if any."""
        names = list(names or [])
        target = _quote(",".join(names)) if names else "_all"
        return self._request("GET", f"/_nodes/{target}/_all") or {}

    def cat_shards(self) -> list[dict[str, Any]]:
        """Return the rows of /_cat/shards."""
        return self._request("GET", "/_cat/shards", params={"format": "json", "bytes": "b"}) or []

    def cluster_health(self) -> dict[str, Any]:
        """Return the cluster health."""
        return self._request("GET", "/_cluster/health") or {}

    def get_snapshot_repository(self, name: str) -> dict[str, Any]:
        """Return a mapping of repository name to its definition.

        Raises NotFoundError if the repository doesn't exist.
        """
        return self._request("GET", f"/_snapshot/{_quote(name)}") or {}

    def create_snapshot_repository(
        self,
        name: str,
        repo_type: str,
        settings: Mapping[str, str] | None = None,
    ) -> Any:
        """Create (or replace) a snapshot repository."""
        body = {"type": repo_type, "settings": dict(settings or {})}
        return self._request("PUT", f"/_snapshot/{_quote(name)}", body=body)

    def create_snapshot(self, repo_name: str, snapshot_name: str) -> Any:
        """Create a snapshot and wait for it to complete."""
        return self._request(
            "PUT",
            f"/_snapshot/{_quote(repo_name)}/{_quote(snapshot_name)}",
            params={"wait_for_completion": "true"},
        )

    def get_snapshots(self, repo_name: str) -> list[dict[str, Any]]:
        """Return all snapshots in a repository."""
        response = self._request("GET", f"/_snapshot/{_quote(repo_name)}/_all") or {}
        return list(response.get("snapshots") or [])

    def delete_snapshot(self, repo_name: str, snapshot_name: str) -> Any:
        """Delete a snapshot."""
        return self._request(
            "DELETE", f"/_snapshot/{_quote(repo_name)}/{_quote(snapshot_name)}"
        )