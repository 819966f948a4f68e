"""
Serving-node directory and heartbeat.

``NodeDirectory`` is a copy-on-write map: readers take the current snapshot
without locking, writers replace the whole map under a lock. The gate only
ever reads a snapshot; ``NodeHeartbeat`` keeps it warm in the background.
"""
import logging
import threading
import time
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import requests

from .._rate_limited_log import rate_limited_log
from ..config import ProtocolSettings
from ..models import ServingNode
from ..poller import IntervalPoller

logger = logging.getLogger(__name__)


class NodeDirectory:
    """Live view of discovered serving nodes keyed by node ID."""

    def __init__(self, nodes: Iterable[ServingNode] = ()):
        self._write_lock = threading.Lock()
        self._nodes: Mapping[str, ServingNode] = MappingProxyType({n.node_id: n for n in nodes})

    def snapshot(self) -> Mapping[str, ServingNode]:
        """Current, immutable node map."""
        return self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> Optional[ServingNode]:
        return self._nodes.get(node_id)

    def upsert(self, node: ServingNode) -> None:
        with self._write_lock:
            nodes = dict(self._nodes)
            nodes[node.node_id] = node
            self._nodes = MappingProxyType(nodes)

    def update(self, node_id: str, **changes: Any) -> Optional[ServingNode]:
        """Replace a node with a copy carrying ``changes``; unknown IDs are ignored."""
        with self._write_lock:
            current = self._nodes.get(node_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes)
            nodes = dict(self._nodes)
            nodes[node_id] = updated
            self._nodes = MappingProxyType(nodes)
            return updated

    def remove(self, node_id: str) -> None:
        with self._write_lock:
            if node_id in self._nodes:
                nodes = dict(self._nodes)
                del nodes[node_id]
                self._nodes = MappingProxyType(nodes)

    def replace_all(self, nodes: Iterable[ServingNode]) -> None:
        new_nodes = MappingProxyType({n.node_id: n for n in nodes})
        with self._write_lock:
            self._nodes = new_nodes


class NodeHeartbeat:
    """
    Polls ``GET {endpoint}/status`` on every known node.

    A node that answers 2xx with JSON becomes active and its load is taken
    from ``seedingCount``; any other outcome marks it inactive.
    """

    def __init__(
        self,
        directory: NodeDirectory,
        settings: Optional[ProtocolSettings] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.directory = directory
        self.settings = settings or ProtocolSettings.from_env()
        self.session = session or requests.Session()
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._poller = IntervalPoller(
            self.poll_once, self.settings.heartbeat_interval, name="node-heartbeat", logger=self.logger
        )

    def check_node(self, node: ServingNode) -> ServingNode:
        try:
            response = self.session.get(
                f"{node.endpoint.rstrip('/')}/status", timeout=self.settings.heartbeat_timeout
            )
            response.raise_for_status()
            status: Dict[str, Any] = response.json()
        except (requests.RequestException, ValueError) as e:
            rate_limited_log(
                f"Serving node {node.node_id} appears offline: {e}",
                key=f"offline:{node.node_id}", logger_instance=self.logger,
            )
            return self.directory.update(node.node_id, status="inactive") or node

        changes: Dict[str, Any] = {"status": "active", "last_seen": self.clock()}
        seeding_count = status.get("seedingCount") if isinstance(status, dict) else None
        if isinstance(seeding_count, int) and seeding_count >= 0:
            changes["load"] = seeding_count
        return self.directory.update(node.node_id, **changes) or node

    def poll_once(self) -> None:
        for node in list(self.directory.snapshot().values()):
            self.check_node(node)

    def start(self) -> None:
        self._poller.start()

    def stop(self) -> None:
        self._poller.stop()
