"""
License-gated access to encrypted audio.

A request is checked against the license verifier before any serving node is
contacted. The best active node that both seeds and decrypts is asked for a
time-boxed playback handle; with no such node the swarm fallback is tried.
Every failure comes back as an ``AccessResult`` with ``success=False``.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError

from ..config import ProtocolSettings
from ..exceptions import ContentNotFound, DigmError, NoValidLicense, NodeTimeout, NodeUnavailable
from ..models import (
    AccessGrant, AccessResult, EncryptedContentRecord, NetworkStatus, NodeService, ServingNode,
)
from ..utils import truncate, validate_remote_url
from ..verifier import LicenseVerifier
from .catalog import ContentCatalog
from .nodes import NodeDirectory
from .swarm import SwarmFallback

logger = logging.getLogger(__name__)

NO_LICENSE_MESSAGE = "No valid license found for this track"
LOAD_CAPACITY = 1000


def node_score(node: ServingNode) -> float:
    """Trust weighted by spare capacity."""
    return node.trust * max(0.0, 1.0 - node.load / LOAD_CAPACITY)


class ContentAccessGate:
    """
    Grants playback of licensed tracks.

    Args:
        verifier: License verifier used to re-check ownership
        catalog: Track to album and encrypted-content lookups
        directory: Live map of discovered serving nodes
        swarm: Swarm fallback; without one, "no node" is a failure
        settings: Protocol settings (decryption timeout, swarm handle TTL)
        session: requests session for serving-node calls
        clock: Returns the current unix time
        logger: Optional logger instance
    """

    def __init__(
        self,
        verifier: LicenseVerifier,
        catalog: ContentCatalog,
        directory: Optional[NodeDirectory] = None,
        swarm: Optional[SwarmFallback] = None,
        settings: Optional[ProtocolSettings] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.verifier = verifier
        self.catalog = catalog
        self.directory = directory or NodeDirectory()
        self.settings = settings or ProtocolSettings.from_env()
        self.clock = clock
        self.swarm = swarm or SwarmFallback(handle_ttl=self.settings.swarm_handle_ttl, clock=clock)
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def request_decrypted_content(
        self, track_id: str, buyer_key: str, license_proof_tx_hash: str
    ) -> AccessResult:
        """
        Request a playback handle for a track.

        Args:
            track_id: Track to play
            buyer_key: Buyer public key claiming ownership
            license_proof_tx_hash: Hash of the purchase transaction, forwarded
                to the serving node as proof

        Returns:
            AccessResult with a grant on success. Callers may retry a failed
            request; each call selects a node afresh.
        """
        album_id = self.catalog.get_album_for_track(track_id)
        if album_id is None or not self.verifier.has_license(buyer_key, album_id):
            self.logger.info("Denied track %s to %s", track_id, truncate(buyer_key))
            return self._failure(NoValidLicense(NO_LICENSE_MESSAGE))

        record = self.catalog.get_encrypted_record(track_id)
        if record is None:
            return self._failure(ContentNotFound("Audio record not found"))

        node = self.select_serving_node(record)
        if node is None:
            self.logger.warning("No serving node available for track %s, trying swarm", track_id)
            return self._try_swarm_fallback(record)

        request_body = {
            "trackId": track_id,
            "userPublicKey": buyer_key,
            "licenseProof": license_proof_tx_hash,
            "timestamp": int(self.clock()),
        }
        try:
            grant = self._request_node_decryption(node, request_body, license_proof_tx_hash)
        except DigmError as e:
            self.logger.error("Serving node %s request failed: %s", node.node_id, e)
            return self._failure(e)
        return AccessResult(success=True, grant=grant)

    def select_serving_node(self, record: Optional[EncryptedContentRecord] = None) -> Optional[ServingNode]:
        """
        Best active node offering seeding and decryption, or None.

        Nodes listed in the record as seeding the track win ties.
        """
        seeders = set(record.serving_nodes) if record else set()
        candidates: List[ServingNode] = [
            node for node in self.directory.snapshot().values()
            if node.status == "active" and node.offers(NodeService.SEEDING, NodeService.DECRYPTION)
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda n: (node_score(n), n.node_id in seeders, n.node_id), reverse=True)
        return candidates[0]

    def _request_node_decryption(
        self, node: ServingNode, request_body: Dict[str, Any], proof: str
    ) -> AccessGrant:
        try:
            endpoint = validate_remote_url(f"endpoint of node {node.node_id}", node.endpoint)
            response = self.session.post(
                f"{endpoint}/decrypt-audio",
                json=request_body,
                headers={"Authorization": f"Bearer {proof}"},
                timeout=self.settings.decryption_timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.Timeout as e:
            raise NodeTimeout(
                f"Serving node {node.node_id} timed out after {self.settings.decryption_timeout}s"
            ) from e
        except requests.RequestException as e:
            raise NodeUnavailable(f"Serving node {node.node_id} request failed: {e}") from e
        except ValueError as e:
            raise NodeUnavailable(f"Serving node {node.node_id} returned an invalid response: {e}") from e

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise NodeUnavailable(error or f"Serving node {node.node_id} refused the request")

        expires_at = body.get("expiresAt")
        if isinstance(expires_at, (int, float)) and expires_at > 1e12:
            expires_at = expires_at / 1000  # milliseconds
        try:
            grant = AccessGrant(
                decrypted_url=body.get("decryptedUrl"),
                expires_at=expires_at,
                serving_node_id=node.node_id,
            )
        except ValidationError as e:
            raise NodeUnavailable(f"Serving node {node.node_id} returned an incomplete grant") from e
        if grant.is_expired(self.clock()):
            raise NodeUnavailable(f"Serving node {node.node_id} returned an expired grant")
        return grant

    def _try_swarm_fallback(self, record: EncryptedContentRecord) -> AccessResult:
        if not self.swarm.available or not record.swarm_locator:
            return self._failure(NodeUnavailable("No P2P fallback available"))
        try:
            grant = self.swarm.fetch(record)
        except Exception as e:
            self.logger.error("Swarm fallback failed for track %s: %s", record.track_id, e)
            return self._failure(NodeUnavailable(f"P2P fallback failed: {e}"))
        return AccessResult(success=True, grant=grant)

    @staticmethod
    def _failure(error: DigmError) -> AccessResult:
        return AccessResult(success=False, error=str(error), error_code=error.code)

    def get_network_status(self) -> NetworkStatus:
        nodes = list(self.directory.snapshot().values())
        return NetworkStatus(
            total_nodes=len(nodes),
            active_nodes=sum(1 for n in nodes if n.status == "active"),
            inactive_nodes=sum(1 for n in nodes if n.status == "inactive"),
            encrypted_tracks=self.catalog.count_encrypted_tracks(),
            seeding_available=any(n.offers(NodeService.SEEDING) for n in nodes),
            decryption_available=any(n.offers(NodeService.DECRYPTION) for n in nodes),
        )
