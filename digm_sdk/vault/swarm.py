"""
Peer-to-peer swarm fallback used when no serving node qualifies.
"""
import logging
import time
from typing import Callable, Optional, Protocol

from ..models import AccessGrant, EncryptedContentRecord

logger = logging.getLogger(__name__)

SWARM_NODE_ID = "P2P_FALLBACK"


class SwarmClient(Protocol):
    """Protocol for swarm transfers"""

    def fetch(self, locator: str, content_hash: str) -> str:
        """
        Download and decrypt the content behind ``locator``.

        Returns:
            A local handle (path or URL) to the playable content
        """
        ...


class SwarmFallback:
    """Turns a swarm download into a temporary access grant."""

    def __init__(
        self,
        client: Optional[SwarmClient] = None,
        handle_ttl: int = 3_600,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.handle_ttl = handle_ttl
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    @property
    def available(self) -> bool:
        return self.client is not None

    def fetch(self, record: EncryptedContentRecord) -> AccessGrant:
        """
        Fetch a track from the swarm.

        Raises:
            LookupError: If no swarm client is configured or the track has
                no published locator
        """
        if self.client is None:
            raise LookupError("No swarm client configured")
        if not record.swarm_locator:
            raise LookupError(f"No swarm locator published for track {record.track_id}")

        handle = self.client.fetch(record.swarm_locator, record.content_hash)
        self.logger.info("Served track %s from swarm fallback", record.track_id)
        return AccessGrant(
            decrypted_url=handle,
            expires_at=self.clock() + self.handle_ttl,
            serving_node_id=SWARM_NODE_ID,
        )
