"""
Content vault for the DIGM SDK.

Gates playback of encrypted audio behind a verified license and routes the
decryption request to the best available serving node, with a swarm
fallback when none qualifies.
"""
from .catalog import ContentCatalog, InMemoryCatalog
from .gate import ContentAccessGate, node_score
from .nodes import NodeDirectory, NodeHeartbeat
from .swarm import SWARM_NODE_ID, SwarmClient, SwarmFallback

__all__ = [
    'ContentAccessGate',
    'ContentCatalog',
    'InMemoryCatalog',
    'NodeDirectory',
    'NodeHeartbeat',
    'SwarmClient',
    'SwarmFallback',
    'SWARM_NODE_ID',
    'node_score',
]
