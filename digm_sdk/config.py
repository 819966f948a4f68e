"""
Network and protocol configuration for the DIGM SDK.
"""
import json
import logging
import os
import importlib.resources
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "fuego-mainnet"
ENV_PREFIX = "DIGM_"


class NetworkConfig:
    """Access to the packaged networks.json with a class-level cache."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load network definitions from the packaged networks.json.

        Returns:
            Mapping of network name to its settings
        """
        if cls._networks_cache is not None:
            return cls._networks_cache

        resource = importlib.resources.files("digm_sdk").joinpath("networks.json")
        with resource.open("r", encoding="utf-8") as f:
            cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get settings for a named network.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_rpc_url(cls, network: str = DEFAULT_NETWORK) -> str:
        """RPC URL for a network, overridable with DIGM_RPC_URL."""
        return os.environ.get(f"{ENV_PREFIX}RPC_URL") or cls.get_network(network)["rpc"]

    @classmethod
    def get_signing_service(cls, network: str = DEFAULT_NETWORK) -> Optional[str]:
        """Default artist signing service, overridable with DIGM_SIGNING_SERVICE."""
        return (
            os.environ.get(f"{ENV_PREFIX}SIGNING_SERVICE")
            or cls.get_network(network).get("signingService")
        )

    @classmethod
    def get_address_prefix(cls, network: str = DEFAULT_NETWORK) -> str:
        return cls.get_network(network).get("addressPrefix", "fuego")


class ProtocolSettings(BaseModel):
    """
    Policy constants for purchases, license scanning and content access.

    All values can be overridden from the environment with the DIGM_ prefix,
    e.g. DIGM_LICENSE_CACHE_TTL=60. Components constructed without explicit
    settings use ``ProtocolSettings.from_env()``.
    """
    currency: str = "XFG"
    network_fee_atomic: int = Field(8_000, ge=0)
    max_price: float = Field(1000.0, gt=0)
    license_cache_ttl: float = Field(300.0, gt=0)
    initial_scan_window: int = Field(10_000, ge=0)
    premium_primary_threshold: int = Field(100_000, ge=0)
    premium_token_threshold: int = Field(1_000_000, ge=0)
    license_future_skew: int = Field(300, ge=0)
    license_max_age: int = Field(86_400 * 365, ge=0)  # 0 disables
    signing_timeout: float = Field(10.0, gt=0)
    decryption_timeout: float = Field(10.0, gt=0)
    swarm_handle_ttl: int = Field(3_600, gt=0)
    heartbeat_interval: float = Field(30.0, gt=0)
    heartbeat_timeout: float = Field(5.0, gt=0)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides: Any) -> "ProtocolSettings":
        """
        Build settings from DIGM_* environment variables.

        Explicit keyword overrides win over the environment.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        values.update(overrides)
        if values:
            logger.debug("Protocol settings overrides: %s", sorted(values))
        return cls(**values)
