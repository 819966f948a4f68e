"""
Buyer wallet capability.

The SDK never stores keys itself. A wallet only has to expose its keys and
address, report whether it is connected, and build, sign and broadcast a
payment transaction.
"""
import json
import logging
import time
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding, NoEncryption, PrivateFormat, PublicFormat,
)

from .utils import sha256_hex

logger = logging.getLogger(__name__)


@runtime_checkable
class Wallet(Protocol):
    """Protocol for buyer wallets"""

    def is_connected(self) -> bool:
        ...

    def get_address(self) -> str:
        ...

    def get_public_key(self) -> str:
        """Hex-encoded public key"""
        ...

    def get_private_key(self) -> str:
        """Hex-encoded private key, used only for local key agreement"""
        ...

    def create_transaction(self, to: str, amount: int, extra: str) -> Dict[str, Any]:
        """Build an unsigned transfer of ``amount`` atomic units carrying ``extra`` hex data"""
        ...

    def send_transaction(self, transaction: Dict[str, Any]) -> str:
        """Sign and broadcast a transaction, returning its hash"""
        ...


def format_address(digest_hex: str, prefix: str = "fuego") -> str:
    """Format a hex digest as a ledger address."""
    return f"{prefix}{digest_hex[:60]}"


class LocalWallet:
    """
    Wallet backed by an in-process Ed25519 key.

    Broadcasting goes through any object with a ``broadcast_transaction``
    method, normally a FuegoRPCClient.
    """

    def __init__(
        self,
        private_key: Optional[Ed25519PrivateKey] = None,
        ledger: Any = None,
        address_prefix: str = "fuego",
        network_fee: int = 8_000,
    ):
        self._private_key = private_key or Ed25519PrivateKey.generate()
        self.ledger = ledger
        self.address_prefix = address_prefix
        self.network_fee = network_fee

    @classmethod
    def from_hex(cls, private_key_hex: str, **kwargs) -> "LocalWallet":
        key = Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_key_hex))
        return cls(key, **kwargs)

    def is_connected(self) -> bool:
        return self.ledger is not None

    def get_public_key(self) -> str:
        return self._private_key.public_key().public_bytes(
            Encoding.Raw, PublicFormat.Raw
        ).hex()

    def get_private_key(self) -> str:
        return self._private_key.private_bytes(
            Encoding.Raw, PrivateFormat.Raw, NoEncryption()
        ).hex()

    def get_address(self) -> str:
        return format_address(sha256_hex(self.get_public_key()), self.address_prefix)

    def create_transaction(self, to: str, amount: int, extra: str) -> Dict[str, Any]:
        if amount <= 0:
            raise ValueError("Transaction amount must be positive")
        return {
            "from": self.get_address(),
            "to": to,
            "amount": amount,
            "fee": self.network_fee,
            "extra": extra,
            "timestamp": int(time.time()),
            "publicKey": self.get_public_key(),
        }

    def sign_transaction(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        unsigned = {k: v for k, v in transaction.items() if k != "signature"}
        message = json.dumps(unsigned, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return {**unsigned, "signature": self._private_key.sign(message).hex()}

    def send_transaction(self, transaction: Dict[str, Any]) -> str:
        if self.ledger is None:
            raise ConnectionError("Wallet is not connected to a ledger")
        signed = self.sign_transaction(transaction)
        tx_hash = self.ledger.broadcast_transaction(signed)
        logger.info("Broadcast transaction %s to %s", tx_hash, transaction["to"][:12])
        return tx_hash
