"""
Data models for the DIGM SDK.

Wire-facing models use the camelCase field names of the ledger extra data,
the signing service and the serving nodes; Python code uses snake_case.
"""
import time
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .utils import is_hex

PAYMENT_CODE_PREFIX = "PC"
PAYMENT_CODE_LENGTH = 134
KEY_HEX_LENGTH = 64
LICENSE_VERSION = 1


class PaymentCode(BaseModel):
    """Reusable artist payment code: a static public key plus chain code."""
    version: int = Field(..., ge=1, le=255)
    features: int = Field(..., ge=0, le=255)
    public_key: str
    chain_code: str

    class Config:
        frozen = True

    @field_validator("public_key", "chain_code")
    @classmethod
    def _check_key_hex(cls, value: str) -> str:
        if not is_hex(value, KEY_HEX_LENGTH):
            raise ValueError(f"must be {KEY_HEX_LENGTH} hex characters (32 bytes)")
        return value

    @property
    def encoded(self) -> str:
        """Canonical 134-character serialization."""
        return (
            f"{PAYMENT_CODE_PREFIX}{self.version:02x}{self.features:02x}"
            f"{self.public_key}{self.chain_code}"
        )

    def __str__(self) -> str:
        return self.encoded


class StructureReport(BaseModel):
    """Every structural defect found in a serialized payment code."""
    valid: bool
    errors: List[str] = Field(default_factory=list)


class DerivedPaymentAddress(BaseModel):
    """A one-time payment address derived for a buyer/artist pair."""
    address: str
    index: int = Field(..., ge=0, le=0xFFFFFFFF)
    shared_secret: str


class AddressMatch(BaseModel):
    """Outcome of searching derivation indices for a candidate address."""
    valid: bool
    index: Optional[int] = None


class SigningRequest(BaseModel):
    """Fields sent to the artist signing service; never includes private keys."""
    album_id: str = Field(..., alias="albumId")
    buyer_key: str = Field(..., alias="buyerKey")
    purchase_amount: int = Field(..., alias="purchaseAmount")
    timestamp: int
    version: int = LICENSE_VERSION

    class Config:
        populate_by_name = True


class SigningResponse(BaseModel):
    """Reply from the artist signing service."""
    signature: str = ""
    artist_key: str = Field("", alias="artistKey")
    error: Optional[str] = None

    class Config:
        populate_by_name = True


class LicenseRecord(BaseModel):
    """
    Signed proof of purchase carried in transaction extra data (tag 0x0B).

    All seven fields are required; unknown fields are rejected.
    """
    album_id: str = Field(..., alias="albumId", min_length=1)
    buyer_key: str = Field(..., alias="buyerKey", min_length=1)
    purchase_amount: int = Field(..., alias="purchaseAmount", ge=0, le=2**64 - 1)
    timestamp: int
    artist_key: str = Field(..., alias="artistKey", min_length=1)
    artist_signature: str = Field(..., alias="artistSig", min_length=1)
    version: int

    class Config:
        populate_by_name = True
        frozen = True
        extra = "forbid"

    def canonical_payload(self) -> str:
        """Payload covered by the artist signature."""
        return canonical_license_payload(
            self.album_id, self.buyer_key, self.purchase_amount, self.timestamp, self.version
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def canonical_license_payload(
    album_id: str, buyer_key: str, purchase_amount: int, timestamp: int, version: int
) -> str:
    """albumId:buyerKey:purchaseAmount:timestamp:version"""
    return f"{album_id}:{buyer_key}:{purchase_amount}:{timestamp}:{version}"


class LicenseOwnership(BaseModel):
    """A verified license as seen by the verifier."""
    album_id: str
    owner_key: str
    purchase_amount: int
    timestamp: int
    tx_hash: str
    verified: bool
    artist_key: str
    block_height: Optional[int] = None


class Balance(BaseModel):
    """Ledger balance in atomic units."""
    primary_coin: int = Field(0, alias="xfg")
    utility_token: int = Field(0, alias="heat")

    class Config:
        populate_by_name = True


class LedgerTransaction(BaseModel):
    """Transaction as returned by an extra-type lookup."""
    hash: str
    extra: str
    block_height: Optional[int] = Field(None, alias="blockHeight")

    class Config:
        populate_by_name = True


class PurchaseState(str, Enum):
    """Stages of a single purchase attempt."""
    VALIDATING = "validating"
    DERIVING_ADDRESS = "deriving_address"
    AWAITING_ARTIST_SIGNATURE = "awaiting_artist_signature"
    BROADCASTING = "broadcasting"
    COMPLETED = "completed"
    FAILED = "failed"


class PurchaseResult(BaseModel):
    """
    Outcome of purchase_album.

    ``state`` is COMPLETED or FAILED; ``failed_at`` names the stage that
    failed. Only a failure at BROADCASTING may have reached the ledger.
    """
    success: bool
    tx_hash: Optional[str] = None
    license_data: Optional[LicenseRecord] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    state: PurchaseState = PurchaseState.VALIDATING
    failed_at: Optional[PurchaseState] = None
    payment_address: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    estimated_fee: Optional[float] = None


class PurchaseQuote(BaseModel):
    base_price: float
    network_fee: float
    total_cost: float
    currency: str


class OwnershipCheck(BaseModel):
    already_owned: bool
    purchase_date: Optional[int] = None
    tx_hash: Optional[str] = None


class AccessInfo(BaseModel):
    has_license: bool
    is_premium: bool
    has_access: bool
    license_details: Optional[LicenseOwnership] = None
    access_type: Literal["license", "premium", "none"]


class NodeService(str, Enum):
    SEEDING = "seeding"
    DECRYPTION = "decryption"
    TRACKING = "tracking"


class ServingNode(BaseModel):
    """A serving node as last reported by discovery or heartbeat."""
    node_id: str
    endpoint: str
    status: Literal["active", "inactive", "slashing"] = "inactive"
    trust: float = Field(0.5, ge=0.0, le=1.0)
    load: int = Field(0, ge=0)
    stake_amount: int = 0
    last_seen: float = 0.0
    services: FrozenSet[NodeService] = frozenset(
        {NodeService.SEEDING, NodeService.DECRYPTION, NodeService.TRACKING}
    )

    class Config:
        frozen = True

    def offers(self, *services: NodeService) -> bool:
        return all(s in self.services for s in services)


class EncryptedContentRecord(BaseModel):
    """Where a track's encrypted audio lives and how to check it."""
    track_id: str
    album_id: str
    content_url: str
    encryption_key_hash: str = ""
    content_hash: str
    file_size: int = Field(..., ge=0)
    uploaded_at: float = 0.0
    swarm_locator: Optional[str] = None
    serving_nodes: List[str] = Field(default_factory=list)


class AccessGrant(BaseModel):
    """Time-boxed playback handle issued by a serving node or the swarm."""
    decrypted_url: str
    expires_at: float
    serving_node_id: str

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at


class AccessResult(BaseModel):
    """Outcome of a content decryption request."""
    success: bool
    grant: Optional[AccessGrant] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class NetworkStatus(BaseModel):
    total_nodes: int
    active_nodes: int
    inactive_nodes: int
    encrypted_tracks: int
    seeding_available: bool
    decryption_available: bool
