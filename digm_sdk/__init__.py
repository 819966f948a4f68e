"""
DIGM SDK - album purchases and license-gated playback on the Fuego ledger.
"""
from .config import NetworkConfig, ProtocolSettings
from .derivation import AddressDeriver, HashKeyAgreement, X25519KeyAgreement
from .exceptions import (
    BroadcastFailure, ContentNotFound, DerivationFailure, DigmError, InsufficientBalance,
    InvalidPaymentCode, InvalidPurchaseRequest, LedgerError, LicenseParseError,
    MalformedPaymentCode, NodeTimeout, NodeUnavailable, NoValidLicense, SignatureInvalid,
    SigningServiceError, SigningTimeout, Timeout,
)
from .ledger import FuegoRPCClient, LedgerClient
from .license import encode_license_extra, parse_license_extra, sign_license, verify_license_signature
from .models import (
    AccessGrant, AccessInfo, AccessResult, EncryptedContentRecord, LicenseOwnership,
    LicenseRecord, PaymentCode, PurchaseResult, PurchaseState, ServingNode,
)
from .purchase import LicenseManager, PurchaseCancelled, PurchaseRequest, generate_receipt
from .verifier import LicenseVerifier
from .vault import ContentAccessGate, InMemoryCatalog, NodeDirectory, NodeHeartbeat, SwarmFallback
from .version import __version__
from .wallet import LocalWallet, Wallet

__all__ = [
    "AddressDeriver", "HashKeyAgreement", "X25519KeyAgreement",
    "LicenseManager", "PurchaseRequest", "PurchaseCancelled", "generate_receipt",
    "LicenseVerifier",
    "ContentAccessGate", "InMemoryCatalog", "NodeDirectory", "NodeHeartbeat", "SwarmFallback",
    "FuegoRPCClient", "LedgerClient", "LocalWallet", "Wallet",
    "NetworkConfig", "ProtocolSettings",
    "encode_license_extra", "parse_license_extra", "sign_license", "verify_license_signature",
    "AccessGrant", "AccessInfo", "AccessResult", "EncryptedContentRecord", "LicenseOwnership",
    "LicenseRecord", "PaymentCode", "PurchaseResult", "PurchaseState", "ServingNode",
    "DigmError", "InvalidPaymentCode", "MalformedPaymentCode", "DerivationFailure",
    "InsufficientBalance", "InvalidPurchaseRequest", "SigningServiceError", "SigningTimeout",
    "BroadcastFailure", "NoValidLicense", "LicenseParseError", "SignatureInvalid",
    "NodeUnavailable", "NodeTimeout", "Timeout", "LedgerError", "ContentNotFound",
    "__version__",
]
