"""
Exceptions for the DIGM SDK.
"""
from typing import Optional


class DigmError(Exception):
    """Base exception for all DIGM SDK errors."""

    code = "DIGM_ERROR"

    def __init__(self, message: str, *, context: Optional[dict] = None):
        self.context = context or {}
        super().__init__(message)


class InvalidPaymentCode(DigmError):
    """Raised when a payment code cannot be used for derivation."""

    code = "INVALID_PAYMENT_CODE"


class MalformedPaymentCode(InvalidPaymentCode):
    """Raised when a serialized payment code fails prefix, length or field checks."""

    code = "MALFORMED_PAYMENT_CODE"


class DerivationFailure(DigmError):
    """Raised when any step of payment address derivation fails."""

    code = "DERIVATION_FAILURE"


class InsufficientBalance(DigmError):
    """Raised when a buyer cannot cover price plus network fee."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, message: str, required: int = 0, available: int = 0):
        self.required = required
        self.available = available
        super().__init__(message, context={"required": required, "available": available})


class SigningServiceError(DigmError):
    """Raised when the artist signing service is unreachable or answers badly."""

    code = "SIGNING_SERVICE_ERROR"


class BroadcastFailure(DigmError):
    """Raised when the payment transaction could not be broadcast."""

    code = "BROADCAST_FAILURE"


class NoValidLicense(DigmError):
    """Raised when content is requested without a verified license."""

    code = "NO_VALID_LICENSE"


class LicenseParseError(DigmError):
    """Raised when transaction extra data does not decode to a license record."""

    code = "LICENSE_PARSE_ERROR"


class SignatureInvalid(DigmError):
    """Raised when an artist signature does not verify."""

    code = "SIGNATURE_INVALID"


class NodeUnavailable(DigmError):
    """Raised when a serving node cannot fulfil a request."""

    code = "NODE_UNAVAILABLE"


class Timeout(DigmError):
    """Raised when a remote call exceeds its time budget."""

    code = "TIMEOUT"


class LedgerError(DigmError):
    """Raised when the ledger RPC fails or returns malformed data."""

    code = "LEDGER_ERROR"


class SigningTimeout(SigningServiceError, Timeout):
    """Raised when the artist signing service does not answer in time."""

    code = Timeout.code


class NodeTimeout(NodeUnavailable, Timeout):
    """Raised when a serving node does not answer in time."""

    code = Timeout.code


class InvalidPurchaseRequest(DigmError):
    """Raised when purchase inputs such as album ID or price are invalid."""

    code = "INVALID_REQUEST"


class ContentNotFound(DigmError):
    """Raised when the catalog has no encrypted content record for a track."""

    code = "CONTENT_NOT_FOUND"
