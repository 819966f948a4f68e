"""
Encoding and validation of reusable artist payment codes.

Wire format: ``PC`` + 2 hex digits version + 2 hex digits features +
64 hex digits public key + 64 hex digits chain code (134 characters).
"""
import logging
from typing import Union

from pydantic import ValidationError

from .exceptions import MalformedPaymentCode
from .models import (
    KEY_HEX_LENGTH, PAYMENT_CODE_LENGTH, PAYMENT_CODE_PREFIX,
    PaymentCode, StructureReport,
)
from .utils import is_hex, sha256_hex

logger = logging.getLogger(__name__)

_VERSION = slice(2, 4)
_FEATURES = slice(4, 6)
_PUBLIC_KEY = slice(6, 70)
_CHAIN_CODE = slice(70, 134)


def _as_hex(value: Union[bytes, str]) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return value


def encode(
    public_key: Union[bytes, str],
    chain_code: Union[bytes, str],
    version: int = 1,
    features: int = 0,
) -> PaymentCode:
    """
    Build a payment code from its fields.

    Args:
        public_key: 32-byte artist public key (raw bytes or hex)
        chain_code: 32-byte chain code (raw bytes or hex)
        version: Code version, 0-255
        features: Feature bits, 0-255

    Raises:
        MalformedPaymentCode: If any field is out of range or the wrong size
    """
    try:
        return PaymentCode(
            version=version,
            features=features,
            public_key=_as_hex(public_key),
            chain_code=_as_hex(chain_code),
        )
    except ValidationError as e:
        raise MalformedPaymentCode(f"Invalid payment code fields: {e.errors()[0]['msg']}") from e


def decode(serialized: str) -> PaymentCode:
    """
    Parse a serialized payment code.

    Raises:
        MalformedPaymentCode: If prefix, length or field checks fail
    """
    if not isinstance(serialized, str):
        raise MalformedPaymentCode("Payment code must be a string")
    if not serialized.startswith(PAYMENT_CODE_PREFIX):
        raise MalformedPaymentCode(f'Payment code must start with "{PAYMENT_CODE_PREFIX}"')
    if len(serialized) != PAYMENT_CODE_LENGTH:
        raise MalformedPaymentCode(
            f"Payment code must be {PAYMENT_CODE_LENGTH} characters, got {len(serialized)}"
        )
    header = serialized[2:6]
    if not is_hex(header, 4):
        raise MalformedPaymentCode("Payment code version/features are not hex")
    return encode(
        public_key=serialized[_PUBLIC_KEY],
        chain_code=serialized[_CHAIN_CODE],
        version=int(serialized[_VERSION], 16),
        features=int(serialized[_FEATURES], 16),
    )


def validate_structure(serialized: str) -> StructureReport:
    """
    Report every structural defect of a serialized payment code.

    Unlike decode() this never raises and does not stop at the first problem.
    """
    errors = []
    if not isinstance(serialized, str):
        return StructureReport(valid=False, errors=["Payment code must be a string"])

    if not serialized.startswith(PAYMENT_CODE_PREFIX):
        errors.append(f'Must start with "{PAYMENT_CODE_PREFIX}" prefix')
    if len(serialized) < PAYMENT_CODE_LENGTH:
        errors.append("Payment code too short")
    if len(serialized) > PAYMENT_CODE_LENGTH:
        errors.append("Payment code too long")

    version_field = serialized[_VERSION]
    if not is_hex(version_field, 2):
        errors.append("Invalid version")
    elif not 1 <= int(version_field, 16) <= 255:
        errors.append("Invalid version range")

    if not is_hex(serialized[_FEATURES], 2):
        errors.append("Invalid features")
    if not is_hex(serialized[_PUBLIC_KEY], KEY_HEX_LENGTH):
        errors.append("Invalid public key length")
    if not is_hex(serialized[_CHAIN_CODE], KEY_HEX_LENGTH):
        errors.append("Invalid chain code length")

    return StructureReport(valid=not errors, errors=errors)


def is_valid_payment_code(serialized: str) -> bool:
    try:
        decode(serialized)
        return True
    except MalformedPaymentCode:
        return False


def generate_artist_payment_code(artist_private_key: str, artist_public_key: str) -> PaymentCode:
    """Create an artist's payment code; the chain code is derived from the private key."""
    chain_code = sha256_hex(artist_private_key + "chain")
    logger.debug("Generated payment code for artist key %s…", artist_public_key[:8])
    return encode(artist_public_key, chain_code)


def format_for_display(serialized: str) -> str:
    if len(serialized) <= 20:
        return serialized
    return f"{serialized[:10]}...{serialized[-10:]}"
