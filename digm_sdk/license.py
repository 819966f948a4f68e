"""
License records: signing, verification and the 0x0B transaction extra codec.

A license travels in the transaction extra field as::

    0x0B | varint(length) | UTF-8 JSON object with the seven record fields

The extra field may also carry the standard padding (0x00), transaction
public key (0x01) and nonce (0x02) entries, which are skipped.
"""
import json
import logging
import time
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .exceptions import LicenseParseError, SignatureInvalid
from .models import (
    LICENSE_VERSION, LicenseRecord, SigningRequest, SigningResponse,
    canonical_license_payload,
)

logger = logging.getLogger(__name__)

TAG_PADDING = 0x00
TAG_PUBKEY = 0x01
TAG_NONCE = 0x02
TAG_ALBUM_LICENSE = 0x0B

_PUBKEY_SIZE = 32


def _write_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _read_varint(data: bytes, offset: int) -> Tuple[int, int]:
    value = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise LicenseParseError("Truncated varint in transaction extra")
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset
        shift += 7
        if shift > 63:
            raise LicenseParseError("Varint too long in transaction extra")


def encode_license_extra(record: LicenseRecord) -> str:
    """Serialize a signed license as hex transaction extra data."""
    body = json.dumps(record.to_wire(), sort_keys=True, separators=(",", ":")).encode("utf-8")
    return (bytes([TAG_ALBUM_LICENSE]) + _write_varint(len(body)) + body).hex()


def parse_license_extra(extra: str) -> LicenseRecord:
    """
    Find and decode the license entry of a transaction extra field.

    Raises:
        LicenseParseError: If there is no license entry or it does not
            decode to all seven record fields
    """
    try:
        data = bytes.fromhex(extra)
    except (TypeError, ValueError) as e:
        raise LicenseParseError(f"Transaction extra is not hex: {e}") from e

    offset = 0
    while offset < len(data):
        tag = data[offset]
        offset += 1
        if tag == TAG_PADDING:
            continue
        if tag == TAG_PUBKEY:
            offset += _PUBKEY_SIZE
            continue
        if tag == TAG_NONCE:
            length, offset = _read_varint(data, offset)
            offset += length
            continue
        if tag != TAG_ALBUM_LICENSE:
            raise LicenseParseError(f"Unknown transaction extra tag 0x{tag:02x}")

        length, offset = _read_varint(data, offset)
        body = data[offset:offset + length]
        if len(body) != length:
            raise LicenseParseError("Truncated license payload")
        try:
            return LicenseRecord.model_validate(json.loads(body.decode("utf-8")))
        except (UnicodeDecodeError, ValueError) as e:
            # ValidationError is a ValueError
            raise LicenseParseError(f"Invalid license payload: {e}") from e

    raise LicenseParseError("No album license entry in transaction extra")


def public_key_hex(private_key: Ed25519PrivateKey) -> str:
    return private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def sign_license(private_key: Ed25519PrivateKey, request: SigningRequest) -> SigningResponse:
    """
    Sign a license request the way an artist signing service does.

    Returns:
        SigningResponse with hex signature and hex artist key
    """
    payload = canonical_license_payload(
        request.album_id, request.buyer_key, request.purchase_amount,
        request.timestamp, request.version,
    )
    signature = private_key.sign(payload.encode("utf-8"))
    return SigningResponse(signature=signature.hex(), artist_key=public_key_hex(private_key))


def verify_license_signature(record: LicenseRecord) -> None:
    """
    Check the artist signature over the canonical payload.

    Raises:
        SignatureInvalid: If the key or signature is malformed or does not verify
    """
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(record.artist_key))
        signature = bytes.fromhex(record.artist_signature)
    except ValueError as e:
        raise SignatureInvalid(f"Malformed artist key or signature: {e}") from e
    try:
        public_key.verify(signature, record.canonical_payload().encode("utf-8"))
    except InvalidSignature as e:
        raise SignatureInvalid(f"Artist signature does not verify for album {record.album_id}") from e


def validate_license(
    record: LicenseRecord,
    now: Optional[float] = None,
    future_skew: int = 300,
    max_age: int = 86_400 * 365,
) -> None:
    """
    Enforce record constraints other than the signature.

    Args:
        record: License to check
        now: Current unix time (defaults to time.time())
        future_skew: Seconds a timestamp may lie in the future
        max_age: Maximum age in seconds; 0 disables the check

    Raises:
        LicenseParseError: On an unsupported version, non-positive amount or
            out-of-range timestamp
    """
    now = time.time() if now is None else now
    if record.version != LICENSE_VERSION:
        raise LicenseParseError(f"Unsupported license version {record.version}")
    if record.purchase_amount <= 0:
        raise LicenseParseError("License purchase amount must be positive")
    if record.timestamp > now + future_skew:
        raise LicenseParseError("License timestamp is in the future")
    if max_age and record.timestamp < now - max_age:
        raise LicenseParseError("License is older than the maximum accepted age")
