"""
Utility functions for the DIGM SDK.
"""
import hashlib
import os
import re
import urllib.parse
from decimal import Decimal, InvalidOperation
from typing import Union

ATOMIC_UNITS = 1_000_000

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
_ALBUM_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def sha256_hex(data: Union[str, bytes]) -> str:
    """
    Calculate SHA-256 hash of data and return hex string.

    Strings are hashed as their UTF-8 encoding.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def is_hex(value: str, length: int = None) -> bool:
    """Check that value is a hex string, optionally of an exact length."""
    if not isinstance(value, str) or not _HEX_RE.match(value):
        return False
    return length is None or len(value) == length


def truncate(value: str, keep: int = 8) -> str:
    """Shorten keys and signatures for log output."""
    if not value or len(value) <= keep * 2:
        return value
    return f"{value[:keep]}…{value[-4:]}"


def to_atomic(amount: Union[int, float, str, Decimal]) -> int:
    """Convert a coin amount to atomic units, rounding down."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return int(value * ATOMIC_UNITS)


def format_atomic(atomic_amount: int) -> str:
    """Format atomic units as a coin amount with six decimals."""
    return f"{Decimal(atomic_amount) / ATOMIC_UNITS:.6f}"


def parse_amount(text: str) -> int:
    """
    Parse a user-entered coin amount into atomic units.

    Raises:
        ValueError: If the amount is not a positive number
    """
    try:
        value = Decimal(text.strip())
    except (InvalidOperation, AttributeError) as e:
        raise ValueError("Invalid XFG amount") from e
    if not value.is_finite() or value <= 0:
        raise ValueError("Invalid XFG amount")
    return int(value * ATOMIC_UNITS)


def is_valid_album_id(album_id: str) -> bool:
    """Album IDs are 1-64 characters of letters, digits, '_' and '-'."""
    return (
        isinstance(album_id, str)
        and 0 < len(album_id) <= 64
        and bool(_ALBUM_ID_RE.match(album_id))
    )


def validate_remote_url(name: str, url: str) -> str:
    """
    Require https for remote services.

    Plain http is accepted for localhost, 127.0.0.1, or when
    DIGM_ALLOW_INSECURE=1 is set.

    Returns:
        The URL without a trailing slash

    Raises:
        ValueError: If the URL is insecure
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.netloc.split(":")[0] if parsed.netloc else ""
    is_local = host in ("localhost", "127.0.0.1")
    allow_insecure = os.environ.get("DIGM_ALLOW_INSECURE") == "1"
    if parsed.scheme != "https" and not is_local and not allow_insecure:
        raise ValueError(f"{name} must use https:// for security (got: {parsed.scheme}://)")
    return url.rstrip("/")
