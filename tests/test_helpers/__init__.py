"""
Shared helpers and constants for the DIGM SDK tests.
"""
from .ledger import FakeLedger, make_license

NOW = 1_700_000_000
SIGNING_URL = "https://sign.example.com"
NODE_URL = "https://node1.example.com"
TEST_ARTIST_PRIV_KEY = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"
TEST_BUYER_PRIV_KEY = "4ccd089b28ff96da9db6c346ec114e0f5b8a319f35aba624da8cf6ed4fb8a6fb"


class FakeClock:
    """Settable clock for TTL and expiry tests."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


__all__ = [
    "FakeLedger", "FakeClock", "make_license",
    "NOW", "SIGNING_URL", "NODE_URL", "TEST_ARTIST_PRIV_KEY", "TEST_BUYER_PRIV_KEY",
]
