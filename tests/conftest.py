"""
Pytest fixtures for the DIGM SDK tests.
"""
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from digm_sdk._rate_limited_log import reset_rate_limits
from digm_sdk.config import ProtocolSettings
from digm_sdk.derivation import AddressDeriver
from digm_sdk.license import public_key_hex, sign_license
from digm_sdk.models import Balance, SigningRequest
from digm_sdk.payment_code import generate_artist_payment_code
from digm_sdk.purchase import LicenseManager
from digm_sdk.verifier import LicenseVerifier
from digm_sdk.wallet import LocalWallet

from tests.test_helpers import (
    FakeClock, FakeLedger, SIGNING_URL, TEST_ARTIST_PRIV_KEY, TEST_BUYER_PRIV_KEY,
)


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    """Rate-limited warnings must not leak between tests."""
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return ProtocolSettings()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def artist_key():
    return Ed25519PrivateKey.from_private_bytes(bytes.fromhex(TEST_ARTIST_PRIV_KEY))


@pytest.fixture
def artist_code(artist_key):
    """Serialized payment code published by the test artist."""
    return generate_artist_payment_code(TEST_ARTIST_PRIV_KEY, public_key_hex(artist_key)).encoded


@pytest.fixture
def buyer_wallet(ledger):
    """Connected wallet holding 10 XFG."""
    wallet = LocalWallet.from_hex(TEST_BUYER_PRIV_KEY, ledger=ledger)
    ledger.balances[wallet.get_address()] = Balance(primary_coin=10_000_000)
    return wallet


@pytest.fixture
def deriver():
    return AddressDeriver()


@pytest.fixture
def verifier(ledger, settings, clock):
    return LicenseVerifier(ledger, settings, clock=clock)


@pytest.fixture
def signing_service(requests_mock, artist_key):
    """Artist signing service that signs whatever it is sent."""
    def _sign(request, context):
        body = request.json()
        return sign_license(artist_key, SigningRequest.model_validate(body)).model_dump(by_alias=True)

    return requests_mock.post(f"{SIGNING_URL}/sign-license", json=_sign)


@pytest.fixture
def manager(ledger, verifier, deriver, settings, clock):
    return LicenseManager(
        ledger,
        verifier=verifier,
        deriver=deriver,
        default_signing_service=SIGNING_URL,
        settings=settings,
        clock=clock,
    )
