"""
Tests for album purchases through the LicenseManager.
"""
import threading
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from digm_sdk.exceptions import LedgerError, SigningServiceError
from digm_sdk.license import parse_license_extra, public_key_hex, sign_license
from digm_sdk.models import Balance, PurchaseState, SigningRequest
from digm_sdk.purchase import LicenseManager, PurchaseRequest, generate_receipt
from digm_sdk.wallet import LocalWallet

from tests.test_helpers import NOW, SIGNING_URL


@pytest.fixture
def request_a1(artist_code, buyer_wallet):
    return PurchaseRequest(
        album_id="A1", artist_payment_code=artist_code, price="0.1", buyer_wallet=buyer_wallet
    )


class TestValidatePurchaseRequest:
    """Pre-flight checks."""

    def test_valid_request(self, manager, request_a1):
        result = manager.validate_purchase_request(request_a1)
        assert result.valid
        assert result.error is None
        assert result.estimated_fee == pytest.approx(0.008)

    def test_missing_album(self, manager, request_a1):
        request_a1.album_id = ""
        assert manager.validate_purchase_request(request_a1).error == "Invalid album ID"

    def test_bad_payment_code_lists_defects(self, manager, request_a1):
        request_a1.artist_payment_code = "PC01"
        error = manager.validate_purchase_request(request_a1).error
        assert error.startswith("Invalid artist payment code:")
        assert "too short" in error

    @pytest.mark.parametrize("price", [0, -1, "abc", 1000.01, "inf", "Infinity", float("inf"), "NaN"])
    def test_invalid_price(self, manager, request_a1, price):
        request_a1.price = price
        assert manager.validate_purchase_request(request_a1).error == "Invalid price"

    def test_wallet_not_connected(self, manager, request_a1):
        request_a1.buyer_wallet = LocalWallet(Ed25519PrivateKey.generate())
        assert manager.validate_purchase_request(request_a1).error == "Wallet not connected"

    def test_insufficient_balance_message(self, manager, request_a1):
        request_a1.price = 20
        error = manager.validate_purchase_request(request_a1).error
        assert error == "Insufficient balance. Need 20.008000 XFG, have 10.000000 XFG"

    def test_balance_lookup_failure(self, manager, ledger, request_a1):
        ledger.fail_with = LedgerError("node down")
        result = manager.validate_purchase_request(request_a1)
        assert not result.valid
        assert "node down" in result.error


def test_purchase_quote(manager):
    quote = manager.get_purchase_quote(Decimal("0.1"))
    assert quote.base_price == pytest.approx(0.1)
    assert quote.network_fee == pytest.approx(0.008)
    assert quote.total_cost == pytest.approx(0.108)
    assert quote.currency == "XFG"


class TestPurchaseAlbum:
    """The purchase pipeline."""

    def test_successful_purchase(self, manager, ledger, deriver, signing_service, request_a1, artist_key):
        result = manager.purchase_album(request_a1)

        assert result.success
        assert result.state == PurchaseState.COMPLETED
        assert result.failed_at is None
        assert result.tx_hash

        record = result.license_data
        assert record.album_id == "A1"
        assert record.purchase_amount == 100_000
        assert record.timestamp == NOW
        assert record.buyer_key == request_a1.buyer_wallet.get_public_key()
        assert record.artist_key == public_key_hex(artist_key)

        sent = ledger.broadcasts[0]
        expected_address = deriver.derive_payment_address(request_a1.artist_payment_code, request_a1.buyer_wallet)
        assert sent["to"] == expected_address == result.payment_address
        assert sent["amount"] == 100_000
        assert parse_license_extra(sent["extra"]) == record

    def test_signing_service_receives_only_payload_fields(self, manager, signing_service, request_a1):
        manager.purchase_album(request_a1)
        body = signing_service.last_request.json()
        assert set(body) == {"albumId", "buyerKey", "purchaseAmount", "timestamp", "version"}
        assert body["purchaseAmount"] == 100_000
        assert body["version"] == 1
        assert signing_service.last_request.timeout == 10

    def test_license_visible_after_purchase(self, manager, verifier, signing_service, request_a1):
        buyer_key = request_a1.buyer_wallet.get_public_key()
        assert not verifier.has_license(buyer_key, "A1")

        result = manager.purchase_album(request_a1)

        assert verifier.has_license(buyer_key, "A1")
        assert verifier.get_license_details(buyer_key, "A1").tx_hash == result.tx_hash

    def test_purchases_are_not_idempotent(self, manager, ledger, signing_service, request_a1):
        first = manager.purchase_album(request_a1)
        second = manager.purchase_album(request_a1)
        assert first.tx_hash != second.tx_hash
        assert len(ledger.broadcasts) == 2

    def test_insufficient_balance(self, manager, ledger, signing_service, request_a1):
        ledger.balances[request_a1.buyer_wallet.get_address()] = Balance(primary_coin=100_000)

        result = manager.purchase_album(request_a1)

        assert not result.success
        assert result.state == PurchaseState.FAILED
        assert result.failed_at == PurchaseState.VALIDATING
        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert signing_service.call_count == 0
        assert ledger.broadcasts == []

    def test_invalid_payment_code(self, manager, ledger, request_a1):
        request_a1.artist_payment_code = "P" * 100
        result = manager.purchase_album(request_a1)
        assert result.error_code == "INVALID_PAYMENT_CODE"
        assert result.payment_address is None
        assert ledger.broadcasts == []

    @pytest.mark.parametrize("price", [0, "free", "inf", float("inf"), float("nan"), "NaN"])
    def test_invalid_price(self, manager, request_a1, price):
        request_a1.price = price
        result = manager.purchase_album(request_a1)
        assert result.error_code == "INVALID_REQUEST"
        assert result.error == "Invalid price"

    @pytest.mark.parametrize("wallet", [None, LocalWallet(Ed25519PrivateKey.generate())])
    def test_wallet_not_connected(self, manager, ledger, signing_service, request_a1, wallet):
        request_a1.buyer_wallet = wallet

        result = manager.purchase_album(request_a1)

        assert result.error_code == "INVALID_REQUEST"
        assert result.error == "Wallet not connected"
        assert result.failed_at == PurchaseState.VALIDATING
        assert signing_service.call_count == 0
        assert ledger.broadcasts == []

    def test_signing_timeout(self, manager, ledger, requests_mock, request_a1):
        requests_mock.post(f"{SIGNING_URL}/sign-license", exc=requests.exceptions.ConnectTimeout)

        result = manager.purchase_album(request_a1)

        assert result.error_code == "TIMEOUT"
        assert result.failed_at == PurchaseState.AWAITING_ARTIST_SIGNATURE
        assert result.payment_address is not None
        assert ledger.broadcasts == []

    def test_signing_service_http_error(self, manager, ledger, requests_mock, request_a1):
        requests_mock.post(f"{SIGNING_URL}/sign-license", status_code=500)
        result = manager.purchase_album(request_a1)
        assert result.error_code == "SIGNING_SERVICE_ERROR"
        assert "500" in result.error
        assert ledger.broadcasts == []

    def test_signing_service_refusal(self, manager, requests_mock, request_a1):
        requests_mock.post(f"{SIGNING_URL}/sign-license", json={"error": "album not for sale"})
        result = manager.purchase_album(request_a1)
        assert result.error_code == "SIGNING_SERVICE_ERROR"
        assert "album not for sale" in result.error

    def test_bad_signature_never_broadcast(self, manager, ledger, requests_mock, request_a1, artist_key):
        requests_mock.post(
            f"{SIGNING_URL}/sign-license",
            json={"signature": "00" * 64, "artistKey": public_key_hex(artist_key)},
        )
        result = manager.purchase_album(request_a1)
        assert result.error_code == "SIGNING_SERVICE_ERROR"
        assert "invalid signature" in result.error
        assert ledger.broadcasts == []

    def test_no_signing_service_configured(self, ledger, verifier, clock, request_a1):
        manager = LicenseManager(ledger, verifier=verifier, clock=clock)
        result = manager.purchase_album(request_a1)
        assert result.error_code == "SIGNING_SERVICE_ERROR"
        assert "No artist signing service" in result.error

    def test_broadcast_failure(self, manager, ledger, signing_service, request_a1):
        ledger.broadcast_transaction = MagicMock(side_effect=LedgerError("rejected"))
        result = manager.purchase_album(request_a1)
        assert result.error_code == "BROADCAST_FAILURE"
        assert result.failed_at == PurchaseState.BROADCASTING
        assert "rejected" in result.error

    def test_cancel_before_start(self, manager, ledger, signing_service, request_a1):
        cancel = threading.Event()
        cancel.set()
        result = manager.purchase_album(request_a1, cancel=cancel)
        assert result.error_code == "CANCELLED"
        assert signing_service.call_count == 0
        assert ledger.broadcasts == []

    def test_cancel_while_awaiting_signature(self, manager, ledger, requests_mock, artist_key, request_a1):
        cancel = threading.Event()

        def _sign_then_cancel(request, context):
            cancel.set()
            return sign_license(artist_key, SigningRequest.model_validate(request.json())).model_dump(by_alias=True)

        requests_mock.post(f"{SIGNING_URL}/sign-license", json=_sign_then_cancel)

        result = manager.purchase_album(request_a1, cancel=cancel)

        assert result.error_code == "CANCELLED"
        assert result.failed_at == PurchaseState.AWAITING_ARTIST_SIGNATURE
        assert ledger.broadcasts == []


class TestSigningServiceRouting:
    """Default, per-album and per-request signing services."""

    def test_per_album_service(self, manager, requests_mock, signing_service, artist_key, request_a1):
        artist_service = requests_mock.post(
            "https://artist.example.com/sign-license",
            json=lambda request, context: sign_license(
                artist_key, SigningRequest.model_validate(request.json())
            ).model_dump(by_alias=True),
        )
        manager.register_artist_signing_service("A1", "https://artist.example.com/")

        assert manager.get_artist_signing_service("A1") == "https://artist.example.com"
        assert manager.get_artist_signing_service("A2") == SIGNING_URL
        assert manager.purchase_album(request_a1).success
        assert artist_service.call_count == 1
        assert signing_service.call_count == 0

    def test_request_override(self, manager, requests_mock, request_a1):
        override = requests_mock.post("https://own.example.com/sign-license", status_code=503)
        request_a1.artist_signing_service = "https://own.example.com"
        manager.purchase_album(request_a1)
        assert override.call_count == 1

    def test_insecure_service_rejected(self, manager):
        with pytest.raises(ValueError, match="https"):
            manager.set_default_signing_service("http://sign.example.com")

    def test_localhost_service_allowed(self, manager):
        manager.set_default_signing_service("http://localhost:8080/")
        assert manager.default_signing_service == "http://localhost:8080"

    def test_request_artist_signature_directly(self, manager, signing_service):
        signing_request = SigningRequest(album_id="A1", buyer_key="bb" * 32, purchase_amount=1, timestamp=NOW)
        response = manager.request_artist_signature(signing_request)
        assert response.signature

    def test_request_artist_signature_invalid_json(self, manager, requests_mock):
        requests_mock.post(f"{SIGNING_URL}/sign-license", text="not json")
        signing_request = SigningRequest(album_id="A1", buyer_key="bb" * 32, purchase_amount=1, timestamp=NOW)
        with pytest.raises(SigningServiceError):
            manager.request_artist_signature(signing_request)


class TestOwnership:
    """Advisory duplicate-purchase check and receipts."""

    def test_not_owned(self, manager, buyer_wallet):
        check = manager.check_existing_ownership("A1", buyer_wallet.get_public_key())
        assert not check.already_owned
        assert check.tx_hash is None

    def test_owned_after_purchase(self, manager, signing_service, request_a1):
        result = manager.purchase_album(request_a1)
        check = manager.check_existing_ownership("A1", request_a1.buyer_wallet.get_public_key())
        assert check.already_owned
        assert check.tx_hash == result.tx_hash
        assert check.purchase_date == NOW

    def test_creates_verifier_on_demand(self, ledger, clock, buyer_wallet):
        manager = LicenseManager(ledger, clock=clock)
        assert not manager.check_existing_ownership("A1", buyer_wallet.get_public_key()).already_owned
        assert manager.verifier is not None

    def test_receipt(self, manager, signing_service, request_a1):
        result = manager.purchase_album(request_a1)
        receipt = generate_receipt(result, request_a1)
        assert receipt["albumId"] == "A1"
        assert receipt["price"] == "0.1"
        assert receipt["txHash"] == result.tx_hash
        assert receipt["timestamp"] == NOW
        assert receipt["success"] is True
        assert receipt["error"] is None
