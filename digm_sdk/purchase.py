"""
Album purchases with an embedded, artist-signed license.

A purchase walks through VALIDATING -> DERIVING_ADDRESS ->
AWAITING_ARTIST_SIGNATURE -> BROADCASTING and ends COMPLETED or FAILED.
Broadcast is the last step and the only one with an effect on the ledger:
a purchase abandoned or failed before it leaves nothing behind, and once it
has been broadcast it cannot be cancelled. Purchases are not idempotent;
calling purchase_album twice pays twice.
"""
import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Union

import requests
from pydantic import ValidationError

from .config import ProtocolSettings
from .derivation import AddressDeriver
from .exceptions import (
    BroadcastFailure, DigmError, InsufficientBalance, InvalidPaymentCode,
    InvalidPurchaseRequest, SignatureInvalid, SigningServiceError, SigningTimeout,
)
from .ledger import LedgerClient
from .license import encode_license_extra, verify_license_signature
from .models import (
    LICENSE_VERSION, LicenseRecord, OwnershipCheck, PurchaseQuote, PurchaseResult,
    PurchaseState, SigningRequest, SigningResponse, ValidationResult,
)
from .payment_code import decode, validate_structure
from .utils import ATOMIC_UNITS, format_atomic, to_atomic, truncate, validate_remote_url
from .verifier import LicenseVerifier
from .wallet import Wallet

logger = logging.getLogger(__name__)


@dataclass
class PurchaseRequest:
    """
    A buyer's request to purchase an album.

    Attributes:
        album_id: Album being purchased
        artist_payment_code: Artist's serialized payment code
        price: Price in whole coins (XFG)
        buyer_wallet: Wallet that pays and holds the buyer key
        artist_signing_service: Signing service URL overriding the default
        address_index: Derivation index; callers tracking earlier purchases
            from the same artist pass the next unused index
    """
    album_id: str
    artist_payment_code: str
    price: Union[float, Decimal, str]
    buyer_wallet: Wallet
    artist_signing_service: Optional[str] = None
    address_index: int = 0


class PurchaseCancelled(DigmError):
    """Raised when the caller abandons a purchase before broadcast."""

    code = "CANCELLED"


class LicenseManager:
    """
    Orchestrates album purchases.

    Args:
        ledger: Ledger RPC client used for balance checks
        verifier: License verifier for ownership checks; created on demand
        deriver: Payment address deriver
        default_signing_service: Signing service URL used when a request
            has none and no per-album service is registered
        settings: Protocol settings (fee, price ceiling, timeouts)
        clock: Returns the current unix time
        session: requests session for the signing service
        logger: Optional logger instance
    """

    def __init__(
        self,
        ledger: LedgerClient,
        verifier: Optional[LicenseVerifier] = None,
        deriver: Optional[AddressDeriver] = None,
        default_signing_service: Optional[str] = None,
        settings: Optional[ProtocolSettings] = None,
        clock: Callable[[], float] = time.time,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.settings = settings or ProtocolSettings.from_env()
        self.verifier = verifier
        self.deriver = deriver or AddressDeriver()
        self.clock = clock
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)
        self.default_signing_service: Optional[str] = None
        self._album_signing_services: Dict[str, str] = {}
        if default_signing_service:
            self.set_default_signing_service(default_signing_service)

    # -- signing service configuration ------------------------------------

    def set_default_signing_service(self, service_url: str) -> None:
        self.default_signing_service = validate_remote_url("signing service", service_url)

    def register_artist_signing_service(self, album_id: str, service_url: str) -> None:
        """Route signing for one album to an artist-run service."""
        self._album_signing_services[album_id] = validate_remote_url("signing service", service_url)

    def get_artist_signing_service(self, album_id: str) -> Optional[str]:
        return self._album_signing_services.get(album_id, self.default_signing_service)

    # -- quotes and validation --------------------------------------------

    def get_purchase_quote(self, price: Union[float, Decimal, str]) -> PurchaseQuote:
        base_atomic = to_atomic(price)
        fee_atomic = self.settings.network_fee_atomic
        return PurchaseQuote(
            base_price=base_atomic / ATOMIC_UNITS,
            network_fee=fee_atomic / ATOMIC_UNITS,
            total_cost=(base_atomic + fee_atomic) / ATOMIC_UNITS,
            currency=self.settings.currency,
        )

    def validate_purchase_request(self, request: PurchaseRequest) -> ValidationResult:
        """
        Check whether a purchase could go ahead.

        Returns the first failing check rather than all of them.
        """
        if not request.album_id:
            return ValidationResult(valid=False, error="Invalid album ID")

        if not request.artist_payment_code:
            return ValidationResult(valid=False, error="Invalid artist payment code")
        report = validate_structure(request.artist_payment_code)
        if not report.valid:
            return ValidationResult(
                valid=False, error=f"Invalid artist payment code: {'; '.join(report.errors)}"
            )

        try:
            amount = to_atomic(request.price)
        except ValueError:
            return ValidationResult(valid=False, error="Invalid price")
        if amount <= 0 or amount > to_atomic(self.settings.max_price):
            return ValidationResult(valid=False, error="Invalid price")

        wallet = request.buyer_wallet
        try:
            if wallet is None or not wallet.is_connected():
                return ValidationResult(valid=False, error="Wallet not connected")
            balance = self.ledger.get_balance(wallet.get_address())
        except Exception as e:
            self.logger.warning("Purchase validation could not read balance: %s", e)
            return ValidationResult(valid=False, error=f"Validation error: {e}")

        fee = self.settings.network_fee_atomic
        if balance.primary_coin < amount + fee:
            return ValidationResult(
                valid=False,
                error=(
                    f"Insufficient balance. Need {format_atomic(amount + fee)} "
                    f"{self.settings.currency}, have {format_atomic(balance.primary_coin)} "
                    f"{self.settings.currency}"
                ),
            )

        try:
            self.deriver.derive_payment_address(
                request.artist_payment_code, wallet, request.address_index
            )
        except DigmError:
            return ValidationResult(valid=False, error="Invalid artist payment code format")

        return ValidationResult(valid=True, estimated_fee=fee / ATOMIC_UNITS)

    # -- purchase -----------------------------------------------------------

    def purchase_album(
        self, request: PurchaseRequest, cancel: Optional[threading.Event] = None
    ) -> PurchaseResult:
        """
        Pay for an album and embed the signed license in the payment.

        Args:
            request: Purchase request
            cancel: Optional event; if set before broadcast the purchase is
                abandoned with no ledger effect. Setting it after broadcast
                has no effect.

        Returns:
            PurchaseResult carrying the transaction hash and license on
            success, or the error, its code and the state reached on failure
        """
        state = PurchaseState.VALIDATING
        address = None
        try:
            if not request.album_id:
                raise InvalidPurchaseRequest("Invalid album ID")
            code = self._parse_code(request.artist_payment_code)
            amount = self._parse_price(request.price)

            wallet = request.buyer_wallet
            if wallet is None or not wallet.is_connected():
                raise InvalidPurchaseRequest("Wallet not connected")
            self._check_balance(wallet, amount)
            self._check_cancelled(cancel)

            state = PurchaseState.DERIVING_ADDRESS
            address = self.deriver.derive_payment_address(code, wallet, request.address_index)
            signing_request = SigningRequest(
                album_id=request.album_id,
                buyer_key=wallet.get_public_key(),
                purchase_amount=amount,
                timestamp=int(self.clock()),
                version=LICENSE_VERSION,
            )
            self._check_cancelled(cancel)

            state = PurchaseState.AWAITING_ARTIST_SIGNATURE
            service_url = request.artist_signing_service or self.get_artist_signing_service(request.album_id)
            signed = self.request_artist_signature(signing_request, service_url)
            record = self._assemble_license(signing_request, signed)
            self._check_cancelled(cancel)

            state = PurchaseState.BROADCASTING
            tx_hash = self._broadcast(wallet, address, amount, record)
        except DigmError as e:
            self.logger.error("Album purchase failed at %s: %s", state.value, e)
            return PurchaseResult(
                success=False,
                error=str(e),
                error_code=e.code,
                state=PurchaseState.FAILED,
                failed_at=state,
                payment_address=address,
            )

        if self.verifier is not None:
            self.verifier.invalidate(record.buyer_key)
        self.logger.info(
            "Purchased album %s for %s %s in tx %s",
            record.album_id, format_atomic(amount), self.settings.currency, tx_hash,
        )
        return PurchaseResult(
            success=True,
            tx_hash=tx_hash,
            license_data=record,
            state=PurchaseState.COMPLETED,
            payment_address=address,
        )

    @staticmethod
    def _parse_code(serialized: str):
        try:
            return decode(serialized)
        except InvalidPaymentCode as e:
            raise InvalidPaymentCode(f"Invalid artist payment code: {e}") from e

    @staticmethod
    def _parse_price(price) -> int:
        try:
            amount = to_atomic(price)
        except ValueError as e:
            raise InvalidPurchaseRequest("Invalid price") from e
        if amount <= 0:
            raise InvalidPurchaseRequest("Invalid price")
        return amount

    @staticmethod
    def _check_cancelled(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise PurchaseCancelled("Purchase cancelled before broadcast")

    def _check_balance(self, wallet: Wallet, amount: int) -> None:
        required = amount + self.settings.network_fee_atomic
        balance = self.ledger.get_balance(wallet.get_address())
        if balance.primary_coin < required:
            raise InsufficientBalance(
                f"Insufficient {self.settings.currency} balance for purchase",
                required=required,
                available=balance.primary_coin,
            )

    def _assemble_license(self, signing_request: SigningRequest, signed: SigningResponse) -> LicenseRecord:
        record = LicenseRecord(
            album_id=signing_request.album_id,
            buyer_key=signing_request.buyer_key,
            purchase_amount=signing_request.purchase_amount,
            timestamp=signing_request.timestamp,
            artist_key=signed.artist_key,
            artist_signature=signed.signature,
            version=signing_request.version,
        )
        try:
            verify_license_signature(record)
        except SignatureInvalid as e:
            raise SigningServiceError(f"Signing service returned an invalid signature: {e}") from e
        return record

    def _broadcast(self, wallet: Wallet, address: str, amount: int, record: LicenseRecord) -> str:
        try:
            transaction = wallet.create_transaction(
                to=address, amount=amount, extra=encode_license_extra(record)
            )
            tx_hash = wallet.send_transaction(transaction)
        except Exception as e:
            raise BroadcastFailure(f"Broadcast failed: {e}") from e
        if not tx_hash:
            raise BroadcastFailure("Wallet returned no transaction hash")
        return tx_hash

    def request_artist_signature(
        self, signing_request: SigningRequest, service_url: Optional[str] = None
    ) -> SigningResponse:
        """
        Ask the artist signing service to co-sign a license.

        Only the five payload fields are sent.

        Raises:
            SigningTimeout: If the service does not answer within signing_timeout
            SigningServiceError: If no service is configured, the call fails
                or the reply lacks a signature or artist key
        """
        service_url = service_url or self.default_signing_service
        if not service_url:
            raise SigningServiceError("No artist signing service configured")
        service_url = validate_remote_url("signing service", service_url)

        self.logger.debug(
            "Requesting artist signature for album %s buyer %s",
            signing_request.album_id, truncate(signing_request.buyer_key),
        )
        try:
            response = self.session.post(
                f"{service_url}/sign-license",
                json=signing_request.model_dump(by_alias=True),
                headers={"Accept": "application/json"},
                timeout=self.settings.signing_timeout,
            )
            response.raise_for_status()
            body: Any = response.json()
        except requests.Timeout as e:
            raise SigningTimeout(
                f"Signing service timed out after {self.settings.signing_timeout}s"
            ) from e
        except requests.HTTPError as e:
            raise SigningServiceError(f"Signing service error: {e.response.status_code}") from e
        except requests.RequestException as e:
            raise SigningServiceError(f"Signing service unreachable: {e}") from e
        except ValueError as e:
            raise SigningServiceError(f"Invalid JSON from signing service: {e}") from e

        try:
            signed = SigningResponse.model_validate(body)
        except ValidationError as e:
            raise SigningServiceError(f"Invalid response from signing service: {e}") from e
        if signed.error:
            raise SigningServiceError(f"Signing service refused: {signed.error}")
        if not signed.signature or not signed.artist_key:
            raise SigningServiceError("Invalid response from signing service")
        return signed

    # -- ownership ----------------------------------------------------------

    def check_existing_ownership(self, album_id: str, buyer_key: str) -> OwnershipCheck:
        """
        Advisory duplicate-purchase check.

        Nothing on the ledger prevents buying the same album twice.
        """
        if self.verifier is None:
            self.verifier = LicenseVerifier(self.ledger, self.settings, clock=self.clock)
        try:
            details = self.verifier.get_license_details(buyer_key, album_id)
        except Exception as e:
            self.logger.error("Error checking existing ownership: %s", e)
            return OwnershipCheck(already_owned=False)
        if details is None:
            return OwnershipCheck(already_owned=False)
        return OwnershipCheck(
            already_owned=True, purchase_date=details.timestamp, tx_hash=details.tx_hash
        )


def generate_receipt(result: PurchaseResult, request: PurchaseRequest) -> Dict[str, Any]:
    """Summary of a purchase attempt for display or bookkeeping."""
    return {
        "albumId": request.album_id,
        "price": str(request.price),
        "txHash": result.tx_hash,
        "timestamp": result.license_data.timestamp if result.license_data else None,
        "success": result.success,
        "error": result.error,
        "purchaseDate": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    }
