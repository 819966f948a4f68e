"""
One-time payment address derivation from artist payment codes.

Derivation runs in three steps:

1. ``shared = KeyAgreement(buyerPrivateKey, artistPublicKey)``
2. ``addressSecret = SHA256(shared || chainCode || be32hex(index))``
3. ``address = prefix + SHA256(artistPublicKey || addressSecret || hex(index))[:60]``

All values are hex strings and hashes are taken over their UTF-8 text, which
keeps addresses identical to the ones already derived for issued codes.
"""
import logging
from typing import List, Optional, Protocol, Union

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey

from .exceptions import DerivationFailure, InvalidPaymentCode, MalformedPaymentCode
from .models import AddressMatch, DerivedPaymentAddress, PaymentCode
from .payment_code import decode
from .utils import sha256_hex, truncate
from .wallet import Wallet, format_address

logger = logging.getLogger(__name__)

MAX_INDEX = 0xFFFFFFFF


class KeyAgreement(Protocol):
    """Computes the buyer/artist shared secret as 64 hex characters."""

    def shared_secret(self, buyer_private_key: str, artist_public_key: str) -> str:
        ...


class HashKeyAgreement:
    """
    SHA256(buyerPrivateKey || artistPublicKey).

    Not a real key agreement: the artist cannot compute it without the
    buyer's key. It is the scheme every issued payment code was used with.
    """

    def shared_secret(self, buyer_private_key: str, artist_public_key: str) -> str:
        return sha256_hex(buyer_private_key + artist_public_key)


class X25519KeyAgreement:
    """
    SHA256 of the X25519 shared point.

    Requires the payment code to carry an X25519 public key and the buyer
    wallet to expose a 32-byte private key.
    """

    def shared_secret(self, buyer_private_key: str, artist_public_key: str) -> str:
        private_key = X25519PrivateKey.from_private_bytes(bytes.fromhex(buyer_private_key))
        public_key = X25519PublicKey.from_public_bytes(bytes.fromhex(artist_public_key))
        return sha256_hex(private_key.exchange(public_key))


def derive_address_secret(shared_secret: str, chain_code: str, index: int) -> str:
    return sha256_hex(shared_secret + chain_code + f"{index:08x}")


def derive_address(
    artist_public_key: str, address_secret: str, index: int, prefix: str = "fuego"
) -> str:
    return format_address(sha256_hex(artist_public_key + address_secret + f"{index:x}"), prefix)


class AddressDeriver:
    """Derives unlinkable per-purchase addresses from an artist payment code."""

    def __init__(
        self,
        key_agreement: Optional[KeyAgreement] = None,
        address_prefix: str = "fuego",
        logger: Optional[logging.Logger] = None,
    ):
        self.key_agreement = key_agreement or HashKeyAgreement()
        self.address_prefix = address_prefix
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _parse(payment_code: Union[str, PaymentCode]) -> PaymentCode:
        if isinstance(payment_code, PaymentCode):
            return payment_code
        try:
            return decode(payment_code)
        except MalformedPaymentCode as e:
            raise InvalidPaymentCode(f"Invalid payment code: {e}") from e

    def _shared_secret(self, code: PaymentCode, buyer_wallet: Wallet) -> str:
        try:
            buyer_private_key = buyer_wallet.get_private_key()
            return self.key_agreement.shared_secret(buyer_private_key, code.public_key)
        except Exception as e:
            raise DerivationFailure(f"Failed to compute shared secret: {e}") from e

    def _at_index(self, code: PaymentCode, shared_secret: str, index: int) -> DerivedPaymentAddress:
        if not isinstance(index, int) or not 0 <= index <= MAX_INDEX:
            raise DerivationFailure(f"Derivation index out of range: {index!r}")
        try:
            address_secret = derive_address_secret(shared_secret, code.chain_code, index)
            address = derive_address(code.public_key, address_secret, index, self.address_prefix)
        except Exception as e:
            raise DerivationFailure(f"Failed to derive payment address: {e}") from e
        return DerivedPaymentAddress(address=address, index=index, shared_secret=shared_secret)

    def derive(
        self, payment_code: Union[str, PaymentCode], buyer_wallet: Wallet, index: int = 0
    ) -> DerivedPaymentAddress:
        """
        Derive the payment address, index and shared secret for one purchase.

        Raises:
            InvalidPaymentCode: If the payment code fails structural decode
            DerivationFailure: If any derivation step fails
        """
        code = self._parse(payment_code)
        derived = self._at_index(code, self._shared_secret(code, buyer_wallet), index)
        self.logger.debug(
            "Derived address %s at index %d for artist %s",
            truncate(derived.address), index, truncate(code.public_key),
        )
        return derived

    def derive_payment_address(
        self, payment_code: Union[str, PaymentCode], buyer_wallet: Wallet, index: int = 0
    ) -> str:
        """
        Derive a one-time payment address.

        The result depends only on the buyer key, the payment code and the
        index, so an artist holding the same inputs re-derives the same
        address.
        """
        return self.derive(payment_code, buyer_wallet, index).address

    def derive_multiple_addresses(
        self, payment_code: Union[str, PaymentCode], buyer_wallet: Wallet, count: int = 5
    ) -> List[DerivedPaymentAddress]:
        """
        Derive addresses for indices 0..count-1.

        An index that fails is logged and skipped; the rest are still returned.
        """
        code = self._parse(payment_code)
        try:
            shared_secret = self._shared_secret(code, buyer_wallet)
        except DerivationFailure as e:
            self.logger.warning("Failed to derive any address: %s", e)
            return []

        addresses = []
        for index in range(count):
            try:
                addresses.append(self._at_index(code, shared_secret, index))
            except DerivationFailure as e:
                self.logger.warning("Failed to derive address at index %d: %s", index, e)
        return addresses

    def validate_derived_address(
        self,
        candidate_address: str,
        payment_code: Union[str, PaymentCode],
        buyer_wallet: Wallet,
        max_index: int = 100,
    ) -> AddressMatch:
        """Search indices 0..max_index (inclusive) for one that yields candidate_address."""
        try:
            code = self._parse(payment_code)
            shared_secret = self._shared_secret(code, buyer_wallet)
        except (InvalidPaymentCode, DerivationFailure) as e:
            self.logger.debug("Cannot validate address %s: %s", truncate(candidate_address), e)
            return AddressMatch(valid=False)

        for index in range(min(max_index, MAX_INDEX) + 1):
            try:
                if self._at_index(code, shared_secret, index).address == candidate_address:
                    return AddressMatch(valid=True, index=index)
            except DerivationFailure:
                continue
        return AddressMatch(valid=False)

    def extract_artist_key(self, payment_code: Union[str, PaymentCode]) -> str:
        return self._parse(payment_code).public_key

    def create_notification_address(
        self, payment_code: Union[str, PaymentCode], buyer_public_key: str
    ) -> str:
        """Address an artist can watch to learn about new buyers."""
        code = self._parse(payment_code)
        digest = sha256_hex(code.public_key + buyer_public_key + "notification")
        return format_address(digest, self.address_prefix)
