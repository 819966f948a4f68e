#!/usr/bin/env python3
"""
Buy an album and check the resulting license with the DIGM SDK.
"""
import logging
import os

from digm_sdk import (
    FuegoRPCClient, LicenseManager, LicenseVerifier, LocalWallet, NetworkConfig, PurchaseRequest,
    generate_receipt,
)


def main():
    """
    Demonstrate a purchase end to end.

    This example shows how to:
    1. Connect to a Fuego node and load a buyer wallet
    2. Validate and quote a purchase
    3. Purchase the album and verify the embedded license
    """
    logging.basicConfig(level=logging.INFO)

    network = os.environ.get("DIGM_NETWORK", "fuego-testnet")
    private_key = os.environ.get("BUYER_PRIVATE_KEY")
    payment_code = os.environ.get("ARTIST_PAYMENT_CODE")
    album_id = os.environ.get("ALBUM_ID", "demo-album")

    if not private_key:
        print("ERROR: BUYER_PRIVATE_KEY environment variable is required")
        return
    if not payment_code:
        print("ERROR: ARTIST_PAYMENT_CODE environment variable is required")
        return

    ledger = FuegoRPCClient(NetworkConfig.get_rpc_url(network))
    wallet = LocalWallet.from_hex(
        private_key, ledger=ledger, address_prefix=NetworkConfig.get_address_prefix(network)
    )
    verifier = LicenseVerifier(ledger, address_for_key=lambda key: wallet.get_address())
    manager = LicenseManager(
        ledger,
        verifier=verifier,
        default_signing_service=NetworkConfig.get_signing_service(network),
    )

    request = PurchaseRequest(
        album_id=album_id,
        artist_payment_code=payment_code,
        price=os.environ.get("ALBUM_PRICE", "0.1"),
        buyer_wallet=wallet,
    )

    ownership = manager.check_existing_ownership(album_id, wallet.get_public_key())
    if ownership.already_owned:
        print(f"Album already owned (tx {ownership.tx_hash})")
        return

    validation = manager.validate_purchase_request(request)
    if not validation.valid:
        print(f"Cannot purchase: {validation.error}")
        return

    quote = manager.get_purchase_quote(request.price)
    print(f"Total cost: {quote.total_cost:.6f} {quote.currency} (fee {quote.network_fee:.6f})")

    result = manager.purchase_album(request)
    print(generate_receipt(result, request))
    if result.success:
        print(f"License verified: {verifier.has_license(wallet.get_public_key(), album_id)}")
    else:
        print(f"Purchase failed at {result.failed_at.value}: {result.error}")

    ledger.close()


if __name__ == "__main__":
    main()
