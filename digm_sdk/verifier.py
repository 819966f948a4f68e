"""
Proof-of-ownership checks against the ledger.

The verifier scans 0x0B license transactions for a buyer key, keeps only
records whose artist signature and constraints check out, and caches the
result per buyer for a fixed TTL. Ledger failures always read as "no
license": ownership checks fail closed.
"""
import itertools
import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from cachetools import LRUCache, TTLCache

from ._rate_limited_log import rate_limited_log
from .exceptions import LicenseParseError, SignatureInvalid
from .ledger import LICENSE_EXTRA_TAG, LedgerClient
from .license import parse_license_extra, validate_license, verify_license_signature
from .models import AccessInfo, LedgerTransaction, LicenseOwnership
from .config import ProtocolSettings
from .utils import truncate

logger = logging.getLogger(__name__)

CACHE_MAX_BUYERS = 10_000


class LicenseVerifier:
    """
    Verifies album licenses for buyer keys.

    Args:
        ledger: Ledger RPC client
        settings: Protocol settings (cache TTL, scan window, premium thresholds)
        clock: Returns the current unix time; injectable for tests
        address_for_key: Maps a buyer key to the address whose balance is
            checked for premium access (defaults to the key itself)
        logger: Optional logger instance
    """

    def __init__(
        self,
        ledger: LedgerClient,
        settings: Optional[ProtocolSettings] = None,
        clock: Callable[[], float] = time.time,
        address_for_key: Optional[Callable[[str], str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.settings = settings or ProtocolSettings.from_env()
        self.clock = clock
        self.address_for_key = address_for_key or (lambda key: key)
        self.logger = logger or logging.getLogger(__name__)

        self._cache: TTLCache = TTLCache(
            maxsize=CACHE_MAX_BUYERS, ttl=self.settings.license_cache_ttl, timer=clock
        )
        self._last_scan_block: LRUCache = LRUCache(maxsize=CACHE_MAX_BUYERS)
        # Bumped by invalidate; a scan only caches if the buyer was not
        # invalidated while it ran.
        self._generations: LRUCache = LRUCache(maxsize=CACHE_MAX_BUYERS)
        self._invalidations = itertools.count(1)
        self._epoch = 0
        self._lock = threading.RLock()

    # -- cache -----------------------------------------------------------

    def _get_cached(self, buyer_key: str) -> Optional[List[LicenseOwnership]]:
        with self._lock:
            return self._cache.get(buyer_key)

    def _generation(self, buyer_key: str) -> Tuple[int, int]:
        with self._lock:
            return self._epoch, self._generations.get(buyer_key, 0)

    def _set_cached(
        self, buyer_key: str, licenses: List[LicenseOwnership], generation: Tuple[int, int]
    ) -> bool:
        with self._lock:
            if self._generation(buyer_key) != generation:
                return False
            self._cache[buyer_key] = licenses
            return True

    def clear_cache(self) -> None:
        with self._lock:
            self._epoch += 1
            self._cache.clear()
            self._last_scan_block.clear()
            self._generations.clear()

    def get_cache_stats(self) -> Dict[str, object]:
        with self._lock:
            return {
                "cache_size": len(self._cache),
                "last_scan_block": dict(self._last_scan_block),
                "cache_ttl": self.settings.license_cache_ttl,
            }

    # -- scanning --------------------------------------------------------

    def get_user_licenses(self, buyer_key: str) -> List[LicenseOwnership]:
        """
        All verified licenses of a buyer, newest first.

        Served from cache within the TTL; otherwise the ledger is scanned and
        the result cached. A failed scan returns an empty list and is not
        cached, nor is a scan the buyer was invalidated during.
        """
        cached = self._get_cached(buyer_key)
        if cached is not None:
            return list(cached)

        generation = self._generation(buyer_key)
        try:
            licenses = self._scan_blockchain_for_licenses(buyer_key)
        except Exception as e:
            self.logger.error("Error scanning ledger for licenses of %s: %s", truncate(buyer_key), e)
            return []

        if not self._set_cached(buyer_key, licenses, generation):
            self.logger.debug("Not caching stale license scan for %s", truncate(buyer_key))
        return list(licenses)

    def invalidate(self, buyer_key: str) -> None:
        """Drop the buyer's cache entry so the next query rescans."""
        with self._lock:
            self._generations[buyer_key] = next(self._invalidations)
            self._cache.pop(buyer_key, None)

    def refresh_user_licenses(self, buyer_key: str) -> List[LicenseOwnership]:
        """Drop the buyer's cache entry and scan again."""
        self.invalidate(buyer_key)
        return self.get_user_licenses(buyer_key)

    def scan_new_licenses(self, buyer_key: str) -> List[LicenseOwnership]:
        """
        Scan only blocks added since this buyer's previous incremental scan.

        The first incremental scan covers the last ``initial_scan_window``
        blocks. New licenses are merged into the buyer's cache entry if one
        exists. A full scan (refresh_user_licenses) always finds a superset.

        Returns:
            Licenses found in the scanned range
        """
        try:
            current_height = self.ledger.get_current_block_height()
            with self._lock:
                from_block = self._last_scan_block.get(buyer_key)
            if from_block is None:
                from_block = max(0, current_height - self.settings.initial_scan_window)

            transactions = self.ledger.get_transactions_by_extra_type(
                LICENSE_EXTRA_TAG, from_block, current_height
            )
        except Exception as e:
            self.logger.error("Incremental license scan failed for %s: %s", truncate(buyer_key), e)
            return []

        found = self._filter_and_verify_licenses(transactions, buyer_key)
        with self._lock:
            self._last_scan_block[buyer_key] = current_height
            cached = self._cache.get(buyer_key)
            if cached is not None and found:
                known = {lic.tx_hash for lic in cached}
                merged = list(cached) + [lic for lic in found if lic.tx_hash not in known]
                self._cache[buyer_key] = self._sort_newest_first(merged)

        self.logger.debug(
            "Incremental scan %d..%d found %d license(s) for %s",
            from_block, current_height, len(found), truncate(buyer_key),
        )
        return found

    def _scan_blockchain_for_licenses(self, buyer_key: str) -> List[LicenseOwnership]:
        transactions = self.ledger.get_transactions_by_extra_type(LICENSE_EXTRA_TAG)
        licenses = self._filter_and_verify_licenses(transactions, buyer_key)
        self.logger.info("Found %d verified license(s) for %s", len(licenses), truncate(buyer_key))
        return licenses

    def _filter_and_verify_licenses(
        self, transactions: Iterable[LedgerTransaction], buyer_key: str
    ) -> List[LicenseOwnership]:
        licenses = []
        now = self.clock()
        for tx in transactions:
            try:
                record = parse_license_extra(tx.extra)
            except LicenseParseError as e:
                rate_limited_log(
                    f"Failed to parse license from transaction {tx.hash}: {e}",
                    key=f"parse:{tx.hash}", logger_instance=self.logger,
                )
                continue

            if record.buyer_key != buyer_key:
                continue

            try:
                validate_license(
                    record,
                    now=now,
                    future_skew=self.settings.license_future_skew,
                    max_age=self.settings.license_max_age,
                )
                verify_license_signature(record)
            except (LicenseParseError, SignatureInvalid) as e:
                rate_limited_log(
                    f"Dropping license in transaction {tx.hash}: {e}",
                    key=f"verify:{tx.hash}", logger_instance=self.logger,
                )
                continue

            licenses.append(LicenseOwnership(
                album_id=record.album_id,
                owner_key=record.buyer_key,
                purchase_amount=record.purchase_amount,
                timestamp=record.timestamp,
                tx_hash=tx.hash,
                verified=True,
                artist_key=record.artist_key,
                block_height=tx.block_height,
            ))
        return self._sort_newest_first(licenses)

    @staticmethod
    def _sort_newest_first(licenses: List[LicenseOwnership]) -> List[LicenseOwnership]:
        return sorted(licenses, key=lambda lic: lic.timestamp, reverse=True)

    # -- queries ---------------------------------------------------------

    def has_license(self, buyer_key: str, album_id: str) -> bool:
        return any(
            lic.album_id == album_id and lic.verified
            for lic in self.get_user_licenses(buyer_key)
        )

    def get_license_details(self, buyer_key: str, album_id: str) -> Optional[LicenseOwnership]:
        """Most recent verified license for the album, or None."""
        for lic in self.get_user_licenses(buyer_key):
            if lic.album_id == album_id and lic.verified:
                return lic
        return None

    def has_premium_access(self, buyer_key: str) -> bool:
        """
        Balance-based entitlement, evaluated on every call.

        True if the primary coin balance or the utility token balance reaches
        its configured threshold.
        """
        try:
            balance = self.ledger.get_balance(self.address_for_key(buyer_key))
        except Exception as e:
            self.logger.error("Error checking premium access for %s: %s", truncate(buyer_key), e)
            return False
        return (
            balance.primary_coin >= self.settings.premium_primary_threshold
            or balance.utility_token >= self.settings.premium_token_threshold
        )

    def get_user_access_info(self, buyer_key: str, album_id: str) -> AccessInfo:
        license_details = self.get_license_details(buyer_key, album_id)
        has_license = license_details is not None
        is_premium = self.has_premium_access(buyer_key)
        if has_license:
            access_type = "license"
        elif is_premium:
            access_type = "premium"
        else:
            access_type = "none"
        return AccessInfo(
            has_license=has_license,
            is_premium=is_premium,
            has_access=has_license or is_premium,
            license_details=license_details,
            access_type=access_type,
        )
