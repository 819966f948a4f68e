"""
Ledger RPC boundary.

The protocol needs four calls from the ledger node: balances, the current
height, transactions by extra-data tag and broadcast. ``LedgerClient`` is the
interface; ``FuegoRPCClient`` speaks JSON-RPC 2.0 over HTTP.
"""
import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from pydantic import ValidationError

from .exceptions import LedgerError, Timeout
from .models import Balance, LedgerTransaction
from .utils import validate_remote_url

logger = logging.getLogger(__name__)

LICENSE_EXTRA_TAG = 0x0B


class LedgerClient(Protocol):
    """Protocol for ledger node access"""

    def get_balance(self, address: str) -> Balance:
        ...

    def get_current_block_height(self) -> int:
        ...

    def get_transactions_by_extra_type(
        self, tag: int, from_block: Optional[int] = None, to_block: Optional[int] = None
    ) -> List[LedgerTransaction]:
        ...

    def broadcast_transaction(self, signed_tx: Dict[str, Any]) -> str:
        ...


class FuegoRPCClient:
    """
    JSON-RPC client for a Fuego node.

    Method names: ``getbalance``, ``getblockcount``, ``gettransactionsbyextratype``
    and ``sendtransaction``. Transient 5xx and connection errors are retried by
    the session adapter; broadcast is never retried.
    """

    def __init__(
        self,
        rpc_url: str,
        retry_count: int = 3,
        timeout: float = 30,
        logger: Optional[logging.Logger] = None,
    ):
        self.rpc_url = validate_remote_url("rpc_url", rpc_url)
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._ids = itertools.count(1)

        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
            connect=retry_count,
            read=retry_count,
            other=retry_count,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

        # Broadcasting must not be replayed by the adapter
        self._broadcast_session = requests.Session()

    def _call(self, method: str, params: Dict[str, Any], session: Optional[requests.Session] = None) -> Any:
        request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        self.logger.debug("RPC %s #%d", method, request_id)
        try:
            response = (session or self.session).post(self.rpc_url, json=body, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except requests.Timeout as e:
            raise Timeout(f"Ledger RPC {method} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise LedgerError(f"Ledger RPC {method} failed: {e}") from e
        except ValueError as e:
            raise LedgerError(f"Invalid JSON from ledger RPC {method}: {e}") from e

        if not isinstance(result, dict):
            raise LedgerError(f"Malformed ledger RPC response for {method}")
        if result.get("error"):
            error = result["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise LedgerError(f"Ledger RPC {method} returned error: {message}")
        if "result" not in result:
            raise LedgerError(f"Missing result in ledger RPC response for {method}")
        return result["result"]

    def get_balance(self, address: str) -> Balance:
        result = self._call("getbalance", {"address": address})
        try:
            return Balance.model_validate(result)
        except ValidationError as e:
            raise LedgerError(f"Malformed balance for {address}: {e}") from e

    def get_current_block_height(self) -> int:
        result = self._call("getblockcount", {})
        count = result.get("count") if isinstance(result, dict) else result
        if not isinstance(count, int) or count < 0:
            raise LedgerError(f"Malformed block height: {result!r}")
        return count

    def get_transactions_by_extra_type(
        self, tag: int = LICENSE_EXTRA_TAG, from_block: Optional[int] = None, to_block: Optional[int] = None
    ) -> List[LedgerTransaction]:
        params: Dict[str, Any] = {"type": tag}
        if from_block is not None:
            params["fromBlock"] = from_block
        if to_block is not None:
            params["toBlock"] = to_block
        result = self._call("gettransactionsbyextratype", params)
        raw_transactions = result.get("transactions", []) if isinstance(result, dict) else result

        transactions = []
        for raw in raw_transactions or []:
            try:
                transactions.append(LedgerTransaction.model_validate(raw))
            except ValidationError as e:
                self.logger.warning("Skipping malformed transaction from ledger: %s", e)
        return transactions

    def broadcast_transaction(self, signed_tx: Dict[str, Any]) -> str:
        result = self._call("sendtransaction", {"transaction": signed_tx}, session=self._broadcast_session)
        tx_hash = result.get("txHash") if isinstance(result, dict) else result
        if not tx_hash or not isinstance(tx_hash, str):
            raise LedgerError(f"Broadcast returned no transaction hash: {result!r}")
        return tx_hash

    def close(self) -> None:
        self.session.close()
        self._broadcast_session.close()
