"""Solana JSON-RPC transport.

Thin async wrapper over the HTTP JSON-RPC API using httpx. Maps transport
failures to NetworkError and program/preflight failures to RejectedError.
"""

import base64
import itertools
import logging
from typing import Any, Optional

import httpx

from ecoswap.errors import NetworkError, RejectedError

logger = logging.getLogger(__name__)

# JSON-RPC error codes that mean "node cannot serve right now"
_UNAVAILABLE_CODES = {
    -32004,  # block not available
    -32005,  # node unhealthy / behind
    -32007,  # slot skipped
    -32014,  # block status not yet available
    -32016,  # minimum context slot not reached
}


class SolanaRpc:
    """Async JSON-RPC client bound to one endpoint."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        commitment: str = "confirmed",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.commitment = commitment
        self._transport = transport
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        """Issue one JSON-RPC call and return its ``result``.

        Raises:
            NetworkError: Endpoint unreachable, HTTP failure or node unavailable
            RejectedError: The node returned a request/program error
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Solana RPC {method} failed ({self.rpc_url}): {e}")
            raise NetworkError(f"{method}: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Solana RPC {method} HTTP {response.status_code}")
            raise NetworkError(f"{method}: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"{method}: invalid JSON response") from e

        if "error" in data and data["error"] is not None:
            error = data["error"]
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if code in _UNAVAILABLE_CODES:
                raise NetworkError(f"{method}: {message}")
            raise RejectedError(f"{method}: {message}")

        return data.get("result")

    # ======================
    # Typed helpers
    # ======================

    def _config(self, **extra) -> dict:
        config = {"commitment": self.commitment}
        config.update(extra)
        return config

    async def get_balance(self, address: str) -> int:
        result = await self.call("getBalance", [address, self._config()])
        return int(result["value"])

    async def get_account_info(self, address: str) -> Optional[dict]:
        result = await self.call(
            "getAccountInfo", [address, self._config(encoding="base64")]
        )
        return result["value"]

    async def get_token_account_balance(self, address: str) -> Optional[dict]:
        """Return ``{"amount", "decimals", "uiAmountString"}`` or None if absent."""
        try:
            result = await self.call("getTokenAccountBalance", [address, self._config()])
        except RejectedError as e:
            # Node reports a missing token account as an invalid param
            if "could not find account" in str(e).lower():
                return None
            raise
        return result["value"]

    async def get_latest_blockhash(self) -> tuple[str, int]:
        result = await self.call("getLatestBlockhash", [self._config()])
        value = result["value"]
        return value["blockhash"], int(value["lastValidBlockHeight"])

    async def get_block_height(self) -> int:
        return int(await self.call("getBlockHeight", [self._config()]))

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return int(await self.call("getMinimumBalanceForRentExemption", [size]))

    async def send_transaction(self, raw_tx: bytes) -> str:
        encoded = base64.b64encode(raw_tx).decode("ascii")
        return await self.call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.commitment,
                },
            ],
        )

    async def get_signature_statuses(self, signatures: list[str]) -> list[Optional[dict]]:
        result = await self.call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": True}],
        )
        return result["value"]

    async def request_airdrop(self, address: str, lamports: int) -> str:
        return await self.call("requestAirdrop", [address, lamports, self._config()])
