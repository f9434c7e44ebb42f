"""
Wallet backends: the only place a transaction is signed or handed off.

Two implementations:
  LocalAccountWallet  -- signs with an eth-account key, sends raw transactions
                         through the node; never batches.
  RpcWallet           -- forwards to an EIP-1193/EIP-5792 JSON-RPC wallet
                         endpoint over httpx (eth_sendTransaction,
                         wallet_getCapabilities, wallet_sendCalls,
                         wallet_getCallsStatus).

Both take already-encoded ``{to, data, value}`` dicts.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError

from .errors import SubmitError, UserRejected
from .models import CallsStatus, Receipt
from .utils import as_int

logger = logging.getLogger(__name__)

USER_REJECTED_CODE = 4001
TIMEOUT = 30.0


class Wallet(ABC):
    """Signs and submits encoded calls for one account."""

    address: str

    @abstractmethod
    async def supports_atomic_batch(self) -> bool:
        ...

    @abstractmethod
    async def send_transaction(self, tx: dict[str, Any]) -> str:
        """Submit one call; return the transaction hash."""
        ...

    async def send_calls(self, txs: list[dict[str, Any]]) -> str:
        """Submit calls as one atomic batch; return the batch id."""
        raise SubmitError("Wallet does not support atomic batches")

    async def get_calls_status(self, batch_id: str) -> CallsStatus:
        raise SubmitError("Wallet does not support atomic batches")


# ── Local key ────────────────────────────────────────────────────────

class LocalAccountWallet(Wallet):
    """Private-key wallet; gas and nonce come from the node."""

    def __init__(self, w3: AsyncWeb3, private_key: str):
        self.w3 = w3
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    async def supports_atomic_batch(self) -> bool:
        return False

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        w3 = self.w3
        full = {
            "from": self.address,
            "to": w3.to_checksum_address(tx["to"]),
            "data": tx.get("data", "0x"),
            "value": int(tx.get("value", 0)),
        }
        try:
            full["gas"] = await w3.eth.estimate_gas(full)
            full["gasPrice"] = await w3.eth.gas_price
            full["nonce"] = await w3.eth.get_transaction_count(self.address, "pending")
            full["chainId"] = await w3.eth.chain_id
        except ContractLogicError as e:
            # Pre-flight revert; nothing was broadcast.
            raise SubmitError(f"Execution reverted: {e.message or e}", raw=str(e)) from e
        except Exception as e:
            raise SubmitError(f"Could not prepare transaction: {e}", raw=str(e)) from e

        signed = self._account.sign_transaction(full)
        try:
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmitError(f"Broadcast failed: {e}", raw=str(e)) from e
        return AsyncWeb3.to_hex(tx_hash)


# ── JSON-RPC wallet ──────────────────────────────────────────────────

def _hex_int(value: Any) -> Optional[int]:
    if isinstance(value, str):
        return int(value, 16)
    return as_int(value)


def _status_from_code(status: Any) -> str:
    """
    Normalise ``wallet_getCallsStatus`` status to pending / success / failure.

    Older wallets answer with strings (``PENDING``/``CONFIRMED``), newer
    ones with numeric codes (1xx pending, 2xx confirmed, 4xx/5xx failed).
    """
    if isinstance(status, int):
        if status < 200:
            return "pending"
        return "success" if status < 300 else "failure"
    text = str(status).lower()
    if text in ("confirmed", "success"):
        return "success"
    if text in ("failure", "failed", "reverted"):
        return "failure"
    return "pending"


class RpcWallet(Wallet):
    """An external wallet reachable over JSON-RPC (e.g. a smart-wallet bridge)."""

    def __init__(
        self,
        rpc_url: str,
        address: str,
        chain_id: int,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.address = address
        self.chain_id = chain_id
        self._client = client
        self._ids = itertools.count(1)
        self._capabilities: Optional[dict] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=TIMEOUT)
        return self._client

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        client = await self._get_client()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        logger.debug("RPC %s", method)
        try:
            resp = await client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise SubmitError(f"Wallet unreachable: {e}", raw=str(e)) from e
        except ValueError as e:
            raise SubmitError(f"Wallet sent a malformed response: {e}", raw=str(e)) from e
        if not isinstance(body, dict):
            raise SubmitError("Wallet sent a malformed response", raw=str(body))

        error = body.get("error")
        if error:
            message = error.get("message", "Wallet error")
            if error.get("code") == USER_REJECTED_CODE:
                raise UserRejected(raw=message)
            raise SubmitError(message, raw=str(error))
        return body.get("result")

    def _format_call(self, tx: dict[str, Any]) -> dict[str, Any]:
        return {
            "to": tx["to"],
            "data": tx.get("data", "0x"),
            "value": hex(int(tx.get("value", 0))),
        }

    async def supports_atomic_batch(self) -> bool:
        if self._capabilities is None:
            try:
                self._capabilities = await self._rpc("wallet_getCapabilities", [self.address]) or {}
            except SubmitError as e:
                logger.info("wallet_getCapabilities unavailable: %s", e.reason)
                self._capabilities = {}
        chain_caps = (
            self._capabilities.get(hex(self.chain_id))
            or self._capabilities.get(str(self.chain_id))
            or {}
        )
        atomic = chain_caps.get("atomicBatch") or {}
        return atomic.get("supported") is True

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        call = {"from": self.address, **self._format_call(tx)}
        return await self._rpc("eth_sendTransaction", [call])

    async def send_calls(self, txs: list[dict[str, Any]]) -> str:
        params = {
            "version": "1.0",
            "chainId": hex(self.chain_id),
            "from": self.address,
            "calls": [self._format_call(tx) for tx in txs],
        }
        result = await self._rpc("wallet_sendCalls", [params])
        # Some wallets return the id directly, others {"id": ...}.
        if isinstance(result, dict):
            return result["id"]
        return result

    async def get_calls_status(self, batch_id: str) -> CallsStatus:
        result = await self._rpc("wallet_getCallsStatus", [batch_id]) or {}
        receipts = tuple(
            Receipt(
                tx_hash=r.get("transactionHash", ""),
                status=_hex_int(r.get("status")) or 0,
                block_number=_hex_int(r.get("blockNumber")),
            )
            for r in result.get("receipts") or []
        )
        return CallsStatus(
            batch_id=batch_id,
            status=_status_from_code(result.get("status", "pending")),
            receipts=receipts,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
