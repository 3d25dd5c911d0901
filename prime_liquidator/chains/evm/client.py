"""EVM JSON-RPC client with fallback support and a local signer."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi
from eth_abi import decode
from eth_account import Account
from eth_utils import to_checksum_address, to_hex

from ...config import ChainConfig
from ...errors import BroadcastUnknown, RpcError, TransactionTimeout

logger = logging.getLogger(__name__)

_ERROR_SELECTOR = bytes.fromhex("08c379a0")  # Error(string)
_PANIC_SELECTOR = bytes.fromhex("4e487b71")  # Panic(uint256)

# node replies meaning the exact signed tx is already in its pool
_KNOWN_TX_MESSAGES = ("already known", "known transaction", "already imported")
# failures where the request never left this process
_NOT_DELIVERED = (aiohttp.ClientConnectorError, ConnectionRefusedError)


def _to_bytes(data: Any) -> bytes:
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, dict):
        return _to_bytes(data.get("data"))
    if isinstance(data, str):
        text = data[2:] if data.startswith("0x") else data
        try:
            return bytes.fromhex(text)
        except ValueError:
            return b""
    return b""


def decode_revert_reason(data: Any) -> str | None:
    """Decode revert data returned by a node into a readable reason."""
    raw = _to_bytes(data)
    if len(raw) < 4:
        return None
    selector, body = raw[:4], raw[4:]
    if selector == _ERROR_SELECTOR:
        try:
            (reason,) = decode(["string"], body)
            return reason
        except Exception:
            return "malformed Error(string)"
    if selector == _PANIC_SELECTOR:
        try:
            (code,) = decode(["uint256"], body)
            return f"panic 0x{code:02x}"
        except Exception:
            return "malformed Panic(uint256)"
    return f"custom error 0x{selector.hex()}"


class EvmClient:
    """EVM RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig, private_key: str = "") -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.current_rpc_index = 0
        self._account = Account.from_key(private_key) if private_key else None

    @property
    def address(self) -> str:
        if self._account is None:
            raise RuntimeError("No signer configured")
        return self._account.address

    async def _post(self, rpc_url: str, payload: dict[str, Any]) -> Any:
        """Single JSON-RPC request to ``rpc_url``; a node error object raises ``RpcError``."""
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(
                rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                result = await response.json()
                if "error" in result:
                    error = result["error"] or {}
                    raise RpcError(
                        error.get("code"),
                        error.get("message", ""),
                        error.get("data"),
                    )
                return result.get("result")

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints.

        Node-level errors (``RpcError``) are raised immediately; only
        transport failures move on to the next endpoint.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                result = await self._post(rpc_url, payload)
            except RpcError:
                raise
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index
            return result

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def _broadcast(self, raw_tx: str, tx_hash: str) -> None:
        """Send a signed transaction, moving to the next endpoint on transport failure.

        Once any endpoint may have received ``raw_tx``, a later failure can no
        longer prove the transaction was rejected, so ``BroadcastUnknown`` is
        raised with ``tx_hash`` instead.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_sendRawTransaction",
            "params": [raw_tx],
        }

        maybe_delivered = False
        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                await self._post(rpc_url, payload)
                return
            except RpcError as e:
                if any(m in e.message.lower() for m in _KNOWN_TX_MESSAGES):
                    logger.info("Endpoint %s already has tx %s", rpc_url, tx_hash)
                    return
                if not maybe_delivered:
                    raise
                raise BroadcastUnknown(tx_hash, e) from e
            except Exception as e:
                last_error = e
                if not isinstance(e, _NOT_DELIVERED):
                    maybe_delivered = True
                logger.warning("Broadcast of %s via %s failed: %s", tx_hash, rpc_url, e)

        if maybe_delivered:
            raise BroadcastUnknown(tx_hash, last_error)
        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        """Execute a read-only contract call."""
        result = await self.rpc_call(
            "eth_call", [{"to": to_checksum_address(to), "data": to_hex(data)}, block]
        )
        return _to_bytes(result)

    async def send_transaction(
        self, to: str, data: bytes, gas_limit: int, gas_price: int
    ) -> str:
        """Sign locally and broadcast a legacy transaction. Returns the tx hash.

        The hash is computed from the signed bytes, so it is known even when
        the node's reply is lost.
        """
        sender = self.address
        nonce = int(await self.rpc_call("eth_getTransactionCount", [sender, "pending"]), 16)
        tx = {
            "to": to_checksum_address(to),
            "data": data,
            "value": 0,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        signed = self._account.sign_transaction(tx)
        tx_hash = to_hex(signed.hash)
        await self._broadcast(to_hex(signed.raw_transaction), tx_hash)
        logger.debug("Sent tx %s (nonce %d) to %s", tx_hash, nonce, to)
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self, tx_hash: str, timeout: float, poll_interval: float = 2.0
    ) -> dict[str, Any]:
        """Poll for a receipt until ``timeout`` seconds elapse."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            receipt = await self.get_receipt(tx_hash)
            if receipt:
                return receipt
            if loop.time() >= deadline:
                raise TransactionTimeout(tx_hash, timeout)
            await asyncio.sleep(poll_interval)

    async def revert_reason(self, tx_hash: str, receipt: dict[str, Any]) -> str | None:
        """Replay a failed transaction with eth_call at its block to recover the reason."""
        tx = await self.rpc_call("eth_getTransactionByHash", [tx_hash])
        if not tx:
            return None
        call = {
            "from": tx.get("from"),
            "to": tx.get("to"),
            "data": tx.get("input"),
            "gas": tx.get("gas"),
            "value": tx.get("value", "0x0"),
        }
        try:
            await self.rpc_call("eth_call", [call, receipt.get("blockNumber", "latest")])
        except RpcError as e:
            return decode_revert_reason(e.data) or e.message
        return None


def receipt_succeeded(receipt: dict[str, Any]) -> bool:
    status = receipt.get("status")
    if isinstance(status, str):
        return int(status, 16) == 1
    return status == 1
