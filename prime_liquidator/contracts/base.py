"""Minimal ABI-encoding contract wrapper on top of a ChainClient."""
from __future__ import annotations

import logging
from typing import Any, Sequence

from eth_abi import decode, encode, grammar
from eth_utils import function_signature_to_4byte_selector

from ..chains.evm import receipt_succeeded
from ..config import ExecutionConfig
from ..errors import TransactionReverted
from ..interfaces.chain import ChainClient

logger = logging.getLogger(__name__)


def split_types(arg_list: str) -> list[str]:
    """Split a comma-separated ABI type list, respecting tuple parentheses."""
    return [c.to_type_str() for c in grammar.parse(f"({arg_list})").components]


def encode_call(signature: str, args: Sequence[Any] = ()) -> bytes:
    """Selector plus ABI-encoded arguments for ``signature``, e.g. ``approve(address,uint256)``."""
    arg_list = signature[signature.index("(") + 1 : signature.rindex(")")]
    types = split_types(arg_list)
    selector = function_signature_to_4byte_selector(signature)
    if not types:
        return selector
    return selector + encode(types, list(args))


class Contract:
    """Deployed contract at ``address`` reached through ``client``."""

    def __init__(
        self,
        client: ChainClient,
        address: str,
        execution: ExecutionConfig | None = None,
    ) -> None:
        self.client = client
        self.address = address
        self.execution = execution or ExecutionConfig()

    async def call_raw(self, data: bytes, returns: Sequence[str] = ()) -> tuple[Any, ...]:
        raw = await self.client.call(self.address, data)
        if not returns:
            return ()
        return decode(list(returns), raw)

    async def call(
        self,
        signature: str,
        args: Sequence[Any] = (),
        returns: Sequence[str] = (),
        payload: bytes = b"",
    ) -> tuple[Any, ...]:
        """Read-only call; ``payload`` is appended after the encoded arguments."""
        return await self.call_raw(encode_call(signature, args) + payload, returns)

    async def send_raw(self, data: bytes) -> str:
        return await self.client.send_transaction(
            self.address,
            data,
            gas_limit=self.execution.gas_limit,
            gas_price=self.execution.gas_price_wei,
        )

    async def transact(
        self, signature: str, args: Sequence[Any] = (), payload: bytes = b""
    ) -> str:
        """Send a state-changing call. Returns the tx hash without waiting."""
        return await self.send_raw(encode_call(signature, args) + payload)

    async def confirm(self, tx_hash: str, label: str) -> dict[str, Any]:
        """Wait for ``tx_hash``; raise ``TransactionReverted`` if it failed."""
        receipt = await self.client.wait_for_receipt(
            tx_hash,
            timeout=self.execution.confirmation_timeout,
            poll_interval=self.execution.poll_interval,
        )
        if not receipt_succeeded(receipt):
            reason = await self.client.revert_reason(tx_hash, receipt)
            raise TransactionReverted(tx_hash, reason)
        logger.debug("%s confirmed: %s", label, tx_hash)
        return receipt
