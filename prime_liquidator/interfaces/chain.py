"""Chain client protocol — EVM JSON-RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for reading from and writing to an EVM chain."""

    @property
    def address(self) -> str: ...

    async def call(self, to: str, data: bytes, block: str = "latest") -> bytes: ...

    async def send_transaction(
        self, to: str, data: bytes, gas_limit: int, gas_price: int
    ) -> str: ...

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...

    async def wait_for_receipt(
        self, tx_hash: str, timeout: float, poll_interval: float = 2.0
    ) -> dict[str, Any]: ...

    async def revert_reason(self, tx_hash: str, receipt: dict[str, Any]) -> str | None: ...
