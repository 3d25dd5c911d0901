"""ERC20 token wrapper."""
from __future__ import annotations

from .base import Contract


class ERC20(Contract):
    async def decimals(self) -> int:
        (value,) = await self.call("decimals()", returns=["uint8"])
        return int(value)

    async def balance_of(self, owner: str) -> int:
        (value,) = await self.call("balanceOf(address)", [owner], returns=["uint256"])
        return int(value)

    async def approve(self, spender: str, amount: int) -> str:
        return await self.transact("approve(address,uint256)", [spender, amount])
