"""Prime Account (loan) contract wrapper."""
from __future__ import annotations

from dataclasses import dataclass

from ..units import from_bytes32, to_bytes32
from .base import Contract


@dataclass(frozen=True)
class StakedPosition:
    asset: str
    symbol: str
    identifier: str
    balance_selector: bytes
    unstake_selector: bytes


class PrimeAccount(Contract):
    """Read/write surface of a loan used by the liquidator.

    Price-dependent reads take the signed oracle payload, which the contract
    verifies before trusting any price.
    """

    async def _named_amounts(self, signature: str, payload: bytes = b"") -> dict[str, int]:
        (rows,) = await self.call(signature, returns=["(bytes32,uint256)[]"], payload=payload)
        return {from_bytes32(name): int(amount) for name, amount in rows}

    async def get_debts(self) -> dict[str, int]:
        return await self._named_amounts("getDebts()")

    async def get_all_assets_balances(self) -> dict[str, int]:
        return await self._named_amounts("getAllAssetsBalances()")

    async def get_all_assets_prices(self, payload: bytes) -> dict[str, int]:
        """Prices scaled by 1e8."""
        return await self._named_amounts("getAllAssetsPrices()", payload)

    async def _wad(self, signature: str, payload: bytes) -> int:
        (value,) = await self.call(signature, returns=["uint256"], payload=payload)
        return int(value)

    async def get_total_value(self, payload: bytes) -> int:
        return await self._wad("getTotalValue()", payload)

    async def get_debt(self, payload: bytes) -> int:
        return await self._wad("getDebt()", payload)

    async def get_health_ratio(self, payload: bytes) -> int:
        return await self._wad("getHealthRatio()", payload)

    async def get_all_owned_assets(self) -> list[str]:
        (names,) = await self.call("getAllOwnedAssets()", returns=["bytes32[]"])
        return [from_bytes32(n) for n in names]

    async def get_balance(self, symbol: str) -> int:
        (value,) = await self.call("getBalance(bytes32)", [to_bytes32(symbol)], returns=["uint256"])
        return int(value)

    async def get_staked_positions(self) -> list[StakedPosition]:
        (rows,) = await self.call(
            "getStakedPositions()", returns=["(address,bytes32,bytes32,bytes4,bytes4)[]"]
        )
        return [
            StakedPosition(
                asset=asset,
                symbol=from_bytes32(symbol),
                identifier=from_bytes32(identifier),
                balance_selector=bytes(balance_selector),
                unstake_selector=bytes(unstake_selector),
            )
            for asset, symbol, identifier, balance_selector, unstake_selector in rows
        ]
