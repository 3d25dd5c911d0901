"""Token manager contract wrapper."""
from __future__ import annotations

from ..units import from_bytes32, to_bytes32
from .base import Contract


class TokenManager(Contract):
    async def get_all_pool_assets(self) -> list[str]:
        (names,) = await self.call("getAllPoolAssets()", returns=["bytes32[]"])
        return [from_bytes32(n) for n in names]

    async def get_asset_address(self, symbol: str, allow_inactive: bool = True) -> str:
        (address,) = await self.call(
            "getAssetAddress(bytes32,bool)",
            [to_bytes32(symbol), allow_inactive],
            returns=["address"],
        )
        return address

    async def debt_coverage(self, asset_address: str) -> int:
        """Debt coverage scaled by 1e18."""
        (value,) = await self.call("debtCoverage(address)", [asset_address], returns=["uint256"])
        return int(value)
