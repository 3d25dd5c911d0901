"""Liquidation flash loan contract wrapper."""
from __future__ import annotations

from dataclasses import dataclass

from .base import Contract

EXECUTE_FLASHLOAN = "executeFlashloan((address[],uint256[],uint256[],bytes,uint256,address,address,address))"


@dataclass(frozen=True)
class FlashLoanParams:
    """Arguments of ``executeFlashloan``. ``amounts`` follow ``assets`` order."""

    assets: tuple[str, ...]
    amounts: tuple[int, ...]
    params: bytes
    bonus: int
    liquidator: str
    loan_address: str
    token_manager: str

    @property
    def interest_rate_modes(self) -> tuple[int, ...]:
        return tuple(0 for _ in self.assets)

    def as_tuple(self) -> tuple:
        return (
            list(self.assets),
            list(self.amounts),
            list(self.interest_rate_modes),
            self.params,
            self.bonus,
            self.liquidator,
            self.loan_address,
            self.token_manager,
        )


class LiquidationFlashloan(Contract):
    async def execute_flashloan(self, params: FlashLoanParams, payload: bytes) -> str:
        """Send the liquidation; the oracle payload is also appended to calldata."""
        if len(params.assets) != len(params.amounts):
            raise ValueError("Flash loan assets and amounts must align")
        return await self.transact(EXECUTE_FLASHLOAN, [params.as_tuple()], payload=payload)
