"""Remove AMM liquidity held by the loan."""
from __future__ import annotations

import logging

from ..config import LpPositionConfig
from ..contracts.loan import PrimeAccount
from ..models import UnwindResult, UnwindStatus
from ..units import to_bytes32

logger = logging.getLogger(__name__)


class LpUnwinder:
    """Removes all liquidity of each configured LP token with zero minimum amounts.

    ``remove_signature`` has the shape
    ``removeLiquidityX(bytes32,bytes32,uint256,uint256,uint256)``.
    """

    def __init__(self, positions: tuple[LpPositionConfig, ...], name: str = "lp-positions") -> None:
        self._positions = positions
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def unwind(self, loan: PrimeAccount, payload: bytes) -> UnwindResult:
        tx_hashes: list[str] = []
        for lp in self._positions:
            liquidity = await loan.get_balance(lp.symbol)
            if liquidity == 0:
                continue
            logger.info("Removing %s liquidity: %d", lp.symbol, liquidity)
            tx_hash = await loan.transact(
                lp.remove_signature,
                [to_bytes32(lp.first_asset), to_bytes32(lp.second_asset), liquidity, 0, 0],
                payload=payload,
            )
            await loan.confirm(tx_hash, f"remove {lp.symbol}")
            tx_hashes.append(tx_hash)

        if not tx_hashes:
            return UnwindResult(self.name, UnwindStatus.SKIPPED, "no LP balance")
        return UnwindResult(
            self.name,
            UnwindStatus.SUCCESS,
            f"removed {len(tx_hashes)} LP position(s)",
            tuple(tx_hashes),
        )
