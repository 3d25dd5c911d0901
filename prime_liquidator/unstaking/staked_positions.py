"""Unstake every position the loan reports through ``getStakedPositions``."""
from __future__ import annotations

import logging

from eth_abi import encode

from ..contracts.loan import PrimeAccount
from ..models import UnwindResult, UnwindStatus

logger = logging.getLogger(__name__)


class StakedPositionsUnwinder:
    """Calls each position's unstake selector with its full balance and no minimum output."""

    @property
    def name(self) -> str:
        return "staked-positions"

    async def unwind(self, loan: PrimeAccount, payload: bytes) -> UnwindResult:
        positions = await loan.get_staked_positions()
        tx_hashes: list[str] = []

        for position in positions:
            (balance,) = await loan.call_raw(position.balance_selector, returns=["uint256"])
            if balance == 0:
                continue

            logger.info(
                "Unstaking %s (%s): %d", position.symbol, position.identifier, balance
            )
            # single-argument unstake functions ignore the trailing minimum
            data = position.unstake_selector + encode(["uint256", "uint256"], [balance, 0])
            tx_hash = await loan.send_raw(data + payload)
            await loan.confirm(tx_hash, f"unstake {position.identifier}")
            tx_hashes.append(tx_hash)

        if not tx_hashes:
            return UnwindResult(self.name, UnwindStatus.SKIPPED, "no staked balance")
        return UnwindResult(
            self.name,
            UnwindStatus.SUCCESS,
            f"unstaked {len(tx_hashes)} position(s)",
            tuple(tx_hashes),
        )
