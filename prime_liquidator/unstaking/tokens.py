"""Redeem yield-aggregator receipt tokens held by the loan."""
from __future__ import annotations

import logging

from ..contracts.loan import PrimeAccount
from ..models import UnwindResult, UnwindStatus

logger = logging.getLogger(__name__)


class TokenUnwinder:
    """For each ``symbol -> function signature`` pair, redeem the loan's full balance.

    The signature takes the amount as its only argument,
    e.g. ``unstakeAVAXYak(uint256)``.
    """

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    @property
    def name(self) -> str:
        return "yield-tokens"

    async def unwind(self, loan: PrimeAccount, payload: bytes) -> UnwindResult:
        tx_hashes: list[str] = []
        for symbol, signature in self._tokens.items():
            balance = await loan.get_balance(symbol)
            if balance == 0:
                continue
            logger.info("Redeeming %s via %s: %d", symbol, signature, balance)
            tx_hash = await loan.transact(signature, [balance], payload=payload)
            await loan.confirm(tx_hash, f"redeem {symbol}")
            tx_hashes.append(tx_hash)

        if not tx_hashes:
            return UnwindResult(self.name, UnwindStatus.SKIPPED, "no receipt tokens held")
        return UnwindResult(
            self.name,
            UnwindStatus.SUCCESS,
            f"redeemed {len(tx_hashes)} token(s)",
            tuple(tx_hashes),
        )
