"""Polling loop — checks configured loans and liquidates the insolvent ones."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from ..config import WatcherConfig
from ..models import AttemptStatus, LiquidationResult
from .liquidator import Liquidator

logger = logging.getLogger(__name__)

_SOLVENT = Decimal(1)


class Watcher:
    """Evaluates loans one at a time; each liquidation re-reads fresh state."""

    def __init__(self, liquidator: Liquidator, config: WatcherConfig) -> None:
        self._liquidator = liquidator
        self._config = config
        # loan address -> tx hash of an attempt whose outcome is still unknown
        self._pending: dict[str, str] = {}

    async def _reconciled(self, loan: str) -> bool:
        """True when ``loan`` has no unresolved attempt left."""
        tx_hash = self._pending.get(loan)
        if tx_hash is None:
            return True
        status = await self._liquidator.reconcile(tx_hash)
        if status is AttemptStatus.TIMEOUT:
            logger.warning("Loan %s: tx %s still unconfirmed, skipping", loan, tx_hash)
            return False
        logger.info("Loan %s: earlier tx %s resolved as %s", loan, tx_hash, status.value)
        del self._pending[loan]
        return True

    async def check_loans(self) -> list[LiquidationResult]:
        results: list[LiquidationResult] = []
        for loan in self._config.loans:
            try:
                if not await self._reconciled(loan):
                    continue
                health = await self._liquidator.health_ratio(loan)
            except Exception as e:
                logger.error("Could not read loan %s: %s", loan, e)
                continue

            if health >= _SOLVENT:
                logger.info("Loan %s solvent (health %.4f)", loan, health)
                continue

            logger.warning("Loan %s insolvent (health %.4f), liquidating", loan, health)
            result = await self._liquidator.liquidate(loan)
            if result.requires_reconciliation and result.tx_hash:
                self._pending[loan] = result.tx_hash
            results.append(result)
        return results

    async def run_continuous(self, check_interval_minutes: int | None = None) -> None:
        """Run the polling loop forever."""
        interval = check_interval_minutes or self._config.check_interval_minutes
        logger.info(
            "Watching %d loan(s) (checking every %d minutes)", len(self._config.loans), interval
        )

        while True:
            try:
                await self.check_loans()
                await asyncio.sleep(interval * 60)
            except Exception as e:
                logger.error("Error in watch loop: %s", e)
                await asyncio.sleep(60)
