"""Liquidation orchestration — one atomic flash-loan liquidation per attempt.

An attempt runs FETCH_STATE, MAXIMIZE_COLLATERAL, COMPUTE_PLAN,
PREPARE_ALLOWANCES, ASSEMBLE_ORACLE_PAYLOAD, PREFLIGHT_CHECK, EXECUTE and
OBSERVE_RESULT in sequence. Nothing is carried over between attempts.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from ..chains.evm import EvmClient, decode_revert_reason, receipt_succeeded
from ..config import AppConfig
from ..contracts import ERC20, FlashLoanParams, LiquidationFlashloan, PrimeAccount, TokenManager
from ..errors import (
    BroadcastUnknown,
    OraclePayloadError,
    PlanValidationError,
    RpcError,
    TransactionReverted,
    TransactionTimeout,
)
from ..interfaces.chain import ChainClient
from ..interfaces.notifier import Notifier
from ..interfaces.price_oracle import SignedPriceOracle
from ..interfaces.unstaking import UnstakingAdapter
from ..models import (
    Asset,
    AttemptStatus,
    CollateralReport,
    LiquidationAction,
    LiquidationPlan,
    LiquidationResult,
    LoanSnapshot,
    PlanMode,
    UnwindResult,
    UnwindStatus,
)
from ..notifications import TelegramNotifier
from ..oracles import RedstoneOracle
from ..sizing import HealthToken, build_plan, calculate_health
from ..units import PRICE_DECIMALS, from_base_units, from_wei, to_allowance_units, to_base_units
from ..unstaking import build_adapters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionContext:
    """Everything an attempt needs, passed explicitly."""

    client: ChainClient
    oracle: SignedPriceOracle
    config: AppConfig

    @property
    def liquidator_address(self) -> str:
        return self.client.address


class Liquidator:
    """Drives single liquidation attempts against Prime Accounts."""

    def __init__(
        self,
        ctx: ExecutionContext,
        adapters: list[UnstakingAdapter] | None = None,
        notifiers: list[Notifier] | None = None,
    ) -> None:
        self._ctx = ctx
        self._config = ctx.config
        self._liquidation = ctx.config.liquidation
        self._execution = ctx.config.execution
        self._adapters = (
            list(adapters) if adapters is not None else build_adapters(ctx.config.unstaking)
        )
        self._notifiers = list(notifiers or [])
        self._token_manager = TokenManager(
            ctx.client, ctx.config.contracts.token_manager, self._execution
        )
        self._flash_loan = LiquidationFlashloan(
            ctx.client, ctx.config.contracts.flash_loan, self._execution
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> Liquidator:
        client = EvmClient(config.chain, config.wallet.private_key)
        oracle = RedstoneOracle(config.oracle)
        notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            notifiers.append(TelegramNotifier(config.notifications.telegram))
        return cls(ExecutionContext(client, oracle, config), notifiers=notifiers)

    def _loan(self, loan_address: str) -> PrimeAccount:
        return PrimeAccount(self._ctx.client, loan_address, self._execution)

    # ------------------------------------------------------------------
    # FETCH_STATE
    # ------------------------------------------------------------------

    async def _resolve_assets(self, symbols: list[str]) -> dict[str, Asset]:
        assets: dict[str, Asset] = {}
        for symbol in symbols:
            address = await self._token_manager.get_asset_address(symbol, True)
            token = ERC20(self._ctx.client, address, self._execution)
            assets[symbol] = Asset(
                symbol=symbol,
                address=address,
                decimals=await token.decimals(),
                debt_coverage=from_wei(await self._token_manager.debt_coverage(address)),
            )
        return assets

    async def fetch_state(self, loan: PrimeAccount, payload: bytes) -> LoanSnapshot:
        """Read debts, balances, prices and solvency of ``loan`` right now."""
        pool_symbols = await self._token_manager.get_all_pool_assets()
        raw_debts = await loan.get_debts()
        raw_balances = await loan.get_all_assets_balances()
        raw_prices = await loan.get_all_assets_prices(payload)

        symbols = list(dict.fromkeys([*pool_symbols, *raw_debts, *raw_balances]))
        assets = await self._resolve_assets(symbols)

        snapshot = LoanSnapshot(
            address=loan.address,
            debts={s: from_base_units(v, assets[s].decimals) for s, v in raw_debts.items()},
            balances={
                s: from_base_units(v, assets[s].decimals) for s, v in raw_balances.items()
            },
            prices={s: from_base_units(v, PRICE_DECIMALS) for s, v in raw_prices.items()},
            total_value=from_wei(await loan.get_total_value(payload)),
            debt=from_wei(await loan.get_debt(payload)),
            health_ratio=from_wei(await loan.get_health_ratio(payload)),
            pool_assets=tuple(assets[s] for s in pool_symbols),
            debt_coverages={s: assets[s].debt_coverage for s in raw_balances},
        )
        logger.info(
            "Loan %s: total value $%.2f, debt $%.2f, health %.4f%s",
            loan.address,
            snapshot.total_value,
            snapshot.debt,
            snapshot.health_ratio,
            " (bankrupt)" if snapshot.is_bankrupt else "",
        )
        return snapshot

    # ------------------------------------------------------------------
    # MAXIMIZE_COLLATERAL
    # ------------------------------------------------------------------

    async def maximize_collateral(self, loan: PrimeAccount, payload: bytes) -> CollateralReport:
        """Run every unstaking adapter in order. A failing adapter never stops the rest."""
        results: list[UnwindResult] = []
        for adapter in self._adapters:
            try:
                result = await adapter.unwind(loan, payload)
            except Exception as e:
                logger.warning("Unstaking adapter %s failed: %s", adapter.name, e)
                result = UnwindResult(adapter.name, UnwindStatus.FAILED, str(e))
            logger.info("Unwind %s: %s %s", result.adapter, result.status.value, result.detail)
            results.append(result)
        return CollateralReport(tuple(results))

    # ------------------------------------------------------------------
    # PREPARE_ALLOWANCES
    # ------------------------------------------------------------------

    async def prepare_allowances(self, plan: LiquidationPlan, snapshot: LoanSnapshot) -> None:
        """Approve the loan to pull each delivered asset. Assets delivering nothing get no approval."""
        assets = {a.symbol: a for a in snapshot.pool_assets}
        for symbol, delivered in plan.delivered_amounts.items():
            asset = assets[symbol]
            amount = to_allowance_units(
                delivered * self._liquidation.allowance_margin, asset.decimals
            )
            if amount == 0:
                continue
            token = ERC20(self._ctx.client, asset.address, self._execution)
            tx_hash = await token.approve(snapshot.address, amount)
            await token.confirm(tx_hash, f"approve {symbol}")
            logger.info("Approved %s %s to %s", amount, symbol, snapshot.address)

    # ------------------------------------------------------------------
    # ASSEMBLE_ORACLE_PAYLOAD / PREFLIGHT_CHECK
    # ------------------------------------------------------------------

    async def assemble_oracle_payload(
        self, loan: PrimeAccount, snapshot: LoanSnapshot
    ) -> bytes:
        owned = await loan.get_all_owned_assets()
        symbols = sorted(set(owned) | set(snapshot.pool_symbols))
        return await self._ctx.oracle.fetch_payload(symbols)

    async def preflight_check(self, loan: PrimeAccount, payload: bytes) -> tuple[bool, Decimal]:
        """Re-read health; the attempt proceeds only below the preflight threshold."""
        health = from_wei(await loan.get_health_ratio(payload))
        return health < self._liquidation.preflight_threshold, health

    # ------------------------------------------------------------------
    # EXECUTE / OBSERVE_RESULT
    # ------------------------------------------------------------------

    def build_flash_loan_params(
        self, plan: LiquidationPlan, snapshot: LoanSnapshot, payload: bytes
    ) -> FlashLoanParams:
        amounts = tuple(
            to_base_units(plan.repay_amounts.get(a.symbol, Decimal(0)), a.decimals)
            for a in snapshot.pool_assets
        )
        return FlashLoanParams(
            assets=tuple(a.address for a in snapshot.pool_assets),
            amounts=amounts,
            params=payload,
            bonus=plan.bonus_per_mille,
            liquidator=self._ctx.liquidator_address,
            loan_address=snapshot.address,
            token_manager=self._config.contracts.token_manager,
        )

    async def _execute_and_observe(
        self, plan: LiquidationPlan, snapshot: LoanSnapshot, payload: bytes
    ) -> dict[str, Any]:
        params = self.build_flash_loan_params(plan, snapshot, payload)
        try:
            tx_hash = await self._flash_loan.execute_flashloan(params, payload)
        except RpcError as e:
            reason = decode_revert_reason(e.data) or e.message
            logger.error("Liquidation of %s rejected on submission: %s", snapshot.address, reason)
            return {"status": AttemptStatus.REVERTED, "revert_reason": reason}
        except BroadcastUnknown as e:
            logger.warning(
                "Liquidation tx %s may have been broadcast (%s); reconcile before retrying",
                e.tx_hash,
                e.cause,
            )
            return {
                "status": AttemptStatus.TIMEOUT,
                "tx_hash": e.tx_hash,
                "detail": "broadcast unconfirmed",
            }

        logger.info("Waiting for liquidation tx %s", tx_hash)
        try:
            receipt = await self._ctx.client.wait_for_receipt(
                tx_hash,
                timeout=self._execution.confirmation_timeout,
                poll_interval=self._execution.poll_interval,
            )
        except TransactionTimeout:
            logger.warning(
                "Liquidation tx %s unconfirmed after %.0fs; reconcile before retrying",
                tx_hash,
                self._execution.confirmation_timeout,
            )
            return {"status": AttemptStatus.TIMEOUT, "tx_hash": tx_hash}

        if receipt_succeeded(receipt):
            return {"status": AttemptStatus.SUCCESS, "tx_hash": tx_hash}

        reason: str | None = None
        try:
            reason = await self._ctx.client.revert_reason(tx_hash, receipt)
        except Exception as e:
            logger.warning("Could not recover revert reason for %s: %s", tx_hash, e)
        return {"status": AttemptStatus.REVERTED, "tx_hash": tx_hash, "revert_reason": reason}

    # ------------------------------------------------------------------
    # Public workflows
    # ------------------------------------------------------------------

    async def liquidate(
        self,
        loan_address: str,
        mode: PlanMode | str | None = None,
        action: LiquidationAction | str | None = None,
    ) -> LiquidationResult:
        """Run one liquidation attempt. Never raises for on-chain or oracle failures."""
        started = time.monotonic()
        loan = self._loan(loan_address)
        report = CollateralReport()
        plan: LiquidationPlan | None = None
        health: Decimal | None = None

        def finish(status: AttemptStatus, **kwargs: Any) -> LiquidationResult:
            return LiquidationResult(
                loan_address=loan_address,
                status=status,
                plan=plan,
                health_ratio=kwargs.pop("health_ratio", health),
                collateral_report=report,
                elapsed_seconds=time.monotonic() - started,
                **kwargs,
            )

        try:
            read_payload = await self._ctx.oracle.fetch_payload()
            snapshot = await self.fetch_state(loan, read_payload)

            report = await self.maximize_collateral(loan, read_payload)
            if report.succeeded:
                snapshot = await self.fetch_state(loan, read_payload)

            plan = build_plan(snapshot, self._liquidation, mode, action)

            await self.prepare_allowances(plan, snapshot)
            payload = await self.assemble_oracle_payload(loan, snapshot)

            liquidatable, health = await self.preflight_check(loan, payload)
            if not liquidatable:
                logger.info(
                    "Loan %s no longer liquidatable (health %.4f), aborting",
                    loan_address,
                    health,
                )
                result = finish(AttemptStatus.NOT_LIQUIDATABLE, detail="no longer liquidatable")
            else:
                result = finish(**await self._execute_and_observe(plan, snapshot, payload))
        except PlanValidationError as e:
            logger.error("Invalid liquidation plan for %s: %s", loan_address, e)
            result = finish(AttemptStatus.PLAN_INVALID, detail=str(e))
        except OraclePayloadError as e:
            logger.error("Oracle payload unavailable for %s: %s", loan_address, e)
            result = finish(AttemptStatus.ORACLE_FAILED, detail=str(e))
        except TransactionReverted as e:
            logger.error("Preparation tx for %s reverted: %s", loan_address, e)
            result = finish(
                AttemptStatus.FAILED,
                tx_hash=e.tx_hash,
                revert_reason=e.reason,
                detail="allowance transaction reverted",
            )
        except Exception as e:
            logger.exception("Liquidation attempt for %s failed", loan_address)
            result = finish(AttemptStatus.FAILED, detail=str(e))

        logger.info(
            "Liquidation of %s finished: %s in %.1fs",
            loan_address,
            result.status.value,
            result.elapsed_seconds,
        )
        await self._notify(result)
        return result

    async def reconcile(self, tx_hash: str) -> AttemptStatus:
        """Resolve a timed-out attempt. TIMEOUT means the tx is still unknown."""
        receipt = await self._ctx.client.get_receipt(tx_hash)
        if not receipt:
            return AttemptStatus.TIMEOUT
        return AttemptStatus.SUCCESS if receipt_succeeded(receipt) else AttemptStatus.REVERTED

    async def health_ratio(self, loan_address: str) -> Decimal:
        payload = await self._ctx.oracle.fetch_payload()
        return from_wei(await self._loan(loan_address).get_health_ratio(payload))

    async def inspect(self, loan_address: str) -> LoanSnapshot:
        """Read-only snapshot of a loan; sends no transactions."""
        payload = await self._ctx.oracle.fetch_payload()
        return await self.fetch_state(self._loan(loan_address), payload)

    @staticmethod
    def estimate_health(snapshot: LoanSnapshot) -> Decimal:
        """Off-chain health estimate from the snapshot's balances and debt coverage."""
        symbols = set(snapshot.balances) | set(snapshot.debts)
        return calculate_health(
            HealthToken(
                price=snapshot.prices.get(s, Decimal(0)),
                balance=snapshot.balances.get(s, Decimal(0)),
                borrowed=snapshot.debts.get(s, Decimal(0)),
                debt_coverage=snapshot.debt_coverages.get(s, Decimal(0)),
            )
            for s in symbols
        )

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _build_report(self, result: LiquidationResult) -> str:
        icons = {
            AttemptStatus.SUCCESS: "✅",
            AttemptStatus.NOT_LIQUIDATABLE: "ℹ️",
            AttemptStatus.TIMEOUT: "⏳",
        }
        lines = [
            f"{icons.get(result.status, '🚨')} Liquidation {result.status.value.upper()}",
            "",
            f"Loan: {result.loan_address}",
        ]
        if result.plan:
            lines.append(
                f"Action: {result.plan.action.value} · Repay: ${result.plan.total_repay_usd:,.2f}"
                f" · Bonus: {result.plan.bonus * 100:.1f}%"
            )
        if result.health_ratio is not None:
            lines.append(f"Health: {result.health_ratio:.4f}")
        if result.tx_hash:
            lines.append(f"Tx: {result.tx_hash}")
        if result.revert_reason:
            lines.append(f"Reason: {result.revert_reason}")
        if result.detail:
            lines.append(f"Detail: {result.detail}")
        if result.collateral_report.failed:
            names = ", ".join(r.adapter for r in result.collateral_report.failed)
            lines.append(f"Unwind failures: {names}")
        lines += ["", f"{self._now_str()} UTC"]
        return "\n".join(lines)

    async def _notify(self, result: LiquidationResult) -> None:
        message = self._build_report(result)
        silent = result.status is AttemptStatus.NOT_LIQUIDATABLE
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)
