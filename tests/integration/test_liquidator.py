"""Integration tests for the liquidation workflow against an in-memory chain."""
from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import (
    AVAX,
    FLASH_LOAN,
    LIQUIDATOR,
    LOAN,
    TOKEN_MANAGER,
    USDC,
    WAD,
    FakeChainClient,
    install_loan,
    selector,
)
from eth_abi import decode, encode

from prime_liquidator.config import AppConfig
from prime_liquidator.contracts import EXECUTE_FLASHLOAN
from prime_liquidator.errors import BroadcastUnknown, OraclePayloadError, RpcError
from prime_liquidator.models import (
    AttemptStatus,
    LiquidationAction,
    UnwindResult,
    UnwindStatus,
)
from prime_liquidator.services import ExecutionContext, Liquidator

PAYLOAD = b"SIGNED-PRICES"
FLASH_LOAN_ARGS = "(address[],uint256[],uint256[],bytes,uint256,address,address,address)"


def _flash_loan_args(data: bytes) -> tuple:
    assert data[:4] == selector(EXECUTE_FLASHLOAN)
    assert data.endswith(PAYLOAD)
    (args,) = decode([FLASH_LOAN_ARGS], data[4 : -len(PAYLOAD)])
    return args


def _approval(data: bytes) -> tuple[str, int]:
    assert data[:4] == selector("approve(address,uint256)")
    return decode(["address", "uint256"], data[4:])


@pytest.fixture()
def notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.send_alert.return_value = True
    return notifier


@pytest.fixture()
def liquidator(
    fake_chain: FakeChainClient,
    fake_oracle: AsyncMock,
    app_config: AppConfig,
    notifier: AsyncMock,
) -> Liquidator:
    install_loan(fake_chain)
    return Liquidator(
        ExecutionContext(fake_chain, fake_oracle, app_config),
        adapters=[],
        notifiers=[notifier],
    )


class TestSuccessfulLiquidation:
    @pytest.mark.asyncio
    async def test_flash_loan_arguments(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.SUCCESS
        assert result.tx_hash is not None
        (data,) = fake_chain.sent_to(FLASH_LOAN)
        assets, amounts, modes, params, bonus, liquidator_addr, loan, manager = _flash_loan_args(data)

        # amounts follow pool order, not repay order
        assert assets == (USDC, AVAX)
        assert amounts[0] == 600 * 10**6
        assert 1782 * 10**16 < amounts[1] < 1783 * 10**16
        assert modes == (0, 0)
        assert params == PAYLOAD
        assert bonus == 50
        assert liquidator_addr == LIQUIDATOR
        assert loan == LOAN
        assert manager == TOKEN_MANAGER

    @pytest.mark.asyncio
    async def test_allowances_cover_delivered_amounts(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        await liquidator.liquidate(LOAN)

        (usdc_approval,) = fake_chain.sent_to(USDC)
        assert _approval(usdc_approval) == (LOAN, 550_550_000)
        # nothing delivered in AVAX, so no zero approval is sent
        assert fake_chain.sent_to(AVAX) == []
        # approvals go out before the liquidation itself
        assert fake_chain.sent[-1][0] == FLASH_LOAN.lower()

    @pytest.mark.asyncio
    async def test_payload_covers_owned_and_pool_assets(
        self, liquidator: Liquidator, fake_oracle: AsyncMock
    ) -> None:
        await liquidator.liquidate(LOAN)
        assert fake_oracle.fetch_payload.await_args_list[-1].args == (["AVAX", "USDC"],)

    @pytest.mark.asyncio
    async def test_plan_reported(self, liquidator: Liquidator, notifier: AsyncMock) -> None:
        result = await liquidator.liquidate(LOAN)

        assert result.plan is not None
        assert result.plan.action is LiquidationAction.LIQUIDATE
        assert result.plan.repay_order == ("USDC", "AVAX")
        message = notifier.send_alert.await_args.args[0]
        assert "SUCCESS" in message
        assert result.tx_hash in message
        assert notifier.send_alert.await_args.kwargs == {"silent": False}

    @pytest.mark.asyncio
    async def test_bankrupt_loan_healed_without_bonus(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        install_loan(fake_chain, total_value=900 * WAD)

        result = await liquidator.liquidate(LOAN, action="LIQUIDATE")

        assert result.status is AttemptStatus.SUCCESS
        assert result.plan.action is LiquidationAction.HEAL
        (data,) = fake_chain.sent_to(FLASH_LOAN)
        assert _flash_loan_args(data)[4] == 0


class TestAbortedAttempts:
    @pytest.mark.asyncio
    async def test_recovered_loan_not_liquidated(
        self, liquidator: Liquidator, fake_chain: FakeChainClient, notifier: AsyncMock
    ) -> None:
        install_loan(fake_chain, health=WAD)

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.NOT_LIQUIDATABLE
        assert result.health_ratio == Decimal(1)
        assert fake_chain.sent_to(FLASH_LOAN) == []
        assert notifier.send_alert.await_args.kwargs == {"silent": True}

    @pytest.mark.asyncio
    async def test_oracle_failure(
        self, liquidator: Liquidator, fake_chain: FakeChainClient, fake_oracle: AsyncMock
    ) -> None:
        fake_oracle.fetch_payload.side_effect = OraclePayloadError("gateways down")

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.ORACLE_FAILED
        assert "gateways down" in result.detail
        assert fake_chain.sent == []

    @pytest.mark.asyncio
    async def test_invalid_plan(self, liquidator: Liquidator, fake_chain: FakeChainClient) -> None:
        install_loan(fake_chain, prices={"USDC": 10**8, "AVAX": 0})

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.PLAN_INVALID
        assert "AVAX" in result.detail
        assert fake_chain.sent == []

    @pytest.mark.asyncio
    async def test_allowance_revert(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        fake_chain.revert_targets.add(USDC.lower())

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.FAILED
        assert result.detail == "allowance transaction reverted"
        assert fake_chain.sent_to(FLASH_LOAN) == []

    @pytest.mark.asyncio
    async def test_unexpected_error_reported_as_failed(
        self, fake_oracle: AsyncMock, app_config: AppConfig, notifier: AsyncMock
    ) -> None:
        # nothing installed: the first contract read fails
        liquidator = Liquidator(
            ExecutionContext(FakeChainClient(), fake_oracle, app_config),
            adapters=[],
            notifiers=[notifier],
        )

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.FAILED
        notifier.send_alert.assert_awaited_once()


class TestExecutionOutcomes:
    @pytest.mark.asyncio
    async def test_reverted_receipt(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        fake_chain.revert_targets.add(FLASH_LOAN.lower())

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.REVERTED
        assert result.revert_reason == "insufficient repayment"
        assert result.tx_hash is not None

    @pytest.mark.asyncio
    async def test_rejected_on_submission(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        revert = "0x08c379a0" + encode(["string"], ["LTV too high"]).hex()
        fake_chain.submit_errors[FLASH_LOAN.lower()] = RpcError(3, "execution reverted", revert)

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.REVERTED
        assert result.revert_reason == "LTV too high"
        assert result.tx_hash is None

    @pytest.mark.asyncio
    async def test_lost_broadcast_reply_requires_reconcile(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        pending = "0x" + "ab" * 32
        fake_chain.submit_errors[FLASH_LOAN.lower()] = BroadcastUnknown(
            pending, RpcError(-32000, "nonce too low")
        )
        fake_chain.timeouts.add(pending)

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.TIMEOUT
        assert result.tx_hash == pending
        assert result.requires_reconciliation
        assert await liquidator.reconcile(pending) is AttemptStatus.TIMEOUT

        fake_chain.timeouts.clear()
        assert await liquidator.reconcile(pending) is AttemptStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_timeout_then_reconcile(
        self, liquidator: Liquidator, fake_chain: FakeChainClient
    ) -> None:
        fake_chain.timeout_targets.add(FLASH_LOAN.lower())

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.TIMEOUT
        assert result.requires_reconciliation
        assert await liquidator.reconcile(result.tx_hash) is AttemptStatus.TIMEOUT

        fake_chain.timeouts.clear()
        assert await liquidator.reconcile(result.tx_hash) is AttemptStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_change_result(
        self, liquidator: Liquidator, notifier: AsyncMock
    ) -> None:
        notifier.send_alert.side_effect = RuntimeError("telegram down")

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.SUCCESS


class TestCollateralMaximization:
    @pytest.mark.asyncio
    async def test_failing_adapter_tolerated(
        self,
        fake_chain: FakeChainClient,
        fake_oracle: AsyncMock,
        app_config: AppConfig,
    ) -> None:
        install_loan(fake_chain)
        broken = AsyncMock()
        broken.name = "broken"
        broken.unwind.side_effect = RuntimeError("boom")
        liquidator = Liquidator(
            ExecutionContext(fake_chain, fake_oracle, app_config), adapters=[broken]
        )

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.SUCCESS
        (failed,) = result.collateral_report.failed
        assert failed.adapter == "broken"
        assert failed.detail == "boom"

    @pytest.mark.asyncio
    async def test_state_reread_after_unwind(
        self,
        fake_chain: FakeChainClient,
        fake_oracle: AsyncMock,
        app_config: AppConfig,
    ) -> None:
        install_loan(fake_chain)

        async def unwind(loan, payload):
            # unstaking freed enough USDC to cover the repayment
            install_loan(fake_chain, balances={"USDC": 700 * 10**6, "AVAX": 50 * WAD})
            return UnwindResult("freed", UnwindStatus.SUCCESS)

        adapter = MagicMock()
        adapter.name = "freed"
        adapter.unwind = unwind
        liquidator = Liquidator(
            ExecutionContext(fake_chain, fake_oracle, app_config), adapters=[adapter]
        )

        result = await liquidator.liquidate(LOAN)

        assert result.status is AttemptStatus.SUCCESS
        assert result.plan.delivered_amounts["USDC"] == 0
        assert fake_chain.sent_to(USDC) == []


class TestReadOnlyViews:
    @pytest.mark.asyncio
    async def test_inspect(self, liquidator: Liquidator, fake_chain: FakeChainClient) -> None:
        snapshot = await liquidator.inspect(LOAN)

        assert snapshot.debts == {"USDC": Decimal(600), "AVAX": Decimal(20)}
        assert snapshot.prices["AVAX"] == Decimal(20)
        assert snapshot.total_value == Decimal(1100)
        assert snapshot.pool_symbols == ("USDC", "AVAX")
        assert snapshot.debt_coverages["USDC"] == Decimal("0.833333333333333333")
        assert fake_chain.sent == []

    @pytest.mark.asyncio
    async def test_health_ratio(self, liquidator: Liquidator) -> None:
        assert await liquidator.health_ratio(LOAN) == Decimal("0.9")

    @pytest.mark.asyncio
    async def test_estimate_health_clamped_at_zero(self, liquidator: Liquidator) -> None:
        snapshot = await liquidator.inspect(LOAN)
        assert Liquidator.estimate_health(snapshot) == 0


class TestFromConfig:
    def test_builds_without_notifiers(self, app_config: AppConfig) -> None:
        liquidator = Liquidator.from_config(app_config)
        assert liquidator._notifiers == []
        assert liquidator._adapters == []
