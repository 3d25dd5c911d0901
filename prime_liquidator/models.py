"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class LiquidationAction(str, Enum):
    CLOSE = "CLOSE"
    HEAL = "HEAL"
    LIQUIDATE = "LIQUIDATE"


class PlanMode(str, Enum):
    """How the total repay amount is sized."""

    LTV = "ltv"
    SELLOUT = "sellout"


class UnwindStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    REVERTED = "reverted"
    TIMEOUT = "timeout"
    NOT_LIQUIDATABLE = "not_liquidatable"
    PLAN_INVALID = "plan_invalid"
    ORACLE_FAILED = "oracle_failed"
    FAILED = "failed"


@dataclass(frozen=True)
class Asset:
    """Fungible token tracked by the protocol."""

    symbol: str
    address: str
    decimals: int
    debt_coverage: Decimal = Decimal(0)


@dataclass(frozen=True)
class LoanSnapshot:
    """Loan state read at a single instant. Never reused across attempts."""

    address: str
    debts: dict[str, Decimal]
    balances: dict[str, Decimal]
    prices: dict[str, Decimal]
    total_value: Decimal
    debt: Decimal
    health_ratio: Decimal
    pool_assets: tuple[Asset, ...] = ()
    debt_coverages: dict[str, Decimal] = field(default_factory=dict)

    @property
    def is_bankrupt(self) -> bool:
        return self.total_value < self.debt

    @property
    def pool_symbols(self) -> tuple[str, ...]:
        return tuple(a.symbol for a in self.pool_assets)


@dataclass(frozen=True)
class LiquidationPlan:
    """Pure output of the sizing module for one attempt.

    ``repay_amounts`` and ``delivered_amounts`` are denominated in asset
    units. ``repay_order`` is the order in which debt pools absorbed the
    total repay amount.
    """

    action: LiquidationAction
    mode: PlanMode
    total_repay_usd: Decimal
    repay_amounts: dict[str, Decimal]
    delivered_amounts: dict[str, Decimal]
    bonus: Decimal
    repay_order: tuple[str, ...] = ()

    @property
    def bonus_per_mille(self) -> int:
        return int((self.bonus * 1000).to_integral_value())


@dataclass(frozen=True)
class UnwindResult:
    """Outcome of one collateral-unwind adapter."""

    adapter: str
    status: UnwindStatus
    detail: str = ""
    tx_hashes: tuple[str, ...] = ()


@dataclass(frozen=True)
class CollateralReport:
    results: tuple[UnwindResult, ...] = ()

    def _by_status(self, status: UnwindStatus) -> tuple[UnwindResult, ...]:
        return tuple(r for r in self.results if r.status is status)

    @property
    def succeeded(self) -> tuple[UnwindResult, ...]:
        return self._by_status(UnwindStatus.SUCCESS)

    @property
    def skipped(self) -> tuple[UnwindResult, ...]:
        return self._by_status(UnwindStatus.SKIPPED)

    @property
    def failed(self) -> tuple[UnwindResult, ...]:
        return self._by_status(UnwindStatus.FAILED)


@dataclass(frozen=True)
class LiquidationResult:
    """Typed outcome of one liquidation attempt."""

    loan_address: str
    status: AttemptStatus
    plan: LiquidationPlan | None = None
    tx_hash: str | None = None
    revert_reason: str | None = None
    health_ratio: Decimal | None = None
    collateral_report: CollateralReport = field(default_factory=CollateralReport)
    detail: str = ""
    elapsed_seconds: float = 0.0

    @property
    def requires_reconciliation(self) -> bool:
        """A timed-out attempt has unknown status and must be reconciled before any retry."""
        return self.status is AttemptStatus.TIMEOUT
