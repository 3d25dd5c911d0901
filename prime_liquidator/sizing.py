"""Liquidation sizing — pure functions, no network access.

All arithmetic runs in a 50-digit decimal context with ROUND_HALF_EVEN,
except the waterfall division, which truncates. The only explicit
quantization is the bonus (3 decimal places, ROUND_HALF_UP, matching the
contract's per-mille precision).
Conversion to on-chain integers happens in ``units``.

The formulas treat LTV as ``debt / (total_value - debt)``. A liquidation
repays ``repay`` of debt and removes ``repay * (1 + bonus)`` of collateral.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, Context, Decimal, localcontext
from typing import TYPE_CHECKING

from .errors import PlanValidationError
from .models import LiquidationAction, LiquidationPlan, LoanSnapshot, PlanMode

if TYPE_CHECKING:
    from .config import LiquidationConfig

logger = logging.getLogger(__name__)

_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)
_BONUS_QUANTUM = Decimal("0.001")
_ZERO = Decimal(0)
_ONE = Decimal(1)

# Safety margin on the sellout repay amount, compensating for price and
# rounding drift between plan computation and on-chain execution.
DEFAULT_SELLOUT_MARGIN = Decimal("1.04")

# Over-supply factor on delivered amounts; prices may be stale by the time
# the transaction executes.
DEFAULT_SUPPLY_MARGIN = Decimal("1.1")

ORDER_USD_DESC = "usd_desc"
ORDER_POOL = "pool"


def _action(action: LiquidationAction | str) -> LiquidationAction:
    if isinstance(action, LiquidationAction):
        return action
    try:
        return LiquidationAction(str(action).upper())
    except ValueError:
        return LiquidationAction.LIQUIDATE


def to_repay(
    action: LiquidationAction | str,
    debt: Decimal,
    initial_total_value: Decimal,
    target_ltv: Decimal,
    bonus: Decimal,
) -> Decimal:
    """USD amount to repay so the loan ends at ``target_ltv``.

    CLOSE repays everything. HEAL (bankrupt loans) pays no bonus. Any other
    action is treated as LIQUIDATE.
    """
    with localcontext(_CONTEXT):
        act = _action(action)
        if act is LiquidationAction.CLOSE:
            return +debt
        if act is LiquidationAction.HEAL:
            return (debt - target_ltv * (initial_total_value - debt)) / (1 + target_ltv)
        return ((1 + target_ltv) * debt - target_ltv * initial_total_value) / (
            1 - target_ltv * bonus
        )


def calculate_bonus(
    action: LiquidationAction | str,
    debt: Decimal,
    initial_total_value: Decimal,
    target_ltv: Decimal,
    max_bonus: Decimal,
) -> Decimal:
    """Liquidator bonus in ``[0, max_bonus]``, rounded to 0.1%."""
    act = _action(action)
    if act in (LiquidationAction.CLOSE, LiquidationAction.HEAL):
        return _ZERO
    with localcontext(_CONTEXT):
        possible = (
            1 - ((1 + target_ltv) * debt - target_ltv * initial_total_value) / debt
        ) / target_ltv
        bounded = max(min(possible, max_bonus), _ZERO)
        return bounded.quantize(_BONUS_QUANTUM, rounding=ROUND_HALF_UP)


def get_sellout_repay_amount(
    total_value: Decimal,
    debt: Decimal,
    bonus: Decimal,
    target_ltv: Decimal,
    margin: Decimal = DEFAULT_SELLOUT_MARGIN,
) -> Decimal:
    """Fixed-ratio repay amount for automated sellouts, inflated by ``margin``."""
    with localcontext(_CONTEXT):
        return (target_ltv * (total_value - debt) - debt) / (target_ltv * bonus - 1) * margin


def get_repay_amounts(
    debts: Mapping[str, Decimal],
    to_repay_usd: Decimal,
    prices: Mapping[str, Decimal],
    order: Sequence[str],
) -> dict[str, Decimal]:
    """Spread ``to_repay_usd`` across debt pools in ``order``.

    Each pool absorbs up to its own debt value before the next one is
    touched. Symbols in ``order`` without a debt entry get nothing. Returned
    amounts are in asset units and keep ``order``.
    """
    repay_amounts: dict[str, Decimal] = {}
    with localcontext(_CONTEXT):
        left_usd = +to_repay_usd
        for symbol in order:
            if symbol not in debts:
                continue
            price = prices[symbol]
            available_usd = debts[symbol] * price
            repaid_usd = max(min(available_usd, left_usd), _ZERO)
            left_usd -= repaid_usd
            with localcontext() as down:
                # truncate so amount * price never exceeds repaid_usd
                down.rounding = ROUND_DOWN
                amount = repaid_usd / price
            repay_amounts[symbol] = min(amount, debts[symbol])
    return repay_amounts


def to_supply(
    balances: Mapping[str, Decimal],
    repay_amounts: Mapping[str, Decimal],
    margin: Decimal = DEFAULT_SUPPLY_MARGIN,
) -> dict[str, Decimal]:
    """Amount of each repaid asset the liquidator must bring on top of the loan's own balance."""
    supplied: dict[str, Decimal] = {}
    with localcontext(_CONTEXT):
        for symbol, amount in repay_amounts.items():
            shortfall = amount - balances.get(symbol, _ZERO)
            supplied[symbol] = max(shortfall, _ZERO) * margin
    return supplied


@dataclass(frozen=True)
class HealthToken:
    """One asset row for the off-chain health estimate."""

    price: Decimal
    balance: Decimal
    borrowed: Decimal
    debt_coverage: Decimal


def calculate_health(tokens: Iterable[HealthToken]) -> Decimal:
    """Estimate the health ratio from balances, borrowed amounts and debt coverage.

    Returns 1 when nothing is borrowed and 0 when weighted collateral is not
    positive.
    """
    rows = list(tokens)
    with localcontext(_CONTEXT):
        weighted_collateral = sum(
            (t.price * (t.balance - t.borrowed) * t.debt_coverage for t in rows), _ZERO
        )
        weighted_borrowed = sum(
            (t.price * t.borrowed * t.debt_coverage for t in rows), _ZERO
        )
        borrowed = sum((t.price * t.borrowed for t in rows), _ZERO)

        if borrowed == 0:
            return _ONE
        if weighted_collateral <= 0:
            return _ZERO
        health = (weighted_collateral + weighted_borrowed - borrowed) / weighted_collateral
        return max(health, _ZERO)


def order_debts(
    debts: Mapping[str, Decimal],
    prices: Mapping[str, Decimal],
    policy: str | Sequence[str] = ORDER_USD_DESC,
    pool_order: Sequence[str] = (),
) -> tuple[str, ...]:
    """Explicit allocation order for the repay waterfall.

    ``usd_desc`` repays the largest USD exposure first (ties broken by
    symbol). ``pool`` follows the token manager's pool order. A sequence of
    symbols is used as a priority list; debts it does not name follow in
    ``usd_desc`` order.
    """
    with localcontext(_CONTEXT):
        by_usd = sorted(
            debts,
            key=lambda s: (-(debts[s] * prices.get(s, _ZERO)), s),
        )

    if isinstance(policy, str):
        if policy == ORDER_USD_DESC:
            return tuple(by_usd)
        if policy == ORDER_POOL:
            ordered = [s for s in pool_order if s in debts]
            return tuple(ordered + [s for s in by_usd if s not in ordered])
        raise PlanValidationError(f"Unknown debt order policy '{policy}'")

    ordered = [s for s in policy if s in debts]
    return tuple(ordered + [s for s in by_usd if s not in ordered])


# ---------------------------------------------------------------------------
# Plan builder
# ---------------------------------------------------------------------------


def _validate_inputs(
    snapshot: LoanSnapshot, target_ltv: Decimal, bonus: Decimal | None = None
) -> None:
    if target_ltv <= 0:
        raise PlanValidationError(f"target LTV must be positive, got {target_ltv}")
    if bonus is not None:
        if bonus < 0:
            raise PlanValidationError(f"bonus must not be negative, got {bonus}")
        if target_ltv * bonus == 1:
            raise PlanValidationError("target LTV x bonus must not equal 1")
    if snapshot.debt <= 0:
        raise PlanValidationError(f"Loan {snapshot.address} has no debt to repay")
    for symbol, amount in snapshot.debts.items():
        if amount <= 0:
            continue
        price = snapshot.prices.get(symbol)
        if price is None or price <= 0:
            raise PlanValidationError(f"Missing or non-positive price for debt asset {symbol}")


def build_plan(
    snapshot: LoanSnapshot,
    config: LiquidationConfig,
    mode: PlanMode | str | None = None,
    action: LiquidationAction | str | None = None,
) -> LiquidationPlan:
    """Size a liquidation for ``snapshot``.

    Bankrupt loans are always healed. Raises ``PlanValidationError`` on
    degenerate inputs instead of clamping them.
    """
    plan_mode = PlanMode(mode or config.mode)
    if snapshot.is_bankrupt:
        act = LiquidationAction.HEAL
    else:
        act = _action(action or LiquidationAction.LIQUIDATE)

    debts = {s: a for s, a in snapshot.debts.items() if a > 0}

    if plan_mode is PlanMode.LTV:
        target_ltv = config.target_ltv
        _validate_inputs(snapshot, target_ltv)
        bonus = calculate_bonus(act, snapshot.debt, snapshot.total_value, target_ltv, config.max_bonus)
        _validate_inputs(snapshot, target_ltv, bonus)
        repay_usd = to_repay(act, snapshot.debt, snapshot.total_value, target_ltv, bonus)
    else:
        target_ltv = config.sellout_target_ltv
        bonus = _ZERO if act is not LiquidationAction.LIQUIDATE else config.sellout_bonus
        _validate_inputs(snapshot, target_ltv, bonus)
        if act is LiquidationAction.LIQUIDATE:
            repay_usd = get_sellout_repay_amount(
                snapshot.total_value, snapshot.debt, bonus, target_ltv, config.sellout_margin
            )
        else:
            repay_usd = to_repay(act, snapshot.debt, snapshot.total_value, target_ltv, bonus)

    if repay_usd <= 0:
        raise PlanValidationError(
            f"Loan {snapshot.address} needs no repayment to reach target LTV {target_ltv}"
        )
    repay_usd = min(repay_usd, snapshot.debt)

    order = order_debts(debts, snapshot.prices, config.debt_order, snapshot.pool_symbols)
    repay_amounts = get_repay_amounts(debts, repay_usd, snapshot.prices, order)
    delivered = to_supply(snapshot.balances, repay_amounts, config.supply_margin)

    logger.info(
        "Plan for %s: action=%s mode=%s repay=$%.2f bonus=%s order=%s",
        snapshot.address, act.value, plan_mode.value, repay_usd, bonus, ",".join(order),
    )

    return LiquidationPlan(
        action=act,
        mode=plan_mode,
        total_repay_usd=repay_usd,
        repay_amounts=repay_amounts,
        delivered_amounts=delivered,
        bonus=bonus,
        repay_order=order,
    )
