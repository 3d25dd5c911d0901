"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import PlanMode

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    name: str = "avalanche"
    chain_id: int = 43114
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class WalletConfig:
    private_key: str = ""


@dataclass(frozen=True)
class ContractsConfig:
    flash_loan: str = ""
    token_manager: str = ""


@dataclass(frozen=True)
class LiquidationConfig:
    """Sizing parameters and safety margins.

    The margins and the preflight threshold are empirical calibrations
    carried over from production liquidations, not derived values.
    """

    mode: str = PlanMode.LTV.value
    target_ltv: Decimal = Decimal("4.1")
    max_bonus: Decimal = Decimal("0.1")
    sellout_target_ltv: Decimal = Decimal("4.0")
    sellout_bonus: Decimal = Decimal("0.01")
    sellout_margin: Decimal = Decimal("1.04")
    supply_margin: Decimal = Decimal("1.1")
    allowance_margin: Decimal = Decimal("1.001")
    preflight_threshold: Decimal = Decimal("0.98")
    debt_order: str | tuple[str, ...] = "usd_desc"


@dataclass(frozen=True)
class ExecutionConfig:
    gas_limit: int = 8_000_000
    gas_price_gwei: int = 100
    confirmation_timeout: float = 60.0
    poll_interval: float = 2.0

    @property
    def gas_price_wei(self) -> int:
        return self.gas_price_gwei * 10**9


@dataclass(frozen=True)
class OracleConfig:
    gateway_urls: tuple[str, ...] = (
        "https://oracle-gateway-1.a.redstone.finance",
        "https://oracle-gateway-2.a.redstone.finance",
    )
    data_service_id: str = "redstone-avalanche-prod"
    unique_signers_count: int = 3
    unsigned_metadata: str = "manual-payload"
    timeout: int = 10


@dataclass(frozen=True)
class LpPositionConfig:
    symbol: str = ""
    first_asset: str = ""
    second_asset: str = ""
    remove_signature: str = ""


@dataclass(frozen=True)
class UnstakingConfig:
    staked_positions: bool = True
    tokens: dict[str, str] = field(default_factory=dict)
    lp_positions: tuple[LpPositionConfig, ...] = ()


@dataclass(frozen=True)
class WatcherConfig:
    loans: tuple[str, ...] = ()
    check_interval_minutes: int = 1


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    chain: ChainConfig = field(default_factory=ChainConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)
    liquidation: LiquidationConfig = field(default_factory=LiquidationConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    unstaking: UnstakingConfig = field(default_factory=UnstakingConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _decimal(raw: dict[str, Any], key: str, default: Decimal) -> Decimal:
    value = raw.get(key)
    if value is None:
        return default
    try:
        # str() first so YAML floats keep their written digits
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid number for '{key}': {value!r}") from e


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        name=raw.get("name", ChainConfig.name),
        chain_id=int(raw.get("chain_id", ChainConfig.chain_id)),
        # unset ${VAR} endpoints interpolate to ""
        rpc_endpoints=tuple(e for e in raw.get("rpc_endpoints", []) if e),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_wallet(raw: dict[str, Any]) -> WalletConfig:
    return WalletConfig(private_key=raw.get("private_key", ""))


def _build_contracts(raw: dict[str, Any]) -> ContractsConfig:
    return ContractsConfig(
        flash_loan=raw.get("flash_loan", ""),
        token_manager=raw.get("token_manager", ""),
    )


def _build_liquidation(raw: dict[str, Any]) -> LiquidationConfig:
    defaults = LiquidationConfig()
    debt_order = raw.get("debt_order", defaults.debt_order)
    if isinstance(debt_order, list):
        debt_order = tuple(debt_order)
    return LiquidationConfig(
        mode=str(raw.get("mode", defaults.mode)).lower(),
        target_ltv=_decimal(raw, "target_ltv", defaults.target_ltv),
        max_bonus=_decimal(raw, "max_bonus", defaults.max_bonus),
        sellout_target_ltv=_decimal(raw, "sellout_target_ltv", defaults.sellout_target_ltv),
        sellout_bonus=_decimal(raw, "sellout_bonus", defaults.sellout_bonus),
        sellout_margin=_decimal(raw, "sellout_margin", defaults.sellout_margin),
        supply_margin=_decimal(raw, "supply_margin", defaults.supply_margin),
        allowance_margin=_decimal(raw, "allowance_margin", defaults.allowance_margin),
        preflight_threshold=_decimal(raw, "preflight_threshold", defaults.preflight_threshold),
        debt_order=debt_order,
    )


def _build_execution(raw: dict[str, Any]) -> ExecutionConfig:
    return ExecutionConfig(
        gas_limit=int(raw.get("gas_limit", 8_000_000)),
        gas_price_gwei=int(raw.get("gas_price_gwei", 100)),
        confirmation_timeout=float(raw.get("confirmation_timeout", 60.0)),
        poll_interval=float(raw.get("poll_interval", 2.0)),
    )


def _build_oracle(raw: dict[str, Any]) -> OracleConfig:
    defaults = OracleConfig()
    return OracleConfig(
        gateway_urls=tuple(raw.get("gateway_urls", defaults.gateway_urls)),
        data_service_id=raw.get("data_service_id", defaults.data_service_id),
        unique_signers_count=int(raw.get("unique_signers_count", defaults.unique_signers_count)),
        unsigned_metadata=raw.get("unsigned_metadata", defaults.unsigned_metadata),
        timeout=int(raw.get("timeout", defaults.timeout)),
    )


def _build_unstaking(raw: dict[str, Any]) -> UnstakingConfig:
    lp_positions: list[LpPositionConfig] = []
    for lp in raw.get("lp_positions", []):
        lp_positions.append(
            LpPositionConfig(
                symbol=lp.get("symbol", ""),
                first_asset=lp.get("first_asset", ""),
                second_asset=lp.get("second_asset", ""),
                remove_signature=lp.get("remove_signature", ""),
            )
        )
    return UnstakingConfig(
        staked_positions=bool(raw.get("staked_positions", True)),
        tokens=dict(raw.get("tokens", {})),
        lp_positions=tuple(lp_positions),
    )


def _build_watcher(raw: dict[str, Any]) -> WatcherConfig:
    return WatcherConfig(
        loans=tuple(raw.get("loans", [])),
        check_interval_minutes=int(raw.get("check_interval_minutes", 1)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            bot_token=tg.get("bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from the package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        chain=_build_chain(raw.get("chain", {})),
        wallet=_build_wallet(raw.get("wallet", {})),
        contracts=_build_contracts(raw.get("contracts", {})),
        liquidation=_build_liquidation(raw.get("liquidation", {})),
        execution=_build_execution(raw.get("execution", {})),
        oracle=_build_oracle(raw.get("oracle", {})),
        unstaking=_build_unstaking(raw.get("unstaking", {})),
        watcher=_build_watcher(raw.get("watcher", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")
    if not cfg.wallet.private_key:
        raise ValueError("Liquidator private key is not configured")
    if not cfg.contracts.flash_loan or not cfg.contracts.token_manager:
        raise ValueError("Flash loan and token manager addresses are required")

    liq = cfg.liquidation
    if liq.mode not in {m.value for m in PlanMode}:
        raise ValueError(f"Unknown liquidation mode '{liq.mode}'")
    if liq.target_ltv <= 0 or liq.sellout_target_ltv <= 0:
        raise ValueError("Target LTV must be positive")
    if liq.max_bonus < 0 or liq.sellout_bonus < 0:
        raise ValueError("Bonus must not be negative")
    for name in ("sellout_margin", "supply_margin", "allowance_margin"):
        if getattr(liq, name) < 1:
            raise ValueError(f"{name} must be at least 1")
    if not 0 < liq.preflight_threshold < 1:
        raise ValueError("preflight_threshold must be strictly between 0 and 1")
    if isinstance(liq.debt_order, str) and liq.debt_order not in ("usd_desc", "pool"):
        raise ValueError(f"Unknown debt order policy '{liq.debt_order}'")

    for lp in cfg.unstaking.lp_positions:
        if not (lp.symbol and lp.first_asset and lp.second_asset and lp.remove_signature):
            raise ValueError(f"LP position '{lp.symbol}' is incompletely configured")
