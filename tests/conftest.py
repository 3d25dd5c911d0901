"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

from prime_liquidator.config import (
    AppConfig,
    ChainConfig,
    ContractsConfig,
    ExecutionConfig,
    LiquidationConfig,
    UnstakingConfig,
    WalletConfig,
)
from prime_liquidator.errors import TransactionTimeout
from prime_liquidator.models import Asset, LoanSnapshot
from prime_liquidator.units import from_bytes32

TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

LIQUIDATOR = "0x" + "11" * 20
LOAN = "0x" + "22" * 20
FLASH_LOAN = "0x" + "33" * 20
TOKEN_MANAGER = "0x" + "44" * 20
USDC = "0x" + "55" * 20
AVAX = "0x" + "66" * 20

WAD = 10**18


def selector(signature: str) -> bytes:
    return function_signature_to_4byte_selector(signature)


# ---------------------------------------------------------------------------
# Fake chain
# ---------------------------------------------------------------------------


class FakeChainClient:
    """In-memory ChainClient: canned eth_call results keyed by (address, selector)."""

    def __init__(self) -> None:
        self.address = LIQUIDATOR
        self._calls: dict[tuple[str, bytes], Callable[[bytes], bytes]] = {}
        self.sent: list[tuple[str, bytes]] = []
        self.failed_receipts: set[str] = set()
        self.timeouts: set[str] = set()
        self.timeout_targets: set[str] = set()
        self.revert_targets: set[str] = set()
        self.revert_message = "insufficient repayment"
        # address -> exception raised when a tx to it is submitted
        self.submit_errors: dict[str, Exception] = {}

    def on_call(self, to: str, signature: str, types: list[str], values: list[Any]) -> None:
        encoded = encode(types, values)
        self._calls[(to.lower(), selector(signature))] = lambda _data: encoded

    def on_call_fn(self, to: str, signature: str, fn: Callable[[bytes], bytes]) -> None:
        self._calls[(to.lower(), selector(signature))] = fn

    def on_selector(self, to: str, raw_selector: bytes, types: list[str], values: list[Any]) -> None:
        encoded = encode(types, values)
        self._calls[(to.lower(), raw_selector)] = lambda _data: encoded

    async def call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        return self._calls[(to.lower(), bytes(data[:4]))](bytes(data[4:]))

    async def send_transaction(self, to: str, data: bytes, gas_limit: int, gas_price: int) -> str:
        if to.lower() in self.submit_errors:
            raise self.submit_errors[to.lower()]
        self.sent.append((to.lower(), bytes(data)))
        tx_hash = "0x" + f"{len(self.sent):064x}"
        if to.lower() in self.timeout_targets:
            self.timeouts.add(tx_hash)
        if to.lower() in self.revert_targets:
            self.failed_receipts.add(tx_hash)
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        if tx_hash in self.timeouts:
            return None
        return {"status": "0x0" if tx_hash in self.failed_receipts else "0x1", "blockNumber": "0x10"}

    async def wait_for_receipt(self, tx_hash: str, timeout: float, poll_interval: float = 2.0) -> dict[str, Any]:
        receipt = await self.get_receipt(tx_hash)
        if receipt is None:
            raise TransactionTimeout(tx_hash, timeout)
        return receipt

    async def revert_reason(self, tx_hash: str, receipt: dict[str, Any]) -> str | None:
        return self.revert_message

    def sent_to(self, address: str) -> list[bytes]:
        return [data for to, data in self.sent if to == address.lower()]


def _asset_address_lookup(addresses: dict[str, str]) -> Callable[[bytes], bytes]:
    def lookup(args: bytes) -> bytes:
        symbol, _ = decode(["bytes32", "bool"], args)
        return encode(["address"], [addresses[from_bytes32(symbol)]])

    return lookup


def _named(rows: dict[str, int]) -> list[tuple[bytes, int]]:
    return [(name.encode().ljust(32, b"\x00"), value) for name, value in rows.items()]


def install_loan(
    chain: FakeChainClient,
    *,
    debts: dict[str, int] | None = None,
    balances: dict[str, int] | None = None,
    prices: dict[str, int] | None = None,
    total_value: int = 1100 * WAD,
    debt: int = 1000 * WAD,
    health: int = WAD * 9 // 10,
) -> None:
    """Two-pool protocol (USDC 6 decimals, AVAX 18 decimals) and one loan."""
    debts = debts if debts is not None else {"USDC": 600 * 10**6, "AVAX": 20 * WAD}
    balances = balances if balances is not None else {"USDC": 100 * 10**6, "AVAX": 50 * WAD}
    prices = prices if prices is not None else {"USDC": 1 * 10**8, "AVAX": 20 * 10**8}

    chain.on_call(TOKEN_MANAGER, "getAllPoolAssets()", ["bytes32[]"], [[b"USDC".ljust(32, b"\x00"), b"AVAX".ljust(32, b"\x00")]])
    chain.on_call_fn(
        TOKEN_MANAGER,
        "getAssetAddress(bytes32,bool)",
        _asset_address_lookup({"USDC": USDC, "AVAX": AVAX}),
    )
    chain.on_call(TOKEN_MANAGER, "debtCoverage(address)", ["uint256"], [833333333333333333])
    chain.on_call(USDC, "decimals()", ["uint8"], [6])
    chain.on_call(AVAX, "decimals()", ["uint8"], [18])

    chain.on_call(LOAN, "getDebts()", ["(bytes32,uint256)[]"], [_named(debts)])
    chain.on_call(LOAN, "getAllAssetsBalances()", ["(bytes32,uint256)[]"], [_named(balances)])
    chain.on_call(LOAN, "getAllAssetsPrices()", ["(bytes32,uint256)[]"], [_named(prices)])
    chain.on_call(LOAN, "getTotalValue()", ["uint256"], [total_value])
    chain.on_call(LOAN, "getDebt()", ["uint256"], [debt])
    chain.on_call(LOAN, "getHealthRatio()", ["uint256"], [health])
    chain.on_call(
        LOAN,
        "getAllOwnedAssets()",
        ["bytes32[]"],
        [[b"AVAX".ljust(32, b"\x00"), b"USDC".ljust(32, b"\x00")]],
    )


@pytest.fixture()
def fake_chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture()
def fake_oracle() -> AsyncMock:
    oracle = AsyncMock()
    oracle.fetch_payload.return_value = b"SIGNED-PRICES"
    return oracle


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def liquidation_config() -> LiquidationConfig:
    return LiquidationConfig(target_ltv=Decimal("0.833"), max_bonus=Decimal("0.05"))


@pytest.fixture()
def app_config(liquidation_config: LiquidationConfig) -> AppConfig:
    return AppConfig(
        chain=ChainConfig(
            rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
            rpc_timeout=5,
        ),
        wallet=WalletConfig(private_key=TEST_PRIVATE_KEY),
        contracts=ContractsConfig(flash_loan=FLASH_LOAN, token_manager=TOKEN_MANAGER),
        liquidation=liquidation_config,
        execution=ExecutionConfig(confirmation_timeout=1, poll_interval=0),
        unstaking=UnstakingConfig(staked_positions=False),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_snapshot() -> LoanSnapshot:
    """Debt $1000 (USDC 600 + AVAX 20 @ $20), total value $1100."""
    return LoanSnapshot(
        address=LOAN,
        debts={"USDC": Decimal(600), "AVAX": Decimal(20)},
        balances={"USDC": Decimal(100), "AVAX": Decimal(50)},
        prices={"USDC": Decimal(1), "AVAX": Decimal(20)},
        total_value=Decimal(1100),
        debt=Decimal(1000),
        health_ratio=Decimal("0.9"),
        pool_assets=(
            Asset("USDC", USDC, 6, Decimal("0.833")),
            Asset("AVAX", AVAX, 18, Decimal("0.833")),
        ),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    chain:
      name: avalanche
      chain_id: 43114
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    wallet:
      private_key: "0xabc"
    contracts:
      flash_loan: "0x3333333333333333333333333333333333333333"
      token_manager: "0x4444444444444444444444444444444444444444"
    liquidation:
      mode: sellout
      target_ltv: 4.1
      max_bonus: 0.1
      debt_order: [USDC, AVAX]
    execution:
      gas_limit: 5000000
      gas_price_gwei: 30
      confirmation_timeout: 45
    oracle:
      data_service_id: redstone-test
      unique_signers_count: 1
    unstaking:
      staked_positions: false
      tokens: {YY_AAVE_AVAX: "unstakeAVAXYak(uint256)"}
      lp_positions:
        - symbol: PNG_AVAX_USDC_LP
          first_asset: AVAX
          second_asset: USDC
          remove_signature: "removeLiquidityPangolin(bytes32,bytes32,uint256,uint256,uint256)"
    watcher:
      loans: ["0x2222222222222222222222222222222222222222"]
      check_interval_minutes: 3
    notifications:
      telegram:
        enabled: true
        bot_token: "tok"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
