"""Fixed-point conversion helpers.

On-chain amounts are integers scaled by a token's decimals. Everything
off-chain is ``Decimal``; conversion happens only here.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_UP, Decimal, localcontext

WAD_DECIMALS = 18
PRICE_DECIMALS = 8

# uint256 has at most 78 decimal digits
_UINT256_DIGITS = 78


def from_base_units(raw: int, decimals: int) -> Decimal:
    """Convert an on-chain integer amount into a Decimal amount."""
    with localcontext() as ctx:
        ctx.prec = _UINT256_DIGITS
        return Decimal(int(raw)).scaleb(-decimals)


def from_wei(raw: int) -> Decimal:
    return from_base_units(raw, WAD_DECIMALS)


def to_base_units(amount: Decimal, decimals: int, rounding: str = ROUND_DOWN) -> int:
    """Convert a Decimal amount into an on-chain integer.

    Repay amounts use ROUND_DOWN so they never exceed the on-chain debt;
    allowances use ROUND_UP so they never fall short.
    """
    if amount <= 0:
        return 0
    with localcontext() as ctx:
        ctx.prec = _UINT256_DIGITS
        scaled = Decimal(amount).scaleb(decimals)
        return int(scaled.quantize(Decimal(1), rounding=rounding))


def to_allowance_units(amount: Decimal, decimals: int) -> int:
    return to_base_units(amount, decimals, rounding=ROUND_UP)


def to_bytes32(symbol: str) -> bytes:
    """Encode an asset symbol as a right-padded bytes32."""
    encoded = symbol.encode("utf-8")
    if len(encoded) > 31:
        raise ValueError(f"Symbol too long for bytes32: {symbol!r}")
    return encoded.ljust(32, b"\x00")


def from_bytes32(value: bytes) -> str:
    return bytes(value).rstrip(b"\x00").decode("utf-8")
