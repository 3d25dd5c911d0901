"""Signed price oracle protocol — symbols in, opaque calldata payload out."""
from typing import Protocol


class SignedPriceOracle(Protocol):
    """Abstract interface for fetching signed price attestations."""

    async def fetch_payload(self, symbols: list[str] | None = None) -> bytes: ...
