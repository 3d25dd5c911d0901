"""Unstaking adapter protocol — frees illiquid collateral on a loan."""
from typing import TYPE_CHECKING, Protocol

from ..models import UnwindResult

if TYPE_CHECKING:
    from ..contracts.loan import PrimeAccount


class UnstakingAdapter(Protocol):
    """Abstract interface for one best-effort collateral unwind step."""

    @property
    def name(self) -> str: ...

    async def unwind(self, loan: "PrimeAccount", payload: bytes) -> UnwindResult: ...
