"""Exception hierarchy for the liquidator."""
from __future__ import annotations

from typing import Any


class LiquidatorError(Exception):
    """Base class for all liquidator errors."""


class PlanValidationError(LiquidatorError, ValueError):
    """Sizing inputs are degenerate (zero price, non-positive target LTV, ...)."""


class RpcError(LiquidatorError):
    """JSON-RPC node returned an error object."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(f"RPC Error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class OraclePayloadError(LiquidatorError):
    """Signed price packages could not be fetched or serialized."""


class TransactionTimeout(LiquidatorError):
    """No receipt observed within the confirmation bound. Status is unknown."""

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(f"Transaction {tx_hash} not confirmed within {timeout}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class TransactionReverted(LiquidatorError):
    """Transaction was mined with status 0 or rejected by the node on submission."""

    def __init__(self, tx_hash: str | None, reason: str | None = None) -> None:
        super().__init__(f"Transaction {tx_hash or '<unsent>'} reverted: {reason or 'unknown reason'}")
        self.tx_hash = tx_hash
        self.reason = reason


class BroadcastUnknown(LiquidatorError):
    """A signed transaction may have reached a node but no endpoint confirmed it."""

    def __init__(self, tx_hash: str, cause: Exception | None) -> None:
        super().__init__(f"Broadcast of {tx_hash} unconfirmed: {cause}")
        self.tx_hash = tx_hash
        self.cause = cause
