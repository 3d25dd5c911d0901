"""On-chain contract wrappers."""
from .base import Contract, encode_call
from .erc20 import ERC20
from .flash_loan import EXECUTE_FLASHLOAN, FlashLoanParams, LiquidationFlashloan
from .loan import PrimeAccount, StakedPosition
from .token_manager import TokenManager

__all__ = [
    "Contract",
    "EXECUTE_FLASHLOAN",
    "ERC20",
    "FlashLoanParams",
    "LiquidationFlashloan",
    "PrimeAccount",
    "StakedPosition",
    "TokenManager",
    "encode_call",
]
