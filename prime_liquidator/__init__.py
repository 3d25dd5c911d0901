"""Off-chain liquidation engine for Prime Account loans."""

__version__ = "0.1.0"
