"""Price oracle clients."""
from .redstone import RedstoneOracle

__all__ = ["RedstoneOracle"]
