"""Service modules"""
from .liquidator import ExecutionContext, Liquidator
from .watcher import Watcher

__all__ = ["ExecutionContext", "Liquidator", "Watcher"]
