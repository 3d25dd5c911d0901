"""Protocol interfaces for the liquidator's collaborators."""
from .chain import ChainClient
from .notifier import Notifier
from .price_oracle import SignedPriceOracle
from .unstaking import UnstakingAdapter

__all__ = ["ChainClient", "Notifier", "SignedPriceOracle", "UnstakingAdapter"]
