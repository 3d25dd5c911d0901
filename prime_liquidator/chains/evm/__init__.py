from .client import EvmClient, decode_revert_reason, receipt_succeeded

__all__ = ["EvmClient", "decode_revert_reason", "receipt_succeeded"]
