from typing import Any


class RpcError(Exception):
    """JSON-RPC error object returned by the node (never retried)."""

    def __init__(self, message: str, *, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class RpcTransportError(RpcError):
    """HTTP-level failure after retries: timeout, connect error, 5xx, 429."""


class TransactionReplacedError(RpcError):
    """Sender nonce moved past the watched transaction without a receipt for it."""

    def __init__(self, tx_hash: str, nonce: int) -> None:
        super().__init__(f"Transaction {tx_hash} replaced at nonce {nonce}")
        self.tx_hash = tx_hash
        self.nonce = nonce


class ReceiptTimeoutError(RpcError):
    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(f"No receipt for {tx_hash} after {timeout:.0f}s")
        self.tx_hash = tx_hash
        self.timeout = timeout
