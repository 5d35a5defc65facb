from src.models.transaction import (
    BalanceSnapshot,
    ConfirmedRecord,
    DisplayedTransaction,
    FeeEstimate,
    PendingEntry,
    TxKind,
    TxStatus,
)

__all__ = [
    "PendingEntry",
    "ConfirmedRecord",
    "DisplayedTransaction",
    "FeeEstimate",
    "BalanceSnapshot",
    "TxKind",
    "TxStatus",
]
