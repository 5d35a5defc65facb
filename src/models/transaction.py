"""Wallet transaction models: pending entries, confirmed records, display rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

WEI_PER_NATIVE = 10**18


class TxStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"


class TxKind(str, Enum):
    TRANSFER = "transfer"
    CANCELLATION = "cancellation"


@dataclass(frozen=True)
class PendingEntry:
    """A submitted, not yet confirmed transaction. One per (sender, nonce)."""

    tx_hash: str
    sender: str
    recipient: str
    asset: str
    amount: str  # decimal string, never float
    nonce: int
    gas_price: int  # wei
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    kind: TxKind = TxKind.TRANSFER
    replaces: str | None = None  # hash superseded by this cancellation

    @property
    def is_cancellation(self) -> bool:
        return self.kind is TxKind.CANCELLATION


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ConfirmedRecord(BaseModel):
    """Transaction reported by the backend history service. Always confirmed."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    hash: str
    from_address: str = Field("", alias="from")
    to_address: str = Field("", alias="to")
    asset: str = Field("BNB", alias="token")
    amount: str = "0"
    timestamp: datetime

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_string(cls, v: Any) -> Any:
        # Floats go through str() so 0.1 stays "0.1" instead of a binary expansion
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def _epoch_timestamp(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            seconds = v / 1000 if v > 10**11 else v  # milliseconds from JS clients
            return datetime.fromtimestamp(seconds, tz=UTC)
        return v

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


@dataclass(frozen=True)
class DisplayedTransaction:
    """One row of the reconciled history view."""

    tx_hash: str
    sender: str
    recipient: str
    asset: str
    amount: str
    timestamp: datetime
    status: TxStatus
    nonce: int | None = None
    kind: TxKind = TxKind.TRANSFER

    @classmethod
    def from_pending(cls, entry: PendingEntry) -> DisplayedTransaction:
        return cls(
            tx_hash=entry.tx_hash,
            sender=entry.sender,
            recipient=entry.recipient,
            asset=entry.asset,
            amount=entry.amount,
            timestamp=_as_utc(entry.timestamp),
            status=TxStatus.PENDING,
            nonce=entry.nonce,
            kind=entry.kind,
        )

    @classmethod
    def from_confirmed(cls, record: ConfirmedRecord) -> DisplayedTransaction:
        return cls(
            tx_hash=record.hash,
            sender=record.from_address,
            recipient=record.to_address,
            asset=record.asset,
            amount=record.amount,
            timestamp=record.timestamp,
            status=TxStatus.CONFIRMED,
        )


@dataclass(frozen=True)
class FeeEstimate:
    """gas_price x gas_limit for one (recipient, amount, asset) input tuple."""

    asset: str
    recipient: str
    amount: str
    gas_price: int
    gas_limit: int

    @property
    def fee_wei(self) -> int:
        return self.gas_price * self.gas_limit

    @property
    def fee(self) -> Decimal:
        """Fee in native units (e.g. BNB)."""
        return Decimal(self.fee_wei) / Decimal(WEI_PER_NATIVE)


@dataclass(frozen=True)
class BalanceSnapshot:
    """Native + token balances in display units, taken at one instant."""

    native: Decimal
    tokens: dict[str, Decimal]
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))
