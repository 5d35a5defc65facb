"""Pydantic models for JSON-RPC receipt payloads (hex quantities decoded to int)."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def hex_to_int(value: Any) -> Any:
    if isinstance(value, str) and value.startswith(("0x", "0X")):
        return int(value, 16)
    return value


class TxLog(BaseModel):
    """Event log entry inside a receipt."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = ""
    topics: list[str] = []
    data: str = "0x"
    log_index: int = Field(0, alias="logIndex")

    @field_validator("log_index", mode="before")
    @classmethod
    def _decode_index(cls, v: Any) -> Any:
        return hex_to_int(v)


class TxReceipt(BaseModel):
    """Mined transaction receipt. status 1 = success, 0 = reverted."""

    model_config = ConfigDict(populate_by_name=True)

    transaction_hash: str = Field(alias="transactionHash")
    block_number: int = Field(0, alias="blockNumber")
    status: int = 1
    from_address: str = Field("", alias="from")
    to_address: str | None = Field(None, alias="to")
    gas_used: int = Field(0, alias="gasUsed")
    effective_gas_price: int = Field(0, alias="effectiveGasPrice")
    logs: list[TxLog] = []

    @field_validator("block_number", "status", "gas_used", "effective_gas_price", mode="before")
    @classmethod
    def _decode_quantity(cls, v: Any) -> Any:
        return hex_to_int(v)

    @property
    def succeeded(self) -> bool:
        return self.status == 1
