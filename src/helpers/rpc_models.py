"""Pydantic models for JSON-RPC requests and responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request model."""

    jsonrpc: str = Field(default="2.0", description="JSON-RPC version")
    method: str = Field(..., description="Method name to call")
    params: list[Any] = Field(
        default_factory=list, description="Method parameters"
    )
    id: int | str = Field(..., description="Request ID")


class TransactionReceipt(BaseModel):
    """Subset of eth_getTransactionReceipt used to confirm transactions."""

    transaction_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    status: int = Field(..., description="1 for success, 0 for revert")
    gas_used: int | None = Field(default=None, alias="gasUsed")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("block_number", "status", "gas_used", mode="before")
    @classmethod
    def parse_hex_quantity(cls, value: Any) -> Any:
        """Decode hex quantities as returned by the node."""
        if isinstance(value, str):
            return int(value, 16)
        return value

    @property
    def succeeded(self) -> bool:
        """Whether the transaction executed without reverting."""
        return self.status == 1


__all__ = [
    "JsonRpcRequest",
    "TransactionReceipt",
]
