"""Order book protocol: where off-chain signed orders are stored and found."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from gomu.models import AmountFee, Asset, NormalizedOrder, WireModel


class OrderBookOrder(NormalizedOrder[dict[str, Any]]):
    """Stored order. ``original_order`` is the signed order as an opaque JSON object."""

    chain_id: str
    taker: str | None = None


class OrderBookMakeOrderParams(WireModel):
    chain_id: str
    maker: str
    maker_assets: list[Asset]
    taker_assets: list[Asset]
    taker: str | None = None
    original_order: dict[str, Any]
    maker_fees: list[AmountFee] | None = None
    taker_fees: list[AmountFee] | None = None
    expiration_time: datetime | None = None


class OrderBookGetOrdersParams(WireModel):
    chain_id: str | None = None
    maker: str | None = None
    maker_contract_address: str | None = None
    maker_token_id: str | None = None
    taker: str | None = None
    taker_contract_address: str | None = None
    taker_token_id: str | None = None


class MakeOrderResponse(BaseModel):
    data: OrderBookOrder


class GetOrdersResponse(BaseModel):
    data: list[OrderBookOrder] = Field(default_factory=list)


@runtime_checkable
class OrderBook(Protocol):
    """Storage backend for signed orders."""

    async def make_order(self, params: OrderBookMakeOrderParams) -> MakeOrderResponse:
        """Store a signed order and return the stored record."""
        ...

    async def get_orders(self, params: OrderBookGetOrdersParams) -> GetOrdersResponse:
        """Find stored orders matching every given filter."""
        ...
