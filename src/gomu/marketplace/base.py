"""Marketplace protocol: the contract all marketplace adapters implement."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from gomu.models import GetOrdersParams, MakeOrderParams, MarketplaceName, NormalizedOrder


@runtime_checkable
class Marketplace(Protocol):
    """One external NFT marketplace behind a uniform interface."""

    name: MarketplaceName

    @classmethod
    def supports_chain_id(cls, chain_id: int) -> bool:
        """Whether the marketplace can be used on this chain at all."""
        ...

    async def make_order(self, params: MakeOrderParams) -> NormalizedOrder[Any]:
        """Build, sign and publish an order, approving the maker asset first if needed."""
        ...

    async def get_orders(self, params: GetOrdersParams | None = None) -> list[NormalizedOrder[Any]]:
        """List orders matching the filter."""
        ...

    async def take_order(self, order: NormalizedOrder[Any]) -> Any:
        """Fill an order produced by this marketplace. Returns the transaction receipt."""
        ...

    async def cancel_order(self, order: NormalizedOrder[Any]) -> Any:
        """Invalidate an order produced by this marketplace."""
        ...

    async def close(self) -> None:
        """Release HTTP clients."""
        ...
