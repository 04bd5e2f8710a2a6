"""Aggregation façade: one call fanned out to every registered marketplace.

Each marketplace answers with its own ``OrderResponse``; one marketplace's
failure is recorded in its response and never affects the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from typing import Any

from gomu.chain import Wallet
from gomu.config import DEFAULT_WRAPPED_NATIVE_TOKENS, MarketplaceConfigs, Settings
from gomu.errors import (
    AdapterConstructionError,
    MarketplaceLookupError,
    ValidationError,
    format_error,
)
from gomu.marketplace.base import Marketplace
from gomu.marketplace.looksrare import LooksRare
from gomu.marketplace.opensea import OpenSea
from gomu.marketplace.trader import Trader
from gomu.marketplace.trader_v3 import TraderV3
from gomu.models import (
    Erc20Asset,
    FungibleAssetSpec,
    GetOrdersParams,
    MakeBuyOrderParams,
    MakeOrderParams,
    MakeSellOrderParams,
    MarketplaceName,
    NormalizedOrder,
    OrderResponse,
)
from gomu.validators import validate_make_order

log = logging.getLogger(__name__)

# Every marketplace this package can talk to. Registry order follows this table.
MARKETPLACE_ADAPTERS: dict[MarketplaceName, type[Marketplace]] = {
    MarketplaceName.OPENSEA: OpenSea,
    MarketplaceName.LOOKSRARE: LooksRare,
    MarketplaceName.TRADER: Trader,
    MarketplaceName.TRADER_V3: TraderV3,
}


def _config_for(configs: MarketplaceConfigs, name: MarketplaceName) -> Any:
    match name:
        case MarketplaceName.OPENSEA:
            return configs.opensea
        case MarketplaceName.LOOKSRARE:
            return configs.looksrare
        case MarketplaceName.TRADER:
            return configs.trader
        case MarketplaceName.TRADER_V3:
            return configs.trader_v3
    raise MarketplaceLookupError(f"no configuration for marketplace {name}")


class Aggregator:
    """Uniform make/get/take/cancel across the marketplaces a chain supports."""

    def __init__(
        self,
        wallet: Wallet,
        *,
        configs: MarketplaceConfigs | None = None,
        wrapped_native_tokens: Mapping[int, str] | None = None,
        marketplaces: list[MarketplaceName] | None = None,
        adapters: Mapping[MarketplaceName, type[Marketplace]] | None = None,
    ) -> None:
        configs = configs or MarketplaceConfigs()
        self._wallet = wallet
        self._wrapped_native_tokens = dict(
            DEFAULT_WRAPPED_NATIVE_TOKENS if wrapped_native_tokens is None else wrapped_native_tokens
        )
        self._registry: dict[MarketplaceName, Marketplace] = {}
        self._construction_errors: dict[MarketplaceName, AdapterConstructionError] = {}

        for name, adapter_cls in (adapters or MARKETPLACE_ADAPTERS).items():
            if marketplaces is not None and name not in marketplaces:
                continue
            if not adapter_cls.supports_chain_id(wallet.chain_id):
                log.debug("%s does not support chain %d, skipping", name, wallet.chain_id)
                continue
            try:
                self._registry[name] = adapter_cls(wallet, _config_for(configs, name))
            except Exception as e:
                error = AdapterConstructionError(name, e)
                log.warning("%s", error)
                self._construction_errors[name] = error

    @classmethod
    async def from_settings(cls, settings: Settings) -> Aggregator:
        """Connect a wallet and build every adapter from environment settings."""
        wallet = await Wallet.connect(
            settings.rpc_url,
            settings.private_key or None,
            chain_id=settings.chain_id,
        )
        return cls(
            wallet,
            configs=settings.marketplace_configs(),
            wrapped_native_tokens=settings.wrapped_native_tokens,
            marketplaces=settings.marketplaces,
        )

    # ── Registry ─────────────────────────────────────────────────

    @property
    def wallet(self) -> Wallet:
        return self._wallet

    @property
    def marketplaces(self) -> list[MarketplaceName]:
        return list(self._registry)

    @property
    def construction_errors(self) -> dict[MarketplaceName, AdapterConstructionError]:
        """Marketplaces that support the chain but failed to initialize."""
        return dict(self._construction_errors)

    def get_marketplace(self, name: MarketplaceName) -> Marketplace:
        try:
            return self._registry[name]
        except KeyError:
            raise MarketplaceLookupError(f"marketplace {name} is not registered") from None

    def _selected(
        self, names: list[MarketplaceName] | None
    ) -> list[tuple[MarketplaceName, Marketplace]]:
        return [
            (name, adapter)
            for name, adapter in self._registry.items()
            if names is None or name in names
        ]

    # ── Operations ───────────────────────────────────────────────

    async def make_order(self, params: MakeOrderParams) -> list[OrderResponse[NormalizedOrder[Any]]]:
        """Create the order on every selected marketplace concurrently.

        Structural validation runs once, up front, and raises. Per-marketplace
        failures come back as error responses.
        """
        validate_make_order(params.maker_assets, params.taker_assets)
        return await self._fan_out(
            "make_order",
            [(name, adapter.make_order(params)) for name, adapter in self._selected(params.marketplaces)],
        )

    async def make_sell_order(
        self, params: MakeSellOrderParams
    ) -> list[OrderResponse[NormalizedOrder[Any]]]:
        """Offer ``params.assets`` for the fungible amount."""
        return await self.make_order(
            MakeOrderParams(
                maker_assets=params.assets,
                taker_assets=[self._fungible_asset(params.fungible_asset)],
                taker=params.taker,
                expiration_time=params.expiration_time,
                marketplaces=params.marketplaces,
                fees=params.fees,
            )
        )

    async def make_buy_order(
        self, params: MakeBuyOrderParams
    ) -> list[OrderResponse[NormalizedOrder[Any]]]:
        """Bid the fungible amount for ``params.assets``."""
        return await self.make_order(
            MakeOrderParams(
                maker_assets=[self._fungible_asset(params.fungible_asset)],
                taker_assets=params.assets,
                taker=params.taker,
                expiration_time=params.expiration_time,
                marketplaces=params.marketplaces,
                fees=params.fees,
            )
        )

    async def get_orders(
        self, params: GetOrdersParams | None = None
    ) -> list[OrderResponse[NormalizedOrder[Any]]]:
        """Orders from every selected marketplace, one response per order.

        A marketplace that fails contributes a single error response.
        """
        params = params or GetOrdersParams()
        responses = await self._fan_out(
            "get_orders",
            [(name, adapter.get_orders(params)) for name, adapter in self._selected(params.marketplaces)],
        )

        flattened: list[OrderResponse[NormalizedOrder[Any]]] = []
        for resp in responses:
            if not resp.ok:
                flattened.append(resp)
                continue
            flattened.extend(
                OrderResponse(marketplace_name=resp.marketplace_name, data=order)
                for order in resp.data
            )
        return flattened

    async def take_order(self, order: OrderResponse[NormalizedOrder[Any]]) -> OrderResponse[Any]:
        """Fill an order previously returned by ``make_order`` or ``get_orders``."""
        adapter = self._route(order)
        return await self._call(order.marketplace_name, "take_order", adapter.take_order(order.data))

    async def cancel_order(self, order: OrderResponse[NormalizedOrder[Any]]) -> OrderResponse[Any]:
        adapter = self._route(order)
        return await self._call(order.marketplace_name, "cancel_order", adapter.cancel_order(order.data))

    async def close(self) -> None:
        await asyncio.gather(*(adapter.close() for adapter in self._registry.values()))

    async def __aenter__(self) -> Aggregator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Internals ────────────────────────────────────────────────

    def _route(self, order: OrderResponse[Any]) -> Marketplace:
        adapter = self.get_marketplace(order.marketplace_name)
        if order.data is None:
            raise MarketplaceLookupError(f"order from {order.marketplace_name} has no data")
        return adapter

    def _fungible_asset(self, spec: FungibleAssetSpec) -> Erc20Asset:
        address = spec.contract_address or self._wrapped_native_tokens.get(self._wallet.chain_id)
        if address is None:
            raise ValidationError(
                f"no wrapped native token configured for chain {self._wallet.chain_id}"
            )
        return Erc20Asset(contract_address=address, amount=spec.amount)

    async def _fan_out(
        self, operation: str, calls: list[tuple[MarketplaceName, Awaitable[Any]]]
    ) -> list[OrderResponse[Any]]:
        """Await every call together. Results keep registry order."""
        return list(
            await asyncio.gather(*(self._call(name, operation, call) for name, call in calls))
        )

    async def _call(
        self, name: MarketplaceName, operation: str, call: Awaitable[Any]
    ) -> OrderResponse[Any]:
        try:
            data = await call
            # Operations with nothing to report, like an off-chain cancel, still succeed.
            return OrderResponse(marketplace_name=name, data=True if data is None else data)
        except Exception as e:
            log.warning("%s %s failed: %s", name, operation, e)
            return OrderResponse(marketplace_name=name, error=format_error(e))
