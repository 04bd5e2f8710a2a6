"""Hosted Gomu order book (REST)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gomu.orderbook.base import (
    GetOrdersResponse,
    MakeOrderResponse,
    OrderBookGetOrdersParams,
    OrderBookMakeOrderParams,
)

log = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://commerce-api.gomu.co"


class GomuOrderBook:
    """Order book backed by ``GET/POST /orders`` on the Gomu commerce API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_base_url: str = DEFAULT_API_BASE,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_base_url = api_base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["gomu-api-key"] = self._api_key
        return headers

    async def get_orders(self, params: OrderBookGetOrdersParams | None = None) -> GetOrdersResponse:
        query = params.model_dump(by_alias=True, exclude_none=True) if params else {}
        resp = await self._client.get(
            f"{self._api_base_url}/orders",
            params={k: v for k, v in query.items() if v != ""},
            headers=self._headers(),
        )
        resp.raise_for_status()
        return GetOrdersResponse.model_validate(resp.json())

    async def make_order(self, params: OrderBookMakeOrderParams) -> MakeOrderResponse:
        body = params.model_dump(mode="json", by_alias=True, exclude_none=True)
        body["makerAssets"] = [_with_unit_amount(a) for a in body["makerAssets"]]
        body["takerAssets"] = [_with_unit_amount(a) for a in body["takerAssets"]]

        resp = await self._client.post(
            f"{self._api_base_url}/orders",
            json=body,
            headers=self._headers(),
        )
        resp.raise_for_status()
        stored = MakeOrderResponse.model_validate(resp.json())
        log.info("Stored order %s on chain %s", stored.data.id, stored.data.chain_id)
        return stored

    async def close(self) -> None:
        await self._client.aclose()


def _with_unit_amount(asset: dict[str, Any]) -> dict[str, Any]:
    if asset.get("type") == "ERC721":
        return {**asset, "amount": "1"}
    return asset
