"""LooksRare marketplace adapter.

Orders are EIP-712 signed maker orders posted to LooksRare's REST order book
and settled by the LooksRare exchange contract. Currency is approved for the
exchange; NFTs are approved for the per-standard transfer managers.
"""

from __future__ import annotations

import logging
import time
from enum import StrEnum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3

from gomu.chain import (
    Wallet,
    abi_function,
    abi_param,
    detect_nft_type,
    ensure_approval,
    hex_to_bytes,
    send_transaction,
    sign_typed_data,
    to_checksum,
)
from gomu.config import LooksRareConfig
from gomu.errors import MarketplaceCallError, UnsupportedOperationError
from gomu.models import (
    AssetType,
    Erc20Asset,
    GetOrdersParams,
    MakeOrderParams,
    MarketplaceName,
    NormalizedOrder,
    OrderSide,
    UnknownAsset,
    WireModel,
    asset_amount,
)
from gomu.validators import resolve_filter_sides, resolve_order_sides

log = logging.getLogger(__name__)

DAY = 60 * 60 * 24
DEFAULT_EXPIRATION_SECONDS = 30 * DAY
# Orders fail if the collection's fees ever exceed 15%.
DEFAULT_MIN_PERCENTAGE_TO_ASK = 8500
EMPTY_PARAMS = "0x"


class LooksRareStatus(StrEnum):
    VALID = "VALID"
    CANCELLED = "CANCELLED"
    EXECUTED = "EXECUTED"
    EXPIRED = "EXPIRED"


class LooksRareAddresses(BaseModel):
    exchange: str
    strategy_standard_sale: str
    transfer_manager_erc721: str
    transfer_manager_erc1155: str


ADDRESSES: dict[int, LooksRareAddresses] = {
    1: LooksRareAddresses(
        exchange="0x59728544B08AB483533076417FbBB2fD0B17CE3a",
        strategy_standard_sale="0x56244Bb70CbD3EA9Dc8007399F61dFC065190031",
        transfer_manager_erc721="0xf42aa99F011A1fA7CDA90E5E98b277E306BcA83e",
        transfer_manager_erc1155="0xFED24eC7E22f573c2e08AEF55aA6797Ca2b3A051",
    ),
}

API_ORIGINS: dict[int, str] = {
    1: "https://api.looksrare.org",
}


class LooksRareOriginalOrder(WireModel):
    """Maker order as returned by the LooksRare API."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    hash: str
    collection_address: str
    token_id: str
    is_order_ask: bool
    signer: str
    strategy: str
    currency_address: str
    amount: str
    price: str
    nonce: str
    start_time: int
    end_time: int
    min_percentage_to_ask: int = DEFAULT_MIN_PERCENTAGE_TO_ASK
    params: str | None = None
    status: LooksRareStatus | str = LooksRareStatus.VALID
    signature: str | None = None
    v: int | None = None
    r: str | None = None
    s: str | None = None


LooksRareOrder = NormalizedOrder[LooksRareOriginalOrder]

_MAKER_ORDER_FIELDS = [
    ("isOrderAsk", "bool"),
    ("signer", "address"),
    ("collection", "address"),
    ("price", "uint256"),
    ("tokenId", "uint256"),
    ("amount", "uint256"),
    ("strategy", "address"),
    ("currency", "address"),
    ("nonce", "uint256"),
    ("startTime", "uint256"),
    ("endTime", "uint256"),
    ("minPercentageToAsk", "uint256"),
    ("params", "bytes"),
]

_MAKER_ORDER_COMPONENTS = [abi_param(n, t) for n, t in _MAKER_ORDER_FIELDS] + [
    abi_param("v", "uint8"),
    abi_param("r", "bytes32"),
    abi_param("s", "bytes32"),
]

_TAKER_ORDER_COMPONENTS = [
    abi_param("isOrderAsk", "bool"),
    abi_param("taker", "address"),
    abi_param("price", "uint256"),
    abi_param("tokenId", "uint256"),
    abi_param("minPercentageToAsk", "uint256"),
    abi_param("params", "bytes"),
]

EXCHANGE_ABI = [
    abi_function(
        "matchAskWithTakerBid",
        [
            abi_param("takerBid", "tuple", _TAKER_ORDER_COMPONENTS),
            abi_param("makerAsk", "tuple", _MAKER_ORDER_COMPONENTS),
        ],
    ),
    abi_function(
        "matchBidWithTakerAsk",
        [
            abi_param("takerAsk", "tuple", _TAKER_ORDER_COMPONENTS),
            abi_param("makerBid", "tuple", _MAKER_ORDER_COMPONENTS),
        ],
    ),
    abi_function("cancelMultipleMakerOrders", [abi_param("orderNonces", "uint256[]")]),
]


class LooksRare:
    """LooksRare fixed-price order book."""

    name = MarketplaceName.LOOKSRARE

    def __init__(
        self,
        wallet: Wallet,
        config: LooksRareConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not self.supports_chain_id(wallet.chain_id):
            raise ValueError(f"unsupported chain id: {wallet.chain_id}")
        config = config or LooksRareConfig()
        self._wallet = wallet
        self._addresses = ADDRESSES[wallet.chain_id]
        self._api_base = (config.api_base_url or API_ORIGINS[wallet.chain_id]).rstrip("/")
        self._api_key = config.api_key
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @classmethod
    def supports_chain_id(cls, chain_id: int) -> bool:
        return chain_id in ADDRESSES

    async def close(self) -> None:
        await self._client.aclose()

    # ── Orders ───────────────────────────────────────────────────

    async def make_order(self, params: MakeOrderParams) -> LooksRareOrder:
        """Sign a maker order and post it to the LooksRare order book."""
        if params.taker:
            raise UnsupportedOperationError("targeted taker unsupported in looksrare")
        if params.fees:
            raise UnsupportedOperationError("custom fees unsupported in looksrare")

        sides = resolve_order_sides(params.maker_assets, params.taker_assets)
        nft, currency = sides.nft_asset, sides.fungible_asset
        signer = self._wallet.address

        if sides.is_sell:
            await ensure_approval(self._wallet, nft, self._transfer_manager(nft.type))
        else:
            await ensure_approval(self._wallet, currency, self._addresses.exchange)

        nonce = int(await self._get_nonce(signer))
        now = int(time.time())
        if params.expiration_time is not None:
            end_time = round(params.expiration_time.timestamp())
        else:
            end_time = now + DEFAULT_EXPIRATION_SECONDS

        maker_order: dict[str, Any] = {
            "isOrderAsk": sides.is_sell,
            "signer": signer,
            "collection": to_checksum(nft.contract_address),
            "price": currency.amount,
            "tokenId": int(nft.token_id),
            "amount": asset_amount(nft),
            "strategy": to_checksum(self._addresses.strategy_standard_sale),
            "currency": to_checksum(currency.contract_address),
            "nonce": nonce,
            "startTime": now,
            "endTime": end_time,
            "minPercentageToAsk": DEFAULT_MIN_PERCENTAGE_TO_ASK,
            "params": EMPTY_PARAMS,
        }
        signed = sign_typed_data(self._wallet, self._typed_data(maker_order))

        payload = {
            **maker_order,
            "price": str(currency.amount),
            "tokenId": nft.token_id,
            "nonce": str(nonce),
            "params": [],
            "signature": Web3.to_hex(signed.signature),
        }
        posted = LooksRareOriginalOrder.model_validate(
            await self._request("POST", "/api/v1/orders", json=payload)
        )
        log.info("Posted LooksRare %s order %s", "ask" if sides.is_sell else "bid", posted.hash)
        return normalize_order(posted)

    async def get_orders(self, params: GetOrdersParams | None = None) -> list[LooksRareOrder]:
        """Read valid orders from the LooksRare order book, newest first."""
        params = params or GetOrdersParams()
        if params.taker:
            # Maker orders on LooksRare are never addressed to a specific taker.
            return []

        query: dict[str, Any] = {"sort": "NEWEST", "status": [LooksRareStatus.VALID.value]}
        if params.maker:
            query["signer"] = params.maker

        if params.maker_asset is not None or params.taker_asset is not None:
            side, base, quote = resolve_filter_sides(params.maker_asset, params.taker_asset)
            query["isOrderAsk"] = side == OrderSide.SELL
            if base is not None:
                query["collection"] = base.contract_address
                query["tokenId"] = base.token_id
            if quote is not None:
                query["currency"] = quote.contract_address
                price = str(quote.amount)
                query["price"] = {"min": price, "max": price}

        data = await self._request("GET", "/api/v1/orders", params=flatten_query_params(query))
        return [normalize_order(LooksRareOriginalOrder.model_validate(o)) for o in data]

    async def take_order(self, order: NormalizedOrder[Any]) -> Any:
        """Match the maker order with a taker order from this wallet."""
        original = _original_order(order)
        price = int(original.price)
        exchange = self._wallet.contract(self._addresses.exchange, EXCHANGE_ABI)

        taker_order = (
            not original.is_order_ask,
            self._wallet.address,
            price,
            int(original.token_id),
            original.min_percentage_to_ask,
            hex_to_bytes(EMPTY_PARAMS),
        )
        maker_order = _maker_order_tuple(original)

        if original.is_order_ask:
            currency = Erc20Asset(contract_address=original.currency_address, amount=price)
            await ensure_approval(self._wallet, currency, self._addresses.exchange)
            call = exchange.functions.matchAskWithTakerBid(taker_order, maker_order)
        else:
            nft_type = await detect_nft_type(self._wallet, original.collection_address)
            collection = UnknownAsset(contract_address=original.collection_address)
            await ensure_approval(self._wallet, collection, self._transfer_manager(nft_type))
            call = exchange.functions.matchBidWithTakerAsk(taker_order, maker_order)

        receipt = await send_transaction(self._wallet, call)
        log.info("Filled LooksRare order %s", original.hash)
        return receipt

    async def cancel_order(self, order: NormalizedOrder[Any]) -> Any:
        original = _original_order(order)
        exchange = self._wallet.contract(self._addresses.exchange, EXCHANGE_ABI)
        call = exchange.functions.cancelMultipleMakerOrders([int(original.nonce)])
        return await send_transaction(self._wallet, call)

    # ── Helpers ──────────────────────────────────────────────────

    def _transfer_manager(self, nft_type: str) -> str:
        if nft_type == AssetType.ERC1155:
            return self._addresses.transfer_manager_erc1155
        return self._addresses.transfer_manager_erc721

    def _typed_data(self, maker_order: dict[str, Any]) -> dict[str, Any]:
        return {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                "MakerOrder": [{"name": n, "type": t} for n, t in _MAKER_ORDER_FIELDS],
            },
            "primaryType": "MakerOrder",
            "domain": {
                "name": "LooksRareExchange",
                "version": "1",
                "chainId": self._wallet.chain_id,
                "verifyingContract": to_checksum(self._addresses.exchange),
            },
            "message": maker_order,
        }

    async def _get_nonce(self, address: str) -> str:
        return await self._request("GET", "/api/v1/orders/nonce", params={"address": address})

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-Looks-Api-Key"] = self._api_key
        resp = await self._client.request(method, f"{self._api_base}{path}", headers=headers, **kwargs)
        return self._parse_response(resp)

    def _parse_response(self, resp: httpx.Response) -> Any:
        """Unwrap LooksRare's ``{success, data, message}`` envelope."""
        try:
            payload = resp.json()
        except ValueError:
            resp.raise_for_status()
            raise MarketplaceCallError(self.name, f"unexpected response from {resp.url}")

        if not payload.get("success"):
            message = payload.get("message") or f"LooksRare API error {resp.status_code}"
            raise MarketplaceCallError(self.name, message)
        data = payload.get("data")
        if data is None:
            raise MarketplaceCallError(self.name, "missing data")
        return data


def flatten_query_params(params: dict[str, Any]) -> list[tuple[str, str]]:
    """Flatten ``{"a": [1, 2], "b": {"c": 3}}`` to ``a[]=1&a[]=2&b[c]=3`` pairs."""
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if isinstance(value, (list, tuple)):
            pairs.extend((f"{key}[]", _query_value(v)) for v in value)
        elif isinstance(value, dict):
            pairs.extend((f"{key}[{k}]", _query_value(v)) for k, v in value.items())
        elif value is not None:
            pairs.append((key, _query_value(value)))
    return pairs


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _maker_order_tuple(order: LooksRareOriginalOrder) -> tuple[Any, ...]:
    if order.v is None or order.r is None or order.s is None:
        raise UnsupportedOperationError(f"order {order.hash} carries no signature")
    return (
        order.is_order_ask,
        to_checksum(order.signer),
        to_checksum(order.collection_address),
        int(order.price),
        int(order.token_id),
        int(order.amount),
        to_checksum(order.strategy),
        to_checksum(order.currency_address),
        int(order.nonce),
        order.start_time,
        order.end_time,
        order.min_percentage_to_ask,
        hex_to_bytes(order.params or EMPTY_PARAMS),
        order.v,
        hex_to_bytes(order.r),
        hex_to_bytes(order.s),
    )


def _original_order(order: NormalizedOrder[Any]) -> LooksRareOriginalOrder:
    original = order.original_order
    if isinstance(original, LooksRareOriginalOrder):
        return original
    try:
        return LooksRareOriginalOrder.model_validate(original)
    except PydanticValidationError as exc:
        raise UnsupportedOperationError("not a LooksRare order") from exc


def normalize_order(order: LooksRareOriginalOrder) -> LooksRareOrder:
    """Map a LooksRare maker order onto the canonical order shape.

    The API does not say whether the collection is ERC721 or ERC1155, so the
    NFT leg is reported as ``Unknown``.
    """
    nft_asset = UnknownAsset(
        contract_address=order.collection_address,
        token_id=order.token_id,
        amount=int(order.amount),
    )
    currency_asset = Erc20Asset(contract_address=order.currency_address, amount=int(order.price))
    is_sell = order.is_order_ask

    return LooksRareOrder(
        id=order.hash,
        maker_assets=[nft_asset] if is_sell else [currency_asset],
        taker_assets=[currency_asset] if is_sell else [nft_asset],
        maker=order.signer,
        original_order=order,
    )
