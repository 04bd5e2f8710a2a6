"""OpenSea marketplace adapter.

Listings and offers are Seaport orders: the offerer signs the order components
(EIP-712) and OpenSea's API stores them. Fills and cancels go straight to the
Seaport contract. Tokens move through OpenSea's conduit, so that is the
operator every approval targets.
"""

from __future__ import annotations

import logging
import secrets
import time
from enum import IntEnum, StrEnum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3

from gomu.chain import (
    NATIVE_TOKEN_ADDRESS,
    ZERO_ADDRESS,
    Wallet,
    abi_function,
    abi_param,
    abi_value,
    ensure_approval,
    hex_to_bytes,
    send_transaction,
    sign_typed_data,
    to_checksum,
)
from gomu.config import OpenSeaConfig
from gomu.errors import MarketplaceCallError, UnsupportedOperationError
from gomu.fees import compute_fees
from gomu.models import (
    Asset,
    AssetType,
    Erc20Asset,
    Erc721Asset,
    Erc1155Asset,
    GetOrdersParams,
    MakeOrderParams,
    MarketplaceName,
    NonFungibleAsset,
    NormalizedOrder,
    OrderSide,
    UnknownAsset,
    WireModel,
    asset_amount,
)
from gomu.validators import resolve_filter_sides, resolve_order_sides

log = logging.getLogger(__name__)

SEAPORT_ADDRESS = "0x0000000000000068F116a894984e2DB1123eB395"
SEAPORT_VERSION = "1.6"
OPENSEA_CONDUIT_KEY = "0x0000007b02230091a7ed01230072f7006a004d60a8d4e71d599b8104250f0000"
OPENSEA_CONDUIT = "0x1E0049783F008A0085193E00003D00cd54003c71"
ZERO_BYTES32 = "0x" + "00" * 32

DEFAULT_EXPIRATION_SECONDS = 30 * 24 * 60 * 60

CHAIN_NAMES: dict[int, str] = {
    1: "ethereum",
    137: "matic",
    8453: "base",
    11155111: "sepolia",
}

API_ORIGINS: dict[int, str] = {
    1: "https://api.opensea.io",
    137: "https://api.opensea.io",
    8453: "https://api.opensea.io",
    11155111: "https://testnets-api.opensea.io",
}


class ItemType(IntEnum):
    NATIVE = 0
    ERC20 = 1
    ERC721 = 2
    ERC1155 = 3
    ERC721_WITH_CRITERIA = 4
    ERC1155_WITH_CRITERIA = 5


CURRENCY_ITEM_TYPES = frozenset({ItemType.NATIVE, ItemType.ERC20})
CRITERIA_ITEM_TYPES = frozenset({ItemType.ERC721_WITH_CRITERIA, ItemType.ERC1155_WITH_CRITERIA})


class OrderType(IntEnum):
    FULL_OPEN = 0
    PARTIAL_OPEN = 1
    FULL_RESTRICTED = 2
    PARTIAL_RESTRICTED = 3


class OpenSeaSide(StrEnum):
    ASK = "ask"
    BID = "bid"


# ── Seaport order ────────────────────────────────────────────────


class OfferItem(WireModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    item_type: ItemType
    token: str
    identifier_or_criteria: str
    start_amount: str
    end_amount: str


class ConsiderationItem(OfferItem):
    recipient: str


class SeaportOrderParameters(WireModel):
    """Order components as signed. Carries both the counter and the item count."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    offerer: str
    zone: str
    offer: list[OfferItem]
    consideration: list[ConsiderationItem]
    order_type: OrderType
    start_time: str
    end_time: str
    zone_hash: str
    salt: str
    conduit_key: str
    total_original_consideration_items: int
    counter: str = "0"


class SeaportProtocolData(WireModel):
    parameters: SeaportOrderParameters
    signature: str | None = None


class OpenSeaOriginalOrder(BaseModel):
    """Order as returned by the OpenSea v2 orders API."""

    model_config = ConfigDict(extra="allow")

    order_hash: str
    side: OpenSeaSide
    protocol_data: SeaportProtocolData
    protocol_address: str | None = None


OpenSeaOrder = NormalizedOrder[OpenSeaOriginalOrder]

_ITEM_FIELDS = [
    ("itemType", "uint8"),
    ("token", "address"),
    ("identifierOrCriteria", "uint256"),
    ("startAmount", "uint256"),
    ("endAmount", "uint256"),
]
_CONSIDERATION_FIELDS = [*_ITEM_FIELDS, ("recipient", "address")]
_ORDER_TAIL_FIELDS = [
    ("orderType", "uint8"),
    ("startTime", "uint256"),
    ("endTime", "uint256"),
    ("zoneHash", "bytes32"),
    ("salt", "uint256"),
    ("conduitKey", "bytes32"),
]


def _order_fields(last: tuple[str, str]) -> list[dict[str, Any]]:
    return [
        abi_param("offerer", "address"),
        abi_param("zone", "address"),
        abi_param("offer", "tuple[]", [abi_param(n, t) for n, t in _ITEM_FIELDS]),
        abi_param("consideration", "tuple[]", [abi_param(n, t) for n, t in _CONSIDERATION_FIELDS]),
        *(abi_param(n, t) for n, t in _ORDER_TAIL_FIELDS),
        abi_param(*last),
    ]


ORDER_PARAMETERS = _order_fields(("totalOriginalConsiderationItems", "uint256"))
ORDER_COMPONENTS = _order_fields(("counter", "uint256"))
ORDER = abi_param(
    "order",
    "tuple",
    [abi_param("parameters", "tuple", ORDER_PARAMETERS), abi_param("signature", "bytes")],
)
ORDER_COMPONENTS_LIST = abi_param("orders", "tuple[]", ORDER_COMPONENTS)

SEAPORT_ABI = [
    abi_function(
        "fulfillOrder",
        [ORDER, abi_param("fulfillerConduitKey", "bytes32")],
        [abi_param("fulfilled", "bool")],
        mutability="payable",
    ),
    abi_function("cancel", [ORDER_COMPONENTS_LIST], [abi_param("cancelled", "bool")]),
    abi_function(
        "getCounter",
        [abi_param("offerer", "address")],
        [abi_param("counter", "uint256")],
        mutability="view",
    ),
]

_EIP712_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "OrderComponents": [
        {"name": "offerer", "type": "address"},
        {"name": "zone", "type": "address"},
        {"name": "offer", "type": "OfferItem[]"},
        {"name": "consideration", "type": "ConsiderationItem[]"},
        *({"name": n, "type": t} for n, t in _ORDER_TAIL_FIELDS),
        {"name": "counter", "type": "uint256"},
    ],
    "OfferItem": [{"name": n, "type": t} for n, t in _ITEM_FIELDS],
    "ConsiderationItem": [{"name": n, "type": t} for n, t in _CONSIDERATION_FIELDS],
}


class OpenSea:
    """OpenSea listings and offers on Seaport."""

    name = MarketplaceName.OPENSEA

    def __init__(
        self,
        wallet: Wallet,
        config: OpenSeaConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not self.supports_chain_id(wallet.chain_id):
            raise ValueError(f"unsupported chain id: {wallet.chain_id}")
        config = config or OpenSeaConfig()
        self._wallet = wallet
        self._chain = CHAIN_NAMES[wallet.chain_id]
        self._api_base = (config.api_base_url or API_ORIGINS[wallet.chain_id]).rstrip("/")
        self._api_key = config.api_key
        self._fees = config.fees
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @classmethod
    def supports_chain_id(cls, chain_id: int) -> bool:
        return chain_id in CHAIN_NAMES

    async def close(self) -> None:
        await self._client.aclose()

    # ── Orders ───────────────────────────────────────────────────

    async def make_order(self, params: MakeOrderParams) -> OpenSeaOrder:
        """Sign a listing (NFT maker) or an offer (token maker) and post it.

        Fees are consideration items in the order's currency. A listing pays
        the seller what is left after fees; an offer's amount covers the fees.
        """
        if params.taker:
            raise UnsupportedOperationError("targeted taker unsupported in opensea")

        sides = resolve_order_sides(params.maker_assets, params.taker_assets)
        nft, currency = sides.nft_asset, sides.fungible_asset
        if not sides.is_sell and _is_native(currency.contract_address):
            raise UnsupportedOperationError("offers cannot be paid in the native token")

        schedule = compute_fees(params.fees if params.fees is not None else self._fees, currency.amount)
        offerer = self._wallet.address
        await ensure_approval(self._wallet, nft if sides.is_sell else currency, OPENSEA_CONDUIT)

        seaport = self._wallet.contract(SEAPORT_ADDRESS, SEAPORT_ABI)
        counter = await seaport.functions.getCounter(offerer).call()

        now = int(time.time())
        if params.expiration_time is not None:
            end_time = round(params.expiration_time.timestamp())
        else:
            end_time = now + DEFAULT_EXPIRATION_SECONDS

        token = currency.contract_address
        fee_items = [
            _currency_item(token, fee.amount, fee.recipient) for fee in schedule.fees if fee.amount
        ]
        if sides.is_sell:
            offer = [_nft_item(nft)]
            consideration = [
                _currency_item(token, schedule.net_amount(currency.amount), offerer),
                *fee_items,
            ]
        else:
            offer = [_currency_item(token, currency.amount)]
            consideration = [{**_nft_item(nft), "recipient": offerer}, *fee_items]

        order_type = OrderType.PARTIAL_OPEN if nft.type == AssetType.ERC1155 else OrderType.FULL_OPEN
        parameters = SeaportOrderParameters.model_validate(
            {
                "offerer": offerer,
                "zone": ZERO_ADDRESS,
                "offer": offer,
                "consideration": consideration,
                "orderType": order_type,
                "startTime": str(now),
                "endTime": str(end_time),
                "zoneHash": ZERO_BYTES32,
                "salt": str(secrets.randbits(256)),
                "conduitKey": OPENSEA_CONDUIT_KEY,
                "totalOriginalConsiderationItems": len(consideration),
                "counter": str(counter),
            }
        )
        signed = sign_typed_data(self._wallet, self._typed_data(parameters))

        body = {
            "parameters": parameters.model_dump(mode="json", by_alias=True),
            "signature": Web3.to_hex(signed.signature),
            "protocol_address": SEAPORT_ADDRESS,
        }
        kind = "listings" if sides.is_sell else "offers"
        payload = await self._request("POST", self._orders_path(kind), json=body)
        if not payload.get("order"):
            raise MarketplaceCallError(self.name, "missing order in response")
        posted = OpenSeaOriginalOrder.model_validate(payload["order"])
        log.info("Posted OpenSea %s %s (fees %d)", kind[:-1], posted.order_hash, schedule.total)
        return normalize_order(posted)

    async def get_orders(self, params: GetOrdersParams | None = None) -> list[OpenSeaOrder]:
        """Read Seaport orders. Without asset filters both sides are read, offers first."""
        params = params or GetOrdersParams()
        query: dict[str, Any] = {
            "maker": params.maker,
            "taker": params.taker,
            "order_by": "created_date",
            "order_direction": "desc",
        }

        if params.maker_asset is None and params.taker_asset is None:
            # One side after the other; the API rate-limits bursts.
            offers = await self._fetch_orders("offers", query)
            listings = await self._fetch_orders("listings", query)
            return offers + listings

        side, nft, currency = resolve_filter_sides(params.maker_asset, params.taker_asset)
        query["asset_contract_address"] = nft.contract_address
        if nft.token_id is not None:
            query["token_ids"] = [nft.token_id]
        if currency is not None:
            query["payment_token_address"] = currency.contract_address
        return await self._fetch_orders("listings" if side == OrderSide.SELL else "offers", query)

    async def take_order(self, order: NormalizedOrder[Any]) -> Any:
        """Fulfil the order, supplying every consideration item from this wallet."""
        original = _original_order(order)
        parameters = original.protocol_data.parameters
        signature = original.protocol_data.signature
        if signature is None:
            raise UnsupportedOperationError(f"order {original.order_hash} carries no signature")
        if any(
            item.item_type in CRITERIA_ITEM_TYPES
            for item in [*parameters.offer, *parameters.consideration]
        ):
            raise UnsupportedOperationError("criteria-based orders need a token id to fill")

        value = 0
        token_totals: dict[str, int] = {}
        for item in parameters.consideration:
            amount = _max_amount(item)
            match item.item_type:
                case ItemType.NATIVE:
                    value += amount
                case ItemType.ERC20:
                    token_totals[item.token] = token_totals.get(item.token, 0) + amount
                case _:
                    await ensure_approval(self._wallet, _item_asset(item), OPENSEA_CONDUIT)
        for token, amount in token_totals.items():
            currency = Erc20Asset(contract_address=token, amount=amount)
            await ensure_approval(self._wallet, currency, OPENSEA_CONDUIT)

        seaport = self._wallet.contract(SEAPORT_ADDRESS, SEAPORT_ABI)
        order_arg = abi_value(
            {"parameters": _parameters_struct(parameters), "signature": hex_to_bytes(signature)},
            ORDER,
        )
        call = seaport.functions.fulfillOrder(order_arg, hex_to_bytes(OPENSEA_CONDUIT_KEY))
        receipt = await send_transaction(self._wallet, call, value=value)
        log.info("Filled OpenSea order %s", original.order_hash)
        return receipt

    async def cancel_order(self, order: NormalizedOrder[Any]) -> Any:
        parameters = _original_order(order).protocol_data.parameters
        seaport = self._wallet.contract(SEAPORT_ADDRESS, SEAPORT_ABI)
        orders_arg = abi_value([_parameters_struct(parameters)], ORDER_COMPONENTS_LIST)
        return await send_transaction(self._wallet, seaport.functions.cancel(orders_arg))

    # ── Helpers ──────────────────────────────────────────────────

    def _typed_data(self, parameters: SeaportOrderParameters) -> dict[str, Any]:
        struct = _parameters_struct(parameters)
        return {
            "types": _EIP712_TYPES,
            "primaryType": "OrderComponents",
            "domain": {
                "name": "Seaport",
                "version": SEAPORT_VERSION,
                "chainId": self._wallet.chain_id,
                "verifyingContract": to_checksum(SEAPORT_ADDRESS),
            },
            "message": {f["name"]: struct[f["name"]] for f in _EIP712_TYPES["OrderComponents"]},
        }

    def _orders_path(self, kind: str) -> str:
        return f"/api/v2/orders/{self._chain}/seaport/{kind}"

    async def _fetch_orders(self, kind: str, query: dict[str, Any]) -> list[OpenSeaOrder]:
        params = {k: v for k, v in query.items() if v is not None}
        payload = await self._request("GET", self._orders_path(kind), params=params)
        return [
            normalize_order(OpenSeaOriginalOrder.model_validate(o))
            for o in payload.get("orders", [])
        ]

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-API-KEY"] = self._api_key
        resp = await self._client.request(method, f"{self._api_base}{path}", headers=headers, **kwargs)
        if resp.is_error:
            raise MarketplaceCallError(
                self.name, f"OpenSea API error {resp.status_code}: {resp.text}"
            )
        return resp.json()


def _is_native(address: str) -> bool:
    return address.lower() in (NATIVE_TOKEN_ADDRESS.lower(), ZERO_ADDRESS)


def _uint(value: str | int) -> int:
    if isinstance(value, str) and value.startswith(("0x", "0X")):
        return int(value, 16)
    return int(value)


def _max_amount(item: OfferItem) -> int:
    # Auction prices move between start and end; the larger one always covers the fill.
    return max(_uint(item.start_amount), _uint(item.end_amount))


def _nft_item(nft: NonFungibleAsset) -> dict[str, Any]:
    amount = str(asset_amount(nft))
    return {
        "itemType": ItemType.ERC1155 if nft.type == AssetType.ERC1155 else ItemType.ERC721,
        "token": to_checksum(nft.contract_address),
        "identifierOrCriteria": nft.token_id,
        "startAmount": amount,
        "endAmount": amount,
    }


def _currency_item(token: str, amount: int, recipient: str | None = None) -> dict[str, Any]:
    native = _is_native(token)
    item: dict[str, Any] = {
        "itemType": ItemType.NATIVE if native else ItemType.ERC20,
        "token": ZERO_ADDRESS if native else to_checksum(token),
        "identifierOrCriteria": "0",
        "startAmount": str(amount),
        "endAmount": str(amount),
    }
    if recipient is not None:
        item["recipient"] = to_checksum(recipient)
    return item


def _item_struct(item: OfferItem) -> dict[str, Any]:
    struct: dict[str, Any] = {
        "itemType": int(item.item_type),
        "token": to_checksum(item.token),
        "identifierOrCriteria": _uint(item.identifier_or_criteria),
        "startAmount": _uint(item.start_amount),
        "endAmount": _uint(item.end_amount),
    }
    if isinstance(item, ConsiderationItem):
        struct["recipient"] = to_checksum(item.recipient)
    return struct


def _parameters_struct(parameters: SeaportOrderParameters) -> dict[str, Any]:
    """Typed values of the order, shared by EIP-712 hashing and ABI encoding."""
    return {
        "offerer": to_checksum(parameters.offerer),
        "zone": to_checksum(parameters.zone),
        "offer": [_item_struct(item) for item in parameters.offer],
        "consideration": [_item_struct(item) for item in parameters.consideration],
        "orderType": int(parameters.order_type),
        "startTime": _uint(parameters.start_time),
        "endTime": _uint(parameters.end_time),
        "zoneHash": hex_to_bytes(parameters.zone_hash),
        "salt": _uint(parameters.salt),
        "conduitKey": hex_to_bytes(parameters.conduit_key),
        "totalOriginalConsiderationItems": parameters.total_original_consideration_items,
        "counter": _uint(parameters.counter),
    }


def _item_asset(item: OfferItem) -> Asset:
    amount = _uint(item.start_amount)
    match item.item_type:
        case ItemType.NATIVE:
            return Erc20Asset(contract_address=NATIVE_TOKEN_ADDRESS, amount=amount)
        case ItemType.ERC20:
            return Erc20Asset(contract_address=item.token, amount=amount)
        case ItemType.ERC721:
            return Erc721Asset(
                contract_address=item.token, token_id=str(_uint(item.identifier_or_criteria))
            )
        case ItemType.ERC1155:
            return Erc1155Asset(
                contract_address=item.token,
                token_id=str(_uint(item.identifier_or_criteria)),
                amount=amount,
            )
    # Criteria items name a merkle root, not a token.
    return UnknownAsset(contract_address=item.token, amount=amount)


def _currency_totals(items: list[ConsiderationItem]) -> list[Asset]:
    totals: dict[str, int] = {}
    for item in items:
        if item.item_type in CURRENCY_ITEM_TYPES:
            token = NATIVE_TOKEN_ADDRESS if item.item_type == ItemType.NATIVE else item.token
            totals[token] = totals.get(token, 0) + _uint(item.start_amount)
    return [Erc20Asset(contract_address=token, amount=amount) for token, amount in totals.items()]


def _original_order(order: NormalizedOrder[Any]) -> OpenSeaOriginalOrder:
    original = order.original_order
    if isinstance(original, OpenSeaOriginalOrder):
        return original
    try:
        return OpenSeaOriginalOrder.model_validate(original)
    except PydanticValidationError as exc:
        raise UnsupportedOperationError("not an OpenSea order") from exc


def normalize_order(order: OpenSeaOriginalOrder) -> OpenSeaOrder:
    """Map a Seaport order onto the canonical order shape.

    A listing gives its offer items for the sum of the currency consideration,
    fees included. An offer gives its currency for the NFTs owed to the
    offerer. Collection and trait offers (criteria items) have no single token
    id and come out as ``Unknown``.
    """
    parameters = order.protocol_data.parameters
    maker_assets = [_item_asset(item) for item in parameters.offer]
    if order.side == OpenSeaSide.ASK:
        taker_assets = _currency_totals(parameters.consideration)
    else:
        offerer = parameters.offerer.lower()
        taker_assets = [
            _item_asset(item)
            for item in parameters.consideration
            if item.item_type not in CURRENCY_ITEM_TYPES and item.recipient.lower() == offerer
        ]

    return OpenSeaOrder(
        id=order.order_hash,
        maker_assets=maker_assets,
        taker_assets=taker_assets,
        maker=parameters.offerer,
        original_order=order,
    )
