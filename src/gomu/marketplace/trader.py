"""trader.xyz adapter: 0x v4 NFT orders kept in the trader.xyz order book.

0x v4 settles an order as ``erc20TokenAmount`` plus every fee, so fees are
subtracted from the trade amount before it is embedded in the order and
added back when an order is normalized.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

import httpx
from pydantic import ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from gomu.chain import (
    NATIVE_TOKEN_ADDRESS,
    ZERO_ADDRESS,
    Wallet,
    abi_function,
    abi_param,
    abi_value,
    ensure_approval,
    send_transaction,
    sign_typed_data,
    signature_parts,
    to_checksum,
)
from gomu.config import TraderConfig
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
    NormalizedOrder,
    OrderSide,
    UnknownAsset,
    WireModel,
)
from gomu.validators import resolve_order_sides

log = logging.getLogger(__name__)

# 2050-01-01, the expiry trader.xyz uses for orders without one.
DEFAULT_EXPIRY = 2_524_604_400
EIP712_SIGNATURE_TYPE = 2

_DEFAULT_PROXY = "0xDef1C0ded9bec7F1a1670819833240f027b25EfF"

EXCHANGE_PROXY_ADDRESSES: dict[int, str] = {
    1: _DEFAULT_PROXY,
    3: _DEFAULT_PROXY,
    5: "0xF91bB752490473B8342a3E964E855b9f9a2A668e",
    10: "0xDEF1ABE32c034e558Cdd535791643C58a13aCC10",
    56: _DEFAULT_PROXY,
    137: _DEFAULT_PROXY,
    250: "0xDEF189DeAEF76E379df891899eb5A00a94cBC250",
    42161: _DEFAULT_PROXY,
    42220: "0xDB6f1920A889355780aF7570773609Bd8Cb1f498",
    43114: _DEFAULT_PROXY,
    80001: "0x4fb72262344034e034fCE3D9c701fD9213A55260",
}


# ── Native order shape ───────────────────────────────────────────


class TraderFee(WireModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    recipient: str
    amount: str
    fee_data: str = "0x"


class TraderProperty(WireModel):
    property_validator: str
    property_data: str = "0x"


class TraderSignature(WireModel):
    signature_type: int
    v: int
    r: str
    s: str


class TraderSignedOrder(WireModel):
    """Signed 0x v4 ERC721 or ERC1155 order, as serialized by trader.xyz."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    direction: int
    maker: str
    taker: str = ZERO_ADDRESS
    expiry: str
    nonce: str
    erc20_token: str
    erc20_token_amount: str
    fees: list[TraderFee] = Field(default_factory=list)
    erc721_token: str | None = None
    erc721_token_id: str | None = None
    erc721_token_properties: list[TraderProperty] | None = None
    erc1155_token: str | None = None
    erc1155_token_id: str | None = None
    erc1155_token_properties: list[TraderProperty] | None = None
    erc1155_token_amount: str | None = None
    signature: TraderSignature

    @property
    def is_erc721(self) -> bool:
        return self.erc721_token is not None

    @property
    def fee_total(self) -> int:
        return sum(int(fee.amount) for fee in self.fees)


class TraderOriginalOrder(WireModel):
    """Order record returned by the trader.xyz order book."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    erc20_token: str
    erc20_token_amount: str
    nft_token: str
    nft_token_id: str
    nft_token_amount: str = "1"
    nft_type: str
    sell_or_buy_nft: OrderSide
    chain_id: str
    order: TraderSignedOrder
    order_status: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


TraderOrder = NormalizedOrder[TraderOriginalOrder]


# ── Contract ABI ─────────────────────────────────────────────────

_FEE = abi_param(
    "fees",
    "tuple[]",
    [abi_param("recipient", "address"), abi_param("amount", "uint256"), abi_param("feeData", "bytes")],
)


def _properties(name: str) -> dict[str, Any]:
    return abi_param(
        name,
        "tuple[]",
        [abi_param("propertyValidator", "address"), abi_param("propertyData", "bytes")],
    )


_ORDER_HEAD = [
    abi_param("direction", "uint8"),
    abi_param("maker", "address"),
    abi_param("taker", "address"),
    abi_param("expiry", "uint256"),
    abi_param("nonce", "uint256"),
    abi_param("erc20Token", "address"),
    abi_param("erc20TokenAmount", "uint256"),
    _FEE,
]

ERC721_ORDER = abi_param(
    "order",
    "tuple",
    _ORDER_HEAD
    + [
        abi_param("erc721Token", "address"),
        abi_param("erc721TokenId", "uint256"),
        _properties("erc721TokenProperties"),
    ],
)

ERC1155_ORDER = abi_param(
    "order",
    "tuple",
    _ORDER_HEAD
    + [
        abi_param("erc1155Token", "address"),
        abi_param("erc1155TokenId", "uint256"),
        _properties("erc1155TokenProperties"),
        abi_param("erc1155TokenAmount", "uint128"),
    ],
)

SIGNATURE = abi_param(
    "signature",
    "tuple",
    [
        abi_param("signatureType", "uint8"),
        abi_param("v", "uint8"),
        abi_param("r", "bytes32"),
        abi_param("s", "bytes32"),
    ],
)

EXCHANGE_ABI = [
    abi_function(
        "buyERC721",
        [ERC721_ORDER, SIGNATURE, abi_param("callbackData", "bytes")],
        mutability="payable",
    ),
    abi_function(
        "sellERC721",
        [
            ERC721_ORDER,
            SIGNATURE,
            abi_param("erc721TokenId", "uint256"),
            abi_param("unwrapNativeToken", "bool"),
            abi_param("callbackData", "bytes"),
        ],
    ),
    abi_function(
        "buyERC1155",
        [
            ERC1155_ORDER,
            SIGNATURE,
            abi_param("erc1155BuyAmount", "uint128"),
            abi_param("callbackData", "bytes"),
        ],
        mutability="payable",
    ),
    abi_function(
        "sellERC1155",
        [
            ERC1155_ORDER,
            SIGNATURE,
            abi_param("erc1155TokenId", "uint256"),
            abi_param("erc1155SellAmount", "uint128"),
            abi_param("unwrapNativeToken", "bool"),
            abi_param("callbackData", "bytes"),
        ],
    ),
    abi_function("cancelERC721Order", [abi_param("orderNonce", "uint256")]),
    abi_function("cancelERC1155Order", [abi_param("orderNonce", "uint256")]),
]

_EIP712_TYPES: dict[str, list[dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Fee": [
        {"name": "recipient", "type": "address"},
        {"name": "amount", "type": "uint256"},
        {"name": "feeData", "type": "bytes"},
    ],
    "Property": [
        {"name": "propertyValidator", "type": "address"},
        {"name": "propertyData", "type": "bytes"},
    ],
}


def _eip712_fields(order_param: dict[str, Any]) -> list[dict[str, str]]:
    named = {"fees": "Fee[]", "erc721TokenProperties": "Property[]", "erc1155TokenProperties": "Property[]"}
    return [
        {"name": c["name"], "type": named.get(c["name"], c["type"])}
        for c in order_param["components"]
    ]


# ── Adapter ──────────────────────────────────────────────────────


class Trader:
    """trader.xyz (0x v4) NFT limit orders."""

    name = MarketplaceName.TRADER

    def __init__(
        self,
        wallet: Wallet,
        config: TraderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not self.supports_chain_id(wallet.chain_id):
            raise ValueError(f"unsupported chain id: {wallet.chain_id}")
        config = config or TraderConfig()
        self._wallet = wallet
        self._exchange_address = to_checksum(EXCHANGE_PROXY_ADDRESSES[wallet.chain_id])
        self._api_base = config.api_base_url.rstrip("/")
        self._gas_limit = config.gas_limit
        self._fees = config.fees
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @classmethod
    def supports_chain_id(cls, chain_id: int) -> bool:
        return chain_id in EXCHANGE_PROXY_ADDRESSES

    async def close(self) -> None:
        await self._client.aclose()

    async def make_order(self, params: MakeOrderParams) -> TraderOrder:
        """Sign a 0x v4 order and post it to trader.xyz.

        Fees come from the request, falling back to the configured schedule.
        """
        sides = resolve_order_sides(params.maker_assets, params.taker_assets)
        nft, currency = sides.nft_asset, sides.fungible_asset
        if not sides.is_sell and currency.contract_address.lower() == NATIVE_TOKEN_ADDRESS.lower():
            raise UnsupportedOperationError("buy orders cannot be paid in the native token")

        schedule = compute_fees(params.fees if params.fees is not None else self._fees, currency.amount)
        if params.expiration_time is not None:
            expiry = round(params.expiration_time.timestamp())
        else:
            expiry = DEFAULT_EXPIRY

        await ensure_approval(
            self._wallet, nft if sides.is_sell else currency, self._exchange_address
        )

        unsigned: dict[str, Any] = {
            "direction": 0 if sides.is_sell else 1,
            "maker": self._wallet.address,
            "taker": to_checksum(params.taker) if params.taker else ZERO_ADDRESS,
            "expiry": str(expiry),
            "nonce": str(secrets.randbits(128)),
            "erc20Token": to_checksum(currency.contract_address),
            "erc20TokenAmount": str(schedule.net_amount(currency.amount)),
            "fees": [
                {"recipient": to_checksum(fee.recipient), "amount": str(fee.amount), "feeData": "0x"}
                for fee in schedule.fees
            ],
        }
        if nft.type == AssetType.ERC721:
            unsigned.update(
                erc721Token=to_checksum(nft.contract_address),
                erc721TokenId=nft.token_id,
                erc721TokenProperties=[],
            )
        else:
            unsigned.update(
                erc1155Token=to_checksum(nft.contract_address),
                erc1155TokenId=nft.token_id,
                erc1155TokenProperties=[],
                erc1155TokenAmount=str(nft.amount),
            )

        placeholder = {"signatureType": EIP712_SIGNATURE_TYPE, "v": 0, "r": "0x", "s": "0x"}
        order = TraderSignedOrder.model_validate({**unsigned, "signature": placeholder})
        signed = sign_typed_data(self._wallet, self._typed_data(order))
        v, r, s = signature_parts(signed)
        order = order.model_copy(
            update={"signature": TraderSignature(signature_type=EIP712_SIGNATURE_TYPE, v=v, r=r, s=s)}
        )

        body = {
            "order": order.model_dump(mode="json", by_alias=True, exclude_none=True),
            "chainId": str(self._wallet.chain_id),
            "metadata": {},
        }
        resp = await self._client.post(f"{self._api_base}/order", json=body)
        posted = TraderOriginalOrder.model_validate(self._check(resp).json())
        log.info(
            "Posted trader.xyz %s order %s (fees %d)",
            sides.side, posted.order.nonce, schedule.total,
        )
        return normalize_order(posted)

    async def get_orders(self, params: GetOrdersParams | None = None) -> list[TraderOrder]:
        params = params or GetOrdersParams()
        filters: dict[str, str] = {"chainId": str(self._wallet.chain_id)}
        for asset in (params.maker_asset, params.taker_asset):
            if asset is not None:
                _add_asset_filters(filters, asset)
        if params.maker:
            filters["maker"] = params.maker
        if params.taker:
            filters["taker"] = params.taker

        resp = await self._client.get(f"{self._api_base}/orders", params=filters)
        payload = self._check(resp).json()
        return [
            normalize_order(TraderOriginalOrder.model_validate(o))
            for o in payload.get("orders", [])
        ]

    async def take_order(self, order: NormalizedOrder[Any]) -> Any:
        """Fill the order from this wallet, approving the taker leg first."""
        original = _original_order(order)
        signed = original.order
        order_param = ERC721_ORDER if signed.is_erc721 else ERC1155_ORDER
        order_arg = abi_value(_order_struct(signed), order_param)
        signature_arg = abi_value(_signature_struct(signed.signature), SIGNATURE)
        exchange = self._wallet.contract(self._exchange_address, EXCHANGE_ABI)
        value = 0

        if original.sell_or_buy_nft == OrderSide.SELL:
            gross = int(signed.erc20_token_amount) + signed.fee_total
            currency = Erc20Asset(contract_address=signed.erc20_token, amount=gross)
            await ensure_approval(self._wallet, currency, self._exchange_address)
            if signed.erc20_token.lower() == NATIVE_TOKEN_ADDRESS.lower():
                value = gross
            if signed.is_erc721:
                call = exchange.functions.buyERC721(order_arg, signature_arg, b"")
            else:
                amount = int(signed.erc1155_token_amount or original.nft_token_amount)
                call = exchange.functions.buyERC1155(order_arg, signature_arg, amount, b"")
        else:
            await ensure_approval(self._wallet, _nft_asset(original), self._exchange_address)
            token_id = int(original.nft_token_id)
            if signed.is_erc721:
                call = exchange.functions.sellERC721(order_arg, signature_arg, token_id, False, b"")
            else:
                amount = int(signed.erc1155_token_amount or original.nft_token_amount)
                call = exchange.functions.sellERC1155(
                    order_arg, signature_arg, token_id, amount, False, b""
                )

        receipt = await send_transaction(self._wallet, call, value=value, gas=self._gas_limit)
        log.info("Filled trader.xyz order %s", signed.nonce)
        return receipt

    async def cancel_order(self, order: NormalizedOrder[Any]) -> Any:
        signed = _original_order(order).order
        exchange = self._wallet.contract(self._exchange_address, EXCHANGE_ABI)
        if signed.is_erc721:
            call = exchange.functions.cancelERC721Order(int(signed.nonce))
        else:
            call = exchange.functions.cancelERC1155Order(int(signed.nonce))
        return await send_transaction(self._wallet, call)

    def _typed_data(self, order: TraderSignedOrder) -> dict[str, Any]:
        primary = "ERC721Order" if order.is_erc721 else "ERC1155Order"
        order_param = ERC721_ORDER if order.is_erc721 else ERC1155_ORDER
        return {
            "types": {**_EIP712_TYPES, primary: _eip712_fields(order_param)},
            "primaryType": primary,
            "domain": {
                "name": "ZeroEx",
                "version": "1.0.0",
                "chainId": self._wallet.chain_id,
                "verifyingContract": self._exchange_address,
            },
            "message": _order_struct(order),
        }

    def _check(self, resp: httpx.Response) -> httpx.Response:
        if resp.is_error:
            raise MarketplaceCallError(
                self.name, f"trader.xyz API error {resp.status_code}: {resp.text}"
            )
        return resp


def _order_struct(order: TraderSignedOrder) -> dict[str, Any]:
    """Typed values of a signed order, shared by EIP-712 hashing and ABI encoding."""
    struct: dict[str, Any] = {
        "direction": order.direction,
        "maker": to_checksum(order.maker),
        "taker": to_checksum(order.taker),
        "expiry": int(order.expiry),
        "nonce": int(order.nonce),
        "erc20Token": to_checksum(order.erc20_token),
        "erc20TokenAmount": int(order.erc20_token_amount),
        "fees": [
            {
                "recipient": to_checksum(fee.recipient),
                "amount": int(fee.amount),
                "feeData": bytes.fromhex(fee.fee_data.removeprefix("0x")),
            }
            for fee in order.fees
        ],
    }
    if order.is_erc721:
        struct["erc721Token"] = to_checksum(order.erc721_token)
        struct["erc721TokenId"] = int(order.erc721_token_id)
        struct["erc721TokenProperties"] = _property_structs(order.erc721_token_properties)
    else:
        struct["erc1155Token"] = to_checksum(order.erc1155_token)
        struct["erc1155TokenId"] = int(order.erc1155_token_id)
        struct["erc1155TokenProperties"] = _property_structs(order.erc1155_token_properties)
        struct["erc1155TokenAmount"] = int(order.erc1155_token_amount)
    return struct


def _property_structs(properties: list[TraderProperty] | None) -> list[dict[str, Any]]:
    return [
        {
            "propertyValidator": to_checksum(p.property_validator),
            "propertyData": bytes.fromhex(p.property_data.removeprefix("0x")),
        }
        for p in properties or []
    ]


def _signature_struct(signature: TraderSignature) -> dict[str, Any]:
    return {
        "signatureType": signature.signature_type,
        "v": signature.v,
        "r": bytes.fromhex(signature.r.removeprefix("0x")),
        "s": bytes.fromhex(signature.s.removeprefix("0x")),
    }


def _add_asset_filters(filters: dict[str, str], asset: Asset) -> None:
    if isinstance(asset, Erc20Asset):
        filters["erc20Token"] = asset.contract_address
        return
    if asset.type != AssetType.UNKNOWN:
        filters["nftType"] = asset.type
    filters["nftToken"] = asset.contract_address
    if asset.token_id:
        filters["nftTokenId"] = asset.token_id


def _original_order(order: NormalizedOrder[Any]) -> TraderOriginalOrder:
    original = order.original_order
    if isinstance(original, TraderOriginalOrder):
        return original
    try:
        return TraderOriginalOrder.model_validate(original)
    except PydanticValidationError as exc:
        raise UnsupportedOperationError("not a trader.xyz order") from exc


def _nft_asset(order: TraderOriginalOrder) -> Asset:
    if order.nft_type == AssetType.ERC721:
        return Erc721Asset(contract_address=order.nft_token, token_id=order.nft_token_id)
    if order.nft_type == AssetType.ERC1155:
        return Erc1155Asset(
            contract_address=order.nft_token,
            token_id=order.nft_token_id,
            amount=int(order.nft_token_amount),
        )
    return UnknownAsset(
        contract_address=order.nft_token,
        token_id=order.nft_token_id,
        amount=int(order.nft_token_amount),
    )


def normalize_order(order: TraderOriginalOrder) -> TraderOrder:
    """Map a trader.xyz record onto the canonical order shape.

    The fungible leg reports what the taker pays or receives in total: the
    embedded ``erc20TokenAmount`` plus the order's fees.
    """
    currency = Erc20Asset(
        contract_address=order.erc20_token,
        amount=int(order.order.erc20_token_amount) + order.order.fee_total,
    )
    nft = _nft_asset(order)
    is_sell = order.sell_or_buy_nft == OrderSide.SELL

    return TraderOrder(
        id=order.order.nonce,
        maker_assets=[nft] if is_sell else [currency],
        taker_assets=[currency] if is_sell else [nft],
        maker=order.order.maker,
        original_order=order,
    )
