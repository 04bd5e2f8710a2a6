"""0x v3 orders stored in a pluggable order book (Gomu's hosted one by default)."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from eth_abi import encode
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3

from gomu.chain import (
    ZERO_ADDRESS,
    Wallet,
    abi_function,
    abi_param,
    detect_nft_type,
    ensure_approval,
    hex_to_bytes,
    send_transaction,
    sign_typed_data,
    signature_parts,
    to_checksum,
)
from gomu.config import TraderV3Config
from gomu.errors import UnsupportedOperationError
from gomu.fees import compute_fees
from gomu.models import (
    Asset,
    AssetType,
    Erc20Asset,
    GetOrdersParams,
    MakeOrderParams,
    MarketplaceName,
    NormalizedOrder,
    WireModel,
    asset_amount,
)
from gomu.orderbook.base import (
    OrderBook,
    OrderBookGetOrdersParams,
    OrderBookMakeOrderParams,
    OrderBookOrder,
)
from gomu.orderbook.gomu import GomuOrderBook
from gomu.validators import resolve_order_sides

log = logging.getLogger(__name__)

DEFAULT_EXPIRATION = 2_524_604_400
EIP712_SIGNATURE_TYPE = b"\x02"
# The exchange charges the taker this many wei per unit of gas price on every fill.
PROTOCOL_FEE_MULTIPLIER = 70_000

ERC20_ASSET_PROXY_ID = bytes.fromhex("f47261b0")
ERC721_ASSET_PROXY_ID = bytes.fromhex("02571792")
ERC1155_ASSET_PROXY_ID = bytes.fromhex("a7cb5fb7")


class TraderV3Addresses(BaseModel):
    exchange: str
    erc20_proxy: str
    erc721_proxy: str
    erc1155_proxy: str


ADDRESSES: dict[int, TraderV3Addresses] = {
    1: TraderV3Addresses(
        exchange="0x61935CbDd02287B511119DDb11Aeb42F1593b7Ef",
        erc20_proxy="0x95E6F48254609A6ee006F7D493c8e5fB97094ceF",
        erc721_proxy="0xeFc70A1B18C432bdc64b596838B4D138f6bC6cad",
        erc1155_proxy="0x7EeFbd48Fd63d441Ec7435D024EC7c5131019ADd",
    ),
}


class TraderV3SignedOrder(WireModel):
    """Signed 0x v3 order, as kept in the order book's ``originalOrder``."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    maker_address: str
    taker_address: str = ZERO_ADDRESS
    fee_recipient_address: str = ZERO_ADDRESS
    sender_address: str = ZERO_ADDRESS
    maker_asset_amount: str
    taker_asset_amount: str
    maker_fee: str = "0"
    taker_fee: str = "0"
    expiration_time_seconds: str
    salt: str
    maker_asset_data: str
    taker_asset_data: str
    maker_fee_asset_data: str = "0x"
    taker_fee_asset_data: str = "0x"
    chain_id: int
    exchange_address: str
    signature: str


_ORDER_FIELDS = [
    ("makerAddress", "address"),
    ("takerAddress", "address"),
    ("feeRecipientAddress", "address"),
    ("senderAddress", "address"),
    ("makerAssetAmount", "uint256"),
    ("takerAssetAmount", "uint256"),
    ("makerFee", "uint256"),
    ("takerFee", "uint256"),
    ("expirationTimeSeconds", "uint256"),
    ("salt", "uint256"),
    ("makerAssetData", "bytes"),
    ("takerAssetData", "bytes"),
    ("makerFeeAssetData", "bytes"),
    ("takerFeeAssetData", "bytes"),
]

ORDER = abi_param("order", "tuple", [abi_param(n, t) for n, t in _ORDER_FIELDS])

EXCHANGE_ABI = [
    abi_function(
        "fillOrder",
        [ORDER, abi_param("takerAssetFillAmount", "uint256"), abi_param("signature", "bytes")],
        mutability="payable",
    ),
    abi_function("cancelOrder", [ORDER], mutability="payable"),
]


def encode_asset_data(asset: Asset) -> bytes:
    """0x v3 asset data: proxy id followed by the ABI-encoded token reference."""
    if isinstance(asset, Erc20Asset):
        return ERC20_ASSET_PROXY_ID + encode(["address"], [to_checksum(asset.contract_address)])
    if asset.type == AssetType.ERC721:
        return ERC721_ASSET_PROXY_ID + encode(
            ["address", "uint256"], [to_checksum(asset.contract_address), int(asset.token_id)]
        )
    if asset.type == AssetType.ERC1155:
        # Asset amount scales the unit values, so the quantity travels in the order amount.
        return ERC1155_ASSET_PROXY_ID + encode(
            ["address", "uint256[]", "uint256[]", "bytes"],
            [to_checksum(asset.contract_address), [int(asset.token_id)], [1], b""],
        )
    raise UnsupportedOperationError(f"unknown asset type: {asset.type}")


class TraderV3:
    """0x v3 orders with a pluggable off-chain order book."""

    name = MarketplaceName.TRADER_V3

    def __init__(self, wallet: Wallet, config: TraderV3Config | None = None) -> None:
        if not self.supports_chain_id(wallet.chain_id):
            raise ValueError(f"unsupported chain id: {wallet.chain_id}")
        config = config or TraderV3Config()
        self._wallet = wallet
        self._addresses = ADDRESSES[wallet.chain_id]
        self._gas_limit = config.gas_limit
        self._fees = config.fees
        self._hosted_book: GomuOrderBook | None = None
        if config.order_book is None:
            self._hosted_book = GomuOrderBook(
                api_key=config.api_key,
                api_base_url=config.api_base_url,
                timeout=config.timeout,
            )
        self._order_book: OrderBook = config.order_book or self._hosted_book

    @classmethod
    def supports_chain_id(cls, chain_id: int) -> bool:
        return chain_id in ADDRESSES

    async def close(self) -> None:
        # Custom order books belong to the caller.
        if self._hosted_book is not None:
            await self._hosted_book.close()

    async def make_order(self, params: MakeOrderParams) -> OrderBookOrder:
        """Sign a 0x v3 order and store it in the order book.

        Fees are charged to whichever side pays the fungible asset and may go to
        a single recipient only.
        """
        sides = resolve_order_sides(params.maker_assets, params.taker_assets)
        maker_asset, taker_asset = params.maker_assets[0], params.taker_assets[0]
        currency = sides.fungible_asset

        schedule = compute_fees(params.fees if params.fees is not None else self._fees, currency.amount)
        if len(schedule.recipients) > 1:
            raise UnsupportedOperationError("cannot have more than 1 recipient address")
        fee_recipient = schedule.recipients[0] if schedule.recipients else ZERO_ADDRESS
        fee_asset_data = encode_asset_data(currency) if schedule.fees else b""
        net = schedule.net_amount(currency.amount)

        await ensure_approval(self._wallet, maker_asset, self._proxy_for(maker_asset.type))

        if params.expiration_time is not None:
            expiration = round(params.expiration_time.timestamp())
        else:
            expiration = DEFAULT_EXPIRATION

        order: dict[str, Any] = {
            "makerAddress": self._wallet.address,
            "takerAddress": to_checksum(params.taker) if params.taker else ZERO_ADDRESS,
            "feeRecipientAddress": to_checksum(fee_recipient),
            "senderAddress": ZERO_ADDRESS,
            "makerAssetAmount": net if not sides.is_sell else asset_amount(maker_asset),
            "takerAssetAmount": net if sides.is_sell else asset_amount(taker_asset),
            "makerFee": 0 if sides.is_sell else schedule.total,
            "takerFee": schedule.total if sides.is_sell else 0,
            "expirationTimeSeconds": expiration,
            "salt": secrets.randbits(256),
            "makerAssetData": encode_asset_data(maker_asset),
            "takerAssetData": encode_asset_data(taker_asset),
            "makerFeeAssetData": b"" if sides.is_sell else fee_asset_data,
            "takerFeeAssetData": fee_asset_data if sides.is_sell else b"",
        }
        signed = sign_typed_data(self._wallet, self._typed_data(order))
        v, r, s = signature_parts(signed)
        signature = bytes([v]) + hex_to_bytes(r) + hex_to_bytes(s) + EIP712_SIGNATURE_TYPE

        original = TraderV3SignedOrder.model_validate(
            {
                **_serialize(order),
                "chainId": self._wallet.chain_id,
                "exchangeAddress": to_checksum(self._addresses.exchange),
                "signature": Web3.to_hex(signature),
            }
        )
        fees = schedule.fees or None
        resp = await self._order_book.make_order(
            OrderBookMakeOrderParams(
                chain_id=str(self._wallet.chain_id),
                maker=self._wallet.address,
                maker_assets=params.maker_assets,
                taker_assets=params.taker_assets,
                taker=params.taker,
                original_order=original.model_dump(by_alias=True),
                maker_fees=None if sides.is_sell else fees,
                taker_fees=fees if sides.is_sell else None,
                expiration_time=params.expiration_time,
            )
        )
        return resp.data

    async def get_orders(self, params: GetOrdersParams | None = None) -> list[OrderBookOrder]:
        params = params or GetOrdersParams()
        maker_asset, taker_asset = params.maker_asset, params.taker_asset
        query = OrderBookGetOrdersParams(
            chain_id=str(self._wallet.chain_id),
            maker=params.maker,
            maker_contract_address=maker_asset.contract_address if maker_asset else None,
            maker_token_id=getattr(maker_asset, "token_id", None),
            taker=params.taker,
            taker_contract_address=taker_asset.contract_address if taker_asset else None,
            taker_token_id=getattr(taker_asset, "token_id", None),
        )
        resp = await self._order_book.get_orders(query)
        return resp.data

    async def take_order(self, order: NormalizedOrder[Any]) -> Any:
        """Fill the whole order, paying the exchange's protocol fee in native currency."""
        signed = _signed_order(order)
        taker_amount = int(signed.taker_asset_amount)

        for asset in order.taker_assets:
            amount = None
            if isinstance(asset, Erc20Asset):
                amount = taker_amount
                if signed.taker_fee_asset_data.lower() == signed.taker_asset_data.lower():
                    amount += int(signed.taker_fee)
            await ensure_approval(self._wallet, asset, await self._proxy_for_asset(asset), amount=amount)

        exchange = self._wallet.contract(self._addresses.exchange, EXCHANGE_ABI)
        call = exchange.functions.fillOrder(
            _order_tuple(signed), taker_amount, hex_to_bytes(signed.signature)
        )
        gas_price = await self._wallet.w3.eth.gas_price
        receipt = await send_transaction(
            self._wallet,
            call,
            value=PROTOCOL_FEE_MULTIPLIER * gas_price,
            gas=self._gas_limit,
            gas_price=gas_price,
        )
        log.info("Filled 0x v3 order %s", order.id)
        return receipt

    async def cancel_order(self, order: NormalizedOrder[Any]) -> Any:
        signed = _signed_order(order)
        exchange = self._wallet.contract(self._addresses.exchange, EXCHANGE_ABI)
        return await send_transaction(self._wallet, exchange.functions.cancelOrder(_order_tuple(signed)))

    def _proxy_for(self, asset_type: str) -> str:
        if asset_type == AssetType.ERC20:
            return self._addresses.erc20_proxy
        if asset_type == AssetType.ERC721:
            return self._addresses.erc721_proxy
        if asset_type == AssetType.ERC1155:
            return self._addresses.erc1155_proxy
        raise UnsupportedOperationError(f"unknown asset type: {asset_type}")

    async def _proxy_for_asset(self, asset: Asset) -> str:
        if asset.type == AssetType.UNKNOWN:
            return self._proxy_for(await detect_nft_type(self._wallet, asset.contract_address))
        return self._proxy_for(asset.type)

    def _typed_data(self, order: dict[str, Any]) -> dict[str, Any]:
        return {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                "Order": [{"name": n, "type": t} for n, t in _ORDER_FIELDS],
            },
            "primaryType": "Order",
            "domain": {
                "name": "0x Protocol",
                "version": "3.0.0",
                "chainId": self._wallet.chain_id,
                "verifyingContract": to_checksum(self._addresses.exchange),
            },
            "message": order,
        }


def _signed_order(order: NormalizedOrder[Any]) -> TraderV3SignedOrder:
    original = order.original_order
    if isinstance(original, TraderV3SignedOrder):
        return original
    try:
        return TraderV3SignedOrder.model_validate(original)
    except PydanticValidationError as exc:
        raise UnsupportedOperationError("not a 0x v3 order") from exc


def _serialize(order: dict[str, Any]) -> dict[str, Any]:
    """JSON form of an order struct: integers as decimal strings, bytes as hex."""
    serialized: dict[str, Any] = {}
    for key, value in order.items():
        if isinstance(value, bytes):
            serialized[key] = Web3.to_hex(value)
        elif isinstance(value, int):
            serialized[key] = str(value)
        else:
            serialized[key] = value
    return serialized


def _order_tuple(order: TraderV3SignedOrder) -> tuple[Any, ...]:
    return (
        to_checksum(order.maker_address),
        to_checksum(order.taker_address),
        to_checksum(order.fee_recipient_address),
        to_checksum(order.sender_address),
        int(order.maker_asset_amount),
        int(order.taker_asset_amount),
        int(order.maker_fee),
        int(order.taker_fee),
        int(order.expiration_time_seconds),
        int(order.salt),
        hex_to_bytes(order.maker_asset_data),
        hex_to_bytes(order.taker_asset_data),
        hex_to_bytes(order.maker_fee_asset_data),
        hex_to_bytes(order.taker_fee_asset_data),
    )
