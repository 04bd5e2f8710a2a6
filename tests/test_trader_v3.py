"""Tests for the 0x v3 adapter backed by a pluggable order book."""

from unittest.mock import AsyncMock, patch

import pytest
from eth_abi import decode

from gomu.config import TraderV3Config
from gomu.errors import UnsupportedOperationError
from gomu.marketplace.trader_v3 import (
    ERC20_ASSET_PROXY_ID,
    ERC721_ASSET_PROXY_ID,
    ERC1155_ASSET_PROXY_ID,
    TraderV3,
    encode_asset_data,
)
from gomu.models import (
    AmountFee,
    BasisPointsFee,
    Erc20Asset,
    Erc721Asset,
    Erc1155Asset,
    GetOrdersParams,
    MakeOrderParams,
    UnknownAsset,
)
from gomu.orderbook.base import (
    GetOrdersResponse,
    MakeOrderResponse,
    OrderBook,
    OrderBookGetOrdersParams,
    OrderBookMakeOrderParams,
    OrderBookOrder,
)

from helpers import COLLECTION, OTHER_RECIPIENT, RECIPIENT, WETH, make_wallet


class MemoryOrderBook:
    """Keeps orders in a list; filters on exact matches."""

    def __init__(self):
        self.orders: list[OrderBookOrder] = []
        self.queries: list[OrderBookGetOrdersParams] = []

    async def make_order(self, params: OrderBookMakeOrderParams) -> MakeOrderResponse:
        order = OrderBookOrder(
            id=f"mem_{len(self.orders)}",
            chain_id=params.chain_id,
            maker=params.maker,
            taker=params.taker,
            maker_assets=params.maker_assets,
            taker_assets=params.taker_assets,
            original_order=params.original_order,
        )
        self.orders.append(order)
        return MakeOrderResponse(data=order)

    async def get_orders(self, params: OrderBookGetOrdersParams) -> GetOrdersResponse:
        self.queries.append(params)
        matches = [
            o for o in self.orders
            if o.chain_id == params.chain_id and (params.maker is None or o.maker == params.maker)
        ]
        return GetOrdersResponse(data=matches)


@pytest.fixture
def book():
    return MemoryOrderBook()


@pytest.fixture
def adapter(wallet, book):
    return TraderV3(wallet, TraderV3Config(order_book=book))


def _sell_params(**kwargs) -> MakeOrderParams:
    return MakeOrderParams(
        maker_assets=[Erc721Asset(contract_address=COLLECTION, token_id="42")],
        taker_assets=[Erc20Asset(contract_address=WETH, amount=1_000_000)],
        **kwargs,
    )


class TestEncodeAssetData:
    def test_erc20(self):
        data = encode_asset_data(Erc20Asset(contract_address=WETH, amount=1))
        assert data[:4] == ERC20_ASSET_PROXY_ID
        assert decode(["address"], data[4:]) == (WETH.lower(),)

    def test_erc721(self):
        data = encode_asset_data(Erc721Asset(contract_address=COLLECTION, token_id="42"))
        assert data[:4] == ERC721_ASSET_PROXY_ID
        assert decode(["address", "uint256"], data[4:]) == (COLLECTION, 42)

    def test_erc1155_uses_unit_value(self):
        data = encode_asset_data(Erc1155Asset(contract_address=COLLECTION, token_id="5", amount=9))
        assert data[:4] == ERC1155_ASSET_PROXY_ID
        _, ids, values, callback = decode(["address", "uint256[]", "uint256[]", "bytes"], data[4:])
        assert ids == (5,)
        assert values == (1,)
        assert callback == b""

    def test_unknown_rejected(self):
        with pytest.raises(UnsupportedOperationError):
            encode_asset_data(UnknownAsset(contract_address=COLLECTION))


class TestTraderV3:
    def test_custom_order_book_satisfies_protocol(self, book):
        assert isinstance(book, OrderBook)

    def test_mainnet_only(self):
        assert TraderV3.supports_chain_id(1)
        assert not TraderV3.supports_chain_id(5)
        with pytest.raises(ValueError, match="unsupported chain id"):
            TraderV3(make_wallet(chain_id=5))

    @pytest.mark.asyncio
    async def test_make_sell_order_stores_signed_order(self, adapter, book, wallet):
        with patch("gomu.marketplace.trader_v3.ensure_approval", new=AsyncMock()) as approve:
            order = await adapter.make_order(
                _sell_params(fees=[BasisPointsFee(recipient=RECIPIENT, basis_points=250)])
            )

        assert approve.await_args.args[2] == "0xeFc70A1B18C432bdc64b596838B4D138f6bC6cad"
        assert order is book.orders[0]
        assert order.maker == wallet.address
        assert order.chain_id == "1"

        signed = order.original_order
        assert signed["makerAddress"] == wallet.address
        assert signed["makerAssetAmount"] == "1"
        assert signed["takerAssetAmount"] == "975000"
        assert signed["takerFee"] == "25000"
        assert signed["makerFee"] == "0"
        assert signed["feeRecipientAddress"] == "0x1111111111111111111111111111111111111111"
        assert signed["takerFeeAssetData"] == signed["takerAssetData"]
        assert signed["makerFeeAssetData"] == "0x"
        assert signed["chainId"] == 1
        # v (1 byte) + r + s + signature type
        sig = bytes.fromhex(signed["signature"][2:])
        assert len(sig) == 66
        assert sig[0] in (27, 28)
        assert sig[-1] == 2

    @pytest.mark.asyncio
    async def test_make_buy_order_charges_maker(self, adapter, book):
        currency = Erc20Asset(contract_address=WETH, amount=1000)
        with patch("gomu.marketplace.trader_v3.ensure_approval", new=AsyncMock()) as approve:
            order = await adapter.make_order(
                MakeOrderParams(
                    maker_assets=[currency],
                    taker_assets=[Erc1155Asset(contract_address=COLLECTION, token_id="5", amount=3)],
                    fees=[AmountFee(recipient=RECIPIENT, amount=10)],
                )
            )

        approve.assert_awaited_once_with(
            adapter._wallet, currency, "0x95E6F48254609A6ee006F7D493c8e5fB97094ceF"
        )
        signed = order.original_order
        assert signed["makerAssetAmount"] == "990"
        assert signed["takerAssetAmount"] == "3"
        assert signed["makerFee"] == "10"
        assert signed["takerFee"] == "0"

    @pytest.mark.asyncio
    async def test_single_fee_recipient_only(self, adapter):
        fees = [
            AmountFee(recipient=RECIPIENT, amount=1),
            AmountFee(recipient=OTHER_RECIPIENT, amount=1),
        ]
        with pytest.raises(UnsupportedOperationError, match="more than 1 recipient"):
            await adapter.make_order(_sell_params(fees=fees))

    @pytest.mark.asyncio
    async def test_get_orders_translates_filters(self, adapter, book, wallet):
        with patch("gomu.marketplace.trader_v3.ensure_approval", new=AsyncMock()):
            await adapter.make_order(_sell_params())

        orders = await adapter.get_orders(
            GetOrdersParams(
                maker=wallet.address,
                maker_asset=Erc721Asset(contract_address=COLLECTION, token_id="42"),
                taker_asset=Erc20Asset(contract_address=WETH, amount=1),
            )
        )

        assert len(orders) == 1
        query = book.queries[0]
        assert query.chain_id == "1"
        assert query.maker_contract_address == COLLECTION
        assert query.maker_token_id == "42"
        assert query.taker_contract_address == WETH
        assert query.taker_token_id is None

    @pytest.mark.asyncio
    async def test_take_order_pays_protocol_fee(self, adapter, wallet):
        with patch("gomu.marketplace.trader_v3.ensure_approval", new=AsyncMock()):
            order = await adapter.make_order(
                _sell_params(fees=[AmountFee(recipient=RECIPIENT, amount=500)])
            )

        wallet.w3.eth.gas_price = _awaitable(30)
        exchange = wallet.w3.eth.contract.return_value
        with (
            patch("gomu.marketplace.trader_v3.ensure_approval", new=AsyncMock()) as approve,
            patch("gomu.marketplace.trader_v3.send_transaction", new=AsyncMock()) as send,
        ):
            await adapter.take_order(order)

        assert approve.await_args.args[2] == "0x95E6F48254609A6ee006F7D493c8e5fB97094ceF"
        assert approve.await_args.kwargs == {"amount": 1_000_000}

        order_arg, fill_amount, signature = exchange.functions.fillOrder.call_args.args
        assert fill_amount == 999_500
        assert order_arg[5] == 999_500
        assert order_arg[7] == 500
        assert len(signature) == 66
        assert send.await_args.kwargs == {"value": 70_000 * 30, "gas": None, "gas_price": 30}

    @pytest.mark.asyncio
    async def test_cancel_order(self, adapter, wallet):
        with patch("gomu.marketplace.trader_v3.ensure_approval", new=AsyncMock()):
            order = await adapter.make_order(_sell_params())

        exchange = wallet.w3.eth.contract.return_value
        with patch("gomu.marketplace.trader_v3.send_transaction", new=AsyncMock()) as send:
            await adapter.cancel_order(order)

        (order_arg,) = exchange.functions.cancelOrder.call_args.args
        assert order_arg[0] == wallet.address
        send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_leaves_custom_book_alone(self, adapter):
        await adapter.close()


def _awaitable(value):
    async def _value():
        return value

    return _value()
