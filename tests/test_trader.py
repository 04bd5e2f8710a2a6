"""Tests for the trader.xyz (0x v4) adapter."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from gomu.chain import NATIVE_TOKEN_ADDRESS
from gomu.config import TraderConfig
from gomu.errors import MarketplaceCallError, UnsupportedOperationError, ValidationError
from gomu.marketplace.trader import Trader, TraderOriginalOrder, normalize_order
from gomu.models import (
    AmountFee,
    AssetType,
    BasisPointsFee,
    Erc20Asset,
    Erc721Asset,
    Erc1155Asset,
    GetOrdersParams,
    MakeOrderParams,
)

from helpers import COLLECTION, OTHER_RECIPIENT, RECIPIENT, WETH, make_wallet

MAKER = "0x" + "44" * 20

SIGNED_ORDER = {
    "direction": 0,
    "maker": MAKER,
    "taker": "0x0000000000000000000000000000000000000000",
    "expiry": "2524604400",
    "nonce": "100131415900000000000000000000000000000123",
    "erc20Token": WETH,
    "erc20TokenAmount": "975000",
    "fees": [{"recipient": RECIPIENT, "amount": "25000", "feeData": "0x"}],
    "erc721Token": COLLECTION,
    "erc721TokenId": "42",
    "erc721TokenProperties": [],
    "signature": {"signatureType": 2, "v": 28, "r": "0x" + "01" * 32, "s": "0x" + "02" * 32},
}

API_ORDER = {
    "erc20Token": WETH,
    "erc20TokenAmount": "975000",
    "nftToken": COLLECTION,
    "nftTokenId": "42",
    "nftTokenAmount": "1",
    "nftType": "ERC721",
    "sellOrBuyNft": "sell",
    "chainId": "1",
    "order": SIGNED_ORDER,
    "orderStatus": {"status": None, "transactionHash": None, "blockNumber": None},
    "metadata": {},
}

ERC1155_SIGNED_ORDER = {
    **{k: v for k, v in SIGNED_ORDER.items() if not k.startswith("erc721")},
    "direction": 1,
    "fees": [],
    "erc1155Token": COLLECTION,
    "erc1155TokenId": "5",
    "erc1155TokenProperties": [],
    "erc1155TokenAmount": "3",
}

ERC1155_API_ORDER = {
    **API_ORDER,
    "nftTokenId": "5",
    "nftTokenAmount": "3",
    "nftType": "ERC1155",
    "sellOrBuyNft": "buy",
    "order": ERC1155_SIGNED_ORDER,
}


def _adapter(wallet, handler, **config) -> Trader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Trader(wallet, TraderConfig(api_base_url="https://trader.test/orderbook", **config), client=client)


def _echo_handler(posted: dict):
    """Stores the posted body and answers like trader.xyz does."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        posted.update(body)
        order = body["order"]
        is_erc721 = "erc721Token" in order
        return httpx.Response(
            200,
            json={
                "erc20Token": order["erc20Token"],
                "erc20TokenAmount": order["erc20TokenAmount"],
                "nftToken": order["erc721Token"] if is_erc721 else order["erc1155Token"],
                "nftTokenId": order["erc721TokenId"] if is_erc721 else order["erc1155TokenId"],
                "nftTokenAmount": "1" if is_erc721 else order["erc1155TokenAmount"],
                "nftType": "ERC721" if is_erc721 else "ERC1155",
                "sellOrBuyNft": "sell" if order["direction"] == 0 else "buy",
                "chainId": body["chainId"],
                "order": order,
            },
        )

    return handler


class TestNormalizeOrder:
    def test_sell_order_reports_gross_amount(self):
        order = normalize_order(TraderOriginalOrder.model_validate(API_ORDER))
        assert order.id == SIGNED_ORDER["nonce"]
        assert order.maker == MAKER
        assert order.maker_assets == [Erc721Asset(contract_address=COLLECTION, token_id="42")]
        assert order.taker_assets == [Erc20Asset(contract_address=WETH, amount=1000000)]
        assert order.original_order.order.erc20_token_amount == "975000"

    def test_buy_order(self):
        order = normalize_order(TraderOriginalOrder.model_validate(ERC1155_API_ORDER))
        assert order.maker_assets == [Erc20Asset(contract_address=WETH, amount=975000)]
        assert order.taker_assets == [
            Erc1155Asset(contract_address=COLLECTION, token_id="5", amount=3)
        ]

    def test_unrecognized_nft_type_is_unknown(self):
        order = normalize_order(
            TraderOriginalOrder.model_validate({**API_ORDER, "nftType": "CRYPTOPUNK"})
        )
        assert order.maker_assets[0].type == AssetType.UNKNOWN
        assert order.maker_assets[0].token_id == "42"


class TestTrader:
    def test_supported_chains(self):
        assert Trader.supports_chain_id(1)
        assert Trader.supports_chain_id(137)
        assert not Trader.supports_chain_id(999)
        with pytest.raises(ValueError, match="unsupported chain id"):
            Trader(make_wallet(chain_id=999))

    @pytest.mark.asyncio
    async def test_make_order_embeds_amount_net_of_fees(self, wallet):
        posted = {}
        adapter = _adapter(wallet, _echo_handler(posted))
        nft = Erc721Asset(contract_address=COLLECTION, token_id="42")

        with patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()) as approve:
            order = await adapter.make_order(
                MakeOrderParams(
                    maker_assets=[nft],
                    taker_assets=[Erc20Asset(contract_address=WETH, amount=1000000)],
                    fees=[BasisPointsFee(recipient=RECIPIENT, basis_points=250)],
                )
            )

        approve.assert_awaited_once_with(
            wallet, nft, "0xDef1C0ded9bec7F1a1670819833240f027b25EfF"
        )
        signed = posted["order"]
        assert posted["chainId"] == "1"
        assert signed["direction"] == 0
        assert signed["maker"] == wallet.address
        assert signed["erc20TokenAmount"] == "975000"
        assert signed["fees"] == [
            {"recipient": "0x1111111111111111111111111111111111111111", "amount": "25000", "feeData": "0x"}
        ]
        assert signed["erc721TokenId"] == "42"
        assert signed["expiry"] == "2524604400"
        assert signed["signature"]["signatureType"] == 2
        assert signed["signature"]["v"] in (27, 28)

        assert order.taker_assets == [Erc20Asset(contract_address=WETH, amount=1000000)]
        assert order.original_order.order.erc20_token_amount == "975000"

    @pytest.mark.asyncio
    async def test_configured_fees_apply_by_default(self, wallet):
        posted = {}
        adapter = _adapter(
            wallet, _echo_handler(posted), fees=[AmountFee(recipient=RECIPIENT, amount=100)]
        )
        with patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()):
            await adapter.make_order(
                MakeOrderParams(
                    maker_assets=[Erc20Asset(contract_address=WETH, amount=1000)],
                    taker_assets=[Erc1155Asset(contract_address=COLLECTION, token_id="5", amount=3)],
                )
            )

        signed = posted["order"]
        assert signed["direction"] == 1
        assert signed["erc20TokenAmount"] == "900"
        assert signed["erc1155TokenAmount"] == "3"
        assert signed["fees"][0]["amount"] == "100"

    @pytest.mark.asyncio
    async def test_request_fees_override_configured(self, wallet):
        posted = {}
        adapter = _adapter(
            wallet, _echo_handler(posted), fees=[AmountFee(recipient=RECIPIENT, amount=100)]
        )
        with patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()):
            await adapter.make_order(
                MakeOrderParams(
                    maker_assets=[Erc721Asset(contract_address=COLLECTION, token_id="1")],
                    taker_assets=[Erc20Asset(contract_address=WETH, amount=1000)],
                    fees=[],
                )
            )
        assert posted["order"]["fees"] == []
        assert posted["order"]["erc20TokenAmount"] == "1000"

    @pytest.mark.asyncio
    async def test_invalid_fees_fail_before_approval(self, wallet):
        adapter = _adapter(wallet, lambda request: httpx.Response(500))
        with patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()) as approve:
            with pytest.raises(ValidationError):
                await adapter.make_order(
                    MakeOrderParams(
                        maker_assets=[Erc721Asset(contract_address=COLLECTION, token_id="1")],
                        taker_assets=[Erc20Asset(contract_address=WETH, amount=1000)],
                        fees=[AmountFee(recipient=RECIPIENT, amount=1000)],
                    )
                )
        approve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_native_token_bids_rejected(self, wallet):
        adapter = _adapter(wallet, lambda request: httpx.Response(500))
        with pytest.raises(UnsupportedOperationError, match="native token"):
            await adapter.make_order(
                MakeOrderParams(
                    maker_assets=[Erc20Asset(contract_address=NATIVE_TOKEN_ADDRESS, amount=1)],
                    taker_assets=[Erc721Asset(contract_address=COLLECTION, token_id="1")],
                )
            )

    @pytest.mark.asyncio
    async def test_post_failure(self, wallet):
        adapter = _adapter(wallet, lambda request: httpx.Response(429, text="rate limited"))
        with patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()):
            with pytest.raises(MarketplaceCallError, match="429: rate limited"):
                await adapter.make_order(
                    MakeOrderParams(
                        maker_assets=[Erc721Asset(contract_address=COLLECTION, token_id="1")],
                        taker_assets=[Erc20Asset(contract_address=WETH, amount=1000)],
                        taker=OTHER_RECIPIENT,
                    )
                )

    @pytest.mark.asyncio
    async def test_get_orders_filters(self, wallet):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            return httpx.Response(200, json={"orders": [API_ORDER, ERC1155_API_ORDER]})

        adapter = _adapter(wallet, handler)
        orders = await adapter.get_orders(
            GetOrdersParams(
                maker=MAKER,
                maker_asset=Erc721Asset(contract_address=COLLECTION, token_id="42"),
                taker_asset=Erc20Asset(contract_address=WETH, amount=1),
            )
        )

        assert seen["url"].path == "/orderbook/orders"
        assert dict(seen["url"].params) == {
            "chainId": "1",
            "nftType": "ERC721",
            "nftToken": COLLECTION,
            "nftTokenId": "42",
            "erc20Token": WETH,
            "maker": MAKER,
        }
        assert len(orders) == 2

    @pytest.mark.asyncio
    async def test_take_sell_order(self, wallet):
        adapter = _adapter(wallet, lambda request: httpx.Response(500))
        order = normalize_order(TraderOriginalOrder.model_validate(API_ORDER))
        exchange = wallet.w3.eth.contract.return_value

        with (
            patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()) as approve,
            patch("gomu.marketplace.trader.send_transaction", new=AsyncMock()) as send,
        ):
            await adapter.take_order(order)

        assert approve.await_args.args[1] == Erc20Asset(contract_address=WETH, amount=1000000)
        order_arg, signature_arg, callback = exchange.functions.buyERC721.call_args.args
        assert order_arg[0] == 0
        assert order_arg[6] == 975000
        assert order_arg[7] == [("0x1111111111111111111111111111111111111111", 25000, b"")]
        assert order_arg[9] == 42
        assert signature_arg[:2] == (2, 28)
        assert callback == b""
        assert send.await_args.kwargs == {"value": 0, "gas": 2_000_000}

    @pytest.mark.asyncio
    async def test_take_native_sell_order_sends_value(self, wallet):
        adapter = _adapter(wallet, lambda request: httpx.Response(500), gas_limit=500_000)
        native_order = {
            **API_ORDER,
            "erc20Token": NATIVE_TOKEN_ADDRESS,
            "order": {**SIGNED_ORDER, "erc20Token": NATIVE_TOKEN_ADDRESS},
        }
        order = normalize_order(TraderOriginalOrder.model_validate(native_order))

        with (
            patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()),
            patch("gomu.marketplace.trader.send_transaction", new=AsyncMock()) as send,
        ):
            await adapter.take_order(order)

        assert send.await_args.kwargs == {"value": 1000000, "gas": 500_000}

    @pytest.mark.asyncio
    async def test_take_erc1155_bid(self, wallet):
        adapter = _adapter(wallet, lambda request: httpx.Response(500))
        order = normalize_order(TraderOriginalOrder.model_validate(ERC1155_API_ORDER))
        exchange = wallet.w3.eth.contract.return_value

        with (
            patch("gomu.marketplace.trader.ensure_approval", new=AsyncMock()) as approve,
            patch("gomu.marketplace.trader.send_transaction", new=AsyncMock()),
        ):
            await adapter.take_order(order)

        assert approve.await_args.args[1] == Erc1155Asset(
            contract_address=COLLECTION, token_id="5", amount=3
        )
        args = exchange.functions.sellERC1155.call_args.args
        assert args[2:] == (5, 3, False, b"")

    @pytest.mark.asyncio
    async def test_cancel(self, wallet):
        adapter = _adapter(wallet, lambda request: httpx.Response(500))
        exchange = wallet.w3.eth.contract.return_value

        with patch("gomu.marketplace.trader.send_transaction", new=AsyncMock()):
            await adapter.cancel_order(normalize_order(TraderOriginalOrder.model_validate(API_ORDER)))
            await adapter.cancel_order(
                normalize_order(TraderOriginalOrder.model_validate(ERC1155_API_ORDER))
            )

        exchange.functions.cancelERC721Order.assert_called_once_with(int(SIGNED_ORDER["nonce"]))
        exchange.functions.cancelERC1155Order.assert_called_once_with(int(SIGNED_ORDER["nonce"]))
