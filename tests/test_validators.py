"""Tests for asset-pair validation and side resolution."""

import pytest

from gomu.errors import UnsupportedOperationError, ValidationError
from gomu.models import Erc20Asset, Erc721Asset, Erc1155Asset, OrderSide, UnknownAsset
from gomu.validators import resolve_filter_sides, resolve_order_sides, validate_make_order

ERC20 = Erc20Asset(contract_address="0xweth", amount=1000)
ERC721 = Erc721Asset(contract_address="0xnft", token_id="1")
ERC1155 = Erc1155Asset(contract_address="0xsft", token_id="2", amount=3)
UNKNOWN = UnknownAsset(contract_address="0xodd", token_id="4")


class TestValidateMakeOrder:
    def test_empty_maker(self):
        with pytest.raises(ValidationError, match="maker assets cannot be empty"):
            validate_make_order([], [ERC20])

    def test_empty_taker(self):
        with pytest.raises(ValidationError, match="taker assets cannot be empty"):
            validate_make_order([ERC721], [])

    def test_empty_checked_before_bundles(self):
        with pytest.raises(ValidationError, match="taker assets cannot be empty"):
            validate_make_order([ERC721, ERC721], [])

    @pytest.mark.parametrize(
        "maker, taker",
        [
            ([ERC721, ERC721], [ERC20]),
            ([ERC20], [ERC721, ERC1155]),
            ([ERC20, ERC20], [ERC20, ERC20]),
            ([UNKNOWN, UNKNOWN], [ERC20]),
        ],
    )
    def test_bundles_rejected(self, maker, taker):
        with pytest.raises(ValidationError, match="bundled assets are not supported"):
            validate_make_order(maker, taker)

    def test_fungible_for_fungible(self):
        with pytest.raises(ValidationError, match=r"ERC20 <-> ERC20"):
            validate_make_order([ERC20], [ERC20])

    @pytest.mark.parametrize(
        "maker, taker",
        [(ERC721, ERC721), (ERC721, ERC1155), (ERC1155, ERC721), (ERC1155, ERC1155)],
    )
    def test_non_fungible_for_non_fungible(self, maker, taker):
        with pytest.raises(ValidationError, match=r"ERC721/ERC1155 <-> ERC721/ERC1155"):
            validate_make_order([maker], [taker])

    def test_valid_pairs(self):
        validate_make_order([ERC721], [ERC20])
        validate_make_order([ERC20], [ERC1155])


class TestResolveOrderSides:
    def test_sell(self):
        sides = resolve_order_sides([ERC721], [ERC20])
        assert sides.side == OrderSide.SELL
        assert sides.is_sell
        assert sides.nft_asset is ERC721
        assert sides.fungible_asset is ERC20

    def test_buy(self):
        sides = resolve_order_sides([ERC20], [ERC1155])
        assert sides.side == OrderSide.BUY
        assert not sides.is_sell
        assert sides.nft_asset is ERC1155

    def test_unknown_items_cannot_be_priced(self):
        with pytest.raises(UnsupportedOperationError, match="unsupported operation"):
            resolve_order_sides([UNKNOWN], [ERC20])

    def test_validation_runs_first(self):
        with pytest.raises(ValidationError):
            resolve_order_sides([ERC20], [ERC20])


class TestResolveFilterSides:
    def test_nft_maker_reads_sell_orders(self):
        assert resolve_filter_sides(ERC721, ERC20) == (OrderSide.SELL, ERC721, ERC20)
        assert resolve_filter_sides(UNKNOWN, None) == (OrderSide.SELL, UNKNOWN, None)

    def test_nft_taker_reads_buy_orders(self):
        assert resolve_filter_sides(ERC20, ERC1155) == (OrderSide.BUY, ERC1155, ERC20)
        assert resolve_filter_sides(None, ERC721) == (OrderSide.BUY, ERC721, None)

    @pytest.mark.parametrize("maker,taker", [(ERC20, ERC20), (ERC721, ERC1155), (ERC20, None)])
    def test_ambiguous_filters(self, maker, taker):
        with pytest.raises(UnsupportedOperationError):
            resolve_filter_sides(maker, taker)
