"""Structural checks on an asset pair, run before any marketplace is contacted."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from gomu.errors import UnsupportedOperationError, ValidationError
from gomu.models import Asset, Erc20Asset, NonFungibleAsset, OrderSide, is_fungible, is_non_fungible


def assert_not_empty(side: str, assets: Sequence[Asset]) -> None:
    if not assets:
        raise ValidationError(f"{side} assets cannot be empty")


def assert_not_bundled(assets: Sequence[Asset]) -> None:
    if len(assets) > 1:
        raise ValidationError("bundled assets are not supported")


def assert_not_fungible_vs_fungible(maker_asset: Asset, taker_asset: Asset) -> None:
    if is_fungible(maker_asset) and is_fungible(taker_asset):
        raise ValidationError("ERC20 <-> ERC20 is not supported")


def assert_not_non_fungible_vs_non_fungible(maker_asset: Asset, taker_asset: Asset) -> None:
    if is_non_fungible(maker_asset) and is_non_fungible(taker_asset):
        raise ValidationError("ERC721/ERC1155 <-> ERC721/ERC1155 is not supported")


def validate_make_order(maker_assets: Sequence[Asset], taker_assets: Sequence[Asset]) -> None:
    """Run every check in order. The first failure wins."""
    assert_not_empty("maker", maker_assets)
    assert_not_empty("taker", taker_assets)
    assert_not_bundled(maker_assets)
    assert_not_bundled(taker_assets)
    assert_not_fungible_vs_fungible(maker_assets[0], taker_assets[0])
    assert_not_non_fungible_vs_non_fungible(maker_assets[0], taker_assets[0])


@dataclass(frozen=True)
class OrderSides:
    """The two legs of a validated order.

    SELL means the maker gives the NFT; BUY means the maker gives the token.
    """

    nft_asset: NonFungibleAsset
    fungible_asset: Erc20Asset
    side: OrderSide

    @property
    def is_sell(self) -> bool:
        return self.side == OrderSide.SELL


def resolve_order_sides(
    maker_assets: Sequence[Asset], taker_assets: Sequence[Asset]
) -> OrderSides:
    """Validate the pair and split it into NFT leg, token leg and side."""
    validate_make_order(maker_assets, taker_assets)
    maker_asset, taker_asset = maker_assets[0], taker_assets[0]

    if is_non_fungible(maker_asset) and isinstance(taker_asset, Erc20Asset):
        return OrderSides(nft_asset=maker_asset, fungible_asset=taker_asset, side=OrderSide.SELL)
    if isinstance(maker_asset, Erc20Asset) and is_non_fungible(taker_asset):
        return OrderSides(nft_asset=taker_asset, fungible_asset=maker_asset, side=OrderSide.BUY)
    raise UnsupportedOperationError("unsupported operation")


def resolve_filter_sides(
    maker_asset: Asset | None, taker_asset: Asset | None
) -> tuple[OrderSide, Asset | None, Asset | None]:
    """Work out which side of a book an order filter reads.

    An NFT on the maker side selects sell orders, an NFT on the taker side
    selects buy orders. Returns ``(side, nft, currency)``.
    """
    if (
        maker_asset is not None
        and not is_fungible(maker_asset)
        and (taker_asset is None or is_fungible(taker_asset))
    ):
        return OrderSide.SELL, maker_asset, taker_asset
    if (
        (maker_asset is None or is_fungible(maker_asset))
        and taker_asset is not None
        and not is_fungible(taker_asset)
    ):
        return OrderSide.BUY, taker_asset, maker_asset
    raise UnsupportedOperationError("unsupported operation")
