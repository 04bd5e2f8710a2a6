"""Shared domain models for cross-marketplace NFT trading."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel


def _to_decimal_string(value: int) -> str:
    return str(value)


# Amounts can exceed 2**53, so they travel as decimal strings on the wire.
Uint = Annotated[
    int,
    Field(ge=0),
    PlainSerializer(_to_decimal_string, return_type=str, when_used="json"),
]


class WireModel(BaseModel):
    """Model whose JSON form uses camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class MarketplaceName(StrEnum):
    OPENSEA = "opensea"
    LOOKSRARE = "looksrare"
    TRADER = "trader"
    TRADER_V3 = "traderV3"


class AssetType(StrEnum):
    ERC20 = "ERC20"
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"
    UNKNOWN = "Unknown"


class OrderSide(StrEnum):
    BUY = "buy"
    SELL = "sell"


# ── Assets ──────────────────────────────────────────────────────


class _AssetBase(WireModel):
    model_config = ConfigDict(extra="forbid")

    contract_address: str


class Erc20Asset(_AssetBase):
    """Fungible token amount, in the token's base units."""

    type: Literal["ERC20"] = "ERC20"
    amount: Uint


class Erc721Asset(_AssetBase):
    """A single non-fungible token."""

    type: Literal["ERC721"] = "ERC721"
    token_id: str

    @model_validator(mode="before")
    @classmethod
    def _drop_unit_amount(cls, data: Any) -> Any:
        # Some order books send ERC721 legs with an explicit amount of 1.
        if isinstance(data, dict) and "amount" in data:
            if str(data["amount"]) != "1":
                raise ValueError("ERC721 amount is always 1")
            data = {k: v for k, v in data.items() if k != "amount"}
        return data


class Erc1155Asset(_AssetBase):
    """A quantity of one semi-fungible token id."""

    type: Literal["ERC1155"] = "ERC1155"
    token_id: str
    amount: Uint


class UnknownAsset(_AssetBase):
    """An item whose token standard a marketplace does not report.

    Fields that only some standards carry are optional here.
    """

    type: Literal["Unknown"] = "Unknown"
    token_id: str | None = None
    amount: Uint | None = None


Asset = Annotated[
    Erc20Asset | Erc721Asset | Erc1155Asset | UnknownAsset,
    Field(discriminator="type"),
]

NonFungibleAsset = Erc721Asset | Erc1155Asset


def is_fungible(asset: Asset) -> bool:
    return isinstance(asset, Erc20Asset)


def is_non_fungible(asset: Asset) -> bool:
    return isinstance(asset, (Erc721Asset, Erc1155Asset))


def asset_amount(asset: Asset) -> int:
    """Quantity moved when the asset is transferred. ERC721 is always 1."""
    if isinstance(asset, Erc721Asset):
        return 1
    if asset.amount is None:
        return 1
    return asset.amount


# ── Fees ────────────────────────────────────────────────────────


class AmountFee(WireModel):
    """Flat fee in the fungible asset's base units."""

    model_config = ConfigDict(extra="forbid")

    recipient: str
    amount: Uint


class BasisPointsFee(WireModel):
    """Proportional fee, in 1/10000 of the trade amount."""

    model_config = ConfigDict(extra="forbid")

    recipient: str
    basis_points: int


Fee = AmountFee | BasisPointsFee


# ── Requests ────────────────────────────────────────────────────


class MakeOrderParams(BaseModel):
    """Request to create an order on one or more marketplaces."""

    maker_assets: list[Asset]
    taker_assets: list[Asset]
    taker: str | None = None
    expiration_time: datetime | None = None
    marketplaces: list[MarketplaceName] | None = None
    fees: list[Fee] | None = None


class FungibleAssetSpec(BaseModel):
    """Price leg of a sell or buy order.

    Without a contract address the chain's wrapped native token is used.
    """

    amount: Uint
    contract_address: str | None = None


class MakeSellOrderParams(BaseModel):
    assets: list[Asset]
    fungible_asset: FungibleAssetSpec
    taker: str | None = None
    expiration_time: datetime | None = None
    marketplaces: list[MarketplaceName] | None = None
    fees: list[Fee] | None = None


MakeBuyOrderParams = MakeSellOrderParams


class GetOrdersParams(BaseModel):
    """Order filter. Asset filters also decide which side of the book is read."""

    maker: str | None = None
    maker_asset: Asset | None = None
    taker: str | None = None
    taker_asset: Asset | None = None
    marketplaces: list[MarketplaceName] | None = None


# ── Responses ───────────────────────────────────────────────────

OriginalT = TypeVar("OriginalT")
DataT = TypeVar("DataT")


class NormalizedOrder(WireModel, Generic[OriginalT]):
    """Marketplace-agnostic order.

    ``original_order`` is the marketplace's own payload, kept verbatim so the
    adapter that produced it can take or cancel the order later.
    """

    id: str
    maker_assets: list[Asset]
    taker_assets: list[Asset]
    maker: str
    original_order: OriginalT


class ErrorInfo(BaseModel):
    message: str
    cause: Any = Field(default=None, exclude=True, repr=False)


class OrderResponse(BaseModel, Generic[DataT]):
    """Outcome of one operation on one marketplace: data or error, never both."""

    marketplace_name: MarketplaceName
    data: DataT | None = None
    error: ErrorInfo | None = None

    @model_validator(mode="after")
    def _data_xor_error(self) -> OrderResponse[DataT]:
        if (self.data is None) == (self.error is None):
            raise ValueError("exactly one of data or error must be set")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None
