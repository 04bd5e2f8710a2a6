"""Configuration via environment variables and per-marketplace config objects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

from gomu.models import Fee, MarketplaceName
from gomu.orderbook.base import OrderBook

# Wrapped native currency per chain, used when a price leg omits its token.
DEFAULT_WRAPPED_NATIVE_TOKENS: dict[int, str] = {
    1: "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",  # WETH
    5: "0xB4FBF271143F4FBf7B91A5ded31805e42b2208d6",  # WETH (goerli)
    137: "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",  # WMATIC
    8453: "0x4200000000000000000000000000000000000006",  # WETH (base)
    11155111: "0x7b79995e5f793A07Bc00c21412e50Ecae098E7f9",  # WETH (sepolia)
}


class OpenSeaConfig(BaseModel):
    api_key: str | None = None
    api_base_url: str | None = None  # defaults to the chain's public API
    fees: list[Fee] = Field(default_factory=list)
    timeout: float = 15.0


class LooksRareConfig(BaseModel):
    api_key: str | None = None
    api_base_url: str | None = None  # defaults to the chain's public API
    timeout: float = 15.0


class TraderConfig(BaseModel):
    api_base_url: str = "https://api.trader.xyz/orderbook"
    gas_limit: int = 2_000_000
    fees: list[Fee] = Field(default_factory=list)
    timeout: float = 15.0


class TraderV3Config(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # A custom order book replaces the hosted one entirely.
    order_book: OrderBook | None = None
    api_key: str | None = None
    api_base_url: str = "https://commerce-api.gomu.co"
    gas_limit: int | None = None
    fees: list[Fee] = Field(default_factory=list)
    timeout: float = 15.0


class MarketplaceConfigs(BaseModel):
    opensea: OpenSeaConfig = Field(default_factory=OpenSeaConfig)
    looksrare: LooksRareConfig = Field(default_factory=LooksRareConfig)
    trader: TraderConfig = Field(default_factory=TraderConfig)
    trader_v3: TraderV3Config = Field(default_factory=TraderV3Config)


class Settings(BaseSettings):
    model_config = {"env_prefix": "GOMU_", "env_file": ".env"}

    # Wallet
    rpc_url: str = "http://127.0.0.1:8545"
    private_key: str = ""
    chain_id: int | None = None  # read from the provider when unset

    # Marketplace selection; None means every marketplace the chain supports
    marketplaces: list[MarketplaceName] | None = None

    # OpenSea
    opensea_api_key: str = ""
    opensea_api_base: str = ""
    opensea_fees: list[Fee] = Field(default_factory=list)

    # LooksRare
    looksrare_api_key: str = ""
    looksrare_api_base: str = ""

    # Trader (0x v4)
    trader_api_base: str = "https://api.trader.xyz/orderbook"
    trader_gas_limit: int = 2_000_000
    trader_fees: list[Fee] = Field(default_factory=list)

    # Trader V3 (0x v3) order book
    orderbook_api_base: str = "https://commerce-api.gomu.co"
    orderbook_api_key: str = ""
    trader_v3_gas_limit: int | None = None

    wrapped_native_tokens: dict[int, str] = Field(
        default_factory=lambda: dict(DEFAULT_WRAPPED_NATIVE_TOKENS)
    )
    http_timeout: float = 15.0

    def marketplace_configs(self) -> MarketplaceConfigs:
        return MarketplaceConfigs(
            opensea=OpenSeaConfig(
                api_key=self.opensea_api_key or None,
                api_base_url=self.opensea_api_base or None,
                fees=self.opensea_fees,
                timeout=self.http_timeout,
            ),
            looksrare=LooksRareConfig(
                api_key=self.looksrare_api_key or None,
                api_base_url=self.looksrare_api_base or None,
                timeout=self.http_timeout,
            ),
            trader=TraderConfig(
                api_base_url=self.trader_api_base,
                gas_limit=self.trader_gas_limit,
                fees=self.trader_fees,
                timeout=self.http_timeout,
            ),
            trader_v3=TraderV3Config(
                api_key=self.orderbook_api_key or None,
                api_base_url=self.orderbook_api_base,
                gas_limit=self.trader_v3_gas_limit,
                timeout=self.http_timeout,
            ),
        )


settings = Settings()
