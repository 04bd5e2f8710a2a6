"""Shared test data: an offline wallet signing with a fixed key, and canned orders."""

from unittest.mock import MagicMock

from eth_account import Account

from gomu.chain import Wallet
from gomu.models import Erc20Asset, Erc721Asset, NormalizedOrder

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

COLLECTION = "0x" + "ab" * 20
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
RECIPIENT = "0x" + "11" * 20
OTHER_RECIPIENT = "0x" + "22" * 20

NFT = Erc721Asset(contract_address=COLLECTION, token_id="1")
PRICE = Erc20Asset(contract_address=WETH, amount=1000)


def make_wallet(chain_id: int = 1) -> Wallet:
    return Wallet(w3=MagicMock(), account=Account.from_key(PRIVATE_KEY), chain_id=chain_id)


def make_order(order_id: str, maker: str = "0xmaker") -> NormalizedOrder[dict]:
    return NormalizedOrder[dict](
        id=order_id,
        maker_assets=[NFT],
        taker_assets=[PRICE],
        maker=maker,
        original_order={"id": order_id},
    )
