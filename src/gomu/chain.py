"""Wallet bundle and on-chain helpers: typed-data signing, approvals, transactions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from eth_account import Account
from eth_account.datastructures import SignedMessage
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from gomu.errors import TransactionRevertedError, UnsupportedOperationError
from gomu.models import Asset, AssetType, Erc20Asset, asset_amount

log = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
# Placeholder token address for the chain's native currency.
NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

ERC721_INTERFACE_ID = bytes.fromhex("80ac58cd")
ERC1155_INTERFACE_ID = bytes.fromhex("d9b67a26")


# ── ABI helpers ──────────────────────────────────────────────────


def abi_param(name: str, type_: str, components: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    param: dict[str, Any] = {"name": name, "type": type_}
    if components is not None:
        param["components"] = components
    return param


def abi_function(
    name: str,
    inputs: list[dict[str, Any]],
    outputs: list[dict[str, Any]] | None = None,
    *,
    mutability: str = "nonpayable",
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs or [],
        "stateMutability": mutability,
    }


def abi_value(value: Any, param: dict[str, Any]) -> Any:
    """Convert dict-shaped struct values into the positional tuples web3 encodes."""
    type_ = param["type"]
    if type_.endswith("[]"):
        item = {**param, "type": type_[:-2]}
        return [abi_value(v, item) for v in value]
    if type_ == "tuple":
        return tuple(abi_value(value[c["name"]], c) for c in param["components"])
    return value


ERC20_ABI = [
    abi_function(
        "allowance",
        [abi_param("owner", "address"), abi_param("spender", "address")],
        [abi_param("", "uint256")],
        mutability="view",
    ),
    abi_function(
        "approve",
        [abi_param("spender", "address"), abi_param("amount", "uint256")],
        [abi_param("", "bool")],
    ),
]

NFT_ABI = [
    abi_function(
        "isApprovedForAll",
        [abi_param("owner", "address"), abi_param("operator", "address")],
        [abi_param("", "bool")],
        mutability="view",
    ),
    abi_function(
        "setApprovalForAll",
        [abi_param("operator", "address"), abi_param("approved", "bool")],
    ),
    abi_function(
        "supportsInterface",
        [abi_param("interfaceId", "bytes4")],
        [abi_param("", "bool")],
        mutability="view",
    ),
]


# ── Wallet ───────────────────────────────────────────────────────


@dataclass
class Wallet:
    """Provider, signing account and chain id used by every adapter."""

    w3: AsyncWeb3
    account: LocalAccount
    chain_id: int
    _nonce_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def address(self) -> str:
        return self.account.address

    @classmethod
    async def connect(
        cls,
        rpc_url: str,
        private_key: str | None = None,
        *,
        chain_id: int | None = None,
    ) -> Wallet:
        """Build a wallet from an RPC URL. Without a key, an ephemeral read-only account is used."""
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        if private_key:
            account = Account.from_key(private_key)
        else:
            account = Account.create()
            log.info("No private key configured, using ephemeral account %s", account.address)
        if chain_id is None:
            chain_id = await w3.eth.chain_id
        return cls(w3=w3, account=account, chain_id=chain_id)

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def hex_to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    return Web3.to_bytes(hexstr=value)


# ── Signing & transactions ───────────────────────────────────────


def sign_typed_data(wallet: Wallet, typed_data: dict[str, Any]) -> SignedMessage:
    """EIP-712 signature over a full typed-data message."""
    return wallet.account.sign_message(encode_typed_data(full_message=typed_data))


def signature_parts(signed: SignedMessage) -> tuple[int, str, str]:
    """Split a signature into ``(v, r, s)`` with r and s as 0x-prefixed hex."""
    return (
        signed.v,
        "0x" + signed.r.to_bytes(32, "big").hex(),
        "0x" + signed.s.to_bytes(32, "big").hex(),
    )


async def send_transaction(
    wallet: Wallet,
    call: Any,
    *,
    value: int = 0,
    gas: int | None = None,
    gas_price: int | None = None,
) -> Any:
    """Sign and submit a contract call, then wait for it to be mined."""
    tx_params: dict[str, Any] = {"from": wallet.address, "value": value}
    if gas is not None:
        tx_params["gas"] = gas
    if gas_price is not None:
        tx_params["gasPrice"] = gas_price

    # Concurrent adapters share the account, so nonces are handed out one at a time.
    async with wallet._nonce_lock:
        tx_params["nonce"] = await wallet.w3.eth.get_transaction_count(wallet.address, "pending")
        tx = await call.build_transaction(tx_params)
        signed = wallet.account.sign_transaction(tx)
        tx_hash = await wallet.w3.eth.send_raw_transaction(signed.raw_transaction)

    log.info("Sent transaction %s", Web3.to_hex(tx_hash))
    receipt = await wallet.w3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] != 1:
        raise TransactionRevertedError(Web3.to_hex(tx_hash))
    return receipt


# ── Approvals ────────────────────────────────────────────────────


async def ensure_approval(
    wallet: Wallet,
    asset: Asset,
    operator: str,
    *,
    amount: int | None = None,
) -> Any:
    """Approve ``operator`` to move ``asset`` unless it already may.

    Returns the approval receipt, or None when nothing had to be sent.
    """
    owner = wallet.address
    spender = to_checksum(operator)

    if isinstance(asset, Erc20Asset):
        if asset.contract_address.lower() == NATIVE_TOKEN_ADDRESS.lower():
            return None
        token = wallet.contract(asset.contract_address, ERC20_ABI)
        needed = asset_amount(asset) if amount is None else amount
        allowance = await token.functions.allowance(owner, spender).call()
        if allowance >= needed:
            return None
        log.info("Approving %s for %s", asset.contract_address, spender)
        return await send_transaction(wallet, token.functions.approve(spender, MAX_UINT256))

    nft = wallet.contract(asset.contract_address, NFT_ABI)
    if await nft.functions.isApprovedForAll(owner, spender).call():
        return None
    log.info("Approving collection %s for %s", asset.contract_address, spender)
    return await send_transaction(wallet, nft.functions.setApprovalForAll(spender, True))


async def detect_nft_type(wallet: Wallet, contract_address: str) -> AssetType:
    """Ask the collection (ERC-165) which token standard it implements."""
    nft = wallet.contract(contract_address, NFT_ABI)
    if await nft.functions.supportsInterface(ERC721_INTERFACE_ID).call():
        return AssetType.ERC721
    if await nft.functions.supportsInterface(ERC1155_INTERFACE_ID).call():
        return AssetType.ERC1155
    raise UnsupportedOperationError(f"{contract_address} is neither ERC721 nor ERC1155")
