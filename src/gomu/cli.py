"""CLI for inspecting marketplaces and orders."""

from __future__ import annotations

import asyncio
import logging
import sys

import httpx
from rich.console import Console
from rich.table import Table

from gomu.aggregator import Aggregator
from gomu.config import settings
from gomu.errors import GomuError
from gomu.fees import compute_fees
from gomu.models import (
    AmountFee,
    Asset,
    BasisPointsFee,
    Erc20Asset,
    Fee,
    GetOrdersParams,
    UnknownAsset,
    asset_amount,
)

console = Console()


def _describe_asset(asset: Asset) -> str:
    if isinstance(asset, Erc20Asset):
        return f"{asset.amount} {asset.contract_address}"
    token = f" #{asset.token_id}" if asset.token_id is not None else ""
    return f"{asset_amount(asset)}x {asset.type} {asset.contract_address}{token}"


async def _marketplaces_cmd() -> None:
    """List registered and disabled marketplaces."""
    agg = await Aggregator.from_settings(settings)
    try:
        table = Table(title=f"Marketplaces (chain {agg.wallet.chain_id})")
        table.add_column("Marketplace", style="cyan", no_wrap=True)
        table.add_column("Status")

        for name in agg.marketplaces:
            table.add_row(name, "[green]enabled[/green]")
        for name, error in agg.construction_errors.items():
            table.add_row(name, f"[red]{error}[/red]")
        console.print(table)
        console.print(f"\n[dim]Wallet {agg.wallet.address}[/dim]")
    finally:
        await agg.close()


async def _orders_cmd(collection: str | None = None, token_id: str | None = None) -> None:
    """Show orders across marketplaces, optionally for one collection or token."""
    params = GetOrdersParams()
    if collection:
        nft = UnknownAsset(contract_address=collection, token_id=token_id)
        params = GetOrdersParams(maker_asset=nft)

    agg = await Aggregator.from_settings(settings)
    try:
        responses = await agg.get_orders(params)
        table = Table(title="Orders", expand=True)
        table.add_column("Marketplace", style="cyan", no_wrap=True)
        table.add_column("Id", no_wrap=True, ratio=1)
        table.add_column("Maker", no_wrap=True, ratio=1)
        table.add_column("Gives", ratio=2)
        table.add_column("Wants", ratio=2)

        errors = []
        for resp in responses:
            if not resp.ok:
                errors.append(resp)
                continue
            order = resp.data
            table.add_row(
                resp.marketplace_name,
                order.id,
                order.maker,
                ", ".join(_describe_asset(a) for a in order.maker_assets),
                ", ".join(_describe_asset(a) for a in order.taker_assets),
            )
        console.print(table)
        for resp in errors:
            console.print(f"[red]{resp.marketplace_name}: {resp.error.message}[/red]")
        console.print(f"\n[dim]{len(responses) - len(errors)} orders shown[/dim]")
    finally:
        await agg.close()


def parse_fee(arg: str) -> Fee:
    """``recipient:bps`` is a basis-point fee; ``recipient=amount`` is a flat fee."""
    if "=" in arg:
        recipient, amount = arg.split("=", 1)
        return AmountFee(recipient=recipient, amount=int(amount))
    if ":" in arg:
        recipient, bps = arg.split(":", 1)
        return BasisPointsFee(recipient=recipient, basis_points=int(bps))
    raise ValueError(f"bad fee {arg!r}, expected recipient:bps or recipient=amount")


def _fees_cmd(amount: str, fee_args: list[str]) -> None:
    """Preview the fee schedule for a trade amount."""
    schedule = compute_fees([parse_fee(a) for a in fee_args], amount)

    table = Table(title=f"Fees on {amount}")
    table.add_column("Recipient", style="cyan", no_wrap=True)
    table.add_column("Amount", justify="right")
    for fee in schedule.fees:
        table.add_row(fee.recipient, str(fee.amount))
    console.print(table)

    console.print(f"\n  Total fees:     [bold]{schedule.total}[/bold]")
    console.print(f"  Embedded price: [bold]{schedule.net_amount(amount)}[/bold]")


def _usage() -> None:
    console.print("\n[bold]gomu[/bold]: one NFT order, every marketplace\n")
    console.print("Usage: gomu <command> [args]\n")
    console.print("Commands:")
    console.print("  [cyan]marketplaces[/cyan]                     Show marketplaces for the chain")
    console.print("  [cyan]orders[/cyan] [collection] [token_id]   List orders")
    console.print("  [cyan]fees[/cyan] <amount> <fee>...           Preview a fee schedule")
    console.print("                                   fee: recipient:bps or recipient=amount")


def app() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    args = sys.argv[1:]
    if not args:
        _usage()
        return

    cmd, *rest = args

    try:
        match cmd:
            case "marketplaces":
                asyncio.run(_marketplaces_cmd())
            case "orders":
                collection = rest[0] if rest else None
                token_id = rest[1] if len(rest) > 1 else None
                asyncio.run(_orders_cmd(collection, token_id))
            case "fees":
                if not rest:
                    console.print("[red]Usage: gomu fees <amount> <fee>...[/red]")
                    sys.exit(1)
                _fees_cmd(rest[0], rest[1:])
            case _:
                console.print(f"[red]Unknown command: {cmd}[/red]")
                _usage()
                sys.exit(1)
    except (GomuError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]HTTP error: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    app()
