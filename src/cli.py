"""Operator command-line interface.

Examples:
  # Run the relay node (reconciliation loops until SIGINT/SIGTERM)
  python -m src.cli run

  # Refresh from chain and show registration and deals
  python -m src.cli status --refresh

  # Price a deal
  python -m src.cli quote standard 500 30

  # Unblock staking after checking a transaction of unknown outcome
  python -m src.cli acknowledge --chain-id 84532

  # Register with 100 tokens of stake on Base Sepolia
  python -m src.cli register --chain-id 84532 --endpoint https://relay.example.org \\
      --peer-public-key <pubkey> --stake 100
"""

import argparse
import sys

from decimal import Decimal

from collections.abc import Awaitable, Callable

import asyncio

from rich import box
from rich.console import Console
from rich.table import Table

from src.helpers.config import RelaySettings, load_settings
from src.helpers.errors import PricingError
from src.helpers.logging import configure_logging
from src.helpers.parsers import from_base_units, to_base_units
from src.live import LiveRelay
from src.relay.reconciliation import PassKind
from src.relay.service import CommandResult, RelayService


console = Console()

DEAL_ROWS_LIMIT = 20


def _format_amount(amount: int) -> str:
    return f"{from_base_units(amount):f}"


def _resolve_chain_id(settings: RelaySettings, chain_id: int | None) -> int:
    if chain_id is not None:
        settings.chain(chain_id)
        return chain_id
    if not settings.chains:
        msg = "No registry networks configured (REGISTRY_NETWORKS)"
        raise ValueError(msg)
    return settings.chains[0].chain_id


def print_command_result(result: CommandResult) -> None:
    """Render a command outcome."""
    if result.success:
        console.print(
            f"[bold green]✓[/] {result.action} confirmed on chain {result.chain_id} "
            f"in block {result.block_number}: [cyan]{result.tx_hash}[/]"
        )
        return
    console.print(f"[bold red]✗[/] {result.action} failed ({result.error_kind}): {result.error}")
    if result.error_kind == "transaction_unknown":
        console.print(
            f"[yellow]Transaction {result.tx_hash} has an unknown outcome. "
            "Check it on a block explorer, then run `acknowledge` to unblock.[/]"
        )


def print_status(service: RelayService, chain_id: int) -> None:
    """Render registration, health and deals for one chain."""
    registration = service.get_registration(chain_id)
    health = service.health(chain_id)
    params = service.get_params(chain_id)
    reputation = service.get_reputation(chain_id)

    table = Table(show_header=False, box=box.ROUNDED, title=f"Chain {chain_id}")
    table.add_row("Health", health.status.value)
    table.add_row(
        "Last updated", health.last_updated.isoformat() if health.last_updated else "never"
    )
    if health.last_error:
        table.add_row("Last error", f"[red]{health.last_error}[/]")
    if registration is not None:
        table.add_row("Status", registration.status.value)
        table.add_row("Address", registration.address or "-")
        table.add_row("Endpoint", registration.endpoint or "-")
        table.add_row("Staked", _format_amount(registration.staked_amount))
        table.add_row("Pending unstake", _format_amount(registration.pending_unstake_amount))
        table.add_row("Total slashed", _format_amount(registration.total_slashed))
        if registration.unstake_requested_at and params:
            table.add_row(
                "Withdrawable at",
                str(registration.withdrawable_at(params.unstaking_delay)),
            )
    if params is not None:
        table.add_row("Min stake", _format_amount(params.min_stake))
        table.add_row("Unstaking delay", f"{params.unstaking_delay}s")
    if reputation is not None:
        table.add_row("Reputation", f"{reputation.score:.1f}")
    console.print(table)

    deals = service.list_deals(chain_id)
    if not deals:
        console.print("[yellow]No deals[/]")
        return

    deal_table = Table(title=f"Deals ({len(deals)})", box=box.SIMPLE)
    for column in ("Deal", "Client", "Size MB", "Tier", "Price", "Expires", "State"):
        deal_table.add_column(column)
    for deal in deals[-DEAL_ROWS_LIMIT:]:
        state = "griefed" if deal.griefed else "active" if deal.active else "inactive"
        deal_table.add_row(
            f"{deal.deal_id[:10]}…",
            deal.client_address,
            str(deal.size_mb),
            deal.tier,
            f"{deal.price_total:f}",
            deal.expires_at.date().isoformat(),
            state,
        )
    console.print(deal_table)


async def _with_service(
    settings: RelaySettings, action: Callable[[RelayService], Awaitable[int]]
) -> int:
    service = RelayService(settings)
    await service.start(run_loops=False)
    try:
        return await action(service)
    finally:
        await service.stop()


async def run_status(settings: RelaySettings, chain_id: int | None, *, refresh: bool) -> int:
    """Show cached (or freshly reconciled) state."""

    async def show(service: RelayService) -> int:
        chain_ids = [chain_id] if chain_id is not None else list(service.chains)
        for cid in chain_ids:
            if refresh:
                with console.status(f"[bold cyan]Reconciling chain {cid}..."):
                    await service.reconcile(cid, PassKind.FULL)
            print_status(service, cid)
        return 0

    return await _with_service(settings, show)


async def run_command(
    settings: RelaySettings,
    command: Callable[[RelayService], Awaitable[CommandResult]],
) -> int:
    """Run one staking command and print its result."""

    async def execute(service: RelayService) -> int:
        with console.status("[bold cyan]Waiting for confirmation..."):
            result = await command(service)
        print_command_result(result)
        return 0 if result.success else 1

    return await _with_service(settings, execute)


async def run_acknowledge(settings: RelaySettings, chain_id: int) -> int:
    """Clear a transaction of unknown outcome once the operator has checked it."""

    async def acknowledge(service: RelayService) -> int:
        tx_hash = await service.acknowledge_unknown(chain_id)
        if tx_hash is None:
            console.print(f"[yellow]No unresolved transaction on chain {chain_id}[/]")
        else:
            console.print(f"[bold green]✓[/] Acknowledged [cyan]{tx_hash}[/] on chain {chain_id}")
        return 0

    return await _with_service(settings, acknowledge)


def run_quote(settings: RelaySettings, tier: str, size_mb: str, duration_days: int) -> int:
    """Print a price quote."""
    service = RelayService(settings, clients=[])
    try:
        quote = service.quote(tier, size_mb, duration_days)
    except PricingError as e:
        console.print(f"[bold red]Error:[/] {e}")
        return 1

    table = Table(show_header=False, box=box.ROUNDED, title=f"{quote.tier} quote")
    table.add_row("Size", f"{quote.size_mb} MB")
    table.add_row("Duration", f"{quote.duration_days} days")
    table.add_row("Price / MB / month", f"{quote.price_per_mb_month:f}")
    table.add_row("Total", f"[bold]{quote.total_price.normalize():f}[/]")
    table.add_row("Replication", str(quote.replication_factor))
    table.add_row("SLA", "yes" if quote.sla_guarantee else "no")
    table.add_row("Erasure coding", "yes" if quote.erasure_coding else "no")
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Relay registry and deal reconciliation node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the relay node")

    status = subparsers.add_parser("status", help="Show registration and deals")
    status.add_argument("--chain-id", type=int, help="Chain to show (default: all)")
    status.add_argument(
        "--refresh", action="store_true", help="Run a full reconciliation pass first"
    )

    quote = subparsers.add_parser("quote", help="Price a storage deal")
    quote.add_argument("tier", help="Pricing tier (standard, premium, enterprise)")
    quote.add_argument("size_mb", help="Deal size in MB")
    quote.add_argument("duration_days", type=int, help="Deal duration in days")

    def chain_command(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--chain-id", type=int, help="Target chain (default: first configured)")
        return sub

    register = chain_command("register", "Register the relay and stake")
    register.add_argument("--endpoint", required=True, help="Public relay endpoint URL")
    register.add_argument("--peer-public-key", required=True, help="Relay peer public key")
    register.add_argument("--stake", required=True, type=Decimal, help="Stake in tokens")

    increase = chain_command("increase-stake", "Add stake to an active registration")
    increase.add_argument("--amount", required=True, type=Decimal, help="Amount in tokens")

    chain_command("unstake", "Request unstaking of the full stake")
    chain_command("withdraw", "Withdraw a matured unstake")

    update = chain_command("update", "Update endpoint and/or peer public key")
    update.add_argument("--endpoint", help="New endpoint URL")
    update.add_argument("--peer-public-key", help="New peer public key")

    chain_command("acknowledge", "Clear a transaction of unknown outcome after checking it")

    emergency = chain_command("emergency-withdraw", "Owner-only token recovery")
    emergency.add_argument("--token", required=True, help="Token contract address")
    emergency.add_argument("--amount", required=True, type=Decimal, help="Amount in tokens")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as e:
        console.print(f"[bold red]Configuration error:[/] {e}")
        return 2
    configure_logging(settings.log_level, log_color=settings.log_color)

    if args.command == "run":
        asyncio.run(LiveRelay(settings).run())
        return 0
    if args.command == "status":
        return asyncio.run(run_status(settings, args.chain_id, refresh=args.refresh))
    if args.command == "quote":
        return run_quote(settings, args.tier, args.size_mb, args.duration_days)

    try:
        chain_id = _resolve_chain_id(settings, args.chain_id)
        command = None if args.command == "acknowledge" else _staking_command(args, chain_id)
    except (KeyError, ValueError) as e:
        console.print(f"[bold red]Error:[/] {e}")
        return 2
    if command is None:
        return asyncio.run(run_acknowledge(settings, chain_id))
    return asyncio.run(run_command(settings, command))


def _staking_command(
    args: argparse.Namespace, chain_id: int
) -> Callable[[RelayService], Awaitable[CommandResult]]:
    match args.command:
        case "register":
            stake = to_base_units(args.stake)
            return lambda service: service.register(
                chain_id, args.endpoint, args.peer_public_key, stake
            )
        case "increase-stake":
            amount = to_base_units(args.amount)
            return lambda service: service.increase_stake(chain_id, amount)
        case "unstake":
            return lambda service: service.request_unstake(chain_id)
        case "withdraw":
            return lambda service: service.withdraw(chain_id)
        case "update":
            return lambda service: service.update_info(
                chain_id, args.endpoint, args.peer_public_key
            )
        case "emergency-withdraw":
            amount = to_base_units(args.amount)
            return lambda service: service.emergency_withdraw(chain_id, args.token, amount)
        case _:
            msg = f"Unknown command: {args.command}"
            raise ValueError(msg)


if __name__ == "__main__":
    sys.exit(main())
