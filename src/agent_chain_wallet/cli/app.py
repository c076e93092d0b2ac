"""CLI for Agent Chain Wallet - operate a multi-chain EVM wallet from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="agent-chain-wallet",
    help="Hold one EVM key, check balances, transfer and bridge across chains.",
    no_args_is_help=True,
)
console = Console()

_config_path: Optional[Path] = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"agent-chain-wallet {version('agent-chain-wallet')}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML config file",
        envvar="AGENT_WALLET_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Hold one EVM key, check balances, transfer and bridge across chains."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _run(coro):
    """Run an async function synchronously."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    import concurrent.futures
    with concurrent.futures.ThreadPoolExecutor() as pool:
        return pool.submit(asyncio.run, coro).result()


def _load_service():
    from agent_chain_wallet.config import load_config
    from agent_chain_wallet.service import EVMChainService

    return EVMChainService(load_config(_config_path))


def _print_error(error) -> None:
    lines = [f"[bold red]{error.kind.value}[/bold red]: {error.message}"]
    if error.suggestions:
        lines.append("")
        lines.extend(f"[dim]- {s}[/dim]" for s in error.suggestions)
    console.print(Panel("\n".join(lines), title="Error", border_style="red"))


def _mask(key: str) -> str:
    return f"{key[:6]}...{key[-4:]}"


def _service_call(fn):
    """Build a service, run ``fn(service)`` and close it; classified errors exit 1."""
    from agent_chain_wallet.wallet.errors import ClassifiedError

    async def _call():
        service = _load_service()
        try:
            return await fn(service)
        finally:
            await service.aclose()

    try:
        return _run(_call())
    except ClassifiedError as e:
        _print_error(e)
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Chains and keys
# ------------------------------------------------------------------


@app.command("chains")
def chains_cmd():
    """List the networks this wallet knows about."""
    from agent_chain_wallet.wallet.errors import ClassifiedError

    try:
        service = _load_service()
    except ClassifiedError as e:
        _print_error(e)
        raise typer.Exit(1)
    configured = set(service.provider.list_chains()) if service.provider else set()

    table = Table(title="Supported Chains")
    table.add_column("Chain", style="cyan")
    table.add_column("Chain ID", justify="right")
    table.add_column("Symbol")
    table.add_column("Network")
    table.add_column("Configured", justify="center")
    for name, chain in service.registry.items():
        table.add_row(
            name,
            str(chain.chain_id),
            chain.native_symbol,
            "testnet" if chain.is_testnet else "mainnet",
            "[green]yes[/green]" if name in configured else "",
        )
    console.print(table)
    _run(service.aclose())


@app.command("generate")
def generate_cmd(
    chain: str = typer.Option("ethereum", "--chain", help="Chain to label the wallet with"),
):
    """Generate a new key pair. The key is printed once and never stored."""
    from agent_chain_wallet.wallet.keys import generate_wallet

    record = generate_wallet(chain.lower())
    console.print(Panel(
        f"[bold green]Wallet generated![/bold green]\n\n"
        f"Address: [cyan]{record.address}[/cyan]\n"
        f"Private key: [yellow]{record.private_key}[/yellow]\n\n"
        f"[dim]The key is not saved anywhere. Store it securely and set\n"
        f"EVM_PRIVATE_KEY to use it with this tool.[/dim]",
        title="New EVM Wallet",
    ))


@app.command("address")
def address_cmd():
    """Show the configured wallet address."""
    from agent_chain_wallet.wallet.errors import ClassifiedError

    try:
        service = _load_service()
    except ClassifiedError as e:
        _print_error(e)
        raise typer.Exit(1)
    addr = service.address
    _run(service.aclose())
    if addr is None:
        console.print("[yellow]No private key configured.[/yellow] Set EVM_PRIVATE_KEY first.")
        raise typer.Exit(1)

    console.print(Panel(
        f"[cyan]{addr}[/cyan]\n\n"
        f"[dim]Same address on every EVM chain.[/dim]",
        title="Wallet Address",
    ))


@app.command("detect")
def detect_cmd(
    text: str = typer.Argument(help="Text that may contain a private key"),
):
    """Find private keys in a piece of text and show their addresses."""
    from agent_chain_wallet.wallet.detector import detect_private_keys
    from agent_chain_wallet.wallet.keys import derive_address

    found = detect_private_keys(text)
    if not found:
        console.print("[yellow]No private keys found.[/yellow]")
        raise typer.Exit(1)

    table = Table(title="Detected Keys")
    table.add_column("Format", style="cyan")
    table.add_column("Key")
    table.add_column("Address")
    for item in found:
        table.add_row(item.format, _mask(item.key), derive_address(item.key))
    console.print(table)


# ------------------------------------------------------------------
# Balances
# ------------------------------------------------------------------


@app.command("balance")
def balance_cmd(
    chain: str = typer.Option(None, "--chain", help="Only this chain"),
    address: str = typer.Option(None, "--address", "-a", help="Address to inspect (defaults to the wallet)"),
):
    """Show native balances across the configured chains."""

    async def _balance(service):
        if chain or address:
            target = address or service.address
            if target is None:
                console.print("[yellow]No private key configured.[/yellow] Pass --address.")
                raise typer.Exit(1)
            return await service.get_wallet_balance(target, chain or service.config.wallet.default_chain)
        return await service.get_wallet_data()

    result = _service_call(_balance)

    if result is None:
        console.print("[red]Balance unavailable.[/red] Check the chain name and RPC endpoint.")
        raise typer.Exit(1)

    if hasattr(result, "chains"):
        table = Table(title=f"Wallet Balances - {result.address}")
        table.add_column("Chain", style="cyan")
        table.add_column("Balance", justify="right")
        table.add_column("Symbol")
        table.add_column("Status", style="dim")
        for row in result.chains:
            table.add_row(
                row.chain_name,
                row.balance if row.balance is not None else "-",
                row.symbol,
                "[green]OK[/green]" if row.balance is not None else "[red]unreachable[/red]",
            )
        console.print(table)
        return

    console.print(f"[bold]{result.chain}:[/bold] {result.balance} {result.symbol}")
    for token in result.tokens:
        console.print(f"  {token.balance} {token.symbol} [dim]{token.contract_address}[/dim]")


@app.command("tokens")
def tokens_cmd(
    chain: str = typer.Option(..., "--chain", help="Chain to enumerate"),
):
    """List non-zero ERC20 balances (needs an RPC with token introspection)."""
    tokens = _service_call(lambda service: service.list_tokens(chain))

    if not tokens:
        console.print(f"[dim]No token balances found on {chain}.[/dim]")
        return

    table = Table(title=f"Tokens on {chain}")
    table.add_column("Symbol", style="cyan")
    table.add_column("Name")
    table.add_column("Balance", justify="right")
    table.add_column("Contract", style="dim")
    for token in tokens:
        table.add_row(token.symbol, token.name, token.balance, token.contract_address)
    console.print(table)


# ------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------


def _print_progress(event) -> None:
    tx = f" [dim]{event.transaction_hash}[/dim]" if event.transaction_hash else ""
    console.print(f"  [{event.step_index}/{event.total_steps}] {event.stage}{tx}")


@app.command("transfer")
def transfer_cmd(
    amount: str = typer.Argument(help="Amount to send (e.g. 0.01)"),
    to: str = typer.Option(..., "--to", "-t", help="Recipient address (0x...)"),
    chain: str = typer.Option(..., "--chain", help="Chain to send on"),
    token: str = typer.Option(None, "--token", help="Token symbol or address (default: native)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Send the native asset or an ERC20 token on one chain."""
    from agent_chain_wallet.actions.transfer import TransferRequest

    console.print(f"\n[bold]Send {amount} {token or 'native'} on {chain}[/bold]")
    console.print(f"  To: {to}\n")
    if not yes:
        typer.confirm("Confirm this transaction?", abort=True)

    request = TransferRequest(
        source_chain=chain, amount=amount, recipient_address=to, token=token
    )
    result = _service_call(lambda service: service.transfer(request, _print_progress))

    console.print(Panel(
        f"[bold green]Transaction sent![/bold green]\n\n"
        f"Amount: {result.amount} {result.token}\n"
        f"From: {result.from_address}\n"
        f"To: {result.to_address}\n"
        f"Tx: [cyan]{result.transaction_hash}[/cyan]"
        + (f"\nExplorer: {result.explorer_url}" if result.explorer_url else ""),
        title="Transfer",
    ))


@app.command("bridge")
def bridge_cmd(
    amount: str = typer.Argument(help="Amount to bridge (e.g. 0.01)"),
    from_chain: str = typer.Option(..., "--from", help="Source chain"),
    to_chain: str = typer.Option(..., "--to-chain", help="Destination chain"),
    token: str = typer.Option(None, "--token", help="Source token (default: native)"),
    to_token: str = typer.Option(None, "--to-token", help="Destination token (default: same symbol)"),
    recipient: str = typer.Option(None, "--recipient", help="Destination address (default: this wallet)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Bridge value from one chain to another through LI.FI."""
    from agent_chain_wallet.actions.bridge import BridgeRequest

    console.print(f"\n[bold]Bridge {amount} {token or 'native'} {from_chain} -> {to_chain}[/bold]\n")
    if not yes:
        typer.confirm("Confirm this bridge?", abort=True)

    request = BridgeRequest(
        source_chain=from_chain,
        destination_chain=to_chain,
        amount=amount,
        from_token=token,
        to_token=to_token,
        recipient_address=recipient,
    )
    result = _service_call(lambda service: service.bridge(request, _print_progress))

    console.print(Panel(
        f"[bold green]Source transactions confirmed![/bold green]\n\n"
        f"{result.amount} {result.from_token} ({result.source_chain}) -> "
        f"~{result.estimated_to_amount} {result.to_token} ({result.destination_chain})\n"
        f"Recipient: {result.to_address}\n"
        f"Tx: [cyan]{result.transaction_hash}[/cyan]\n\n"
        f"[dim]Destination settlement is pending. Check it with:\n"
        f"agent-chain-wallet status {result.transaction_hash} "
        f"--from {result.source_chain} --to-chain {result.destination_chain}[/dim]",
        title="Bridge",
    ))


@app.command("status")
def status_cmd(
    tx_hash: str = typer.Argument(help="Source chain transaction hash"),
    from_chain: str = typer.Option(..., "--from", help="Source chain"),
    to_chain: str = typer.Option(..., "--to-chain", help="Destination chain"),
    tool: str = typer.Option(None, "--tool", help="Bridge tool reported for the route"),
):
    """Check the destination side of a bridge."""
    report = _service_call(
        lambda service: service.get_bridge_status(tx_hash, from_chain, to_chain, tool)
    )
    line = f"[bold]{report.status.value}[/bold]"
    if report.substatus:
        line += f" ({report.substatus})"
    console.print(line)
    if report.receiving_transaction_hash:
        console.print(f"Destination tx: [cyan]{report.receiving_transaction_hash}[/cyan]")
