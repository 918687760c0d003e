"""
CLI entry point for Blockbook.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog
import typer
from dotenv import load_dotenv

from .config import Settings, get_settings

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="blockbook",
    help="Blockbook payment requests backend",
    add_completion=False,
)


def _load_settings(config_path: Optional[Path]) -> Settings:
    """Settings from an explicit .env file, or the environment."""
    settings = Settings(_env_file=config_path) if config_path else get_settings()
    missing = settings.missing_required()
    if missing:
        typer.echo(f"Error: missing required configuration: {', '.join(missing)}", err=True)
        raise typer.Exit(1)
    return settings


@app.command()
def serve() -> None:
    """
    Run the HTTP API (with the in-process settlement listener if enabled).
    """
    from .main import run as run_api

    run_api()


@app.command()
def listen(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Run one settlement cycle and exit (useful for testing)",
    ),
) -> None:
    """
    Run the settlement listener on its own, without the HTTP API.
    """
    from .db import PaymentRequestStore
    from .listener import SettlementListener

    settings = _load_settings(config_path)
    store = PaymentRequestStore(settings.database_url)
    listener = SettlementListener.from_settings(settings, store)

    typer.echo(
        f"Watching {settings.token_symbol} ({settings.token_address}) "
        f"on chain {settings.chain_id}, last {settings.block_window} blocks"
    )

    try:
        if once:
            typer.echo("Running in single-shot mode...")
            results = asyncio.run(listener.run_once())
            for result in results:
                if result.settled:
                    typer.echo(f"✓ Settled {result.request_id}: {result.amount} from {result.paid_by} ({result.tx_hash})")
                else:
                    typer.echo(f"- Skipped {result.request_id}: no longer open ({result.tx_hash})")
            typer.echo(f"Settled {sum(1 for r in results if r.settled)} requests")
        else:
            typer.echo(f"Running every {settings.poll_interval_seconds}s. Press Ctrl+C to stop.")
            try:
                asyncio.run(listener.run())
            except KeyboardInterrupt:
                typer.echo("\nStopping listener...")
                listener.stop()
    finally:
        store.close()


@app.command("init-db")
def init_db(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Create the payment_requests table (if needed) and print its columns.
    """
    from .db import PaymentRequestStore

    settings = Settings(_env_file=config_path) if config_path else get_settings()
    store = PaymentRequestStore(settings.database_url)
    try:
        typer.echo(f"Database: {settings.masked_database_url()}")
        typer.echo("\nTable structure:")
        for name, column_type in store.table_columns():
            typer.echo(f"  - {name}: {column_type}")
    finally:
        store.close()


@app.command()
def check(
    address: str = typer.Argument(..., help="Recipient address to inspect"),
    blocks: Optional[int] = typer.Option(
        None,
        "--blocks",
        "-b",
        help="How many recent blocks to scan (defaults to BLOCK_WINDOW)",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Show recent token transfers to an address (read-only).
    """
    from .chain import ChainClient, ChainClientError, to_token_units

    settings = Settings(_env_file=config_path) if config_path else get_settings()
    window = blocks or settings.block_window
    client = ChainClient(settings.rpc_url, settings.token_address, timeout=settings.rpc_timeout_seconds)

    async def _check() -> None:
        head = await client.get_block_number()
        from_block = max(head - window, 0)
        typer.echo(f"Checking transfers to: {address}")
        typer.echo(f"Blocks: {from_block}..{head}")
        typer.echo("")

        events = await client.get_transfers_to(address, from_block, head)
        if not events:
            typer.echo("No transfers found.")
            return

        typer.echo(f"Found {len(events)} transfers:\n")
        for event in events:
            amount = to_token_units(event.value, settings.token_decimals)
            typer.echo(f"  TX:     {event.tx_hash}")
            typer.echo(f"  From:   {event.from_address}")
            typer.echo(f"  Amount: {amount} {settings.token_symbol}")
            typer.echo(f"  Block:  {event.block_number}")
            typer.echo("")

    try:
        asyncio.run(_check())
    except ChainClientError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command("check-config")
def check_config(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Print the effective configuration (secrets masked) and verify required keys.
    """
    settings = Settings(_env_file=config_path) if config_path else get_settings()

    typer.echo("Configuration:")
    typer.echo(f"  HOST:              {settings.host}")
    typer.echo(f"  PORT:              {settings.port}")
    typer.echo(f"  API_TOKEN:         {'set' if settings.api_token else 'not set (auth disabled)'}")
    typer.echo(f"  DATABASE_URL:      {settings.masked_database_url()}")
    typer.echo(f"  RPC_URL:           {settings.rpc_url}")
    typer.echo(f"  CHAIN_ID:          {settings.chain_id} ({settings.chain_name})")
    typer.echo(f"  TOKEN:             {settings.token_symbol} {settings.token_address} ({settings.token_decimals} decimals)")
    typer.echo(f"  LISTENER_ENABLED:  {settings.listener_enabled}")
    typer.echo(f"  POLL_INTERVAL:     {settings.poll_interval_seconds}s")
    typer.echo(f"  BLOCK_WINDOW:      {settings.block_window}")
    typer.echo(f"  AMOUNT_TOLERANCE:  {settings.amount_tolerance}")

    missing = settings.missing_required()
    if missing:
        typer.echo("")
        for name in missing:
            typer.echo(f"✗ {name}: MISSING", err=True)
        raise typer.Exit(1)

    typer.echo("\n✓ Required configuration present")


@app.command()
def version() -> None:
    """Show the Blockbook version."""
    from blockbook import __version__
    typer.echo(f"blockbook v{__version__}")


def main() -> None:
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
