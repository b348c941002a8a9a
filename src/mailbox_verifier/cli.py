"""Command-line interface for the mailbox verifier.

This module provides a CLI for managing mailbox accounts and running
verification tests directly from the command line, without going through
the HTTP API.

Usage:
    mailbox-verifier accounts add support@example.com --password secret \\
        --smtp-host smtp.example.com --smtp-port 465 \\
        --imap-host imap.example.com --imap-port 993
    mailbox-verifier accounts list
    mailbox-verifier accounts show 1
    mailbox-verifier test 1
    mailbox-verifier serve --port 8080
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from mailbox_verifier.accounts import AccountNotFoundError, AccountStore
from mailbox_verifier.config_loader import load_settings
from mailbox_verifier.core import MailboxVerifierCore
from mailbox_verifier.logger import configure_logging
from mailbox_verifier.models import TestOutcome

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def print_outcome(outcome: TestOutcome) -> None:
    """Render a test outcome as a two-column table."""
    details = outcome.details
    color = "green" if outcome.success else "red"
    table = Table(title=f"Email test {outcome.test_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Result", f"[{color}]{outcome.message}[/{color}]")
    table.add_row("Send", "✓" if details.send_success else "✗")
    table.add_row("Receive", "✓" if details.receive_success else "✗")
    table.add_row("Message-ID", details.message_id or "-")
    table.add_row("Receive attempts", str(details.receive_attempts))
    if details.send_error:
        table.add_row("Send error", details.send_error)
    if details.receive_error:
        table.add_row("Receive error", details.receive_error)
    table.add_row("Time taken", f"{(details.time_taken_ms or 0) / 1000:.1f}s")
    console.print(table)


@click.group()
@click.option("--db", "db_path", envvar="GMV_DB_PATH", default=None, help="SQLite database path.")
@click.option("--config", "config_path", envvar="GMV_CONFIG", default=None, help="INI configuration file.")
@click.pass_context
def main(ctx: click.Context, db_path: str | None, config_path: str | None) -> None:
    """Verify that mailboxes can send and receive mail."""
    settings = load_settings(config_path)
    if db_path:
        settings.db_path = db_path
    configure_logging(settings.log_level)
    ctx.obj = settings


@main.group()
def accounts() -> None:
    """Manage email accounts."""


@accounts.command("add")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, help="Mailbox password or app token.")
@click.option("--name", default=None, help="Display name (defaults to the address).")
@click.option("--smtp-host", required=True)
@click.option("--smtp-port", type=int, default=465, show_default=True)
@click.option("--smtp-secure/--no-smtp-secure", default=True, show_default=True)
@click.option("--imap-host", required=True)
@click.option("--imap-port", type=int, default=993, show_default=True)
@click.option("--imap-secure/--no-imap-secure", default=True, show_default=True)
@click.pass_obj
def accounts_add(settings, email, password, name, smtp_host, smtp_port, smtp_secure, imap_host, imap_port, imap_secure):
    """Add an email account."""
    store = AccountStore(settings.db_path)

    async def _add() -> int:
        await store.init_db()
        return await store.add_account({
            "name": name,
            "email": email,
            "password": password,
            "smtp_host": smtp_host,
            "smtp_port": smtp_port,
            "smtp_secure": smtp_secure,
            "imap_host": imap_host,
            "imap_port": imap_port,
            "imap_secure": imap_secure,
        })

    account_id = run_async(_add())
    print_success(f"Account {email} added with id {account_id}")


@accounts.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def accounts_list(settings, as_json: bool):
    """List email accounts."""
    store = AccountStore(settings.db_path)

    async def _list():
        await store.init_db()
        return await store.list_accounts()

    rows = run_async(_list())
    if as_json:
        print_json(rows)
        return
    if not rows:
        console.print("[dim]No accounts configured.[/dim]")
        return

    table = Table(title="Email accounts")
    table.add_column("ID", style="cyan")
    table.add_column("Email")
    table.add_column("SMTP")
    table.add_column("IMAP")
    table.add_column("Status")
    for row in rows:
        table.add_row(
            str(row["id"]),
            row["email"],
            f"{row['smtp_host']}:{row['smtp_port']}",
            f"{row['imap_host']}:{row['imap_port']}",
            row["status"],
        )
    console.print(table)


@accounts.command("show")
@click.argument("account_id", type=int)
@click.pass_obj
def accounts_show(settings, account_id: int):
    """Show one email account."""
    store = AccountStore(settings.db_path)

    async def _get():
        await store.init_db()
        return await store.get_account(account_id)

    try:
        account = run_async(_get())
    except AccountNotFoundError as exc:
        print_error(str(exc))
        raise SystemExit(1)
    account.pop("password", None)
    print_json(account)


@main.command("test")
@click.argument("account_id", type=int)
@click.pass_obj
def test_account(settings, account_id: int):
    """Run a full send and receive test in the foreground."""
    core = MailboxVerifierCore(db_path=settings.db_path)

    async def _run() -> TestOutcome:
        await core.init()
        return await core.run_test_now(account_id)

    try:
        with console.status("Running email test..."):
            outcome = run_async(_run())
    except AccountNotFoundError as exc:
        print_error(str(exc))
        raise SystemExit(1)
    print_outcome(outcome)
    if not outcome.success:
        raise SystemExit(1)


@main.command("serve")
@click.option("--host", default=None, help="Bind address (overrides config).")
@click.option("--port", type=int, default=None, help="Port (overrides config).")
@click.pass_obj
def serve(settings, host: str | None, port: int | None):
    """Run the HTTP API under uvicorn."""
    from contextlib import asynccontextmanager

    import uvicorn

    from mailbox_verifier.api import create_app

    core = MailboxVerifierCore(db_path=settings.db_path)

    @asynccontextmanager
    async def lifespan(app):
        await core.start()
        yield
        await core.stop()

    app = create_app(core, api_token=settings.api_token, lifespan=lifespan)
    uvicorn.run(app, host=host or settings.http_host, port=port or settings.http_port)


if __name__ == "__main__":
    main()
