# carbon_ledger/cli/main.py
"""
CLI for operating and auditing a carbon credit ledger stored in SQLite.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from carbon_ledger.config import LedgerConfig
from carbon_ledger.core.errors import LedgerError
from carbon_ledger.core.ledger import CarbonLedger
from carbon_ledger.core.types import Role
from carbon_ledger.storage import SQLiteStorage
from carbon_ledger.verify.verifier import LedgerVerifier

app = typer.Typer(
    name="carbon-ledger",
    help="Register accounts, issue and trade carbon credits, and audit the ledger",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

DB_HELP = "Path to SQLite database (overrides CARBON_LEDGER_DB_PATH env var)"
AS_HELP = "Identity performing the operation"


def get_config(db_flag: Optional[Path] = None) -> LedgerConfig:
    """Resolve settings in this order:
    1. --db flag
    2. CARBON_LEDGER_* environment variables
    3. Defaults (~/.carbon-ledger/ledger.db)
    """
    config = LedgerConfig.from_env(db_flag)
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    return config


def open_ledger(db: Optional[Path]) -> CarbonLedger:
    """Open an initialized ledger or exit with a hint to run `init`."""
    config = get_config(db)
    if not config.db_path.exists():
        console.print(f"[red]Database file not found: {config.db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • carbon-ledger init --admin <identity> --db /path/to/ledger.db")
        console.print("  • Or set env var: export CARBON_LEDGER_DB_PATH=/path/to/ledger.db")
        raise typer.Exit(1)

    try:
        storage = SQLiteStorage(config.db_path)
    except sqlite3.Error as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        raise typer.Exit(1)

    if not storage.load_settings():
        storage.close()
        console.print(f"[red]Ledger not initialized in {config.db_path}[/]")
        console.print("  Run: carbon-ledger init --admin <identity>")
        raise typer.Exit(1)

    try:
        return CarbonLedger(storage=storage)
    except (ValueError, sqlite3.Error) as e:
        storage.close()
        console.print(f"[red]Failed to load ledger: {str(e)}[/]")
        raise typer.Exit(1)


def fail(error: LedgerError) -> None:
    console.print(f"[red]✗ {type(error).__name__}: {error}[/]")
    raise typer.Exit(1)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (overrides CARBON_LEDGER_LOG_LEVEL)",
    ),
):
    """Operate a permissioned carbon credit ledger."""
    level = log_level or LedgerConfig.from_env().log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.command()
def init(
    admin: str = typer.Option(..., "--admin", help="Identity of the initial super-admin"),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Create a new ledger database with its super-admin."""
    config = get_config(db)
    try:
        with SQLiteStorage(config.db_path) as storage:
            existing = storage.load_settings().get("super_admin")
    except sqlite3.Error as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        raise typer.Exit(1)
    if existing:
        console.print(f"[yellow]Ledger already initialized (super-admin {existing})[/]")
        raise typer.Exit(1)

    with CarbonLedger(
        admin=admin,
        admin_transfer_delay=config.admin_transfer_delay,
        storage=SQLiteStorage(config.db_path),
        id_scheme=config.id_scheme,
    ) as ledger:
        console.print(f"[green]Initialized ledger at {config.db_path}[/]")
        console.print(f"  super-admin: {ledger.super_admin}")
        console.print(f"  id scheme:   {ledger.id_scheme.value}")


@app.command()
def register(
    identity: str = typer.Argument(..., help="Identity of the organization"),
    name: str = typer.Argument(..., help="Organization name"),
    caller: str = typer.Option(..., "--as", help=AS_HELP),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Register an organization account (super-admin only)."""
    with open_ledger(db) as ledger:
        try:
            ledger.register_account(caller, identity, name)
        except LedgerError as e:
            fail(e)
    console.print(f"[green]✓ Registered {identity} ({name}) with TRADER role[/]")


@app.command()
def grant(
    role: str = typer.Argument(..., help="admin | trader | auditor | issuer"),
    identity: str = typer.Argument(...),
    caller: str = typer.Option(..., "--as", help=AS_HELP),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Grant a role to an identity (super-admin only)."""
    parsed = _parse_role(role)
    with open_ledger(db) as ledger:
        try:
            changed = ledger.grant_role(caller, parsed, identity)
        except LedgerError as e:
            fail(e)
    if changed:
        console.print(f"[green]✓ Granted {parsed.value} to {identity}[/]")
    else:
        console.print(f"[yellow]{identity} already holds {parsed.value}[/]")


@app.command()
def revoke(
    role: str = typer.Argument(..., help="admin | trader | auditor | issuer"),
    identity: str = typer.Argument(...),
    caller: str = typer.Option(..., "--as", help=AS_HELP),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Revoke a role from an identity (super-admin only)."""
    parsed = _parse_role(role)
    with open_ledger(db) as ledger:
        try:
            changed = ledger.revoke_role(caller, parsed, identity)
        except LedgerError as e:
            fail(e)
    if changed:
        console.print(f"[green]✓ Revoked {parsed.value} from {identity}[/]")
    else:
        console.print(f"[yellow]{identity} does not hold {parsed.value}[/]")


@app.command("check-role")
def check_role(
    identity: str = typer.Argument(...),
    index: int = typer.Argument(..., help="0=ADMIN 1=TRADER 2=AUDITOR 3=ISSUER"),
    caller: str = typer.Option(..., "--as", help=AS_HELP),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Check whether an identity holds the role at a numeric index (super-admin only)."""
    with open_ledger(db) as ledger:
        try:
            held = ledger.check_role(caller, identity, index)
        except LedgerError as e:
            fail(e)
        except ValueError as e:
            console.print(f"[red]{str(e)}[/]")
            raise typer.Exit(1)
    console.print("true" if held else "false")


@app.command()
def issue(
    identity: str = typer.Argument(..., help="Receiving account"),
    amount: int = typer.Argument(..., min=0),
    caller: str = typer.Option(..., "--as", help=AS_HELP),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Issue carbon credits to a registered account (ISSUER only)."""
    with open_ledger(db) as ledger:
        try:
            credit = ledger.issue_credit(caller, identity, amount)
            balance = ledger.balance_of(identity)
        except LedgerError as e:
            fail(e)
    console.print(f"[green]✓ Issued {credit.amount} credits to {identity} (credit {credit.credit_id})[/]")
    console.print(f"  balance: {balance}")


@app.command()
def transfer(
    buyer: str = typer.Argument(..., help="Receiving account"),
    amount: int = typer.Argument(..., min=0),
    caller: str = typer.Option(..., "--as", help="Selling account"),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Transfer credits from the calling account to a buyer (TRADER only)."""
    with open_ledger(db) as ledger:
        try:
            trade = ledger.transfer_credits(caller, buyer, amount)
        except LedgerError as e:
            fail(e)
    console.print(f"[green]✓ Trade {trade.trade_id}: {caller} → {buyer}, {amount} credits[/]")


@app.command()
def audit(
    identity: str = typer.Argument(...),
    credit_id: int = typer.Argument(...),
    caller: str = typer.Option(..., "--as", help=AS_HELP),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Show one credit record of an account (AUDITOR only)."""
    with open_ledger(db) as ledger:
        try:
            credit = ledger.audit_credit(caller, identity, credit_id)
        except LedgerError as e:
            fail(e)

    table = Table(title=f"Credit {credit.credit_id} of {identity}")
    for column in ("Credit ID", "Amount", "Issued", "Issued By", "Valid"):
        table.add_column(column)
    table.add_row(str(credit.credit_id), str(credit.amount), credit.issued_date,
                  credit.issued_by, "yes" if credit.is_valid else "no")
    console.print(table)


@app.command()
def trade(
    identity: str = typer.Argument(...),
    trade_id: int = typer.Argument(...),
    caller: str = typer.Option(..., "--as", help=AS_HELP),
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Show one trade record from an account's log (TRADER only)."""
    with open_ledger(db) as ledger:
        try:
            record = ledger.get_trade_record(caller, identity, trade_id)
        except LedgerError as e:
            fail(e)

    console.print(f"[bold cyan]Trade {record.trade_id} | {record.trade_date}[/]")
    console.print(f"  seller: {record.seller}")
    console.print(f"  buyer:  {record.buyer}")
    console.print(f"  amount: {record.amount}")


@app.command()
def accounts(
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """List registered accounts with balances and trade counts."""
    with open_ledger(db) as ledger:
        snapshot = ledger.accounts_snapshot()
        supply = ledger.total_supply()

    live = [a for a in snapshot.values() if a.is_valid]
    if not live:
        console.print("[yellow]No accounts registered yet.[/]")
        return

    table = Table(title="Accounts")
    table.add_column("Identity")
    table.add_column("Organization")
    table.add_column("Credits", justify="right")
    table.add_column("Trades", justify="right")

    for account in sorted(live, key=lambda a: a.identity):
        table.add_row(account.identity, account.organization_name,
                      str(account.total_credits), str(account.trade_count))

    console.print(table)
    console.print(f"Total supply: {supply}")


@app.command()
def verify(
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
):
    """Verify the journal hash chain and reconcile balances and records."""
    config = get_config(db)
    if not config.db_path.exists():
        console.print(f"[red]Database file not found: {config.db_path}[/]")
        raise typer.Exit(1)

    try:
        with SQLiteStorage(config.db_path) as storage:
            result = LedgerVerifier().verify_from_storage(storage)
    except sqlite3.Error as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        raise typer.Exit(1)

    if result.is_valid:
        console.print("[green]✓ Ledger is valid[/]")
        console.print(f"  {result.message}")
    else:
        console.print("[red]✗ Verification failed[/]")
        for failure in result.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {failure.message}")
    for warning in result.warnings:
        console.print(f"[yellow]  ! [{warning.index}] {warning.category}: {warning.message}[/]")

    if not result.is_valid:
        raise typer.Exit(1)


@app.command()
def export(
    db: Optional[Path] = typer.Option(None, "--db", help=DB_HELP),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: ledger-journal.jsonl)"),
):
    """Export the journal as JSONL (one event per line)."""
    config = get_config(db)
    if not config.db_path.exists():
        console.print(f"[red]Database file not found: {config.db_path}[/]")
        raise typer.Exit(1)

    try:
        with SQLiteStorage(config.db_path) as storage:
            events = storage.load_events()
    except (ValueError, sqlite3.Error) as e:
        console.print(f"[red]Failed to load journal: {str(e)}[/]")
        raise typer.Exit(1)

    if not events:
        console.print("[yellow]Journal is empty[/]")
        raise typer.Exit(0)

    out_path = output or Path("ledger-journal.jsonl")
    with open(out_path, "w", encoding="utf-8") as f:
        for event in events:
            json.dump(event.to_dict(), f, separators=(",", ":"))
            f.write("\n")

    console.print(f"[green]Exported {len(events)} events to {out_path}[/]")
    console.print("Format: JSONL, one journal event per line")


def _parse_role(name: str) -> Role:
    try:
        return Role.parse(name)
    except ValueError as e:
        console.print(f"[red]{str(e)}[/]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
