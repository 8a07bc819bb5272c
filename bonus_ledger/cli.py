"""
Operator CLI for the bonus ledger.

The sweep command is what a scheduler (cron, a platform job) calls to label
overdue entries as expired.
"""

import logging
import sys
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from .config import get_settings
from .database import init_db
from .exceptions import LedgerError
from .service import LedgerService

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1


def _service() -> LedgerService:
    return LedgerService()


@app.callback()
def main():
    """Bonus ledger maintenance commands."""
    logging.basicConfig(level=get_settings().log_level)


@app.command("init-db")
def init_db_command():
    """Create the bonus_entries table and indexes."""
    try:
        init_db()
    except Exception as e:
        console.print(f"[red]✗[/] Failed to initialize database: {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Database initialized successfully")


@app.command()
def sweep():
    """Mark every overdue active entry as expired."""
    try:
        expired = _service().sweep_expired()
    except LedgerError as e:
        console.print(f"[red]✗[/] Sweep failed: {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Expired {expired} entries")


@app.command()
def balance(
    user_id: str = typer.Argument(..., help="User UUID"),
    horizon_days: Optional[int] = typer.Option(None, "--horizon-days", "-d", help="Days ahead to report expiring points"),
):
    """Show a user's usable balance and the points expiring soon."""
    try:
        user = UUID(user_id)
    except ValueError:
        console.print(f"[red]✗[/] Not a valid user id: {user_id}")
        sys.exit(EXIT_CODE_FAIL)

    service = _service()
    try:
        total = service.get_balance(user)
        expiring = service.get_expiring_breakdown(user, horizon_days)
    except LedgerError as e:
        console.print(f"[red]✗[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"Balance for {user}: [bold]{total}[/]")
    if not expiring:
        console.print("Nothing expires in the selected window")
        return

    table = Table(title="Expiring points")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    for day, amount in expiring.items():
        table.add_row(day.isoformat(), str(amount))
    console.print(table)


if __name__ == "__main__":
    app()
