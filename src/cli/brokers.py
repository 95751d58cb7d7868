"""Zerodha broker link CLI commands."""

from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from src.db.database import get_db
from src.db.models import User
from src.core.brokers import get_position_sync_service, get_session_controller
from src.core.brokers.exceptions import BrokerLinkError
from src.core.brokers.kite_client import mask
from src.core.brokers.models import ConnectionState, DisconnectReason
from src.core.brokers.store import get_credential_store
from src.config import get_settings

settings = get_settings()
console = Console()
app = typer.Typer()

STATE_STYLES = {
    ConnectionState.UNCONFIGURED: "dim",
    ConnectionState.CONFIGURED: "yellow",
    ConnectionState.AUTHORIZED: "cyan",
    ConnectionState.CONNECTED: "green",
    ConnectionState.DISCONNECTED: "red",
}

UserOption = typer.Option(
    None,
    "--user",
    "-u",
    help="User email (default: default user)",
)


def _resolve_user(db, email: Optional[str]) -> User:
    user = db.query(User).filter_by(email=email or settings.default_user_email).first()
    if not user:
        console.print(f"[red]Error: User '{email or settings.default_user_email}' not found[/red]")
        raise typer.Exit(1)
    return user


def _fail(error: BrokerLinkError) -> NoReturn:
    console.print(f"[red]Error ({error.code}):[/red] {error.message}")
    if error.hints.get("needsCredentials"):
        console.print("  Run: broker-link brokers configure")
    elif error.hints.get("needsAuth"):
        console.print("  Run: broker-link brokers login-url, then finish login in the browser")
    raise typer.Exit(1)


@app.command("status")
def broker_status(user: Optional[str] = UserOption):
    """Show Zerodha link status for a user."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)
        try:
            result = get_session_controller(db).status(user_obj.id)
        except BrokerLinkError as e:
            _fail(e)

        style = STATE_STYLES.get(result.state, "white")
        console.print(f"[bold]Zerodha:[/bold] [{style}]{result.state.value}[/{style}]")
        console.print(f"  {result.message}")
        console.print(f"  API key stored: {'Yes' if result.has_api_key else 'No'}")
        console.print(f"  Access token: {'Yes' if result.has_access_token else 'No'}")
        console.print(f"  Balance: {result.balance:,.2f}")
        console.print(
            f"  Last sync: {result.last_sync.strftime('%Y-%m-%d %H:%M') if result.last_sync else 'Never'}"
        )


@app.command("configure")
def configure(
    api_key: str = typer.Option(..., "--api-key", prompt=True, help="Kite Connect API key"),
    api_secret: str = typer.Option(..., "--api-secret", prompt=True, hide_input=True, help="Kite Connect API secret"),
    user: Optional[str] = UserOption,
):
    """Store Kite API key and secret for a user."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)
        try:
            get_session_controller(db).configure(user_obj.id, api_key, api_secret)
        except BrokerLinkError as e:
            _fail(e)

        console.print(f"[green]Zerodha credentials saved[/green] (key {mask(api_key.strip())})")
        console.print("  Next: broker-link brokers login-url")


@app.command("login-url")
def login_url(user: Optional[str] = UserOption):
    """Print the Kite login URL to authorize the stored API key."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)
        try:
            url = get_session_controller(db).authorization_url(user_obj.id)
        except BrokerLinkError as e:
            _fail(e)

        console.print("Open this URL and log in to Zerodha:")
        console.print(f"  {url}")
        console.print(f"\nKite redirects to {settings.callback_url} when done.")


@app.command("authorize")
def authorize(
    request_token: str = typer.Argument(..., help="request_token from the Kite redirect"),
    user: Optional[str] = UserOption,
):
    """Exchange a request token by hand (when the redirect can't reach the portal)."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)
        try:
            get_session_controller(db).complete_authorization(user_obj.id, request_token, "success")
        except BrokerLinkError as e:
            _fail(e)

        console.print("[green]Access token stored.[/green] Run: broker-link brokers validate")


@app.command("validate")
def validate(user: Optional[str] = UserOption):
    """Check the stored access token against Kite and refresh balance."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)
        try:
            result = get_session_controller(db).validate(user_obj.id)
        except BrokerLinkError as e:
            _fail(e)

        console.print("[green]Connection successful[/green]")
        console.print(f"  Account: {result.profile.display_name} ({result.profile.external_id})")
        console.print(f"  Broker: {result.profile.broker_name}")
        console.print(f"  Available cash: {result.balance:,.2f}")


@app.command("positions")
def positions(
    day: bool = typer.Option(False, "--day", help="Show day positions instead of net"),
    user: Optional[str] = UserOption,
):
    """Show open positions from Kite."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)
        try:
            book = get_position_sync_service(db).list_positions(user_obj.id)
        except BrokerLinkError as e:
            _fail(e)

        items = book.day if day else book.net
        if not items:
            console.print("[yellow]No open positions.[/yellow]")
            return

        table = Table(title=f"{'Day' if day else 'Net'} Positions")
        table.add_column("Symbol")
        table.add_column("Exchange")
        table.add_column("Product")
        table.add_column("Qty", justify="right")
        table.add_column("Avg", justify="right")
        table.add_column("LTP", justify="right")
        table.add_column("P&L", justify="right")

        for p in items:
            pnl_style = "green" if p.pnl >= 0 else "red"
            table.add_row(
                p.symbol,
                p.exchange,
                p.product,
                str(p.quantity),
                f"{p.average_price:,.2f}",
                f"{p.last_price:,.2f}",
                f"[{pnl_style}]{p.pnl:,.2f}[/{pnl_style}]",
            )

        console.print(table)


@app.command("holdings")
def holdings(user: Optional[str] = UserOption):
    """Show delivery holdings from Kite."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)
        try:
            items = get_position_sync_service(db).list_holdings(user_obj.id)
        except BrokerLinkError as e:
            _fail(e)

        if not items:
            console.print("[yellow]No holdings.[/yellow]")
            return

        table = Table(title="Holdings")
        table.add_column("Symbol")
        table.add_column("Exchange")
        table.add_column("Qty", justify="right")
        table.add_column("Avg", justify="right")
        table.add_column("LTP", justify="right")
        table.add_column("P&L", justify="right")

        for h in items:
            table.add_row(
                h.symbol,
                h.exchange,
                str(h.quantity),
                f"{h.average_price:,.2f}",
                f"{h.last_price:,.2f}",
                f"{h.pnl:,.2f}",
            )

        console.print(table)


@app.command("disconnect")
def disconnect(
    user: Optional[str] = UserOption,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Forget a user's Zerodha credentials and session."""
    with get_db() as db:
        user_obj = _resolve_user(db, user)

        if not force:
            confirm = typer.confirm(f"Disconnect Zerodha for '{user_obj.email}'? Keys will be deleted.")
            if not confirm:
                console.print("[yellow]Cancelled.[/yellow]")
                raise typer.Exit(0)

        try:
            get_session_controller(db).disconnect(user_obj.id)
        except BrokerLinkError as e:
            _fail(e)

        console.print("[green]Zerodha account disconnected[/green]")


@app.command("clear-all")
def clear_all(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Clear Zerodha credentials for every user."""
    if not force:
        confirm = typer.confirm("Clear Zerodha credentials for ALL users? Everyone will need to reconnect.")
        if not confirm:
            console.print("[yellow]Cancelled.[/yellow]")
            raise typer.Exit(0)

    with get_db() as db:
        try:
            count = get_credential_store(db).clear_all(DisconnectReason.USER_DISCONNECT)
        except BrokerLinkError as e:
            _fail(e)

        console.print(f"[green]Cleared credentials for {count} user(s)[/green]")


@app.command("rotate-keys")
def rotate_keys():
    """Re-seal stored secrets under the first CREDENTIAL_KEYS entry."""
    with get_db() as db:
        try:
            count = get_credential_store(db).reseal_all()
        except BrokerLinkError as e:
            _fail(e)

        console.print(f"[green]Re-sealed credentials for {count} user(s)[/green]")
        console.print("  Older keys can be dropped from CREDENTIAL_KEYS once every instance has restarted.")
