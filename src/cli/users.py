"""User management CLI commands."""

import typer
from rich.console import Console
from rich.table import Table

from src.db.database import get_db
from src.db.models import User
from src.core.auth import AuthService

app = typer.Typer()
console = Console()


@app.command("register")
def register(
    email: str = typer.Argument(..., help="User email address"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help="User password"),
    name: str = typer.Option(None, "--name", "-n", help="Display name"),
    admin: bool = typer.Option(False, "--admin", help="Create as admin user"),
):
    """Register a new user."""
    with get_db() as db:
        auth = AuthService(db)

        try:
            user, token = auth.register(email=email, password=password, name=name, is_admin=admin)
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

        console.print("[green]User registered successfully![/green]")
        console.print(f"  Email: {user.email}")
        console.print(f"  ID: {user.id}")
        console.print(f"  Admin: {user.is_admin}")
        console.print("\n[yellow]Access Token (for API):[/yellow]")
        console.print(f"  {token}")


@app.command("list")
def list_users():
    """List all users with their broker link state."""
    with get_db() as db:
        users = db.query(User).all()

        if not users:
            console.print("[yellow]No users found.[/yellow]")
            return

        table = Table(title="Users")
        table.add_column("ID", style="dim")
        table.add_column("Email")
        table.add_column("Status")
        table.add_column("Admin", justify="center")
        table.add_column("Zerodha", justify="center")
        table.add_column("Created")
        table.add_column("Last Login")

        for user in users:
            credential = user.broker_credential
            if credential and credential.is_connected:
                zerodha = "[green]Connected[/green]"
            elif credential and credential.api_key:
                zerodha = "[yellow]Configured[/yellow]"
            else:
                zerodha = "[dim]-[/dim]"

            table.add_row(
                user.id[:8] + "...",
                user.email,
                user.status if user.is_active else "[red]inactive[/red]",
                "[yellow]Yes[/yellow]" if user.is_admin else "No",
                zerodha,
                user.created_at.strftime("%Y-%m-%d %H:%M") if user.created_at else "-",
                user.last_login_at.strftime("%Y-%m-%d %H:%M") if user.last_login_at else "Never",
            )

        console.print(table)


@app.command("token")
def token(
    email: str = typer.Argument(..., help="User email address"),
):
    """Issue an API access token for a user."""
    with get_db() as db:
        auth = AuthService(db)
        user = auth.get_user_by_email(email)

        if not user:
            console.print(f"[red]Error: User '{email}' not found[/red]")
            raise typer.Exit(1)

        console.print(f"[yellow]Access Token for {email}:[/yellow]")
        console.print(f"  {auth.issue_token(user)}")


@app.command("restrict")
def restrict(
    email: str = typer.Argument(..., help="User email address"),
    lift: bool = typer.Option(False, "--lift", help="Lift the restriction instead"),
):
    """Restrict a user from changing broker settings."""
    with get_db() as db:
        user = db.query(User).filter_by(email=email).first()

        if not user:
            console.print(f"[red]Error: User '{email}' not found[/red]")
            raise typer.Exit(1)

        user.status = "active" if lift else "restricted"
        db.commit()
        console.print(f"[green]User {email} is now {user.status}[/green]")


@app.command("create-api-key")
def create_api_key(
    email: str = typer.Argument(..., help="User email address"),
    name: str = typer.Option("CLI Key", "--name", "-n", help="Friendly name for the key"),
):
    """Create an API key for a user."""
    with get_db() as db:
        auth = AuthService(db)
        user = auth.get_user_by_email(email)

        if not user:
            console.print(f"[red]Error: User '{email}' not found[/red]")
            raise typer.Exit(1)

        api_key_record, plain_key = auth.create_api_key(user, name)

        console.print("[green]API key created![/green]")
        console.print(f"  Name: {name}")
        console.print(f"  Key ID: {api_key_record.id}")
        console.print("\n[bold yellow]API Key (save this - shown only once!):[/bold yellow]")
        console.print(f"  {plain_key}")
