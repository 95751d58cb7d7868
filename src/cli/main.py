"""Main CLI entry point using Typer."""

import logging

import typer
from rich.console import Console

from src.db.database import init_db
from src.config import PRODUCT_NAME, PRODUCT_TAGLINE, PRODUCT_VERSION, get_settings

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries
logging.getLogger("urllib3").setLevel(logging.WARNING)

console = Console()
app = typer.Typer(
    name="broker-link",
    help=f"{PRODUCT_NAME}: {PRODUCT_TAGLINE}",
    add_completion=False,
)


@app.callback()
def main_callback():
    """Initialize database on startup."""
    init_db()


# Import and add subcommands
from src.cli.users import app as users_app
from src.cli.brokers import app as brokers_app

app.add_typer(users_app, name="users", help="User management and authentication")
app.add_typer(brokers_app, name="brokers", help="Zerodha credentials, sessions and positions")


ASCII_BANNER = """
[bold #4F46E5]██████╗ ██████╗  ██████╗ ██╗  ██╗███████╗██████╗
██╔══██╗██╔══██╗██╔═══██╗██║ ██╔╝██╔════╝██╔══██╗
██████╔╝██████╔╝██║   ██║█████╔╝ █████╗  ██████╔╝
██╔══██╗██╔══██╗██║   ██║██╔═██╗ ██╔══╝  ██╔══██╗
██████╔╝██║  ██║╚██████╔╝██║  ██╗███████╗██║  ██║
╚═════╝ ╚═╝  ╚═╝ ╚═════╝ ╚═╝  ╚═╝╚══════╝╚═╝  ╚═╝

██╗     ██╗███╗   ██╗██╗  ██╗
██║     ██║████╗  ██║██║ ██╔╝
██║     ██║██╔██╗ ██║█████╔╝
██║     ██║██║╚██╗██║██╔═██╗
███████╗██║██║ ╚████║██║  ██╗
╚══════╝╚═╝╚═╝  ╚═══╝╚═╝  ╚═╝[/]

[bold #14B8A6]        Your Zerodha account, linked once.[/]
"""


@app.command()
def version():
    """Show version information with ASCII banner."""
    console.print(ASCII_BANNER)
    console.print(f"[bold]Version:[/] {PRODUCT_VERSION}")
    console.print(f"[bold]Tagline:[/] {PRODUCT_TAGLINE}")


if __name__ == "__main__":
    app()
