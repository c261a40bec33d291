"""
Database connection and management utilities.

Usage:
    python -m src.data.database init    # Create tables
    python -m src.data.database reset   # Drop and recreate tables
    python -m src.data.database check   # Verify connection and counts
"""

import os
import sys
from contextlib import contextmanager
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.engine import Connection, Engine
import click
from rich.console import Console
from rich.table import Table

from .schema import metadata

# Load environment variables
load_dotenv()

console = Console()


def get_database_url() -> str:
    """Get database URL from environment variables."""
    # Try DATABASE_URL first
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    # Fall back to individual components
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "crm_dev")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "password")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


def get_engine(database_url: str | None = None) -> Engine:
    """Create and return a SQLAlchemy engine."""
    return create_engine(database_url or get_database_url(), echo=False)


@contextmanager
def get_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Context manager for a transactional connection.

    Commits on success and rolls back on any exception.
    """
    engine = engine or get_engine()
    with engine.begin() as connection:
        yield connection


def init_database(engine: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    engine = engine or get_engine()
    metadata.create_all(engine)


def reset_database(engine: Engine | None = None) -> None:
    """Drop all tables and recreate them."""
    engine = engine or get_engine()
    metadata.drop_all(engine)
    metadata.create_all(engine)


def table_counts(engine: Engine) -> dict[str, int | None]:
    """Row counts per table; None when the table is missing."""
    counts: dict[str, int | None] = {}
    with engine.connect() as conn:
        for table in metadata.sorted_tables:
            try:
                counts[table.name] = conn.execute(
                    select(func.count()).select_from(table)
                ).scalar_one()
            except Exception:
                conn.rollback()
                counts[table.name] = None
    return counts


def check_database(engine: Engine | None = None) -> None:
    """Check database connection and show table counts."""
    console.print("[bold blue]Checking database connection...[/bold blue]")

    try:
        engine = engine or get_engine()

        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        console.print("[green]✓ Connection successful![/green]")

        table = Table(title="Table Row Counts")
        table.add_column("Table", style="cyan")
        table.add_column("Rows", justify="right", style="green")

        total_rows = 0
        for table_name, count in table_counts(engine).items():
            if count is None:
                table.add_row(table_name, "[red]Table not found[/red]")
                continue
            table.add_row(table_name, f"{count:,}")
            total_rows += count

        table.add_row("─" * 20, "─" * 10)
        table.add_row("[bold]Total[/bold]", f"[bold]{total_rows:,}[/bold]")

        console.print(table)

    except Exception as e:
        console.print(f"[bold red]Error connecting to database: {e}[/bold red]")
        console.print("\n[yellow]Troubleshooting tips:[/yellow]")
        console.print("  1. Ensure PostgreSQL is running")
        console.print("  2. Check your .env file has correct credentials")
        console.print("  3. Ensure the database exists: createdb crm_dev")
        sys.exit(1)


# =============================================================================
# CLI
# =============================================================================

@click.group()
def cli():
    """Database management commands."""
    pass


@cli.command()
def init():
    """Create database tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    try:
        init_database()
    except Exception as e:
        console.print(f"[bold red]Error initializing database: {e}[/bold red]")
        sys.exit(1)
    console.print("[bold green]✓ Database initialized successfully![/bold green]")


@cli.command()
def reset():
    """Drop and recreate all tables."""
    console.print("[bold yellow]Resetting database...[/bold yellow]")
    try:
        reset_database()
    except Exception as e:
        console.print(f"[bold red]Error resetting database: {e}[/bold red]")
        sys.exit(1)
    console.print("[bold green]✓ Database reset complete.[/bold green]")


@cli.command()
def check():
    """Check database connection and show table counts."""
    check_database()


if __name__ == "__main__":
    cli()
